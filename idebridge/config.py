"""Configuration for idebridge with validation."""

import tempfile
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict
import structlog
import toml

log = structlog.get_logger()


class BridgeConfig(BaseModel):
    """Main configuration for the bridge server with validation."""

    model_config = ConfigDict(validate_assignment=True)

    # Transport
    port: int = Field(ge=0, le=65535, default=0)  # 0 = ephemeral
    path: str = "/mcp"
    backlog: int = Field(gt=0, default=64)
    keepalive_interval: float = Field(gt=0, default=30.0)

    # Discovery
    discovery_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    workspace: Optional[Path] = None  # None = cwd

    # Logging
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR)$")
    log_file: Optional[Path] = None
    log_json: bool = False

    @field_validator('path')
    @classmethod
    def path_is_absolute(cls, v):
        if not v.startswith("/") or " " in v:
            raise ValueError('path must start with "/" and contain no spaces')
        return v

    def model_post_init(self, __context):
        """Set computed values after initialization."""
        self.discovery_dir = Path(self.discovery_dir).expanduser()
        if self.workspace is not None:
            self.workspace = Path(self.workspace).expanduser().resolve()

    @property
    def workspace_path(self) -> Path:
        """Workspace the bridge serves, defaulting to the current directory."""
        return self.workspace or Path.cwd()

    @classmethod
    def load(cls, path: Optional[str] = None) -> 'BridgeConfig':
        """Load configuration from TOML file.

        Search order if path not provided:
        1. ./idebridge.toml (project-specific)
        2. ~/.idebridge/config.toml (user default)

        Args:
            path: Optional explicit config file path

        Returns:
            BridgeConfig instance
        """
        if path is None:
            candidates = [
                Path("idebridge.toml"),
                Path("~/.idebridge/config.toml").expanduser()
            ]
            for candidate in candidates:
                if candidate.exists():
                    path = str(candidate)
                    log.info("config_found", path=path)
                    break

        if path and Path(path).exists():
            try:
                data = toml.load(path)
                log.info("config_loaded", path=path)
                return cls(**data)
            except Exception as e:
                log.error("config_load_failed", path=path, error=str(e))
                return cls()

        log.info("config_using_defaults")
        return cls()

    def save(self, path: str):
        """Save configuration to TOML file.

        Args:
            path: File path to save to
        """
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            data = self.model_dump(mode='json', exclude_none=True)
            toml.dump(data, f)
        log.info("config_saved", path=path)


def validate_config(config: BridgeConfig) -> list[str]:
    """Validate configuration and return warnings.

    Args:
        config: Config to validate

    Returns:
        List of warning messages
    """
    warnings = []

    if 0 < config.port < 1024:
        warnings.append(
            f"Port {config.port} is privileged; use 0 for an ephemeral port"
        )

    if config.keepalive_interval < 1.0:
        warnings.append(
            f"Keep-alive interval {config.keepalive_interval}s will flood idle streams"
        )

    if config.workspace is not None and not config.workspace.is_dir():
        warnings.append(f"Workspace does not exist: {config.workspace}")

    # Discovery files must be writable or agents cannot find the server
    try:
        config.discovery_dir.mkdir(parents=True, exist_ok=True)
        test_file = config.discovery_dir / ".idebridge_write_test"
        test_file.touch()
        test_file.unlink()
    except Exception as e:
        warnings.append(f"Discovery directory not writable: {e}")

    return warnings
