"""Server discovery files.

A running bridge writes a small JSON file whose name is derived from the
workspace path, so an agent started anywhere in the same workspace can find
the port without being told.
"""

import hashlib
import json
import os
import tempfile
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, Union

import structlog

log = structlog.get_logger()

FILE_PREFIX = "idebridge-"
HASH_LENGTH = 12


@dataclass
class ServerDetails:
    """Contents of a discovery file."""

    port: int
    workspace: str
    pid: int
    timestamp: float

    @classmethod
    def from_dict(cls, data: dict) -> "ServerDetails":
        """Parse from dictionary."""
        return cls(
            port=int(data["port"]),
            workspace=str(data["workspace"]),
            pid=int(data["pid"]),
            timestamp=float(data.get("timestamp", 0)),
        )


def _directory(directory: Optional[Union[str, Path]]) -> Path:
    return Path(directory) if directory is not None else Path(tempfile.gettempdir())


def server_details_path(
    workspace: Union[str, Path], directory: Optional[Union[str, Path]] = None
) -> Path:
    """Discovery file path for a workspace.

    Args:
        workspace: Absolute workspace path
        directory: Where discovery files live (default: system temp dir)
    """
    digest = hashlib.sha256(str(workspace).encode("utf-8")).hexdigest()
    return _directory(directory) / f"{FILE_PREFIX}{digest[:HASH_LENGTH]}.json"


def write_server_details(
    port: int,
    workspace: Union[str, Path],
    directory: Optional[Union[str, Path]] = None,
) -> Path:
    """Write the discovery file for this process.

    Returns:
        Path of the written file
    """
    path = server_details_path(workspace, directory)
    details = ServerDetails(
        port=port, workspace=str(workspace), pid=os.getpid(), timestamp=time.time()
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    # Write-then-rename so readers never see a half-written file
    tmp_path = path.with_suffix(".tmp")
    tmp_path.write_text(json.dumps(asdict(details)))
    os.replace(tmp_path, path)
    log.info("server_details_written", path=str(path), port=port)
    return path


def read_server_details(path: Union[str, Path]) -> Optional[ServerDetails]:
    """Read a discovery file.

    Returns:
        ServerDetails, or None if the file is missing or invalid
    """
    path = Path(path)
    try:
        content = path.read_text()
    except FileNotFoundError:
        return None
    except OSError as e:
        log.warning("server_details_unreadable", path=str(path), error=str(e))
        return None

    try:
        return ServerDetails.from_dict(json.loads(content))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        log.warning("server_details_invalid", path=str(path), error=str(e))
        return None


def remove_server_details(path: Union[str, Path]) -> bool:
    """Delete a discovery file. Returns False if it did not exist."""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    log.info("server_details_removed", path=str(path))
    return True


def is_process_alive(pid: int) -> bool:
    """Check whether a process with ``pid`` exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    except OSError:
        return False
    return True


def find_server_for_workspace(
    workspace: Union[str, Path], directory: Optional[Union[str, Path]] = None
) -> Optional[tuple[ServerDetails, bool]]:
    """Find the discovery file written for ``workspace``.

    Returns:
        ``(details, is_active)`` where ``is_active`` says whether the owning
        process is still running, or None if no file matches
    """
    workspace = str(workspace)
    for candidate in sorted(_directory(directory).glob(f"{FILE_PREFIX}*.json")):
        details = read_server_details(candidate)
        if details is not None and details.workspace == workspace:
            log.debug("server_details_found", path=str(candidate), pid=details.pid)
            return details, is_process_alive(details.pid)
    return None
