"""idebridge CLI - run and inspect the editor bridge."""

import asyncio
import shutil
import signal
import socket
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import click
from rich.console import Console
from rich.panel import Panel

from idebridge import __version__
from idebridge.config import BridgeConfig, validate_config
from idebridge.ide.discovery import (
    find_server_for_workspace,
    remove_server_details,
    server_details_path,
    write_server_details,
)
from idebridge.ide.handler import CompanionHandler
from idebridge.ide.server import LOOPBACK_HOST, BridgeServer
from idebridge.logging import get_logger, setup_logging

console = Console()
log = get_logger(__name__)

# Environment variables an agent reads to reach the bridge
ENV_PORT = "IDEBRIDGE_SERVER_PORT"
ENV_WORKSPACE = "IDEBRIDGE_WORKSPACE_PATH"

# Agent executables the doctor looks for
KNOWN_AGENTS = ("gemini", "qwen")


async def run_bridge(
    config: BridgeConfig,
    stop: asyncio.Event,
    port: Optional[int] = None,
    on_ready: Optional[Callable[[int, Path], None]] = None,
) -> None:
    """Serve until ``stop`` is set, then shut down and clean up.

    Args:
        config: Bridge configuration
        stop: Event that ends the server when set
        port: Port override (None = ``config.port``)
        on_ready: Called with the bound port and discovery file path
    """
    workspace = config.workspace_path
    handler = CompanionHandler()
    server = BridgeServer.from_config(config, on_request=handler)
    handler.server = server

    bound = await server.start(config.port if port is None else port)
    details_path = write_server_details(bound, workspace, config.discovery_dir)
    log.info("bridge_ready", port=bound, workspace=str(workspace))
    if on_ready is not None:
        on_ready(bound, details_path)

    try:
        await stop.wait()
    finally:
        server.shutdown()
        await server.wait_closed()
        remove_server_details(details_path)
        log.info("bridge_stopped", port=bound)


@click.group()
@click.version_option(version=__version__)
def cli():
    """idebridge - editor companion bridge for command-line agents"""
    pass


@cli.command()
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (0 = ephemeral)")
@click.option(
    "--workspace", "-w", type=click.Path(exists=True, file_okay=False),
    help="Workspace directory (default: current directory)",
)
@click.option("--config-path", help="Path to config file")
def serve(port: Optional[int], workspace: Optional[str] = None, config_path: Optional[str] = None):
    """Start the bridge server for a workspace.

    Examples:
        idebridge serve                      # Ephemeral port, current directory

        idebridge serve --port 9999          # Fixed port

        idebridge serve -w ~/projects/myapp  # Explicit workspace
    """
    config = BridgeConfig.load(config_path)
    if workspace:
        config.workspace = Path(workspace).expanduser().resolve()
    setup_logging(config.log_level, config.log_file, config.log_json)

    def on_ready(bound: int, details_path: Path):
        console.print(
            Panel(
                f"[bold blue]Listening on[/] http://{LOOPBACK_HOST}:{bound}{config.path}\n"
                f"[dim]Workspace:[/] {config.workspace_path}\n"
                f"[dim]Discovery file:[/] {details_path}",
                title="idebridge",
            )
        )
        console.print("[bold]Agent environment:[/bold]")
        console.print(f"  export {ENV_PORT}={bound}")
        console.print(f"  export {ENV_WORKSPACE}={config.workspace_path}")
        console.print("[dim]Press Ctrl+C to stop[/dim]")

    async def run():
        stop = asyncio.Event()
        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, stop.set)
        except (NotImplementedError, RuntimeError):
            pass  # No signal handlers on this platform
        await run_bridge(config, stop, port=port, on_ready=on_ready)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("[dim]Bridge stopped[/dim]")


@cli.command()
@click.option(
    "--workspace", "-w", type=click.Path(exists=True, file_okay=False),
    help="Workspace directory (default: current directory)",
)
@click.option("--config-path", help="Path to config file")
def status(workspace: Optional[str] = None, config_path: Optional[str] = None):
    """Show the bridge server running for a workspace."""
    config = BridgeConfig.load(config_path)
    workspace_path = Path(workspace).resolve() if workspace else config.workspace_path

    console.print("[bold]Bridge Status[/bold]\n")

    found = find_server_for_workspace(workspace_path, config.discovery_dir)
    if found is None:
        path = server_details_path(workspace_path, config.discovery_dir)
        console.print("[yellow]![/yellow] No running bridge found")
        console.print(f"[dim]  Expected server details at: {path}[/dim]")
        console.print("[dim]  Start one with: idebridge serve[/dim]")
        return

    details, active = found
    if active:
        console.print(f"[green]✓[/green] Bridge running on port {details.port}")
        console.print(f"  PID: {details.pid}")
    else:
        console.print(f"[yellow]![/yellow] Stale server details (PID {details.pid} not running)")
    console.print(f"  Workspace: {details.workspace}")
    started = datetime.fromtimestamp(details.timestamp).isoformat(timespec="seconds")
    console.print(f"  Started: {started}")


@cli.command()
@click.option("--config-path", help="Path to config file to validate")
def doctor(config_path: Optional[str] = None):
    """Check bridge configuration and environment."""
    console.print("[bold cyan]idebridge doctor[/bold cyan]\n")

    # 1. Configuration
    config = BridgeConfig.load(config_path)
    warnings = validate_config(config)
    if warnings:
        console.print("[bold]1. Configuration:[/] [yellow]⚠[/yellow] loaded with warnings")
        for warning in warnings:
            console.print(f"   [dim]{warning}[/dim]")
    else:
        console.print("[bold]1. Configuration:[/] [green]✓[/green] valid")

    # 2. Loopback bind
    loopback_ok = True
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind((LOOPBACK_HOST, 0))
        console.print("[bold]2. Loopback:[/] [green]✓[/green] can bind to 127.0.0.1")
    except OSError as e:
        loopback_ok = False
        console.print(f"[bold]2. Loopback:[/] [red]✗[/red] cannot bind: {e}")

    # 3. Agents on PATH
    found_agents = [name for name in KNOWN_AGENTS if shutil.which(name)]
    if found_agents:
        console.print(f"[bold]3. Agents:[/] [green]✓[/green] {', '.join(found_agents)}")
    else:
        console.print("[bold]3. Agents:[/] [yellow]⚠[/yellow] no known agent CLI in PATH")

    console.print()
    if loopback_ok and not warnings:
        console.print("[bold green]✓ All checks passed - idebridge is ready![/bold green]")
    elif loopback_ok:
        console.print("[bold yellow]⚠ Some checks raised warnings - idebridge should work[/bold yellow]")
    else:
        console.print("[bold red]✗ Critical checks failed - idebridge cannot serve[/bold red]")


if __name__ == "__main__":
    cli()
