"""Main CLI entry point - serve the daemon or talk to a running one."""

import os
import sys
from typing import Optional

import typer

from vcce.core.configs import get_server_config, load_raw_config
from vcce.daemon.client import DaemonClient

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="VCCE - file system, shell and AI daemon for code editors.",
)


def _client(host: Optional[str], port: Optional[int]) -> DaemonClient:
    try:
        config = get_server_config(load_raw_config())
    except ValueError as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        raise typer.Exit(1)
    return DaemonClient(host=host or config.host, port=port or config.port)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Listen address (default: 127.0.0.1)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Listen port (default: $PORT or 7071)"),
) -> None:
    """Run the daemon in the foreground."""
    from vcce.daemon.server import run_daemon

    run_daemon(host=host, port=port)


@app.command()
def status(
    host: Optional[str] = typer.Option(None, "--host", help="Daemon address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Daemon port"),
) -> None:
    """Show daemon health and AI status."""
    client = _client(host, port)
    try:
        with client:
            health = client.request("health")
            ai = client.request("aiStatus")
    except OSError as e:
        typer.echo(f"Daemon not reachable on {client.host}:{client.port}: {e}", err=True)
        raise typer.Exit(1)

    from vcce.ui.status_commands import show_status

    show_status(f"{client.host}:{client.port}", health.get("data"), ai.get("data"))


@app.command()
def run(
    command: str = typer.Argument(..., help="Shell command to run on the daemon"),
    cwd: Optional[str] = typer.Option(None, "--cwd", help="Working directory (default: current)"),
    host: Optional[str] = typer.Option(None, "--host", help="Daemon address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Daemon port"),
) -> None:
    """Run a shell command through the daemon, streaming its output."""
    client = _client(host, port)
    exit_code = 1
    try:
        with client:
            for message in client.exec_stream(command, cwd=cwd or os.getcwd()):
                if "ok" in message:
                    if not message["ok"]:
                        typer.echo(f"Error: {message.get('data')}", err=True)
                        raise typer.Exit(1)
                elif message["event"] == "stdout":
                    sys.stdout.write(message.get("data", ""))
                    sys.stdout.flush()
                elif message["event"] == "stderr":
                    sys.stderr.write(message.get("data", ""))
                    sys.stderr.flush()
                else:
                    exit_code = message.get("code")
    except OSError as e:
        typer.echo(f"Daemon not reachable on {client.host}:{client.port}: {e}", err=True)
        raise typer.Exit(1)

    # Signal deaths arrive as negative codes
    raise typer.Exit(exit_code if isinstance(exit_code, int) and exit_code >= 0 else 1)


def main() -> None:
    """Entry point for console script mapping."""
    app()


if __name__ == "__main__":
    main()
