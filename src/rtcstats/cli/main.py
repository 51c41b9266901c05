# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Main CLI entry point for the rtcstats server.
"""

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Optional

import click
import requests
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..shared.config import Config
from ..worker.features import extract

# Create console for rich output
console = Console()


@click.group(invoke_without_command=True)
@click.option(
    "--version",
    is_flag=True,
    help="Show version and exit"
)
@click.pass_context
def cli(ctx, version: bool):
    """
    rtcstats - streaming telemetry ingestion and extraction.

    Examples:
        rtcstats serve --port 3000
        rtcstats extract 0b6c7a1e-... --work-dir temp
        rtcstats health --server http://localhost:3000
    """
    if version:
        click.echo(f"rtcstats version {__version__}")
        ctx.exit()

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option(
    "--config-dir",
    envvar="RTCSTATS_CONFIG_DIR",
    type=click.Path(file_okay=False),
    help="Directory containing config.yaml"
)
@click.option(
    "--port", "-p",
    type=int,
    help="Port to listen on (overrides config)"
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level (overrides config)"
)
def serve(config_dir: Optional[str], port: Optional[int], log_level: Optional[str]):
    """Run the ingestion server."""
    from ..processing.server import main as server_main

    config = Config(config_dir=config_dir)
    if port is not None:
        config.set("server.port", port)
    if log_level is not None:
        config.set("logging.level", log_level)

    asyncio.run(server_main(config))


@cli.command("extract")
@click.argument("session_id")
@click.option(
    "--work-dir", "-d",
    type=click.Path(exists=True, file_okay=False),
    default=lambda: os.environ.get("RTCSTATS_WORK_DIR", "temp"),
    help="Directory holding session logs"
)
@click.option(
    "--format", "-f",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format"
)
def extract_command(session_id: str, work_dir: str, format: str):
    """Run feature extraction on one session log and print the results."""
    path = Path(work_dir) / session_id
    try:
        with open(path, encoding="utf-8") as f:
            results = extract(session_id, f)
    except (OSError, ValueError, TypeError) as e:
        console.print(f"[red]Error:[/red] cannot extract {session_id}: {e}")
        sys.exit(1)

    if format == "json":
        click.echo(json.dumps([r.to_message() for r in results], indent=2))
        return

    table = Table(title=f"Session {session_id}")
    table.add_column("Connection", style="cyan")
    table.add_column("Events", justify="right")
    table.add_column("Connected")
    table.add_column("ICE states")
    table.add_column("Tracks")

    for result in results:
        connection = result.connection_features
        table.add_row(
            result.connection_id or "-",
            str(connection.get("eventCount", result.client_features.get("eventCount", 0))),
            "yes" if connection.get("connected") else "no",
            " → ".join(connection.get("iceConnectionStates", [])) or "-",
            ", ".join(result.stream_features.get("trackKinds", [])) or "-",
        )

    console.print(table)
    client = results[0].client_features if results else {}
    console.print(
        f"[bold]Client:[/bold] {client.get('userAgent')} "
        f"origin={client.get('origin')} gUM={client.get('getUserMediaCalls', 0)}"
    )


@cli.command()
@click.option(
    "--server",
    envvar="RTCSTATS_SERVER",
    default="http://localhost:3000",
    help="Server URL"
)
@click.option(
    "--timeout",
    type=float,
    default=5.0,
    help="Request timeout in seconds"
)
def health(server: str, timeout: float):
    """Check the server's liveness endpoint."""
    url = server.rstrip("/") + "/healthcheck"
    try:
        response = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        console.print(f"[red]✗[/red] Cannot reach server: {e}", style="bold red")
        sys.exit(1)

    if response.status_code != 200:
        console.print(f"[red]✗[/red] Unhealthy: HTTP {response.status_code}")
        sys.exit(1)

    console.print("[green]✓[/green] Server is healthy")


def main():
    """Main entry point for the CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
