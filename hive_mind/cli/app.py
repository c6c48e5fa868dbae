"""Main Typer app definition and routing.

This is the canonical entry point for the CLI. The app, callback, and
command registrations are all defined here.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from hive_mind import __version__
from hive_mind.cli.common import get_console, set_config_path

app = typer.Typer(
    name="hive-mind",
    help="Discover GitHub issues and dispatch them to AI coding agents",
    add_completion=False,
)

console = get_console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"hive-mind version {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to hive.yaml (default: ./hive.yaml if present)",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    Hive Mind - issue monitor and solver supervisor.

    Watches repositories, organizations or users for issues and runs an AI
    coding agent on each one until its pull request is merged.
    """
    if config:
        if not Path(config).is_file():
            console.print(f"[red]Error: Config file not found: {config}[/red]")
            raise typer.Exit(1)
        set_config_path(str(Path(config).absolute()))
    else:
        set_config_path(None)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


# =========================================================================
# Command Registration
# =========================================================================

from hive_mind.cli.monitor import monitor  # noqa: E402
from hive_mind.cli.solve import solve  # noqa: E402

app.command(name="monitor")(monitor)
app.command(name="solve")(solve)


def cli_main() -> None:
    """Entry point for the CLI."""
    app()


__all__ = ["app", "cli_main"]
