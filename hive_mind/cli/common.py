"""Common utilities and global state for the CLI.

Contains the console singleton, config path handling and logging setup.
This module should NOT import from the command modules to avoid circular imports.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from hive_mind.config import HiveConfig

# ============================================================================
# Global State
# ============================================================================

# Config file override (set via --config flag)
_config_path: Optional[str] = None

# Console singleton
_console: Optional[Console] = None


def get_config_path() -> Optional[str]:
    """Get the config file override if set."""
    return _config_path


def set_config_path(path: Optional[str]) -> None:
    """Set the config file override."""
    global _config_path
    _config_path = path


def get_console() -> Console:
    """Get or create the console singleton."""
    global _console
    if _console is None:
        _console = Console()
    return _console


# ============================================================================
# Config Helpers
# ============================================================================


def load_config_or_exit(log_dir: Optional[str] = None) -> "HiveConfig":
    """
    Load configuration, printing the problem and exiting with code 1 when it is invalid.

    A --log-dir flag overrides the configured log directory.
    """
    from hive_mind.config import ConfigError, load_config

    try:
        config = load_config(get_config_path())
    except ConfigError as e:
        get_console().print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    if log_dir:
        config.log_dir = str(Path(log_dir).absolute())
    return config


def setup_logging(verbose: bool = False) -> None:
    """Route stdlib logging through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=get_console(), show_path=False, markup=False)],
        force=True,
    )
