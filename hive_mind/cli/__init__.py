"""CLI package for hive-mind.

Modules:
    app.py      - Main Typer app, version/config callback, command registration
    monitor.py  - `hive-mind monitor <url>`: discovery loop with a worker pool
    solve.py    - `hive-mind solve <url>`: one solve with resume and watch mode
    display.py  - Rich formatting utilities (stats table, panels, output sink)
    common.py   - Shared helpers (get_console, load_config_or_exit, setup_logging)

Usage:
    from hive_mind.cli import app, cli_main
"""
from hive_mind.cli.app import app, cli_main

__all__ = ["app", "cli_main"]
