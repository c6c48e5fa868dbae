"""Display helpers and formatters for the CLI.

Contains Rich formatting utilities for queue stats, run configuration,
resume guidance and agent output.
This module should NOT import from the command modules to avoid circular imports.
"""
from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Callable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from hive_mind.models import QueueStats, WatchState

if TYPE_CHECKING:
    from hive_mind.monitor import MonitorSummary
    from hive_mind.resume import ResumeGuidance
    from hive_mind.solve import SolveOutcome

WATCH_STATE_DISPLAY: dict[WatchState, tuple[str, str]] = {
    WatchState.ACTIVE: ("Watching", "cyan"),
    WatchState.RESTARTING: ("Restarting", "yellow"),
    WatchState.MERGED: ("Merged", "green bold"),
    WatchState.SETTLED: ("Settled", "green"),
}


def format_watch_state(state: WatchState) -> Text:
    """Format a watch state as colored text."""
    display_name, style = WATCH_STATE_DISPLAY.get(state, (state.name, "white"))
    return Text(display_name, style=style)


def stats_table(stats: QueueStats, title: str = "Queue") -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Queued", justify="right", style="cyan")
    table.add_column("Processing", justify="right", style="yellow")
    table.add_column("Completed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_row(str(stats.queued), str(stats.processing), str(stats.completed), str(stats.failed))
    return table


def config_panel(settings: dict[str, Any], title: str = "Monitor configuration") -> Panel:
    """Key/value panel shown before a run starts."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="dim")
    table.add_column()
    for key, value in settings.items():
        table.add_row(key, str(value))
    return Panel(table, title=title, border_style="blue")


def show_monitor_summary(console: Console, summary: MonitorSummary) -> None:
    console.print()
    console.print(stats_table(summary.final_stats, title="Final queue state"))
    console.print(f"[dim]Iterations:[/dim] {summary.iterations}")
    if summary.discovery_failures:
        console.print(f"[yellow]Discovery failures:[/yellow] {summary.discovery_failures}")
    if summary.interrupted:
        console.print("[yellow]Stopped by signal[/yellow]")


def show_resume_guidance(console: Console, guidance: ResumeGuidance) -> None:
    lines = [f"[bold]Usage limit reached[/bold] while solving {guidance.item_url}", ""]
    if guidance.reset_time:
        lines.append(f"Limit resets at: [cyan]{guidance.reset_time}[/cyan]")
    if guidance.session_id:
        lines.append(f"Session id: [cyan]{guidance.session_id}[/cyan]")
        lines.append("")
        lines.append("To resume manually:")
        lines.append(f"  [green]{guidance.command}[/green]")
        lines.append("")
        lines.append("Or continue automatically after the reset with --auto-continue-limit")
    else:
        lines.append("No session id was captured; the item has to be solved from scratch.")
    console.print(Panel("\n".join(lines), border_style="yellow", title="Limit reached"))


def show_solve_summary(console: Console, outcome: Optional[SolveOutcome]) -> None:
    if outcome is None or outcome.result is None:
        return
    result = outcome.result
    table = Table.grid(padding=(0, 2))
    table.add_column(style="dim")
    table.add_column()
    table.add_row("Exit code", str(result.exit_code))
    if result.session_id:
        table.add_row("Session", result.session_id)
    table.add_row("Messages", str(result.message_count))
    table.add_row("Tool uses", str(result.tool_use_count))
    if outcome.pr_url:
        table.add_row("Pull request", outcome.pr_url)
    if outcome.watch_state is not None:
        table.add_row("Watch", format_watch_state(outcome.watch_state))
    border = "green" if outcome.exit_code == 0 else "red"
    console.print(Panel(table, title="Solve summary", border_style=border))


def make_output_sink(console: Console, verbose: bool = False) -> Callable[[str], None]:
    """
    Printer for agent output lines.

    Verbose mode prints every raw line. Otherwise only assistant text and
    tool names are shown, plus any non-JSON line.
    """

    def sink(line: str) -> None:
        if not line:
            return
        if verbose:
            console.print(line, markup=False, highlight=False)
            return
        if not line.lstrip().startswith("{"):
            console.print(line, markup=False, highlight=False)
            return
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            console.print(line, markup=False, highlight=False)
            return
        if not isinstance(event, dict) or event.get("type") != "assistant":
            return
        for block in (event.get("message") or {}).get("content") or []:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text" and block.get("text"):
                console.print(block["text"], markup=False, highlight=False)
            elif block.get("type") == "tool_use":
                console.print(Text(f"-> {block.get('name', 'tool')}", style="dim"))

    return sink
