"""`hive-mind monitor` command."""
from __future__ import annotations

import logging
import signal
from typing import Optional

import typer

from hive_mind.cli.common import get_config_path, get_console, load_config_or_exit, setup_logging
from hive_mind.cli.display import config_panel, show_monitor_summary
from hive_mind.config import ConfigError, validate_config
from hive_mind.errors import GhCommandError, InvalidUrlError, get_user_action_message
from hive_mind.github.client import GitHubClient
from hive_mind.github.discovery import DiscoveryClient
from hive_mind.github.links import LinkStatusBatcher
from hive_mind.github.urls import parse_monitor_url
from hive_mind.job_queue import JobQueue
from hive_mind.logger import HiveLogger
from hive_mind.models import DiscoveryFilter, FilterMode, MonitorTarget, Scope
from hive_mind.monitor import MonitorLoop
from hive_mind.solvers.registry import SOLVERS
from hive_mind.worker_pool import DryRunRunner, SolveOptions, SolveProcessRunner, WorkerPool

console = get_console()
logger = logging.getLogger(__name__)

DEFAULT_LABEL = "help wanted"


def build_filter(
    monitor_tag: Optional[str],
    all_issues: bool,
    project_mode: bool,
    project_number: Optional[int],
    project_owner: Optional[str],
    project_status: str,
) -> DiscoveryFilter:
    """
    Turn the filter flags into a DiscoveryFilter.

    Raises:
        typer.BadParameter: If flags conflict or project settings are missing.
    """
    chosen = sum([monitor_tag is not None, all_issues, project_mode])
    if chosen > 1:
        raise typer.BadParameter(
            "--monitor-tag, --all-issues and --project-mode are mutually exclusive"
        )
    if project_mode:
        if project_number is None or not project_owner:
            raise typer.BadParameter("--project-mode requires --project-number and --project-owner")
        return DiscoveryFilter(
            mode=FilterMode.PROJECT,
            project_number=project_number,
            project_owner=project_owner,
            project_status=project_status,
        )
    if all_issues:
        return DiscoveryFilter(mode=FilterMode.ALL_OPEN)
    return DiscoveryFilter(mode=FilterMode.LABEL, label=monitor_tag or DEFAULT_LABEL)


def resolve_scope(target: MonitorTarget, client: GitHubClient) -> MonitorTarget:
    """Decide between organization and user scope for owner-only URLs."""
    if target.scope == Scope.REPOSITORY:
        return target
    try:
        owner_type = client.owner_type(target.owner)
    except GhCommandError as e:
        logger.warning("Could not determine account type of %s, assuming organization: %s", target.owner, e)
        return target
    scope = Scope.USER if owner_type == "User" else Scope.ORGANIZATION
    return MonitorTarget(scope=scope, owner=target.owner)


def monitor(
    url: str = typer.Argument(..., help="https://github.com/<owner> or https://github.com/<owner>/<repo>"),
    monitor_tag: Optional[str] = typer.Option(
        None, "--monitor-tag", "-t", help=f'Label to monitor (default: "{DEFAULT_LABEL}")'
    ),
    all_issues: bool = typer.Option(False, "--all-issues", "-a", help="Monitor every open issue"),
    project_mode: bool = typer.Option(False, "--project-mode", help="Take issues from a project board"),
    project_number: Optional[int] = typer.Option(None, "--project-number", help="Project board number"),
    project_owner: Optional[str] = typer.Option(None, "--project-owner", help="Project board owner"),
    project_status: str = typer.Option("Ready", "--project-status", help="Status column to take issues from"),
    skip_issues_with_prs: bool = typer.Option(
        False, "--skip-issues-with-prs", "-s", help="Skip issues that already have an open pull request"
    ),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-c", help="Number of parallel workers"),
    pull_requests_per_issue: Optional[int] = typer.Option(
        None, "--pull-requests-per-issue", "-p", help="Solve attempts per issue"
    ),
    interval: Optional[float] = typer.Option(None, "--interval", "-i", help="Seconds between discovery runs"),
    max_issues: Optional[int] = typer.Option(None, "--max-issues", help="Process at most this many issues per run"),
    once: bool = typer.Option(False, "--once", help="Run one discovery pass and exit when the queue drains"),
    dry_run: bool = typer.Option(False, "--dry-run", help="List what would be solved without running agents"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model passed to the agent"),
    tool: Optional[str] = typer.Option(None, "--tool", help=f"Agent CLI: {', '.join(sorted(SOLVERS))}"),
    fork: bool = typer.Option(False, "--fork", help="Work in forks instead of the upstream repositories"),
    watch: bool = typer.Option(False, "--watch", help="Watch pull requests for feedback after solving"),
    auto_continue: bool = typer.Option(
        False, "--auto-continue", help="Continue open pull requests left by earlier solves instead of opening new ones"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    log_dir: Optional[str] = typer.Option(None, "--log-dir", "-l", help="Directory for JSONL logs"),
) -> None:
    """
    Monitor a repository, organization or user for issues and solve them.
    """
    setup_logging(verbose)

    try:
        target = parse_monitor_url(url)
    except InvalidUrlError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    try:
        discovery_filter = build_filter(
            monitor_tag, all_issues, project_mode, project_number, project_owner, project_status
        )
    except typer.BadParameter as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if tool is not None and tool not in SOLVERS:
        console.print(f"[red]Error:[/red] Unknown tool '{tool}'. Available: {', '.join(sorted(SOLVERS))}")
        raise typer.Exit(1)

    config = load_config_or_exit(log_dir)
    if concurrency is not None:
        config.monitor.concurrency = concurrency
    if pull_requests_per_issue is not None:
        config.monitor.attempts_per_item = pull_requests_per_issue
    if interval is not None:
        config.monitor.interval_seconds = interval
    if max_issues is not None:
        config.monitor.max_items = max_issues
    try:
        validate_config(config)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    hive_logger = HiveLogger("monitor", config)
    client = GitHubClient(timeout=config.github.gh_timeout_seconds, logger=hive_logger)
    if not client.check_auth():
        console.print(
            "[red]GitHub CLI is not available or not authenticated.[/red]\n"
            "Run [cyan]gh auth login[/cyan] and try again."
        )
        raise typer.Exit(1)

    target = resolve_scope(target, client)

    options = SolveOptions(
        model=model,
        tool=tool,
        fork=fork,
        verbose=verbose,
        watch=watch,
        auto_continue=auto_continue,
        log_dir=log_dir,
        config_path=get_config_path(),
    )
    runner = DryRunRunner(options) if dry_run else SolveProcessRunner(options, logger=hive_logger)

    queue = JobQueue(logger=hive_logger)
    pool = WorkerPool(
        queue,
        runner,
        concurrency=config.monitor.concurrency,
        attempts_per_item=config.monitor.attempts_per_item,
        poll_interval=config.monitor.worker_poll_seconds,
        attempt_delay=config.monitor.attempt_delay_seconds,
        logger=hive_logger,
    )
    loop = MonitorLoop(
        config.monitor,
        target,
        discovery_filter,
        DiscoveryClient(client, config.github, logger=hive_logger),
        queue,
        pool,
        batcher=LinkStatusBatcher(client, config.github, logger=hive_logger),
        skip_items_with_links=skip_issues_with_prs,
        once=once,
        logger=hive_logger,
    )

    console.print(config_panel({
        "Target": f"{target.display_name} ({target.scope.name.lower()})",
        "Filter": discovery_filter.describe(),
        "Concurrency": config.monitor.concurrency,
        "Pull requests per issue": config.monitor.attempts_per_item,
        "Interval": "single pass" if once else f"{config.monitor.interval_seconds:.0f}s",
        "Max issues": config.monitor.max_items or "unlimited",
        "Skip issues with PRs": skip_issues_with_prs,
        "Continue open PRs": auto_continue,
        "Tool": tool or config.solver.tool,
        "Dry run": dry_run,
        "Logs": config.logs_path,
    }))

    def handle_signal(signum: int, frame: object) -> None:
        loop.request_shutdown()

    previous_handlers = {
        signum: signal.signal(signum, handle_signal) for signum in (signal.SIGINT, signal.SIGTERM)
    }

    try:
        summary = loop.run()
    except Exception as e:
        console.print(get_user_action_message(e))
        raise typer.Exit(1)
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)

    show_monitor_summary(console, summary)
