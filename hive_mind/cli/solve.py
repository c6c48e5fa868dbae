"""`hive-mind solve` command."""
from __future__ import annotations

from typing import Optional

import typer

from hive_mind.cli.common import get_config_path, get_console, load_config_or_exit, setup_logging
from hive_mind.cli.display import make_output_sink, show_resume_guidance, show_solve_summary
from hive_mind.config import ConfigError
from hive_mind.errors import HiveError, InvalidUrlError, get_user_action_message
from hive_mind.git_ops import GitError
from hive_mind.github.client import GitHubClient
from hive_mind.github.urls import parse_item_url
from hive_mind.logger import HiveLogger
from hive_mind.resume import ResumeProtocol
from hive_mind.solve import SolvePipeline, SolveRunOptions
from hive_mind.solvers.registry import get_solver

console = get_console()


def build_forward_args(
    model: Optional[str],
    tool: Optional[str],
    watch: bool,
    watch_interval: Optional[float],
    auto_commit_uncommitted_changes: bool,
    auto_pull_request_creation: bool,
    auto_cleanup: bool,
    fork: bool,
    base_branch: Optional[str],
    verbose: bool,
    log_dir: Optional[str],
    auto_continue: bool = False,
) -> list[str]:
    """Flags a resumed run must carry over, minus --resume and --auto-continue-limit."""
    args: list[str] = []
    if model:
        args += ["--model", model]
    if tool:
        args += ["--tool", tool]
    if watch:
        args.append("--watch")
    if watch_interval is not None:
        args += ["--watch-interval", str(watch_interval)]
    if auto_commit_uncommitted_changes:
        args.append("--auto-commit-uncommitted-changes")
    if not auto_pull_request_creation:
        args.append("--no-auto-pull-request-creation")
    if not auto_cleanup:
        args.append("--no-auto-cleanup")
    if fork:
        args.append("--fork")
    if base_branch:
        args += ["--base-branch", base_branch]
    if verbose:
        args.append("--verbose")
    if log_dir:
        args += ["--log-dir", log_dir]
    if auto_continue:
        args.append("--auto-continue")
    return args


def solve(
    url: str = typer.Argument(..., help="Issue or pull request URL"),
    resume: Optional[str] = typer.Option(None, "--resume", "-r", help="Session id to resume"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model passed to the agent"),
    tool: Optional[str] = typer.Option(None, "--tool", help="Agent CLI to run"),
    watch: bool = typer.Option(False, "--watch/--no-watch", help="Watch the pull request for feedback until merged"),
    watch_interval: Optional[float] = typer.Option(None, "--watch-interval", help="Seconds between feedback checks"),
    auto_continue: bool = typer.Option(
        False, "--auto-continue", help="Continue an open pull request left by an earlier solve of the issue"
    ),
    auto_continue_limit: bool = typer.Option(
        False, "--auto-continue-limit", help="Wait for a usage limit to reset and resume automatically"
    ),
    auto_commit_uncommitted_changes: bool = typer.Option(
        False, "--auto-commit-uncommitted-changes", help="Commit changes the agent left uncommitted"
    ),
    auto_pull_request_creation: bool = typer.Option(
        True,
        "--auto-pull-request-creation/--no-auto-pull-request-creation",
        help="Open a draft pull request before the agent starts",
    ),
    auto_cleanup: bool = typer.Option(
        True, "--auto-cleanup/--no-auto-cleanup", help="Remove the temporary clone when done"
    ),
    fork: bool = typer.Option(False, "--fork", help="Work in a fork"),
    base_branch: Optional[str] = typer.Option(None, "--base-branch", help="Base branch for the pull request"),
    working_dir: Optional[str] = typer.Option(
        None, "--working-dir", hidden=True, help="Reuse a workspace left by a limited session"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print raw agent output and debug logs"),
    log_dir: Optional[str] = typer.Option(None, "--log-dir", "-l", help="Directory for JSONL logs"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate and show what would run"),
) -> None:
    """
    Solve one issue, or continue work on one pull request.
    """
    setup_logging(verbose)

    try:
        ref = parse_item_url(url)
    except InvalidUrlError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    config = load_config_or_exit(log_dir)
    hive_logger = HiveLogger(f"solve-{ref.owner}-{ref.repo}-{ref.number}", config)

    try:
        solver = get_solver(tool or config.solver.tool, config, logger=hive_logger)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    client = GitHubClient(timeout=config.github.gh_timeout_seconds, logger=hive_logger)
    if not dry_run and not client.check_auth():
        console.print(
            "[red]GitHub CLI is not available or not authenticated.[/red]\n"
            "Run [cyan]gh auth login[/cyan] and try again."
        )
        raise typer.Exit(1)

    options = SolveRunOptions(
        item_url=ref.url,
        resume_session_id=resume,
        model=model or config.solver.model,
        watch=watch,
        watch_interval=watch_interval,
        auto_continue=auto_continue,
        auto_continue_limit=auto_continue_limit,
        auto_commit_uncommitted_changes=auto_commit_uncommitted_changes,
        auto_pull_request_creation=auto_pull_request_creation,
        auto_cleanup=auto_cleanup,
        fork=fork,
        base_branch=base_branch,
        working_dir=working_dir,
        verbose=verbose,
        dry_run=dry_run,
        forward_args=build_forward_args(
            model, tool, watch, watch_interval, auto_commit_uncommitted_changes,
            auto_pull_request_creation, auto_cleanup, fork, base_branch, verbose, log_dir,
            auto_continue=auto_continue,
        ),
    )
    pipeline = SolvePipeline(
        config,
        client,
        solver,
        resume=ResumeProtocol(
            config.resume,
            logger=hive_logger,
            on_guidance=lambda guidance: show_resume_guidance(console, guidance),
            config_path=get_config_path(),
        ),
        logger=hive_logger,
        sink=make_output_sink(console, verbose),
    )

    try:
        exit_code = pipeline.run(options)
    except (HiveError, GitError) as e:
        console.print(get_user_action_message(e))
        raise typer.Exit(1)

    show_solve_summary(console, pipeline.outcome)
    if exit_code != 0:
        raise typer.Exit(exit_code)
