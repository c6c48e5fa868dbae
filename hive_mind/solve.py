"""
One solve of one work item.

The pipeline prepares a workspace, opens a draft pull request, runs the
selected agent, then either hands a limited session to the resume protocol
or follows up with watch mode until the pull request settles.
"""

from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Callable, ContextManager, Optional

from hive_mind.errors import GhCommandError
from hive_mind.git_ops import GitRepo
from hive_mind.github.urls import ItemRef, parse_item_url
from hive_mind.models import AttemptResult, SolveRequest, WatchSession, WatchState
from hive_mind.resume import ResumeProtocol
from hive_mind.solvers.prompts import task_marker_content
from hive_mind.watch import FeedbackDetector, WatchStateMachine, uncommitted_feedback
from hive_mind.workspace import Workspace, WorkspaceManager

if TYPE_CHECKING:
    from hive_mind.config import HiveConfig
    from hive_mind.github.client import GitHubClient
    from hive_mind.logger import HiveLogger
    from hive_mind.solvers.base import OutputSink, SolverAdapter

logger = logging.getLogger(__name__)

TASK_MARKER_FILE = "CLAUDE.md"
OUR_MARKER = "<!-- hive-mind -->"


@dataclass
class SolveRunOptions:
    """Options of `hive-mind solve`."""
    item_url: str
    resume_session_id: Optional[str] = None
    model: str = "sonnet"
    watch: bool = False
    watch_interval: Optional[float] = None
    auto_continue: bool = False
    auto_continue_limit: bool = False
    auto_commit_uncommitted_changes: bool = False
    auto_pull_request_creation: bool = True
    auto_cleanup: bool = True
    fork: bool = False
    base_branch: Optional[str] = None
    working_dir: Optional[str] = None
    verbose: bool = False
    dry_run: bool = False
    forward_args: list[str] = field(default_factory=list)


@dataclass
class SolveOutcome:
    """Summary of a finished solve, for display."""
    exit_code: int
    result: Optional[AttemptResult] = None
    pr_url: Optional[str] = None
    workspace: Optional[str] = None
    watch_state: Optional[WatchState] = None


class SolvePipeline:
    """Runs a single item from clone to settled pull request."""

    def __init__(
        self,
        config: HiveConfig,
        client: GitHubClient,
        solver: SolverAdapter,
        workspaces: Optional[WorkspaceManager] = None,
        resume: Optional[ResumeProtocol] = None,
        logger: Optional[HiveLogger] = None,
        sink: Optional[OutputSink] = None,
        git_factory: Callable[[str], GitRepo] = GitRepo,
    ) -> None:
        self.config = config
        self.client = client
        self.solver = solver
        self.workspaces = workspaces or WorkspaceManager(client, config.temp_dir, git_factory)
        self.resume = resume or ResumeProtocol(config.resume, logger=logger)
        self._logger = logger
        self._sink = sink or logger_line
        self._git_factory = git_factory
        self.outcome: Optional[SolveOutcome] = None

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            log_data = {"component": "solve"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def run(self, options: SolveRunOptions) -> int:
        """Run the pipeline. Returns the process exit code."""
        ref = parse_item_url(options.item_url)

        if options.dry_run:
            logger.info("[dry-run] Would solve %s with %s", ref.url, self.solver.name)
            self.outcome = SolveOutcome(exit_code=0)
            return 0

        if options.working_dir and Path(options.working_dir).is_dir():
            workspace = self.workspaces.reuse(ref, options.working_dir, options.base_branch)
        else:
            existing_pr = None
            if options.auto_continue and not ref.is_pull_request:
                existing_pr = self._find_existing_pull_request(ref)
            workspace = self.workspaces.prepare(
                ref, fork=options.fork, base_branch=options.base_branch, pr_number=existing_pr
            )

        keep_workspace = not options.auto_cleanup
        try:
            git = self._git_factory(workspace.path)
            self._log("workspace_ready", {"item": ref.url, "path": workspace.path, "branch": workspace.branch})

            request = SolveRequest(
                item_url=ref.url,
                owner=ref.owner,
                repo=ref.repo,
                issue_number=None if ref.is_pull_request else ref.number,
                branch_name=workspace.branch,
                working_dir=workspace.path,
                resume_session_id=options.resume_session_id,
                model=options.model,
                pr_number=workspace.existing_pr_number,
                verbose=options.verbose,
            )
            if request.pr_number:
                request.pr_url = f"https://github.com/{ref.owner}/{ref.repo}/pull/{request.pr_number}"

            marker_committed = False
            if (
                not ref.is_pull_request
                and options.auto_pull_request_creation
                and request.pr_number is None
            ):
                request, marker_committed = self._open_draft_pull_request(request, workspace, git)

            pending = git.status_porcelain()
            if pending:
                request = request.with_feedback(uncommitted_feedback(pending))

            result = self.solver.execute(request, self._sink)
            if result.session_id:
                logger.info("Session id: %s", result.session_id)

            with self._session_scope(result.session_id):
                if result.limit_reached:
                    keep_workspace = True
                    code = self.resume.handle(
                        request,
                        result,
                        auto_continue=options.auto_continue_limit,
                        forward_args=self._resume_args(options, workspace.path),
                    )
                    self.outcome = SolveOutcome(
                        exit_code=code if code is not None else 1,
                        result=result,
                        pr_url=request.pr_url,
                        workspace=workspace.path,
                    )
                    return self.outcome.exit_code

                if not result.success:
                    logger.error("Solver exited with code %d", result.exit_code)
                    self._log("solve_failed", {"item": ref.url, "exit_code": result.exit_code}, level="error")
                    self.outcome = SolveOutcome(exit_code=1, result=result, pr_url=request.pr_url, workspace=workspace.path)
                    return 1

                self._finish_successful_run(request, result, workspace, git, marker_committed, options)
                return 0
        finally:
            if not keep_workspace:
                self.workspaces.cleanup(workspace)

    def _session_scope(self, session_id: Optional[str]) -> ContextManager:
        """Tag log entries with the agent session while its result is handled."""
        if self._logger and session_id:
            return self._logger.session_context(session_id)
        return nullcontext()

    def _find_existing_pull_request(self, ref: ItemRef) -> Optional[int]:
        try:
            number = self.client.find_issue_pull_request(ref.owner, ref.repo, ref.number)
        except GhCommandError as e:
            logger.warning("Could not look for an existing pull request, opening a new one: %s", e)
            return None
        if number is not None:
            logger.info("Continuing existing pull request #%d for issue #%d", number, ref.number)
            self._log("pull_request_continued", {"item": ref.url, "pr": number})
        return number

    def _open_draft_pull_request(
        self,
        request: SolveRequest,
        workspace: Workspace,
        git: GitRepo,
    ) -> tuple[SolveRequest, bool]:
        issue = self.client.get_item(request.owner, request.repo, request.issue_number)
        marker = Path(workspace.path) / TASK_MARKER_FILE
        marker.write_text(task_marker_content(request))
        committed = git.commit_all(f"Initial commit with task details for issue #{request.issue_number}")
        git.push(workspace.branch)

        title = issue.get("title") or f"Issue #{request.issue_number}"
        body = (
            "## Work in progress\n\n"
            f"Resolves #{request.issue_number}\n\n"
            f"{OUR_MARKER}"
        )
        number, url = self.client.create_resolution(
            request.owner,
            request.repo,
            base=workspace.base_branch,
            head=workspace.head_ref(request.owner),
            title=f"[WIP] {title}",
            body=body,
            draft=True,
            cwd=workspace.path,
        )
        logger.info("Opened draft pull request %s", url)
        return replace(request, pr_number=number, pr_url=url), committed

    def _resume_args(self, options: SolveRunOptions, working_dir: str) -> list[str]:
        return list(options.forward_args) + ["--working-dir", working_dir]

    def _finish_successful_run(
        self,
        request: SolveRequest,
        result: AttemptResult,
        workspace: Workspace,
        git: GitRepo,
        marker_committed: bool,
        options: SolveRunOptions,
    ) -> None:
        if marker_committed and git.revert_last_commit_touching(TASK_MARKER_FILE):
            git.push(workspace.branch)

        pending = git.status_porcelain()
        if pending and options.auto_commit_uncommitted_changes:
            git.commit_all("Auto-commit changes left by the solver")
            git.push(workspace.branch)
            pending = []

        watch_state = None
        if request.pr_number and (options.watch or pending):
            session = WatchSession(
                pr_number=request.pr_number,
                item_url=request.item_url,
                owner=request.owner,
                repo=request.repo,
                branch_name=workspace.branch,
                working_dir=workspace.path,
                issue_number=request.issue_number,
                temporary=not options.watch,
            )
            watch_state = self._watch(session, request, result, options)

        self._log("solve_complete", {
            "item": request.item_url,
            "pr_url": request.pr_url,
            "session_id": result.session_id,
            "watch_state": watch_state.name if watch_state else None,
        })
        self.outcome = SolveOutcome(
            exit_code=0,
            result=result,
            pr_url=request.pr_url,
            workspace=workspace.path,
            watch_state=watch_state,
        )

    def _watch(
        self,
        session: WatchSession,
        request: SolveRequest,
        result: AttemptResult,
        options: SolveRunOptions,
    ) -> WatchState:
        latest_session = [result.session_id]

        def restart(watch_session: WatchSession, feedback: list[str]) -> bool:
            follow_up = replace(
                request.with_feedback(feedback),
                resume_session_id=latest_session[0],
            )
            outcome = self.solver.execute(follow_up, self._sink)
            if outcome.session_id:
                latest_session[0] = outcome.session_id
            if outcome.limit_reached:
                code = self.resume.handle(
                    follow_up,
                    outcome,
                    auto_continue=options.auto_continue_limit,
                    forward_args=self._resume_args(options, watch_session.working_dir),
                )
                return code == 0
            return outcome.success

        interval = options.watch_interval or self.config.watch.interval_seconds
        machine = WatchStateMachine(
            session=session,
            tracker=self.client,
            feedback=FeedbackDetector(self.client),
            restart=restart,
            git=self._git_factory(session.working_dir),
            interval=interval,
            logger=self._logger,
        )
        mode = "temporary watch" if session.temporary else "watch"
        logger.info("Entering %s for %s", mode, session.pr_url)
        return machine.run()


def logger_line(line: str) -> None:
    if line:
        logger.info("%s", line)
