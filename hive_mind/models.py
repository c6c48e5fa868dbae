"""
Core data models for Hive Mind.

This module defines the data structures shared by discovery, dispatch,
solving and watching:
- Enums for monitoring scope, filter mode and watch state
- Dataclasses for work items, queue statistics, solve requests and results
- JSON serialization support where values cross a process boundary
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Optional


class Scope(Enum):
    """What a monitor URL points at."""
    REPOSITORY = auto()
    ORGANIZATION = auto()
    USER = auto()


class FilterMode(Enum):
    """
    How discovery selects issues.

    The modes are mutually exclusive.
    """
    LABEL = auto()                   # Open issues carrying a label
    ALL_OPEN = auto()                # Every open issue
    PROJECT = auto()                 # Issues in a project board status column


class WatchState(Enum):
    """
    States of the post-solve watch loop.

    ACTIVE and RESTARTING alternate; MERGED and SETTLED are terminal.
    """
    ACTIVE = auto()
    RESTARTING = auto()
    MERGED = auto()                  # Pull request accepted
    SETTLED = auto()                 # Temporary mode, no uncommitted changes left

    @property
    def is_terminal(self) -> bool:
        return self in (WatchState.MERGED, WatchState.SETTLED)


@dataclass(frozen=True)
class WorkItem:
    """
    An issue discovered in the tracking service.

    Identified by its URL. Immutable within a discovery cycle.
    """
    url: str
    title: str = ""
    number: int = 0
    owner: str = ""
    repo: str = ""
    labels: tuple[str, ...] = ()
    state: str = "OPEN"

    @property
    def key(self) -> str:
        """Stable queue identifier."""
        return self.url

    @property
    def repo_full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @classmethod
    def from_gh(
        cls,
        data: dict[str, Any],
        owner: Optional[str] = None,
        repo: Optional[str] = None,
    ) -> WorkItem:
        """
        Build a WorkItem from gh JSON output.

        Search results carry a ``repository`` object and project board items
        an ``"owner/repo"`` string; plain listing results carry neither, so
        the caller passes the repository coordinates explicitly.
        """
        repository = data.get("repository") or {}
        if isinstance(repository, str):
            repository = {"nameWithOwner": repository, "owner": repository.partition("/")[0]}
        item_owner = owner
        item_repo = repo
        if repository:
            repo_owner = repository.get("owner")
            if isinstance(repo_owner, dict):
                repo_owner = repo_owner.get("login")
            item_owner = item_owner or repo_owner
            name_with_owner = repository.get("nameWithOwner", "")
            item_repo = item_repo or repository.get("name") or name_with_owner.split("/")[-1]
        if not (item_owner and item_repo):
            parsed = _split_issue_url(data.get("url", ""))
            if parsed:
                item_owner = item_owner or parsed[0]
                item_repo = item_repo or parsed[1]

        labels = tuple(
            label.get("name", "") if isinstance(label, dict) else str(label)
            for label in data.get("labels") or []
        )
        return cls(
            url=data.get("url", ""),
            title=data.get("title", "") or "",
            number=int(data.get("number") or 0),
            owner=item_owner or "",
            repo=item_repo or "",
            labels=labels,
            state=str(data.get("state") or "OPEN").upper(),
        )


def _split_issue_url(url: str) -> Optional[tuple[str, str]]:
    parts = url.split("github.com/", 1)
    if len(parts) != 2:
        return None
    segments = parts[1].split("/")
    if len(segments) < 2:
        return None
    return segments[0], segments[1]


@dataclass
class QueueStats:
    """Snapshot of the job queue's four collections."""
    queued: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def active(self) -> int:
        """Items not yet in a terminal collection."""
        return self.queued + self.processing

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class MonitorTarget:
    """A parsed monitoring scope URL."""
    scope: Scope
    owner: str
    repo: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.owner}/{self.repo}" if self.repo else self.owner


@dataclass
class DiscoveryFilter:
    """Issue selection settings for one monitor run."""
    mode: FilterMode = FilterMode.LABEL
    label: str = "help wanted"
    project_number: Optional[int] = None
    project_owner: Optional[str] = None
    project_status: str = "Ready"

    def describe(self) -> str:
        """Human readable summary used in log output."""
        if self.mode == FilterMode.PROJECT:
            return f'project #{self.project_number} status "{self.project_status}"'
        if self.mode == FilterMode.ALL_OPEN:
            return "all open issues"
        return f'label "{self.label}"'


@dataclass
class RateLimitCursor:
    """
    Per-discovery-call throttling state.

    Exists only for the duration of one discovery call.
    """
    page_size: int = 0
    delay_budget_seconds: float = 0.0
    used_fallback: bool = False
    repositories_scanned: int = 0
    repositories_failed: int = 0


@dataclass
class LinkStatus:
    """Open pull requests that reference an issue."""
    open_link_count: int = 0
    links: list[dict[str, Any]] = field(default_factory=list)
    title: str = ""
    state: str = ""
    error: Optional[str] = None


@dataclass
class ResolutionState:
    """Merge status of a pull request."""
    merged: bool = False
    mergeable: str = "UNKNOWN"               # MERGEABLE, CONFLICTING, UNKNOWN
    merge_state_status: str = "UNKNOWN"      # CLEAN, DIRTY, BEHIND, BLOCKED, UNSTABLE, ...
    state: str = "OPEN"


@dataclass
class SolveRequest:
    """
    Everything one solver invocation needs.

    Replaces ambient process-wide flags: verbose mode and the current
    owner/repo travel with the request.
    """
    item_url: str
    owner: str
    repo: str
    issue_number: Optional[int] = None
    branch_name: str = ""
    working_dir: str = ""
    feedback_lines: list[str] = field(default_factory=list)
    resume_session_id: Optional[str] = None
    model: str = "sonnet"
    pr_number: Optional[int] = None
    pr_url: Optional[str] = None
    verbose: bool = False

    def with_feedback(self, feedback_lines: list[str]) -> SolveRequest:
        """Return a copy of this request carrying new feedback."""
        data = asdict(self)
        data["feedback_lines"] = list(feedback_lines)
        return SolveRequest(**data)


@dataclass
class AttemptResult:
    """
    Outcome of one solver invocation.

    Not persisted; consumed immediately by the worker or the resume protocol.
    """
    success: bool
    session_id: Optional[str] = None          # Continuation token
    limit_reached: bool = False
    limit_reset_time: Optional[str] = None    # e.g. "3:30pm"
    exit_code: int = 0
    message_count: int = 0
    tool_use_count: int = 0
    last_message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class WatchSession:
    """
    Ties a pull request to the issue it resolves and its branch.

    Created when a solve finishes and watch mode is requested or uncommitted
    changes remain; finished when the pull request is merged or, in temporary
    mode, when nothing is left uncommitted.
    """
    pr_number: int
    item_url: str
    owner: str
    repo: str
    branch_name: str
    working_dir: str
    issue_number: Optional[int] = None
    temporary: bool = False
    state: WatchState = WatchState.ACTIVE
    iteration: int = 0
    restarts: int = 0
    last_check: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def pr_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}/pull/{self.pr_number}"
