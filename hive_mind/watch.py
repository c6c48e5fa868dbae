"""
Post-solve watch mode.

After a solve opens a pull request, the watch loop keeps an eye on it:

    ACTIVE --feedback--> RESTARTING --solver done--> ACTIVE
    ACTIVE --merged--> MERGED
    ACTIVE --temporary, nothing uncommitted--> SETTLED

Feedback is anything a human (or the repository) asked for since the last
check: new comments, reviews, review comments and merge-state problems.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol

from hive_mind.errors import HiveError
from hive_mind.git_ops import GitError
from hive_mind.models import ResolutionState, WatchSession, WatchState

if TYPE_CHECKING:
    from hive_mind.logger import HiveLogger

logger = logging.getLogger(__name__)

# Comments carrying one of these were written by us
BOT_MARKERS = ("<!-- hive-mind", "AI work session", "Solution draft log")

MERGE_STATE_FEEDBACK = {
    "DIRTY": "The pull request has merge conflicts with the base branch. Resolve them.",
    "BEHIND": "The pull request branch is behind the base branch. Update it.",
    "BLOCKED": "The pull request is blocked from merging. Check required reviews and checks.",
    "UNSTABLE": "Some pull request checks are failing. Fix them.",
}


class Tracker(Protocol):
    def check_resolution_state(self, owner: str, repo: str, pr_number: int) -> ResolutionState: ...
    def list_comments(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]: ...
    def list_review_comments(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]: ...
    def list_reviews(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]: ...
    def current_user(self) -> str: ...


class WorkingCopy(Protocol):
    def status_porcelain(self) -> list[str]: ...
    def has_uncommitted_changes(self) -> bool: ...


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _is_ours(entry: dict[str, Any]) -> bool:
    body = entry.get("body") or ""
    return any(marker in body for marker in BOT_MARKERS)


def _author(entry: dict[str, Any]) -> str:
    return (entry.get("user") or {}).get("login", "someone")


def uncommitted_feedback(status_lines: list[str]) -> list[str]:
    """Describe leftover uncommitted changes as feedback lines."""
    if not status_lines:
        return []
    lines = ["There are uncommitted changes in the repository:"]
    lines.extend(f"  {line}" for line in status_lines)
    lines.append("Commit the changes that belong to the solution and discard the rest.")
    return lines


class FeedbackDetector:
    """
    Collects new reviewer feedback on a watched pull request.

    Entries carrying one of our markers, or written by the authenticated
    account itself, are not feedback.
    """

    def __init__(self, tracker: Tracker) -> None:
        self.tracker = tracker
        self._reported_merge_state: Optional[str] = None
        self._own_login: Optional[str] = None

    @property
    def own_login(self) -> str:
        if self._own_login is None:
            self._own_login = self.tracker.current_user()
        return self._own_login

    def forget_merge_state(self) -> None:
        """Report the current merge state again on the next detect."""
        self._reported_merge_state = None

    def detect(
        self,
        session: WatchSession,
        since: datetime,
        resolution: Optional[ResolutionState] = None,
    ) -> list[str]:
        lines: list[str] = []
        owner, repo, pr = session.owner, session.repo, session.pr_number

        for comment in self._new(self.tracker.list_comments(owner, repo, pr), "created_at", since):
            lines.append(f"New comment on pull request from {_author(comment)}: {comment.get('body', '').strip()}")

        for comment in self._new(self.tracker.list_review_comments(owner, repo, pr), "created_at", since):
            location = comment.get("path", "")
            if comment.get("line"):
                location += f":{comment['line']}"
            lines.append(
                f"New review comment from {_author(comment)} on {location}: {comment.get('body', '').strip()}"
            )

        for review in self._new(self.tracker.list_reviews(owner, repo, pr), "submitted_at", since):
            state = review.get("state", "COMMENTED")
            body = (review.get("body") or "").strip()
            if state == "APPROVED" and not body:
                continue
            lines.append(f"New review ({state}) from {_author(review)}" + (f": {body}" if body else ""))

        if session.issue_number:
            for comment in self._new(
                self.tracker.list_comments(owner, repo, session.issue_number), "created_at", since
            ):
                lines.append(f"New comment on issue from {_author(comment)}: {comment.get('body', '').strip()}")

        if resolution is not None:
            status = resolution.merge_state_status
            if status in MERGE_STATE_FEEDBACK and status != self._reported_merge_state:
                lines.append(MERGE_STATE_FEEDBACK[status])
            self._reported_merge_state = status

        return lines

    def _new(self, entries: list[dict[str, Any]], key: str, since: datetime) -> list[dict[str, Any]]:
        fresh = []
        for entry in entries or []:
            if _is_ours(entry) or _author(entry) == self.own_login:
                continue
            created = _parse_timestamp(entry.get(key))
            if created is not None and created > since:
                fresh.append(entry)
        return fresh


class WatchStateMachine:
    """Drives one WatchSession until it reaches a terminal state."""

    def __init__(
        self,
        session: WatchSession,
        tracker: Tracker,
        feedback: FeedbackDetector,
        restart: Callable[[WatchSession, list[str]], bool],
        git: WorkingCopy,
        interval: float = 60.0,
        sleep: Callable[[float], Any] = time.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        logger: Optional[HiveLogger] = None,
    ) -> None:
        self.session = session
        self.tracker = tracker
        self.feedback = feedback
        self.restart = restart
        self.git = git
        self.interval = interval
        self._sleep = sleep
        self._clock = clock
        self._logger = logger

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            log_data = {"component": "watch", "pr": self.session.pr_number}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def _transition(self, state: WatchState) -> None:
        if self.session.state != state:
            logger.debug("Watch state %s -> %s", self.session.state.name, state.name)
            self.session.state = state

    def tick(self) -> WatchState:
        """Run one check. Tracking-service errors leave the state unchanged."""
        session = self.session
        if session.state.is_terminal:
            return session.state

        check_started = self._clock()
        first_tick = session.iteration == 0
        try:
            resolution = self.tracker.check_resolution_state(session.owner, session.repo, session.pr_number)
            if resolution.merged:
                logger.info("Pull request %s was merged", session.pr_url)
                self._log("pr_merged")
                self._transition(WatchState.MERGED)
                return session.state

            if session.temporary and not first_tick and not self.git.has_uncommitted_changes():
                logger.info("No uncommitted changes left, leaving temporary watch")
                self._log("watch_settled")
                self._transition(WatchState.SETTLED)
                return session.state

            feedback = self.feedback.detect(session, since=session.last_check, resolution=resolution)
            if session.temporary and first_tick:
                feedback = uncommitted_feedback(self.git.status_porcelain()) + feedback
        except (HiveError, GitError) as e:
            logger.warning("Watch check failed, will retry: %s", e)
            self._log("watch_check_failed", {"error": str(e)}, level="warn")
            return session.state

        session.iteration += 1
        previous_check = session.last_check
        session.last_check = check_started
        if not feedback:
            return session.state

        logger.info("Detected %d feedback item(s), restarting solver", len(feedback))
        self._log("feedback_detected", {"count": len(feedback)})
        self._transition(WatchState.RESTARTING)
        ok = False
        try:
            ok = self.restart(session, feedback)
        finally:
            if not ok:
                # Same feedback is picked up again on the next check
                logger.warning("Solver restart for %s did not succeed", session.pr_url)
                session.last_check = previous_check
                self.feedback.forget_merge_state()
            session.restarts += 1
            self._transition(WatchState.ACTIVE)
        return session.state

    def run(self, stop_event: Optional[threading.Event] = None) -> WatchState:
        """Tick until the session is terminal or the stop event is set."""
        logger.info("Watching %s every %.0fs", self.session.pr_url, self.interval)
        while True:
            state = self.tick()
            if state.is_terminal:
                return state
            if stop_event is not None:
                if stop_event.wait(self.interval):
                    return self.session.state
            else:
                self._sleep(self.interval)
