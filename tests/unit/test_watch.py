"""
Unit tests for watch mode.

Tests cover:
- Merge detection ends the session
- Temporary sessions settle once nothing is left uncommitted
- Feedback triggers exactly one restart per check
- Tracking errors leave the state unchanged
- Feedback collection from comments, reviews and merge state
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from hive_mind.errors import GhCommandError
from hive_mind.models import ResolutionState, WatchSession, WatchState
from hive_mind.watch import FeedbackDetector, WatchStateMachine, uncommitted_feedback

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _ts(minutes):
    return (START + timedelta(minutes=minutes)).strftime("%Y-%m-%dT%H:%M:%SZ")


@pytest.fixture
def tracker():
    mock = MagicMock(name="Tracker")
    mock.check_resolution_state.return_value = ResolutionState(merge_state_status="CLEAN")
    mock.list_comments.return_value = []
    mock.list_review_comments.return_value = []
    mock.list_reviews.return_value = []
    return mock


@pytest.fixture
def git():
    mock = MagicMock(name="GitRepo")
    mock.has_uncommitted_changes.return_value = False
    mock.status_porcelain.return_value = []
    return mock


def _session(**overrides):
    values = dict(
        pr_number=9,
        item_url="https://github.com/acme/api/issues/4",
        owner="acme",
        repo="api",
        branch_name="issue-4-abcd1234",
        working_dir="/tmp/work",
        issue_number=4,
        last_check=START,
    )
    values.update(overrides)
    return WatchSession(**values)


def _machine(session, tracker, git, restart=None, now=START):
    clock = MagicMock(return_value=now)
    return WatchStateMachine(
        session,
        tracker,
        FeedbackDetector(tracker),
        restart or MagicMock(return_value=True),
        git,
        interval=0,
        sleep=lambda _: None,
        clock=clock,
    )


class TestWatchTransitions:
    """Tests for WatchStateMachine.tick."""

    def test_merged_pull_request_ends_watch(self, tracker, git):
        tracker.check_resolution_state.return_value = ResolutionState(merged=True, state="MERGED")
        restart = MagicMock()
        machine = _machine(_session(), tracker, git, restart)

        assert machine.tick() == WatchState.MERGED
        assert machine.tick() == WatchState.MERGED
        assert tracker.check_resolution_state.call_count == 1
        restart.assert_not_called()

    def test_no_feedback_stays_active(self, tracker, git):
        machine = _machine(_session(), tracker, git)
        assert machine.tick() == WatchState.ACTIVE
        assert machine.session.iteration == 1
        assert machine.session.restarts == 0

    def test_feedback_restarts_solver_once(self, tracker, git):
        tracker.list_comments.side_effect = lambda owner, repo, number: (
            [{"body": "Please add tests", "created_at": _ts(5), "user": {"login": "alice"}}]
            if number == 9 else []
        )
        restart = MagicMock(return_value=True)
        session = _session()
        machine = _machine(session, tracker, git, restart, now=START + timedelta(minutes=10))

        assert machine.tick() == WatchState.ACTIVE

        restart.assert_called_once()
        feedback = restart.call_args.args[1]
        assert feedback == ["New comment on pull request from alice: Please add tests"]
        assert session.restarts == 1
        assert session.last_check == START + timedelta(minutes=10)

    def test_failed_restart_still_returns_to_active(self, tracker, git):
        tracker.list_reviews.return_value = [
            {"state": "CHANGES_REQUESTED", "body": "Fix naming", "submitted_at": _ts(1), "user": {"login": "bob"}}
        ]
        restart = MagicMock(side_effect=RuntimeError("agent crashed"))
        session = _session()
        machine = _machine(session, tracker, git, restart)

        with pytest.raises(RuntimeError):
            machine.tick()
        assert session.state == WatchState.ACTIVE
        assert session.restarts == 1

    def test_unsuccessful_restart_keeps_feedback_for_next_check(self, tracker, git):
        tracker.list_comments.side_effect = lambda owner, repo, number: (
            [{"body": "Please add tests", "created_at": _ts(5), "user": {"login": "alice"}}]
            if number == 9 else []
        )
        tracker.check_resolution_state.return_value = ResolutionState(merge_state_status="BEHIND")
        restart = MagicMock(side_effect=[False, True])
        session = _session()
        machine = _machine(session, tracker, git, restart, now=START + timedelta(minutes=10))

        machine.tick()
        assert session.last_check == START
        machine.tick()

        assert restart.call_count == 2
        assert restart.call_args_list[0].args[1] == restart.call_args_list[1].args[1]
        assert len(restart.call_args_list[1].args[1]) == 2
        assert session.last_check == START + timedelta(minutes=10)

    def test_tracking_error_leaves_state_unchanged(self, tracker, git):
        tracker.check_resolution_state.side_effect = GhCommandError(["pr", "view"], stderr="HTTP 502")
        session = _session()
        machine = _machine(session, tracker, git)

        assert machine.tick() == WatchState.ACTIVE
        assert session.iteration == 0
        assert session.last_check == START

    def test_terminal_state_does_no_work(self, tracker, git):
        session = _session(state=WatchState.SETTLED)
        assert _machine(session, tracker, git).tick() == WatchState.SETTLED
        tracker.check_resolution_state.assert_not_called()


class TestTemporaryWatch:
    """Tests for temporary watch mode."""

    def test_first_tick_feeds_uncommitted_changes(self, tracker, git):
        git.status_porcelain.return_value = [" M src/app.py", "?? notes.txt"]
        git.has_uncommitted_changes.return_value = True
        restart = MagicMock(return_value=True)
        session = _session(temporary=True)

        _machine(session, tracker, git, restart).tick()

        feedback = restart.call_args.args[1]
        assert feedback[0] == "There are uncommitted changes in the repository:"
        assert "   M src/app.py" in feedback

    def test_settles_on_second_tick_without_restart(self, tracker, git):
        git.status_porcelain.return_value = [" M src/app.py"]
        restart = MagicMock(return_value=True)
        session = _session(temporary=True)
        machine = _machine(session, tracker, git, restart)

        machine.tick()
        assert restart.call_count == 1

        git.has_uncommitted_changes.return_value = False
        assert machine.tick() == WatchState.SETTLED
        assert restart.call_count == 1

    def test_run_returns_terminal_state(self, tracker, git):
        session = _session(temporary=True)
        assert _machine(session, tracker, git).run() == WatchState.SETTLED


class TestFeedbackDetector:
    """Tests for feedback collection."""

    def test_ignores_old_and_own_comments(self, tracker):
        tracker.list_comments.return_value = [
            {"body": "old", "created_at": _ts(-5), "user": {"login": "a"}},
            {"body": "<!-- hive-mind --> status", "created_at": _ts(5), "user": {"login": "bot"}},
        ]
        assert FeedbackDetector(tracker).detect(_session(), since=START) == []

    def test_ignores_comments_from_authenticated_account(self, tracker):
        tracker.current_user.return_value = "hive-bot"
        tracker.list_comments.return_value = [
            {"body": "I addressed the review, pushed fixes.", "created_at": _ts(5), "user": {"login": "hive-bot"}},
            {"body": "Thanks, one more thing", "created_at": _ts(6), "user": {"login": "alice"}},
        ]
        detector = FeedbackDetector(tracker)

        lines = detector.detect(_session(issue_number=None), since=START)
        detector.detect(_session(issue_number=None), since=START)

        assert lines == ["New comment on pull request from alice: Thanks, one more thing"]
        tracker.current_user.assert_called_once()

    def test_review_comment_includes_location(self, tracker):
        tracker.list_review_comments.return_value = [
            {"body": "typo", "path": "app.py", "line": 12, "created_at": _ts(1), "user": {"login": "c"}}
        ]
        lines = FeedbackDetector(tracker).detect(_session(issue_number=None), since=START)
        assert lines == ["New review comment from c on app.py:12: typo"]

    def test_bare_approval_is_not_feedback(self, tracker):
        tracker.list_reviews.return_value = [
            {"state": "APPROVED", "body": "", "submitted_at": _ts(1), "user": {"login": "d"}}
        ]
        assert FeedbackDetector(tracker).detect(_session(), since=START) == []

    def test_merge_state_reported_once_per_change(self, tracker):
        detector = FeedbackDetector(tracker)
        blocked = ResolutionState(merge_state_status="BLOCKED")

        first = detector.detect(_session(), since=START, resolution=blocked)
        second = detector.detect(_session(), since=START, resolution=blocked)
        dirty = detector.detect(_session(), since=START, resolution=ResolutionState(merge_state_status="DIRTY"))

        assert len(first) == 1
        assert second == []
        assert "merge conflicts" in dirty[0]

    def test_uncommitted_feedback_empty_for_clean_tree(self):
        assert uncommitted_feedback([]) == []
