"""Tests for the gh CLI client."""

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from hive_mind.errors import ErrorCategory, GhCommandError
from hive_mind.github.client import GitHubClient


def _completed(stdout="", stderr="", returncode=0):
    return MagicMock(stdout=stdout, stderr=stderr, returncode=returncode)


@pytest.fixture
def run():
    with patch("hive_mind.github.client.subprocess.run") as mock_run:
        yield mock_run


class TestCheckAuth:
    """Tests for check_auth."""

    def test_authenticated_is_cached(self, run):
        run.return_value = _completed(returncode=0)
        client = GitHubClient()
        assert client.check_auth() is True
        assert client.check_auth() is True
        assert run.call_count == 1

    def test_not_installed(self, run):
        run.side_effect = FileNotFoundError()
        assert GitHubClient().check_auth() is False

    def test_not_authenticated(self, run):
        run.return_value = _completed(stderr="You are not logged in", returncode=1)
        assert GitHubClient().check_auth() is False


class TestRun:
    """Tests for command execution."""

    def test_failure_raises_with_stderr(self, run):
        run.return_value = _completed(stderr="HTTP 403: API rate limit exceeded", returncode=1)
        with pytest.raises(GhCommandError) as exc_info:
            GitHubClient().run(["issue", "list"])
        assert exc_info.value.category == ErrorCategory.TRANSIENT_RATE_LIMIT
        assert exc_info.value.command_args == ["issue", "list"]

    def test_timeout_raises(self, run):
        run.side_effect = subprocess.TimeoutExpired(cmd="gh", timeout=1)
        with pytest.raises(GhCommandError, match="timed out"):
            GitHubClient(timeout=1).run(["api", "user"])

    def test_invalid_json_raises(self, run):
        run.return_value = _completed(stdout="not json")
        with pytest.raises(GhCommandError, match="Invalid JSON"):
            GitHubClient().run_json(["api", "user"])

    def test_empty_output_decodes_to_none(self, run):
        run.return_value = _completed(stdout="  \n")
        assert GitHubClient().run_json(["api", "user"]) is None


class TestCommands:
    """Tests for the argument lists of individual calls."""

    def test_search_items(self, run):
        run.return_value = _completed(stdout=json.dumps([{"url": "u"}]))
        assert GitHubClient().search_items(["org:acme", "is:open"], 100) == [{"url": "u"}]
        args = run.call_args.args[0]
        assert args[:3] == ["gh", "search", "issues"]
        assert args[args.index("--limit") + 1] == "100"
        assert "repository" in args[args.index("--json") + 1]

    def test_list_items_requests_issue_fields(self, run):
        run.return_value = _completed(stdout="[]")
        GitHubClient().list_items(["--repo", "acme/api", "--limit", "1000"])
        args = run.call_args.args[0]
        assert args[:3] == ["gh", "issue", "list"]
        assert args[-2:] == ["--json", "url,title,number,labels,state"]

    def test_project_items_unwraps_items(self, run):
        run.return_value = _completed(stdout=json.dumps({"items": [{"id": 1}]}))
        assert GitHubClient().list_project_items(3, "acme") == [{"id": 1}]

    def test_create_resolution_parses_number(self, run):
        run.return_value = _completed(stdout="Creating pull request\nhttps://github.com/acme/api/pull/12\n")
        number, url = GitHubClient().create_resolution(
            "acme", "api", base="main", head="issue-4-ab", title="[WIP] x", body="b"
        )
        assert number == 12
        assert url == "https://github.com/acme/api/pull/12"
        assert "--draft" in run.call_args.args[0]

    def test_resolution_state(self, run):
        run.return_value = _completed(stdout=json.dumps({
            "state": "OPEN", "mergeable": "CONFLICTING", "mergeStateStatus": "DIRTY", "mergedAt": None,
        }))
        state = GitHubClient().check_resolution_state("acme", "api", 12)
        assert state.merged is False
        assert state.merge_state_status == "DIRTY"

    def test_merged_resolution_state(self, run):
        run.return_value = _completed(stdout=json.dumps({"state": "MERGED", "mergedAt": "2026-03-01T00:00:00Z"}))
        assert GitHubClient().check_resolution_state("acme", "api", 12).merged is True

    def test_find_linked_pull_request(self, run):
        run.return_value = _completed(stdout=json.dumps([{"number": 9}]))
        assert GitHubClient().find_linked_pull_request("acme", "api", "issue-4-ab") == 9
        run.return_value = _completed(stdout="[]")
        assert GitHubClient().find_linked_pull_request("acme", "api", "issue-4-ab") is None

    def test_find_issue_pull_request_matches_branch_prefix(self, run):
        run.return_value = _completed(stdout=json.dumps([
            {"number": 3, "headRefName": "issue-40-aaaa0000"},
            {"number": 5, "headRefName": "issue-4-bbbb1111"},
        ]))
        assert GitHubClient().find_issue_pull_request("acme", "api", 4) == 5
        assert "--state" in run.call_args.args[0]
        run.return_value = _completed(stdout=json.dumps([{"number": 3, "headRefName": "feature"}]))
        assert GitHubClient().find_issue_pull_request("acme", "api", 4) is None
