"""Tests for git operations and workspace preparation."""

from unittest.mock import MagicMock, call, patch

import pytest

from hive_mind.errors import GhCommandError
from hive_mind.git_ops import GitError, GitRepo
from hive_mind.github.urls import parse_item_url
from hive_mind.workspace import Workspace, WorkspaceManager, branch_name_for_issue


def _completed(stdout="", stderr="", returncode=0):
    return MagicMock(stdout=stdout, stderr=stderr, returncode=returncode)


class TestGitRepo:
    """Tests for GitRepo."""

    def test_status_porcelain(self, tmp_path):
        with patch("hive_mind.git_ops.subprocess.run", return_value=_completed(" M a.py\n?? b.txt\n\n")) as run:
            assert GitRepo(tmp_path).status_porcelain() == [" M a.py", "?? b.txt"]
        assert run.call_args.kwargs["cwd"] == str(tmp_path)

    def test_failure_raises(self, tmp_path):
        with patch("hive_mind.git_ops.subprocess.run", return_value=_completed(stderr="fatal: bad", returncode=128)):
            with pytest.raises(GitError, match="fatal: bad"):
                GitRepo(tmp_path).current_branch()

    def test_commit_all_nothing_to_commit(self, tmp_path):
        with patch("hive_mind.git_ops.subprocess.run", return_value=_completed("")) as run:
            assert GitRepo(tmp_path).commit_all("msg") is False
        commands = [c.args[0][1] for c in run.call_args_list]
        assert commands == ["add", "status"]

    def test_commit_all_commits(self, tmp_path):
        outputs = [_completed(), _completed("A  CLAUDE.md\n"), _completed()]
        with patch("hive_mind.git_ops.subprocess.run", side_effect=outputs) as run:
            assert GitRepo(tmp_path).commit_all("Initial commit") is True
        assert run.call_args.args[0] == ["git", "commit", "-m", "Initial commit"]

    def test_revert_last_commit_touching(self, tmp_path):
        outputs = [_completed("abc123\n"), _completed()]
        with patch("hive_mind.git_ops.subprocess.run", side_effect=outputs) as run:
            assert GitRepo(tmp_path).revert_last_commit_touching("CLAUDE.md") is True
        assert run.call_args.args[0] == ["git", "revert", "--no-edit", "abc123"]

    def test_revert_without_matching_commit(self, tmp_path):
        with patch("hive_mind.git_ops.subprocess.run", return_value=_completed("")):
            assert GitRepo(tmp_path).revert_last_commit_touching("CLAUDE.md") is False


class TestWorkspaceManager:
    """Tests for WorkspaceManager."""

    def test_branch_name(self):
        name = branch_name_for_issue(42)
        assert name.startswith("issue-42-")
        assert len(name.split("-")[-1]) == 8

    def test_prepare_issue(self, tmp_path, gh):
        gh.default_branch.return_value = "develop"
        git = MagicMock()
        manager = WorkspaceManager(gh, str(tmp_path), git_factory=lambda path: git)

        workspace = manager.prepare(parse_item_url("https://github.com/acme/api/issues/4"))

        assert workspace.path.startswith(str(tmp_path))
        assert workspace.branch.startswith("issue-4-")
        assert workspace.base_branch == "develop"
        assert workspace.existing_pr_number is None
        gh.clone.assert_called_once_with("acme", "api", workspace.path)
        git.checkout_new_branch.assert_called_once_with(workspace.branch)

    def test_prepare_pull_request(self, tmp_path, gh):
        gh.get_pull_request.return_value = {"headRefName": "feature-x", "baseRefName": "main"}
        git = MagicMock()
        manager = WorkspaceManager(gh, str(tmp_path), git_factory=lambda path: git)

        workspace = manager.prepare(parse_item_url("https://github.com/acme/api/pull/9"))

        assert workspace.branch == "feature-x"
        assert workspace.existing_pr_number == 9
        git.checkout.assert_called_once_with("feature-x")

    def test_prepare_with_fork(self, tmp_path, gh):
        gh.current_user.return_value = "me"
        gh.default_branch.return_value = "main"
        manager = WorkspaceManager(gh, str(tmp_path), git_factory=lambda path: MagicMock())

        workspace = manager.prepare(parse_item_url("https://github.com/acme/api/issues/4"), fork=True)

        gh.fork.assert_called_once_with("acme", "api")
        assert gh.clone.call_args == call("me", "api", workspace.path)
        assert workspace.head_ref("acme") == f"me:{workspace.branch}"

    def test_prepare_issue_continuing_pull_request(self, tmp_path, gh):
        gh.get_pull_request.return_value = {"headRefName": "issue-4-cafe0001", "baseRefName": "main"}
        git = MagicMock()
        manager = WorkspaceManager(gh, str(tmp_path), git_factory=lambda path: git)

        workspace = manager.prepare(parse_item_url("https://github.com/acme/api/issues/4"), pr_number=7)

        gh.get_pull_request.assert_called_once_with("acme", "api", 7)
        assert workspace.branch == "issue-4-cafe0001"
        assert workspace.existing_pr_number == 7
        git.checkout_new_branch.assert_not_called()

    def test_failed_clone_removes_directory(self, tmp_path, gh):
        gh.clone.side_effect = GhCommandError(["repo", "clone"], stderr="HTTP 404")
        manager = WorkspaceManager(gh, str(tmp_path / "work"))

        with pytest.raises(GhCommandError):
            manager.prepare(parse_item_url("https://github.com/acme/api/issues/4"))

        assert list((tmp_path / "work").iterdir()) == []

    def test_reuse(self, tmp_path, gh):
        gh.find_linked_pull_request.return_value = 11
        git = MagicMock()
        git.current_branch.return_value = "issue-4-cafe0001"
        manager = WorkspaceManager(gh, str(tmp_path), git_factory=lambda path: git)

        workspace = manager.reuse(parse_item_url("https://github.com/acme/api/issues/4"), str(tmp_path), "main")

        assert workspace.reused is True
        assert workspace.branch == "issue-4-cafe0001"
        assert workspace.existing_pr_number == 11

    def test_cleanup_removes_directory(self, tmp_path, gh):
        path = tmp_path / "hive-api-x"
        path.mkdir()
        WorkspaceManager(gh, str(tmp_path)).cleanup(Workspace(str(path), "b", "main", "acme"))
        assert not path.exists()
