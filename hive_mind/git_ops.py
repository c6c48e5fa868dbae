"""Git operations on a solve workspace."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Union


class GitError(RuntimeError):
    """Raised when a git command exits non-zero."""


class GitRepo:
    """Runs git commands inside one working directory."""

    def __init__(self, root: Union[str, Path], timeout: int = 120) -> None:
        self.root = Path(root)
        self.timeout = timeout

    def _run_git_command(self, args: list[str]) -> str:
        """Run a git command and return stdout.

        Raises:
            GitError: If the command fails.
        """
        result = subprocess.run(
            ["git"] + args,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            cwd=str(self.root),
        )
        if result.returncode != 0:
            raise GitError(f"git {' '.join(args)} failed: {result.stderr.strip()}")
        return result.stdout

    def status_porcelain(self) -> list[str]:
        """Changed paths in `git status --porcelain` form, one per entry."""
        output = self._run_git_command(["status", "--porcelain"])
        return [line for line in output.splitlines() if line.strip()]

    def has_uncommitted_changes(self) -> bool:
        return bool(self.status_porcelain())

    def current_branch(self) -> str:
        return self._run_git_command(["rev-parse", "--abbrev-ref", "HEAD"]).strip()

    def checkout_new_branch(self, name: str) -> None:
        self._run_git_command(["checkout", "-b", name])

    def checkout(self, name: str) -> None:
        self._run_git_command(["checkout", name])

    def commit_all(self, message: str) -> bool:
        """Stage everything and commit. Returns False when there was nothing to commit."""
        self._run_git_command(["add", "-A"])
        if not self.status_porcelain():
            return False
        self._run_git_command(["commit", "-m", message])
        return True

    def push(self, branch: str, remote: str = "origin", set_upstream: bool = True) -> None:
        args = ["push"]
        if set_upstream:
            args.append("-u")
        self._run_git_command(args + [remote, branch])

    def add_remote(self, name: str, url: str) -> None:
        self._run_git_command(["remote", "add", name, url])

    def revert_last_commit_touching(self, path: str) -> bool:
        """
        Revert the most recent commit that touched `path`.

        Returns False when no such commit exists.
        """
        sha = self._run_git_command(["log", "-n", "1", "--format=%H", "--", path]).strip()
        if not sha:
            return False
        self._run_git_command(["revert", "--no-edit", sha])
        return True
