"""
Temporary working copies for solves.

Each solve gets a fresh clone in a temporary directory, on a new
`issue-<n>-<hex>` branch for issues or on the head branch of the pull
request being continued.
"""

from __future__ import annotations

import logging
import secrets
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

from hive_mind.git_ops import GitRepo

if TYPE_CHECKING:
    from hive_mind.github.client import GitHubClient
    from hive_mind.github.urls import ItemRef

logger = logging.getLogger(__name__)


def branch_name_for_issue(number: int) -> str:
    return f"issue-{number}-{secrets.token_hex(4)}"


@dataclass
class Workspace:
    """A prepared clone and the branch work happens on."""
    path: str
    branch: str
    base_branch: str
    head_owner: str
    existing_pr_number: Optional[int] = None
    reused: bool = False

    def head_ref(self, owner: str) -> str:
        """Head reference for a pull request against `owner`'s repository."""
        return self.branch if self.head_owner == owner else f"{self.head_owner}:{self.branch}"


class WorkspaceManager:
    """Clones repositories and sets up branches for solving."""

    def __init__(
        self,
        client: GitHubClient,
        temp_dir: str = "/tmp",
        git_factory: Callable[[str], GitRepo] = GitRepo,
    ) -> None:
        self.client = client
        self.temp_dir = temp_dir
        self.git_factory = git_factory

    def prepare(
        self,
        ref: ItemRef,
        fork: bool = False,
        base_branch: Optional[str] = None,
        pr_number: Optional[int] = None,
    ) -> Workspace:
        """
        Clone the repository and check out the branch to work on.

        Pull request URLs, and issues given the `pr_number` of an earlier
        pull request, continue on that pull request's head branch. The
        temporary directory is removed again when any step fails.
        """
        Path(self.temp_dir).mkdir(parents=True, exist_ok=True)
        path = tempfile.mkdtemp(prefix=f"hive-{ref.repo}-", dir=self.temp_dir)
        try:
            return self._populate(path, ref, fork, base_branch, pr_number)
        except Exception:
            shutil.rmtree(path, ignore_errors=True)
            raise

    def _populate(
        self,
        path: str,
        ref: ItemRef,
        fork: bool,
        base_branch: Optional[str],
        pr_number: Optional[int],
    ) -> Workspace:
        head_owner = ref.owner
        if fork:
            self.client.fork(ref.owner, ref.repo)
            head_owner = self.client.current_user()
        logger.info("Cloning %s/%s into %s", head_owner, ref.repo, path)
        self.client.clone(head_owner, ref.repo, path)
        git = self.git_factory(path)

        if ref.is_pull_request:
            pr_number = ref.number
        if pr_number is not None:
            pr = self.client.get_pull_request(ref.owner, ref.repo, pr_number)
            branch = pr.get("headRefName", "")
            git.checkout(branch)
            return Workspace(
                path=path,
                branch=branch,
                base_branch=pr.get("baseRefName") or base_branch or "main",
                head_owner=head_owner,
                existing_pr_number=pr_number,
            )

        branch = branch_name_for_issue(ref.number)
        git.checkout_new_branch(branch)
        return Workspace(
            path=path,
            branch=branch,
            base_branch=base_branch or self.client.default_branch(ref.owner, ref.repo),
            head_owner=head_owner,
        )

    def reuse(self, ref: ItemRef, path: str, base_branch: Optional[str] = None) -> Workspace:
        """Pick up a workspace left behind by a limited session."""
        git = self.git_factory(path)
        branch = git.current_branch()
        pr_number = ref.number if ref.is_pull_request else self.client.find_linked_pull_request(
            ref.owner, ref.repo, branch
        )
        logger.info("Reusing workspace %s on branch %s", path, branch)
        return Workspace(
            path=path,
            branch=branch,
            base_branch=base_branch or self.client.default_branch(ref.owner, ref.repo),
            head_owner=ref.owner,
            existing_pr_number=pr_number,
            reused=True,
        )

    def cleanup(self, workspace: Workspace) -> None:
        logger.debug("Removing %s", workspace.path)
        shutil.rmtree(workspace.path, ignore_errors=True)
