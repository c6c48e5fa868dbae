"""
GitHub access through the gh CLI.

This module wraps every tracking-service call Hive Mind makes:
- Issue listing and search for discovery
- Repository listing for the per-repository fallback
- Comments, review comments and reviews for watch mode
- Pull request creation and merge-state checks
- Raw GraphQL and REST calls for link-status batching

Failures raise GhCommandError, which carries the gh stderr so callers can
classify rate limits.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from typing import TYPE_CHECKING, Any, Optional

from hive_mind.errors import GhCommandError
from hive_mind.models import ResolutionState

if TYPE_CHECKING:
    from hive_mind.logger import HiveLogger

logger = logging.getLogger(__name__)

ISSUE_FIELDS = "url,title,number,labels,state"
SEARCH_FIELDS = "url,title,number,repository,labels,state"


class GitHubClient:
    """
    Thin gh CLI client.

    Holds no throttling state of its own; delays are applied by the
    discovery and link-status layers.
    """

    def __init__(
        self,
        timeout: int = 120,
        gh_binary: str = "gh",
        logger: Optional[HiveLogger] = None,
    ) -> None:
        self.timeout = timeout
        self.gh_binary = gh_binary
        self._logger = logger
        self._gh_available: Optional[bool] = None

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        """Log an event if logger is configured."""
        if self._logger:
            log_data = {"component": "github_client"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def check_auth(self) -> bool:
        """
        Check if gh CLI is available and authenticated.

        Results are cached after first check.
        """
        if self._gh_available is not None:
            return self._gh_available

        try:
            result = subprocess.run(
                [self.gh_binary, "auth", "status"],
                capture_output=True,
                text=True,
                timeout=10,
            )
            self._gh_available = result.returncode == 0
            if not self._gh_available:
                self._log("gh_auth_failed", {
                    "stderr": result.stderr[:200] if result.stderr else "",
                }, level="warn")
        except FileNotFoundError:
            self._gh_available = False
            self._log("gh_not_found", level="warn")
        except subprocess.TimeoutExpired:
            self._gh_available = False
            self._log("gh_timeout", level="warn")

        return self._gh_available

    def _run_gh_command(
        self,
        args: list[str],
        timeout: Optional[int] = None,
        cwd: Optional[str] = None,
    ) -> tuple[bool, str, str]:
        """
        Run a gh CLI command.

        Returns:
            Tuple of (success, stdout, stderr).
        """
        logger.debug("gh %s", " ".join(args))
        try:
            result = subprocess.run(
                [self.gh_binary] + args,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
            )
            return result.returncode == 0, result.stdout, result.stderr
        except subprocess.TimeoutExpired:
            return False, "", "Command timed out"
        except FileNotFoundError:
            return False, "", "gh CLI not found"

    def run(self, args: list[str], cwd: Optional[str] = None) -> str:
        """Run gh and return stdout, raising GhCommandError on failure."""
        success, stdout, stderr = self._run_gh_command(args, cwd=cwd)
        if not success:
            self._log("gh_command_failed", {"args": args[:4], "stderr": stderr[:300]}, level="warn")
            raise GhCommandError(args, stderr)
        return stdout

    def run_json(self, args: list[str], cwd: Optional[str] = None) -> Any:
        """Run gh and decode its JSON output. Empty output decodes to None."""
        stdout = self.run(args, cwd=cwd)
        if not stdout.strip():
            return None
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as e:
            raise GhCommandError(args, f"Invalid JSON from gh: {e}")

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def list_items(self, args: list[str]) -> list[dict[str, Any]]:
        """Run `gh issue list` with the given selection arguments."""
        data = self.run_json(["issue", "list"] + args + ["--json", ISSUE_FIELDS])
        return data or []

    def search_items(self, query: list[str], limit: int) -> list[dict[str, Any]]:
        """Run `gh search issues` with the given qualifiers."""
        data = self.run_json(
            ["search", "issues"] + query + ["--limit", str(limit), "--json", SEARCH_FIELDS]
        )
        return data or []

    def list_repositories(self, owner: str, limit: int = 1000) -> list[dict[str, Any]]:
        data = self.run_json(
            ["repo", "list", owner, "--limit", str(limit), "--json", "name,owner,isArchived"]
        )
        return data or []

    def list_project_items(self, number: int, owner: str, limit: int = 100) -> list[dict[str, Any]]:
        data = self.run_json([
            "project", "item-list", str(number),
            "--owner", owner,
            "--format", "json",
            "--limit", str(limit),
        ])
        if isinstance(data, dict):
            return data.get("items") or []
        return data or []

    def owner_type(self, owner: str) -> str:
        """Return "Organization" or "User" for an account."""
        return self.run(["api", f"users/{owner}", "--jq", ".type"]).strip()

    # ------------------------------------------------------------------
    # Items and conversations
    # ------------------------------------------------------------------

    def get_item(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        return self.run_json([
            "issue", "view", str(number),
            "--repo", f"{owner}/{repo}",
            "--json", "url,title,number,body,state,labels",
        ]) or {}

    def get_pull_request(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        return self.run_json([
            "pr", "view", str(number),
            "--repo", f"{owner}/{repo}",
            "--json", "url,title,number,body,state,headRefName,baseRefName,isDraft",
        ]) or {}

    def list_comments(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        """Conversation comments on an issue or pull request."""
        return self.run_json(
            ["api", f"repos/{owner}/{repo}/issues/{number}/comments", "--paginate"]
        ) or []

    def list_review_comments(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        """Inline code review comments on a pull request."""
        return self.run_json(
            ["api", f"repos/{owner}/{repo}/pulls/{number}/comments", "--paginate"]
        ) or []

    def list_reviews(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        return self.run_json(
            ["api", f"repos/{owner}/{repo}/pulls/{number}/reviews", "--paginate"]
        ) or []

    def find_linked_pull_request(self, owner: str, repo: str, branch: str) -> Optional[int]:
        """Find an open pull request whose head is `branch`."""
        data = self.run_json([
            "pr", "list",
            "--repo", f"{owner}/{repo}",
            "--head", branch,
            "--json", "number",
            "--limit", "1",
        ]) or []
        return int(data[0]["number"]) if data else None

    def find_issue_pull_request(self, owner: str, repo: str, issue_number: int) -> Optional[int]:
        """Find an open pull request on an `issue-<n>-*` branch from an earlier solve."""
        prefix = f"issue-{issue_number}-"
        data = self.run_json([
            "pr", "list",
            "--repo", f"{owner}/{repo}",
            "--state", "open",
            "--json", "number,headRefName",
            "--limit", "100",
        ]) or []
        for pr in data:
            if str(pr.get("headRefName", "")).startswith(prefix):
                return int(pr["number"])
        return None

    # ------------------------------------------------------------------
    # Resolutions
    # ------------------------------------------------------------------

    def create_resolution(
        self,
        owner: str,
        repo: str,
        base: str,
        head: str,
        title: str,
        body: str,
        draft: bool = True,
        cwd: Optional[str] = None,
    ) -> tuple[int, str]:
        """
        Open a pull request.

        Returns:
            Tuple of (pull request number, pull request URL).
        """
        args = [
            "pr", "create",
            "--repo", f"{owner}/{repo}",
            "--base", base,
            "--head", head,
            "--title", title,
            "--body", body,
        ]
        if draft:
            args.append("--draft")
        stdout = self.run(args, cwd=cwd).strip()
        url = stdout.splitlines()[-1] if stdout else ""
        match = re.search(r"/pull/(\d+)", url)
        if not match:
            raise GhCommandError(args, f"Could not parse pull request URL from: {stdout[:200]}")
        self._log("pull_request_created", {"url": url, "draft": draft})
        return int(match.group(1)), url

    def check_resolution_state(self, owner: str, repo: str, pr_number: int) -> ResolutionState:
        data = self.run_json([
            "pr", "view", str(pr_number),
            "--repo", f"{owner}/{repo}",
            "--json", "state,mergeable,mergeStateStatus,mergedAt",
        ]) or {}
        state = str(data.get("state") or "OPEN").upper()
        return ResolutionState(
            merged=state == "MERGED" or bool(data.get("mergedAt")),
            mergeable=str(data.get("mergeable") or "UNKNOWN"),
            merge_state_status=str(data.get("mergeStateStatus") or "UNKNOWN"),
            state=state,
        )

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    def default_branch(self, owner: str, repo: str) -> str:
        branch = self.run([
            "repo", "view", f"{owner}/{repo}",
            "--json", "defaultBranchRef",
            "--jq", ".defaultBranchRef.name",
        ]).strip()
        return branch or "main"

    def current_user(self) -> str:
        return self.run(["api", "user", "--jq", ".login"]).strip()

    def clone(self, owner: str, repo: str, dest: str) -> None:
        self.run(["repo", "clone", f"{owner}/{repo}", dest])

    def fork(self, owner: str, repo: str) -> None:
        """Create a fork under the authenticated account (no-op if it exists)."""
        self.run(["repo", "fork", f"{owner}/{repo}", "--clone=false"])

    # ------------------------------------------------------------------
    # Raw access
    # ------------------------------------------------------------------

    def graphql(self, query: str) -> dict[str, Any]:
        return self.run_json(["api", "graphql", "-f", f"query={query}"]) or {}

    def api(self, path: str, jq: Optional[str] = None) -> str:
        args = ["api", path]
        if jq:
            args += ["--jq", jq]
        return self.run(args)
