"""
Rate-limit-aware issue discovery.

Every primary query follows the same protocol:

1. Sleep the API delay.
2. Run once with the page ceiling for the query kind (search or listing).
3. Warn when the result count reaches the ceiling; more items may exist.
4. Sleep the API delay again.

A rate-limited query fails immediately with DiscoveryError(rate_limited=True)
so the caller can switch strategy. Any other failure is retried exactly once
with the smaller fallback page size.

Organization and user scopes that hit the rate limit fall back to walking
the owner's repositories one at a time.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional

from hive_mind.config import GitHubConfig
from hive_mind.errors import DiscoveryError, ErrorClassifier, GhCommandError
from hive_mind.models import (
    DiscoveryFilter,
    FilterMode,
    MonitorTarget,
    RateLimitCursor,
    Scope,
    WorkItem,
)

if TYPE_CHECKING:
    from hive_mind.github.client import GitHubClient
    from hive_mind.logger import HiveLogger

logger = logging.getLogger(__name__)

SEARCH = "search"
LISTING = "list"


@dataclass
class DiscoveryQuery:
    """
    One primary query against the tracking service.

    `args` holds the selection arguments without the page limit, which the
    protocol adds.
    """
    kind: str
    args: list[str] = field(default_factory=list)
    owner: Optional[str] = None
    repo: Optional[str] = None

    @property
    def description(self) -> str:
        return f"{self.kind} {' '.join(self.args)}"


def build_listing_query(owner: str, repo: str, filter: DiscoveryFilter) -> DiscoveryQuery:
    args = ["--repo", f"{owner}/{repo}", "--state", "open"]
    if filter.mode == FilterMode.LABEL:
        args += ["--label", filter.label]
    return DiscoveryQuery(kind=LISTING, args=args, owner=owner, repo=repo)


def build_search_query(target: MonitorTarget, filter: DiscoveryFilter) -> DiscoveryQuery:
    qualifier = "user" if target.scope == Scope.USER else "org"
    args = [f"{qualifier}:{target.owner}", "is:issue", "is:open"]
    if filter.mode == FilterMode.LABEL:
        args.append(f'label:"{filter.label}"')
    return DiscoveryQuery(kind=SEARCH, args=args, owner=target.owner)


class DiscoveryClient:
    """
    Discovers open work items while respecting API rate limits.

    The cursor of the most recent call is kept in `last_cursor` for
    reporting.
    """

    def __init__(
        self,
        client: GitHubClient,
        config: Optional[GitHubConfig] = None,
        logger: Optional[HiveLogger] = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self.client = client
        self.config = config or GitHubConfig()
        self._logger = logger
        self._sleep = sleep
        self.last_cursor: Optional[RateLimitCursor] = None

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            log_data = {"component": "discovery"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def _delay(self, seconds: float, cursor: RateLimitCursor) -> None:
        if seconds > 0:
            self._sleep(seconds)
            cursor.delay_budget_seconds += seconds

    def _execute(self, query: DiscoveryQuery, limit: int) -> list[WorkItem]:
        if query.kind == SEARCH:
            raw = self.client.search_items(query.args, limit)
            return [WorkItem.from_gh(entry) for entry in raw]
        raw = self.client.list_items(query.args + ["--limit", str(limit)])
        return [WorkItem.from_gh(entry, owner=query.owner, repo=query.repo) for entry in raw]

    def discover(
        self,
        query: DiscoveryQuery,
        cursor: Optional[RateLimitCursor] = None,
    ) -> list[WorkItem]:
        """
        Run one primary query under the pagination protocol.

        Raises:
            DiscoveryError: rate_limited=True on throttling, False when the
                fallback retry also fails.
        """
        cursor = cursor or RateLimitCursor()
        page_size = (
            self.config.search_page_size if query.kind == SEARCH else self.config.list_page_size
        )
        cursor.page_size = page_size

        self._delay(self.config.api_delay_seconds, cursor)
        try:
            items = self._execute(query, page_size)
        except GhCommandError as e:
            if ErrorClassifier.is_github_rate_limit(e.stderr or str(e)):
                logger.warning("Rate limit hit during %s", query.description)
                self._log("rate_limited", {"query": query.description}, level="warn")
                raise DiscoveryError(
                    f"Rate limited while running {query.kind} query", rate_limited=True, cause=e
                )

            logger.warning("Query failed (%s), retrying with smaller limit", e)
            self._delay(self.config.repo_delay_seconds, cursor)
            page_size = self.config.fallback_page_size
            cursor.page_size = page_size
            try:
                items = self._execute(query, page_size)
            except GhCommandError as retry_error:
                self._log(
                    "discovery_query_failed",
                    {"query": query.description, "error": str(retry_error)},
                    level="error",
                )
                raise DiscoveryError(
                    f"Discovery query failed after retry: {retry_error}",
                    rate_limited=False,
                    cause=retry_error,
                )

        if len(items) >= page_size:
            logger.warning(
                "Fetched %d items, which is the limit for this query; more may exist",
                len(items),
            )
            self._log("page_limit_reached", {"query": query.description, "limit": page_size}, level="warn")

        self._delay(self.config.api_delay_seconds, cursor)
        return items

    def discover_by_repository(
        self,
        owner: str,
        filter: DiscoveryFilter,
        cursor: Optional[RateLimitCursor] = None,
    ) -> list[WorkItem]:
        """
        Walk the owner's repositories one listing query at a time.

        Repositories that fail are logged and skipped.
        """
        cursor = cursor or RateLimitCursor()
        cursor.used_fallback = True

        try:
            repos = self.client.list_repositories(owner, limit=self.config.list_page_size)
        except GhCommandError as e:
            raise DiscoveryError(
                f"Could not list repositories for {owner}: {e}",
                rate_limited=ErrorClassifier.is_github_rate_limit(e.stderr),
                cause=e,
            )

        repos = [r for r in repos if not r.get("isArchived")]
        logger.info("Scanning %d repositories of %s individually", len(repos), owner)

        items: list[WorkItem] = []
        for index, repo_data in enumerate(repos):
            repo_owner = repo_data.get("owner")
            if isinstance(repo_owner, dict):
                repo_owner = repo_owner.get("login")
            repo_owner = repo_owner or owner
            name = repo_data.get("name", "")
            if index > 0:
                self._delay(self.config.repo_delay_seconds, cursor)

            try:
                found = self.discover(build_listing_query(repo_owner, name, filter), cursor)
            except DiscoveryError as e:
                cursor.repositories_failed += 1
                logger.warning("Skipping %s/%s: %s", repo_owner, name, e)
                self._log("repository_skipped", {"repo": f"{repo_owner}/{name}", "error": str(e)}, level="warn")
                continue

            cursor.repositories_scanned += 1
            if found:
                logger.info("Found %d issues in %s/%s", len(found), repo_owner, name)
            items.extend(found)

        return items

    def fetch_project_items(
        self,
        filter: DiscoveryFilter,
        cursor: Optional[RateLimitCursor] = None,
    ) -> list[WorkItem]:
        """Issues on a project board whose Status column matches the filter."""
        cursor = cursor or RateLimitCursor()
        if filter.project_number is None or not filter.project_owner:
            raise DiscoveryError("Project mode requires a project number and owner")

        self._delay(self.config.api_delay_seconds, cursor)
        try:
            raw = self.client.list_project_items(
                filter.project_number, filter.project_owner, limit=self.config.search_page_size
            )
        except GhCommandError as e:
            raise DiscoveryError(
                f"Could not list project items: {e}",
                rate_limited=ErrorClassifier.is_github_rate_limit(e.stderr),
                cause=e,
            )
        self._delay(self.config.api_delay_seconds, cursor)

        items = []
        for entry in raw:
            content = entry.get("content") or {}
            if content.get("type") != "Issue":
                continue
            if _project_status(entry) != filter.project_status:
                continue
            items.append(WorkItem.from_gh(content))
        return items

    def fetch_items(self, target: MonitorTarget, filter: DiscoveryFilter) -> list[WorkItem]:
        """
        Discover items for a scope and filter.

        Rate-limited organization and user searches fall back to the
        per-repository strategy; repository-scope failures propagate.
        """
        cursor = RateLimitCursor()
        self.last_cursor = cursor

        if filter.mode == FilterMode.PROJECT:
            return self.fetch_project_items(filter, cursor)

        if target.scope == Scope.REPOSITORY:
            if not target.repo:
                raise DiscoveryError(f"Repository scope for {target.owner} has no repository name")
            return self.discover(build_listing_query(target.owner, target.repo, filter), cursor)

        try:
            return self.discover(build_search_query(target, filter), cursor)
        except DiscoveryError as e:
            if not e.rate_limited:
                raise
            logger.info("Search rate limited, falling back to per-repository listing")
            self._log("fallback_started", {"owner": target.owner})
            return self.discover_by_repository(target.owner, filter, cursor)


def _project_status(entry: dict[str, Any]) -> Optional[str]:
    status = entry.get("status")
    if isinstance(status, str):
        return status
    by_name = entry.get("fieldValueByName") or {}
    field_value = by_name.get("Status") or {}
    return field_value.get("name")
