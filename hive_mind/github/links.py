"""
Batched lookup of open pull requests referencing issues.

One GraphQL query covers a whole group of issues. When a group query fails,
each issue in the group is looked up through the REST timeline instead, which
only yields a count.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Callable, Optional

from hive_mind.config import GitHubConfig
from hive_mind.errors import GhCommandError
from hive_mind.models import LinkStatus, WorkItem

if TYPE_CHECKING:
    from hive_mind.github.client import GitHubClient
    from hive_mind.logger import HiveLogger

logger = logging.getLogger(__name__)

TIMELINE_OPEN_PR_JQ = (
    '[.[] | select(.event == "cross-referenced" and .source.issue.pull_request != null '
    'and .source.issue.state == "open")] | length'
)


def build_links_query(owner: str, repo: str, numbers: list[int]) -> str:
    """GraphQL query fetching cross-referencing pull requests for each issue."""
    fields = []
    for index, number in enumerate(numbers):
        fields.append(
            f"""
    issue{index}: issue(number: {number}) {{
      number
      title
      state
      timelineItems(first: 100, itemTypes: [CROSS_REFERENCED_EVENT]) {{
        nodes {{
          ... on CrossReferencedEvent {{
            source {{
              ... on PullRequest {{
                number
                title
                state
                isDraft
                url
              }}
            }}
          }}
        }}
      }}
    }}"""
        )
    return (
        f'query {{\n  repository(owner: "{owner}", name: "{repo}") {{'
        + "".join(fields)
        + "\n  }\n}"
    )


def parse_links_response(response: dict[str, Any], numbers: list[int]) -> dict[int, LinkStatus]:
    """Count open, non-draft pull requests per issue."""
    repository = (response.get("data") or {}).get("repository")
    if repository is None:
        errors = response.get("errors") or []
        message = errors[0].get("message") if errors else "empty GraphQL response"
        raise ValueError(message)

    results: dict[int, LinkStatus] = {}
    for index, number in enumerate(numbers):
        issue = repository.get(f"issue{index}")
        if not issue:
            results[number] = LinkStatus(error="issue not found")
            continue

        links = []
        for node in (issue.get("timelineItems") or {}).get("nodes") or []:
            source = (node or {}).get("source") or {}
            if "number" not in source:
                continue
            if source.get("state") == "OPEN" and not source.get("isDraft"):
                links.append({
                    "number": source["number"],
                    "title": source.get("title", ""),
                    "url": source.get("url", ""),
                })

        results[number] = LinkStatus(
            open_link_count=len(links),
            links=links,
            title=issue.get("title", ""),
            state=issue.get("state", ""),
        )
    return results


class LinkStatusBatcher:
    """Checks many issues for linked pull requests with few API calls."""

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

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            log_data = {"component": "link_batcher"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def batch_check_links(self, owner: str, repo: str, numbers: list[int]) -> dict[int, LinkStatus]:
        """Return a LinkStatus for every requested issue number."""
        results: dict[int, LinkStatus] = {}
        batch_size = max(1, self.config.link_batch_size)
        groups = [numbers[i:i + batch_size] for i in range(0, len(numbers), batch_size)]

        for index, group in enumerate(groups):
            if index > 0:
                self._sleep(self.config.repo_delay_seconds)
            try:
                response = self.client.graphql(build_links_query(owner, repo, group))
                results.update(parse_links_response(response, group))
            except (GhCommandError, ValueError) as e:
                logger.warning(
                    "Batch link query for %s/%s failed (%s); checking %d issues individually",
                    owner, repo, e, len(group),
                )
                self._log("link_batch_failed", {"repo": f"{owner}/{repo}", "error": str(e)}, level="warn")
                results.update(self._check_individually(owner, repo, group))

        return results

    def _check_individually(self, owner: str, repo: str, numbers: list[int]) -> dict[int, LinkStatus]:
        results = {}
        for number in numbers:
            try:
                output = self.client.api(
                    f"repos/{owner}/{repo}/issues/{number}/timeline", jq=TIMELINE_OPEN_PR_JQ
                )
                results[number] = LinkStatus(open_link_count=int(output.strip() or 0))
            except (GhCommandError, ValueError) as e:
                results[number] = LinkStatus(open_link_count=0, error=str(e))
        return results

    def filter_items_without_links(self, items: list[WorkItem]) -> tuple[list[WorkItem], int]:
        """
        Drop items that already have an open pull request.

        Returns:
            Tuple of (items without links, number of skipped items).
        """
        by_repo: dict[tuple[str, str], list[WorkItem]] = defaultdict(list)
        for item in items:
            by_repo[(item.owner, item.repo)].append(item)

        linked: set[str] = set()
        for (owner, repo), repo_items in by_repo.items():
            statuses = self.batch_check_links(owner, repo, [item.number for item in repo_items])
            for item in repo_items:
                status = statuses.get(item.number)
                if status and status.open_link_count > 0:
                    linked.add(item.url)
                    logger.info("Skipping %s: %d open pull request(s)", item.url, status.open_link_count)

        kept = [item for item in items if item.url not in linked]
        return kept, len(items) - len(kept)
