"""GitHub URL parsing."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from hive_mind.errors import InvalidUrlError
from hive_mind.models import MonitorTarget, Scope

_OWNER = r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,38})"
_REPO = r"[A-Za-z0-9._-]+"

MONITOR_URL_RE = re.compile(rf"^https://github\.com/(?P<owner>{_OWNER})(?:/(?P<repo>{_REPO}))?/?$")
ITEM_URL_RE = re.compile(
    rf"^https://github\.com/(?P<owner>{_OWNER})/(?P<repo>{_REPO})/(?P<kind>issues|pull)/(?P<number>\d+)/?$"
)


@dataclass(frozen=True)
class ItemRef:
    """An issue or pull request reference parsed from its URL."""
    owner: str
    repo: str
    number: int
    is_pull_request: bool = False

    @property
    def url(self) -> str:
        kind = "pull" if self.is_pull_request else "issues"
        return f"https://github.com/{self.owner}/{self.repo}/{kind}/{self.number}"


def parse_monitor_url(url: str, owner_scope: Optional[Scope] = None) -> MonitorTarget:
    """
    Parse https://github.com/<owner>[/<repo>] into a MonitorTarget.

    An owner-only URL defaults to organization scope; pass `owner_scope` once
    the owner's account type is known.
    """
    match = MONITOR_URL_RE.match(url.strip())
    if not match:
        raise InvalidUrlError(
            f"Invalid GitHub URL: {url}. Expected https://github.com/<owner> "
            "or https://github.com/<owner>/<repo>"
        )
    owner = match.group("owner")
    repo = match.group("repo")
    if repo:
        if repo.endswith(".git"):
            repo = repo[: -len(".git")]
        return MonitorTarget(scope=Scope.REPOSITORY, owner=owner, repo=repo)
    return MonitorTarget(scope=owner_scope or Scope.ORGANIZATION, owner=owner)


def parse_item_url(url: str) -> ItemRef:
    """Parse an issue or pull request URL."""
    match = ITEM_URL_RE.match(url.strip())
    if not match:
        raise InvalidUrlError(
            f"Invalid issue or pull request URL: {url}. Expected "
            "https://github.com/<owner>/<repo>/issues/<n> or .../pull/<n>"
        )
    return ItemRef(
        owner=match.group("owner"),
        repo=match.group("repo"),
        number=int(match.group("number")),
        is_pull_request=match.group("kind") == "pull",
    )
