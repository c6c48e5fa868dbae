"""
Unit tests for rate-limit-aware discovery.

Tests cover:
- Query construction for search and listing
- Rate-limit fallback to per-repository listing
- Single retry with the fallback page size on other errors
- Page ceiling warning
- Repository-scope error propagation
- Project board filtering
"""

import logging

import pytest

from hive_mind.errors import DiscoveryError, GhCommandError
from hive_mind.github.discovery import (
    LISTING,
    SEARCH,
    DiscoveryClient,
    build_listing_query,
    build_search_query,
)
from hive_mind.models import DiscoveryFilter, FilterMode, MonitorTarget, Scope

RATE_LIMITED = "HTTP 403: API rate limit exceeded for user ID 1."


def _issue(owner, repo, number):
    return {
        "url": f"https://github.com/{owner}/{repo}/issues/{number}",
        "title": f"Issue {number}",
        "number": number,
        "labels": [{"name": "help wanted"}],
        "state": "open",
    }


def _search_hit(owner, repo, number):
    data = _issue(owner, repo, number)
    data["repository"] = {"name": repo, "nameWithOwner": f"{owner}/{repo}"}
    return data


def _limit_arg(call):
    args = call.args[0]
    return int(args[args.index("--limit") + 1])


@pytest.fixture
def discovery(gh, config, sleeps):
    return DiscoveryClient(gh, config.github, sleep=sleeps)


class TestQueryBuilders:
    """Tests for the query builders."""

    def test_listing_query_with_label(self):
        query = build_listing_query("acme", "api", DiscoveryFilter(label="bug"))
        assert query.kind == LISTING
        assert query.args == ["--repo", "acme/api", "--state", "open", "--label", "bug"]

    def test_listing_query_all_open_has_no_label(self):
        query = build_listing_query("acme", "api", DiscoveryFilter(mode=FilterMode.ALL_OPEN))
        assert "--label" not in query.args

    def test_search_query_for_user_scope(self):
        target = MonitorTarget(scope=Scope.USER, owner="octo")
        query = build_search_query(target, DiscoveryFilter(label="help wanted"))
        assert query.kind == SEARCH
        assert query.args == ["user:octo", "is:issue", "is:open", 'label:"help wanted"']

    def test_search_query_for_organization_scope(self):
        target = MonitorTarget(scope=Scope.ORGANIZATION, owner="acme")
        query = build_search_query(target, DiscoveryFilter(mode=FilterMode.ALL_OPEN))
        assert query.args == ["org:acme", "is:issue", "is:open"]


class TestRateLimitFallback:
    """Tests for the organization-scope fallback."""

    def test_rate_limited_search_falls_back_to_repositories(self, discovery, gh):
        gh.search_items.side_effect = GhCommandError(["search", "issues"], stderr=RATE_LIMITED, returncode=1)
        gh.list_repositories.return_value = [
            {"name": "api", "owner": {"login": "acme"}, "isArchived": False},
            {"name": "legacy", "owner": {"login": "acme"}, "isArchived": True},
            {"name": "web", "owner": {"login": "acme"}, "isArchived": False},
        ]
        gh.list_items.side_effect = [
            [_issue("acme", "api", 1)],
            [_issue("acme", "web", 2), _issue("acme", "web", 3)],
        ]

        target = MonitorTarget(scope=Scope.ORGANIZATION, owner="acme")
        items = discovery.fetch_items(target, DiscoveryFilter())

        assert [item.url for item in items] == [
            "https://github.com/acme/api/issues/1",
            "https://github.com/acme/web/issues/2",
            "https://github.com/acme/web/issues/3",
        ]
        assert gh.search_items.call_count == 1
        assert gh.list_items.call_count == 2
        assert all(_limit_arg(call) == 1000 for call in gh.list_items.call_args_list)
        assert discovery.last_cursor.used_fallback is True
        assert discovery.last_cursor.repositories_scanned == 2

    def test_failing_repository_is_skipped(self, discovery, gh):
        gh.search_items.side_effect = GhCommandError(["search"], stderr=RATE_LIMITED)
        gh.list_repositories.return_value = [{"name": "a"}, {"name": "b"}]
        gh.list_items.side_effect = [
            GhCommandError(["issue", "list"], stderr=RATE_LIMITED),
            [_issue("acme", "b", 5)],
        ]

        items = discovery.fetch_items(
            MonitorTarget(scope=Scope.ORGANIZATION, owner="acme"), DiscoveryFilter()
        )

        assert [item.number for item in items] == [5]
        assert items[0].repo_full_name == "acme/b"
        assert discovery.last_cursor.repositories_failed == 1

    def test_rate_limit_at_repository_scope_propagates(self, discovery, gh):
        gh.list_items.side_effect = GhCommandError(["issue", "list"], stderr=RATE_LIMITED)

        with pytest.raises(DiscoveryError) as exc_info:
            discovery.fetch_items(
                MonitorTarget(scope=Scope.REPOSITORY, owner="acme", repo="api"), DiscoveryFilter()
            )

        assert exc_info.value.rate_limited is True
        gh.list_repositories.assert_not_called()
        assert gh.list_items.call_count == 1

    def test_repository_scope_without_name_raises(self, discovery, gh):
        with pytest.raises(DiscoveryError, match="no repository name"):
            discovery.fetch_items(MonitorTarget(scope=Scope.REPOSITORY, owner="acme"), DiscoveryFilter())
        gh.list_items.assert_not_called()


class TestRetryProtocol:
    """Tests for the non-rate-limit retry."""

    def test_other_error_retries_once_with_fallback_page_size(self, discovery, gh):
        gh.list_items.side_effect = [
            GhCommandError(["issue", "list"], stderr="HTTP 502: Bad Gateway"),
            [_issue("acme", "api", 1)],
        ]

        items = discovery.discover(build_listing_query("acme", "api", DiscoveryFilter()))

        assert len(items) == 1
        limits = [_limit_arg(call) for call in gh.list_items.call_args_list]
        assert limits == [1000, 100]

    def test_second_failure_raises_non_rate_limited_error(self, discovery, gh):
        gh.list_items.side_effect = GhCommandError(["issue", "list"], stderr="HTTP 502: Bad Gateway")

        with pytest.raises(DiscoveryError) as exc_info:
            discovery.discover(build_listing_query("acme", "api", DiscoveryFilter()))

        assert exc_info.value.rate_limited is False
        assert gh.list_items.call_count == 2

    def test_rate_limit_is_not_retried(self, discovery, gh):
        gh.search_items.side_effect = GhCommandError(["search"], stderr="secondary rate limit")

        with pytest.raises(DiscoveryError) as exc_info:
            discovery.discover(
                build_search_query(MonitorTarget(Scope.ORGANIZATION, "acme"), DiscoveryFilter())
            )

        assert exc_info.value.rate_limited is True
        assert gh.search_items.call_count == 1

    def test_delays_surround_the_query(self, gh, config, sleeps):
        config.github.api_delay_seconds = 5
        gh.list_items.return_value = []
        client = DiscoveryClient(gh, config.github, sleep=sleeps)

        client.discover(build_listing_query("acme", "api", DiscoveryFilter()))

        assert sleeps.calls == [5, 5]

    def test_warns_when_page_ceiling_reached(self, gh, config, sleeps, caplog):
        config.github.search_page_size = 2
        gh.search_items.return_value = [_search_hit("acme", "api", 1), _search_hit("acme", "api", 2)]
        client = DiscoveryClient(gh, config.github, sleep=sleeps)

        with caplog.at_level(logging.WARNING, logger="hive_mind.github.discovery"):
            items = client.discover(
                build_search_query(MonitorTarget(Scope.ORGANIZATION, "acme"), DiscoveryFilter())
            )

        assert len(items) == 2
        assert items[0].owner == "acme"
        assert "more may exist" in caplog.text


class TestProjectMode:
    """Tests for project board discovery."""

    def test_keeps_issues_in_matching_status(self, discovery, gh):
        gh.list_project_items.return_value = [
            {
                "status": "Ready",
                "content": {
                    "type": "Issue",
                    "number": 4,
                    "title": "Ready issue",
                    "url": "https://github.com/acme/api/issues/4",
                    "repository": "acme/api",
                },
            },
            {
                "status": "In Progress",
                "content": {"type": "Issue", "number": 5, "url": "https://github.com/acme/api/issues/5"},
            },
            {
                "fieldValueByName": {"Status": {"name": "Ready"}},
                "content": {"type": "PullRequest", "number": 6, "url": "https://github.com/acme/api/pull/6"},
            },
        ]
        project_filter = DiscoveryFilter(
            mode=FilterMode.PROJECT, project_number=3, project_owner="acme", project_status="Ready"
        )

        items = discovery.fetch_items(MonitorTarget(Scope.ORGANIZATION, "acme"), project_filter)

        assert [item.number for item in items] == [4]
        assert items[0].repo_full_name == "acme/api"
        gh.list_project_items.assert_called_once_with(3, "acme", limit=100)

    def test_missing_project_settings_raise(self, discovery):
        with pytest.raises(DiscoveryError):
            discovery.fetch_project_items(DiscoveryFilter(mode=FilterMode.PROJECT))

    def test_repository_string_sets_coordinates(self, discovery, gh):
        gh.list_project_items.return_value = [
            {
                "status": "Ready",
                "content": {"type": "Issue", "number": 8, "title": "No url", "repository": "beta/web"},
            },
        ]
        project_filter = DiscoveryFilter(
            mode=FilterMode.PROJECT, project_number=1, project_owner="beta", project_status="Ready"
        )

        items = discovery.fetch_project_items(project_filter)

        assert items[0].owner == "beta"
        assert items[0].repo == "web"
