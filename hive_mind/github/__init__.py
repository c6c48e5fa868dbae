"""GitHub access: gh CLI client, URL parsing, discovery and link-status batching."""

from hive_mind.github.client import GitHubClient
from hive_mind.github.discovery import DiscoveryClient, DiscoveryQuery
from hive_mind.github.links import LinkStatusBatcher
from hive_mind.github.urls import ItemRef, parse_item_url, parse_monitor_url

__all__ = [
    "DiscoveryClient",
    "DiscoveryQuery",
    "GitHubClient",
    "ItemRef",
    "LinkStatusBatcher",
    "parse_item_url",
    "parse_monitor_url",
]
