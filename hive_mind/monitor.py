"""
Monitor loop: discover, filter, enqueue, report.

A tick never raises. A failed discovery is reported as such and enqueues
nothing, so it stays distinguishable from a tick that found no items.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional

from hive_mind.config import MonitorConfig
from hive_mind.models import DiscoveryFilter, MonitorTarget, QueueStats

if TYPE_CHECKING:
    from hive_mind.github.discovery import DiscoveryClient
    from hive_mind.github.links import LinkStatusBatcher
    from hive_mind.job_queue import JobQueue
    from hive_mind.logger import HiveLogger
    from hive_mind.worker_pool import WorkerPool

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """Outcome of one discovery tick."""
    discovered: int = 0
    skipped_linked: int = 0
    added: int = 0
    already_tracked: int = 0
    discovery_failed: bool = False
    error: Optional[str] = None


@dataclass
class MonitorSummary:
    """What a monitor run did, returned when it stops."""
    iterations: int = 0
    discovery_failures: int = 0
    final_stats: QueueStats = field(default_factory=QueueStats)
    interrupted: bool = False


class MonitorLoop:
    """Periodically discovers work items and feeds them to the worker pool."""

    def __init__(
        self,
        config: MonitorConfig,
        target: MonitorTarget,
        filter: DiscoveryFilter,
        discovery: DiscoveryClient,
        queue: JobQueue,
        pool: WorkerPool,
        batcher: Optional[LinkStatusBatcher] = None,
        skip_items_with_links: bool = False,
        once: bool = False,
        logger: Optional[HiveLogger] = None,
        on_stats: Optional[Callable[[QueueStats], None]] = None,
    ) -> None:
        self.config = config
        self.target = target
        self.filter = filter
        self.discovery = discovery
        self.queue = queue
        self.pool = pool
        self.batcher = batcher
        self.skip_items_with_links = skip_items_with_links
        self.once = once
        self._logger = logger
        self._on_stats = on_stats
        self._shutdown = threading.Event()
        self.summary = MonitorSummary()

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            log_data = {"component": "monitor"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def tick(self) -> TickResult:
        """Run one discovery cycle and enqueue what it found."""
        result = TickResult()
        self.summary.iterations += 1
        logger.info(
            "Checking %s for issues with %s", self.target.display_name, self.filter.describe()
        )

        try:
            items = self.discovery.fetch_items(self.target, self.filter)
        except Exception as e:
            result.discovery_failed = True
            result.error = str(e)
            self.summary.discovery_failures += 1
            logger.error("Discovery failed: %s", e)
            self._log("discovery_failed", {"error": str(e)}, level="error")
            self._report()
            return result

        result.discovered = len(items)
        logger.info("Found %d issues", len(items))

        if self.skip_items_with_links and self.batcher and items:
            try:
                items, result.skipped_linked = self.batcher.filter_items_without_links(items)
            except Exception as e:
                logger.warning("Could not check linked pull requests, keeping all items: %s", e)
            else:
                if result.skipped_linked:
                    logger.info("Skipped %d issues with open pull requests", result.skipped_linked)

        if self.config.max_items > 0 and len(items) > self.config.max_items:
            items = items[: self.config.max_items]
            logger.info("Limiting to %d issues", self.config.max_items)

        for item in items:
            if self.queue.enqueue(item.url):
                result.added += 1
                logger.info("Added to queue: %s", item.url)
            else:
                result.already_tracked += 1

        logger.info(
            "Added %d new issues (%d already tracked)", result.added, result.already_tracked
        )
        self._log("tick_complete", {
            "discovered": result.discovered,
            "added": result.added,
            "already_tracked": result.already_tracked,
            "skipped_linked": result.skipped_linked,
        })
        self._report()
        return result

    def _report(self) -> QueueStats:
        stats = self.queue.stats()
        logger.info(
            "Queue: %d queued, %d processing, %d completed, %d failed",
            stats.queued, stats.processing, stats.completed, stats.failed,
        )
        if self._on_stats:
            self._on_stats(stats)
        return stats

    def run(self) -> MonitorSummary:
        """
        Start the workers and loop until done or shut down.

        In single-pass mode one tick runs and the loop waits for the queue to
        drain. Otherwise ticks repeat every `interval_seconds`.
        """
        self.pool.start()
        self._log("monitor_started", {
            "target": self.target.display_name,
            "filter": self.filter.describe(),
            "concurrency": self.pool.concurrency,
            "once": self.once,
        })

        try:
            if self.once:
                self.tick()
                while not self._shutdown.is_set():
                    stats = self.queue.stats()
                    if stats.queued == 0 and stats.processing == 0:
                        break
                    self._shutdown.wait(self.config.once_poll_seconds)
            else:
                while not self._shutdown.is_set():
                    self.tick()
                    self._shutdown.wait(self.config.interval_seconds)
        finally:
            self._finish()

        return self.summary

    def request_shutdown(self) -> None:
        """Stop the loop. Safe to call from a signal handler."""
        if not self._shutdown.is_set():
            logger.info("Shutdown requested")
            self.summary.interrupted = True
        self._shutdown.set()

    def _finish(self) -> None:
        self.pool.stop()
        if self.summary.interrupted:
            grace = self.config.shutdown_grace_seconds
            logger.info("Waiting up to %.0fs for in-flight items", grace)
            if not self.pool.wait_idle(grace):
                logger.warning("Grace period elapsed with items still running")
        self.summary.final_stats = self.queue.stats()
        self._log("monitor_stopped", {
            "iterations": self.summary.iterations,
            "discovery_failures": self.summary.discovery_failures,
            "stats": self.summary.final_stats.to_dict(),
        })
