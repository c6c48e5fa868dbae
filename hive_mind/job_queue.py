"""
In-memory deduplicating job queue.

Items move through four disjoint collections:

    queued -> processing -> completed
                         -> failed -> queued (re-discovery)

All transitions happen under a single lock so several worker threads can
share one queue. Queue state is not persisted across restarts.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import TYPE_CHECKING, Any, Optional

from hive_mind.errors import QueueStateError
from hive_mind.models import QueueStats

if TYPE_CHECKING:
    from hive_mind.logger import HiveLogger

logger = logging.getLogger(__name__)


class JobQueue:
    """
    FIFO queue of work item URLs with deduplication.

    In strict mode an invalid completion transition raises QueueStateError;
    otherwise it is logged and ignored.
    """

    def __init__(self, strict: bool = False, logger: Optional[HiveLogger] = None) -> None:
        self._strict = strict
        self._logger = logger
        self._lock = threading.Lock()
        self._queued: deque[str] = deque()
        self._queued_set: set[str] = set()
        self._processing: set[str] = set()
        self._completed: set[str] = set()
        self._failed: set[str] = set()
        self._running = True

    def _log(self, event: str, data: Optional[dict[str, Any]] = None, level: str = "info") -> None:
        if self._logger:
            log_data = {"component": "job_queue"}
            if data:
                log_data.update(data)
            self._logger.log(event, log_data, level=level)

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def enqueue(self, item_id: str) -> bool:
        """
        Add an item unless it is already tracked.

        Returns False when the item is queued, processing or completed.
        A previously failed item is accepted again and leaves the failed set.
        """
        with self._lock:
            if (
                item_id in self._completed
                or item_id in self._processing
                or item_id in self._queued_set
            ):
                return False
            self._failed.discard(item_id)
            self._queued.append(item_id)
            self._queued_set.add(item_id)
            return True

    def dequeue(self) -> Optional[str]:
        """Move the head of the queue into processing. None when empty or stopped."""
        with self._lock:
            if not self._running or not self._queued:
                return None
            item_id = self._queued.popleft()
            self._queued_set.discard(item_id)
            self._processing.add(item_id)
            return item_id

    def mark_completed(self, item_id: str) -> None:
        self._finish(item_id, self._completed, "completed")

    def mark_failed(self, item_id: str) -> None:
        self._finish(item_id, self._failed, "failed")

    def _finish(self, item_id: str, target: set[str], outcome: str) -> None:
        with self._lock:
            if item_id in self._processing:
                self._processing.discard(item_id)
                target.add(item_id)
                return

        message = f"Cannot mark {item_id} {outcome}: item is not processing"
        if self._strict:
            raise QueueStateError(message)
        logger.warning(message)
        self._log("invalid_transition", {"item": item_id, "outcome": outcome}, level="warn")

    def contains(self, item_id: str) -> bool:
        """Check whether the item is tracked in any collection."""
        with self._lock:
            return (
                item_id in self._queued_set
                or item_id in self._processing
                or item_id in self._completed
                or item_id in self._failed
            )

    def stats(self) -> QueueStats:
        with self._lock:
            return QueueStats(
                queued=len(self._queued),
                processing=len(self._processing),
                completed=len(self._completed),
                failed=len(self._failed),
            )

    def stop(self) -> None:
        """Stop handing out items. Items already processing may still finish."""
        with self._lock:
            self._running = False

    def snapshot(self) -> dict[str, list[str]]:
        """Copy of all four collections, for display and tests."""
        with self._lock:
            return {
                "queued": list(self._queued),
                "processing": sorted(self._processing),
                "completed": sorted(self._completed),
                "failed": sorted(self._failed),
            }
