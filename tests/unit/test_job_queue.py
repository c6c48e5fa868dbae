"""
Unit tests for the deduplicating job queue.

Tests cover:
- Deduplication across queued, processing and completed
- FIFO order
- Completion transitions (strict and lenient)
- Re-enqueueing failed items
- Concurrent enqueue/dequeue
"""

import threading

import pytest

from hive_mind.errors import QueueStateError
from hive_mind.job_queue import JobQueue


def _tracked(queue):
    snap = queue.snapshot()
    return snap["queued"] + snap["processing"] + snap["completed"]


class TestEnqueueDeduplication:
    """Tests that an id is never held twice."""

    def test_enqueue_new_item_returns_true(self):
        queue = JobQueue()
        assert queue.enqueue("https://github.com/o/r/issues/1") is True
        assert queue.stats().queued == 1

    def test_enqueue_duplicate_queued_returns_false(self):
        queue = JobQueue()
        queue.enqueue("a")
        assert queue.enqueue("a") is False
        assert queue.stats().queued == 1

    def test_enqueue_processing_item_returns_false(self):
        queue = JobQueue()
        queue.enqueue("a")
        queue.dequeue()
        assert queue.enqueue("a") is False

    def test_enqueue_completed_item_returns_false(self):
        queue = JobQueue()
        queue.enqueue("a")
        queue.dequeue()
        queue.mark_completed("a")
        assert queue.enqueue("a") is False

    def test_repeated_ids_never_duplicate(self):
        """No sequence of enqueue calls creates duplicates in queued/processing/completed."""
        queue = JobQueue(strict=True)
        sequence = ["a", "b", "a", "c", "b", "b", "d", "a"]
        for index, item in enumerate(sequence):
            queue.enqueue(item)
            if index % 3 == 0:
                claimed = queue.dequeue()
                if claimed:
                    queue.mark_completed(claimed)
            tracked = _tracked(queue)
            assert len(tracked) == len(set(tracked))

    def test_failed_item_can_be_enqueued_again(self):
        queue = JobQueue()
        queue.enqueue("a")
        queue.dequeue()
        queue.mark_failed("a")

        assert queue.enqueue("a") is True
        snap = queue.snapshot()
        assert snap["queued"] == ["a"]
        assert snap["failed"] == []

    def test_discovery_rerun_skips_processing_item(self):
        """Discovery of [A, B, C] with B processing enqueues only A and C."""
        queue = JobQueue()
        queue.enqueue("B")
        assert queue.dequeue() == "B"

        added = [item for item in ["A", "B", "C"] if queue.enqueue(item)]

        assert added == ["A", "C"]
        assert queue.snapshot()["queued"] == ["A", "C"]
        assert queue.snapshot()["processing"] == ["B"]


class TestDequeue:
    """Tests for FIFO dequeue."""

    def test_dequeue_is_fifo(self):
        queue = JobQueue()
        for item in ["a", "b", "c"]:
            queue.enqueue(item)
        assert [queue.dequeue(), queue.dequeue(), queue.dequeue()] == ["a", "b", "c"]

    def test_dequeue_empty_returns_none(self):
        assert JobQueue().dequeue() is None

    def test_dequeue_after_stop_returns_none(self):
        queue = JobQueue()
        queue.enqueue("a")
        queue.stop()
        assert queue.dequeue() is None
        assert queue.is_running is False
        assert queue.stats().queued == 1


class TestCompletionTransitions:
    """Tests for mark_completed / mark_failed."""

    def test_exactly_one_terminal_collection_holds_item(self):
        queue = JobQueue(strict=True)
        queue.enqueue("a")
        queue.enqueue("b")
        queue.dequeue()
        queue.dequeue()
        queue.mark_completed("a")
        queue.mark_failed("b")

        snap = queue.snapshot()
        assert snap["completed"] == ["a"]
        assert snap["failed"] == ["b"]
        assert snap["processing"] == []

    def test_strict_mode_rejects_second_mark(self):
        queue = JobQueue(strict=True)
        queue.enqueue("a")
        queue.dequeue()
        queue.mark_completed("a")

        with pytest.raises(QueueStateError):
            queue.mark_failed("a")
        assert queue.snapshot()["failed"] == []

    def test_strict_mode_rejects_unclaimed_item(self):
        queue = JobQueue(strict=True)
        queue.enqueue("a")
        with pytest.raises(QueueStateError):
            queue.mark_completed("a")

    def test_lenient_mode_ignores_invalid_transition(self):
        queue = JobQueue()
        queue.mark_completed("never-claimed")
        stats = queue.stats()
        assert stats.completed == 0
        assert stats.failed == 0

    def test_contains_covers_all_collections(self):
        queue = JobQueue()
        queue.enqueue("a")
        queue.enqueue("b")
        queue.dequeue()
        queue.mark_failed("a")
        assert queue.contains("a")
        assert queue.contains("b")
        assert not queue.contains("c")


class TestConcurrency:
    """Tests for concurrent access."""

    def test_parallel_enqueue_and_dequeue_keeps_sets_disjoint(self):
        queue = JobQueue(strict=True)
        claimed = []
        claimed_lock = threading.Lock()

        def producer(offset):
            for i in range(200):
                queue.enqueue(f"item-{(i + offset) % 150}")

        def consumer():
            for _ in range(200):
                item = queue.dequeue()
                if item:
                    with claimed_lock:
                        claimed.append(item)
                    queue.mark_completed(item)

        threads = [threading.Thread(target=producer, args=(n * 37,)) for n in range(4)]
        threads += [threading.Thread(target=consumer) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(claimed) == len(set(claimed))
        tracked = _tracked(queue)
        assert len(tracked) == len(set(tracked))
