"""
Bounded worker pool draining the job queue.

Each worker is a daemon thread that claims one item at a time and runs it
through an ItemRunner. Workers only coordinate through the JobQueue.
"""

from __future__ import annotations

import logging
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol

from hive_mind.errors import ItemExecutionError
from hive_mind.job_queue import JobQueue

if TYPE_CHECKING:
    from hive_mind.logger import HiveLogger

logger = logging.getLogger(__name__)


class ItemRunner(Protocol):
    """Runs one attempt for one work item."""

    def run(self, item_url: str, attempt: int) -> bool:
        ...


@dataclass
class SolveOptions:
    """Flags forwarded from `hive-mind monitor` to each `hive-mind solve` child."""
    model: Optional[str] = None
    tool: Optional[str] = None
    fork: bool = False
    verbose: bool = False
    watch: bool = False
    auto_continue: bool = False
    log_dir: Optional[str] = None
    config_path: Optional[str] = None
    extra_args: list[str] = field(default_factory=list)

    def build_command(self, item_url: str) -> list[str]:
        """Build the child command line for one item."""
        cmd = [sys.executable, "-m", "hive_mind"]
        if self.config_path:
            cmd += ["--config", self.config_path]
        cmd += ["solve", item_url]
        if self.model:
            cmd += ["--model", self.model]
        if self.tool:
            cmd += ["--tool", self.tool]
        if self.fork:
            cmd.append("--fork")
        if self.verbose:
            cmd.append("--verbose")
        if self.watch:
            cmd.append("--watch")
        if self.auto_continue:
            cmd.append("--auto-continue")
        if self.log_dir:
            cmd += ["--log-dir", self.log_dir]
        cmd += self.extra_args
        return cmd


class SolveProcessRunner:
    """
    Production runner: spawns `hive-mind solve <url>` as a child process.

    Output lines are streamed to the log as they arrive, prefixed with the
    worker thread name.

    Raises:
        ItemExecutionError: If the child cannot start or exits non-zero.
    """

    def __init__(
        self,
        options: Optional[SolveOptions] = None,
        logger: Optional[HiveLogger] = None,
        on_output: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.options = options or SolveOptions()
        self._logger = logger
        self._on_output = on_output

    def run(self, item_url: str, attempt: int) -> bool:
        worker = threading.current_thread().name
        cmd = self.options.build_command(item_url)
        logger.info("[%s] Starting solve for %s (attempt %d)", worker, item_url, attempt)
        if self._logger:
            self._logger.info("solve_started", {"item": item_url, "attempt": attempt, "worker": worker})

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except OSError as e:
            raise ItemExecutionError(item_url, f"could not start solve: {e}") from e

        assert process.stdout is not None
        for line in process.stdout:
            line = line.rstrip("\n")
            if not line:
                continue
            logger.info("[%s] %s", worker, line)
            if self._on_output:
                self._on_output(f"[{worker}] {line}")
        exit_code = process.wait()

        if self._logger:
            self._logger.info(
                "solve_finished",
                {"item": item_url, "attempt": attempt, "worker": worker, "exit_code": exit_code},
            )
        if exit_code != 0:
            raise ItemExecutionError(item_url, f"solve exited with code {exit_code}", returncode=exit_code)
        return True


class DryRunRunner:
    """Logs the command that would run and reports success."""

    def __init__(self, options: Optional[SolveOptions] = None) -> None:
        self.options = options or SolveOptions()
        self.commands: list[list[str]] = []

    def run(self, item_url: str, attempt: int) -> bool:
        cmd = self.options.build_command(item_url)
        self.commands.append(cmd)
        logger.info("[dry-run] Would execute: %s", " ".join(cmd))
        return True


class WorkerPool:
    """
    Fixed number of workers draining a JobQueue.

    Items whose every attempt succeeds are marked completed. The first failed
    attempt, or any exception from the runner, marks the item failed and
    skips its remaining attempts.
    """

    def __init__(
        self,
        queue: JobQueue,
        runner: ItemRunner,
        concurrency: int,
        attempts_per_item: int = 1,
        poll_interval: float = 5.0,
        attempt_delay: float = 10.0,
        logger: Optional[HiveLogger] = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.runner = runner
        self.concurrency = concurrency
        self.attempts_per_item = max(1, attempts_per_item)
        self.poll_interval = poll_interval
        self.attempt_delay = attempt_delay
        self._logger = logger
        self._sleep = sleep
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    def _log(self, event: str, data: Optional[dict[str, Any]] = None, level: str = "info") -> None:
        if self._logger:
            log_data = {"component": "worker_pool"}
            if data:
                log_data.update(data)
            self._logger.log(event, log_data, level=level)

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        """Start the worker threads."""
        for index in range(1, self.concurrency + 1):
            thread = threading.Thread(
                target=self._worker_loop,
                name=f"worker-{index}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
        logger.info("Started %d workers", self.concurrency)

    def stop(self) -> None:
        """Stop claiming new items. In-flight items keep running."""
        self._stop_event.set()
        self.queue.stop()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for worker threads to exit.

        Returns True when every worker has exited within the timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in self._threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        return not any(thread.is_alive() for thread in self._threads)

    def wait_idle(self, grace: float) -> bool:
        """
        Wait up to `grace` seconds for in-flight items to finish.

        Items count as in flight from the moment a worker claims them.
        Returns True when nothing is running anymore.
        """
        deadline = time.monotonic() + grace
        while self.queue.stats().processing > 0:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(0.2, remaining))
        return True

    def _worker_loop(self) -> None:
        name = threading.current_thread().name
        while not self._stop_event.is_set():
            item_url = self.queue.dequeue()
            if item_url is None:
                # Empty or stopped; wake early on stop
                self._stop_event.wait(self.poll_interval)
                continue

            self._process(name, item_url)
        logger.debug("%s exiting", name)

    def _process(self, worker: str, item_url: str) -> None:
        self._log("item_started", {"worker": worker, "item": item_url})
        for attempt in range(1, self.attempts_per_item + 1):
            try:
                ok = self.runner.run(item_url, attempt)
            except ItemExecutionError as e:
                logger.warning("[%s] Attempt %d failed: %s", worker, attempt, e)
                self._log(
                    "item_failed",
                    {"worker": worker, "item": item_url, "attempt": attempt, "exit_code": e.returncode},
                    level="warn",
                )
                self.queue.mark_failed(item_url)
                return
            except Exception as e:
                logger.error("[%s] Attempt %d for %s raised: %s", worker, attempt, item_url, e)
                self._log(
                    "item_failed",
                    {"worker": worker, "item": item_url, "attempt": attempt, "error": str(e)},
                    level="error",
                )
                self.queue.mark_failed(item_url)
                return

            if not ok:
                logger.warning("[%s] Attempt %d for %s failed", worker, attempt, item_url)
                self._log(
                    "item_failed",
                    {"worker": worker, "item": item_url, "attempt": attempt},
                    level="warn",
                )
                self.queue.mark_failed(item_url)
                return

            if attempt < self.attempts_per_item:
                self._sleep(self.attempt_delay)

        self.queue.mark_completed(item_url)
        self._log("item_completed", {"worker": worker, "item": item_url})
