"""
Base class for coding-agent CLI adapters.

Every adapter spawns its CLI in the prepared working directory, streams each
output line to a sink and through a StreamClassifier, and turns the exit
status plus what the classifier saw into an AttemptResult.
"""

from __future__ import annotations

import shutil
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Callable, Optional

from hive_mind.errors import SolverNotFoundError
from hive_mind.models import AttemptResult, SolveRequest
from hive_mind.resume import StreamClassifier
from hive_mind.solvers.prompts import build_full_prompt

if TYPE_CHECKING:
    from hive_mind.config import HiveConfig
    from hive_mind.logger import HiveLogger

OutputSink = Callable[[str], None]


class SolverAdapter(ABC):
    """
    Abstract base for agent CLI adapters.

    Subclasses provide the binary name and the command line.
    """

    name: str = ""
    retry_on_overload: bool = False

    def __init__(
        self,
        config: HiveConfig,
        logger: Optional[HiveLogger] = None,
        popen: Callable[..., Any] = subprocess.Popen,
        sleep: Callable[[float], Any] = time.sleep,
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> None:
        self.config = config
        self._logger = logger
        self._popen = popen
        self._sleep = sleep
        self._which = which

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            log_data = {"component": "solver", "tool": self.name}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    @property
    @abstractmethod
    def binary(self) -> str:
        """Executable to run."""

    @abstractmethod
    def build_command(self, request: SolveRequest, prompt: str) -> list[str]:
        """Full command line for one invocation."""

    def build_prompt(self, request: SolveRequest) -> str:
        return build_full_prompt(request)

    def check_available(self) -> bool:
        return self._which(self.binary) is not None

    def execute(self, request: SolveRequest, sink: OutputSink) -> AttemptResult:
        """
        Run the agent for one request.

        Overload errors are retried with exponential backoff when the adapter
        opts in. A retry resumes the session captured so far, if any.

        Raises:
            SolverNotFoundError: If the CLI binary is not installed.
        """
        if not self.check_available():
            raise SolverNotFoundError(self.binary)

        max_retries = self.config.retry.max_retries if self.retry_on_overload else 0
        current = request
        for retry in range(max_retries + 1):
            result, overloaded = self._run_once(current, sink)
            if result.success or not overloaded or retry == max_retries:
                return result

            delay = self.config.retry.base_delay_seconds * (2 ** retry)
            self._log("solver_overloaded", {"retry": retry + 1, "delay_seconds": delay}, level="warn")
            sink(f"API overloaded, retrying in {delay:.0f}s ({retry + 1}/{max_retries})")
            self._sleep(delay)
            if result.session_id:
                current = replace(current, resume_session_id=result.session_id)
        return result

    def _run_once(self, request: SolveRequest, sink: OutputSink) -> tuple[AttemptResult, bool]:
        cmd = self.build_command(request, self.build_prompt(request))
        self._log("solver_started", {
            "item": request.item_url,
            "model": request.model,
            "resume": request.resume_session_id,
        })

        classifier = StreamClassifier()
        process = self._popen(
            cmd,
            cwd=request.working_dir or None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )

        timer = None
        timeout = self.config.solver.timeout_seconds
        if timeout > 0:
            timer = threading.Timer(timeout, process.kill)
            timer.daemon = True
            timer.start()
        try:
            for line in process.stdout:
                line = line.rstrip("\n")
                sink(line)
                classifier.feed(line)
            exit_code = process.wait()
        finally:
            if timer is not None:
                timer.cancel()

        result = classifier.result(exit_code)
        if result.session_id is None and request.resume_session_id:
            result.session_id = request.resume_session_id
        self._log("solver_finished", {
            "item": request.item_url,
            "exit_code": exit_code,
            "session_id": result.session_id,
            "limit_reached": result.limit_reached,
            "messages": result.message_count,
            "tool_uses": result.tool_use_count,
        }, level="info" if result.success else "warn")
        return result, classifier.overloaded
