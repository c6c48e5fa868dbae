"""
Usage-limit detection and session resume.

This module handles:
- Classifying agent CLI output lines (session id, limit messages, counts)
- Parsing the limit reset time ("3:30pm") and computing the wait
- Printing resume guidance and, when asked, waiting for the reset and
  re-running the solve with the captured session id
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
import sys
import time
from dataclasses import dataclass
from datetime import datetime, time as dt_time, timedelta
from typing import TYPE_CHECKING, Any, Callable, Optional

from hive_mind.config import ResumeConfig
from hive_mind.errors import ErrorClassifier
from hive_mind.models import AttemptResult, SolveRequest

if TYPE_CHECKING:
    from hive_mind.logger import HiveLogger

logger = logging.getLogger(__name__)

SESSION_KEYS = ("session_id", "sessionId", "thread_id", "conversation_id")
NESTED_KEYS = ("message", "data", "event", "result", "item")

RESET_TIME_RE = re.compile(
    r"(\d+)-hour limit reached.*?resets? (?:at )?(\d{1,2}(?::\d{2})?\s*[ap]m)",
    re.IGNORECASE | re.DOTALL,
)
LOOSE_RESET_TIME_RE = re.compile(r"resets? (?:at )?(\d{1,2}(?::\d{2})?\s*[ap]m)", re.IGNORECASE)
CLOCK_RE = re.compile(r"^\s*(\d{1,2})(?::(\d{2}))?\s*([ap]m)\s*$", re.IGNORECASE)


def find_session_id(event: Any) -> Optional[str]:
    """Look for a session identifier at the top level or one level down."""
    if not isinstance(event, dict):
        return None
    for key in SESSION_KEYS:
        value = event.get(key)
        if isinstance(value, str) and value:
            return value
    for nested in NESTED_KEYS:
        child = event.get(nested)
        if isinstance(child, dict):
            for key in SESSION_KEYS:
                value = child.get(key)
                if isinstance(value, str) and value:
                    return value
    return None


def extract_reset_time(text: str) -> Optional[str]:
    """Pull the reset clock time ("3:30pm") out of a limit message."""
    match = RESET_TIME_RE.search(text)
    if match:
        return match.group(2).replace(" ", "").lower()
    match = LOOSE_RESET_TIME_RE.search(text)
    if match:
        return match.group(1).replace(" ", "").lower()
    return None


def parse_reset_time(text: str) -> Optional[dt_time]:
    """
    Parse a 12-hour clock string into a time of day.

    "12am" is midnight and "12pm" is noon. Returns None for anything
    that is not a valid clock time.
    """
    match = CLOCK_RE.match(text or "")
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    meridiem = match.group(3).lower()
    if not 1 <= hour <= 12 or minute > 59:
        return None
    if meridiem == "am":
        hour = 0 if hour == 12 else hour
    elif hour != 12:
        hour += 12
    return dt_time(hour, minute)


def seconds_until(reset: dt_time, now: Optional[datetime] = None) -> float:
    """Seconds until the next occurrence of `reset`, tomorrow if it already passed today."""
    now = now or datetime.now()
    target = now.replace(hour=reset.hour, minute=reset.minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


def format_duration(seconds: float) -> str:
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class StreamClassifier:
    """
    Consumes agent CLI output one line at a time.

    JSON lines are inspected for a session id (the first one seen wins),
    assistant messages and tool calls. Plain text lines become the last
    message. Limit phrases are looked for in plain text, result and error
    events only, so code the agent writes does not trip the detector.
    """

    def __init__(self) -> None:
        self.session_id: Optional[str] = None
        self.limit_reached = False
        self.limit_reset_time: Optional[str] = None
        self.overloaded = False
        self.message_count = 0
        self.tool_use_count = 0
        self.last_message = ""

    def feed(self, line: str) -> Optional[dict[str, Any]]:
        """Classify one line. Returns the decoded event for JSON lines."""
        stripped = line.strip()
        if not stripped:
            return None

        event: Any = None
        if stripped.startswith("{"):
            try:
                event = json.loads(stripped)
            except json.JSONDecodeError:
                event = None

        if not isinstance(event, dict):
            self.last_message = stripped
            self._check_limit(stripped)
            return None

        if self.session_id is None:
            self.session_id = find_session_id(event)

        event_type = event.get("type", "")
        if event_type == "assistant":
            self.message_count += 1
            content = (event.get("message") or {}).get("content") or []
            for block in content:
                if not isinstance(block, dict):
                    continue
                if block.get("type") == "tool_use":
                    self.tool_use_count += 1
                elif block.get("type") == "text" and block.get("text"):
                    self.last_message = block["text"]
        elif event_type in ("tool_use", "item.started") or event.get("tool"):
            self.tool_use_count += 1
        elif event_type in ("message", "text", "item.completed"):
            self.message_count += 1
            text = event.get("text") or (event.get("item") or {}).get("text")
            if isinstance(text, str) and text:
                self.last_message = text

        if event_type in ("result", "error") or event.get("is_error") or "error" in event:
            text = " ".join(
                str(value)
                for value in (event.get("result"), event.get("error"), event.get("message"))
                if value
            )
            if text:
                self.last_message = text
                self._check_limit(text)
        return event

    def _check_limit(self, text: str) -> None:
        if ErrorClassifier.is_solver_overload(text):
            self.overloaded = True
        if ErrorClassifier.is_solver_limit(text):
            self.limit_reached = True
            reset = extract_reset_time(text)
            if reset:
                self.limit_reset_time = reset

    def result(self, exit_code: int) -> AttemptResult:
        """Summarize everything seen into an AttemptResult."""
        return AttemptResult(
            success=exit_code == 0 and not self.limit_reached,
            session_id=self.session_id,
            limit_reached=self.limit_reached,
            limit_reset_time=self.limit_reset_time,
            exit_code=exit_code,
            message_count=self.message_count,
            tool_use_count=self.tool_use_count,
            last_message=self.last_message,
        )


@dataclass
class ResumeGuidance:
    """What the user needs to know to continue a limited session."""
    item_url: str
    session_id: Optional[str]
    reset_time: Optional[str]
    wait_seconds: Optional[float]
    command: str


class ResumeProtocol:
    """Reacts to an attempt that stopped on a usage limit."""

    def __init__(
        self,
        config: Optional[ResumeConfig] = None,
        logger: Optional[HiveLogger] = None,
        on_guidance: Optional[Callable[[ResumeGuidance], None]] = None,
        spawn: Callable[[list[str]], int] = subprocess.call,
        sleep: Callable[[float], Any] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
        config_path: Optional[str] = None,
    ) -> None:
        self.config = config or ResumeConfig()
        self.config_path = config_path
        self._logger = logger
        self._on_guidance = on_guidance
        self._spawn = spawn
        self._sleep = sleep
        self._clock = clock

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        if self._logger:
            log_data = {"component": "resume"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def build_resume_command(
        self,
        request: SolveRequest,
        session_id: str,
        forward_args: Optional[list[str]] = None,
        auto_continue: bool = False,
    ) -> list[str]:
        cmd = [sys.executable, "-m", "hive_mind"]
        if self.config_path:
            cmd += ["--config", self.config_path]
        cmd += ["solve", request.item_url, "--resume", session_id]
        if auto_continue:
            cmd.append("--auto-continue-limit")
        cmd += list(forward_args or [])
        return cmd

    def guidance(self, request: SolveRequest, result: AttemptResult) -> ResumeGuidance:
        wait = None
        if result.limit_reset_time:
            reset = parse_reset_time(result.limit_reset_time)
            if reset is not None:
                wait = seconds_until(reset, self._clock())
        prefix = f"hive-mind --config {self.config_path}" if self.config_path else "hive-mind"
        command = f"{prefix} solve {request.item_url}"
        if result.session_id:
            command += f" --resume {result.session_id}"
        return ResumeGuidance(
            item_url=request.item_url,
            session_id=result.session_id,
            reset_time=result.limit_reset_time,
            wait_seconds=wait,
            command=command,
        )

    def handle(
        self,
        request: SolveRequest,
        result: AttemptResult,
        auto_continue: bool = False,
        forward_args: Optional[list[str]] = None,
    ) -> Optional[int]:
        """
        Handle a limited attempt.

        Returns None when the attempt did not hit a limit, the child exit
        code after an automatic continue, and 1 otherwise.
        """
        if not result.limit_reached:
            return None

        info = self.guidance(request, result)
        self._log("limit_reached", {
            "item": request.item_url,
            "session_id": result.session_id,
            "reset_time": result.limit_reset_time,
        }, level="warn")
        if self._on_guidance:
            self._on_guidance(info)
        else:
            logger.warning("Usage limit reached for %s", request.item_url)
            if info.reset_time:
                logger.warning("Limit resets at %s", info.reset_time)
            logger.warning("To resume: %s", info.command)

        if not auto_continue:
            return 1
        if not result.session_id:
            logger.error("No session id was captured, cannot continue automatically")
            return 1
        if info.wait_seconds is None:
            logger.error("Reset time unknown, cannot continue automatically")
            return 1

        self._countdown(info.wait_seconds)
        cmd = self.build_resume_command(request, result.session_id, forward_args, auto_continue=True)
        logger.info("Resuming session %s", result.session_id)
        self._log("auto_continue", {"item": request.item_url, "session_id": result.session_id})
        return self._spawn(cmd)

    def _countdown(self, wait_seconds: float) -> None:
        remaining = wait_seconds
        while remaining > 0:
            if remaining > self.config.long_wait_countdown_seconds:
                step = self.config.long_wait_countdown_seconds
            else:
                step = self.config.short_wait_countdown_seconds
            logger.info("Waiting for limit reset: %s remaining", format_duration(remaining))
            chunk = min(step, remaining)
            self._sleep(chunk)
            remaining -= chunk
