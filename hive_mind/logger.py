"""
Structured JSONL logging for Hive Mind.

This module provides:
- JSONL event logging for debugging and audit trails
- Log files organized by run and date
- Log levels (debug, info, warn, error)
- Per-thread session tagging for agent sessions
"""

from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from hive_mind.config import HiveConfig, get_config


class LogLevel:
    """Log level constants."""
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class HiveLogger:
    """
    JSONL event logger for Hive Mind.

    Writes structured log entries to <log_dir>/<run_id>-YYYY-MM-DD.jsonl

    Each log entry is a JSON object with:
    - timestamp: ISO format timestamp
    - level: Log level (debug, info, warn, error)
    - event_type: Type of event being logged
    - run_id: Run identifier ("monitor", "solve-<n>", ...)
    - data: Additional event data (dict)

    Writes are serialized so worker threads can share one logger.
    """

    def __init__(self, run_id: str, config: Optional[HiveConfig] = None) -> None:
        """
        Initialize logger for a run.

        Args:
            run_id: Identifier used to name the log file.
            config: Optional config to use. If not provided, loads from hive.yaml.
        """
        self.run_id = run_id
        self._config = config
        self._local = threading.local()
        self._lock = threading.Lock()

    @property
    def config(self) -> HiveConfig:
        """Get configuration (lazy load)."""
        if self._config is None:
            self._config = get_config()
        return self._config

    def _get_log_path(self) -> Path:
        """Get the log file path for today."""
        logs_dir = self.config.logs_path
        logs_dir.mkdir(parents=True, exist_ok=True)

        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return logs_dir / f"{self.run_id}-{today}.jsonl"

    def _write_entry(self, entry: dict[str, Any]) -> None:
        """Append a log entry to the JSONL file."""
        line = json.dumps(entry, default=str) + "\n"
        with self._lock:
            with open(self._get_log_path(), "a") as f:
                f.write(line)

    def log(
        self,
        event_type: str,
        data: Optional[dict[str, Any]] = None,
        level: str = LogLevel.INFO,
    ) -> None:
        """
        Log an event.

        Args:
            event_type: Type of event (e.g., "item_enqueued", "discovery_failed").
            data: Additional data to include in the log entry.
            level: Log level (debug, info, warn, error).
        """
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "event_type": event_type,
            "run_id": self.run_id,
            "data": data or {},
        }

        if self.session_id:
            entry["session_id"] = self.session_id

        self._write_entry(entry)

    def debug(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log a debug event."""
        self.log(event_type, data, LogLevel.DEBUG)

    def info(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log an info event."""
        self.log(event_type, data, LogLevel.INFO)

    def warn(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log a warning event."""
        self.log(event_type, data, LogLevel.WARN)

    def error(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log an error event."""
        self.log(event_type, data, LogLevel.ERROR)

    @property
    def session_id(self) -> Optional[str]:
        """Session id tagged onto entries written by the calling thread."""
        return getattr(self._local, "session_id", None)

    @contextmanager
    def session_context(self, session_id: str) -> Iterator[HiveLogger]:
        """
        Context manager for session-scoped logging.

        Entries the calling thread writes inside the context carry the
        session_id. Other threads sharing this logger are unaffected.

        Example:
            with logger.session_context("a1b2c3") as log:
                log.info("limit_reached", {"reset_time": "3:30pm"})
        """
        old_session_id = self.session_id
        self._local.session_id = session_id
        self.info("session_start", {"session_id": session_id})
        try:
            yield self
        finally:
            self.info("session_end", {"session_id": session_id})
            self._local.session_id = old_session_id
