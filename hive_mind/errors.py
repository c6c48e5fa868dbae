"""
Error classification for Hive Mind.

This module provides:
- ErrorCategory enum for the four failure classes the supervisor distinguishes
- Exception classes carrying their category
- ErrorClassifier for detecting rate limits, agent limits and overloads
  from free-text tool output
- User-facing guidance messages

The pattern matching here is a best-effort classifier over free text produced
by gh and the agent CLIs. It is not a guaranteed contract.
"""

from __future__ import annotations

import re
from enum import Enum, auto
from typing import Optional


class ErrorCategory(Enum):
    """
    Classification of failures.

    Used to decide between fallback, retry, per-item failure and abort.
    """

    TRANSIENT_RATE_LIMIT = auto()    # Retryable, triggers fallback or backoff
    TRANSIENT_OTHER = auto()         # One bounded retry, then surfaces
    ITEM_EXECUTION_FAILURE = auto()  # This item's attempt failed, others unaffected
    FATAL_CONFIGURATION = auto()     # Aborts before discovery or dispatch


class HiveError(Exception):
    """
    Base exception for Hive Mind errors.

    Includes the error category for handling decisions.
    """

    category: ErrorCategory = ErrorCategory.TRANSIENT_OTHER

    def __init__(self, message: str, category: Optional[ErrorCategory] = None) -> None:
        super().__init__(message)
        if category is not None:
            self.category = category


class GhCommandError(HiveError):
    """Raised when a gh CLI invocation fails."""

    def __init__(
        self,
        args: list[str],
        stderr: str = "",
        returncode: int = -1,
    ) -> None:
        command = "gh " + " ".join(args)
        detail = stderr.strip()[:300] or f"exit code {returncode}"
        category = (
            ErrorCategory.TRANSIENT_RATE_LIMIT
            if ErrorClassifier.is_github_rate_limit(stderr)
            else ErrorCategory.TRANSIENT_OTHER
        )
        super().__init__(f"{command} failed: {detail}", category=category)
        self.command_args = list(args)
        self.stderr = stderr
        self.returncode = returncode


class DiscoveryError(HiveError):
    """Raised when a discovery query cannot be completed."""

    def __init__(
        self,
        message: str,
        rate_limited: bool = False,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message,
            category=(
                ErrorCategory.TRANSIENT_RATE_LIMIT
                if rate_limited
                else ErrorCategory.TRANSIENT_OTHER
            ),
        )
        self.rate_limited = rate_limited
        self.cause = cause


class InvalidUrlError(HiveError):
    """Raised when a GitHub URL does not have the expected shape."""

    category = ErrorCategory.FATAL_CONFIGURATION


class QueueStateError(HiveError):
    """Raised when a queue transition is requested for an item not being processed."""

    category = ErrorCategory.FATAL_CONFIGURATION


class ItemExecutionError(HiveError):
    """Raised when solving a single item fails."""

    category = ErrorCategory.ITEM_EXECUTION_FAILURE

    def __init__(self, item_url: str, message: str, returncode: int = -1) -> None:
        super().__init__(f"{item_url}: {message}")
        self.item_url = item_url
        self.returncode = returncode


class SolverNotFoundError(HiveError):
    """Raised when an agent CLI binary is not installed."""

    category = ErrorCategory.FATAL_CONFIGURATION

    def __init__(self, cli_name: str) -> None:
        super().__init__(f"{cli_name} CLI not found. Please install it first.")
        self.cli_name = cli_name


class ErrorClassifier:
    """
    Classifies errors from gh and agent CLI output.

    Uses pattern matching on lowercased text to determine error type.
    """

    GITHUB_RATE_LIMIT_PATTERNS = [
        r"rate limit",
        r"secondary rate limit",
        r"exceeded.*limit",
        r"too many requests",
        r"abuse detection",
        r"wait a few minutes",
        r"http 403.*(rate|limit)",
        r"api rate limit exceeded",
    ]

    SOLVER_LIMIT_PATTERNS = [
        r"limit reached",
        r"rate_limit_exceeded",
        r"you have exceeded your rate limit",
        r"usage limit",
        r"usage_limit_reached",
    ]

    SOLVER_OVERLOAD_PATTERNS = [
        r"api error: 500.*overloaded",
        r"api_error.*overloaded",
        r"overloaded_error",
        r"\b529\b",
    ]

    @classmethod
    def _matches_any(cls, text: str, patterns: list[str]) -> bool:
        """Check if text matches any of the given patterns."""
        for pattern in patterns:
            if re.search(pattern, text, re.IGNORECASE | re.DOTALL):
                return True
        return False

    @classmethod
    def is_github_rate_limit(cls, text: str) -> bool:
        """Check whether gh output describes API throttling."""
        return cls._matches_any((text or "").lower(), cls.GITHUB_RATE_LIMIT_PATTERNS)

    @classmethod
    def is_solver_limit(cls, text: str) -> bool:
        """Check whether agent output describes a usage limit."""
        return cls._matches_any((text or "").lower(), cls.SOLVER_LIMIT_PATTERNS)

    @classmethod
    def is_solver_overload(cls, text: str) -> bool:
        """Check whether agent output describes a transient API overload."""
        return cls._matches_any((text or "").lower(), cls.SOLVER_OVERLOAD_PATTERNS)

    @classmethod
    def classify(cls, error: BaseException) -> ErrorCategory:
        """
        Classify an arbitrary exception.

        Hive errors report their own category; anything else is classified
        from its message text.
        """
        if isinstance(error, HiveError):
            return error.category
        message = str(error)
        if cls.is_github_rate_limit(message):
            return ErrorCategory.TRANSIENT_RATE_LIMIT
        return ErrorCategory.TRANSIENT_OTHER


def get_user_action_message(error: BaseException) -> str:
    """
    Generate a user-friendly message explaining how to fix the error.

    Args:
        error: The error that occurred

    Returns:
        Message with instructions for the user (rich markup)
    """
    if isinstance(error, SolverNotFoundError):
        return (
            f"[red]{error.cli_name} CLI is not installed.[/red]\n\n"
            "Install the agent CLI and authenticate it, then re-run the command."
        )

    if isinstance(error, GhCommandError) and "auth" in error.stderr.lower():
        return (
            "[red]GitHub CLI authentication required.[/red]\n\n"
            "To fix this, run:\n\n"
            "    gh auth login\n\n"
            "Then re-run your command."
        )

    category = ErrorClassifier.classify(error)
    if category == ErrorCategory.TRANSIENT_RATE_LIMIT:
        return (
            "[yellow]GitHub API rate limit reached.[/yellow]\n\n"
            "Wait a few minutes and try again, or narrow the monitored scope."
        )

    if category == ErrorCategory.FATAL_CONFIGURATION:
        return f"[red]Configuration error:[/red] {error}"

    return f"[red]Error:[/red] {error}\n\nCheck the log file for more details."
