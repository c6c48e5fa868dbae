"""
Configuration loading and validation for Hive Mind.

This module handles:
- Loading hive.yaml from the working directory (optional)
- Environment variable resolution (${VAR} syntax)
- Environment overrides for delays, timeouts and retry ceilings
- Default values for every field
- Caching of the loaded configuration
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


@dataclass
class GitHubConfig:
    """Tracking-service access and throttling configuration."""
    api_delay_seconds: float = 5.0             # Delay before and after each primary query
    repo_delay_seconds: float = 2.0            # Delay between repositories / link batches
    search_page_size: int = 100                # Ceiling for `gh search` queries
    list_page_size: int = 1000                 # Ceiling for `gh issue list` queries
    fallback_page_size: int = 100              # Page size for the single non-rate-limit retry
    link_batch_size: int = 50                  # Issues per GraphQL link-status query
    gh_timeout_seconds: int = 120              # Timeout for a single gh invocation
    base_url: str = "https://github.com"


@dataclass
class MonitorConfig:
    """Monitor loop and worker pool configuration."""
    concurrency: int = 2                       # Number of concurrent workers
    interval_seconds: float = 300.0            # Sleep between discovery ticks
    attempts_per_item: int = 1                 # Pull requests to generate per issue
    worker_poll_seconds: float = 5.0           # Idle worker sleep when the queue is empty
    attempt_delay_seconds: float = 10.0        # Delay between attempts for the same issue
    once_poll_seconds: float = 5.0             # Stats polling interval in single-pass mode
    shutdown_grace_seconds: float = 10.0       # Max wait for in-flight items on interrupt
    max_items: int = 0                         # 0 = unlimited


@dataclass
class SolverConfig:
    """Coding-agent CLI configuration."""
    tool: str = "claude"                       # Key into the solver registry
    model: str = "sonnet"                      # Model passed to the agent CLI
    claude_binary: str = "claude"
    codex_binary: str = "codex"
    opencode_binary: str = "opencode"
    timeout_seconds: int = 0                   # 0 = no timeout for the agent process


@dataclass
class RetryConfig:
    """Retry strategy for overloaded agent APIs."""
    max_retries: int = 3                       # Maximum retry attempts
    base_delay_seconds: float = 5.0            # Base delay, doubled on every retry


@dataclass
class WatchConfig:
    """Post-solve watch mode configuration."""
    interval_seconds: float = 60.0             # Delay between feedback checks


@dataclass
class ResumeConfig:
    """Limit-reached auto-continue configuration."""
    long_wait_countdown_seconds: float = 1800.0  # Countdown step for waits over 30 minutes
    short_wait_countdown_seconds: float = 60.0   # Countdown step for shorter waits


@dataclass
class HiveConfig:
    """
    Main configuration for Hive Mind.

    This is the top-level config loaded from hive.yaml.
    """
    log_dir: str = "."
    temp_dir: str = "/tmp"

    github: GitHubConfig = field(default_factory=GitHubConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    solver: SolverConfig = field(default_factory=SolverConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    resume: ResumeConfig = field(default_factory=ResumeConfig)

    def __post_init__(self) -> None:
        """Convert the log directory to an absolute path."""
        self.log_dir = str(Path(self.log_dir).absolute())

    @property
    def logs_path(self) -> Path:
        """Absolute path to the log directory."""
        return Path(self.log_dir)


# Module-level cache for the loaded configuration
_config_cache: Optional[HiveConfig] = None

DEFAULT_CONFIG_FILE = "hive.yaml"


def _ms(value: str) -> float:
    """Convert a millisecond string to seconds."""
    return float(value) / 1000.0


# Environment overrides: (variable, section, field, converter)
ENV_OVERRIDES: list[tuple[str, str, str, Callable[[str], Any]]] = [
    ("HIVE_GITHUB_API_DELAY_MS", "github", "api_delay_seconds", _ms),
    ("HIVE_GITHUB_REPO_DELAY_MS", "github", "repo_delay_seconds", _ms),
    ("HIVE_GITHUB_LINK_BATCH_SIZE", "github", "link_batch_size", int),
    ("HIVE_GH_TIMEOUT_SECONDS", "github", "gh_timeout_seconds", int),
    ("HIVE_SOLVER_TIMEOUT_SECONDS", "solver", "timeout_seconds", int),
    ("HIVE_RETRY_BASE_DELAY_MS", "retry", "base_delay_seconds", _ms),
    ("HIVE_MAX_API_RETRIES", "retry", "max_retries", int),
    ("HIVE_WATCH_INTERVAL", "watch", "interval_seconds", float),
    ("HIVE_SHUTDOWN_GRACE_SECONDS", "monitor", "shutdown_grace_seconds", float),
    ("HIVE_WORKER_POLL_SECONDS", "monitor", "worker_poll_seconds", float),
]


def _resolve_env_vars(value: Any) -> Any:
    """
    Resolve environment variables in a value.

    Supports ${VAR} syntax for environment variable substitution.
    Returns the original value if it's not a string.
    """
    if isinstance(value, str):
        pattern = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

        def replace(match: re.Match) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigError(f"Environment variable ${{{var_name}}} is not set")
            return env_value

        return pattern.sub(replace, value)

    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]

    return value


def _build_section(cls: type, data: Any, name: str) -> Any:
    """Build a nested config dataclass, rejecting unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")
    known = set(cls.__dataclass_fields__)
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown keys in section '{name}': {', '.join(unknown)}")
    return cls(**data)


def apply_env_overrides(config: HiveConfig, environ: Optional[dict[str, str]] = None) -> HiveConfig:
    """
    Apply HIVE_* environment overrides to a loaded configuration.

    Values that cannot be parsed are ignored and the existing value is kept.
    """
    env = os.environ if environ is None else environ
    for var_name, section, attr, convert in ENV_OVERRIDES:
        raw = env.get(var_name)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError:
            continue
        setattr(getattr(config, section), attr, value)
    return config


def validate_config(config: HiveConfig) -> None:
    """Raise ConfigError when a numeric setting is out of range."""
    if config.monitor.concurrency < 1:
        raise ConfigError("monitor.concurrency must be at least 1")
    if config.monitor.attempts_per_item < 1:
        raise ConfigError("monitor.attempts_per_item must be at least 1")
    if config.monitor.max_items < 0:
        raise ConfigError("monitor.max_items must not be negative")
    if config.github.link_batch_size < 1:
        raise ConfigError("github.link_batch_size must be at least 1")
    for name in ("search_page_size", "list_page_size", "fallback_page_size"):
        if getattr(config.github, name) < 1:
            raise ConfigError(f"github.{name} must be at least 1")
    if config.retry.max_retries < 0:
        raise ConfigError("retry.max_retries must not be negative")


def load_config(config_path: Optional[str] = None) -> HiveConfig:
    """
    Load configuration from hive.yaml.

    Args:
        config_path: Optional path to config file. If not provided,
                     looks for hive.yaml in the current directory and
                     falls back to defaults when it does not exist.

    Returns:
        HiveConfig: Loaded and validated configuration.

    Raises:
        ConfigError: If config is invalid or cannot be loaded.
    """
    explicit = config_path is not None
    path = Path(config_path or DEFAULT_CONFIG_FILE)

    if not path.exists():
        if explicit:
            raise ConfigError(f"Configuration file not found: {config_path}")
        config = HiveConfig()
        apply_env_overrides(config)
        validate_config(config)
        return config

    try:
        with open(path, "r") as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    data = _resolve_env_vars(raw_data or {})
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    try:
        config = HiveConfig(
            log_dir=data.get("log_dir", "."),
            temp_dir=data.get("temp_dir", "/tmp"),
            github=_build_section(GitHubConfig, data.get("github"), "github"),
            monitor=_build_section(MonitorConfig, data.get("monitor"), "monitor"),
            solver=_build_section(SolverConfig, data.get("solver"), "solver"),
            retry=_build_section(RetryConfig, data.get("retry"), "retry"),
            watch=_build_section(WatchConfig, data.get("watch"), "watch"),
            resume=_build_section(ResumeConfig, data.get("resume"), "resume"),
        )
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}")

    apply_env_overrides(config)
    validate_config(config)
    return config


def get_config(config_path: Optional[str] = None, force_reload: bool = False) -> HiveConfig:
    """
    Get the cached configuration, loading it if necessary.

    Args:
        config_path: Optional path to config file.
        force_reload: If True, reload configuration even if cached.

    Returns:
        HiveConfig: The loaded configuration.

    Raises:
        ConfigError: If config is invalid or cannot be loaded.
    """
    global _config_cache

    if _config_cache is None or force_reload:
        _config_cache = load_config(config_path)

    return _config_cache


def clear_config_cache() -> None:
    """Clear the configuration cache. Useful for testing."""
    global _config_cache
    _config_cache = None
