"""Shared fixtures for hive-mind tests."""

from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from hive_mind.config import HiveConfig, clear_config_cache


@pytest.fixture(autouse=True)
def _reset_caches():
    """Keep the config cache from leaking between tests."""
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def config(tmp_path):
    """Config with every delay set to zero and logs under tmp_path."""
    cfg = HiveConfig(log_dir=str(tmp_path / "logs"), temp_dir=str(tmp_path / "work"))
    cfg.github.api_delay_seconds = 0
    cfg.github.repo_delay_seconds = 0
    cfg.monitor.worker_poll_seconds = 0.01
    cfg.monitor.attempt_delay_seconds = 0
    cfg.monitor.once_poll_seconds = 0.01
    cfg.monitor.shutdown_grace_seconds = 1
    cfg.retry.base_delay_seconds = 0
    return cfg


@pytest.fixture
def sleeps():
    """Recording stand-in for time.sleep."""
    calls = []

    def fake_sleep(seconds):
        calls.append(seconds)

    fake_sleep.calls = calls
    return fake_sleep


@pytest.fixture
def gh():
    """MagicMock standing in for GitHubClient."""
    return MagicMock(name="GitHubClient")


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    return CliRunner()
