"""Pytest configuration for Python tests."""

from __future__ import annotations

import pytest

from pgstat_alert.config import Config, set_config


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests that need a live PostgreSQL server")


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    """A controllable monotonic clock."""
    return FakeClock()


@pytest.fixture(autouse=True)
def default_config() -> None:
    """Keep the global configuration independent of the working directory."""
    set_config(Config())
