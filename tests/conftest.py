"""Root pytest fixtures for hybrid-query tests."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from hybrid_query.resilience import reset_state_store


class FakeClock:
    """Epoch-seconds clock advanced by hand."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Manually advanced clock for breakers and stores."""
    return FakeClock()


@pytest.fixture(autouse=True)
def _isolated_state_store() -> Iterator[None]:
    """Every test starts and ends with the in-memory process store."""
    reset_state_store()
    yield
    reset_state_store()


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "redis: test exercises the redis-backed state store",
    )
