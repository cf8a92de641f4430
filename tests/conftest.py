# tests/conftest.py
"""Shared test fixtures.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
from collections.abc import Iterator

import pytest
import structlog
from hypothesis import Phase, Verbosity, settings

from errata.core.clock import MockClock
from errata.transport.transport import Transport
from tests.fixtures import START_TIME, TEST_URL, RecordingExecutor

# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> MockClock:
    """Mock wall clock starting at a fixed epoch time."""
    return MockClock(start=START_TIME)


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def transport(executor: RecordingExecutor, clock: MockClock) -> Iterator[Transport]:
    """Transport over the recording executor, closed after the test."""
    transport = Transport(executor, TEST_URL, clock=clock)
    yield transport
    transport.close(timeout=5.0)


@pytest.fixture(autouse=True)
def reset_structlog() -> Iterator[None]:
    """Undo structlog configuration leaked by capture_logs() between tests."""
    yield
    structlog.reset_defaults()
