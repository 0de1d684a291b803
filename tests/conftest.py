"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before any import that might load settings.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.pop("DISABLE_RATE_LIMITING", None)
os.environ.pop("APP_DISABLE_RATE_LIMITING", None)
os.environ.pop("APP_RATE_LIMIT_MULTIPLIER", None)

from unittest.mock import Mock

import pytest

from admission.adapters.rate_limit.in_memory import InMemoryWindowStore
from admission.services.limiter import Limiter, LimiterPolicy


@pytest.fixture
def clock() -> Mock:
    """Controllable time source starting at a fixed epoch second."""
    return Mock(return_value=1_700_000_000.0)


@pytest.fixture
def store(clock: Mock):
    """Window store without the background sweep thread."""
    store = InMemoryWindowStore(auto_sweep=False, clock=clock)
    yield store
    store.destroy()


@pytest.fixture
def make_limiter(store: InMemoryWindowStore, clock: Mock):
    """Build limiters over the shared test store and clock."""

    def _make(**policy_kwargs) -> Limiter:
        policy_kwargs.setdefault("window_seconds", 60)
        policy_kwargs.setdefault("max_requests", 3)
        return Limiter(LimiterPolicy(**policy_kwargs), store, name="test", clock=clock)

    return _make
