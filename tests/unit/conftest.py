"""Shared fixtures for the unit tests."""

from __future__ import annotations

import pytest

from azsearch_backup.services.retry import RetryPolicy
from fakes import MemoryStore


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def no_wait_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, backoff_min_seconds=0, backoff_max_seconds=0, sleep=lambda _: None)
