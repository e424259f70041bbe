"""Tests for the polling helpers."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from azsearch_backup.services.errors import RemoteCallError
from azsearch_backup.services.settle import wait_for_document_count, wait_for_index_deletion


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class _CountingGateway:
    index_name = "hotels-copy"

    def __init__(self, counts):
        self._counts = list(counts)

    def document_count(self) -> int:
        if len(self._counts) > 1:
            return self._counts.pop(0)
        return self._counts[0]


def test_wait_for_count_returns_once_expected_reached():
    clock = _Clock()
    gateway = _CountingGateway([0, 400, 1200])

    count = wait_for_document_count(
        gateway, 1200, timeout_seconds=60, interval_seconds=2, sleep=clock.sleep, clock=clock
    )

    assert count == 1200
    assert clock.now == 4


def test_wait_for_count_stops_when_count_is_stable():
    clock = _Clock()
    gateway = _CountingGateway([100, 800])

    count = wait_for_document_count(
        gateway, 1200, timeout_seconds=600, interval_seconds=1, stable_polls=3, sleep=clock.sleep, clock=clock
    )

    assert count == 800
    assert clock.now == 4


def test_wait_for_count_gives_up_at_timeout():
    clock = _Clock()
    counts = iter(range(0, 10_000, 10))
    gateway = SimpleNamespace(index_name="x", document_count=lambda: next(counts))

    count = wait_for_document_count(
        gateway, 1_000_000, timeout_seconds=5, interval_seconds=1, sleep=clock.sleep, clock=clock
    )

    assert count == 50
    assert clock.now == 5


def test_wait_for_index_deletion():
    clock = _Clock()
    states = iter([True, True, False])
    schema = SimpleNamespace(index_exists=lambda name: next(states))

    assert wait_for_index_deletion(schema, "x", timeout_seconds=10, interval_seconds=1, sleep=clock.sleep, clock=clock)
    assert clock.now == 2


def test_wait_for_index_deletion_times_out():
    clock = _Clock()
    schema = SimpleNamespace(index_exists=lambda name: True)

    assert not wait_for_index_deletion(
        schema, "x", timeout_seconds=3, interval_seconds=1, sleep=clock.sleep, clock=clock
    )


class _FlakyGateway:
    index_name = "hotels-copy"

    def __init__(self, outcomes):
        self._outcomes = list(outcomes)

    def document_count(self) -> int:
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_wait_for_count_keeps_polling_through_transient_errors():
    clock = _Clock()
    gateway = _FlakyGateway([5, RemoteCallError("busy", status_code=503, retryable=True), 12])

    count = wait_for_document_count(
        gateway, 12, timeout_seconds=60, interval_seconds=1, sleep=clock.sleep, clock=clock
    )

    assert count == 12
    assert clock.now == 2


def test_wait_for_count_propagates_permanent_errors():
    clock = _Clock()
    gateway = _FlakyGateway([RemoteCallError("forbidden", status_code=403)])

    with pytest.raises(RemoteCallError):
        wait_for_document_count(gateway, 1, timeout_seconds=60, interval_seconds=1, sleep=clock.sleep, clock=clock)


def test_wait_for_index_deletion_tolerates_throttling():
    clock = _Clock()
    states = iter([True, RemoteCallError("throttled", status_code=429, retryable=True), False])

    def index_exists(name):
        state = next(states)
        if isinstance(state, Exception):
            raise state
        return state

    schema = SimpleNamespace(index_exists=index_exists)

    assert wait_for_index_deletion(schema, "x", timeout_seconds=10, interval_seconds=1, sleep=clock.sleep, clock=clock)
    assert clock.now == 2
