"""Polling helpers that wait for the search service to catch up.

Transient remote failures during a poll are logged and the poll is tried
again on the next interval; they count against the same timeout.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from azsearch_backup.services.errors import RemoteCallError
from azsearch_backup.services.index_schema import IndexSchemaService
from azsearch_backup.services.search_gateway import SearchGateway

LOGGER = logging.getLogger(__name__)


def _poll(fn: Callable[[], Any], what: str) -> Optional[Any]:
    """Call ``fn``; None when it failed with a retryable error."""

    try:
        return fn()
    except RemoteCallError as exc:
        if not exc.retryable:
            raise
        LOGGER.warning("%s failed transiently, polling again: %s", what, exc)
        return None


def wait_for_index_deletion(
    schema: IndexSchemaService,
    index_name: str,
    *,
    timeout_seconds: float,
    interval_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Poll until ``index_name`` no longer exists; False when the timeout elapsed first."""

    deadline = clock() + timeout_seconds
    while True:
        exists = _poll(lambda: schema.index_exists(index_name), f"Checking index {index_name}")
        if exists is False:
            return True
        if clock() >= deadline:
            LOGGER.warning("Index %s still present after %.0fs", index_name, timeout_seconds)
            return False
        sleep(interval_seconds)


def wait_for_document_count(
    gateway: SearchGateway,
    expected: int,
    *,
    timeout_seconds: float,
    interval_seconds: float,
    stable_polls: int = 5,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Poll the document count until it reaches ``expected`` or stops moving.

    Returns the last observed count. A count that stays the same for
    ``stable_polls`` consecutive polls is treated as settled even when it is
    short of ``expected``; a timeout returns whatever was seen last (0 when
    no poll succeeded).
    """

    deadline = clock() + timeout_seconds
    last = None
    unchanged = 0
    while True:
        count = _poll(gateway.document_count, f"Counting {gateway.index_name}")
        if count is not None:
            if count >= expected:
                return count
            unchanged = unchanged + 1 if count == last else 0
            last = count
            if stable_polls and unchanged >= stable_polls:
                LOGGER.warning(
                    "Document count of %s settled at %d, expected %d", gateway.index_name, count, expected
                )
                return count
        if clock() >= deadline:
            LOGGER.warning(
                "Timed out after %.0fs waiting for %s to reach %d documents (last=%s)",
                timeout_seconds,
                gateway.index_name,
                expected,
                last,
            )
            return last or 0
        LOGGER.info("Waiting for %s to index content: %s/%d", gateway.index_name, last, expected)
        sleep(interval_seconds)


__all__ = ["wait_for_document_count", "wait_for_index_deletion"]
