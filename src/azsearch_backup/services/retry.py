"""Retry policy shared by the export and import stages."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Tuple, TypeVar

from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_random_exponential

from azsearch_backup.services.errors import RemoteCallError
from azsearch_backup.storage import StoreUnavailableError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Return True for failures worth another attempt."""

    if isinstance(exc, RemoteCallError):
        return exc.retryable
    return isinstance(exc, StoreUnavailableError)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient remote failures."""

    max_attempts: int = 4
    backoff_min_seconds: float = 1.0
    backoff_max_seconds: float = 20.0
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    @classmethod
    def from_settings(cls, transfer) -> "RetryPolicy":
        return cls(
            max_attempts=transfer.max_attempts,
            backoff_min_seconds=transfer.backoff_min_seconds,
            backoff_max_seconds=transfer.backoff_max_seconds,
        )

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_random_exponential(min=self.backoff_min_seconds, max=self.backoff_max_seconds),
            retry=retry_if_exception(is_transient),
            before_sleep=_log_retry,
            sleep=self.sleep,
            reraise=True,
        )

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Tuple[T, int]:
        """Run ``fn`` under the policy and return ``(result, attempts)``.

        The last exception propagates once attempts are exhausted or the
        failure is not transient. ``attempts`` counts every invocation.
        """

        attempts = 0

        def _attempt() -> T:
            nonlocal attempts
            attempts += 1
            return fn(*args, **kwargs)

        try:
            result = self._retrying()(_attempt)
        except Exception as exc:
            exc.attempts = attempts  # type: ignore[attr-defined]
            raise
        return result, attempts


def _log_retry(retry_state) -> None:
    outcome = retry_state.outcome
    LOGGER.warning(
        "Transient failure on attempt %s, retrying: %s",
        retry_state.attempt_number,
        outcome.exception() if outcome else "unknown",
    )


__all__ = ["RetryPolicy", "is_transient"]
