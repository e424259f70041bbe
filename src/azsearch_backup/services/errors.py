"""Errors raised by the search service wrappers."""

from __future__ import annotations

import httpx
from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)

TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class RemoteCallError(RuntimeError):
    """Raised when a call to the search service fails.

    ``retryable`` is set for throttling, server-side and connection errors.
    """

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class SchemaError(ValueError):
    """Raised when an index definition cannot be used for a copy."""


def from_azure_error(operation: str, exc: AzureError) -> RemoteCallError:
    """Wrap an Azure SDK exception, classifying whether a retry makes sense."""

    status_code = None
    retryable = isinstance(exc, (ServiceRequestError, ServiceResponseError))
    if isinstance(exc, HttpResponseError):
        status_code = exc.status_code
        retryable = status_code in TRANSIENT_STATUS_CODES
    if isinstance(exc, ResourceNotFoundError):
        retryable = False
    return RemoteCallError(f"{operation} failed: {exc}", status_code=status_code, retryable=retryable)


def from_httpx_error(operation: str, exc: httpx.HTTPError) -> RemoteCallError:
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        return RemoteCallError(
            f"{operation} failed with HTTP {status_code}: {exc.response.text[:500]}",
            status_code=status_code,
            retryable=status_code in TRANSIENT_STATUS_CODES,
        )
    return RemoteCallError(f"{operation} failed: {exc}", retryable=isinstance(exc, httpx.TransportError))
