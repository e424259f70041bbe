"""Document-level operations against one index of a search service."""

from __future__ import annotations

import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx
from azure.core.credentials import AzureKeyCredential
from azure.core.exceptions import AzureError
from azure.search.documents import SearchClient

from azsearch_backup.services.errors import RemoteCallError, from_azure_error, from_httpx_error

LOGGER = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2023-11-01"
ANNOTATION_PREFIX = "@search."


@dataclass(slots=True)
class UploadOutcome:
    """Result of one bulk upload request."""

    status_code: int
    succeeded: int = 0
    failed_keys: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_keys


def strip_annotations(document: Dict[str, Any]) -> Dict[str, Any]:
    """Drop ``@search.*`` members (score, highlights) added to query results."""

    return {key: value for key, value in document.items() if not key.startswith(ANNOTATION_PREFIX)}


def parse_upload_response(status_code: int, body: bytes | str | None) -> UploadOutcome:
    """Summarise a ``docs/index`` response, including 207 partial failures."""

    outcome = UploadOutcome(status_code=status_code)
    if not body:
        return outcome
    try:
        payload = json.loads(body)
    except ValueError:
        LOGGER.warning("Bulk upload returned a non-JSON body (status=%s)", status_code)
        return outcome
    for item in payload.get("value") or []:
        if item.get("status", True):
            outcome.succeeded += 1
            continue
        key = str(item.get("key"))
        outcome.failed_keys.append(key)
        outcome.errors.append(f"{key}: {item.get('errorMessage') or item.get('statusCode')}")
    return outcome


class SearchGateway:
    """Wraps a ``SearchClient`` plus the raw REST bulk-upload endpoint."""

    def __init__(
        self,
        *,
        endpoint: str,
        index_name: str,
        api_key: str,
        api_version: str = DEFAULT_API_VERSION,
        timeout_seconds: float = 120.0,
        search_client: Optional[SearchClient] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        if not endpoint or not index_name:
            raise ValueError("SearchGateway requires both endpoint and index_name")
        self.endpoint = endpoint.rstrip("/")
        self.index_name = index_name
        self._api_key = api_key
        self._api_version = api_version
        self._client = search_client or SearchClient(
            endpoint=self.endpoint,
            index_name=index_name,
            credential=AzureKeyCredential(api_key),
        )
        self._owns_http = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout_seconds)

    @property
    def upload_url(self) -> str:
        return f"{self.endpoint}/indexes/{self.index_name}/docs/index"

    def document_count(self) -> int:
        """Return the total count reported by a count-only query."""

        try:
            results = self._client.search(search_text="*", include_total_count=True, top=0)
            count = results.get_count()
        except AzureError as exc:
            raise from_azure_error(f"Counting documents in '{self.index_name}'", exc) from exc
        return int(count or 0)

    def fetch_page(self, skip: int, top: int, *, order_by: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        """Return up to ``top`` documents after skipping ``skip`` matches."""

        kwargs: Dict[str, Any] = {"search_text": "*", "search_mode": "all", "top": top, "skip": skip}
        if order_by:
            kwargs["order_by"] = list(order_by)
        try:
            results = self._client.search(**kwargs)
            return [strip_annotations(dict(doc)) for doc in itertools.islice(results, top)]
        except AzureError as exc:
            raise from_azure_error(f"Fetching '{self.index_name}' documents skip={skip} top={top}", exc) from exc

    def upload_batch(self, body: bytes) -> UploadOutcome:
        """POST a ``{"value": [...]}`` body verbatim to the bulk index endpoint."""

        try:
            response = self._http.post(
                self.upload_url,
                params={"api-version": self._api_version},
                headers={"api-key": self._api_key, "Content-Type": "application/json"},
                content=body,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise from_httpx_error(f"Uploading documents to '{self.index_name}'", exc) from exc
        return parse_upload_response(response.status_code, response.content)

    def close(self) -> None:
        if self._owns_http:
            self._http.close()
        close = getattr(self._client, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> "SearchGateway":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["RemoteCallError", "SearchGateway", "UploadOutcome", "parse_upload_response", "strip_annotations"]
