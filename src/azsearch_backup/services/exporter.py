"""Export stage: page through a source index and write batch files to the store."""

from __future__ import annotations

import logging
from collections import Counter
from concurrent import futures
from typing import Any, Dict, List, Optional, Sequence, Tuple

from azsearch_backup.observability import Observability
from azsearch_backup.services.batches import (
    BatchResult,
    BatchWindow,
    TransferReport,
    encode_batch,
    plan_batches,
    select_batch_files,
)
from azsearch_backup.services.geo import transform_document
from azsearch_backup.services.retry import RetryPolicy
from azsearch_backup.services.search_gateway import SearchGateway
from azsearch_backup.storage import BlobStore

LOGGER = logging.getLogger(__name__)

# Azure Cognitive Search rejects skip values above this.
MAX_SKIP = 100_000


def _retries_of(exc: BaseException) -> int:
    return max(getattr(exc, "attempts", 1) - 1, 0)


class DocumentExporter:
    """Write every document of ``index_name`` into ``<index><n>.json`` batch files.

    Windows are drained by a bounded thread pool; each task owns its skip
    offset and output blob, so nothing is shared between workers. A failing
    batch is recorded in the report and does not stop the others.
    """

    def __init__(
        self,
        *,
        gateway: SearchGateway,
        store: BlobStore,
        index_name: str,
        page_size: int = 500,
        parallelism: int = 10,
        key_field: Optional[str] = None,
        order_by: Optional[Sequence[str]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        observability: Optional[Observability] = None,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._index_name = index_name
        self._page_size = page_size
        self._parallelism = max(parallelism, 1)
        self._key_field = key_field
        self._order_by = list(order_by) if order_by else None
        self._retry = retry_policy or RetryPolicy()
        self._observability = observability

    def clear_existing(self) -> List[str]:
        """Delete earlier batch files of this index; returns the deleted names.

        Individual delete failures are logged and skipped.
        """

        deleted: List[str] = []
        for blob in select_batch_files(self._store.list(prefix=self._index_name), self._index_name):
            try:
                if self._store.delete(blob.name):
                    deleted.append(blob.name)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Failed to delete stale batch file %s", blob.name)
        if deleted:
            LOGGER.info("Removed %d existing batch file(s) for %s", len(deleted), self._index_name)
        return deleted

    def export(self, document_count: Optional[int] = None) -> TransferReport:
        """Run the export and return per-batch results.

        Args:
            document_count: Source count when the caller already has it;
                otherwise a count-only query is issued.
        """

        if document_count is None:
            document_count, _ = self._retry.call(self._gateway.document_count)
        report = TransferReport(stage="export", index_name=self._index_name, expected_documents=document_count)

        self.clear_existing()
        windows = plan_batches(self._index_name, document_count, self._page_size)
        if windows and windows[-1].skip > MAX_SKIP:
            LOGGER.warning(
                "Index %s holds %d documents; pages beyond skip=%d will be rejected by the service",
                self._index_name,
                document_count,
                MAX_SKIP,
            )
        LOGGER.info(
            "Exporting %d documents from %s in %d batch(es) of %d with parallelism=%d",
            document_count,
            self._index_name,
            len(windows),
            self._page_size,
            self._parallelism,
        )

        keys_seen: Counter[str] = Counter()
        if windows:
            workers = min(self._parallelism, len(windows))
            with futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="export") as pool:
                pending = {pool.submit(self._export_window, window): window for window in windows}
                for future in futures.as_completed(pending):
                    result, keys = future.result()
                    report.results.append(result)
                    keys_seen.update(keys)

        report.results.sort(key=lambda result: result.sequence or 0)
        report.duplicate_keys = sorted(key for key, seen in keys_seen.items() if seen > 1)
        if report.duplicate_keys:
            LOGGER.warning(
                "%d key(s) appeared in more than one batch of %s; the source changed during export",
                len(report.duplicate_keys),
                self._index_name,
            )
        LOGGER.info("Export of %s finished: %s", self._index_name, report.summary())
        if self._observability:
            self._observability.emit_event(
                "export.completed",
                index=self._index_name,
                expected_documents=document_count,
                documents=report.documents_transferred,
                batches=report.total_batches,
                failed_batches=[result.name for result in report.failed],
            )
        return report

    def _export_window(self, window: BatchWindow) -> Tuple[BatchResult, List[str]]:
        result = BatchResult(name=window.name, sequence=window.sequence, skip=window.skip)
        keys: List[str] = []
        try:
            documents, attempts = self._retry.call(
                self._gateway.fetch_page, window.skip, window.top, order_by=self._order_by
            )
            result.retries += attempts - 1
            if not documents:
                raise RuntimeError(f"page at skip={window.skip} returned no documents")
            transformed = [transform_document(document) for document in documents]
            keys = self._keys(transformed)
            _, attempts = self._retry.call(self._store.write, window.name, encode_batch(transformed))
            result.retries += attempts - 1
            result.documents = len(transformed)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Export of batch %s (skip=%d) failed", window.name, window.skip)
            result.retries += _retries_of(exc)
            result.error = f"{type(exc).__name__}: {exc}"
            return result, []
        LOGGER.info("Wrote %d docs to %s", result.documents, window.name)
        return result, keys

    def _keys(self, documents: List[Dict[str, Any]]) -> List[str]:
        if not self._key_field:
            return []
        return [str(document[self._key_field]) for document in documents if self._key_field in document]


__all__ = ["DocumentExporter", "MAX_SKIP"]
