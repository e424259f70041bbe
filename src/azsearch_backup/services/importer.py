"""Import stage: post every batch file of an index to the target bulk endpoint."""

from __future__ import annotations

import logging
from typing import Optional

from azsearch_backup.observability import Observability
from azsearch_backup.services.batches import BatchResult, TransferReport, batch_sequence, select_batch_files
from azsearch_backup.services.retry import RetryPolicy
from azsearch_backup.services.search_gateway import SearchGateway
from azsearch_backup.storage import BlobStore

LOGGER = logging.getLogger(__name__)

_MAX_REPORTED_KEYS = 20


class BatchUploadError(RuntimeError):
    """Raised when the service rejects documents inside an accepted request."""


class DocumentImporter:
    """Upload the ``<index><n>.json`` files of ``index_name`` into ``gateway``'s index.

    Files are processed one at a time in store listing order. Each file is
    isolated: a failure is recorded and the next file is attempted.
    """

    def __init__(
        self,
        *,
        gateway: SearchGateway,
        store: BlobStore,
        index_name: str,
        retry_policy: Optional[RetryPolicy] = None,
        observability: Optional[Observability] = None,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._index_name = index_name
        self._retry = retry_policy or RetryPolicy()
        self._observability = observability

    def import_all(self) -> TransferReport:
        report = TransferReport(stage="import", index_name=self._index_name)
        blobs = select_batch_files(self._store.list(prefix=self._index_name), self._index_name)
        LOGGER.info(
            "Uploading %d batch file(s) of %s into %s",
            len(blobs),
            self._index_name,
            self._gateway.index_name,
        )
        for blob in blobs:
            report.results.append(self.import_file(blob.name))

        LOGGER.info("Import into %s finished: %s", self._gateway.index_name, report.summary())
        if self._observability:
            self._observability.emit_event(
                "import.completed",
                index=self._gateway.index_name,
                documents=report.documents_transferred,
                batches=report.total_batches,
                failed_batches=[result.name for result in report.failed],
            )
        return report

    def import_file(self, name: str) -> BatchResult:
        result = BatchResult(name=name, sequence=batch_sequence(name, self._index_name))
        LOGGER.info("Uploading documents from file %s", name)
        try:
            body, attempts = self._retry.call(self._store.read, name)
            result.retries += attempts - 1
            if body is None:
                raise FileNotFoundError(f"batch file {name} disappeared from the store")
            outcome, attempts = self._retry.call(self._gateway.upload_batch, body)
            result.retries += attempts - 1
            result.documents = outcome.succeeded
            if not outcome.ok:
                keys = ", ".join(outcome.failed_keys[:_MAX_REPORTED_KEYS])
                raise BatchUploadError(f"{len(outcome.failed_keys)} document(s) rejected: {keys}")
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Upload of batch %s failed", name)
            result.retries += max(getattr(exc, "attempts", 1) - 1, 0)
            result.error = f"{type(exc).__name__}: {exc}"
        return result


__all__ = ["BatchUploadError", "DocumentImporter"]
