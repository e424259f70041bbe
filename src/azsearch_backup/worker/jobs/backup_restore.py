"""Backup/restore job: copy one search index into a freshly created target index.

Steps run strictly in order:

1. force every source field retrievable (original schema remembered),
2. count the source and export it to batch files,
3. put the original source schema back,
4. delete the target index and wait until it is gone,
5. create the target from the source schema under the target name,
6. upload every batch file and wait for indexing to settle,
7. count the target and compare.

Schema reads/writes and index deletion/creation are fatal; batch failures are
recorded and make the run unsuccessful without stopping it. The target is
always replaced, never merged into.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Literal, Optional

from azure.search.documents.indexes.models import SearchIndex

from azsearch_backup.observability import Observability
from azsearch_backup.services.batches import TransferReport
from azsearch_backup.services.errors import RemoteCallError, SchemaError
from azsearch_backup.services.exporter import DocumentExporter
from azsearch_backup.services.importer import DocumentImporter
from azsearch_backup.services.index_schema import (
    IndexSchemaService,
    clone_for,
    hidden_field_names,
    index_from_dict,
    index_to_dict,
    key_field,
    with_all_fields_retrievable,
)
from azsearch_backup.services.retry import RetryPolicy
from azsearch_backup.services.search_gateway import SearchGateway
from azsearch_backup.services.settle import wait_for_document_count, wait_for_index_deletion
from azsearch_backup.settings import Settings
from azsearch_backup.storage import BlobStore, StoreUnavailableError

LOGGER = logging.getLogger("azsearch_backup.worker.jobs.backup_restore")

Mode = Literal["full", "backup", "restore"]
MODES = ("full", "backup", "restore")


class JobFailedError(RuntimeError):
    """Raised when a step the rest of the job depends on fails."""

    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(f"{step} failed: {cause}")
        self.step = step
        self.cause = cause


def schema_blob_name(index_name: str) -> str:
    return f"{index_name}.schema.json"


@dataclass
class RunReport:
    """Final outcome of a job run."""

    mode: str
    source_index: str
    target_index: Optional[str] = None
    source_count: Optional[int] = None
    target_count: Optional[int] = None
    export: Optional[TransferReport] = None
    imported: Optional[TransferReport] = None

    @property
    def expected_target_count(self) -> Optional[int]:
        if self.source_count is not None:
            return self.source_count
        if self.imported is not None:
            return self.imported.documents_transferred
        return None

    @property
    def succeeded(self) -> bool:
        if self.export is not None:
            if not self.export.ok or self.export.documents_transferred != self.source_count:
                return False
        if self.mode in {"full", "restore"}:
            if self.imported is None or not self.imported.ok:
                return False
            if self.target_count is None or self.target_count != self.expected_target_count:
                return False
        return True

    def summary_lines(self) -> list[str]:
        lines = []
        if self.source_count is not None:
            lines.append(f"Source index {self.source_index} contains {self.source_count} docs")
        if self.export is not None:
            lines.append(f"Export: {self.export.summary()}, {self.export.documents_transferred} docs written")
            if self.export.duplicate_keys:
                lines.append(f"Export: {len(self.export.duplicate_keys)} duplicate key(s) across batches")
        if self.imported is not None:
            lines.append(f"Import: {self.imported.summary()}, {self.imported.documents_transferred} docs uploaded")
        if self.target_count is not None:
            lines.append(f"Target index {self.target_index} contains {self.target_count} docs")
        lines.append("Result: " + ("SUCCESS" if self.succeeded else "INCOMPLETE"))
        return lines

    def as_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "source_index": self.source_index,
            "target_index": self.target_index,
            "source_count": self.source_count,
            "target_count": self.target_count,
            "succeeded": self.succeeded,
            "export": self.export.as_dict() if self.export else None,
            "import": self.imported.as_dict() if self.imported else None,
        }


class BackupRestoreJob:
    """Runs the backup and/or restore legs against injected clients."""

    def __init__(
        self,
        *,
        settings: Settings,
        store: BlobStore,
        source_schema: Optional[IndexSchemaService] = None,
        source_gateway: Optional[SearchGateway] = None,
        target_schema: Optional[IndexSchemaService] = None,
        target_gateway: Optional[SearchGateway] = None,
        retry_policy: Optional[RetryPolicy] = None,
        observability: Optional[Observability] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._store = store
        self._source_schema = source_schema
        self._source_gateway = source_gateway
        self._target_schema = target_schema
        self._target_gateway = target_gateway
        self._retry = retry_policy or RetryPolicy.from_settings(settings.transfer)
        self._observability = observability
        self._sleep = sleep
        self.source_index = settings.source.index_name
        self.target_index = settings.target.index_name

    def run(self, mode: Mode = "full") -> RunReport:
        if mode not in MODES:
            raise ValueError(f"Unknown mode '{mode}'")
        report = RunReport(mode=mode, source_index=self.source_index)
        definition = None
        if mode in {"full", "backup"}:
            definition = self.backup(report)
        if mode in {"full", "restore"}:
            self.restore(report, definition)
        self._emit("job.completed", **report.as_dict())
        return report

    # ------------------------------------------------------------------
    # Backup leg
    # ------------------------------------------------------------------

    def backup(self, report: RunReport) -> SearchIndex:
        """Export the source index; returns its original definition."""

        schema = self._require(self._source_schema, "source schema service")
        gateway = self._require(self._source_gateway, "source gateway")

        original = self._step("Reading source schema", schema.get_index, self.source_index)
        try:
            key = key_field(original)
        except SchemaError as exc:
            raise JobFailedError("Validating source schema", exc) from exc
        self._save_schema(original)

        hidden = hidden_field_names(original)
        if hidden:
            LOGGER.info("Making %d hidden field(s) retrievable for export: %s", len(hidden), ", ".join(hidden))
            self._step("Making source fields retrievable", schema.create_or_update_index, with_all_fields_retrievable(original))
        try:
            report.source_count = self._step("Counting source documents", self._count, gateway)
            exporter = DocumentExporter(
                gateway=gateway,
                store=self._store,
                index_name=self.source_index,
                page_size=self._settings.transfer.page_size,
                parallelism=self._settings.transfer.parallelism,
                key_field=key.name,
                order_by=[key.name] if getattr(key, "sortable", False) else None,
                retry_policy=self._retry,
                observability=self._observability,
            )
            report.export = self._step("Exporting documents", exporter.export, report.source_count)
        finally:
            if hidden:
                self._step("Restoring source schema", schema.create_or_update_index, original)
        return original

    def _save_schema(self, index: SearchIndex) -> None:
        name = schema_blob_name(self.source_index)
        try:
            self._store.write(name, json.dumps(index_to_dict(index), indent=2).encode("utf-8"))
        except StoreUnavailableError:
            LOGGER.exception("Could not save schema copy %s; restore will need the source service", name)
            return
        LOGGER.info("Saved schema of %s to %s", self.source_index, name)

    # ------------------------------------------------------------------
    # Restore leg
    # ------------------------------------------------------------------

    def restore(self, report: RunReport, definition: Optional[SearchIndex] = None) -> None:
        """Replace the target index with the exported content."""

        schema = self._require(self._target_schema, "target schema service")
        gateway = self._require(self._target_gateway, "target gateway")
        report.target_index = self.target_index
        if definition is None:
            definition = self._load_definition()
        if self.target_index == self.source_index and schema.endpoint == getattr(self._source_schema, "endpoint", None):
            LOGGER.warning("Target is the source index itself; it will be rebuilt in place from batch files")

        settle = self._settings.settle
        deleted = self._step("Deleting target index", schema.delete_index, self.target_index)
        if deleted:
            gone = self._step(
                "Waiting for target deletion",
                wait_for_index_deletion,
                schema,
                self.target_index,
                timeout_seconds=settle.delete_timeout_seconds,
                interval_seconds=settle.poll_interval_seconds,
                sleep=self._sleep,
            )
            if not gone:
                raise JobFailedError("Deleting target index", TimeoutError(f"{self.target_index} still exists"))

        self._step("Creating target index", schema.create_or_update_index, clone_for(definition, self.target_index))

        importer = DocumentImporter(
            gateway=gateway,
            store=self._store,
            index_name=self.source_index,
            retry_policy=self._retry,
            observability=self._observability,
        )
        report.imported = self._step("Importing documents", importer.import_all)

        expected = report.expected_target_count or 0
        report.target_count = self._step(
            "Counting target documents",
            wait_for_document_count,
            gateway,
            expected,
            timeout_seconds=settle.indexing_timeout_seconds,
            interval_seconds=settle.poll_interval_seconds,
            stable_polls=settle.stable_polls,
            sleep=self._sleep,
        )

    def _load_definition(self) -> SearchIndex:
        """Schema for a restore-only run: saved copy first, then the live source."""

        raw = self._step("Reading saved schema", self._store.read, schema_blob_name(self.source_index))
        if raw is not None:
            try:
                return index_from_dict(json.loads(raw))
            except ValueError as exc:
                raise JobFailedError("Reading saved schema", exc) from exc
        if self._source_schema is None:
            raise JobFailedError(
                "Reading source schema",
                FileNotFoundError(f"no {schema_blob_name(self.source_index)} in the store and no source service"),
            )
        return self._step("Reading source schema", self._source_schema.get_index, self.source_index)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _count(self, gateway: SearchGateway) -> int:
        count, _ = self._retry.call(gateway.document_count)
        return count

    def _step(self, step: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        LOGGER.info("%s", step)
        try:
            result = fn(*args, **kwargs)
        except JobFailedError:
            raise
        except (RemoteCallError, StoreUnavailableError) as exc:
            LOGGER.error("%s failed: %s", step, exc)
            raise JobFailedError(step, exc) from exc
        self._emit("job.step", step=step)
        return result

    @staticmethod
    def _require(value, label: str):
        if value is None:
            raise ValueError(f"BackupRestoreJob needs a {label} for this mode")
        return value

    def _emit(self, event: str, **fields: Any) -> None:
        if self._observability:
            self._observability.emit_event(event, **fields)


__all__ = ["BackupRestoreJob", "JobFailedError", "MODES", "RunReport", "schema_blob_name"]
