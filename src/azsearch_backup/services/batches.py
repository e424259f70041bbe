"""Batch file naming, encoding and per-batch bookkeeping."""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from azsearch_backup.storage import BlobDescriptor


@dataclass(frozen=True)
class BatchWindow:
    """One skip/top page of the source index and the file it lands in."""

    sequence: int
    skip: int
    top: int
    name: str


@dataclass(slots=True)
class BatchResult:
    """Outcome of exporting or importing one batch file."""

    name: str
    sequence: Optional[int] = None
    skip: Optional[int] = None
    documents: int = 0
    retries: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "sequence": self.sequence,
            "skip": self.skip,
            "documents": self.documents,
            "retries": self.retries,
            "error": self.error,
        }


@dataclass
class TransferReport:
    """Aggregated per-batch results for one stage."""

    stage: str
    index_name: str
    expected_documents: Optional[int] = None
    results: List[BatchResult] = field(default_factory=list)
    duplicate_keys: List[str] = field(default_factory=list)

    @property
    def total_batches(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> List[BatchResult]:
        return [result for result in self.results if result.ok]

    @property
    def failed(self) -> List[BatchResult]:
        return [result for result in self.results if not result.ok]

    @property
    def documents_transferred(self) -> int:
        return sum(result.documents for result in self.succeeded)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.duplicate_keys

    def summary(self) -> str:
        text = f"{len(self.succeeded)} of {self.total_batches} batches succeeded"
        if self.failed:
            text += " (failed: " + ", ".join(result.name for result in self.failed) + ")"
        return text

    def as_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "index_name": self.index_name,
            "expected_documents": self.expected_documents,
            "documents_transferred": self.documents_transferred,
            "total_batches": self.total_batches,
            "succeeded_batches": len(self.succeeded),
            "failed_batches": [result.name for result in self.failed],
            "duplicate_keys": list(self.duplicate_keys),
            "results": [result.as_dict() for result in self.results],
        }


def batch_file_name(index_name: str, sequence: int) -> str:
    """``<index><sequence>.json`` with sequences starting at 1."""

    return f"{index_name}{sequence}.json"


def _batch_pattern(index_name: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(index_name)}(\d+)\.json$")


def batch_sequence(name: str, index_name: str) -> Optional[int]:
    """Return the sequence number encoded in ``name`` or ``None`` if it is not a batch file."""

    match = _batch_pattern(index_name).match(name)
    return int(match.group(1)) if match else None


def is_batch_file(name: str, index_name: str) -> bool:
    return batch_sequence(name, index_name) is not None


def select_batch_files(blobs: List[BlobDescriptor], index_name: str) -> List[BlobDescriptor]:
    """Keep the listing entries that are batch files of ``index_name``, in listing order."""

    return [blob for blob in blobs if is_batch_file(blob.name, index_name)]


def plan_batches(index_name: str, document_count: int, page_size: int) -> List[BatchWindow]:
    """Split ``[0, document_count)`` into page-aligned windows.

    Produces ``ceil(document_count / page_size)`` windows; no window is
    empty and zero documents yields no windows.
    """

    if page_size < 1:
        raise ValueError("page_size must be positive")
    if document_count <= 0:
        return []
    windows = []
    for offset in range(math.ceil(document_count / page_size)):
        sequence = offset + 1
        windows.append(
            BatchWindow(
                sequence=sequence,
                skip=offset * page_size,
                top=page_size,
                name=batch_file_name(index_name, sequence),
            )
        )
    return windows


def encode_batch(documents: List[Dict[str, Any]]) -> bytes:
    """Serialise documents as the ``{"value": [...]}`` bulk-upload body."""

    return json.dumps({"value": documents}, ensure_ascii=False).encode("utf-8")


def decode_batch(data: bytes | str) -> List[Dict[str, Any]]:
    payload = json.loads(data)
    if not isinstance(payload, dict) or not isinstance(payload.get("value"), list):
        raise ValueError('Batch file must be a JSON object with a "value" array')
    return payload["value"]


__all__ = [
    "BatchResult",
    "BatchWindow",
    "TransferReport",
    "batch_file_name",
    "batch_sequence",
    "decode_batch",
    "encode_batch",
    "is_batch_file",
    "plan_batches",
    "select_batch_files",
]
