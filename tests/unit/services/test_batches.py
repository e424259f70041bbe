"""Tests for batch planning, naming and reporting."""

from __future__ import annotations

import pytest

from azsearch_backup.services.batches import (
    BatchResult,
    TransferReport,
    batch_file_name,
    batch_sequence,
    decode_batch,
    encode_batch,
    is_batch_file,
    plan_batches,
    select_batch_files,
)
from azsearch_backup.storage import BlobDescriptor


@pytest.mark.parametrize(
    ("count", "expected"),
    [(0, 0), (1, 1), (499, 1), (500, 1), (501, 2), (1000, 2), (1200, 3)],
)
def test_plan_batches_produces_ceil_windows(count, expected):
    windows = plan_batches("hotels", count, 500)

    assert len(windows) == expected
    assert all(window.skip < count for window in windows)


def test_plan_batches_windows_are_page_aligned_and_named():
    windows = plan_batches("hotels", 1200, 500)

    assert [(w.sequence, w.skip, w.top, w.name) for w in windows] == [
        (1, 0, 500, "hotels1.json"),
        (2, 500, 500, "hotels2.json"),
        (3, 1000, 500, "hotels3.json"),
    ]


def test_plan_batches_rejects_non_positive_page_size():
    with pytest.raises(ValueError):
        plan_batches("hotels", 10, 0)


def test_batch_file_matching_ignores_other_blobs():
    assert batch_file_name("hotels", 12) == "hotels12.json"
    assert batch_sequence("hotels12.json", "hotels") == 12
    assert is_batch_file("hotels1.json", "hotels")
    assert not is_batch_file("hotels.schema.json", "hotels")
    assert not is_batch_file("hotels-archive1.json", "hotels")
    assert not is_batch_file("hotels1.json.bak", "hotels")

    blobs = [
        BlobDescriptor("hotels2.json", 10, None),
        BlobDescriptor("hotels.schema.json", 10, None),
        BlobDescriptor("hotels1.json", 10, None),
    ]
    assert [blob.name for blob in select_batch_files(blobs, "hotels")] == ["hotels2.json", "hotels1.json"]


def test_encode_batch_wraps_documents_in_value_array():
    body = encode_batch([{"id": "1", "name": "Zoë"}])

    assert body == '{"value": [{"id": "1", "name": "Zoë"}]}'.encode("utf-8")
    assert decode_batch(body) == [{"id": "1", "name": "Zoë"}]


def test_decode_batch_rejects_unexpected_shape():
    with pytest.raises(ValueError):
        decode_batch(b'[{"id": "1"}]')


def test_transfer_report_names_failed_batches():
    report = TransferReport(stage="export", index_name="hotels")
    report.results = [
        BatchResult(name="hotels1.json", sequence=1, documents=500),
        BatchResult(name="hotels2.json", sequence=2, error="RemoteCallError: boom", retries=2),
        BatchResult(name="hotels3.json", sequence=3, documents=200),
    ]

    assert report.summary() == "2 of 3 batches succeeded (failed: hotels2.json)"
    assert report.documents_transferred == 700
    assert not report.ok
    assert report.as_dict()["failed_batches"] == ["hotels2.json"]
