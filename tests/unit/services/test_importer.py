"""Tests for the import stage."""

from __future__ import annotations

from azsearch_backup.services.batches import encode_batch
from azsearch_backup.services.importer import DocumentImporter
from fakes import BulkEndpoint, FakeSearchClient, make_documents, make_gateway


def _seed(store, index_name, sizes):
    documents = make_documents(sum(sizes))
    offset = 0
    for sequence, size in enumerate(sizes, start=1):
        store.blobs[f"{index_name}{sequence}.json"] = encode_batch(documents[offset : offset + size])
        offset += size
    return documents


def _importer(store, endpoint, policy):
    gateway = make_gateway(endpoint.target, index_name="hotels-copy", endpoint=endpoint)
    return DocumentImporter(gateway=gateway, store=store, index_name="hotels", retry_policy=policy)


def test_import_uploads_every_batch_file(store, no_wait_policy):
    documents = _seed(store, "hotels", [500, 500, 200])
    store.blobs["hotels.schema.json"] = b"{}"
    store.blobs["motels1.json"] = encode_batch(make_documents(1))
    endpoint = BulkEndpoint(FakeSearchClient())

    report = _importer(store, endpoint, no_wait_policy).import_all()

    assert report.summary() == "3 of 3 batches succeeded"
    assert report.documents_transferred == 1200
    assert len(endpoint.requests) == 3
    assert {doc["id"] for doc in endpoint.target.documents} == {doc["id"] for doc in documents}
    assert endpoint.requests[0].content == store.blobs["hotels1.json"]


def test_failed_upload_does_not_stop_later_batches(store, no_wait_policy):
    _seed(store, "hotels", [2, 2, 2])
    endpoint = BulkEndpoint(FakeSearchClient())
    endpoint.status_codes = [400]

    report = _importer(store, endpoint, no_wait_policy).import_all()

    assert report.summary() == "2 of 3 batches succeeded (failed: hotels1.json)"
    assert report.failed[0].sequence == 1
    assert len(endpoint.target.documents) == 4


def test_throttled_upload_is_retried(store, no_wait_policy):
    _seed(store, "hotels", [3])
    endpoint = BulkEndpoint(FakeSearchClient())
    endpoint.status_codes = [503]

    report = _importer(store, endpoint, no_wait_policy).import_all()

    assert report.ok
    assert report.results[0].retries == 1
    assert len(endpoint.target.documents) == 3


def test_rejected_documents_fail_the_batch(store, no_wait_policy):
    _seed(store, "hotels", [3])
    endpoint = BulkEndpoint(FakeSearchClient())
    endpoint.reject_keys = {"doc-00001"}

    report = _importer(store, endpoint, no_wait_policy).import_all()

    assert not report.ok
    assert "doc-00001" in report.failed[0].error


def test_no_batch_files_is_an_empty_success(store, no_wait_policy):
    endpoint = BulkEndpoint(FakeSearchClient())

    report = _importer(store, endpoint, no_wait_policy).import_all()

    assert report.total_batches == 0
    assert report.ok
    assert endpoint.requests == []
