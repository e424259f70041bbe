"""Tests for the blob store backends."""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from azsearch_backup.services.factories import build_blob_store
from azsearch_backup.settings import ConfigurationError, Settings
from azsearch_backup.storage import AzureBlobStore, LocalDirectoryStore, StoreUnavailableError


def test_local_store_round_trip(tmp_path):
    store = LocalDirectoryStore(tmp_path / "copies")

    assert not store.exists("hotels1.json")
    assert store.read("hotels1.json") is None

    store.write("hotels1.json", b'{"value": []}')
    store.write("motels1.json", b"{}")

    assert store.exists("hotels1.json")
    assert store.read("hotels1.json") == b'{"value": []}'
    listing = store.list("hotels")
    assert [blob.name for blob in listing] == ["hotels1.json"]
    assert listing[0].length == len(b'{"value": []}')
    assert listing[0].last_modified is not None

    assert store.delete("hotels1.json") is True
    assert store.delete("hotels1.json") is False
    assert store.list("hotels") == []


def test_local_store_rejects_names_outside_root(tmp_path):
    store = LocalDirectoryStore(tmp_path)

    with pytest.raises(ValueError):
        store.write("../escape.json", b"{}")


def test_azure_store_maps_not_found_to_none_and_false():
    container = Mock()
    container.download_blob.side_effect = ResourceNotFoundError("missing")
    container.delete_blob.side_effect = ResourceNotFoundError("missing")
    store = AzureBlobStore(container)

    assert store.read("hotels1.json") is None
    assert store.delete("hotels1.json") is False


def test_azure_store_reads_writes_and_lists():
    modified = datetime(2024, 1, 1, tzinfo=timezone.utc)
    container = Mock()
    container.download_blob.return_value.readall.return_value = b"body"
    container.get_blob_client.return_value.exists.return_value = True
    container.list_blobs.return_value = [SimpleNamespace(name="hotels1.json", size=4, last_modified=modified)]
    store = AzureBlobStore(container)

    assert store.read("hotels1.json") == b"body"
    assert store.exists("hotels1.json") is True
    store.write("hotels1.json", b"body")
    container.upload_blob.assert_called_once_with("hotels1.json", b"body", overwrite=True)
    assert store.delete("hotels1.json") is True

    listing = store.list("hotels")
    container.list_blobs.assert_called_once_with(name_starts_with="hotels")
    assert listing[0].name == "hotels1.json"
    assert listing[0].length == 4
    assert listing[0].last_modified == modified


def test_azure_store_wraps_service_errors():
    container = Mock()
    container.upload_blob.side_effect = HttpResponseError("server busy")
    container.list_blobs.side_effect = HttpResponseError("server busy")
    store = AzureBlobStore(container)

    with pytest.raises(StoreUnavailableError):
        store.write("hotels1.json", b"{}")
    with pytest.raises(StoreUnavailableError):
        store.list("hotels")


def test_build_blob_store_picks_local_backend(tmp_path, monkeypatch):
    monkeypatch.delenv("STORAGE_BACKEND", raising=False)
    monkeypatch.delenv("STORAGE_LOCAL_DIR", raising=False)
    settings = Settings(storage={"backend": "local", "local_dir": tmp_path})

    store = build_blob_store(settings=settings)

    assert isinstance(store, LocalDirectoryStore)
    assert store.root == tmp_path


def test_build_blob_store_requires_azure_location(monkeypatch):
    for name in ("AZURE_STORAGE_CONNECTION_STRING", "STORAGE_CONTAINER", "STORAGE_CONTAINER_SAS_URL", "BlobContainerLRWDSASUri"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings(storage={"backend": "azure_blob"})

    with pytest.raises(ConfigurationError):
        build_blob_store(settings=settings)
