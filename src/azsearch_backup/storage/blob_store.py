"""Blob storage used as the intermediate file system for batch files."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import ContainerClient

LOGGER = logging.getLogger(__name__)


class StoreUnavailableError(RuntimeError):
    """Raised when the blob store cannot complete a request."""


@dataclass(frozen=True)
class BlobDescriptor:
    """Listing entry for a stored blob."""

    name: str
    length: int
    last_modified: Optional[datetime]


class BlobStore:
    """Interface for named-blob storage backends."""

    backend = "abstract"

    def exists(self, name: str) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def read(self, name: str) -> Optional[bytes]:  # pragma: no cover - interface only
        """Return the blob body, or ``None`` when the blob does not exist."""

        raise NotImplementedError

    def write(self, name: str, data: bytes) -> None:  # pragma: no cover - interface only
        """Create or overwrite ``name`` with ``data``."""

        raise NotImplementedError

    def delete(self, name: str) -> bool:  # pragma: no cover - interface only
        """Delete ``name``; return ``False`` when there was nothing to delete."""

        raise NotImplementedError

    def list(self, prefix: str = "") -> List[BlobDescriptor]:  # pragma: no cover - interface only
        raise NotImplementedError


class AzureBlobStore(BlobStore):
    """Blob store backed by an Azure Storage container."""

    backend = "azure_blob"

    def __init__(self, container_client: ContainerClient) -> None:
        self._container = container_client

    @classmethod
    def from_connection_string(cls, connection_string: str, container: str) -> "AzureBlobStore":
        return cls(ContainerClient.from_connection_string(connection_string, container_name=container))

    @classmethod
    def from_container_url(cls, container_url: str) -> "AzureBlobStore":
        """Build a store from a container URL carrying a SAS token."""

        return cls(ContainerClient.from_container_url(container_url))

    @property
    def container_name(self) -> str:
        return self._container.container_name

    def exists(self, name: str) -> bool:
        try:
            return bool(self._container.get_blob_client(name).exists())
        except AzureError as exc:
            raise StoreUnavailableError(f"Failed to check blob '{name}': {exc}") from exc

    def read(self, name: str) -> Optional[bytes]:
        try:
            return self._container.download_blob(name).readall()
        except ResourceNotFoundError:
            return None
        except AzureError as exc:
            raise StoreUnavailableError(f"Failed to read blob '{name}': {exc}") from exc

    def write(self, name: str, data: bytes) -> None:
        try:
            self._container.upload_blob(name, data, overwrite=True)
        except AzureError as exc:
            raise StoreUnavailableError(f"Failed to write blob '{name}': {exc}") from exc

    def delete(self, name: str) -> bool:
        try:
            self._container.delete_blob(name)
        except ResourceNotFoundError:
            return False
        except AzureError as exc:
            raise StoreUnavailableError(f"Failed to delete blob '{name}': {exc}") from exc
        return True

    def list(self, prefix: str = "") -> List[BlobDescriptor]:
        try:
            return [
                BlobDescriptor(name=blob.name, length=blob.size or 0, last_modified=blob.last_modified)
                for blob in self._container.list_blobs(name_starts_with=prefix or None)
            ]
        except AzureError as exc:
            raise StoreUnavailableError(f"Failed to list blobs with prefix '{prefix}': {exc}") from exc


class LocalDirectoryStore(BlobStore):
    """Blob store keeping each blob as a file below a local directory."""

    backend = "local"

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailableError(f"Cannot create local store directory {self._root}: {exc}") from exc

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, name: str) -> Path:
        path = (self._root / name).resolve()
        if self._root.resolve() not in path.parents:
            raise ValueError(f"Blob name escapes the store directory: {name!r}")
        return path

    def exists(self, name: str) -> bool:
        return self._path(name).is_file()

    def read(self, name: str) -> Optional[bytes]:
        path = self._path(name)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreUnavailableError(f"Failed to read {path}: {exc}") from exc

    def write(self, name: str, data: bytes) -> None:
        path = self._path(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StoreUnavailableError(f"Failed to write {path}: {exc}") from exc

    def delete(self, name: str) -> bool:
        path = self._path(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StoreUnavailableError(f"Failed to delete {path}: {exc}") from exc
        return True

    def list(self, prefix: str = "") -> List[BlobDescriptor]:
        entries: List[BlobDescriptor] = []
        for path in sorted(self._root.rglob("*")):
            if not path.is_file():
                continue
            name = path.relative_to(self._root).as_posix()
            if not name.startswith(prefix):
                continue
            stat = path.stat()
            entries.append(
                BlobDescriptor(
                    name=name,
                    length=stat.st_size,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        return entries
