"""Storage backends for intermediate batch files."""

from .blob_store import AzureBlobStore, BlobDescriptor, BlobStore, LocalDirectoryStore, StoreUnavailableError

__all__ = ["AzureBlobStore", "BlobDescriptor", "BlobStore", "LocalDirectoryStore", "StoreUnavailableError"]
