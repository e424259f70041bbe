"""Factory helpers that instantiate clients based on configuration.

These helpers centralize how :mod:`azsearch_backup.settings` maps onto
concrete storage backends and search service wrappers so the job and the
CLI never build clients by hand.
"""

from __future__ import annotations

from typing import Literal

from azsearch_backup.services.index_schema import IndexSchemaService
from azsearch_backup.services.retry import RetryPolicy
from azsearch_backup.services.search_gateway import SearchGateway
from azsearch_backup.settings import ConfigurationError, Settings, get_settings
from azsearch_backup.storage import AzureBlobStore, BlobStore, LocalDirectoryStore

Side = Literal["source", "target"]


def _service_settings(settings: Settings, side: Side):
    if side == "source":
        return settings.source
    if side == "target":
        return settings.target
    raise ValueError(f"Unknown search service side '{side}'")


def build_blob_store(*, settings: Settings | None = None) -> BlobStore:
    """Return the batch-file store selected by ``storage.backend``.

    Raises:
        ConfigurationError: If the Azure backend has neither a connection
            string + container nor a container SAS URL.
    """

    settings = settings or get_settings()
    storage = settings.storage
    if storage.backend == "local":
        return LocalDirectoryStore(storage.local_dir)

    if storage.backend == "azure_blob":
        if storage.container_sas_url:
            return AzureBlobStore.from_container_url(storage.container_sas_url)
        if storage.connection_string and storage.container:
            return AzureBlobStore.from_connection_string(storage.connection_string, storage.container)
        raise ConfigurationError(["storage.connection_string+container or storage.container_sas_url"])

    raise NotImplementedError(f"Unsupported storage backend '{storage.backend}'")


def build_schema_service(side: Side, *, settings: Settings | None = None) -> IndexSchemaService:
    settings = settings or get_settings()
    service = _service_settings(settings, side)
    return IndexSchemaService(endpoint=service.endpoint, api_key=service.api_key)


def build_search_gateway(side: Side, *, index_name: str | None = None, settings: Settings | None = None) -> SearchGateway:
    """Return a gateway for ``index_name`` (defaults to the configured index of ``side``)."""

    settings = settings or get_settings()
    service = _service_settings(settings, side)
    return SearchGateway(
        endpoint=service.endpoint,
        index_name=index_name or service.index_name,
        api_key=service.api_key,
        api_version=service.api_version,
        timeout_seconds=settings.transfer.request_timeout_seconds,
    )


def build_retry_policy(*, settings: Settings | None = None) -> RetryPolicy:
    settings = settings or get_settings()
    return RetryPolicy.from_settings(settings.transfer)


__all__ = [
    "build_blob_store",
    "build_retry_policy",
    "build_schema_service",
    "build_search_gateway",
]
