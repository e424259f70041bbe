"""Index definition helpers built on ``SearchIndexClient``."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional

from azure.core.credentials import AzureKeyCredential
from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.search.documents.indexes import SearchIndexClient
from azure.search.documents.indexes.models import SearchField, SearchIndex

from azsearch_backup.services.errors import SchemaError, from_azure_error

LOGGER = logging.getLogger(__name__)


def iter_fields(fields: Optional[Iterable[SearchField]]) -> Iterator[SearchField]:
    """Yield every field, descending into complex-type sub-fields."""

    for field in fields or []:
        yield field
        yield from iter_fields(getattr(field, "fields", None))


def key_field(index: SearchIndex) -> SearchField:
    """Return the single top-level field marked as the document key."""

    keys = [field for field in index.fields or [] if getattr(field, "key", False)]
    if len(keys) != 1:
        raise SchemaError(f"Index '{index.name}' must declare exactly one key field; found {len(keys)}")
    return keys[0]


def key_field_name(index: SearchIndex) -> str:
    return key_field(index).name


def hidden_field_names(index: SearchIndex) -> List[str]:
    """Names of fields that are not returned in query results."""

    return [field.name for field in iter_fields(index.fields) if getattr(field, "hidden", None)]


def with_all_fields_retrievable(index: SearchIndex) -> SearchIndex:
    """Return a copy of ``index`` where no field is hidden.

    Complex fields carry no retrievable flag of their own (``hidden`` is
    ``None``) and are left alone; their sub-fields are updated.
    """

    updated = copy.deepcopy(index)
    for field in iter_fields(updated.fields):
        if getattr(field, "hidden", None):
            field.hidden = False
    return updated


def clone_for(index: SearchIndex, name: str) -> SearchIndex:
    """Copy ``index`` under a new name, dropping the etag of the original."""

    clone = copy.deepcopy(index)
    clone.name = name
    clone.e_tag = None
    return clone


def index_to_dict(index: SearchIndex) -> Dict[str, Any]:
    """REST-shaped dict of ``index`` suitable for ``json.dumps``."""

    return index.serialize(keep_readonly=True)


def index_from_dict(data: Dict[str, Any]) -> SearchIndex:
    """Inverse of :func:`index_to_dict`."""

    if not isinstance(data, dict) or not data.get("name"):
        raise SchemaError("Saved index definition has no name")
    return SearchIndex.deserialize(data)


class IndexSchemaService:
    """Get, create, update and delete index definitions on one service."""

    def __init__(self, *, endpoint: str, api_key: str, client: Optional[SearchIndexClient] = None) -> None:
        if not endpoint:
            raise ValueError("IndexSchemaService requires an endpoint")
        self.endpoint = endpoint
        self._client = client or SearchIndexClient(endpoint=endpoint, credential=AzureKeyCredential(api_key))

    def get_index(self, name: str) -> SearchIndex:
        try:
            return self._client.get_index(name)
        except AzureError as exc:
            raise from_azure_error(f"Reading schema of index '{name}'", exc) from exc

    def index_exists(self, name: str) -> bool:
        try:
            self._client.get_index(name)
        except ResourceNotFoundError:
            return False
        except AzureError as exc:
            raise from_azure_error(f"Checking index '{name}'", exc) from exc
        return True

    def create_or_update_index(self, index: SearchIndex) -> SearchIndex:
        try:
            result = self._client.create_or_update_index(index)
        except AzureError as exc:
            raise from_azure_error(f"Writing schema of index '{index.name}'", exc) from exc
        LOGGER.info("Wrote schema for index %s (%d fields)", index.name, len(index.fields or []))
        return result

    def delete_index(self, name: str) -> bool:
        """Delete ``name``; return False when the index did not exist."""

        try:
            self._client.delete_index(name)
        except ResourceNotFoundError:
            LOGGER.info("Index %s does not exist; nothing to delete", name)
            return False
        except AzureError as exc:
            raise from_azure_error(f"Deleting index '{name}'", exc) from exc
        LOGGER.info("Deleted index %s", name)
        return True

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if callable(close):
            close()


__all__ = [
    "IndexSchemaService",
    "clone_for",
    "hidden_field_names",
    "index_from_dict",
    "index_to_dict",
    "iter_fields",
    "key_field",
    "key_field_name",
    "with_all_fields_retrievable",
]
