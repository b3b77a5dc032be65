"""
In-memory catalog implementation.

This module provides the authoritative catalog used by the REST
service, by tests, and for local development without external storage.

Invariants:
    - All data is lost on process exit
    - Commits to one table are serialized by that table's asyncio.Lock
    - Every requirement is validated before any update is applied
    - A failed commit leaves the table pointer untouched
    - Each committed version gets a new metadata location; the previous
      location is appended to the metadata log

How to change safely:
    - Keep interface compatible with the CatalogTransport protocol
    - Never release the table lock between validation and the pointer swap
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from sdk.tablecat_sdk.catalog import LoadedTable, TableIdentifier
from sdk.tablecat_sdk.errors import AlreadyExistsError, CommitConflictError, NotFoundError
from sdk.tablecat_sdk.evolution import assign_fresh_schema_ids
from sdk.tablecat_sdk.metadata import TableMetadata, new_table_metadata
from sdk.tablecat_sdk.requirements import AssertCreate, TableRequirement
from sdk.tablecat_sdk.schema import Schema
from sdk.tablecat_sdk.updates import TableUpdate, apply_updates

logger = logging.getLogger(__name__)


class InMemoryCatalog:
    """In-memory implementation of CatalogTransport.

    Thread safety:
        Uses one asyncio lock per table for commits and one catalog
        lock for namespace and table registration. Safe to use from
        multiple coroutines.

    Example:
        >>> catalog = InMemoryCatalog(warehouse="memory://warehouse")
        >>> await catalog.create_namespace(("db",))
        >>> table = await catalog.create_table(TableIdentifier.parse("db.events"), schema)
        >>> table.metadata_location
        'memory://warehouse/db/events/metadata/00000-....metadata.json'
    """

    def __init__(self, warehouse: str = "memory://warehouse", assign_fresh_ids: bool = False) -> None:
        """Initialize the catalog.

        Args:
            warehouse: Base location for tables created without one
            assign_fresh_ids: Renumber field ids of created tables from 1
        """
        self.warehouse = warehouse.rstrip("/")
        self.assign_fresh_ids = assign_fresh_ids
        self._namespaces: Dict[Tuple[str, ...], Dict[str, str]] = {}
        self._tables: Dict[TableIdentifier, LoadedTable] = {}
        self._metadata_files: Dict[str, str] = {}
        self._lock = asyncio.Lock()
        self._table_locks: Dict[TableIdentifier, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def close(self) -> None:
        """Nothing to release; the catalog keeps its state."""
        logger.debug("InMemoryCatalog closed")

    def read_metadata_file(self, metadata_location: str) -> TableMetadata:
        """Read a metadata document previously written by this catalog.

        Raises:
            NotFoundError: If nothing was written at the location
        """
        text = self._metadata_files.get(metadata_location)
        if text is None:
            raise NotFoundError(
                f"Metadata file {metadata_location} does not exist",
                resource_type="metadata",
                resource_id=metadata_location,
            )
        return TableMetadata.from_json(text)

    def _write_metadata(self, metadata: TableMetadata) -> str:
        version = len(metadata.metadata_log)
        location = f"{metadata.location}/metadata/{version:05d}-{uuid.uuid4()}.metadata.json"
        self._metadata_files[location] = metadata.to_json()
        return location

    def _require_namespace(self, namespace: Tuple[str, ...]) -> None:
        if namespace not in self._namespaces:
            raise NotFoundError(
                f"Namespace {'.'.join(namespace)} does not exist",
                resource_type="namespace",
                resource_id=".".join(namespace),
            )

    async def create_namespace(
        self,
        namespace: Sequence[str],
        properties: Optional[Dict[str, str]] = None,
    ) -> None:
        key = tuple(namespace)
        async with self._lock:
            if key in self._namespaces:
                raise AlreadyExistsError(
                    f"Namespace {'.'.join(key)} already exists",
                    resource_type="namespace",
                    resource_id=".".join(key),
                )
            self._namespaces[key] = dict(properties or {})
        logger.info(f"Created namespace {'.'.join(key)}")

    async def list_namespaces(self) -> List[Tuple[str, ...]]:
        return sorted(self._namespaces)

    async def list_tables(self, namespace: Sequence[str]) -> List[TableIdentifier]:
        key = tuple(namespace)
        self._require_namespace(key)
        return sorted(
            (i for i in self._tables if i.namespace == key),
            key=lambda i: i.name,
        )

    async def load_table(self, identifier: TableIdentifier) -> LoadedTable:
        table = self._tables.get(identifier)
        if table is None:
            raise NotFoundError(
                f"Table {identifier} does not exist",
                resource_type="table",
                resource_id=str(identifier),
            )
        return table

    async def create_table(
        self,
        identifier: TableIdentifier,
        schema: Schema,
        location: Optional[str] = None,
        properties: Optional[Dict[str, str]] = None,
        format_version: int = 2,
    ) -> LoadedTable:
        """Create a table at its first metadata version.

        Raises:
            AlreadyExistsError: If the table exists
            NotFoundError: If the namespace does not exist
            InvalidFormatError: If the schema or format version is invalid
        """
        if self.assign_fresh_ids:
            schema = assign_fresh_schema_ids(schema)
        if location is None:
            location = "/".join((self.warehouse, *identifier.namespace, identifier.name))

        async with self._lock:
            self._require_namespace(identifier.namespace)
            try:
                AssertCreate().validate(self._tables.get(identifier))
            except CommitConflictError as e:
                raise AlreadyExistsError(
                    f"Table {identifier} already exists",
                    resource_type="table",
                    resource_id=str(identifier),
                ) from e

            metadata = new_table_metadata(schema, location, properties, format_version)
            table = LoadedTable(identifier, self._write_metadata(metadata), metadata)
            self._tables[identifier] = table

        logger.info(f"Created table {identifier} ({metadata.table_uuid})")
        return table

    async def commit_table(
        self,
        identifier: TableIdentifier,
        requirements: Sequence[TableRequirement],
        updates: Sequence[TableUpdate],
    ) -> LoadedTable:
        """Validate requirements and apply updates atomically.

        Raises:
            CommitConflictError: If any requirement fails
            InvalidFormatError: If an update cannot be applied
            NotFoundError: If the table does not exist
        """
        async with self._table_locks[identifier]:
            current = self._tables.get(identifier)
            for requirement in requirements:
                requirement.validate(current)
            if current is None:
                raise NotFoundError(
                    f"Table {identifier} does not exist",
                    resource_type="table",
                    resource_id=str(identifier),
                )

            metadata = apply_updates(current.metadata, updates, current.metadata_location)
            table = LoadedTable(identifier, self._write_metadata(metadata), metadata)
            self._tables[identifier] = table

        logger.debug(
            f"Committed {identifier}: {current.metadata_location} -> {table.metadata_location}"
        )
        return table
