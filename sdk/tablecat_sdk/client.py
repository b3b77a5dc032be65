"""
tablecat client: the catalog commit protocol.

This module provides the main client interface:
- CatalogClient: Loads, creates and commits tables through a transport
- Transaction: Collects requirements and updates against a loaded table
- CommitResult: Outcome of a commit (success or conflict)

Example:
    >>> async with CatalogClient(transport) as catalog:
    ...     table = await catalog.load_table("db.events")
    ...     txn = catalog.transaction(table)
    ...     txn.update_schema().add_column("ts", TIMESTAMPTZ).commit()
    ...     result = await txn.commit()
    ...     if result.conflict:
    ...         table = await catalog.load_table("db.events")  # reload, recompute, retry

Invariants:
    - Requirements are derived from the state the transaction was built on
    - A conflict is a CommitResult, never an exception
    - Conflicts are never retried by this layer
    - A transaction commits at most once
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from .catalog import CatalogTransport, LoadedTable, TableIdentifier
from .config import ClientSettings
from .errors import CommitConflictError, TableCatError
from .evolution import SchemaUpdate, assign_fresh_schema_ids
from .metadata import MAIN_BRANCH, RefType, Snapshot, now_ms
from .requirements import (
    AssertCurrentSchemaId,
    AssertLastAssignedFieldId,
    AssertRefSnapshotId,
    AssertTableUuid,
    TableRequirement,
)
from .schema import Schema
from .updates import (
    AddSchema,
    AddSnapshot,
    RemoveProperties,
    SetCurrentSchema,
    SetLocation,
    SetProperties,
    SetSnapshotRef,
    TableUpdate,
    UpgradeFormatVersion,
)

logger = logging.getLogger(__name__)


@dataclass
class CommitResult:
    """Result of committing a Transaction.

    Attributes:
        success: Whether the catalog applied the commit
        table: The table at its new metadata location (on success)
        conflict: Whether a requirement failed; reload and retry is up to the caller
        error: Error message if failed
        failed_requirement: Type of the requirement that failed
    """

    success: bool
    table: LoadedTable | None = None
    conflict: bool = False
    error: str | None = None
    failed_requirement: str | None = None

    @property
    def metadata_location(self) -> str | None:
        return self.table.metadata_location if self.table is not None else None


def _as_identifier(identifier: str | TableIdentifier) -> TableIdentifier:
    if isinstance(identifier, TableIdentifier):
        return identifier
    return TableIdentifier.parse(identifier)


class Transaction:
    """Optimistic change set against one loaded table state.

    Each staged change adds the requirements that make it safe: the
    catalog applies the updates only if the table still looks the way
    it did when it was loaded.

    Example:
        >>> txn = catalog.transaction(table)
        >>> txn.set_properties(owner="analytics")
        >>> result = await txn.commit()
    """

    def __init__(self, client: CatalogClient, table: LoadedTable) -> None:
        """Initialize a transaction.

        Args:
            client: CatalogClient used to commit
            table: The loaded table state changes are based on
        """
        self._client = client
        self._table = table
        self._requirements: list[TableRequirement] = [AssertTableUuid(table.metadata.table_uuid)]
        self._updates: list[TableUpdate] = []
        self._committed = False

        metadata = table.metadata
        self._schema = metadata.schema()
        self._last_column_id = metadata.last_column_id
        self._schema_ids = [s.schema_id for s in metadata.schemas]

    @property
    def table(self) -> LoadedTable:
        return self._table

    @property
    def requirements(self) -> tuple[TableRequirement, ...]:
        return tuple(self._requirements)

    @property
    def updates(self) -> tuple[TableUpdate, ...]:
        return tuple(self._updates)

    def require(self, requirement: TableRequirement) -> Transaction:
        """Add an explicit requirement (added once)."""
        if self._committed:
            raise TableCatError("Transaction was already committed")
        if requirement not in self._requirements:
            self._requirements.append(requirement)
        return self

    def _stage(self, *updates: TableUpdate) -> Transaction:
        if self._committed:
            raise TableCatError("Transaction was already committed")
        self._updates.extend(updates)
        return self

    def _require_schema_unchanged(self) -> None:
        metadata = self._table.metadata
        self.require(AssertCurrentSchemaId(metadata.current_schema_id))
        self.require(AssertLastAssignedFieldId(metadata.last_column_id))

    def add_schema(
        self,
        schema: Schema,
        last_column_id: int | None = None,
        set_current: bool = False,
    ) -> Transaction:
        """Stage a new schema version.

        Args:
            schema: The schema to add (its id must be new to the table)
            last_column_id: Highest field id assigned, including dropped ids
            set_current: Whether to make it the current schema
        """
        self._require_schema_unchanged()
        if last_column_id is None:
            last_column_id = max(self._last_column_id, schema.highest_field_id())
        self._stage(AddSchema(schema, last_column_id))
        if set_current:
            self._stage(SetCurrentSchema(-1))
            self._schema = schema
        self._last_column_id = max(self._last_column_id, last_column_id)
        self._schema_ids.append(schema.schema_id)
        return self

    def set_current_schema(self, schema_id: int) -> Transaction:
        self.require(AssertCurrentSchemaId(self._table.metadata.current_schema_id))
        return self._stage(SetCurrentSchema(schema_id))

    def update_schema(self) -> SchemaUpdate:
        """Start evolving the current schema; call commit() on the result to stage it."""
        return SchemaUpdate(
            self._schema,
            self._last_column_id,
            schema_ids=self._schema_ids,
            transaction=self,
        )

    def new_snapshot(
        self,
        manifest_list: str,
        operation: str = "append",
        summary: dict[str, str] | None = None,
        snapshot_id: int | None = None,
    ) -> Snapshot:
        """Build (not stage) a snapshot on top of the loaded main branch."""
        metadata = self._table.metadata
        return Snapshot(
            snapshot_id=snapshot_id if snapshot_id is not None else uuid.uuid4().int >> 65,
            timestamp_ms=now_ms(),
            manifest_list=manifest_list,
            summary={**(summary or {}), "operation": operation},
            parent_snapshot_id=metadata.current_snapshot_id,
            sequence_number=metadata.next_sequence_number(),
            schema_id=self._schema.schema_id,
        )

    def add_snapshot(self, snapshot: Snapshot, branch: str | None = MAIN_BRANCH) -> Transaction:
        """Stage a snapshot and, unless branch is None, point the branch at it."""
        self._stage(AddSnapshot(snapshot))
        if branch is not None:
            self.set_ref(branch, snapshot.snapshot_id)
        return self

    def set_ref(
        self,
        ref_name: str,
        snapshot_id: int,
        ref_type: RefType = RefType.BRANCH,
    ) -> Transaction:
        self.require(AssertRefSnapshotId(ref_name, self._table.metadata.ref_snapshot_id(ref_name)))
        return self._stage(SetSnapshotRef(ref_name, snapshot_id, ref_type))

    def set_properties(self, properties: dict[str, str] | None = None, **kwargs: str) -> Transaction:
        updates = dict(properties or {})
        updates.update(kwargs)
        return self._stage(SetProperties(updates))

    def remove_properties(self, *keys: str) -> Transaction:
        return self._stage(RemoveProperties(tuple(keys)))

    def set_location(self, location: str) -> Transaction:
        return self._stage(SetLocation(location))

    def upgrade_format_version(self, format_version: int) -> Transaction:
        return self._stage(UpgradeFormatVersion(format_version))

    async def commit(self) -> CommitResult:
        """Send all requirements and updates to the catalog in one request.

        Returns:
            CommitResult; on conflict the caller decides whether to reload and retry

        Raises:
            TableCatError: If the transaction was already committed
            TransportError: If communication with the catalog fails
        """
        if self._committed:
            raise TableCatError("Transaction was already committed")
        self._committed = True

        if not self._updates:
            return CommitResult(success=True, table=self._table)

        return await self._client._commit(
            self._table.identifier,
            self._requirements,
            self._updates,
        )


class CatalogClient:
    """Client for a table catalog.

    Example:
        >>> async with CatalogClient() as catalog:  # REST, configured from environment
        ...     table = await catalog.load_table("db.events")
    """

    def __init__(
        self,
        transport: CatalogTransport | None = None,
        *,
        settings: ClientSettings | None = None,
    ) -> None:
        """Initialize client.

        Args:
            transport: Catalog backend (defaults to REST from settings)
            settings: Client settings (defaults to environment)
        """
        self.settings = settings or ClientSettings()
        if transport is None:
            from .rest import RestCatalogTransport

            transport = RestCatalogTransport(
                self.settings.catalog_uri,
                timeout=self.settings.request_timeout,
            )
        self._transport = transport

    async def close(self) -> None:
        await self._transport.close()

    async def __aenter__(self) -> CatalogClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def create_namespace(self, *namespace: str, properties: dict[str, str] | None = None) -> None:
        await self._transport.create_namespace(namespace, properties)

    async def list_tables(self, *namespace: str) -> list[TableIdentifier]:
        return await self._transport.list_tables(namespace)

    async def load_table(self, identifier: str | TableIdentifier) -> LoadedTable:
        """Load a table's current metadata location and metadata.

        Raises:
            NotFoundError: If the table does not exist
        """
        return await self._transport.load_table(_as_identifier(identifier))

    async def create_table(
        self,
        identifier: str | TableIdentifier,
        schema: Schema,
        *,
        location: str | None = None,
        properties: dict[str, str] | None = None,
        format_version: int = 2,
        assign_fresh_ids: bool = False,
    ) -> LoadedTable:
        """Create a table.

        Args:
            identifier: Table identifier ("ns.table")
            schema: Initial schema
            location: Table location (defaults to warehouse/namespace/table)
            properties: Table properties
            format_version: Metadata format version
            assign_fresh_ids: Renumber field ids from 1

        Raises:
            AlreadyExistsError: If the table exists
        """
        identifier = _as_identifier(identifier)
        if assign_fresh_ids:
            schema = assign_fresh_schema_ids(schema)
        if location is None and self.settings.warehouse:
            location = "/".join((self.settings.warehouse.rstrip("/"), *identifier.namespace, identifier.name))

        table = await self._transport.create_table(identifier, schema, location, properties, format_version)
        logger.info(f"Created table {identifier} at {table.metadata_location}")
        return table

    def transaction(self, table: LoadedTable) -> Transaction:
        """Start a transaction against a loaded table state."""
        return Transaction(self, table)

    async def _commit(
        self,
        identifier: TableIdentifier,
        requirements: list[TableRequirement],
        updates: list[TableUpdate],
    ) -> CommitResult:
        try:
            table = await self._transport.commit_table(identifier, requirements, updates)
        except CommitConflictError as e:
            logger.warning(f"Commit to {identifier} conflicted: {e.message}")
            return CommitResult(
                success=False,
                conflict=True,
                error=e.message,
                failed_requirement=e.requirement,
            )

        logger.info(
            f"Committed {len(updates)} update(s) to {identifier}, "
            f"new metadata location {table.metadata_location}"
        )
        return CommitResult(success=True, table=table)
