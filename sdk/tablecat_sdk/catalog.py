"""
Catalog transport protocol and shared types.

This module defines the CatalogTransport protocol that every catalog
backend must implement, along with the identifiers and loaded-table
values exchanged with it.

Atomicity contract:
    - commit_table() evaluates every requirement against the catalog's
      authoritative state and applies every update, or does nothing
    - At most one commit succeeds per observed table state

Failure contract:
    - A failed requirement raises CommitConflictError (never retried here)
    - Communication failures and timeouts raise TransportError

How to change safely:
    - Protocol changes require updating all implementations
    - Keep the REST and in-memory backends behaviourally identical
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from .errors import InvalidFormatError
from .metadata import TableMetadata
from .requirements import TableRequirement
from .schema import Schema
from .updates import TableUpdate


@dataclass(frozen=True)
class TableIdentifier:
    """Namespace levels plus table name.

    Example:
        >>> TableIdentifier.parse("db.events")
        TableIdentifier(namespace=('db',), name='events')
    """

    namespace: Tuple[str, ...]
    name: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "namespace", tuple(self.namespace))
        if not self.name:
            raise InvalidFormatError("Table name cannot be empty")

    @classmethod
    def parse(cls, identifier: str) -> TableIdentifier:
        """Parse a dotted identifier; the last part is the table name."""
        parts = identifier.split(".")
        if len(parts) < 2 or not all(parts):
            raise InvalidFormatError(f"Invalid table identifier '{identifier}'")
        return cls(tuple(parts[:-1]), parts[-1])

    def __str__(self) -> str:
        return ".".join((*self.namespace, self.name))


@dataclass(frozen=True)
class LoadedTable:
    """A table as observed at one point in time.

    Attributes:
        identifier: Table identifier
        metadata_location: Location of the metadata document
        metadata: The metadata document
    """

    identifier: TableIdentifier
    metadata_location: str
    metadata: TableMetadata


@runtime_checkable
class CatalogTransport(Protocol):
    """Protocol for catalog backends.

    Example:
        >>> transport = RestCatalogTransport("http://localhost:8181")
        >>> table = await transport.load_table(TableIdentifier.parse("db.events"))
        >>> print(table.metadata_location)
    """

    @abstractmethod
    async def create_namespace(
        self,
        namespace: Sequence[str],
        properties: Optional[Dict[str, str]] = None,
    ) -> None:
        """Create a namespace.

        Raises:
            AlreadyExistsError: If the namespace exists
            TransportError: If communication fails
        """
        ...

    @abstractmethod
    async def list_tables(self, namespace: Sequence[str]) -> List[TableIdentifier]:
        """List the tables of a namespace.

        Raises:
            NotFoundError: If the namespace does not exist
        """
        ...

    @abstractmethod
    async def load_table(self, identifier: TableIdentifier) -> LoadedTable:
        """Load the current metadata of a table.

        Raises:
            NotFoundError: If the table does not exist
            TransportError: If communication fails
        """
        ...

    @abstractmethod
    async def create_table(
        self,
        identifier: TableIdentifier,
        schema: Schema,
        location: Optional[str] = None,
        properties: Optional[Dict[str, str]] = None,
        format_version: int = 2,
    ) -> LoadedTable:
        """Create a table.

        Raises:
            AlreadyExistsError: If the table exists
            NotFoundError: If the namespace does not exist
            TransportError: If communication fails
        """
        ...

    @abstractmethod
    async def commit_table(
        self,
        identifier: TableIdentifier,
        requirements: Sequence[TableRequirement],
        updates: Sequence[TableUpdate],
    ) -> LoadedTable:
        """Atomically check requirements and apply updates.

        Returns:
            The table at its new metadata location

        Raises:
            CommitConflictError: If any requirement fails
            InvalidFormatError: If an update cannot be applied
            NotFoundError: If the table does not exist
            TransportError: If communication fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources held by the transport."""
        ...
