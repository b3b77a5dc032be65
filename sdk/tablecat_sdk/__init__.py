"""
tablecat Python SDK - table-format metadata layer.

This SDK provides the metadata model of an open table format:
- Type definitions (StructType, StructField, ListType, MapType, primitives)
- Versioned schemas with builder, projection and JSON round-trip
- Table metadata and the catalog commit protocol
- SQL relation-name rewriting

Example:
    >>> from tablecat_sdk import CatalogClient, Schema, StructField, StructTypeBuilder, LONG
    >>>
    >>> schema = (
    ...     Schema.builder()
    ...     .with_fields(StructTypeBuilder().with_struct_field(StructField(1, "id", LONG, True)))
    ...     .build()
    ... )
    >>>
    >>> async with CatalogClient() as catalog:
    ...     table = await catalog.create_table("db.events", schema)
    ...     txn = catalog.transaction(table)
    ...     txn.set_properties(owner="analytics")
    ...     result = await txn.commit()

Invariants:
    - Field ids are immutable after first use
    - Commits are atomic compare-and-swap operations
    - Conflicts are results, never exceptions

Version: 1.0.0
"""

__version__ = "1.0.0"

from .catalog import CatalogTransport, LoadedTable, TableIdentifier
from .client import CatalogClient, CommitResult, Transaction
from .compat import (
    ChangeKind,
    CompatibilityError,
    SchemaChange,
    check_compatibility,
    generate_fingerprint,
    validate_identifier_fields,
)
from .errors import (
    AlreadyExistsError,
    CommitConflictError,
    InvalidFormatError,
    NotFoundError,
    SqlParseError,
    TableCatError,
    TransportError,
)
from .evolution import SchemaUpdate
from .metadata import MetadataBuilder, Snapshot, SnapshotRef, TableMetadata
from .requirements import (
    AssertCreate,
    AssertCurrentSchemaId,
    AssertLastAssignedFieldId,
    AssertMetadataLocation,
    AssertRefSnapshotId,
    AssertTableUuid,
    TableRequirement,
)
from .schema import Schema, SchemaBuilder
from .sql import transform_name, transform_relations
from .types import (
    BINARY,
    BOOLEAN,
    DATE,
    DOUBLE,
    FLOAT,
    INT,
    LONG,
    STRING,
    TIME,
    TIMESTAMP,
    TIMESTAMPTZ,
    UUID,
    ListType,
    MapType,
    PrimitiveKind,
    PrimitiveType,
    StructField,
    StructType,
    StructTypeBuilder,
    decimal,
    fixed,
)
from .updates import TableUpdate
from .versions import SchemaV1, SchemaV2

__all__ = [
    # Version
    "__version__",
    # Types
    "PrimitiveKind",
    "PrimitiveType",
    "StructField",
    "StructType",
    "StructTypeBuilder",
    "ListType",
    "MapType",
    "BOOLEAN",
    "INT",
    "LONG",
    "FLOAT",
    "DOUBLE",
    "DATE",
    "TIME",
    "TIMESTAMP",
    "TIMESTAMPTZ",
    "STRING",
    "UUID",
    "BINARY",
    "decimal",
    "fixed",
    # Schemas
    "Schema",
    "SchemaBuilder",
    "SchemaV1",
    "SchemaV2",
    "SchemaUpdate",
    # Compatibility
    "ChangeKind",
    "SchemaChange",
    "CompatibilityError",
    "check_compatibility",
    "validate_identifier_fields",
    "generate_fingerprint",
    # Metadata
    "TableMetadata",
    "MetadataBuilder",
    "Snapshot",
    "SnapshotRef",
    # Commit protocol
    "TableRequirement",
    "AssertCreate",
    "AssertTableUuid",
    "AssertMetadataLocation",
    "AssertRefSnapshotId",
    "AssertLastAssignedFieldId",
    "AssertCurrentSchemaId",
    "TableUpdate",
    "TableIdentifier",
    "LoadedTable",
    "CatalogTransport",
    "CatalogClient",
    "Transaction",
    "CommitResult",
    # SQL
    "transform_name",
    "transform_relations",
    # Errors
    "TableCatError",
    "InvalidFormatError",
    "SqlParseError",
    "CommitConflictError",
    "TransportError",
    "NotFoundError",
    "AlreadyExistsError",
]
