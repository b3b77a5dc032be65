"""
Table metadata aggregate.

TableMetadata is the immutable document a catalog points to. Every
committed change produces a new TableMetadata through MetadataBuilder:
- TableMetadata: Schemas, snapshots, refs, properties, metadata log
- Snapshot / SnapshotRef: Table state pointers
- MetadataBuilder: Applies updates to a base version

Invariants:
    - current_schema_id always references a schema in schemas
    - last_column_id is never lowered
    - Schema ids and snapshot ids are never reused within a table
    - The "main" branch ref and current_snapshot_id always agree

How to change safely:
    - Keep JSON keys kebab-case
    - New optional keys must default when absent
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .compat import is_promotion
from .errors import InvalidFormatError
from .schema import Schema
from .types import PrimitiveType, Type, index_by_id
from .versions import parse_schema, serialize_schema

logger = logging.getLogger(__name__)

MAIN_BRANCH = "main"
SUPPORTED_FORMAT_VERSIONS = (1, 2)
SNAPSHOT_OPERATIONS = ("append", "replace", "overwrite", "delete")


def now_ms() -> int:
    return int(time.time() * 1000)


class RefType(Enum):
    """Snapshot reference kinds."""

    BRANCH = "branch"
    TAG = "tag"


@dataclass(frozen=True)
class Snapshot:
    """A snapshot of the table's data files.

    Attributes:
        snapshot_id: Unique snapshot identifier
        timestamp_ms: Creation time (Unix ms)
        manifest_list: Location of the manifest list file
        summary: Summary properties; must include "operation"
        parent_snapshot_id: Snapshot this one was derived from
        sequence_number: Data sequence number (format version 2)
        schema_id: Schema current when the snapshot was written
    """

    snapshot_id: int
    timestamp_ms: int
    manifest_list: str
    summary: Mapping[str, str]
    parent_snapshot_id: Optional[int] = None
    sequence_number: int = 0
    schema_id: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "summary", MappingProxyType(dict(self.summary)))
        operation = self.summary.get("operation")
        if operation not in SNAPSHOT_OPERATIONS:
            raise InvalidFormatError(
                f"Snapshot {self.snapshot_id} has invalid operation {operation!r}"
            )

    @property
    def operation(self) -> str:
        return self.summary["operation"]

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "snapshot-id": self.snapshot_id,
            "timestamp-ms": self.timestamp_ms,
            "manifest-list": self.manifest_list,
            "summary": dict(self.summary),
            "sequence-number": self.sequence_number,
        }
        if self.parent_snapshot_id is not None:
            result["parent-snapshot-id"] = self.parent_snapshot_id
        if self.schema_id is not None:
            result["schema-id"] = self.schema_id
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Snapshot:
        try:
            return cls(
                snapshot_id=data["snapshot-id"],
                timestamp_ms=data["timestamp-ms"],
                manifest_list=data["manifest-list"],
                summary=dict(data["summary"]),
                parent_snapshot_id=data.get("parent-snapshot-id"),
                sequence_number=data.get("sequence-number", 0),
                schema_id=data.get("schema-id"),
            )
        except KeyError as e:
            raise InvalidFormatError(f"Snapshot is missing key {e}") from e


@dataclass(frozen=True)
class SnapshotRef:
    """A named pointer (branch or tag) to a snapshot."""

    snapshot_id: int
    ref_type: RefType = RefType.BRANCH

    def to_dict(self) -> Dict[str, Any]:
        return {"snapshot-id": self.snapshot_id, "type": self.ref_type.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SnapshotRef:
        try:
            return cls(snapshot_id=data["snapshot-id"], ref_type=RefType(data["type"]))
        except (KeyError, ValueError) as e:
            raise InvalidFormatError(f"Invalid snapshot ref: {e}") from e


@dataclass(frozen=True)
class MetadataLogEntry:
    """A previous metadata location and when it was replaced."""

    metadata_file: str
    timestamp_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {"metadata-file": self.metadata_file, "timestamp-ms": self.timestamp_ms}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MetadataLogEntry:
        return cls(metadata_file=data["metadata-file"], timestamp_ms=data["timestamp-ms"])


@dataclass(frozen=True)
class TableMetadata:
    """Metadata for a table at one version.

    Attributes:
        format_version: Metadata generation (1 or 2)
        table_uuid: Identifies the table across renames
        location: Base location of the table
        last_updated_ms: When this version was produced (Unix ms)
        last_column_id: Highest field id ever assigned
        schemas: Every schema the table has had
        current_schema_id: Id of the schema readers should use
        snapshots: Valid snapshots
        current_snapshot_id: Snapshot the main branch points to
        refs: Named snapshot references
        properties: Table properties
        last_sequence_number: Highest assigned sequence number
        metadata_log: Previous metadata locations, oldest first
    """

    format_version: int
    table_uuid: str
    location: str
    last_updated_ms: int
    last_column_id: int
    schemas: Tuple[Schema, ...]
    current_schema_id: int
    snapshots: Tuple[Snapshot, ...] = ()
    current_snapshot_id: Optional[int] = None
    refs: Mapping[str, SnapshotRef] = field(default_factory=dict)
    properties: Mapping[str, str] = field(default_factory=dict)
    last_sequence_number: int = 0
    metadata_log: Tuple[MetadataLogEntry, ...] = ()

    def __post_init__(self) -> None:
        # Published versions are shared between callers; copy into read-only views.
        object.__setattr__(self, "schemas", tuple(self.schemas))
        object.__setattr__(self, "snapshots", tuple(self.snapshots))
        object.__setattr__(self, "metadata_log", tuple(self.metadata_log))
        object.__setattr__(self, "refs", MappingProxyType(dict(self.refs)))
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))
        if self.format_version not in SUPPORTED_FORMAT_VERSIONS:
            raise InvalidFormatError(f"Unsupported format version {self.format_version}")
        if self.schema_by_id(self.current_schema_id) is None:
            raise InvalidFormatError(f"Current schema {self.current_schema_id} does not exist")

    def schema(self) -> Schema:
        """The current schema."""
        schema = self.schema_by_id(self.current_schema_id)
        assert schema is not None
        return schema

    def schema_by_id(self, schema_id: int) -> Optional[Schema]:
        return next((s for s in self.schemas if s.schema_id == schema_id), None)

    def snapshot_by_id(self, snapshot_id: int) -> Optional[Snapshot]:
        return next((s for s in self.snapshots if s.snapshot_id == snapshot_id), None)

    def current_snapshot(self) -> Optional[Snapshot]:
        if self.current_snapshot_id is None:
            return None
        return self.snapshot_by_id(self.current_snapshot_id)

    def ref_snapshot_id(self, ref_name: str) -> Optional[int]:
        ref = self.refs.get(ref_name)
        return ref.snapshot_id if ref is not None else None

    def next_sequence_number(self) -> int:
        return self.last_sequence_number + 1 if self.format_version > 1 else 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the kebab-case JSON object representation."""
        result: Dict[str, Any] = {
            "format-version": self.format_version,
            "table-uuid": self.table_uuid,
            "location": self.location,
            "last-updated-ms": self.last_updated_ms,
            "last-column-id": self.last_column_id,
            "schemas": [serialize_schema(s, self.format_version) for s in self.schemas],
            "current-schema-id": self.current_schema_id,
            "snapshots": [s.to_dict() for s in self.snapshots],
            "refs": {name: ref.to_dict() for name, ref in sorted(self.refs.items())},
            "properties": dict(self.properties),
            "metadata-log": [e.to_dict() for e in self.metadata_log],
        }
        if self.format_version == 1:
            result["schema"] = serialize_schema(self.schema(), 1)
        else:
            result["last-sequence-number"] = self.last_sequence_number
        if self.current_snapshot_id is not None:
            result["current-snapshot-id"] = self.current_snapshot_id
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TableMetadata:
        """Create from the JSON object representation.

        Format version 1 documents may carry a single "schema" instead
        of "schemas"; its missing schema-id defaults to 0.

        Raises:
            InvalidFormatError: If a mandatory key is missing or malformed
        """
        try:
            format_version = data["format-version"]
            if "schemas" in data:
                schemas = tuple(parse_schema(s, format_version) for s in data["schemas"])
            else:
                schemas = (parse_schema(data["schema"], format_version),)
            if not schemas:
                raise InvalidFormatError("Table metadata has no schemas")
            return cls(
                format_version=format_version,
                table_uuid=data["table-uuid"],
                location=data["location"],
                last_updated_ms=data["last-updated-ms"],
                last_column_id=data["last-column-id"],
                schemas=schemas,
                current_schema_id=data.get("current-schema-id", schemas[-1].schema_id),
                snapshots=tuple(Snapshot.from_dict(s) for s in data.get("snapshots", [])),
                current_snapshot_id=data.get("current-snapshot-id"),
                refs={name: SnapshotRef.from_dict(r) for name, r in data.get("refs", {}).items()},
                properties=dict(data.get("properties", {})),
                last_sequence_number=data.get("last-sequence-number", 0),
                metadata_log=tuple(MetadataLogEntry.from_dict(e) for e in data.get("metadata-log", [])),
            )
        except KeyError as e:
            raise InvalidFormatError(f"Table metadata is missing key {e}") from e
        except (TypeError, AttributeError) as e:
            raise InvalidFormatError(f"Malformed table metadata: {e}") from e

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, text: str) -> TableMetadata:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidFormatError(f"Table metadata is not valid JSON: {e}") from e
        return cls.from_dict(data)


def new_table_metadata(
    schema: Schema,
    location: str,
    properties: Optional[Dict[str, str]] = None,
    format_version: int = 2,
    table_uuid: Optional[str] = None,
) -> TableMetadata:
    """Create the first metadata version of a new table."""
    return TableMetadata(
        format_version=format_version,
        table_uuid=table_uuid or str(uuid.uuid4()),
        location=location.rstrip("/"),
        last_updated_ms=now_ms(),
        last_column_id=schema.highest_field_id(),
        schemas=(schema,),
        current_schema_id=schema.schema_id,
        properties=dict(properties or {}),
    )


def _same_slot(previous: Type, current: Type) -> bool:
    if isinstance(previous, PrimitiveType) and isinstance(current, PrimitiveType):
        return previous == current or is_promotion(previous, current)
    return type(previous) is type(current)


class MetadataBuilder:
    """Produces the next TableMetadata version from a base version.

    Each method applies one change and raises InvalidFormatError if the
    change is not valid against the metadata accumulated so far.

    Example:
        >>> builder = MetadataBuilder(base)
        >>> schema_id = builder.add_schema(new_schema, last_column_id=5)
        >>> builder.set_current_schema(schema_id)
        >>> metadata = builder.build(previous_location)
    """

    def __init__(self, base: TableMetadata) -> None:
        self._base = base
        self.format_version = base.format_version
        self.table_uuid = base.table_uuid
        self.location = base.location
        self.last_column_id = base.last_column_id
        self.schemas: List[Schema] = list(base.schemas)
        self.current_schema_id = base.current_schema_id
        self.snapshots: List[Snapshot] = list(base.snapshots)
        self.current_snapshot_id = base.current_snapshot_id
        self.refs: Dict[str, SnapshotRef] = dict(base.refs)
        self.properties: Dict[str, str] = dict(base.properties)
        self.last_sequence_number = base.last_sequence_number
        self._last_added_schema_id: Optional[int] = None

    def assign_uuid(self, table_uuid: str) -> None:
        if table_uuid != self.table_uuid:
            raise InvalidFormatError(
                f"Cannot reassign table uuid {self.table_uuid} to {table_uuid}"
            )

    def upgrade_format_version(self, format_version: int) -> None:
        if format_version not in SUPPORTED_FORMAT_VERSIONS:
            raise InvalidFormatError(f"Unsupported format version {format_version}")
        if format_version < self.format_version:
            raise InvalidFormatError(
                f"Cannot downgrade format version from {self.format_version} to {format_version}"
            )
        self.format_version = format_version

    def add_schema(self, schema: Schema, last_column_id: Optional[int] = None) -> int:
        if any(s.schema_id == schema.schema_id for s in self.schemas):
            raise InvalidFormatError(f"Schema id {schema.schema_id} already exists")
        highest = schema.highest_field_id()
        if last_column_id is None:
            last_column_id = highest
        if last_column_id < highest:
            raise InvalidFormatError(
                f"last-column-id {last_column_id} is lower than highest field id {highest}"
            )
        self._check_field_ids_not_reused(schema)
        self.schemas.append(schema)
        self.last_column_id = max(self.last_column_id, last_column_id)
        self._last_added_schema_id = schema.schema_id
        return schema.schema_id

    def _check_field_ids_not_reused(self, schema: Schema) -> None:
        """Reject assigned ids that no earlier schema holds with a compatible type."""
        latest: Dict[int, Type] = {}
        for existing in self.schemas:
            for field_id, f in index_by_id(existing.fields).items():
                latest[field_id] = f.field_type
        for field_id, f in index_by_id(schema.fields).items():
            if field_id > self.last_column_id:
                continue
            previous = latest.get(field_id)
            if previous is None:
                raise InvalidFormatError(
                    f"Field id {field_id} ('{f.name}') was already assigned and cannot be reused"
                )
            if not _same_slot(previous, f.field_type):
                raise InvalidFormatError(
                    f"Field id {field_id} ('{f.name}') changes type from {previous} to {f.field_type}"
                )

    def set_current_schema(self, schema_id: int) -> None:
        """Set the current schema; -1 selects the schema added last."""
        if schema_id == -1:
            if self._last_added_schema_id is None:
                raise InvalidFormatError("Cannot set current schema to last added: no schema was added")
            schema_id = self._last_added_schema_id
        if not any(s.schema_id == schema_id for s in self.schemas):
            raise InvalidFormatError(f"Cannot set current schema to unknown schema {schema_id}")
        self.current_schema_id = schema_id

    def add_snapshot(self, snapshot: Snapshot) -> None:
        if any(s.snapshot_id == snapshot.snapshot_id for s in self.snapshots):
            raise InvalidFormatError(f"Snapshot id {snapshot.snapshot_id} already exists")
        if self.format_version > 1 and snapshot.sequence_number <= self.last_sequence_number:
            raise InvalidFormatError(
                f"Snapshot sequence number {snapshot.sequence_number} is not greater "
                f"than last sequence number {self.last_sequence_number}"
            )
        self.snapshots.append(snapshot)
        self.last_sequence_number = max(self.last_sequence_number, snapshot.sequence_number)

    def set_ref(self, ref_name: str, snapshot_id: int, ref_type: RefType = RefType.BRANCH) -> None:
        if not any(s.snapshot_id == snapshot_id for s in self.snapshots):
            raise InvalidFormatError(f"Cannot set ref '{ref_name}' to unknown snapshot {snapshot_id}")
        if ref_name == MAIN_BRANCH and ref_type != RefType.BRANCH:
            raise InvalidFormatError(f"Ref '{MAIN_BRANCH}' must be a branch")
        self.refs[ref_name] = SnapshotRef(snapshot_id, ref_type)
        if ref_name == MAIN_BRANCH:
            self.current_snapshot_id = snapshot_id

    def set_properties(self, updates: Dict[str, str]) -> None:
        self.properties.update(updates)

    def remove_properties(self, removals: Iterable[str]) -> None:
        for key in removals:
            self.properties.pop(key, None)

    def set_location(self, location: str) -> None:
        self.location = location.rstrip("/")

    def build(self, previous_metadata_location: Optional[str] = None) -> TableMetadata:
        """Produce the new metadata version.

        Args:
            previous_metadata_location: Location of the base version,
                appended to the metadata log
        """
        timestamp = now_ms()
        metadata_log = self._base.metadata_log
        if previous_metadata_location is not None:
            metadata_log = metadata_log + (
                MetadataLogEntry(previous_metadata_location, self._base.last_updated_ms),
            )
        return TableMetadata(
            format_version=self.format_version,
            table_uuid=self.table_uuid,
            location=self.location,
            last_updated_ms=max(timestamp, self._base.last_updated_ms),
            last_column_id=self.last_column_id,
            schemas=tuple(self.schemas),
            current_schema_id=self.current_schema_id,
            snapshots=tuple(self.snapshots),
            current_snapshot_id=self.current_snapshot_id,
            refs=dict(self.refs),
            properties=dict(self.properties),
            last_sequence_number=self.last_sequence_number,
            metadata_log=metadata_log,
        )
