"""
Serialized schema generations.

Table metadata has been written in two generations:
- SchemaV1: schema-id is optional (older writers omitted it)
- SchemaV2: schema-id is mandatory

Both are independent value types with explicit conversions to and
from the canonical Schema. A missing V1 schema-id becomes 0 when
converted; this is the only defaulting rule.

Invariants:
    - Schema -> V1 -> Schema and Schema -> V2 -> Schema are identities
    - V1 -> V2 -> V1 is an identity except that an absent schema-id becomes 0
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .errors import InvalidFormatError
from .schema import DEFAULT_SCHEMA_ID, Schema
from .types import StructType, require_int, require_int_tuple


def _identifier_ids(data: Dict[str, Any]) -> Optional[Tuple[int, ...]]:
    ids = data.get("identifier-field-ids")
    return require_int_tuple(ids, "identifier-field-ids") if ids is not None else None


@dataclass(frozen=True)
class SchemaV2:
    """Schema as serialized in format version 2 metadata."""

    schema_id: int
    identifier_field_ids: Optional[Tuple[int, ...]]
    fields: StructType

    def __post_init__(self) -> None:
        require_int(self.schema_id, "schema-id")

    @classmethod
    def from_schema(cls, schema: Schema) -> SchemaV2:
        return cls(
            schema_id=schema.schema_id,
            identifier_field_ids=schema.identifier_field_ids,
            fields=schema.fields,
        )

    def to_schema(self) -> Schema:
        return Schema(
            schema_id=self.schema_id,
            identifier_field_ids=self.identifier_field_ids,
            fields=self.fields,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"schema-id": self.schema_id}
        if self.identifier_field_ids is not None:
            result["identifier-field-ids"] = list(self.identifier_field_ids)
        result.update(self.fields.to_dict())
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SchemaV2:
        """Parse a V2 schema object.

        Raises:
            InvalidFormatError: If schema-id is missing or the struct is malformed
        """
        if "schema-id" not in data:
            raise InvalidFormatError("V2 schema requires 'schema-id'")
        return cls(
            schema_id=data["schema-id"],
            identifier_field_ids=_identifier_ids(data),
            fields=StructType.from_dict(data),
        )


@dataclass(frozen=True)
class SchemaV1:
    """Schema as serialized in format version 1 metadata."""

    schema_id: Optional[int]
    identifier_field_ids: Optional[Tuple[int, ...]]
    fields: StructType

    def __post_init__(self) -> None:
        if self.schema_id is not None:
            require_int(self.schema_id, "schema-id")

    @classmethod
    def from_schema(cls, schema: Schema) -> SchemaV1:
        return cls(
            schema_id=schema.schema_id,
            identifier_field_ids=schema.identifier_field_ids,
            fields=schema.fields,
        )

    def to_schema(self) -> Schema:
        """Convert to the canonical schema, defaulting a missing schema-id to 0."""
        return Schema(
            schema_id=self.schema_id if self.schema_id is not None else DEFAULT_SCHEMA_ID,
            identifier_field_ids=self.identifier_field_ids,
            fields=self.fields,
        )

    def to_v2(self) -> SchemaV2:
        return SchemaV2.from_schema(self.to_schema())

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.schema_id is not None:
            result["schema-id"] = self.schema_id
        if self.identifier_field_ids is not None:
            result["identifier-field-ids"] = list(self.identifier_field_ids)
        result.update(self.fields.to_dict())
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SchemaV1:
        return cls(
            schema_id=data.get("schema-id"),
            identifier_field_ids=_identifier_ids(data),
            fields=StructType.from_dict(data),
        )


def parse_schema(data: Dict[str, Any], format_version: int) -> Schema:
    """Parse a serialized schema of the given metadata generation.

    Args:
        data: Schema JSON object
        format_version: Metadata format version (1 or 2)

    Returns:
        Canonical Schema

    Raises:
        InvalidFormatError: If the version is unsupported or the object is malformed
    """
    if not isinstance(data, dict):
        raise InvalidFormatError(f"Schema must be an object, got {type(data).__name__}")
    if format_version == 1:
        return SchemaV1.from_dict(data).to_schema()
    if format_version == 2:
        return SchemaV2.from_dict(data).to_schema()
    raise InvalidFormatError(f"Unsupported format version {format_version}")


def serialize_schema(schema: Schema, format_version: int) -> Dict[str, Any]:
    """Serialize a canonical schema for the given metadata generation."""
    if format_version == 1:
        return SchemaV1.from_schema(schema).to_dict()
    if format_version == 2:
        return SchemaV2.from_schema(schema).to_dict()
    raise InvalidFormatError(f"Unsupported format version {format_version}")
