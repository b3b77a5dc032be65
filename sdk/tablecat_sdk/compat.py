"""
Schema compatibility checking for tablecat.

This module enforces table schema evolution rules:
- Field ids are immutable and are the only identity of a column
- Renames, doc changes and dropping columns are allowed
- Types may only be promoted (int -> long, float -> double,
  decimal(P,S) -> decimal(P',S) with P' > P)
- Optional columns may not become required; new columns on existing
  structs must be optional
- Field ids are never reused once assigned (ids at or below the table's
  last column id that are new to the schema are reuse)
- Identifier fields must reference existing, required, top-level
  primitive fields

Invariants:
    - Comparison is keyed exclusively on field id, never on name or position
    - Breaking changes must never be committed

Example:
    >>> changes = check_compatibility(old_schema, new_schema, last_column_id=4)
    >>> breaking = [c for c in changes if c.is_breaking]
    >>> if breaking:
    ...     raise CompatibilityError(breaking)
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple

from .errors import TableCatError
from .schema import Schema
from .types import PrimitiveKind, PrimitiveType, StructField, Type, child_fields

logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    """Types of schema changes."""
    # Non-breaking changes (allowed)
    FIELD_ADDED = auto()
    FIELD_DROPPED = auto()
    FIELD_RENAMED = auto()
    FIELD_MADE_OPTIONAL = auto()
    DOC_CHANGED = auto()
    TYPE_PROMOTED = auto()
    IDENTIFIER_FIELDS_CHANGED = auto()

    # Breaking changes (forbidden)
    FIELD_TYPE_CHANGED = auto()
    REQUIRED_ADDED = auto()  # Making optional field required
    REQUIRED_FIELD_ADDED = auto()  # New required field on an existing struct
    FIELD_ID_REUSED = auto()
    INVALID_IDENTIFIER_FIELD = auto()

    @property
    def is_breaking(self) -> bool:
        """Whether this change kind is a breaking change."""
        breaking_kinds = {
            ChangeKind.FIELD_TYPE_CHANGED,
            ChangeKind.REQUIRED_ADDED,
            ChangeKind.REQUIRED_FIELD_ADDED,
            ChangeKind.FIELD_ID_REUSED,
            ChangeKind.INVALID_IDENTIFIER_FIELD,
        }
        return self in breaking_kinds


@dataclass
class SchemaChange:
    """Represents a single schema change between versions.

    Attributes:
        kind: The type of change
        path: Path to the changed element (e.g., "field:email(id=2)")
        old_value: Previous value (if applicable)
        new_value: New value (if applicable)
        message: Human-readable description of the change
    """
    kind: ChangeKind
    path: str
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    message: str = ""

    @property
    def is_breaking(self) -> bool:
        """Whether this is a breaking change."""
        return self.kind.is_breaking

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.name,
            "path": self.path,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "message": self.message,
            "is_breaking": self.is_breaking,
        }

    def __str__(self) -> str:
        status = "BREAKING" if self.is_breaking else "OK"
        return f"[{status}] {self.kind.name}: {self.path} - {self.message}"


class CompatibilityError(TableCatError):
    """Raised when breaking schema changes are detected.

    Attributes:
        changes: List of breaking changes detected
    """

    def __init__(self, changes: List[SchemaChange]):
        self.changes = changes
        messages = [str(c) for c in changes]
        super().__init__(
            f"Schema compatibility check failed with {len(changes)} breaking change(s):\n"
            + "\n".join(messages),
            code="SCHEMA_INCOMPATIBLE",
            details={"changes": [c.to_dict() for c in changes]},
        )


def is_promotion(old: Type, new: Type) -> bool:
    """Whether ``new`` is an allowed widening of primitive type ``old``."""
    if not isinstance(old, PrimitiveType) or not isinstance(new, PrimitiveType):
        return False
    if old.kind == PrimitiveKind.INT and new.kind == PrimitiveKind.LONG:
        return True
    if old.kind == PrimitiveKind.FLOAT and new.kind == PrimitiveKind.DOUBLE:
        return True
    if old.kind == PrimitiveKind.DECIMAL and new.kind == PrimitiveKind.DECIMAL:
        return new.scale == old.scale and new.precision > old.precision  # type: ignore[operator]
    return False


def _index_with_parents(
    field_type: Type,
    parent_id: Optional[int] = None,
) -> Dict[int, Tuple[StructField, Optional[int]]]:
    """Index every nested field by id along with its parent field id."""
    index: Dict[int, Tuple[StructField, Optional[int]]] = {}
    for f in child_fields(field_type):
        index[f.id] = (f, parent_id)
        index.update(_index_with_parents(f.field_type, f.id))
    return index


def _path(f: StructField) -> str:
    return f"field:{f.name}(id={f.id})"


def check_compatibility(
    old_schema: Schema,
    new_schema: Schema,
    last_column_id: Optional[int] = None,
) -> List[SchemaChange]:
    """Check compatibility between two schema versions.

    Args:
        old_schema: The baseline (currently published) schema
        new_schema: The proposed schema
        last_column_id: Highest field id ever assigned in the table, used
            to detect id reuse. Defaults to the old schema's highest id.

    Returns:
        List of SchemaChange objects describing all differences
    """
    changes: List[SchemaChange] = []

    old_fields = _index_with_parents(old_schema.fields)
    new_fields = _index_with_parents(new_schema.fields)
    if last_column_id is None:
        last_column_id = max(old_fields, default=0)

    for field_id, (old_field, _) in old_fields.items():
        if field_id not in new_fields:
            changes.append(SchemaChange(
                kind=ChangeKind.FIELD_DROPPED,
                path=_path(old_field),
                old_value=field_id,
                message=f"Field '{old_field.name}' (id={field_id}) was dropped",
            ))
            continue
        new_field, _ = new_fields[field_id]
        changes.extend(_check_field_diff(old_field, new_field))

    for field_id, (new_field, parent_id) in new_fields.items():
        if field_id in old_fields:
            continue
        if field_id <= last_column_id:
            changes.append(SchemaChange(
                kind=ChangeKind.FIELD_ID_REUSED,
                path=_path(new_field),
                new_value=field_id,
                message=f"Field id {field_id} was already assigned (last column id is {last_column_id})",
            ))
        elif new_field.required and (parent_id is None or parent_id in old_fields):
            changes.append(SchemaChange(
                kind=ChangeKind.REQUIRED_FIELD_ADDED,
                path=_path(new_field),
                new_value=field_id,
                message=f"New field '{new_field.name}' cannot be required",
            ))
        else:
            changes.append(SchemaChange(
                kind=ChangeKind.FIELD_ADDED,
                path=_path(new_field),
                new_value=field_id,
                message=f"Field '{new_field.name}' (id={field_id}) was added",
            ))

    changes.extend(_check_identifier_fields(old_schema, new_schema))
    return changes


def _check_field_diff(old_field: StructField, new_field: StructField) -> List[SchemaChange]:
    """Check changes to one field that exists in both schemas."""
    changes: List[SchemaChange] = []
    path = _path(new_field)

    if old_field.name != new_field.name:
        changes.append(SchemaChange(
            kind=ChangeKind.FIELD_RENAMED,
            path=path,
            old_value=old_field.name,
            new_value=new_field.name,
            message=f"Field renamed from '{old_field.name}' to '{new_field.name}'",
        ))

    if old_field.required and not new_field.required:
        changes.append(SchemaChange(
            kind=ChangeKind.FIELD_MADE_OPTIONAL,
            path=path,
            message=f"Field '{new_field.name}' is now optional",
        ))
    elif not old_field.required and new_field.required:
        changes.append(SchemaChange(
            kind=ChangeKind.REQUIRED_ADDED,
            path=path,
            message=f"Optional field '{new_field.name}' cannot become required",
        ))

    if old_field.doc != new_field.doc:
        changes.append(SchemaChange(
            kind=ChangeKind.DOC_CHANGED,
            path=path,
            old_value=old_field.doc,
            new_value=new_field.doc,
            message=f"Doc of field '{new_field.name}' changed",
        ))

    old_type, new_type = old_field.field_type, new_field.field_type
    if isinstance(old_type, PrimitiveType) and isinstance(new_type, PrimitiveType):
        if old_type != new_type:
            kind = ChangeKind.TYPE_PROMOTED if is_promotion(old_type, new_type) else ChangeKind.FIELD_TYPE_CHANGED
            changes.append(SchemaChange(
                kind=kind,
                path=path,
                old_value=str(old_type),
                new_value=str(new_type),
                message=f"Type of field '{new_field.name}' changed from {old_type} to {new_type}",
            ))
    elif type(old_type) is not type(new_type):
        # Nested children are compared through their own ids
        changes.append(SchemaChange(
            kind=ChangeKind.FIELD_TYPE_CHANGED,
            path=path,
            old_value=type(old_type).__name__,
            new_value=type(new_type).__name__,
            message=f"Field '{new_field.name}' changed from {type(old_type).__name__} to {type(new_type).__name__}",
        ))

    return changes


def _check_identifier_fields(old_schema: Schema, new_schema: Schema) -> List[SchemaChange]:
    changes: List[SchemaChange] = []
    if old_schema.identifier_field_ids != new_schema.identifier_field_ids:
        changes.append(SchemaChange(
            kind=ChangeKind.IDENTIFIER_FIELDS_CHANGED,
            path="identifier-field-ids",
            old_value=list(old_schema.identifier_field_ids or ()),
            new_value=list(new_schema.identifier_field_ids or ()),
            message="Identifier fields changed",
        ))
    for problem in validate_identifier_fields(new_schema):
        changes.append(SchemaChange(
            kind=ChangeKind.INVALID_IDENTIFIER_FIELD,
            path="identifier-field-ids",
            message=problem,
        ))
    return changes


def validate_identifier_fields(schema: Schema) -> List[str]:
    """Validate that identifier fields reference existing, required, top-level primitives.

    Args:
        schema: The schema to validate

    Returns:
        List of validation errors (empty if valid)
    """
    errors: List[str] = []
    ids = schema.identifier_field_ids or ()
    if len(ids) != len(set(ids)):
        errors.append(f"Duplicate identifier field ids: {list(ids)}")

    for field_id in ids:
        f = schema.fields.field_by_id(field_id)
        if f is None:
            if schema.find_field(field_id) is not None:
                errors.append(f"Identifier field {field_id} is not a top-level field")
            else:
                errors.append(f"Identifier field {field_id} does not exist")
        elif not f.required:
            errors.append(f"Identifier field '{f.name}' (id={field_id}) must be required")
        elif not isinstance(f.field_type, PrimitiveType):
            errors.append(f"Identifier field '{f.name}' (id={field_id}) must be a primitive type")
    return errors


def generate_fingerprint(schema: Schema) -> str:
    """Generate a fingerprint of a schema's structure.

    The fingerprint is a SHA-256 hash of the canonical representation of
    the fields and identifier fields. The schema id is excluded, so two
    schemas with the same structure share a fingerprint.

    Returns:
        Fingerprint string in format 'sha256:<hash>'
    """
    schema_dict = schema.to_dict()
    schema_dict.pop("schema-id")
    canonical = json.dumps(schema_dict, sort_keys=True, separators=(',', ':'))
    hash_bytes = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
    return f"sha256:{hash_bytes}"


def validate_breaking_changes(
    old_schema: Schema,
    new_schema: Schema,
    last_column_id: Optional[int] = None,
) -> None:
    """Validate that there are no breaking changes.

    Raises:
        CompatibilityError: If breaking changes are detected
    """
    changes = check_compatibility(old_schema, new_schema, last_column_id)
    breaking = [c for c in changes if c.is_breaking]
    if breaking:
        raise CompatibilityError(breaking)
    logger.info(f"Schema compatibility check passed with {len(changes)} non-breaking changes")
