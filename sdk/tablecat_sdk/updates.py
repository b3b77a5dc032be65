"""
Commit updates.

An update is one unit of change applied by the catalog to the table's
metadata when every requirement of the commit holds. Updates of one
commit are applied in order, all or nothing.

Serialized form is {"action": "<kebab-case action>", ...}.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Dict, Iterable, Optional, Tuple, Type

from .errors import InvalidFormatError
from .metadata import MetadataBuilder, RefType, Snapshot, TableMetadata
from .schema import Schema

_UPDATES: Dict[str, Type[TableUpdate]] = {}


def _register(cls: Type[TableUpdate]) -> Type[TableUpdate]:
    _UPDATES[cls.action] = cls
    return cls


class TableUpdate(ABC):
    """Base class for metadata changes."""

    action: ClassVar[str]

    @abstractmethod
    def apply(self, builder: MetadataBuilder) -> None:
        """Apply this change.

        Raises:
            InvalidFormatError: If the change is invalid for the metadata
        """

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        ...

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> TableUpdate:
        """Deserialize any update by its "action" tag.

        Raises:
            InvalidFormatError: If the action is unknown or a key is missing
        """
        cls = _UPDATES.get(data.get("action", ""))
        if cls is None:
            raise InvalidFormatError(f"Unknown update action {data.get('action')!r}")
        parse: Callable[[Dict[str, Any]], TableUpdate] = cls._from_dict  # type: ignore[attr-defined]
        try:
            return parse(data)
        except KeyError as e:
            raise InvalidFormatError(f"Update {cls.action} is missing key {e}") from e


@_register
@dataclass(frozen=True)
class AssignUuid(TableUpdate):
    uuid: str
    action: ClassVar[str] = "assign-uuid"

    def apply(self, builder: MetadataBuilder) -> None:
        builder.assign_uuid(self.uuid)

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action, "uuid": self.uuid}

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> AssignUuid:
        return cls(uuid=data["uuid"])


@_register
@dataclass(frozen=True)
class UpgradeFormatVersion(TableUpdate):
    format_version: int
    action: ClassVar[str] = "upgrade-format-version"

    def apply(self, builder: MetadataBuilder) -> None:
        builder.upgrade_format_version(self.format_version)

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action, "format-version": self.format_version}

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> UpgradeFormatVersion:
        return cls(format_version=data["format-version"])


@_register
@dataclass(frozen=True)
class AddSchema(TableUpdate):
    """Add a schema version; last_column_id covers ids retired by drops."""

    schema: Schema
    last_column_id: Optional[int] = None
    action: ClassVar[str] = "add-schema"

    def apply(self, builder: MetadataBuilder) -> None:
        builder.add_schema(self.schema, self.last_column_id)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"action": self.action, "schema": self.schema.to_dict()}
        if self.last_column_id is not None:
            result["last-column-id"] = self.last_column_id
        return result

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> AddSchema:
        return cls(schema=Schema.from_dict(data["schema"]), last_column_id=data.get("last-column-id"))


@_register
@dataclass(frozen=True)
class SetCurrentSchema(TableUpdate):
    """Select the current schema; -1 means the schema added last in this commit."""

    schema_id: int
    action: ClassVar[str] = "set-current-schema"

    def apply(self, builder: MetadataBuilder) -> None:
        builder.set_current_schema(self.schema_id)

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action, "schema-id": self.schema_id}

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> SetCurrentSchema:
        return cls(schema_id=data["schema-id"])


@_register
@dataclass(frozen=True)
class AddSnapshot(TableUpdate):
    snapshot: Snapshot
    action: ClassVar[str] = "add-snapshot"

    def apply(self, builder: MetadataBuilder) -> None:
        builder.add_snapshot(self.snapshot)

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action, "snapshot": self.snapshot.to_dict()}

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> AddSnapshot:
        return cls(snapshot=Snapshot.from_dict(data["snapshot"]))


@_register
@dataclass(frozen=True)
class SetSnapshotRef(TableUpdate):
    ref_name: str
    snapshot_id: int
    ref_type: RefType = RefType.BRANCH
    action: ClassVar[str] = "set-snapshot-ref"

    def apply(self, builder: MetadataBuilder) -> None:
        builder.set_ref(self.ref_name, self.snapshot_id, self.ref_type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "ref-name": self.ref_name,
            "snapshot-id": self.snapshot_id,
            "type": self.ref_type.value,
        }

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> SetSnapshotRef:
        try:
            ref_type = RefType(data.get("type", RefType.BRANCH.value))
        except ValueError as e:
            raise InvalidFormatError(f"Invalid ref type: {e}") from e
        return cls(ref_name=data["ref-name"], snapshot_id=data["snapshot-id"], ref_type=ref_type)


@_register
@dataclass(frozen=True)
class SetProperties(TableUpdate):
    updates: Dict[str, str]
    action: ClassVar[str] = "set-properties"

    def apply(self, builder: MetadataBuilder) -> None:
        builder.set_properties(self.updates)

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action, "updates": dict(self.updates)}

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> SetProperties:
        return cls(updates={str(k): str(v) for k, v in data["updates"].items()})


@_register
@dataclass(frozen=True)
class RemoveProperties(TableUpdate):
    removals: Tuple[str, ...]
    action: ClassVar[str] = "remove-properties"

    def apply(self, builder: MetadataBuilder) -> None:
        builder.remove_properties(self.removals)

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action, "removals": list(self.removals)}

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> RemoveProperties:
        return cls(removals=tuple(data["removals"]))


@_register
@dataclass(frozen=True)
class SetLocation(TableUpdate):
    location: str
    action: ClassVar[str] = "set-location"

    def apply(self, builder: MetadataBuilder) -> None:
        builder.set_location(self.location)

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action, "location": self.location}

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> SetLocation:
        return cls(location=data["location"])


def apply_updates(
    base: TableMetadata,
    updates: Iterable[TableUpdate],
    previous_metadata_location: Optional[str] = None,
) -> TableMetadata:
    """Apply updates in order to produce the next metadata version.

    Raises:
        InvalidFormatError: If any update is invalid; no partial result is produced
    """
    builder = MetadataBuilder(base)
    for update in updates:
        update.apply(builder)
    return builder.build(previous_metadata_location)
