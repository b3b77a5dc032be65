"""
Commit requirements.

A requirement is an assertion about the table state the writer loaded.
The catalog evaluates every requirement of a commit against its own
current state; if any fails, the whole commit is rejected as a
conflict and nothing is applied.

Invariants:
    - validate() has no side effects
    - A failed requirement raises CommitConflictError naming its type
    - Serialized form is {"type": "<kebab-case type>", ...}
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Dict, Optional, Type

from .errors import CommitConflictError, InvalidFormatError

if TYPE_CHECKING:
    from .catalog import LoadedTable

_REQUIREMENTS: Dict[str, Type[TableRequirement]] = {}


def _register(cls: Type[TableRequirement]) -> Type[TableRequirement]:
    _REQUIREMENTS[cls.type] = cls
    return cls


class TableRequirement(ABC):
    """Base class for commit preconditions."""

    type: ClassVar[str]

    @abstractmethod
    def validate(self, table: Optional[LoadedTable]) -> None:
        """Check the requirement against the catalog's current state.

        Args:
            table: The table as currently known to the catalog, or None
                if it does not exist

        Raises:
            CommitConflictError: If the requirement does not hold
        """

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        ...

    def _require_table(self, table: Optional[LoadedTable]) -> LoadedTable:
        if table is None:
            raise CommitConflictError("Requirement failed: table does not exist", requirement=self.type)
        return table

    def _fail(self, message: str) -> CommitConflictError:
        return CommitConflictError(f"Requirement failed: {message}", requirement=self.type)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> TableRequirement:
        """Deserialize any requirement by its "type" tag.

        Raises:
            InvalidFormatError: If the type is unknown or a key is missing
        """
        cls = _REQUIREMENTS.get(data.get("type", ""))
        if cls is None:
            raise InvalidFormatError(f"Unknown requirement type {data.get('type')!r}")
        parse: Callable[[Dict[str, Any]], TableRequirement] = cls._from_dict  # type: ignore[attr-defined]
        try:
            return parse(data)
        except KeyError as e:
            raise InvalidFormatError(f"Requirement {cls.type} is missing key {e}") from e


@_register
@dataclass(frozen=True)
class AssertCreate(TableRequirement):
    """The table must not exist yet."""

    type: ClassVar[str] = "assert-create"

    def validate(self, table: Optional[LoadedTable]) -> None:
        if table is not None:
            raise self._fail(f"table {table.identifier} already exists")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type}

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> AssertCreate:
        return cls()


@_register
@dataclass(frozen=True)
class AssertTableUuid(TableRequirement):
    """The table uuid must match (the table was not dropped and recreated)."""

    uuid: str
    type: ClassVar[str] = "assert-table-uuid"

    def validate(self, table: Optional[LoadedTable]) -> None:
        current = self._require_table(table).metadata.table_uuid
        if current != self.uuid:
            raise self._fail(f"table uuid does not match: expected {self.uuid} != {current}")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "uuid": self.uuid}

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> AssertTableUuid:
        return cls(uuid=data["uuid"])


@_register
@dataclass(frozen=True)
class AssertMetadataLocation(TableRequirement):
    """The table's current metadata location must be the one loaded."""

    metadata_location: str
    type: ClassVar[str] = "assert-metadata-location"

    def validate(self, table: Optional[LoadedTable]) -> None:
        current = self._require_table(table).metadata_location
        if current != self.metadata_location:
            raise self._fail(
                f"metadata location has changed: expected {self.metadata_location} != {current}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "metadata-location": self.metadata_location}

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> AssertMetadataLocation:
        return cls(metadata_location=data["metadata-location"])


@_register
@dataclass(frozen=True)
class AssertRefSnapshotId(TableRequirement):
    """A ref must point at the given snapshot; None means the ref must not exist."""

    ref: str
    snapshot_id: Optional[int]
    type: ClassVar[str] = "assert-ref-snapshot-id"

    def validate(self, table: Optional[LoadedTable]) -> None:
        current = self._require_table(table).metadata.ref_snapshot_id(self.ref)
        if self.snapshot_id is None and current is not None:
            raise self._fail(f"ref '{self.ref}' was created concurrently")
        if self.snapshot_id is not None and current is None:
            raise self._fail(f"ref '{self.ref}' is missing, expected {self.snapshot_id}")
        if current != self.snapshot_id:
            raise self._fail(f"ref '{self.ref}' has changed: expected id {self.snapshot_id} != {current}")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "ref": self.ref, "snapshot-id": self.snapshot_id}

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> AssertRefSnapshotId:
        return cls(ref=data["ref"], snapshot_id=data["snapshot-id"])


@_register
@dataclass(frozen=True)
class AssertLastAssignedFieldId(TableRequirement):
    """The table's last assigned column id must match."""

    last_assigned_field_id: int
    type: ClassVar[str] = "assert-last-assigned-field-id"

    def validate(self, table: Optional[LoadedTable]) -> None:
        current = self._require_table(table).metadata.last_column_id
        if current != self.last_assigned_field_id:
            raise self._fail(
                f"last assigned field id has changed: expected {self.last_assigned_field_id} != {current}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "last-assigned-field-id": self.last_assigned_field_id}

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> AssertLastAssignedFieldId:
        return cls(last_assigned_field_id=data["last-assigned-field-id"])


@_register
@dataclass(frozen=True)
class AssertCurrentSchemaId(TableRequirement):
    """The table's current schema id must match."""

    current_schema_id: int
    type: ClassVar[str] = "assert-current-schema-id"

    def validate(self, table: Optional[LoadedTable]) -> None:
        current = self._require_table(table).metadata.current_schema_id
        if current != self.current_schema_id:
            raise self._fail(
                f"current schema id has changed: expected {self.current_schema_id} != {current}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "current-schema-id": self.current_schema_id}

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> AssertCurrentSchemaId:
        return cls(current_schema_id=data["current-schema-id"])
