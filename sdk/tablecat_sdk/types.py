"""
Type system for tablecat schemas.

This module defines the recursive type tree used by table schemas:
- PrimitiveType: Leaf types (boolean, int, decimal(P,S), fixed[L], ...)
- StructField: A named, identified slot within a nested type
- StructType: Ordered sequence of StructFields
- ListType: Repeated element slot
- MapType: Key/value slots

Invariants:
    - Every field-like slot (struct field, list element, map key/value)
      carries a stable integer id
    - Names are labels only; ids are canonical
    - Field ids are unique within one struct level
    - Map keys are always required
    - Types compare structurally (shape, ids, names, requiredness)

How to change safely:
    - Add new primitive kinds at the end of PrimitiveKind
    - Never change the serialized spelling of an existing kind
    - Keep type_from_dict/type_to_dict exact inverses

Example:
    >>> from tablecat_sdk.types import StructType, StructField, LONG, STRING
    >>> StructType((
    ...     StructField(1, "id", LONG, required=True),
    ...     StructField(2, "data", STRING),
    ... ))
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .errors import InvalidFormatError

MAX_FIELD_ID = 2147483647

_DECIMAL_RE = re.compile(r"^decimal\(\s*(\d+)\s*,\s*(\d+)\s*\)$")
_FIXED_RE = re.compile(r"^fixed\[\s*(\d+)\s*\]$")


def require_int(value: Any, what: str) -> int:
    """Return ``value`` if it is an integer; bools are not integers here."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidFormatError(f"{what} must be an integer, got {value!r}")
    return value


def require_int_tuple(value: Any, what: str) -> Tuple[int, ...]:
    """Return ``value`` as a tuple of integers."""
    if isinstance(value, (str, bytes, dict)):
        raise InvalidFormatError(f"{what} must be a list of integers, got {value!r}")
    try:
        items = tuple(value)
    except TypeError as e:
        raise InvalidFormatError(f"{what} must be a list of integers, got {value!r}") from e
    return tuple(require_int(item, what) for item in items)


class PrimitiveKind(Enum):
    """Supported primitive kinds and their serialized spelling."""

    BOOLEAN = "boolean"
    INT = "int"
    LONG = "long"
    FLOAT = "float"
    DOUBLE = "double"
    DECIMAL = "decimal"  # decimal(P,S)
    DATE = "date"
    TIME = "time"
    TIMESTAMP = "timestamp"  # without zone
    TIMESTAMPTZ = "timestamptz"  # with zone
    STRING = "string"
    UUID = "uuid"
    FIXED = "fixed"  # fixed[L]
    BINARY = "binary"


@dataclass(frozen=True)
class PrimitiveType:
    """A leaf type.

    Attributes:
        kind: The primitive kind
        precision: Decimal precision (DECIMAL only)
        scale: Decimal scale (DECIMAL only)
        length: Byte length (FIXED only)
    """

    kind: PrimitiveKind
    precision: Optional[int] = None
    scale: Optional[int] = None
    length: Optional[int] = None

    def __post_init__(self) -> None:
        if self.kind == PrimitiveKind.DECIMAL:
            if self.precision is None or self.scale is None:
                raise InvalidFormatError("decimal requires precision and scale")
            if not 0 < self.precision <= 38:
                raise InvalidFormatError(f"decimal precision must be in 1..38, got {self.precision}")
            if not 0 <= self.scale <= self.precision:
                raise InvalidFormatError(
                    f"decimal scale must be in 0..{self.precision}, got {self.scale}"
                )
        elif self.kind == PrimitiveKind.FIXED:
            if self.length is None or self.length <= 0:
                raise InvalidFormatError(f"fixed requires a positive length, got {self.length}")
        elif (self.precision, self.scale, self.length) != (None, None, None):
            raise InvalidFormatError(f"{self.kind.value} takes no parameters")

    def __str__(self) -> str:
        if self.kind == PrimitiveKind.DECIMAL:
            return f"decimal({self.precision},{self.scale})"
        if self.kind == PrimitiveKind.FIXED:
            return f"fixed[{self.length}]"
        return self.kind.value

    @property
    def is_primitive(self) -> bool:
        return True

    @classmethod
    def from_str(cls, value: str) -> PrimitiveType:
        """Parse the serialized spelling of a primitive type.

        Args:
            value: Serialized type, e.g. "long", "decimal(9,2)", "fixed[16]"

        Returns:
            Corresponding PrimitiveType

        Raises:
            InvalidFormatError: If value is not a known primitive type
        """
        match = _DECIMAL_RE.match(value)
        if match:
            return cls(PrimitiveKind.DECIMAL, precision=int(match.group(1)), scale=int(match.group(2)))
        match = _FIXED_RE.match(value)
        if match:
            return cls(PrimitiveKind.FIXED, length=int(match.group(1)))
        for kind in PrimitiveKind:
            if kind.value == value and kind not in (PrimitiveKind.DECIMAL, PrimitiveKind.FIXED):
                return cls(kind)
        raise InvalidFormatError(f"Unknown primitive type '{value}'")


BOOLEAN = PrimitiveType(PrimitiveKind.BOOLEAN)
INT = PrimitiveType(PrimitiveKind.INT)
LONG = PrimitiveType(PrimitiveKind.LONG)
FLOAT = PrimitiveType(PrimitiveKind.FLOAT)
DOUBLE = PrimitiveType(PrimitiveKind.DOUBLE)
DATE = PrimitiveType(PrimitiveKind.DATE)
TIME = PrimitiveType(PrimitiveKind.TIME)
TIMESTAMP = PrimitiveType(PrimitiveKind.TIMESTAMP)
TIMESTAMPTZ = PrimitiveType(PrimitiveKind.TIMESTAMPTZ)
STRING = PrimitiveType(PrimitiveKind.STRING)
UUID = PrimitiveType(PrimitiveKind.UUID)
BINARY = PrimitiveType(PrimitiveKind.BINARY)


def decimal(precision: int, scale: int) -> PrimitiveType:
    """Create a decimal(P,S) type."""
    return PrimitiveType(PrimitiveKind.DECIMAL, precision=precision, scale=scale)


def fixed(length: int) -> PrimitiveType:
    """Create a fixed[L] type."""
    return PrimitiveType(PrimitiveKind.FIXED, length=length)


@dataclass(frozen=True)
class StructField:
    """A named, identified slot within a struct, list or map.

    Attributes:
        id: Stable numeric identifier (never changes, never reused)
        name: Human-readable name (can change, id is canonical)
        field_type: The type of values stored in this slot
        required: Whether values may be null
        doc: Optional documentation string

    Example:
        >>> StructField(1, "id", UUID, required=True)
    """

    id: int
    name: str
    field_type: Type
    required: bool = False
    doc: Optional[str] = None

    def __post_init__(self) -> None:
        require_int(self.id, "Field id")
        if not 0 <= self.id <= MAX_FIELD_ID:
            raise InvalidFormatError(f"field id must be in 0..{MAX_FIELD_ID}, got {self.id}")
        if not isinstance(self.name, str) or not self.name:
            raise InvalidFormatError(f"Field {self.id} needs a non-empty string name, got {self.name!r}")
        if not isinstance(self.required, bool):
            raise InvalidFormatError(f"Field {self.id} 'required' must be a boolean, got {self.required!r}")
        if self.doc is not None and not isinstance(self.doc, str):
            raise InvalidFormatError(f"Field {self.id} 'doc' must be a string, got {self.doc!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "required": self.required,
            "type": type_to_dict(self.field_type),
        }
        if self.doc is not None:
            result["doc"] = self.doc
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> StructField:
        """Create from dictionary representation.

        Raises:
            InvalidFormatError: If a mandatory key is missing or the type is unknown
        """
        try:
            return cls(
                id=data["id"],
                name=data["name"],
                field_type=type_from_dict(data["type"]),
                required=data["required"],
                doc=data.get("doc"),
            )
        except KeyError as e:
            raise InvalidFormatError(f"Field is missing key {e}") from e
        except TypeError as e:
            raise InvalidFormatError(f"Field must be an object, got {type(data).__name__}") from e


@dataclass(frozen=True)
class StructType:
    """Ordered sequence of struct fields.

    Supports iteration, len() and positional indexing over its fields.
    """

    fields: Tuple[StructField, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))

        field_ids = [f.id for f in self.fields]
        if len(field_ids) != len(set(field_ids)):
            raise InvalidFormatError(f"Duplicate field id in struct: {field_ids}")

        field_names = [f.name for f in self.fields]
        if len(field_names) != len(set(field_names)):
            raise InvalidFormatError(f"Duplicate field name in struct: {field_names}")

    def __iter__(self) -> Iterator[StructField]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    def __getitem__(self, index: int) -> StructField:
        return self.fields[index]

    @property
    def is_primitive(self) -> bool:
        return False

    def field_by_id(self, field_id: int) -> Optional[StructField]:
        """Get a direct child field by id."""
        for f in self.fields:
            if f.id == field_id:
                return f
        return None

    def field_by_name(self, name: str) -> Optional[StructField]:
        """Get a direct child field by name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def field_ids(self) -> List[int]:
        """Ids of the direct child fields, in order."""
        return [f.id for f in self.fields]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "struct",
            "fields": [f.to_dict() for f in self.fields],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> StructType:
        if not isinstance(data, dict):
            raise InvalidFormatError(f"Struct must be an object, got {type(data).__name__}")
        if data.get("type") != "struct":
            raise InvalidFormatError(f"Expected type 'struct', got {data.get('type')!r}")
        fields = data.get("fields")
        if not isinstance(fields, list):
            raise InvalidFormatError("Struct 'fields' must be a list")
        return cls(tuple(StructField.from_dict(f) for f in fields))


@dataclass(frozen=True)
class ListType:
    """A list whose element slot is an identified field named "element"."""

    element: StructField

    @classmethod
    def of(cls, element_id: int, element_type: Type, element_required: bool = True) -> ListType:
        """Create a list type from its element id and type."""
        return cls(StructField(element_id, "element", element_type, required=element_required))

    @property
    def is_primitive(self) -> bool:
        return False

    @property
    def element_id(self) -> int:
        return self.element.id

    @property
    def element_type(self) -> Type:
        return self.element.field_type

    @property
    def element_required(self) -> bool:
        return self.element.required

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "list",
            "element-id": self.element_id,
            "element": type_to_dict(self.element_type),
            "element-required": self.element_required,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ListType:
        try:
            return cls.of(
                data["element-id"],
                type_from_dict(data["element"]),
                element_required=data["element-required"],
            )
        except KeyError as e:
            raise InvalidFormatError(f"List type is missing key {e}") from e


@dataclass(frozen=True)
class MapType:
    """A map whose key and value slots are identified fields."""

    key: StructField
    value: StructField

    def __post_init__(self) -> None:
        if not self.key.required:
            raise InvalidFormatError(f"Map key {self.key.id} must be required")

    @classmethod
    def of(
        cls,
        key_id: int,
        key_type: Type,
        value_id: int,
        value_type: Type,
        value_required: bool = True,
    ) -> MapType:
        """Create a map type from its key/value ids and types."""
        return cls(
            StructField(key_id, "key", key_type, required=True),
            StructField(value_id, "value", value_type, required=value_required),
        )

    @property
    def is_primitive(self) -> bool:
        return False

    @property
    def key_id(self) -> int:
        return self.key.id

    @property
    def value_id(self) -> int:
        return self.value.id

    @property
    def value_required(self) -> bool:
        return self.value.required

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "map",
            "key-id": self.key_id,
            "key": type_to_dict(self.key.field_type),
            "value-id": self.value_id,
            "value": type_to_dict(self.value.field_type),
            "value-required": self.value_required,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MapType:
        try:
            return cls.of(
                data["key-id"],
                type_from_dict(data["key"]),
                data["value-id"],
                type_from_dict(data["value"]),
                value_required=data["value-required"],
            )
        except KeyError as e:
            raise InvalidFormatError(f"Map type is missing key {e}") from e


Type = Union[PrimitiveType, StructType, ListType, MapType]
NestedType = Union[StructType, ListType, MapType]

_NESTED_TYPES = {
    "struct": StructType,
    "list": ListType,
    "map": MapType,
}


def type_from_dict(data: Any) -> Type:
    """Deserialize a type from its JSON representation.

    Primitives are encoded as strings, nested types as objects
    tagged with "type".

    Raises:
        InvalidFormatError: If the type tag is unknown
    """
    if isinstance(data, str):
        return PrimitiveType.from_str(data)
    if isinstance(data, dict):
        nested = _NESTED_TYPES.get(data.get("type"))  # type: ignore[arg-type]
        if nested is None:
            raise InvalidFormatError(f"Unknown nested type {data.get('type')!r}")
        return nested.from_dict(data)
    raise InvalidFormatError(f"Cannot parse type from {type(data).__name__}")


def type_to_dict(field_type: Type) -> Any:
    """Serialize a type to its JSON representation."""
    if isinstance(field_type, PrimitiveType):
        return str(field_type)
    return field_type.to_dict()


def child_fields(field_type: Type) -> Tuple[StructField, ...]:
    """Direct identified slots of a type (empty for primitives)."""
    if isinstance(field_type, StructType):
        return field_type.fields
    if isinstance(field_type, ListType):
        return (field_type.element,)
    if isinstance(field_type, MapType):
        return (field_type.key, field_type.value)
    return ()


def index_by_id(field_type: Type) -> Dict[int, StructField]:
    """Index every nested field of a type by id.

    Example:
        >>> index_by_id(schema.fields)[3].name
        'element'
    """
    index: Dict[int, StructField] = {}
    for f in child_fields(field_type):
        index[f.id] = f
        index.update(index_by_id(f.field_type))
    return index


def highest_field_id(field_type: Type) -> int:
    """Highest field id anywhere in the type tree (0 when there are none)."""
    return max(index_by_id(field_type), default=0)


class StructTypeBuilder:
    """Accumulates struct fields in order.

    Example:
        >>> fields = StructTypeBuilder().with_struct_field(StructField(1, "id", LONG, True))
        >>> schema = Schema.builder().with_fields(fields).build()
    """

    def __init__(self) -> None:
        self._fields: List[StructField] = []

    def with_struct_field(self, field: StructField) -> StructTypeBuilder:
        self._fields.append(field)
        return self

    def build(self) -> StructType:
        """Build the struct.

        Raises:
            InvalidFormatError: If two fields share an id or a name
        """
        return StructType(tuple(self._fields))
