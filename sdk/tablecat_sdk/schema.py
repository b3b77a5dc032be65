"""
Table schemas.

A Schema is an immutable, versioned, ordered collection of identified
fields describing a table's rows at one point in its history:
- Schema: The canonical schema value
- SchemaBuilder: Staged construction of a Schema

Invariants:
    - Schema values are never mutated; every transformation returns a new Schema
    - Field identity is the field id, never the name or position
    - build() never produces a Schema without fields
    - str(schema) and Schema.from_str() are exact inverses

How to change safely:
    - Keep the JSON keys kebab-case ("schema-id", "identifier-field-ids")
    - Unknown keys must keep being ignored on read
    - Identifier field validation belongs to compat, not to the builder

Example:
    >>> schema = (
    ...     Schema.builder()
    ...     .with_schema_id(1)
    ...     .with_identifier_field_ids([1])
    ...     .with_fields(
    ...         StructTypeBuilder()
    ...         .with_struct_field(StructField(1, "id", UUID, required=True))
    ...         .with_struct_field(StructField(2, "data", INT))
    ...     )
    ...     .build()
    ... )
    >>> schema.project({2}).field_ids()
    [2]
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .errors import InvalidFormatError
from .types import (
    StructField,
    StructType,
    StructTypeBuilder,
    highest_field_id,
    index_by_id,
    require_int,
    require_int_tuple,
)

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_ID = 0


@dataclass(frozen=True)
class Schema:
    """Names and types of fields in a table.

    Attributes:
        schema_id: Identifier of this schema within the table's history
        identifier_field_ids: Ids of the fields that identify rows, if any
        fields: The top-level struct
    """

    schema_id: int
    identifier_field_ids: Optional[Tuple[int, ...]]
    fields: StructType

    def __post_init__(self) -> None:
        require_int(self.schema_id, "schema-id")
        if self.identifier_field_ids is not None:
            object.__setattr__(
                self,
                "identifier_field_ids",
                require_int_tuple(self.identifier_field_ids, "identifier-field-ids"),
            )
        if not isinstance(self.fields, StructType):
            raise InvalidFormatError(f"Schema fields must be a struct, got {type(self.fields).__name__}")

    @staticmethod
    def builder() -> SchemaBuilder:
        """Start staged construction of a schema."""
        return SchemaBuilder()

    def field_ids(self) -> List[int]:
        """Ids of the top-level fields, in order."""
        return self.fields.field_ids()

    def find_field(self, name_or_id: Union[str, int]) -> Optional[StructField]:
        """Find a field by top-level name or by id anywhere in the tree."""
        if isinstance(name_or_id, int):
            return index_by_id(self.fields).get(name_or_id)
        return self.fields.field_by_name(name_or_id)

    def highest_field_id(self) -> int:
        return highest_field_id(self.fields)

    def identifier_field_names(self) -> List[str]:
        names = []
        for field_id in self.identifier_field_ids or ():
            f = self.find_field(field_id)
            if f is not None:
                names.append(f.name)
        return names

    def project(self, ids: Iterable[int]) -> Schema:
        """Restrict the schema to a subset of top-level field ids.

        Field order and types are preserved. Identifier field ids are
        filtered to the same subset. Ids not present in the schema are
        ignored.

        Args:
            ids: Field ids to keep

        Returns:
            New Schema with the same schema_id
        """
        keep = set(ids)
        identifier_field_ids = None
        if self.identifier_field_ids is not None:
            identifier_field_ids = tuple(i for i in self.identifier_field_ids if i in keep)
        return Schema(
            schema_id=self.schema_id,
            identifier_field_ids=identifier_field_ids,
            fields=StructType(tuple(f for f in self.fields if f.id in keep)),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the kebab-case JSON object representation."""
        result: Dict[str, Any] = {"schema-id": self.schema_id}
        if self.identifier_field_ids is not None:
            result["identifier-field-ids"] = list(self.identifier_field_ids)
        result.update(self.fields.to_dict())
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Schema:
        """Create from the JSON object representation.

        Raises:
            InvalidFormatError: If the object is not a struct schema
        """
        if not isinstance(data, dict):
            raise InvalidFormatError(f"Schema must be an object, got {type(data).__name__}")
        if "schema-id" not in data:
            raise InvalidFormatError("Schema is missing 'schema-id'")
        return cls(
            schema_id=data["schema-id"],
            identifier_field_ids=data.get("identifier-field-ids"),
            fields=StructType.from_dict(data),
        )

    def __str__(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_str(cls, text: str) -> Schema:
        """Parse a schema from its JSON text.

        Raises:
            InvalidFormatError: If the text is not valid JSON or not a schema
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidFormatError(f"Schema is not valid JSON: {e}") from e
        return cls.from_dict(data)


class SchemaBuilder:
    """Staged construction of a Schema.

    Setters overwrite previously set values. The only implicit default
    is schema_id = 0.
    """

    def __init__(self) -> None:
        self._schema_id: Optional[int] = None
        self._identifier_field_ids: Optional[Tuple[int, ...]] = None
        self._fields: Optional[Union[StructTypeBuilder, StructType]] = None

    def with_schema_id(self, schema_id: int) -> SchemaBuilder:
        self._schema_id = schema_id
        return self

    def with_identifier_field_ids(self, ids: Iterable[int]) -> SchemaBuilder:
        self._identifier_field_ids = require_int_tuple(ids, "identifier-field-ids")
        return self

    def with_fields(self, fields: Union[StructTypeBuilder, StructType]) -> SchemaBuilder:
        self._fields = fields
        return self

    def build(self) -> Schema:
        """Assemble the schema.

        Identifier field ids are not checked against the fields here;
        see compat.validate_identifier_fields.

        Raises:
            InvalidFormatError: If fields were never set
        """
        if self._fields is None:
            raise InvalidFormatError("Schema fields must be set")
        fields = self._fields.build() if isinstance(self._fields, StructTypeBuilder) else self._fields

        schema = Schema(
            schema_id=self._schema_id if self._schema_id is not None else DEFAULT_SCHEMA_ID,
            identifier_field_ids=self._identifier_field_ids,
            fields=fields,
        )
        logger.debug(f"Built schema {schema.schema_id} with {len(fields)} top-level fields")
        return schema
