"""
Schema evolution builder.

SchemaUpdate collects column changes against a table's current schema
and produces the next schema version:
- add_column: New optional column with freshly assigned ids
- rename_column: Change a name, keep the id
- update_column: Promote a primitive type
- make_column_optional: Relax a required column
- delete_column: Drop a column (its id is retired, never reused)
- set_identifier_fields: Replace the row key

Invariants:
    - New ids always start above the table's last column id
    - Existing ids are never changed
    - apply() validates identifier fields and rejects breaking changes

Example:
    >>> update = SchemaUpdate(schema, last_column_id=2)
    >>> update.add_column("ts", TIMESTAMPTZ).rename_column("data", "payload")
    >>> new_schema, last_column_id = update.apply()
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import replace
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Set, Tuple

from .compat import (
    CompatibilityError,
    check_compatibility,
    is_promotion,
    validate_identifier_fields,
)
from .errors import InvalidFormatError
from .schema import Schema
from .types import (
    ListType,
    MapType,
    PrimitiveType,
    StructField,
    StructType,
    Type,
    child_fields,
)

if TYPE_CHECKING:
    from .client import Transaction

logger = logging.getLogger(__name__)


def assign_fresh_schema_ids(schema: Schema) -> Schema:
    """Renumber every field of a schema from 1, one struct level at a time.

    Used when creating a table from a schema whose ids were chosen by
    the caller. Identifier field ids follow their fields.
    """
    update = SchemaUpdate(Schema(schema.schema_id, None, StructType()), last_column_id=0)
    fields = update._assign_fresh_ids(schema.fields)
    assert isinstance(fields, StructType)

    old_index = {f.id: f.name for f in schema.fields}
    identifier_field_ids = None
    if schema.identifier_field_ids is not None:
        identifier_field_ids = tuple(
            new.id
            for field_id in schema.identifier_field_ids
            for new in fields
            if new.name == old_index.get(field_id)
        )
    return Schema(schema.schema_id, identifier_field_ids, fields)


class SchemaUpdate:
    """Builder for the next version of a table schema.

    Column names may be dotted paths into nested structs
    (e.g. "location.lat", "points.element.x").
    """

    def __init__(
        self,
        schema: Schema,
        last_column_id: int,
        schema_ids: Iterable[int] = (),
        transaction: Optional[Transaction] = None,
    ) -> None:
        """Initialize an update.

        Args:
            schema: The current schema
            last_column_id: Highest field id ever assigned in the table
            schema_ids: Ids of all schemas known to the table
            transaction: Transaction receiving the result on commit()
        """
        self._schema = schema
        self._base_last_column_id = last_column_id
        self._last_column_id = last_column_id
        self._next_schema_id = max([schema.schema_id, *schema_ids]) + 1
        self._transaction = transaction

        self._adds: Dict[Optional[int], List[StructField]] = defaultdict(list)
        self._renames: Dict[int, str] = {}
        self._type_updates: Dict[int, PrimitiveType] = {}
        self._optional: Set[int] = set()
        self._deletes: Set[int] = set()
        self._identifier_names: Optional[Tuple[str, ...]] = None

    def _find(self, name: str) -> StructField:
        current: Type = self._schema.fields
        found: Optional[StructField] = None
        for part in name.split("."):
            found = next((f for f in child_fields(current) if f.name == part), None)
            if found is None:
                raise InvalidFormatError(f"Cannot find column '{name}'", path=name)
            current = found.field_type
        assert found is not None
        if found.id in self._deletes:
            raise InvalidFormatError(f"Column '{name}' is already deleted", path=name)
        return found

    def _next_id(self) -> int:
        self._last_column_id += 1
        return self._last_column_id

    def _assign_fresh_ids(self, field_type: Type) -> Type:
        if isinstance(field_type, StructType):
            ids = [self._next_id() for _ in field_type.fields]
            return StructType(tuple(
                replace(f, id=new_id, field_type=self._assign_fresh_ids(f.field_type))
                for f, new_id in zip(field_type.fields, ids)
            ))
        if isinstance(field_type, ListType):
            element_id = self._next_id()
            return ListType.of(
                element_id,
                self._assign_fresh_ids(field_type.element_type),
                field_type.element_required,
            )
        if isinstance(field_type, MapType):
            key_id = self._next_id()
            value_id = self._next_id()
            return MapType.of(
                key_id,
                self._assign_fresh_ids(field_type.key.field_type),
                value_id,
                self._assign_fresh_ids(field_type.value.field_type),
                field_type.value_required,
            )
        return field_type

    def add_column(
        self,
        name: str,
        field_type: Type,
        required: bool = False,
        doc: Optional[str] = None,
        parent: Optional[str] = None,
    ) -> SchemaUpdate:
        """Add an optional column.

        Ids inside ``field_type`` are placeholders; fresh ids are assigned.

        Raises:
            InvalidFormatError: If the column is required, the name is taken
                or the parent is not a struct
        """
        if required:
            raise InvalidFormatError(f"Cannot add required column '{name}'", path=name)
        if "." in name:
            raise InvalidFormatError(f"Column name '{name}' cannot contain '.'", path=name)

        parent_id: Optional[int] = None
        siblings: Tuple[StructField, ...] = self._schema.fields.fields
        if parent is not None:
            parent_field = self._find(parent)
            if not isinstance(parent_field.field_type, StructType):
                raise InvalidFormatError(f"Parent '{parent}' is not a struct", path=parent)
            parent_id = parent_field.id
            siblings = parent_field.field_type.fields

        taken = {f.name for f in siblings if f.id not in self._deletes}
        taken.update(f.name for f in self._adds[parent_id])
        if name in taken:
            raise InvalidFormatError(f"Column '{name}' already exists", path=name)

        field_id = self._next_id()
        new_field = StructField(field_id, name, self._assign_fresh_ids(field_type), False, doc)
        self._adds[parent_id].append(new_field)
        logger.debug(f"Adding column {name} (id={field_id})")
        return self

    def rename_column(self, name: str, new_name: str) -> SchemaUpdate:
        self._renames[self._find(name).id] = new_name
        return self

    def update_column(self, name: str, new_type: PrimitiveType) -> SchemaUpdate:
        """Promote the type of a primitive column.

        Raises:
            InvalidFormatError: If the change is not an allowed promotion
        """
        f = self._find(name)
        if f.field_type == new_type:
            return self
        if not is_promotion(f.field_type, new_type):
            raise InvalidFormatError(
                f"Cannot change column '{name}' from {f.field_type} to {new_type}",
                path=name,
            )
        self._type_updates[f.id] = new_type
        return self

    def make_column_optional(self, name: str) -> SchemaUpdate:
        self._optional.add(self._find(name).id)
        return self

    def delete_column(self, name: str) -> SchemaUpdate:
        f = self._find(name)
        if f.id in self._renames or f.id in self._type_updates:
            raise InvalidFormatError(f"Cannot delete column '{name}' with pending changes", path=name)
        self._deletes.add(f.id)
        return self

    def set_identifier_fields(self, *names: str) -> SchemaUpdate:
        self._identifier_names = names
        return self

    def _rebuild_field(self, f: StructField) -> StructField:
        return StructField(
            id=f.id,
            name=self._renames.get(f.id, f.name),
            field_type=self._rebuild_type(f.field_type, f.id),
            required=f.required and f.id not in self._optional,
            doc=f.doc,
        )

    def _rebuild_type(self, field_type: Type, owner_id: Optional[int]) -> Type:
        if isinstance(field_type, StructType):
            fields = [self._rebuild_field(f) for f in field_type.fields if f.id not in self._deletes]
            fields.extend(self._adds.get(owner_id, ()))
            return StructType(tuple(fields))
        if isinstance(field_type, ListType):
            return ListType(self._rebuild_field(field_type.element))
        if isinstance(field_type, MapType):
            return MapType(self._rebuild_field(field_type.key), self._rebuild_field(field_type.value))
        return self._type_updates.get(owner_id, field_type) if owner_id is not None else field_type

    def apply(self) -> Tuple[Schema, int]:
        """Produce the next schema.

        Returns:
            Tuple of (new_schema, last_column_id)

        Raises:
            InvalidFormatError: If identifier fields are invalid
            CompatibilityError: If the result breaks compatibility
        """
        fields = self._rebuild_type(self._schema.fields, None)
        assert isinstance(fields, StructType)

        if self._identifier_names is not None:
            identifier_field_ids: List[int] = []
            for name in self._identifier_names:
                f = fields.field_by_name(name)
                if f is None:
                    raise InvalidFormatError(f"Identifier field '{name}' does not exist", path=name)
                identifier_field_ids.append(f.id)
            identifiers: Optional[Tuple[int, ...]] = tuple(identifier_field_ids)
        else:
            identifiers = self._schema.identifier_field_ids

        schema = Schema(
            schema_id=self._next_schema_id,
            identifier_field_ids=identifiers,
            fields=fields,
        )

        problems = validate_identifier_fields(schema)
        if problems:
            raise InvalidFormatError("; ".join(problems), path="identifier-field-ids")

        changes = check_compatibility(self._schema, schema, self._base_last_column_id)
        breaking = [c for c in changes if c.is_breaking]
        if breaking:
            raise CompatibilityError(breaking)

        logger.debug(f"Schema {schema.schema_id} derived with {len(changes)} change(s)")
        return schema, self._last_column_id

    def commit(self) -> Schema:
        """Apply and stage the new schema on the owning transaction.

        Raises:
            InvalidFormatError: If this update is not bound to a transaction
        """
        if self._transaction is None:
            raise InvalidFormatError("SchemaUpdate is not bound to a transaction")
        schema, last_column_id = self.apply()
        self._transaction.add_schema(schema, last_column_id=last_column_id, set_current=True)
        return schema
