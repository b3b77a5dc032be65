"""
Unit tests for the schema model.

Tests cover:
- JSON deserialization of a concrete schema
- Rejection of mistyped JSON values
- Text round trips
- SchemaBuilder staged construction
- Projection by field id
"""

import json

import pytest

from sdk.tablecat_sdk.errors import InvalidFormatError
from sdk.tablecat_sdk.schema import Schema
from sdk.tablecat_sdk.types import (
    INT,
    LONG,
    STRING,
    UUID,
    ListType,
    PrimitiveKind,
    StructField,
    StructType,
    StructTypeBuilder,
)

EXAMPLE_JSON = (
    '{"type":"struct","schema-id":1,"fields":['
    '{"id":1,"name":"id","required":true,"type":"uuid"},'
    '{"id":2,"name":"data","required":false,"type":"int"}]}'
)


def make_schema(identifier_field_ids=(1,)):
    """Helper to build the id/data example schema."""
    return (
        Schema.builder()
        .with_schema_id(1)
        .with_identifier_field_ids(identifier_field_ids)
        .with_fields(
            StructTypeBuilder()
            .with_struct_field(StructField(1, "id", UUID, required=True))
            .with_struct_field(StructField(2, "data", INT))
        )
        .build()
    )


class TestSchemaJson:
    """Tests for schema serialization."""

    def test_deserialize_example(self):
        """The example document yields two typed, identified fields."""
        schema = Schema.from_str(EXAMPLE_JSON)

        assert schema.schema_id == 1
        assert schema.identifier_field_ids is None

        id_field, data_field = schema.fields
        assert id_field.id == 1
        assert id_field.name == "id"
        assert id_field.field_type.kind == PrimitiveKind.UUID
        assert id_field.required is True
        assert data_field.id == 2
        assert data_field.field_type.kind == PrimitiveKind.INT
        assert data_field.required is False

    def test_text_round_trip(self):
        """Parsing the rendered text of a schema gives it back."""
        schema = make_schema()

        assert Schema.from_str(str(schema)) == schema

    def test_round_trip_nested(self):
        schema = Schema(
            schema_id=3,
            identifier_field_ids=None,
            fields=StructType((
                StructField(1, "id", LONG, True, doc="row id"),
                StructField(2, "points", ListType.of(3, StructType((
                    StructField(4, "x", INT, True),
                )))),
            )),
        )

        assert Schema.from_dict(json.loads(str(schema))) == schema

    def test_keys_are_kebab_case(self):
        data = make_schema().to_dict()

        assert data["schema-id"] == 1
        assert data["identifier-field-ids"] == [1]
        assert data["type"] == "struct"

    def test_unknown_keys_ignored(self):
        data = json.loads(EXAMPLE_JSON)
        data["comment"] = "extra"

        assert Schema.from_dict(data) == Schema.from_str(EXAMPLE_JSON)

    def test_missing_schema_id_rejected(self):
        with pytest.raises(InvalidFormatError):
            Schema.from_dict({"type": "struct", "fields": []})

    def test_invalid_json_rejected(self):
        with pytest.raises(InvalidFormatError):
            Schema.from_str("{not json")

    def test_scalar_identifier_field_ids_rejected(self):
        data = json.loads(EXAMPLE_JSON)
        data["identifier-field-ids"] = 5

        with pytest.raises(InvalidFormatError):
            Schema.from_dict(data)

    @pytest.mark.parametrize("ids", [["1"], [True], [1.5], "1"])
    def test_non_integer_identifier_field_ids_rejected(self, ids):
        data = json.loads(EXAMPLE_JSON)
        data["identifier-field-ids"] = ids

        with pytest.raises(InvalidFormatError):
            Schema.from_dict(data)

    @pytest.mark.parametrize("schema_id", ["one", None, 1.0, True])
    def test_non_integer_schema_id_rejected(self, schema_id):
        data = json.loads(EXAMPLE_JSON)
        data["schema-id"] = schema_id

        with pytest.raises(InvalidFormatError):
            Schema.from_dict(data)

    @pytest.mark.parametrize(
        "key,value",
        [("required", "yes"), ("required", 1), ("id", "1"), ("name", 3), ("doc", 7)],
    )
    def test_mistyped_field_value_rejected(self, key, value):
        data = json.loads(EXAMPLE_JSON)
        data["fields"][1][key] = value

        with pytest.raises(InvalidFormatError):
            Schema.from_dict(data)

    def test_non_object_field_rejected(self):
        data = json.loads(EXAMPLE_JSON)
        data["fields"].append([3, "extra"])

        with pytest.raises(InvalidFormatError):
            Schema.from_dict(data)


class TestSchemaBuilder:
    """Tests for SchemaBuilder."""

    def test_build_without_fields_fails(self):
        """build() fails when fields were never set, whatever else was set."""
        builder = Schema.builder().with_schema_id(7).with_identifier_field_ids([1])

        with pytest.raises(InvalidFormatError):
            builder.build()

    def test_default_schema_id(self):
        schema = Schema.builder().with_fields(StructType()).build()

        assert schema.schema_id == 0
        assert schema.identifier_field_ids is None

    def test_setters_overwrite(self):
        schema = (
            Schema.builder()
            .with_schema_id(1)
            .with_schema_id(2)
            .with_fields(StructType((StructField(1, "a", STRING),)))
            .build()
        )

        assert schema.schema_id == 2

    def test_identifier_ids_not_checked_at_build(self):
        """Unknown identifier ids are accepted by the builder."""
        schema = make_schema(identifier_field_ids=(99,))

        assert schema.identifier_field_ids == (99,)


class TestProjection:
    """Tests for Schema.project()."""

    def test_project_single_field(self):
        """Projecting {2} keeps only 'data' and empties the identifier ids."""
        projected = make_schema().project({2})

        assert projected.field_ids() == [2]
        assert projected.fields[0].name == "data"
        assert projected.identifier_field_ids == ()
        assert projected.schema_id == 1

    def test_project_all_is_identity(self):
        schema = make_schema()

        assert schema.project(schema.field_ids()) == schema

    def test_project_empty(self):
        assert len(make_schema().project(set()).fields) == 0

    def test_project_keeps_schema_order(self):
        schema = Schema(0, None, StructType((
            StructField(1, "a", INT),
            StructField(2, "b", INT),
            StructField(3, "c", INT),
        )))

        assert schema.project([3, 1, 42]).field_ids() == [1, 3]

    def test_project_without_identifiers_stays_none(self):
        assert make_schema(identifier_field_ids=()).project({1}).identifier_field_ids == ()
        schema = Schema(0, None, StructType((StructField(1, "a", INT),)))
        assert schema.project({1}).identifier_field_ids is None


class TestFieldLookup:
    """Tests for field lookup helpers."""

    def test_find_field_by_name_and_id(self):
        schema = make_schema()

        assert schema.find_field("data").id == 2
        assert schema.find_field(1).name == "id"
        assert schema.find_field("missing") is None

    def test_identifier_field_names(self):
        assert make_schema().identifier_field_names() == ["id"]
