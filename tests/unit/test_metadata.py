"""
Unit tests for table metadata.

Tests cover:
- Creating first metadata versions
- MetadataBuilder changes and their validation
- JSON representation for format versions 1 and 2
- The metadata log
- Field id reuse and read-only mappings
- Malformed documents
"""

import pytest

from sdk.tablecat_sdk.errors import InvalidFormatError
from sdk.tablecat_sdk.metadata import (
    MAIN_BRANCH,
    MetadataBuilder,
    RefType,
    Snapshot,
    TableMetadata,
    new_table_metadata,
)
from sdk.tablecat_sdk.schema import Schema
from sdk.tablecat_sdk.types import INT, LONG, STRING, UUID, StructField, StructType


def make_schema(schema_id=0, extra=()):
    """Helper to create a schema with an id column plus extras."""
    return Schema(schema_id, (1,), StructType((StructField(1, "id", UUID, True), *extra)))


def make_snapshot(snapshot_id, sequence_number=1, parent=None):
    return Snapshot(
        snapshot_id=snapshot_id,
        timestamp_ms=1_700_000_000_000,
        manifest_list=f"s3://bucket/tbl/metadata/snap-{snapshot_id}.avro",
        summary={"operation": "append"},
        parent_snapshot_id=parent,
        sequence_number=sequence_number,
        schema_id=0,
    )


@pytest.fixture
def base():
    return new_table_metadata(
        make_schema(),
        "s3://bucket/tbl/",
        properties={"owner": "analytics"},
        table_uuid="9c12d441-03fe-4693-9a96-a0705ddf69c1",
    )


class TestNewTableMetadata:
    """Tests for the first metadata version."""

    def test_initial_state(self, base):
        assert base.format_version == 2
        assert base.location == "s3://bucket/tbl"
        assert base.last_column_id == 1
        assert base.current_schema_id == 0
        assert base.schema() == make_schema()
        assert base.current_snapshot() is None
        assert base.metadata_log == ()
        assert base.properties == {"owner": "analytics"}

    def test_unknown_current_schema_rejected(self):
        with pytest.raises(InvalidFormatError):
            TableMetadata(
                format_version=2,
                table_uuid="u",
                location="l",
                last_updated_ms=0,
                last_column_id=1,
                schemas=(make_schema(),),
                current_schema_id=5,
            )

    def test_unsupported_format_version(self):
        with pytest.raises(InvalidFormatError):
            new_table_metadata(make_schema(), "l", format_version=3)


class TestMetadataBuilder:
    """Tests for MetadataBuilder."""

    def test_add_and_set_current_schema(self, base):
        builder = MetadataBuilder(base)
        schema_id = builder.add_schema(make_schema(1, (StructField(2, "n", INT),)), last_column_id=2)
        builder.set_current_schema(-1)

        metadata = builder.build()

        assert schema_id == 1
        assert metadata.current_schema_id == 1
        assert metadata.last_column_id == 2
        assert len(metadata.schemas) == 2

    def test_existing_schema_id_rejected(self, base):
        with pytest.raises(InvalidFormatError):
            MetadataBuilder(base).add_schema(make_schema(0))

    def test_last_column_id_below_schema_rejected(self, base):
        with pytest.raises(InvalidFormatError):
            MetadataBuilder(base).add_schema(make_schema(1, (StructField(5, "n", INT),)), last_column_id=3)

    def test_last_column_id_never_lowered(self, base):
        builder = MetadataBuilder(base)
        builder.add_schema(make_schema(1, (StructField(5, "n", INT),)), last_column_id=5)
        builder.add_schema(make_schema(2), last_column_id=1)

        assert builder.build().last_column_id == 5

    def test_set_last_added_without_add_rejected(self, base):
        with pytest.raises(InvalidFormatError):
            MetadataBuilder(base).set_current_schema(-1)

    def test_set_unknown_schema_rejected(self, base):
        with pytest.raises(InvalidFormatError):
            MetadataBuilder(base).set_current_schema(9)

    def test_snapshot_on_main_sets_current(self, base):
        builder = MetadataBuilder(base)
        builder.add_snapshot(make_snapshot(100))
        builder.set_ref(MAIN_BRANCH, 100)

        metadata = builder.build()

        assert metadata.current_snapshot_id == 100
        assert metadata.current_snapshot().manifest_list.endswith("snap-100.avro")
        assert metadata.ref_snapshot_id(MAIN_BRANCH) == 100
        assert metadata.last_sequence_number == 1
        assert metadata.next_sequence_number() == 2

    def test_tag_does_not_move_main(self, base):
        builder = MetadataBuilder(base)
        builder.add_snapshot(make_snapshot(100))
        builder.set_ref("v1", 100, RefType.TAG)

        metadata = builder.build()

        assert metadata.current_snapshot_id is None
        assert metadata.refs["v1"].ref_type == RefType.TAG

    def test_main_must_be_branch(self, base):
        builder = MetadataBuilder(base)
        builder.add_snapshot(make_snapshot(100))

        with pytest.raises(InvalidFormatError):
            builder.set_ref(MAIN_BRANCH, 100, RefType.TAG)

    def test_ref_to_unknown_snapshot_rejected(self, base):
        with pytest.raises(InvalidFormatError):
            MetadataBuilder(base).set_ref(MAIN_BRANCH, 100)

    def test_duplicate_snapshot_rejected(self, base):
        builder = MetadataBuilder(base)
        builder.add_snapshot(make_snapshot(100))

        with pytest.raises(InvalidFormatError):
            builder.add_snapshot(make_snapshot(100, sequence_number=2))

    def test_stale_sequence_number_rejected(self, base):
        builder = MetadataBuilder(base)
        builder.add_snapshot(make_snapshot(100, sequence_number=1))

        with pytest.raises(InvalidFormatError):
            builder.add_snapshot(make_snapshot(101, sequence_number=1))

    def test_properties(self, base):
        builder = MetadataBuilder(base)
        builder.set_properties({"retention": "7d"})
        builder.remove_properties(["owner", "missing"])

        assert builder.build().properties == {"retention": "7d"}

    def test_format_upgrade_and_downgrade(self):
        v1 = new_table_metadata(make_schema(), "l", format_version=1)
        builder = MetadataBuilder(v1)
        builder.upgrade_format_version(2)
        upgraded = builder.build()

        assert upgraded.format_version == 2
        with pytest.raises(InvalidFormatError):
            MetadataBuilder(upgraded).upgrade_format_version(1)

    def test_assign_different_uuid_rejected(self, base):
        MetadataBuilder(base).assign_uuid(base.table_uuid)

        with pytest.raises(InvalidFormatError):
            MetadataBuilder(base).assign_uuid("other")

    def test_build_appends_metadata_log(self, base):
        metadata = MetadataBuilder(base).build("s3://bucket/tbl/metadata/00000-a.metadata.json")

        assert len(metadata.metadata_log) == 1
        assert metadata.metadata_log[0].metadata_file.endswith("00000-a.metadata.json")
        assert metadata.metadata_log[0].timestamp_ms == base.last_updated_ms
        assert metadata.last_updated_ms >= base.last_updated_ms

    def test_build_leaves_base_untouched(self, base):
        builder = MetadataBuilder(base)
        builder.set_location("s3://other/")
        builder.set_properties({"a": "b"})

        metadata = builder.build()

        assert metadata.location == "s3://other"
        assert base.location == "s3://bucket/tbl"
        assert "a" not in base.properties

    def test_reused_field_id_rejected(self, base):
        builder = MetadataBuilder(base)
        builder.add_schema(make_schema(1, (StructField(2, "n", INT),)), last_column_id=2)
        builder.add_schema(make_schema(2), last_column_id=2)

        with pytest.raises(InvalidFormatError):
            builder.add_schema(make_schema(3, (StructField(2, "other", STRING),)))

    def test_unknown_assigned_field_id_rejected(self, base):
        builder = MetadataBuilder(base)
        builder.add_schema(make_schema(1), last_column_id=4)

        with pytest.raises(InvalidFormatError):
            builder.add_schema(make_schema(2, (StructField(3, "n", INT),)))

    def test_existing_field_id_may_be_promoted(self, base):
        builder = MetadataBuilder(base)
        builder.add_schema(make_schema(1, (StructField(2, "n", INT),)), last_column_id=2)
        builder.add_schema(make_schema(2, (StructField(2, "n", LONG),)))

        assert builder.build().last_column_id == 2

    def test_built_metadata_is_read_only(self, base):
        builder = MetadataBuilder(base)
        builder.add_snapshot(make_snapshot(100))
        builder.set_ref(MAIN_BRANCH, 100)
        metadata = builder.build()

        with pytest.raises(TypeError):
            metadata.properties["hacked"] = "yes"
        with pytest.raises(TypeError):
            metadata.refs["hacked"] = metadata.refs[MAIN_BRANCH]
        with pytest.raises(TypeError):
            metadata.current_snapshot().summary["operation"] = "delete"

        assert metadata.properties == {"owner": "analytics"}
        assert list(metadata.refs) == [MAIN_BRANCH]

    def test_caller_dict_is_copied(self):
        properties = {"owner": "analytics"}
        metadata = new_table_metadata(make_schema(), "l", properties=properties)
        properties["owner"] = "someone-else"

        assert metadata.properties == {"owner": "analytics"}


class TestMetadataJson:
    """Tests for metadata serialization."""

    def test_round_trip(self, base):
        builder = MetadataBuilder(base)
        builder.add_snapshot(make_snapshot(100))
        builder.set_ref(MAIN_BRANCH, 100)
        metadata = builder.build("s3://bucket/tbl/metadata/00000-a.metadata.json")

        assert TableMetadata.from_json(metadata.to_json()) == metadata

    def test_keys_are_kebab_case(self, base):
        data = base.to_dict()

        assert data["table-uuid"] == base.table_uuid
        assert data["current-schema-id"] == 0
        assert data["last-sequence-number"] == 0
        assert "schema" not in data

    def test_v1_document_with_single_schema(self):
        """Version 1 documents may carry one schema without a schema-id."""
        data = {
            "format-version": 1,
            "table-uuid": "u",
            "location": "s3://bucket/tbl",
            "last-updated-ms": 1,
            "last-column-id": 1,
            "schema": {
                "type": "struct",
                "fields": [{"id": 1, "name": "id", "required": True, "type": "long"}],
            },
        }

        metadata = TableMetadata.from_dict(data)

        assert metadata.current_schema_id == 0
        assert metadata.schema().fields[0].field_type == LONG
        assert metadata.to_dict()["schema"]["schema-id"] == 0

    def test_missing_key_rejected(self, base):
        data = base.to_dict()
        del data["table-uuid"]

        with pytest.raises(InvalidFormatError):
            TableMetadata.from_dict(data)

    def test_snapshot_requires_valid_operation(self):
        with pytest.raises(InvalidFormatError):
            Snapshot(1, 0, "m", {"operation": "truncate"})

    def test_empty_schemas_rejected(self, base):
        data = base.to_dict()
        data["schemas"] = []
        del data["current-schema-id"]

        with pytest.raises(InvalidFormatError):
            TableMetadata.from_dict(data)

    def test_non_object_rejected(self):
        with pytest.raises(InvalidFormatError):
            TableMetadata.from_json("[1, 2]")
