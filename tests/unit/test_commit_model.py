"""
Unit tests for commit requirements and updates.

Tests cover:
- Requirement validation against loaded table state
- Requirement and update JSON representation
- Ordered, all-or-nothing application of updates
"""

import pytest

from sdk.tablecat_sdk.catalog import LoadedTable, TableIdentifier
from sdk.tablecat_sdk.errors import CommitConflictError, InvalidFormatError
from sdk.tablecat_sdk.metadata import MAIN_BRANCH, RefType, Snapshot, new_table_metadata
from sdk.tablecat_sdk.requirements import (
    AssertCreate,
    AssertCurrentSchemaId,
    AssertLastAssignedFieldId,
    AssertMetadataLocation,
    AssertRefSnapshotId,
    AssertTableUuid,
    TableRequirement,
)
from sdk.tablecat_sdk.schema import Schema
from sdk.tablecat_sdk.types import LONG, STRING, StructField, StructType
from sdk.tablecat_sdk.updates import (
    AddSchema,
    AddSnapshot,
    AssignUuid,
    RemoveProperties,
    SetCurrentSchema,
    SetLocation,
    SetProperties,
    SetSnapshotRef,
    TableUpdate,
    UpgradeFormatVersion,
    apply_updates,
)

SCHEMA = Schema(0, None, StructType((StructField(1, "id", LONG, True),)))
SNAPSHOT = Snapshot(
    snapshot_id=42,
    timestamp_ms=1_700_000_000_000,
    manifest_list="s3://bucket/tbl/metadata/snap-42.avro",
    summary={"operation": "append", "added-files": "3"},
    sequence_number=1,
)


@pytest.fixture
def table():
    metadata = new_table_metadata(SCHEMA, "s3://bucket/tbl", table_uuid="uuid-1")
    return LoadedTable(
        TableIdentifier(("db",), "events"),
        "s3://bucket/tbl/metadata/00000-a.metadata.json",
        metadata,
    )


class TestRequirements:
    """Tests for requirement validation."""

    def test_assert_create(self, table):
        AssertCreate().validate(None)
        with pytest.raises(CommitConflictError) as exc_info:
            AssertCreate().validate(table)
        assert exc_info.value.requirement == "assert-create"

    def test_table_requirements_need_a_table(self):
        with pytest.raises(CommitConflictError):
            AssertTableUuid("uuid-1").validate(None)

    def test_assert_table_uuid(self, table):
        AssertTableUuid("uuid-1").validate(table)
        with pytest.raises(CommitConflictError):
            AssertTableUuid("uuid-2").validate(table)

    def test_assert_metadata_location(self, table):
        AssertMetadataLocation(table.metadata_location).validate(table)
        with pytest.raises(CommitConflictError, match="metadata location"):
            AssertMetadataLocation("s3://elsewhere").validate(table)

    def test_assert_ref_snapshot_id_absent(self, table):
        """None asserts the ref does not exist yet."""
        AssertRefSnapshotId(MAIN_BRANCH, None).validate(table)
        with pytest.raises(CommitConflictError):
            AssertRefSnapshotId(MAIN_BRANCH, 42).validate(table)

    def test_assert_ref_snapshot_id_moved(self, table):
        moved = LoadedTable(
            table.identifier,
            table.metadata_location,
            apply_updates(table.metadata, [AddSnapshot(SNAPSHOT), SetSnapshotRef(MAIN_BRANCH, 42)]),
        )

        AssertRefSnapshotId(MAIN_BRANCH, 42).validate(moved)
        with pytest.raises(CommitConflictError):
            AssertRefSnapshotId(MAIN_BRANCH, None).validate(moved)
        with pytest.raises(CommitConflictError):
            AssertRefSnapshotId(MAIN_BRANCH, 41).validate(moved)

    def test_assert_last_assigned_field_id(self, table):
        AssertLastAssignedFieldId(1).validate(table)
        with pytest.raises(CommitConflictError):
            AssertLastAssignedFieldId(2).validate(table)

    def test_assert_current_schema_id(self, table):
        AssertCurrentSchemaId(0).validate(table)
        with pytest.raises(CommitConflictError) as exc_info:
            AssertCurrentSchemaId(1).validate(table)
        assert exc_info.value.code == "COMMIT_CONFLICT"

    @pytest.mark.parametrize(
        "requirement",
        [
            AssertCreate(),
            AssertTableUuid("uuid-1"),
            AssertMetadataLocation("s3://bucket/tbl/metadata/00000-a.metadata.json"),
            AssertRefSnapshotId(MAIN_BRANCH, None),
            AssertRefSnapshotId("audit", 7),
            AssertLastAssignedFieldId(4),
            AssertCurrentSchemaId(2),
        ],
    )
    def test_json(self, requirement):
        data = requirement.to_dict()

        assert data["type"] == requirement.type
        assert TableRequirement.from_dict(data) == requirement

    def test_unknown_type_rejected(self):
        with pytest.raises(InvalidFormatError):
            TableRequirement.from_dict({"type": "assert-nothing"})

    def test_missing_key_rejected(self):
        with pytest.raises(InvalidFormatError):
            TableRequirement.from_dict({"type": "assert-table-uuid"})


class TestUpdates:
    """Tests for updates."""

    def test_json_keys(self):
        assert SetCurrentSchema(-1).to_dict() == {"action": "set-current-schema", "schema-id": -1}
        assert SetSnapshotRef("main", 42).to_dict() == {
            "action": "set-snapshot-ref",
            "ref-name": "main",
            "snapshot-id": 42,
            "type": "branch",
        }
        assert AddSchema(SCHEMA, 1).to_dict()["last-column-id"] == 1

    @pytest.mark.parametrize(
        "update",
        [
            AssignUuid("uuid-1"),
            UpgradeFormatVersion(2),
            AddSchema(SCHEMA, 3),
            AddSchema(SCHEMA),
            SetCurrentSchema(-1),
            AddSnapshot(SNAPSHOT),
            SetSnapshotRef("v1", 42, RefType.TAG),
            SetProperties({"owner": "analytics"}),
            RemoveProperties(("owner",)),
            SetLocation("s3://bucket/moved"),
        ],
    )
    def test_json(self, update):
        data = update.to_dict()

        assert data["action"] == update.action
        assert TableUpdate.from_dict(data) == update

    def test_unknown_action_rejected(self):
        with pytest.raises(InvalidFormatError):
            TableUpdate.from_dict({"action": "drop-table"})

    def test_apply_in_order(self, table):
        new_schema = Schema(1, None, StructType((
            StructField(1, "id", LONG, True),
            StructField(2, "name", STRING),
        )))

        metadata = apply_updates(
            table.metadata,
            [
                AddSchema(new_schema, 2),
                SetCurrentSchema(-1),
                AddSnapshot(SNAPSHOT),
                SetSnapshotRef(MAIN_BRANCH, 42),
                SetProperties({"owner": "analytics"}),
            ],
            previous_metadata_location=table.metadata_location,
        )

        assert metadata.current_schema_id == 1
        assert metadata.last_column_id == 2
        assert metadata.current_snapshot_id == 42
        assert metadata.properties == {"owner": "analytics"}
        assert metadata.metadata_log[-1].metadata_file == table.metadata_location

    def test_invalid_update_produces_nothing(self, table):
        """A failing update anywhere in the list rejects the whole list."""
        with pytest.raises(InvalidFormatError):
            apply_updates(table.metadata, [SetProperties({"a": "b"}), SetCurrentSchema(7)])

        assert table.metadata.properties == {}
