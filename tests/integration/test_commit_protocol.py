"""
Integration tests for the commit protocol against the in-memory catalog.

Tests cover:
- Creating and loading tables through CatalogClient
- Schema evolution, snapshots and properties in one transaction
- Optimistic concurrency: one winner, conflict results, reload and retry
"""

import asyncio

import pytest

from dbaas.tablecat_server.catalog.memory import InMemoryCatalog
from sdk.tablecat_sdk.client import CatalogClient, CommitResult
from sdk.tablecat_sdk.config import ClientSettings
from sdk.tablecat_sdk.errors import AlreadyExistsError, InvalidFormatError, NotFoundError, TableCatError
from sdk.tablecat_sdk.metadata import MAIN_BRANCH
from sdk.tablecat_sdk.requirements import (
    AssertCurrentSchemaId,
    AssertLastAssignedFieldId,
    AssertRefSnapshotId,
    AssertTableUuid,
)
from sdk.tablecat_sdk.schema import Schema
from sdk.tablecat_sdk.types import LONG, STRING, TIMESTAMPTZ, StructField, StructType

SCHEMA = Schema(0, (1,), StructType((
    StructField(1, "id", LONG, True),
    StructField(2, "data", STRING),
)))


@pytest.fixture
async def client():
    """Create a client over an in-memory catalog with the 'db' namespace."""
    catalog = InMemoryCatalog(warehouse="memory://wh")
    client = CatalogClient(catalog, settings=ClientSettings(warehouse=None))
    await client.create_namespace("db")
    return client


class TestTables:
    """Tests for creating and loading tables."""

    @pytest.mark.asyncio
    async def test_create_and_load(self, client):
        created = await client.create_table("db.events", SCHEMA, properties={"owner": "analytics"})
        loaded = await client.load_table("db.events")

        assert loaded.metadata_location == created.metadata_location
        assert loaded.metadata.schema() == SCHEMA
        assert loaded.metadata.properties == {"owner": "analytics"}
        assert [str(i) for i in await client.list_tables("db")] == ["db.events"]

    @pytest.mark.asyncio
    async def test_location_from_client_warehouse(self):
        client = CatalogClient(InMemoryCatalog(), settings=ClientSettings(warehouse="s3://lake/"))
        await client.create_namespace("db")

        table = await client.create_table("db.events", SCHEMA)

        assert table.metadata.location == "s3://lake/db/events"

    @pytest.mark.asyncio
    async def test_fresh_ids(self, client):
        schema = Schema(0, None, StructType((StructField(7, "id", LONG, True),)))

        table = await client.create_table("db.events", schema, assign_fresh_ids=True)

        assert table.metadata.schema().field_ids() == [1]

    @pytest.mark.asyncio
    async def test_duplicate_table(self, client):
        await client.create_table("db.events", SCHEMA)

        with pytest.raises(AlreadyExistsError):
            await client.create_table("db.events", SCHEMA)

    @pytest.mark.asyncio
    async def test_load_missing(self, client):
        with pytest.raises(NotFoundError):
            await client.load_table("db.missing")


class TestTransaction:
    """Tests for building and committing transactions."""

    @pytest.mark.asyncio
    async def test_schema_evolution(self, client):
        table = await client.create_table("db.events", SCHEMA)

        txn = client.transaction(table)
        new_schema = txn.update_schema().add_column("ts", TIMESTAMPTZ).commit()
        result = await txn.commit()

        assert result.success
        metadata = result.table.metadata
        assert metadata.current_schema_id == new_schema.schema_id == 1
        assert metadata.schema().find_field(3).name == "ts"
        assert metadata.last_column_id == 3
        assert len(metadata.schemas) == 2

    @pytest.mark.asyncio
    async def test_schema_requirements(self, client):
        table = await client.create_table("db.events", SCHEMA)

        txn = client.transaction(table)
        txn.update_schema().add_column("ts", TIMESTAMPTZ).commit()

        assert txn.requirements == (
            AssertTableUuid(table.metadata.table_uuid),
            AssertCurrentSchemaId(0),
            AssertLastAssignedFieldId(2),
        )

    @pytest.mark.asyncio
    async def test_two_schema_changes_in_one_transaction(self, client):
        table = await client.create_table("db.events", SCHEMA)

        txn = client.transaction(table)
        txn.update_schema().add_column("ts", TIMESTAMPTZ).commit()
        txn.update_schema().rename_column("data", "payload").commit()
        result = await txn.commit()

        metadata = result.table.metadata
        assert metadata.current_schema_id == 2
        assert [f.name for f in metadata.schema().fields] == ["id", "payload", "ts"]
        assert metadata.last_column_id == 3

    @pytest.mark.asyncio
    async def test_snapshot_and_properties(self, client):
        table = await client.create_table("db.events", SCHEMA)

        txn = client.transaction(table)
        snapshot = txn.new_snapshot("memory://wh/db/events/metadata/snap-1.avro", summary={"added-files": "2"})
        txn.add_snapshot(snapshot).set_properties(owner="analytics")
        result = await txn.commit()

        assert AssertRefSnapshotId(MAIN_BRANCH, None) in txn.requirements
        metadata = result.table.metadata
        assert metadata.current_snapshot_id == snapshot.snapshot_id
        assert metadata.current_snapshot().summary == {"added-files": "2", "operation": "append"}
        assert metadata.last_sequence_number == 1
        assert metadata.properties == {"owner": "analytics"}

    @pytest.mark.asyncio
    async def test_second_snapshot_chains_to_first(self, client):
        table = await client.create_table("db.events", SCHEMA)
        txn = client.transaction(table)
        first = txn.new_snapshot("m1")
        table = (await txn.add_snapshot(first).commit()).table

        txn = client.transaction(table)
        second = txn.new_snapshot("m2", operation="overwrite")
        result = await txn.add_snapshot(second).commit()

        assert second.parent_snapshot_id == first.snapshot_id
        assert second.sequence_number == 2
        assert result.table.metadata.current_snapshot_id == second.snapshot_id

    @pytest.mark.asyncio
    async def test_empty_commit(self, client):
        table = await client.create_table("db.events", SCHEMA)

        result = await client.transaction(table).commit()

        assert result.success
        assert result.metadata_location == table.metadata_location

    @pytest.mark.asyncio
    async def test_commit_twice_rejected(self, client):
        table = await client.create_table("db.events", SCHEMA)
        txn = client.transaction(table).set_properties(owner="a")
        await txn.commit()

        with pytest.raises(TableCatError):
            await txn.commit()
        with pytest.raises(TableCatError):
            txn.set_properties(owner="b")

    @pytest.mark.asyncio
    async def test_requirements_frozen_after_commit(self, client):
        table = await client.create_table("db.events", SCHEMA)
        txn = client.transaction(table).set_properties(owner="a")
        await txn.commit()
        requirements = txn.requirements

        with pytest.raises(TableCatError):
            txn.require(AssertCurrentSchemaId(0))
        with pytest.raises(TableCatError):
            txn.update_schema().add_column("ts", TIMESTAMPTZ).commit()

        assert txn.requirements == requirements

    @pytest.mark.asyncio
    async def test_reused_field_id_rejected(self, client):
        table = await client.create_table("db.events", SCHEMA)
        txn = client.transaction(table)
        txn.update_schema().delete_column("data").commit()
        table = (await txn.commit()).table

        txn = client.transaction(table)
        reused = Schema(2, None, StructType((
            StructField(1, "id", LONG, True),
            StructField(2, "other", LONG),
        )))
        txn.add_schema(reused, set_current=True)

        with pytest.raises(InvalidFormatError):
            await txn.commit()

        current = await client.load_table("db.events")
        assert current.metadata_location == table.metadata_location
        assert [f.name for f in current.metadata.schema().fields] == ["id"]

    @pytest.mark.asyncio
    async def test_loaded_properties_read_only(self, client):
        table = await client.create_table("db.events", SCHEMA, properties={"owner": "a"})

        with pytest.raises(TypeError):
            table.metadata.properties["hacked"] = "yes"

        loaded = await client.load_table("db.events")
        assert loaded.metadata.properties == {"owner": "a"}

    @pytest.mark.asyncio
    async def test_remove_properties_and_location(self, client):
        table = await client.create_table("db.events", SCHEMA, properties={"owner": "a", "tmp": "1"})

        result = await client.transaction(table).remove_properties("tmp").set_location("s3://moved").commit()

        assert result.table.metadata.properties == {"owner": "a"}
        assert result.table.metadata.location == "s3://moved"


class TestConcurrency:
    """Tests for concurrent commits on the same table."""

    @pytest.mark.asyncio
    async def test_stale_schema_change_conflicts(self, client):
        table = await client.create_table("db.events", SCHEMA)
        first = client.transaction(table)
        first.update_schema().add_column("a", STRING).commit()
        second = client.transaction(table)
        second.update_schema().add_column("b", STRING).commit()

        assert (await first.commit()).success
        result = await second.commit()

        assert isinstance(result, CommitResult)
        assert not result.success
        assert result.conflict
        assert result.failed_requirement == "assert-current-schema-id"
        assert result.table is None

    @pytest.mark.asyncio
    async def test_conflict_leaves_winner_state(self, client):
        table = await client.create_table("db.events", SCHEMA)
        winner = client.transaction(table)
        winner.add_snapshot(winner.new_snapshot("m1"))
        loser = client.transaction(table)
        loser.add_snapshot(loser.new_snapshot("m2"))

        won = await winner.commit()
        lost = await loser.commit()

        assert lost.conflict
        assert lost.failed_requirement == "assert-ref-snapshot-id"
        current = await client.load_table("db.events")
        assert current.metadata_location == won.metadata_location
        assert len(current.metadata.snapshots) == 1

    @pytest.mark.asyncio
    async def test_exactly_one_concurrent_commit_wins(self, client):
        table = await client.create_table("db.events", SCHEMA)
        transactions = []
        for name in ("a", "b", "c", "d"):
            txn = client.transaction(table)
            txn.update_schema().add_column(name, STRING).commit()
            transactions.append(txn)

        results = await asyncio.gather(*(txn.commit() for txn in transactions))

        assert sum(r.success for r in results) == 1
        assert sum(r.conflict for r in results) == 3
        current = await client.load_table("db.events")
        assert current.metadata.current_schema_id == 1
        assert len(current.metadata.metadata_log) == 1

    @pytest.mark.asyncio
    async def test_reload_and_retry(self, client):
        table = await client.create_table("db.events", SCHEMA)
        first = client.transaction(table)
        first.update_schema().add_column("a", STRING).commit()
        second = client.transaction(table)
        second.update_schema().add_column("b", STRING).commit()
        await first.commit()
        assert (await second.commit()).conflict

        retry = client.transaction(await client.load_table("db.events"))
        retry.update_schema().add_column("b", STRING).commit()
        result = await retry.commit()

        assert result.success
        metadata = result.table.metadata
        assert [f.name for f in metadata.schema().fields] == ["id", "data", "a", "b"]
        assert metadata.schema().find_field(4).name == "b"
        assert metadata.last_column_id == 4
