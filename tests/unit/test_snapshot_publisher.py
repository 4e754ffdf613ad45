"""
Unit tests for the snapshot publisher
"""

import datetime

import pytest
from sqlalchemy import MetaData, select, text

from core.exceptions import PublishError
from ingestion.loaders.snapshot_publisher import PublishState, SnapshotPublisher, TableSnapshot
from models.tables import CASE_DATA, INTERVENTION_DATA, case_data_table, intervention_data_table
from schemas.records import CaseRecord, InterventionRecord

LIVE_TABLES = {CASE_DATA, INTERVENTION_DATA}


def _case_records(*counts, subregion_id="US-NY"):
    return [
        CaseRecord(
            region_id="US",
            subregion_id=subregion_id,
            date=datetime.date(2020, 3, 1) + datetime.timedelta(days=i),
            confirmed=count,
        )
        for i, count in enumerate(counts)
    ]


def _intervention_records(*policies):
    return [
        InterventionRecord(
            region_id="US",
            subregion_id="US-NY",
            policy=policy,
            start_date=datetime.date(2020, 3, 18),
        )
        for policy in policies
    ]


async def _case_rows(engine):
    table = case_data_table(MetaData())
    async with engine.connect() as conn:
        result = await conn.execute(select(table).order_by(table.c.date))
        return [tuple(row) for row in result]


async def _intervention_policies(engine):
    table = intervention_data_table(MetaData())
    async with engine.connect() as conn:
        result = await conn.execute(select(table.c.policy).order_by(table.c.policy))
        return [row[0] for row in result]


class TestSnapshotPublisher:
    """Test the shadow/insert/rename/cleanup protocol"""

    @pytest.mark.asyncio
    async def test_first_publish_creates_live_tables(self, test_engine, table_names):
        """Test publishing into an empty database"""
        publisher = SnapshotPublisher(test_engine)

        result = await publisher.publish(_case_records(10, 12), _intervention_records("SchoolClose"))

        assert result == {CASE_DATA: 2, INTERVENTION_DATA: 1}
        assert await table_names(test_engine) == LIVE_TABLES
        assert await _case_rows(test_engine) == [
            ("US", "US-NY", datetime.date(2020, 3, 1), 10, 0, 0),
            ("US", "US-NY", datetime.date(2020, 3, 2), 12, 0, 0),
        ]
        assert await _intervention_policies(test_engine) == ["SchoolClose"]

    @pytest.mark.asyncio
    async def test_publish_twice_is_idempotent(self, test_engine, table_names):
        """Test republishing the same set leaves exactly that set"""
        publisher = SnapshotPublisher(test_engine)
        cases = _case_records(10, 12, 15)
        interventions = _intervention_records("SchoolClose", "StayAtHome")

        await publisher.publish(cases, interventions)
        first = await _case_rows(test_engine)
        await publisher.publish(cases, interventions)

        assert await _case_rows(test_engine) == first
        assert len(first) == 3
        assert await _intervention_policies(test_engine) == ["SchoolClose", "StayAtHome"]
        assert await table_names(test_engine) == LIVE_TABLES

    @pytest.mark.asyncio
    async def test_publish_replaces_previous_snapshot(self, test_engine):
        """Test the new snapshot fully replaces the old one"""
        publisher = SnapshotPublisher(test_engine)

        await publisher.publish(_case_records(1, 2, 3), _intervention_records("SchoolClose"))
        await publisher.publish(_case_records(7), _intervention_records("MaskMandate"))

        assert await _case_rows(test_engine) == [("US", "US-NY", datetime.date(2020, 3, 1), 7, 0, 0)]
        assert await _intervention_policies(test_engine) == ["MaskMandate"]

    @pytest.mark.asyncio
    async def test_empty_record_sets_are_published(self, test_engine, table_names):
        """Test empty input publishes empty tables without error"""
        publisher = SnapshotPublisher(test_engine)
        await publisher.publish(_case_records(1), _intervention_records("SchoolClose"))

        result = await publisher.publish([], [])

        assert result == {CASE_DATA: 0, INTERVENTION_DATA: 0}
        assert await _case_rows(test_engine) == []
        assert await _intervention_policies(test_engine) == []
        assert await table_names(test_engine) == LIVE_TABLES

    @pytest.mark.asyncio
    async def test_failed_insert_leaves_live_tables_unchanged(self, test_engine, table_names):
        """Test a bulk insert failing partway rolls back and removes debris"""
        publisher = SnapshotPublisher(test_engine, batch_size=1)
        await publisher.publish(_case_records(10, 12), _intervention_records("SchoolClose"))
        before = await _case_rows(test_engine)

        # Same (region, subregion, date) twice violates the unique constraint on the second batch
        duplicate = _case_records(20) + _case_records(21)

        with pytest.raises(PublishError) as exc_info:
            await publisher.publish(duplicate, _intervention_records("StayAtHome"))

        assert exc_info.value.context["table_name"] == CASE_DATA
        assert exc_info.value.context["phase"] == PublishState.SHADOW_CREATED.value
        assert await _case_rows(test_engine) == before
        assert await _intervention_policies(test_engine) == ["SchoolClose"]
        assert await table_names(test_engine) == LIVE_TABLES

    @pytest.mark.asyncio
    async def test_failed_rename_names_the_blocked_table(self, test_engine, table_names):
        """Test a rename failure reports the table whose rename failed"""
        publisher = SnapshotPublisher(test_engine)
        await publisher.publish(_case_records(10), _intervention_records("SchoolClose"))

        # A view is not removed by DROP TABLE, so it blocks the retire rename
        async with test_engine.begin() as conn:
            await conn.execute(text("CREATE VIEW intervention_data_old AS SELECT 1 AS junk"))

        with pytest.raises(PublishError) as exc_info:
            await publisher.publish(_case_records(20), _intervention_records("StayAtHome"))

        assert exc_info.value.context["table_name"] == INTERVENTION_DATA
        assert exc_info.value.context["phase"] == PublishState.POPULATED.value
        assert await _case_rows(test_engine) == [("US", "US-NY", datetime.date(2020, 3, 1), 10, 0, 0)]
        assert await _intervention_policies(test_engine) == ["SchoolClose"]
        assert await table_names(test_engine) == LIVE_TABLES

    @pytest.mark.asyncio
    async def test_leftover_shadow_table_is_removed_first(self, test_engine, table_names):
        """Test debris from a crashed run does not block the next publish"""
        async with test_engine.begin() as conn:
            await conn.execute(text("CREATE TABLE case_data_import (junk INTEGER)"))
            await conn.execute(text("CREATE TABLE intervention_data_old (junk INTEGER)"))

        await SnapshotPublisher(test_engine).publish(_case_records(5), [])

        assert await table_names(test_engine) == LIVE_TABLES
        assert await _case_rows(test_engine) == [("US", "US-NY", datetime.date(2020, 3, 1), 5, 0, 0)]

    @pytest.mark.asyncio
    async def test_national_rows_with_null_subregion(self, test_engine):
        """Test national records are stored with a NULL subregion"""
        await SnapshotPublisher(test_engine).publish(_case_records(30, subregion_id=None), [])

        rows = await _case_rows(test_engine)
        assert rows[0][1] is None

    @pytest.mark.asyncio
    async def test_snapshot_states_reach_cleaned_up(self, test_engine):
        """Test every table passes through the full state sequence"""
        publisher = SnapshotPublisher(test_engine)
        snapshots = [TableSnapshot(CASE_DATA, [])]

        async with publisher.snapshot_swap(snapshots):
            async with test_engine.begin() as conn:
                await publisher._create_shadow(conn, snapshots[0])
                await publisher._populate(conn, snapshots[0])
                await publisher._swap(conn, snapshots)

        assert snapshots[0].history == [
            PublishState.IDLE,
            PublishState.SHADOW_CREATED,
            PublishState.POPULATED,
            PublishState.SWAPPED,
        ]
        assert snapshots[0].state == PublishState.CLEANED_UP

    @pytest.mark.asyncio
    async def test_cleanup_runs_when_scope_fails(self, test_engine, table_names):
        """Test cleanup is reached from a failed state"""
        publisher = SnapshotPublisher(test_engine)
        snapshots = [TableSnapshot(CASE_DATA, [])]

        with pytest.raises(RuntimeError):
            async with publisher.snapshot_swap(snapshots):
                async with test_engine.begin() as conn:
                    await publisher._create_shadow(conn, snapshots[0])
                raise RuntimeError("interrupted")

        assert snapshots[0].state == PublishState.CLEANED_UP
        assert await table_names(test_engine) == set()

    @pytest.mark.asyncio
    async def test_cleanup_failure_is_logged_not_raised(self, caplog):
        """Test unexpected cleanup errors do not escape"""

        class _UnreachableEngine:
            def begin(self):
                raise ConnectionError("database went away")

        publisher = SnapshotPublisher(_UnreachableEngine())
        snapshots = [TableSnapshot(CASE_DATA, [])]

        await publisher._cleanup(snapshots)

        assert snapshots[0].state == PublishState.CLEANED_UP
        assert "Cleanup of case_data_old failed" in caplog.text
        assert "Cleanup of case_data_import failed" in caplog.text
