"""
Publish canonical record sets by swapping in freshly built tables.

Protocol, for every logical table, inside ONE transaction:

1. Create the shadow table ``<name>_import`` with the live schema
2. Bulk-insert every record into the shadow table
3. Rename live -> ``<name>_old`` and shadow -> live
4. After commit or failure, drop ``<name>_old`` and ``<name>_import``

Readers see either the complete old pair of tables or the complete new pair,
never a half-populated shadow under a live name. Step 4 always runs, so no
shadow or retired tables survive a run whatever its outcome.
"""

import enum
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Sequence

from sqlalchemy import MetaData, Table, inspect, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.schema import DropTable

from core.exceptions import PublishError
from models.tables import (
    CASE_DATA,
    INTERVENTION_DATA,
    TABLE_FACTORIES,
    retired_name,
    shadow_name,
)
from schemas.records import CaseRecord, InterventionRecord

logger = logging.getLogger(__name__)


class PublishState(str, enum.Enum):
    """Progress of one logical table through the swap protocol"""
    IDLE = "idle"
    SHADOW_CREATED = "shadow_created"
    POPULATED = "populated"
    SWAPPED = "swapped"
    CLEANED_UP = "cleaned_up"


@dataclass
class TableSnapshot:
    """Rows destined for one logical table, and how far they got"""
    table_name: str
    rows: List[Dict[str, Any]]
    state: PublishState = PublishState.IDLE
    history: List[PublishState] = field(default_factory=list)

    def advance(self, state: PublishState) -> None:
        self.history.append(self.state)
        self.state = state

    def shadow_table(self) -> Table:
        return TABLE_FACTORIES[self.table_name](MetaData(), shadow_name(self.table_name))


class SnapshotPublisher:
    """
    Replace the contents of case_data and intervention_data atomically.

    Ensures:
    - Both tables switch to the new snapshot in the same commit
    - An empty record set publishes an empty table
    - No ``_import`` or ``_old`` table outlives the run
    """

    def __init__(self, engine: AsyncEngine, batch_size: int = 1000):
        self.engine = engine
        self.batch_size = batch_size

    async def publish(
        self,
        case_records: Sequence[CaseRecord],
        intervention_records: Sequence[InterventionRecord]
    ) -> Dict[str, int]:
        """
        Publish both record sets.

        Returns:
            Number of rows published per table

        Raises:
            PublishError: If creating, filling or swapping the tables fails;
                the live tables are left untouched
        """
        snapshots = [
            TableSnapshot(CASE_DATA, [record.to_row() for record in case_records]),
            TableSnapshot(INTERVENTION_DATA, [record.to_row() for record in intervention_records]),
        ]

        async with self.snapshot_swap(snapshots):
            current = snapshots[0]
            try:
                async with self.engine.begin() as conn:
                    for current in snapshots:
                        await self._create_shadow(conn, current)
                    for current in snapshots:
                        await self._populate(conn, current)
                    await self._swap(conn, snapshots)
            except PublishError as e:
                logger.error(f"Publish failed: {e}")
                raise
            except Exception as e:
                logger.error(f"Publish failed for {current.table_name} in state {current.state.value}: {e}")
                raise PublishError(
                    "Failed to publish snapshot",
                    context={
                        "table_name": current.table_name,
                        "phase": current.state.value,
                        "rows": len(current.rows)
                    },
                    original_exception=e
                )

        result = {snapshot.table_name: len(snapshot.rows) for snapshot in snapshots}
        logger.info(f"Published snapshot: {result}")
        return result

    @asynccontextmanager
    async def snapshot_swap(self, snapshots: List[TableSnapshot]) -> AsyncIterator[List[TableSnapshot]]:
        """
        Scope in which the swap happens; cleanup runs on every exit path.

        Debris left by a crashed earlier run is removed on entry.
        """
        await self._cleanup(snapshots, advance=False)
        try:
            yield snapshots
        finally:
            await self._cleanup(snapshots)

    async def _create_shadow(self, conn: AsyncConnection, snapshot: TableSnapshot) -> None:
        await conn.run_sync(snapshot.shadow_table().create)
        snapshot.advance(PublishState.SHADOW_CREATED)
        logger.debug(f"Created {shadow_name(snapshot.table_name)}")

    async def _populate(self, conn: AsyncConnection, snapshot: TableSnapshot) -> None:
        table = snapshot.shadow_table()
        for start in range(0, len(snapshot.rows), self.batch_size):
            batch = snapshot.rows[start:start + self.batch_size]
            await conn.execute(table.insert(), batch)
            logger.debug(f"Inserted batch {start // self.batch_size + 1} ({len(batch)} rows) into {table.name}")
        snapshot.advance(PublishState.POPULATED)
        logger.info(f"Loaded {len(snapshot.rows)} rows into {table.name}")

    async def _swap(self, conn: AsyncConnection, snapshots: List[TableSnapshot]) -> None:
        quote = conn.dialect.identifier_preparer.quote
        plan = []
        for snapshot in snapshots:
            name = snapshot.table_name
            has_live = await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table(name))
            renames = []
            if has_live:
                renames.append((name, retired_name(name)))
            else:
                logger.info(f"No live {name} table yet; publishing the first snapshot")
            renames.append((shadow_name(name), name))
            plan.append((snapshot, renames))

        if conn.dialect.name == "mysql":
            # RENAME TABLE applies all pairs atomically; MySQL DDL commits implicitly
            pairs = ", ".join(
                f"{quote(old)} TO {quote(new)}" for _, renames in plan for old, new in renames
            )
            try:
                await conn.execute(text(f"RENAME TABLE {pairs}"))
            except Exception as e:
                raise self._swap_error(snapshots, e)
            for snapshot in snapshots:
                snapshot.advance(PublishState.SWAPPED)
            return

        # Transactional DDL: the renames become visible at commit
        for snapshot, renames in plan:
            try:
                for old, new in renames:
                    await conn.execute(text(f"ALTER TABLE {quote(old)} RENAME TO {quote(new)}"))
            except Exception as e:
                raise self._swap_error([snapshot], e)
            snapshot.advance(PublishState.SWAPPED)

    @staticmethod
    def _swap_error(snapshots: List[TableSnapshot], error: Exception) -> PublishError:
        return PublishError(
            "Failed to swap in new snapshot",
            context={
                "table_name": ", ".join(snapshot.table_name for snapshot in snapshots),
                "phase": snapshots[0].state.value,
                "rows": sum(len(snapshot.rows) for snapshot in snapshots)
            },
            original_exception=error
        )

    async def _cleanup(self, snapshots: List[TableSnapshot], advance: bool = True) -> None:
        for snapshot in snapshots:
            for name in (retired_name(snapshot.table_name), shadow_name(snapshot.table_name)):
                try:
                    async with self.engine.begin() as conn:
                        await conn.execute(DropTable(Table(name, MetaData()), if_exists=True))
                except Exception as e:
                    logger.warning(f"Cleanup of {name} failed: {e}")
            if advance:
                snapshot.advance(PublishState.CLEANED_UP)
