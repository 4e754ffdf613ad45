# ============================================================================
# File: ingestion/runner.py
# Description: Snapshot pipeline orchestrator
# ============================================================================
"""
Pipeline Runner - Orchestrates fetch, parse, reconcile, dump and publish.

Every phase must succeed for the run to succeed: there is no partial
publish. Failures surface as PipelineException subclasses:
- FetchError from the fetch phase
- ParseError from parsing and reconciliation
- PublishError from the snapshot swap
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel

from ingestion.extractors.fetcher import CachedFetcher
from ingestion.extractors.parsers import parse_delimited, parse_json_rows, parse_simple_grid
from ingestion.loaders.snapshot_publisher import SnapshotPublisher
from ingestion.sources import (
    ALL_SOURCES,
    NATIONAL_SERIES,
    STATE_POLICIES,
    STATES_DAILY,
    Source,
    SourceFormat,
)
from ingestion.transformers.reconciler import Reconciler
from schemas.records import CaseRecord, InterventionRecord

logger = logging.getLogger(__name__)

CASE_DATA_FILE = "case-data.json"
INTERVENTION_DATA_FILE = "intervention-data.json"

PARSERS = {
    SourceFormat.JSON: parse_json_rows,
    SourceFormat.SIMPLE_GRID: parse_simple_grid,
    SourceFormat.DELIMITED: parse_delimited,
}


class PipelineRunner:
    """
    Snapshot pipeline orchestrator

    Responsibilities:
    - Fetch every source (concurrently, through the cache)
    - Parse each source with the decoder matching its format
    - Reconcile into case and intervention record sets
    - Optionally dump both sets to the output directory
    - Publish both sets through the snapshot publisher
    """

    def __init__(
        self,
        fetcher: CachedFetcher,
        publisher: SnapshotPublisher,
        output_dir: Optional[Path] = None,
        reconciler: Optional[Reconciler] = None,
        sources: Sequence[Source] = ALL_SOURCES
    ):
        self.fetcher = fetcher
        self.publisher = publisher
        self.output_dir = Path(output_dir) if output_dir else None
        self.reconciler = reconciler or Reconciler()
        self.sources = sources

    async def run(self) -> Dict[str, Any]:
        """
        Run the full pipeline once.

        Returns:
            Dictionary with run statistics:
            - status: "success"
            - case_records / intervention_records: Reconciled set sizes
            - published: Rows published per table
            - duration_seconds: Wall time of the run

        Raises:
            FetchError, ParseError, PublishError: Any failure aborts the run
        """
        started = time.monotonic()

        logger.info(f"Fetching {len(self.sources)} sources")
        raw = await self.fetcher.fetch_all(self.sources)

        parsed = {
            source.name: PARSERS[source.format](raw[source.name], source_name=source.name)
            for source in self.sources
        }

        case_records, intervention_records = self.reconcile(parsed)

        if self.output_dir is not None:
            self.write_snapshot_files(case_records, intervention_records)

        published = await self.publisher.publish(case_records, intervention_records)

        result = {
            "status": "success",
            "case_records": len(case_records),
            "intervention_records": len(intervention_records),
            "published": published,
            "duration_seconds": round(time.monotonic() - started, 3),
        }
        logger.info(
            f"Pipeline run completed: {result['case_records']} case records, "
            f"{result['intervention_records']} intervention records "
            f"in {result['duration_seconds']}s"
        )
        return result

    def reconcile(self, parsed: Dict[str, Any]):
        """Build the (case, intervention) canonical record sets"""
        state_records = self.reconciler.reconcile_state_series(parsed[STATES_DAILY.name])
        national_records = self.reconciler.reconcile_national_series(
            *(parsed[source.name] for source in NATIONAL_SERIES)
        )
        case_records = self.reconciler.build_case_records(state_records, national_records)
        intervention_records = self.reconciler.reconcile_interventions(parsed[STATE_POLICIES.name])
        return case_records, intervention_records

    def write_snapshot_files(
        self,
        case_records: List[CaseRecord],
        intervention_records: List[InterventionRecord]
    ) -> None:
        """Dump both record sets as JSON arrays for inspection"""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        for filename, records in (
            (CASE_DATA_FILE, case_records),
            (INTERVENTION_DATA_FILE, intervention_records),
        ):
            path = self.output_dir / filename
            with path.open("w", encoding="utf-8") as f:
                json.dump(_serialize(records), f)
            logger.info(f"Wrote {len(records)} records to {path}")


def _serialize(records: Sequence[BaseModel]) -> List[Dict[str, Any]]:
    return [record.model_dump(mode="json", by_alias=True) for record in records]
