"""
Reconcile parsed sources into the canonical case and intervention record sets
"""

import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from core.exceptions import ParseError
from schemas.records import CaseRecord, InterventionRecord

logger = logging.getLogger(__name__)

METRICS = ("confirmed", "recovered", "deaths")

# covidtracking.com field for each metric
STATE_METRIC_FIELDS = {
    "confirmed": "positive",
    "recovered": "recovered",
    "deaths": "death",
}

# Province/State, Country/Region, Lat, Long precede the date columns
SERIES_METADATA_COLUMNS = 4

# Policy CSV column for each InterventionRecord field
POLICY_COLUMNS = {
    "policy": "StatePolicy",
    "subregion": "StatePostal",
    "notes": "PolicyCodingNotes",
    "source": "PolicySource",
    "issue_date": "DateIssued",
    "start_date": "DateEnacted",
    "ease_date": "DateEased",
    "expiration_date": "DateExpiry",
    "end_date": "DateEnded",
}


def forward_fill(values: Iterable[Optional[int]]) -> List[int]:
    """
    Replace each missing value with the last known one, zero before any.

    >>> forward_fill([10, None, None, 15])
    [10, 10, 10, 15]
    """
    filled = []
    last = 0
    for value in values:
        if value is not None:
            last = value
        filled.append(last)
    return filled


class Reconciler:
    """
    Build canonical record sets from heterogeneous sources.

    Handles:
    - Forward-filling the state-level JSON series per state and metric
    - Merging the three single-metric national grids by date
    - Filtering and mapping intervention rows

    Attributes:
        region_id: Region code stamped on every record
        aggregate_row_key: Leading (Province/State, Country/Region) cells of
            the national row in the global grids
    """

    def __init__(self, region_id: str = "US", aggregate_row_key: Tuple[str, str] = ("", "US")):
        self.region_id = region_id
        self.aggregate_row_key = aggregate_row_key

    # ------------------------------------------------------------------
    # State-level series
    # ------------------------------------------------------------------

    def reconcile_state_series(self, rows: Sequence[Dict[str, Any]]) -> List[CaseRecord]:
        """
        Forward-fill the state daily series.

        Rows are sorted by date before the fill pass; for every state and
        metric a null or absent value takes the state's last known value,
        or zero when none has been seen yet.
        """
        dated = []
        for index, row in enumerate(rows):
            state = row.get("state")
            if not state or row.get("date") in (None, ""):
                raise ParseError(
                    "State series row lacks state or date",
                    context={"source_name": "states_daily", "row": index}
                )
            dated.append((self._parse_source_date(row["date"], "states_daily"), index, row))

        dated.sort(key=lambda item: (item[0], item[1]))

        by_state: Dict[str, List[Tuple[datetime.date, int, Dict[str, Any]]]] = {}
        for item in dated:
            by_state.setdefault(str(item[2]["state"]).strip().upper(), []).append(item)

        records = []
        for state, series in by_state.items():
            columns = {
                metric: forward_fill(
                    self._parse_count(row.get(field), "states_daily", index)
                    for _, index, row in series
                )
                for metric, field in STATE_METRIC_FIELDS.items()
            }

            for position, (day, _, _) in enumerate(series):
                records.append(self._case_record(
                    subregion_id=self._subregion_id(state),
                    date=day,
                    **{metric: columns[metric][position] for metric in METRICS}
                ))

        records.sort(key=lambda record: record.date)

        logger.info(f"Reconciled {len(records)} state-level case records for {len(by_state)} states")
        return records

    # ------------------------------------------------------------------
    # National series
    # ------------------------------------------------------------------

    def reconcile_national_series(
        self,
        confirmed: List[List[str]],
        recovered: List[List[str]],
        deaths: List[List[str]]
    ) -> List[CaseRecord]:
        """
        Merge the three single-metric grids into one record per date.

        A metric absent for a date in its own grid is recorded as zero.
        """
        by_date: Dict[datetime.date, Dict[str, int]] = {}

        for metric, grid in zip(METRICS, (confirmed, recovered, deaths)):
            header = grid[0]
            row = self._find_aggregate_row(grid, metric)

            for column in range(SERIES_METADATA_COLUMNS, len(header)):
                day = self._parse_series_date(header[column], metric)
                if column >= len(row):
                    raise ParseError(
                        "National row is shorter than the header",
                        context={"source_name": metric, "column": column}
                    )
                value = self._parse_count(row[column], metric, column)
                point = by_date.setdefault(day, {})
                point[metric] = value if value is not None else 0

        records = [
            self._case_record(
                subregion_id=None,
                date=day,
                **{metric: point.get(metric, 0) for metric in METRICS}
            )
            for day, point in sorted(by_date.items())
        ]

        logger.info(f"Reconciled {len(records)} national case records")
        return records

    def _find_aggregate_row(self, grid: List[List[str]], source_name: str) -> List[str]:
        for row in grid[1:]:
            key = tuple(cell.strip() for cell in row[:2])
            if key == self.aggregate_row_key:
                return [cell.strip() for cell in row]

        raise ParseError(
            "Aggregate national row not found",
            context={"source_name": source_name, "row_key": self.aggregate_row_key}
        )

    # ------------------------------------------------------------------
    # Concatenation
    # ------------------------------------------------------------------

    def build_case_records(
        self,
        state_records: List[CaseRecord],
        national_records: List[CaseRecord]
    ) -> List[CaseRecord]:
        """
        Concatenate state and national records.

        The two sets cover disjoint subregions by construction; duplicates
        on (region, subregion, date) are still dropped, keeping the last.
        """
        unique: Dict[Tuple, CaseRecord] = {}
        for record in [*state_records, *national_records]:
            unique[record.key] = record

        dropped = len(state_records) + len(national_records) - len(unique)
        if dropped:
            logger.warning(f"Dropped {dropped} duplicate case records")

        return list(unique.values())

    # ------------------------------------------------------------------
    # Interventions
    # ------------------------------------------------------------------

    def reconcile_interventions(self, rows: Sequence[Dict[str, Any]]) -> List[InterventionRecord]:
        """
        Map policy rows to InterventionRecords.

        Rows missing the policy, the state or the enacted date are skipped.
        """
        records = []
        skipped = 0

        for index, row in enumerate(rows):
            policy = self._text(row.get(POLICY_COLUMNS["policy"]))
            postal = self._text(row.get(POLICY_COLUMNS["subregion"]))
            start = self._text(row.get(POLICY_COLUMNS["start_date"]))

            if not (policy and postal and start):
                skipped += 1
                logger.debug(f"Skipping intervention row {index}: missing policy, state or start date")
                continue

            dates = {
                field: self._parse_optional_source_date(row.get(POLICY_COLUMNS[field]), index)
                for field in ("issue_date", "start_date", "ease_date", "expiration_date", "end_date")
            }

            try:
                records.append(InterventionRecord(
                    region_id=self.region_id,
                    subregion_id=self._subregion_id(postal),
                    policy=policy,
                    notes=self._text(row.get(POLICY_COLUMNS["notes"])),
                    source=self._text(row.get(POLICY_COLUMNS["source"])),
                    **dates
                ))
            except ValidationError as e:
                raise ParseError(
                    "Invalid intervention row",
                    context={"source_name": "state_policies", "row": index},
                    original_exception=e
                )

        logger.info(f"Reconciled {len(records)} intervention records ({skipped} rows skipped)")
        return records

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _subregion_id(self, code: str) -> str:
        return f"{self.region_id}-{code.strip().upper()}"

    def _case_record(self, **fields) -> CaseRecord:
        try:
            return CaseRecord(region_id=self.region_id, **fields)
        except ValidationError as e:
            raise ParseError(
                "Invalid case record",
                context={"subregion_id": fields.get("subregion_id"), "date": fields.get("date")},
                original_exception=e
            )

    @staticmethod
    def _text(value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @staticmethod
    def _parse_count(value: Any, source_name: str, position: int) -> Optional[int]:
        """Parse a count; None for null/blank"""
        if value is None or value == "":
            return None
        try:
            return int(float(value))  # Handle "10.0" strings
        except (ValueError, TypeError, OverflowError) as e:
            raise ParseError(
                f"Invalid count {value!r}",
                context={"source_name": source_name, "position": position},
                original_exception=e
            )

    @staticmethod
    def _parse_series_date(value: str, source_name: str) -> datetime.date:
        """Parse M/D/YY grid headers; two-digit years are in the 2000s"""
        try:
            month, day, year = (int(part) for part in value.strip().split("/"))
            return datetime.date(2000 + year % 100, month, day)
        except ValueError as e:
            raise ParseError(
                f"Invalid date column {value!r}",
                context={"source_name": source_name},
                original_exception=e
            )

    @staticmethod
    def _parse_source_date(value: Any, source_name: str) -> datetime.date:
        """Parse YYYYMMDD integers/strings or ISO dates"""
        text = str(value).strip()
        try:
            if len(text) == 8 and text.isdigit():
                return datetime.date(int(text[:4]), int(text[4:6]), int(text[6:]))
            return datetime.date.fromisoformat(text)
        except ValueError as e:
            raise ParseError(
                f"Invalid date {value!r}",
                context={"source_name": source_name},
                original_exception=e
            )

    def _parse_optional_source_date(self, value: Any, index: int) -> Optional[datetime.date]:
        text = self._text(value)
        if text is None:
            return None
        try:
            return self._parse_source_date(text, "state_policies")
        except ParseError as e:
            e.context["row"] = index
            raise
