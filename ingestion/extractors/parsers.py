"""
Decoders turning raw source text into rows.

Two tabular capabilities are kept apart on purpose:
- ``parse_simple_grid`` splits on the delimiter and knows nothing about
  quoting. It is only meant for the plain numeric time-series grids.
- ``parse_delimited`` is a full quote-aware CSV decode (pandas).
"""

import io
import json
import logging
from typing import Any, Dict, List

import pandas as pd

from core.exceptions import ParseError

logger = logging.getLogger(__name__)


def parse_simple_grid(text: str, delimiter: str = ",", source_name: str = "") -> List[List[str]]:
    """
    Split text into lines, then each line into fields.

    Quoted fields are not recognised: a delimiter inside quotes splits the
    field. Blank lines are skipped.

    Returns:
        2D array of strings in source order, header row first
    """
    rows = [
        line.split(delimiter)
        for line in text.splitlines()
        if line.strip()
    ]
    if not rows:
        raise ParseError(
            "Tabular source is empty",
            context={"source_name": source_name}
        )
    logger.debug(f"Split {len(rows)} rows from {source_name or 'grid'}")
    return rows


def parse_delimited(text: str, source_name: str = "") -> List[Dict[str, str]]:
    """
    Decode CSV text honouring standard quoting rules.

    Every value is kept as a string; empty cells become "".

    Returns:
        One dict per data row keyed by header, in source order
    """
    try:
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
        raise ParseError(
            "Failed to decode delimited source",
            context={"source_name": source_name},
            original_exception=e
        )

    # Normalize column names (strip whitespace)
    df.columns = df.columns.str.strip()

    records = df.to_dict(orient="records")
    logger.debug(f"Decoded {len(records)} rows from {source_name or 'CSV'}")
    return records


def parse_json_rows(text: str, source_name: str = "") -> List[Dict[str, Any]]:
    """Decode a JSON array of objects"""
    try:
        data = json.loads(text)
    except ValueError as e:
        raise ParseError(
            "Failed to decode JSON source",
            context={"source_name": source_name},
            original_exception=e
        )

    if not isinstance(data, list) or not all(isinstance(row, dict) for row in data):
        raise ParseError(
            "JSON source is not an array of objects",
            context={"source_name": source_name, "type": type(data).__name__}
        )

    return data
