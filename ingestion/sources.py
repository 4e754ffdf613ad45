"""
Remote sources feeding the snapshot.

URLs are fixed; only the cache directory and the database vary per run.
"""

import enum
from dataclasses import dataclass
from typing import Tuple


class SourceFormat(str, enum.Enum):
    """How a source's raw text is decoded"""
    JSON = "json"
    SIMPLE_GRID = "simple_grid"
    DELIMITED = "delimited"


@dataclass(frozen=True)
class Source:
    name: str
    url: str
    format: SourceFormat


JHU_TIME_SERIES_BASE = (
    "https://raw.githubusercontent.com/CSSEGISandData/COVID-19/master/"
    "csse_covid_19_data/csse_covid_19_time_series"
)

STATES_DAILY = Source(
    name="states_daily",
    url="https://covidtracking.com/api/v1/states/daily.json",
    format=SourceFormat.JSON,
)

CONFIRMED_GLOBAL = Source(
    name="confirmed_global",
    url=f"{JHU_TIME_SERIES_BASE}/time_series_covid19_confirmed_global.csv",
    format=SourceFormat.SIMPLE_GRID,
)

RECOVERED_GLOBAL = Source(
    name="recovered_global",
    url=f"{JHU_TIME_SERIES_BASE}/time_series_covid19_recovered_global.csv",
    format=SourceFormat.SIMPLE_GRID,
)

DEATHS_GLOBAL = Source(
    name="deaths_global",
    url=f"{JHU_TIME_SERIES_BASE}/time_series_covid19_deaths_global.csv",
    format=SourceFormat.SIMPLE_GRID,
)

STATE_POLICIES = Source(
    name="state_policies",
    url=(
        "https://raw.githubusercontent.com/COVID19StatePolicy/SocialDistancing/"
        "master/data/USstatesCov19distancingpolicy.csv"
    ),
    format=SourceFormat.DELIMITED,
)

# Metric order matters: (confirmed, recovered, deaths)
NATIONAL_SERIES: Tuple[Source, Source, Source] = (
    CONFIRMED_GLOBAL,
    RECOVERED_GLOBAL,
    DEATHS_GLOBAL,
)

ALL_SOURCES: Tuple[Source, ...] = (
    STATES_DAILY,
    *NATIONAL_SERIES,
    STATE_POLICIES,
)
