"""
Pytest configuration and fixtures
"""

import json
from typing import AsyncGenerator, Callable, Dict

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine

from core.config import load_settings
from core.database import create_engine_from_settings


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """SQLite engine with transactional DDL, one database file per test"""
    settings = load_settings(DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    engine = create_engine_from_settings(settings)

    yield engine

    await engine.dispose()


@pytest.fixture
def table_names() -> Callable:
    """Return the set of table names present in the database"""

    async def _table_names(engine: AsyncEngine):
        async with engine.connect() as conn:
            return set(await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names()))

    return _table_names


@pytest.fixture
def states_daily_json() -> str:
    """covidtracking.com style states daily series, newest first as served"""
    return json.dumps([
        {"date": 20200303, "state": "NY", "positive": 15, "recovered": None, "death": 1},
        {"date": 20200303, "state": "WA", "positive": None, "recovered": None, "death": None},
        {"date": 20200302, "state": "NY", "positive": None, "recovered": 2},
        {"date": 20200301, "state": "NY", "positive": 10, "recovered": None, "death": None},
    ])


def _global_series(us_values) -> str:
    header = "Province/State,Country/Region,Lat,Long,3/1/20,3/2/20"
    return "\n".join([
        header,
        ",Afghanistan,33.0,65.0,1,1",
        f",US,37.0902,-95.7129,{us_values[0]},{us_values[1]}",
        "Washington,US,47.4,-121.5,9,9",
    ]) + "\n"


@pytest.fixture
def global_series() -> Dict[str, str]:
    """JHU CSSE style global grids for the three metrics"""
    return {
        "confirmed_global": _global_series((30, 53)),
        "recovered_global": _global_series((7, 8)),
        "deaths_global": _global_series((1, 2)),
    }


@pytest.fixture
def state_policies_csv() -> str:
    """COVID19StatePolicy style CSV with quoted fields"""
    return (
        "StateFIPS,StatePostal,StateName,StatePolicy,Mandate,DateIssued,DateEnacted,"
        "DateExpiry,DateEased,DateEnded,PolicySource,PolicyCodingNotes\n"
        '36,NY,New York,SchoolClose,1,20200316,20200318,,20200601,,https://example.org/ny,'
        '"Closed schools, statewide"\n'
        "53,WA,Washington,,1,20200312,20200313,,,,https://example.org/wa,\n"
        "6,CA,California,StayAtHome,1,20200319,,,,,,\n"
    )


@pytest.fixture
def source_transport(states_daily_json, global_series, state_policies_csv) -> httpx.MockTransport:
    """Transport answering every pipeline source by URL basename"""
    bodies = {
        "daily.json": states_daily_json,
        "time_series_covid19_confirmed_global.csv": global_series["confirmed_global"],
        "time_series_covid19_recovered_global.csv": global_series["recovered_global"],
        "time_series_covid19_deaths_global.csv": global_series["deaths_global"],
        "USstatesCov19distancingpolicy.csv": state_policies_csv,
    }

    def handler(request: httpx.Request) -> httpx.Response:
        name = request.url.path.rsplit("/", 1)[-1]
        if name not in bodies:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, text=bodies[name])

    return httpx.MockTransport(handler)
