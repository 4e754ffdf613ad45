"""
SQLAlchemy Core definitions for the published snapshot tables.

Each logical table exists under three physical names during a publish:
the live name, a shadow ``<name>_import`` table being filled, and a retired
``<name>_old`` table that only lives until cleanup. The factories below build
a ``Table`` with the live schema under any of those names.
"""

from typing import Callable, Dict

from sqlalchemy import Column, Date, Integer, MetaData, String, Table, Text, UniqueConstraint

CASE_DATA = "case_data"
INTERVENTION_DATA = "intervention_data"

SHADOW_SUFFIX = "_import"
RETIRED_SUFFIX = "_old"


def shadow_name(table_name: str) -> str:
    return f"{table_name}{SHADOW_SUFFIX}"


def retired_name(table_name: str) -> str:
    return f"{table_name}{RETIRED_SUFFIX}"


def case_data_table(metadata: MetaData, name: str = CASE_DATA) -> Table:
    """
    Daily cumulative counts per region.

    National rows carry a NULL subregion_id; state rows carry an
    ISO 3166-2 code such as ``US-NY``.
    """
    return Table(
        name,
        metadata,
        Column("region_id", String(16), nullable=False),
        Column("subregion_id", String(16), nullable=True),
        Column("date", Date, nullable=False),
        Column("confirmed", Integer, nullable=False, default=0),
        Column("recovered", Integer, nullable=False, default=0),
        Column("deaths", Integer, nullable=False, default=0),
        # Unnamed so the generated name never clashes across renames
        UniqueConstraint("region_id", "subregion_id", "date"),
    )


def intervention_data_table(metadata: MetaData, name: str = INTERVENTION_DATA) -> Table:
    """Policy interventions enacted per subregion."""
    return Table(
        name,
        metadata,
        Column("region_id", String(16), nullable=False),
        Column("subregion_id", String(16), nullable=False),
        Column("policy", String(255), nullable=False),
        Column("notes", Text, nullable=True),
        Column("source", Text, nullable=True),
        Column("issue_date", Date, nullable=True),
        Column("start_date", Date, nullable=False),
        Column("ease_date", Date, nullable=True),
        Column("expiration_date", Date, nullable=True),
        Column("end_date", Date, nullable=True),
    )


TABLE_FACTORIES: Dict[str, Callable[..., Table]] = {
    CASE_DATA: case_data_table,
    INTERVENTION_DATA: intervention_data_table,
}
