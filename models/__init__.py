"""
SQLAlchemy Core definitions for the published tables.

Tables:
    case_data: Daily cumulative confirmed/recovered/deaths per region
    intervention_data: Policy interventions per subregion

Each table is built by a factory taking the physical name, so the publisher
can create ``_import`` shadow copies with the live schema.

Usage:
    from models.tables import CASE_DATA, case_data_table, shadow_name
"""

__all__ = [
    "CASE_DATA",
    "INTERVENTION_DATA",
    "case_data_table",
    "intervention_data_table",
    "shadow_name",
    "retired_name",
]
