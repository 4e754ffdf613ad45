"""
Pydantic schemas for the canonical record sets.

Usage:
    from schemas.records import CaseRecord, InterventionRecord
"""

__all__ = [
    "CaseRecord",
    "InterventionRecord",
]
