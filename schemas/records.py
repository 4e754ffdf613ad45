"""
Pydantic schemas for the canonical record sets with validation
"""

import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CaseRecord(BaseModel):
    """
    One day of cumulative counts for a region or subregion.

    Serialized (``by_alias=True``) with the camelCase keys consumed by the
    presentation layer; stored with the snake_case column names.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    region_id: str = Field(..., min_length=1, alias="regionID")
    subregion_id: Optional[str] = Field(None, alias="subregionID")
    date: datetime.date
    confirmed: int = Field(0, ge=0)
    recovered: int = Field(0, ge=0)
    deaths: int = Field(0, ge=0)

    @property
    def key(self):
        return (self.region_id, self.subregion_id, self.date)

    def to_row(self) -> Dict[str, Any]:
        """Column mapping for the case_data table"""
        return self.model_dump(by_alias=False)


class InterventionRecord(BaseModel):
    """
    A policy intervention enacted in a subregion.

    Only built when policy, subregion and start date are all known.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    region_id: str = Field(..., min_length=1, alias="regionID")
    subregion_id: str = Field(..., min_length=1, alias="subregionID")
    policy: str = Field(..., min_length=1)
    notes: Optional[str] = None
    source: Optional[str] = None
    issue_date: Optional[datetime.date] = Field(None, alias="issueDate")
    start_date: datetime.date = Field(..., alias="startDate")
    ease_date: Optional[datetime.date] = Field(None, alias="easeDate")
    expiration_date: Optional[datetime.date] = Field(None, alias="expirationDate")
    end_date: Optional[datetime.date] = Field(None, alias="endDate")

    @field_validator("notes", "source", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        """Empty text columns are stored as NULL"""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def to_row(self) -> Dict[str, Any]:
        """Column mapping for the intervention_data table"""
        return self.model_dump(by_alias=False)
