"""
Pydantic Schemas for the Exposure Compliance Engine.

Input payloads accepted from HTTP handlers and the JSON shapes
returned to them.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================
# INPUT SCHEMAS
# =============================================================

class ExposureLimitPayload(BaseModel):
    """Payload for creating or replacing one exposure limit row."""
    profile_key: str = Field(..., min_length=1, max_length=100)
    analyte: str = Field(..., min_length=1, max_length=100)
    units: str = Field(..., min_length=1, max_length=30)
    action_level: Optional[float] = Field(None, ge=0)
    pel: Optional[float] = Field(None, ge=0)
    rel: Optional[float] = Field(None, ge=0)

    @field_validator("profile_key", "analyte", "units", mode="before")
    @classmethod
    def strip_text(cls, value):
        # Keys are matched exactly, so surrounding whitespace would split them
        if isinstance(value, str):
            return value.strip()
        return value


# =============================================================
# RESPONSE SCHEMAS
# =============================================================

class ExposureLimitResponse(BaseModel):
    """Stored exposure limit."""
    limit_id: str
    organization_id: str
    profile_key: str
    analyte: str
    units: str
    action_level: Optional[float] = None
    pel: Optional[float] = None
    rel: Optional[float] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExposureRecordResponse(BaseModel):
    """One exposure record as listed on the personnel page."""
    exposure_id: str
    organization_id: str
    person_id: str
    job_id: str
    air_sample_id: Optional[str] = None
    sample_run_id: Optional[str] = None
    date: Optional[datetime] = None
    analyte: str
    duration_minutes: Optional[float] = None
    concentration: Optional[float] = None
    units: Optional[str] = None
    method: Optional[str] = None
    sample_type: Optional[str] = None
    task_activity: Optional[str] = None
    ppe_level: Optional[str] = None
    twa_8hr: Optional[float] = None
    profile_key: Optional[str] = None
    limit_type: Optional[str] = None
    limit_value: Optional[float] = None
    percent_of_limit: Optional[float] = None
    exceedance_flag: bool = False
    near_miss_flag: bool = False
    computed_version: int = 1
    identity_confidence: Optional[str] = None
    source_refs: Optional[str] = None
    created_by_user_id: Optional[str] = None
    updated_by_user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PersonExposureSummaryRowSchema(BaseModel):
    """Per-analyte rollup row."""
    analyte: str
    count: int
    max_twa: Optional[float] = None
    avg_twa: Optional[float] = None
    exceedances: int = 0
    near_misses: int = 0

    class Config:
        from_attributes = True


class PersonExposureResponse(BaseModel):
    """Exposure records plus summary for one person and window."""
    person_id: str
    window: str
    records: List[ExposureRecordResponse] = Field(default_factory=list)
    summary: List[PersonExposureSummaryRowSchema] = Field(default_factory=list)


class SampleStatsResponse(BaseModel):
    """Sample counts for one person id or monitor name."""
    key: str
    sample_count: int
    job_count: int
    last_job_date: Optional[datetime] = None
    display_name: Optional[str] = None

    class Config:
        from_attributes = True
