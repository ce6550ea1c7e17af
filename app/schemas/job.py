"""
Job Schemas
Pydantic models for job API requests and responses.
"""

from datetime import datetime
from typing import Optional, Dict, Any
from enum import Enum
from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Job status enum."""
    SUBMITTED = "submitted"
    AWAITING_RESULT = "awaiting_result"
    RESULT_READY = "result_ready"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


class JobCreateRequest(BaseModel):
    """Schema for creating a generation job."""
    source_asset_ref: str
    parameters: Dict[str, Any] = {}
    provider_job_id: Optional[str] = None
    submit: bool = False  # also submit to the generation provider


class AdminFailRequest(BaseModel):
    """Operator override for a stuck job."""
    reason: str = Field(..., min_length=3)
    operator: str = Field(..., min_length=1)


class JobResponse(BaseModel):
    """Schema for job response."""
    id: str
    provider_job_id: Optional[str]
    source_asset_ref: str
    parameters: Dict[str, Any] = {}
    status: str
    error_message: Optional[str]
    provider_error: Optional[str]
    result_asset_url: Optional[str]
    persisted_asset_ref: Optional[str]
    asset_digest: Optional[str]
    attempts: int
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True
