"""
REST job-queue API request and response type definitions.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bgjob.constants import UINT32_MAX, JobPriority, JobStatus


class CreateJobRequest(BaseModel):
    """Request body for submitting a background job."""

    payload: dict[str, Any] = Field(..., description="Job payload data")
    priority: JobPriority = Field(default=JobPriority.NORMAL, description="Job priority")


class _JobIdModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        # Servers may issue UUIDs or integers
        return str(value)


class CreateJobResponse(_JobIdModel):
    """Response body after creating a job."""

    status: JobStatus
    created_at: datetime | None = None


class JobProgress(BaseModel):
    """Completion fraction reported by the worker."""

    numerator: int = Field(default=0, ge=0, le=UINT32_MAX)
    denominator: int = Field(default=0, ge=0, le=UINT32_MAX)


class JobStatusResponse(_JobIdModel):
    """Subset of the job details response needed for polling."""

    status: JobStatus
    progress: JobProgress = Field(default_factory=JobProgress)
    last_error: str | None = None
