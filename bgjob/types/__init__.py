"""
Type definitions for the background job client.
Contains input/output type definitions for all functions, grouped by module.
"""

from bgjob.types.api import (
    CreateJobRequest,
    CreateJobResponse,
    JobProgress,
    JobStatusResponse,
)
from bgjob.types.job import (
    ExitDisposition,
    JobHandle,
    PollResult,
    ProgressReport,
    ServerAddress,
)

__all__ = [
    # API types
    "CreateJobRequest",
    "CreateJobResponse",
    "JobProgress",
    "JobStatusResponse",
    # Job types
    "JobHandle",
    "ProgressReport",
    "ExitDisposition",
    "PollResult",
    "ServerAddress",
]
