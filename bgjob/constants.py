"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class PollState(StrEnum):
    """
    Polling loop states.

    State transitions:
    - RUNNING -> RUNNING (job known and still running)
    - RUNNING -> COMPLETED (job known, no longer running)
    - RUNNING -> UNKNOWN (server no longer knows the handle)
    """

    RUNNING = "running"
    COMPLETED = "completed"
    UNKNOWN = "unknown"


TERMINAL_STATES = frozenset({PollState.COMPLETED, PollState.UNKNOWN})


class JobPriority(StrEnum):
    """Job priority levels for queue ordering."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class Backend(StrEnum):
    """Supported job-queue server backends."""

    GEARMAN = "gearman"
    HTTP = "http"


class JobStatus(StrEnum):
    """Job lifecycle states reported by the REST job-queue API."""

    QUEUED = "queued"
    LEASED = "leased"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DLQ = "dlq"


# Statuses in which a REST job is still being worked on
ACTIVE_JOB_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.LEASED, JobStatus.RUNNING})

# Default values
DEFAULT_HOST = "localhost"
DEFAULT_GEARMAN_PORT = 4730
DEFAULT_HTTP_PORT = 8000
DEFAULT_FUNCTION = "reverse"
DEFAULT_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_PRIORITY = JobPriority.NORMAL
NO_TIMEOUT = -1

UINT32_MAX = 2**32 - 1

# Process exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

# API constants
API_V1_PREFIX = "/v1"
IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"

# Metrics names
METRIC_SUBMISSIONS = "bgjob_submissions_total"
METRIC_STATUS_QUERIES = "bgjob_status_queries_total"
METRIC_POLL_ITERATIONS = "bgjob_poll_iterations_total"
METRIC_POLL_DURATION = "bgjob_poll_duration_seconds"

# Trace span names
SPAN_SUBMIT_JOB = "submit_background_job"
SPAN_POLL_JOB = "poll_job_status"
SPAN_QUERY_STATUS = "query_job_status"
