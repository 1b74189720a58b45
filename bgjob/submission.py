"""
Background submission controller.

Turns a payload and a function name into exactly one background job on the
server and hands back the job handle. There are no retries: a failed
submission ends the run.
"""

import logging

from bgjob.client.base import JobQueueClient
from bgjob.constants import DEFAULT_PRIORITY, SPAN_SUBMIT_JOB, JobPriority
from bgjob.errors import ConfigurationError, SubmissionError
from bgjob.observability.metrics import get_metrics
from bgjob.observability.tracing import get_tracer
from bgjob.types.job import JobHandle

logger = logging.getLogger(__name__)


async def submit_background_job(
    client: JobQueueClient,
    function_name: str,
    payload: bytes,
    *,
    unique: str | None = None,
    priority: JobPriority = DEFAULT_PRIORITY,
) -> JobHandle:
    """
    Submit a payload for background execution.

    Args:
        client: Job-queue client session with at least one server registered.
        function_name: Server-side function that should process the payload.
        payload: Workload bytes, must not be empty.
        unique: Optional unique key used by the server to coalesce submissions.
        priority: Queue priority of the job.

    Returns:
        The server-issued job handle.

    Raises:
        ConfigurationError: If the payload or function name is empty.
        SubmissionError: If the server did not accept the job.
    """
    if not payload:
        raise ConfigurationError("Payload must not be empty")
    if not function_name:
        raise ConfigurationError("Function name must not be empty")

    metrics = get_metrics()

    with get_tracer().start_as_current_span(SPAN_SUBMIT_JOB) as span:
        span.set_attribute("function", function_name)
        span.set_attribute("payload_size", len(payload))
        span.set_attribute("priority", priority.value)

        try:
            handle = await client.submit_background(
                function_name,
                payload,
                unique=unique,
                priority=priority,
            )
            if not handle:
                raise SubmissionError("Server returned an empty job handle")
        except SubmissionError as e:
            metrics.record_submission(function_name, success=False)
            logger.error(
                "Background submission failed",
                extra={"function": function_name, "error": str(e)},
            )
            raise

        span.set_attribute("job_handle", handle)

    metrics.record_submission(function_name, success=True)
    logger.info(
        "Background job submitted",
        extra={"function": function_name, "job_handle": handle, "priority": priority.value},
    )

    return handle
