"""
Status polling loop.

An explicit state machine over a job handle:

    RUNNING --(known, running)----> RUNNING   (wait, poll again)
    RUNNING --(known, not running)-> COMPLETED
    RUNNING --(not known)----------> UNKNOWN

A failed query is reported and downgrades the exit disposition, and the
decision is then taken on the last successfully reported flags. A job that
is known but not running may be finished or may never have started; the
protocol does not tell these apart and neither does the poller.
"""

import asyncio
import logging
import time
from collections.abc import Callable

from bgjob.client.base import JobQueueClient
from bgjob.constants import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    SPAN_POLL_JOB,
    SPAN_QUERY_STATUS,
    TERMINAL_STATES,
    PollState,
)
from bgjob.errors import ConfigurationError, QueryError
from bgjob.observability.metrics import get_metrics
from bgjob.observability.tracing import get_tracer
from bgjob.types.job import ExitDisposition, JobHandle, PollResult, ProgressReport

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressReport], None]
ErrorCallback = Callable[[QueryError], None]


class StatusPoller:
    """
    Polls one background job until it completes or the server forgets it.

    There is no iteration cap and no overall deadline; each query is bounded
    only by the client's per-call timeout. Cancelling the task running
    ``run()`` interrupts the wait between polls immediately.
    """

    def __init__(
        self,
        client: JobQueueClient,
        handle: JobHandle,
        *,
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
        disposition: ExitDisposition | None = None,
    ):
        """
        Initialize the poller.

        Args:
            client: Client session the job was submitted through.
            handle: Handle returned by a successful submission.
            interval: Seconds to wait between polls while the job runs.
            on_progress: Called with every successfully received report.
            on_error: Called with every failed query.
            disposition: Exit disposition to downgrade on failures.
        """
        if not handle:
            raise ConfigurationError("Cannot poll without a job handle")
        if interval < 0:
            raise ConfigurationError(f"Poll interval must not be negative: {interval}")

        self.handle = handle
        self.interval = interval
        self.disposition = disposition if disposition is not None else ExitDisposition()
        self.state = PollState.RUNNING

        self._client = client
        self._on_progress = on_progress
        self._on_error = on_error
        self._metrics = get_metrics()

        self._iterations = 0
        self._failed_queries = 0
        self._ever_known = False
        self._last_report: ProgressReport | None = None
        # Flags used for the next decision; assume running until told otherwise
        self._known = True
        self._running = True

    @property
    def is_finished(self) -> bool:
        return self.state in TERMINAL_STATES

    async def poll_once(self) -> PollState:
        """
        Run a single query-and-decide step.

        Returns:
            The state after this step.

        Raises:
            RuntimeError: If the poller already reached a terminal state.
        """
        if self.is_finished:
            raise RuntimeError(f"Polling of {self.handle} already finished: {self.state}")

        self._iterations += 1

        with get_tracer().start_as_current_span(SPAN_QUERY_STATUS) as span:
            span.set_attribute("job_handle", self.handle)
            span.set_attribute("iteration", self._iterations)
            try:
                report = await self._client.job_status(self.handle)
            except QueryError as e:
                span.record_exception(e)
                self._record_failure(e)
            else:
                self._record_report(report)

        self.state = self._decide()
        return self.state

    async def run(self) -> PollResult:
        """
        Poll until a terminal state is reached.

        Returns:
            PollResult describing how polling ended.
        """
        started = time.monotonic()

        with get_tracer().start_as_current_span(SPAN_POLL_JOB) as span:
            span.set_attribute("job_handle", self.handle)

            while await self.poll_once() == PollState.RUNNING:
                await asyncio.sleep(self.interval)

            span.set_attribute("state", self.state.value)
            span.set_attribute("iterations", self._iterations)

        if not self._ever_known:
            self.disposition.downgrade(f"Server never reported job {self.handle} as known")

        self._metrics.record_poll_finished(
            state=self.state.value,
            iterations=self._iterations,
            duration_seconds=time.monotonic() - started,
        )
        logger.info(
            "Polling finished",
            extra={
                "job_handle": self.handle,
                "state": self.state.value,
                "iterations": self._iterations,
                "failed_queries": self._failed_queries,
            },
        )

        return self.result()

    def result(self) -> PollResult:
        """Snapshot of the polling outcome so far."""
        return PollResult(
            handle=self.handle,
            state=self.state,
            iterations=self._iterations,
            failed_queries=self._failed_queries,
            ever_known=self._ever_known,
            last_report=self._last_report,
        )

    def _record_report(self, report: ProgressReport) -> None:
        self._metrics.record_status_query(success=True)
        self._last_report = report
        self._known = report.is_known
        self._running = report.is_running
        if report.is_known:
            self._ever_known = True

        logger.debug(
            "Job status",
            extra={
                "job_handle": self.handle,
                "known": report.is_known,
                "running": report.is_running,
                "numerator": report.numerator,
                "denominator": report.denominator,
            },
        )
        if self._on_progress is not None:
            self._on_progress(report)

    def _record_failure(self, error: QueryError) -> None:
        self._metrics.record_status_query(success=False)
        self._failed_queries += 1
        self.disposition.downgrade(f"Status query failed: {error}")

        logger.warning(
            "Status query failed",
            extra={"job_handle": self.handle, "iteration": self._iterations, "error": str(error)},
        )
        if self._on_error is not None:
            self._on_error(error)

    def _decide(self) -> PollState:
        if not self._known:
            return PollState.UNKNOWN
        if not self._running:
            return PollState.COMPLETED
        return PollState.RUNNING
