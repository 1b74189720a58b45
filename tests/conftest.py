"""
Pytest configuration and shared fixtures.
"""

from collections.abc import Callable, Iterable, Iterator

import pytest

from bgjob.client.base import JobQueueClient
from bgjob.config import Settings, get_settings
from bgjob.constants import DEFAULT_PRIORITY, JobPriority
from bgjob.observability.metrics import MetricsCollector, reset_metrics, setup_metrics
from bgjob.types.job import JobHandle, ProgressReport


class FakeJobQueueClient(JobQueueClient):
    """
    Scripted client.

    ``statuses`` is consumed one item per status query; an exception in the
    script is raised instead of returned. Querying past the end of the
    script fails the test.
    """

    def __init__(
        self,
        handle: str = "H:1",
        submit_error: Exception | None = None,
        statuses: Iterable[ProgressReport | Exception] = (),
        repeat_last: bool = False,
    ):
        super().__init__()
        self.handle = handle
        self.submit_error = submit_error
        self.statuses = list(statuses)
        self.repeat_last = repeat_last
        self.submissions: list[tuple[str, bytes, str | None, JobPriority]] = []
        self.queried: list[str] = []
        self.closed = False

    async def submit_background(
        self,
        function_name: str,
        payload: bytes,
        *,
        unique: str | None = None,
        priority: JobPriority = DEFAULT_PRIORITY,
    ) -> JobHandle:
        self.submissions.append((function_name, payload, unique, priority))
        if self.submit_error is not None:
            raise self.submit_error
        return JobHandle(self.handle)

    async def job_status(self, handle: JobHandle) -> ProgressReport:
        self.queried.append(handle)
        if not self.statuses:
            raise AssertionError(f"Unexpected status query #{len(self.queried)}")
        if self.repeat_last and len(self.statuses) == 1:
            item = self.statuses[0]
        else:
            item = self.statuses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def fresh_state() -> Iterator[None]:
    """Isolate the cached settings and the global metrics collector."""
    get_settings.cache_clear()
    reset_metrics()
    yield
    get_settings.cache_clear()
    reset_metrics()


@pytest.fixture
def metrics() -> MetricsCollector:
    """The metrics collector used by the code under test."""
    return setup_metrics()


@pytest.fixture
def fake_client() -> Callable[..., FakeJobQueueClient]:
    """Factory for scripted clients."""
    return FakeJobQueueClient


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        server_host="localhost",
        submit_function="reverse",
        poll_interval_seconds=0.001,
        log_level="DEBUG",
        log_format="console",
    )

