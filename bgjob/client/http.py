"""
REST job-queue client.

Maps the job API onto the background job model: the job id is the handle,
a 404 means the server no longer knows the job, and any non-terminal
status counts as running.
"""

import base64
import logging
from typing import Any
from uuid import uuid4

import httpx
from pydantic import ValidationError

from bgjob.client.base import JobQueueClient
from bgjob.constants import (
    ACTIVE_JOB_STATUSES,
    API_V1_PREFIX,
    DEFAULT_PRIORITY,
    IDEMPOTENCY_KEY_HEADER,
    JobPriority,
)
from bgjob.errors import (
    JobQueueError,
    ProtocolError,
    QueryError,
    ServerConnectionError,
    SubmissionError,
)
from bgjob.types.api import CreateJobRequest, CreateJobResponse, JobStatusResponse
from bgjob.types.job import JobHandle, ProgressReport, ServerAddress

logger = logging.getLogger(__name__)

JOBS_PATH = f"{API_V1_PREFIX}/jobs"


def _error_detail(response: httpx.Response) -> str:
    """Extract the server's error text from a failed response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("error")
        if detail:
            return f"HTTP {response.status_code}: {detail}"
    return f"HTTP {response.status_code}: {response.reason_phrase}"


def encode_payload(function_name: str, payload: bytes) -> dict[str, Any]:
    """Wrap raw workload bytes into the API's job payload structure."""
    return {
        "job_type": function_name,
        "data": {
            "encoding": "base64",
            "workload": base64.b64encode(payload).decode("ascii"),
        },
    }


class HttpJobQueueClient(JobQueueClient):
    """Background submission and status polling over the REST job API."""

    def __init__(
        self,
        api_token: str | None = None,
        scheme: str = "http",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__()
        self._api_token = api_token
        self._scheme = scheme
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._home: ServerAddress | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self._api_token:
                headers["Authorization"] = f"Bearer {self._api_token}"
            kwargs: dict[str, Any] = {"headers": headers, "transport": self._transport}
            if self.timeout_seconds is not None:
                kwargs["timeout"] = self.timeout_seconds
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    def _candidates(self) -> list[ServerAddress]:
        if self._home is None:
            return self.servers
        return [self._home]

    def _url(self, server: ServerAddress, path: str) -> str:
        host = f"[{server.host}]" if ":" in server.host else server.host
        return f"{self._scheme}://{host}:{server.port}{path}"

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request to the first reachable server.

        Once a server has answered, the session sticks to it because job
        ids are only meaningful to the server that issued them.
        """
        if not self._servers:
            raise ServerConnectionError("no servers available")

        client = self._get_client()
        failures = []
        for server in self._candidates():
            try:
                response = await client.request(method, self._url(server, path), **kwargs)
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                logger.info(
                    "Could not connect to server",
                    extra={"server": str(server), "error": str(e)},
                )
                failures.append(f"{server}: {e}")
                continue
            except httpx.TimeoutException:
                raise JobQueueError(f"timed out after {self.timeout_ms} ms") from None
            except httpx.HTTPError as e:
                raise JobQueueError(f"request to {server} failed: {e}") from e

            self._home = server
            return response

        raise ServerConnectionError(
            "could not connect to any server (" + "; ".join(failures) + ")"
        )

    async def submit_background(
        self,
        function_name: str,
        payload: bytes,
        *,
        unique: str | None = None,
        priority: JobPriority = DEFAULT_PRIORITY,
    ) -> JobHandle:
        body = CreateJobRequest(payload=encode_payload(function_name, payload), priority=priority)
        try:
            response = await self._call(
                self._send(
                    "POST",
                    JOBS_PATH,
                    json=body.model_dump(mode="json"),
                    headers={IDEMPOTENCY_KEY_HEADER: unique or uuid4().hex},
                )
            )
        except TimeoutError:
            raise SubmissionError(f"timed out after {self.timeout_ms} ms") from None
        except JobQueueError as e:
            raise SubmissionError(str(e)) from e

        if response.status_code not in (httpx.codes.OK, httpx.codes.CREATED):
            raise SubmissionError(_error_detail(response))

        try:
            created = CreateJobResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise SubmissionError(f"Malformed submission response: {e}") from e

        return JobHandle(created.id)

    async def job_status(self, handle: JobHandle) -> ProgressReport:
        try:
            response = await self._call(self._send("GET", f"{JOBS_PATH}/{handle}"))
        except TimeoutError:
            raise QueryError(f"timed out after {self.timeout_ms} ms") from None
        except JobQueueError as e:
            raise QueryError(str(e)) from e

        if response.status_code == httpx.codes.NOT_FOUND:
            return ProgressReport(is_known=False, is_running=False)
        if response.status_code != httpx.codes.OK:
            raise QueryError(_error_detail(response))

        try:
            job = JobStatusResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ProtocolError(f"Malformed status response: {e}") from e

        return ProgressReport(
            is_known=True,
            is_running=job.status in ACTIVE_JOB_STATUSES,
            numerator=job.progress.numerator,
            denominator=job.progress.denominator,
        )

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()
