"""
Job-queue client interface.

A client is a session object: it owns the connections to the registered
servers for the duration of one run and is released with ``async with``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import TypeVar

from bgjob.constants import DEFAULT_PRIORITY, NO_TIMEOUT, JobPriority
from bgjob.errors import ServerConnectionError
from bgjob.types.job import JobHandle, ProgressReport, ServerAddress

logger = logging.getLogger(__name__)

T = TypeVar("T")


def parse_server(value: str, default_port: int) -> ServerAddress:
    """
    Parse a ``host``, ``host:port`` or ``[ipv6]:port`` server string.

    Raises:
        ServerConnectionError: If the host is empty or the port is invalid.
    """
    value = value.strip()
    host, port_text = value, None

    if value.startswith("["):
        end = value.find("]")
        if end == -1:
            raise ServerConnectionError(f"Invalid server address: {value!r}")
        host = value[1:end]
        rest = value[end + 1:]
        if rest:
            if not rest.startswith(":"):
                raise ServerConnectionError(f"Invalid server address: {value!r}")
            port_text = rest[1:]
    elif value.count(":") == 1:
        host, port_text = value.split(":")

    if port_text is None:
        return make_address(host, default_port)

    try:
        port = int(port_text)
    except ValueError:
        raise ServerConnectionError(f"Invalid port in server address: {value!r}") from None
    return make_address(host, port)


def make_address(host: str, port: int) -> ServerAddress:
    """Validate a host/port pair."""
    if not host:
        raise ServerConnectionError("Server host must not be empty")
    if not 0 < port < 65536:
        raise ServerConnectionError(f"Invalid port for {host}: {port}")
    return ServerAddress(host=host, port=port)


class JobQueueClient(ABC):
    """
    Abstract job-queue client session.

    Subclasses implement the wire protocol; this class keeps the server
    list and the per-call timeout shared by all of them.
    """

    def __init__(self) -> None:
        self._servers: list[ServerAddress] = []
        self._timeout_ms = NO_TIMEOUT

    @property
    def servers(self) -> list[ServerAddress]:
        return list(self._servers)

    def add_server(self, host: str, port: int) -> ServerAddress:
        """
        Register a job-queue server.

        Servers are tried in registration order.

        Raises:
            ServerConnectionError: If the address is invalid.
        """
        address = make_address(host, port)
        if address not in self._servers:
            self._servers.append(address)
            logger.debug("Registered server", extra={"server": str(address)})
        return address

    def set_timeout(self, milliseconds: int) -> None:
        """
        Set the per-call timeout for all subsequent calls.

        A negative value keeps the client default.
        """
        if milliseconds < 0:
            return
        self._timeout_ms = milliseconds

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    @property
    def timeout_seconds(self) -> float | None:
        """Per-call timeout in seconds, or None for the client default."""
        if self._timeout_ms < 0:
            return None
        return self._timeout_ms / 1000

    async def _call(self, awaitable: Awaitable[T]) -> T:
        """Await a single network call, bounded by the per-call timeout."""
        return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)

    @abstractmethod
    async def submit_background(
        self,
        function_name: str,
        payload: bytes,
        *,
        unique: str | None = None,
        priority: JobPriority = DEFAULT_PRIORITY,
    ) -> JobHandle:
        """
        Submit a job for background execution.

        Returns:
            The server-issued job handle.

        Raises:
            SubmissionError: If the job was not accepted.
        """

    @abstractmethod
    async def job_status(self, handle: JobHandle) -> ProgressReport:
        """
        Query the status of a background job.

        Raises:
            QueryError: If the query itself failed.
        """

    @abstractmethod
    async def close(self) -> None:
        """Release all connections held by the session."""

    async def __aenter__(self) -> "JobQueueClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
