"""
Gearman job-queue client.

Holds one TCP connection at a time. Submissions go to the first registered
server that accepts a connection, preferring the one the session last
talked to. Job handles are only meaningful to the server that issued them,
so status queries for a handle submitted through this session are only
ever sent to that server; if it is unreachable the query fails.
"""

import asyncio
import logging
from uuid import uuid4

from bgjob.client import protocol
from bgjob.client.base import JobQueueClient
from bgjob.client.protocol import Packet, PacketType
from bgjob.constants import DEFAULT_PRIORITY, JobPriority
from bgjob.errors import (
    JobQueueError,
    ProtocolError,
    QueryError,
    ServerConnectionError,
    SubmissionError,
)
from bgjob.types.job import JobHandle, ProgressReport, ServerAddress

logger = logging.getLogger(__name__)


class GearmanClient(JobQueueClient):
    """Background submission and status polling over the Gearman protocol."""

    def __init__(self) -> None:
        super().__init__()
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._home: ServerAddress | None = None
        self._issuers: dict[JobHandle, ServerAddress] = {}

    @property
    def connected_server(self) -> ServerAddress | None:
        """Server the session is currently connected to."""
        return self._home if self._writer is not None else None

    def issuer_of(self, handle: JobHandle) -> ServerAddress | None:
        """Server that issued a handle submitted through this session."""
        return self._issuers.get(handle)

    def _candidates(self, pinned: ServerAddress | None) -> list[ServerAddress]:
        if pinned is not None:
            return [pinned]
        if self._home is None:
            return self.servers
        return [self._home] + [s for s in self._servers if s != self._home]

    async def _connect(self, pinned: ServerAddress | None = None) -> None:
        if self._writer is not None:
            if pinned is None or pinned == self._home:
                return
            await self._disconnect()

        if not self._servers:
            raise ServerConnectionError("no servers available")

        failures = []
        for server in self._candidates(pinned):
            try:
                self._reader, self._writer = await asyncio.open_connection(
                    server.host, server.port
                )
            except OSError as e:
                logger.info(
                    "Could not connect to server",
                    extra={"server": str(server), "error": str(e)},
                )
                failures.append(f"{server}: {e.strerror or e}")
                continue

            self._home = server
            logger.debug("Connected to server", extra={"server": str(server)})
            return

        if pinned is not None:
            raise ServerConnectionError(
                f"could not reach issuing server ({'; '.join(failures)})"
            )
        raise ServerConnectionError(
            "could not connect to any server (" + "; ".join(failures) + ")"
        )

    async def _exchange(
        self,
        packet: Packet,
        expected: PacketType,
        pinned: ServerAddress | None,
    ) -> Packet:
        await self._connect(pinned)
        reader, writer = self._reader, self._writer
        if reader is None or writer is None:
            raise ServerConnectionError("no open connection")

        writer.write(packet.encode())
        await writer.drain()

        while True:
            response = await protocol.read_packet(reader)
            if response.type == PacketType.NOOP:
                continue
            if response.type == PacketType.ERROR:
                raise JobQueueError(protocol.parse_error(response))
            if response.type != expected:
                raise ProtocolError(
                    f"Expected {expected.name}, server sent {response.type.name}"
                )
            return response

    async def _request(
        self,
        packet: Packet,
        expected: PacketType,
        pinned: ServerAddress | None = None,
    ) -> Packet:
        """
        Send one request and wait for its response within the call timeout.

        Any failure drops the connection so the next call starts clean.
        """
        try:
            return await self._call(self._exchange(packet, expected, pinned))
        except TimeoutError:
            await self._disconnect()
            raise JobQueueError(f"timed out after {self.timeout_ms} ms") from None
        except asyncio.IncompleteReadError:
            await self._disconnect()
            raise JobQueueError("connection closed by server") from None
        except OSError as e:
            await self._disconnect()
            raise JobQueueError(f"lost connection to {self._home}: {e}") from e
        except ProtocolError:
            await self._disconnect()
            raise
    async def submit_background(
        self,
        function_name: str,
        payload: bytes,
        *,
        unique: str | None = None,
        priority: JobPriority = DEFAULT_PRIORITY,
    ) -> JobHandle:
        packet = protocol.request(
            protocol.SUBMIT_BACKGROUND_TYPES[priority],
            function_name.encode("utf-8"),
            (unique or uuid4().hex).encode("utf-8"),
            payload,
        )
        try:
            response = await self._request(packet, PacketType.JOB_CREATED)
        except JobQueueError as e:
            raise SubmissionError(str(e)) from e

        handle = JobHandle(response.args[0].decode("utf-8", errors="replace"))
        if self._home is not None:
            self._issuers[handle] = self._home
        return handle

    async def job_status(self, handle: JobHandle) -> ProgressReport:
        packet = protocol.request(PacketType.GET_STATUS, handle.encode("utf-8"))
        try:
            response = await self._request(
                packet, PacketType.STATUS_RES, pinned=self._issuers.get(handle)
            )
        except QueryError:
            raise
        except JobQueueError as e:
            raise QueryError(str(e)) from e

        returned = response.args[0].decode("utf-8", errors="replace")
        if returned != handle:
            raise ProtocolError(f"Status response for {returned!r}, asked for {handle!r}")

        return protocol.parse_status(response)

    async def _disconnect(self) -> None:
        writer, self._reader, self._writer = self._writer, None, None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            logger.debug("Error while closing connection", exc_info=True)

    async def close(self) -> None:
        await self._disconnect()

