"""
Integration tests for the Gearman client against an in-process server.
"""

import asyncio
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from bgjob.client import protocol
from bgjob.client.gearman import GearmanClient
from bgjob.client.protocol import Packet, PacketType
from bgjob.constants import JobPriority, PollState
from bgjob.errors import QueryError, SubmissionError
from bgjob.poller import StatusPoller
from bgjob.types.job import ExitDisposition, JobHandle

SUBMIT_TYPES = set(protocol.SUBMIT_BACKGROUND_TYPES.values())

# (known, running, numerator, denominator)
Status = tuple[bool, bool, int, int]


def reply(packet_type: PacketType, *args: bytes) -> bytes:
    return Packet(magic=protocol.RES_MAGIC, type=packet_type, args=args).encode()


class FakeGearmanServer:
    """
    Minimal job server speaking the background submission subset.

    Each submitted job gets a status script; the last entry repeats. Unknown
    handles are reported as not known.
    """

    def __init__(self) -> None:
        self.received: list[Packet] = []
        self.scripts: dict[str, list[Status]] = {}
        self.default_script: list[Status] = [(True, False, 0, 0)]
        self.submit_error: tuple[bytes, bytes] | None = None
        self.status_error: tuple[bytes, bytes] | None = None
        self.drop_next_status = False
        self.silent = False
        self.port = 0
        self._jobs = 0
        self._server: asyncio.Server | None = None

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._serve, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        assert self._server is not None
        self._server.close()
        await self._server.wait_closed()

    async def _serve(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            while True:
                packet = await protocol.read_packet(reader)
                self.received.append(packet)
                if self.silent:
                    continue

                if packet.type in SUBMIT_TYPES:
                    writer.write(self._submit())
                elif packet.type == PacketType.GET_STATUS:
                    if self.drop_next_status:
                        self.drop_next_status = False
                        return
                    if self.status_error is not None:
                        writer.write(reply(PacketType.ERROR, *self.status_error))
                    else:
                        writer.write(self._status(packet.args[0].decode()))
                await writer.drain()
        except asyncio.IncompleteReadError:
            pass
        finally:
            writer.close()

    def _submit(self) -> bytes:
        if self.submit_error is not None:
            return reply(PacketType.ERROR, *self.submit_error)
        self._jobs += 1
        handle = f"H:fake:{self._jobs}"
        self.scripts[handle] = list(self.default_script)
        # Interleaved NOOPs are legal and must be skipped
        return reply(PacketType.NOOP) + reply(PacketType.JOB_CREATED, handle.encode())

    def _status(self, handle: str) -> bytes:
        script = self.scripts.get(handle)
        if not script:
            known, running, numerator, denominator = False, False, 0, 0
        else:
            known, running, numerator, denominator = script.pop(0) if len(script) > 1 else script[0]
        return reply(
            PacketType.STATUS_RES,
            handle.encode(),
            b"1" if known else b"0",
            b"1" if running else b"0",
            str(numerator).encode(),
            str(denominator).encode(),
        )


@pytest_asyncio.fixture
async def server() -> AsyncGenerator[FakeGearmanServer]:
    """Start a fake job server on a free port."""
    fake = FakeGearmanServer()
    await fake.start()
    yield fake
    await fake.stop()


@pytest_asyncio.fixture
async def client(server: FakeGearmanServer) -> AsyncGenerator[GearmanClient]:
    """Client registered against the fake server."""
    async with GearmanClient() as gearman:
        gearman.add_server("127.0.0.1", server.port)
        yield gearman


async def unused_port() -> int:
    """A local port with nothing listening on it."""
    listener = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = listener.sockets[0].getsockname()[1]
    listener.close()
    await listener.wait_closed()
    return port


class TestGearmanSubmission:
    """Background submission over the wire."""

    @pytest.mark.asyncio
    async def test_submit_background(self, server, client):
        handle = await client.submit_background("reverse", b"hello world", unique="uid-1")

        assert handle == "H:fake:1"
        packet = server.received[0]
        assert packet.type == PacketType.SUBMIT_JOB_BG
        assert packet.args == (b"reverse", b"uid-1", b"hello world")

    @pytest.mark.asyncio
    async def test_submit_generates_unique_key(self, server, client):
        await client.submit_background("reverse", b"x")

        assert server.received[0].args[1]

    @pytest.mark.asyncio
    async def test_submit_with_priority(self, server, client):
        await client.submit_background("reverse", b"x", priority=JobPriority.HIGH)
        await client.submit_background("reverse", b"x", priority=JobPriority.LOW)

        assert [p.type for p in server.received] == [
            PacketType.SUBMIT_JOB_HIGH_BG,
            PacketType.SUBMIT_JOB_LOW_BG,
        ]

    @pytest.mark.asyncio
    async def test_server_error_fails_submission(self, server, client):
        server.submit_error = (b"ERR_NO_WORKERS", b"No worker for function")

        with pytest.raises(SubmissionError, match="No worker for function"):
            await client.submit_background("reverse", b"x")

    @pytest.mark.asyncio
    async def test_no_servers_registered(self):
        async with GearmanClient() as gearman:
            with pytest.raises(SubmissionError, match="no servers available"):
                await gearman.submit_background("reverse", b"x")

    @pytest.mark.asyncio
    async def test_unreachable_server(self):
        async with GearmanClient() as gearman:
            gearman.add_server("127.0.0.1", await unused_port())

            with pytest.raises(SubmissionError, match="could not connect to any server"):
                await gearman.submit_background("reverse", b"x")

    @pytest.mark.asyncio
    async def test_fails_over_to_next_server(self, server):
        async with GearmanClient() as gearman:
            gearman.add_server("127.0.0.1", await unused_port())
            gearman.add_server("127.0.0.1", server.port)

            handle = await gearman.submit_background("reverse", b"x")

            assert handle == "H:fake:1"
            assert gearman.connected_server.port == server.port


class TestGearmanStatus:
    """Status queries over the wire."""

    @pytest.mark.asyncio
    async def test_status_of_running_job(self, server, client):
        server.default_script = [(True, True, 2, 5)]
        handle = await client.submit_background("reverse", b"x")

        report = await client.job_status(handle)

        assert report.is_known is True
        assert report.is_running is True
        assert (report.numerator, report.denominator) == (2, 5)

    @pytest.mark.asyncio
    async def test_status_of_unknown_handle(self, server, client):
        report = await client.job_status(JobHandle("H:fake:404"))

        assert report.is_known is False

    @pytest.mark.asyncio
    async def test_query_timeout(self, server, client):
        handle = await client.submit_background("reverse", b"x")
        server.silent = True
        client.set_timeout(50)

        with pytest.raises(QueryError, match="timed out after 50 ms"):
            await client.job_status(handle)

    @pytest.mark.asyncio
    async def test_reconnects_after_dropped_connection(self, server, client):
        server.default_script = [(True, True, 1, 2)]
        handle = await client.submit_background("reverse", b"x")
        server.drop_next_status = True

        with pytest.raises(QueryError, match="connection closed"):
            await client.job_status(handle)

        report = await client.job_status(handle)
        assert report.is_running is True

    @pytest.mark.asyncio
    async def test_server_error_fails_query(self, server, client):
        handle = await client.submit_background("reverse", b"x")
        server.status_error = (b"ERR_UNKNOWN", b"Status lookup failed")

        with pytest.raises(QueryError, match="Status lookup failed"):
            await client.job_status(handle)

    @pytest.mark.asyncio
    async def test_status_stays_on_issuing_server(self, server):
        """Queries for a submitted handle never fall over to another server."""
        other = FakeGearmanServer()
        await other.start()
        try:
            async with GearmanClient() as gearman:
                gearman.add_server("127.0.0.1", server.port)
                gearman.add_server("127.0.0.1", other.port)
                server.default_script = [(True, True, 1, 2)]
                handle = await gearman.submit_background("reverse", b"x")
                assert gearman.issuer_of(handle).port == server.port

                disposition = ExitDisposition()
                poller = StatusPoller(gearman, handle, interval=0, disposition=disposition)

                server.drop_next_status = True
                assert await poller.poll_once() == PollState.RUNNING
                await server.stop()
                assert await poller.poll_once() == PollState.RUNNING

                assert poller.result().failed_queries == 2
                assert disposition.success is False
                assert not any(p.type == PacketType.GET_STATUS for p in other.received)
        finally:
            await other.stop()


class TestGearmanEndToEnd:
    """Submission followed by polling against the fake server."""

    @pytest.mark.asyncio
    async def test_poll_until_completed(self, server, client):
        server.default_script = [(True, True, 1, 3), (True, True, 2, 3), (True, False, 3, 3)]
        handle = await client.submit_background("reverse", b"hello world")
        lines = []

        poller = StatusPoller(client, handle, interval=0, on_progress=lambda r: lines.append(r.describe()))
        result = await poller.run()

        assert result.state == PollState.COMPLETED
        assert poller.disposition.success is True
        assert lines == [
            "Known =true, Running=true, Percent Complete=1/3",
            "Known =true, Running=true, Percent Complete=2/3",
            "Known =true, Running=false, Percent Complete=3/3",
        ]

    @pytest.mark.asyncio
    async def test_dropped_query_fails_run_but_polling_continues(self, server, client):
        server.default_script = [(True, True, 1, 3), (True, False, 3, 3)]
        handle = await client.submit_background("reverse", b"hello world")
        disposition = ExitDisposition()
        poller = StatusPoller(client, handle, interval=0, disposition=disposition)

        assert await poller.poll_once() == PollState.RUNNING
        server.drop_next_status = True
        assert await poller.poll_once() == PollState.RUNNING
        assert await poller.poll_once() == PollState.COMPLETED

        assert disposition.success is False
        assert poller.result().failed_queries == 1
