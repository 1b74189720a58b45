"""
Gearman binary protocol codec.

Only the packets used for background submission and status polling are
implemented. Every packet is a 12 byte header (magic, type, size, all
big-endian) followed by NUL-separated arguments.
"""

import asyncio
import struct
from dataclasses import dataclass
from enum import IntEnum

from bgjob.constants import JobPriority
from bgjob.errors import ProtocolError
from bgjob.types.job import ProgressReport

REQ_MAGIC = b"\0REQ"
RES_MAGIC = b"\0RES"

HEADER = struct.Struct(">4sII")

# Largest packet body accepted from a server
MAX_PACKET_SIZE = 64 * 1024 * 1024


class PacketType(IntEnum):
    """Gearman packet type codes."""

    NOOP = 6
    JOB_CREATED = 8
    GET_STATUS = 15
    SUBMIT_JOB_BG = 18
    ERROR = 19
    STATUS_RES = 20
    SUBMIT_JOB_HIGH_BG = 32
    SUBMIT_JOB_LOW_BG = 34


# Number of NUL-separated arguments per packet type; the last one may
# itself contain NULs.
ARGUMENT_COUNTS: dict[PacketType, int] = {
    PacketType.NOOP: 0,
    PacketType.JOB_CREATED: 1,
    PacketType.GET_STATUS: 1,
    PacketType.SUBMIT_JOB_BG: 3,
    PacketType.ERROR: 2,
    PacketType.STATUS_RES: 5,
    PacketType.SUBMIT_JOB_HIGH_BG: 3,
    PacketType.SUBMIT_JOB_LOW_BG: 3,
}

SUBMIT_BACKGROUND_TYPES: dict[JobPriority, PacketType] = {
    JobPriority.LOW: PacketType.SUBMIT_JOB_LOW_BG,
    JobPriority.NORMAL: PacketType.SUBMIT_JOB_BG,
    JobPriority.HIGH: PacketType.SUBMIT_JOB_HIGH_BG,
}


@dataclass(frozen=True)
class Packet:
    """A decoded protocol packet."""

    magic: bytes
    type: PacketType
    args: tuple[bytes, ...]

    def encode(self) -> bytes:
        body = b"\0".join(self.args)
        return HEADER.pack(self.magic, self.type, len(body)) + body


def request(packet_type: PacketType, *args: bytes) -> Packet:
    """Build a request packet."""
    if len(args) != ARGUMENT_COUNTS[packet_type]:
        raise ValueError(
            f"{packet_type.name} takes {ARGUMENT_COUNTS[packet_type]} arguments, got {len(args)}"
        )
    return Packet(magic=REQ_MAGIC, type=packet_type, args=args)


def decode_header(header: bytes) -> tuple[bytes, PacketType, int]:
    """
    Decode a packet header.

    Raises:
        ProtocolError: On bad magic, unknown type or oversized body.
    """
    magic, type_code, size = HEADER.unpack(header)
    if magic not in (REQ_MAGIC, RES_MAGIC):
        raise ProtocolError(f"Bad packet magic: {magic!r}")
    try:
        packet_type = PacketType(type_code)
    except ValueError:
        raise ProtocolError(f"Unsupported packet type: {type_code}") from None
    if size > MAX_PACKET_SIZE:
        raise ProtocolError(f"Packet too large: {size} bytes")
    return magic, packet_type, size


def split_arguments(packet_type: PacketType, body: bytes) -> tuple[bytes, ...]:
    """Split a packet body into its arguments."""
    count = ARGUMENT_COUNTS[packet_type]
    if count == 0:
        if body:
            raise ProtocolError(f"{packet_type.name} packet must not carry data")
        return ()
    args = tuple(body.split(b"\0", count - 1))
    if len(args) != count:
        raise ProtocolError(
            f"{packet_type.name} packet has {len(args)} arguments, expected {count}"
        )
    return args


def decode(data: bytes) -> Packet:
    """Decode one complete packet from a byte string."""
    if len(data) < HEADER.size:
        raise ProtocolError("Truncated packet header")
    magic, packet_type, size = decode_header(data[:HEADER.size])
    body = data[HEADER.size:]
    if len(body) != size:
        raise ProtocolError(f"Packet body is {len(body)} bytes, header says {size}")
    return Packet(magic=magic, type=packet_type, args=split_arguments(packet_type, body))


async def read_packet(reader: asyncio.StreamReader) -> Packet:
    """
    Read one packet from a stream.

    Raises:
        asyncio.IncompleteReadError: If the peer closed the connection.
        ProtocolError: If the packet is malformed.
    """
    magic, packet_type, size = decode_header(await reader.readexactly(HEADER.size))
    body = await reader.readexactly(size) if size else b""
    return Packet(magic=magic, type=packet_type, args=split_arguments(packet_type, body))


def _parse_count(value: bytes, name: str) -> int:
    try:
        return int(value.decode("ascii") or "0")
    except (UnicodeDecodeError, ValueError):
        raise ProtocolError(f"Invalid {name} in status response: {value!r}") from None


def parse_status(packet: Packet) -> ProgressReport:
    """Convert a STATUS_RES packet into a progress report."""
    _, known, running, numerator, denominator = packet.args
    try:
        return ProgressReport(
            is_known=known == b"1",
            is_running=running == b"1",
            numerator=_parse_count(numerator, "numerator"),
            denominator=_parse_count(denominator, "denominator"),
        )
    except ValueError as e:
        raise ProtocolError(str(e)) from None


def parse_error(packet: Packet) -> str:
    """Render an ERROR packet as diagnostic text."""
    code, text = (arg.decode("utf-8", errors="replace") for arg in packet.args)
    return f"{text} ({code})" if code else text
