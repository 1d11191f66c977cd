"""RTP headers and H.264 packetisation (single NAL unit and FU-A)."""

from __future__ import annotations

import dataclasses
import socket
import struct
from collections.abc import Iterator
from dataclasses import dataclass

IP_V4_HEADER_SIZE = 20
UDP_HEADER_SIZE = 8
RTP_HEADER_SIZE = 12
RTP_VERSION = 2
RTP_PAYLOAD_TYPE_H264 = 96
FU_SIZE = 2

MAX_UDP_PACKET_SIZE = 65535
MAX_RTP_DATA_SIZE = (
    MAX_UDP_PACKET_SIZE - IP_V4_HEADER_SIZE - UDP_HEADER_SIZE - RTP_HEADER_SIZE - FU_SIZE
)
MAX_RTP_PACKET_LEN = MAX_RTP_DATA_SIZE + RTP_HEADER_SIZE + FU_SIZE

NALU_NRI_MASK = 0x60
NALU_F_NRI_MASK = 0xE0
NALU_TYPE_MASK = 0x1F
FU_S_MASK = 0x80
FU_E_MASK = 0x40
SET_FU_A_MASK = 0x1C

FRAME_WIDTH = 800
FRAME_HEIGHT = 600

# Ports of the camera streaming server.
SERVER_RTP_PORT = 12345
SERVER_RTCP_PORT = SERVER_RTP_PORT + 1
SERVER_RTSP_PORT = 8554

# Ports of the server that streams a recorded file.
FILE_SERVER_RTP_PORT = 12354
FILE_SERVER_RTCP_PORT = FILE_SERVER_RTP_PORT + 1
FILE_SERVER_RTSP_PORT = 7554

_HEADER_STRUCT = struct.Struct("!BBHII")


@dataclass(frozen=True)
class RtpHeader:
    """The fixed 12-byte RTP header."""

    seq: int = 0
    timestamp: int = 0
    ssrc: int = 0
    version: int = RTP_VERSION
    padding: int = 0
    extension: int = 0
    csrc_count: int = 0
    marker: int = 0
    payload_type: int = RTP_PAYLOAD_TYPE_H264

    def __post_init__(self) -> None:
        limits = {
            "seq": 0xFFFF,
            "timestamp": 0xFFFFFFFF,
            "ssrc": 0xFFFFFFFF,
            "version": 0x3,
            "padding": 0x1,
            "extension": 0x1,
            "csrc_count": 0xF,
            "marker": 0x1,
            "payload_type": 0x7F,
        }
        for name, limit in limits.items():
            value = getattr(self, name)
            if not 0 <= value <= limit:
                raise ValueError(f"{name} out of range: {value}")

    def pack(self) -> bytes:
        """Serialise to network byte order."""
        first = (
            (self.version << 6)
            | (self.padding << 5)
            | (self.extension << 4)
            | self.csrc_count
        )
        second = (self.marker << 7) | self.payload_type
        return _HEADER_STRUCT.pack(first, second, self.seq, self.timestamp, self.ssrc)

    @classmethod
    def unpack(cls, data: bytes) -> RtpHeader:
        """Read a header from the first 12 bytes of ``data``."""
        if len(data) < RTP_HEADER_SIZE:
            raise ValueError(f"RTP header needs {RTP_HEADER_SIZE} bytes, got {len(data)}")
        first, second, seq, timestamp, ssrc = _HEADER_STRUCT.unpack_from(data)
        return cls(
            seq=seq,
            timestamp=timestamp,
            ssrc=ssrc,
            version=first >> 6,
            padding=(first >> 5) & 0x1,
            extension=(first >> 4) & 0x1,
            csrc_count=first & 0xF,
            marker=second >> 7,
            payload_type=second & 0x7F,
        )


def fragment_nalu(nalu: bytes) -> list[bytes]:
    """Split a NAL unit (without start code) into RTP payloads.

    A unit that fits is sent whole; a larger one becomes FU-A fragments.
    """
    if not nalu:
        raise ValueError("empty NAL unit")
    if len(nalu) <= MAX_RTP_DATA_SIZE:
        return [bytes(nalu)]
    header = nalu[0]
    indicator = (header & NALU_F_NRI_MASK) | SET_FU_A_MASK
    nal_type = header & NALU_TYPE_MASK
    body = memoryview(nalu)[1:]
    chunks = [body[i:i + MAX_RTP_DATA_SIZE] for i in range(0, len(body), MAX_RTP_DATA_SIZE)]
    payloads = []
    for index, chunk in enumerate(chunks):
        fu_header = nal_type
        if index == 0:
            fu_header |= FU_S_MASK
        elif index == len(chunks) - 1:
            fu_header |= FU_E_MASK
        payloads.append(bytes((indicator, fu_header)) + bytes(chunk))
    return payloads


class RtpPacketizer:
    """Builds consecutive RTP packets, advancing sequence and timestamp."""

    def __init__(self, header: RtpHeader) -> None:
        self.header = header

    @property
    def seq(self) -> int:
        return self.header.seq

    @property
    def timestamp(self) -> int:
        return self.header.timestamp

    def build(self, payload: bytes, timestamp_step: int) -> bytes:
        """Return one packet and advance the header for the next one."""
        packet = self.header.pack() + bytes(payload)
        self.header = dataclasses.replace(
            self.header,
            seq=(self.header.seq + 1) & 0xFFFF,
            timestamp=(self.header.timestamp + timestamp_step) & 0xFFFFFFFF,
        )
        return packet

    def packets(self, nalu: bytes, timestamp_step: int) -> Iterator[bytes]:
        """Yield the packets that carry one NAL unit."""
        for payload in fragment_nalu(nalu):
            yield self.build(payload, timestamp_step)

    def send(
        self,
        sock: socket.socket,
        address: tuple[str, int],
        nalu: bytes,
        timestamp_step: int,
    ) -> int:
        """Send one NAL unit to ``address``; return the bytes sent."""
        return sum(sock.sendto(packet, address) for packet in self.packets(nalu, timestamp_step))