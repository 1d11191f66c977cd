import pytest

from parkwatch.rtp import (
    FU_E_MASK,
    FU_S_MASK,
    MAX_RTP_DATA_SIZE,
    MAX_RTP_PACKET_LEN,
    RTP_HEADER_SIZE,
    RTP_PAYLOAD_TYPE_H264,
    RTP_VERSION,
    RtpHeader,
    RtpPacketizer,
    fragment_nalu,
)


class _RecordingSocket:
    def __init__(self):
        self.sent = []

    def sendto(self, data, address):
        self.sent.append((data, address))
        return len(data)


def test_header_wire_bytes():
    header = RtpHeader(seq=1, timestamp=2, ssrc=3)
    assert header.pack() == b"\x80\x60\x00\x01\x00\x00\x00\x02\x00\x00\x00\x03"


def test_header_defaults():
    header = RtpHeader.unpack(RtpHeader().pack())
    assert header.version == RTP_VERSION
    assert header.payload_type == RTP_PAYLOAD_TYPE_H264
    assert header.marker == 0


def test_header_round_trip():
    header = RtpHeader(seq=65535, timestamp=4294967295, ssrc=20001102, marker=1,
                       padding=1, extension=1, csrc_count=15)
    packed = header.pack()
    assert len(packed) == RTP_HEADER_SIZE
    assert RtpHeader.unpack(packed) == header


def test_header_unpack_short():
    with pytest.raises(ValueError):
        RtpHeader.unpack(b"\x80\x60")


def test_header_out_of_range():
    with pytest.raises(ValueError):
        RtpHeader(seq=70000)


def test_small_nalu_single_payload():
    nalu = b"\x65" + b"\x11" * 100
    assert fragment_nalu(nalu) == [nalu]


def test_empty_nalu_rejected():
    with pytest.raises(ValueError):
        fragment_nalu(b"")


def test_fragmentation_flags_and_reassembly():
    nalu = b"\x65" + bytes(range(256)) * ((2 * MAX_RTP_DATA_SIZE) // 256 + 2)
    payloads = fragment_nalu(nalu)
    assert len(payloads) == 3
    assert all(p[0] == 0x7C for p in payloads)
    assert payloads[0][1] == 0x85
    assert payloads[0][1] & FU_S_MASK and not payloads[0][1] & FU_E_MASK
    assert not payloads[1][1] & (FU_S_MASK | FU_E_MASK)
    assert payloads[-1][1] & FU_E_MASK
    assert all(len(p) <= MAX_RTP_DATA_SIZE + 2 for p in payloads)
    assert b"".join(p[2:] for p in payloads) == nalu[1:]


def test_build_advances_header():
    packetizer = RtpPacketizer(RtpHeader(seq=10, timestamp=100, ssrc=7))
    first = packetizer.build(b"abc", 3000)
    second = packetizer.build(b"def", 3000)
    assert first[RTP_HEADER_SIZE:] == b"abc"
    assert RtpHeader.unpack(first).seq == 10
    assert RtpHeader.unpack(second).seq == 11
    assert RtpHeader.unpack(second).timestamp == RtpHeader.unpack(first).timestamp + 3000
    assert packetizer.seq == 12


def test_sequence_wraps():
    packetizer = RtpPacketizer(RtpHeader(seq=65535, timestamp=4294967295))
    packetizer.build(b"x", 1)
    assert packetizer.seq == 0
    assert packetizer.timestamp == 0


def test_send_large_nalu():
    nalu = b"\x41" + b"\x22" * (MAX_RTP_DATA_SIZE + 500)
    sock = _RecordingSocket()
    packetizer = RtpPacketizer(RtpHeader(ssrc=5))
    total = packetizer.send(sock, ("127.0.0.1", 9000), nalu, 3000)
    assert total == sum(len(data) for data, _ in sock.sent)
    assert len(sock.sent[0][0]) == MAX_RTP_PACKET_LEN
    assert [RtpHeader.unpack(d).seq for d, _ in sock.sent] == [0, 1]
    assert all(addr == ("127.0.0.1", 9000) for _, addr in sock.sent)


def test_packets_single_unit_length():
    nalu = b"\x67" + b"\x01" * 20
    packets = list(RtpPacketizer(RtpHeader()).packets(nalu, 3000))
    assert len(packets) == 1
    assert len(packets[0]) == len(nalu) + RTP_HEADER_SIZE
    assert packets[0][RTP_HEADER_SIZE:] == nalu