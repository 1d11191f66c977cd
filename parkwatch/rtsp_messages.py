"""Parsing RTSP requests and building the server's RTSP replies."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass

from parkwatch.rtp import SERVER_RTCP_PORT, SERVER_RTP_PORT

_CSEQ_RE = re.compile(r"CSeq:\s*([+-]?\d+)")
_TRANSPORT_RE = re.compile(
    r"Transport:\s*RTP/AVP/UDP;unicast;client_port=\s*([+-]?\d+)(?:-\s*([+-]?\d+))?"
)
_DESCRIBE_HOST_RE = re.compile(r"rtsp://([^:]+)")


class RtspParseError(ValueError):
    """Raised when an RTSP request cannot be understood."""


@dataclass(frozen=True)
class RtspRequest:
    """The parts of a client request the server acts on."""

    method: str
    url: str
    version: str
    cseq: int
    client_rtp_port: int | None = None
    client_rtcp_port: int | None = None


def split_first_line(text: str) -> tuple[str, str | None]:
    """Split off the first line, keeping its ``\\n``.

    The rest is None when the text holds no newline at all.
    """
    end = text.find("\n")
    if end < 0:
        return text, None
    return text[: end + 1], text[end + 1 :]


def parse_request(text: str) -> RtspRequest:
    """Parse the request line, the CSeq header and, for SETUP, the client ports."""
    text = text.split("\0", 1)[0]
    line, rest = split_first_line(text)
    tokens = line.split()
    if rest is None or len(tokens) < 3:
        raise RtspParseError("cannot parse the request line")
    method, url, version = tokens[:3]

    cseq_match = _CSEQ_RE.search(text)
    if cseq_match is None:
        raise RtspParseError("cannot parse CSeq")
    cseq = int(cseq_match.group(1))

    rtp_port: int | None = None
    rtcp_port: int | None = None
    if method == "SETUP":
        position = text.find("Transport:")
        if position < 0:
            raise RtspParseError("SETUP request without a Transport header")
        transport = _TRANSPORT_RE.match(text, position)
        if transport is not None:
            rtp_port = int(transport.group(1))
            if transport.group(2) is not None:
                rtcp_port = int(transport.group(2))

    return RtspRequest(
        method=method,
        url=url,
        version=version,
        cseq=cseq,
        client_rtp_port=rtp_port,
        client_rtcp_port=rtcp_port,
    )


def reply_options(cseq: int) -> str:
    """Reply to OPTIONS with the supported methods."""
    return (
        "RTSP/1.0 200 OK\r\n"
        f"CSeq: {cseq}\r\n"
        "Public: OPTIONS, DESCRIBE, SETUP, PLAY\r\n\r\n"
    )


def reply_setup(
    cseq: int,
    client_rtp_port: int,
    ssrc: int,
    session_id: str,
    timeout: int,
    server_rtp_port: int = SERVER_RTP_PORT,
    server_rtcp_port: int = SERVER_RTCP_PORT,
) -> str:
    """Reply to SETUP with the transport and session of the stream."""
    return (
        "RTSP/1.0 200 OK\r\n"
        f"CSeq: {cseq}\r\n"
        f"Transport: RTP/AVP;unicast;client_port={client_rtp_port}-{client_rtp_port + 1};"
        f"server_port={server_rtp_port}-{server_rtcp_port};ssrc={ssrc};mode=play\r\n"
        f"Session: {session_id}; timeout={timeout}\r\n\r\n"
    )


def reply_play(cseq: int, session_id: str, timeout: int) -> str:
    """Reply to PLAY."""
    return (
        "RTSP/1.0 200 OK\r\n"
        f"CSeq: {cseq}\r\n"
        "Range: npt=0.000-\r\n"
        f"Session: {session_id}; timeout={timeout}\r\n\r\n"
    )


def reply_heartbeat(cseq: int, session_id: str) -> str:
    """Reply to a keep-alive."""
    return (
        "RTSP/1.0 200 OK\r\n"
        f"CSeq: {cseq}\r\n"
        "Range: npt=0.000-\r\n"
        f"Heartbeat: {session_id}; \r\n\r\n"
    )


def reply_describe(cseq: int, url: str, now: int | None = None) -> str:
    """Reply to DESCRIBE with an SDP description of one H.264 track."""
    if now is None:
        now = int(time.time())
    host_match = _DESCRIBE_HOST_RE.match(url)
    host = host_match.group(1) if host_match else ""
    sdp = (
        "v=0\r\n"
        f"o=- 9{now} 1 IN IP4 {host}\r\n"
        "t=0 0\r\n"
        "a=control:*\r\n"
        "m=video 0 RTP/AVP 96\r\n"
        "a=rtpmap:96 H264/90000\r\n"
        "a=control:track0\r\n"
    )
    return (
        "RTSP/1.0 200 OK\r\n"
        f"CSeq: {cseq}\r\n"
        f"Content-Base: {url}\r\n"
        "Content-type: application/sdp\r\n"
        f"Content-length: {len(sdp.encode('utf-8'))}\r\n\r\n"
        f"{sdp}"
    )