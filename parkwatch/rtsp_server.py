"""A single-client RTSP server that streams an H.264 file over RTP/UDP."""

from __future__ import annotations

import argparse
import logging
import socket
import time

from parkwatch.h264 import H264FormatError, H264Parser, start_code_length
from parkwatch.rtp import (
    FILE_SERVER_RTCP_PORT,
    FILE_SERVER_RTP_PORT,
    FILE_SERVER_RTSP_PORT,
    MAX_UDP_PACKET_SIZE,
    RtpHeader,
    RtpPacketizer,
)
from parkwatch.rtsp_messages import (
    RtspParseError,
    parse_request,
    reply_describe,
    reply_options,
    reply_play,
    reply_setup,
)

log = logging.getLogger(__name__)

_RECV_SIZE = 1024
_LISTEN_BACKLOG = 5


def _make_socket(kind: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, kind)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF, MAX_UDP_PACKET_SIZE)
    return sock


class RtspServer:
    """Answers one RTSP client and streams the parser's NAL units on PLAY."""

    def __init__(
        self,
        parser: H264Parser,
        host: str = "0.0.0.0",
        rtsp_port: int = FILE_SERVER_RTSP_PORT,
        rtp_port: int = FILE_SERVER_RTP_PORT,
        rtcp_port: int = FILE_SERVER_RTCP_PORT,
    ) -> None:
        self.parser = parser
        self.host = host
        self.rtsp_port = rtsp_port
        self.rtp_port = rtp_port
        self.rtcp_port = rtcp_port
        self._rtsp_sock: socket.socket | None = None
        self._rtp_sock: socket.socket | None = None
        self._rtcp_sock: socket.socket | None = None
        self._client_rtp_port = -1
        self._client_rtcp_port = -1

    def start(
        self,
        ssrc: int,
        session_id: str,
        timeout: int,
        fps: float = 30.0,
    ) -> None:
        """Bind the RTSP, RTP and RTCP sockets, accept one client and serve it."""
        self._rtsp_sock = _make_socket(socket.SOCK_STREAM)
        self._rtsp_sock.bind((self.host, self.rtsp_port))
        self._rtsp_sock.listen(_LISTEN_BACKLOG)

        self._rtp_sock = _make_socket(socket.SOCK_DGRAM)
        self._rtp_sock.bind((self.host, self.rtp_port))

        self._rtcp_sock = _make_socket(socket.SOCK_DGRAM)
        self._rtcp_sock.bind((self.host, self.rtcp_port))

        print(f"rtsp://127.0.0.1:{self.rtsp_port}", flush=True)

        try:
            conn, address = self._rtsp_sock.accept()
        except OSError as error:
            log.error("accept failed: %s", error)
            return
        log.info("Connection from %s:%d", address[0], address[1])
        self.serve_client(conn, address, ssrc, session_id, timeout, fps)

    def serve_client(
        self,
        conn: socket.socket,
        address: tuple[str, int],
        ssrc: int,
        session_id: str,
        timeout: int,
        fps: float = 30.0,
    ) -> None:
        """Answer requests on ``conn`` until PLAY has streamed or the dialogue ends."""
        try:
            while True:
                try:
                    data = conn.recv(_RECV_SIZE)
                except OSError as error:
                    log.error("recv failed: %s", error)
                    break
                if not data:
                    break
                text = data.decode("utf-8", errors="replace")
                log.debug("C->S\n%s", text)

                try:
                    request = parse_request(text)
                except RtspParseError as error:
                    log.error("%s", error)
                    break

                if request.method == "SETUP":
                    if request.client_rtp_port is not None:
                        self._client_rtp_port = request.client_rtp_port
                    if request.client_rtcp_port is not None:
                        self._client_rtcp_port = request.client_rtcp_port

                reply = self._reply(request.method, request.cseq, request.url,
                                    ssrc, session_id, timeout)
                if reply is None:
                    log.error("Unsupported method: %s", request.method)
                    break

                log.debug("S->C\n%s", reply)
                try:
                    conn.sendall(reply.encode("utf-8"))
                except OSError as error:
                    log.error("send failed: %s", error)
                    break

                if request.method == "PLAY":
                    self._stream(address, ssrc, fps)
                    break
        finally:
            log.info("finish")
            conn.close()

    def _reply(
        self,
        method: str,
        cseq: int,
        url: str,
        ssrc: int,
        session_id: str,
        timeout: int,
    ) -> str | None:
        if method == "OPTIONS":
            return reply_options(cseq)
        if method == "DESCRIBE":
            return reply_describe(cseq, url)
        if method == "SETUP":
            return reply_setup(cseq, self._client_rtp_port, ssrc, session_id, timeout,
                               self.rtp_port, self.rtcp_port)
        if method == "PLAY":
            return reply_play(cseq, session_id, timeout)
        return None

    def _stream(self, address: tuple[str, int], ssrc: int, fps: float) -> None:
        port = self._client_rtp_port
        if not 0 < port <= 0xFFFF:
            log.error("no valid client RTP port to stream to: %d", port)
            return
        if self._rtp_sock is None:
            self._rtp_sock = _make_socket(socket.SOCK_DGRAM)
        target = (address[0], port)
        log.info("start send stream to %s:%d", *target)

        timestamp_step = int(90000 / fps)
        sleep_period = int(1000 * 1000 / fps) / 1_000_000
        packetizer = RtpPacketizer(RtpHeader(seq=0, timestamp=0, ssrc=ssrc))

        while True:
            try:
                frame = self.parser.next_frame()
            except H264FormatError as error:
                log.error("reading the next frame failed: %s", error)
                return
            if frame is None:
                log.info("Finish serving the user")
                return
            nalu = frame[start_code_length(frame):]
            if nalu:
                try:
                    packetizer.send(self._rtp_sock, target, nalu, timestamp_step)
                except OSError as error:
                    log.error("RTP send failed: %s", error)
            else:
                log.warning("skipping an empty NAL unit")
            time.sleep(sleep_period)

    def close(self) -> None:
        """Close every socket the server opened."""
        for sock in (self._rtcp_sock, self._rtp_sock, self._rtsp_sock):
            if sock is not None:
                sock.close()
        self._rtcp_sock = self._rtp_sock = self._rtsp_sock = None

    def __enter__(self) -> RtspServer:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def main(argv: list[str] | None = None) -> int:
    """Stream one H.264 file to the first RTSP client that connects."""
    arg_parser = argparse.ArgumentParser(description="Stream an H.264 file over RTSP.")
    arg_parser.add_argument("path", help="Annex B .h264 file to stream")
    args = arg_parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    try:
        parser = H264Parser.from_file(args.path)
        with RtspServer(parser) as server:
            server.start(20001102, "h264_streaming", 600, 30.0)
    except OSError as error:
        log.error("%s", error)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())