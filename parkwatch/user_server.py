"""HTTP/JSON server that registers residents and their vehicles."""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import socket
import socketserver
from dataclasses import dataclass
from typing import Any

from parkwatch.database import DatabaseError, User, UserDatabase

log = logging.getLogger(__name__)

USER_PORT = 8080
MAX_CLIENTS = 10
_MAX_REQUEST = 4096
_CONTENT_LENGTH = b"Content-Length:"
_NUMBER_RE = re.compile(rb"\s*([+-]?\d+)")


class RequestError(ValueError):
    """Raised when a client request cannot be read or understood."""


@dataclass
class ClientInfo:
    """A client announcing itself with an ``init`` request."""

    cli_name: str = ""
    ip_addr: str = ""
    connect_time: str = ""


@dataclass
class TimeInfo:
    """An entry or exit event sent with a ``clip`` request."""

    plate: str = ""
    time: str = ""
    type: str = ""


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return json.dumps(value)


def _load(body: bytes | str) -> Any:
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    try:
        return json.loads(body)
    except json.JSONDecodeError as error:
        raise RequestError(f"JSON parsing failed: {error}") from error


def _section(body: bytes | str, key: str) -> dict[str, Any]:
    document = _load(body)
    if isinstance(document, dict) and isinstance(document.get(key), dict):
        return document[key]
    return {}


def parse_init(body: bytes | str) -> ClientInfo:
    """Read the ``clientInfo`` object of an init request."""
    section = _section(body, "clientInfo")
    return ClientInfo(
        cli_name=_as_text(section.get("cliName", "")),
        ip_addr=_as_text(section.get("ipAddr", "")),
        connect_time=_as_text(section.get("connectTime", "")),
    )


def parse_user(body: bytes | str) -> User:
    """Read the ``basicInfo`` object of a user request."""
    section = _section(body, "basicInfo")
    return User(
        name=_as_text(section.get("name", "")),
        plate=_as_text(section.get("plate", "")),
        home=_as_text(section.get("home", "")),
        phone=_as_text(section.get("phone", "")),
    )


def parse_clip(body: bytes | str) -> TimeInfo:
    """Read the ``timeInfo`` object of a clip request."""
    section = _section(body, "timeInfo")
    return TimeInfo(
        plate=_as_text(section.get("plate", "")),
        time=_as_text(section.get("time", "")),
        type=_as_text(section.get("type", "")),
    )


def read_http_body(sock: socket.socket) -> bytes:
    """Read one HTTP request from ``sock`` and return what follows its headers."""
    buffer = b""
    while (header_end := buffer.find(b"\r\n\r\n")) < 0:
        if len(buffer) >= _MAX_REQUEST:
            raise RequestError("Failed to read header: request too large")
        chunk = sock.recv(_MAX_REQUEST - len(buffer))
        if not chunk:
            raise RequestError("Failed to read header")
        buffer += chunk

    position = buffer.find(_CONTENT_LENGTH)
    if position < 0:
        raise RequestError("Content-Length not found")
    number = _NUMBER_RE.match(buffer, position + len(_CONTENT_LENGTH) + 1)
    content_length = int(number.group(1)) if number else 0
    log.debug("Content-Length: %d", content_length)

    body_start = header_end + 4
    while len(buffer) - body_start < content_length:
        if len(buffer) >= _MAX_REQUEST:
            raise RequestError("Failed to read body: request too large")
        chunk = sock.recv(_MAX_REQUEST - len(buffer))
        if not chunk:
            raise RequestError("Failed to read body")
        buffer += chunk
    return buffer[body_start:]


def build_http_response(payload: str) -> bytes:
    """Wrap a JSON text in a ``200 OK`` response that closes the connection."""
    encoded = payload.encode("utf-8")
    head = (
        "HTTP/1.1 200 OK\r\n"
        "Content-Type: application/json\r\n"
        f"Content-Length: {len(encoded)}\r\n"
        "connection: close\r\n"
        "\r\n"
    )
    return head.encode("ascii") + encoded


def _reply(status: str, message: str) -> str:
    return json.dumps({"status": status, "message": message}, separators=(",", ":"))


def _handle_init(body: bytes | str, db: UserDatabase) -> str:
    info = parse_init(body)
    log.info("init: name=%s ip=%s time=%s", info.cli_name, info.ip_addr, info.connect_time)
    user = User(name=info.cli_name, plate=info.ip_addr, home=info.connect_time, phone=None)
    try:
        db.save_user(user)
    except DatabaseError as error:
        log.error("%s", error)
        return _reply("error", "Failed to save user data")
    return _reply("init_success", "Client initialized")


def _handle_user(body: bytes | str, db: UserDatabase) -> str:
    user = parse_user(body)
    log.info("user: name=%s plate=%s home=%s", user.name, user.plate, user.home)
    try:
        exists = db.plate_exists(user.plate)
    except DatabaseError as error:
        log.error("%s", error)
        exists = False
    if exists:
        try:
            db.edit_user(user)
        except DatabaseError as error:
            log.error("%s", error)
            return _reply("error", "Update failed")
        return _reply("success", "User data updated")
    try:
        db.save_user(user)
    except DatabaseError as error:
        log.error("%s", error)
        return _reply("error", "Save failed")
    return _reply("success", "User data saved")


def handle_request(
    body: bytes | str,
    database_path: str | os.PathLike[str] = "parking.db",
) -> str | None:
    """Act on one JSON request body; return the JSON reply, or None for no reply."""
    document = _load(body)
    request_type = document.get("requestType") if isinstance(document, dict) else None
    if not isinstance(request_type, dict) or "reqType" not in request_type:
        return None
    req_type = _as_text(request_type["reqType"])
    log.info("Received reqType: %s", req_type)

    try:
        db = UserDatabase(database_path)
    except DatabaseError as error:
        log.error("Failed to initialize database: %s", error)
        return _reply("error", "Database error")

    with db:
        if req_type == "init":
            return _handle_init(body, db)
        if req_type == "user":
            return _handle_user(body, db)
        if req_type == "clip":
            info = parse_clip(body)
            log.info("clip: plate=%s time=%s type=%s", info.plate, info.time, info.type)
            return None
        log.warning("Unknown request type: %s", req_type)
        return _reply("error", "Unknown request type")


def handle_client(
    sock: socket.socket,
    database_path: str | os.PathLike[str] = "parking.db",
) -> None:
    """Read one request from ``sock``, act on it and send the reply."""
    try:
        body = read_http_body(sock)
        reply = handle_request(body, database_path)
    except RequestError as error:
        log.error("%s", error)
        return
    if reply is not None:
        sock.sendall(build_http_response(reply))


class _Handler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        log.info("Client connected: %s:%d", *self.client_address[:2])
        handle_client(self.request, self.server.database_path)


class _UserServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True
    request_queue_size = MAX_CLIENTS

    def __init__(self, address: tuple[str, int], database_path: str | os.PathLike[str]) -> None:
        self.database_path = database_path
        super().__init__(address, _Handler)


def create_server(
    host: str = "0.0.0.0",
    port: int = USER_PORT,
    database_path: str | os.PathLike[str] = "parking.db",
) -> socketserver.ThreadingTCPServer:
    """Bind a server that handles each client in its own thread."""
    return _UserServer((host, port), database_path)


def main(argv: list[str] | None = None) -> int:
    """Run the user registration server until interrupted."""
    parser = argparse.ArgumentParser(description="Resident registration server.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=USER_PORT)
    parser.add_argument("--database", default="parking.db")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    try:
        server = create_server(args.host, args.port, args.database)
    except OSError as error:
        log.error("Server initialization failed: %s", error)
        return 1
    with server:
        log.info("Server started on port %d", args.port)
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())