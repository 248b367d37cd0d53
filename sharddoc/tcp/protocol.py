"""Framing of requests and replies on a node's TCP port.

A frame is one type byte, a big-endian 32-bit body length, then the body.
"""

from __future__ import annotations

import json
import socket
import struct
import uuid
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Iterable, Mapping

_HEADER = struct.Struct(">BI")
_MAX_BODY = 0xFFFFFFFF


class MessageType(IntEnum):
    """Type byte of a frame."""

    EXEC = 0x01
    JOIN = 0x02
    STATUS = 0x03
    SHOW_TABLES = 0x04
    OK_RESP = 0x81
    BAD_RESP = 0x82


class ProtocolError(Exception):
    """Raised for a malformed frame or an error reply from the server."""


_REQUIRED_FIELDS: dict[MessageType, tuple[str, ...]] = {
    MessageType.EXEC: ("sql",),
    MessageType.JOIN: ("node_id", "addr"),
    MessageType.STATUS: (),
    MessageType.SHOW_TABLES: (),
}


@dataclass
class RaftRequest:
    """A request sent to a node; the body of a request frame."""

    request_id: str = ""
    data_type: int = 0
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "RequestID": self.request_id,
            "DataType": int(self.data_type),
            "Payload": self.payload,
        }

    @classmethod
    def from_dict(cls, raw: object) -> RaftRequest:
        if not isinstance(raw, dict):
            raise ProtocolError("request must be a JSON object")
        fields = {str(key).lower(): value for key, value in raw.items()}
        request_id = fields.get("requestid") or ""
        data_type = fields.get("datatype", 0)
        payload = fields.get("payload")
        if not isinstance(request_id, str):
            raise ProtocolError("RequestID must be a string")
        if isinstance(data_type, bool) or not isinstance(data_type, int) or not 0 <= data_type <= 0xFF:
            raise ProtocolError(f"invalid DataType: {data_type!r}")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ProtocolError("Payload must be a JSON object")
        return cls(request_id=request_id, data_type=data_type, payload=payload)


@dataclass
class Response:
    """A reply frame."""

    type: int
    body: bytes


def map_field_check(fields: Iterable[str], mapping: Mapping[str, Any] | None) -> bool:
    """Tell whether every field is a key of ``mapping``."""
    mapping = mapping or {}
    return all(name in mapping for name in fields)


def build_tcp_info(request: RaftRequest) -> bytes:
    """Encode a request as a frame, giving it a fresh id if it has none."""
    if not request.request_id:
        request.request_id = str(uuid.uuid4())
    try:
        kind = MessageType(request.data_type)
    except ValueError:
        raise ProtocolError(f"datatype unsupported: {request.data_type}") from None
    required = _REQUIRED_FIELDS.get(kind)
    if required is None:
        raise ProtocolError(f"datatype unsupported: {request.data_type}")
    if not map_field_check(required, request.payload):
        raise ProtocolError(f"{kind.name.lower()} message [{int(kind)}] is missing required fields")
    body = json.dumps(request.to_dict(), separators=(",", ":")).encode()
    return _HEADER.pack(int(kind), len(body)) + body


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    data = bytearray()
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            raise EOFError("connection closed" if not data else "unexpected end of stream")
        data += chunk
    return bytes(data)


def _read_frame(sock: socket.socket) -> tuple[int, bytes]:
    msg_type, length = _HEADER.unpack(_recv_exact(sock, _HEADER.size))
    return msg_type, _recv_exact(sock, length)


def read_request(sock: socket.socket) -> tuple[int, RaftRequest]:
    """Read one request frame; return its type byte and the decoded request.

    A closed connection raises ``EOFError``; a body that is not a request
    raises ``ProtocolError``.
    """
    msg_type, body = _read_frame(sock)
    try:
        raw = json.loads(body)
    except ValueError as exc:
        raise ProtocolError(f"invalid request body: {exc}") from exc
    return msg_type, RaftRequest.from_dict(raw)


def read_response(sock: socket.socket) -> Response:
    """Read one reply frame."""
    try:
        header = _recv_exact(sock, _HEADER.size)
    except EOFError as exc:
        raise EOFError(f"failed to read header: {exc}") from exc
    msg_type, length = _HEADER.unpack(header)
    try:
        body = _recv_exact(sock, length)
    except EOFError as exc:
        raise EOFError(f"failed to read body: {exc}") from exc
    return Response(type=msg_type, body=body)


def send_response(sock: socket.socket, data_type: int, payload: bytes) -> None:
    """Write one reply frame."""
    if len(payload) > _MAX_BODY:
        raise ProtocolError("payload too large")
    sock.sendall(_HEADER.pack(int(data_type), len(payload)) + payload)


def send_bad_response(sock: socket.socket, message: bytes | str) -> None:
    """Write an error reply carrying ``message``."""
    if isinstance(message, str):
        message = message.encode()
    send_response(sock, MessageType.BAD_RESP, message)


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid address: {address!r}")
    return host.strip("[]"), int(port)