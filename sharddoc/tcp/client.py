"""Client for a node's TCP service."""

from __future__ import annotations

import json
import socket
import uuid
from typing import Any

from sharddoc.tcp.protocol import (
    MessageType,
    ProtocolError,
    RaftRequest,
    Response,
    _split_address,
    build_tcp_info,
    read_response,
)


class Client:
    """Sends SQL statements to a node over one connection."""

    def __init__(self, conn: socket.socket) -> None:
        self.conn = conn

    @classmethod
    def open(cls, remote_addr: str) -> Client:
        """Connect to ``host:port``."""
        host, port = _split_address(remote_addr)
        return cls(socket.create_connection((host or "localhost", port)))

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _call(self, sql: str) -> Response:
        frame = build_tcp_info(
            RaftRequest(
                request_id=str(uuid.uuid4()),
                data_type=MessageType.EXEC,
                payload={"sql": sql},
            )
        )
        self.conn.sendall(frame)
        response = read_response(self.conn)
        if response.type == MessageType.BAD_RESP:
            raise ProtocolError(response.body.decode(errors="replace"))
        return response

    def raw(self, sql: str) -> list[dict[str, Any]]:
        """Run a query and return its records as decoded JSON objects."""
        response = self._call(sql)
        try:
            result = json.loads(response.body)
        except ValueError as exc:
            raise ProtocolError(f"invalid query result: {exc}") from exc
        if not isinstance(result, dict):
            raise ProtocolError("invalid query result: expected an object")
        error = result.get("Err")
        if isinstance(error, str) and error:
            raise ProtocolError(error)
        return list(result.get("Recs") or [])

    def exec(self, sql: str) -> str:
        """Run a statement and return the server's reply text."""
        return self._call(sql).body.decode()

    def close(self) -> None:
        self.conn.close()