"""TCP service that hands framed requests to a raft node."""

from __future__ import annotations

import json
import logging
import signal
import socket
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Protocol

from sharddoc.tcp.config import StoreStatus
from sharddoc.tcp.protocol import (
    MessageType,
    ProtocolError,
    RaftRequest,
    _split_address,
    build_tcp_info,
    read_request,
    send_bad_response,
    send_response,
)

_log = logging.getLogger(__name__)

_ACCEPT_POLL = 0.1
_JOIN_REPLY_SIZE = 1024


@dataclass
class ExecResult:
    """Outcome of a statement applied through the node."""

    data: bytes = b""
    error: Exception | None = None


class RaftNode(ABC):
    """The replicated store behind the service."""

    @abstractmethod
    def exec(self, request: RaftRequest) -> ExecResult:
        """Apply a statement across the cluster."""

    @abstractmethod
    def join(self, request: RaftRequest) -> None:
        """Add the node named in the request to the cluster."""

    @abstractmethod
    def status(self, request: RaftRequest) -> StoreStatus:
        """Describe the cluster."""

    @abstractmethod
    def tables(self, request: RaftRequest) -> bytes:
        """Return the table definitions as JSON."""


class _Handler(Protocol):
    def handle(self, conn: socket.socket) -> None: ...

    def close(self) -> None: ...


class Service:
    """Reads requests from a connection and answers each with one reply."""

    def __init__(self, addr: str, node: RaftNode) -> None:
        self.addr = addr
        self.node = node
        self.handlers: dict[int, Callable[[socket.socket, RaftRequest], None]] = {
            MessageType.EXEC: self.handle_exec,
            MessageType.JOIN: self.handle_join,
            MessageType.STATUS: self.handle_status,
            MessageType.SHOW_TABLES: self.handle_show_tables,
        }

    def handle(self, conn: socket.socket) -> None:
        """Serve one connection until the client closes it."""
        with conn:
            while True:
                try:
                    msg_type, request = read_request(conn)
                except EOFError:
                    _log.info("client closed connection")
                    return
                except ProtocolError as exc:
                    _log.info("read request err: %s", exc)
                    send_bad_response(conn, b"Unexpected syntax...")
                    continue
                except OSError as exc:
                    _log.info("read request err: %s", exc)
                    return
                if msg_type == 0:
                    send_bad_response(conn, b"Unexpected syntax...")
                    continue
                handler = self.handlers.get(request.data_type)
                if handler is None:
                    _log.warning("unknown message type: %s", request.data_type)
                    continue
                handler(conn, request)

    def handle_exec(self, conn: socket.socket, request: RaftRequest) -> None:
        if not isinstance(request.payload.get("sql"), str):
            message = "Exec request is missing the 'sql' field or the format is correct"
            _log.info(message)
            send_bad_response(conn, message)
            return
        try:
            result = self.node.exec(request)
        except Exception as exc:
            result = ExecResult(error=exc)
        if result is None:
            result = ExecResult(error=RuntimeError("empty exec result"))
        if result.error is not None:
            _log.info("%s", result.error)
            send_bad_response(conn, str(result.error))
            return
        send_response(conn, MessageType.OK_RESP, result.data)

    def handle_join(self, conn: socket.socket, request: RaftRequest) -> None:
        payload = request.payload
        if not isinstance(payload.get("node_id"), str) or not isinstance(payload.get("addr"), str):
            send_bad_response(conn, "Join request is missing the 'node_id' field or 'addr' field")
            return
        try:
            self.node.join(request)
        except Exception as exc:
            send_bad_response(conn, str(exc))
            return
        send_response(conn, MessageType.OK_RESP, b"OK")

    def handle_status(self, conn: socket.socket, request: RaftRequest) -> None:
        try:
            status = self.node.status(request)
        except Exception as exc:
            _log.warning("get node :%s err:%s", self.addr, exc)
            return
        body = json.dumps(status.to_dict(), separators=(",", ":")).encode()
        send_response(conn, MessageType.OK_RESP, body)

    def handle_show_tables(self, conn: socket.socket, request: RaftRequest) -> None:
        try:
            tables = self.node.tables(request)
        except Exception as exc:
            _log.warning("get all tables err: %s", exc)
            send_bad_response(conn, str(exc))
            return
        send_response(conn, MessageType.OK_RESP, tables)

    def close(self) -> None:
        """Release the service; it holds nothing of its own."""
        return None


def listen_and_serve(
    listener: socket.socket, handler: _Handler, close_event: threading.Event
) -> None:
    """Accept connections until ``close_event`` is set or accepting fails.

    Each connection is served on its own thread; the function returns once
    the listener and handler are closed and every connection has ended.
    """
    listener.settimeout(_ACCEPT_POLL)
    workers: list[threading.Thread] = []
    try:
        while not close_event.is_set():
            try:
                conn, _ = listener.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if not close_event.is_set():
                    _log.info("accept error: %s", exc)
                break
            _log.info("accept link")
            worker = threading.Thread(target=handler.handle, args=(conn,), daemon=True)
            worker.start()
            workers.append(worker)
            workers = [thread for thread in workers if thread.is_alive()]
        else:
            _log.info("get exit signal")
    finally:
        try:
            listener.close()
        finally:
            handler.close()
    for worker in workers:
        worker.join()


def listen_and_serve_with_signal(addr: str, handler: _Handler) -> None:
    """Bind ``addr`` and serve until a hangup, quit, terminate or interrupt signal."""
    host, port = _split_address(addr)
    close_event = threading.Event()
    previous: dict[int, object] = {}

    def on_signal(signum: int, frame: object) -> None:
        close_event.set()

    for name in ("SIGHUP", "SIGQUIT", "SIGTERM", "SIGINT"):
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        try:
            previous[signum] = signal.signal(signum, on_signal)
        except ValueError:
            # Signal handlers can only be installed from the main thread.
            break
    try:
        listener = socket.create_server((host, port))
        _log.info("bind: %s, start listening...", addr)
        listen_and_serve(listener, handler, close_event)
    finally:
        for signum, old in previous.items():
            signal.signal(signum, old)  # type: ignore[arg-type]


def join(join_addr: str, raft_addr: str, node_id: str) -> None:
    """Ask the node at ``join_addr`` to add this node to its cluster."""
    message = build_tcp_info(
        RaftRequest(
            request_id=str(uuid.uuid4()),
            data_type=MessageType.JOIN,
            payload={"node_id": node_id, "addr": raft_addr},
        )
    )
    host, port = _split_address(join_addr)
    with socket.create_connection((host or "localhost", port)) as conn:
        conn.sendall(message)
        try:
            reply = conn.recv(_JOIN_REPLY_SIZE)
        except OSError as exc:
            _log.info("join response read error: %s", exc)
        else:
            _log.info("join response: %s", reply.decode(errors="replace"))