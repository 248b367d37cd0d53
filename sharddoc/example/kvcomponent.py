"""Example TCC component that freezes business data in a key-value store."""

from __future__ import annotations

import threading
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from typing import Iterator

from sharddoc.example.keys import (
    build_data_key,
    build_tx_detail_key,
    build_tx_key,
    build_tx_lock_key,
)
from sharddoc.tcc.component import TCCError, TCCRequest, TCCResponse, TccComponent

DEFAULT_LOCK_EXPIRE = 30.0


class KeyNotFound(KeyError):
    """Raised when a key is absent from the store."""


class KVClient(ABC):
    """Minimal key-value store interface the example components rely on."""

    @abstractmethod
    def get(self, key: str) -> str:
        """Return the value; raise ``KeyNotFound`` when the key is absent."""

    @abstractmethod
    def set(self, key: str, value: str, expire: float | None = None) -> None:
        """Store a value, optionally expiring after ``expire`` seconds."""

    @abstractmethod
    def set_nx(self, key: str, value: str, expire: float | None = None) -> bool:
        """Store a value only if the key is absent; return whether it was stored."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key; a missing key is not an error."""

    @abstractmethod
    def compare_and_delete(self, key: str, value: str) -> bool:
        """Remove a key only if it holds ``value``; return whether it was removed."""


class MemoryKVClient(KVClient):
    """Thread-safe in-process key-value store with expiring keys."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, deadline = entry
        if deadline is not None and time.monotonic() >= deadline:
            del self._data[key]
            return None
        return value

    @staticmethod
    def _deadline(expire: float | None) -> float | None:
        return time.monotonic() + expire if expire is not None and expire > 0 else None

    def get(self, key: str) -> str:
        with self._lock:
            value = self._live(key)
        if value is None:
            raise KeyNotFound(key)
        return value

    def set(self, key: str, value: str, expire: float | None = None) -> None:
        with self._lock:
            self._data[key] = (value, self._deadline(expire))

    def set_nx(self, key: str, value: str, expire: float | None = None) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, self._deadline(expire))
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def compare_and_delete(self, key: str, value: str) -> bool:
        with self._lock:
            if self._live(key) != value:
                return False
            del self._data[key]
            return True


class DistributedLock:
    """Non-blocking lock kept as an expiring key in a ``KVClient``."""

    def __init__(
        self,
        key: str,
        client: KVClient,
        expire_seconds: float = DEFAULT_LOCK_EXPIRE,
        token: str | None = None,
    ) -> None:
        self.key = key
        self._client = client
        self._expire = expire_seconds if expire_seconds > 0 else DEFAULT_LOCK_EXPIRE
        self._token = token or uuid.uuid4().hex

    def lock(self) -> None:
        """Take the lock; raise ``TCCError`` if someone else holds it."""
        if not self._client.set_nx(self.key, self._token, self._expire):
            raise TCCError(f"lock {self.key} is held by another owner")

    def unlock(self) -> None:
        """Release the lock; raise ``TCCError`` if this owner does not hold it."""
        if not self._client.compare_and_delete(self.key, self._token):
            raise TCCError(f"lock {self.key} is not held by this owner")

    def __enter__(self) -> DistributedLock:
        self.lock()
        return self

    def __exit__(self, *args: object) -> None:
        self.unlock()


class ComponentTXStatus(str, Enum):
    """Progress of a transaction as seen by one component."""

    TRIED = "tried"
    CONFIRMED = "confirmed"
    CANCELED = "canceled"

    def __str__(self) -> str:
        return self.value


class DataStatus(str, Enum):
    """State of the business data a transaction works on."""

    FROZEN = "frozen"
    SUCCESSFUL = "successful"

    def __str__(self) -> str:
        return self.value


def _to_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


class KVComponent(TccComponent):
    """Freezes a business id on try, marks it successful on confirm, drops it on cancel.

    Every phase is idempotent per transaction id and runs under a per-transaction lock.
    """

    def __init__(self, component_id: str, client: KVClient) -> None:
        self._id = component_id
        self._client = client

    @property
    def component_id(self) -> str:
        return self._id

    @contextmanager
    def _locked(self, tx_id: str) -> Iterator[None]:
        lock = DistributedLock(build_tx_lock_key(self._id, tx_id), self._client)
        lock.lock()
        try:
            yield
        finally:
            try:
                lock.unlock()
            except TCCError:
                pass

    def _tx_status(self, tx_id: str) -> str:
        try:
            return self._client.get(build_tx_key(self._id, tx_id))
        except KeyNotFound:
            return ""

    def try_(self, request: TCCRequest) -> TCCResponse:
        tx_id = request.tx_id
        with self._locked(tx_id):
            response = TCCResponse(component_id=self._id, tx_id=tx_id)
            tx_status = self._tx_status(tx_id)
            if tx_status in (ComponentTXStatus.TRIED, ComponentTXStatus.CONFIRMED):
                response.ack = True
                return response
            if tx_status == ComponentTXStatus.CANCELED:
                # Cancel arrived before try: refuse.
                return response

            biz_id = _to_string(request.data.get("biz_id"))
            self._client.set(build_tx_detail_key(self._id, tx_id), biz_id)
            # The data must go from absent to frozen; anything else is a conflict.
            if not self._client.set_nx(
                build_data_key(self._id, tx_id, biz_id), DataStatus.FROZEN.value
            ):
                return response
            self._client.set(build_tx_key(self._id, tx_id), ComponentTXStatus.TRIED.value)
            response.ack = True
            return response

    def confirm(self, tx_id: str) -> TCCResponse:
        with self._locked(tx_id):
            response = TCCResponse(component_id=self._id, tx_id=tx_id)
            tx_status = self._client.get(build_tx_key(self._id, tx_id))
            if tx_status == ComponentTXStatus.CONFIRMED:
                response.ack = True
                return response
            if tx_status != ComponentTXStatus.TRIED:
                return response

            biz_id = self._client.get(build_tx_detail_key(self._id, tx_id))
            data_key = build_data_key(self._id, tx_id, biz_id)
            if self._client.get(data_key) != DataStatus.FROZEN:
                return response
            self._client.set(data_key, DataStatus.SUCCESSFUL.value)
            try:
                self._client.set(build_tx_key(self._id, tx_id), ComponentTXStatus.CONFIRMED.value)
            except Exception:
                pass
            response.ack = True
            return response

    def cancel(self, tx_id: str) -> TCCResponse:
        with self._locked(tx_id):
            tx_status = self._tx_status(tx_id)
            if tx_status == ComponentTXStatus.CONFIRMED:
                raise TCCError(f"invalid tx status: {tx_status}, txid: {tx_id}")

            biz_id = self._client.get(build_tx_detail_key(self._id, tx_id))
            self._client.delete(build_data_key(self._id, tx_id, biz_id))
            try:
                self._client.set(build_tx_key(self._id, tx_id), ComponentTXStatus.CANCELED.value)
            except Exception:
                pass
            return TCCResponse(component_id=self._id, ack=True, tx_id=tx_id)