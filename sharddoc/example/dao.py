"""SQLite-backed table of transaction records."""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping, TypeVar

from sharddoc.tcc.component import TCCError
from sharddoc.tcc.models import ComponentTryStatus

_T = TypeVar("_T")

_COLUMNS = "id, created_at, updated_at, deleted_at, status, component_try_statuses"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS tx_record (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT,
    updated_at TEXT,
    deleted_at TEXT,
    status TEXT NOT NULL DEFAULT '',
    component_try_statuses TEXT NOT NULL DEFAULT ''
);
"""


@dataclass
class TXRecord:
    """One row of the transaction log; ``deleted_at`` marks a soft delete."""

    id: int = 0
    status: str = ""
    component_try_statuses: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None


@dataclass(frozen=True)
class _Condition:
    column: str
    value: Any


def with_id(record_id: int) -> _Condition:
    """Query option selecting the record with this id."""
    return _Condition("id", record_id)


def with_status(status: object) -> _Condition:
    """Query option selecting records in this status."""
    return _Condition("status", str(status))


def dump_try_statuses(statuses: Mapping[str, object]) -> str:
    """Encode component id to try status as the JSON kept in a record."""
    body = {
        component_id: {"componentID": component_id, "tryStatus": str(status)}
        for component_id, status in statuses.items()
    }
    return json.dumps(body, sort_keys=True, separators=(",", ":"))


def load_try_statuses(text: str) -> dict[str, str]:
    """Decode a record's JSON into component id to try status; bad JSON raises ValueError."""
    raw = json.loads(text)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError("component try statuses must be a JSON object")
    statuses: dict[str, str] = {}
    for key, entry in raw.items():
        if not isinstance(entry, dict):
            raise ValueError(f"invalid try status entry for component: {key}")
        statuses[key] = str(entry.get("tryStatus", ""))
    return statuses


def _encode_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _decode_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TXRecordDAO:
    """Reads and writes transaction records in an SQLite connection.

    The connection is shared between threads, so it should be opened with
    ``check_same_thread=False`` when the DAO is used from several threads.
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._conn = connection
        self._now = now or _utc_now
        self._mutex = threading.RLock()
        self._depth = 0
        with self._mutex:
            self._conn.executescript(_SCHEMA)

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        with self._mutex:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return
            self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield
            except BaseException:
                self._conn.rollback()
                raise
            else:
                self._conn.commit()
            finally:
                self._depth = 0

    @staticmethod
    def _row_to_record(row: tuple) -> TXRecord:
        record_id, created_at, updated_at, deleted_at, status, statuses = row
        return TXRecord(
            id=record_id,
            status=status or "",
            component_try_statuses=statuses or "",
            created_at=_decode_time(created_at),
            updated_at=_decode_time(updated_at),
            deleted_at=_decode_time(deleted_at),
        )

    def get_tx_records(self, *options: _Condition) -> list[TXRecord]:
        """Return the live records matching every option, ordered by id."""
        clauses = [f"{option.column} = ?" for option in options]
        clauses.append("deleted_at IS NULL")
        params = [option.value for option in options]
        query = f"SELECT {_COLUMNS} FROM tx_record WHERE {' AND '.join(clauses)} ORDER BY id"
        with self._mutex:
            rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def create_tx_record(self, record: TXRecord) -> int:
        """Insert a record, fill in its id and timestamps, and return the id."""
        now = self._now()
        if record.created_at is None:
            record.created_at = now
        if record.updated_at is None:
            record.updated_at = now
        with self._transaction():
            cursor = self._conn.execute(
                "INSERT INTO tx_record (created_at, updated_at, deleted_at, status, "
                "component_try_statuses) VALUES (?, ?, ?, ?, ?)",
                (
                    _encode_time(record.created_at),
                    _encode_time(record.updated_at),
                    _encode_time(record.deleted_at),
                    record.status,
                    record.component_try_statuses,
                ),
            )
            record.id = cursor.lastrowid or 0
        return record.id

    def update_component_status(self, record_id: int, component_id: str, status: str) -> None:
        """Move one component's try status out of hanging.

        Setting the status it already has is a no-op; any other change raises.
        """
        status = str(status)

        def change(dao: TXRecordDAO, record: TXRecord) -> None:
            statuses = load_try_statuses(record.component_try_statuses)
            current = statuses.get(component_id)
            if current is None:
                raise TCCError(f"invalid component: {component_id} in txid: {record_id}")
            if current == status:
                return
            if current != ComponentTryStatus.HANGING.value:
                raise TCCError(
                    f"invalid status: {current} of component: {component_id}, txid: {record_id}"
                )
            statuses[component_id] = status
            record.component_try_statuses = dump_try_statuses(statuses)
            dao.update_tx_record(record)

        self.lock_and_do(record_id, change)

    def update_tx_record(self, record: TXRecord) -> None:
        """Write the record's non-empty fields and refresh its update time."""
        if not record.id:
            raise ValueError("record id is required for an update")
        record.updated_at = self._now()
        fields: dict[str, Any] = {"updated_at": _encode_time(record.updated_at)}
        if record.status:
            fields["status"] = record.status
        if record.component_try_statuses:
            fields["component_try_statuses"] = record.component_try_statuses
        assignments = ",".join(f"{column} = ?" for column in fields)
        with self._transaction():
            self._conn.execute(
                f"UPDATE tx_record SET {assignments} WHERE deleted_at IS NULL AND id = ?",
                [*fields.values(), record.id],
            )

    def lock_and_do(self, record_id: int, action: Callable[[TXRecordDAO, TXRecord], _T]) -> _T:
        """Run ``action`` on the record while holding a write lock.

        The work is committed when ``action`` returns and rolled back if it raises.
        A missing record raises ``LookupError``.
        """
        with self._transaction():
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM tx_record WHERE id = ? AND deleted_at IS NULL "
                "ORDER BY id LIMIT 1",
                (record_id,),
            ).fetchone()
            if row is None:
                raise LookupError(f"record not found: {record_id}")
            return action(self, self._row_to_record(row))