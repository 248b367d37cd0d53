"""Transaction log kept in the record table, locked through the key-value store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from sharddoc.example.dao import (
    TXRecord,
    dump_try_statuses,
    load_try_statuses,
    with_id,
    with_status,
)
from sharddoc.example.keys import build_tx_record_lock_key
from sharddoc.example.kvcomponent import DistributedLock, KVClient
from sharddoc.tcc.component import TCCError, TccComponent, TXStore
from sharddoc.tcc.models import ComponentTryEntity, ComponentTryStatus, Transaction, TXStatus

_ZERO_TIME = datetime.min.replace(tzinfo=timezone.utc)


class _RecordDAO(Protocol):
    def get_tx_records(self, *options: Any) -> list[TXRecord]: ...

    def create_tx_record(self, record: TXRecord) -> int: ...

    def update_component_status(self, record_id: int, component_id: str, status: str) -> None: ...

    def update_tx_record(self, record: TXRecord) -> None: ...

    def lock_and_do(self, record_id: int, action: Callable[[Any, TXRecord], Any]) -> Any: ...


def _to_uint(text: str) -> int:
    try:
        value = int(str(text).strip())
    except ValueError:
        return 0
    return max(value, 0)


def _components(record: TXRecord) -> list[ComponentTryEntity]:
    try:
        statuses = load_try_statuses(record.component_try_statuses)
    except ValueError:
        statuses = {}
    return [
        ComponentTryEntity(component_id=component_id, try_status=ComponentTryStatus(status))
        for component_id, status in statuses.items()
    ]


class RecordTXStore(TXStore):
    """``TXStore`` over a record DAO, with the log lock held in a ``KVClient``."""

    def __init__(self, dao: _RecordDAO, client: KVClient) -> None:
        self._dao = dao
        self._client = client
        self._record_lock: DistributedLock | None = None

    def create_tx(self, components: list[TccComponent]) -> str:
        statuses = {component.component_id: ComponentTryStatus.HANGING for component in components}
        record = TXRecord(
            status=TXStatus.HANGING.value,
            component_try_statuses=dump_try_statuses(statuses),
        )
        return str(self._dao.create_tx_record(record))

    def tx_update(self, tx_id: str, component_id: str, accept: bool) -> None:
        status = ComponentTryStatus.SUCCESSFUL if accept else ComponentTryStatus.FAILURE
        self._dao.update_component_status(_to_uint(tx_id), component_id, status.value)

    def tx_submit(self, tx_id: str, success: bool) -> None:
        def submit(dao: _RecordDAO, record: TXRecord) -> None:
            forbidden = TXStatus.FAILURE if success else TXStatus.SUCCESSFUL
            if record.status == forbidden.value:
                raise TCCError(f"invalid tx status: {record.status}, txid: {tx_id}")
            record.status = (TXStatus.SUCCESSFUL if success else TXStatus.FAILURE).value
            dao.update_tx_record(record)

        self._dao.lock_and_do(_to_uint(tx_id), submit)

    def get_hanging_txs(self) -> list[Transaction]:
        records = self._dao.get_tx_records(with_status(ComponentTryStatus.HANGING))
        return [
            Transaction(
                tx_id=str(record.id),
                components=_components(record),
                status=TXStatus.HANGING,
                created_at=record.created_at or _ZERO_TIME,
            )
            for record in records
        ]

    def get_tx(self, tx_id: str) -> Transaction:
        records = self._dao.get_tx_records(with_id(_to_uint(tx_id)))
        if len(records) != 1:
            raise TCCError("get tx failed")
        (record,) = records
        return Transaction(
            tx_id=tx_id,
            components=_components(record),
            status=TXStatus(record.status),
            created_at=record.created_at or _ZERO_TIME,
        )

    def lock(self, expire: float) -> None:
        lock = DistributedLock(build_tx_record_lock_key(), self._client, expire_seconds=int(expire))
        lock.lock()
        self._record_lock = lock

    def unlock(self) -> None:
        lock, self._record_lock = self._record_lock, None
        if lock is None:
            raise TCCError("tx record lock is not held")
        lock.unlock()