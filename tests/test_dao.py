import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from sharddoc.example.dao import (
    TXRecord,
    TXRecordDAO,
    dump_try_statuses,
    load_try_statuses,
    with_id,
    with_status,
)
from sharddoc.tcc.component import TCCError
from sharddoc.tcc.models import ComponentTryStatus, TXStatus

START = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

HANGING_A = '{"component_a":{"componentID":"component_a","tryStatus":"hanging"}}'
SUCCESSFUL_A = '{"component_a":{"componentID":"component_a","tryStatus":"successful"}}'
FAILURE_A = '{"component_a":{"componentID":"component_a","tryStatus":"failure"}}'


class _Clock:
    def __init__(self, at):
        self.at = at

    def __call__(self):
        return self.at


@pytest.fixture
def clock():
    return _Clock(START)


@pytest.fixture
def connection():
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    yield conn
    conn.close()


@pytest.fixture
def dao(connection, clock):
    return TXRecordDAO(connection, now=clock)


def test_dump_try_statuses_format():
    assert dump_try_statuses({"component_a": ComponentTryStatus.HANGING}) == HANGING_A
    assert dump_try_statuses({}) == "{}"


def test_load_try_statuses_round_trip():
    assert load_try_statuses(dump_try_statuses({"a": "hanging", "b": "failure"})) == {
        "a": "hanging",
        "b": "failure",
    }


def test_load_try_statuses_rejects_bad_json():
    with pytest.raises(ValueError):
        load_try_statuses("not json")


def test_get_tx_records_with_id_and_status(dao):
    dao.create_tx_record(TXRecord(status=TXStatus.HANGING.value, component_try_statuses=HANGING_A))
    dao.create_tx_record(TXRecord(status=TXStatus.SUCCESSFUL.value, component_try_statuses="{}"))

    records = dao.get_tx_records(with_id(1), with_status(ComponentTryStatus(TXStatus.HANGING.value)))

    assert len(records) == 1
    assert records[0].id == 1
    assert records[0].status == TXStatus.HANGING.value
    assert records[0].component_try_statuses == HANGING_A


def test_get_tx_records_by_status(dao):
    dao.create_tx_record(TXRecord(status="hanging", component_try_statuses="{}"))
    dao.create_tx_record(TXRecord(status="successful", component_try_statuses="{}"))

    assert [r.id for r in dao.get_tx_records(with_status(TXStatus.SUCCESSFUL))] == [2]
    assert [r.id for r in dao.get_tx_records()] == [1, 2]


def test_get_tx_records_skips_soft_deleted(dao, connection):
    dao.create_tx_record(TXRecord(status="hanging", component_try_statuses="{}"))
    connection.execute("UPDATE tx_record SET deleted_at = ? WHERE id = 1", (START.isoformat(),))
    connection.commit()

    assert dao.get_tx_records(with_id(1)) == []


def test_create_tx_record(dao):
    record = TXRecord(status=TXStatus.HANGING.value, component_try_statuses=HANGING_A)

    assert dao.create_tx_record(record) == 1
    assert record.id == 1
    assert record.created_at == START
    assert record.updated_at == START
    (stored,) = dao.get_tx_records(with_id(1))
    assert stored.created_at == START
    assert stored.deleted_at is None


def test_create_keeps_given_timestamps(dao):
    earlier = START - timedelta(days=1)
    record = TXRecord(status="hanging", created_at=earlier, updated_at=earlier)
    dao.create_tx_record(record)

    (stored,) = dao.get_tx_records(with_id(record.id))
    assert stored.created_at == earlier


def test_update_component_status_success(dao, clock):
    dao.create_tx_record(TXRecord(status=TXStatus.HANGING.value, component_try_statuses=HANGING_A))
    later = START + timedelta(minutes=5)
    clock.at = later

    dao.update_component_status(1, "component_a", ComponentTryStatus.SUCCESSFUL.value)

    (stored,) = dao.get_tx_records(with_id(1))
    assert stored.component_try_statuses == SUCCESSFUL_A
    assert stored.status == TXStatus.HANGING.value
    assert stored.updated_at == later


def test_update_component_status_same_status_is_noop(dao, clock):
    dao.create_tx_record(TXRecord(status="hanging", component_try_statuses=SUCCESSFUL_A))
    clock.at = START + timedelta(minutes=5)

    dao.update_component_status(1, "component_a", "successful")

    (stored,) = dao.get_tx_records(with_id(1))
    assert stored.updated_at == START


def test_update_component_status_missing_component(dao):
    dao.create_tx_record(TXRecord(status="hanging", component_try_statuses=HANGING_A))

    with pytest.raises(TCCError, match="invalid component: component_b"):
        dao.update_component_status(1, "component_b", "successful")


def test_update_component_status_from_failure(dao):
    dao.create_tx_record(TXRecord(status="hanging", component_try_statuses=FAILURE_A))

    with pytest.raises(TCCError, match="invalid status: failure"):
        dao.update_component_status(1, "component_a", "successful")
    (stored,) = dao.get_tx_records(with_id(1))
    assert stored.component_try_statuses == FAILURE_A


def test_update_component_status_missing_record(dao):
    with pytest.raises(LookupError):
        dao.update_component_status(9, "component_a", "successful")


def test_update_tx_record(dao, clock):
    dao.create_tx_record(TXRecord(status="failure", component_try_statuses=HANGING_A))
    later = START + timedelta(hours=1)
    clock.at = later

    dao.update_tx_record(TXRecord(id=1, status=TXStatus.HANGING.value, component_try_statuses="{}"))

    (stored,) = dao.get_tx_records(with_id(1))
    assert stored.status == "hanging"
    assert stored.component_try_statuses == "{}"
    assert stored.updated_at == later


def test_update_tx_record_skips_empty_fields(dao):
    dao.create_tx_record(TXRecord(status="hanging", component_try_statuses=HANGING_A))

    dao.update_tx_record(TXRecord(id=1, status="successful"))

    (stored,) = dao.get_tx_records(with_id(1))
    assert stored.status == "successful"
    assert stored.component_try_statuses == HANGING_A


def test_update_tx_record_requires_id(dao):
    with pytest.raises(ValueError):
        dao.update_tx_record(TXRecord(status="successful"))


def test_lock_and_do_returns_action_result(dao):
    dao.create_tx_record(TXRecord(status="hanging"))

    assert dao.lock_and_do(1, lambda _dao, record: record.status) == "hanging"


def test_lock_and_do_rolls_back_on_error(dao):
    dao.create_tx_record(TXRecord(status="hanging"))

    def action(inner, record):
        record.status = "successful"
        inner.update_tx_record(record)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        dao.lock_and_do(1, action)
    (stored,) = dao.get_tx_records(with_id(1))
    assert stored.status == "hanging"