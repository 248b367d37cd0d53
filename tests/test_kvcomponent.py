import time

import pytest

from sharddoc.example.keys import (
    build_data_key,
    build_tx_detail_key,
    build_tx_key,
    build_tx_lock_key,
)
from sharddoc.example.kvcomponent import (
    ComponentTXStatus,
    DataStatus,
    DistributedLock,
    KeyNotFound,
    KVClient,
    KVComponent,
    MemoryKVClient,
)
from sharddoc.tcc.component import TCCError, TCCRequest


class FakeClient(KVClient):
    def __init__(
        self,
        values=None,
        default="",
        get_errors=None,
        set_errors=(),
        set_nx_errors=(),
        set_nx_results=None,
        delete_errors=(),
        lock_fails=False,
    ):
        self.values = values or {}
        self.default = default
        self.get_errors = get_errors or {}
        self.set_errors = set(set_errors)
        self.set_nx_errors = set(set_nx_errors)
        self.set_nx_results = set_nx_results or {}
        self.delete_errors = set(delete_errors)
        self.lock_fails = lock_fails
        self.sets = []
        self.deleted = []

    def get(self, key):
        if key in self.get_errors:
            raise RuntimeError(self.get_errors[key])
        return self.values.get(key, self.default)

    def set(self, key, value, expire=None):
        if key in self.set_errors:
            raise RuntimeError(key)
        if value in self.set_errors:
            raise RuntimeError(value)
        self.sets.append((key, value))

    def set_nx(self, key, value, expire=None):
        if key.startswith("txLockKey:"):
            return not self.lock_fails
        if key in self.set_nx_errors:
            raise RuntimeError(key)
        return self.set_nx_results.get(key, True)

    def delete(self, key):
        if key in self.delete_errors:
            raise RuntimeError(key)
        self.deleted.append(key)

    def compare_and_delete(self, key, value):
        return True


def _try_client(lock_fails=False):
    return FakeClient(
        lock_fails=lock_fails,
        get_errors={build_tx_key("id", "err"): "getErr"},
        values={
            build_tx_key("id", "repeat"): ComponentTXStatus.CONFIRMED.value,
            build_tx_key("id", "cancel"): ComponentTXStatus.CANCELED.value,
        },
        set_errors={"setTXToBizErr", build_tx_key("id", "setTxStatusErr")},
        set_nx_errors={build_data_key("id", "tx", "frozeBizErr")},
        set_nx_results={build_data_key("id", "tx", "frozeBizFail"): False},
    )


def _confirm_client(lock_fails=False):
    return FakeClient(
        lock_fails=lock_fails,
        default=ComponentTXStatus.TRIED.value,
        get_errors={
            build_tx_key("id", "err"): "getErr",
            build_tx_detail_key("id", "txToBizErr"): "txToBizErr",
            build_data_key("id", "getBizErr", "tried"): "getBizErr",
        },
        values={
            build_tx_key("id", "repeat"): ComponentTXStatus.CONFIRMED.value,
            build_tx_key("id", "cancel"): ComponentTXStatus.CANCELED.value,
            build_data_key("id", "getBizUnfrozen", "tried"): "",
            build_data_key("id", "setBizResErr", "tried"): DataStatus.FROZEN.value,
            build_data_key("id", "success", "tried"): DataStatus.FROZEN.value,
        },
        set_errors={build_data_key("id", "setBizResErr", "tried")},
    )


def _cancel_client(lock_fails=False):
    return FakeClient(
        lock_fails=lock_fails,
        default=ComponentTXStatus.TRIED.value,
        get_errors={
            build_tx_key("id", "err"): "getErr",
            build_tx_detail_key("id", "getBizErr"): "getBizErr",
        },
        values={
            build_tx_key("id", "invalidTXStatus"): ComponentTXStatus.CONFIRMED.value,
            build_tx_detail_key("id", "deleteBizFrozeErr"): "deleteBizFrozeErr",
        },
        delete_errors={build_data_key("id", "deleteBizFrozeErr", "deleteBizFrozeErr")},
    )


def test_component_id():
    assert KVComponent("id", _try_client()).component_id == "id"


def test_try_lock_error():
    component = KVComponent("id", _try_client(lock_fails=True))
    with pytest.raises(TCCError):
        component.try_(TCCRequest())


@pytest.mark.parametrize(
    "tx_id, data, message",
    [
        ("err", {}, "getErr"),
        ("tx", {"biz_id": "setTXToBizErr"}, "setTXToBizErr"),
        ("tx", {"biz_id": "frozeBizErr"}, "frozeBizErr"),
        ("setTxStatusErr", {}, "setTxStatusErr"),
    ],
)
def test_try_errors(tx_id, data, message):
    component = KVComponent("id", _try_client())
    with pytest.raises(RuntimeError, match=message):
        component.try_(TCCRequest(tx_id=tx_id, data=data))


@pytest.mark.parametrize(
    "tx_id, data, ack",
    [
        ("repeat", {}, True),
        ("cancel", {}, False),
        ("tx", {"biz_id": "frozeBizFail"}, False),
        ("success", {}, True),
    ],
)
def test_try_ack(tx_id, data, ack):
    component = KVComponent("id", _try_client())
    response = component.try_(TCCRequest(tx_id=tx_id, data=data))
    assert response.ack is ack
    assert response.component_id == "id"
    assert response.tx_id == tx_id


def test_try_success_records_state():
    client = _try_client()
    KVComponent("id", client).try_(TCCRequest(tx_id="success", data={"biz_id": 42}))
    assert client.sets == [
        (build_tx_detail_key("id", "success"), "42"),
        (build_tx_key("id", "success"), "tried"),
    ]


def test_confirm_lock_error():
    component = KVComponent("id", _confirm_client(lock_fails=True))
    with pytest.raises(TCCError):
        component.confirm("")


@pytest.mark.parametrize(
    "tx_id, message",
    [
        ("err", "getErr"),
        ("txToBizErr", "txToBizErr"),
        ("getBizErr", "getBizErr"),
        ("setBizResErr", "setBizResErr"),
    ],
)
def test_confirm_errors(tx_id, message):
    component = KVComponent("id", _confirm_client())
    with pytest.raises(RuntimeError):
        component.confirm(tx_id)


@pytest.mark.parametrize(
    "tx_id, ack",
    [("repeat", True), ("cancel", False), ("getBizUnfrozen", False), ("success", True)],
)
def test_confirm_ack(tx_id, ack):
    component = KVComponent("id", _confirm_client())
    assert component.confirm(tx_id).ack is ack


def test_cancel_lock_error():
    component = KVComponent("id", _cancel_client(lock_fails=True))
    with pytest.raises(TCCError):
        component.cancel("")


def test_cancel_get_error():
    with pytest.raises(RuntimeError, match="getErr"):
        KVComponent("id", _cancel_client()).cancel("err")


def test_cancel_after_confirm_is_invalid():
    with pytest.raises(TCCError, match="invalid tx status: confirmed"):
        KVComponent("id", _cancel_client()).cancel("invalidTXStatus")


def test_cancel_get_biz_error():
    with pytest.raises(RuntimeError, match="getBizErr"):
        KVComponent("id", _cancel_client()).cancel("getBizErr")


def test_cancel_delete_error():
    with pytest.raises(RuntimeError):
        KVComponent("id", _cancel_client()).cancel("deleteBizFrozeErr")


def test_cancel_success():
    client = _cancel_client()
    response = KVComponent("id", client).cancel("success")
    assert response.ack is True
    assert client.deleted == [build_data_key("id", "success", "tried")]
    assert (build_tx_key("id", "success"), "canceled") in client.sets


def test_memory_flow_try_then_confirm():
    client = MemoryKVClient()
    component = KVComponent("a", client)

    assert component.try_(TCCRequest(tx_id="1", data={"biz_id": "order"})).ack is True
    assert client.get(build_data_key("a", "1", "order")) == "frozen"
    assert component.try_(TCCRequest(tx_id="1", data={"biz_id": "order"})).ack is True

    assert component.confirm("1").ack is True
    assert client.get(build_data_key("a", "1", "order")) == "successful"
    assert client.get(build_tx_key("a", "1")) == "confirmed"
    assert component.confirm("1").ack is True
    with pytest.raises(TCCError):
        component.cancel("1")


def test_memory_flow_try_then_cancel():
    client = MemoryKVClient()
    component = KVComponent("a", client)
    component.try_(TCCRequest(tx_id="1", data={"biz_id": "order"}))

    assert component.cancel("1").ack is True
    with pytest.raises(KeyNotFound):
        client.get(build_data_key("a", "1", "order"))
    assert component.try_(TCCRequest(tx_id="1", data={"biz_id": "order"})).ack is False
    assert component.confirm("1").ack is False


def test_confirm_without_try_raises_not_found():
    with pytest.raises(KeyNotFound):
        KVComponent("a", MemoryKVClient()).confirm("missing")


def test_lock_released_after_phase():
    client = MemoryKVClient()
    KVComponent("a", client).try_(TCCRequest(tx_id="1"))
    with pytest.raises(KeyNotFound):
        client.get(build_tx_lock_key("a", "1"))


def test_distributed_lock_excludes_other_owner():
    client = MemoryKVClient()
    first = DistributedLock("k", client)
    second = DistributedLock("k", client)
    first.lock()
    with pytest.raises(TCCError):
        second.lock()
    with pytest.raises(TCCError):
        second.unlock()
    first.unlock()
    with second:
        assert client.get("k") != ""


def test_memory_set_nx_expires():
    client = MemoryKVClient()
    assert client.set_nx("k", "v", expire=0.05) is True
    assert client.set_nx("k", "w") is False
    time.sleep(0.1)
    assert client.set_nx("k", "w") is True
    assert client.get("k") == "w"