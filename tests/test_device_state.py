"""Tests for the device state model and repository."""
import threading
from unittest.mock import MagicMock, call

import pytest

from latch_gateway.device_state import DeviceState, DeviceStateRepository
from latch_gateway.store import StateStore


def test_defaults_when_node_missing():
    assert DeviceState.from_node(None) == DeviceState(relay="0", pir="Idle", latch="off", mode="auto")


def test_partial_node_keeps_defaults_for_missing_fields():
    state = DeviceState.from_node({"relay": "1"})
    assert state.relay == "1"
    assert state.pir == "Idle"
    assert state.latch == "off"
    assert state.mode == "auto"


def test_empty_values_fall_back_to_defaults():
    assert DeviceState.from_node({"mode": "", "pir": None}).model_dump() == DeviceState().model_dump()


def test_numeric_values_are_stringified():
    assert DeviceState.from_node({"relay": 1}).relay == "1"


def test_read_and_read_raw(store):
    repo = DeviceStateRepository(store, "devices")
    store.update("devices", {"pir": "ON"})
    assert repo.read_raw() == {"pir": "ON"}
    assert repo.read().pir == "ON"
    assert repo.read().relay == "0"


def test_read_raw_empty_store(store):
    assert DeviceStateRepository(store, "devices").read_raw() == {}


def test_set_field_rejects_unknown_field(store):
    with pytest.raises(ValueError):
        DeviceStateRepository(store, "devices").set_field("brightness", "10")


def test_merge_ignores_unknown_and_none(store):
    repo = DeviceStateRepository(store, "devices")
    changes = repo.merge({"relay": 1, "pir": None, "colour": "red"})
    assert changes == {"relay": "1"}
    assert store.get("devices") == {"relay": "1"}


def test_merge_with_nothing_does_not_write():
    store = MagicMock(spec=StateStore)
    DeviceStateRepository(store, "devices").merge({})
    store.update.assert_not_called()


def test_switch_on_is_two_sequential_writes():
    store = MagicMock(spec=StateStore)
    DeviceStateRepository(store, "devices").switch(True)
    assert store.update.call_args_list == [
        call("devices", {"relay": "1"}),
        call("devices", {"mode": "manual"}),
    ]


def test_switch_off_sets_manual_mode(store):
    repo = DeviceStateRepository(store, "devices")
    store.set("devices", {"relay": "1", "mode": "auto", "latch": "on"})
    repo.switch(False)
    assert store.get("devices") == {"relay": "0", "mode": "manual", "latch": "on"}


def test_node_path_is_configurable(store):
    DeviceStateRepository(store, "homes/h1/device").set_field("latch", "on")
    assert store.get("homes/h1/device") == {"latch": "on"}
    assert store.get("devices") is None


def _run_together(*writers):
    barrier = threading.Barrier(len(writers))
    errors = []

    def run(fn):
        barrier.wait()
        try:
            fn()
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=run, args=(fn,)) for fn in writers]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return errors


def test_concurrent_writers_of_different_fields_keep_all(store):
    repo = DeviceStateRepository(store, "devices")
    values = {"relay": "1", "pir": "ON", "latch": "on", "mode": "manual"}
    for _ in range(20):
        errors = _run_together(*[lambda f=f, v=v: repo.set_field(f, v) for f, v in values.items()])
        assert errors == []
        assert repo.read_raw() == values
        store.remove("devices")


def test_concurrent_first_writes_on_empty_node(store):
    repo = DeviceStateRepository(store, "devices")
    errors = _run_together(lambda: repo.set_field("relay", "1"), lambda: repo.set_mode("manual"))
    assert errors == []
    assert repo.read_raw() == {"relay": "1", "mode": "manual"}


def test_concurrent_writers_of_same_field_last_one_wins(store):
    repo = DeviceStateRepository(store, "devices")
    store.set("devices", {"mode": "auto"})
    errors = _run_together(lambda: repo.set_field("relay", "1"), lambda: repo.set_field("relay", "0"))
    assert errors == []
    assert repo.read().relay in ("1", "0")
    assert repo.read().mode == "auto"
