"""Tests for the key-path state store client."""
import threading
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from latch_gateway.http_errors import StoreUnavailableError
from latch_gateway.store import StateStore, flatten, join_path, normalize_path


class TestPaths:
    def test_normalize_strips_slashes(self):
        assert normalize_path("/devices/") == "devices"

    def test_normalize_collapses_empty_segments(self):
        assert normalize_path("oauth//codes/abc") == "oauth/codes/abc"

    def test_empty_path_rejected(self):
        with pytest.raises(ValueError):
            normalize_path("//")

    def test_join(self):
        assert join_path("oauth/tokens", "t1") == "oauth/tokens/t1"

    def test_flatten_nested(self):
        assert flatten("n", {"a": 1, "b": {"c": 2}}) == {"n/a": 1, "n/b/c": 2}

    def test_flatten_scalar_and_empty(self):
        assert flatten("n", "x") == {"n": "x"}
        assert flatten("n", {}) == {}


class TestOperations:
    def test_get_missing_returns_none(self, store):
        assert store.get("devices") is None

    def test_set_then_get(self, store):
        store.set("devices", {"relay": "1"})
        assert store.get("devices") == {"relay": "1"}

    def test_set_replaces_whole_value(self, store):
        store.set("devices", {"relay": "1", "mode": "manual"})
        store.set("devices", {"pir": "ON"})
        assert store.get("devices") == {"pir": "ON"}

    def test_update_creates_partial_record(self, store):
        store.update("devices", {"latch": "on"})
        assert store.get("devices") == {"latch": "on"}

    def test_update_merges_fields(self, store):
        store.set("devices", {"relay": "1", "mode": "manual"})
        store.update("devices", {"mode": "auto", "pir": "ON"})
        assert store.get("devices") == {"relay": "1", "mode": "auto", "pir": "ON"}

    def test_update_on_scalar_replaces_it(self, store):
        store.set("devices", "garbage")
        store.update("devices", {"relay": "0"})
        assert store.get("devices") == {"relay": "0"}

    def test_remove(self, store):
        store.set("oauth/codes/abc", {"client_id": "c"})
        store.remove("oauth/codes/abc")
        assert store.get("oauth/codes/abc") is None

    def test_remove_missing_is_noop(self, store):
        store.remove("oauth/codes/nope")

    def test_paths_are_independent(self, store):
        store.set("oauth/tokens/a", {"userId": "u"})
        store.set("oauth/tokens/b", {"userId": "v"})
        store.remove("oauth/tokens/a")
        assert store.get("oauth/tokens/b") == {"userId": "v"}

    def test_write_visible_to_another_client(self, store, tmp_path):
        from latch_gateway.store import init_store

        store.update("devices", {"relay": "1"})
        other = init_store(f"sqlite:///{tmp_path / 'unit.db'}")
        try:
            assert other.get("devices") == {"relay": "1"}
        finally:
            other.dispose()


    def test_nested_value_round_trip(self, store):
        record = {"userId": "u", "expiresAt": 1700000000000, "extra": {"scope": "all"}}
        store.set("oauth/tokens/t1", record)
        assert store.get("oauth/tokens/t1") == record
        assert store.get("oauth/tokens/t1/extra/scope") == "all"

    def test_paths_are_case_sensitive(self, store):
        store.set("oauth/tokens/abc", {"userId": "u"})
        assert store.get("oauth/tokens/ABC") is None

    def test_remove_does_not_touch_sibling_prefix(self, store):
        store.set("a", {"x": "1"})
        store.set("ab", {"x": "2"})
        store.remove("a")
        assert store.get("ab") == {"x": "2"}

    def test_set_scalar_over_nested_value(self, store):
        store.set("devices", {"relay": "1"})
        store.set("devices/relay/extra", "x")
        assert store.get("devices") == {"relay": {"extra": "x"}}
        store.set("devices", "flat")
        assert store.get("devices") == "flat"


class TestConcurrency:
    THREADS = 4

    def _race(self, *writers):
        barrier = threading.Barrier(len(writers))
        errors = []

        def run(fn):
            barrier.wait()
            try:
                fn()
            except Exception as e:  # collected and asserted on below
                errors.append(e)

        threads = [threading.Thread(target=run, args=(fn,)) for fn in writers]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return errors

    def test_concurrent_first_updates_all_land(self, store):
        fields = [f"f{i}" for i in range(self.THREADS)]
        for _ in range(10):
            errors = self._race(*[lambda f=f: store.update("devices", {f: "1"}) for f in fields])
            assert errors == []
            assert store.get("devices") == {f: "1" for f in fields}
            store.remove("devices")

    def test_concurrent_same_field_last_writer_wins(self, store):
        errors = self._race(
            lambda: store.update("devices", {"relay": "1"}),
            lambda: store.update("devices", {"relay": "0"}),
        )
        assert errors == []
        assert store.get("devices") in ({"relay": "1"}, {"relay": "0"})

class TestFailures:
    def _broken_store(self):
        factory = MagicMock()
        factory.begin.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
        return StateStore(MagicMock(), session_factory=factory)

    def test_get_raises_store_unavailable(self):
        with pytest.raises(StoreUnavailableError) as exc:
            self._broken_store().get("devices")
        assert "get" in exc.value.message

    def test_update_raises_store_unavailable(self):
        with pytest.raises(StoreUnavailableError):
            self._broken_store().update("devices", {"relay": "1"})
