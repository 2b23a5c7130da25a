"""Tests for the key-value stores and the atomic JSON writer."""

import json

from filelock import FileLock

from order_notifier.shared.storage import (
    JsonFileStore,
    MemoryStore,
    RequestCookieStore,
    atomic_write_json,
    read_json,
)


# =========================================================================
# JSON file helpers
# =========================================================================


class TestJsonHelpers:
    def test_read_missing_file_is_none(self, tmp_path):
        assert read_json(tmp_path / "nope.json") is None

    def test_read_corrupt_file_is_none(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        assert read_json(path) is None

    def test_atomic_write_roundtrip_leaves_no_temp_files(self, tmp_path):
        path = tmp_path / "sub" / "doc.json"
        assert atomic_write_json(path, {"events": []}) is True
        assert json.loads(path.read_text(encoding="utf-8")) == {"events": []}
        assert not list(path.parent.glob(".*.tmp"))

    def test_atomic_write_times_out_when_lock_is_held(self, tmp_path):
        path = tmp_path / "doc.json"
        with FileLock(str(path) + ".lock"):
            assert atomic_write_json(path, {"x": 1}, lock_timeout_s=0.05) is False
        assert not path.exists()


# =========================================================================
# MemoryStore
# =========================================================================


class TestMemoryStore:
    def test_set_get_delete(self, clock):
        store = MemoryStore(clock)
        store.set("a", 1)
        assert store.get("a") == 1
        assert store.delete("a") is True
        assert store.get("a") is None
        assert store.delete("a") is False

    def test_ttl_expiry(self, clock):
        store = MemoryStore(clock)
        store.set("marker", "0", ttl_s=300)
        clock.advance(299)
        assert store.get("marker") == "0"
        clock.advance(1)
        assert store.get("marker") is None
        assert list(store.keys()) == []

    def test_delete_prefix(self, clock):
        store = MemoryStore(clock)
        store.set("wc_new_orders_processing", {})
        store.set("wc_new_orders_on-hold", {})
        store.set("on_ctx", 1)
        assert store.delete_prefix("wc_new_orders_") == 2
        assert list(store.keys()) == ["on_ctx"]


# =========================================================================
# JsonFileStore
# =========================================================================


class TestJsonFileStore:
    def test_values_survive_new_instances(self, tmp_path, clock):
        path = tmp_path / "user-meta.json"
        JsonFileStore(path, clock).set("7:ctx", {"last_seen_order_id": 500})
        assert JsonFileStore(path, clock).get("7:ctx") == {"last_seen_order_id": 500}

    def test_ttl_expiry(self, tmp_path, clock):
        store = JsonFileStore(tmp_path / "transients.json", clock)
        store.set("cache", {"id": 1}, ttl_s=300)
        clock.advance(300)
        assert store.get("cache") is None
        assert store.has("cache") is False

    def test_delete_reports_presence(self, tmp_path, clock):
        store = JsonFileStore(tmp_path / "t.json", clock)
        store.set("k", 1)
        assert store.delete("k") is True
        assert store.delete("k") is False

    def test_corrupt_file_reads_empty(self, tmp_path, clock):
        path = tmp_path / "t.json"
        path.write_text("[]garbage", encoding="utf-8")
        store = JsonFileStore(path, clock)
        assert store.get("k", "default") == "default"
        assert store.set("k", 2) is True
        assert store.get("k") == 2


# =========================================================================
# RequestCookieStore
# =========================================================================


class TestRequestCookieStore:
    def test_records_deletions(self):
        store = RequestCookieStore({"on_ack_abc": "1", "other": "x"})
        assert store.get("on_ack_abc") == "1"
        assert store.delete("on_ack_abc") is True
        assert store.delete("missing") is False
        assert store.deleted == {"on_ack_abc"}
        assert store.get("on_ack_abc") is None
