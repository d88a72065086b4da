"""Tests for the offline queue storage drivers."""

import json

import pytest

from habituals.offline.ops import MARK_DONE, MutOp, QueueSnapshot
from habituals.offline.storage import (
    FileStorageDriver,
    KeyValueStorageDriver,
    MemoryStorageDriver,
)


def _snapshot():
    return QueueSnapshot(ops=[
        MutOp(
            id="op-1",
            kind=MARK_DONE,
            input={"habit_id": "h1"},
            idempotency_key="k1",
            enqueued_at=1792000000000,
            attempt=2,
        ),
    ])


class DictStore:
    """Minimal get/set/delete client."""

    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def delete(self, key):
        self.data.pop(key, None)


class TestMemoryStorage:

    def test_empty_by_default(self):
        assert len(MemoryStorageDriver().read()) == 0

    def test_write_then_read(self):
        driver = MemoryStorageDriver()
        driver.write(_snapshot())
        op = driver.read().ops[0]
        assert op.idempotency_key == "k1"
        assert op.attempt == 2

    def test_corrupt_blob_reads_empty(self):
        assert len(MemoryStorageDriver("{not json").read()) == 0

    def test_wrong_shape_reads_empty(self):
        assert len(MemoryStorageDriver('{"items": []}').read()) == 0

    def test_clear(self):
        driver = MemoryStorageDriver()
        driver.write(_snapshot())
        driver.clear()
        assert len(driver.read()) == 0


class TestFileStorage:

    def test_missing_file_reads_empty(self, tmp_path):
        assert len(FileStorageDriver(str(tmp_path / "queue.json")).read()) == 0

    def test_persists_client_key_names(self, tmp_path):
        path = tmp_path / "nested" / "queue.json"
        FileStorageDriver(str(path)).write(_snapshot())

        data = json.loads(path.read_text())
        assert data["ops"][0]["idempotencyKey"] == "k1"
        assert data["ops"][0]["enqueuedAt"] == 1792000000000

    def test_survives_a_new_driver(self, tmp_path):
        path = str(tmp_path / "queue.json")
        FileStorageDriver(path).write(_snapshot())
        assert FileStorageDriver(path).read().ops[0].id == "op-1"

    def test_corrupt_file_reads_empty(self, tmp_path):
        path = tmp_path / "queue.json"
        path.write_text("garbage")
        assert len(FileStorageDriver(str(path)).read()) == 0

    def test_clear_missing_file_is_fine(self, tmp_path):
        FileStorageDriver(str(tmp_path / "queue.json")).clear()

    def test_write_failure_propagates(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        driver = FileStorageDriver(str(blocker / "queue.json"))
        with pytest.raises(OSError):
            driver.write(_snapshot())


class TestKeyValueStorage:

    def test_round_trip_under_key(self):
        store = DictStore()
        driver = KeyValueStorageDriver(store, key="q")
        driver.write(_snapshot())
        assert "q" in store.data
        assert driver.read().ops[0].kind == MARK_DONE

    def test_bytes_value_is_decoded(self):
        store = DictStore()
        store.set("habituals.queue", json.dumps(_snapshot().to_dict()).encode("utf-8"))
        assert len(KeyValueStorageDriver(store).read()) == 1

    def test_store_read_error_reads_empty(self):
        class BrokenStore(DictStore):
            def get(self, key):
                raise ConnectionError("store unavailable")

        assert len(KeyValueStorageDriver(BrokenStore()).read()) == 0

    def test_clear_deletes_key(self):
        store = DictStore()
        driver = KeyValueStorageDriver(store)
        driver.write(_snapshot())
        driver.clear()
        assert store.data == {}
