"""Storage drivers for the offline queue.

A driver persists exactly one QueueSnapshot as a JSON blob.

- read()  never raises: missing or corrupt data reads as an empty queue.
- write() may raise: a failed persist must reach the caller.
- clear() removes the blob.

Drivers:
- MemoryStorageDriver:   process memory (tests, ephemeral hosts)
- FileStorageDriver:     a JSON file on local disk (desktop / browser-like hosts)
- KeyValueStorageDriver: any key-value client exposing get/set/delete,
                         e.g. a redis.Redis instance or a device store bridge
"""

import json
import logging
import os
import tempfile

from habituals.offline.ops import QueueSnapshot

logger = logging.getLogger(__name__)

DEFAULT_KEY = "habituals.queue"


def _decode(raw):
    if raw is None or raw == "" or raw == b"":
        return QueueSnapshot()
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return QueueSnapshot.from_dict(json.loads(raw))


def _encode(snapshot):
    return json.dumps(snapshot.to_dict(), separators=(",", ":"))


class StorageDriver:
    """Interface for queue persistence."""

    def read(self):
        raise NotImplementedError

    def write(self, snapshot):
        raise NotImplementedError

    def clear(self):
        raise NotImplementedError


class MemoryStorageDriver(StorageDriver):
    """Keeps the encoded blob in memory. Readers never share state with the queue."""

    def __init__(self, raw=None):
        self._raw = raw

    def read(self):
        try:
            return _decode(self._raw)
        except Exception as e:
            logger.warning(f"Discarding unreadable in-memory queue: {e}")
            return QueueSnapshot()

    def write(self, snapshot):
        self._raw = _encode(snapshot)

    def clear(self):
        self._raw = None


class FileStorageDriver(StorageDriver):
    """Persists the blob to a JSON file, replaced atomically on every write."""

    def __init__(self, path):
        self.path = os.path.expanduser(path)

    def read(self):
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return _decode(f.read())
        except FileNotFoundError:
            return QueueSnapshot()
        except Exception as e:
            logger.warning(f"Discarding unreadable queue file {self.path}: {e}")
            return QueueSnapshot()

    def write(self, snapshot):
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".queue-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(_encode(snapshot))
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.remove(tmp_path)
            except FileNotFoundError:
                pass
            raise

    def clear(self):
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass


class KeyValueStorageDriver(StorageDriver):
    """Stores the blob under one key of a get/set/delete key-value client."""

    def __init__(self, store, key=DEFAULT_KEY):
        self.store = store
        self.key = key

    def read(self):
        try:
            return _decode(self.store.get(self.key))
        except Exception as e:
            logger.warning(f"Discarding unreadable queue at key {self.key}: {e}")
            return QueueSnapshot()

    def write(self, snapshot):
        self.store.set(self.key, _encode(snapshot))

    def clear(self):
        self.store.delete(self.key)
