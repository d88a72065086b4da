"""Client-side data core: offline queue, optimistic cache, achievements.

Nothing in this package needs a Flask app; it only reads the same config
keys (QUEUE_*, SUPABASE_*) from whatever mapping it is handed.
"""

from habituals.offline.queue import OfflineQueue
from habituals.offline.repository import SupabaseHabitsRepository
from habituals.offline.storage import DEFAULT_KEY, FileStorageDriver, KeyValueStorageDriver


def build_storage(config, store=None):
    """Key-value driver when a store client is given, else the JSON file driver."""
    if store is not None:
        return KeyValueStorageDriver(store, config.get("QUEUE_STORAGE_KEY") or DEFAULT_KEY)
    return FileStorageDriver(config["QUEUE_STORAGE_PATH"])


def build_queue(config, storage=None, repo=None, **kwargs):
    """OfflineQueue wired from config: persisted storage + Supabase repository."""
    if storage is None:
        storage = build_storage(config)
    if repo is None:
        repo = SupabaseHabitsRepository.from_config(config)
    return OfflineQueue.from_config(config, storage, repo, **kwargs)
