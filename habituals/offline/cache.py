"""In-memory query cache used by the mutation pipeline.

Keys are tuples: ("habits",) for the habits list, ("streak", habit_id)
for one habit's streak summary. invalidate() refetches through the
fetcher registered for the key's first element; without one the entry
is evicted.
"""

import logging
import threading

from habituals.offline.errors import DataError
from habituals.offline.optimistic import HabitListState, StreakSummaryState

logger = logging.getLogger(__name__)

HABITS_KEY = ("habits",)


def streak_key(habit_id):
    return ("streak", habit_id)


class QueryCache:
    def __init__(self):
        self._data = {}
        self._fetchers = {}
        self._lock = threading.RLock()

    def register_fetcher(self, prefix, fetcher):
        """fetcher(key) -> fresh value for every key starting with prefix."""
        self._fetchers[prefix] = fetcher

    def get(self, key, default=None):
        with self._lock:
            return self._data.get(key, default)

    def __contains__(self, key):
        with self._lock:
            return key in self._data

    def set(self, key, value):
        with self._lock:
            self._data[key] = value

    def update(self, key, updater):
        """Replace the cached value with updater(old). No-op for a missing key."""
        with self._lock:
            if key not in self._data:
                return
            self._data[key] = updater(self._data[key])

    def remove(self, key):
        with self._lock:
            self._data.pop(key, None)

    def invalidate(self, key):
        """Refetch key; keep the stale value when the refetch fails."""
        fetcher = self._fetchers.get(key[0])
        if fetcher is None:
            self.remove(key)
            return
        try:
            value = fetcher(key)
        except DataError as e:
            logger.warning(f"Refetch of {key} failed, keeping stale value: {e.code}")
            return
        self.set(key, value)

    @classmethod
    def for_repository(cls, repo):
        """Cache that refetches habits and streaks from repo."""
        cache = cls()
        cache.register_fetcher(
            "habits", lambda key: HabitListState.of(repo.list_habits())
        )

        def fetch_streak(key):
            summary = repo.get_streak(key[1])
            return StreakSummaryState(
                habit_id=key[1],
                current=summary.get("current") or 0,
                longest=summary.get("longest") or 0,
            )

        cache.register_fetcher("streak", fetch_streak)
        return cache
