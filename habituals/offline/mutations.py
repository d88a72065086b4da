"""Habit mutation pipeline.

Ties the optimistic cache, the offline queue and the repository together
for one user action:

1. Snapshot the affected cache entries and paint the optimistic state.
2. Persist the op in the durable queue, then call the repository directly
   so the caller sees the outcome now. If the direct call cannot finish,
   the queue still delivers the op later.
3. On success: refetch the affected entries and, for mark-done, evaluate
   achievements against the refreshed habits list.
4. On E.CONFLICT_VERSION: refetch, keep the optimistic paint.
5. On a permanent error: restore the snapshots and strip any leftover
   optimistic markers.
6. On any other error: leave the cache alone; the queue keeps retrying.

create_habit is only queued after a retryable failure, since creates
carry no server-side idempotency key.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

from habituals.offline.achievements import AchievementEvent, evaluate
from habituals.offline.cache import HABITS_KEY, streak_key
from habituals.offline.errors import CONFLICT_VERSION, DataError, is_permanent, to_data_error
from habituals.offline.ops import CREATE_HABIT, DELETE_HABIT, MARK_DONE, UNDO_EVENT, UPDATE_HABIT
from habituals.offline.optimistic import (
    UndoInput,
    apply_optimistic_mark_done,
    apply_optimistic_undo,
)

logger = logging.getLogger(__name__)


def disabled_enqueue(kind, input, idempotency_key):
    """Enqueue target for wiring without durable delivery (tests, previews)."""
    logger.debug(f"Queue disabled, not persisting {kind} (key={idempotency_key})")
    return None


DISABLED_ENQUEUE = disabled_enqueue


class NullNotifier:
    """Achievement observer that ignores every emission."""

    def __call__(self, achievement):
        return None


def make_idempotency_key():
    return str(uuid.uuid4())


def occurred_at(tz="UTC", at=None):
    """The {tz, at} payload the mark-done RPC expects."""
    if at is None:
        at = datetime.now(timezone.utc)
    if isinstance(at, datetime):
        at = at.isoformat()
    return {"tz": tz, "at": at}


@dataclass
class MutationOutcome:
    ok: bool
    result: Any = None
    error: Optional[DataError] = None
    rolled_back: bool = False
    achievements: List = field(default_factory=list)

    @property
    def conflict(self):
        return self.error is not None and self.error.code == CONFLICT_VERSION

    @property
    def pending(self):
        """Failed now, but the queue will keep retrying."""
        return (self.error is not None and not self.conflict
                and not is_permanent(self.error.code))


class HabitMutations:
    def __init__(self, repo, cache, enqueue, notify):
        if enqueue is None:
            raise ValueError("enqueue is required (use DISABLED_ENQUEUE to opt out)")
        if notify is None:
            raise ValueError("notify is required (use NullNotifier() to opt out)")
        self.repo = repo
        self.cache = cache
        self.enqueue = enqueue
        self.notify = notify

    def _call(self, fn, *args):
        try:
            return fn(*args), None
        except Exception as e:
            return None, to_data_error(e)

    def _refetch(self, *keys):
        for key in keys:
            self.cache.invalidate(key)

    def _restore(self, snapshots):
        for key, previous in snapshots.items():
            if previous is None:
                self.cache.remove(key)
            else:
                self.cache.set(key, previous)

    # --- Plain mutations ---

    def create_habit(self, habit_input, idempotency_key=None):
        result, error = self._call(self.repo.create_habit, habit_input)
        if error is None:
            self._refetch(HABITS_KEY)
            return MutationOutcome(ok=True, result=result)

        if not is_permanent(error.code) and error.code != CONFLICT_VERSION:
            self.enqueue(CREATE_HABIT, habit_input,
                         idempotency_key or make_idempotency_key())
        logger.warning(f"create_habit failed: {error.code}")
        return MutationOutcome(ok=False, error=error)

    def update_habit(self, habit_id, patch, idempotency_key=None):
        self.enqueue(UPDATE_HABIT, {"id": habit_id, "patch": patch},
                     idempotency_key or make_idempotency_key())
        result, error = self._call(self.repo.update_habit, habit_id, patch)
        if error is None or error.code == CONFLICT_VERSION:
            self._refetch(HABITS_KEY, streak_key(habit_id))
        return MutationOutcome(ok=error is None, result=result, error=error)

    def delete_habit(self, habit_id, idempotency_key=None):
        self.enqueue(DELETE_HABIT, habit_id,
                     idempotency_key or f"delete:{habit_id}")
        result, error = self._call(self.repo.delete_habit, habit_id)
        if error is None or error.code == CONFLICT_VERSION:
            self._refetch(HABITS_KEY)
            self.cache.remove(streak_key(habit_id))
        return MutationOutcome(ok=error is None, result=result, error=error)

    # --- Optimistic mutations ---

    def mark_done(self, habit_id, idempotency_key=None, occurred_at_tz=None):
        mark_input = {
            "habit_id": habit_id,
            "idempotency_key": idempotency_key or make_idempotency_key(),
            "occurred_at_tz": occurred_at_tz or occurred_at(),
        }
        keys = (HABITS_KEY, streak_key(habit_id))
        snapshots = {key: self.cache.get(key) for key in keys}
        for key in keys:
            self.cache.update(key, lambda old: apply_optimistic_mark_done(old, mark_input))

        try:
            self.enqueue(MARK_DONE, mark_input, mark_input["idempotency_key"])
        except Exception:
            self._restore(snapshots)
            raise
        event, error = self._call(self.repo.mark_done, mark_input)

        if error is None:
            self._refetch(*keys)
            achievements = self._evaluate(habit_id, mark_input) if event else []
            return MutationOutcome(ok=True, result=event, achievements=achievements)

        undo = UndoInput(habit_id=habit_id)
        return self._settle_failure(error, keys, snapshots, undo)

    def undo_event(self, event_id, habit_id=None, idempotency_key=None):
        keys = [HABITS_KEY]
        if habit_id:
            keys.append(streak_key(habit_id))
        snapshots = {key: self.cache.get(key) for key in keys}
        undo = UndoInput(habit_id=habit_id, event_id=event_id)
        for key in keys:
            self.cache.update(key, lambda old: apply_optimistic_undo(old, undo))

        try:
            self.enqueue(UNDO_EVENT, event_id, idempotency_key or f"undo:{event_id}")
        except Exception:
            self._restore(snapshots)
            raise
        event, error = self._call(self.repo.undo_event, event_id)

        if error is None:
            self._refetch(*keys)
            return MutationOutcome(ok=True, result=event)

        if error.code == CONFLICT_VERSION:
            self._refetch(*keys)
            return MutationOutcome(ok=False, error=error)
        if is_permanent(error.code):
            self._restore(snapshots)
            return MutationOutcome(ok=False, error=error, rolled_back=True)
        return MutationOutcome(ok=False, error=error)

    def _settle_failure(self, error, keys, snapshots, undo):
        if error.code == CONFLICT_VERSION:
            # Server already reflects a concurrent completion; keep the paint.
            self._refetch(*keys)
            logger.info(f"Conflict on {undo.habit_id}, refetched without rollback")
            return MutationOutcome(ok=False, error=error)

        if is_permanent(error.code):
            self._restore(snapshots)
            for key in keys:
                self.cache.update(key, lambda old: apply_optimistic_undo(old, undo))
            logger.warning(f"Rolled back optimistic update for {undo.habit_id}: {error.code}")
            return MutationOutcome(ok=False, error=error, rolled_back=True)

        logger.info(f"Mutation for {undo.habit_id} pending retry: {error.code}")
        return MutationOutcome(ok=False, error=error)

    def _evaluate(self, habit_id, mark_input):
        habits = self.cache.get(HABITS_KEY)
        if habits is None:
            return []
        event = AchievementEvent(
            habit_id=habit_id,
            occurred_at=mark_input["occurred_at_tz"]["at"],
        )
        achievements = evaluate(habits, event).new
        for achievement in achievements:
            self.notify(achievement)
        return achievements
