"""Optimistic cache transforms for mark-done / undo.

Cached values are wrapped in an explicit state type and the transforms
dispatch on its kind:

- HabitListState:     the cached habits list (records are plain dicts)
- StreakSummaryState: one habit's {current, longest} summary

Anything else passes through unchanged. Transforms never mutate their
input; untouched habit records are passed through as the same objects.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional, Tuple

OPTIMISTIC_MARK = "__optimistic_marked"
# last_completed_at as it was before the paint; absent key means it was unset.
OPTIMISTIC_PREVIOUS = "__optimistic_previous_completed_at"
_UNSET = object()

HABIT_LIST = "habit_list"
STREAK_SUMMARY = "streak_summary"


@dataclass(frozen=True)
class HabitListState:
    habits: Tuple[dict, ...] = ()
    kind: str = field(default=HABIT_LIST, init=False)

    @classmethod
    def of(cls, habits):
        return cls(habits=tuple(habits))


@dataclass(frozen=True)
class StreakSummaryState:
    habit_id: str
    current: int = 0
    longest: int = 0
    optimistic_marked: bool = False
    kind: str = field(default=STREAK_SUMMARY, init=False)


@dataclass(frozen=True)
class UndoInput:
    """Undo target. habit_id scopes the undo to one habit.

    With only event_id the originating habit is unknown, so the marker is
    stripped from every habit in the list.
    """

    habit_id: Optional[str] = None
    event_id: Optional[str] = None


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def _paint(habit, completed_at):
    painted = {**habit, OPTIMISTIC_MARK: True, "last_completed_at": completed_at}
    if OPTIMISTIC_MARK not in habit:
        previous = habit.get("last_completed_at", _UNSET)
        painted[OPTIMISTIC_PREVIOUS] = {} if previous is _UNSET else {"value": previous}
    return painted


def _strip_mark(habit):
    stripped = {k: v for k, v in habit.items() if k not in (OPTIMISTIC_MARK, OPTIMISTIC_PREVIOUS)}
    if OPTIMISTIC_PREVIOUS in habit:
        previous = habit[OPTIMISTIC_PREVIOUS]
        if "value" in previous:
            stripped["last_completed_at"] = previous["value"]
        else:
            stripped.pop("last_completed_at", None)
    return stripped


def apply_optimistic_mark_done(state, mark_input):
    """Paint a speculative completion of mark_input["habit_id"]."""
    habit_id = mark_input.get("habit_id")

    if getattr(state, "kind", None) == HABIT_LIST:
        occurred = mark_input.get("occurred_at_tz") or {}
        completed_at = occurred.get("at") or _now_iso()
        habits = tuple(
            _paint(habit, completed_at) if habit.get("id") == habit_id else habit
            for habit in state.habits
        )
        return HabitListState(habits=habits)

    if getattr(state, "kind", None) == STREAK_SUMMARY:
        current = (state.current or 0) + 1
        return replace(
            state,
            current=current,
            longest=max(state.longest or 0, current),
            optimistic_marked=True,
        )

    return state


def apply_optimistic_undo(state, undo):
    """Reverse a speculative completion. Streak current never drops below 0."""
    if isinstance(undo, dict):
        undo = UndoInput(habit_id=undo.get("habit_id"), event_id=undo.get("event_id"))

    if getattr(state, "kind", None) == HABIT_LIST:
        def matches(habit):
            if undo.habit_id:
                return habit.get("id") == undo.habit_id
            return bool(undo.event_id)

        habits = tuple(
            _strip_mark(habit) if matches(habit) and OPTIMISTIC_MARK in habit else habit
            for habit in state.habits
        )
        return HabitListState(habits=habits)

    if getattr(state, "kind", None) == STREAK_SUMMARY:
        if not state.optimistic_marked:
            return state
        return replace(
            state,
            current=max(0, (state.current or 0) - 1),
            optimistic_marked=False,
        )

    return state
