"""Achievement rules evaluated after a habit mutation.

evaluate() is pure: it looks at the (possibly optimistic) habits list and
the event that just happened and returns the achievements it unlocks.
Nothing is remembered between calls, so showing an achievement only once
is up to whoever consumes the result.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from habituals.offline.optimistic import HABIT_LIST, OPTIMISTIC_MARK, OPTIMISTIC_PREVIOUS

FIRST_COMPLETE = "first_complete"
STREAK_3 = "streak_3"
STREAK_7 = "streak_7"
STREAK_30 = "streak_30"
WEEKLY_GOAL = "weekly_goal"
MONTHLY_GOAL = "monthly_goal"
PERFECT_WEEK = "perfect_week"
COMEBACK = "comeback"

ACHIEVEMENT_DEFINITIONS = {
    FIRST_COMPLETE: ("First Step", "Completed your first habit!"),
    STREAK_3: ("3-Day Streak", "Keep the momentum going!"),
    STREAK_7: ("Week Warrior", "7 days in a row - impressive!"),
    STREAK_30: ("Month Master", "30 days straight - legendary!"),
    WEEKLY_GOAL: ("Weekly Champion", "Hit your weekly target!"),
    MONTHLY_GOAL: ("Monthly Hero", "Crushed your monthly goal!"),
    PERFECT_WEEK: ("Perfect Week", "All habits completed this week!"),
    COMEBACK: ("Comeback Kid", "Back on track after a break!"),
}

STREAK_MILESTONES = {3: STREAK_3, 7: STREAK_7, 30: STREAK_30}
COMEBACK_GAP_DAYS = 7

MARK_DONE_EVENT = "mark_done"
UNDO_EVENT = "undo"


@dataclass(frozen=True)
class Achievement:
    id: str
    title: str
    description: str
    type: str


@dataclass(frozen=True)
class AchievementEvent:
    habit_id: str
    occurred_at: str  # ISO-8601
    event_type: str = MARK_DONE_EVENT


@dataclass
class EvaluationResult:
    new: List[Achievement] = field(default_factory=list)
    existing: List[Achievement] = field(default_factory=list)


def _parse_ts(value):
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _achievement(kind, subject, stamp_ms):
    title, description = ACHIEVEMENT_DEFINITIONS[kind]
    return Achievement(
        id=f"{kind}_{subject}_{stamp_ms}",
        title=title,
        description=description,
        type=kind,
    )


def effective_streak(habit):
    """Recorded streak plus the optimistic completion, if any."""
    recorded = habit.get("current_streak") or 0
    if recorded or habit.get(OPTIMISTIC_MARK):
        return recorded + 1
    return 0


def previous_completed_at(habit):
    """last_completed_at before an optimistic paint, else the recorded value."""
    if OPTIMISTIC_PREVIOUS in habit:
        return habit[OPTIMISTIC_PREVIOUS].get("value")
    if habit.get(OPTIMISTIC_MARK):
        return None
    return habit.get("last_completed_at")


def completed_on(habit, day):
    if habit.get(OPTIMISTIC_MARK):
        return True
    completed = _parse_ts(habit.get("last_completed_at"))
    return completed is not None and completed.date() == day


def _habits_of(state):
    if getattr(state, "kind", None) == HABIT_LIST:
        return list(state.habits)
    if isinstance(state, (list, tuple)):
        return list(state)
    return None


def evaluate(state, event: Optional[AchievementEvent] = None, now=None):
    """Achievements unlocked by event against state.

    state is a HabitListState (or a plain list of habit dicts); any other
    shape, a missing event or a non mark-done event yields nothing.
    """
    result = EvaluationResult()
    habits = _habits_of(state)
    if habits is None or event is None or event.event_type != MARK_DONE_EVENT:
        return result

    target = next((h for h in habits if h.get("id") == event.habit_id), None)
    if target is None:
        return result

    now = _parse_ts(now) or datetime.now(timezone.utc)
    occurred = _parse_ts(event.occurred_at) or now
    stamp_ms = int(occurred.timestamp() * 1000)
    habit_id = target["id"]
    previous = previous_completed_at(target)

    if not target.get("total_completions") or (
            target.get(OPTIMISTIC_MARK) and not previous):
        result.new.append(_achievement(FIRST_COMPLETE, habit_id, stamp_ms))

    milestone = STREAK_MILESTONES.get(effective_streak(target))
    if milestone:
        result.new.append(_achievement(milestone, habit_id, stamp_ms))

    today = now.date()
    if len(habits) > 1 and all(completed_on(h, today) for h in habits):
        result.new.append(_achievement(PERFECT_WEEK, "all", stamp_ms))

    last = _parse_ts(previous)
    if last is not None and (occurred - last).days >= COMEBACK_GAP_DAYS:
        result.new.append(_achievement(COMEBACK, habit_id, stamp_ms))

    return result
