"""Dispatch a queued op to the matching repository call."""

from habituals.offline.errors import VALIDATION_FAILED, DataError
from habituals.offline.ops import (
    CREATE_HABIT,
    DELETE_HABIT,
    MARK_DONE,
    UNDO_EVENT,
    UPDATE_HABIT,
)


def run_op(repo, op):
    """Deliver op through repo. Unknown kinds are a permanent validation failure."""
    if op.kind == CREATE_HABIT:
        return repo.create_habit(op.input)
    if op.kind == UPDATE_HABIT:
        payload = op.input or {}
        if not isinstance(payload, dict) or "id" not in payload:
            raise DataError(VALIDATION_FAILED, "updateHabit input needs an id")
        return repo.update_habit(payload["id"], payload.get("patch") or {})
    if op.kind == DELETE_HABIT:
        return repo.delete_habit(op.input)
    if op.kind == MARK_DONE:
        return repo.mark_done(op.input)
    if op.kind == UNDO_EVENT:
        return repo.undo_event(op.input)
    raise DataError(VALIDATION_FAILED, f"unknown op kind: {op.kind}")
