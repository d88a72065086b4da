"""Queued write operations and the persisted queue snapshot.

The snapshot is stored as one JSON blob:

    {"ops": [{"id", "kind", "input", "idempotencyKey", "enqueuedAt", "attempt"}]}

Key names follow the format already written by the web and mobile clients,
so a queue persisted by either can be drained here.
"""

from dataclasses import dataclass, field
from typing import Any, List

CREATE_HABIT = "createHabit"
UPDATE_HABIT = "updateHabit"
DELETE_HABIT = "deleteHabit"
MARK_DONE = "markDone"
UNDO_EVENT = "undoEvent"

MUT_KINDS = (CREATE_HABIT, UPDATE_HABIT, DELETE_HABIT, MARK_DONE, UNDO_EVENT)


@dataclass
class MutOp:
    """A pending write intent."""

    id: str
    kind: str
    input: Any
    idempotency_key: str
    enqueued_at: int  # epoch milliseconds
    attempt: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "input": self.input,
            "idempotencyKey": self.idempotency_key,
            "enqueuedAt": self.enqueued_at,
            "attempt": self.attempt,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MutOp":
        return cls(
            id=str(data["id"]),
            kind=data["kind"],
            input=data.get("input"),
            idempotency_key=str(data["idempotencyKey"]),
            enqueued_at=int(data.get("enqueuedAt") or 0),
            attempt=int(data.get("attempt") or 0),
        )


@dataclass
class QueueSnapshot:
    """Ordered pending ops; head of the list is delivered first."""

    ops: List[MutOp] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"ops": [op.to_dict() for op in self.ops]}

    @classmethod
    def from_dict(cls, data: Any) -> "QueueSnapshot":
        """Build a snapshot from decoded JSON. Raises on a malformed blob."""
        if not isinstance(data, dict) or not isinstance(data.get("ops"), list):
            raise ValueError("queue snapshot must be an object with an 'ops' list")
        return cls(ops=[MutOp.from_dict(op) for op in data["ops"]])

    def has_key(self, idempotency_key: str) -> bool:
        return any(op.idempotency_key == idempotency_key for op in self.ops)

    def __len__(self):
        return len(self.ops)
