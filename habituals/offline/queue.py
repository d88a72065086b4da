"""Offline mutation queue.

Durable, ordered, at-least-once delivery of pending writes.

- enqueue() appends an op unless one with the same idempotency key is
  already queued. It only touches storage, never the network.
- drain() delivers ops strictly head-first through the repository. Only
  one drain runs per queue instance; a second call returns at once. A
  failing head op blocks everything behind it until it succeeds, is
  classified permanent, or runs out of attempts.
- Nothing is popped before its outcome is known, so a process that dies
  mid-drain resumes from the same head op.

Storage read failures read as an empty queue. Storage write failures
propagate to the caller.
"""

import logging
import random
import threading
import time
import uuid
from dataclasses import dataclass

from habituals.offline.backoff import next_delay_ms
from habituals.offline.errors import is_permanent, to_data_error
from habituals.offline.ops import MUT_KINDS, MutOp, QueueSnapshot
from habituals.offline.runner import run_op

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 4


@dataclass
class DrainResult:
    delivered: int = 0
    dropped: int = 0
    retried: int = 0
    already_running: bool = False
    cancelled: bool = False


class OfflineQueue:
    def __init__(self, storage, repo, max_attempts=DEFAULT_MAX_ATTEMPTS,
                 backoff_base_ms=500, backoff_max_ms=10_000,
                 sleep=None, rng=random, clock=time.time):
        self.storage = storage
        self.repo = repo
        self.max_attempts = max_attempts
        self.backoff_base_ms = backoff_base_ms
        self.backoff_max_ms = backoff_max_ms
        self._sleep = sleep
        self._rng = rng
        self._clock = clock
        self._drain_lock = threading.Lock()
        # Serializes read-modify-write of the snapshot within this process.
        self._storage_lock = threading.RLock()

    @classmethod
    def from_config(cls, config, storage, repo, **kwargs):
        """Build with the QUEUE_* knobs of a Flask-style config mapping."""
        return cls(
            storage,
            repo,
            max_attempts=config.get("QUEUE_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            backoff_base_ms=config.get("QUEUE_BACKOFF_BASE_MS", 500),
            backoff_max_ms=config.get("QUEUE_BACKOFF_MAX_MS", 10_000),
            **kwargs,
        )

    @property
    def is_draining(self):
        return self._drain_lock.locked()

    # --- Storage ---

    def read(self):
        """Current snapshot; empty when storage is missing or corrupt."""
        try:
            return self.storage.read()
        except Exception as e:
            logger.warning(f"Queue storage read failed, treating as empty: {e}")
            return QueueSnapshot()

    def clear(self):
        with self._storage_lock:
            self.storage.clear()

    def enqueue(self, kind, input, idempotency_key):
        """Persist a new op. Returns it, or None when the key is already queued."""
        if kind not in MUT_KINDS:
            raise ValueError(f"unknown op kind: {kind}")
        if not idempotency_key:
            raise ValueError("idempotency_key is required")

        with self._storage_lock:
            snapshot = self.read()
            if snapshot.has_key(idempotency_key):
                logger.debug(f"Op {idempotency_key} already queued, skipping")
                return None
            op = MutOp(
                id=str(uuid.uuid4()),
                kind=kind,
                input=input,
                idempotency_key=idempotency_key,
                enqueued_at=int(self._clock() * 1000),
                attempt=0,
            )
            snapshot.ops.append(op)
            self.storage.write(snapshot)

        logger.info(f"Queued {kind} op {op.id} (key={idempotency_key})")
        return op

    def _pop(self, op_id):
        with self._storage_lock:
            snapshot = self.read()
            snapshot.ops = [op for op in snapshot.ops if op.id != op_id]
            self.storage.write(snapshot)

    def _bump_attempt(self, op_id):
        """Increment and persist the op's attempt count. None if the op is gone."""
        with self._storage_lock:
            snapshot = self.read()
            for op in snapshot.ops:
                if op.id == op_id:
                    op.attempt += 1
                    self.storage.write(snapshot)
                    return op.attempt
        return None

    # --- Delivery ---

    def _pause(self, seconds, cancel):
        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel is not None:
            cancel.wait(seconds)
        else:
            time.sleep(seconds)

    def drain(self, cancel=None):
        """Deliver queued ops until empty or cancel (a threading.Event) is set.

        Cancellation never interrupts an in-flight repository call; it is
        checked after each delivered, dropped or retried op.
        """
        if not self._drain_lock.acquire(blocking=False):
            return DrainResult(already_running=True)

        result = DrainResult()
        try:
            while True:
                snapshot = self.read()
                if not snapshot.ops:
                    break
                op = snapshot.ops[0]

                try:
                    run_op(self.repo, op)
                except Exception as e:
                    error = to_data_error(e)
                    self._handle_failure(op, error, result, cancel)
                else:
                    self._pop(op.id)
                    result.delivered += 1
                    logger.info(f"Delivered {op.kind} op {op.id}")

                if cancel is not None and cancel.is_set():
                    result.cancelled = True
                    break
        finally:
            self._drain_lock.release()

        return result

    def _handle_failure(self, op, error, result, cancel):
        if is_permanent(error.code):
            self._pop(op.id)
            result.dropped += 1
            logger.warning(f"Dropped {op.kind} op {op.id}: permanent {error.code}")
            return

        attempt = self._bump_attempt(op.id)
        if attempt is None:
            return
        if attempt >= self.max_attempts:
            self._pop(op.id)
            result.dropped += 1
            logger.warning(
                f"Dropped {op.kind} op {op.id} after {attempt} attempts: {error.code}"
            )
            return

        result.retried += 1
        delay_ms = next_delay_ms(
            attempt, self.backoff_base_ms, self.backoff_max_ms, rng=self._rng
        )
        logger.info(
            f"Retrying {op.kind} op {op.id} in {delay_ms}ms "
            f"(attempt {attempt}/{self.max_attempts}, {error.code})"
        )
        self._pause(delay_ms / 1000, cancel)

