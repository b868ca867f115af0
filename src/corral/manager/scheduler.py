"""
Task Scheduler

This module implements the core scheduling logic for the manager.
It manages the pending submission queue, round-robin worker assignment, and
dispatch of submissions to workers.
"""

from __future__ import annotations

import itertools
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

import structlog

from corral.common.constants import DEFAULT_MAX_DISPATCH_ATTEMPTS, TIMEOUTS, TaskState
from corral.common.errors import (
    DuplicateTaskError,
    TaskNotFoundError,
    WorkerResponseError,
    WorkerUnavailableError,
)
from corral.common.schemas import Task, TaskSubmission
from corral.common.stores import TaskRegistry, WorkQueue
from corral.common.utils import utcnow
from .client import WorkerClient


logger = structlog.get_logger(__name__)


class DispatchOutcome(str, Enum):
    IDLE = "idle"
    DEFERRED = "deferred"
    DISPATCHED = "dispatched"
    REQUEUED = "requeued"
    DROPPED = "dropped"


@dataclass
class PendingDispatch:
    """A submission waiting in the pending queue"""
    submission: TaskSubmission
    seq: int = 0
    attempts: int = 0
    not_before: float = 0.0
    enqueued_at: float = field(default_factory=time.time)


def select_worker(workers: Sequence[str], cursor: int) -> Tuple[str, int]:
    """Advance the round-robin cursor and return ``(worker, new_cursor)``."""
    if not workers:
        raise ValueError("no workers configured")
    next_cursor = (cursor + 1) % len(workers)
    return workers[next_cursor], next_cursor


def retry_delay(attempts: int, base_delay: float, max_delay: float) -> float:
    """Exponential backoff for the ``attempts``-th failed dispatch."""
    return float(min(base_delay * (2 ** max(attempts - 1, 0)), max_delay))


class Scheduler:
    """Round-robin scheduler dispatching submissions to workers"""

    def __init__(
        self,
        workers: Sequence[str],
        client: Optional[WorkerClient] = None,
        registry: Optional[TaskRegistry] = None,
        max_attempts: int = DEFAULT_MAX_DISPATCH_ATTEMPTS,
        retry_base_delay: float = TIMEOUTS["RETRY_BASE_DELAY"],
        retry_max_delay: float = TIMEOUTS["RETRY_MAX_DELAY"],
        clock: Callable[[], float] = time.time,
    ):
        if not workers:
            raise ValueError("no workers provided, cannot start the manager")
        self.workers: List[str] = list(workers)
        self.client = client if client is not None else WorkerClient()
        self.registry = registry if registry is not None else TaskRegistry()
        self.pending: WorkQueue[PendingDispatch] = WorkQueue()
        self.max_attempts = max(1, max_attempts)
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self._clock = clock

        self._seq = itertools.count(1)
        self._intake_lock = threading.Lock()
        self._in_flight: Set[uuid.UUID] = set()

        self._events: Dict[uuid.UUID, TaskSubmission] = {}
        self._events_lock = threading.Lock()

        self._worker_tasks: Dict[str, List[uuid.UUID]] = {worker: [] for worker in self.workers}
        self._task_worker: Dict[uuid.UUID, str] = {}
        self._assign_lock = threading.Lock()

        self._cursor = 0
        self._cursor_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Submission intake
    # ------------------------------------------------------------------ #

    def submit(self, submission: TaskSubmission) -> None:
        """Append a submission to the pending queue"""
        with self._intake_lock:
            self._enqueue(submission)

    def _enqueue(self, submission: TaskSubmission) -> None:
        self.pending.put(
            PendingDispatch(
                submission=submission.model_copy(deep=True),
                seq=next(self._seq),
                enqueued_at=self._clock(),
            )
        )
        logger.info(
            "Submission queued",
            submission_id=str(submission.id),
            task_id=str(submission.task.id),
            state=submission.state.value,
        )

    def submit_new(self, submission: TaskSubmission) -> None:
        """Queue a submission for a task the manager has not seen yet."""
        task_id = submission.task.id
        with self._intake_lock:
            if self.registry.contains(task_id) or self.pending.any(
                lambda entry: entry.submission.task.id == task_id
            ):
                raise DuplicateTaskError(task_id)
            self._enqueue(submission)

    def request_stop(self, task_id: uuid.UUID) -> TaskSubmission:
        """Synthesize and queue a submission that completes ``task_id``."""
        task = self.registry.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        submission = TaskSubmission.stop_request(task)
        self.submit(submission)
        return submission

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def get_all_tasks(self) -> List[Task]:
        return self.registry.snapshot()

    def get_event(self, submission_id: uuid.UUID) -> Optional[TaskSubmission]:
        with self._events_lock:
            event = self._events.get(submission_id)
            return event.model_copy(deep=True) if event is not None else None

    def worker_for(self, task_id: uuid.UUID) -> Optional[str]:
        with self._assign_lock:
            return self._task_worker.get(task_id)

    def tasks_for(self, worker: str) -> List[uuid.UUID]:
        with self._assign_lock:
            return list(self._worker_tasks.get(worker, []))

    # ------------------------------------------------------------------ #
    # Placement
    # ------------------------------------------------------------------ #

    @property
    def cursor(self) -> int:
        with self._cursor_lock:
            return self._cursor

    def select_worker(self) -> str:
        with self._cursor_lock:
            worker, self._cursor = select_worker(self.workers, self._cursor)
            return worker

    def _assign(self, task_id: uuid.UUID) -> str:
        existing = self.worker_for(task_id)
        if existing is not None:
            return existing
        worker = self.select_worker()
        with self._assign_lock:
            self._worker_tasks.setdefault(worker, []).append(task_id)
            self._task_worker[task_id] = worker
        return worker

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    def _next_due(self) -> Tuple[Optional[PendingDispatch], bool]:
        """Pop the oldest due entry whose task has no earlier entry waiting.

        Returns ``(entry, waiting)``; ``waiting`` is True when the queue is not
        empty. Caller holds the intake lock.
        """
        entries = self.pending.snapshot()
        if not entries:
            return None, False

        first_seq: Dict[uuid.UUID, int] = {}
        for entry in entries:
            task_id = entry.submission.task.id
            first_seq[task_id] = min(entry.seq, first_seq.get(task_id, entry.seq))

        now = self._clock()
        for entry in sorted(entries, key=lambda item: item.seq):
            # Submissions for one task leave in the order they were queued.
            task_id = entry.submission.task.id
            if entry.not_before > now or task_id in self._in_flight:
                continue
            if first_seq[task_id] != entry.seq:
                continue
            return self.pending.pop_first(lambda item, chosen=entry: item is chosen), True
        return None, True

    def dispatch_one(self) -> DispatchOutcome:
        """Send the oldest due pending submission to its worker"""
        with self._intake_lock:
            entry, waiting = self._next_due()
            if entry is None:
                if waiting:
                    return DispatchOutcome.DEFERRED
                logger.debug("No pending submissions")
                return DispatchOutcome.IDLE

            submission = entry.submission
            task = submission.task
            if submission.state == TaskState.SCHEDULED:
                worker: Optional[str] = self._assign(task.id)
                # Retries leave the registry as the reconciler last saw it.
                if entry.attempts == 0:
                    record = task.model_copy(deep=True)
                    record.state = TaskState.SCHEDULED
                    self.registry.put(record)
            else:
                worker = self.worker_for(task.id)
            self._in_flight.add(task.id)

        try:
            return self._send(entry, worker)
        finally:
            with self._intake_lock:
                self._in_flight.discard(task.id)

    def _send(self, entry: PendingDispatch, worker: Optional[str]) -> DispatchOutcome:
        submission = entry.submission
        task = submission.task
        with self._events_lock:
            self._events[submission.id] = submission.model_copy(deep=True)

        if worker is None:
            logger.error(
                "Dropping submission for unplaced task",
                submission_id=str(submission.id),
                task_id=str(task.id),
                state=submission.state.value,
            )
            return DispatchOutcome.DROPPED

        entry.attempts += 1
        logger.info(
            "Dispatching submission",
            submission_id=str(submission.id),
            task_id=str(task.id),
            worker=worker,
            attempt=entry.attempts,
        )

        try:
            ack = self.client.submit(worker, submission)
        except WorkerUnavailableError as exc:
            return self._retry_or_drop(entry, worker, exc.message)
        except WorkerResponseError as exc:
            logger.error(
                "Worker rejected submission",
                task_id=str(task.id),
                worker=worker,
                http_status_code=exc.body.get("httpStatusCode", exc.response_status),
                message=exc.body.get("message"),
            )
            if exc.retryable:
                return self._retry_or_drop(entry, worker, exc.message)
            self._give_up(entry, exc.message)
            return DispatchOutcome.DROPPED

        if ack is not None:
            logger.info(
                "Worker acknowledged submission",
                task_id=str(ack.task.id),
                worker=worker,
                state=ack.state.value,
            )
        return DispatchOutcome.DISPATCHED

    def _retry_or_drop(self, entry: PendingDispatch, worker: str, reason: str) -> DispatchOutcome:
        if entry.attempts >= self.max_attempts:
            logger.error(
                "Giving up on submission",
                submission_id=str(entry.submission.id),
                task_id=str(entry.submission.task.id),
                worker=worker,
                attempts=entry.attempts,
                error=reason,
            )
            self._give_up(entry, reason)
            return DispatchOutcome.DROPPED

        delay = retry_delay(entry.attempts, self.retry_base_delay, self.retry_max_delay)
        entry.not_before = self._clock() + delay
        self.pending.put(entry)
        logger.warning(
            "Requeued submission",
            submission_id=str(entry.submission.id),
            task_id=str(entry.submission.task.id),
            worker=worker,
            retry_in=delay,
            error=reason,
        )
        return DispatchOutcome.REQUEUED

    def _give_up(self, entry: PendingDispatch, reason: str) -> None:
        # Only new placements are failed; a lost stop request leaves the task as observed.
        if entry.submission.state != TaskState.SCHEDULED:
            return

        def _fail(record: Task) -> None:
            if record.state == TaskState.SCHEDULED:
                record.state = TaskState.FAILED
                record.error = reason
                record.finish_time = utcnow()

        self.registry.update(entry.submission.task.id, _fail)

    def run_forever(self, stop_event: threading.Event, interval: float = TIMEOUTS["DISPATCH_INTERVAL"]) -> None:
        """Dispatch pending submissions until ``stop_event`` is set"""
        logger.info("Dispatch loop started", workers=self.workers)
        while not stop_event.is_set():
            logger.debug("Processing pending submissions")
            try:
                self.dispatch_one()
            except Exception:
                logger.exception("Error in dispatch loop")
            stop_event.wait(interval)
        logger.info("Dispatch loop stopped")
