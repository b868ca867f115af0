"""
Worker Engine

This module implements the worker-side task execution engine. It owns a FIFO
of submissions and the registry of tasks executing on this worker, and drives
each submission through the state machine and the runtime driver.
"""

from __future__ import annotations

import threading
import uuid
from collections import OrderedDict
from typing import List, Optional, Set

import structlog

from corral.common.constants import SEEN_SUBMISSIONS_LIMIT, TIMEOUTS, RuntimeAction, TaskState
from corral.common.errors import InvalidTransitionError, UnsupportedTransitionError
from corral.common.schemas import ExecutionResult, Task, TaskSubmission
from corral.common.stores import TaskRegistry, WorkQueue
from corral.common.transitions import is_valid_transition
from corral.common.utils import utcnow
from corral.runtime.base import RuntimeDriver


logger = structlog.get_logger(__name__)


class WorkerEngine:
    """Task engine for running submissions against a runtime driver"""

    def __init__(
        self,
        driver: RuntimeDriver,
        name: Optional[str] = None,
        poll_interval: float = TIMEOUTS["WORKER_POLL_INTERVAL"],
        seen_limit: int = SEEN_SUBMISSIONS_LIMIT,
    ):
        self.driver = driver
        self.name = name or f"worker-{uuid.uuid4().hex[:8]}"
        self.poll_interval = poll_interval
        self.queue: WorkQueue[TaskSubmission] = WorkQueue()
        self.registry = TaskRegistry()

        # Most recent accepted submission ids, oldest first
        self.seen_limit = max(1, seen_limit)
        self._seen: "OrderedDict[uuid.UUID, None]" = OrderedDict()
        self._seen_lock = threading.Lock()

        # Tasks whose submission is between dequeue and registry write
        self._in_flight: Set[uuid.UUID] = set()
        self._claim_lock = threading.Lock()

    @property
    def task_count(self) -> int:
        return len(self.registry)

    def enqueue(self, submission: TaskSubmission) -> bool:
        """Queue a submission; replays of a recently accepted submission id are ignored."""
        with self._seen_lock:
            if submission.id in self._seen:
                self._seen.move_to_end(submission.id)
                logger.info(
                    "Ignoring replayed submission",
                    submission_id=str(submission.id),
                    task_id=str(submission.task.id),
                )
                return False
            self._seen[submission.id] = None
            while len(self._seen) > self.seen_limit:
                self._seen.popitem(last=False)
        self.queue.put(submission.model_copy(deep=True))
        logger.info(
            "Submission queued",
            submission_id=str(submission.id),
            task_id=str(submission.task.id),
            state=submission.state.value,
        )
        return True

    def get_task(self, task_id: uuid.UUID) -> Optional[Task]:
        return self.registry.get(task_id)

    def query(self) -> List[Task]:
        """Snapshot of every task this worker has persisted"""
        return self.registry.snapshot()

    def process_next(self) -> Optional[ExecutionResult]:
        """Process the oldest queued submission whose task is not already being processed.

        Returns None when no such submission is queued. Raises
        UnsupportedTransitionError for a valid transition that has no runtime
        action. Submissions for one task are processed one at a time, in queue
        order; no lock is held across the driver call.
        """
        with self._claim_lock:
            submission = self.queue.pop_first(lambda queued: queued.task.id not in self._in_flight)
            if submission is None:
                return None
            task_id = submission.task.id
            self._in_flight.add(task_id)

        try:
            return self._process(submission)
        finally:
            with self._claim_lock:
                self._in_flight.discard(task_id)

    def _process(self, submission: TaskSubmission) -> ExecutionResult:
        queued = submission.task
        persisted = self.registry.get(queued.id)
        if persisted is None:
            persisted = queued.model_copy(deep=True)
            persisted.state = TaskState.PENDING

        if not is_valid_transition(persisted.state, submission.state):
            error = InvalidTransitionError(persisted.state, submission.state)
            logger.warning(
                "Rejected submission",
                task_id=str(queued.id),
                current=persisted.state.value,
                desired=submission.state.value,
            )
            return ExecutionResult.failure(error.message)

        if submission.state == TaskState.SCHEDULED:
            return self._start_task(queued)
        if submission.state == TaskState.COMPLETED:
            return self._stop_task(persisted)
        raise UnsupportedTransitionError(submission.state)

    def _start_task(self, task: Task) -> ExecutionResult:
        record = task.model_copy(deep=True)
        result = self.driver.run(record)
        if not result.ok:
            logger.error("Failed to start task", task_id=str(record.id), error=result.error)
            record.state = TaskState.FAILED
            record.error = result.error
            record.finish_time = utcnow()
            self.registry.put(record)
            return result

        record.state = TaskState.RUNNING
        record.container_id = result.container_id
        record.port_bindings = dict(result.port_bindings)
        record.start_time = utcnow()
        record.error = None
        self.registry.put(record)
        logger.info("Task running", task_id=str(record.id), container_id=record.container_id)
        return result

    def _stop_task(self, persisted: Task) -> ExecutionResult:
        if not persisted.container_id:
            return ExecutionResult.failure(
                f"task {persisted.id} has no container to stop", action=RuntimeAction.STOP
            )

        result = self.driver.stop(persisted.container_id)
        if not result.ok:
            logger.error(
                "Failed to stop task",
                task_id=str(persisted.id),
                container_id=persisted.container_id,
                error=result.error,
            )
            return result

        def _complete(record: Task) -> None:
            record.state = TaskState.COMPLETED
            record.finish_time = utcnow()

        self.registry.update(persisted.id, _complete)
        logger.info(
            "Task completed",
            task_id=str(persisted.id),
            container_id=persisted.container_id,
        )
        return result

    def run_forever(self, stop_event: threading.Event) -> None:
        """Process submissions until ``stop_event`` is set"""
        logger.info("Worker engine loop started", worker=self.name)

        while not stop_event.is_set():
            if not len(self.queue):
                logger.debug("No queued submissions", sleep=self.poll_interval)
                stop_event.wait(self.poll_interval)
                continue
            try:
                result = self.process_next()
            except UnsupportedTransitionError as e:
                logger.error("Submission has no runtime action", error=e.message)
                continue
            except Exception:
                logger.exception("Error in worker engine loop")
                continue
            if result is None:
                # Everything queued belongs to a task another caller is processing
                stop_event.wait(self.poll_interval)
            elif not result.ok:
                logger.error("Error running submission", error=result.error)

        logger.info("Worker engine loop stopped", worker=self.name)
