"""
State Reconciler

This module pulls the observed task list from every worker and folds it into
the manager's central registry. Workers are the source of truth for execution
outcome; the manager stays the source of truth for placement.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import structlog

from corral.common.constants import TIMEOUTS
from corral.common.errors import (
    CorralError,
    ProtocolInconsistencyError,
    WorkerResponseError,
    WorkerUnavailableError,
)
from corral.common.schemas import Task
from corral.common.stores import TaskRegistry
from .client import WorkerClient


logger = structlog.get_logger(__name__)


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass"""
    updated: Dict[str, int] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)
    inconsistencies: List[ProtocolInconsistencyError] = field(default_factory=list)

    @property
    def total_updated(self) -> int:
        return sum(self.updated.values())


def merge_observed(record: Task, observed: Task) -> None:
    """Copy the worker-observed execution fields onto the manager's record."""
    record.state = observed.state
    record.start_time = observed.start_time
    record.finish_time = observed.finish_time
    record.container_id = observed.container_id
    record.port_bindings = dict(observed.port_bindings)
    record.error = observed.error


class Reconciler:
    """Pulls worker task lists into the central registry"""

    def __init__(
        self,
        workers: Sequence[str],
        registry: TaskRegistry,
        client: WorkerClient,
    ):
        self.workers = list(workers)
        self.registry = registry
        self.client = client

    def reconcile_once(self) -> ReconcileReport:
        report = ReconcileReport()
        for worker in self.workers:
            logger.debug("Checking worker for task updates", worker=worker)
            try:
                report.updated[worker] = self.reconcile_worker(worker)
            except ProtocolInconsistencyError as exc:
                logger.critical(
                    "Worker reported a task the manager never scheduled",
                    worker=exc.worker,
                    task_id=str(exc.task_id),
                )
                report.inconsistencies.append(exc)
                report.failures[worker] = exc.message
            except (WorkerUnavailableError, WorkerResponseError) as exc:
                logger.warning("Failed to fetch tasks from worker", worker=worker, error=exc.message)
                report.failures[worker] = exc.message
        logger.info(
            "Task updates completed",
            updated=report.total_updated,
            failed_workers=sorted(report.failures),
        )
        return report

    def reconcile_worker(self, worker: str) -> int:
        """Merge one worker's tasks; nothing is merged if any task is unknown."""
        observed = self.client.list_tasks(worker)
        for task in observed:
            if not self.registry.contains(task.id):
                raise ProtocolInconsistencyError(worker, task.id)

        updated = 0
        for task in observed:
            stored = self.registry.update(task.id, lambda record, seen=task: merge_observed(record, seen))
            if stored is None:
                raise ProtocolInconsistencyError(worker, task.id)
            updated += 1
        return updated

    def run_forever(self, stop_event: threading.Event, interval: float = TIMEOUTS["RECONCILE_INTERVAL"]) -> None:
        """Reconcile until ``stop_event`` is set"""
        logger.info("Reconcile loop started", workers=self.workers)
        while not stop_event.is_set():
            logger.debug("Checking for task updates from workers")
            try:
                self.reconcile_once()
            except CorralError as exc:
                logger.error("Error in reconcile loop", error=exc.message)
            except Exception:
                logger.exception("Error in reconcile loop")
            stop_event.wait(interval)
        logger.info("Reconcile loop stopped")
