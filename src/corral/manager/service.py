"""Manager runtime: wires the scheduler and reconciler to their periodic loops."""

from __future__ import annotations

import threading
from typing import List, Optional, Sequence

import structlog

from corral.common.constants import DEFAULT_MAX_DISPATCH_ATTEMPTS, TIMEOUTS
from corral.common.stores import TaskRegistry
from .client import WorkerClient
from .reconciler import Reconciler
from .scheduler import Scheduler


logger = structlog.get_logger(__name__)


class ManagerService:
    """Owns the central registry and the dispatch and reconcile loops"""

    def __init__(
        self,
        workers: Sequence[str],
        client: Optional[WorkerClient] = None,
        dispatch_interval: float = TIMEOUTS["DISPATCH_INTERVAL"],
        reconcile_interval: float = TIMEOUTS["RECONCILE_INTERVAL"],
        max_dispatch_attempts: int = DEFAULT_MAX_DISPATCH_ATTEMPTS,
        retry_base_delay: float = TIMEOUTS["RETRY_BASE_DELAY"],
        retry_max_delay: float = TIMEOUTS["RETRY_MAX_DELAY"],
    ):
        self.client = client if client is not None else WorkerClient()
        self.registry = TaskRegistry()
        self.scheduler = Scheduler(
            workers,
            client=self.client,
            registry=self.registry,
            max_attempts=max_dispatch_attempts,
            retry_base_delay=retry_base_delay,
            retry_max_delay=retry_max_delay,
        )
        self.reconciler = Reconciler(workers, self.registry, self.client)
        self.dispatch_interval = dispatch_interval
        self.reconcile_interval = reconcile_interval

        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(
                target=self.scheduler.run_forever,
                args=(self._stop, self.dispatch_interval),
                name="manager-dispatch",
                daemon=True,
            ),
            threading.Thread(
                target=self.reconciler.run_forever,
                args=(self._stop, self.reconcile_interval),
                name="manager-reconcile",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Manager loops started", workers=self.scheduler.workers)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("Manager loops stopped")
