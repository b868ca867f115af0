"""
Runtime driver base class and a minimal in-process implementation.

Contract:
- Implement `run(task: Task) -> ExecutionResult` and `stop(container_id: str) -> ExecutionResult`.
- Report failures through `ExecutionResult.failure(...)`; never retry internally.
- Optionally override `close()` to release client resources.
"""

from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from typing import Dict

from corral.common.constants import RuntimeAction
from corral.common.schemas import ExecutionResult, Task


class RuntimeDriver(ABC):
    """Abstract container runtime.

    Subclasses must implement `run` and `stop`.
    """

    #: Human-readable identifier for logging
    name: str = "runtime"

    @abstractmethod
    def run(self, task: Task) -> ExecutionResult:
        """Create and start an execution instance for ``task``.

        Returns:
            An ExecutionResult carrying the container handle on success.
        """
        raise NotImplementedError

    @abstractmethod
    def stop(self, container_id: str) -> ExecutionResult:
        """Stop and remove the execution instance identified by ``container_id``."""
        raise NotImplementedError

    def close(self) -> None:
        """Optional: called when the worker is shutting down."""
        return None


class EchoDriver(RuntimeDriver):
    """Pretends to run containers; keeps the handles it hands out in memory."""

    name = "echo"

    def __init__(self) -> None:
        self._containers: Dict[str, Task] = {}
        self._lock = threading.Lock()

    def run(self, task: Task) -> ExecutionResult:
        container_id = uuid.uuid4().hex
        with self._lock:
            self._containers[container_id] = task.model_copy(deep=True)
        return ExecutionResult(action=RuntimeAction.START, container_id=container_id)

    def stop(self, container_id: str) -> ExecutionResult:
        with self._lock:
            if self._containers.pop(container_id, None) is None:
                return ExecutionResult.failure(
                    f"no such container: {container_id}", action=RuntimeAction.STOP
                )
        return ExecutionResult(action=RuntimeAction.STOP, container_id=container_id)

    @property
    def running(self) -> Dict[str, Task]:
        with self._lock:
            return dict(self._containers)
