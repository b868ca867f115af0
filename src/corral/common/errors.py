"""
Typed failures raised by Corral components.

Every component-level failure derives from ``CorralError`` so the HTTP layer
can translate it into a structured error body.
"""

from typing import Any, Dict, Optional

from .constants import TaskState


class CorralError(Exception):
    """Base class for Corral failures"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidTransitionError(CorralError):
    """A submission asked for a state change outside the transition table"""

    status_code = 400

    def __init__(self, current: TaskState, desired: TaskState):
        self.current = TaskState(current)
        self.desired = TaskState(desired)
        super().__init__(f"invalid transition from {self.current.value} to {self.desired.value}")


class UnsupportedTransitionError(CorralError):
    """A valid transition that has no runtime action bound to it"""

    def __init__(self, desired: TaskState):
        self.desired = TaskState(desired)
        super().__init__(f"no runtime action for target state {self.desired.value}")


class TaskNotFoundError(CorralError):
    status_code = 404

    def __init__(self, task_id: Any):
        self.task_id = task_id
        super().__init__(f"task {task_id} not found")


class DuplicateTaskError(CorralError):
    status_code = 400

    def __init__(self, task_id: Any):
        self.task_id = task_id
        super().__init__(f"task {task_id} already exists")


class ProtocolInconsistencyError(CorralError):
    """A worker reported a task the manager never scheduled"""

    def __init__(self, worker: str, task_id: Any):
        self.worker = worker
        self.task_id = task_id
        super().__init__(f"worker {worker} reported unknown task {task_id}")


class WorkerUnavailableError(CorralError):
    """The manager could not reach a worker"""

    status_code = 503

    def __init__(self, worker: str, reason: str):
        self.worker = worker
        self.reason = reason
        super().__init__(f"worker {worker} unreachable: {reason}")


class WorkerResponseError(CorralError):
    """A worker answered with a non-success status"""

    def __init__(self, worker: str, status_code: int, body: Optional[Dict[str, Any]] = None):
        self.worker = worker
        self.response_status = status_code
        self.body = body or {}
        message = self.body.get("message") or f"status {status_code}"
        super().__init__(f"worker {worker} rejected request ({status_code}): {message}")

    @property
    def retryable(self) -> bool:
        return self.response_status >= 500
