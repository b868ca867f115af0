from __future__ import annotations

import sys
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from corral.common.constants import RuntimeAction, TaskState  # noqa: E402
from corral.common.errors import WorkerUnavailableError  # noqa: E402
from corral.common.schemas import ExecutionResult, Task, TaskSubmission  # noqa: E402
from corral.runtime.base import RuntimeDriver  # noqa: E402


class FakeDriver(RuntimeDriver):
    """Records calls; fails on demand."""

    name = "fake"

    def __init__(self, run_error: Optional[str] = None, stop_error: Optional[str] = None):
        self.run_error = run_error
        self.stop_error = stop_error
        self.runs: List[Task] = []
        self.stops: List[str] = []

    def run(self, task: Task) -> ExecutionResult:
        self.runs.append(task)
        if self.run_error:
            return ExecutionResult.failure(self.run_error, action=RuntimeAction.START)
        return ExecutionResult(
            action=RuntimeAction.START,
            container_id=f"container-{len(self.runs)}",
            port_bindings={"80/tcp": "32768"},
        )

    def stop(self, container_id: str) -> ExecutionResult:
        self.stops.append(container_id)
        if self.stop_error:
            return ExecutionResult.failure(self.stop_error, action=RuntimeAction.STOP)
        return ExecutionResult(action=RuntimeAction.STOP, container_id=container_id)


SubmitBehaviour = Union[Exception, Callable[[str, TaskSubmission], Optional[TaskSubmission]], None]


class FakeWorkerClient:
    """Stands in for the HTTP client; per-worker canned behaviour."""

    def __init__(self):
        self.submitted: List[tuple] = []
        self.submit_behaviour: Dict[str, SubmitBehaviour] = {}
        self.task_lists: Dict[str, Union[List[Task], Exception]] = {}

    def submit(self, address: str, submission: TaskSubmission) -> Optional[TaskSubmission]:
        self.submitted.append((address, submission))
        behaviour = self.submit_behaviour.get(address)
        if isinstance(behaviour, Exception):
            raise behaviour
        if callable(behaviour):
            return behaviour(address, submission)
        return submission

    def list_tasks(self, address: str) -> List[Task]:
        tasks = self.task_lists.get(address, [])
        if isinstance(tasks, Exception):
            raise tasks
        return [task.model_copy(deep=True) for task in tasks]


def make_task(**overrides) -> Task:
    fields = {
        "name": "web",
        "image": "nginx:latest",
        "memory": 64 * 1024 * 1024,
        "exposed_ports": ["80/tcp"],
    }
    fields.update(overrides)
    return Task(**fields)


def make_submission(task: Optional[Task] = None, state: TaskState = TaskState.SCHEDULED) -> TaskSubmission:
    return TaskSubmission(state=state, task=task or make_task())


def unreachable(worker: str) -> WorkerUnavailableError:
    return WorkerUnavailableError(worker, "connection refused")


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def worker_client() -> FakeWorkerClient:
    return FakeWorkerClient()


@pytest.fixture
def task_id() -> uuid.UUID:
    return uuid.uuid4()
