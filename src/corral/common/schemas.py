"""
Pydantic schemas for the Corral system.

These schemas define the data models exchanged between clients, the manager
and the workers, and the records each side keeps in its registries.
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .constants import ResultStatus, RestartPolicy, RuntimeAction, TaskState


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseSchema(BaseModel):
    """Base schema with common configuration"""
    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid",
        populate_by_name=True,
    )


class Task(BaseSchema):
    """A unit of schedulable container work"""
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str
    image: str
    state: TaskState = TaskState.PENDING
    cpu: float = Field(default=0.0, ge=0.0)
    memory: int = Field(default=0, ge=0)
    disk: int = Field(default=0, ge=0)
    exposed_ports: List[str] = Field(default_factory=list)
    port_bindings: Dict[str, str] = Field(default_factory=dict)
    restart_policy: RestartPolicy = RestartPolicy.NONE
    container_id: Optional[str] = None
    start_time: Optional[datetime] = None
    finish_time: Optional[datetime] = None
    error: Optional[str] = None


class TaskSubmission(BaseSchema):
    """A request to move a task to a desired state"""
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    state: TaskState
    timestamp: datetime = Field(default_factory=_utcnow)
    task: Task

    @classmethod
    def stop_request(cls, task: Task) -> "TaskSubmission":
        """Build a submission asking for ``task`` to be completed."""
        snapshot = task.model_copy(deep=True)
        snapshot.state = TaskState.COMPLETED
        return cls(state=TaskState.COMPLETED, task=snapshot)


class ExecutionResult(BaseSchema):
    """Outcome of one runtime driver invocation"""
    action: Optional[RuntimeAction] = None
    container_id: Optional[str] = None
    result: ResultStatus = ResultStatus.SUCCESS
    error: Optional[str] = None
    port_bindings: Dict[str, str] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, error: str, action: Optional[RuntimeAction] = None) -> "ExecutionResult":
        return cls(action=action, result=ResultStatus.ERROR, error=error)


class ErrorResponse(BaseSchema):
    """Structured error body returned by both APIs"""
    http_status_code: int = Field(alias="httpStatusCode")
    message: str


class MemoryStats(BaseSchema):
    total: int
    available: int
    used: int
    percent: float


class DiskStats(BaseSchema):
    total: int
    free: int
    used: int


class LoadStats(BaseSchema):
    one: float
    five: float
    fifteen: float


class Stats(BaseSchema):
    """Worker host statistics"""
    memory: MemoryStats
    disk: DiskStats
    cpu_percent: float
    load: LoadStats
    task_count: int = 0
    collected_at: datetime = Field(default_factory=_utcnow)


class HealthResponse(BaseSchema):
    """Health check response"""
    status: str = "healthy"
    timestamp: datetime = Field(default_factory=_utcnow)
    version: str
    node_type: str
