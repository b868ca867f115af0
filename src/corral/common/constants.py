"""
Constants used throughout the Corral system.
"""

from enum import Enum
from typing import Dict, FrozenSet


class NodeType(str, Enum):
    """Node type enumeration"""
    MANAGER = "MANAGER"
    WORKER = "WORKER"
    ALL = "ALL"


class TaskState(str, Enum):
    """Task lifecycle state"""
    PENDING = "pending"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RuntimeAction(str, Enum):
    """Action performed by a runtime driver invocation"""
    START = "start"
    STOP = "stop"


class ResultStatus(str, Enum):
    """Outcome of a runtime driver invocation"""
    SUCCESS = "success"
    ERROR = "error"


class RestartPolicy(str, Enum):
    """Container restart policies understood by the runtime"""
    NONE = ""
    NO = "no"
    ALWAYS = "always"
    UNLESS_STOPPED = "unless-stopped"
    ON_FAILURE = "on-failure"


# Legal state transitions: source -> destinations
STATE_TRANSITIONS: Dict[TaskState, FrozenSet[TaskState]] = {
    TaskState.PENDING: frozenset({TaskState.SCHEDULED, TaskState.FAILED}),
    TaskState.SCHEDULED: frozenset({TaskState.SCHEDULED, TaskState.RUNNING, TaskState.FAILED}),
    TaskState.RUNNING: frozenset({TaskState.RUNNING, TaskState.COMPLETED, TaskState.FAILED}),
    TaskState.COMPLETED: frozenset(),
    TaskState.FAILED: frozenset(),
}

# Target states a submission may carry into a worker
SUBMITTABLE_STATES: FrozenSet[TaskState] = frozenset({TaskState.SCHEDULED, TaskState.COMPLETED})

# API endpoints
API_ROUTES = {
    "TASKS": "/tasks",
    "TASK": "/tasks/{task_id}",
    "STATS": "/stats",
    "HEALTH": "/health",
}

# Default timeouts and intervals (in seconds)
TIMEOUTS = {
    "WORKER_REQUEST": 30,
    "DISPATCH_INTERVAL": 10,
    "RECONCILE_INTERVAL": 10,
    "WORKER_POLL_INTERVAL": 10,
    "STATS_INTERVAL": 15,
    "RETRY_BASE_DELAY": 2,
    "RETRY_MAX_DELAY": 30,
}

DEFAULT_MAX_DISPATCH_ATTEMPTS = 3

# Accepted submission ids a worker remembers for replay detection
SEEN_SUBMISSIONS_LIMIT = 10000
