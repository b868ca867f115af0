"""
Corral

A minimal container-task orchestrator: a manager schedules tasks round robin
onto workers, which run them as containers.
"""

__version__ = "0.1.0"
__author__ = "Corral Team"

from corral.common.constants import NodeType, TaskState

__all__ = [
    "__version__",
    "__author__",
    "NodeType",
    "TaskState",
]
