"""
Thread-safe in-memory stores.

Registries and queues are shared between background loops and request
handlers, so every access goes through the store's own lock. Registries hand
out deep copies; callers never hold a reference to the stored record.
"""

from __future__ import annotations

import threading
import uuid
from collections import deque
from typing import Callable, Deque, Dict, Generic, Iterable, List, Optional, TypeVar

from .schemas import Task

T = TypeVar("T")


class WorkQueue(Generic[T]):
    """FIFO queue that never blocks its callers."""

    def __init__(self, items: Iterable[T] = ()):
        self._items: Deque[T] = deque(items)
        self._lock = threading.Lock()

    def put(self, item: T) -> None:
        with self._lock:
            self._items.append(item)

    def get(self) -> Optional[T]:
        """Pop the oldest item, or None when empty."""
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def pop_first(self, predicate: Callable[[T], bool]) -> Optional[T]:
        """Remove and return the oldest item matching ``predicate``."""
        with self._lock:
            for index, item in enumerate(self._items):
                if predicate(item):
                    del self._items[index]
                    return item
            return None

    def any(self, predicate: Callable[[T], bool]) -> bool:
        with self._lock:
            return any(predicate(item) for item in self._items)

    def snapshot(self) -> List[T]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class TaskRegistry:
    """Map of task id to task record."""

    def __init__(self) -> None:
        self._tasks: Dict[uuid.UUID, Task] = {}
        self._lock = threading.Lock()

    def get(self, task_id: uuid.UUID) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task is not None else None

    def put(self, task: Task) -> None:
        with self._lock:
            self._tasks[task.id] = task.model_copy(deep=True)

    def update(self, task_id: uuid.UUID, mutate: Callable[[Task], None]) -> Optional[Task]:
        """Apply ``mutate`` to a copy of the record and store it atomically.

        Returns the stored copy, or None when the task is unknown.
        """
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                return None
            updated = current.model_copy(deep=True)
            mutate(updated)
            self._tasks[task_id] = updated
            return updated.model_copy(deep=True)

    def contains(self, task_id: uuid.UUID) -> bool:
        with self._lock:
            return task_id in self._tasks

    def snapshot(self) -> List[Task]:
        with self._lock:
            return [task.model_copy(deep=True) for task in self._tasks.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
