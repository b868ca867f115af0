"""Task state machine checks."""

from .constants import STATE_TRANSITIONS, TaskState


def is_valid_transition(current: TaskState, desired: TaskState) -> bool:
    """Return True when ``current -> desired`` is an edge of the transition table."""
    return TaskState(desired) in STATE_TRANSITIONS.get(TaskState(current), frozenset())


def is_terminal(state: TaskState) -> bool:
    """Terminal states have no outbound edges."""
    return not STATE_TRANSITIONS[TaskState(state)]
