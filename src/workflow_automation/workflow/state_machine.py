from __future__ import annotations

from .models import ExecutionStatus

ALLOWED_TRANSITIONS: dict[ExecutionStatus, set[ExecutionStatus]] = {
    ExecutionStatus.PENDING: {ExecutionStatus.RUNNING, ExecutionStatus.CANCELLED},
    ExecutionStatus.RUNNING: {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.CANCELLED,
    },
    ExecutionStatus.COMPLETED: set(),
    ExecutionStatus.FAILED: set(),
    ExecutionStatus.CANCELLED: set(),
}


class IllegalTransitionError(ValueError):
    pass


def can_transition(current: ExecutionStatus, to: ExecutionStatus) -> bool:
    return to in ALLOWED_TRANSITIONS.get(current, set())


def transition(*, current: ExecutionStatus, to: ExecutionStatus) -> ExecutionStatus:
    """Return ``to`` if the move is legal; terminal statuses never change."""

    if not can_transition(current, to):
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to
