"""
Ride lifecycle state machine.

    requested -> accepted -> completed
    requested | accepted -> declined | cancelled

Terminal states are never left. These helpers hold no I/O; the lifecycle
module applies them as conditional (compare-and-swap) updates.
"""

from typing import FrozenSet

from services.exceptions import ConflictError, InvalidCommandError, InvalidTransitionError

REQUESTED = "requested"
ACCEPTED = "accepted"
DECLINED = "declined"
CANCELLED = "cancelled"
COMPLETED = "completed"

STATUS_CHOICES = [
    (REQUESTED, "Requested"),
    (ACCEPTED, "Accepted"),
    (DECLINED, "Declined"),
    (CANCELLED, "Cancelled"),
    (COMPLETED, "Completed"),
]

TERMINAL_STATUSES: FrozenSet[str] = frozenset({DECLINED, CANCELLED, COMPLETED})
ACTIVE_STATUSES: FrozenSet[str] = frozenset({REQUESTED, ACCEPTED})

# Targets reachable through a status update (acceptance has its own operation).
UPDATE_TARGETS: FrozenSet[str] = TERMINAL_STATUSES


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def ensure_can_accept(current: str) -> None:
    """Raise ConflictError unless the ride is still waiting for a driver."""
    if current != REQUESTED:
        raise ConflictError(f"Ride is already {current}")


def ensure_can_update(current: str, target: str) -> None:
    """
    Validate a status update.

    Raises:
        InvalidCommandError: target is not declined/cancelled/completed
        InvalidTransitionError: the ride already reached a terminal state, or
            is asked to complete before a driver accepted it
    """
    if target not in UPDATE_TARGETS:
        allowed = ", ".join(sorted(UPDATE_TARGETS))
        raise InvalidCommandError(f"Invalid status '{target}'. Must be one of: {allowed}")
    if is_terminal(current):
        raise InvalidTransitionError(f"Cannot change ride - it is already {current}")
    if target == COMPLETED and current != ACCEPTED:
        raise InvalidTransitionError("Only an accepted ride can be completed")


def timestamp_field_for(target: str) -> str:
    """Name of the RideRequest timestamp recorded when entering `target`."""
    return {
        ACCEPTED: "accepted_at",
        COMPLETED: "completed_at",
        CANCELLED: "cancelled_at",
        DECLINED: "cancelled_at",
    }[target]
