"""
Driver application state machine.

    pending -> approved | rejected

Both outcomes are terminal; an application is decided exactly once.
"""

from services.exceptions import InvalidCommandError, InvalidTransitionError

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"

STATUS_CHOICES = [
    (PENDING, "Pending"),
    (APPROVED, "Approved"),
    (REJECTED, "Rejected"),
]

VERDICTS = frozenset({APPROVED, REJECTED})


def ensure_can_decide(current: str, verdict: str) -> None:
    if verdict not in VERDICTS:
        raise InvalidCommandError("Verdict must be 'approved' or 'rejected'")
    if current != PENDING:
        raise InvalidTransitionError(f"Application is already {current}")
