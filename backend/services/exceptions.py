"""Custom exceptions for ride dispatch and driver verification."""


class DispatchError(Exception):
    """Base class for errors reported back to the caller."""
    status_code = 400
    error_code = "dispatch_error"


class InvalidCommandError(DispatchError):
    """Raised when an inbound command is malformed or references the wrong user."""
    status_code = 400
    error_code = "invalid_command"


class NotFoundError(DispatchError):
    """Raised when a ride, application or user cannot be found."""
    status_code = 404
    error_code = "not_found"


class ConflictError(DispatchError):
    """Raised when a state precondition no longer holds (e.g. ride already accepted)."""
    status_code = 409
    error_code = "conflict"


class ActiveApplicationExistsError(ConflictError):
    """Raised when user already has a pending driver application."""
    error_code = "application_pending"


class InvalidTransitionError(DispatchError):
    """Raised when a terminal ride or application is asked to change state."""
    status_code = 400
    error_code = "invalid_transition"


class StorageError(DispatchError):
    """Raised when the database fails while persisting a transition."""
    status_code = 500
    error_code = "storage_error"


class DeliveryFailure(Exception):
    """Raised for a single failed peer send. Handled inside the registry only."""
    pass


class ForbiddenError(DispatchError):
    """Raised when the authenticated user may not act on the ride or application."""
    status_code = 403
    error_code = "forbidden"
