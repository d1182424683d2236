"""Error taxonomy for the lifecycle core.

Every error carries a stable ``kind`` used by the HTTP layer, the status
code it maps to, a human readable message and free-form context for logs.
"""

from typing import Any, Optional


class LifecycleError(Exception):
    """Base exception for lifecycle errors."""

    kind: str = "lifecycle_error"
    status_code: int = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationFailed(LifecycleError):
    """Raised when request input breaks a business rule."""

    kind = "validation_failed"
    status_code = 400


class NotFound(LifecycleError):
    """Raised when the addressed entity does not exist."""

    kind = "not_found"
    status_code = 404


class Forbidden(LifecycleError):
    """Raised when the actor may not perform the operation."""

    kind = "forbidden"
    status_code = 403


class InvalidTransition(LifecycleError):
    """Raised when a status change is not in the transition table."""

    kind = "invalid_transition"
    status_code = 400

    def __init__(
        self,
        current_status: Any,
        requested_status: Any,
        message: Optional[str] = None,
        **context: Any,
    ):
        self.current_status = getattr(current_status, "value", current_status)
        self.requested_status = getattr(requested_status, "value", requested_status)
        super().__init__(
            message
            or f"Invalid transition from {self.current_status} "
            f"to {self.requested_status}",
            current_status=self.current_status,
            requested_status=self.requested_status,
            **context,
        )


class SlotConflict(LifecycleError):
    """Raised when a time slot is already held by an active booking."""

    kind = "slot_conflict"
    status_code = 409


class PastSchedule(LifecycleError):
    """Raised when a booking is scheduled at or before the current time."""

    kind = "past_schedule"
    status_code = 400


class TooLateToModify(LifecycleError):
    """Raised inside the modification window before a booking starts."""

    kind = "too_late_to_modify"
    status_code = 400


class PaymentDeclined(LifecycleError):
    """Raised when the payment collaborator declines a charge."""

    kind = "payment_declined"
    status_code = 402


class PersistenceError(LifecycleError):
    """Raised when the storage layer fails."""

    kind = "persistence_error"
    status_code = 500


class ConcurrentModification(PersistenceError):
    """Raised when a row changed underneath an optimistic write."""

    kind = "concurrent_modification"
    status_code = 409
