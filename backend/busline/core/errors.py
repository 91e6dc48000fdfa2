"""
Domain error taxonomy.

Services raise these instead of HTTP exceptions so the same rules hold for
every caller (HTTP handlers, the ingest loop, scripts, tests). The API layer
renders them as `{"detail": ..., "code": ...}` with `status_code`.
"""


class DomainError(Exception):
    status_code: int = 500
    code: str = "error"

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.context = context


class ValidationError(DomainError):
    """Malformed or missing input. Caller-fixable, never retried."""
    status_code = 400
    code = "validation_error"


class ConflictError(ValidationError):
    """A unique field (email, username, bus number) is already taken."""
    status_code = 409
    code = "conflict"


class NotFoundError(DomainError):
    status_code = 404
    code = "not_found"


class ScheduleNotBookableError(NotFoundError):
    """Schedule exists but is cancelled or completed."""
    code = "schedule_not_bookable"


class CapacityExceededError(DomainError):
    """Requested more seats than the schedule has left."""
    status_code = 409
    code = "capacity_exceeded"


class SeatConflictError(DomainError):
    """A requested seat label is already held by another active booking."""
    status_code = 409
    code = "seat_unavailable"


class IntegrityError(DomainError):
    """A join found a dangling reference. Always a defect."""
    status_code = 500
    code = "integrity_error"


class PaymentFailedError(DomainError):
    """Payment declined or timed out. No booking exists in this case."""
    status_code = 402
    code = "payment_failed"


class AuthenticationError(DomainError):
    status_code = 401
    code = "not_authenticated"


class PermissionDeniedError(DomainError):
    status_code = 403
    code = "forbidden"
