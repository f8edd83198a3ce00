class CoursePayError(Exception):
    """Base class for every error the engine surfaces to callers."""

    status_code = 500

    def __init__(self, message: str = "", **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(CoursePayError):
    """Malformed or empty input, e.g. an empty cart."""

    status_code = 400


class NotFoundError(CoursePayError):
    status_code = 404


class ConflictError(CoursePayError):
    """Concurrent mutation lost, or the operation is invalid for the current state."""

    status_code = 409


class InvalidTransitionError(CoursePayError):
    status_code = 409

    def __init__(self, current, target):
        super().__init__(
            f"Order cannot move from {current.value} to {target.value}",
            current=current,
            target=target,
        )
        self.current = current
        self.target = target


class GatewayError(CoursePayError):
    """Remote provider unreachable or returned something unexpected. Retryable."""

    status_code = 502


class VerificationError(CoursePayError):
    """Callback authenticity check failed. Never retried, never applied."""

    status_code = 400


class ExpiredLinkError(CoursePayError):
    status_code = 410


class StaleOrderError(ConflictError):
    """Raised when the order's version moved under us."""
