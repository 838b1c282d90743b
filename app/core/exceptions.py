"""
Domain exceptions for the booking and payment core.

Each exception carries a stable ``code`` so callers (and the API layer) can
branch on the kind of failure instead of on message text.
"""

from typing import Any, Dict, Optional


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationException(DomainException):
    """Raised when request input fails business validation. Never retried."""

    status_code = 400


class NotFoundException(DomainException):
    """Raised when a booking, payment or order does not exist."""

    status_code = 404


class ConflictException(DomainException):
    """Raised when the request conflicts with current state."""

    status_code = 409


class InvalidTransitionException(ConflictException):
    def __init__(self, entity: str, current: str, requested: str) -> None:
        super().__init__(
            f"Invalid status transition from {current} to {requested}",
            code="INVALID_STATUS_TRANSITION",
            details={"entity": entity, "from": current, "to": requested},
        )


class SlotConflictException(ConflictException):
    """The store rejected a write because the slot already holds an active booking."""


class ConcurrentUpdateException(ConflictException):
    pass


class GatewayException(DomainException):
    """Payment gateway call failed. Local payment state is left unchanged."""

    status_code = 502
    retryable = False


class GatewayUnavailableException(GatewayException):
    """Transport failure, timeout, rate limit or 5xx. Safe for the caller to retry."""

    status_code = 503
    retryable = True


class PaymentDeclinedException(GatewayException):
    """The gateway refused the request on its merits (card declined, invalid request)."""

    status_code = 402
