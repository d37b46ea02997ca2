"""
Error taxonomy for the booking engine.

Every error carries a ``kind`` string and a ``details`` dict with the IDs
a caller needs to render a precise message. Only ConcurrencyConflictError
is recovered inside the engine (one bounded retry); everything else
propagates to the caller unmodified.
"""

from typing import Any, Optional


class BookingError(Exception):
    """Base class for all booking engine errors."""

    kind = "booking_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details

    def to_dict(self) -> dict[str, Any]:
        """Structured form for the transport layer."""
        return {"kind": self.kind, "message": self.message, **self.details}


class ValidationError(BookingError):
    """Malformed request shape. Never retried."""

    kind = "validation_error"


class AvailabilityError(BookingError):
    """Provider has no schedule, or the request falls outside declared hours."""

    kind = "availability_error"

    def __init__(
        self, message: str, suggestions: Optional[list[str]] = None, **details: Any
    ) -> None:
        super().__init__(message, suggestions=list(suggestions or []), **details)

    @property
    def suggestions(self) -> list[str]:
        return self.details["suggestions"]


class ConflictError(BookingError):
    """Requested interval overlaps an existing non-terminal booking."""

    kind = "conflict_error"

    def __init__(
        self,
        message: str,
        conflicting_booking_number: Optional[str] = None,
        suggestions: Optional[list[str]] = None,
        **details: Any,
    ) -> None:
        super().__init__(
            message,
            conflicting_booking_number=conflicting_booking_number,
            suggestions=list(suggestions or []),
            **details,
        )

    @property
    def conflicting_booking_number(self) -> Optional[str]:
        return self.details["conflicting_booking_number"]

    @property
    def suggestions(self) -> list[str]:
        return self.details["suggestions"]


class AuthorizationError(BookingError):
    """Actor is not entitled to perform the requested action."""

    kind = "authorization_error"


class StateTransitionError(BookingError):
    """Transition is not valid for the booking's current status."""

    kind = "state_transition_error"


class ConcurrencyConflictError(BookingError):
    """Commit-time race lost against another writer for the same slot."""

    kind = "concurrency_conflict"


class ServiceUnavailable(BookingError):
    """Service is missing or inactive."""

    kind = "service_unavailable"


class ProviderNotFound(BookingError):
    """Provider ID does not resolve to a user with the provider role."""

    kind = "provider_not_found"


class BookingNotFound(BookingError):
    """No booking exists for the given booking number."""

    kind = "booking_not_found"
