"""
Rebooking domain errors.

All of them are recoverable: the API turns each into a typed JSON error the
client can act on ("pick another time", "this offer expired").
"""
from typing import Optional
from uuid import UUID

from rebooking.api.middleware.error_handler import (
    NotFoundException,
    ConflictException,
    GoneException,
    ValidationException,
)


class SuggestionNotFoundError(NotFoundException):
    """Suggestion does not exist or belongs to another user."""

    def __init__(self, suggestion_id: UUID):
        super().__init__(
            "Suggestion",
            str(suggestion_id),
            message="Suggestion not found or not authorized",
        )


class SuggestionAlreadyUsedError(ConflictException):
    """Suggestion was already accepted (or is otherwise closed)."""

    code = "already_used"

    def __init__(self, suggestion_id: UUID, status: Optional[str] = None):
        super().__init__(
            "Suggestion already used",
            details={"suggestion_id": str(suggestion_id), "status": status},
        )


class SuggestionExpiredError(GoneException):
    """Suggestion passed its expires_at."""

    code = "expired"

    def __init__(self, suggestion_id: UUID):
        super().__init__(
            "Suggestion has expired",
            details={"suggestion_id": str(suggestion_id)},
        )


class SlotUnavailableError(ConflictException):
    """Another booking holds the slot. Raised only from the lock-guarded check."""

    code = "slot_unavailable"

    def __init__(self, location_id: UUID, booking_date, booking_time: str, staff_id: Optional[UUID]):
        super().__init__(
            "The selected time slot is no longer available",
            details={
                "location_id": str(location_id),
                "date": str(booking_date),
                "time": booking_time,
                "staff_id": str(staff_id) if staff_id else None,
            },
        )


class EmptyServiceSetError(ValidationException):
    """Customization removed every service."""

    def __init__(self):
        super().__init__(
            "At least one service is required",
            errors={"services": "empty"},
        )


class ForeignLocationError(ValidationException):
    """Chosen staff member or services belong to a different location than the suggestion."""

    def __init__(self, location_id: UUID, staff_id: Optional[UUID] = None, service_ids=()):
        errors = {"location_id": str(location_id)}
        if staff_id:
            errors["staff_id"] = str(staff_id)
        if service_ids:
            errors["service_ids"] = [str(sid) for sid in service_ids]
        super().__init__("Staff and services must belong to the booking location", errors=errors)


class DependencyNotFoundError(NotFoundException):
    """User or location vanished between suggestion creation and acceptance."""

    code = "dependency_not_found"

    def __init__(self, resource: str, resource_id: UUID):
        super().__init__(resource, str(resource_id))
