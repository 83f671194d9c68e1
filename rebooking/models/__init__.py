"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from rebooking.models.users import User
from rebooking.models.locations import Location, StaffMember
from rebooking.models.services import Service
from rebooking.models.bookings import Booking, BookingStatus, BookingSource
from rebooking.models.preferences import UserBookingPreference, TimeSlot
from rebooking.models.suggestions import RebookSuggestion, SuggestionStatus
from rebooking.models.jobs import Job, JobType, JobStatus

__all__ = [
    "User",
    "Location",
    "StaffMember",
    "Service",
    "Booking",
    "BookingStatus",
    "BookingSource",
    "UserBookingPreference",
    "TimeSlot",
    "RebookSuggestion",
    "SuggestionStatus",
    "Job",
    "JobType",
    "JobStatus",
]
