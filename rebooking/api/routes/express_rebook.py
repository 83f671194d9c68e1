"""
Express rebooking API routes (customer facing).

Endpoints:
- GET  /express-rebook/suggestions: live suggestions plus recent visits
- POST /express-rebook/quick: book a suggestion as proposed
- POST /express-rebook/customize: book a suggestion with changes
- POST /express-rebook/dismiss: dismiss a suggestion
- GET  /express-rebook/last-booking/{location_id}: last visit and rebook hint
"""
from datetime import date as date_type, datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from rebooking.api.dependencies import get_db, get_clock, get_current_user_id
from rebooking.lib.clock import Clock
from rebooking.lib.logging import get_logger
from rebooking.lib.rate_limit import create_rate_limiter
from rebooking.lib.settings import settings
from rebooking.services.booking_committer import BookingCommitter, SuggestionModifications
from rebooking.services.suggestion_presenter import SuggestionPresenter

logger = get_logger(__name__)

router = APIRouter(prefix="/express-rebook", tags=["Express Rebook"])

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

# One budget per client across /quick and /customize
booking_rate_limit = create_rate_limiter(
    settings.booking_rate_limit,
    settings.booking_rate_window_seconds,
    key_prefix="booking_attempts",
    message="Too many booking attempts. Please wait a moment.",
)


# Response schemas
class LocationSummary(BaseModel):
    id: UUID
    name: str
    image_url: Optional[str] = None
    rating: Optional[float] = None


class ServiceSummary(BaseModel):
    id: UUID
    name: str
    price: float
    duration_minutes: Optional[int] = None


class StaffSummary(BaseModel):
    id: UUID
    name: str
    photo_url: Optional[str] = None


class SuggestionResponse(BaseModel):
    id: UUID
    location: LocationSummary
    suggested_date: date_type
    suggested_time: str
    services: List[ServiceSummary]
    staff: Optional[StaffSummary] = None
    estimated_total: float
    reason: Optional[str] = None
    confidence_score: int
    slot_available: bool
    status: str
    expires_at: datetime


class LastVisitResponse(BaseModel):
    location_id: UUID
    location_name: str
    location_image_url: Optional[str] = None
    last_visit_date: Optional[date_type] = None
    days_since: int
    services: List[str]
    staff_name: Optional[str] = None


class SuggestionsResponse(BaseModel):
    suggestions: List[SuggestionResponse]
    last_visits: List[LastVisitResponse]


class BookingConfirmation(BaseModel):
    booking_id: UUID
    location_name: str
    date: date_type
    time: str
    services: List[str]
    staff_name: Optional[str] = None
    total: float


class BookingResponse(BaseModel):
    success: bool = True
    booking: BookingConfirmation


class LastBookingServiceSummary(BaseModel):
    id: UUID
    name: str
    price: float


class LastBookingStaffSummary(BaseModel):
    id: UUID
    name: str


class LastBookingSummary(BaseModel):
    id: UUID
    date: date_type
    time: str
    services: List[LastBookingServiceSummary]
    staff: Optional[LastBookingStaffSummary] = None
    total_paid: float


class NextAvailableSlot(BaseModel):
    date: date_type
    time: str
    available: bool


class LastBookingResponse(BaseModel):
    last_booking: Optional[LastBookingSummary] = None
    next_available_slot: Optional[NextAvailableSlot] = None
    suggested_rebook_date: Optional[date_type] = None


class DismissResponse(BaseModel):
    success: bool = True


# Request schemas
class QuickRebookRequest(BaseModel):
    suggestion_id: UUID


class Modifications(BaseModel):
    date: Optional[date_type] = None
    time: Optional[str] = Field(default=None, pattern=TIME_PATTERN, description="HH:MM, 24h")
    staff_id: Optional[UUID] = None
    add_service_ids: List[UUID] = Field(default_factory=list)
    remove_service_ids: List[UUID] = Field(default_factory=list)


class CustomizeRebookRequest(BaseModel):
    suggestion_id: UUID
    modifications: Modifications = Field(default_factory=Modifications)

    model_config = {
        "json_schema_extra": {
            "example": {
                "suggestion_id": "123e4567-e89b-12d3-a456-426614174000",
                "modifications": {"time": "14:00", "add_service_ids": []},
            }
        }
    }


class DismissRequest(BaseModel):
    suggestion_id: UUID
    reason: Optional[str] = Field(default=None, max_length=200)


def _booking_response(result: dict) -> BookingResponse:
    return BookingResponse(
        booking=BookingConfirmation(
            booking_id=result["booking_id"],
            location_name=result["location_name"],
            date=result["date"],
            time=result["time"],
            services=result["services"],
            staff_name=result["staff_name"],
            total=float(result["total"]),
        )
    )


# Routes
@router.get("/suggestions", response_model=SuggestionsResponse)
def get_suggestions(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> SuggestionsResponse:
    """
    Active suggestions for the customer, best first.

    Pending suggestions returned here are marked shown. slot_available is
    a hint only; the slot is re-checked when the customer books.
    """
    feed = SuggestionPresenter(db, clock=clock).get_suggestions(user_id)

    suggestions = [
        SuggestionResponse(
            **{
                **item,
                "services": [
                    ServiceSummary(**{**svc, "price": float(svc["price"] or 0)})
                    for svc in item["services"]
                ],
                "estimated_total": float(item["estimated_total"]),
            }
        )
        for item in feed["suggestions"]
    ]
    last_visits = [LastVisitResponse(**visit) for visit in feed["last_visits"]]
    return SuggestionsResponse(suggestions=suggestions, last_visits=last_visits)


@router.post("/quick", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def quick_rebook(
    request: QuickRebookRequest,
    user_id: UUID = Depends(get_current_user_id),
    _: None = Depends(booking_rate_limit),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> BookingResponse:
    """One-tap rebook: book the suggestion exactly as proposed."""
    result = BookingCommitter(db, clock=clock).accept_suggestion(user_id, request.suggestion_id)
    return _booking_response(result)


@router.post("/customize", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def customize_rebook(
    request: CustomizeRebookRequest,
    user_id: UUID = Depends(get_current_user_id),
    _: None = Depends(booking_rate_limit),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> BookingResponse:
    """Rebook with a different date, time, staff member or service set."""
    mods = request.modifications
    result = BookingCommitter(db, clock=clock).customize_suggestion(
        user_id,
        request.suggestion_id,
        SuggestionModifications(
            date=mods.date,
            time=mods.time,
            staff_id=mods.staff_id,
            add_service_ids=list(mods.add_service_ids),
            remove_service_ids=list(mods.remove_service_ids),
        ),
    )
    return _booking_response(result)


@router.post("/dismiss", response_model=DismissResponse)
def dismiss_suggestion(
    request: DismissRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> DismissResponse:
    SuggestionPresenter(db, clock=clock).dismiss_suggestion(user_id, request.suggestion_id, request.reason)
    return DismissResponse()


@router.get("/last-booking/{location_id}", response_model=LastBookingResponse)
def get_last_booking(
    location_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> LastBookingResponse:
    """Last completed visit at a location, with the next open slot at the same time."""
    result = SuggestionPresenter(db, clock=clock).get_last_booking_for_location(user_id, location_id)

    last = result["last_booking"]
    if last is None:
        return LastBookingResponse()

    return LastBookingResponse(
        last_booking=LastBookingSummary(
            id=last["id"],
            date=last["date"],
            time=last["time"],
            services=[
                LastBookingServiceSummary(id=svc["id"], name=svc["name"], price=float(svc["price"] or 0))
                for svc in last["services"]
            ],
            staff=LastBookingStaffSummary(**last["staff"]) if last["staff"] else None,
            total_paid=float(last["total_paid"] or 0),
        ),
        next_available_slot=(
            NextAvailableSlot(**result["next_available_slot"])
            if result["next_available_slot"] else None
        ),
        suggested_rebook_date=result["suggested_rebook_date"],
    )
