"""
Internal API routes for the rebooking engine.

These endpoints are intended for service-to-service calls (the booking
system reporting completions) and for ops triggering sweeps by hand. They
should be protected by internal authentication in production deployments.

Endpoints:
- POST /internal/rebooking/bookings/{booking_id}/completed: learn from a completed booking
- POST /internal/rebooking/sweeps/daily: run the suggestion sweep now
- POST /internal/rebooking/sweeps/expiry: run the expiry sweep now
"""
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from rebooking.api.dependencies import get_db, get_clock
from rebooking.lib.clock import Clock
from rebooking.lib.logging import get_logger
from rebooking.services.expiry_reaper import ExpiryReaper
from rebooking.services.preference_learner import PreferenceLearner
from rebooking.services.suggestion_generator import SuggestionGenerator

logger = get_logger(__name__)

router = APIRouter(prefix="/internal/rebooking", tags=["Internal Rebooking"])


class DailySweepResponse(BaseModel):
    generated: int = Field(..., description="Suggestions created in this run")


class ExpirySweepResponse(BaseModel):
    expired: int = Field(..., description="Suggestions moved to expired in this run")


@router.post(
    "/bookings/{booking_id}/completed",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Booking Completed",
    description="""
    Notify the engine that a booking reached COMPLETED.

    The customer's preference profile for that location is recomputed from
    their full completed history. Unknown, incomplete or already-processed
    bookings are accepted and ignored, so the booking system can retry safely.
    """,
)
def booking_completed(
    booking_id: UUID,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> Response:
    PreferenceLearner(db, clock=clock).on_booking_completed(booking_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/sweeps/daily", response_model=DailySweepResponse)
def run_daily_sweep(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> DailySweepResponse:
    generated = SuggestionGenerator(db, clock=clock).run_daily_suggestion_sweep()
    return DailySweepResponse(generated=generated)


@router.post("/sweeps/expiry", response_model=ExpirySweepResponse)
def run_expiry_sweep(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> ExpirySweepResponse:
    expired = ExpiryReaper(db, clock=clock).run_hourly_expiry_sweep()
    return ExpirySweepResponse(expired=expired)
