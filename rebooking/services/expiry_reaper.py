"""
Hourly expiry of stale suggestions.

Pending or shown suggestions whose expiry time has passed are moved to
expired. Suggestions already accepted or dismissed are never touched.
"""
from typing import Optional

from sqlalchemy import update, and_
from sqlalchemy.orm import Session

from rebooking.lib.clock import Clock, system_clock
from rebooking.lib.logging import get_logger
from rebooking.lib.metrics import get_metrics_collector
from rebooking.models.suggestions import (
    RebookSuggestion,
    SuggestionStatus,
    ACTIVE_SUGGESTION_STATUSES,
)

logger = get_logger(__name__)


class ExpiryReaper:
    """Moves overdue pending and shown suggestions to expired in one bulk update."""

    def __init__(self, db_session: Session, clock: Optional[Clock] = None):
        self.db = db_session
        self.clock = clock or system_clock
        self.metrics = get_metrics_collector()

    def run_hourly_expiry_sweep(self) -> int:
        """Expire overdue suggestions. Returns the number expired."""
        now = self.clock.now()
        result = self.db.execute(
            update(RebookSuggestion)
            .where(
                and_(
                    RebookSuggestion.status.in_(ACTIVE_SUGGESTION_STATUSES),
                    RebookSuggestion.expires_at <= now,
                )
            )
            .values(status=SuggestionStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        expired = result.rowcount or 0
        self.metrics.increment_expired(expired)
        logger.info(f"Expiry sweep finished: {expired} suggestions expired")
        return expired
