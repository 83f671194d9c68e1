"""
Job model - scheduler bookkeeping for the rebooking sweeps.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4, UUID
import enum

from sqlalchemy import Integer, BigInteger, DateTime, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from rebooking.lib.db import Base, JSONType


class JobType(str, enum.Enum):
    """Job type enumeration."""
    SUGGESTION_SWEEP = "suggestion_sweep"
    EXPIRY_SWEEP = "expiry_sweep"
    OTHER = "other"


class JobStatus(str, enum.Enum):
    """Job execution status."""
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class Job(Base):
    """
    Job entity - one row per scheduled job, updated on every run.
    lock_key is the advisory lock that keeps replicas from running it twice.
    """
    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    type: Mapped[JobType] = mapped_column(
        SQLEnum(JobType, name="job_type"),
        nullable=False,
        index=True,
    )

    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, name="job_status"),
        nullable=False,
        default=JobStatus.PENDING,
        index=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    payload: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Result of the last run, e.g. {'generated': 12}",
    )
    lock_key: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<Job(id={self.id}, type={self.type}, status={self.status})>"
