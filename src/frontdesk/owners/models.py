"""
SQLAlchemy models for owner settings and daily quota counters.
"""

from datetime import date, datetime, time
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, Integer, String, Time, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from frontdesk.shared.clock import utcnow
from frontdesk.shared.database import Base, UTCDateTime


class OwnerSettings(Base):
    """Calling envelope configured by a business owner."""

    __tablename__ = "owner_settings"

    owner_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="America/New_York")
    window_start: Mapped[time] = mapped_column(Time, nullable=False, default=time(9, 0))
    window_end: Mapped[time] = mapped_column(Time, nullable=False, default=time(18, 0))
    # date.weekday() numbering: 0 = Monday
    allowed_weekdays: Mapped[list[int]] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: [0, 1, 2, 3, 4],
    )
    daily_limit: Mapped[int | None] = mapped_column(Integer, nullable=True, default=100)
    outbound_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notification_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"<OwnerSettings(owner_id={self.owner_id}, timezone={self.timezone})>"


class QuotaCounter(Base):
    """Successful quota-consuming dispatches per owner per local calendar day.

    Keying by the owner's local date makes the counter reset at local midnight
    without any scheduled job.
    """

    __tablename__ = "quota_counters"

    owner_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    quota_date: Mapped[date] = mapped_column(Date, primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
