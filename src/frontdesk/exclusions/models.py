"""
SQLAlchemy model for do-not-call entries.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Enum as SQLEnum, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from frontdesk.shared.clock import utcnow
from frontdesk.shared.database import Base, UTCDateTime


class ExclusionSource(str, Enum):
    """Where a do-not-call entry came from."""

    API = "api"
    CALLER_REQUEST = "caller_request"
    MANUAL = "manual"


class ExclusionEntry(Base):
    """A phone number an owner must not call, optionally until `expires_at`."""

    __tablename__ = "exclusion_entries"
    __table_args__ = (
        UniqueConstraint("owner_id", "phone_number", name="uq_exclusion_owner_phone"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[ExclusionSource] = mapped_column(
        SQLEnum(
            ExclusionSource,
            name="exclusion_source",
            native_enum=False,
            length=32,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=ExclusionSource.API,
    )
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now

    def __repr__(self) -> str:
        return f"<ExclusionEntry(owner_id={self.owner_id}, phone={self.phone_number})>"
