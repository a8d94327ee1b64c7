"""
SQLAlchemy model for calendar integrations.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Enum as SQLEnum, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from frontdesk.shared.clock import utcnow
from frontdesk.shared.database import Base, UTCDateTime


class IntegrationStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class CalendarIntegration(Base):
    """OAuth tokens an owner granted for one calendar provider."""

    __tablename__ = "calendar_integrations"
    __table_args__ = (
        UniqueConstraint("owner_id", "provider", name="uq_calendar_owner_provider"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    status: Mapped[IntegrationStatus] = mapped_column(
        SQLEnum(
            IntegrationStatus,
            name="integration_status",
            native_enum=False,
            length=16,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=IntegrationStatus.CONNECTED,
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"<CalendarIntegration(owner_id={self.owner_id}, provider={self.provider}, status={self.status})>"
