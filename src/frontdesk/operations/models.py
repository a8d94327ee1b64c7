"""
SQLAlchemy models for operations and scheduled waits.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from frontdesk.shared.clock import utcnow
from frontdesk.shared.database import Base, UTCDateTime


class OperationStatus(str, Enum):
    """Operation lifecycle state."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        OperationStatus.COMPLETED,
        OperationStatus.FAILED_TERMINAL,
        OperationStatus.BLOCKED,
        OperationStatus.CANCELLED,
    }
)


class OperationKind(str, Enum):
    """Built-in handler tags. Any other registered string is accepted too."""

    OUTBOUND_CALL = "outbound_call"
    WEBHOOK_REPLAY = "webhook_replay"
    TOKEN_REFRESH = "token_refresh"


class WaitState(str, Enum):
    """ScheduledWait state."""

    WAITING = "waiting"
    FIRED = "fired"
    CANCELLED = "cancelled"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Operation(Base):
    """One retryable unit of work against an external service."""

    __tablename__ = "operations"
    __table_args__ = (
        Index("ix_operations_status_next_attempt", "status", "next_attempt_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    kind: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[OperationStatus] = mapped_column(
        SQLEnum(
            OperationStatus,
            name="operation_status",
            native_enum=False,
            length=32,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=OperationStatus.PENDING,
    )
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    idempotency_key: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
    )
    owner_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    subject: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    max_attempts: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    @property
    def is_terminal(self) -> bool:
        return OperationStatus(self.status).is_terminal

    def __repr__(self) -> str:
        return (
            f"<Operation(id={self.id}, kind={self.kind}, status={self.status}, "
            f"attempt_count={self.attempt_count})>"
        )


class ScheduledWait(Base):
    """A "come back at wake_at" instruction tied to one operation."""

    __tablename__ = "scheduled_waits"
    __table_args__ = (
        UniqueConstraint("operation_id", "wake_at", name="uq_scheduled_waits_operation_wake"),
        Index("ix_scheduled_waits_state_wake", "state", "wake_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    operation_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("operations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    wake_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    state: Mapped[WaitState] = mapped_column(
        SQLEnum(
            WaitState,
            name="wait_state",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=WaitState.WAITING,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<ScheduledWait(operation_id={self.operation_id}, wake_at={self.wake_at}, state={self.state})>"
