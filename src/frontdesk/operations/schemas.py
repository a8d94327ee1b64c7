"""
Pydantic schemas for the operations API.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from frontdesk.operations.models import OperationStatus, WaitState
from frontdesk.shared.clock import ensure_utc


def _aware(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


class OperationCreate(BaseModel):
    """Request body for creating an operation."""

    kind: str = Field(..., min_length=1, max_length=64)
    payload: dict[str, Any] = Field(default_factory=dict)
    owner_id: UUID | None = None
    subject: str | None = Field(default=None, max_length=255)
    idempotency_key: str | None = Field(default=None, max_length=255)
    max_attempts: int | None = Field(default=None, ge=1, le=50)
    run_at: datetime | None = Field(default=None, description="First due time; now if omitted.")

    @field_validator("run_at")
    @classmethod
    def validate_run_at(cls, v: datetime | None) -> datetime | None:
        return _aware(v)


class OperationResponse(BaseModel):
    """Operation as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    kind: str
    payload: dict[str, Any]
    status: OperationStatus
    attempt_count: int
    next_attempt_at: datetime | None
    last_error: str | None
    idempotency_key: str | None
    owner_id: UUID | None
    subject: str | None
    max_attempts: int | None
    cancel_requested: bool
    result: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime


class OperationListResponse(BaseModel):
    items: list[OperationResponse]


class CancelResponse(BaseModel):
    operation: OperationResponse
    cancelled: bool
    cancel_requested: bool


class DispatchResponse(BaseModel):
    result: str
    operation: OperationResponse


class WaitRequest(BaseModel):
    wake_at: datetime

    @field_validator("wake_at")
    @classmethod
    def validate_wake_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class WaitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    operation_id: UUID
    wake_at: datetime
    state: WaitState


class StatsResponse(BaseModel):
    """Operation counts: kind -> status -> count."""

    by_kind: dict[str, dict[str, int]]
    total: int
