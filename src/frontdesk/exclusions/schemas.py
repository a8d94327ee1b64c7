"""
Pydantic schemas for the do-not-call API.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from frontdesk.exclusions.models import ExclusionSource
from frontdesk.shared.clock import ensure_utc


class ExclusionCreateRequest(BaseModel):
    owner_id: UUID
    phone_number: str = Field(..., min_length=3, max_length=32)
    reason: str | None = Field(default=None, max_length=500)
    source: ExclusionSource = ExclusionSource.API
    expires_at: datetime | None = None

    @field_validator("expires_at")
    @classmethod
    def validate_expires_at(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None


class ExclusionEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID
    phone_number: str
    reason: str | None
    source: ExclusionSource
    expires_at: datetime | None
    created_at: datetime


class ExclusionCreateResponse(BaseModel):
    entry: ExclusionEntryResponse
    cancelled_calls: int


class ExclusionListResponse(BaseModel):
    items: list[ExclusionEntryResponse]
