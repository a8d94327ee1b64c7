"""
API router for the outbound call queue.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Response, status
from pydantic import BaseModel, Field, field_validator

from frontdesk.dependencies import RuntimeDep
from frontdesk.operations.schemas import OperationResponse
from frontdesk.shared.clock import ensure_utc

router = APIRouter(prefix="/api/outbound", tags=["outbound"])


class OutboundCallRequest(BaseModel):
    owner_id: UUID
    to_number: str = Field(..., min_length=3, max_length=32)
    purpose: str = Field(..., min_length=1, max_length=64, examples=["appointment_reminder"])
    context: dict[str, Any] = Field(default_factory=dict)
    assistant_id: str | None = None
    idempotency_key: str | None = Field(default=None, max_length=255)
    run_at: datetime | None = None
    max_attempts: int | None = Field(default=None, ge=1, le=10)

    @field_validator("run_at")
    @classmethod
    def validate_run_at(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None


@router.post(
    "/calls",
    response_model=OperationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def enqueue_call(
    body: OutboundCallRequest,
    runtime: RuntimeDep,
    response: Response,
) -> OperationResponse:
    operation, created = await runtime.outbound.enqueue_call(
        body.owner_id,
        body.to_number,
        body.purpose,
        context=body.context,
        assistant_id=body.assistant_id,
        idempotency_key=body.idempotency_key,
        run_at=body.run_at,
        max_attempts=body.max_attempts,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return OperationResponse.model_validate(operation)
