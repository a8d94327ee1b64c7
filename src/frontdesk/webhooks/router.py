"""
API router for recording failed incoming webhooks.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Response, status
from pydantic import BaseModel, Field

from frontdesk.dependencies import RuntimeDep
from frontdesk.operations.schemas import OperationResponse

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


class FailedWebhookRequest(BaseModel):
    source: str = Field(..., min_length=1, max_length=64, examples=["stripe"])
    event_type: str = Field(..., min_length=1, max_length=128)
    payload: dict[str, Any] = Field(default_factory=dict)
    error: str = Field(..., min_length=1)
    event_id: str | None = Field(default=None, max_length=128)
    owner_id: UUID | None = None


@router.post(
    "/failed",
    response_model=OperationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_failed_webhook(
    body: FailedWebhookRequest,
    runtime: RuntimeDep,
    response: Response,
) -> OperationResponse:
    operation, created = await runtime.failed_webhooks.record_failed_webhook(
        body.source,
        body.event_type,
        body.payload,
        body.error,
        event_id=body.event_id,
        owner_id=body.owner_id,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return OperationResponse.model_validate(operation)
