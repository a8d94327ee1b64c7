"""
API router for the do-not-call list.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status

from frontdesk.dependencies import RuntimeDep
from frontdesk.exclusions.schemas import (
    ExclusionCreateRequest,
    ExclusionCreateResponse,
    ExclusionEntryResponse,
    ExclusionListResponse,
)
from frontdesk.shared.exceptions import NotFoundError

router = APIRouter(prefix="/api/exclusions", tags=["exclusions"])


@router.post(
    "",
    response_model=ExclusionCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a number to an owner's do-not-call list",
    description="Queued calls from the owner to the number are cancelled.",
)
async def create_exclusion(
    body: ExclusionCreateRequest,
    runtime: RuntimeDep,
) -> ExclusionCreateResponse:
    entry, cancelled = await runtime.exclusions.add(
        body.owner_id,
        body.phone_number,
        reason=body.reason,
        source=body.source,
        expires_at=body.expires_at,
    )
    return ExclusionCreateResponse(
        entry=ExclusionEntryResponse.model_validate(entry),
        cancelled_calls=cancelled,
    )


@router.get("", response_model=ExclusionListResponse)
async def list_exclusions(
    owner_id: UUID,
    runtime: RuntimeDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> ExclusionListResponse:
    entries = await runtime.exclusions.list_for_owner(owner_id, limit)
    return ExclusionListResponse(
        items=[ExclusionEntryResponse.model_validate(entry) for entry in entries]
    )


@router.delete("/{owner_id}/{phone_number}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_exclusion(owner_id: UUID, phone_number: str, runtime: RuntimeDep) -> None:
    if not await runtime.exclusions.remove(owner_id, phone_number):
        raise NotFoundError(f"{phone_number} is not on the list of owner {owner_id}")
