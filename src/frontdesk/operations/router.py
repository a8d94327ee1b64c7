"""
API router for operations.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from frontdesk.dependencies import RuntimeDep
from frontdesk.operations.models import OperationStatus
from frontdesk.operations.schemas import (
    CancelResponse,
    DispatchResponse,
    OperationCreate,
    OperationListResponse,
    OperationResponse,
    StatsResponse,
    WaitRequest,
    WaitResponse,
)
from frontdesk.shared.exceptions import ValidationError

router = APIRouter(prefix="/api/operations", tags=["operations"])


@router.post(
    "",
    response_model=OperationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an operation",
    description="Idempotent on idempotency_key: a repeated request returns the stored operation with 200.",
)
async def create_operation(
    body: OperationCreate,
    runtime: RuntimeDep,
    response: Response,
) -> OperationResponse:
    if body.kind not in runtime.registry:
        raise ValidationError(f"No handler registered for kind {body.kind!r}")

    operation, created = await runtime.store.enqueue(
        body.kind,
        body.payload,
        owner_id=body.owner_id,
        subject=body.subject,
        idempotency_key=body.idempotency_key,
        max_attempts=body.max_attempts,
        run_at=body.run_at,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return OperationResponse.model_validate(operation)


@router.get("", response_model=OperationListResponse)
async def list_operations(
    runtime: RuntimeDep,
    status_filter: Annotated[OperationStatus | None, Query(alias="status")] = None,
    kind: str | None = None,
    owner_id: UUID | None = None,
    subject: str | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> OperationListResponse:
    operations = await runtime.store.list_operations(
        status=status_filter,
        kind=kind,
        owner_id=owner_id,
        subject=subject,
        limit=limit,
    )
    return OperationListResponse(items=[OperationResponse.model_validate(op) for op in operations])


@router.get("/stats", response_model=StatsResponse)
async def operation_stats(runtime: RuntimeDep) -> StatsResponse:
    by_kind = await runtime.store.stats()
    return StatsResponse(
        by_kind=by_kind,
        total=sum(sum(counts.values()) for counts in by_kind.values()),
    )


@router.get("/{operation_id}", response_model=OperationResponse)
async def get_operation(operation_id: UUID, runtime: RuntimeDep) -> OperationResponse:
    return OperationResponse.model_validate(await runtime.store.get(operation_id))


@router.post("/{operation_id}/cancel", response_model=CancelResponse)
async def cancel_operation(operation_id: UUID, runtime: RuntimeDep) -> CancelResponse:
    result = await runtime.cancellation.cancel(operation_id)
    return CancelResponse(
        operation=OperationResponse.model_validate(result.operation),
        cancelled=result.cancelled,
        cancel_requested=result.cancel_requested,
    )


@router.post("/{operation_id}/dispatch", response_model=DispatchResponse)
async def dispatch_operation(operation_id: UUID, runtime: RuntimeDep) -> DispatchResponse:
    report = await runtime.dispatch_now(operation_id)
    operation = await runtime.store.get(operation_id)
    return DispatchResponse(
        result=report.result.value,
        operation=OperationResponse.model_validate(operation),
    )


@router.post(
    "/{operation_id}/wait",
    response_model=WaitResponse,
    status_code=status.HTTP_201_CREATED,
)
async def schedule_wait(
    operation_id: UUID,
    body: WaitRequest,
    runtime: RuntimeDep,
) -> WaitResponse:
    wait = await runtime.waker.schedule_wait(operation_id, body.wake_at)
    return WaitResponse.model_validate(wait)


@router.post("/{operation_id}/requeue", response_model=OperationResponse)
async def requeue_operation(operation_id: UUID, runtime: RuntimeDep) -> OperationResponse:
    return OperationResponse.model_validate(await runtime.store.requeue(operation_id))
