"""
Cancellation channel: abort scheduled work before it fires.
"""

from datetime import datetime
from typing import Protocol
from uuid import UUID

from frontdesk.operations.store import CancelResult, OperationStore
from frontdesk.shared.logging import get_logger

logger = get_logger(__name__)


class TimerRegistry(Protocol):
    def disarm(self, operation_id: UUID, wake_at: datetime | None = None) -> int:
        ...


class CancellationChannel:
    """Cancels operations by id, owner or subject.

    Cancelling is idempotent. Work that has not been claimed is cancelled
    outright together with its waits; an attempt already in flight is allowed
    to finish and is never reversed, but it will not be rescheduled.
    """

    def __init__(self, store: OperationStore, timers: TimerRegistry | None = None) -> None:
        self._store = store
        self._timers = timers

    async def cancel(self, operation_id: UUID) -> CancelResult:
        result = await self._store.cancel(operation_id)
        if self._timers is not None and result.cancelled:
            self._timers.disarm(operation_id)
        return result

    async def cancel_for_owner(self, owner_id: UUID, kind: str | None = None) -> list[CancelResult]:
        ids = await self._store.cancellable_ids(owner_id=owner_id, kind=kind)
        return await self._cancel_many(ids)

    async def cancel_for_subject(
        self,
        subject: str,
        *,
        owner_id: UUID | None = None,
        kind: str | None = None,
    ) -> list[CancelResult]:
        ids = await self._store.cancellable_ids(owner_id=owner_id, subject=subject, kind=kind)
        return await self._cancel_many(ids)

    async def _cancel_many(self, ids: list[UUID]) -> list[CancelResult]:
        results = [await self.cancel(operation_id) for operation_id in ids]
        if results:
            logger.info(
                "Bulk cancellation",
                extra={
                    "requested": len(ids),
                    "cancelled": sum(1 for r in results if r.cancelled),
                    "cancel_requested": sum(1 for r in results if r.cancel_requested),
                },
            )
        return results
