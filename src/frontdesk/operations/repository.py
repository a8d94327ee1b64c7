"""
Repository for operation and scheduled-wait queries.

All methods run inside the caller's session; transaction boundaries belong to
`OperationStore`.
"""

from datetime import datetime
from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlalchemy import and_, delete, exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from frontdesk.operations.models import (
    TERMINAL_STATUSES,
    Operation,
    OperationStatus,
    ScheduledWait,
    WaitState,
)

CANCELLABLE_STATUSES = (OperationStatus.PENDING, OperationStatus.FAILED_RETRYABLE)


class OperationRepository:
    """Repository for operation rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, operation_id: UUID, *, for_update: bool = False) -> Operation | None:
        stmt = select(Operation).where(Operation.id == operation_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_idempotency_key(self, key: str) -> Operation | None:
        stmt = select(Operation).where(Operation.idempotency_key == key)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, operation: Operation) -> Operation:
        self._session.add(operation)
        await self._session.flush()
        return operation

    async def find_due(
        self,
        now: datetime,
        limit: int,
        kind: str | None = None,
    ) -> Sequence[Operation]:
        """Pending operations due at `now`, oldest first.

        Operations parked on an active wait are left to the wake path.
        """
        active_wait = exists().where(
            and_(
                ScheduledWait.operation_id == Operation.id,
                ScheduledWait.state == WaitState.WAITING,
            )
        )
        stmt = (
            select(Operation)
            .where(
                Operation.status == OperationStatus.PENDING,
                Operation.next_attempt_at <= now,
                ~active_wait,
            )
            .order_by(Operation.next_attempt_at.asc(), Operation.created_at.asc())
            .limit(limit)
        )
        if kind is not None:
            stmt = stmt.where(Operation.kind == kind)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def compare_and_set_status(
        self,
        operation_id: UUID,
        expected: Iterable[OperationStatus],
        **values: Any,
    ) -> bool:
        """Conditional UPDATE; True if the row was in one of `expected`."""
        stmt = (
            update(Operation)
            .where(Operation.id == operation_id, Operation.status.in_(list(expected)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def list_operations(
        self,
        *,
        status: OperationStatus | None = None,
        kind: str | None = None,
        owner_id: UUID | None = None,
        subject: str | None = None,
        limit: int = 100,
    ) -> Sequence[Operation]:
        stmt = select(Operation).order_by(Operation.created_at.desc()).limit(limit)
        if status is not None:
            stmt = stmt.where(Operation.status == status)
        if kind is not None:
            stmt = stmt.where(Operation.kind == kind)
        if owner_id is not None:
            stmt = stmt.where(Operation.owner_id == owner_id)
        if subject is not None:
            stmt = stmt.where(Operation.subject == subject)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def non_terminal_ids(
        self,
        *,
        owner_id: UUID | None = None,
        subject: str | None = None,
        kind: str | None = None,
    ) -> list[UUID]:
        stmt = select(Operation.id).where(Operation.status.not_in(list(TERMINAL_STATUSES)))
        if owner_id is not None:
            stmt = stmt.where(Operation.owner_id == owner_id)
        if subject is not None:
            stmt = stmt.where(Operation.subject == subject)
        if kind is not None:
            stmt = stmt.where(Operation.kind == kind)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def stale_in_flight_ids(self, claimed_before: datetime) -> list[UUID]:
        stmt = select(Operation.id).where(
            Operation.status == OperationStatus.IN_FLIGHT,
            Operation.claimed_at < claimed_before,
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_kind_and_status(self) -> list[tuple[str, OperationStatus, int]]:
        stmt = select(Operation.kind, Operation.status, func.count()).group_by(
            Operation.kind, Operation.status
        )
        result = await self._session.execute(stmt)
        return [(kind, OperationStatus(status), int(count)) for kind, status, count in result.all()]

    async def delete_terminal(
        self,
        updated_before: datetime,
        *,
        kind: str | None = None,
        exclude_kinds: Iterable[str] = (),
    ) -> int:
        """Delete terminal operations (and their waits) last touched before the cutoff."""
        conditions = [
            Operation.status.in_(list(TERMINAL_STATUSES)),
            Operation.updated_at < updated_before,
        ]
        if kind is not None:
            conditions.append(Operation.kind == kind)
        excluded = list(exclude_kinds)
        if excluded:
            conditions.append(Operation.kind.not_in(excluded))

        ids = select(Operation.id).where(*conditions)
        await self._session.execute(
            delete(ScheduledWait)
            .where(ScheduledWait.operation_id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(
            delete(Operation).where(*conditions).execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)


class ScheduledWaitRepository:
    """Repository for scheduled waits."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, operation_id: UUID, wake_at: datetime) -> ScheduledWait | None:
        stmt = select(ScheduledWait).where(
            ScheduledWait.operation_id == operation_id,
            ScheduledWait.wake_at == wake_at,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, operation_id: UUID, wake_at: datetime) -> ScheduledWait:
        wait = ScheduledWait(operation_id=operation_id, wake_at=wake_at, state=WaitState.WAITING)
        self._session.add(wait)
        await self._session.flush()
        return wait

    async def waiting(self, due_before: datetime | None = None) -> Sequence[ScheduledWait]:
        stmt = (
            select(ScheduledWait)
            .where(ScheduledWait.state == WaitState.WAITING)
            .order_by(ScheduledWait.wake_at.asc())
        )
        if due_before is not None:
            stmt = stmt.where(ScheduledWait.wake_at <= due_before)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def transition(
        self,
        operation_id: UUID,
        wake_at: datetime,
        new_state: WaitState,
        at: datetime,
    ) -> bool:
        """waiting -> new_state for one wait; True for the single winner."""
        stmt = (
            update(ScheduledWait)
            .where(
                ScheduledWait.operation_id == operation_id,
                ScheduledWait.wake_at == wake_at,
                ScheduledWait.state == WaitState.WAITING,
            )
            .values(state=new_state, resolved_at=at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def cancel_all(self, operation_id: UUID, at: datetime) -> list[datetime]:
        """Cancel every waiting wait of an operation; returns their wake instants."""
        return await self.resolve_all(operation_id, WaitState.CANCELLED, at)

    async def resolve_all(
        self,
        operation_id: UUID,
        new_state: WaitState,
        at: datetime,
    ) -> list[datetime]:
        """waiting -> new_state for every wait of an operation."""
        stmt = select(ScheduledWait.wake_at).where(
            ScheduledWait.operation_id == operation_id,
            ScheduledWait.state == WaitState.WAITING,
        )
        wake_times = list((await self._session.execute(stmt)).scalars().all())
        if wake_times:
            await self._session.execute(
                update(ScheduledWait)
                .where(
                    ScheduledWait.operation_id == operation_id,
                    ScheduledWait.state == WaitState.WAITING,
                )
                .values(state=new_state, resolved_at=at)
                .execution_options(synchronize_session=False)
            )
        return wake_times
