"""
Operation store: the atomic contract every other component relies on.

Every public method owns its transaction. `claim` is the single coordination
point between concurrent workers; `release` is the only path that advances
`attempt_count` and recomputes `next_attempt_at`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from frontdesk.operations.errors import (
    AlreadyClaimedError,
    InvalidTransitionError,
    OperationNotFoundError,
)
from frontdesk.operations.models import (
    Operation,
    OperationStatus,
    ScheduledWait,
    WaitState,
)
from frontdesk.operations.repository import (
    CANCELLABLE_STATUSES,
    OperationRepository,
    ScheduledWaitRepository,
)
from frontdesk.owners.repository import QuotaRepository
from frontdesk.retry.backoff import BackoffPolicy, CappedBackoff, Terminal
from frontdesk.retry.outcome import (
    FailureClass,
    Outcome,
    PermanentFailure,
    PolicyBlocked,
    Success,
    describe,
)
from frontdesk.shared.clock import Clock, utcnow
from frontdesk.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReleaseResult:
    """What `release` did: `applied` is False for a no-op on a terminal operation."""

    operation: Operation
    applied: bool


@dataclass(frozen=True)
class CancelResult:
    """What `cancel` did to one operation."""

    operation: Operation
    cancelled: bool
    cancel_requested: bool = False
    wake_times: tuple[datetime, ...] = ()


def _log_extra(op: Operation, **more: Any) -> dict[str, Any]:
    extra: dict[str, Any] = {
        "operation_id": str(op.id),
        "kind": op.kind,
        "owner_id": str(op.owner_id) if op.owner_id else None,
        "status": OperationStatus(op.status).value,
        "attempt_count": op.attempt_count,
    }
    extra.update(more)
    return extra


class OperationStore:
    """Durable, transactional access to operations and their waits."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    async def upsert(self, operation: Operation) -> tuple[Operation, bool]:
        """Insert an operation unless one with the same id or idempotency key exists.

        Returns the stored operation and whether it was created. An existing
        operation is returned unchanged.
        """
        now = self._clock()
        async with self._session_factory.begin() as session:
            repo = OperationRepository(session)
            existing = await self._find_existing(repo, operation)
            if existing is not None:
                return existing, False

            operation.status = OperationStatus.PENDING
            operation.attempt_count = operation.attempt_count or 0
            if operation.next_attempt_at is None:
                operation.next_attempt_at = now
            operation.created_at = operation.created_at or now
            operation.updated_at = now
            if operation.payload is None:
                operation.payload = {}
            try:
                async with session.begin_nested():
                    await repo.add(operation)
            except IntegrityError:
                # Lost an insert race on the idempotency key.
                existing = await self._find_existing(repo, operation)
                if existing is None:
                    raise
                return existing, False

        logger.info(
            "Operation created",
            extra=_log_extra(operation, next_attempt_at=operation.next_attempt_at.isoformat()),
        )
        return operation, True

    async def _find_existing(
        self,
        repo: OperationRepository,
        operation: Operation,
    ) -> Operation | None:
        if operation.id is not None:
            found = await repo.get(operation.id)
            if found is not None:
                return found
        if operation.idempotency_key:
            return await repo.get_by_idempotency_key(operation.idempotency_key)
        return None

    async def enqueue(
        self,
        kind: str,
        payload: dict[str, Any],
        *,
        owner_id: UUID | None = None,
        subject: str | None = None,
        idempotency_key: str | None = None,
        max_attempts: int | None = None,
        run_at: datetime | None = None,
    ) -> tuple[Operation, bool]:
        """Convenience wrapper around `upsert` for a new pending operation."""
        return await self.upsert(
            Operation(
                kind=kind,
                payload=dict(payload),
                owner_id=owner_id,
                subject=subject,
                idempotency_key=idempotency_key,
                max_attempts=max_attempts,
                next_attempt_at=run_at,
                attempt_count=0,
                cancel_requested=False,
            )
        )

    async def get(self, operation_id: UUID) -> Operation:
        async with self._session_factory() as session:
            op = await OperationRepository(session).get(operation_id)
        if op is None:
            raise OperationNotFoundError(operation_id)
        return op

    async def find_due(
        self,
        now: datetime,
        limit: int,
        kind: str | None = None,
    ) -> list[Operation]:
        async with self._session_factory() as session:
            return list(await OperationRepository(session).find_due(now, limit, kind))

    async def list_operations(self, **filters: Any) -> list[Operation]:
        async with self._session_factory() as session:
            return list(await OperationRepository(session).list_operations(**filters))

    async def stats(self) -> dict[str, dict[str, int]]:
        """Operation counts grouped by kind, then status."""
        async with self._session_factory() as session:
            rows = await OperationRepository(session).count_by_kind_and_status()
        stats: dict[str, dict[str, int]] = {}
        for kind, status, count in rows:
            stats.setdefault(kind, {})[status.value] = count
        return stats

    # ------------------------------------------------------------------
    # Claim / release
    # ------------------------------------------------------------------

    async def claim(self, operation_id: UUID) -> Operation:
        """Compare-and-swap pending -> in_flight.

        Raises:
            AlreadyClaimedError: If the operation is not pending any more.
            OperationNotFoundError: If the id is unknown.
        """
        now = self._clock()
        async with self._session_factory.begin() as session:
            repo = OperationRepository(session)
            won = await repo.compare_and_set_status(
                operation_id,
                [OperationStatus.PENDING],
                status=OperationStatus.IN_FLIGHT,
                next_attempt_at=None,
                claimed_at=now,
                updated_at=now,
            )
            op = await repo.get(operation_id)

        if op is None:
            raise OperationNotFoundError(operation_id)
        if not won:
            raise AlreadyClaimedError(operation_id, OperationStatus(op.status).value)
        logger.debug("Operation claimed", extra=_log_extra(op))
        return op

    async def release(
        self,
        operation_id: UUID,
        outcome: Outcome,
        *,
        backoff: BackoffPolicy,
        quota_date: date | None = None,
    ) -> ReleaseResult:
        """Record the outcome of an in-flight attempt.

        Success, permanent and transient outcomes count an attempt; a policy
        block does not. When `quota_date` is given a success also increments
        the owner's counter for that local day, in the same transaction.

        Releasing a terminal operation is a no-op that returns it unchanged.

        Raises:
            InvalidTransitionError: If the operation is neither in flight nor terminal.
            OperationNotFoundError: If the id is unknown.
        """
        now = self._clock()
        async with self._session_factory.begin() as session:
            repo = OperationRepository(session)
            op = await repo.get(operation_id, for_update=True)
            if op is None:
                raise OperationNotFoundError(operation_id)
            if op.is_terminal:
                logger.warning(
                    "Ignoring release of terminal operation",
                    extra=_log_extra(op, outcome=describe(outcome)),
                )
                return ReleaseResult(op, applied=False)
            if op.status != OperationStatus.IN_FLIGHT:
                raise InvalidTransitionError(op.id, OperationStatus(op.status).value, "release")

            self._apply_outcome(op, outcome, backoff, now)

            if (
                isinstance(outcome, Success)
                and quota_date is not None
                and op.owner_id is not None
            ):
                used = await QuotaRepository(session).increment(op.owner_id, quota_date)
                logger.debug(
                    "Quota incremented",
                    extra=_log_extra(op, quota_date=quota_date.isoformat(), used=used),
                )

        logger.info(
            "Operation released",
            extra=_log_extra(
                op,
                outcome=describe(outcome),
                next_attempt_at=op.next_attempt_at.isoformat() if op.next_attempt_at else None,
            ),
        )
        return ReleaseResult(op, applied=True)

    def _apply_outcome(
        self,
        op: Operation,
        outcome: Outcome,
        backoff: BackoffPolicy,
        now: datetime,
    ) -> None:
        op.claimed_at = None
        op.updated_at = now
        op.next_attempt_at = None

        if isinstance(outcome, Success):
            op.attempt_count += 1
            op.status = OperationStatus.COMPLETED
            op.result = dict(outcome.details)
            op.last_error = None
            return

        if isinstance(outcome, PolicyBlocked):
            op.status = OperationStatus.BLOCKED
            op.last_error = outcome.reason
            return

        op.attempt_count += 1
        if isinstance(outcome, PermanentFailure):
            op.status = OperationStatus.FAILED_TERMINAL
            op.last_error = outcome.reason
            return

        policy: BackoffPolicy = backoff
        if op.max_attempts is not None:
            policy = CappedBackoff(backoff, op.max_attempts)
        delay = policy.next_delay(op.attempt_count, FailureClass.TRANSIENT)

        if isinstance(delay, Terminal):
            op.status = OperationStatus.FAILED_TERMINAL
            op.last_error = f"{outcome.reason} ({delay.reason})"
        elif op.cancel_requested:
            op.status = OperationStatus.CANCELLED
            op.last_error = outcome.reason
        else:
            op.status = OperationStatus.PENDING
            op.last_error = outcome.reason
            op.next_attempt_at = now + delay

    async def reschedule(self, operation_id: UUID, retry_after: datetime) -> bool:
        """Move a pending operation's due time without counting an attempt."""
        async with self._session_factory.begin() as session:
            moved = await OperationRepository(session).compare_and_set_status(
                operation_id,
                [OperationStatus.PENDING],
                next_attempt_at=retry_after,
                updated_at=self._clock(),
            )
        if moved:
            logger.info(
                "Operation rescheduled",
                extra={"operation_id": str(operation_id), "retry_after": retry_after.isoformat()},
            )
        return moved

    async def park(self, operation_id: UUID, reason: str) -> bool:
        """in_flight -> failed_retryable, for work nobody can handle yet."""
        async with self._session_factory.begin() as session:
            parked = await OperationRepository(session).compare_and_set_status(
                operation_id,
                [OperationStatus.IN_FLIGHT],
                status=OperationStatus.FAILED_RETRYABLE,
                claimed_at=None,
                last_error=reason,
                updated_at=self._clock(),
            )
        if parked:
            logger.warning(
                "Operation parked",
                extra={"operation_id": str(operation_id), "reason": reason},
            )
        return parked

    async def requeue(self, operation_id: UUID, run_at: datetime | None = None) -> Operation:
        """failed_retryable -> pending, due at `run_at` (default now)."""
        now = self._clock()
        async with self._session_factory.begin() as session:
            repo = OperationRepository(session)
            moved = await repo.compare_and_set_status(
                operation_id,
                [OperationStatus.FAILED_RETRYABLE],
                status=OperationStatus.PENDING,
                next_attempt_at=run_at or now,
                updated_at=now,
            )
            op = await repo.get(operation_id)
        if op is None:
            raise OperationNotFoundError(operation_id)
        if not moved:
            raise InvalidTransitionError(op.id, OperationStatus(op.status).value, "pending")
        logger.info("Operation requeued", extra=_log_extra(op))
        return op

    async def stale_in_flight(self, lease: timedelta) -> list[UUID]:
        """Ids of operations claimed longer than `lease` ago."""
        async with self._session_factory() as session:
            return await OperationRepository(session).stale_in_flight_ids(self._clock() - lease)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel(self, operation_id: UUID) -> CancelResult:
        """Cancel an operation if it has not started.

        pending / failed_retryable -> cancelled, with its waits; in_flight ->
        cancel_requested; terminal -> nothing. Each branch is a single
        conditional UPDATE so a concurrent claim cannot be overwritten.
        """
        now = self._clock()
        wake_times: list[datetime] = []
        async with self._session_factory.begin() as session:
            repo = OperationRepository(session)
            cancelled = await repo.compare_and_set_status(
                operation_id,
                CANCELLABLE_STATUSES,
                status=OperationStatus.CANCELLED,
                next_attempt_at=None,
                last_error="cancelled",
                updated_at=now,
            )
            flagged = False
            if cancelled:
                wake_times = await ScheduledWaitRepository(session).cancel_all(operation_id, now)
            else:
                flagged = await repo.compare_and_set_status(
                    operation_id,
                    [OperationStatus.IN_FLIGHT],
                    cancel_requested=True,
                    updated_at=now,
                )
            op = await repo.get(operation_id)

        if op is None:
            raise OperationNotFoundError(operation_id)
        if cancelled:
            logger.info("Operation cancelled", extra=_log_extra(op))
        elif flagged:
            logger.info("Cancellation requested for in-flight operation", extra=_log_extra(op))
        return CancelResult(
            operation=op,
            cancelled=cancelled,
            cancel_requested=flagged,
            wake_times=tuple(wake_times),
        )

    async def cancellable_ids(
        self,
        *,
        owner_id: UUID | None = None,
        subject: str | None = None,
        kind: str | None = None,
    ) -> list[UUID]:
        async with self._session_factory() as session:
            return await OperationRepository(session).non_terminal_ids(
                owner_id=owner_id, subject=subject, kind=kind
            )

    # ------------------------------------------------------------------
    # Scheduled waits
    # ------------------------------------------------------------------

    async def add_wait(self, operation_id: UUID, wake_at: datetime) -> ScheduledWait:
        """Park a pending operation until `wake_at`.

        Idempotent on (operation_id, wake_at). Any other active wait of the
        operation is superseded.

        Raises:
            InvalidTransitionError: If the operation is not pending.
        """
        now = self._clock()
        async with self._session_factory.begin() as session:
            repo = OperationRepository(session)
            waits = ScheduledWaitRepository(session)
            op = await repo.get(operation_id, for_update=True)
            if op is None:
                raise OperationNotFoundError(operation_id)

            existing = await waits.get(operation_id, wake_at)
            if existing is not None and existing.state == WaitState.WAITING:
                return existing
            if op.status != OperationStatus.PENDING:
                raise InvalidTransitionError(op.id, OperationStatus(op.status).value, "waiting")
            if existing is not None:
                raise InvalidTransitionError(op.id, f"wait {WaitState(existing.state).value}", "waiting")

            await waits.cancel_all(operation_id, now)
            wait = await waits.add(operation_id, wake_at)
            op.next_attempt_at = wake_at
            op.updated_at = now

        logger.info("Wait scheduled", extra=_log_extra(op, wake_at=wake_at.isoformat()))
        return wait

    async def resolve_wait(
        self,
        operation_id: UUID,
        wake_at: datetime,
        new_state: WaitState = WaitState.FIRED,
    ) -> bool:
        """waiting -> fired/cancelled; exactly one caller wins."""
        async with self._session_factory.begin() as session:
            return await ScheduledWaitRepository(session).transition(
                operation_id, wake_at, new_state, self._clock()
            )

    async def fire_waits(self, operation_id: UUID) -> list[datetime]:
        """Mark every waiting wait of an operation fired; returns their wake instants.

        Used when the operation runs ahead of its wake time, so the sweep
        picks it up again if that run is rescheduled.
        """
        async with self._session_factory.begin() as session:
            wake_times = await ScheduledWaitRepository(session).resolve_all(
                operation_id, WaitState.FIRED, self._clock()
            )
        if wake_times:
            logger.info(
                "Waits resolved ahead of wake time",
                extra={"operation_id": str(operation_id), "count": len(wake_times)},
            )
        return wake_times

    async def waiting(self, due_before: datetime | None = None) -> list[ScheduledWait]:
        async with self._session_factory() as session:
            return list(await ScheduledWaitRepository(session).waiting(due_before))

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def purge_terminal(
        self,
        older_than: datetime,
        *,
        kind: str | None = None,
        exclude_kinds: tuple[str, ...] = (),
    ) -> int:
        async with self._session_factory.begin() as session:
            deleted = await OperationRepository(session).delete_terminal(
                older_than, kind=kind, exclude_kinds=exclude_kinds
            )
        if deleted:
            logger.info(
                "Purged terminal operations",
                extra={"deleted": deleted, "kind": kind, "older_than": older_than.isoformat()},
            )
        return deleted
