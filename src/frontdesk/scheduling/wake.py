"""
One-shot wake path: park an operation until an instant, then run it.

A wait is persisted first and armed as an asyncio timer second, so a restart
loses nothing: `restore()` re-arms every waiting row. Firing is a
compare-and-swap on the wait row followed by a re-check that the operation is
still pending; whichever of cancel and fire records its transition first wins.
"""

import asyncio
from datetime import datetime
from uuid import UUID

from frontdesk.operations.models import OperationStatus, ScheduledWait, WaitState
from frontdesk.operations.store import OperationStore
from frontdesk.scheduling.runner import OperationRunner, RunReport
from frontdesk.shared.clock import Clock, utcnow
from frontdesk.shared.logging import bind_correlation_id, get_logger

logger = get_logger(__name__)

TimerKey = tuple[UUID, datetime]


class WakeScheduler:
    """Persists scheduled waits and fires them when due."""

    def __init__(
        self,
        store: OperationStore,
        runner: OperationRunner,
        clock: Clock = utcnow,
        arm_timers: bool = True,
    ) -> None:
        self._store = store
        self._runner = runner
        self._clock = clock
        self._arm_timers = arm_timers
        self._timers: dict[TimerKey, asyncio.Task[None]] = {}

    @property
    def armed(self) -> list[TimerKey]:
        return [key for key, task in self._timers.items() if not task.done()]

    async def schedule_wait(self, operation_id: UUID, wake_at: datetime) -> ScheduledWait:
        """Persist a wait for a pending operation and arm its timer."""
        wait = await self._store.add_wait(operation_id, wake_at)
        self.arm(wait.operation_id, wait.wake_at)
        return wait

    def arm(self, operation_id: UUID, wake_at: datetime) -> None:
        if not self._arm_timers:
            return
        key = (operation_id, wake_at)
        existing = self._timers.get(key)
        if existing is not None and not existing.done():
            return
        self._timers[key] = asyncio.create_task(self._sleep_then_fire(operation_id, wake_at))

    def disarm(self, operation_id: UUID, wake_at: datetime | None = None) -> int:
        """Cancel armed timers of an operation (all of them if `wake_at` is None)."""
        keys = [
            key
            for key in self._timers
            if key[0] == operation_id and (wake_at is None or key[1] == wake_at)
        ]
        for key in keys:
            task = self._timers.pop(key)
            if not task.done() and task is not asyncio.current_task():
                task.cancel()
        return len(keys)

    def disarm_all(self) -> None:
        for task in self._timers.values():
            if not task.done():
                task.cancel()
        self._timers.clear()

    async def _sleep_then_fire(self, operation_id: UUID, wake_at: datetime) -> None:
        delay = (wake_at - self._clock()).total_seconds()
        if delay > 0:
            await asyncio.sleep(delay)
        try:
            await self.fire(operation_id, wake_at)
        except Exception:
            logger.exception(
                "Wake failed",
                extra={"operation_id": str(operation_id), "wake_at": wake_at.isoformat()},
            )
        finally:
            self._timers.pop((operation_id, wake_at), None)

    async def fire(self, operation_id: UUID, wake_at: datetime) -> RunReport | None:
        """Resolve a due wait and run its operation.

        Returns None when the wait was already fired or cancelled, or when the
        operation is no longer pending.
        """
        with bind_correlation_id(str(operation_id)):
            return await self._fire(operation_id, wake_at)

    async def _fire(self, operation_id: UUID, wake_at: datetime) -> RunReport | None:
        if not await self._store.resolve_wait(operation_id, wake_at, WaitState.FIRED):
            logger.info(
                "Wait already resolved",
                extra={"operation_id": str(operation_id), "wake_at": wake_at.isoformat()},
            )
            return None

        operation = await self._store.get(operation_id)
        if operation.status != OperationStatus.PENDING:
            logger.info(
                "Woken operation no longer pending",
                extra={
                    "operation_id": str(operation_id),
                    "status": OperationStatus(operation.status).value,
                },
            )
            return None

        report = await self._runner.run(operation, self._clock())
        logger.info(
            "Wait fired",
            extra={
                "operation_id": str(operation_id),
                "kind": operation.kind,
                "result": report.result.value,
            },
        )
        return report

    async def fire_due(self, now: datetime | None = None) -> int:
        """Fire every wait due at `now`; the entry point for an external cron."""
        now = now or self._clock()
        fired = 0
        for wait in await self._store.waiting(due_before=now):
            self.disarm(wait.operation_id, wait.wake_at)
            try:
                if await self.fire(wait.operation_id, wait.wake_at) is not None:
                    fired += 1
            except Exception:
                logger.exception(
                    "Wake failed",
                    extra={"operation_id": str(wait.operation_id), "wake_at": wait.wake_at.isoformat()},
                )
        return fired

    async def restore(self) -> int:
        """Re-arm timers for every persisted waiting row."""
        waits = await self._store.waiting()
        for wait in waits:
            self.arm(wait.operation_id, wait.wake_at)
        if waits:
            logger.info("Restored scheduled waits", extra={"count": len(waits)})
        return len(waits)
