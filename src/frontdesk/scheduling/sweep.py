"""
Periodic sweep: find due operations and run them.
"""

import asyncio
from collections import Counter
from dataclasses import dataclass, field

from frontdesk.operations.store import OperationStore
from frontdesk.retry.dispatcher import HandlerRegistry
from frontdesk.scheduling.runner import OperationRunner, RunResult
from frontdesk.shared.clock import Clock, utcnow
from frontdesk.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SweepReport:
    """Counts of what one sweep did."""

    kind: str | None
    found: int = 0
    discovered: int = 0
    errors: int = 0
    results: Counter = field(default_factory=Counter)

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind,
            "found": self.found,
            "discovered": self.discovered,
            "errors": self.errors,
            "results": {result.value: count for result, count in self.results.items()},
        }


class SweepScheduler:
    """Feeds due operations to the runner, one kind or all kinds at a time."""

    def __init__(
        self,
        store: OperationStore,
        runner: OperationRunner,
        registry: HandlerRegistry,
        batch_size: int = 50,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._runner = runner
        self._registry = registry
        self._batch_size = batch_size
        self._clock = clock

    async def sweep(self, kind: str | None = None) -> SweepReport:
        """Run one pass over due operations (of `kind`, or every kind)."""
        report = SweepReport(kind=kind)
        now = self._clock()

        registrations = [self._registry.get(kind)] if kind else list(self._registry)
        for registration in registrations:
            if registration is None or registration.discover is None:
                continue
            try:
                report.discovered += await registration.discover(now)
            except Exception:
                report.errors += 1
                logger.exception("Discovery failed", extra={"kind": registration.kind})

        due = await self._store.find_due(now, self._batch_size, kind)
        report.found = len(due)
        for operation in due:
            try:
                run = await self._runner.run(operation, now)
            except Exception:
                # One broken operation must not stall the rest of the batch.
                report.errors += 1
                logger.exception(
                    "Failed to run operation",
                    extra={"operation_id": str(operation.id), "kind": operation.kind},
                )
                continue
            report.results[run.result] += 1

        if report.found or report.discovered or report.errors:
            logger.info("Sweep completed", extra=report.to_dict())
        return report

    async def run_forever(self, kind: str | None, interval: float) -> None:
        """Sweep every `interval` seconds until cancelled."""
        logger.info("Sweep loop started", extra={"kind": kind, "interval_seconds": interval})
        while True:
            try:
                await self.sweep(kind)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Sweep failed", extra={"kind": kind})
            await asyncio.sleep(interval)


__all__ = ["RunResult", "SweepReport", "SweepScheduler"]
