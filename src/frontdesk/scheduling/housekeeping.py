"""
Daily housekeeping: retention purge and recovery of abandoned in-flight work.
"""

from dataclasses import asdict, dataclass
from datetime import timedelta

from frontdesk.operations.errors import OperationStoreError
from frontdesk.operations.models import OperationKind
from frontdesk.operations.store import OperationStore
from frontdesk.owners.repository import QuotaRepository
from frontdesk.retry.dispatcher import Dispatcher, HandlerRegistry
from frontdesk.retry.outcome import TransientFailure
from frontdesk.shared.clock import Clock, utcnow
from frontdesk.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass
class HousekeepingReport:
    purged_operations: int = 0
    purged_webhook_replays: int = 0
    purged_quota_rows: int = 0
    recovered_in_flight: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class Housekeeper:
    """Purges old terminal rows and releases in-flight work nobody will finish."""

    def __init__(
        self,
        store: OperationStore,
        dispatcher: Dispatcher,
        registry: HandlerRegistry,
        *,
        retention: timedelta = timedelta(days=30),
        webhook_retention: timedelta = timedelta(days=7),
        in_flight_lease: timedelta = timedelta(minutes=15),
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._registry = registry
        self._retention = retention
        self._webhook_retention = webhook_retention
        self._in_flight_lease = in_flight_lease
        self._clock = clock

    async def run(self) -> HousekeepingReport:
        now = self._clock()
        report = HousekeepingReport()

        webhook_kind = OperationKind.WEBHOOK_REPLAY.value
        report.purged_webhook_replays = await self._store.purge_terminal(
            now - self._webhook_retention, kind=webhook_kind
        )
        report.purged_operations = await self._store.purge_terminal(
            now - self._retention, exclude_kinds=(webhook_kind,)
        )

        async with self._store.session_factory.begin() as session:
            report.purged_quota_rows = await QuotaRepository(session).purge_before(
                (now - self._retention).date()
            )

        report.recovered_in_flight = await self.recover_stale_in_flight()

        logger.info("Housekeeping completed", extra=report.to_dict())
        return report

    async def recover_stale_in_flight(self) -> int:
        """Release operations whose worker died mid-attempt as a transient failure."""
        recovered = 0
        for operation_id in await self._store.stale_in_flight(self._in_flight_lease):
            try:
                operation = await self._store.get(operation_id)
                registration = self._registry.get(operation.kind)
                if registration is None:
                    await self._store.park(operation_id, "in-flight lease expired; no handler registered")
                else:
                    await self._dispatcher.finish(
                        operation, TransientFailure("in-flight lease expired"), registration
                    )
            except OperationStoreError:
                # Released or deleted concurrently.
                logger.info("Stale operation already moved on", extra={"operation_id": str(operation_id)})
                continue
            recovered += 1
            logger.warning("Recovered stale in-flight operation", extra={"operation_id": str(operation_id)})
        return recovered
