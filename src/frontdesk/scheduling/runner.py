"""
Gate, claim and dispatch one operation.

Shared by the sweep, the wake path and manual dispatch so all three apply the
same eligibility rules.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from frontdesk.operations.errors import AlreadyClaimedError
from frontdesk.operations.models import Operation
from frontdesk.operations.store import OperationStore
from frontdesk.retry.dispatcher import Dispatcher, HandlerRegistry
from frontdesk.retry.eligibility import EligibilityEvaluator
from frontdesk.shared.logging import bind_correlation_id, get_logger

logger = get_logger(__name__)


class RunResult(str, Enum):
    """What happened to an operation handed to the runner."""

    DISPATCHED = "dispatched"
    RESCHEDULED = "rescheduled"
    BLOCKED = "blocked"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RunReport:
    result: RunResult
    operation: Operation


class OperationRunner:
    """Runs one pending operation through the eligibility gate and the dispatcher."""

    def __init__(
        self,
        store: OperationStore,
        dispatcher: Dispatcher,
        registry: HandlerRegistry,
        evaluator: EligibilityEvaluator | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._registry = registry
        self._evaluator = evaluator

    async def run(self, operation: Operation, now: datetime) -> RunReport:
        with bind_correlation_id(str(operation.id)):
            return await self._run(operation, now)

    async def _run(self, operation: Operation, now: datetime) -> RunReport:
        registration = self._registry.get(operation.kind)
        gated = (
            registration is not None
            and registration.gated
            and operation.owner_id is not None
            and self._evaluator is not None
        )

        if gated:
            decision = await self._evaluator.is_eligible(operation.owner_id, now)
            if not decision.allowed and not decision.blocked:
                # Ineligible is not a failure: attempt_count stays untouched.
                await self._store.reschedule(operation.id, decision.retry_after)
                return RunReport(RunResult.RESCHEDULED, operation)
            if decision.blocked:
                try:
                    claimed = await self._store.claim(operation.id)
                except AlreadyClaimedError:
                    return RunReport(RunResult.SKIPPED, operation)
                released = await self._dispatcher.block(claimed, decision.reason.value)
                return RunReport(RunResult.BLOCKED, released)

        try:
            claimed = await self._store.claim(operation.id)
        except AlreadyClaimedError as exc:
            logger.debug(
                "Claim lost",
                extra={"operation_id": str(operation.id), "status": exc.status},
            )
            return RunReport(RunResult.SKIPPED, operation)

        released = await self._dispatcher.dispatch(claimed)
        return RunReport(RunResult.DISPATCHED, released)
