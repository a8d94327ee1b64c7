"""
Dispatcher: runs the effect handler of a claimed operation and records the outcome.

Handlers are injected per kind through a `HandlerRegistry`. A handler receives
the operation payload and either returns an `Outcome` or raises; nothing it
raises escapes `execute`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Iterator, Mapping, Protocol

import anyio

from frontdesk.operations.models import Operation, OperationStatus
from frontdesk.operations.store import OperationStore
from frontdesk.notifications.sink import NotificationSink, TerminalAlert
from frontdesk.retry.backoff import BackoffPolicy
from frontdesk.retry.eligibility import EligibilityEvaluator
from frontdesk.retry.outcome import (
    Outcome,
    PermanentFailure,
    PolicyBlocked,
    Success,
    TransientFailure,
    classify_exception,
    describe,
)
from frontdesk.shared.clock import Clock, utcnow
from frontdesk.shared.logging import get_logger

logger = get_logger(__name__)

_OUTCOME_TYPES = (Success, TransientFailure, PermanentFailure, PolicyBlocked)


class EffectHandler(Protocol):
    """Performs one external effect for a payload."""

    async def __call__(self, payload: Mapping[str, Any]) -> Outcome:
        ...


TerminalHook = Callable[[Operation], Awaitable[None]]
DiscoveryHook = Callable[[datetime], Awaitable[int]]


@dataclass(frozen=True)
class HandlerRegistration:
    """Everything the engine needs to know about one operation kind.

    Attributes:
        kind: Operation kind tag.
        handler: Effect handler.
        backoff: Retry policy for transient failures.
        gated: Check the owner's eligibility window before dispatch.
        consumes_quota: Count successes against the owner's daily quota.
        sweep_interval: Seconds between sweeps of this kind.
        timeout: Per-attempt timeout in seconds (dispatcher default if None).
        on_terminal: Called once the operation ends in failed_terminal.
        discover: Called before each sweep to enqueue newly due work.
    """

    kind: str
    handler: EffectHandler
    backoff: BackoffPolicy
    gated: bool = False
    consumes_quota: bool = False
    sweep_interval: float = 60.0
    timeout: float | None = None
    on_terminal: TerminalHook | None = None
    discover: DiscoveryHook | None = None


class HandlerRegistry:
    """Handler registrations keyed by operation kind."""

    def __init__(self) -> None:
        self._registrations: dict[str, HandlerRegistration] = {}

    def register(self, registration: HandlerRegistration) -> None:
        if registration.kind in self._registrations:
            raise ValueError(f"Handler already registered for kind {registration.kind!r}")
        self._registrations[registration.kind] = registration

    def get(self, kind: str) -> HandlerRegistration | None:
        return self._registrations.get(kind)

    def kinds(self) -> list[str]:
        return list(self._registrations)

    def __contains__(self, kind: object) -> bool:
        return kind in self._registrations

    def __iter__(self) -> Iterator[HandlerRegistration]:
        return iter(list(self._registrations.values()))

    def __len__(self) -> int:
        return len(self._registrations)


ALERT_STATUSES = frozenset({OperationStatus.FAILED_TERMINAL, OperationStatus.BLOCKED})


class Dispatcher:
    """Executes claimed operations and hands the outcome to the store."""

    def __init__(
        self,
        store: OperationStore,
        registry: HandlerRegistry,
        *,
        evaluator: EligibilityEvaluator | None = None,
        notifier: NotificationSink | None = None,
        default_timeout: float = 30.0,
        alert_timeout: float = 10.0,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._registry = registry
        self._evaluator = evaluator
        self._notifier = notifier
        self._default_timeout = default_timeout
        self._alert_timeout = alert_timeout
        self._clock = clock

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    async def execute(self, operation: Operation) -> Outcome:
        """Run the handler for `operation` and classify what happened. Never raises."""
        registration = self._registry.get(operation.kind)
        if registration is None:
            return PermanentFailure(f"no handler registered for kind {operation.kind!r}")

        timeout = registration.timeout or self._default_timeout
        try:
            with anyio.fail_after(timeout):
                outcome = await registration.handler(dict(operation.payload or {}))
        except Exception as exc:
            outcome = classify_exception(exc)
            logger.warning(
                "Effect handler raised",
                extra={
                    "operation_id": str(operation.id),
                    "kind": operation.kind,
                    "error_type": type(exc).__name__,
                    "outcome": describe(outcome),
                },
            )
            return outcome

        if not isinstance(outcome, _OUTCOME_TYPES):
            return PermanentFailure(f"handler returned {type(outcome).__name__}, not an outcome")
        return outcome

    async def dispatch(self, operation: Operation) -> Operation:
        """Execute a claimed operation and release it with the outcome.

        Operations of an unregistered kind are parked as failed_retryable
        instead, so they can be requeued once a handler exists.
        """
        registration = self._registry.get(operation.kind)
        if registration is None:
            await self._store.park(operation.id, f"no handler registered for kind {operation.kind!r}")
            return await self._store.get(operation.id)

        outcome = await self.execute(operation)
        return await self.finish(operation, outcome, registration)

    async def block(self, operation: Operation, reason: str) -> Operation:
        """Release a claimed operation as blocked without running its effect."""
        registration = self._registry.get(operation.kind)
        if registration is None:
            await self._store.park(operation.id, f"no handler registered for kind {operation.kind!r}")
            return await self._store.get(operation.id)
        return await self.finish(operation, PolicyBlocked(reason), registration)

    async def finish(
        self,
        operation: Operation,
        outcome: Outcome,
        registration: HandlerRegistration,
    ) -> Operation:
        quota_date = None
        if isinstance(outcome, Success) and registration.consumes_quota and operation.owner_id:
            quota_date = await self._quota_date(operation)

        result = await self._store.release(
            operation.id,
            outcome,
            backoff=registration.backoff,
            quota_date=quota_date,
        )
        released = result.operation
        if not result.applied:
            return released

        status = OperationStatus(released.status)
        if status in ALERT_STATUSES:
            await self._alert(released)
        if status is OperationStatus.FAILED_TERMINAL and registration.on_terminal is not None:
            try:
                await registration.on_terminal(released)
            except Exception:
                logger.exception(
                    "Terminal hook failed",
                    extra={"operation_id": str(released.id), "kind": released.kind},
                )
        return released

    async def _quota_date(self, operation: Operation) -> date:
        now = self._clock()
        if self._evaluator is not None and operation.owner_id is not None:
            window = await self._evaluator.window_for(operation.owner_id)
            if window is not None:
                return window.local_date(now)
        return now.date()

    async def _alert(self, operation: Operation) -> None:
        if self._notifier is None:
            return
        alert = TerminalAlert.from_operation(operation, self._clock())
        try:
            with anyio.fail_after(self._alert_timeout):
                await self._notifier.notify(alert)
        except Exception:
            logger.exception(
                "Failed to deliver alert",
                extra={"operation_id": str(operation.id), "kind": operation.kind},
            )
