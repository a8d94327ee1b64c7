"""
Wiring: builds the engine components from settings.

Provider clients are explicit dependencies handed to the handler registry, so
tests can swap any of them without touching global state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Mapping
from uuid import UUID

import httpx

from frontdesk.calendar.client import OAuthTokenClient
from frontdesk.calendar.service import CalendarTokenService, TokenRefreshHandler
from frontdesk.config import Settings, get_settings
from frontdesk.exclusions.service import ExclusionService
from frontdesk.notifications.sink import (
    CompositeNotificationSink,
    HttpNotificationSink,
    LoggingNotificationSink,
    NotificationSink,
)
from frontdesk.operations.errors import InvalidTransitionError
from frontdesk.operations.models import OperationKind, OperationStatus
from frontdesk.operations.store import OperationStore
from frontdesk.owners.repository import OwnerDirectory, default_window
from frontdesk.retry.backoff import ExponentialBackoff, StepBackoff
from frontdesk.retry.cancellation import CancellationChannel
from frontdesk.retry.dispatcher import Dispatcher, HandlerRegistration, HandlerRegistry
from frontdesk.retry.eligibility import EligibilityEvaluator
from frontdesk.scheduling.housekeeping import Housekeeper
from frontdesk.scheduling.runner import OperationRunner, RunReport
from frontdesk.scheduling.sweep import SweepScheduler
from frontdesk.scheduling.wake import WakeScheduler
from frontdesk.shared.clock import Clock, utcnow
from frontdesk.shared.database import DatabaseManager
from frontdesk.shared.logging import get_logger
from frontdesk.telephony.client import CallPlacer, CallPlatformClient
from frontdesk.telephony.outbound import OutboundCallHandler, OutboundCallService
from frontdesk.webhooks.handler import HttpWebhookForwarder, WebhookProcessor, WebhookReplayHandler
from frontdesk.webhooks.service import FailedWebhookService

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Every long-lived component of the service."""

    settings: Settings
    db: DatabaseManager
    store: OperationStore
    registry: HandlerRegistry
    owners: OwnerDirectory
    evaluator: EligibilityEvaluator
    dispatcher: Dispatcher
    runner: OperationRunner
    sweeper: SweepScheduler
    waker: WakeScheduler
    cancellation: CancellationChannel
    exclusions: ExclusionService
    outbound: OutboundCallService
    failed_webhooks: FailedWebhookService
    calendar: CalendarTokenService
    housekeeper: Housekeeper
    clock: Clock = utcnow
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def dispatch_now(self, operation_id: UUID) -> RunReport:
        """Attempt a pending operation immediately, ignoring its due time.

        The eligibility gate and the claim still apply. Pending waits are
        resolved first so a rescheduled attempt returns to the sweep.

        Raises:
            InvalidTransitionError: If the operation is not pending.
        """
        operation = await self.store.get(operation_id)
        if operation.status != OperationStatus.PENDING:
            raise InvalidTransitionError(
                operation.id, OperationStatus(operation.status).value, "in_flight"
            )
        await self.store.fire_waits(operation_id)
        self.waker.disarm(operation_id)
        return await self.runner.run(operation, self.clock())

    async def close(self) -> None:
        self.waker.disarm_all()
        for closer in reversed(self.closers):
            try:
                await closer()
            except Exception:
                logger.exception("Error while closing runtime component")
        await self.db.close()


def build_backoffs(settings: Settings) -> tuple[ExponentialBackoff, StepBackoff]:
    exponential = ExponentialBackoff(
        base=timedelta(seconds=settings.retry_base_delay_seconds),
        max_attempts=settings.retry_max_attempts,
        max_delay=(
            timedelta(seconds=settings.retry_max_delay_seconds)
            if settings.retry_max_delay_seconds
            else None
        ),
    )
    webhook = StepBackoff.from_seconds(
        settings.webhook_retry_delays_seconds,
        settings.webhook_max_attempts,
    )
    return exponential, webhook


def build_notifier(settings: Settings, http_client: httpx.AsyncClient) -> NotificationSink:
    sinks: list[NotificationSink] = [LoggingNotificationSink()]
    if settings.alert_webhook_url:
        sinks.append(
            HttpNotificationSink(
                settings.alert_webhook_url,
                http_client=http_client,
                timeout_seconds=settings.alert_timeout_seconds,
            )
        )
    return CompositeNotificationSink(sinks)


def build_runtime(
    settings: Settings | None = None,
    *,
    db: DatabaseManager | None = None,
    http_client: httpx.AsyncClient | None = None,
    call_placer: CallPlacer | None = None,
    oauth_client: OAuthTokenClient | None = None,
    webhook_processors: Mapping[str, WebhookProcessor] | None = None,
    notifier: NotificationSink | None = None,
    clock: Clock = utcnow,
    arm_timers: bool = True,
) -> Runtime:
    """Assemble the engine. Anything not passed in is built from settings."""
    settings = settings or get_settings()
    db = db or DatabaseManager(settings.database_url)
    closers: list[Callable[[], Awaitable[None]]] = []

    if http_client is None:
        http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.effect_timeout_seconds))
        closers.append(http_client.aclose)

    session_factory = db.session_factory
    store = OperationStore(session_factory, clock=clock)
    registry = HandlerRegistry()
    owners = OwnerDirectory(session_factory)
    evaluator = EligibilityEvaluator(owners, owners, default_window(settings))
    dispatcher = Dispatcher(
        store,
        registry,
        evaluator=evaluator,
        notifier=notifier or build_notifier(settings, http_client),
        default_timeout=settings.effect_timeout_seconds,
        alert_timeout=settings.alert_timeout_seconds,
        clock=clock,
    )
    runner = OperationRunner(store, dispatcher, registry, evaluator)
    sweeper = SweepScheduler(store, runner, registry, settings.sweep_batch_size, clock)
    waker = WakeScheduler(store, runner, clock, arm_timers=arm_timers)
    cancellation = CancellationChannel(store, waker)
    exclusions = ExclusionService(session_factory, cancellation, clock)
    calendar = CalendarTokenService(session_factory, store, clock)
    exponential, webhook_backoff = build_backoffs(settings)

    placer = call_placer or CallPlatformClient(http_client=http_client)
    oauth = oauth_client or OAuthTokenClient(http_client=http_client)
    if webhook_processors is None:
        webhook_processors = {
            source: HttpWebhookForwarder(url, http_client)
            for source, url in settings.webhook_replay_targets.items()
        }
    replay_handler = WebhookReplayHandler(webhook_processors)
    refresh_horizon = timedelta(minutes=settings.token_refresh_horizon_minutes)

    async def discover_expiring_tokens(now: datetime) -> int:
        return await calendar.enqueue_expiring_token_refreshes(now, refresh_horizon)

    registry.register(
        HandlerRegistration(
            kind=OperationKind.OUTBOUND_CALL.value,
            handler=OutboundCallHandler(placer, exclusions),
            backoff=exponential,
            gated=True,
            consumes_quota=True,
            sweep_interval=settings.outbound_call_sweep_seconds,
        )
    )
    registry.register(
        HandlerRegistration(
            kind=OperationKind.WEBHOOK_REPLAY.value,
            handler=replay_handler,
            backoff=webhook_backoff,
            sweep_interval=settings.webhook_replay_sweep_seconds,
        )
    )
    registry.register(
        HandlerRegistration(
            kind=OperationKind.TOKEN_REFRESH.value,
            handler=TokenRefreshHandler(calendar, oauth),
            backoff=exponential,
            sweep_interval=settings.token_refresh_sweep_seconds,
            on_terminal=calendar.on_refresh_exhausted,
            discover=discover_expiring_tokens,
        )
    )

    return Runtime(
        settings=settings,
        db=db,
        store=store,
        registry=registry,
        owners=owners,
        evaluator=evaluator,
        dispatcher=dispatcher,
        runner=runner,
        sweeper=sweeper,
        waker=waker,
        cancellation=cancellation,
        exclusions=exclusions,
        outbound=OutboundCallService(store, exclusions),
        failed_webhooks=FailedWebhookService(
            store,
            webhook_backoff,
            known_sources=replay_handler.sources or None,
            clock=clock,
        ),
        calendar=calendar,
        housekeeper=Housekeeper(
            store,
            dispatcher,
            registry,
            retention=timedelta(days=settings.retention_days),
            webhook_retention=timedelta(days=settings.webhook_retention_days),
            in_flight_lease=timedelta(seconds=settings.in_flight_lease_seconds),
            clock=clock,
        ),
        clock=clock,
        closers=closers,
    )
