"""
Recording failed incoming webhooks for replay.
"""

from datetime import timedelta
from typing import Any, Mapping
from uuid import UUID

from frontdesk.operations.models import Operation, OperationKind
from frontdesk.operations.store import OperationStore
from frontdesk.retry.backoff import StepBackoff
from frontdesk.shared.clock import Clock, utcnow
from frontdesk.shared.exceptions import ValidationError
from frontdesk.shared.logging import get_logger

logger = get_logger(__name__)


class FailedWebhookService:
    """Turns a failed webhook delivery into a webhook_replay operation."""

    def __init__(
        self,
        store: OperationStore,
        backoff: StepBackoff,
        known_sources: frozenset[str] | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._backoff = backoff
        self._known_sources = known_sources
        self._clock = clock

    async def record_failed_webhook(
        self,
        source: str,
        event_type: str,
        payload: Mapping[str, Any],
        error: BaseException | str,
        *,
        event_id: str | None = None,
        owner_id: UUID | None = None,
    ) -> tuple[Operation, bool]:
        """Store a failed webhook, due after the first replay delay.

        `event_id` is the sender's delivery id when it has one; the same
        delivery recorded twice yields one operation.

        Raises:
            ValidationError: If `source` has no replay processor.
        """
        if self._known_sources is not None and source not in self._known_sources:
            raise ValidationError(f"Unknown webhook source: {source}")

        error_message = str(error) or type(error).__name__
        first_delay: timedelta = self._backoff.first_delay()
        operation, created = await self._store.enqueue(
            OperationKind.WEBHOOK_REPLAY.value,
            {
                "source": source,
                "event_type": event_type,
                "body": dict(payload),
                "first_error": error_message,
            },
            owner_id=owner_id,
            subject=f"{source}:{event_type}",
            idempotency_key=f"webhook:{source}:{event_id}" if event_id else None,
            run_at=self._clock() + first_delay,
        )
        if created:
            logger.warning(
                "Stored failed webhook for replay",
                extra={
                    "operation_id": str(operation.id),
                    "source": source,
                    "event_type": event_type,
                    "error": error_message,
                    "next_attempt_at": operation.next_attempt_at.isoformat(),
                },
            )
        return operation, created
