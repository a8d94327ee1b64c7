"""
Notification sinks.

A sink receives one alert per operation that reaches failed_terminal or
blocked. Delivery is fire-and-forget from the dispatcher's point of view: a
sink error is logged and never changes the operation.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Protocol, Sequence
from uuid import UUID

import httpx

from frontdesk.operations.models import Operation, OperationStatus
from frontdesk.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TerminalAlert:
    """Alert payload for an operation that stopped for good."""

    operation_id: UUID
    kind: str
    status: str
    owner_id: UUID | None
    subject: str | None
    attempt_count: int
    last_error: str | None
    occurred_at: datetime

    @classmethod
    def from_operation(cls, operation: Operation, occurred_at: datetime) -> "TerminalAlert":
        return cls(
            operation_id=operation.id,
            kind=operation.kind,
            status=OperationStatus(operation.status).value,
            owner_id=operation.owner_id,
            subject=operation.subject,
            attempt_count=operation.attempt_count,
            last_error=operation.last_error,
            occurred_at=occurred_at,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["operation_id"] = str(self.operation_id)
        data["owner_id"] = str(self.owner_id) if self.owner_id else None
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


class NotificationSink(Protocol):
    """Receives terminal alerts."""

    async def notify(self, alert: TerminalAlert) -> None:
        ...


class LoggingNotificationSink:
    """Writes alerts to the structured log."""

    async def notify(self, alert: TerminalAlert) -> None:
        logger.warning("Operation alert", extra={"alert": alert.to_dict()})


class HttpNotificationSink:
    """POSTs alerts as JSON to an alerting webhook."""

    def __init__(
        self,
        url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._url = url
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout_seconds = timeout_seconds

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout_seconds))
        return self._http_client

    async def notify(self, alert: TerminalAlert) -> None:
        response = await self._get_client().post(self._url, json=alert.to_dict())
        response.raise_for_status()

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


class CompositeNotificationSink:
    """Fans an alert out to several sinks; one failing sink does not stop the others."""

    def __init__(self, sinks: Sequence[NotificationSink]) -> None:
        self._sinks = list(sinks)

    async def notify(self, alert: TerminalAlert) -> None:
        for sink in self._sinks:
            try:
                await sink.notify(alert)
            except Exception:
                logger.exception(
                    "Notification sink failed",
                    extra={"sink": type(sink).__name__, "operation_id": str(alert.operation_id)},
                )
