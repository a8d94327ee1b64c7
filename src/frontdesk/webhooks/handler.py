"""
Effect handler for webhook_replay operations.
"""

from typing import Any, Mapping, Protocol

import httpx

from frontdesk.retry.outcome import Outcome, PermanentFailure, Success
from frontdesk.shared.logging import get_logger

logger = get_logger(__name__)


class WebhookProcessor(Protocol):
    """Re-processes one webhook event; raising means the replay failed."""

    async def __call__(self, event_type: str, body: Mapping[str, Any]) -> None:
        ...


class HttpWebhookForwarder:
    """Replays a webhook by POSTing its body to an internal endpoint."""

    def __init__(self, url: str, http_client: httpx.AsyncClient) -> None:
        self._url = url
        self._http_client = http_client

    async def __call__(self, event_type: str, body: Mapping[str, Any]) -> None:
        response = await self._http_client.post(
            self._url,
            json=dict(body),
            headers={"X-Webhook-Replay": "1", "X-Webhook-Event-Type": event_type},
        )
        response.raise_for_status()


class WebhookReplayHandler:
    """Routes a replay to the processor registered for its source."""

    def __init__(self, processors: Mapping[str, WebhookProcessor]) -> None:
        self._processors = dict(processors)

    @property
    def sources(self) -> frozenset[str]:
        return frozenset(self._processors)

    async def __call__(self, payload: Mapping[str, Any]) -> Outcome:
        source = payload.get("source")
        processor = self._processors.get(source) if isinstance(source, str) else None
        if processor is None:
            return PermanentFailure(f"no processor for webhook source {source!r}")

        event_type = str(payload.get("event_type", ""))
        await processor(event_type, payload.get("body") or {})
        logger.info(
            "Webhook replayed",
            extra={"source": source, "event_type": event_type},
        )
        return Success({"source": source, "event_type": event_type})
