"""
HTTP client for the AI call platform.

Only the call-creation endpoint is used. The request body carries the fields
the platform needs to route the call; anything else travels as metadata.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

import httpx

from frontdesk.retry.outcome import PermanentEffectError
from frontdesk.shared.clock import utcnow
from frontdesk.shared.logging import get_logger
from frontdesk.telephony.config import CallPlatformConfig, get_call_platform_config

logger = get_logger(__name__)


@dataclass(frozen=True)
class CallRequest:
    """Request to place one outbound call."""

    to: str
    owner_id: UUID
    purpose: str
    assistant_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CallResponse:
    """Platform acknowledgement of a placed call."""

    provider_call_id: str
    status: str
    created_at: datetime
    raw_response: dict[str, Any] = field(default_factory=dict)


class CallPlacer(Protocol):
    async def place_call(self, request: CallRequest) -> CallResponse:
        ...


class CallPlatformClient:
    """Places calls through the platform's REST API.

    HTTP and transport errors propagate as httpx exceptions and are classified
    by the dispatcher; a 2xx body without a call id is a permanent error.
    """

    def __init__(
        self,
        config: CallPlatformConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or get_call_platform_config()
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.request_timeout_seconds)
            )
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._config.api_key}"}

    async def place_call(self, request: CallRequest) -> CallResponse:
        body = {
            "phoneNumberId": self._config.phone_number_id,
            "assistantId": request.assistant_id or self._config.assistant_id,
            "customer": {"number": request.to},
            "metadata": {
                **request.metadata,
                "owner_id": str(request.owner_id),
                "purpose": request.purpose,
            },
        }
        response = await self._get_client().post(
            self._config.get_url("/call"),
            json=body,
            headers=self._headers(),
        )
        response.raise_for_status()

        data = response.json()
        call_id = data.get("id")
        if not call_id:
            raise PermanentEffectError("call platform response has no call id")

        logger.info(
            "Outbound call placed",
            extra={
                "owner_id": str(request.owner_id),
                "provider_call_id": call_id,
                "purpose": request.purpose,
            },
        )
        return CallResponse(
            provider_call_id=str(call_id),
            status=str(data.get("status", "queued")),
            created_at=utcnow(),
            raw_response=data,
        )
