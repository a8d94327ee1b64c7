"""
Outbound call queue: enqueue calls and place them when the sweep gets to them.
"""

from datetime import datetime
from typing import Any, Mapping
from uuid import UUID

from frontdesk.exclusions.service import ExclusionService, normalize_phone_number
from frontdesk.operations.models import Operation, OperationKind
from frontdesk.operations.store import OperationStore
from frontdesk.retry.outcome import Outcome, PermanentFailure, PolicyBlocked, Success
from frontdesk.shared.exceptions import ValidationError
from frontdesk.shared.logging import get_logger
from frontdesk.telephony.client import CallPlacer, CallRequest

logger = get_logger(__name__)


class OutboundCallService:
    """Validates and queues outbound calls."""

    def __init__(self, store: OperationStore, exclusions: ExclusionService) -> None:
        self._store = store
        self._exclusions = exclusions

    async def enqueue_call(
        self,
        owner_id: UUID,
        to_number: str,
        purpose: str,
        *,
        context: Mapping[str, Any] | None = None,
        assistant_id: str | None = None,
        idempotency_key: str | None = None,
        run_at: datetime | None = None,
        max_attempts: int | None = None,
    ) -> tuple[Operation, bool]:
        """Queue a call; returns the operation and whether it is new.

        Raises:
            ValidationError: If the number is invalid or on the owner's do-not-call list.
        """
        normalized = normalize_phone_number(to_number)
        if not normalized:
            raise ValidationError(f"Invalid phone number format: {to_number}")
        if await self._exclusions.is_excluded(owner_id, normalized):
            raise ValidationError(f"{normalized} is on the do-not-call list")

        payload: dict[str, Any] = {
            "owner_id": str(owner_id),
            "to_number": normalized,
            "purpose": purpose,
            "context": dict(context or {}),
        }
        if assistant_id:
            payload["assistant_id"] = assistant_id

        return await self._store.enqueue(
            OperationKind.OUTBOUND_CALL.value,
            payload,
            owner_id=owner_id,
            subject=normalized,
            idempotency_key=idempotency_key,
            max_attempts=max_attempts,
            run_at=run_at,
        )


class OutboundCallHandler:
    """Effect handler for outbound_call operations."""

    def __init__(self, placer: CallPlacer, exclusions: ExclusionService) -> None:
        self._placer = placer
        self._exclusions = exclusions

    async def __call__(self, payload: Mapping[str, Any]) -> Outcome:
        number = normalize_phone_number(payload.get("to_number"))
        if not number:
            return PermanentFailure(f"invalid phone number: {payload.get('to_number')!r}")
        try:
            owner_id = UUID(str(payload["owner_id"]))
        except (KeyError, ValueError):
            return PermanentFailure("payload has no valid owner_id")

        # The list may have changed since the call was queued.
        if await self._exclusions.is_excluded(owner_id, number):
            return PolicyBlocked("number is on the do-not-call list")

        response = await self._placer.place_call(
            CallRequest(
                to=number,
                owner_id=owner_id,
                purpose=str(payload.get("purpose", "")),
                assistant_id=payload.get("assistant_id"),
                metadata=dict(payload.get("context") or {}),
            )
        )
        return Success(
            {"provider_call_id": response.provider_call_id, "status": response.status}
        )
