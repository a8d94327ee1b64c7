"""
Service layer for the do-not-call list.
"""

import re
from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from frontdesk.exclusions.models import ExclusionEntry, ExclusionSource
from frontdesk.exclusions.repository import ExclusionRepository
from frontdesk.operations.models import OperationKind
from frontdesk.retry.cancellation import CancellationChannel
from frontdesk.shared.clock import Clock, utcnow
from frontdesk.shared.exceptions import ValidationError
from frontdesk.shared.logging import get_logger

logger = get_logger(__name__)

E164_PATTERN = re.compile(r"^\+[1-9]\d{6,14}$")


def normalize_phone_number(phone: str | None, default_country_code: str = "1") -> str | None:
    """Normalize a phone number to E.164, or None if it cannot be.

    Ten bare digits are taken as a national number in `default_country_code`;
    eleven digits starting with that code get a leading "+".
    """
    if not phone:
        return None

    cleaned = re.sub(r"[\s\-\.\(\)]", "", phone.strip())

    if cleaned.startswith("00"):
        cleaned = "+" + cleaned[2:]
    elif cleaned.isdigit():
        if len(cleaned) == 10:
            cleaned = f"+{default_country_code}{cleaned}"
        elif len(cleaned) == 10 + len(default_country_code) and cleaned.startswith(default_country_code):
            cleaned = "+" + cleaned

    if E164_PATTERN.match(cleaned):
        return cleaned
    return None


class ExclusionService:
    """Do-not-call checks and maintenance for every owner."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cancellation: CancellationChannel | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._cancellation = cancellation
        self._clock = clock

    async def is_excluded(
        self,
        owner_id: UUID,
        phone_number: str,
        now: datetime | None = None,
    ) -> bool:
        """True if the owner has a non-expired entry for the number."""
        normalized = normalize_phone_number(phone_number) or phone_number
        async with self._session_factory() as session:
            return await ExclusionRepository(session).exists_active(
                owner_id, normalized, now or self._clock()
            )

    async def add(
        self,
        owner_id: UUID,
        phone_number: str,
        reason: str | None = None,
        source: ExclusionSource = ExclusionSource.API,
        expires_at: datetime | None = None,
    ) -> tuple[ExclusionEntry, int]:
        """Add (or refresh) an entry and cancel the owner's pending calls to it.

        Returns the entry and how many queued calls were cancelled.

        Raises:
            ValidationError: If the number is not a valid phone number.
        """
        normalized = normalize_phone_number(phone_number)
        if not normalized:
            raise ValidationError(f"Invalid phone number format: {phone_number}")

        async with self._session_factory.begin() as session:
            entry = await ExclusionRepository(session).upsert(
                owner_id, normalized, reason, source, expires_at
            )

        cancelled = 0
        if self._cancellation is not None:
            results = await self._cancellation.cancel_for_subject(
                normalized,
                owner_id=owner_id,
                kind=OperationKind.OUTBOUND_CALL.value,
            )
            cancelled = sum(1 for r in results if r.cancelled or r.cancel_requested)

        logger.info(
            "Exclusion entry saved",
            extra={
                "owner_id": str(owner_id),
                "phone_number": normalized,
                "source": source.value,
                "cancelled_calls": cancelled,
            },
        )
        return entry, cancelled

    async def remove(self, owner_id: UUID, phone_number: str) -> bool:
        normalized = normalize_phone_number(phone_number) or phone_number
        async with self._session_factory.begin() as session:
            deleted = await ExclusionRepository(session).delete(owner_id, normalized)
        if deleted:
            logger.info(
                "Exclusion entry removed",
                extra={"owner_id": str(owner_id), "phone_number": normalized},
            )
        return deleted

    async def list_for_owner(self, owner_id: UUID, limit: int = 100) -> Sequence[ExclusionEntry]:
        async with self._session_factory() as session:
            return await ExclusionRepository(session).list_for_owner(owner_id, limit)
