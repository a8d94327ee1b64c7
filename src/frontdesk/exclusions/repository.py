"""
Repository for do-not-call entries.
"""

from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from frontdesk.exclusions.models import ExclusionEntry, ExclusionSource


class ExclusionRepository:
    """Repository for exclusion entries."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_phone(self, owner_id: UUID, phone_number: str) -> ExclusionEntry | None:
        stmt = select(ExclusionEntry).where(
            ExclusionEntry.owner_id == owner_id,
            ExclusionEntry.phone_number == phone_number,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def exists_active(self, owner_id: UUID, phone_number: str, now: datetime) -> bool:
        stmt = select(ExclusionEntry.id).where(
            ExclusionEntry.owner_id == owner_id,
            ExclusionEntry.phone_number == phone_number,
            or_(ExclusionEntry.expires_at.is_(None), ExclusionEntry.expires_at > now),
        )
        result = await self._session.execute(stmt)
        return result.first() is not None

    async def upsert(
        self,
        owner_id: UUID,
        phone_number: str,
        reason: str | None,
        source: ExclusionSource,
        expires_at: datetime | None,
    ) -> ExclusionEntry:
        """Create an entry, or refresh reason and expiry of an existing one."""
        entry = await self.get_by_phone(owner_id, phone_number)
        if entry is None:
            entry = ExclusionEntry(
                owner_id=owner_id,
                phone_number=phone_number,
                reason=reason,
                source=source,
                expires_at=expires_at,
            )
            self._session.add(entry)
        else:
            entry.reason = reason or entry.reason
            entry.source = source
            entry.expires_at = expires_at
        await self._session.flush()
        return entry

    async def delete(self, owner_id: UUID, phone_number: str) -> bool:
        stmt = delete(ExclusionEntry).where(
            ExclusionEntry.owner_id == owner_id,
            ExclusionEntry.phone_number == phone_number,
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def list_for_owner(self, owner_id: UUID, limit: int = 100) -> Sequence[ExclusionEntry]:
        stmt = (
            select(ExclusionEntry)
            .where(ExclusionEntry.owner_id == owner_id)
            .order_by(ExclusionEntry.created_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()
