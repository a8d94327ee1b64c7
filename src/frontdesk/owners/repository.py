"""
Repositories for owner settings and quota counters.
"""

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from frontdesk.config import Settings
from frontdesk.owners.models import OwnerSettings, QuotaCounter
from frontdesk.retry.eligibility import EligibilityWindow
from frontdesk.shared.logging import get_logger

logger = get_logger(__name__)


def window_from_owner_settings(row: OwnerSettings) -> EligibilityWindow:
    return EligibilityWindow(
        timezone=row.timezone,
        window_start=row.window_start,
        window_end=row.window_end,
        allowed_weekdays=frozenset(row.allowed_weekdays),
        daily_limit=row.daily_limit,
        enabled=row.outbound_enabled,
    )


def default_window(settings: Settings) -> EligibilityWindow:
    """Window applied to owners without stored settings."""
    return EligibilityWindow.build(
        timezone=settings.default_timezone,
        start=settings.default_window_start,
        end=settings.default_window_end,
        weekdays=settings.default_allowed_weekdays,
        daily_limit=settings.default_daily_limit,
    )


class OwnerSettingsRepository:
    """Repository for owner settings rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, owner_id: UUID) -> OwnerSettings | None:
        return await self._session.get(OwnerSettings, owner_id)

    async def upsert(self, owner_id: UUID, **fields: Any) -> OwnerSettings:
        """Create or update the settings of one owner."""
        row = await self.get(owner_id)
        if row is None:
            row = OwnerSettings(owner_id=owner_id, **fields)
            self._session.add(row)
        else:
            for name, value in fields.items():
                setattr(row, name, value)
        await self._session.flush()
        return row


class QuotaRepository:
    """Per-owner daily counter with an atomic conditional increment."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def used_on(self, owner_id: UUID, day: date) -> int:
        stmt = select(QuotaCounter.count).where(
            QuotaCounter.owner_id == owner_id,
            QuotaCounter.quota_date == day,
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one_or_none() or 0)

    async def increment(self, owner_id: UUID, day: date) -> int:
        """Add one to the counter and return the new value.

        Runs inside the caller's transaction. The increment is a single
        conditional UPDATE; the first use of a day inserts the row, and a lost
        insert race falls back to the UPDATE.
        """
        stmt = (
            update(QuotaCounter)
            .where(QuotaCounter.owner_id == owner_id, QuotaCounter.quota_date == day)
            .values(count=QuotaCounter.count + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            try:
                async with self._session.begin_nested():
                    self._session.add(QuotaCounter(owner_id=owner_id, quota_date=day, count=1))
                return 1
            except IntegrityError:
                await self._session.execute(stmt)
        return await self.used_on(owner_id, day)

    async def purge_before(self, day: date) -> int:
        stmt = delete(QuotaCounter).where(QuotaCounter.quota_date < day)
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0)


class OwnerDirectory:
    """Session-managing adapter exposing owner windows and quota usage.

    Implements the eligibility evaluator's `OwnerConfigSource` and
    `QuotaReader` protocols.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_window(self, owner_id: UUID) -> EligibilityWindow | None:
        async with self._session_factory() as session:
            row = await OwnerSettingsRepository(session).get(owner_id)
        if row is None:
            return None
        return window_from_owner_settings(row)

    async def get_settings(self, owner_id: UUID) -> OwnerSettings | None:
        async with self._session_factory() as session:
            return await OwnerSettingsRepository(session).get(owner_id)

    async def used_on(self, owner_id: UUID, day: date) -> int:
        async with self._session_factory() as session:
            return await QuotaRepository(session).used_on(owner_id, day)

    async def save_settings(self, owner_id: UUID, **fields: Any) -> OwnerSettings:
        async with self._session_factory() as session:
            row = await OwnerSettingsRepository(session).upsert(owner_id, **fields)
            await session.commit()
        logger.info("Owner settings saved", extra={"owner_id": str(owner_id)})
        return row
