"""
Calendar integration service: token bookkeeping and refresh discovery.
"""

from datetime import datetime, timedelta
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from frontdesk.calendar.client import OAuthTokenClient, TokenGrant
from frontdesk.calendar.models import CalendarIntegration, IntegrationStatus
from frontdesk.operations.models import Operation, OperationKind
from frontdesk.operations.store import OperationStore
from frontdesk.retry.outcome import Outcome, PermanentFailure, Success
from frontdesk.shared.clock import Clock, utcnow
from frontdesk.shared.logging import get_logger

logger = get_logger(__name__)

# Providers without OAuth tokens.
LOCAL_PROVIDERS = frozenset({"built_in"})


class CalendarTokenService:
    """Reads and updates calendar integrations."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        store: OperationStore,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._store = store
        self._clock = clock

    async def connect(
        self,
        owner_id: UUID,
        provider: str,
        access_token: str,
        refresh_token: str | None,
        token_expires_at: datetime | None,
    ) -> CalendarIntegration:
        """Create or replace an owner's integration with fresh tokens."""
        async with self._session_factory.begin() as session:
            stmt = select(CalendarIntegration).where(
                CalendarIntegration.owner_id == owner_id,
                CalendarIntegration.provider == provider,
            )
            integration = (await session.execute(stmt)).scalar_one_or_none()
            if integration is None:
                integration = CalendarIntegration(owner_id=owner_id, provider=provider)
                session.add(integration)
            integration.access_token = access_token
            integration.refresh_token = refresh_token
            integration.token_expires_at = token_expires_at
            integration.status = IntegrationStatus.CONNECTED
            integration.last_error = None
            integration.updated_at = self._clock()
        return integration

    async def get(self, integration_id: UUID) -> CalendarIntegration | None:
        async with self._session_factory() as session:
            return await session.get(CalendarIntegration, integration_id)

    async def save_tokens(self, integration_id: UUID, grant: TokenGrant) -> None:
        async with self._session_factory.begin() as session:
            integration = await session.get(CalendarIntegration, integration_id)
            if integration is None:
                return
            integration.access_token = grant.access_token
            integration.refresh_token = grant.refresh_token or integration.refresh_token
            integration.token_expires_at = grant.expires_at
            integration.last_error = None
            integration.updated_at = self._clock()

    async def disconnect(self, integration_id: UUID, reason: str | None) -> bool:
        """Clear tokens so the owner has to reconnect."""
        async with self._session_factory.begin() as session:
            integration = await session.get(CalendarIntegration, integration_id)
            if integration is None:
                return False
            integration.access_token = None
            integration.refresh_token = None
            integration.token_expires_at = None
            integration.status = IntegrationStatus.DISCONNECTED
            integration.last_error = reason
            integration.updated_at = self._clock()
            owner_id, provider = integration.owner_id, integration.provider

        logger.warning(
            "Calendar integration disconnected; owner must reconnect",
            extra={
                "integration_id": str(integration_id),
                "owner_id": str(owner_id),
                "provider": provider,
                "reason": reason,
            },
        )
        return True

    async def enqueue_expiring_token_refreshes(
        self,
        now: datetime,
        horizon: timedelta = timedelta(hours=1),
    ) -> int:
        """Queue one token_refresh per connected integration expiring within `horizon`.

        Keyed by integration and expiry, so repeated discovery of the same
        token does not queue it twice. Returns how many were newly queued.
        """
        async with self._session_factory() as session:
            stmt = (
                select(CalendarIntegration)
                .where(
                    CalendarIntegration.status == IntegrationStatus.CONNECTED,
                    CalendarIntegration.provider.not_in(list(LOCAL_PROVIDERS)),
                    CalendarIntegration.refresh_token.is_not(None),
                    CalendarIntegration.token_expires_at < now + horizon,
                )
                .order_by(CalendarIntegration.token_expires_at.asc())
            )
            integrations = list((await session.execute(stmt)).scalars().all())

        created_count = 0
        for integration in integrations:
            _, created = await self._store.enqueue(
                OperationKind.TOKEN_REFRESH.value,
                {
                    "integration_id": str(integration.id),
                    "owner_id": str(integration.owner_id),
                    "provider": integration.provider,
                },
                owner_id=integration.owner_id,
                subject=f"calendar:{integration.provider}",
                idempotency_key=(
                    f"token_refresh:{integration.id}:{integration.token_expires_at.isoformat()}"
                ),
                run_at=now,
            )
            created_count += int(created)

        if created_count:
            logger.info("Queued calendar token refreshes", extra={"count": created_count})
        return created_count

    async def on_refresh_exhausted(self, operation: Operation) -> None:
        """Terminal hook: give up on the integration."""
        raw_id = (operation.payload or {}).get("integration_id")
        if not raw_id:
            return
        await self.disconnect(UUID(str(raw_id)), operation.last_error)


class TokenRefreshHandler:
    """Effect handler for token_refresh operations."""

    def __init__(self, service: CalendarTokenService, client: OAuthTokenClient) -> None:
        self._service = service
        self._client = client

    async def __call__(self, payload: Mapping[str, Any]) -> Outcome:
        try:
            integration_id = UUID(str(payload["integration_id"]))
        except (KeyError, ValueError):
            return PermanentFailure("payload has no valid integration_id")

        integration = await self._service.get(integration_id)
        if integration is None:
            return PermanentFailure("calendar integration not found")
        if integration.status == IntegrationStatus.DISCONNECTED or not integration.refresh_token:
            return PermanentFailure("no refresh token available")

        grant = await self._client.refresh(integration.provider, integration.refresh_token)
        await self._service.save_tokens(integration.id, grant)
        return Success(
            {"provider": integration.provider, "expires_at": grant.expires_at.isoformat()}
        )
