"""
Pytest configuration and shared fixtures.

Every test gets its own SQLite file, a clock frozen on a Wednesday inside the
default 09:00-18:00 America/New_York window, and fake provider clients.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Mapping
from uuid import UUID, uuid4

import httpx
import pytest
import pytest_asyncio

from frontdesk.calendar.client import TokenGrant
from frontdesk.config import Settings
from frontdesk.notifications.sink import TerminalAlert
from frontdesk.operations.store import OperationStore
from frontdesk.runtime import Runtime, build_runtime
from frontdesk.shared.database import DatabaseManager
from frontdesk.telephony.client import CallRequest, CallResponse

# Wednesday 2025-01-15 10:00 in New York.
FROZEN_NOW = datetime(2025, 1, 15, 15, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock: tests move time explicitly."""

    def __init__(self, now: datetime = FROZEN_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeCallPlacer:
    """Records call requests; raises `error` instead when set."""

    def __init__(self) -> None:
        self.requests: list[CallRequest] = []
        self.error: BaseException | None = None

    async def place_call(self, request: CallRequest) -> CallResponse:
        if self.error is not None:
            raise self.error
        self.requests.append(request)
        return CallResponse(
            provider_call_id=f"call_{len(self.requests)}",
            status="queued",
            created_at=FROZEN_NOW,
        )


class FakeOAuthClient:
    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.calls: list[tuple[str, str]] = []
        self.error: BaseException | None = None

    async def refresh(self, provider: str, refresh_token: str) -> TokenGrant:
        self.calls.append((provider, refresh_token))
        if self.error is not None:
            raise self.error
        return TokenGrant(
            access_token=f"access-{len(self.calls)}",
            refresh_token=None,
            expires_at=self.clock() + timedelta(hours=2),
        )


class RecordingProcessor:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.error: BaseException | None = None

    async def __call__(self, event_type: str, body: Mapping[str, Any]) -> None:
        if self.error is not None:
            raise self.error
        self.events.append((event_type, dict(body)))


class RecordingNotifier:
    def __init__(self) -> None:
        self.alerts: list[TerminalAlert] = []

    async def notify(self, alert: TerminalAlert) -> None:
        self.alerts.append(alert)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'frontdesk.db'}"


@pytest.fixture
def settings(database_url: str) -> Settings:
    return Settings(
        database_url=database_url,
        scheduler_enabled=False,
        retry_base_delay_seconds=300,
        retry_max_attempts=3,
        alert_webhook_url="",
    )


@pytest_asyncio.fixture
async def db(database_url: str) -> AsyncGenerator[DatabaseManager, None]:
    # Long busy timeout: concurrency tests open many writers at once.
    manager = DatabaseManager(database_url, connect_args={"timeout": 30})
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def store(db: DatabaseManager, clock: FakeClock) -> OperationStore:
    return OperationStore(db.session_factory, clock=clock)


@pytest.fixture
def placer() -> FakeCallPlacer:
    return FakeCallPlacer()


@pytest.fixture
def oauth(clock: FakeClock) -> FakeOAuthClient:
    return FakeOAuthClient(clock)


@pytest.fixture
def processor() -> RecordingProcessor:
    return RecordingProcessor()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))
    async with httpx.AsyncClient(transport=transport) as client:
        yield client


@pytest_asyncio.fixture
async def runtime(
    settings: Settings,
    db: DatabaseManager,
    clock: FakeClock,
    http_client: httpx.AsyncClient,
    placer: FakeCallPlacer,
    oauth: FakeOAuthClient,
    processor: RecordingProcessor,
    notifier: RecordingNotifier,
) -> AsyncGenerator[Runtime, None]:
    rt = build_runtime(
        settings,
        db=db,
        http_client=http_client,
        call_placer=placer,
        oauth_client=oauth,
        webhook_processors={"stripe": processor},
        notifier=notifier,
        clock=clock,
        arm_timers=False,
    )
    yield rt
    await rt.close()


@pytest.fixture
def owner_id() -> UUID:
    return uuid4()
