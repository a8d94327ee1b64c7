"""
Tests for provider clients and effect handlers.

HTTP clients run against httpx.MockTransport; nothing leaves the process.
"""

import json
from datetime import timedelta
from typing import Any, Callable
from uuid import uuid4

import httpx
import pytest

from frontdesk.calendar.client import OAuthTokenClient
from frontdesk.calendar.config import CalendarOAuthConfig
from frontdesk.exclusions.service import ExclusionService, normalize_phone_number
from frontdesk.notifications.sink import (
    CompositeNotificationSink,
    HttpNotificationSink,
    TerminalAlert,
)
from frontdesk.operations.models import OperationStatus
from frontdesk.retry.outcome import (
    PermanentEffectError,
    PermanentFailure,
    PolicyBlocked,
    Success,
    TransientFailure,
    classify_exception,
)
from frontdesk.runtime import Runtime
from frontdesk.shared.database import DatabaseManager
from frontdesk.shared.exceptions import ValidationError
from frontdesk.telephony.client import CallPlatformClient, CallRequest
from frontdesk.telephony.config import CallPlatformConfig
from frontdesk.telephony.outbound import OutboundCallHandler
from frontdesk.webhooks.handler import HttpWebhookForwarder, WebhookReplayHandler

from conftest import FROZEN_NOW, FakeCallPlacer, FakeClock, RecordingNotifier, RecordingProcessor

NUMBER = "+14155551234"


class CapturingTransport:
    """MockTransport responder that records every request."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []
        self._respond = respond

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._respond(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def platform_config() -> CallPlatformConfig:
    return CallPlatformConfig(
        base_url="https://platform.test",
        api_key="secret",
        phone_number_id="pn_1",
        assistant_id="asst_default",
    )


class TestNormalizePhoneNumber:
    """Tests for phone number normalization."""

    def test_valid_e164_format(self) -> None:
        assert normalize_phone_number("+14155551234") == "+14155551234"
        assert normalize_phone_number("+393331234567") == "+393331234567"

    def test_formatting_removed(self) -> None:
        assert normalize_phone_number("+1 (415) 555-1234") == "+14155551234"
        assert normalize_phone_number("+1.415.555.1234") == "+14155551234"

    def test_national_numbers_get_country_code(self) -> None:
        assert normalize_phone_number("(415) 555-1234") == "+14155551234"
        assert normalize_phone_number("14155551234") == "+14155551234"

    def test_double_zero_prefix(self) -> None:
        assert normalize_phone_number("00393331234567") == "+393331234567"

    def test_invalid_format_returns_none(self) -> None:
        assert normalize_phone_number("") is None
        assert normalize_phone_number(None) is None
        assert normalize_phone_number("abc123") is None
        assert normalize_phone_number("+1234") is None
        assert normalize_phone_number("+12345678901234567890") is None


class TestCallPlatformClient:
    """Tests for the call platform REST client."""

    @pytest.mark.asyncio
    async def test_place_call_request_shape(self, platform_config: CallPlatformConfig) -> None:
        transport = CapturingTransport(
            lambda request: httpx.Response(201, json={"id": "call_abc", "status": "queued"})
        )
        owner = uuid4()
        async with transport.client() as http:
            client = CallPlatformClient(platform_config, http_client=http)
            response = await client.place_call(
                CallRequest(to=NUMBER, owner_id=owner, purpose="reminder", metadata={"booking": "b1"})
            )

        assert response.provider_call_id == "call_abc"
        assert response.status == "queued"
        request = transport.requests[0]
        assert str(request.url) == "https://platform.test/call"
        assert request.headers["Authorization"] == "Bearer secret"
        body = json.loads(request.content)
        assert body["phoneNumberId"] == "pn_1"
        assert body["assistantId"] == "asst_default"
        assert body["customer"] == {"number": NUMBER}
        assert body["metadata"] == {"booking": "b1", "owner_id": str(owner), "purpose": "reminder"}

    @pytest.mark.asyncio
    async def test_server_error_classified_transient(self, platform_config: CallPlatformConfig) -> None:
        transport = CapturingTransport(lambda request: httpx.Response(503))
        async with transport.client() as http:
            client = CallPlatformClient(platform_config, http_client=http)
            with pytest.raises(httpx.HTTPStatusError) as exc_info:
                await client.place_call(CallRequest(to=NUMBER, owner_id=uuid4(), purpose="x"))

        assert isinstance(classify_exception(exc_info.value), TransientFailure)

    @pytest.mark.asyncio
    async def test_response_without_id_is_permanent(self, platform_config: CallPlatformConfig) -> None:
        transport = CapturingTransport(lambda request: httpx.Response(200, json={"status": "queued"}))
        async with transport.client() as http:
            client = CallPlatformClient(platform_config, http_client=http)
            with pytest.raises(PermanentEffectError):
                await client.place_call(CallRequest(to=NUMBER, owner_id=uuid4(), purpose="x"))


class TestOutboundCallHandler:
    """Tests for the outbound_call effect handler."""

    @pytest.mark.asyncio
    async def test_places_call(
        self, db: DatabaseManager, clock: FakeClock, placer: FakeCallPlacer
    ) -> None:
        handler = OutboundCallHandler(placer, ExclusionService(db.session_factory, clock=clock))
        owner = uuid4()

        outcome = await handler(
            {
                "owner_id": str(owner),
                "to_number": NUMBER,
                "purpose": "reminder",
                "context": {"booking": "b1"},
                "assistant_id": "asst_2",
            }
        )

        assert outcome == Success({"provider_call_id": "call_1", "status": "queued"})
        request = placer.requests[0]
        assert request.owner_id == owner
        assert request.assistant_id == "asst_2"
        assert request.metadata == {"booking": "b1"}

    @pytest.mark.asyncio
    async def test_invalid_payload_is_permanent(
        self, db: DatabaseManager, clock: FakeClock, placer: FakeCallPlacer
    ) -> None:
        handler = OutboundCallHandler(placer, ExclusionService(db.session_factory, clock=clock))

        assert isinstance(await handler({"owner_id": str(uuid4()), "to_number": "abc"}), PermanentFailure)
        assert isinstance(await handler({"to_number": NUMBER}), PermanentFailure)
        assert placer.requests == []

    @pytest.mark.asyncio
    async def test_do_not_call_is_policy_blocked(
        self, db: DatabaseManager, clock: FakeClock, placer: FakeCallPlacer
    ) -> None:
        exclusions = ExclusionService(db.session_factory, clock=clock)
        handler = OutboundCallHandler(placer, exclusions)
        owner = uuid4()
        await exclusions.add(owner, NUMBER)

        outcome = await handler({"owner_id": str(owner), "to_number": NUMBER, "purpose": "x"})

        assert isinstance(outcome, PolicyBlocked)
        assert placer.requests == []

    @pytest.mark.asyncio
    async def test_expired_exclusion_no_longer_blocks(
        self, db: DatabaseManager, clock: FakeClock, placer: FakeCallPlacer
    ) -> None:
        exclusions = ExclusionService(db.session_factory, clock=clock)
        owner = uuid4()
        await exclusions.add(owner, NUMBER, expires_at=clock.now + timedelta(days=1))

        assert await exclusions.is_excluded(owner, NUMBER)
        clock.advance(days=2)
        assert not await exclusions.is_excluded(owner, NUMBER)


class TestOutboundCallService:
    """Tests for queueing calls."""

    @pytest.mark.asyncio
    async def test_enqueue_normalizes_number(self, runtime: Runtime) -> None:
        owner = uuid4()

        op, created = await runtime.outbound.enqueue_call(
            owner, "(415) 555-1234", "reminder", context={"booking": "b1"}, idempotency_key="booking-b1"
        )

        assert created
        assert op.kind == "outbound_call"
        assert op.subject == NUMBER
        assert op.owner_id == owner
        assert op.payload == {
            "owner_id": str(owner),
            "to_number": NUMBER,
            "purpose": "reminder",
            "context": {"booking": "b1"},
        }

        again, created_again = await runtime.outbound.enqueue_call(
            owner, NUMBER, "reminder", idempotency_key="booking-b1"
        )
        assert not created_again
        assert again.id == op.id

    @pytest.mark.asyncio
    async def test_invalid_number_rejected(self, runtime: Runtime) -> None:
        with pytest.raises(ValidationError):
            await runtime.outbound.enqueue_call(uuid4(), "12345", "reminder")

    @pytest.mark.asyncio
    async def test_excluded_number_rejected(self, runtime: Runtime) -> None:
        owner = uuid4()
        await runtime.exclusions.add(owner, NUMBER)

        with pytest.raises(ValidationError):
            await runtime.outbound.enqueue_call(owner, NUMBER, "reminder")


class TestOAuthTokenClient:
    """Tests for the calendar OAuth refresh client."""

    @pytest.fixture
    def config(self) -> CalendarOAuthConfig:
        return CalendarOAuthConfig(google_client_id="gid", google_client_secret="gsecret")

    @pytest.mark.asyncio
    async def test_refresh_returns_grant(self, config: CalendarOAuthConfig) -> None:
        transport = CapturingTransport(
            lambda request: httpx.Response(
                200, json={"access_token": "new", "refresh_token": "rotated", "expires_in": 1800}
            )
        )
        async with transport.client() as http:
            grant = await OAuthTokenClient(config, http_client=http).refresh("google", "r1")

        assert grant.access_token == "new"
        assert grant.refresh_token == "rotated"
        request = transport.requests[0]
        assert str(request.url) == "https://oauth2.googleapis.com/token"
        form = request.content.decode()
        assert "grant_type=refresh_token" in form
        assert "refresh_token=r1" in form
        assert "client_id=gid" in form

    @pytest.mark.asyncio
    async def test_invalid_grant_is_permanent(self, config: CalendarOAuthConfig) -> None:
        transport = CapturingTransport(
            lambda request: httpx.Response(400, json={"error": "invalid_grant"})
        )
        async with transport.client() as http:
            with pytest.raises(PermanentEffectError, match="invalid_grant"):
                await OAuthTokenClient(config, http_client=http).refresh("google", "r1")

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, config: CalendarOAuthConfig) -> None:
        transport = CapturingTransport(lambda request: httpx.Response(502))
        async with transport.client() as http:
            with pytest.raises(httpx.HTTPStatusError):
                await OAuthTokenClient(config, http_client=http).refresh("outlook", "r1")

    @pytest.mark.asyncio
    async def test_unknown_provider_is_permanent(self, config: CalendarOAuthConfig) -> None:
        transport = CapturingTransport(lambda request: httpx.Response(200))
        async with transport.client() as http:
            with pytest.raises(PermanentEffectError):
                await OAuthTokenClient(config, http_client=http).refresh("icloud", "r1")
        assert transport.requests == []


class TestWebhookReplay:
    """Tests for recording and replaying failed webhooks."""

    @pytest.mark.asyncio
    async def test_record_failed_webhook(self, runtime: Runtime, clock: FakeClock) -> None:
        op, created = await runtime.failed_webhooks.record_failed_webhook(
            "stripe", "invoice.paid", {"id": "in_1"}, RuntimeError("db down"), event_id="evt_1"
        )

        assert created
        assert op.kind == "webhook_replay"
        assert op.subject == "stripe:invoice.paid"
        assert op.idempotency_key == "webhook:stripe:evt_1"
        assert op.next_attempt_at == clock.now + timedelta(minutes=1)
        assert op.payload == {
            "source": "stripe",
            "event_type": "invoice.paid",
            "body": {"id": "in_1"},
            "first_error": "db down",
        }

        _, created_again = await runtime.failed_webhooks.record_failed_webhook(
            "stripe", "invoice.paid", {"id": "in_1"}, "again", event_id="evt_1"
        )
        assert not created_again

    @pytest.mark.asyncio
    async def test_unknown_source_rejected(self, runtime: Runtime) -> None:
        with pytest.raises(ValidationError):
            await runtime.failed_webhooks.record_failed_webhook("paypal", "x", {}, "boom")

    @pytest.mark.asyncio
    async def test_replay_walks_step_table(
        self, runtime: Runtime, processor: RecordingProcessor, clock: FakeClock
    ) -> None:
        processor.error = RuntimeError("still failing")
        op, _ = await runtime.failed_webhooks.record_failed_webhook(
            "stripe", "invoice.paid", {"id": "in_1"}, "boom"
        )
        clock.advance(minutes=1)

        await runtime.sweeper.sweep("webhook_replay")
        stored = await runtime.store.get(op.id)
        assert stored.status == OperationStatus.PENDING
        assert stored.attempt_count == 1
        assert stored.next_attempt_at == clock.now + timedelta(minutes=5)

        processor.error = None
        clock.set(stored.next_attempt_at)
        await runtime.sweeper.sweep("webhook_replay")

        assert (await runtime.store.get(op.id)).status == OperationStatus.COMPLETED
        assert processor.events == [("invoice.paid", {"id": "in_1"})]

    @pytest.mark.asyncio
    async def test_handler_rejects_unknown_source(self) -> None:
        handler = WebhookReplayHandler({})
        assert isinstance(await handler({"source": "stripe"}), PermanentFailure)

    @pytest.mark.asyncio
    async def test_http_forwarder_posts_body(self) -> None:
        transport = CapturingTransport(lambda request: httpx.Response(204))
        async with transport.client() as http:
            forwarder = HttpWebhookForwarder("https://internal.test/hooks/stripe", http)
            await forwarder("invoice.paid", {"id": "in_1"})

        request = transport.requests[0]
        assert request.headers["X-Webhook-Replay"] == "1"
        assert request.headers["X-Webhook-Event-Type"] == "invoice.paid"
        assert json.loads(request.content) == {"id": "in_1"}


class FailingSink:
    async def notify(self, alert: TerminalAlert) -> None:
        raise RuntimeError("sink down")


def make_alert() -> TerminalAlert:
    return TerminalAlert(
        operation_id=uuid4(),
        kind="outbound_call",
        status="failed_terminal",
        owner_id=None,
        subject=NUMBER,
        attempt_count=4,
        last_error="503",
        occurred_at=FROZEN_NOW,
    )


class TestNotificationSinks:
    @pytest.mark.asyncio
    async def test_http_sink_posts_alert(self) -> None:
        transport = CapturingTransport(lambda request: httpx.Response(200))
        alert = make_alert()
        async with transport.client() as http:
            await HttpNotificationSink("https://alerts.test/hook", http_client=http).notify(alert)

        body: dict[str, Any] = json.loads(transport.requests[0].content)
        assert body["operation_id"] == str(alert.operation_id)
        assert body["status"] == "failed_terminal"
        assert body["occurred_at"] == FROZEN_NOW.isoformat()

    @pytest.mark.asyncio
    async def test_composite_sink_survives_failing_sink(self) -> None:
        recorder = RecordingNotifier()
        sink = CompositeNotificationSink([FailingSink(), recorder])

        await sink.notify(make_alert())

        assert len(recorder.alerts) == 1
