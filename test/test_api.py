"""
API tests through the ASGI app with an injected runtime.
"""

from collections.abc import AsyncGenerator
from datetime import timedelta
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from frontdesk.main import create_app
from frontdesk.runtime import Runtime

from conftest import FakeCallPlacer, FakeClock

NUMBER = "+14155551234"


@pytest_asyncio.fixture
async def client(runtime: Runtime) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(runtime)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def queue_call(client: AsyncClient, owner_id: UUID, **extra: object) -> dict:
    response = await client.post(
        "/api/outbound/calls",
        json={"owner_id": str(owner_id), "to_number": NUMBER, "purpose": "reminder", **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestOperationsApi:
    """Tests for /api/operations."""

    @pytest.mark.asyncio
    async def test_create_is_idempotent(self, client: AsyncClient) -> None:
        body = {"kind": "token_refresh", "payload": {"integration_id": str(uuid4())}, "idempotency_key": "k1"}

        first = await client.post("/api/operations", json=body)
        second = await client.post("/api/operations", json=body)

        assert first.status_code == 201
        assert second.status_code == 200
        assert first.json()["id"] == second.json()["id"]
        assert first.json()["status"] == "pending"

    @pytest.mark.asyncio
    async def test_unknown_kind_rejected(self, client: AsyncClient) -> None:
        response = await client.post("/api/operations", json={"kind": "fax"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_malformed_body_returns_validation_payload(self, client: AsyncClient) -> None:
        response = await client.post("/api/operations", json={"payload": {}})

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "VALIDATION_ERROR"
        assert detail["errors"][0]["field"] == "body.kind"

    @pytest.mark.asyncio
    async def test_get_and_not_found(self, client: AsyncClient, owner_id: UUID) -> None:
        created = await queue_call(client, owner_id)

        found = await client.get(f"/api/operations/{created['id']}")
        missing = await client.get(f"/api/operations/{uuid4()}")

        assert found.status_code == 200
        assert found.json()["subject"] == NUMBER
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_list_and_stats(self, client: AsyncClient, owner_id: UUID) -> None:
        await queue_call(client, owner_id)
        await client.post("/api/operations", json={"kind": "token_refresh"})

        listed = await client.get("/api/operations", params={"kind": "outbound_call", "status": "pending"})
        stats = await client.get("/api/operations/stats")

        assert [item["kind"] for item in listed.json()["items"]] == ["outbound_call"]
        assert stats.json() == {
            "by_kind": {"outbound_call": {"pending": 1}, "token_refresh": {"pending": 1}},
            "total": 2,
        }

    @pytest.mark.asyncio
    async def test_cancel(self, client: AsyncClient, owner_id: UUID) -> None:
        created = await queue_call(client, owner_id)

        response = await client.post(f"/api/operations/{created['id']}/cancel")

        assert response.status_code == 200
        body = response.json()
        assert body["cancelled"] is True
        assert body["operation"]["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_dispatch_then_conflict(
        self, client: AsyncClient, owner_id: UUID, placer: FakeCallPlacer
    ) -> None:
        created = await queue_call(client, owner_id)

        dispatched = await client.post(f"/api/operations/{created['id']}/dispatch")
        again = await client.post(f"/api/operations/{created['id']}/dispatch")

        assert dispatched.status_code == 200
        assert dispatched.json()["result"] == "dispatched"
        assert dispatched.json()["operation"]["status"] == "completed"
        assert again.status_code == 409
        assert len(placer.requests) == 1

    @pytest.mark.asyncio
    async def test_wait(self, client: AsyncClient, owner_id: UUID, clock: FakeClock) -> None:
        created = await queue_call(client, owner_id)
        wake_at = clock.now + timedelta(hours=2)

        response = await client.post(
            f"/api/operations/{created['id']}/wait", json={"wake_at": wake_at.isoformat()}
        )

        assert response.status_code == 201
        assert response.json()["state"] == "waiting"
        assert response.json()["operation_id"] == created["id"]

    @pytest.mark.asyncio
    async def test_requeue_pending_conflicts(self, client: AsyncClient, owner_id: UUID) -> None:
        created = await queue_call(client, owner_id)

        response = await client.post(f"/api/operations/{created['id']}/requeue")

        assert response.status_code == 409


class TestSchedulerApi:
    """Tests for the external-cron endpoints."""

    @pytest.mark.asyncio
    async def test_sweep(self, client: AsyncClient, owner_id: UUID) -> None:
        await queue_call(client, owner_id)

        response = await client.post("/api/scheduler/sweep", params={"kind": "outbound_call"})

        assert response.status_code == 200
        body = response.json()
        assert body["found"] == 1
        assert body["results"] == {"dispatched": 1}

    @pytest.mark.asyncio
    async def test_sweep_unknown_kind(self, client: AsyncClient) -> None:
        response = await client.post("/api/scheduler/sweep", params={"kind": "fax"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_fire_wakes_and_housekeeping(self, client: AsyncClient) -> None:
        fired = await client.post("/api/scheduler/wakes/fire")
        housekeeping = await client.post("/api/scheduler/housekeeping")

        assert fired.json() == {"fired": 0}
        assert housekeeping.json() == {
            "purged_operations": 0,
            "purged_webhook_replays": 0,
            "purged_quota_rows": 0,
            "recovered_in_flight": 0,
        }


class TestWebhooksApi:
    @pytest.mark.asyncio
    async def test_record_failed_webhook(self, client: AsyncClient) -> None:
        body = {
            "source": "stripe",
            "event_type": "invoice.paid",
            "payload": {"id": "in_1"},
            "error": "database unavailable",
            "event_id": "evt_1",
        }

        first = await client.post("/api/webhooks/failed", json=body)
        second = await client.post("/api/webhooks/failed", json=body)

        assert first.status_code == 201
        assert first.json()["kind"] == "webhook_replay"
        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]


class TestOutboundApi:
    @pytest.mark.asyncio
    async def test_invalid_number_rejected(self, client: AsyncClient, owner_id: UUID) -> None:
        response = await client.post(
            "/api/outbound/calls",
            json={"owner_id": str(owner_id), "to_number": "12345", "purpose": "reminder"},
        )
        assert response.status_code == 400


class TestExclusionsApi:
    """Tests for /api/exclusions."""

    @pytest.mark.asyncio
    async def test_add_cancels_queued_calls(self, client: AsyncClient, owner_id: UUID) -> None:
        call = await queue_call(client, owner_id)

        response = await client.post(
            "/api/exclusions",
            json={"owner_id": str(owner_id), "phone_number": "(415) 555-1234", "reason": "asked"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["cancelled_calls"] == 1
        assert body["entry"]["phone_number"] == NUMBER
        status = (await client.get(f"/api/operations/{call['id']}")).json()["status"]
        assert status == "cancelled"

    @pytest.mark.asyncio
    async def test_list_and_delete(self, client: AsyncClient, owner_id: UUID) -> None:
        await client.post("/api/exclusions", json={"owner_id": str(owner_id), "phone_number": NUMBER})

        listed = await client.get("/api/exclusions", params={"owner_id": str(owner_id)})
        deleted = await client.delete(f"/api/exclusions/{owner_id}/{NUMBER}")
        missing = await client.delete(f"/api/exclusions/{owner_id}/{NUMBER}")

        assert [e["phone_number"] for e in listed.json()["items"]] == [NUMBER]
        assert deleted.status_code == 204
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_number_rejected(self, client: AsyncClient, owner_id: UUID) -> None:
        response = await client.post(
            "/api/exclusions", json={"owner_id": str(owner_id), "phone_number": "not-a-number"}
        )
        assert response.status_code == 400
