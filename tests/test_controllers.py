"""API tests for the ticket and triage routes."""

import httpx
import pytest

from helpdesk_triage.config import Settings
from helpdesk_triage.main import create_app
from helpdesk_triage.triage.application import StubTextGenerationProvider
from helpdesk_triage.triage.domain import TriageConfig
from helpdesk_triage.triage.interfaces import TriageServices


@pytest.fixture
def services(orchestrator, review_service, ticket_repository, suggestion_repository, audit_repository):
    return TriageServices(
        orchestrator=orchestrator,
        review_service=review_service,
        ticket_repository=ticket_repository,
        suggestion_repository=suggestion_repository,
        audit_repository=audit_repository,
        provider=StubTextGenerationProvider()
    )


@pytest.fixture
async def client(services):
    app = create_app(config=Settings(environment="test"), services=services)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


class TestTicketRoutes:
    """Ticket intake."""

    async def test_create_ticket_schedules_triage(self, client, services, seeded_articles):
        response = await client.post("/tickets", json={
            "title": "Refund for double charge",
            "description": "I was charged twice for order #1234",
            "created_by": "user-1",
        })

        assert response.status_code == 201
        body = response.json()
        assert body["triage_scheduled"] is True
        assert body["ticket"]["status"] == "open"
        assert body["ticket"]["category"] == "billing"
        assert "X-Correlation-ID" in response.headers

        await services.orchestrator.drain()

        ticket = (await client.get(f"/tickets/{body['ticket']['id']}")).json()
        assert ticket["status"] == "resolved"
        assert ticket["replies"][0]["author_type"] == "system"

    async def test_create_ticket_validation(self, client):
        response = await client.post("/tickets", json={"title": "", "description": "x", "created_by": "u"})
        assert response.status_code == 422

    async def test_unknown_ticket_404(self, client):
        response = await client.get("/tickets/does-not-exist")
        assert response.status_code == 404


class TestTriageRoutes:
    """Synchronous triage, suggestions, audit trail and review."""

    async def test_run_triage_returns_context(self, client, billing_ticket, seeded_articles):
        response = await client.post(f"/triage/{billing_ticket.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["current_state"] == "completed"
        assert body["predicted_category"] == "billing"
        assert body["auto_closed"] is True
        assert body["state_history"][-1] == "completed"

    async def test_failed_run_is_not_an_http_error(self, client):
        response = await client.post("/triage/missing-ticket")

        assert response.status_code == 200
        assert response.json()["current_state"] == "failed"
        assert response.json()["error_message"]

    async def test_suggestion_and_audit(self, client, billing_ticket):
        assert (await client.get(f"/triage/{billing_ticket.id}/suggestion")).status_code == 404

        await client.post(f"/triage/{billing_ticket.id}")

        suggestion = (await client.get(f"/triage/{billing_ticket.id}/suggestion")).json()
        assert suggestion["confidence_level"] == "very_high"
        assert suggestion["model_info"]["provider"] == "stub"
        assert suggestion["model_info"]["stub_mode"] is True

        audit = (await client.get(f"/triage/{billing_ticket.id}/audit")).json()
        assert audit[0]["action"] == "TRIAGE_PLANNED"
        assert audit[-1]["action"] == "AUTO_CLOSED"

    async def test_list_suggestions_filtered(self, client, billing_ticket, vague_ticket):
        await client.post(f"/triage/{billing_ticket.id}")
        await client.post(f"/triage/{vague_ticket.id}")

        closed = (await client.get("/triage/suggestions", params={"auto_closed": "true"})).json()
        open_ = (await client.get("/triage/suggestions", params={"auto_closed": "false"})).json()

        assert [s["ticket_id"] for s in closed] == [billing_ticket.id]
        assert [s["ticket_id"] for s in open_] == [vague_ticket.id]

    async def test_accept_and_reject(self, client, config_provider, billing_ticket, vague_ticket):
        config_provider.update(TriageConfig(auto_close_enabled=False))
        await client.post(f"/triage/{billing_ticket.id}")
        await client.post(f"/triage/{vague_ticket.id}")

        accepted = await client.post(
            f"/triage/{billing_ticket.id}/suggestion/accept",
            json={"agent_id": "agent-1", "edited_reply": "Refund issued."}
        )
        rejected = await client.post(
            f"/triage/{vague_ticket.id}/suggestion/reject", json={"agent_id": "agent-1"}
        )
        again = await client.post(
            f"/triage/{billing_ticket.id}/suggestion/accept", json={"agent_id": "agent-2"}
        )

        assert accepted.status_code == 200
        assert accepted.json()["status"] == "resolved"
        assert accepted.json()["replies"][0]["content"] == "Refund issued."
        assert rejected.status_code == 200
        assert rejected.json()["status"] == "waiting_human"
        assert again.status_code == 422

    async def test_review_without_suggestion_404(self, client, billing_ticket):
        response = await client.post(
            f"/triage/{billing_ticket.id}/suggestion/accept", json={"agent_id": "agent-1"}
        )
        assert response.status_code == 404


class TestHealth:
    async def test_health_reports_provider_and_database(self, client):
        body = (await client.get("/health")).json()

        assert body["status"] == "healthy"
        assert body["provider"] == "stub"
        assert body["stub_mode"] is True
        assert body["database"] == "connected"
