"""Tests for the triage workflow orchestrator."""

import asyncio
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from helpdesk_triage.core import RepositoryException
from helpdesk_triage.infrastructure.llm import MockLLMClient
from helpdesk_triage.shared.infrastructure.retry import RetryPolicy
from helpdesk_triage.triage.application import AuditRecorder, LLMTextGenerationProvider
from helpdesk_triage.triage.domain import TriageConfig, WorkflowState
from helpdesk_triage.triage.infrastructure import LLMClientAdapter

from conftest import ScriptedProvider


async def actions_for(audit_repository, ticket_id):
    return [entry.action for entry in await audit_repository.list_by_ticket(ticket_id)]


class SlowProvider(ScriptedProvider):
    async def classify(self, text):
        await asyncio.sleep(1)
        return await super().classify(text)


class TestSuccessfulRun:
    """Happy path through every stage."""

    async def test_high_confidence_auto_closes(
        self, orchestrator, billing_ticket, seeded_articles,
        ticket_repository, suggestion_repository, notifier
    ):
        context = await orchestrator.triage(billing_ticket.id)

        assert context.current_state == WorkflowState.COMPLETED
        assert context.predicted_category == "billing"
        assert context.confidence == 0.95
        assert context.auto_closed is True

        ticket = await ticket_repository.get_by_id(billing_ticket.id)
        assert ticket.status == "resolved"
        assert len(ticket.replies) == 1
        assert ticket.replies[0].author_type == "system"
        assert ticket.replies[0].content == context.draft_reply

        suggestion = await suggestion_repository.find_by_ticket(billing_ticket.id)
        assert suggestion.auto_closed is True
        assert suggestion.confidence == 0.95
        assert suggestion.model_info.provider == "stub"
        assert suggestion.model_info.prompt_version == "v1"
        assert suggestion.model_info.stub_mode is True

        assert notifier.sent == [
            ("user-1", "ticket_status", {"ticket_id": billing_ticket.id, "status": "resolved"})
        ]

    async def test_retrieves_published_articles_by_relevance(
        self, orchestrator, billing_ticket, seeded_articles
    ):
        refund, invoice = seeded_articles[0], seeded_articles[1]
        draft_article = seeded_articles[4]

        context = await orchestrator.triage(billing_ticket.id)

        assert context.retrieved_article_ids == [refund.id, invoice.id]
        assert draft_article.id not in context.retrieved_article_ids
        assert context.citations == [refund.id, invoice.id]

    async def test_audit_entries_follow_stage_order(
        self, orchestrator, billing_ticket, seeded_articles, audit_repository
    ):
        context = await orchestrator.triage(billing_ticket.id)

        entries = await audit_repository.list_by_trace(context.trace_id)
        assert [e.action for e in entries] == [
            "TRIAGE_PLANNED", "AGENT_CLASSIFIED", "KB_RETRIEVED", "DRAFT_GENERATED", "AUTO_CLOSED"
        ]
        assert all(e.actor == "system" for e in entries)
        timestamps = [e.timestamp for e in entries]
        assert timestamps == sorted(timestamps)
        assert entries[1].meta == {"predicted_category": "billing", "confidence": 0.95}
        assert entries[4].meta["threshold"] == 0.8

    async def test_low_confidence_goes_to_human(
        self, orchestrator, vague_ticket, ticket_repository, suggestion_repository,
        audit_repository, notifier
    ):
        context = await orchestrator.triage(vague_ticket.id)

        assert context.current_state == WorkflowState.COMPLETED
        assert context.predicted_category == "other"
        assert context.auto_closed is False

        ticket = await ticket_repository.get_by_id(vague_ticket.id)
        assert ticket.status == "waiting_human"
        assert ticket.replies == []

        suggestion = await suggestion_repository.find_by_ticket(vague_ticket.id)
        assert suggestion.auto_closed is False

        entries = await audit_repository.list_by_trace(context.trace_id)
        assert entries[-1].action == "ASSIGNED_TO_HUMAN"
        assert entries[-1].meta["status"] == "waiting_human"
        assert entries[-1].meta["status_changed"] is True
        assert notifier.sent == []

    async def test_assignee_is_notified(self, orchestrator, vague_ticket, ticket_repository, notifier):
        await ticket_repository.assign(vague_ticket.id, "agent-7")

        await orchestrator.triage(vague_ticket.id)

        assert notifier.sent == [
            ("agent-7", "ticket_assigned", {"ticket_id": vague_ticket.id, "status": "waiting_human"})
        ]

    async def test_only_open_tickets_move_to_waiting_human(
        self, orchestrator, vague_ticket, ticket_repository, audit_repository
    ):
        await ticket_repository.advance_status(vague_ticket.id, ["open"], "triaged")

        context = await orchestrator.triage(vague_ticket.id)

        ticket = await ticket_repository.get_by_id(vague_ticket.id)
        assert ticket.status == "triaged"
        entries = await audit_repository.list_by_trace(context.trace_id)
        assert entries[-1].meta["status_changed"] is False


class TestDecisionConfig:
    """Auto-close settings are read when the decision is made."""

    async def test_threshold_above_confidence_prevents_auto_close(
        self, orchestrator, billing_ticket, config_provider, ticket_repository
    ):
        config_provider.update(TriageConfig(auto_close_enabled=True, confidence_threshold=0.99))

        context = await orchestrator.triage(billing_ticket.id)

        assert context.auto_closed is False
        assert (await ticket_repository.get_by_id(billing_ticket.id)).status == "waiting_human"

    async def test_disabled_auto_close(self, orchestrator, billing_ticket, config_provider, ticket_repository):
        config_provider.update(TriageConfig(auto_close_enabled=False, confidence_threshold=0.0))

        context = await orchestrator.triage(billing_ticket.id)

        assert context.auto_closed is False
        assert (await ticket_repository.get_by_id(billing_ticket.id)).status == "waiting_human"

    async def test_confidence_exactly_at_threshold_auto_closes(
        self, make_orchestrator, billing_ticket, ticket_repository
    ):
        orchestrator = make_orchestrator(provider=ScriptedProvider(confidence=0.8))

        context = await orchestrator.triage(billing_ticket.id)

        assert context.auto_closed is True
        assert (await ticket_repository.get_by_id(billing_ticket.id)).status == "resolved"


class TestRerunsAndConcurrency:
    """Repeated and concurrent runs for one ticket."""

    async def test_rerun_overwrites_single_suggestion(
        self, make_orchestrator, vague_ticket, suggestion_repository
    ):
        provider = ScriptedProvider(category="billing", confidence=0.5, draft_reply="first")
        orchestrator = make_orchestrator(provider=provider)

        await orchestrator.triage(vague_ticket.id)
        provider.category, provider.confidence, provider.draft_reply = "tech", 0.6, "second"
        await orchestrator.triage(vague_ticket.id)

        suggestions = await suggestion_repository.list()
        assert len(suggestions) == 1
        assert suggestions[0].predicted_category == "tech"
        assert suggestions[0].confidence == 0.6
        assert suggestions[0].draft_reply == "second"

    async def test_rerun_on_resolved_ticket_does_not_regress(
        self, orchestrator, billing_ticket, ticket_repository, suggestion_repository, audit_repository
    ):
        await ticket_repository.resolve_with_reply(billing_ticket.id, "Refunded.", "agent-9", "agent")

        context = await orchestrator.triage(billing_ticket.id)

        assert context.current_state == WorkflowState.COMPLETED
        assert context.auto_closed is False
        ticket = await ticket_repository.get_by_id(billing_ticket.id)
        assert ticket.status == "resolved"
        assert [r.author_id for r in ticket.replies] == ["agent-9"]
        assert (await suggestion_repository.find_by_ticket(billing_ticket.id)).auto_closed is False
        entries = await audit_repository.list_by_trace(context.trace_id)
        assert entries[-1].action == "ASSIGNED_TO_HUMAN"
        assert entries[-1].meta["status"] == "resolved"

    async def test_concurrent_runs_auto_close_once(
        self, orchestrator, billing_ticket, ticket_repository, suggestion_repository
    ):
        first, second = await asyncio.gather(
            orchestrator.triage(billing_ticket.id),
            orchestrator.triage(billing_ticket.id),
        )

        assert first.succeeded and second.succeeded
        assert [first.auto_closed, second.auto_closed].count(True) == 1
        ticket = await ticket_repository.get_by_id(billing_ticket.id)
        assert len(ticket.replies) == 1
        assert len(await suggestion_repository.list()) == 1


class TestFailures:
    """Failures before the ticket changes end the run in FAILED with one TRIAGE_FAILED entry."""

    @pytest.mark.parametrize("ticket_id", ["not-a-ticket", str(uuid4())])
    async def test_unknown_ticket(self, orchestrator, ticket_id, audit_repository, suggestion_repository):
        context = await orchestrator.triage(ticket_id)

        assert context.current_state == WorkflowState.FAILED
        assert "not found" in context.error_message
        entries = await audit_repository.list_by_ticket(ticket_id)
        assert [e.action for e in entries] == ["TRIAGE_FAILED"]
        assert entries[0].meta["state"] == "planning"
        assert await suggestion_repository.list() == []

    async def test_provider_failure_after_retries(
        self, make_orchestrator, billing_ticket, audit_repository, suggestion_repository, ticket_repository
    ):
        mock_llm = MockLLMClient()  # empty queue: every call fails
        fast = RetryPolicy(max_retries=2, initial_delay=0.0, max_delay=0.0, timeout=5.0)
        provider = LLMTextGenerationProvider(
            LLMClientAdapter(client=mock_llm), classify_policy=fast, draft_policy=fast
        )
        orchestrator = make_orchestrator(provider=provider)

        context = await orchestrator.triage(billing_ticket.id)

        assert context.current_state == WorkflowState.FAILED
        assert len(mock_llm.calls) == 3
        assert await actions_for(audit_repository, billing_ticket.id) == ["TRIAGE_PLANNED", "TRIAGE_FAILED"]
        assert await suggestion_repository.find_by_ticket(billing_ticket.id) is None
        assert (await ticket_repository.get_by_id(billing_ticket.id)).status == "open"

    async def test_suggestion_write_failure_leaves_ticket_untouched(
        self, make_orchestrator, billing_ticket, audit_repository, ticket_repository, notifier
    ):
        failing = AsyncMock()
        failing.upsert.side_effect = RepositoryException("disk full")
        orchestrator = make_orchestrator(suggestion_repository=failing)

        context = await orchestrator.triage(billing_ticket.id)

        assert context.current_state == WorkflowState.FAILED
        assert context.error_message == "disk full"
        ticket = await ticket_repository.get_by_id(billing_ticket.id)
        assert ticket.status == "open"
        assert ticket.replies == []
        assert notifier.sent == []
        entries = await audit_repository.list_by_ticket(billing_ticket.id)
        assert entries[-1].action == "TRIAGE_FAILED"
        assert entries[-1].meta["state"] == "deciding"
        failing.mark_auto_closed.assert_not_called()

    async def test_auto_close_flag_failure_still_audits_and_notifies(
        self, make_orchestrator, billing_ticket, audit_repository, ticket_repository,
        suggestion_repository, notifier
    ):
        flaky = AsyncMock(wraps=suggestion_repository)
        flaky.mark_auto_closed.side_effect = RepositoryException("lock timeout")
        orchestrator = make_orchestrator(suggestion_repository=flaky)

        context = await orchestrator.triage(billing_ticket.id)

        assert context.current_state == WorkflowState.COMPLETED
        assert context.auto_closed is True
        assert (await ticket_repository.get_by_id(billing_ticket.id)).status == "resolved"
        entries = await audit_repository.list_by_ticket(billing_ticket.id)
        assert [e.action for e in entries][-1] == "AUTO_CLOSED"
        assert "TRIAGE_FAILED" not in [e.action for e in entries]
        assert entries[-1].meta["suggestion_flagged"] is False
        assert notifier.sent == [
            ("user-1", "ticket_status", {"ticket_id": billing_ticket.id, "status": "resolved"})
        ]

    async def test_run_timeout(self, make_orchestrator, billing_ticket, audit_repository, suggestion_repository):
        orchestrator = make_orchestrator(provider=SlowProvider(), run_timeout_seconds=0.05)

        context = await orchestrator.triage(billing_ticket.id)

        assert context.current_state == WorkflowState.FAILED
        assert "exceeded" in context.error_message
        actions = await actions_for(audit_repository, billing_ticket.id)
        assert actions.count("TRIAGE_FAILED") == 1
        assert await suggestion_repository.find_by_ticket(billing_ticket.id) is None

    async def test_audit_failures_do_not_abort_run(self, make_orchestrator, billing_ticket, ticket_repository):
        broken_audit = AsyncMock()
        broken_audit.create.side_effect = RuntimeError("audit store offline")
        orchestrator = make_orchestrator(audit_recorder=AuditRecorder(broken_audit))

        context = await orchestrator.triage(billing_ticket.id)

        assert context.current_state == WorkflowState.COMPLETED
        assert (await ticket_repository.get_by_id(billing_ticket.id)).status == "resolved"


class TestBackgroundAndBatch:
    """Fire-and-forget, batch and sweep entry points."""

    async def test_trigger_runs_in_background(self, orchestrator, billing_ticket, suggestion_repository):
        task = orchestrator.trigger(billing_ticket.id)
        assert orchestrator.pending_runs == 1

        await orchestrator.drain()

        assert task.result().succeeded
        assert orchestrator.pending_runs == 0
        assert await suggestion_repository.find_by_ticket(billing_ticket.id) is not None

    async def test_trigger_failure_is_contained(self, orchestrator):
        task = orchestrator.trigger("missing")
        await orchestrator.drain()

        assert task.exception() is None
        assert task.result().current_state == WorkflowState.FAILED

    async def test_batch_keeps_input_order(self, orchestrator, ticket_repository):
        tickets = [
            await ticket_repository.create(f"Ticket {i}", "Package delivery delayed", f"user-{i}")
            for i in range(3)
        ]
        ids = [t.id for t in tickets]

        results = await orchestrator.triage_batch(ids, batch_size=2)

        assert [c.ticket_id for c in results] == ids
        assert all(c.succeeded for c in results)

    async def test_batch_size_must_be_positive(self, orchestrator):
        with pytest.raises(ValueError):
            await orchestrator.triage_batch(["a"], batch_size=0)

    async def test_sweep_triages_only_untriaged_open_tickets(
        self, orchestrator, billing_ticket, vague_ticket
    ):
        first = await orchestrator.sweep_untriaged()
        assert {c.ticket_id for c in first} == {billing_ticket.id, vague_ticket.id}

        assert await orchestrator.sweep_untriaged() == []
