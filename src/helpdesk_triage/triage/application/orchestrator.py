"""
Triage Workflow Orchestrator
============================

Drives one ticket through PLANNING -> CLASSIFYING -> RETRIEVING ->
DRAFTING -> DECIDING -> COMPLETED, recording an audit entry per stage.

The orchestrator is the error boundary of a run: ``triage`` always returns
the run's context and never raises (cancellation excepted). A failed run
ends in FAILED with a ``TRIAGE_FAILED`` audit entry.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Set
from uuid import uuid4

from helpdesk_triage.config import (
    ActorType, AuthorType, NotificationEvent, TicketStatus
)
from helpdesk_triage.core import TicketNotFoundException
from helpdesk_triage.shared.infrastructure.logging import (
    get_context_logger, get_logger, log_latency
)
from helpdesk_triage.triage.application.providers import ITextGenerationProvider
from helpdesk_triage.triage.application.services import (
    AuditRecorder,
    IArticleRepository,
    IKnowledgeRetriever,
    INotifier,
    ISuggestionRepository,
    ITicketRepository,
    ITriageConfigProvider,
)
from helpdesk_triage.triage.domain import Ticket, WorkflowContext, WorkflowState

logger = get_logger(__name__)

SYSTEM_AUTHOR_ID = "system"


class _RunClock:
    """Audit timestamps for one run, never earlier than the previous one."""

    def __init__(self):
        self._last: Optional[datetime] = None

    def next(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last is not None and now < self._last:
            now = self._last
        self._last = now
        return now


class WorkflowOrchestrator:
    """
    Runs the triage workflow for tickets.

    Holds no locks and no per-run state; concurrent runs (including runs for
    the same ticket) rely on the repositories' upsert and guarded status
    updates.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        suggestion_repository: ISuggestionRepository,
        article_repository: IArticleRepository,
        retriever: IKnowledgeRetriever,
        provider: ITextGenerationProvider,
        audit_recorder: AuditRecorder,
        notifier: INotifier,
        config_provider: ITriageConfigProvider,
        kb_top_k: int = 3,
        run_timeout_seconds: float = 60.0,
        prompt_version: str = "v1"
    ):
        self._tickets = ticket_repository
        self._suggestions = suggestion_repository
        self._articles = article_repository
        self._retriever = retriever
        self._provider = provider
        self._audit = audit_recorder
        self._notifier = notifier
        self._config_provider = config_provider
        self._kb_top_k = kb_top_k
        self._run_timeout = run_timeout_seconds
        self._prompt_version = prompt_version
        self._tasks: Set[asyncio.Task] = set()

    # ========== Public API ==========

    async def triage(self, ticket_id: str) -> WorkflowContext:
        """
        Run the full workflow for one ticket.

        Returns:
            The terminal context; inspect ``current_state`` for COMPLETED or FAILED.
        """
        context = WorkflowContext(ticket_id=ticket_id, trace_id=uuid4().hex)
        clock = _RunClock()
        run_logger = get_context_logger(__name__, context.trace_id)
        run_logger.info("Triage run started", extra={"ticket_id": ticket_id})

        try:
            await asyncio.wait_for(
                self._run(context, clock, run_logger),
                timeout=self._run_timeout
            )
        except asyncio.TimeoutError:
            run_logger.error(
                "Triage run timed out",
                extra={"ticket_id": ticket_id, "state": context.current_state.value}
            )
            await self._fail(context, clock, f"Triage run exceeded {self._run_timeout}s")
        except Exception as e:
            run_logger.exception(
                "Triage run failed",
                extra={"ticket_id": ticket_id, "state": context.current_state.value}
            )
            await self._fail(context, clock, str(e) or e.__class__.__name__)

        return context

    def trigger(self, ticket_id: str) -> asyncio.Task:
        """
        Start a run in the background and return immediately.

        The task is owned by the orchestrator until it finishes; its outcome
        is only visible through the audit log and the stored suggestion.
        """
        task = asyncio.get_running_loop().create_task(
            self.triage(ticket_id), name=f"triage-{ticket_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def triage_batch(
        self,
        ticket_ids: Sequence[str],
        batch_size: int = 5
    ) -> List[WorkflowContext]:
        """Triage tickets ``batch_size`` at a time; results keep input order."""
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        results: List[WorkflowContext] = []
        for start in range(0, len(ticket_ids), batch_size):
            chunk = ticket_ids[start:start + batch_size]
            results.extend(await asyncio.gather(*(self.triage(tid) for tid in chunk)))

        logger.info(
            "Batch triage finished",
            extra={
                "total": len(results),
                "completed": sum(1 for c in results if c.succeeded),
                "failed": sum(1 for c in results if not c.succeeded),
            }
        )
        return results

    async def sweep_untriaged(self, limit: int = 100, batch_size: int = 5) -> List[WorkflowContext]:
        """Triage open tickets that have never produced a suggestion."""
        ticket_ids = await self._tickets.list_open_without_suggestion(limit=limit)
        if not ticket_ids:
            return []
        logger.info("Sweeping untriaged tickets", extra={"count": len(ticket_ids)})
        return await self.triage_batch(ticket_ids, batch_size=batch_size)

    @property
    def pending_runs(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for background runs started by ``trigger``."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ========== Workflow ==========

    async def _record(
        self,
        context: WorkflowContext,
        clock: _RunClock,
        action: str,
        meta: Dict[str, Any]
    ) -> None:
        await self._audit.log(
            context.ticket_id, context.trace_id, ActorType.SYSTEM, action, meta,
            timestamp=clock.next()
        )

    async def _run(self, context: WorkflowContext, clock: _RunClock, run_logger) -> None:
        started = time.perf_counter()

        # PLANNING
        ticket = await self._tickets.get_by_id(context.ticket_id)
        if ticket is None:
            raise TicketNotFoundException(context.ticket_id)
        await self._record(context, clock, "TRIAGE_PLANNED", {"ticket_status": ticket.status})
        text = ticket.full_text

        # CLASSIFYING
        context.advance_to(WorkflowState.CLASSIFYING)
        with log_latency(run_logger, "classification", ticket_id=ticket.id):
            classification = await self._provider.classify(text)
        context.predicted_category = classification.predicted_category
        context.confidence = classification.confidence
        await self._record(context, clock, "AGENT_CLASSIFIED", {
            "predicted_category": classification.predicted_category,
            "confidence": classification.confidence,
        })
        run_logger.info("Ticket classified", extra={
            "ticket_id": ticket.id,
            "category": classification.predicted_category,
            "confidence": classification.confidence,
        })

        # RETRIEVING
        context.advance_to(WorkflowState.RETRIEVING)
        with log_latency(run_logger, "kb_retrieval", ticket_id=ticket.id):
            hits = await self._retriever.get_relevant_articles(text, self._kb_top_k)
        context.retrieved_article_ids = [hit.article.id for hit in hits]
        await self._record(context, clock, "KB_RETRIEVED", {
            "article_ids": context.retrieved_article_ids,
            "scores": [hit.score for hit in hits],
        })

        # DRAFTING
        context.advance_to(WorkflowState.DRAFTING)
        articles = await self._articles.get_by_ids(context.retrieved_article_ids)
        with log_latency(run_logger, "draft", ticket_id=ticket.id):
            draft = await self._provider.draft(text, articles)
        context.draft_reply = draft.draft_reply
        context.citations = list(draft.citations)
        await self._record(context, clock, "DRAFT_GENERATED", {
            "citations": context.citations,
            "draft_length": len(draft.draft_reply),
            "draft_confidence": draft.confidence,
        })

        # DECIDING
        context.advance_to(WorkflowState.DECIDING)
        context.model_latency_ms = int((time.perf_counter() - started) * 1000)
        await self._suggestions.upsert(ticket.id, {
            "predicted_category": context.predicted_category,
            "article_ids": context.retrieved_article_ids,
            "draft_reply": context.draft_reply,
            "confidence": context.confidence,
            "auto_closed": False,
            "model_info": {
                "provider": self._provider.provider_name,
                "model": self._provider.model_name,
                "prompt_version": self._prompt_version,
                "latency_ms": context.model_latency_ms,
                "stub_mode": self._provider.is_stub_mode(),
            },
        })
        await self._decide(context, ticket, clock, run_logger)

        context.advance_to(WorkflowState.COMPLETED)
        run_logger.info("Triage run completed", extra={
            "ticket_id": ticket.id,
            "auto_closed": context.auto_closed,
            "latency_ms": context.model_latency_ms,
        })

    async def _decide(
        self,
        context: WorkflowContext,
        ticket: Ticket,
        clock: _RunClock,
        run_logger
    ) -> None:
        """Apply the auto-close rule exactly once for this run."""
        config = self._config_provider.get_config()

        if config.should_auto_close(context.confidence):
            resolved = await self._tickets.resolve_with_reply(
                ticket.id, context.draft_reply,
                author_id=SYSTEM_AUTHOR_ID, author_type=AuthorType.SYSTEM
            )
            if resolved:
                # the ticket is resolved from here on; the audit entry and
                # notification must follow even if the flag write fails
                context.auto_closed = True
                flagged = await self._flag_auto_closed(ticket.id, run_logger)
                await self._record(context, clock, "AUTO_CLOSED", {
                    "confidence": context.confidence,
                    "threshold": config.confidence_threshold,
                    "suggestion_flagged": flagged,
                })
                self._notifier.broadcast_to_user(
                    ticket.created_by,
                    NotificationEvent.TICKET_STATUS,
                    {"ticket_id": ticket.id, "status": TicketStatus.RESOLVED}
                )
                return
            run_logger.info(
                "Auto-close skipped, ticket already resolved",
                extra={"ticket_id": ticket.id}
            )

        advanced = await self._tickets.advance_status(
            ticket.id, [TicketStatus.OPEN], TicketStatus.WAITING_HUMAN
        )
        current = await self._tickets.get_by_id(ticket.id) or ticket
        await self._record(context, clock, "ASSIGNED_TO_HUMAN", {
            "confidence": context.confidence,
            "threshold": config.confidence_threshold,
            "status": current.status,
            "status_changed": advanced,
            "assignee": current.assignee,
        })
        if current.assignee:
            self._notifier.broadcast_to_user(
                current.assignee,
                NotificationEvent.TICKET_ASSIGNED,
                {"ticket_id": ticket.id, "status": current.status}
            )

    async def _flag_auto_closed(self, ticket_id: str, run_logger) -> bool:
        try:
            return await self._suggestions.mark_auto_closed(ticket_id)
        except Exception:
            run_logger.exception(
                "Could not flag suggestion as auto-closed",
                extra={"ticket_id": ticket_id}
            )
            return False

    async def _fail(self, context: WorkflowContext, clock: _RunClock, error_message: str) -> None:
        failed_in = context.current_state.value
        if context.is_terminal:
            return
        context.fail(error_message)
        await self._record(context, clock, "TRIAGE_FAILED", {
            "error": error_message,
            "state": failed_in,
        })
