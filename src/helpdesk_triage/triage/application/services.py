"""
Triage Application Services
============================

Application services for the triage workflow.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations

The workflow orchestrator itself lives in ``orchestrator.py``; this module
holds the ports it depends on plus the smaller services around it.
"""

import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from helpdesk_triage.config import (
    ActorType, AuthorType, NotificationEvent, TicketStatus
)
from helpdesk_triage.core import ValidationException
from helpdesk_triage.shared.infrastructure.logging import get_logger
from helpdesk_triage.triage.domain import (
    Article, AuditEntry, Reply, ScoredArticle, Suggestion, Ticket, TriageConfig
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket with its replies, or None."""

    @abstractmethod
    async def create(
        self,
        title: str,
        description: str,
        created_by: str,
        category: Optional[str] = None,
        attachment_urls: Optional[List[str]] = None
    ) -> Ticket:
        """Create new open ticket."""

    @abstractmethod
    async def advance_status(
        self,
        ticket_id: str,
        from_statuses: List[str],
        to_status: str
    ) -> bool:
        """Move to ``to_status`` only if the current status is in ``from_statuses``."""

    @abstractmethod
    async def resolve_with_reply(
        self,
        ticket_id: str,
        content: str,
        author_id: str,
        author_type: str
    ) -> bool:
        """Append a reply and resolve, atomically, if the ticket is not yet resolved."""

    @abstractmethod
    async def append_reply(
        self,
        ticket_id: str,
        content: str,
        author_id: str,
        author_type: str
    ) -> Reply:
        """Append a reply without touching status."""

    @abstractmethod
    async def assign(self, ticket_id: str, assignee: Optional[str]) -> bool:
        """Set or clear the assignee; False if the ticket does not exist."""

    @abstractmethod
    async def list_open_without_suggestion(self, limit: int = 100) -> List[str]:
        """Ids of open tickets that have never been triaged."""


class ISuggestionRepository(ABC):
    """Interface for suggestion storage (one row per ticket)."""

    @abstractmethod
    async def upsert(self, ticket_id: str, fields: Dict[str, Any]) -> Suggestion:
        """Insert or overwrite the suggestion for ``ticket_id``."""

    @abstractmethod
    async def find_by_ticket(self, ticket_id: str) -> Optional[Suggestion]:
        """Get the suggestion for a ticket."""

    @abstractmethod
    async def mark_auto_closed(self, ticket_id: str) -> bool:
        """Flag the suggestion as having auto-closed its ticket."""

    @abstractmethod
    async def list(
        self,
        auto_closed: Optional[bool] = None,
        min_confidence: Optional[float] = None,
        max_confidence: Optional[float] = None,
        limit: int = 50
    ) -> List[Suggestion]:
        """List suggestions, newest first."""


class IAuditLogRepository(ABC):
    """Interface for the append-only audit log."""

    @abstractmethod
    async def create(self, entry: AuditEntry) -> AuditEntry:
        """Append an entry."""

    @abstractmethod
    async def list_by_trace(self, trace_id: str) -> List[AuditEntry]:
        """Entries of one run, in write order."""

    @abstractmethod
    async def list_by_ticket(self, ticket_id: str) -> List[AuditEntry]:
        """Entries of every run for a ticket, in write order."""


class IArticleRepository(ABC):
    """Interface for knowledge base article lookup."""

    @abstractmethod
    async def get_by_ids(self, article_ids: List[str]) -> List[Article]:
        """Fetch articles, preserving the order of ``article_ids``."""


class IKnowledgeRetriever(ABC):
    """Interface for knowledge base relevance search."""

    @abstractmethod
    async def get_relevant_articles(self, query: str, limit: int) -> List[ScoredArticle]:
        """Top ``limit`` articles for ``query``, by descending score."""


class INotifier(ABC):
    """Interface for user notifications (fire-and-forget)."""

    @abstractmethod
    def broadcast_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        """Send an event; must not block or raise."""


class ITriageConfigProvider(ABC):
    """Interface for triage decision configuration access."""

    @abstractmethod
    def get_config(self) -> TriageConfig:
        """Get current triage configuration."""


class ILLMClient(ABC):
    """Interface for LLM operations."""

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float,
        max_tokens: int,
        operation: str = "chat_completion"
    ) -> Any:
        """Generate chat completion."""


# ========== Configuration Providers ==========

class StaticTriageConfigProvider(ITriageConfigProvider):
    """In-memory configuration; ``update`` takes effect on the next read."""

    def __init__(self, config: Optional[TriageConfig] = None):
        self._config = config or TriageConfig()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "StaticTriageConfigProvider":
        return cls(TriageConfig(
            auto_close_enabled=settings.auto_close_enabled,
            confidence_threshold=settings.confidence_threshold
        ))

    def update(self, config: TriageConfig) -> None:
        with self._lock:
            self._config = config

    def get_config(self) -> TriageConfig:
        with self._lock:
            return self._config


class CachedTriageConfigProvider(ITriageConfigProvider):
    """
    TTL cache in front of another provider.

    A returned config is at most ``ttl_seconds`` older than the source.
    ``ttl_seconds=0`` reads through on every call.
    """

    def __init__(
        self,
        source: ITriageConfigProvider,
        ttl_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic
    ):
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds cannot be negative")
        self._source = source
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[TriageConfig] = None
        self._loaded_at = 0.0

    def get_config(self) -> TriageConfig:
        with self._lock:
            now = self._clock()
            if self._cached is None or now - self._loaded_at >= self._ttl:
                self._cached = self._source.get_config()
                self._loaded_at = now
            return self._cached

    def invalidate(self) -> None:
        """Force the next read to hit the source."""
        with self._lock:
            self._cached = None


# ========== Application Services ==========

class AuditRecorder:
    """
    Best-effort audit sink.

    The only place where audit persistence errors are suppressed: a failed
    write is logged and dropped so it never aborts the caller.
    """

    def __init__(self, repository: IAuditLogRepository):
        self._repository = repository

    async def log(
        self,
        ticket_id: str,
        trace_id: str,
        actor: str,
        action: str,
        meta: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None
    ) -> None:
        entry = AuditEntry(
            ticket_id=ticket_id,
            trace_id=trace_id,
            actor=actor,
            action=action,
            meta=meta or {},
            timestamp=timestamp or datetime.now(timezone.utc)
        )
        try:
            await self._repository.create(entry)
        except Exception:
            logger.warning(
                "Audit write failed",
                exc_info=True,
                extra={"ticket_id": ticket_id, "trace_id": trace_id, "action": action}
            )


class SuggestionReviewService:
    """
    Human review of a triage suggestion.

    Accepting sends the (optionally edited) draft as an agent reply and
    resolves the ticket; rejecting hands the ticket to a human queue.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        suggestion_repository: ISuggestionRepository,
        audit_recorder: AuditRecorder,
        notifier: Optional[INotifier] = None
    ):
        self._tickets = ticket_repository
        self._suggestions = suggestion_repository
        self._audit = audit_recorder
        self._notifier = notifier

    async def accept(
        self,
        ticket_id: str,
        agent_id: str,
        edited_reply: Optional[str] = None,
        trace_id: Optional[str] = None
    ) -> Optional[Ticket]:
        """
        Send the suggested reply and resolve the ticket.

        Returns:
            The updated ticket, or None if the ticket or suggestion does not exist

        Raises:
            ValidationException: If the ticket is already resolved or closed
        """
        ticket = await self._tickets.get_by_id(ticket_id)
        suggestion = await self._suggestions.find_by_ticket(ticket_id)
        if ticket is None or suggestion is None:
            return None

        edited = bool(edited_reply and edited_reply.strip())
        content = edited_reply.strip() if edited else suggestion.draft_reply

        resolved = await self._tickets.resolve_with_reply(
            ticket_id, content, author_id=agent_id, author_type=AuthorType.AGENT
        )
        if not resolved:
            raise ValidationException(
                f"Ticket {ticket_id} is already {ticket.status}",
                {"ticket_id": ticket_id, "status": ticket.status}
            )

        trace_id = trace_id or uuid4().hex
        await self._audit.log(
            ticket_id, trace_id, ActorType.AGENT, "REPLY_SENT",
            {"agent_id": agent_id, "edited": edited, "reply_length": len(content)}
        )
        await self._audit.log(
            ticket_id, trace_id, ActorType.AGENT, "TICKET_RESOLVED",
            {"agent_id": agent_id, "via": "suggestion_accept"}
        )

        if self._notifier is not None:
            self._notifier.broadcast_to_user(
                ticket.created_by,
                NotificationEvent.TICKET_STATUS,
                {"ticket_id": ticket_id, "status": TicketStatus.RESOLVED}
            )

        logger.info("Suggestion accepted", extra={"ticket_id": ticket_id, "agent_id": agent_id})
        return await self._tickets.get_by_id(ticket_id)

    async def reject(
        self,
        ticket_id: str,
        agent_id: str,
        trace_id: Optional[str] = None
    ) -> Optional[Ticket]:
        """Reject the suggestion; open or triaged tickets move to waiting_human."""
        ticket = await self._tickets.get_by_id(ticket_id)
        suggestion = await self._suggestions.find_by_ticket(ticket_id)
        if ticket is None or suggestion is None:
            return None

        moved = await self._tickets.advance_status(
            ticket_id,
            [TicketStatus.OPEN, TicketStatus.TRIAGED],
            TicketStatus.WAITING_HUMAN
        )
        await self._audit.log(
            ticket_id, trace_id or uuid4().hex, ActorType.AGENT, "SUGGESTION_REJECTED",
            {"agent_id": agent_id, "previous_status": ticket.status, "moved_to_waiting_human": moved}
        )

        logger.info("Suggestion rejected", extra={"ticket_id": ticket_id, "agent_id": agent_id})
        return await self._tickets.get_by_id(ticket_id)
