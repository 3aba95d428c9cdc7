"""
Triage Infrastructure Repositories
====================================

SQLAlchemy implementations of triage repositories.

Every operation runs in its own short session from ``session_factory`` so
that concurrent triage runs never share a session. Status changes are a
single conditional UPDATE, which makes them safe against concurrent writers
without locks.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from helpdesk_triage.config import ArticleStatus, TicketStatus
from helpdesk_triage.core import RepositoryException, TicketNotFoundException
from helpdesk_triage.infrastructure.database import get_session_context
from helpdesk_triage.shared.infrastructure.logging import get_logger
from helpdesk_triage.triage.application.services import (
    IArticleRepository,
    IAuditLogRepository,
    IKnowledgeRetriever,
    ISuggestionRepository,
    ITicketRepository,
)
from helpdesk_triage.triage.domain import (
    Article, AuditEntry, KeywordHeuristics, ModelInfo, Reply, ScoredArticle,
    Suggestion, Ticket, statuses_before
)
from helpdesk_triage.triage.infrastructure.models import (
    ArticleModel, AuditLogModel, SuggestionModel, TicketModel, TicketReplyModel
)

logger = get_logger(__name__)

SessionFactory = Callable[[], Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except ValueError:
        return None


# ========== Model -> Entity Mapping ==========

def _ticket_to_entity(model: TicketModel) -> Ticket:
    return Ticket(
        id=str(model.id),
        title=model.title,
        description=model.description,
        category=model.category,
        status=model.status,
        created_by=model.created_by,
        created_at=model.created_at,
        assignee=model.assignee,
        replies=[_reply_to_entity(r) for r in model.replies],
        attachment_urls=list(model.attachment_urls or []),
        updated_at=model.updated_at
    )


def _reply_to_entity(model: TicketReplyModel) -> Reply:
    return Reply(
        id=str(model.id),
        content=model.content,
        author_id=model.author_id,
        author_type=model.author_type,
        created_at=model.created_at
    )


def _suggestion_to_entity(model: SuggestionModel) -> Suggestion:
    info = model.model_info or {}
    return Suggestion(
        ticket_id=str(model.ticket_id),
        predicted_category=model.predicted_category,
        article_ids=list(model.article_ids or []),
        draft_reply=model.draft_reply,
        confidence=model.confidence,
        auto_closed=model.auto_closed,
        model_info=ModelInfo(
            provider=info.get("provider", "unknown"),
            model=info.get("model", "unknown"),
            prompt_version=info.get("prompt_version", "unknown"),
            latency_ms=int(info.get("latency_ms", 0)),
            stub_mode=bool(info.get("stub_mode", False))
        ),
        created_at=model.created_at,
        updated_at=model.updated_at
    )


def _audit_to_entity(model: AuditLogModel) -> AuditEntry:
    return AuditEntry(
        id=model.id,
        ticket_id=model.ticket_id,
        trace_id=model.trace_id,
        actor=model.actor,
        action=model.action,
        meta=dict(model.meta or {}),
        timestamp=model.timestamp
    )


def _article_to_entity(model: ArticleModel) -> Article:
    return Article(
        id=str(model.id),
        title=model.title,
        body=model.body,
        tags=list(model.tags or []),
        status=model.status
    )


# ========== Repositories ==========

class SQLAlchemyTicketRepository(ITicketRepository):
    """SQLAlchemy implementation for tickets."""

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket with replies by id."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return None

        async with self._session_factory() as session:
            stmt = select(TicketModel).where(TicketModel.id == ticket_uuid)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _ticket_to_entity(model) if model else None

    async def create(
        self,
        title: str,
        description: str,
        created_by: str,
        category: Optional[str] = None,
        attachment_urls: Optional[List[str]] = None
    ) -> Ticket:
        """Create new open ticket, guessing the category when none is given."""
        model = TicketModel(
            id=uuid4(),
            title=title,
            description=description,
            category=category or KeywordHeuristics.guess_category(title, description),
            status=TicketStatus.OPEN,
            created_by=created_by,
            attachment_urls=list(attachment_urls or []),
            created_at=_utcnow(),
            replies=[]
        )
        async with self._session_factory() as session:
            session.add(model)
            await session.flush()
            return _ticket_to_entity(model)

    async def advance_status(
        self,
        ticket_id: str,
        from_statuses: List[str],
        to_status: str
    ) -> bool:
        """Conditional forward move; returns False when the guard did not match."""
        ticket_uuid = _parse_uuid(ticket_id)
        allowed = [s for s in from_statuses if s in statuses_before(to_status)]
        if ticket_uuid is None or not allowed:
            return False

        async with self._session_factory() as session:
            stmt = (
                update(TicketModel)
                .where(TicketModel.id == ticket_uuid, TicketModel.status.in_(allowed))
                .values(status=to_status, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def resolve_with_reply(
        self,
        ticket_id: str,
        content: str,
        author_id: str,
        author_type: str
    ) -> bool:
        """Resolve from open/triaged/waiting_human and append the reply in one transaction."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return False

        async with self._session_factory() as session:
            stmt = (
                update(TicketModel)
                .where(
                    TicketModel.id == ticket_uuid,
                    TicketModel.status.in_(statuses_before(TicketStatus.RESOLVED))
                )
                .values(status=TicketStatus.RESOLVED, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount != 1:
                return False

            session.add(TicketReplyModel(
                ticket_id=ticket_uuid,
                content=content,
                author_id=author_id,
                author_type=author_type,
                created_at=_utcnow()
            ))
            await session.flush()
            return True

    async def append_reply(
        self,
        ticket_id: str,
        content: str,
        author_id: str,
        author_type: str
    ) -> Reply:
        """Append a reply without touching status."""
        ticket_uuid = _parse_uuid(ticket_id)
        async with self._session_factory() as session:
            exists = None
            if ticket_uuid is not None:
                exists = await session.scalar(select(TicketModel.id).where(TicketModel.id == ticket_uuid))
            if exists is None:
                raise TicketNotFoundException(ticket_id)

            model = TicketReplyModel(
                ticket_id=ticket_uuid,
                content=content,
                author_id=author_id,
                author_type=author_type,
                created_at=_utcnow()
            )
            session.add(model)
            await session.execute(
                update(TicketModel)
                .where(TicketModel.id == ticket_uuid)
                .values(updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.flush()
            return _reply_to_entity(model)

    async def assign(self, ticket_id: str, assignee: Optional[str]) -> bool:
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return False

        async with self._session_factory() as session:
            result = await session.execute(
                update(TicketModel)
                .where(TicketModel.id == ticket_uuid)
                .values(assignee=assignee, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def list_open_without_suggestion(self, limit: int = 100) -> List[str]:
        """Oldest open tickets that have no suggestion yet."""
        async with self._session_factory() as session:
            stmt = (
                select(TicketModel.id)
                .outerjoin(SuggestionModel, SuggestionModel.ticket_id == TicketModel.id)
                .where(TicketModel.status == TicketStatus.OPEN, SuggestionModel.id.is_(None))
                .order_by(TicketModel.created_at)
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [str(ticket_id) for ticket_id in result.scalars().all()]


class SQLAlchemySuggestionRepository(ISuggestionRepository):
    """SQLAlchemy implementation for suggestions (one row per ticket)."""

    FIELDS = ("predicted_category", "article_ids", "draft_reply", "confidence", "auto_closed", "model_info")

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    def _insert_for(self, dialect_name: str):
        if dialect_name == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect_name == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise RepositoryException(f"Suggestion upsert not supported on {dialect_name}")
        return insert

    async def upsert(self, ticket_id: str, fields: Dict[str, Any]) -> Suggestion:
        """
        Insert or overwrite the suggestion for a ticket.

        Raises:
            RepositoryException: If the write fails; callers must not proceed
        """
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            raise RepositoryException(f"Invalid ticket ID: {ticket_id}")

        now = _utcnow()
        values = {key: fields[key] for key in self.FIELDS if key in fields}
        if "confidence" in values:
            values["confidence"] = round(float(values["confidence"]), 3)

        try:
            async with self._session_factory() as session:
                insert = self._insert_for(session.bind.dialect.name)
                stmt = insert(SuggestionModel).values(
                    id=uuid4(), ticket_id=ticket_uuid, created_at=now, updated_at=now, **values
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[SuggestionModel.ticket_id],
                    set_={**{key: stmt.excluded[key] for key in values}, "updated_at": now}
                )
                await session.execute(stmt)

                result = await session.execute(
                    select(SuggestionModel)
                    .where(SuggestionModel.ticket_id == ticket_uuid)
                    .execution_options(populate_existing=True)
                )
                return _suggestion_to_entity(result.scalar_one())
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to store suggestion: {e}", {"ticket_id": ticket_id}
            ) from e

    async def find_by_ticket(self, ticket_id: str) -> Optional[Suggestion]:
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return None

        async with self._session_factory() as session:
            result = await session.execute(
                select(SuggestionModel).where(SuggestionModel.ticket_id == ticket_uuid)
            )
            model = result.scalar_one_or_none()
            return _suggestion_to_entity(model) if model else None

    async def mark_auto_closed(self, ticket_id: str) -> bool:
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return False

        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(SuggestionModel)
                    .where(SuggestionModel.ticket_id == ticket_uuid)
                    .values(auto_closed=True, updated_at=_utcnow())
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to update suggestion: {e}", {"ticket_id": ticket_id}
            ) from e

    async def list(
        self,
        auto_closed: Optional[bool] = None,
        min_confidence: Optional[float] = None,
        max_confidence: Optional[float] = None,
        limit: int = 50
    ) -> List[Suggestion]:
        """List suggestions, newest first, with optional filters."""
        stmt = select(SuggestionModel)
        if auto_closed is not None:
            stmt = stmt.where(SuggestionModel.auto_closed == auto_closed)
        if min_confidence is not None:
            stmt = stmt.where(SuggestionModel.confidence >= min_confidence)
        if max_confidence is not None:
            stmt = stmt.where(SuggestionModel.confidence <= max_confidence)
        stmt = stmt.order_by(SuggestionModel.updated_at.desc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_suggestion_to_entity(m) for m in result.scalars().all()]


class SQLAlchemyAuditLogRepository(IAuditLogRepository):
    """SQLAlchemy implementation for the append-only audit log."""

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    async def create(self, entry: AuditEntry) -> AuditEntry:
        model = AuditLogModel(
            ticket_id=entry.ticket_id,
            trace_id=entry.trace_id,
            actor=entry.actor,
            action=entry.action,
            meta=entry.meta,
            timestamp=entry.timestamp
        )
        async with self._session_factory() as session:
            session.add(model)
            await session.flush()
            return _audit_to_entity(model)

    async def list_by_trace(self, trace_id: str) -> List[AuditEntry]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AuditLogModel)
                .where(AuditLogModel.trace_id == trace_id)
                .order_by(AuditLogModel.id)
            )
            return [_audit_to_entity(m) for m in result.scalars().all()]

    async def list_by_ticket(self, ticket_id: str) -> List[AuditEntry]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AuditLogModel)
                .where(AuditLogModel.ticket_id == ticket_id)
                .order_by(AuditLogModel.id)
            )
            return [_audit_to_entity(m) for m in result.scalars().all()]


class SQLAlchemyArticleRepository(IArticleRepository):
    """SQLAlchemy implementation for knowledge base articles."""

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    async def get_by_ids(self, article_ids: List[str]) -> List[Article]:
        """Fetch articles in the order of ``article_ids``; unknown ids are skipped."""
        uuids = [u for u in (_parse_uuid(a) for a in article_ids) if u is not None]
        if not uuids:
            return []

        async with self._session_factory() as session:
            result = await session.execute(select(ArticleModel).where(ArticleModel.id.in_(uuids)))
            by_id = {str(m.id): _article_to_entity(m) for m in result.scalars().all()}
        return [by_id[str(u)] for u in uuids if str(u) in by_id]

    async def create(
        self,
        title: str,
        body: str,
        tags: Optional[List[str]] = None,
        status: str = ArticleStatus.PUBLISHED
    ) -> Article:
        """Add an article (seeding and tests)."""
        model = ArticleModel(
            id=uuid4(), title=title, body=body, tags=list(tags or []),
            status=status, created_at=_utcnow()
        )
        async with self._session_factory() as session:
            session.add(model)
            await session.flush()
            return _article_to_entity(model)


class SQLAlchemyKnowledgeRetriever(IKnowledgeRetriever):
    """
    Keyword relevance search over published articles.

    Scoring is ``Article.relevance_score``; articles that do not match any
    query word are not returned.
    """

    def __init__(
        self,
        session_factory: SessionFactory = get_session_context,
        candidate_limit: int = 500
    ):
        self._session_factory = session_factory
        self._candidate_limit = candidate_limit

    async def get_relevant_articles(self, query: str, limit: int) -> List[ScoredArticle]:
        if not query.strip() or limit <= 0:
            return []

        async with self._session_factory() as session:
            result = await session.execute(
                select(ArticleModel)
                .where(ArticleModel.status == ArticleStatus.PUBLISHED)
                .order_by(ArticleModel.created_at.desc())
                .limit(self._candidate_limit)
            )
            articles = [_article_to_entity(m) for m in result.scalars().all()]

        scored = [ScoredArticle(article=a, score=float(a.relevance_score(query))) for a in articles]
        scored = [s for s in scored if s.score > 0]
        scored.sort(key=lambda s: (-s.score, s.article.title, s.article.id))

        logger.debug(
            "Knowledge base search",
            extra={"candidates": len(articles), "matches": len(scored), "limit": limit}
        )
        return scored[:limit]
