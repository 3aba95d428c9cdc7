"""
Triage Infrastructure Layer
============================

Infrastructure layer for ticket triage module.

Contains:
- Models: SQLAlchemy ORM models
- Repositories: Data access implementations and the keyword retriever
- External: LLM/notification adapters, config watcher, sweep scheduler
"""

from helpdesk_triage.triage.infrastructure.models import (
    TicketModel,
    TicketReplyModel,
    SuggestionModel,
    AuditLogModel,
    ArticleModel,
)
from helpdesk_triage.triage.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    SQLAlchemySuggestionRepository,
    SQLAlchemyAuditLogRepository,
    SQLAlchemyArticleRepository,
    SQLAlchemyKnowledgeRetriever,
)
from helpdesk_triage.triage.infrastructure.external import (
    LLMClientAdapter,
    NotifierAdapter,
    TriageConfigManager,
    TriageScheduler,
)

__all__ = [
    "TicketModel",
    "TicketReplyModel",
    "SuggestionModel",
    "AuditLogModel",
    "ArticleModel",
    "SQLAlchemyTicketRepository",
    "SQLAlchemySuggestionRepository",
    "SQLAlchemyAuditLogRepository",
    "SQLAlchemyArticleRepository",
    "SQLAlchemyKnowledgeRetriever",
    "LLMClientAdapter",
    "NotifierAdapter",
    "TriageConfigManager",
    "TriageScheduler",
]
