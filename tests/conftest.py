"""
Shared pytest fixtures.

Tests run against a throwaway SQLite file per test (aiosqlite), the offline
text generation provider and an in-memory notifier.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from helpdesk_triage.infrastructure.database import (
    close_database, create_tables, drop_tables, init_database
)
from helpdesk_triage.triage.application import (
    AuditRecorder,
    INotifier,
    ITextGenerationProvider,
    StaticTriageConfigProvider,
    StubTextGenerationProvider,
    SuggestionReviewService,
    WorkflowOrchestrator,
)
from helpdesk_triage.triage.domain import (
    Article, ClassificationResult, DraftResult, TriageConfig
)
from helpdesk_triage.triage.infrastructure import (
    SQLAlchemyArticleRepository,
    SQLAlchemyAuditLogRepository,
    SQLAlchemyKnowledgeRetriever,
    SQLAlchemySuggestionRepository,
    SQLAlchemyTicketRepository,
)


class RecordingNotifier(INotifier):
    """Notifier that keeps every broadcast for assertions."""

    def __init__(self):
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []

    def broadcast_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        self.sent.append((user_id, event, payload))


class ScriptedProvider(ITextGenerationProvider):
    """Provider returning fixed results, settable between runs."""

    provider_name = "scripted"
    model_name = "scripted-model"

    def __init__(self, category: str = "billing", confidence: float = 0.9, draft_reply: str = "Scripted reply"):
        self.category = category
        self.confidence = confidence
        self.draft_reply = draft_reply
        self.classify_calls = 0

    async def classify(self, text: str) -> ClassificationResult:
        self.classify_calls += 1
        return ClassificationResult(predicted_category=self.category, confidence=self.confidence)

    async def draft(self, text: str, articles: Sequence[Article]) -> DraftResult:
        return DraftResult(
            draft_reply=self.draft_reply,
            citations=[a.id for a in articles],
            confidence=self.confidence
        )

    def is_stub_mode(self) -> bool:
        return False


@pytest.fixture
async def database(tmp_path):
    """Fresh schema in a per-test SQLite file."""
    init_database(f"sqlite+aiosqlite:///{tmp_path / 'triage.db'}")
    await create_tables()
    yield
    await drop_tables()
    await close_database()


@pytest.fixture
def ticket_repository(database):
    return SQLAlchemyTicketRepository()


@pytest.fixture
def suggestion_repository(database):
    return SQLAlchemySuggestionRepository()


@pytest.fixture
def audit_repository(database):
    return SQLAlchemyAuditLogRepository()


@pytest.fixture
def article_repository(database):
    return SQLAlchemyArticleRepository()


@pytest.fixture
def retriever(database):
    return SQLAlchemyKnowledgeRetriever()


@pytest.fixture
async def seeded_articles(article_repository) -> List[Article]:
    """A small knowledge base: four published articles and one draft."""
    return [
        await article_repository.create(
            title="How to request a refund",
            body="Refunds are issued to the original payment method within 5 business days.",
            tags=["billing", "refund"]
        ),
        await article_repository.create(
            title="Understanding charges on your invoice",
            body="Each charge on the invoice lists the order number and date.",
            tags=["billing", "invoice"]
        ),
        await article_repository.create(
            title="Tracking your package",
            body="Use the tracking link in your shipping confirmation email.",
            tags=["shipping", "delivery"]
        ),
        await article_repository.create(
            title="Fixing login errors",
            body="Reset your password and clear cookies if login fails.",
            tags=["tech", "login"]
        ),
        await article_repository.create(
            title="Refund policy draft",
            body="Unpublished refund policy changes.",
            tags=["billing", "refund"],
            status="draft"
        ),
    ]


@pytest.fixture
async def billing_ticket(ticket_repository):
    return await ticket_repository.create(
        title="Refund for double charge",
        description="I was charged twice for order #1234",
        created_by="user-1"
    )


@pytest.fixture
async def vague_ticket(ticket_repository):
    """Ticket with no category keywords; classifies as 'other' with low confidence."""
    return await ticket_repository.create(
        title="Hello",
        description="Just saying hi there",
        created_by="user-2"
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def config_provider() -> StaticTriageConfigProvider:
    return StaticTriageConfigProvider(TriageConfig(auto_close_enabled=True, confidence_threshold=0.8))


@pytest.fixture
def audit_recorder(audit_repository) -> AuditRecorder:
    return AuditRecorder(audit_repository)


@pytest.fixture
def make_orchestrator(
    ticket_repository,
    suggestion_repository,
    article_repository,
    retriever,
    audit_recorder,
    notifier,
    config_provider
):
    """Factory for orchestrators over the test database; stub provider by default."""

    def _make(
        provider: Optional[ITextGenerationProvider] = None,
        run_timeout_seconds: float = 30.0,
        **overrides
    ) -> WorkflowOrchestrator:
        components = dict(
            ticket_repository=ticket_repository,
            suggestion_repository=suggestion_repository,
            article_repository=article_repository,
            retriever=retriever,
            provider=provider or StubTextGenerationProvider(),
            audit_recorder=audit_recorder,
            notifier=notifier,
            config_provider=config_provider,
            run_timeout_seconds=run_timeout_seconds,
        )
        components.update(overrides)
        return WorkflowOrchestrator(**components)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator) -> WorkflowOrchestrator:
    return make_orchestrator()


@pytest.fixture
def review_service(ticket_repository, suggestion_repository, audit_recorder, notifier):
    return SuggestionReviewService(ticket_repository, suggestion_repository, audit_recorder, notifier)
