"""
Triage Application Layer
=========================

Application layer for ticket triage module.

Contains:
- Services: Ports, audit recorder, configuration providers, suggestion review
- Providers: Text generation (offline heuristics or LLM)
- Orchestrator: The triage workflow state machine
- DTOs: Data transfer objects for API serialization
"""

from helpdesk_triage.triage.application.dto import (
    CreateTicketRequest,
    AcceptSuggestionRequest,
    RejectSuggestionRequest,
    TicketResponse,
    CreateTicketResponse,
    WorkflowContextResponse,
    SuggestionResponse,
    AuditEntryResponse,
    HealthResponse,
)
from helpdesk_triage.triage.application.services import (
    ITicketRepository,
    ISuggestionRepository,
    IAuditLogRepository,
    IArticleRepository,
    IKnowledgeRetriever,
    INotifier,
    ITriageConfigProvider,
    ILLMClient,
    StaticTriageConfigProvider,
    CachedTriageConfigProvider,
    AuditRecorder,
    SuggestionReviewService,
)
from helpdesk_triage.triage.application.providers import (
    ITextGenerationProvider,
    StubTextGenerationProvider,
    LLMTextGenerationProvider,
    build_text_generation_provider,
)
from helpdesk_triage.triage.application.orchestrator import WorkflowOrchestrator

__all__ = [
    # DTOs
    "CreateTicketRequest",
    "AcceptSuggestionRequest",
    "RejectSuggestionRequest",
    "TicketResponse",
    "CreateTicketResponse",
    "WorkflowContextResponse",
    "SuggestionResponse",
    "AuditEntryResponse",
    "HealthResponse",
    # Services
    "AuditRecorder",
    "SuggestionReviewService",
    "WorkflowOrchestrator",
    "StaticTriageConfigProvider",
    "CachedTriageConfigProvider",
    # Providers
    "ITextGenerationProvider",
    "StubTextGenerationProvider",
    "LLMTextGenerationProvider",
    "build_text_generation_provider",
    # Repository Interfaces
    "ITicketRepository",
    "ISuggestionRepository",
    "IAuditLogRepository",
    "IArticleRepository",
    "IKnowledgeRetriever",
    "INotifier",
    "ITriageConfigProvider",
    "ILLMClient",
]
