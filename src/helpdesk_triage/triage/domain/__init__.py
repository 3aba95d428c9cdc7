"""
Triage Domain Layer
===================

Domain layer for ticket triage module.

Contains:
- Entities: Core business objects (Ticket, Suggestion, AuditEntry, WorkflowContext)
- Value Objects: Immutable objects (TriageConfig, KeywordHeuristics, TriagePromptBuilder)

This layer is framework-agnostic and contains pure business logic.
"""

from helpdesk_triage.triage.domain.entities import (
    Reply,
    Ticket,
    Article,
    ScoredArticle,
    ClassificationResult,
    DraftResult,
    ModelInfo,
    Suggestion,
    AuditEntry,
    WorkflowState,
    WorkflowContext,
    WORKFLOW_SEQUENCE,
    MAX_CITATIONS,
    clamp_confidence,
    coerce_category,
    can_transition,
    statuses_before,
)
from helpdesk_triage.triage.domain.value_objects import (
    TriageConfig,
    KeywordHeuristics,
    TriagePromptBuilder,
)

__all__ = [
    "Reply",
    "Ticket",
    "Article",
    "ScoredArticle",
    "ClassificationResult",
    "DraftResult",
    "ModelInfo",
    "Suggestion",
    "AuditEntry",
    "WorkflowState",
    "WorkflowContext",
    "WORKFLOW_SEQUENCE",
    "MAX_CITATIONS",
    "clamp_confidence",
    "coerce_category",
    "can_transition",
    "statuses_before",
    "TriageConfig",
    "KeywordHeuristics",
    "TriagePromptBuilder",
]
