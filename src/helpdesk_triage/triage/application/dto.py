"""
Triage Application DTOs
========================

Data Transfer Objects for Triage API layer.

Pydantic models for request/response validation.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from helpdesk_triage.triage.domain import AuditEntry, Suggestion, Ticket, WorkflowContext


# ========== Type Aliases for Literals ==========
TicketCategoryStr = Literal["billing", "tech", "shipping", "other"]
TicketStatusStr = Literal["open", "triaged", "waiting_human", "resolved", "closed"]


# ========== Request DTOs ==========

class CreateTicketRequest(BaseModel):
    """Request model for ticket creation."""
    title: str = Field(..., min_length=1, max_length=200, description="Ticket title")
    description: str = Field(..., min_length=1, description="Ticket description")
    created_by: str = Field(..., min_length=1, description="Submitting user id")
    category: Optional[TicketCategoryStr] = Field(
        None, description="Category chosen by the submitter (guessed when omitted)"
    )
    attachment_urls: List[str] = Field(default_factory=list)

    @field_validator("description")
    @classmethod
    def validate_description_length(cls, v: str) -> str:
        """Ensure description is not too long for the LLM prompt."""
        if len(v) > 10000:
            raise ValueError("Description too long (max 10000 characters)")
        return v


class AcceptSuggestionRequest(BaseModel):
    """Request model for accepting a suggestion."""
    agent_id: str = Field(..., min_length=1)
    edited_reply: Optional[str] = Field(None, description="Replaces the draft when not blank")


class RejectSuggestionRequest(BaseModel):
    """Request model for rejecting a suggestion."""
    agent_id: str = Field(..., min_length=1)


# ========== Response DTOs ==========

class ReplyInfo(BaseModel):
    """Ticket reply in API response."""
    content: str
    author_id: str
    author_type: str
    created_at: datetime


class TicketResponse(BaseModel):
    """Response model for a ticket."""
    id: str
    title: str
    description: str
    category: TicketCategoryStr
    status: TicketStatusStr
    created_by: str
    assignee: Optional[str] = None
    replies: List[ReplyInfo] = Field(default_factory=list)
    created_at: datetime

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketResponse":
        return cls(
            id=ticket.id,
            title=ticket.title,
            description=ticket.description,
            category=ticket.category,
            status=ticket.status,
            created_by=ticket.created_by,
            assignee=ticket.assignee,
            replies=[
                ReplyInfo(
                    content=r.content,
                    author_id=r.author_id,
                    author_type=r.author_type,
                    created_at=r.created_at
                )
                for r in ticket.replies
            ],
            created_at=ticket.created_at
        )


class WorkflowContextResponse(BaseModel):
    """Snapshot of a finished triage run."""
    ticket_id: str
    trace_id: str
    current_state: str
    predicted_category: Optional[str] = None
    confidence: Optional[float] = None
    retrieved_article_ids: List[str] = Field(default_factory=list)
    draft_reply: Optional[str] = None
    citations: List[str] = Field(default_factory=list)
    model_latency_ms: Optional[int] = None
    auto_closed: bool = False
    error_message: Optional[str] = None
    state_history: List[str] = Field(default_factory=list)

    @classmethod
    def from_context(cls, context: WorkflowContext) -> "WorkflowContextResponse":
        return cls(**context.to_dict())


class ModelInfoResponse(BaseModel):
    """Provider metadata of a suggestion."""
    provider: str
    model: str
    prompt_version: str
    latency_ms: int
    stub_mode: bool = False


class SuggestionResponse(BaseModel):
    """Response model for a stored suggestion."""
    ticket_id: str
    predicted_category: TicketCategoryStr
    article_ids: List[str]
    draft_reply: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    confidence_level: str
    auto_closed: bool
    model_info: ModelInfoResponse
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, suggestion: Suggestion) -> "SuggestionResponse":
        info = suggestion.model_info
        return cls(
            ticket_id=suggestion.ticket_id,
            predicted_category=suggestion.predicted_category,
            article_ids=suggestion.article_ids,
            draft_reply=suggestion.draft_reply,
            confidence=suggestion.confidence,
            confidence_level=suggestion.confidence_level,
            auto_closed=suggestion.auto_closed,
            model_info=ModelInfoResponse(
                provider=info.provider,
                model=info.model,
                prompt_version=info.prompt_version,
                latency_ms=info.latency_ms,
                stub_mode=info.stub_mode
            ),
            created_at=suggestion.created_at,
            updated_at=suggestion.updated_at
        )


class AuditEntryResponse(BaseModel):
    """Response model for one audit entry."""
    trace_id: str
    actor: str
    action: str
    meta: Dict[str, Any]
    timestamp: datetime

    @classmethod
    def from_entity(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(
            trace_id=entry.trace_id,
            actor=entry.actor,
            action=entry.action,
            meta=entry.meta,
            timestamp=entry.timestamp
        )


class CreateTicketResponse(BaseModel):
    """Ticket creation result; triage runs in the background."""
    ticket: TicketResponse
    triage_scheduled: bool


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    environment: str
    provider: str
    stub_mode: bool
    database: str
