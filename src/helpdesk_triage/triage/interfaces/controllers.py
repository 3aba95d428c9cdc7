"""
Triage Controllers (API Routes)
================================

FastAPI routes for ticket intake and triage.

Controllers delegate to application services; they hold no business logic.
"""

from dataclasses import dataclass
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from helpdesk_triage.shared.infrastructure.logging import get_logger
from helpdesk_triage.triage.application import (
    AcceptSuggestionRequest,
    AuditEntryResponse,
    CreateTicketRequest,
    CreateTicketResponse,
    IAuditLogRepository,
    ISuggestionRepository,
    ITextGenerationProvider,
    ITicketRepository,
    RejectSuggestionRequest,
    SuggestionResponse,
    SuggestionReviewService,
    TicketResponse,
    WorkflowContextResponse,
    WorkflowOrchestrator,
)

logger = get_logger(__name__)

tickets_router = APIRouter(prefix="/tickets", tags=["Tickets"])
router = APIRouter(prefix="/triage", tags=["Ticket Triage"])


@dataclass
class TriageServices:
    """Wired triage components, stored on ``app.state.triage``."""
    orchestrator: WorkflowOrchestrator
    review_service: SuggestionReviewService
    ticket_repository: ITicketRepository
    suggestion_repository: ISuggestionRepository
    audit_repository: IAuditLogRepository
    provider: ITextGenerationProvider


# ========== Example payloads for Swagger ==========

CREATE_TICKET_REQUEST_EXAMPLE = {
    "title": "Refund for double charge",
    "description": "I was charged twice for order #1234",
    "created_by": "user-42"
}

TRIAGE_RESPONSE_EXAMPLE = {
    "ticket_id": "123e4567-e89b-12d3-a456-426614174000",
    "trace_id": "5f2b7c1e9d0a4b8f8e6c3a2d1b0f9e8d",
    "current_state": "completed",
    "predicted_category": "billing",
    "confidence": 0.95,
    "retrieved_article_ids": ["8a5f0c2e-3b1d-4e6f-9a7b-2c4d6e8f0a1b"],
    "citations": ["8a5f0c2e-3b1d-4e6f-9a7b-2c4d6e8f0a1b"],
    "model_latency_ms": 42,
    "auto_closed": True,
    "error_message": None,
    "state_history": ["planning", "classifying", "retrieving", "drafting", "deciding", "completed"]
}


# ========== Dependencies ==========

def get_triage_services(request: Request) -> TriageServices:
    """Get wired triage services from app state."""
    services = getattr(request.app.state, "triage", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Triage services not initialized"
        )
    return services


# ========== Route Handlers ==========

@tickets_router.post(
    "",
    response_model=CreateTicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a ticket and start triage in the background",
    responses={201: {"description": "Ticket created; triage scheduled"}},
    openapi_extra={"requestBody": {"content": {"application/json": {"example": CREATE_TICKET_REQUEST_EXAMPLE}}}}
)
async def create_ticket(
    request: Request,
    payload: CreateTicketRequest,
    services: TriageServices = Depends(get_triage_services)
):
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    ticket = await services.ticket_repository.create(
        title=payload.title,
        description=payload.description,
        created_by=payload.created_by,
        category=payload.category,
        attachment_urls=payload.attachment_urls
    )
    services.orchestrator.trigger(ticket.id)

    logger.info(
        "Ticket created, triage scheduled",
        extra={"correlation_id": correlation_id, "ticket_id": ticket.id, "category": ticket.category}
    )
    return CreateTicketResponse(ticket=TicketResponse.from_entity(ticket), triage_scheduled=True)


@tickets_router.get("/{ticket_id}", response_model=TicketResponse, summary="Get a ticket with replies")
async def get_ticket(
    ticket_id: str,
    services: TriageServices = Depends(get_triage_services)
):
    ticket = await services.ticket_repository.get_by_id(ticket_id)
    if ticket is None:
        raise HTTPException(status_code=404, detail=f"Ticket {ticket_id} not found")
    return TicketResponse.from_entity(ticket)


@router.post(
    "/{ticket_id}",
    response_model=WorkflowContextResponse,
    summary="Run triage for a ticket and wait for the result",
    description="""
    Runs the full triage workflow (classify, retrieve, draft, decide) and
    returns the terminal workflow context. A failed run is reported with
    `current_state = "failed"` and an `error_message`, never as an HTTP error.
    """,
    responses={200: {"content": {"application/json": {"example": TRIAGE_RESPONSE_EXAMPLE}}}}
)
async def run_triage(
    request: Request,
    ticket_id: str,
    services: TriageServices = Depends(get_triage_services)
):
    context = await services.orchestrator.triage(ticket_id)
    logger.info(
        "Triage requested",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "ticket_id": ticket_id,
            "trace_id": context.trace_id,
            "state": context.current_state.value
        }
    )
    return WorkflowContextResponse.from_context(context)


@router.get("/suggestions", response_model=List[SuggestionResponse], summary="List stored suggestions")
async def list_suggestions(
    auto_closed: Optional[bool] = Query(None),
    min_confidence: Optional[float] = Query(None, ge=0.0, le=1.0),
    max_confidence: Optional[float] = Query(None, ge=0.0, le=1.0),
    limit: int = Query(50, ge=1, le=200),
    services: TriageServices = Depends(get_triage_services)
):
    suggestions = await services.suggestion_repository.list(
        auto_closed=auto_closed,
        min_confidence=min_confidence,
        max_confidence=max_confidence,
        limit=limit
    )
    return [SuggestionResponse.from_entity(s) for s in suggestions]


@router.get("/{ticket_id}/suggestion", response_model=SuggestionResponse, summary="Get the ticket's suggestion")
async def get_suggestion(
    ticket_id: str,
    services: TriageServices = Depends(get_triage_services)
):
    suggestion = await services.suggestion_repository.find_by_ticket(ticket_id)
    if suggestion is None:
        raise HTTPException(status_code=404, detail=f"No suggestion for ticket {ticket_id}")
    return SuggestionResponse.from_entity(suggestion)


@router.get("/{ticket_id}/audit", response_model=List[AuditEntryResponse], summary="Audit trail of a ticket")
async def get_audit_trail(
    ticket_id: str,
    services: TriageServices = Depends(get_triage_services)
):
    entries = await services.audit_repository.list_by_ticket(ticket_id)
    return [AuditEntryResponse.from_entity(e) for e in entries]


@router.post(
    "/{ticket_id}/suggestion/accept",
    response_model=TicketResponse,
    summary="Send the suggested reply and resolve the ticket"
)
async def accept_suggestion(
    ticket_id: str,
    payload: AcceptSuggestionRequest,
    services: TriageServices = Depends(get_triage_services)
):
    ticket = await services.review_service.accept(
        ticket_id, payload.agent_id, edited_reply=payload.edited_reply
    )
    if ticket is None:
        raise HTTPException(status_code=404, detail=f"Ticket or suggestion {ticket_id} not found")
    return TicketResponse.from_entity(ticket)


@router.post(
    "/{ticket_id}/suggestion/reject",
    response_model=TicketResponse,
    summary="Reject the suggestion and hand the ticket to a human"
)
async def reject_suggestion(
    ticket_id: str,
    payload: RejectSuggestionRequest,
    services: TriageServices = Depends(get_triage_services)
):
    ticket = await services.review_service.reject(ticket_id, payload.agent_id)
    if ticket is None:
        raise HTTPException(status_code=404, detail=f"Ticket or suggestion {ticket_id} not found")
    return TicketResponse.from_entity(ticket)


# Router exports
triage_router = router
