"""
Triage Domain Entities
======================

Domain entities for the ticket triage module.

Contains pure Python business objects for tickets, triage results,
suggestions, audit entries and the per-run workflow context.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from helpdesk_triage.config import (
    TicketCategory, TicketStatus, AuthorType,
    VALID_CATEGORIES, STATUS_ORDER
)
from helpdesk_triage.core import WorkflowStateException

MAX_CITATIONS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp_confidence(value: Any, default: float) -> float:
    """Coerce ``value`` to a float in [0, 1], using ``default`` if it is not numeric."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if value != value:  # NaN
        return default
    return max(0.0, min(1.0, float(value)))


def coerce_category(value: Any) -> str:
    """Map anything outside the fixed category set to ``other``."""
    if isinstance(value, str) and value.strip().lower() in VALID_CATEGORIES:
        return value.strip().lower()
    return TicketCategory.OTHER


def status_rank(status: str) -> int:
    """Forward rank of a ticket status (open=0 ... closed=4)."""
    try:
        return STATUS_ORDER.index(status)
    except ValueError:
        raise ValueError(f"Unknown ticket status: {status}")


def can_transition(current: str, target: str) -> bool:
    """Statuses only move forward; there is no reopen."""
    return status_rank(target) > status_rank(current)


def statuses_before(target: str) -> List[str]:
    """Statuses from which ``target`` is a legal forward move."""
    return STATUS_ORDER[:status_rank(target)]


@dataclass(frozen=True)
class Reply:
    """A reply on a ticket. Immutable once appended."""
    content: str
    author_id: str
    author_type: AuthorType
    created_at: datetime = field(default_factory=_utcnow)
    id: Optional[str] = None


@dataclass
class Ticket:
    """
    Support ticket entity.

    Mutated only by reply-append, assignment and the guarded status
    transitions; never hard-deleted by the triage core.
    """
    id: str
    title: str
    description: str
    category: TicketCategory
    status: TicketStatus
    created_by: str
    created_at: datetime
    assignee: Optional[str] = None
    replies: List[Reply] = field(default_factory=list)
    attachment_urls: List[str] = field(default_factory=list)
    updated_at: Optional[datetime] = None

    @property
    def full_text(self) -> str:
        """Title and description as sent to the provider and retriever."""
        return f"{self.title}\n{self.description}"


@dataclass
class Article:
    """Knowledge base article as seen by the triage workflow."""
    id: str
    title: str
    body: str
    tags: List[str] = field(default_factory=list)
    status: str = "published"

    MIN_QUERY_WORD_LENGTH = 3

    def relevance_score(self, query: str) -> int:
        """
        Keyword relevance of this article for ``query``.

        Each query word scores 10 if contained in a title word, 8 if
        contained in a tag and 1 if contained in a body word. Words shorter
        than three characters are ignored.
        """
        title_words = self.title.lower().split()
        body_words = self.body.lower().split()
        tags = [tag.lower() for tag in self.tags]

        score = 0
        for word in set(query.lower().split()):
            if len(word) < self.MIN_QUERY_WORD_LENGTH:
                continue
            if any(word in title_word for title_word in title_words):
                score += 10
            if any(word in tag for tag in tags):
                score += 8
            if any(word in body_word for body_word in body_words):
                score += 1
        return score


@dataclass
class ScoredArticle:
    """Retriever hit: an article with its relevance score."""
    article: Article
    score: float


@dataclass
class ClassificationResult:
    """
    Result of ticket classification.

    Category is always one of the fixed categories and confidence always
    lies in [0, 1]; out-of-range provider output is coerced on construction.
    """
    predicted_category: TicketCategory
    confidence: float

    def __post_init__(self):
        self.predicted_category = coerce_category(self.predicted_category)
        self.confidence = clamp_confidence(self.confidence, 0.0)


@dataclass
class DraftResult:
    """Drafted reply with up to three cited article ids."""
    draft_reply: str
    citations: List[str]
    confidence: float

    def __post_init__(self):
        self.citations = [str(c) for c in self.citations][:MAX_CITATIONS]
        self.confidence = clamp_confidence(self.confidence, 0.0)


@dataclass
class ModelInfo:
    """Which provider/model produced a suggestion and how long the run took."""
    provider: str
    model: str
    prompt_version: str
    latency_ms: int
    stub_mode: bool = False


@dataclass
class Suggestion:
    """
    Latest triage outcome for a ticket (one per ticket, overwritten on rerun).
    """
    ticket_id: str
    predicted_category: TicketCategory
    article_ids: List[str]
    draft_reply: str
    confidence: float
    auto_closed: bool
    model_info: ModelInfo
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def confidence_level(self) -> str:
        """Coarse bucket used by review queues."""
        if self.confidence >= 0.9:
            return "very_high"
        if self.confidence >= 0.8:
            return "high"
        if self.confidence >= 0.6:
            return "medium"
        if self.confidence >= 0.4:
            return "low"
        return "very_low"


@dataclass(frozen=True)
class AuditEntry:
    """Append-only audit record of one workflow or review action."""
    ticket_id: str
    trace_id: str
    actor: str
    action: str
    meta: Dict[str, Any]
    timestamp: datetime
    id: Optional[int] = None


class WorkflowState(str, Enum):
    """States of one triage run."""
    PLANNING = "planning"
    CLASSIFYING = "classifying"
    RETRIEVING = "retrieving"
    DRAFTING = "drafting"
    DECIDING = "deciding"
    COMPLETED = "completed"
    FAILED = "failed"


WORKFLOW_SEQUENCE = [
    WorkflowState.PLANNING,
    WorkflowState.CLASSIFYING,
    WorkflowState.RETRIEVING,
    WorkflowState.DRAFTING,
    WorkflowState.DECIDING,
    WorkflowState.COMPLETED,
]
TERMINAL_STATES = (WorkflowState.COMPLETED, WorkflowState.FAILED)


@dataclass
class WorkflowContext:
    """
    Working state of a single triage run.

    Owned by exactly one run; the terminal snapshot is returned to the caller.
    """
    ticket_id: str
    trace_id: str
    current_state: WorkflowState = WorkflowState.PLANNING
    predicted_category: Optional[str] = None
    confidence: Optional[float] = None
    retrieved_article_ids: List[str] = field(default_factory=list)
    draft_reply: Optional[str] = None
    citations: List[str] = field(default_factory=list)
    model_latency_ms: Optional[int] = None
    auto_closed: bool = False
    error_message: Optional[str] = None
    state_history: List[WorkflowState] = field(default_factory=lambda: [WorkflowState.PLANNING])

    @property
    def is_terminal(self) -> bool:
        return self.current_state in TERMINAL_STATES

    @property
    def succeeded(self) -> bool:
        return self.current_state == WorkflowState.COMPLETED

    def advance_to(self, state: WorkflowState) -> None:
        """Move to the next state in sequence; skipping or going back is illegal."""
        if self.is_terminal:
            raise WorkflowStateException(self.current_state.value, state.value)
        position = WORKFLOW_SEQUENCE.index(self.current_state)
        if state != WORKFLOW_SEQUENCE[position + 1]:
            raise WorkflowStateException(self.current_state.value, state.value)
        self.current_state = state
        self.state_history.append(state)

    def fail(self, error_message: str) -> None:
        """Enter FAILED from any non-terminal state."""
        if self.is_terminal:
            raise WorkflowStateException(self.current_state.value, WorkflowState.FAILED.value)
        self.error_message = error_message
        self.current_state = WorkflowState.FAILED
        self.state_history.append(WorkflowState.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["current_state"] = self.current_state.value
        data["state_history"] = [s.value for s in self.state_history]
        return data
