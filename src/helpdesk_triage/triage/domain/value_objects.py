"""
Triage Value Objects
====================

Immutable value objects and pure helpers for the triage domain.

- TriageConfig: the auto-close decision settings read at decision time
- KeywordHeuristics: the deterministic offline classifier/drafter rules
- TriagePromptBuilder: prompts for the network-backed provider
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from helpdesk_triage.config import TicketCategory
from helpdesk_triage.triage.domain.entities import Article, clamp_confidence


@dataclass(frozen=True)
class TriageConfig:
    """
    Auto-close decision configuration.

    The threshold is clamped into [0, 1] on construction.
    """
    auto_close_enabled: bool = True
    confidence_threshold: float = 0.8

    def __post_init__(self):
        object.__setattr__(
            self, "confidence_threshold",
            clamp_confidence(self.confidence_threshold, 0.8)
        )

    def should_auto_close(self, confidence: float) -> bool:
        """The single auto-close rule."""
        return self.auto_close_enabled and confidence >= self.confidence_threshold


class KeywordHeuristics:
    """
    Pure keyword rules behind the offline provider.

    No randomness: identical input always yields identical output.
    """

    KEYWORDS: Dict[str, Tuple[str, ...]] = {
        TicketCategory.BILLING: (
            "refund", "invoice", "charge", "payment", "billing", "credit", "card",
            "subscription", "plan", "cost", "fee", "price",
        ),
        TicketCategory.TECH: (
            "error", "bug", "stack", "crash", "exception", "500", "404", "not working",
            "issue", "broken", "malfunction", "glitch", "problem", "fail",
        ),
        TicketCategory.SHIPPING: (
            "delivery", "shipment", "shipping", "tracking", "package", "courier",
            "address", "delayed", "lost", "damaged",
        ),
        TicketCategory.OTHER: (
            "account", "login", "password", "profile", "settings", "general",
            "question", "inquiry",
        ),
    }

    # Highest priority first when scores tie.
    TIE_BREAK_ORDER = (TicketCategory.TECH, TicketCategory.BILLING, TicketCategory.SHIPPING)

    CREATION_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
        (TicketCategory.BILLING, ("bill", "payment", "invoice", "charge")),
        (TicketCategory.SHIPPING, ("ship", "delivery", "tracking")),
        (TicketCategory.TECH, ("bug", "error", "not working", "technical")),
    )

    @staticmethod
    def keyword_score(text: str, keywords: Sequence[str]) -> int:
        """Substring hit scores 1, whole-word hit scores 2."""
        lower = text.lower()
        score = 0
        for keyword in keywords:
            if keyword in lower:
                if re.search(rf"\b{re.escape(keyword)}\b", lower):
                    score += 2
                else:
                    score += 1
        return score

    @classmethod
    def scores(cls, text: str) -> Dict[str, int]:
        return {category: cls.keyword_score(text, words) for category, words in cls.KEYWORDS.items()}

    @staticmethod
    def confidence(max_score: int, word_count: int) -> float:
        """Base confidence from the winning score plus a length bonus, capped at 0.95."""
        if max_score >= 3:
            base = 0.85
        elif max_score >= 2:
            base = 0.75
        elif max_score >= 1:
            base = 0.65
        else:
            base = 0.5
        length_bonus = min(0.15, word_count / 80)
        return round(min(0.95, base + length_bonus), 4)

    @classmethod
    def classify(cls, text: str) -> Tuple[str, float, Dict[str, int]]:
        """Returns (category, confidence, per-category scores)."""
        scores = cls.scores(text)
        max_score = max(scores.values())
        category = TicketCategory.OTHER
        if max_score > 0:
            for candidate in cls.TIE_BREAK_ORDER:
                if scores[candidate] == max_score:
                    category = candidate
                    break
        return category, cls.confidence(max_score, len(text.split())), scores

    @classmethod
    def guess_category(cls, title: str, description: str) -> str:
        """Default category assigned to a new ticket when none was chosen."""
        content = f"{title} {description}".lower()
        for category, words in cls.CREATION_KEYWORDS:
            if any(word in content for word in words):
                return category
        return TicketCategory.OTHER

    @staticmethod
    def draft_confidence(classification_confidence: float, article_count: int, text_length: int) -> float:
        article_bonus = min(0.15, article_count * 0.05)
        length_penalty = -0.1 if text_length < 20 else 0.0
        return round(max(0.3, min(0.95, classification_confidence + article_bonus + length_penalty)), 4)

    @staticmethod
    def stable_index(text: str, size: int) -> int:
        """Deterministic pick in [0, size) derived from the text."""
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return digest[0] % size


class TriagePromptBuilder:
    """
    Builds prompts for ticket classification and reply drafting.

    All prompt text lives here; bump ``PROMPT_VERSION`` when it changes.
    """

    PROMPT_VERSION = "v1"

    CLASSIFY_SYSTEM_PROMPT = """You are a support ticket classifier.

Assign the ticket to exactly one category:
- billing: charges, refunds, invoices, subscriptions, payment methods
- tech: errors, bugs, outages, features not working
- shipping: deliveries, tracking, lost or damaged packages, addresses
- other: anything else (accounts, general questions)

Respond ONLY in JSON format:
{"predictedCategory": "billing|tech|shipping|other", "confidence": 0.0-1.0}"""

    DRAFT_SYSTEM_PROMPT = """You are a helpful customer support agent.

Draft a short, polite reply to the customer's ticket using ONLY the provided
knowledge base articles. Cite articles numerically [1], [2], [3].

Respond ONLY in JSON format:
{"draftReply": "text", "citations": ["article id", ...], "confidence": 0.0-1.0}"""

    @classmethod
    def build_classify_messages(cls, text: str) -> List[dict]:
        return [
            {"role": "system", "content": cls.CLASSIFY_SYSTEM_PROMPT},
            {"role": "user", "content": f"Ticket:\n{text}\n\nClassify this ticket (respond with JSON only):"},
        ]

    @classmethod
    def build_draft_messages(cls, text: str, articles: Sequence[Article]) -> List[dict]:
        kb = "\n\n".join(
            f"[{i}] id={article.id} {article.title}\n{article.body[:500]}"
            for i, article in enumerate(articles, 1)
        ) or "(no articles found)"
        return [
            {"role": "system", "content": cls.DRAFT_SYSTEM_PROMPT},
            {"role": "user", "content": f"Ticket:\n{text}\n\nKnowledge base:\n{kb}\n\nDraft the reply (respond with JSON only):"},
        ]

    @staticmethod
    def fallback_draft(articles: Sequence[Article]) -> str:
        """Fixed reply used when the drafted response cannot be parsed."""
        top = [article.title for article in articles[:3]]
        if not top:
            return (
                "Thank you for contacting support. We have received your request "
                "and a member of our team will follow up shortly."
            )
        listing = "\n".join(f"- {title}" for title in top)
        return (
            "Thank you for contacting support. Based on our knowledge base, "
            f"these articles should help with your request:\n{listing}\n\n"
            "If they do not resolve the issue, reply to this ticket and an agent will assist you."
        )
