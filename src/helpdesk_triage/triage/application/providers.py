"""
Text Generation Providers
=========================

Classification and reply drafting behind one interface, in two variants:

- ``StubTextGenerationProvider``: offline keyword heuristics, fully
  reproducible for the same input
- ``LLMTextGenerationProvider``: chat completion with bounded retry and
  fallback values for unparseable responses

``build_text_generation_provider`` picks the variant from settings once at
startup.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from helpdesk_triage.config import TicketCategory
from helpdesk_triage.core import LLMException
from helpdesk_triage.shared.infrastructure.logging import get_logger
from helpdesk_triage.shared.infrastructure.retry import RetryPolicy, retry_async
from helpdesk_triage.triage.application.services import ILLMClient
from helpdesk_triage.triage.domain import (
    Article, ClassificationResult, DraftResult, KeywordHeuristics,
    TriagePromptBuilder, MAX_CITATIONS, clamp_confidence, coerce_category
)

logger = get_logger(__name__)


class ITextGenerationProvider(ABC):
    """Interface for ticket classification and reply drafting."""

    provider_name: str = "unknown"
    model_name: str = "unknown"

    @abstractmethod
    async def classify(self, text: str) -> ClassificationResult:
        """Assign one of the fixed categories with a confidence in [0, 1]."""

    @abstractmethod
    async def draft(self, text: str, articles: Sequence[Article]) -> DraftResult:
        """Draft a reply citing at most three of ``articles``."""

    @abstractmethod
    def is_stub_mode(self) -> bool:
        """True for the offline variant."""


class StubTextGenerationProvider(ITextGenerationProvider):
    """
    Deterministic offline provider.

    Classification is keyword scoring (see ``KeywordHeuristics``); drafts are
    assembled from category templates picked by a digest of the ticket text.
    """

    provider_name = "stub"
    model_name = "keyword-heuristics"

    GREETINGS = {
        TicketCategory.BILLING: (
            "Dear Valued Customer,\n\nThank you for reaching out regarding your billing inquiry. "
            "I've carefully reviewed your account and am here to help resolve this matter promptly.",
            "Hello,\n\nI understand you have a billing concern, and I want to ensure we address "
            "this properly. Let me guide you through the resolution process.",
            "Dear Customer,\n\nThank you for contacting us about your payment inquiry. I'm committed "
            "to helping you resolve this billing matter efficiently.",
        ),
        TicketCategory.TECH: (
            "Hello,\n\nI've reviewed the technical issue you're experiencing. Our technical team has "
            "identified the best approach to resolve this problem.",
            "Dear User,\n\nThank you for reporting this technical concern. I'll walk you through the "
            "recommended solution to get everything working smoothly again.",
            "Hi there,\n\nI understand the technical difficulty you're facing. Let me provide you with "
            "a step-by-step solution to resolve this issue.",
        ),
        TicketCategory.SHIPPING: (
            "Dear Customer,\n\nThank you for your shipping inquiry. I've checked your order status and "
            "have important information to share with you.",
            "Hello,\n\nI understand your concern about your delivery. Let me provide you with a "
            "comprehensive update on your shipment status.",
            "Dear Valued Customer,\n\nThank you for contacting us about your package. I'm here to help "
            "track down your shipment and provide next steps.",
        ),
        TicketCategory.OTHER: (
            "Dear Customer,\n\nThank you for reaching out to our support team. I'm here to assist you "
            "with your inquiry and provide the best possible solution.",
            "Hello,\n\nI've carefully reviewed your request and am ready to help you resolve this "
            "matter. Here's how we can proceed.",
            "Dear Valued Customer,\n\nThank you for contacting our support team. I'm committed to "
            "providing you with excellent service and a prompt resolution.",
        ),
    }

    ACTION_STEPS = {
        TicketCategory.BILLING: (
            "Verify your account details and ensure all information is current and accurate",
            "Review recent transactions and billing statements for any discrepancies",
            "Check your payment method status and update if necessary",
            "Contact our billing department if you notice any unauthorized charges",
        ),
        TicketCategory.TECH: (
            "Clear your browser cache and cookies, then restart your browser",
            "Verify your internet connection stability and try a different network if available",
            "Try accessing the service from a different device or browser",
            "Document any error messages or codes for our technical team",
        ),
        TicketCategory.SHIPPING: (
            "Verify the shipping address provided matches your current location",
            "Check the latest tracking information for real-time updates",
            "Contact the shipping carrier directly for delivery-specific inquiries",
            "Reach out to us if the package shows as delivered but you haven't received it",
        ),
        TicketCategory.OTHER: (
            "Review our FAQ section for immediate answers",
            "Check your account settings and preferences in your dashboard",
            "Gather any relevant documentation or screenshots that might help",
            "Contact our specialized support team for personalized assistance",
        ),
    }

    NOTES = {
        TicketCategory.BILLING: (
            "Please have your account information ready when contacting us",
            "Billing inquiries are typically resolved within 1-2 business days",
            "You can view your billing history in your account dashboard",
        ),
        TicketCategory.TECH: (
            "Try clearing your browser cache if experiencing web-related issues",
            "Include error messages or screenshots when reporting technical problems",
            "Our technical team monitors system status 24/7",
        ),
        TicketCategory.SHIPPING: (
            "Tracking updates may take 24-48 hours to reflect new information",
            "Contact the carrier directly for delivery-specific questions",
            "We can assist with replacement orders if packages are lost or damaged",
        ),
        TicketCategory.OTHER: (
            "Our support team is available Monday-Friday, 9 AM - 6 PM EST",
            "For urgent matters, please use our priority support channel",
            "You can track the status of your request in your account dashboard",
        ),
    }

    def is_stub_mode(self) -> bool:
        return True

    def _classify(self, text: str) -> ClassificationResult:
        category, confidence, scores = KeywordHeuristics.classify(text)
        logger.debug(
            "Stub classification",
            extra={"category": category, "confidence": confidence, "scores": scores}
        )
        return ClassificationResult(predicted_category=category, confidence=confidence)

    async def classify(self, text: str) -> ClassificationResult:
        return self._classify(text)

    def _action_steps(self, category: str, articles: Sequence[Article]) -> List[str]:
        steps = list(self.ACTION_STEPS[category])
        if articles:
            titles = " and ".join(article.title for article in articles[:2])
            steps.append(f"Review the following helpful resources: {titles}")
        return steps[:4]

    def _follow_up(self, confidence: float) -> str:
        if confidence > 0.8:
            return (
                "This solution should resolve your issue completely. If you have any questions "
                "about these steps or need further clarification, please don't hesitate to reach out."
            )
        if confidence > 0.6:
            return (
                "Please try these recommended steps and let us know if the issue persists. "
                "We're here to provide additional assistance if needed."
            )
        return (
            "I've provided some initial guidance based on your inquiry. If these suggestions "
            "don't address your specific situation, please provide more details so we can "
            "offer more targeted assistance."
        )

    async def draft(self, text: str, articles: Sequence[Article]) -> DraftResult:
        classification = self._classify(text)
        category = classification.predicted_category

        greetings = self.GREETINGS[category]
        lines = [greetings[KeywordHeuristics.stable_index(text, len(greetings))], ""]

        lines.append("**Recommended Solution:**" if articles else "**Next Steps:**")
        lines.append("")
        for idx, step in enumerate(self._action_steps(category, articles), 1):
            lines.append(f"{idx}. {step}")
        lines.append("")

        if articles:
            lines.append("**Additional Resources:**")
            lines.append("")
            for article in articles[:MAX_CITATIONS]:
                lines.append(f"- [{article.title}](#kb-article-{article.id})")
            lines.append("")

        lines.append("**Important Notes:**")
        lines.append("")
        lines.extend(f"- {note}" for note in self.NOTES[category])
        lines.append("")

        lines.append("**Follow-up:**")
        lines.append("")
        lines.append(self._follow_up(classification.confidence))
        lines.append("")
        lines.append("Thank you for choosing our service!")
        lines.append("")
        lines.append("Best regards,")
        lines.append("**Customer Support Team**")

        confidence = KeywordHeuristics.draft_confidence(
            classification.confidence, len(articles), len(text)
        )
        return DraftResult(
            draft_reply="\n".join(lines),
            citations=[article.id for article in articles[:MAX_CITATIONS]],
            confidence=confidence
        )


def _extract_json(content: str) -> dict:
    """Parse a JSON object from a completion, tolerating fenced code blocks."""
    text = content.strip()
    try:
        if "```json" in text:
            text = text.split("```json")[1].split("```")[0].strip()
        elif "```" in text:
            text = text.split("```")[1].split("```")[0].strip()
        data = json.loads(text)
    except (json.JSONDecodeError, IndexError):
        return {}
    return data if isinstance(data, dict) else {}


class LLMTextGenerationProvider(ITextGenerationProvider):
    """
    Network-backed provider.

    Upstream errors are retried with the provider policy and then propagate.
    A response that is not the expected JSON never raises: missing or invalid
    fields fall back to fixed values.
    """

    provider_name = "llm"

    CLASSIFY_POLICY = RetryPolicy(
        max_retries=2, initial_delay=0.3, backoff_factor=2.0, max_delay=2.0, timeout=12.0
    )
    DRAFT_POLICY = RetryPolicy(
        max_retries=2, initial_delay=0.3, backoff_factor=2.0, max_delay=2.0, timeout=15.0
    )

    CLASSIFY_FALLBACK_CONFIDENCE = 0.6
    DRAFT_FALLBACK_CONFIDENCE = 0.7

    def __init__(
        self,
        llm_client: ILLMClient,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        classify_policy: Optional[RetryPolicy] = None,
        draft_policy: Optional[RetryPolicy] = None
    ):
        self._llm = llm_client
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._classify_policy = classify_policy or self.CLASSIFY_POLICY
        self._draft_policy = draft_policy or self.DRAFT_POLICY
        self.model_name = getattr(llm_client, "model", "unknown")

    def is_stub_mode(self) -> bool:
        return False

    async def _complete(self, messages: List[dict], operation: str, policy: RetryPolicy) -> str:
        response = await retry_async(
            lambda: self._llm.chat_completion(
                messages=messages,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                operation=operation
            ),
            policy,
            retry_on=(LLMException, asyncio.TimeoutError),
            operation_name=f"llm_{operation}"
        )
        return response.content

    async def classify(self, text: str) -> ClassificationResult:
        content = await self._complete(
            TriagePromptBuilder.build_classify_messages(text), "classification", self._classify_policy
        )
        data = _extract_json(content)
        if not data:
            logger.warning("Unparseable classification response, using fallback")

        return ClassificationResult(
            predicted_category=coerce_category(data.get("predictedCategory")),
            confidence=clamp_confidence(data.get("confidence"), self.CLASSIFY_FALLBACK_CONFIDENCE)
        )

    async def draft(self, text: str, articles: Sequence[Article]) -> DraftResult:
        content = await self._complete(
            TriagePromptBuilder.build_draft_messages(text, articles), "draft", self._draft_policy
        )
        data = _extract_json(content)
        if not data:
            logger.warning("Unparseable draft response, using fallback")

        draft_reply: Any = data.get("draftReply")
        if not isinstance(draft_reply, str) or not draft_reply.strip():
            draft_reply = TriagePromptBuilder.fallback_draft(articles)

        citations = data.get("citations")
        if not isinstance(citations, list):
            citations = [article.id for article in articles[:MAX_CITATIONS]]

        return DraftResult(
            draft_reply=draft_reply,
            citations=citations,
            confidence=clamp_confidence(data.get("confidence"), self.DRAFT_FALLBACK_CONFIDENCE)
        )


def build_text_generation_provider(
    config,
    llm_client: Optional[ILLMClient] = None
) -> ITextGenerationProvider:
    """
    Select the provider variant from configuration.

    Args:
        config: Settings carrying ``llm_provider``/``stub_mode`` and LLM options
        llm_client: Chat client for the network variant; built from ``config``
            when omitted

    Raises:
        ConfigurationException: If the network variant is selected without credentials
    """
    if config.use_stub_provider:
        return StubTextGenerationProvider()

    if llm_client is None:
        from helpdesk_triage.triage.infrastructure.external import LLMClientAdapter
        llm_client = LLMClientAdapter(config=config)

    return LLMTextGenerationProvider(
        llm_client,
        temperature=config.llm_temperature,
        max_tokens=config.llm_max_tokens
    )
