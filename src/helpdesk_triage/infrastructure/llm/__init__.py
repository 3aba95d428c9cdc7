"""
LLM Client Infrastructure
==========================

Chat completion backends (Z.AI, OpenAI, Groq) behind one async interface.

The triage provider only ever sends a short system + user prompt and reads
back text, so a backend is reduced to a single SDK call; timing, logging and
mapping SDK errors onto ``LLMException`` live in ``ILLMClient``. Retries are
not done here: the LLM triage provider wraps calls in its retry policy.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from openai import AsyncOpenAI
from zai import ZaiClient

from helpdesk_triage.config import Settings, settings as default_settings
from helpdesk_triage.core import LLMException, ConfigurationException
from helpdesk_triage.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

# (content, prompt_tokens, completion_tokens)
RawCompletion = Tuple[str, int, int]


@dataclass
class ChatCompletionResult:
    """Text returned by a backend plus the numbers recorded in model_info."""

    content: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    latency_ms: int
    total_tokens: int = field(init=False)

    def __post_init__(self):
        self.total_tokens = self.prompt_tokens + self.completion_tokens


class ILLMClient(ABC):
    """A chat completion backend. Subclasses implement ``_complete`` only."""

    backend: str = "unknown"
    model: str = "unknown"

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """
        Run one completion.

        Args:
            messages: ``{"role", "content"}`` dicts, system prompt first
            operation: label for logs (``triage``, ``draft``)

        Raises:
            LLMException: on any SDK or transport error
        """
        started = time.perf_counter()
        try:
            content, prompt_tokens, completion_tokens = await self._complete(
                messages, temperature, max_tokens
            )
        except LLMException:
            raise
        except Exception as e:
            raise LLMException(
                f"{self.backend} completion failed: {e}",
                {"operation": operation, "model": self.model}
            ) from e

        latency_ms = int((time.perf_counter() - started) * 1000)
        logger.debug(
            "LLM completion",
            extra={"backend": self.backend, "operation": operation, "latency_ms": latency_ms}
        )
        return ChatCompletionResult(
            content=content,
            model=self.model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms
        )

    @abstractmethod
    async def _complete(
        self, messages: List[dict], temperature: float, max_tokens: int
    ) -> RawCompletion:
        ...


class ZAIILLMClient(ILLMClient):
    """
    GLM models through the Z.AI SDK.

    The SDK is blocking, so the request runs in a worker thread.
    """

    backend = "zai"

    def __init__(self, api_key: Optional[str] = None, config: Optional[Settings] = None):
        config = config or default_settings
        api_key = api_key or config.zai_api_key
        if not api_key:
            raise ConfigurationException("Z.AI API key not configured", {"backend": self.backend})

        self._client = ZaiClient(api_key=api_key)
        self.model = config.llm_model

    async def _complete(self, messages, temperature, max_tokens) -> RawCompletion:
        response = await asyncio.to_thread(
            self._client.chat.completions.create,
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens
        )
        content = response.choices[0].message.content or ""
        # no usage block; character counts stand in for tokens
        return content, len(str(messages)), len(content)


class OpenAILLMClient(ILLMClient):
    """OpenAI models, or any OpenAI-compatible API via ``base_url``."""

    backend = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: Optional[Settings] = None,
        base_url: Optional[str] = None
    ):
        config = config or default_settings
        api_key = api_key or config.openai_api_key
        if not api_key:
            raise ConfigurationException(f"{self.backend} API key not configured", {"backend": self.backend})

        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.model = config.llm_model

    async def _complete(self, messages, temperature, max_tokens) -> RawCompletion:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens
        )
        usage = response.usage
        return (
            response.choices[0].message.content or "",
            usage.prompt_tokens if usage else 0,
            usage.completion_tokens if usage else 0,
        )


class GroqLLMClient(OpenAILLMClient):
    """Llama models on Groq's OpenAI-compatible endpoint."""

    backend = "groq"
    BASE_URL = "https://api.groq.com/openai/v1"

    def __init__(self, api_key: Optional[str] = None, config: Optional[Settings] = None):
        config = config or default_settings
        super().__init__(api_key or config.groq_api_key, config, base_url=self.BASE_URL)


class MockLLMClient(ILLMClient):
    """
    Offline backend for tests.

    Replies are served from a queue in order; a queued ``Exception``
    instance makes that call fail, and an empty queue fails every call.
    """

    backend = "mock"
    model = "mock-model"

    def __init__(self, responses: Optional[List[object]] = None):
        self._responses = list(responses or [])
        self.calls: List[dict] = []

    def queue(self, *responses: object) -> None:
        """Append replies: strings, dicts (sent as JSON) or exceptions."""
        self._responses.extend(responses)

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        self.calls.append({"messages": messages, "operation": operation})
        return await super().chat_completion(messages, temperature, max_tokens, operation)

    async def _complete(self, messages, temperature, max_tokens) -> RawCompletion:
        if not self._responses:
            raise LLMException("Mock response queue is empty")

        response = self._responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        content = response if isinstance(response, str) else json.dumps(response)
        return content, 100, len(content.split())


def build_llm_client(config: Optional[Settings] = None) -> ILLMClient:
    """
    Create the backend selected by ``llm_backend`` (zai unless openai or groq).

    Raises:
        ConfigurationException: If the selected backend has no API key
    """
    config = config or default_settings
    backends = {"openai": OpenAILLMClient, "groq": GroqLLMClient}
    return backends.get(config.llm_backend, ZAIILLMClient)(config=config)
