"""
LLM Client Infrastructure
==========================

Wrapper for LLM providers (OpenAI, Z.AI) covering the two calls the pipeline
makes: text embeddings for chunks and queries, and the black-box chat
completion that turns grounded context into an answer.

Domain and application layers depend on ``ILLMClient`` only.
"""

import asyncio
import hashlib
import random
import time
from typing import List, Optional
from abc import ABC, abstractmethod

from openai import AsyncOpenAI
from zai import ZaiClient

from knowledge_pipeline.config import settings
from knowledge_pipeline.core import LLMException, ConfigurationException
from knowledge_pipeline.shared.infrastructure.grafana import get_grafana_exporter
from knowledge_pipeline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class EmbeddingResult:
    """Result of an embedding generation."""

    def __init__(self, embedding: List[float], model: str):
        self.embedding = embedding
        self.model = model
        self.dimension = len(embedding)


class ChatCompletionResult:
    """Result of a chat completion."""

    def __init__(
        self,
        content: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int,
        response_id: Optional[str] = None
    ):
        self.content = content
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = prompt_tokens + completion_tokens
        self.latency_ms = latency_ms
        self.response_id = response_id


class ILLMClient(ABC):
    """Interface for LLM client operations."""

    @abstractmethod
    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """Generate embedding for text."""

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """Generate chat completion."""


async def _export_usage(result: ChatCompletionResult, operation: str) -> None:
    exporter = get_grafana_exporter()
    if exporter.is_enabled():
        await exporter.export_llm_metrics(
            model=result.model,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            latency_ms=result.latency_ms,
            operation=operation
        )


class OpenAILLMClient(ILLMClient):
    """
    OpenAI client implementation.

    Provides async wrapper around OpenAI SDK operations.
    """

    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key or settings.openai_api_key
        if not self._api_key:
            raise ConfigurationException("OpenAI API key not configured")

        self._client = AsyncOpenAI(api_key=self._api_key)
        self._model = settings.llm_model
        self._embedding_model = settings.embedding_model

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """
        Generate embedding for text using OpenAI embedding model.

        Raises:
            LLMException: If embedding generation fails
        """
        try:
            response = await self._client.embeddings.create(
                model=self._embedding_model,
                input=text
            )
        except Exception as e:
            raise LLMException(f"Embedding generation failed: {str(e)}")
        return EmbeddingResult(
            embedding=response.data[0].embedding,
            model=self._embedding_model
        )

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """
        Generate chat completion.

        Args:
            messages: List of message dicts with 'role' and 'content'
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens to generate
            operation: Operation type for metrics

        Raises:
            LLMException: If completion fails
        """
        start_time = time.perf_counter()

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens
            )
        except Exception as e:
            raise LLMException(f"Chat completion failed: {str(e)}")

        result = ChatCompletionResult(
            content=response.choices[0].message.content or "",
            model=self._model,
            prompt_tokens=response.usage.prompt_tokens,
            completion_tokens=response.usage.completion_tokens,
            latency_ms=int((time.perf_counter() - start_time) * 1000),
            response_id=response.id
        )
        await _export_usage(result, operation)
        return result


class ZAIILLMClient(ILLMClient):
    """
    Z.AI SDK client implementation.

    The SDK is synchronous, so calls run in a worker thread.
    """

    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key or settings.zai_api_key
        if not self._api_key:
            raise ConfigurationException("Z.AI API key not configured")

        self._client = ZaiClient(api_key=self._api_key)
        self._model = settings.llm_model
        self._embedding_model = settings.embedding_model

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        try:
            response = await asyncio.to_thread(
                self._client.embeddings.create,
                model=self._embedding_model,
                input=text
            )
        except Exception as e:
            raise LLMException(f"Embedding generation failed: {str(e)}")
        return EmbeddingResult(
            embedding=response.data[0].embedding,
            model=self._embedding_model
        )

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        start_time = time.perf_counter()

        try:
            response = await asyncio.to_thread(
                self._client.chat.completions.create,
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens
            )
        except Exception as e:
            raise LLMException(f"Chat completion failed: {str(e)}")

        content = response.choices[0].message.content or ""
        # Z.AI doesn't always return token usage, so we estimate
        usage = getattr(response, "usage", None)
        result = ChatCompletionResult(
            content=content,
            model=self._model,
            prompt_tokens=getattr(usage, "prompt_tokens", None) or len(str(messages)) // 4,
            completion_tokens=getattr(usage, "completion_tokens", None) or len(content) // 4,
            latency_ms=int((time.perf_counter() - start_time) * 1000),
            response_id=getattr(response, "id", None)
        )
        await _export_usage(result, operation)
        return result


class MockLLMClient(ILLMClient):
    """
    Mock LLM client for testing and offline development.

    Embeddings are deterministic pseudo-random vectors seeded from the text
    hash, so identical text always maps to the identical vector.
    """

    def __init__(self, dimension: Optional[int] = None):
        self._dimension = dimension or settings.embedding_dimension

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        seed = int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:8], 16)
        rng = random.Random(seed)
        return EmbeddingResult(
            embedding=[rng.uniform(-1, 1) for _ in range(self._dimension)],
            model="mock-embedding"
        )

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        user_content = str(messages[-1].get("content", "")) if messages else ""
        content = (
            "Based on the organization's documents, the requirement is addressed by "
            "the controls described in the provided context."
            if "CONTEXT" in user_content else
            "This is a mock LLM response for testing purposes."
        )
        return ChatCompletionResult(
            content=content,
            model="mock-model",
            prompt_tokens=len(user_content) // 4,
            completion_tokens=len(content) // 4,
            latency_ms=1,
            response_id=f"mock-{hashlib.sha1(user_content.encode('utf-8')).hexdigest()[:12]}"
        )


def create_llm_client(provider: Optional[str] = None) -> ILLMClient:
    """
    Build the client for a provider name.

    ``settings.mock_llm`` forces the mock regardless of provider.
    """
    provider = (provider or settings.llm_provider).lower()
    if settings.mock_llm or provider == "mock":
        return MockLLMClient()
    if provider == "openai":
        return OpenAILLMClient()
    if provider == "zai":
        return ZAIILLMClient()
    raise ConfigurationException(f"Unknown LLM provider: {provider}")


def create_embedding_client() -> ILLMClient:
    """Client used for chunk and query embeddings (``settings.embedding_provider``)."""
    return create_llm_client(settings.embedding_provider)
