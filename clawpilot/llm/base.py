"""LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from clawpilot.models import LLMResponse


class LLMProvider(ABC):
    """Abstract model provider used by the completion service."""

    @abstractmethod
    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a model response."""


class EmbeddingProvider(ABC):
    """Abstract text embedding provider used by semantic memory."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for ``text``."""
