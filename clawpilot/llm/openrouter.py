"""OpenRouter implementations of the model providers."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from clawpilot.config import Settings
from clawpilot.llm.base import EmbeddingProvider, LLMProvider
from clawpilot.models import LLMResponse, LLMToolCall

_LOGGER = logging.getLogger(__name__)


class OpenRouterProvider(LLMProvider):
    """LLM provider using OpenRouter's OpenAI-compatible chat endpoint.

    Failures surface as ``httpx.HTTPError``; nothing is retried here.
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._settings.openrouter_base_url,
            timeout=httpx.Timeout(self._settings.request_timeout_seconds),
            headers={
                "Authorization": f"Bearer {self._settings.openrouter_api_key}",
                "Content-Type": "application/json",
            },
            transport=self._transport,
        )

    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        payload: dict[str, Any] = {
            "model": self._settings.openrouter_model,
            "messages": messages,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        if max_tokens:
            payload["max_tokens"] = max_tokens

        async with self._client() as client:
            response = await client.post("/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()

        choice = data["choices"][0]["message"]
        finish_reason = data["choices"][0].get("finish_reason")
        content = choice.get("content") or ""
        _LOGGER.info(
            "LLM response: finish_reason=%r content=%r tool_calls=%r",
            finish_reason,
            content[:200],
            choice.get("tool_calls"),
        )

        parsed_tool_calls: list[LLMToolCall] = []
        for tool_call in choice.get("tool_calls") or []:
            function_data = tool_call.get("function", {})
            parsed_tool_calls.append(
                LLMToolCall(
                    name=function_data.get("name", ""),
                    arguments=_safe_json_loads(function_data.get("arguments", "{}")),
                    call_id=tool_call.get("id"),
                )
            )

        return LLMResponse(content=content, tool_calls=parsed_tool_calls, raw=data)

    async def ping(self) -> None:
        """Raise unless the API key is accepted."""

        async with self._client() as client:
            response = await client.get("/models", params={"limit": 1})
            response.raise_for_status()


class OpenRouterEmbeddings(EmbeddingProvider):
    """Embeddings through OpenRouter's OpenAI-compatible endpoint."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport

    async def embed(self, text: str) -> list[float]:
        async with httpx.AsyncClient(
            base_url=self._settings.openrouter_base_url,
            timeout=httpx.Timeout(self._settings.request_timeout_seconds),
            transport=self._transport,
        ) as client:
            response = await client.post(
                "/embeddings",
                headers={"Authorization": f"Bearer {self._settings.openrouter_api_key}"},
                json={"model": self._settings.embedding_model, "input": text},
            )
            response.raise_for_status()
            data = response.json()
        return [float(v) for v in data["data"][0]["embedding"]]


def _safe_json_loads(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
