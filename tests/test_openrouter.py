import json

import httpx
import pytest

from clawpilot.config import Settings
from clawpilot.llm.openrouter import OpenRouterEmbeddings, OpenRouterProvider


def _settings() -> Settings:
    return Settings(TELEGRAM_BOT_TOKEN="t", OPENROUTER_API_KEY="secret", OPENROUTER_MODEL="test/model")


@pytest.mark.asyncio
async def test_generate_parses_tool_calls():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "choices": [
                    {
                        "finish_reason": "tool_calls",
                        "message": {
                            "content": None,
                            "tool_calls": [
                                {
                                    "id": "call-1",
                                    "function": {"name": "list_tasks", "arguments": '{"chat_id": "1"}'},
                                },
                                {"id": "call-2", "function": {"name": "broken", "arguments": "{oops"}},
                            ],
                        },
                    }
                ]
            },
        )

    provider = OpenRouterProvider(_settings(), transport=httpx.MockTransport(handler))
    tools = [{"type": "function", "function": {"name": "list_tasks"}}]

    response = await provider.generate([{"role": "user", "content": "hi"}], tools=tools, max_tokens=64)

    assert response.content == ""
    assert [(c.name, c.arguments, c.call_id) for c in response.tool_calls] == [
        ("list_tasks", {"chat_id": "1"}, "call-1"),
        ("broken", {}, "call-2"),
    ]
    body = json.loads(seen[0].content)
    assert seen[0].url.path.endswith("/chat/completions")
    assert seen[0].headers["Authorization"] == "Bearer secret"
    assert body["model"] == "test/model"
    assert body["tool_choice"] == "auto"
    assert body["max_tokens"] == 64


@pytest.mark.asyncio
async def test_generate_raises_on_http_error():
    provider = OpenRouterProvider(
        _settings(), transport=httpx.MockTransport(lambda request: httpx.Response(429, json={}))
    )

    with pytest.raises(httpx.HTTPStatusError):
        await provider.generate([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_embed_returns_vector():
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["input"] == "hello"
        return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2, 0.3]}]})

    embeddings = OpenRouterEmbeddings(_settings(), transport=httpx.MockTransport(handler))

    assert await embeddings.embed("hello") == [0.1, 0.2, 0.3]
