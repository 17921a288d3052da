import json

import httpx
import pytest

from clawpilot.channels.base import TransportError
from clawpilot.channels.telegram import TelegramChannel, chunk_text, should_respond_in_group
from clawpilot.config import Settings


def _settings(**overrides) -> Settings:
    values = {"TELEGRAM_BOT_TOKEN": "123:abc", "OPENROUTER_API_KEY": "key"}
    values.update(overrides)
    return Settings(**values)


def _update(update_id: int, text: str, chat_id: int = 1001, chat_type: str = "private", **extra) -> dict:
    message = {
        "message_id": update_id * 10,
        "date": 1_700_000_000,
        "chat": {"id": chat_id, "type": chat_type, "title": "Family" if chat_type != "private" else None},
        "from": {"id": 42, "first_name": "Alice", "is_bot": False},
        "text": text,
        **extra,
    }
    return {"update_id": update_id, "message": message}


class Recorder:
    """Scripted Telegram API that records every call."""

    def __init__(self, handler=None) -> None:
        self.calls: list[tuple[str, dict]] = []
        self._handler = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        payload = json.loads(request.content or b"{}")
        self.calls.append((method, payload))
        if self._handler is not None:
            return self._handler(method, payload)
        return httpx.Response(200, json={"ok": True, "result": True})


def _channel(recorder: Recorder, **overrides) -> TelegramChannel:
    return TelegramChannel(_settings(**overrides), transport=httpx.MockTransport(recorder))


def test_chunk_text_short_text_is_single_chunk():
    assert list(chunk_text("hello", 10)) == ["hello"]


def test_chunk_text_prefers_paragraph_breaks():
    text = "a" * 30 + "\n\n" + "b" * 30

    assert list(chunk_text(text, 40)) == ["a" * 30, "b" * 30]


def test_chunk_text_hard_splits_without_breaks():
    chunks = list(chunk_text("x" * 25, 10))

    assert chunks == ["x" * 10, "x" * 10, "x" * 5]


def test_should_respond_in_group():
    mention = {"chat": {"type": "group"}, "text": "hey @ClawPilotBot", "entities": [{"type": "mention"}]}
    other_mention = {"chat": {"type": "group"}, "text": "hey @someone", "entities": [{"type": "mention"}]}
    reply_to_bot = {"chat": {"type": "group"}, "text": "thanks", "reply_to_message": {"from": {"is_bot": True}}}
    chatter = {"chat": {"type": "supergroup"}, "text": "lunch?"}

    assert should_respond_in_group(mention, "@ClawPilotBot")
    assert not should_respond_in_group(other_mention, "@ClawPilotBot")
    assert should_respond_in_group(reply_to_bot, "@ClawPilotBot")
    assert not should_respond_in_group(chatter, "@ClawPilotBot")
    assert should_respond_in_group({"chat": {"type": "private"}, "text": "hi"}, "@ClawPilotBot")


def test_to_message_normalizes_private_update():
    channel = _channel(Recorder())

    message = channel._to_message(_update(7, "Hello"))

    assert message.conversation_key == "1001"
    assert message.message_id == "70"
    assert message.sender_name == "Alice"
    assert message.sender_id == "42"
    assert message.text == "Hello"
    assert message.is_group is False
    assert message.group_name is None


def test_to_message_filters_unlisted_chats_and_non_text():
    channel = _channel(Recorder(), ALLOWED_CHAT_IDS="1001, 2002")

    assert channel._to_message(_update(1, "hi", chat_id=3003)) is None
    assert channel._to_message({"update_id": 2, "message": {"chat": {"id": 1001}, "sticker": {}}}) is None
    assert channel._to_message(_update(3, "hi", chat_id=2002)) is not None


def test_to_message_group_requires_address():
    channel = _channel(Recorder())

    ignored = channel._to_message(_update(1, "lunch?", chat_id=-5, chat_type="group"))
    addressed = channel._to_message(
        _update(2, "@ClawPilotBot lunch?", chat_id=-5, chat_type="group", entities=[{"type": "mention"}])
    )

    assert ignored is None
    assert addressed.is_group is True
    assert addressed.group_name == "Family"


@pytest.mark.asyncio
async def test_send_text_replies_with_markdown():
    recorder = Recorder()
    channel = _channel(recorder)

    assert await channel.send_text("1001", "*hi*", "70")

    assert recorder.calls == [
        (
            "sendMessage",
            {"chat_id": "1001", "text": "*hi*", "reply_parameters": {"message_id": 70}, "parse_mode": "Markdown"},
        )
    ]


@pytest.mark.asyncio
async def test_send_text_falls_back_to_plain_text():
    def handler(method, payload):
        if payload.get("parse_mode") == "Markdown":
            return httpx.Response(400, json={"ok": False, "description": "can't parse entities"})
        return httpx.Response(200, json={"ok": True, "result": {}})

    recorder = Recorder(handler)

    assert await _channel(recorder).send_text("1001", "snake_case_name")

    assert [("parse_mode" in payload) for _, payload in recorder.calls] == [True, False]


@pytest.mark.asyncio
async def test_send_text_chunks_and_replies_only_on_first(monkeypatch):
    monkeypatch.setattr("clawpilot.channels.telegram._MIN_SEND_INTERVAL_SECONDS", 0.0)
    recorder = Recorder()
    channel = _channel(recorder, MAX_RESPONSE_LENGTH="10")

    assert await channel.send_text("1001", "x" * 25, "70")

    assert [len(payload["text"]) for _, payload in recorder.calls] == [10, 10, 5]
    assert ["reply_parameters" in payload for _, payload in recorder.calls] == [True, False, False]


@pytest.mark.asyncio
async def test_send_text_reports_failure_and_refuses_unlisted_chat():
    def handler(method, payload):
        return httpx.Response(403, json={"ok": False, "description": "bot was blocked"})

    recorder = Recorder(handler)
    channel = _channel(recorder, ALLOWED_CHAT_IDS="1001")

    assert await channel.send_text("1001", "hello") is False
    calls_after_failure = len(recorder.calls)
    assert await channel.send_text("9999", "hello") is False
    assert len(recorder.calls) == calls_after_failure


@pytest.mark.asyncio
async def test_send_typing_raises_on_api_error():
    recorder = Recorder(lambda method, payload: httpx.Response(429, json={"ok": False}))

    with pytest.raises(TransportError):
        await _channel(recorder).send_typing("1001")

    assert recorder.calls == [("sendChatAction", {"chat_id": "1001", "action": "typing"})]


@pytest.mark.asyncio
async def test_poll_messages_skips_backlog_and_advances_offset():
    def handler(method, payload):
        if payload.get("offset") == -1:
            return httpx.Response(200, json={"ok": True, "result": [_update(5, "old")]})
        if payload.get("offset") == 6:
            return httpx.Response(200, json={"ok": True, "result": [_update(6, "new")]})
        return httpx.Response(200, json={"ok": True, "result": []})

    recorder = Recorder(handler)
    messages = _channel(recorder).poll_messages()

    first = await messages.__anext__()
    await messages.aclose()

    assert first.text == "new"
    assert recorder.calls[1][1]["offset"] == 6


@pytest.mark.asyncio
async def test_send_text_returns_false_on_non_json_error_body():
    recorder = Recorder(lambda method, payload: httpx.Response(502, text="<html>Bad Gateway</html>"))

    assert await _channel(recorder).send_text("1001", "hello") is False


@pytest.mark.asyncio
async def test_call_wraps_non_json_body_in_transport_error():
    recorder = Recorder(lambda method, payload: httpx.Response(502, text="<html>Bad Gateway</html>"))

    with pytest.raises(TransportError, match=r"non-JSON body \(502\)"):
        await _channel(recorder).get_me()


@pytest.mark.asyncio
async def test_poll_messages_survives_non_json_error_body(monkeypatch):
    monkeypatch.setattr("clawpilot.channels.telegram._POLL_RETRY_SECONDS", 0.0)
    responses = iter(
        [
            httpx.Response(200, json={"ok": True, "result": []}),
            httpx.Response(502, text="<html>Bad Gateway</html>"),
            httpx.Response(200, json={"ok": True, "result": [_update(9, "after outage")]}),
        ]
    )
    recorder = Recorder(lambda method, payload: next(responses))
    messages = _channel(recorder).poll_messages()

    message = await messages.__anext__()
    await messages.aclose()

    assert message.text == "after outage"
    assert [method for method, _ in recorder.calls] == ["getUpdates"] * 3
