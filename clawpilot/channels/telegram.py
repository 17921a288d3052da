"""Telegram Bot API adapter."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Iterator

import httpx

from clawpilot.channels.base import Transport, TransportError
from clawpilot.config import Settings, allowed_chat_ids
from clawpilot.models import InboundMessage

LOGGER = logging.getLogger(__name__)

_GROUP_CHAT_TYPES = ("group", "supergroup")
_MIN_SEND_INTERVAL_SECONDS = 1.0
_POLL_RETRY_SECONDS = 5.0


class TelegramChannel(Transport):
    """Long-polling adapter around the Telegram Bot HTTP API."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._allowed_chat_ids = allowed_chat_ids(settings)
        self._transport = transport
        self._offset: int | None = None
        self._last_send: dict[str, float] = {}

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{self._settings.telegram_base_url}/bot{self._settings.telegram_bot_token}",
            timeout=httpx.Timeout(timeout),
            transport=self._transport,
        )

    async def _call(self, method: str, payload: dict[str, Any], timeout: float = 30.0) -> Any:
        async with self._client(timeout) as client:
            response = await client.post(f"/{method}", json=payload)
        try:
            data = response.json() if response.content else {}
        except ValueError as exc:
            raise TransportError(
                f"Telegram {method} returned a non-JSON body ({response.status_code})"
            ) from exc
        if not isinstance(data, dict):
            data = {}
        if response.status_code != 200 or not data.get("ok"):
            raise TransportError(
                f"Telegram {method} failed ({response.status_code}): {data.get('description', '')}"
            )
        return data.get("result")

    async def get_me(self) -> dict[str, Any]:
        return await self._call("getMe", {})

    async def poll_messages(self) -> AsyncIterator[InboundMessage]:
        """Long-poll getUpdates and yield normalized, permitted messages."""

        poll_timeout = self._settings.telegram_poll_timeout_seconds
        await self._skip_pending()
        LOGGER.info("Telegram polling started")
        while True:
            payload: dict[str, Any] = {"timeout": poll_timeout, "allowed_updates": ["message"]}
            if self._offset is not None:
                payload["offset"] = self._offset
            try:
                updates = await self._call("getUpdates", payload, timeout=poll_timeout + 10)
            except (httpx.HTTPError, TransportError) as exc:
                LOGGER.error("Telegram polling error: %s", exc)
                await asyncio.sleep(_POLL_RETRY_SECONDS)
                continue

            for update in updates or []:
                self._offset = int(update["update_id"]) + 1
                message = self._to_message(update)
                if message is not None:
                    yield message

    async def _skip_pending(self) -> None:
        try:
            updates = await self._call("getUpdates", {"offset": -1, "timeout": 0})
        except (httpx.HTTPError, TransportError) as exc:
            LOGGER.warning("Could not drop pending Telegram updates: %s", exc)
            return
        if updates:
            self._offset = int(updates[-1]["update_id"]) + 1

    def _to_message(self, update: dict[str, Any]) -> InboundMessage | None:
        raw = update.get("message")
        if not isinstance(raw, dict) or not isinstance(raw.get("text"), str):
            return None
        chat = raw.get("chat") or {}
        chat_id = str(chat.get("id", ""))
        if not self.is_allowed(chat_id):
            LOGGER.debug("Ignored message from unauthorized chat %s", chat_id)
            return None

        is_group = chat.get("type") in _GROUP_CHAT_TYPES
        if is_group and not should_respond_in_group(raw, self._settings.bot_username):
            return None

        sender = raw.get("from") or {}
        return InboundMessage(
            conversation_key=chat_id,
            message_id=str(raw["message_id"]) if "message_id" in raw else None,
            sender_name=sender.get("first_name") or "Unknown",
            sender_id=str(sender.get("id", "0")),
            text=raw["text"],
            timestamp=datetime.fromtimestamp(int(raw.get("date") or 0), tz=timezone.utc),
            is_group=is_group,
            group_name=chat.get("title") if is_group else None,
        )

    def is_allowed(self, conversation_key: str) -> bool:
        return not self._allowed_chat_ids or conversation_key in self._allowed_chat_ids

    async def send_text(self, conversation_key: str, text: str, reply_to_id: str | None = None) -> bool:
        if not self.is_allowed(conversation_key):
            LOGGER.debug("Ignored message to unauthorized chat %s", conversation_key)
            return False
        try:
            for chunk in chunk_text(text, self._settings.max_response_length):
                await self._throttle(conversation_key)
                payload: dict[str, Any] = {"chat_id": conversation_key, "text": chunk}
                if reply_to_id is not None:
                    payload["reply_parameters"] = {"message_id": int(reply_to_id)}
                try:
                    await self._call("sendMessage", {**payload, "parse_mode": "Markdown"})
                except TransportError:
                    # Model output is not always valid Markdown.
                    await self._call("sendMessage", payload)
                reply_to_id = None
        except (httpx.HTTPError, TransportError) as exc:
            LOGGER.error("Telegram send failed for chat %s: %s", conversation_key, exc)
            return False
        return True

    async def send_typing(self, conversation_key: str) -> None:
        await self._call("sendChatAction", {"chat_id": conversation_key, "action": "typing"})

    async def _throttle(self, conversation_key: str) -> None:
        last = self._last_send.get(conversation_key)
        if last is not None:
            elapsed = time.monotonic() - last
            if elapsed < _MIN_SEND_INTERVAL_SECONDS:
                await asyncio.sleep(_MIN_SEND_INTERVAL_SECONDS - elapsed)
        self._last_send[conversation_key] = time.monotonic()


def should_respond_in_group(message: dict[str, Any], bot_username: str) -> bool:
    """Respond in groups only when mentioned or when a bot message is replied to."""

    if (message.get("chat") or {}).get("type") == "private":
        return True

    entities = message.get("entities") or []
    if any(entity.get("type") == "mention" for entity in entities):
        return bot_username.lower() in (message.get("text") or "").lower()

    reply_to = message.get("reply_to_message") or {}
    return bool((reply_to.get("from") or {}).get("is_bot"))


def chunk_text(text: str, max_len: int) -> Iterator[str]:
    """Split ``text`` into pieces of at most ``max_len`` characters.

    Prefers paragraph breaks, then line breaks, unless that would make a
    piece shorter than a quarter of the limit. Newlines at a cut are dropped.
    """
    if len(text) <= max_len:
        yield text
        return

    offset = 0
    while offset < len(text):
        if len(text) - offset <= max_len:
            yield text[offset:]
            return

        window = text[offset : offset + max_len]
        split_at = window.rfind("\n\n")
        if split_at < max_len // 4:
            split_at = window.rfind("\n")
        if split_at < max_len // 4:
            split_at = max_len

        yield text[offset : offset + split_at]
        offset += split_at
        while offset < len(text) and text[offset] == "\n":
            offset += 1
