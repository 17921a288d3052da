"""Command dispatcher for /-prefixed messages.

Commands bypass the model and act on the conversation directly.
An unrecognised /command returns None, letting it fall through to the model.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from clawpilot.models import InboundMessage
from clawpilot.tools.scheduler_tool import format_task_list

if TYPE_CHECKING:
    from clawpilot.agent_runtime import AgentRuntime
    from clawpilot.db import Database
    from clawpilot.skills import SkillLoader

LOGGER = logging.getLogger(__name__)

SKILL_USAGE = "Usage: /skill enable|disable|uninstall <name> or /skill install <manifest json>"


def parse_command(text: str, bot_username: str | None = None) -> tuple[str, list[str]] | None:
    """Split a /-prefixed message into (command, args).

    Telegram appends ``@botname`` to commands picked from the menu in
    groups; that suffix is dropped.

    Returns:
        A (command, args) tuple where command is lowercased, or None if text
        is not a valid /command.
    """
    text = text.strip()
    if not text.startswith("/"):
        return None
    parts = text[1:].split()
    if not parts:
        return None
    command = parts[0].lower()
    if "@" in command:
        command, _, target = command.partition("@")
        if bot_username and target != bot_username.lstrip("@").lower():
            return None
    if not command:
        return None
    return command, parts[1:]


class CommandDispatcher:
    """Routes /-prefixed messages to handlers, bypassing the model.

    Returns None for unrecognised commands so the caller can fall through.
    """

    def __init__(
        self,
        db: Database,
        runtime: AgentRuntime,
        skills: SkillLoader | None = None,
        bot_username: str | None = None,
    ) -> None:
        self._db = db
        self._runtime = runtime
        self._skills = skills
        self._bot_username = bot_username

    async def dispatch(self, message: InboundMessage) -> str | None:
        """Dispatch a message to a command handler.

        Returns:
            A reply string for recognised commands, or None for unknown ones.
        """
        parsed = parse_command(message.text, self._bot_username)
        if parsed is None:
            return None
        command, args = parsed
        LOGGER.info("Command dispatch: command=%r args=%r chat=%s", command, args, message.conversation_key)
        if command == "reset":
            return self._handle_reset(message.conversation_key)
        if command == "tasks":
            return format_task_list(self._db, message.conversation_key)
        if command == "skills":
            return self._handle_skills()
        if command == "skill":
            return self._handle_skill(args, message.text)
        if command == "prompt":
            return self._handle_prompt(message.conversation_key, " ".join(args).strip())
        return None

    def _handle_reset(self, conversation_key: str) -> str:
        self._runtime.reset_conversation(conversation_key)
        self._db.clear_history(conversation_key)
        return "Conversation history cleared."

    def _handle_skills(self) -> str:
        if self._skills is None or not self._skills.skills:
            return "No skills installed."
        lines = ["Installed skills:"]
        lines.extend(
            f"- {s.name} v{s.version} ({'enabled' if s.enabled else 'disabled'})"
            + (f": {s.description}" if s.description else "")
            for s in self._skills.skills
        )
        return "\n".join(lines)

    def _handle_skill(self, args: list[str], text: str) -> str:
        if self._skills is None:
            return "Skills are not configured."
        if len(args) < 2:
            return SKILL_USAGE
        action = args[0].lower()
        if action == "install":
            manifest = self._skills.install(text.strip().split(None, 2)[2])
            if manifest is None:
                return "Invalid skill manifest."
            return f"Skill '{manifest.name}' v{manifest.version} installed."
        if action == "uninstall":
            name = " ".join(args[1:])
            if not self._skills.uninstall(name):
                return f"Unknown skill '{name}'."
            return f"Skill '{name}' uninstalled."
        if action not in ("enable", "disable"):
            return SKILL_USAGE
        enabled = action == "enable"
        name = " ".join(args[1:])
        if not self._skills.set_enabled(name, enabled):
            return f"Unknown skill '{name}'."
        return f"Skill '{name}' {'enabled' if enabled else 'disabled'}."

    def _handle_prompt(self, conversation_key: str, prompt: str) -> str:
        # The preamble is fixed per session, so the session must be rebuilt.
        self._db.set_conversation_prompt(conversation_key, prompt or None)
        self._runtime.reset_conversation(conversation_key)
        return "Conversation prompt updated." if prompt else "Conversation prompt cleared."
