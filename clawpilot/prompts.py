"""System preamble assembly for a conversation."""

from __future__ import annotations

from clawpilot.config import Settings
from clawpilot.models import Conversation, InboundMessage
from clawpilot.skills import SkillLoader

DEFAULT_SYSTEM_PROMPT = "You are a helpful personal assistant."


class SystemPromptBuilder:
    """Builds the preamble a session starts with.

    Scheduled turns have no inbound message, so ``message`` is optional and
    group details then come from the stored conversation.
    """

    def __init__(self, settings: Settings, skills: SkillLoader | None = None) -> None:
        self._settings = settings
        self._skills = skills

    def build(self, conversation: Conversation, message: InboundMessage | None = None) -> str:
        prompt = self._settings.system_prompt or DEFAULT_SYSTEM_PROMPT
        if conversation.system_prompt:
            prompt += f"\n\nAdditional context:\n{conversation.system_prompt}"
        if self._skills is not None:
            prompt = self._skills.append_skill_prompts(prompt)
        prompt += f"\n\nCurrent chat ID: {conversation.key}"

        is_group = message.is_group if message is not None else conversation.is_group
        if is_group:
            group_name = (message.group_name if message is not None else conversation.display_name) or "Unknown"
            prompt += f'\nYou are in a group chat called "{group_name}".'
            if message is not None:
                prompt += f"\nThe current speaker is {message.sender_name}."
            prompt += "\nOnly respond when directly addressed."
        return prompt
