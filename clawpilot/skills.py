"""Skill manifests that extend the system preamble."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from clawpilot.db import Database

LOGGER = logging.getLogger(__name__)


class SkillManifest(BaseModel):
    """One ``*.json`` file in the skills directory."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    version: str = "1.0.0"
    description: str = ""
    system_prompt_append: str = Field(default="", alias="systemPromptAppend")
    enabled: bool = True


def _file_name(name: str) -> str:
    return f"{name.lower().replace(' ', '-')}.json"


class SkillLoader:
    """Loads skills from disk and keeps their enabled state in the database."""

    def __init__(self, skills_dir: Path, db: Database | None = None) -> None:
        self._skills_dir = skills_dir
        self._db = db
        self._skills: list[SkillManifest] = []

    @property
    def skills(self) -> list[SkillManifest]:
        return list(self._skills)

    def load_all(self) -> None:
        self._skills.clear()
        if not self._skills_dir.exists():
            LOGGER.info("Skills directory %s not found, creating it", self._skills_dir)
            self._skills_dir.mkdir(parents=True, exist_ok=True)
            return

        for path in sorted(self._skills_dir.glob("*.json")):
            try:
                manifest = SkillManifest.model_validate_json(path.read_text())
            except (OSError, ValidationError) as exc:
                LOGGER.warning("Failed to load skill from %s: %s", path, exc)
                continue
            self._skills.append(manifest)
            LOGGER.info("Loaded skill: %s v%s", manifest.name, manifest.version)

        if self._db is not None:
            states = self._db.get_skill_states()
            for skill in self._skills:
                if skill.name.lower() in states:
                    skill.enabled = states[skill.name.lower()]

        LOGGER.info("Loaded %d skills from %s", len(self._skills), self._skills_dir)

    def append_skill_prompts(self, base_prompt: str) -> str:
        parts = [base_prompt]
        parts.extend(
            f"[Skill: {skill.name}] {skill.system_prompt_append}"
            for skill in self._skills
            if skill.enabled and skill.system_prompt_append.strip()
        )
        return "\n\n".join(parts)

    def find(self, name: str) -> SkillManifest | None:
        return next((s for s in self._skills if s.name.lower() == name.lower()), None)

    def install(self, raw_json: str) -> SkillManifest | None:
        try:
            manifest = SkillManifest.model_validate(json.loads(raw_json))
        except (json.JSONDecodeError, ValidationError) as exc:
            LOGGER.warning("Failed to install skill: %s", exc)
            return None
        self._skills_dir.mkdir(parents=True, exist_ok=True)
        (self._skills_dir / _file_name(manifest.name)).write_text(raw_json)
        existing = self.find(manifest.name)
        if existing is not None:
            self._skills.remove(existing)
        self._skills.append(manifest)
        LOGGER.info("Installed skill: %s", manifest.name)
        return manifest

    def uninstall(self, name: str) -> bool:
        skill = self.find(name)
        if skill is None:
            return False
        (self._skills_dir / _file_name(skill.name)).unlink(missing_ok=True)
        self._skills.remove(skill)
        LOGGER.info("Uninstalled skill: %s", skill.name)
        return True

    def set_enabled(self, name: str, enabled: bool) -> bool:
        skill = self.find(name)
        if skill is None:
            return False
        skill.enabled = enabled
        if self._db is not None:
            self._db.set_skill_state(skill.name, enabled)
        LOGGER.info("Skill %s %s", skill.name, "enabled" if enabled else "disabled")
        return True
