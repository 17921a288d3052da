import json

from clawpilot.db import Database
from clawpilot.skills import SkillLoader, SkillManifest


def _write(skills_dir, name: str, **fields) -> None:
    skills_dir.mkdir(parents=True, exist_ok=True)
    (skills_dir / f"{name}.json").write_text(json.dumps({"name": name, **fields}))


def test_load_all_creates_missing_directory(tmp_path):
    skills_dir = tmp_path / "skills"
    loader = SkillLoader(skills_dir)

    loader.load_all()

    assert skills_dir.is_dir()
    assert loader.skills == []


def test_load_all_skips_invalid_manifests(tmp_path):
    skills_dir = tmp_path / "skills"
    _write(skills_dir, "weather", systemPromptAppend="Use metric units.")
    (skills_dir / "broken.json").write_text("{not json")
    (skills_dir / "nameless.json").write_text(json.dumps({"description": "no name"}))

    loader = SkillLoader(skills_dir)
    loader.load_all()

    assert [s.name for s in loader.skills] == ["weather"]
    assert loader.skills[0].system_prompt_append == "Use metric units."


def test_append_skill_prompts_uses_enabled_skills_only(tmp_path):
    skills_dir = tmp_path / "skills"
    _write(skills_dir, "cooking", systemPromptAppend="Suggest recipes.")
    _write(skills_dir, "quiet", systemPromptAppend="Be terse.", enabled=False)
    _write(skills_dir, "empty", systemPromptAppend="   ")
    loader = SkillLoader(skills_dir)
    loader.load_all()

    prompt = loader.append_skill_prompts("Base.")

    assert prompt == "Base.\n\n[Skill: cooking] Suggest recipes."


def test_enabled_state_persists_across_loads(tmp_path):
    skills_dir = tmp_path / "skills"
    _write(skills_dir, "cooking", systemPromptAppend="Suggest recipes.")
    db = Database(tmp_path / "clawpilot.db")
    db.initialize()

    loader = SkillLoader(skills_dir, db)
    loader.load_all()
    assert loader.set_enabled("Cooking", False)
    assert not loader.set_enabled("unknown", True)

    reloaded = SkillLoader(skills_dir, db)
    reloaded.load_all()
    assert reloaded.find("cooking").enabled is False


def test_install_and_uninstall(tmp_path):
    skills_dir = tmp_path / "skills"
    loader = SkillLoader(skills_dir)

    manifest = loader.install(json.dumps({"name": "Travel Tips", "version": "2.0.0"}))

    assert isinstance(manifest, SkillManifest)
    assert (skills_dir / "travel-tips.json").exists()
    assert loader.find("travel tips").version == "2.0.0"

    assert loader.install("{bad") is None
    assert loader.uninstall("Travel Tips")
    assert not (skills_dir / "travel-tips.json").exists()
    assert not loader.uninstall("Travel Tips")


def test_install_replaces_existing_skill(tmp_path):
    loader = SkillLoader(tmp_path / "skills")
    loader.install(json.dumps({"name": "notes", "version": "1.0.0"}))
    loader.install(json.dumps({"name": "notes", "version": "1.1.0"}))

    assert [(s.name, s.version) for s in loader.skills] == [("notes", "1.1.0")]
