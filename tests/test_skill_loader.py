import json
import os
import time
from pathlib import Path

import pytest

from core.skills import SkillLoader, SkillRegistry

SKILL_TEMPLATE = '''
from core.skills.base import BaseSkill, CommandSpec


class {cls}(BaseSkill):
    name = "{name}"
    priority = {priority}
    commands = [CommandSpec(r"{pattern}", "test command", "{pattern}")]

    async def execute(self, command, context):
        return self.success("{reply}:" + str(self.config.get("greeting", "")))
'''


def write_skill(root: Path, folder: str, name: str, reply: str = "v1", pattern: str = "ping", priority: int = 0):
    skill_dir = root / folder
    skill_dir.mkdir(parents=True, exist_ok=True)
    entry = skill_dir / "skill.py"
    entry.write_text(
        SKILL_TEMPLATE.format(
            cls=f"Skill_{folder.replace('-', '_')}",
            name=name,
            priority=priority,
            pattern=pattern,
            reply=reply,
        ),
        encoding="utf-8",
    )
    return entry


def bump_mtime(path: Path):
    later = time.time() + 5
    os.utime(path, (later, later))


@pytest.mark.asyncio
async def test_register_all_respects_disabled_and_config(tmp_path):
    write_skill(tmp_path, "ping", "ping")
    write_skill(tmp_path, "pong", "pong", pattern="pong")
    (tmp_path / "skills.json").write_text(
        json.dumps({"disabled": ["pong"], "config": {"ping": {"greeting": "hi"}}}),
        encoding="utf-8",
    )

    registry = SkillRegistry()
    loader = SkillLoader(skill_dirs=[str(tmp_path)], settings={"greeting": "default"})
    skills = await loader.register_all(registry)

    assert [s.name for s in skills] == ["ping"]
    result = await registry.route("ping", {})
    assert result.message == "v1:hi"
    assert not registry.has_skill("pong")


@pytest.mark.asyncio
async def test_enabled_list_is_an_allow_list(tmp_path):
    write_skill(tmp_path, "ping", "ping")
    write_skill(tmp_path, "pong", "pong", pattern="pong")
    (tmp_path / "skills.json").write_text(json.dumps({"enabled": ["pong"]}), encoding="utf-8")

    loader = SkillLoader(skill_dirs=[str(tmp_path)])
    assert [s.name for s in loader.load_all()] == ["pong"]


@pytest.mark.asyncio
async def test_broken_skill_is_skipped(tmp_path):
    write_skill(tmp_path, "ping", "ping")
    broken = tmp_path / "broken"
    broken.mkdir()
    (broken / "skill.py").write_text("raise RuntimeError('import failure')\n", encoding="utf-8")
    (tmp_path / "__pycache__").mkdir()

    loader = SkillLoader(skill_dirs=[str(tmp_path)])
    assert [s.name for s in loader.load_all()] == ["ping"]


@pytest.mark.asyncio
async def test_watch_pass_reloads_adds_and_removes(tmp_path):
    entry = write_skill(tmp_path, "ping", "ping")
    registry = SkillRegistry()
    loader = SkillLoader(skill_dirs=[str(tmp_path)])
    await loader.register_all(registry)
    old = registry.get_skill("ping")

    write_skill(tmp_path, "ping", "ping", reply="v2")
    bump_mtime(entry)
    write_skill(tmp_path, "pong", "pong", pattern="pong")

    changed = await loader.check_for_changes(registry)

    assert sorted(changed) == ["ping", "pong"]
    assert registry.get_skill("ping") is not old
    assert (await registry.route("ping", {})).message == "v2:"
    assert registry.has_skill("pong")

    (tmp_path / "pong" / "skill.py").unlink()
    changed = await loader.check_for_changes(registry)
    assert changed == ["pong"]
    assert not registry.has_skill("pong")


@pytest.mark.asyncio
async def test_first_party_skills_load(tmp_path):
    skills_dir = Path(__file__).resolve().parent.parent / "skills"
    registry = SkillRegistry()
    loader = SkillLoader(skill_dirs=[str(skills_dir)], settings={"data_dir": str(tmp_path)})
    await loader.register_all(registry)

    assert {"help", "workflow", "feature-flags", "ask"} <= set(registry.skill_names())
    priorities = {s.name: s.priority for s in registry.sorted_skills()}
    assert priorities["help"] == 100
    assert priorities["workflow"] == 21
    assert priorities["feature-flags"] == 17
    assert priorities["ask"] == -10


@pytest.mark.asyncio
async def test_shipped_skills_run_created_and_builtin_workflows(tmp_path):
    from core.store import JsonStore
    from core.workflows import RunStatus

    skills_dir = Path(__file__).resolve().parent.parent / "skills"
    registry = SkillRegistry({"memory": JsonStore(tmp_path)})
    loader = SkillLoader(skill_dirs=[str(skills_dir)], settings={"data_dir": str(tmp_path)})
    await loader.register_all(registry)
    await registry.initialize()

    created = await registry.route('workflow create myflow "a" "b" "c"', {})
    assert created.success, created.message
    result = await registry.route("workflow run myflow", {})
    assert result.success, result.message

    runner = registry.get_skill("workflow").runner
    run = runner.history[-1]
    assert run.status == RunStatus.COMPLETED
    assert [s.command for s in run.completed_steps] == ["a", "b", "c"]

    morning = await registry.route("workflow run morning-routine", {})
    assert morning.success, morning.message
    assert runner.history[-1].status == RunStatus.COMPLETED
    assert runner.history[-1].failed_step is None

    await registry.shutdown()
