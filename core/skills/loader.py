"""
Skill Loader - Discovers skill folders and registers them.

Each skill lives in `<skills_dir>/<folder>/skill.py` and exposes a BaseSkill
subclass (as `Skill`, or as the only subclass defined there) or a
`create(context)` factory. An optional `skills.json` next to the folders
enables/disables skills and carries per-skill config.
"""

import asyncio
import importlib.util
import inspect
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from .base import BaseSkill

ENTRY_POINT = "skill.py"
CONFIG_FILE = "skills.json"


def load_dir_config(skills_dir: Path) -> Dict[str, Any]:
    """Read skills.json. Missing or invalid files give the default (everything enabled)."""
    default = {"enabled": [], "disabled": [], "config": {}}
    config_path = Path(skills_dir) / CONFIG_FILE
    if not config_path.exists():
        return default
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except Exception as e:
        logger.warning(f"[SkillLoader] Error reading {config_path}: {e}")
        return default
    if not isinstance(data, dict):
        logger.warning(f"[SkillLoader] {config_path} must hold an object")
        return default
    return {**default, **data}


def is_skill_enabled(name: str, dir_config: Dict[str, Any]) -> bool:
    if name in (dir_config.get("disabled") or []):
        return False
    enabled = dir_config.get("enabled") or []
    if enabled:
        return name in enabled
    return True


class SkillLoader:
    """
    Discovers skills on disk and keeps them registered.

    Args:
        skill_dirs: Directories to scan. Defaults to ['./skills']
        settings: Shared settings merged into every skill's config
        entries: Per-skill config keyed by skill name (overrides skills.json)
    """

    def __init__(
        self,
        skill_dirs: Optional[List[str]] = None,
        settings: Optional[Dict[str, Any]] = None,
        entries: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        self.skill_dirs = [Path(d) for d in (skill_dirs or ["./skills"])]
        self.settings = settings or {}
        self.entries = entries or {}
        self.sources: Dict[str, Path] = {}
        self._mtimes: Dict[Path, float] = {}
        self._watching = False

    def discover(self) -> List[Path]:
        """Folders containing a skill.py, across all configured directories."""
        found = []
        for skills_dir in self.skill_dirs:
            if not skills_dir.exists():
                logger.warning(f"[SkillLoader] Skills directory not found: {skills_dir}")
                continue
            for folder in sorted(skills_dir.iterdir()):
                if not folder.is_dir() or folder.name.startswith(("__", ".")):
                    continue
                if (folder / ENTRY_POINT).exists():
                    found.append(folder)
        return found

    def _skill_config(self, folder: Path, dir_config: Dict[str, Any]) -> Dict[str, Any]:
        per_dir = (dir_config.get("config") or {}).get(folder.name, {})
        per_entry = self.entries.get(folder.name, {})
        return {**self.settings, **per_dir, **per_entry}

    def load_skill(self, folder: Path, config: Optional[Dict[str, Any]] = None) -> Optional[BaseSkill]:
        """Import `folder/skill.py` and instantiate its skill. Returns None on failure."""
        entry = folder / ENTRY_POINT
        module_name = f"hqbot_skill_{folder.name.replace('-', '_')}"
        try:
            spec = importlib.util.spec_from_file_location(module_name, entry)
            if not spec or not spec.loader:
                logger.error(f"[SkillLoader] Cannot import {entry}")
                return None
            module = importlib.util.module_from_spec(spec)
            sys.modules[module_name] = module
            spec.loader.exec_module(module)

            skill = self._instantiate(module, {"config": dict(config or {})})
        except Exception as e:
            sys.modules.pop(module_name, None)
            logger.error(f'[SkillLoader] Failed to load skill "{folder.name}": {e}')
            return None

        if skill is None:
            logger.error(
                f'[SkillLoader] Invalid skill export in "{folder.name}": '
                "expected a BaseSkill subclass or create()"
            )
            return None
        if not skill.name:
            skill.name = folder.name

        self.sources[skill.name] = folder
        self._mtimes[entry] = entry.stat().st_mtime
        logger.debug(f"  - Loaded skill: {skill.name} from {folder}")
        return skill

    @staticmethod
    def _instantiate(module: Any, context: Dict[str, Any]) -> Optional[BaseSkill]:
        if callable(getattr(module, "create", None)):
            skill = module.create(context)
            return skill if isinstance(skill, BaseSkill) else None

        cls = getattr(module, "Skill", None)
        if not (inspect.isclass(cls) and issubclass(cls, BaseSkill)):
            candidates = [
                obj
                for obj in vars(module).values()
                if inspect.isclass(obj)
                and issubclass(obj, BaseSkill)
                and obj is not BaseSkill
                and obj.__module__ == module.__name__
                and not inspect.isabstract(obj)
            ]
            cls = candidates[0] if len(candidates) == 1 else None
        return cls(context) if cls else None

    def load_all(self) -> List[BaseSkill]:
        """Load every enabled skill without registering it."""
        logger.info("Loading skills...")
        skills = []
        for skills_dir in self.skill_dirs:
            dir_config = load_dir_config(skills_dir)
            for folder in self.discover():
                if folder.parent != skills_dir:
                    continue
                if not is_skill_enabled(folder.name, dir_config):
                    logger.info(f"[SkillLoader] Skipping disabled skill: {folder.name}")
                    continue
                skill = self.load_skill(folder, self._skill_config(folder, dir_config))
                if skill:
                    skills.append(skill)
        logger.info(f"Loaded {len(skills)} skills")
        return skills

    async def register_all(self, registry: Any) -> List[BaseSkill]:
        """Load every enabled skill and register it with `registry`."""
        skills = self.load_all()
        for skill in skills:
            await registry.register(skill)
        return skills

    async def reload(self, name: str, registry: Any) -> bool:
        """Re-import one skill from disk and hot-replace it in the registry."""
        folder = self.sources.get(name)
        if folder is None:
            folder = next((f for f in self.discover() if f.name == name), None)
        if folder is None:
            logger.warning(f'[SkillLoader] Skill "{name}" not found on disk')
            return False

        dir_config = load_dir_config(folder.parent)
        skill = self.load_skill(folder, self._skill_config(folder, dir_config))
        if skill is None:
            return False
        await registry.register(skill)
        logger.info(f"[SkillLoader] Reloaded skill: {skill.name}")
        return True

    async def check_for_changes(self, registry: Any) -> List[str]:
        """One watch pass: reload changed skills, add new ones, drop deleted ones."""
        changed = []
        seen = set()
        for folder in self.discover():
            entry = folder / ENTRY_POINT
            seen.add(entry)
            try:
                mtime = entry.stat().st_mtime
            except OSError:
                continue
            if self._mtimes.get(entry) == mtime:
                continue
            if not is_skill_enabled(folder.name, load_dir_config(folder.parent)):
                self._mtimes[entry] = mtime
                continue
            name = next((n for n, f in self.sources.items() if f == folder), folder.name)
            if await self.reload(name, registry):
                changed.append(name)

        for entry in [e for e in self._mtimes if e not in seen]:
            del self._mtimes[entry]
            name = next((n for n, f in self.sources.items() if f == entry.parent), None)
            if name:
                self.sources.pop(name, None)
                await registry.unregister(name)
                changed.append(name)
        return changed

    async def watch(self, registry: Any, interval: float = 2.0) -> None:
        """Poll skill files and hot-reload them until `stop_watching()`."""
        self._watching = True
        logger.info(f"[SkillLoader] Watching {len(self.skill_dirs)} skill dir(s)")
        while self._watching:
            try:
                await asyncio.sleep(interval)
                await self.check_for_changes(registry)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[SkillLoader] Watch loop error: {e}")

    def stop_watching(self) -> None:
        self._watching = False
