"""
Skill Registry - owns the registered skills, routes commands to them and
manages their lifecycle.
"""

import asyncio
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from core.emitter import EventEmitter
from core.skills.base import BaseSkill, RoutingResult, SkillContext


class SkillRegistry(EventEmitter):
    """
    Central registry for command skills.

    Dispatch order is a stable sort by priority, highest first, so skills
    with equal priority keep their registration order. Lifecycle and
    diagnostic events are emitted for observability:

        skillRegistered, skillUnregistered, skillInitialized, skillError,
        skillConflict, beforeExecute, afterExecute, initialized, shutdown
    """

    def __init__(self, context: Union[SkillContext, Dict[str, Any], None] = None):
        super().__init__()
        self.skills: Dict[str, BaseSkill] = {}
        self.context = SkillContext(registry=self).merge(context)
        self._initialized = False
        self._init_tasks: Dict[str, asyncio.Task] = {}

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(
        self, context: Union[SkillContext, Dict[str, Any], None] = None
    ) -> None:
        """
        Merge `context` into the shared context and initialize every
        registered skill. One skill failing does not stop the others.
        """
        self.context.merge(context)

        for name, skill in list(self.skills.items()):
            skill.inject_context(self.context)
            if skill.is_initialized():
                continue
            try:
                await skill.initialize()
                self.emit("skillInitialized", {"name": name, "skill": skill})
            except Exception as e:
                logger.error(f'[Registry] Failed to initialize skill "{name}": {e}')
                self.emit("skillError", {"name": name, "error": e, "phase": "initialize"})

        self._initialized = True
        self.emit("initialized")
        logger.info(f"[Registry] Initialized with {len(self.skills)} skill(s)")

    async def register(self, skill: BaseSkill) -> bool:
        """
        Register a skill. A skill with the same name is unregistered first
        (hot reload). Returns False when the skill is unusable.
        """
        if skill is None or not getattr(skill, "name", None):
            logger.error("[Registry] Cannot register skill without a name")
            return False
        if not callable(getattr(skill, "execute", None)) or not callable(
            getattr(skill, "can_handle", None)
        ):
            logger.error(f'[Registry] Skill "{skill.name}" is missing execute()/can_handle()')
            return False

        if skill.name in self.skills:
            logger.warning(f'[Registry] Skill "{skill.name}" already registered, replacing')
            await self.unregister(skill.name)

        skill.inject_context(self.context)

        self.skills[skill.name] = skill
        self.emit("skillRegistered", {"name": skill.name, "skill": skill})
        logger.info(f"[Registry] Registered skill: {skill.name} (priority {skill.priority})")

        if self._initialized and not skill.is_initialized():
            task = asyncio.create_task(self._background_initialize(skill))
            self._init_tasks[skill.name] = task
            task.add_done_callback(lambda _t, n=skill.name: self._init_tasks.pop(n, None))

        return True

    async def _background_initialize(self, skill: BaseSkill) -> None:
        if skill.is_initialized():
            return
        try:
            await skill.initialize()
            self.emit("skillInitialized", {"name": skill.name, "skill": skill})
        except Exception as e:
            logger.error(f'[Registry] Failed to initialize skill "{skill.name}": {e}')
            self.emit("skillError", {"name": skill.name, "error": e, "phase": "initialize"})

    async def unregister(self, name: str) -> bool:
        skill = self.skills.get(name)
        if skill is None:
            logger.warning(f'[Registry] Skill "{name}" not found')
            return False

        pending = self._init_tasks.pop(name, None)
        if pending and not pending.done():
            pending.cancel()

        try:
            await skill.shutdown()
        except Exception as e:
            logger.error(f'[Registry] Error shutting down skill "{name}": {e}')
            self.emit("skillError", {"name": name, "error": e, "phase": "shutdown"})

        if self.skills.get(name) is skill:
            del self.skills[name]
        self.emit("skillUnregistered", {"name": name})
        logger.info(f"[Registry] Unregistered skill: {name}")
        return True

    def get_skill(self, name: str) -> Optional[BaseSkill]:
        return self.skills.get(name)

    def has_skill(self, name: str) -> bool:
        return name in self.skills

    def skill_names(self) -> List[str]:
        return list(self.skills.keys())

    def sorted_skills(self) -> List[BaseSkill]:
        # sorted() is stable: equal priorities keep registration order.
        return sorted(self.skills.values(), key=lambda s: -(s.priority or 0))

    def _matches(self, skill: BaseSkill, command: str, context: Dict[str, Any]) -> bool:
        try:
            return bool(skill.can_handle(command, context))
        except Exception as e:
            logger.warning(f'[Registry] Matcher of "{skill.name}" raised: {e}')
            return False

    async def route(
        self, command: Any, context: Optional[Dict[str, Any]] = None
    ) -> RoutingResult:
        """
        Route a command to the highest-priority skill that claims it.
        Skill failures are converted into unsuccessful results.
        """
        if not command or not isinstance(command, str) or not command.strip():
            return RoutingResult(success=False, message="Invalid command", skill=None)

        context = context if context is not None else {}
        normalized = command.strip()

        matching = [s for s in self.sorted_skills() if self._matches(s, normalized, context)]

        if len(matching) > 1:
            match_list = ", ".join(f"{s.name}(p{s.priority or 0})" for s in matching)
            logger.warning(
                f'[Registry] {len(matching)} skills match "{normalized[:50]}": {match_list}'
            )
            self.emit(
                "skillConflict",
                {
                    "command": normalized,
                    "matches": [
                        {"name": s.name, "priority": s.priority or 0} for s in matching
                    ],
                },
            )

        if not matching:
            return RoutingResult(
                success=False,
                message="No skill available to handle this command",
                skill=None,
                suggestion='Try "help" to see available commands',
            )

        skill = matching[0]
        try:
            if not skill.is_initialized():
                pending = self._init_tasks.get(skill.name)
                if pending and not pending.done():
                    await pending
                if not skill.is_initialized():
                    logger.warning(
                        f'[Registry] Skill "{skill.name}" not initialized, initializing now'
                    )
                    await skill.initialize()

            self.emit(
                "beforeExecute",
                {"skill": skill.name, "command": normalized, "context": context},
            )

            result = RoutingResult.coerce(await skill.execute(normalized, context))
            result.skill = skill.name

            self.emit(
                "afterExecute",
                {
                    "skill": skill.name,
                    "command": normalized,
                    "context": context,
                    "result": result,
                },
            )
            return result

        except asyncio.CancelledError:
            logger.info(f'[Registry] Execution of "{skill.name}" cancelled')
            self.emit(
                "executeCancelled",
                {"skill": skill.name, "command": normalized, "context": context},
            )
            raise

        except Exception as e:
            logger.exception(f'[Registry] Error executing skill "{skill.name}": {e}')
            self.emit(
                "skillError",
                {
                    "name": skill.name,
                    "error": e,
                    "phase": "execute",
                    "command": normalized,
                    "context": context,
                },
            )
            return RoutingResult(
                success=False,
                message=f"Error executing command: {e}",
                skill=skill.name,
                error=str(e),
            )

    def list_skills(self) -> List[Dict[str, Any]]:
        return [s.get_metadata() for s in self.sorted_skills()]

    def find_matching_skills(self, command: str) -> List[Dict[str, Any]]:
        """All skills claiming `command`, highest priority first. For debugging conflicts."""
        if not command or not isinstance(command, str):
            return []
        normalized = command.strip()
        return [
            {"name": s.name, "priority": s.priority or 0}
            for s in self.sorted_skills()
            if self._matches(s, normalized, {})
        ]

    async def shutdown(self) -> None:
        logger.info("[Registry] Shutting down all skills...")

        for task in list(self._init_tasks.values()):
            task.cancel()
        self._init_tasks.clear()

        for name, skill in list(self.skills.items()):
            try:
                await skill.shutdown()
            except Exception as e:
                logger.error(f'[Registry] Error shutting down skill "{name}": {e}')

        self.skills.clear()
        self._initialized = False
        self.emit("shutdown")
        logger.info("[Registry] All skills shut down")

    def get_status(self) -> Dict[str, Any]:
        return {
            "initialized": self._initialized,
            "skill_count": len(self.skills),
            "skills": self.skill_names(),
        }

    def generate_skill_docs(self, per_skill: int = 3) -> str:
        """
        Usage lines for every registered skill, e.g. for help output or an
        AI system prompt.

        Args:
            per_skill: Maximum number of commands listed per skill
        """
        skills = self.list_skills()
        if not skills:
            return "No skills loaded."

        lines = []
        for meta in skills:
            lines.append(f"{meta['name'].upper()}:")
            for cmd in meta["commands"][:per_skill]:
                usage = cmd["usage"] or cmd["pattern"].strip("^$")
                lines.append(f'- "{usage}" - {cmd["description"] or meta["description"]}')
        return "\n".join(lines)
