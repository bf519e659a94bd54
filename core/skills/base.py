"""
Skill contract - the base class every command handler extends.

A skill declares a name, a priority and a list of CommandSpecs. The registry
asks `can_handle()` and dispatches to `execute()`, which returns a
RoutingResult.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Pattern, Union

from loguru import logger as default_logger


@dataclass(frozen=True)
class CommandSpec:
    """A command pattern plus the text shown in help output."""

    pattern: Union[str, Pattern]
    description: str = ""
    usage: Optional[str] = None

    def compiled(self) -> Pattern:
        if isinstance(self.pattern, str):
            return re.compile(self.pattern, re.IGNORECASE)
        return re.compile(self.pattern.pattern, self.pattern.flags | re.IGNORECASE)

    def fullmatch(self, command: str):
        return self.compiled().fullmatch(command)

    @property
    def pattern_text(self) -> str:
        if isinstance(self.pattern, str):
            return self.pattern
        return self.pattern.pattern


class RegexMatcher:
    """
    Default matcher: a command matches when one of its CommandSpecs matches the
    whole trimmed command. Any object with `matches(command) -> bool` can
    replace it on a skill.
    """

    def __init__(self, commands: List[CommandSpec]):
        self.commands = commands

    def matches(self, command: str) -> bool:
        return any(spec.fullmatch(command) for spec in self.commands)

    def first_match(self, command: str):
        for spec in self.commands:
            m = spec.fullmatch(command)
            if m:
                return m
        return None


@dataclass
class RoutingResult:
    """Outcome of one routed command. Never persisted."""

    success: bool
    message: str
    skill: Optional[str] = None
    data: Any = None
    error: Optional[str] = None
    suggestion: Optional[str] = None

    @classmethod
    def coerce(cls, value: Any) -> "RoutingResult":
        """Accept the loose shapes skills sometimes return (dict, str, None)."""
        if isinstance(value, RoutingResult):
            return value
        if isinstance(value, dict):
            known = {k: value[k] for k in cls.__dataclass_fields__ if k in value}
            known.setdefault("success", True)
            known.setdefault("message", "")
            return cls(**known)
        if value is None:
            return cls(success=True, message="")
        return cls(success=True, message=str(value))

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None or k == "skill"}


@dataclass
class SkillContext:
    """
    Shared context injected into every skill at registration time.
    `registry` is the dispatch handle for skills that route commands
    themselves (help, workflow).
    """

    memory: Any = None
    ai: Any = None
    config: Dict[str, Any] = field(default_factory=dict)
    logger: Any = default_logger
    registry: Any = None

    def merge(self, updates: Union["SkillContext", Dict[str, Any], None]) -> "SkillContext":
        if updates is None:
            return self
        if isinstance(updates, SkillContext):
            updates = {k: getattr(updates, k) for k in self.__dataclass_fields__}
        for key, value in updates.items():
            if key in self.__dataclass_fields__ and value is not None:
                setattr(self, key, value)
        return self


class SkillState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    SHUT_DOWN = "shut_down"


class BaseSkill(ABC):
    """
    Abstract base class for all skills.

    Subclasses set `name`, `description`, `priority` and `commands` as class
    attributes and implement `execute()`.
    """

    name: str = ""
    description: str = ""
    version: str = "1.0.0"
    priority: int = 0
    requires_auth: bool = False
    commands: List[CommandSpec] = []

    def __init__(self, context: Union[SkillContext, Dict[str, Any], None] = None):
        if isinstance(context, SkillContext):
            context = {k: getattr(context, k) for k in SkillContext.__dataclass_fields__}
        context = context or {}

        self.memory = context.get("memory")
        self.ai = context.get("ai")
        self.config = context.get("config") or {}
        self.logger = context.get("logger")
        self.registry = context.get("registry")
        self.matcher = RegexMatcher(list(self.commands))
        self.state = SkillState.UNINITIALIZED

    def inject_context(self, context: SkillContext) -> None:
        """Fill in shared handles the skill has not set itself."""
        if self.memory is None:
            self.memory = context.memory
        if self.ai is None:
            self.ai = context.ai
        if not self.config:
            self.config = context.config
        if self.logger is None:
            self.logger = context.logger
        if self.registry is None:
            self.registry = context.registry

    def can_handle(self, command: str, context: Optional[Dict[str, Any]] = None) -> bool:
        if not command or not isinstance(command, str):
            return False
        normalized = command.strip()
        if not normalized:
            return False
        return self.matcher.matches(normalized)

    @abstractmethod
    async def execute(self, command: str, context: Dict[str, Any]) -> RoutingResult:
        """Handle a command this skill claimed."""

    async def initialize(self) -> None:
        self.state = SkillState.READY
        self.log("info", f'Skill "{self.name}" initialized')

    async def shutdown(self) -> None:
        self.state = SkillState.SHUT_DOWN
        self.log("info", f'Skill "{self.name}" shut down')

    def is_initialized(self) -> bool:
        return self.state == SkillState.READY

    # ---- helpers ----

    def parse_command(self, command: str) -> Dict[str, Any]:
        """Split a command into first word, args and the matching pattern's groups."""
        if not command or not isinstance(command, str):
            return {"command": "", "args": [], "raw": "", "match": None}

        trimmed = command.strip()
        parts = trimmed.split()
        match = None
        if isinstance(self.matcher, RegexMatcher):
            match = self.matcher.first_match(trimmed)

        return {
            "command": parts[0] if parts else "",
            "args": parts[1:],
            "raw": trimmed,
            "match": match,
        }

    def format_response(
        self, data: Any, title: Optional[str] = None, fmt: str = "plain"
    ) -> str:
        result = f"*{title}*\n\n" if title else ""

        if fmt == "list" and isinstance(data, (list, tuple)):
            result += "\n".join(f"{i + 1}. {item}" for i, item in enumerate(data))
        elif fmt == "code":
            result += f"```\n{data}\n```"
        elif isinstance(data, dict):
            result += "\n".join(f"• *{k}:* {v}" for k, v in data.items())
        else:
            result += str(data)
        return result

    def success(self, message: str, data: Any = None) -> RoutingResult:
        return RoutingResult(success=True, message=message, data=data)

    def error(
        self,
        message: str,
        error: Union[Exception, str, None] = None,
        suggestion: Optional[str] = None,
    ) -> RoutingResult:
        return RoutingResult(
            success=False,
            message=message,
            error=str(error) if error else None,
            suggestion=suggestion,
        )

    def log(self, level: str, message: str) -> None:
        log = self.logger or default_logger
        fn = getattr(log, level, None) or log.info
        fn(f"[Skill:{self.name}] {message}")

    def get_metadata(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "commands": [
                {
                    "pattern": cmd.pattern_text,
                    "description": cmd.description,
                    "usage": cmd.usage,
                }
                for cmd in self.commands
            ],
            "priority": self.priority,
            "requires_auth": self.requires_auth,
            "state": self.state.value,
        }
