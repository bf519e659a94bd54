"""
Skill System for HQBot.

Provides modular, extensible command handling:
- BaseSkill: The contract every skill implements
- SkillRegistry: Routes commands to skills and manages their lifecycle
- SkillLoader: Discovers skill folders and (re)registers them
"""

from .base import BaseSkill, CommandSpec, RegexMatcher, RoutingResult, SkillContext, SkillState
from .loader import SkillLoader
from .registry import SkillRegistry

__all__ = [
    "BaseSkill",
    "CommandSpec",
    "RegexMatcher",
    "RoutingResult",
    "SkillContext",
    "SkillState",
    "SkillLoader",
    "SkillRegistry",
]
