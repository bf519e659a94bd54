"""
Help Skill - lists available commands grouped by skill.

Commands:
    help            - Show all available commands
    help <skill>    - Show commands for a specific skill
    commands        - Alias for help
    skills          - List all loaded skills
"""

import re
from typing import Any, Dict

from core.skills.base import BaseSkill, CommandSpec, RoutingResult

RULE = "━" * 20

USAGE_REWRITES = [
    (r"\(\.\+\)", "<text>"),
    (r"\(\.\*\)", "[text]"),
    (r"\\s\+", " "),
    (r"\\s\*", " "),
    (r"\(\\S\+\)", "<word>"),
    (r"\[\^\\s\]\+", "<word>"),
    (r"\\w\+", "<word>"),
    (r"\\d\+", "<number>"),
    (r"\(\?:([^)]+)\)", r"(\1)"),
    (r"\|", " | "),
    (r"\\", ""),
]


def pattern_to_usage(pattern: str) -> str:
    """Best-effort readable form of a command regex."""
    if not pattern:
        return "(unknown)"
    text = pattern.strip("^$")
    for regex, replacement in USAGE_REWRITES:
        text = re.sub(regex, replacement, text)
    return text.strip() or pattern


class HelpSkill(BaseSkill):
    name = "help"
    description = "Shows available commands and skill documentation"
    priority = 100

    commands = [
        CommandSpec(r"help", "Show all available commands", "help"),
        CommandSpec(r"help\s+(.+)", "Show help for a specific skill", "help <skill-name>"),
        CommandSpec(r"commands", "List all commands (alias for help)", "commands"),
        CommandSpec(r"skills", "List all loaded skills", "skills"),
    ]

    async def execute(self, command: str, context: Dict[str, Any]) -> RoutingResult:
        parsed = self.parse_command(command)
        lower = parsed["raw"].lower()

        if self.registry is None:
            return self.error("Skill registry is not available")
        if lower == "skills":
            return self.list_skills()
        if lower.startswith("help ") and parsed["args"]:
            return self.show_skill_help(" ".join(parsed["args"]))
        return self.show_all_commands()

    def show_all_commands(self) -> RoutingResult:
        skills = self.registry.list_skills()
        if not skills:
            return self.success("No skills are currently loaded.")

        group_by_skill = (self.config or {}).get("group_by_skill", True)
        msg = f"*HQBot Commands*\n{RULE}\n\n"

        if group_by_skill:
            for meta in skills:
                if not meta["commands"]:
                    continue
                msg += f"*{meta['name'].capitalize()}*"
                if meta["description"]:
                    msg += f" - {meta['description']}"
                msg += "\n"
                for cmd in meta["commands"]:
                    usage = cmd["usage"] or pattern_to_usage(cmd["pattern"])
                    msg += f"  • `{usage}`"
                    if cmd["description"]:
                        msg += f" - {cmd['description']}"
                    msg += "\n"
                msg += "\n"
        else:
            for meta in skills:
                for cmd in meta["commands"]:
                    usage = cmd["usage"] or pattern_to_usage(cmd["pattern"])
                    msg += f"• `{usage}` - {cmd['description'] or 'No description'}\n"

        msg += f"{RULE}\n_{len(skills)} skill(s) loaded_"
        return self.success(msg, data={"skills": [m["name"] for m in skills]})

    def list_skills(self) -> RoutingResult:
        skills = self.registry.list_skills()
        if not skills:
            return self.success("No skills are currently loaded.")

        msg = f"*Loaded Skills*\n{RULE}\n\n"
        for meta in skills:
            msg += f"*{meta['name'].capitalize()}*"
            if meta["description"]:
                msg += f"\n  {meta['description']}"
            msg += f"\n  Commands: {len(meta['commands'])}"
            msg += f"\n  Priority: {meta['priority']}"
            if meta.get("requires_auth"):
                msg += " (auth required)"
            msg += "\n\n"
        msg += f"{RULE}\nType `help <skill>` for details"
        return self.success(msg)

    def show_skill_help(self, skill_name: str) -> RoutingResult:
        skill = self.registry.get_skill(skill_name.lower())

        if skill is None:
            names = self.registry.skill_names()
            matches = [n for n in names if skill_name.lower() in n.lower()]
            if len(matches) == 1:
                return self.show_skill_help(matches[0])
            if len(matches) > 1:
                return self.error(
                    f'Multiple skills match "{skill_name}": {", ".join(matches)}\n'
                    "Please be more specific."
                )
            return self.error(
                f'Skill "{skill_name}" not found.\n'
                f"Available skills: {', '.join(names) or 'none'}"
            )

        meta = skill.get_metadata()
        msg = f"*{meta['name'].capitalize()} Skill*\n{RULE}\n\n"
        if meta["description"]:
            msg += f"{meta['description']}\n\n"

        if meta["commands"]:
            msg += "*Commands:*\n"
            for cmd in meta["commands"]:
                usage = cmd["usage"] or pattern_to_usage(cmd["pattern"])
                msg += f"\n• `{usage}`\n"
                if cmd["description"]:
                    msg += f"  {cmd['description']}\n"
        else:
            msg += "_This skill has no commands._\n"

        msg += f"\n{RULE}\n"
        if meta.get("requires_auth"):
            msg += "_This skill requires authentication_"
        return self.success(msg, data={"skill": meta["name"]})


Skill = HelpSkill
