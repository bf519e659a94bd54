"""
Feature Flags Skill - remote feature toggle management.

Toggles features across managed repos without deploying. Supports gradual
rollout percentages and environment targeting.

Commands:
    flag set <repo> <flag> <enabled|disabled> [N%]  - Set a feature flag
    feature flag <repo> <flag> on/off [N%]          - Set a feature flag (alias)
    flag list <repo> / feature flags <repo>         - List all flags for a repo
    flag get <repo> <flag>                          - Get current value of a flag
    flag delete <repo> <flag>                       - Remove a feature flag
    flags all / all feature flags                   - Show flags across all repos
    flag history <repo>                             - Show flag change history

Example:
    flag set JUDO dark-mode enabled
    feature flag JUDO dark-mode on 50%
"""

import re
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from core.skills.base import BaseSkill, CommandSpec, RoutingResult
from core.store import JsonStore

STORE_DOCUMENT = "feature-flags"
MAX_HISTORY = 50

SET_RE = re.compile(
    r"(?:flag\s+set|feature\s+flag)\s+(\S+)\s+(\S+)\s+(enabled|disabled|on|off)(?:\s+(\d+)%)?",
    re.I,
)
LIST_RE = re.compile(r"(?:flag\s+list|feature\s+flags)\s+(\S+)", re.I)
GET_RE = re.compile(r"flag\s+get\s+(\S+)\s+(\S+)", re.I)
DELETE_RE = re.compile(r"flag\s+delete\s+(\S+)\s+(\S+)", re.I)
ALL_RE = re.compile(r"flags\s+all|all\s+feature\s+flags", re.I)
HISTORY_RE = re.compile(r"flag\s+history\s+(\S+)", re.I)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'' if n == 1 else 's'}"


class FeatureFlagsSkill(BaseSkill):
    name = "feature-flags"
    description = "Manage feature flags across repos - toggle features remotely without deploying"
    priority = 17

    commands = [
        CommandSpec(
            r"flag\s+set\s+(\S+)\s+(\S+)\s+(enabled|disabled|on|off)(\s+\d+%)?",
            "Set a feature flag for a repo",
            "flag set <repo> <flag> <enabled|disabled|on|off> [percentage%]",
        ),
        CommandSpec(
            r"feature\s+flag\s+(\S+)\s+(\S+)\s+(on|off|enabled|disabled)(\s+\d+%)?",
            "Set a feature flag (alias)",
            "feature flag <repo> <flag> on/off [percentage%]",
        ),
        CommandSpec(r"flag\s+list\s+(\S+)", "List all flags for a repo", "flag list <repo>"),
        CommandSpec(
            r"feature\s+flags\s+(\S+)", "List all flags for a repo (alias)", "feature flags <repo>"
        ),
        CommandSpec(r"flag\s+get\s+(\S+)\s+(\S+)", "Get current value of a flag", "flag get <repo> <flag>"),
        CommandSpec(r"flag\s+delete\s+(\S+)\s+(\S+)", "Remove a feature flag", "flag delete <repo> <flag>"),
        CommandSpec(r"flags\s+all", "Show flags across all repos", "flags all"),
        CommandSpec(r"all\s+feature\s+flags", "Show all flags (alias)", "all feature flags"),
        CommandSpec(r"flag\s+history\s+(\S+)", "Show flag change history for a repo", "flag history <repo>"),
    ]

    def __init__(self, context=None):
        super().__init__(context)
        self.change_history: deque = deque(maxlen=MAX_HISTORY)

    @property
    def store(self) -> JsonStore:
        if self.memory is None:
            self.memory = JsonStore((self.config or {}).get("data_dir", "data"))
        return self.memory

    async def initialize(self) -> None:
        await super().initialize()
        self.log("info", "Feature flags skill initialized")

    async def execute(self, command: str, context: Dict[str, Any]) -> RoutingResult:
        raw = command.strip()

        m = SET_RE.fullmatch(raw)
        if m:
            return self.handle_set(m.group(1), m.group(2), m.group(3), m.group(4), context or {})
        m = LIST_RE.fullmatch(raw)
        if m:
            return self.handle_list(m.group(1))
        m = GET_RE.fullmatch(raw)
        if m:
            return self.handle_get(m.group(1), m.group(2))
        m = DELETE_RE.fullmatch(raw)
        if m:
            return self.handle_delete(m.group(1), m.group(2))
        if ALL_RE.fullmatch(raw):
            return self.handle_all()
        m = HISTORY_RE.fullmatch(raw)
        if m:
            return self.handle_history(m.group(1))

        return self.error(
            "Unknown feature flags command",
            suggestion="Try: flag set, flag list, flag get, flag delete, flags all, flag history",
        )

    # ---- handlers ----

    def handle_set(
        self, repo: str, flag: str, value: str, percent: Optional[str], context: Dict[str, Any]
    ) -> RoutingResult:
        repo_key = repo.upper()
        flag_key = flag.lower()
        enabled = value.lower() in ("enabled", "on")
        percentage = int(percent) if percent else (100 if enabled else 0)
        now = _now().isoformat()
        user_id = str(context.get("chat_id") or context.get("sender_id") or "unknown")

        flags = self.load_flags()
        repo_flags = flags.setdefault(repo_key, {})
        existing = repo_flags.get(flag_key)

        self.change_history.append(
            {
                "repo": repo_key,
                "flag": flag_key,
                "old_value": existing["enabled"] if existing else None,
                "new_value": enabled,
                "old_percentage": existing["percentage"] if existing else None,
                "new_percentage": percentage,
                "timestamp": now,
                "changed_by": user_id,
                "action": "updated" if existing else "created",
            }
        )

        repo_flags[flag_key] = {
            "enabled": enabled,
            "description": existing.get("description", "") if existing else "",
            "created_at": existing.get("created_at", now) if existing else now,
            "updated_at": now,
            "updated_by": user_id,
            "percentage": percentage,
            "environment": existing.get("environment", "all") if existing else "all",
        }
        self.store.save(STORE_DOCUMENT, flags)

        action = "updated" if existing else "created"
        msg = f"Feature flag {action}\n\n"
        msg += f"Repo: {repo_key}\nFlag: {flag_key}\n"
        msg += f"Status: {'Enabled' if enabled else 'Disabled'}\nRollout: {percentage}%\n"
        if existing:
            prev = "Enabled" if existing["enabled"] else "Disabled"
            msg += f"Previous: {prev} ({existing['percentage']}%)\n"
        msg += (
            "\nNote: This only updates the flag store. Your app needs\n"
            "to read from the flags API to pick up the change."
        )

        self.log("info", f"Flag {flag_key} {action} for {repo_key}")
        return self.success(msg, data=repo_flags[flag_key])

    def handle_list(self, repo: str) -> RoutingResult:
        repo_key = repo.upper()
        repo_flags = self.load_flags().get(repo_key) or {}
        if not repo_flags:
            return self.success(
                f"No feature flags configured for {repo_key}.\n\n"
                f'Use "flag set {repo_key} <flag> on" to create one.'
            )

        msg = f"Feature Flags: {repo_key}\n"
        for name, flag in repo_flags.items():
            msg += "\n  " + self._flag_row(name, flag)
        msg += f"\n\n{_plural(len(repo_flags), 'flag')} configured"
        return self.success(msg, data=repo_flags)

    def handle_get(self, repo: str, flag: str) -> RoutingResult:
        repo_key = repo.upper()
        flag_key = flag.lower()
        f = (self.load_flags().get(repo_key) or {}).get(flag_key)
        if not f:
            return self._not_found(repo_key, flag_key)

        msg = f"Feature Flag: {flag_key}\n\n"
        msg += f"Repo: {repo_key}\n"
        msg += f"Status: {'Enabled' if f['enabled'] else 'Disabled'}\n"
        msg += f"Rollout: {f['percentage']}%\n"
        msg += f"Environment: {f.get('environment') or 'all'}\n"
        if f.get("description"):
            msg += f"Description: {f['description']}\n"
        msg += f"Created: {self._format_ts(f.get('created_at'))}\n"
        msg += f"Updated: {self._format_ts(f.get('updated_at'))}\n"
        msg += f"Updated by: {f.get('updated_by') or 'unknown'}"
        return self.success(msg, data=f)

    def handle_delete(self, repo: str, flag: str) -> RoutingResult:
        repo_key = repo.upper()
        flag_key = flag.lower()
        flags = self.load_flags()
        existing = (flags.get(repo_key) or {}).get(flag_key)
        if not existing:
            return self._not_found(repo_key, flag_key)

        self.change_history.append(
            {
                "repo": repo_key,
                "flag": flag_key,
                "old_value": existing["enabled"],
                "new_value": None,
                "timestamp": _now().isoformat(),
                "changed_by": "user",
                "action": "deleted",
            }
        )

        del flags[repo_key][flag_key]
        if not flags[repo_key]:
            del flags[repo_key]
        self.store.save(STORE_DOCUMENT, flags)

        self.log("info", f"Flag {flag_key} deleted from {repo_key}")
        return self.success(f'Feature flag "{flag_key}" deleted from {repo_key}')

    def handle_all(self) -> RoutingResult:
        flags = self.load_flags()
        if not flags:
            return self.success(
                "No feature flags configured for any repo.\n\n"
                'Use "flag set <repo> <flag> on" to create one.'
            )

        cutoff = (_now() - timedelta(days=1)).isoformat()
        msg = "Feature Flags: All Repos\n"
        total = 0
        for repo in sorted(flags):
            repo_flags = flags[repo]
            if not repo_flags:
                continue
            msg += f"\n{repo}\n"
            for name, flag in repo_flags.items():
                recent = " *" if (flag.get("updated_at") or "") > cutoff else ""
                msg += f"  {self._flag_row(name, flag)}{recent}\n"
                total += 1

        msg += f"\n{_plural(total, 'flag')} across {_plural(len(flags), 'repo')}"
        msg += "\n* = changed in last 24h"
        return self.success(msg)

    def handle_history(self, repo: str) -> RoutingResult:
        repo_key = repo.upper()
        entries = [h for h in self.change_history if h["repo"] == repo_key][-10:][::-1]
        if not entries:
            return self.success(
                f"No flag change history for {repo_key}.\n\n"
                "History is recorded when flags are set or deleted."
            )

        msg = f"Flag History: {repo_key} (last {len(entries)} changes)\n"
        for entry in entries:
            stamp = datetime.fromisoformat(entry["timestamp"]).strftime("%d %b %H:%M")
            label = entry["flag"].ljust(18)
            if entry["action"] == "created":
                msg += f"\n  {stamp}  {label} Created ({'ON' if entry['new_value'] else 'OFF'})"
            elif entry["action"] == "deleted":
                msg += f"\n  {stamp}  {label} Deleted"
            else:
                old = "ON " if entry["old_value"] else "OFF"
                new = "ON " if entry["new_value"] else "OFF"
                msg += f"\n  {stamp}  {label} {old} -> {new}"
                if entry["old_percentage"] != entry["new_percentage"]:
                    msg += f" ({entry['old_percentage']}% -> {entry['new_percentage']}%)"
        return self.success(msg, data=entries)

    # ---- helpers ----

    def load_flags(self) -> Dict[str, Dict[str, Any]]:
        return self.store.load(STORE_DOCUMENT)

    def _not_found(self, repo_key: str, flag_key: str) -> RoutingResult:
        return self.error(
            f'Flag "{flag_key}" not found in {repo_key}',
            suggestion=f'Use "flag list {repo_key}" to see available flags',
        )

    @staticmethod
    def _flag_row(name: str, flag: Dict[str, Any]) -> str:
        status = "ON " if flag.get("enabled") else "OFF"
        pct = f"{flag.get('percentage', 0):>3}%"
        return f"{name.ljust(20)} {status}  {pct}  {flag.get('environment') or 'all'}"

    @staticmethod
    def _format_ts(value: Optional[str]) -> str:
        if not value:
            return "unknown"
        try:
            return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M UTC")
        except ValueError:
            return value

    async def shutdown(self) -> None:
        self.change_history.clear()
        self.log("info", "Feature flags skill shut down")
        await super().shutdown()

    def get_metadata(self) -> Dict[str, Any]:
        meta = super().get_metadata()
        flags = self.load_flags()
        meta.update(
            {
                "data_type": STORE_DOCUMENT,
                "total_flags": sum(len(f) for f in flags.values()),
                "total_repos": len(flags),
                "history_length": len(self.change_history),
            }
        )
        return meta


Skill = FeatureFlagsSkill
