"""
Workflow Catalog - built-in pipelines plus user-defined ones.

Built-ins are module constants and can never be shadowed or overwritten.
Custom workflows are kept in memory keyed by lowercase name, and mirrored to
the JSON store when one is attached.
"""

import re
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from core.errors import WorkflowConfigError

MAX_CUSTOM_STEPS = 10
STORE_DOCUMENT = "workflows"

_PLACEHOLDER = re.compile(r"\{(\w+)\}")
_TOKEN = re.compile(r'"([^"]+)"|\'([^\']+)\'|(\S+)')
_QUOTED = re.compile(r'"([^"]+)"|\'([^\']+)\'')


@dataclass(frozen=True)
class StepSpec:
    name: str
    command: str
    requires_confirm: bool = False


@dataclass(frozen=True)
class WorkflowDefinition:
    key: str
    name: str
    description: str
    steps: Tuple[StepSpec, ...]
    args: Tuple[str, ...] = ()
    builtin: bool = False
    created_by: Optional[str] = None
    created_at: Optional[str] = None

    def usage(self) -> str:
        return " ".join(["workflow run", self.key] + [f"<{a}>" for a in self.args])

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDefinition":
        return cls(
            key=data["key"],
            name=data.get("name", data["key"]),
            description=data.get("description", ""),
            steps=tuple(StepSpec(**s) for s in data.get("steps", [])),
            args=tuple(data.get("args", [])),
            builtin=False,
            created_by=data.get("created_by"),
            created_at=data.get("created_at"),
        )


def _builtin(key, name, description, steps, args) -> WorkflowDefinition:
    return WorkflowDefinition(
        key=key,
        name=name,
        description=description,
        steps=tuple(StepSpec(*s) for s in steps),
        args=tuple(args),
        builtin=True,
    )


BUILT_IN_WORKFLOWS: Dict[str, WorkflowDefinition] = {
    wf.key: wf
    for wf in (
        _builtin(
            "hotfix",
            "Hotfix Pipeline",
            "Fix issue -> Create PR -> Auto-review -> Deploy",
            [
                ("Fix Issue", "fix issue {repo} #{issue}", False),
                ("Review PR", "review pr {repo} {prNumber}", False),
                ("Deploy", "deploy {repo}", True),
            ],
            ["repo", "issue"],
        ),
        _builtin(
            "release",
            "Release Pipeline",
            "Run tests -> Generate changelog -> Deploy -> Notify",
            [
                ("Run Tests", "run tests {repo}", False),
                ("Generate Changelog", "changelog {repo}", False),
                ("Deploy to Production", "deploy {repo}", True),
                ("Notify Team", "notify deployed {repo}", False),
            ],
            ["repo"],
        ),
        _builtin(
            "quality-check",
            "Full Quality Assessment",
            "Scan deps -> Review design -> Check stats -> Report",
            [
                ("Dependency Scan", "scan deps {repo}", False),
                ("Design Review", "review design {repo}", False),
                ("Repo Stats", "stats {repo}", False),
                ("Quality Report", "quality report", False),
            ],
            ["repo"],
        ),
        _builtin(
            "morning-routine",
            "Morning Routine",
            "Brief -> Deadlines -> Tasks -> Weather",
            [
                ("Morning Brief", "morning brief", False),
                ("Check Deadlines", "upcoming deadlines", False),
                ("My Tasks", "my tasks", False),
                ("Weather", "weather london", False),
            ],
            [],
        ),
        _builtin(
            "new-feature",
            "New Feature Pipeline",
            "Create branch -> Implement -> Test -> PR",
            [
                ("Create Branch", "create branch {repo} feature/{feature}", False),
                ("Implement", "create file {repo} {file} {description}", True),
                ("Run Tests", "run tests {repo}", False),
                ("Create PR", "create pr {repo}", True),
            ],
            ["repo", "feature", "file", "description"],
        ),
    )
}


def tokenize(text: str) -> List[str]:
    """Split on whitespace, keeping "double" or 'single' quoted runs together."""
    return [m.group(1) or m.group(2) or m.group(3) for m in _TOKEN.finditer(text or "")]


def find_placeholders(template: str) -> List[str]:
    return _PLACEHOLDER.findall(template)


def resolve_template(template: str, args: Dict[str, Any]) -> str:
    """Fill {name} tokens from `args`. Unknown names are left as literal {name}."""

    def _sub(m):
        value = args.get(m.group(1))
        return str(value) if value else m.group(0)

    return _PLACEHOLDER.sub(_sub, template)


def parse_steps(raw: str) -> List[str]:
    """Quoted step commands; falls back to a pipe-separated list."""
    steps = []
    for m in _QUOTED.finditer(raw):
        step = (m.group(1) or m.group(2) or "").strip()
        if step:
            steps.append(step)
    if not steps and "|" in raw:
        steps = [s.strip() for s in raw.split("|") if s.strip()]
    return steps


class WorkflowCatalog:
    def __init__(self, store: Any = None):
        self.store = store
        self.custom: Dict[str, WorkflowDefinition] = {}

    def load(self) -> int:
        """Load persisted custom workflows. Returns how many were loaded."""
        if self.store is None:
            return 0
        data = self.store.load(STORE_DOCUMENT)
        loaded = 0
        for key, raw in data.items():
            if key in BUILT_IN_WORKFLOWS:
                logger.warning(f'[Workflow] Ignoring stored workflow shadowing built-in "{key}"')
                continue
            try:
                self.custom[key] = WorkflowDefinition.from_dict(raw)
                loaded += 1
            except (KeyError, TypeError) as e:
                logger.error(f'[Workflow] Skipping malformed stored workflow "{key}": {e}')
        return loaded

    def _persist(self) -> None:
        if self.store is not None:
            self.store.save(
                STORE_DOCUMENT, {k: wf.to_dict() for k, wf in self.custom.items()}
            )

    def get(self, key: str) -> Optional[WorkflowDefinition]:
        key = (key or "").lower()
        return BUILT_IN_WORKFLOWS.get(key) or self.custom.get(key)

    def list_builtin(self) -> List[WorkflowDefinition]:
        return list(BUILT_IN_WORKFLOWS.values())

    def list_custom(self) -> List[WorkflowDefinition]:
        return list(self.custom.values())

    def create(
        self, name: str, raw_steps: str, created_by: Optional[str] = None
    ) -> WorkflowDefinition:
        """
        Define a custom workflow from quoted step commands.

        Raises:
            WorkflowConfigError: missing name/steps, built-in name, or too many steps
        """
        usage = 'Usage: workflow create <name> "step1 cmd" "step2 cmd"'
        if not name or not name.strip():
            raise WorkflowConfigError("Provide a name and steps", suggestion=usage)

        key = name.strip().lower()
        if key in BUILT_IN_WORKFLOWS:
            raise WorkflowConfigError(f'Cannot overwrite built-in workflow "{key}"')

        commands = parse_steps(raw_steps or "")
        if not commands:
            raise WorkflowConfigError(
                "No steps found. Wrap each step in quotes.",
                suggestion='Example: workflow create my-flow "run tests JUDO" "deploy JUDO"',
            )
        if len(commands) > MAX_CUSTOM_STEPS:
            raise WorkflowConfigError(f"Maximum {MAX_CUSTOM_STEPS} steps per workflow")

        args: List[str] = []
        for cmd in commands:
            for placeholder in find_placeholders(cmd):
                if placeholder not in args:
                    args.append(placeholder)

        steps = tuple(
            StepSpec(name=f"Step {i + 1}", command=cmd) for i, cmd in enumerate(commands)
        )
        definition = WorkflowDefinition(
            key=key,
            name=key,
            description=" -> ".join(f"S{i + 1}" for i in range(len(steps))),
            steps=steps,
            args=tuple(args),
            created_by=created_by or "unknown",
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self.custom[key] = definition
        self._persist()
        logger.info(f"[Workflow] Custom workflow created: {key} ({len(steps)} steps)")
        return definition

    def delete(self, name: str) -> bool:
        key = (name or "").lower()
        if key in BUILT_IN_WORKFLOWS:
            raise WorkflowConfigError(f'Cannot delete built-in workflow "{key}"')
        if key not in self.custom:
            return False
        del self.custom[key]
        self._persist()
        return True

    def clear(self) -> None:
        self.custom.clear()
