"""
Workflow Skill - Multi-step automated workflow orchestration.

Chains common operations (fix -> PR -> review -> deploy) into single
commands, with built-in templates and custom workflows.

Commands:
    workflow list / workflows          - List available workflows
    workflow run <name> [args]         - Execute a workflow by name
    workflow create <name> "steps..."  - Create a custom workflow
    workflow delete <name>             - Remove a custom workflow
    workflow status                    - Show running/recent status
    workflow stop                      - Stop the running workflow
    workflow confirm|reject [token]    - Answer a confirmation gate
"""

import asyncio
import re
from typing import Any, Dict, Optional

from core.errors import WorkflowError
from core.skills.base import BaseSkill, CommandSpec, RoutingResult
from core.workflows.catalog import WorkflowCatalog
from core.workflows.runner import (
    CONFIRM_GATE,
    RunStatus,
    WorkflowReport,
    WorkflowRun,
    WorkflowRunner,
    format_duration,
    progress_bar,
    time_ago,
)

RULE = "━" * 28
STATUS_ICONS = {
    RunStatus.RUNNING: "🔄",
    RunStatus.COMPLETED: "✅",
    RunStatus.FAILED: "❌",
    RunStatus.STOPPED: "⏹",
}


class WorkflowSkill(BaseSkill):
    name = "workflow"
    description = "Define and run multi-step automated workflows"
    priority = 21

    commands = [
        CommandSpec(r"workflows?", "List available workflows", "workflows"),
        CommandSpec(r"workflow\s+list", "List available workflows", "workflow list"),
        CommandSpec(r"workflow\s+run\s+(.+)", "Execute a workflow", "workflow run <name> [args]"),
        CommandSpec(
            r"workflow\s+create\s+(.+)",
            "Create custom workflow",
            'workflow create <name> "step1" "step2"',
        ),
        CommandSpec(r"workflow\s+delete\s+(\S+)", "Delete a custom workflow", "workflow delete <name>"),
        CommandSpec(r"workflow\s+status", "Show workflow status", "workflow status"),
        CommandSpec(r"workflow\s+stop", "Stop running workflow", "workflow stop"),
        CommandSpec(
            r"workflow\s+(confirm|reject)(?:\s+(\S+))?",
            "Approve or reject a step waiting for confirmation",
            "workflow confirm [token]",
        ),
    ]

    def __init__(self, context=None):
        super().__init__(context)
        self.catalog: Optional[WorkflowCatalog] = None
        self.runner: Optional[WorkflowRunner] = None
        self._background: Optional[asyncio.Task] = None

    async def initialize(self) -> None:
        settings = (self.config or {}).get("workflow", {}) if isinstance(self.config, dict) else {}

        self.catalog = WorkflowCatalog(store=self.memory)
        loaded = self.catalog.load()

        executor = self.registry.route if self.registry is not None else None
        self.runner = WorkflowRunner(
            self.catalog,
            executor=executor,
            confirm_mode=settings.get("confirm_mode", "auto"),
            step_timeout=float(settings.get("step_timeout", 300.0)),
            confirm_timeout=float(settings.get("confirm_timeout", 300.0)),
            history_size=int(settings.get("history_size", 20)),
        )
        await super().initialize()
        self.log(
            "info",
            f"Workflow skill ready - {len(self.catalog.list_builtin())} built-in templates, "
            f"{loaded} custom",
        )

    async def execute(self, command: str, context: Dict[str, Any]) -> RoutingResult:
        text = command.strip()

        def match(pattern: str):
            return re.fullmatch(pattern, text, re.IGNORECASE)

        try:
            if match(r"workflows?|workflow\s+list"):
                return self.handle_list()
            m = match(r"workflow\s+run\s+(.+)")
            if m:
                return await self.handle_run(m.group(1), context)
            m = match(r"workflow\s+create\s+(.+)")
            if m:
                return self.handle_create(m.group(1), context)
            m = match(r"workflow\s+delete\s+(\S+)")
            if m:
                return self.handle_delete(m.group(1).lower())
            if match(r"workflow\s+status"):
                return self.handle_status()
            if match(r"workflow\s+stop"):
                return self.handle_stop()
            m = match(r"workflow\s+(confirm|reject)(?:\s+(\S+))?")
            if m:
                return self.handle_confirm(m.group(2), approved=m.group(1).lower() == "confirm")
        except WorkflowError as e:
            return self.error(e.message, suggestion=e.suggestion)

        return self.error("Unknown workflow command", suggestion='Try "workflow list"')

    # ---- list ----

    def handle_list(self) -> RoutingResult:
        msg = f"*Available Workflows*\n{RULE}\n\n*Built-in:*\n"
        for wf in self.catalog.list_builtin():
            flow = " -> ".join(s.name.split(" ")[-1] for s in wf.steps)
            args_hint = f" [{', '.join(wf.args)}]" if wf.args else ""
            msg += f"  `{wf.key}`{args_hint}\n    {flow}\n"

        msg += "\n*Custom:*\n"
        custom = self.catalog.list_custom()
        if not custom:
            msg += "  _(none yet)_\n"
        for wf in custom:
            msg += f"  `{wf.key}` ({len(wf.steps)} steps) - {wf.description}\n"

        msg += "\n*Usage:* `workflow run <name> [args]`"
        return self.success(
            msg,
            data={
                "builtin": [wf.key for wf in self.catalog.list_builtin()],
                "custom": [wf.key for wf in custom],
            },
        )

    # ---- run ----

    async def handle_run(self, args_text: str, context: Dict[str, Any]) -> RoutingResult:
        parts = args_text.strip().split(None, 1)
        key = parts[0] if parts else ""
        rest = parts[1] if len(parts) > 1 else ""

        run_context = dict(context or {})
        if not run_context.get("auto_repo") and isinstance(self.config, dict):
            run_context["auto_repo"] = self.config.get("auto_repo")

        run = self.runner.start(key, rest, run_context)
        plan = self._render_plan(run)

        needs_gate = self.runner.confirm_mode == CONFIRM_GATE and any(
            s.requires_confirm for s in run.steps
        )
        notify = run_context.get("notify")
        if needs_gate:
            self._background = asyncio.create_task(self._run_in_background(run, run_context, notify))
            return self.success(
                plan + "\nStarted. Confirmation steps will ask for approval; "
                "check progress with `workflow status`.",
                data=run.to_dict(),
            )

        report = await self.runner.execute(run, run_context, notify)
        return self._report_result(plan + "\nStarting...\n", report)

    async def _run_in_background(self, run: WorkflowRun, context: Dict[str, Any], notify) -> None:
        try:
            report = await self.runner.execute(run, context, notify)
        except Exception as e:
            self.log("error", f"Background workflow {run.key} crashed: {e}")
            return
        if notify:
            try:
                await notify(self._render_summary(report))
            except Exception as e:
                self.log("error", f"Failed to send workflow summary: {e}")

    def _render_plan(self, run: WorkflowRun) -> str:
        msg = f"*Running: {run.name}*\n_{run.description}_\n\n*Steps:*\n"
        for i, step in enumerate(run.steps):
            tag = " _(confirm)_" if step.requires_confirm else ""
            msg += f"  {i + 1}. {step.name}{tag}\n     `{step.command}`\n"
        return msg

    def _render_summary(self, report: WorkflowReport) -> str:
        run = report.run
        icon = "✅" if run.status == RunStatus.COMPLETED else "❌"
        msg = f"{RULE}\n{icon} *Workflow {run.status.value}: {run.name}*\n"
        msg += (
            f"Steps: {len(run.completed_steps)}/{len(run.steps)} | "
            f"Duration: {format_duration(run.elapsed)}"
        )
        if run.failed_step:
            f = run.failed_step
            msg += f"\n\n*Failed at step {f.index + 1}:* {f.name}\nError: {f.error}"
            msg += f"\n_Fix the issue and re-run: `workflow run {run.key}`_"
        return msg

    def _report_result(self, plan: str, report: WorkflowReport) -> RoutingResult:
        run = report.run
        message = plan + "\n" + "\n".join(report.lines) + "\n\n" + self._render_summary(report)
        return RoutingResult(
            success=run.status == RunStatus.COMPLETED,
            message=message,
            data=run.to_dict(),
            error=run.failed_step.error if run.failed_step else None,
        )

    # ---- create / delete ----

    def handle_create(self, args_text: str, context: Dict[str, Any]) -> RoutingResult:
        m = re.match(r"^(\S+)\s+(.*)$", args_text.strip(), re.S)
        if not m:
            return self.error(
                "Provide a name and steps",
                suggestion='Usage: workflow create <name> "step1 cmd" "step2 cmd"',
            )

        created_by = (context or {}).get("chat_id") or (context or {}).get("sender_id")
        wf = self.catalog.create(m.group(1), m.group(2), created_by=created_by)

        msg = f"*Custom Workflow Created*\n\n*Name:* `{wf.key}`\n*Steps:* {len(wf.steps)}\n"
        if wf.args:
            msg += f"*Args:* {', '.join(wf.args)}\n"
        msg += "\n"
        for i, step in enumerate(wf.steps):
            msg += f"  {i + 1}. `{step.command}`\n"
        msg += f"\n*Run it:* `{wf.usage()}`"
        return self.success(msg, data=wf.to_dict())

    def handle_delete(self, name: str) -> RoutingResult:
        if not self.catalog.delete(name):
            return self.error(f'Custom workflow "{name}" not found', suggestion='Use "workflow list"')
        return self.success(f'Custom workflow "{name}" deleted')

    # ---- status / stop / confirm ----

    def handle_status(self) -> RoutingResult:
        status = self.runner.status()
        msg = f"*Workflow Status*\n{RULE}\n\n"

        run = self.runner.active
        if run is not None:
            msg += f"{STATUS_ICONS.get(run.status, '')} *Active: {run.name}*\n"
            msg += f"  Status: {run.status.value} | Step {run.current_step + 1}/{len(run.steps)}\n"
            msg += f"  {progress_bar(run.current_step + 1, len(run.steps))}\n"
            if run.pending_confirmation:
                p = run.pending_confirmation
                msg += f"  *Awaiting confirmation:* {p.step_name} (`workflow confirm {p.token}`)\n"
            if run.failed_step:
                msg += f"  *Failed at:* {run.failed_step.name}\n"
            msg += "\n"
        else:
            msg += "_No workflow currently running._\n\n"

        recent = list(self.runner.history)[-5:][::-1]
        if recent:
            msg += "*Recent:*\n"
            for wf in recent:
                ago = time_ago(wf.completed_at or wf.started_at)
                msg += (
                    f"  {STATUS_ICONS.get(wf.status, '')} *{wf.name}* - {wf.status.value} - "
                    f"{len(wf.completed_steps)}/{len(wf.steps)} steps _{ago}_\n"
                )
        else:
            msg += "_No history yet._\n"
        msg += "\n`workflow run <name>` | `workflow stop`"
        return self.success(msg, data=status)

    def handle_stop(self) -> RoutingResult:
        run = self.runner.stop()
        done = len(run.completed_steps)

        msg = f"*Workflow Stopped: {run.name}*\n\nCompleted {done}/{len(run.steps)} steps.\n"
        if done:
            msg += "\n*Completed:*\n"
            for i, step in enumerate(run.completed_steps):
                msg += f"  ✅ {i + 1}. {step.name}\n"
        remaining = len(run.steps) - done
        if remaining > 0:
            msg += f"\n*Skipped:* {remaining} remaining step(s)"
        return self.success(msg, data=run.to_dict())

    def handle_confirm(self, token: Optional[str], approved: bool) -> RoutingResult:
        pending = self.runner.confirm(token, approved=approved)
        verb = "Approved" if approved else "Rejected"
        return self.success(f"{verb} step *{pending.step_name}* (`{pending.command}`)")

    # ---- lifecycle ----

    async def shutdown(self) -> None:
        if self.runner is not None:
            self.runner.shutdown()
        if self._background is not None and not self._background.done():
            self._background.cancel()
        if self.catalog is not None:
            self.catalog.clear()
        await super().shutdown()

    def get_metadata(self) -> Dict[str, Any]:
        meta = super().get_metadata()
        meta.update(
            {
                "builtin_count": len(self.catalog.list_builtin()) if self.catalog else 0,
                "custom_count": len(self.catalog.list_custom()) if self.catalog else 0,
                "history_count": len(self.runner.history) if self.runner else 0,
                "has_active_workflow": bool(self.runner and self.runner.active),
            }
        )
        return meta


Skill = WorkflowSkill
