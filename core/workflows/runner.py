"""
Workflow Runner - executes one workflow at a time.

Each step's command is handed to an executor coroutine (normally
SkillRegistry.route). Steps run strictly in order; a failing step halts
the run, and `stop()` halts it from outside, cancelling the step in flight.
"""

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from loguru import logger

from core.errors import (
    MissingArgumentsError,
    NoActiveWorkflowError,
    StepFailedError,
    WorkflowBusyError,
    WorkflowConfigError,
    WorkflowNotFoundError,
)
from core.skills.base import RoutingResult
from core.workflows.catalog import WorkflowCatalog, resolve_template, tokenize

Executor = Callable[[str, Dict[str, Any]], Awaitable[RoutingResult]]
Notifier = Callable[[str], Awaitable[None]]

CONFIRM_AUTO = "auto"
CONFIRM_GATE = "gate"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass
class ResolvedStep:
    name: str
    command: str
    requires_confirm: bool = False


@dataclass
class CompletedStep:
    index: int
    name: str
    command: str
    completed_at: float
    message: str = ""


@dataclass
class FailedStep:
    index: int
    name: str
    error: str


@dataclass
class PendingConfirmation:
    token: str
    step_index: int
    step_name: str
    command: str
    event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    approved: Optional[bool] = None


@dataclass
class WorkflowRun:
    key: str
    name: str
    description: str
    steps: List[ResolvedStep]
    args: Dict[str, str] = field(default_factory=dict)
    current_step: int = 0
    status: RunStatus = RunStatus.RUNNING
    completed_steps: List[CompletedStep] = field(default_factory=list)
    failed_step: Optional[FailedStep] = None
    pending_confirmation: Optional[PendingConfirmation] = None
    started_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None
    archived: bool = False

    @property
    def elapsed(self) -> float:
        return (self.completed_at or time.time()) - self.started_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "status": self.status.value,
            "current_step": self.current_step,
            "total_steps": len(self.steps),
            "steps": [s.__dict__.copy() for s in self.steps],
            "completed_steps": [s.__dict__.copy() for s in self.completed_steps],
            "failed_step": self.failed_step.__dict__.copy() if self.failed_step else None,
            "pending_confirmation": (
                {
                    "token": self.pending_confirmation.token,
                    "step": self.pending_confirmation.step_name,
                    "command": self.pending_confirmation.command,
                }
                if self.pending_confirmation
                else None
            ),
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


@dataclass
class WorkflowReport:
    """A finished (or halted) run plus the per-step log lines for rendering."""

    run: WorkflowRun
    lines: List[str] = field(default_factory=list)


def progress_bar(current: int, total: int) -> str:
    if total <= 0:
        return "[] 0%"
    current = max(0, min(current, total))
    bar = "█" * current + "░" * (total - current)
    return f"[{bar}] {round(current / total * 100)}%"


def format_duration(seconds: float) -> str:
    if not seconds or seconds < 0:
        return "0s"
    s = int(seconds)
    m, h = s // 60, s // 3600
    if h > 0:
        return f"{h}h {m % 60}m"
    if m > 0:
        return f"{m}m {s % 60}s"
    return f"{s}s"


def time_ago(ts: Optional[float]) -> str:
    if not ts:
        return "unknown"
    diff = time.time() - ts
    mins, hrs, days = int(diff // 60), int(diff // 3600), int(diff // 86400)
    if mins < 1:
        return "just now"
    if mins < 60:
        return f"{mins}m ago"
    if hrs < 24:
        return f"{hrs}h ago"
    return f"{days}d ago"


class WorkflowRunner:
    """
    Runs workflows from a catalog, one at a time.

    Args:
        catalog: Where workflow definitions are looked up
        executor: Coroutine run for every step command; None previews steps
        confirm_mode: "auto" approves confirmation steps for preview,
                      "gate" suspends the run until `confirm()` is called
        step_timeout: Seconds before a step counts as failed (0 = no limit)
        confirm_timeout: Seconds a confirmation gate waits (0 = forever)
        history_size: How many finished runs are kept
    """

    def __init__(
        self,
        catalog: WorkflowCatalog,
        executor: Optional[Executor] = None,
        confirm_mode: str = CONFIRM_AUTO,
        step_timeout: float = 300.0,
        confirm_timeout: float = 300.0,
        history_size: int = 20,
    ):
        if confirm_mode not in (CONFIRM_AUTO, CONFIRM_GATE):
            raise ValueError(f"Unknown confirm mode: {confirm_mode}")
        self.catalog = catalog
        self.executor = executor
        self.confirm_mode = confirm_mode
        self.step_timeout = step_timeout
        self.confirm_timeout = confirm_timeout
        self.active: Optional[WorkflowRun] = None
        self.history: Deque[WorkflowRun] = deque(maxlen=history_size)
        self._step_task: Optional[asyncio.Future] = None

    @property
    def is_running(self) -> bool:
        return self.active is not None and self.active.status == RunStatus.RUNNING

    def start(self, key: str, args_text: str = "", context: Optional[Dict] = None) -> WorkflowRun:
        """
        Validate a run request and claim the active slot.
        Nothing here awaits, so check-and-set of `active` cannot interleave.
        """
        context = context or {}
        key = (key or "").strip().lower()
        if not key:
            raise WorkflowConfigError(
                "Please specify a workflow name", suggestion='See "workflow list"'
            )

        workflow = self.catalog.get(key)
        if workflow is None:
            raise WorkflowNotFoundError(key)
        if self.is_running:
            raise WorkflowBusyError(self.active.name)

        provided = tokenize(args_text)
        required = list(workflow.args)
        if len(provided) < len(required) and "repo" in required and context.get("auto_repo"):
            provided.insert(required.index("repo"), context["auto_repo"])
        if len(provided) < len(required):
            raise MissingArgumentsError(key, required[len(provided):], required)

        args = {name: provided[i] for i, name in enumerate(required)}

        steps = [
            ResolvedStep(
                name=s.name,
                command=resolve_template(s.command, args),
                requires_confirm=s.requires_confirm,
            )
            for s in workflow.steps
        ]
        self.active = WorkflowRun(
            key=key,
            name=workflow.name,
            description=workflow.description,
            steps=steps,
            args=args,
        )
        logger.info(f"[Workflow] Starting {key} ({len(steps)} steps)")
        return self.active

    async def run(
        self,
        key: str,
        args_text: str = "",
        context: Optional[Dict[str, Any]] = None,
        notify: Optional[Notifier] = None,
    ) -> WorkflowReport:
        """Start and execute a workflow. Validation errors are raised before any step runs."""
        run = self.start(key, args_text, context)
        return await self.execute(run, context, notify)

    async def execute(
        self,
        run: WorkflowRun,
        context: Optional[Dict[str, Any]] = None,
        notify: Optional[Notifier] = None,
    ) -> WorkflowReport:
        context = dict(context or {})
        context["workflow"] = run.key
        report = WorkflowReport(run=run)
        total = len(run.steps)

        try:
            for i, step in enumerate(run.steps):
                if run.status != RunStatus.RUNNING:
                    report.lines.append("--- Workflow stopped ---")
                    break

                run.current_step = i
                report.lines.append(progress_bar(i + 1, total))
                report.lines.append(f"*Step {i + 1}/{total}: {step.name}*")
                report.lines.append(f"Command: `{step.command}`")

                try:
                    if step.requires_confirm:
                        approved = await self._confirm_step(run, i, step, report, notify)
                        if not approved:
                            if run.status == RunStatus.RUNNING:
                                report.lines.append(f'-> "{step.name}" rejected.')
                                self._mark_stopped(run)
                            report.lines.append("--- Workflow stopped ---")
                            break
                        if run.status != RunStatus.RUNNING:
                            report.lines.append("--- Workflow stopped ---")
                            break

                    report.lines.append(f"-> Executing: `{step.command}`")
                    result = await self._execute_step(step, context)
                    if not result.success and result.skill is None:
                        # Nothing claimed the command: keep the plan moving as a preview.
                        report.lines.append(f"-> no skill handles `{step.command}`, previewed")
                        result = RoutingResult(success=True, message="(preview)")
                    elif not result.success:
                        raise StepFailedError(result.error or result.message or "step failed")

                except asyncio.CancelledError:
                    if run.status != RunStatus.STOPPED:
                        self._mark_stopped(run)
                        raise
                    report.lines.append(f'-> "{step.name}" cancelled.')
                    report.lines.append("--- Workflow stopped ---")
                    break
                except Exception as e:
                    error = e.message if isinstance(e, StepFailedError) else str(e) or type(e).__name__
                    report.lines.append(f'-> "{step.name}" failed: {error}')
                    run.failed_step = FailedStep(index=i, name=step.name, error=error)
                    run.status = RunStatus.FAILED
                    logger.warning(f"[Workflow] {run.key} step {i + 1} ({step.name}) failed: {error}")
                    break

                if run.status != RunStatus.RUNNING:
                    # stop() arrived while the step was finishing; it is not counted.
                    report.lines.append("--- Workflow stopped ---")
                    break

                run.completed_steps.append(
                    CompletedStep(
                        index=i,
                        name=step.name,
                        command=step.command,
                        completed_at=time.time(),
                        message=result.message,
                    )
                )
                report.lines.append(f'-> "{step.name}" completed.')
        finally:
            if run.status == RunStatus.RUNNING:
                run.status = RunStatus.COMPLETED
            self._finish(run)

        logger.info(
            f"[Workflow] {run.key} {run.status.value}: "
            f"{len(run.completed_steps)}/{total} steps in {format_duration(run.elapsed)}"
        )
        return report

    async def _execute_step(self, step: ResolvedStep, context: Dict[str, Any]) -> RoutingResult:
        if self.executor is None:
            return RoutingResult(success=True, message="(preview)")

        self._step_task = asyncio.ensure_future(self.executor(step.command, context))
        try:
            if self.step_timeout and self.step_timeout > 0:
                try:
                    result = await asyncio.wait_for(self._step_task, self.step_timeout)
                except asyncio.TimeoutError:
                    raise StepFailedError(f"timed out after {format_duration(self.step_timeout)}")
            else:
                result = await self._step_task
        finally:
            self._step_task = None
        return RoutingResult.coerce(result)

    async def _confirm_step(
        self,
        run: WorkflowRun,
        index: int,
        step: ResolvedStep,
        report: WorkflowReport,
        notify: Optional[Notifier],
    ) -> bool:
        if self.confirm_mode == CONFIRM_AUTO:
            report.lines.append("_This step requires confirmation. Auto-proceeding for preview._")
            return True

        pending = PendingConfirmation(
            token=f"wf_{uuid.uuid4().hex[:8]}",
            step_index=index,
            step_name=step.name,
            command=step.command,
        )
        run.pending_confirmation = pending
        prompt = (
            f'Workflow "{run.name}" is waiting to run step {index + 1}: {step.name}\n'
            f"`{step.command}`\n"
            f"Reply `workflow confirm {pending.token}` or `workflow reject {pending.token}`."
        )
        report.lines.append(f"_Awaiting confirmation ({pending.token})._")
        logger.info(f"[Workflow] {run.key} awaiting confirmation {pending.token} for {step.name}")
        if notify:
            try:
                await notify(prompt)
            except Exception as e:
                logger.error(f"[Workflow] Failed to send confirmation prompt: {e}")

        try:
            timeout = self.confirm_timeout if self.confirm_timeout and self.confirm_timeout > 0 else None
            await asyncio.wait_for(pending.event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise StepFailedError(
                f"confirmation not received within {format_duration(self.confirm_timeout)}"
            )
        finally:
            run.pending_confirmation = None

        if pending.approved:
            report.lines.append(f"_Confirmed ({pending.token})._")
        return bool(pending.approved)

    def confirm(self, token: Optional[str] = None, approved: bool = True) -> PendingConfirmation:
        """Approve or reject the pending confirmation gate of the active run."""
        run = self.active
        pending = run.pending_confirmation if run else None
        if pending is None or (token and token != pending.token):
            raise NoActiveWorkflowError(
                "No confirmation is pending" + (f" for {token}" if token else ""),
                suggestion='Use "workflow status" to see the active workflow',
            )
        pending.approved = approved
        pending.event.set()
        logger.info(
            f"[Workflow] Confirmation {pending.token} {'approved' if approved else 'rejected'}"
        )
        return pending

    def stop(self) -> WorkflowRun:
        """Stop the active run, cancelling the step in flight."""
        if not self.is_running:
            raise NoActiveWorkflowError(
                "No workflow is currently running", suggestion='Use "workflow list"'
            )
        run = self.active
        self._mark_stopped(run)

        if run.pending_confirmation is not None:
            run.pending_confirmation.approved = False
            run.pending_confirmation.event.set()
        if self._step_task is not None and not self._step_task.done():
            self._step_task.cancel()

        self._finish(run)
        logger.info(f"[Workflow] Workflow stopped: {run.name} ({len(run.completed_steps)}/{len(run.steps)})")
        return run

    def _mark_stopped(self, run: WorkflowRun) -> None:
        run.status = RunStatus.STOPPED
        run.completed_at = time.time()

    def _finish(self, run: WorkflowRun) -> None:
        """Archive a run once and free the active slot."""
        if run.completed_at is None:
            run.completed_at = time.time()
        if not run.archived:
            run.archived = True
            self.history.append(run)
        if self.active is run:
            self.active = None

    def status(self, recent: int = 5) -> Dict[str, Any]:
        active = None
        if self.active is not None:
            run = self.active
            active = run.to_dict()
            active["progress"] = progress_bar(run.current_step + 1, len(run.steps))
        return {
            "active": active,
            "recent": [r.to_dict() for r in list(self.history)[-recent:][::-1]],
            "history_size": len(self.history),
        }

    def shutdown(self) -> None:
        if self.is_running:
            self.stop()
        self.history.clear()
