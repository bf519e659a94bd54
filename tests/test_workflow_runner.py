import asyncio

import pytest

from core.errors import (
    MissingArgumentsError,
    NoActiveWorkflowError,
    WorkflowBusyError,
    WorkflowNotFoundError,
)
from core.skills.base import RoutingResult
from core.workflows import RunStatus, WorkflowCatalog, WorkflowRunner


class RecordingExecutor:
    """Executor double: records commands, fails or blocks on request."""

    def __init__(self, fail_on=None, block_on=None):
        self.commands = []
        self.fail_on = fail_on
        self.block_on = block_on
        self.blocked = asyncio.Event()

    async def __call__(self, command, context):
        self.commands.append(command)
        if self.block_on and command.startswith(self.block_on):
            self.blocked.set()
            await asyncio.sleep(3600)
        if self.fail_on and command.startswith(self.fail_on):
            raise RuntimeError(f"{command} exploded")
        return RoutingResult(success=True, message=f"ok: {command}")


def make_runner(**kwargs):
    return WorkflowRunner(WorkflowCatalog(), **kwargs)


@pytest.mark.asyncio
async def test_hotfix_resolves_first_step_from_args():
    executor = RecordingExecutor()
    runner = make_runner(executor=executor)

    report = await runner.run("hotfix", "myrepo 42")

    assert executor.commands[0] == "fix issue myrepo #42"
    assert report.run.steps[0].command == "fix issue myrepo #42"
    # Unsupplied placeholders stay literal
    assert report.run.steps[1].command == "review pr myrepo {prNumber}"
    assert report.run.status == RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_auto_confirm_annotates_preview():
    runner = make_runner(executor=RecordingExecutor())
    report = await runner.run("hotfix", "myrepo 42")
    assert any("Auto-proceeding for preview" in line for line in report.lines)


@pytest.mark.asyncio
async def test_failing_step_halts_before_next_step():
    executor = RecordingExecutor(fail_on="changelog")
    runner = make_runner(executor=executor)

    report = await runner.run("release", "JUDO")
    run = report.run

    assert executor.commands == ["run tests JUDO", "changelog JUDO"]
    assert run.status == RunStatus.FAILED
    assert run.failed_step.index == 1
    assert run.failed_step.name == "Generate Changelog"
    assert "exploded" in run.failed_step.error
    assert len(run.completed_steps) == 1

    status = runner.status()
    assert status["active"] is None
    assert status["recent"][0]["status"] == "failed"
    assert len(status["recent"][0]["completed_steps"]) == 1


@pytest.mark.asyncio
async def test_unsuccessful_result_counts_as_failure():
    async def executor(command, context):
        return {"success": False, "message": "nope", "error": "denied", "skill": "briefing"}

    runner = make_runner(executor=executor)
    report = await runner.run("morning-routine")
    assert report.run.status == RunStatus.FAILED
    assert report.run.failed_step.index == 0
    assert report.run.failed_step.error == "denied"


@pytest.mark.asyncio
async def test_unclaimed_step_is_previewed_not_failed():
    async def executor(command, context):
        return RoutingResult(
            success=False, message="No skill available to handle this command", skill=None
        )

    runner = make_runner(executor=executor)
    report = await runner.run("release", "JUDO")

    assert report.run.status == RunStatus.COMPLETED
    assert report.run.failed_step is None
    assert len(report.run.completed_steps) == len(report.run.steps)
    assert "-> no skill handles `run tests JUDO`, previewed" in report.lines


@pytest.mark.asyncio
async def test_second_run_while_busy_names_running_workflow():
    executor = RecordingExecutor(block_on="morning brief")
    runner = make_runner(executor=executor)

    task = asyncio.create_task(runner.run("morning-routine"))
    await executor.blocked.wait()

    with pytest.raises(WorkflowBusyError) as exc:
        runner.start("quality-check", "JUDO")
    assert "Morning Routine" in exc.value.suggestion

    runner.stop()
    report = await task
    assert report.run.status == RunStatus.STOPPED


@pytest.mark.asyncio
async def test_stop_during_run_halts_and_archives():
    executor = RecordingExecutor(block_on="stats")
    runner = make_runner(executor=executor)

    task = asyncio.create_task(runner.run("quality-check", "JUDO"))
    await executor.blocked.wait()

    stopped = runner.stop()
    report = await task

    assert stopped is report.run
    assert report.run.status == RunStatus.STOPPED
    assert len(report.run.completed_steps) == 2
    assert "quality report" not in executor.commands
    assert runner.active is None
    assert list(runner.history) == [report.run]


def test_stop_without_active_run_raises():
    runner = make_runner()
    with pytest.raises(NoActiveWorkflowError):
        runner.stop()


def test_unknown_workflow_and_missing_args():
    runner = make_runner()
    with pytest.raises(WorkflowNotFoundError):
        runner.start("nope")
    with pytest.raises(MissingArgumentsError) as exc:
        runner.start("hotfix", "onlyrepo")
    assert exc.value.missing == ["issue"]
    assert exc.value.suggestion == "Usage: workflow run hotfix <repo> <issue>"
    assert runner.active is None


@pytest.mark.asyncio
async def test_custom_workflow_runs_all_steps():
    catalog = WorkflowCatalog()
    catalog.create("myflow", '"a" "b" "c"')
    executor = RecordingExecutor()
    runner = WorkflowRunner(catalog, executor=executor)

    report = await runner.run("myflow")

    assert executor.commands == ["a", "b", "c"]
    assert report.run.status == RunStatus.COMPLETED
    assert len(report.run.completed_steps) == 3
    assert runner.history[-1] is report.run


@pytest.mark.asyncio
async def test_history_is_bounded_fifo():
    catalog = WorkflowCatalog()
    catalog.create("tiny", '"noop"')
    runner = WorkflowRunner(catalog, executor=RecordingExecutor())

    runs = []
    for _ in range(25):
        runs.append((await runner.run("tiny")).run)

    assert len(runner.history) == 20
    assert runner.history[0] is runs[5]
    assert runner.history[-1] is runs[-1]


@pytest.mark.asyncio
async def test_step_timeout_fails_step():
    executor = RecordingExecutor(block_on="morning brief")
    runner = make_runner(executor=executor, step_timeout=0.05)

    report = await runner.run("morning-routine")

    assert report.run.status == RunStatus.FAILED
    assert "timed out" in report.run.failed_step.error


@pytest.mark.asyncio
async def test_auto_repo_fills_missing_repo():
    runner = make_runner(executor=RecordingExecutor())
    run = runner.start("release", "", {"auto_repo": "JUDO"})
    assert run.args["repo"] == "JUDO"
    assert run.steps[0].command == "run tests JUDO"
    runner.stop()


@pytest.mark.asyncio
async def test_no_executor_previews_steps():
    runner = make_runner()
    report = await runner.run("release", "JUDO")
    assert report.run.status == RunStatus.COMPLETED
    assert len(report.run.completed_steps) == 4


@pytest.mark.asyncio
async def test_gate_mode_waits_for_confirmation():
    prompts = []

    async def notify(text):
        prompts.append(text)

    executor = RecordingExecutor()
    runner = make_runner(executor=executor, confirm_mode="gate")

    task = asyncio.create_task(runner.run("hotfix", "myrepo 42", notify=notify))
    for _ in range(100):
        if runner.active and runner.active.pending_confirmation:
            break
        await asyncio.sleep(0.01)

    pending = runner.active.pending_confirmation
    assert pending.step_name == "Deploy"
    assert "deploy myrepo" not in executor.commands
    assert pending.token in prompts[0]

    with pytest.raises(NoActiveWorkflowError):
        runner.confirm("wf_wrong")
    runner.confirm(pending.token)

    report = await task
    assert report.run.status == RunStatus.COMPLETED
    assert executor.commands[-1] == "deploy myrepo"


@pytest.mark.asyncio
async def test_gate_mode_rejection_stops_run():
    executor = RecordingExecutor()
    runner = make_runner(executor=executor, confirm_mode="gate")

    task = asyncio.create_task(runner.run("hotfix", "myrepo 42"))
    for _ in range(100):
        if runner.active and runner.active.pending_confirmation:
            break
        await asyncio.sleep(0.01)

    runner.confirm(approved=False)
    report = await task

    assert report.run.status == RunStatus.STOPPED
    assert len(report.run.completed_steps) == 2
    assert "deploy myrepo" not in executor.commands


@pytest.mark.asyncio
async def test_gate_mode_confirmation_timeout_fails():
    runner = make_runner(executor=RecordingExecutor(), confirm_mode="gate", confirm_timeout=0.05)
    report = await runner.run("hotfix", "myrepo 42")
    assert report.run.status == RunStatus.FAILED
    assert report.run.failed_step.name == "Deploy"
