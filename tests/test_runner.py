"""Tests for ToolRunner orchestration."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from aidev.core.types import CodeLocation, ScanOptions, ScanResult, ScanStatus, Severity, ToolId
from aidev.orchestration.events import EventBus, ToolRunCompleted, ToolRunProgress, ToolRunStarted
from aidev.orchestration.runner import ToolRunner, format_notification
from aidev.orchestration.speculative import SpeculativeSession
from aidev.tools.base import BaseTool, ToolDeps


class StubTool(BaseTool):
    """Reports one finding per run; counts executions on its class."""

    tool_id = ToolId.LINT
    name = "Stub Lint"
    executions = 0

    def __init__(self, deps: ToolDeps | None = None, *, gate: asyncio.Event | None = None) -> None:
        super().__init__(deps)
        self.gate = gate

    async def execute(self, options=None):
        type(self).executions += 1
        return await super().execute(options)

    async def run(self, options: ScanOptions):
        if self.gate is not None:
            while not self.gate.is_set():
                self.throw_if_cancelled(options)
                await asyncio.sleep(0.001)
        return [
            self.create_finding(
                title="Smell",
                description="Something smells",
                location=CodeLocation(file_path="src/a.py", start_line=1, end_line=1),
                severity=Severity.WARNING,
            )
        ]


class ModelTool(StubTool):
    tool_id = ToolId.COMMENTS
    name = "Stub Comments"
    executions = 0


class FactoryRecorder:
    def __init__(self, tool_cls=StubTool, **kwargs) -> None:
        self.tool_cls = tool_cls
        self.kwargs = kwargs
        self.deps: list[ToolDeps] = []

    def __call__(self, deps: ToolDeps) -> BaseTool:
        self.deps.append(deps)
        return self.tool_cls(deps, **self.kwargs)


@pytest.fixture(autouse=True)
def _reset_counters():
    StubTool.executions = 0
    ModelTool.executions = 0
    yield


def _runner(workspace, manager, notifier, factories, **kwargs) -> ToolRunner:
    return ToolRunner(
        workspace=lambda: workspace,
        providers=manager,
        factories=factories,
        notifier=notifier,
        **kwargs,
    )


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


class TestValidation:
    @pytest.mark.asyncio
    async def test_unknown_tool_returns_none(self, workspace, provider_manager, notifier) -> None:
        runner = _runner(workspace, provider_manager, notifier, {})

        assert await runner.run("nope") is None
        assert notifier.messages == [("error", 'AIDev: Unknown tool "nope".')]

    @pytest.mark.asyncio
    async def test_tool_without_factory_is_unknown(self, workspace, provider_manager, notifier) -> None:
        runner = _runner(workspace, provider_manager, notifier, {ToolId.LINT: FactoryRecorder()})

        assert await runner.run(ToolId.TLDR) is None
        assert notifier.messages[0][0] == "error"

    @pytest.mark.asyncio
    async def test_missing_workspace_returns_none(self, provider_manager, notifier) -> None:
        factory = FactoryRecorder()
        runner = _runner(None, provider_manager, notifier, {ToolId.LINT: factory})

        assert await runner.run(ToolId.LINT) is None
        assert notifier.messages == [("error", "AIDev: No workspace folder open.")]
        assert factory.deps == []


# -----------------------------------------------------------------------------
# Execution
# -----------------------------------------------------------------------------


class TestRun:
    @pytest.mark.asyncio
    async def test_successful_run_stores_publishes_and_notifies_once(
        self, workspace, provider_manager, notifier, settings
    ) -> None:
        events = EventBus()
        completed: list[ToolRunCompleted] = []
        started: list[ToolRunStarted] = []
        events.subscribe(ToolRunStarted, started.append)
        factory = FactoryRecorder()
        runner = _runner(workspace, provider_manager, notifier, {ToolId.LINT: factory}, events=events)
        runner.on_did_complete_run(completed.append)

        result = await runner.run("lint")

        assert result is not None and result.status is ScanStatus.COMPLETED
        assert runner.get_last_result(ToolId.LINT) is result
        assert runner.all_results() == {ToolId.LINT: result}
        assert [event.result for event in completed] == [result]
        assert completed[0].from_cache is False
        assert len(started) == 1 and started[0].speculative is False
        assert notifier.messages == [
            ("info", "AIDev: Lint & Best Practice found 1 items. Check the results for details.")
        ]
        deps = factory.deps[0]
        assert deps.cwd == Path(workspace)
        assert deps.settings is settings
        assert deps.vcs is not None

    @pytest.mark.asyncio
    async def test_model_tool_without_provider_fails_without_executing(
        self, workspace, empty_provider_manager, notifier
    ) -> None:
        factory = FactoryRecorder(ModelTool)
        runner = _runner(workspace, empty_provider_manager, notifier, {ToolId.COMMENTS: factory})

        result = await runner.run(ToolId.COMMENTS)

        assert result is not None
        assert result.status is ScanStatus.FAILED
        assert "No model provider available" in (result.error or "")
        assert ModelTool.executions == 0
        assert factory.deps == []
        assert len(notifier.messages) == 1
        assert notifier.messages[0][0] == "error"
        assert runner.get_last_result(ToolId.COMMENTS) is result

    @pytest.mark.asyncio
    async def test_progress_is_reported_before_and_during_execution(
        self, workspace, provider_manager, notifier
    ) -> None:
        runner = _runner(workspace, provider_manager, notifier, {ToolId.LINT: FactoryRecorder()})
        timeline: list[tuple[str, str]] = []
        runner.on_progress(lambda event: timeline.append((event.title, event.message)))
        runner.on_did_complete_run(lambda event: timeline.append(("completed", event.tool_id.value)))

        await runner.run(ToolId.LINT)

        assert timeline == [
            ("AIDev: Lint & Best Practice", "Starting..."),
            ("AIDev: Lint & Best Practice", "Analyzing..."),
            ("completed", "lint"),
        ]

    @pytest.mark.asyncio
    async def test_progress_stops_at_starting_when_provider_missing(
        self, workspace, empty_provider_manager, notifier
    ) -> None:
        runner = _runner(workspace, empty_provider_manager, notifier, {ToolId.COMMENTS: FactoryRecorder(ModelTool)})
        progress: list[ToolRunProgress] = []
        runner.on_progress(progress.append)

        await runner.run(ToolId.COMMENTS)

        assert [event.message for event in progress] == ["Starting..."]
        assert progress[0].tool_id is ToolId.COMMENTS

    @pytest.mark.asyncio
    async def test_model_tool_receives_active_provider(
        self, workspace, provider_manager, fake_provider, notifier
    ) -> None:
        factory = FactoryRecorder(ModelTool)
        runner = _runner(workspace, provider_manager, notifier, {ToolId.COMMENTS: factory})

        result = await runner.run(ToolId.COMMENTS)

        assert result is not None and result.status is ScanStatus.COMPLETED
        assert factory.deps[0].provider is fake_provider

    @pytest.mark.asyncio
    async def test_cancel_active_run(self, workspace, provider_manager, notifier) -> None:
        gate = asyncio.Event()
        runner = _runner(workspace, provider_manager, notifier, {ToolId.LINT: FactoryRecorder(gate=gate)})

        assert runner.cancel(ToolId.LINT) is False
        task = asyncio.ensure_future(runner.run(ToolId.LINT))
        await asyncio.sleep(0.01)
        assert runner.cancel("lint") is True
        result = await task

        assert result is not None and result.status is ScanStatus.CANCELLED
        assert notifier.messages == [("info", "AIDev: Lint & Best Practice cancelled.")]
        assert runner.cancel(ToolId.LINT) is False

    @pytest.mark.asyncio
    async def test_failing_notifier_does_not_break_run(self, workspace, provider_manager) -> None:
        class BrokenNotifier:
            def info(self, message: str) -> None:
                raise RuntimeError("ui gone")

            def error(self, message: str) -> None:
                raise RuntimeError("ui gone")

        runner = _runner(workspace, provider_manager, BrokenNotifier(), {ToolId.LINT: FactoryRecorder()})

        result = await runner.run(ToolId.LINT)

        assert result is not None and result.status is ScanStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_dispose_clears_results(self, workspace, provider_manager, notifier) -> None:
        runner = _runner(workspace, provider_manager, notifier, {ToolId.LINT: FactoryRecorder()})
        await runner.run(ToolId.LINT)

        runner.dispose()

        assert runner.get_last_result(ToolId.LINT) is None
        assert runner.events.handler_count() == 0


# -----------------------------------------------------------------------------
# Speculative integration
# -----------------------------------------------------------------------------


class TestSpeculativeRun:
    @pytest.mark.asyncio
    async def test_parked_result_is_claimed_without_second_execution(
        self, workspace, provider_manager, notifier
    ) -> None:
        completed: list[ToolRunCompleted] = []
        runner = _runner(workspace, provider_manager, notifier, {ToolId.LINT: FactoryRecorder()})
        runner.on_did_complete_run(completed.append)
        session = SpeculativeSession()

        session.speculate([ToolId.LINT], lambda tool_id: runner.run_detached(tool_id))
        result = await runner.run(ToolId.LINT, speculative=session)

        assert result is not None and result.status is ScanStatus.COMPLETED
        assert StubTool.executions == 1
        assert len(completed) == 1 and completed[0].from_cache is True
        assert len(notifier.messages) == 1
        assert session.stats().hits == 1

    @pytest.mark.asyncio
    async def test_detached_run_is_silent(self, workspace, provider_manager, notifier) -> None:
        completed: list[ToolRunCompleted] = []
        runner = _runner(workspace, provider_manager, notifier, {ToolId.LINT: FactoryRecorder()})
        runner.on_did_complete_run(completed.append)

        result = await runner.run_detached(ToolId.LINT)

        assert result is not None
        assert completed == []
        assert notifier.messages == []
        assert runner.get_last_result(ToolId.LINT) is None


# -----------------------------------------------------------------------------
# Notification text
# -----------------------------------------------------------------------------


class TestFormatNotification:
    def test_failed_result_without_error_text(self) -> None:
        level, message = format_notification("Lint", ScanResult.failed(ToolId.LINT, ""))

        assert level == "error"
        assert message == "AIDev: Lint failed: Unknown error"
