"""Multi-tool workflows built on the runner and the speculative session."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..core.errors import ConfigurationError
from ..core.types import Finding, ScanOptions, ScanResult, ScanStatus, ToolId, TriggerSource
from ..services.telemetry import SafeTelemetry, TelemetrySink, WorkflowComplete, WorkflowStart, new_run_id
from .events import WorkflowRunCompleted
from .runner import speculative_options
from .speculative import SpeculativeSession

if TYPE_CHECKING:
    from .runner import ToolRunner

__all__ = [
    "WorkflowDefinition",
    "WorkflowOutcome",
    "WorkflowRunner",
    "WORKFLOW_REGISTRY",
    "get_workflow",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class WorkflowDefinition:
    id: str
    name: str
    description: str
    triggers: tuple[str, ...]
    tool_ids: tuple[ToolId, ...]


WORKFLOW_REGISTRY: dict[str, WorkflowDefinition] = {
    "fix": WorkflowDefinition(
        id="fix",
        name="Fix",
        description="Lint, find dead code, then propose a commit",
        triggers=("fix", "clean up", "tidy"),
        tool_ids=(ToolId.LINT, ToolId.DEAD_CODE, ToolId.COMMIT),
    ),
    "prep-pr": WorkflowDefinition(
        id="prep-pr",
        name="Prepare PR",
        description="Summarize the branch diff and propose a commit",
        triggers=("prep pr", "prepare pr", "ready for review"),
        tool_ids=(ToolId.BRANCH_DIFF, ToolId.TLDR, ToolId.COMMIT),
    ),
    "review": WorkflowDefinition(
        id="review",
        name="Review",
        description="Dead code, lint and comment hygiene in one pass",
        triggers=("review", "audit"),
        tool_ids=(ToolId.DEAD_CODE, ToolId.LINT, ToolId.COMMENTS),
    ),
}


def get_workflow(workflow_id: str) -> WorkflowDefinition | None:
    return WORKFLOW_REGISTRY.get(workflow_id.strip().lower())


@dataclass(slots=True)
class WorkflowOutcome:
    workflow_id: str
    results: list[ScanResult] = field(default_factory=list)
    cancelled: bool = False
    duration_ms: float = 0.0
    parallel_ms: float = 0.0

    @property
    def findings(self) -> list[Finding]:
        return [finding for result in self.results for finding in result.findings]


class WorkflowRunner:
    """Runs a workflow's tools in order, pre-starting the read-only ones.

    Each run opens a new speculative turn; tools whose registry entry is not
    mutating are started immediately and their results are claimed in
    order.  Mutating tools only run when their turn comes.
    """

    def __init__(
        self,
        runner: "ToolRunner",
        *,
        session: SpeculativeSession | None = None,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        self._runner = runner
        self._session = session or SpeculativeSession(telemetry)
        self._telemetry = SafeTelemetry(telemetry)

    @property
    def session(self) -> SpeculativeSession:
        return self._session

    async def run(
        self,
        workflow: WorkflowDefinition | str,
        options: ScanOptions | None = None,
        *,
        matched_input: str = "",
    ) -> WorkflowOutcome:
        definition = get_workflow(workflow) if isinstance(workflow, str) else workflow
        if definition is None:
            raise ConfigurationError(context=str(workflow), message=f"Unknown workflow '{workflow}'")

        options = options or ScanOptions(triggered_by=TriggerSource.WORKFLOW)
        run_id = new_run_id()
        outcome = WorkflowOutcome(workflow_id=definition.id)
        self._telemetry.emit(WorkflowStart(run_id=run_id, workflow_id=definition.id, matched_input=matched_input))
        LOGGER.info("Workflow %s started (%s)", definition.id, ", ".join(t.value for t in definition.tool_ids))

        started = time.perf_counter()
        self._session.begin_turn(run_id)
        pre_options = speculative_options(options)
        self._session.speculate(
            definition.tool_ids, lambda tool_id: self._runner.run_detached(tool_id, pre_options)
        )

        first_result_at: float | None = None
        for tool_id in definition.tool_ids:
            if options.cancellation is not None and options.cancellation.cancelled:
                outcome.cancelled = True
                break
            result = await self._runner.run(tool_id, options, speculative=self._session)
            if first_result_at is None:
                first_result_at = time.perf_counter()
            if result is None:
                continue
            outcome.results.append(result)
            if result.status is ScanStatus.CANCELLED:
                outcome.cancelled = True
                break

        finished = time.perf_counter()
        outcome.duration_ms = (finished - started) * 1000.0
        outcome.parallel_ms = ((first_result_at or finished) - started) * 1000.0
        self._telemetry.emit(
            WorkflowComplete(
                run_id=run_id,
                workflow_id=definition.id,
                duration_ms=outcome.duration_ms,
                parallel_ms=outcome.parallel_ms,
            )
        )
        self._runner.events.publish(
            WorkflowRunCompleted(
                workflow_id=definition.id, results=tuple(outcome.results), cancelled=outcome.cancelled
            )
        )
        LOGGER.info(
            "Workflow %s %s in %.0fms with %d finding(s)",
            definition.id,
            "cancelled" if outcome.cancelled else "completed",
            outcome.duration_ms,
            len(outcome.findings),
        )
        return outcome
