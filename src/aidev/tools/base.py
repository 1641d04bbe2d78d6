"""Base class for analysis tools.

:class:`BaseTool` owns the run lifecycle so subclasses only implement
:meth:`BaseTool.run`.  Timing, status transitions, cancellation and telemetry
are handled here; the helpers below cover the recurring chores of tool bodies
(bounded fan-out over files, deadline-bounded model calls, finding creation).
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    ClassVar,
    Iterable,
    Mapping,
    Sequence,
    TypeVar,
)

from ..core.cancellation import CancellationToken
from ..core.errors import AidevError, ModelTimeoutError, ToolBusyError, ToolCancelledError
from ..core.types import (
    CodeLocation,
    Finding,
    ScanOptions,
    ScanResult,
    ScanStatus,
    Severity,
    SuggestedFix,
    ToolId,
    build_scan_summary,
    generate_id,
    utcnow,
)
from ..services.telemetry import SafeTelemetry, ToolComplete, ToolErrorEvent, ToolStart

if TYPE_CHECKING:
    from ..providers.base import ModelProvider
    from ..services.settings import Settings
    from ..vcs.git import GitRepository

__all__ = ["BaseTool", "ToolDeps", "EXPORT_FORMATS", "DEFAULT_BATCH_SIZE", "DEFAULT_MODEL_TIMEOUT"]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_BATCH_SIZE = 5
DEFAULT_MODEL_TIMEOUT = 30.0
EXPORT_FORMATS: tuple[str, ...] = ("json", "markdown")

_SEVERITY_LABELS: Mapping[Severity, str] = {
    Severity.ERROR: "[ERROR]",
    Severity.WARNING: "[WARN]",
    Severity.INFO: "[INFO]",
    Severity.HINT: "[HINT]",
}


@dataclass(slots=True)
class ToolDeps:
    """Collaborators injected into a tool at construction time.

    Attributes:
        cwd: Workspace root the tool operates on.
        provider: Model provider, ``None`` when no model is available.
        settings: Effective user settings.
        vcs: Version-control access layer for ``cwd``.
        extras: Host-specific collaborators keyed by name.
    """

    cwd: Path
    provider: "ModelProvider | None" = None
    settings: "Settings | None" = None
    vcs: "GitRepository | None" = None
    extras: dict[str, Any] = field(default_factory=dict)


class BaseTool(ABC):
    """Abstract base class for every analysis tool.

    Subclasses set the class-level metadata and implement :meth:`run`, which
    returns the findings of a complete run.  Long-running bodies should call
    :meth:`throw_if_cancelled` at checkpoints and :meth:`report` findings as
    they are produced so that a cancelled run can return the work done so far.

    Example:
        class TodoTool(BaseTool):
            tool_id = ToolId.COMMENTS
            name = "TODO Finder"

            async def run(self, options):
                return [self.create_finding(title="TODO", ...)]
    """

    tool_id: ClassVar[ToolId]
    name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    requires_model: ClassVar[bool] = False
    mutating: ClassVar[bool] = False

    def __init__(self, deps: ToolDeps | None = None) -> None:
        self.deps = deps or ToolDeps(cwd=Path.cwd())
        self.files_scanned = 0
        self.result_metadata: dict[str, Any] = {}
        self._status = ScanStatus.PENDING
        self._run_token: CancellationToken | None = None
        self._partial: list[Finding] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def status(self) -> ScanStatus:
        return self._status

    @property
    def provider(self) -> "ModelProvider | None":
        return self.deps.provider

    async def execute(self, options: ScanOptions | None = None) -> ScanResult:
        """Run the tool and convert the outcome into a terminal :class:`ScanResult`."""

        options = options or ScanOptions()
        if self._status is ScanStatus.RUNNING:
            raise ToolBusyError(context=self.tool_id.value)

        run_token = CancellationToken.any(options.cancellation)
        self._run_token = run_token
        self._partial = []
        self.files_scanned = 0
        self.result_metadata = {}
        self._status = ScanStatus.RUNNING

        run_id = generate_id()
        telemetry = SafeTelemetry(options.telemetry) if options.telemetry is not None else None
        started_at = utcnow()
        start = time.perf_counter()
        if telemetry is not None:
            telemetry.emit(
                ToolStart(run_id=run_id, tool_id=self.tool_id.value, triggered_by=options.triggered_by.value)
            )

        status = ScanStatus.FAILED
        findings: tuple[Finding, ...] = ()
        error: str | None = None
        try:
            returned = await self.run(options)
            findings = tuple(returned or ())
            status = ScanStatus.CANCELLED if run_token.cancelled else ScanStatus.COMPLETED
        except ToolCancelledError:
            status = ScanStatus.CANCELLED
            findings = tuple(self._partial)
        except asyncio.CancelledError:
            status = ScanStatus.CANCELLED
            raise
        except Exception as exc:
            status = ScanStatus.FAILED
            error = _describe_error(exc)
            LOGGER.exception("Tool %s failed", self.tool_id.value)
        finally:
            self._status = status
            self._partial = []
            self._run_token = None
            run_token.close()

        duration_ms = (time.perf_counter() - start) * 1000.0
        result = ScanResult(
            tool_id=self.tool_id,
            status=status,
            started_at=started_at,
            completed_at=utcnow(),
            findings=findings,
            summary=build_scan_summary(findings, self.files_scanned),
            error=error,
            metadata={**self.result_metadata, "run_id": run_id, "duration_ms": duration_ms},
        )
        LOGGER.debug(
            "Tool %s finished with status=%s findings=%d in %.1fms",
            self.tool_id.value,
            status.value,
            len(findings),
            duration_ms,
        )
        if telemetry is not None:
            if status is ScanStatus.FAILED:
                telemetry.emit(
                    ToolErrorEvent(
                        run_id=run_id,
                        tool_id=self.tool_id.value,
                        error=error or "",
                        duration_ms=duration_ms,
                    )
                )
            else:
                telemetry.emit(
                    ToolComplete(
                        run_id=run_id,
                        tool_id=self.tool_id.value,
                        duration_ms=duration_ms,
                        finding_count=len(findings),
                        file_count=self.files_scanned,
                        status=status.value,
                    )
                )
        return result

    def cancel(self) -> None:
        """Request cooperative cancellation of the current run."""

        if self._run_token is not None:
            self._run_token.cancel()

    @abstractmethod
    async def run(self, options: ScanOptions) -> Sequence[Finding]:
        """Analysis body; return every finding of a complete run."""

    # ------------------------------------------------------------------
    # Cancellation helpers
    # ------------------------------------------------------------------

    def is_cancelled(self, options: ScanOptions | None = None) -> bool:
        if self._run_token is not None and self._run_token.cancelled:
            return True
        token = options.cancellation if options is not None else None
        return bool(token is not None and token.cancelled)

    def throw_if_cancelled(self, options: ScanOptions | None = None) -> None:
        if self.is_cancelled(options):
            raise ToolCancelledError(context=self.tool_id.value)

    def report(self, *findings: Finding) -> None:
        """Record findings produced so far; a cancelled run returns these."""

        self._partial.extend(findings)

    # ------------------------------------------------------------------
    # Batching and model calls
    # ------------------------------------------------------------------

    async def process_in_batches(
        self,
        items: Iterable[T],
        operation: Callable[[T], Awaitable[R]],
        *,
        concurrency: int = DEFAULT_BATCH_SIZE,
        options: ScanOptions | None = None,
    ) -> list[R | Finding | None]:
        """Apply ``operation`` to every item with at most ``concurrency`` in flight.

        ``result[i]`` always belongs to ``items[i]``.  An item whose operation
        raises gets an error finding in its slot.  Once cancellation fires no
        further items are started (their slots stay ``None``); the in-flight
        ones settle and :class:`ToolCancelledError` is raised.  Findings
        returned by operations are also passed to :meth:`report`.
        """

        pending = list(items)
        results: list[R | Finding | None] = [None] * len(pending)
        if not pending:
            return results

        semaphore = asyncio.Semaphore(max(1, int(concurrency)))

        async def worker(index: int, item: T) -> None:
            try:
                value = await operation(item)
            except (ToolCancelledError, asyncio.CancelledError):
                raise
            except Exception as exc:
                value = self.create_error_finding(_item_path(item), exc, "Batch item")
            finally:
                semaphore.release()
            results[index] = value
            self._report_value(value)

        tasks: list[asyncio.Task[None]] = []
        stopped = False
        for index, item in enumerate(pending):
            await semaphore.acquire()
            if self.is_cancelled(options):
                semaphore.release()
                stopped = True
                break
            tasks.append(asyncio.ensure_future(worker(index, item)))

        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, (ToolCancelledError, asyncio.CancelledError)):
                stopped = True
            elif isinstance(outcome, BaseException):
                raise outcome

        if stopped:
            raise ToolCancelledError(
                context=self.tool_id.value,
                details={"completed": sum(1 for value in results if value is not None), "total": len(pending)},
            )
        return results

    async def send_request_with_timeout(
        self,
        request: Callable[[CancellationToken], Awaitable[R]],
        *,
        timeout: float = DEFAULT_MODEL_TIMEOUT,
        cancellation: CancellationToken | None = None,
    ) -> R:
        """Await ``request`` bounded by ``timeout`` seconds and the caller's token.

        ``request`` receives the effective token, which fires on whichever of
        the caller token or the deadline comes first.  Expiry of the deadline
        raises :class:`ModelTimeoutError`; caller cancellation raises
        :class:`ToolCancelledError`.  Nothing is retried here.
        """

        caller = cancellation if cancellation is not None else self._run_token
        deadline = CancellationToken.with_timeout(timeout)
        effective = CancellationToken.any(caller, deadline)

        def outcome_error() -> AidevError:
            if deadline.cancelled and not (caller is not None and caller.cancelled):
                return ModelTimeoutError(context=self.tool_id.value, timeout=timeout)
            return ToolCancelledError(context=self.tool_id.value)

        if effective.cancelled:
            deadline.close()
            effective.close()
            raise outcome_error()

        request_task = asyncio.ensure_future(_as_awaitable(request(effective)))
        waiter = asyncio.ensure_future(effective.wait())
        try:
            done, _ = await asyncio.wait({request_task, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if request_task in done:
                try:
                    return request_task.result()
                except ToolCancelledError:
                    raise outcome_error() from None
            request_task.cancel()
            await asyncio.gather(request_task, return_exceptions=True)
            raise outcome_error()
        finally:
            if not request_task.done():
                request_task.cancel()
            waiter.cancel()
            deadline.close()
            effective.close()

    # ------------------------------------------------------------------
    # Finding helpers
    # ------------------------------------------------------------------

    def create_finding(
        self,
        *,
        title: str,
        description: str,
        location: CodeLocation,
        severity: Severity = Severity.INFO,
        suggested_fix: SuggestedFix | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Finding:
        return Finding(
            id=generate_id(),
            tool_id=self.tool_id,
            title=title,
            description=description,
            location=location,
            severity=severity,
            suggested_fix=suggested_fix,
            metadata=dict(metadata or {}),
        )

    def create_error_finding(self, file_path: str, error: BaseException, context: str) -> Finding:
        """Turn a per-file failure into a finding instead of failing the run."""

        severity = Severity.WARNING if isinstance(error, OSError) else Severity.ERROR
        return self.create_finding(
            title=f"{context} failed",
            description=f"{context} failed for {file_path}: {_describe_error(error)}",
            location=CodeLocation(file_path=file_path, start_line=0, end_line=0),
            severity=severity,
            metadata={"source": "error", "error_type": type(error).__name__},
        )

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(self, result: ScanResult, fmt: str) -> str:
        if fmt == "json":
            return self._export_json(result)
        if fmt == "markdown":
            return self._export_markdown(result)
        raise ValueError(f"Unsupported export format: {fmt!r}")

    def _export_json(self, result: ScanResult) -> str:
        payload = result.to_dict()
        payload["tool"] = self.tool_id.value
        return json.dumps(payload, indent=2, ensure_ascii=False)

    def _export_markdown(self, result: ScanResult) -> str:
        lines: list[str] = [f"# {self.name or self.tool_id.value}: Results", ""]
        lines.append(f"**Status**: {result.status.value}")
        lines.append(f"**Started**: {result.started_at.isoformat()}")
        if result.completed_at is not None:
            lines.append(f"**Completed**: {result.completed_at.isoformat()}")
        lines.append("")

        summary = result.summary
        lines.extend(["## Summary", ""])
        lines.append(f"- **Total findings**: {summary.total_findings}")
        lines.append(f"- **Files scanned**: {summary.files_scanned}")
        lines.append(f"- **Files with findings**: {summary.files_with_findings}")
        for severity in Severity:
            count = summary.by_severity.get(severity, 0)
            if count:
                lines.append(f"- **{severity.value}**: {count}")
        lines.append("")

        if result.error:
            lines.extend(["## Error", "", "```", result.error, "```", ""])

        if result.findings:
            lines.extend(["## Findings", ""])
            for finding in result.findings:
                lines.append(f"### {_SEVERITY_LABELS[finding.severity]} {finding.title}")
                lines.append("")
                lines.append(finding.description)
                lines.append("")
                lines.append(f"`{finding.location.file_path}:{finding.location.start_line}`")
                if finding.suggested_fix is not None:
                    lines.extend(
                        [
                            "",
                            f"**Suggested fix**: {finding.suggested_fix.description}",
                            "",
                            "```",
                            finding.suggested_fix.replacement,
                            "```",
                        ]
                    )
                lines.extend(["", "---", ""])
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _report_value(self, value: Any) -> None:
        if isinstance(value, Finding):
            self.report(value)
        elif isinstance(value, (list, tuple)):
            self.report(*(item for item in value if isinstance(item, Finding)))


async def _as_awaitable(value: Awaitable[R] | R) -> R:
    if inspect.isawaitable(value):
        return await value
    return value


def _item_path(item: Any) -> str:
    if isinstance(item, (str, Path)):
        return str(item)
    for attr in ("file_path", "path"):
        candidate = getattr(item, attr, None)
        if candidate:
            return str(candidate)
    return repr(item)


def _describe_error(error: BaseException) -> str:
    if isinstance(error, AidevError):
        return error.message
    text = str(error)
    return text or type(error).__name__
