"""Core data model shared by tools, the runner and the presentation layer.

These types are deliberately plain dataclasses so they can be serialized,
compared in tests and passed across the orchestration seams without pulling
in any runtime dependencies.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

from .errors import UnknownToolError

if TYPE_CHECKING:
    from ..services.telemetry import TelemetrySink
    from .cancellation import CancellationToken

__all__ = [
    "ToolId",
    "Severity",
    "ScanStatus",
    "TriggerSource",
    "CodeLocation",
    "SuggestedFix",
    "Finding",
    "ScanSummary",
    "ScanResult",
    "ScanOptions",
    "build_scan_summary",
    "generate_id",
    "utcnow",
]


# -----------------------------------------------------------------------------
# Enumerations
# -----------------------------------------------------------------------------


class ToolId(str, Enum):
    """Stable identifier of every analysis tool; used as a map key everywhere."""

    DEAD_CODE = "dead-code"
    LINT = "lint"
    COMMENTS = "comments"
    COMMIT = "commit"
    TLDR = "tldr"
    BRANCH_DIFF = "branch-diff"
    DIFF_RESOLVE = "diff-resolve"
    PR_REVIEW = "pr-review"
    DECOMPOSE = "decompose"

    @classmethod
    def parse(cls, value: "str | ToolId") -> "ToolId":
        """Return the matching member or raise :class:`UnknownToolError`."""

        if isinstance(value, ToolId):
            return value
        normalized = str(value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise UnknownToolError(tool_id=str(value))

    def __str__(self) -> str:
        return self.value


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    HINT = "hint"


class ScanStatus(str, Enum):
    """Lifecycle status of a tool run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.FAILED, ScanStatus.CANCELLED)


class TriggerSource(str, Enum):
    """What initiated a run (recorded on ``tool.start`` telemetry)."""

    SLASH = "slash"
    WORKFLOW = "workflow"
    DECOMPOSE = "decompose"
    DIRECT = "direct"
    SPECULATIVE = "speculative"


# -----------------------------------------------------------------------------
# Findings
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class CodeLocation:
    """Source location of a finding (1-based lines, 0 when not applicable)."""

    file_path: str
    start_line: int = 0
    end_line: int = 0
    start_column: int | None = None
    end_column: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "file_path": self.file_path,
            "start_line": self.start_line,
            "end_line": self.end_line,
        }
        if self.start_column is not None:
            data["start_column"] = self.start_column
        if self.end_column is not None:
            data["end_column"] = self.end_column
        return data


@dataclass(slots=True, frozen=True)
class SuggestedFix:
    description: str
    replacement: str
    location: CodeLocation

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "replacement": self.replacement,
            "location": self.location.to_dict(),
        }


@dataclass(slots=True, frozen=True)
class Finding:
    """A single reported issue.

    Findings are created through :meth:`aidev.tools.base.BaseTool.create_finding`
    so that ``id`` and ``tool_id`` are always populated consistently.

    Attributes:
        id: Unique identifier generated per finding.
        tool_id: Tool that produced the finding.
        title: Short title for display.
        description: Detailed explanation.
        location: Where the issue lives.
        severity: Severity level.
        suggested_fix: Optional replacement proposal.
        metadata: Tool-specific extra data (rule id, pattern name, ...).
    """

    id: str
    tool_id: ToolId
    title: str
    description: str
    location: CodeLocation
    severity: Severity = Severity.INFO
    suggested_fix: SuggestedFix | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "tool_id": self.tool_id.value,
            "title": self.title,
            "description": self.description,
            "location": self.location.to_dict(),
            "severity": self.severity.value,
        }
        if self.suggested_fix is not None:
            data["suggested_fix"] = self.suggested_fix.to_dict()
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ScanSummary:
    total_findings: int
    by_severity: Mapping[Severity, int]
    files_scanned: int
    files_with_findings: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_findings": self.total_findings,
            "by_severity": {severity.value: count for severity, count in self.by_severity.items()},
            "files_scanned": self.files_scanned,
            "files_with_findings": self.files_with_findings,
        }


def build_scan_summary(findings: Sequence[Finding], files_scanned: int = 0) -> ScanSummary:
    """Aggregate findings into counts by severity and file coverage."""

    counts = {severity: 0 for severity in Severity}
    files: set[str] = set()
    for finding in findings:
        counts[finding.severity] += 1
        if finding.location.file_path:
            files.add(finding.location.file_path)
    return ScanSummary(
        total_findings=len(findings),
        by_severity=MappingProxyType(counts),
        files_scanned=max(0, int(files_scanned)),
        files_with_findings=len(files),
    )


@dataclass(slots=True, frozen=True)
class ScanResult:
    """Immutable outcome of one tool run."""

    tool_id: ToolId
    status: ScanStatus
    started_at: datetime
    completed_at: datetime | None
    findings: tuple[Finding, ...]
    summary: ScanSummary
    error: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata or {})))

    @property
    def duration_ms(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds() * 1000.0

    @classmethod
    def failed(
        cls,
        tool_id: ToolId,
        error: str,
        *,
        started_at: datetime | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> "ScanResult":
        """Build a ``failed`` result without any tool logic having run."""

        started = started_at or utcnow()
        return cls(
            tool_id=tool_id,
            status=ScanStatus.FAILED,
            started_at=started,
            completed_at=utcnow(),
            findings=(),
            summary=build_scan_summary(()),
            error=error,
            metadata=dict(metadata or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "tool_id": self.tool_id.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "summary": self.summary.to_dict(),
            "findings": [finding.to_dict() for finding in self.findings],
        }
        if self.error is not None:
            data["error"] = self.error
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


# -----------------------------------------------------------------------------
# Options
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ScanOptions:
    """Per-invocation input; immutable for the duration of a run.

    Attributes:
        paths: Files/directories to restrict the scan to (empty = whole workspace).
        cancellation: Caller-supplied cancellation token.
        args: Tool-specific parameters (commit action, remote name, ...).
        telemetry: Optional sink receiving ``tool.*`` events.
        triggered_by: What initiated the run.
    """

    paths: tuple[str, ...] = ()
    cancellation: "CancellationToken | None" = None
    args: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    telemetry: "TelemetrySink | None" = None
    triggered_by: TriggerSource = TriggerSource.DIRECT

    def __post_init__(self) -> None:
        object.__setattr__(self, "paths", tuple(self.paths or ()))
        if not isinstance(self.args, MappingProxyType):
            object.__setattr__(self, "args", MappingProxyType(dict(self.args or {})))

    @classmethod
    def create(
        cls,
        paths: Iterable[str] | None = None,
        **kwargs: Any,
    ) -> "ScanOptions":
        return cls(paths=tuple(paths or ()), **kwargs)

    def with_cancellation(self, token: "CancellationToken") -> "ScanOptions":
        return replace(self, cancellation=token)

    def with_telemetry(self, sink: "TelemetrySink | None") -> "ScanOptions":
        return replace(self, telemetry=sink)


def generate_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
