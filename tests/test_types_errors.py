"""Tests for core data types and structured errors."""

from __future__ import annotations

import pytest

from aidev.core.errors import (
    AidevError,
    CommandNotFoundError,
    ConfigurationError,
    ErrorCode,
    GitError,
    MissingDependencyError,
    ModelTimeoutError,
    PermissionDeniedError,
    PolicyRejection,
    RateLimitExceededError,
    UnknownToolError,
)
from aidev.core.types import (
    CodeLocation,
    Finding,
    ScanOptions,
    ScanResult,
    ScanStatus,
    Severity,
    SuggestedFix,
    ToolId,
    TriggerSource,
    build_scan_summary,
)


def _finding(path: str, severity: Severity) -> Finding:
    return Finding(
        id=f"{path}-{severity.value}",
        tool_id=ToolId.LINT,
        title="t",
        description="d",
        location=CodeLocation(file_path=path, start_line=1, end_line=1),
        severity=severity,
    )


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


class TestToolId:
    def test_parse_normalizes(self) -> None:
        assert ToolId.parse(" Dead-Code ") is ToolId.DEAD_CODE
        assert ToolId.parse(ToolId.LINT) is ToolId.LINT
        assert str(ToolId.BRANCH_DIFF) == "branch-diff"

    def test_parse_unknown(self) -> None:
        with pytest.raises(UnknownToolError) as excinfo:
            ToolId.parse("format")
        assert excinfo.value.message == 'Unknown tool "format"'
        assert excinfo.value.context == "format"


class TestScanResult:
    def test_summary_counts(self) -> None:
        findings = [
            _finding("a.py", Severity.ERROR),
            _finding("a.py", Severity.WARNING),
            _finding("b.py", Severity.WARNING),
        ]
        summary = build_scan_summary(findings, files_scanned=4)

        assert summary.total_findings == 3
        assert summary.by_severity[Severity.WARNING] == 2
        assert summary.by_severity[Severity.HINT] == 0
        assert summary.files_with_findings == 2
        assert summary.to_dict()["by_severity"]["error"] == 1

    def test_failed_result(self) -> None:
        result = ScanResult.failed(ToolId.TLDR, "no provider", metadata={"error_code": "X"})

        assert result.status is ScanStatus.FAILED
        assert result.status.is_terminal
        assert result.findings == ()
        assert result.duration_ms >= 0
        data = result.to_dict()
        assert data["error"] == "no provider"
        assert data["metadata"] == {"error_code": "X"}

    def test_metadata_is_read_only(self) -> None:
        source = {"run_id": "r1"}
        result = ScanResult.failed(ToolId.TLDR, "boom", metadata=source)
        source["run_id"] = "changed"

        with pytest.raises(TypeError):
            result.metadata["run_id"] = "r2"  # type: ignore[index]
        assert result.metadata == {"run_id": "r1"}
        assert result.to_dict()["metadata"] == {"run_id": "r1"}

    def test_finding_serialization(self) -> None:
        location = CodeLocation(file_path="a.py", start_line=2, end_line=3, start_column=4)
        finding = Finding(
            id="f1",
            tool_id=ToolId.COMMENTS,
            title="Stale comment",
            description="",
            location=location,
            suggested_fix=SuggestedFix(description="Remove", replacement="", location=location),
        )
        data = finding.to_dict()

        assert data["severity"] == "info"
        assert data["location"] == {"file_path": "a.py", "start_line": 2, "end_line": 3, "start_column": 4}
        assert data["suggested_fix"]["description"] == "Remove"
        assert "metadata" not in data


class TestScanOptions:
    def test_defaults_and_immutability(self) -> None:
        options = ScanOptions.create(["a.py"], args={"action": "apply"})

        assert options.paths == ("a.py",)
        assert options.triggered_by is TriggerSource.DIRECT
        with pytest.raises(TypeError):
            options.args["action"] = "propose"  # type: ignore[index]

    def test_with_helpers_return_copies(self) -> None:
        options = ScanOptions()
        sink = object()
        updated = options.with_telemetry(sink)  # type: ignore[arg-type]
        assert updated.telemetry is sink
        assert options.telemetry is None


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestErrors:
    def test_default_messages(self) -> None:
        assert CommandNotFoundError(context="x.y").message == "No handler registered for command 'x.y'"
        assert PermissionDeniedError(context="git.pull").message == "User lacks permission to execute 'git.pull'"
        assert ModelTimeoutError(timeout=2.5).message == "Model request timed out after 2.5s"
        assert (
            MissingDependencyError(context="tldr").message
            == "No model provider available for tldr. Configure one in settings."
        )

    def test_hierarchy_and_categories(self) -> None:
        error = RateLimitExceededError(context="aidev.tldr", limit=5)

        assert isinstance(error, PolicyRejection)
        assert isinstance(error, AidevError)
        assert error.category == "policy"
        assert error.command_name == "aidev.tldr"
        assert error.details == {"limit_per_second": 5}
        assert isinstance(UnknownToolError(tool_id="x"), ConfigurationError)

    def test_serialization(self) -> None:
        error = GitError(message="git commit failed", context="commit", exit_code=1, stderr="nothing to commit")

        assert error.to_dict() == {
            "code": ErrorCode.GIT_ERROR,
            "message": "git commit failed",
            "context": "commit",
            "exit_code": 1,
            "stderr": "nothing to commit",
        }
        assert str(error) == "[GIT_ERROR] git commit failed"
