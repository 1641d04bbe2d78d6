"""Core domain types, errors and cancellation primitives."""

from .cancellation import CancellationToken, CancelReason
from .errors import AidevError, ErrorCode
from .types import (
    CodeLocation,
    Finding,
    ScanOptions,
    ScanResult,
    ScanStatus,
    ScanSummary,
    Severity,
    SuggestedFix,
    ToolId,
    TriggerSource,
)

__all__ = [
    "AidevError",
    "CancelReason",
    "CancellationToken",
    "CodeLocation",
    "ErrorCode",
    "Finding",
    "ScanOptions",
    "ScanResult",
    "ScanStatus",
    "ScanSummary",
    "Severity",
    "SuggestedFix",
    "ToolId",
    "TriggerSource",
]
