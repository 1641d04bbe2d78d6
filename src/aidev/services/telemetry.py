"""Telemetry events and sinks.

Events form a closed, tagged union: every event class carries a constant
``kind`` and a millisecond ``timestamp``.  Sinks are fire-and-forget and must
never raise into the orchestration code; :class:`SafeTelemetry` enforces that
for arbitrary sink implementations.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any, ClassVar, Iterable, Protocol, Union

__all__ = [
    "ToolStart",
    "ToolComplete",
    "ToolErrorEvent",
    "WorkflowStart",
    "WorkflowComplete",
    "FindingActed",
    "SpeculativeHit",
    "SpeculativeMiss",
    "DecomposeComplete",
    "TelemetryEvent",
    "TelemetrySink",
    "NullTelemetry",
    "InMemoryTelemetrySink",
    "JsonlTelemetrySink",
    "SafeTelemetry",
    "SpeculativeStats",
    "speculative_stats",
    "telemetry_enabled",
    "now_ms",
]

LOGGER = logging.getLogger(__name__)

_DEFAULT_TELEMETRY_DIR = Path.home() / ".aidev" / "telemetry"
_TRUE_VALUES = {"1", "true", "yes", "on"}


def now_ms() -> float:
    return time.time() * 1000.0


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class _EventBase:
    kind: ClassVar[str] = ""

    def to_dict(self) -> dict[str, Any]:
        payload = {"kind": self.kind}
        for key, value in asdict(self).items():
            payload[key] = value.value if isinstance(value, Enum) else value
        return payload


@dataclass(slots=True, frozen=True)
class ToolStart(_EventBase):
    kind: ClassVar[str] = "tool.start"

    run_id: str
    tool_id: str
    triggered_by: str = "direct"
    timestamp: float = field(default_factory=now_ms)


@dataclass(slots=True, frozen=True)
class ToolComplete(_EventBase):
    kind: ClassVar[str] = "tool.complete"

    run_id: str
    tool_id: str
    duration_ms: float
    finding_count: int
    file_count: int
    status: str = "completed"
    timestamp: float = field(default_factory=now_ms)


@dataclass(slots=True, frozen=True)
class ToolErrorEvent(_EventBase):
    kind: ClassVar[str] = "tool.error"

    run_id: str
    tool_id: str
    error: str
    duration_ms: float
    timestamp: float = field(default_factory=now_ms)


@dataclass(slots=True, frozen=True)
class WorkflowStart(_EventBase):
    kind: ClassVar[str] = "workflow.start"

    run_id: str
    workflow_id: str
    matched_input: str = ""
    timestamp: float = field(default_factory=now_ms)


@dataclass(slots=True, frozen=True)
class WorkflowComplete(_EventBase):
    kind: ClassVar[str] = "workflow.complete"

    run_id: str
    workflow_id: str
    duration_ms: float
    parallel_ms: float
    timestamp: float = field(default_factory=now_ms)


@dataclass(slots=True, frozen=True)
class FindingActed(_EventBase):
    kind: ClassVar[str] = "finding.acted"

    finding_id: str
    tool_id: str
    action: str
    timestamp: float = field(default_factory=now_ms)

    def __post_init__(self) -> None:
        if self.action not in ("accepted", "dismissed"):
            raise ValueError(f"Unsupported finding action: {self.action!r}")


@dataclass(slots=True, frozen=True)
class SpeculativeHit(_EventBase):
    kind: ClassVar[str] = "speculative.hit"

    tool_id: str
    saved_ms: float
    timestamp: float = field(default_factory=now_ms)


@dataclass(slots=True, frozen=True)
class SpeculativeMiss(_EventBase):
    kind: ClassVar[str] = "speculative.miss"

    tool_id: str
    timestamp: float = field(default_factory=now_ms)


@dataclass(slots=True, frozen=True)
class DecomposeComplete(_EventBase):
    kind: ClassVar[str] = "decompose.complete"

    run_id: str
    subtask_count: int
    findings_before: int
    findings_after: int
    duration_ms: float
    timestamp: float = field(default_factory=now_ms)


TelemetryEvent = Union[
    ToolStart,
    ToolComplete,
    ToolErrorEvent,
    WorkflowStart,
    WorkflowComplete,
    FindingActed,
    SpeculativeHit,
    SpeculativeMiss,
    DecomposeComplete,
]


def new_run_id() -> str:
    return uuid.uuid4().hex


# -----------------------------------------------------------------------------
# Sinks
# -----------------------------------------------------------------------------


class TelemetrySink(Protocol):
    """Fire-and-forget sink; ``emit`` must never raise."""

    def emit(self, event: TelemetryEvent) -> None:  # pragma: no cover - protocol stub
        ...

    def dispose(self) -> None:  # pragma: no cover - protocol stub
        ...


class NullTelemetry:
    """Sink that ignores every event."""

    def emit(self, event: TelemetryEvent) -> None:
        return None

    def dispose(self) -> None:
        return None


class InMemoryTelemetrySink:
    """Ring-buffer telemetry sink for local inspection and tests."""

    def __init__(self, capacity: int = 500) -> None:
        self._capacity = max(10, capacity)
        self._buffer: deque[TelemetryEvent] = deque(maxlen=self._capacity)
        self._lock = Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def emit(self, event: TelemetryEvent) -> None:
        with self._lock:
            self._buffer.append(event)

    def events(self) -> list[TelemetryEvent]:
        with self._lock:
            return list(self._buffer)

    def events_by_kind(self, kind: str) -> list[TelemetryEvent]:
        with self._lock:
            return [event for event in self._buffer if event.kind == kind]

    def tail(self, limit: int | None = None) -> list[TelemetryEvent]:
        with self._lock:
            events = list(self._buffer)
        if limit is None or limit >= len(events):
            return events
        return events[-limit:]

    def clear(self) -> int:
        with self._lock:
            count = len(self._buffer)
            self._buffer.clear()
            return count

    def dispose(self) -> None:
        self.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


@dataclass(slots=True)
class JsonlTelemetrySink:
    """Buffers events and appends them to ``telemetry.jsonl`` on flush."""

    storage_dir: Path | str | None = None
    max_buffer: int = 32
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    _buffer: list[TelemetryEvent] = field(default_factory=list, init=False, repr=False)

    @property
    def path(self) -> Path:
        return _resolve_storage_dir(self.storage_dir) / "telemetry.jsonl"

    def emit(self, event: TelemetryEvent) -> None:
        self._buffer.append(event)
        if len(self._buffer) >= self.max_buffer:
            self.flush()

    def flush(self) -> Path | None:
        """Persist buffered events to disk and clear the buffer."""

        if not self._buffer:
            return None
        log_path = self.path
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("a", encoding="utf-8") as handle:
            for event in self._buffer:
                payload = event.to_dict()
                payload["session_id"] = self.session_id
                handle.write(json.dumps(payload, ensure_ascii=False))
                handle.write("\n")
        self._buffer.clear()
        return log_path

    def pending_events(self) -> int:
        return len(self._buffer)

    def dispose(self) -> None:
        self.flush()


class SafeTelemetry:
    """Wraps any sink so failures inside it never reach the caller."""

    def __init__(self, sink: TelemetrySink | None = None) -> None:
        self._sink: TelemetrySink = sink if sink is not None else NullTelemetry()

    @property
    def sink(self) -> TelemetrySink:
        return self._sink

    def emit(self, event: TelemetryEvent) -> None:
        try:
            self._sink.emit(event)
        except Exception:
            LOGGER.debug("Telemetry sink failed to record %s", getattr(event, "kind", event), exc_info=True)

    def dispose(self) -> None:
        try:
            self._sink.dispose()
        except Exception:
            LOGGER.debug("Telemetry sink failed to dispose", exc_info=True)


# -----------------------------------------------------------------------------
# Summaries
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class SpeculativeStats:
    hits: int
    misses: int
    saved_ms: float

    @property
    def attempts(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        return self.hits / self.attempts if self.attempts else 0.0


def speculative_stats(events: Iterable[TelemetryEvent]) -> SpeculativeStats:
    """Summarize speculative hit/miss events."""

    hits = misses = 0
    saved = 0.0
    for event in events:
        if isinstance(event, SpeculativeHit):
            hits += 1
            saved += max(0.0, event.saved_ms)
        elif isinstance(event, SpeculativeMiss):
            misses += 1
    return SpeculativeStats(hits=hits, misses=misses, saved_ms=saved)


def telemetry_enabled(settings: Any | None = None) -> bool:
    """Return ``True`` if telemetry should be persisted for this session."""

    env_value = os.environ.get("AIDEV_TELEMETRY")
    if env_value is not None:
        return env_value.strip().lower() in _TRUE_VALUES
    if settings is None:
        return False
    return bool(getattr(settings, "telemetry_opt_in", False))


def _resolve_storage_dir(storage_dir: Path | str | None) -> Path:
    env_override = os.environ.get("AIDEV_TELEMETRY_DIR")
    return Path(storage_dir or env_override or _DEFAULT_TELEMETRY_DIR).expanduser()
