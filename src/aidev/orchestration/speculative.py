"""Speculative pre-execution of read-only tools.

As soon as an intent is recognized, the eligible tools it implies are started
in the background and parked in a :class:`SpeculativeCache`.  When a consumer
later needs a tool's result it awaits the parked task instead of starting a
second run.  A cache lives for exactly one turn: beginning a new turn swaps in
a fresh, empty cache and the old tasks are abandoned (left to finish, never
read).  Mutating tools are never eligible.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable

from ..core.errors import SpeculativeIneligibleError
from ..core.types import ScanResult, ToolId, generate_id
from ..services.telemetry import (
    SafeTelemetry,
    SpeculativeHit,
    SpeculativeMiss,
    SpeculativeStats,
    TelemetrySink,
)
from ..tools.registry import is_speculative_eligible

__all__ = ["SpeculativeCache", "SpeculativeSession", "SpeculativeStart", "SpeculativeFallback"]

LOGGER = logging.getLogger(__name__)

SpeculativeStart = Callable[[ToolId], Awaitable["ScanResult | None"]]
SpeculativeFallback = Callable[[], Awaitable["ScanResult | None"]]


class SpeculativeCache:
    """Single-assignment map of tool id to an in-flight or settled run for one turn."""

    def __init__(self, turn_id: str | None = None) -> None:
        self.turn_id = turn_id or generate_id()
        self._entries: dict[ToolId, asyncio.Future[ScanResult | None]] = {}
        self._started_at: dict[ToolId, float] = {}

    def try_speculative(self, tool_id: ToolId | str) -> "asyncio.Future[ScanResult | None] | None":
        """Return the parked run for ``tool_id`` or ``None``; never starts anything."""

        return self._entries.get(ToolId.parse(tool_id))

    def register_speculative(
        self, tool_id: ToolId | str, awaitable: Awaitable["ScanResult | None"]
    ) -> "asyncio.Future[ScanResult | None]":
        """Park ``awaitable`` under ``tool_id``; each id may be registered once per turn."""

        key = ToolId.parse(tool_id)
        if not is_speculative_eligible(key):
            _close_unscheduled(awaitable)
            raise SpeculativeIneligibleError(context=key.value)
        if key in self._entries:
            _close_unscheduled(awaitable)
            raise ValueError(f"Tool '{key.value}' already has a speculative run in turn {self.turn_id}")
        future = asyncio.ensure_future(awaitable)
        future.add_done_callback(_consume_outcome)
        self._entries[key] = future
        self._started_at[key] = time.perf_counter()
        LOGGER.debug("Speculatively started %s for turn %s", key.value, self.turn_id)
        return future

    def started_at(self, tool_id: ToolId | str) -> float | None:
        return self._started_at.get(ToolId.parse(tool_id))

    def tool_ids(self) -> tuple[ToolId, ...]:
        return tuple(self._entries)

    def __contains__(self, tool_id: object) -> bool:
        return tool_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class SpeculativeSession:
    """Owns the current turn's cache and attributes hits and misses."""

    def __init__(self, telemetry: TelemetrySink | None = None) -> None:
        self._telemetry = SafeTelemetry(telemetry)
        self._cache = SpeculativeCache()
        self._hits = 0
        self._misses = 0
        self._saved_ms = 0.0

    @property
    def cache(self) -> SpeculativeCache:
        return self._cache

    def begin_turn(self, turn_id: str | None = None) -> SpeculativeCache:
        """Replace the cache; runs parked in the previous turn are abandoned."""

        previous = self._cache
        self._cache = SpeculativeCache(turn_id)
        if len(previous):
            LOGGER.debug(
                "Abandoned %d speculative run(s) from turn %s", len(previous), previous.turn_id
            )
        return self._cache

    def speculate(self, tool_ids: Iterable[ToolId | str], start: SpeculativeStart) -> list[ToolId]:
        """Start every eligible, not-yet-parked tool; returns the ids actually started."""

        started: list[ToolId] = []
        cache = self._cache
        for raw in tool_ids:
            tool_id = ToolId.parse(raw)
            if not is_speculative_eligible(tool_id) or tool_id in cache:
                continue
            cache.register_speculative(tool_id, start(tool_id))
            started.append(tool_id)
        return started

    async def resolve(self, tool_id: ToolId | str, fallback: SpeculativeFallback) -> "tuple[ScanResult | None, bool]":
        """Return ``(result, from_cache)`` for ``tool_id``.

        A parked run that settles to a result is a hit.  No parked run, or
        one that raised or produced nothing, is a miss and ``fallback`` runs.
        Ineligible tools go straight to ``fallback`` without attribution.
        """

        key = ToolId.parse(tool_id)
        cache = self._cache
        entry = cache.try_speculative(key)
        if entry is not None:
            requested_at = time.perf_counter()
            result: ScanResult | None = None
            try:
                result = await entry
            except Exception:
                LOGGER.debug("Speculative run of %s failed; falling back", key.value, exc_info=True)
            if result is not None:
                started_at = cache.started_at(key) or requested_at
                saved_ms = min((requested_at - started_at) * 1000.0, result.duration_ms or float("inf"))
                self._record_hit(key, max(0.0, saved_ms))
                return result, True

        if is_speculative_eligible(key):
            self._record_miss(key)
        return await fallback(), False

    def stats(self) -> SpeculativeStats:
        return SpeculativeStats(hits=self._hits, misses=self._misses, saved_ms=self._saved_ms)

    def _record_hit(self, tool_id: ToolId, saved_ms: float) -> None:
        self._hits += 1
        self._saved_ms += saved_ms
        LOGGER.debug("Speculative hit for %s (saved %.0fms)", tool_id.value, saved_ms)
        self._telemetry.emit(SpeculativeHit(tool_id=tool_id.value, saved_ms=saved_ms))

    def _record_miss(self, tool_id: ToolId) -> None:
        self._misses += 1
        LOGGER.debug("Speculative miss for %s", tool_id.value)
        self._telemetry.emit(SpeculativeMiss(tool_id=tool_id.value))


def _consume_outcome(future: "asyncio.Future[ScanResult | None]") -> None:
    # Abandoned runs are never awaited; retrieve the exception so asyncio does not report it.
    if not future.cancelled():
        future.exception()


def _close_unscheduled(awaitable: Awaitable[object]) -> None:
    close = getattr(awaitable, "close", None)
    if asyncio.iscoroutine(awaitable) and callable(close):
        close()
