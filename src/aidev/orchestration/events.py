"""Typed publish/subscribe bus for orchestration events.

The runner publishes one :class:`ToolRunCompleted` per finished run; the
presentation layer (tree views, diagnostics, chat) subscribes without the
runner knowing about it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Generic, TypeVar
from weakref import WeakMethod

from ..core.types import ScanResult, ToolId

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

LOGGER = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]
Unsubscribe = Callable[[], None]


@dataclass(slots=True, frozen=True)
class Event:
    """Base class for bus events."""


@dataclass(slots=True, frozen=True)
class ToolRunStarted(Event):
    tool_id: ToolId
    speculative: bool = False


@dataclass(slots=True, frozen=True)
class ToolRunProgress(Event):
    """Status line for a run in flight, e.g. ``Starting...`` then ``Analyzing...``."""

    tool_id: ToolId
    title: str
    message: str


@dataclass(slots=True, frozen=True)
class ToolRunCompleted(Event):
    """Published once per run, whatever its terminal status."""

    tool_id: ToolId
    result: ScanResult
    from_cache: bool = False


@dataclass(slots=True, frozen=True)
class WorkflowRunCompleted(Event):
    workflow_id: str
    results: tuple[ScanResult, ...]
    cancelled: bool = False


class EventBus(Generic[E]):
    """Synchronous, single-threaded event bus.

    Bound-method handlers are held weakly so a disposed subscriber does not
    keep receiving events; plain functions and lambdas are held strongly.
    A handler that raises is logged and the remaining handlers still run.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> Unsubscribe:
        """Register ``handler`` for ``event_type``; returns a function that removes it."""

        handler_ref = _HandlerRef.create(handler)
        self._handlers[event_type].append(handler_ref)
        LOGGER.debug("Subscribed %s to %s", _handler_name(handler), event_type.__name__)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type)
            if handlers and handler_ref in handlers:
                handlers.remove(handler_ref)

        return unsubscribe

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        for index, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(index)
                return

    def publish(self, event: E) -> None:
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        if not handlers:
            return

        LOGGER.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))
        dead: list[_HandlerRef] = []
        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead.append(handler_ref)
                continue
            try:
                handler(event)
            except Exception:
                LOGGER.exception(
                    "Handler %s raised for event %s", _handler_name(handler), event_type.__name__
                )
        for handler_ref in dead:
            if handler_ref in handlers:
                handlers.remove(handler_ref)

    def clear(self) -> None:
        self._handlers.clear()

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> "_HandlerRef":
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        return resolved is not None and resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__name__", repr(handler))


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "ToolRunCompleted",
    "ToolRunProgress",
    "ToolRunStarted",
    "Unsubscribe",
    "WorkflowRunCompleted",
]
