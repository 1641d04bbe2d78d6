"""Middleware pipeline wrapped around every command.

A middleware is an async callable ``(context, next)``; it may run code before
and after awaiting ``next()``, or reject the command by raising without
calling it.  The built-ins run in :data:`DEFAULT_MIDDLEWARE_ORDER`:

1. logging: start/finish/failure records with duration;
2. permission: injected predicate, raises :class:`PermissionDeniedError`;
3. rate limiting: per-command sliding one-second window;
4. audit: an ``[AUDIT]`` record for sensitive commands.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence

from ..core.errors import MiddlewareError, PermissionDeniedError, RateLimitExceededError

__all__ = [
    "MiddlewareContext",
    "Middleware",
    "Next",
    "CommandHandler",
    "LoggingMiddleware",
    "PermissionMiddleware",
    "RateLimitMiddleware",
    "AuditMiddleware",
    "SlidingWindowRateLimiter",
    "Pipeline",
    "AUDITED_COMMANDS",
    "DEFAULT_MIDDLEWARE_ORDER",
    "DEFAULT_RATE_LIMIT",
    "compose",
    "build_default_pipeline",
    "run_via_pipeline",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 10
RATE_LIMIT_WINDOW_MS = 1000.0
AUDITED_COMMANDS: frozenset[str] = frozenset(
    {
        "git.commit",
        "git.pull",
        "hygiene.cleanup",
        "chat.delegate",
        "aidev.autoCommit",
    }
)
DEFAULT_MIDDLEWARE_ORDER: tuple[str, ...] = ("logging", "permission", "rate_limit", "audit")


@dataclass(slots=True)
class MiddlewareContext:
    """Per-invocation context shared by the middlewares and the handler."""

    command_name: str
    params: Mapping[str, Any] = field(default_factory=dict)
    state: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    started_at: float = field(default_factory=time.perf_counter)


Next = Callable[[], Awaitable[None]]
Middleware = Callable[[MiddlewareContext, Next], Awaitable[None]]
CommandHandler = Callable[[MiddlewareContext], "Awaitable[Any] | Any"]
PermissionChecker = Callable[[str], bool]
Clock = Callable[[], float]


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 3)


# -----------------------------------------------------------------------------
# Built-in middlewares
# -----------------------------------------------------------------------------


class LoggingMiddleware:
    """Logs start, completion with duration, and failures; never swallows errors."""

    name = "logging"

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    async def __call__(self, ctx: MiddlewareContext, next: Next) -> None:
        command = ctx.command_name
        self._logger.debug(
            "[%s] Starting execution",
            command,
            extra={"source": "LoggingMiddleware", "data": {"command_name": command}},
        )
        start = time.perf_counter()
        try:
            await next()
        except Exception as exc:
            duration_ms = _elapsed_ms(start)
            self._logger.error(
                "[%s] Failed after %.0fms",
                command,
                duration_ms,
                extra={
                    "source": "LoggingMiddleware",
                    "data": {
                        "code": getattr(exc, "code", "MIDDLEWARE_ERROR"),
                        "message": "Command execution failed",
                        "details": str(exc),
                        "context": command,
                        "duration_ms": duration_ms,
                    },
                },
            )
            raise
        duration_ms = _elapsed_ms(start)
        self._logger.info(
            "[%s] Completed in %.0fms",
            command,
            duration_ms,
            extra={"source": "LoggingMiddleware", "data": {"command_name": command, "duration_ms": duration_ms}},
        )


class PermissionMiddleware:
    """Rejects commands the injected predicate does not allow."""

    name = "permission"

    def __init__(self, checker: PermissionChecker, logger: logging.Logger | None = None) -> None:
        self._checker = checker
        self._logger = logger or LOGGER

    async def __call__(self, ctx: MiddlewareContext, next: Next) -> None:
        command = ctx.command_name
        if not self._checker(command):
            error = PermissionDeniedError(context=command)
            self._logger.warning(
                "Permission denied: %s",
                command,
                extra={"source": "PermissionMiddleware", "data": error.to_dict()},
            )
            raise error
        self._logger.debug("[%s] Permission granted", command, extra={"source": "PermissionMiddleware"})
        await next()


class SlidingWindowRateLimiter:
    """Per-key count of accepted calls within the trailing window.

    Timestamps older than the window are pruned lazily when the key is next
    checked.  Only accepted calls are recorded.
    """

    def __init__(
        self,
        max_per_window: int = DEFAULT_RATE_LIMIT,
        *,
        window_ms: float = RATE_LIMIT_WINDOW_MS,
        clock: Clock | None = None,
    ) -> None:
        if max_per_window < 1:
            raise ValueError("max_per_window must be at least 1")
        self._max = max_per_window
        self._window_ms = window_ms
        self._clock = clock or _monotonic_ms
        self._calls: dict[str, deque[float]] = {}

    @property
    def limit(self) -> int:
        return self._max

    def try_acquire(self, key: str) -> bool:
        now = self._clock()
        calls = self._calls.setdefault(key, deque())
        while calls and now - calls[0] >= self._window_ms:
            calls.popleft()
        if len(calls) >= self._max:
            return False
        calls.append(now)
        return True

    def recent_count(self, key: str) -> int:
        calls = self._calls.get(key)
        if not calls:
            return 0
        now = self._clock()
        return sum(1 for stamp in calls if now - stamp < self._window_ms)

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._calls.clear()
        else:
            self._calls.pop(key, None)


class RateLimitMiddleware:
    name = "rate_limit"

    def __init__(
        self,
        max_per_second: int = DEFAULT_RATE_LIMIT,
        logger: logging.Logger | None = None,
        *,
        clock: Clock | None = None,
    ) -> None:
        self.limiter = SlidingWindowRateLimiter(max_per_second, clock=clock)
        self._logger = logger or LOGGER

    async def __call__(self, ctx: MiddlewareContext, next: Next) -> None:
        command = ctx.command_name
        if not self.limiter.try_acquire(command):
            error = RateLimitExceededError(context=command, limit=self.limiter.limit)
            self._logger.warning(
                "Rate limit: %s",
                command,
                extra={"source": "RateLimitMiddleware", "data": error.to_dict()},
            )
            raise error
        await next()


class AuditMiddleware:
    """Records sensitive commands; never blocks."""

    name = "audit"

    def __init__(
        self,
        logger: logging.Logger | None = None,
        *,
        audited: Iterable[str] = AUDITED_COMMANDS,
    ) -> None:
        self._logger = logger or LOGGER
        self._audited = frozenset(audited)

    async def __call__(self, ctx: MiddlewareContext, next: Next) -> None:
        command = ctx.command_name
        if command in self._audited:
            self._logger.info(
                "[AUDIT] Command invoked: %s",
                command,
                extra={
                    "source": "AuditMiddleware",
                    "data": {"command_name": command, "timestamp": datetime.now(timezone.utc).isoformat()},
                },
            )
        await next()


# -----------------------------------------------------------------------------
# Composition
# -----------------------------------------------------------------------------


def compose(
    middlewares: Sequence[Middleware], handler: CommandHandler
) -> Callable[[MiddlewareContext], Awaitable[None]]:
    """Nest ``middlewares`` (first = outermost) around ``handler``.

    The handler's return value is stored on ``context.result``.  Each
    middleware must await its ``next`` exactly once unless it raises;
    returning without calling it, or calling it twice, raises
    :class:`MiddlewareError`.
    """

    chain = tuple(middlewares)

    async def dispatch(index: int, ctx: MiddlewareContext) -> None:
        if index >= len(chain):
            value = handler(ctx)
            if inspect.isawaitable(value):
                value = await value
            ctx.result = value
            return

        called = False

        async def next_() -> None:
            nonlocal called
            if called:
                raise MiddlewareError(
                    context=ctx.command_name,
                    message=f"next() called more than once by middleware #{index} for '{ctx.command_name}'",
                )
            called = True
            await dispatch(index + 1, ctx)

        await chain[index](ctx, next_)
        if not called:
            raise MiddlewareError(
                context=ctx.command_name,
                message=f"middleware #{index} returned without calling next() for '{ctx.command_name}'",
            )

    async def run(ctx: MiddlewareContext) -> None:
        await dispatch(0, ctx)

    return run


class Pipeline:
    """Ordered, immutable chain of middlewares."""

    def __init__(self, middlewares: Iterable[Middleware] = ()) -> None:
        self._middlewares: tuple[Middleware, ...] = tuple(middlewares)

    @property
    def middlewares(self) -> tuple[Middleware, ...]:
        return self._middlewares

    def with_middleware(self, middleware: Middleware) -> "Pipeline":
        return Pipeline((*self._middlewares, middleware))

    async def run(
        self,
        command_name: str,
        handler: CommandHandler,
        context: MiddlewareContext | Mapping[str, Any] | None = None,
    ) -> Any:
        """Run ``handler`` for ``command_name`` through every middleware and return its result."""

        ctx = _coerce_context(command_name, context)
        await compose(self._middlewares, handler)(ctx)
        return ctx.result


def build_default_pipeline(
    logger: logging.Logger | None = None,
    permission_checker: PermissionChecker | None = None,
    max_per_second: int = DEFAULT_RATE_LIMIT,
    *,
    clock: Clock | None = None,
) -> Pipeline:
    """Build the logging → permission → rate limit → audit chain."""

    checker = permission_checker or (lambda _command: True)
    return Pipeline(
        (
            LoggingMiddleware(logger),
            PermissionMiddleware(checker, logger),
            RateLimitMiddleware(max_per_second, logger, clock=clock),
            AuditMiddleware(logger),
        )
    )


async def run_via_pipeline(
    command_name: str,
    handler: CommandHandler,
    context: MiddlewareContext | Mapping[str, Any] | None = None,
    *,
    pipeline: Pipeline,
) -> Any:
    """Run ``handler`` through the caller-owned ``pipeline``."""

    return await pipeline.run(command_name, handler, context)


def _coerce_context(
    command_name: str, context: MiddlewareContext | Mapping[str, Any] | None
) -> MiddlewareContext:
    if isinstance(context, MiddlewareContext):
        if context.command_name != command_name:
            context.command_name = command_name
        return context
    return MiddlewareContext(command_name=command_name, params=dict(context or {}))
