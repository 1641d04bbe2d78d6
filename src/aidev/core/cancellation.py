"""Cooperative cancellation signals.

A :class:`CancellationToken` is a one-shot flag with callbacks.  Tokens can be
linked (``CancellationToken.any``) so a single effective signal fires when any
of its sources fire, and deadline tokens fire on their own after a timeout.
Nothing here interrupts running code: tools poll the token at checkpoints.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from .errors import ToolCancelledError

__all__ = ["CancellationToken", "CancelReason"]

LOGGER = logging.getLogger(__name__)

Callback = Callable[["CancellationToken"], None]


class CancelReason:
    USER = "user"
    TIMEOUT = "timeout"
    LINKED = "linked"


class CancellationToken:
    """One-shot cancellation flag shared between a caller and a running task."""

    __slots__ = ("_cancelled", "_reason", "_callbacks", "_event", "_timer", "_unlink")

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[Callback] = []
        self._event: asyncio.Event | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._unlink: list[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancellationToken":
        """Return a token that fires by itself after ``seconds`` on the running loop."""

        token = cls()
        loop = asyncio.get_running_loop()
        token._timer = loop.call_later(max(0.0, seconds), token.cancel, CancelReason.TIMEOUT)
        return token

    @classmethod
    def any(cls, *tokens: "CancellationToken | None") -> "CancellationToken":
        """Return a token that fires as soon as any of ``tokens`` fires.

        The linked token reports the reason of the source that fired first.
        """

        linked = cls()
        for source in tokens:
            if source is None:
                continue
            if source.cancelled:
                linked.cancel(source.reason or CancelReason.LINKED)
                break
            remove = source.add_callback(lambda fired: linked.cancel(fired.reason or CancelReason.LINKED))
            linked._unlink.append(remove)
        return linked

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    @property
    def timed_out(self) -> bool:
        return self._reason == CancelReason.TIMEOUT

    def cancel(self, reason: str = CancelReason.USER) -> None:
        """Fire the token; later calls are no-ops."""

        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        self._clear_timer()
        if self._event is not None:
            self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                LOGGER.exception("Cancellation callback %r raised", callback)

    def add_callback(self, callback: Callback) -> Callable[[], None]:
        """Register ``callback``; it runs immediately if the token already fired.

        Returns a function that unregisters the callback.
        """

        if self._cancelled:
            callback(self)
            return lambda: None
        self._callbacks.append(callback)

        def remove() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return remove

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ToolCancelledError(details={"reason": self._reason})

    async def wait(self) -> None:
        """Suspend until the token fires."""

        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    def close(self) -> None:
        """Detach from linked sources and stop any pending deadline timer."""

        self._clear_timer()
        unlink, self._unlink = self._unlink, []
        for remove in unlink:
            remove()

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def __repr__(self) -> str:
        state = f"cancelled:{self._reason}" if self._cancelled else "active"
        return f"<CancellationToken {state}>"
