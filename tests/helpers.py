"""Shared test doubles."""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

from aidev.providers.base import ModelMessage, ModelProvider, ModelResponse


class FakeProvider(ModelProvider):
    """Provider stub returning canned replies and recording every request."""

    provider_id = "openai"
    name = "Fake"

    def __init__(self, replies: Sequence[str] = ("NONE",), *, available: bool = True, delay: float = 0.0) -> None:
        self.replies = list(replies)
        self.available = available
        self.delay = delay
        self.requests: list[dict[str, Any]] = []
        self.closed = False

    async def is_available(self) -> bool:
        return self.available

    async def send_request(
        self,
        messages: Sequence[ModelMessage],
        *,
        role: str = "tool",
        cancellation=None,
        max_tokens=None,
        temperature=None,
    ) -> ModelResponse:
        self.requests.append({"messages": list(messages), "role": role})
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return ModelResponse(content=reply, model="fake-model", stop_reason="stop")

    async def aclose(self) -> None:
        self.closed = True


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

