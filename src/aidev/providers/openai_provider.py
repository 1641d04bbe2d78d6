"""OpenAI-compatible model provider."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Sequence

import httpx
from openai import APIConnectionError, APIStatusError, AsyncOpenAI, RateLimitError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..core.errors import ModelUnavailableError, ToolCancelledError
from .base import ModelMessage, ModelProvider, ModelResponse, ModelUsage

if TYPE_CHECKING:
    from ..core.cancellation import CancellationToken
    from ..services.settings import Settings

__all__ = ["OpenAIProvider"]

LOGGER = logging.getLogger(__name__)
_DEFAULT_MAX_TOKENS = 4096
_RETRYABLE_STATUS = {408, 409, 429, 500, 502, 503, 504}


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (APIConnectionError, RateLimitError, httpx.TimeoutException)):
        return True
    if isinstance(exc, APIStatusError):
        return exc.status_code in _RETRYABLE_STATUS
    return False


class OpenAIProvider(ModelProvider):
    """Provider backed by :class:`openai.AsyncOpenAI`.

    Transient API failures are retried with exponential backoff; a fired
    cancellation token abandons the in-flight request immediately.
    """

    provider_id = "openai"
    name = "OpenAI API"

    def __init__(self, settings: "Settings", *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client

    @property
    def model(self) -> str:
        return self._settings.model

    async def is_available(self) -> bool:
        return bool(self._client is not None or (self._settings.api_key or "").strip())

    async def send_request(
        self,
        messages: Sequence[ModelMessage],
        *,
        role: str = "tool",
        cancellation: "CancellationToken | None" = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ModelResponse:
        if not await self.is_available():
            raise ModelUnavailableError(context=self.provider_id, message="No API key configured for OpenAI")
        if cancellation is not None:
            cancellation.raise_if_cancelled()

        payload: dict[str, Any] = {
            "model": self._settings.model,
            "messages": [message.to_dict() for message in messages],
            "max_tokens": max_tokens or _DEFAULT_MAX_TOKENS,
            "temperature": self._settings.temperature if temperature is None else temperature,
        }
        LOGGER.debug(
            "Sending %s request via %s with %d message(s)", role, self._settings.model, len(payload["messages"])
        )

        request = asyncio.ensure_future(self._complete_with_retry(payload))
        if cancellation is None:
            return await request

        waiter = asyncio.ensure_future(cancellation.wait())
        try:
            done, _ = await asyncio.wait({request, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if request in done:
                return request.result()
            request.cancel()
            await asyncio.gather(request, return_exceptions=True)
            raise ToolCancelledError(context=self.provider_id, details={"reason": cancellation.reason})
        finally:
            waiter.cancel()
            if not request.done():
                request.cancel()

    async def aclose(self) -> None:
        if self._client is None:
            return
        result = self._client.close()
        if inspect.isawaitable(result):
            await result

    async def _complete_with_retry(self, payload: dict[str, Any]) -> ModelResponse:
        client = self._get_client()
        async for attempt in self._retrying():
            with attempt:
                completion = await client.chat.completions.create(**payload)
        choice = completion.choices[0] if completion.choices else None
        content = (choice.message.content or "") if choice is not None else ""
        usage = getattr(completion, "usage", None)
        return ModelResponse(
            content=content,
            model=getattr(completion, "model", None) or payload["model"],
            stop_reason=getattr(choice, "finish_reason", None),
            usage=ModelUsage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            )
            if usage is not None
            else None,
        )

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._settings.api_key,
                base_url=self._settings.base_url,
                timeout=self._settings.request_timeout,
                max_retries=0,
            )
        return self._client

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception(_is_transient),
        )
