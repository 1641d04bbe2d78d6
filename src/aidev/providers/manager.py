"""Model provider registration and selection."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..core.errors import ModelUnavailableError
from .base import ModelProvider

if TYPE_CHECKING:
    from ..services.settings import Settings

__all__ = ["ProviderManager"]

LOGGER = logging.getLogger(__name__)

_SOURCE_TO_PROVIDER_ID = {
    "openai": "openai",
}


class ProviderManager:
    """Keeps the registered providers and tracks the active one.

    The configured ``provider_source`` is preferred; when it is unavailable
    any other available provider is used.  ``none`` disables models entirely.
    """

    def __init__(self, settings: "Settings") -> None:
        self._settings = settings
        self._providers: dict[str, ModelProvider] = {}
        self._active: ModelProvider | None = None

    @property
    def settings(self) -> "Settings":
        return self._settings

    def register(self, provider: ModelProvider) -> None:
        if not provider.provider_id:
            raise ValueError("provider_id is required for provider registration")
        self._providers[provider.provider_id] = provider

    def get_provider(self, provider_id: str) -> ModelProvider | None:
        return self._providers.get(provider_id)

    def get_active_provider(self) -> ModelProvider | None:
        return self._active

    def update_settings(self, settings: "Settings") -> None:
        previous = self._settings.provider_source
        self._settings = settings
        if previous != settings.provider_source:
            LOGGER.info("Provider source changed from %s to %s", previous, settings.provider_source)
            self._active = None

    async def activate(self) -> ModelProvider | None:
        """Select the provider matching the current settings, with fallback."""

        source = self._settings.provider_source
        if source == "none":
            self._active = None
            return None

        target_id = _SOURCE_TO_PROVIDER_ID.get(source)
        target = self._providers.get(target_id) if target_id else None
        if target is not None and await self._check(target):
            self._active = target
            LOGGER.info("Active model provider: %s", target.name or target.provider_id)
            return target

        for provider_id, provider in self._providers.items():
            if provider is target:
                continue
            if await self._check(provider):
                self._active = provider
                LOGGER.info("Fell back to model provider: %s", provider.name or provider_id)
                return provider

        self._active = None
        LOGGER.warning("No model provider available. Tools requiring models will not work.")
        return None

    async def retry_activation(self, max_retries: int = 3, delay: float = 1.0) -> ModelProvider | None:
        """Try :meth:`activate` up to ``max_retries`` times, ``delay`` seconds apart."""

        attempts = max(1, int(max_retries))
        try:
            async for attempt in AsyncRetrying(
                reraise=True,
                stop=stop_after_attempt(attempts),
                wait=wait_fixed(max(0.0, delay)),
                retry=retry_if_exception_type(ModelUnavailableError),
            ):
                with attempt:
                    LOGGER.debug("Provider activation attempt %d/%d", attempt.retry_state.attempt_number, attempts)
                    provider = await self.activate()
                    if provider is None:
                        raise ModelUnavailableError()
        except ModelUnavailableError:
            LOGGER.warning("Provider still not available after %d attempt(s)", attempts)
            return None
        return provider

    async def wait_for_provider(self) -> ModelProvider | None:
        """Return the active provider, retrying activation per the settings."""

        if self._active is not None:
            return self._active
        return await self.retry_activation(
            self._settings.provider_retry_attempts,
            self._settings.provider_retry_delay,
        )

    async def dispose(self) -> None:
        for provider in self._providers.values():
            try:
                await provider.aclose()
            except Exception:
                LOGGER.debug("Provider %s failed to close", provider.provider_id, exc_info=True)
        self._providers.clear()
        self._active = None

    async def _check(self, provider: ModelProvider) -> bool:
        try:
            return bool(await provider.is_available())
        except Exception:
            LOGGER.exception("Error checking availability of %s", provider.provider_id)
            return False
