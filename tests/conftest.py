"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from aidev.core.types import ScanOptions, ToolId
from aidev.providers.manager import ProviderManager
from aidev.services.settings import Settings
from aidev.services.telemetry import InMemoryTelemetrySink
from tests.helpers import FakeProvider, RecordingNotifier


@pytest.fixture
def settings() -> Settings:
    return Settings(provider_retry_attempts=1, provider_retry_delay=0.0, model_timeout=5.0)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def provider_manager(settings: Settings, fake_provider: FakeProvider) -> ProviderManager:
    manager = ProviderManager(settings)
    manager.register(fake_provider)
    return manager


@pytest.fixture
def empty_provider_manager(settings: Settings) -> ProviderManager:
    return ProviderManager(settings)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def telemetry() -> InMemoryTelemetrySink:
    return InMemoryTelemetrySink(capacity=100)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    (tmp_path / "src").mkdir()
    return tmp_path


@pytest.fixture
def options() -> ScanOptions:
    return ScanOptions()


@pytest.fixture
def dead_code_id() -> ToolId:
    return ToolId.DEAD_CODE
