"""Service layer helpers (settings, telemetry)."""

from .settings import SecretVault, Settings, SettingsStore
from .telemetry import (
    InMemoryTelemetrySink,
    JsonlTelemetrySink,
    NullTelemetry,
    SafeTelemetry,
    TelemetrySink,
    telemetry_enabled,
)

__all__ = [
    "InMemoryTelemetrySink",
    "JsonlTelemetrySink",
    "NullTelemetry",
    "SafeTelemetry",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "TelemetrySink",
    "telemetry_enabled",
]
