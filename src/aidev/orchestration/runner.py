"""Tool runner: resolves dependencies, executes tools and publishes results."""

from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Mapping, Protocol

from ..core.errors import MissingDependencyError, UnknownToolError
from ..core.types import ScanOptions, ScanResult, ScanStatus, ToolId, TriggerSource
from ..services.settings import Settings
from ..services.telemetry import TelemetrySink
from ..tools.base import BaseTool, ToolDeps
from ..tools.registry import ToolRegistryEntry, get_tool_entry
from ..vcs.git import GitRepository
from .events import EventBus, ToolRunCompleted, ToolRunProgress, ToolRunStarted, Unsubscribe

if TYPE_CHECKING:
    from ..providers.base import ModelProvider
    from ..providers.manager import ProviderManager
    from .speculative import SpeculativeSession

__all__ = [
    "ToolRunner",
    "Notifier",
    "LoggingNotifier",
    "ToolFactory",
    "WorkspaceResolver",
    "format_notification",
    "speculative_options",
]

LOGGER = logging.getLogger(__name__)

ToolFactory = Callable[[ToolDeps], BaseTool]
WorkspaceResolver = Callable[[], "Path | str | None"]


class Notifier(Protocol):
    """User-facing message sink (status bar, toast, terminal)."""

    def info(self, message: str) -> None:  # pragma: no cover - protocol stub
        ...

    def error(self, message: str) -> None:  # pragma: no cover - protocol stub
        ...


class LoggingNotifier:
    """Notifier that writes user messages to the log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def info(self, message: str) -> None:
        self._logger.info(message)

    def error(self, message: str) -> None:
        self._logger.error(message)


def format_notification(tool_name: str, result: ScanResult) -> tuple[str, str]:
    """Return ``(level, message)`` describing ``result`` for the user."""

    if result.status is ScanStatus.COMPLETED:
        total = result.summary.total_findings
        if total:
            return "info", f"AIDev: {tool_name} found {total} items. Check the results for details."
        return "info", f"AIDev: {tool_name} completed with no findings."
    if result.status is ScanStatus.FAILED:
        return "error", f"AIDev: {tool_name} failed: {result.error or 'Unknown error'}"
    return "info", f"AIDev: {tool_name} cancelled."


class ToolRunner:
    """Runs tools by id on behalf of commands, chat and workflows.

    Every completed run, whatever its status, is stored as the tool's latest
    result, published as :class:`ToolRunCompleted` and reported to the
    notifier exactly once.
    """

    def __init__(
        self,
        *,
        workspace: WorkspaceResolver,
        providers: "ProviderManager",
        factories: Mapping[ToolId, ToolFactory],
        notifier: Notifier | None = None,
        events: EventBus | None = None,
        telemetry: TelemetrySink | None = None,
        settings: Settings | None = None,
        vcs_factory: Callable[[Path], GitRepository] | None = None,
    ) -> None:
        self._workspace = workspace
        self._providers = providers
        self._factories: dict[ToolId, ToolFactory] = dict(factories)
        self._notifier: Notifier = notifier or LoggingNotifier()
        self._events = events or EventBus()
        self._telemetry = telemetry
        self._settings = settings or providers.settings
        self._vcs_factory = vcs_factory or GitRepository
        self._last_results: dict[ToolId, ScanResult] = {}
        self._active: dict[ToolId, BaseTool] = {}

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def settings(self) -> Settings:
        return self._settings

    def register_factory(self, tool_id: ToolId, factory: ToolFactory) -> None:
        self._factories[tool_id] = factory

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def run(
        self,
        tool_id: ToolId | str,
        options: ScanOptions | None = None,
        *,
        speculative: "SpeculativeSession | None" = None,
    ) -> ScanResult | None:
        """Run ``tool_id`` and return its result, or ``None`` if it could not start."""

        resolved = self._resolve(tool_id)
        if resolved is None:
            return None
        key, entry, factory, cwd = resolved

        options = self._prepare_options(options)
        if speculative is not None:
            result, from_cache = await speculative.resolve(key, lambda: self._execute(key, entry, factory, cwd, options))
        else:
            result, from_cache = await self._execute(key, entry, factory, cwd, options), False
        if result is None:
            return None

        self._last_results[key] = result
        self._events.publish(ToolRunCompleted(tool_id=key, result=result, from_cache=from_cache))
        self._notify(entry.name, result)
        return result

    async def run_detached(self, tool_id: ToolId | str, options: ScanOptions | None = None) -> ScanResult | None:
        """Execute without storing, broadcasting or notifying.

        Used for speculative pre-execution; the consumer that later claims the
        result goes through :meth:`run`, which publishes it.
        """

        resolved = self._resolve(tool_id, notify=False)
        if resolved is None:
            return None
        key, entry, factory, cwd = resolved
        return await self._execute(key, entry, factory, cwd, self._prepare_options(options))

    def cancel(self, tool_id: ToolId | str) -> bool:
        """Cancel the active run of ``tool_id``; returns ``False`` if none is running."""

        try:
            key = ToolId.parse(tool_id)
        except UnknownToolError:
            return False
        tool = self._active.get(key)
        if tool is None:
            return False
        tool.cancel()
        LOGGER.info("Cancellation requested for %s", key.value)
        return True

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def get_last_result(self, tool_id: ToolId | str) -> ScanResult | None:
        try:
            return self._last_results.get(ToolId.parse(tool_id))
        except UnknownToolError:
            return None

    def all_results(self) -> dict[ToolId, ScanResult]:
        return dict(self._last_results)

    def on_did_complete_run(self, handler: Callable[[ToolRunCompleted], None]) -> Unsubscribe:
        return self._events.subscribe(ToolRunCompleted, handler)

    def on_progress(self, handler: Callable[[ToolRunProgress], None]) -> Unsubscribe:
        return self._events.subscribe(ToolRunProgress, handler)

    def dispose(self) -> None:
        for tool in list(self._active.values()):
            tool.cancel()
        self._active.clear()
        self._last_results.clear()
        self._events.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(
        self, tool_id: ToolId | str, *, notify: bool = True
    ) -> tuple[ToolId, ToolRegistryEntry, ToolFactory, Path] | None:
        entry = get_tool_entry(tool_id)
        factory = self._factories.get(entry.id) if entry is not None else None
        if entry is None or factory is None:
            LOGGER.warning("Unknown tool requested: %s", tool_id)
            if notify:
                self._notifier.error(f'AIDev: Unknown tool "{tool_id}".')
            return None

        workspace = self._workspace()
        if not workspace:
            LOGGER.warning("No workspace available for %s", entry.id.value)
            if notify:
                self._notifier.error("AIDev: No workspace folder open.")
            return None
        return entry.id, entry, factory, Path(workspace)

    def _prepare_options(self, options: ScanOptions | None) -> ScanOptions:
        options = options or ScanOptions()
        if options.telemetry is None and self._telemetry is not None:
            options = options.with_telemetry(self._telemetry)
        return options

    async def _execute(
        self,
        tool_id: ToolId,
        entry: ToolRegistryEntry,
        factory: ToolFactory,
        cwd: Path,
        options: ScanOptions,
    ) -> ScanResult:
        self._report_progress(tool_id, entry, "Starting...")
        provider: ModelProvider | None
        if entry.requires_model:
            provider = await self._providers.wait_for_provider()
            if provider is None:
                error = MissingDependencyError(context=tool_id.value)
                LOGGER.warning("Not running %s: %s", tool_id.value, error.message)
                return ScanResult.failed(tool_id, error.message, metadata={"error_code": error.code})
        else:
            provider = self._providers.get_active_provider()

        deps = ToolDeps(cwd=cwd, provider=provider, settings=self._settings, vcs=self._vcs_factory(cwd))
        try:
            tool = factory(deps)
        except Exception as exc:
            LOGGER.exception("Failed to create tool %s", tool_id.value)
            return ScanResult.failed(tool_id, f"Failed to create tool: {exc}")

        self._active[tool_id] = tool
        self._events.publish(
            ToolRunStarted(tool_id=tool_id, speculative=options.triggered_by is TriggerSource.SPECULATIVE)
        )
        try:
            self._report_progress(tool_id, entry, "Analyzing...")
            return await tool.execute(options)
        finally:
            if self._active.get(tool_id) is tool:
                del self._active[tool_id]

    def _report_progress(self, tool_id: ToolId, entry: ToolRegistryEntry, message: str) -> None:
        title = f"AIDev: {entry.name}"
        LOGGER.debug("%s: %s", title, message)
        self._events.publish(ToolRunProgress(tool_id=tool_id, title=title, message=message))

    def _notify(self, tool_name: str, result: ScanResult) -> None:
        level, message = format_notification(tool_name, result)
        try:
            if level == "error":
                self._notifier.error(message)
            else:
                self._notifier.info(message)
        except Exception:
            LOGGER.exception("Notifier failed to display result for %s", tool_name)


def speculative_options(options: ScanOptions | None = None) -> ScanOptions:
    """Copy of ``options`` marked as a speculative trigger."""

    return replace(options or ScanOptions(), triggered_by=TriggerSource.SPECULATIVE)
