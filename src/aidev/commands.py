"""Command routing: every named command runs through the middleware pipeline."""

from __future__ import annotations

import logging
import shlex
from typing import TYPE_CHECKING, Any, Mapping

from .core.errors import CommandNotFoundError, ConfigurationError, HandlerConflictError
from .core.types import ScanOptions, ToolId, TriggerSource
from .orchestration.middleware import (
    CommandHandler,
    MiddlewareContext,
    Pipeline,
    build_default_pipeline,
    run_via_pipeline,
)
from .tools.registry import TOOL_REGISTRY, get_tool_by_command

if TYPE_CHECKING:
    from .orchestration.runner import ToolRunner
    from .orchestration.workflows import WorkflowRunner
    from .services.settings import Settings

__all__ = ["CommandRouter", "GIT_COMMIT_COMMAND", "RUN_WORKFLOW_COMMAND", "CANCEL_TOOL_COMMAND"]

LOGGER = logging.getLogger(__name__)

GIT_COMMIT_COMMAND = "git.commit"
RUN_WORKFLOW_COMMAND = "aidev.runWorkflow"
CANCEL_TOOL_COMMAND = "aidev.cancelTool"


class CommandRouter:
    """Maps command names to handlers and executes them through a :class:`Pipeline`.

    Every registry tool is exposed under its ``command_id``.  ``git.commit``
    applies a commit message through the commit tool, and the workflow and
    cancel commands are registered when their collaborators are supplied.
    """

    def __init__(
        self,
        runner: "ToolRunner",
        *,
        workflows: "WorkflowRunner | None" = None,
        pipeline: Pipeline | None = None,
        settings: "Settings | None" = None,
    ) -> None:
        self._runner = runner
        self._workflows = workflows
        self._settings = settings or runner.settings
        self._pipeline = pipeline or build_default_pipeline(
            permission_checker=self._is_permitted,
            max_per_second=self._settings.rate_limit_per_second,
        )
        self._handlers: dict[str, CommandHandler] = {}
        self._register_builtin_commands()

    @property
    def pipeline(self) -> Pipeline:
        return self._pipeline

    def register(self, command: str, handler: CommandHandler) -> None:
        if command in self._handlers:
            raise HandlerConflictError(context=command)
        self._handlers[command] = handler

    def unregister(self, command: str) -> None:
        self._handlers.pop(command, None)

    def commands(self) -> tuple[str, ...]:
        return tuple(sorted(self._handlers))

    def has_command(self, command: str) -> bool:
        return command in self._handlers

    async def execute(self, command: str, **params: Any) -> Any:
        """Run ``command`` with ``params`` through the pipeline and return the handler's result."""

        handler = self._handlers.get(command)
        if handler is None:
            raise CommandNotFoundError(context=command)
        return await run_via_pipeline(command, handler, params, pipeline=self._pipeline)

    async def execute_chat(self, text: str) -> Any:
        """Run a chat slash-command such as ``/deadcode src/app.py``."""

        parts = shlex.split(text.strip())
        if not parts:
            raise CommandNotFoundError(context=text)
        entry = get_tool_by_command(parts[0])
        if entry is None:
            raise CommandNotFoundError(context=parts[0])
        return await self.execute(entry.command_id, paths=parts[1:], triggered_by=TriggerSource.SLASH)

    # ------------------------------------------------------------------
    # Built-in handlers
    # ------------------------------------------------------------------

    def _register_builtin_commands(self) -> None:
        for entry in TOOL_REGISTRY:
            self.register(entry.command_id, self._tool_handler(entry.id))
        self.register(GIT_COMMIT_COMMAND, self._git_commit)
        self.register(CANCEL_TOOL_COMMAND, self._cancel_tool)
        if self._workflows is not None:
            self.register(RUN_WORKFLOW_COMMAND, self._run_workflow)

    def _tool_handler(self, tool_id: ToolId) -> CommandHandler:
        async def handler(ctx: MiddlewareContext) -> Any:
            return await self._runner.run(tool_id, _options_from(ctx.params))

        handler.__name__ = f"run_{tool_id.value.replace('-', '_')}"
        return handler

    async def _git_commit(self, ctx: MiddlewareContext) -> Any:
        message = str(ctx.params.get("message") or "").strip()
        if not message:
            raise ConfigurationError(context=GIT_COMMIT_COMMAND, message="A commit message is required")
        args = {"action": "apply", "message": message}
        return await self._runner.run(ToolId.COMMIT, _options_from(ctx.params, args=args))

    def _cancel_tool(self, ctx: MiddlewareContext) -> bool:
        return self._runner.cancel(str(ctx.params.get("tool_id", "")))

    async def _run_workflow(self, ctx: MiddlewareContext) -> Any:
        if self._workflows is None:
            raise ConfigurationError(context=RUN_WORKFLOW_COMMAND, message="No workflow runner is configured")
        workflow = str(ctx.params.get("workflow", ""))
        options = _options_from(ctx.params, default_trigger=TriggerSource.WORKFLOW)
        return await self._workflows.run(workflow, options, matched_input=str(ctx.params.get("input", "")))

    def _is_permitted(self, command: str) -> bool:
        return command not in set(self._settings.denied_commands or ())


def _options_from(
    params: Mapping[str, Any],
    *,
    args: Mapping[str, Any] | None = None,
    default_trigger: TriggerSource = TriggerSource.DIRECT,
) -> ScanOptions:
    options = params.get("options")
    if isinstance(options, ScanOptions):
        return options
    paths = params.get("paths") or ()
    if isinstance(paths, str):
        paths = (paths,)
    triggered_by = params.get("triggered_by") or default_trigger
    return ScanOptions(
        paths=tuple(paths),
        cancellation=params.get("cancellation"),
        args=dict(args if args is not None else params.get("args") or {}),
        triggered_by=TriggerSource(triggered_by),
    )
