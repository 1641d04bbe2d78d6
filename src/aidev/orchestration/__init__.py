"""Runner, middleware pipeline, speculative cache and workflows."""

from .events import EventBus, ToolRunCompleted, ToolRunProgress, ToolRunStarted, WorkflowRunCompleted
from .middleware import MiddlewareContext, Pipeline, build_default_pipeline, run_via_pipeline
from .runner import LoggingNotifier, Notifier, ToolRunner
from .speculative import SpeculativeCache, SpeculativeSession
from .workflows import WORKFLOW_REGISTRY, WorkflowDefinition, WorkflowRunner

__all__ = [
    "EventBus",
    "LoggingNotifier",
    "MiddlewareContext",
    "Notifier",
    "Pipeline",
    "SpeculativeCache",
    "SpeculativeSession",
    "ToolRunCompleted",
    "ToolRunProgress",
    "ToolRunStarted",
    "ToolRunner",
    "WORKFLOW_REGISTRY",
    "WorkflowDefinition",
    "WorkflowRunCompleted",
    "WorkflowRunner",
    "build_default_pipeline",
    "run_via_pipeline",
]
