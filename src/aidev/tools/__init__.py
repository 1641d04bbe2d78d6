"""Analysis tools and their shared contract."""

from typing import Callable, Mapping

from ..core.types import ToolId
from .base import BaseTool, ToolDeps
from .commit import CommitTool
from .dead_code import DeadCodeTool
from .registry import (
    TOOL_REGISTRY,
    ToolRegistryEntry,
    get_tool_by_command,
    get_tool_by_command_id,
    get_tool_entry,
    is_speculative_eligible,
)

DEFAULT_TOOL_FACTORIES: Mapping[ToolId, Callable[[ToolDeps], BaseTool]] = {
    ToolId.DEAD_CODE: DeadCodeTool,
    ToolId.COMMIT: CommitTool,
}

__all__ = [
    "BaseTool",
    "CommitTool",
    "DEFAULT_TOOL_FACTORIES",
    "DeadCodeTool",
    "TOOL_REGISTRY",
    "ToolDeps",
    "ToolRegistryEntry",
    "get_tool_by_command",
    "get_tool_by_command_id",
    "get_tool_entry",
    "is_speculative_eligible",
]
