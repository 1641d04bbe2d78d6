"""Static metadata for every known tool.

Command routing, chat slash-commands and speculative eligibility are all
driven from :data:`TOOL_REGISTRY`; adding an entry here is enough for the
command router to expose the tool.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from ..core.errors import UnknownToolError
from ..core.types import ToolId

__all__ = [
    "ToolRegistryEntry",
    "TOOL_REGISTRY",
    "get_tool_entry",
    "get_tool_by_command",
    "get_tool_by_command_id",
    "is_speculative_eligible",
    "speculative_eligible_ids",
]


@dataclass(slots=True, frozen=True)
class ToolRegistryEntry:
    id: ToolId
    name: str
    description: str
    chat_command: str
    command_id: str
    requires_model: bool = False
    mutating: bool = False

    @property
    def invocation(self) -> str:
        return f"/{self.chat_command}"


TOOL_REGISTRY: tuple[ToolRegistryEntry, ...] = (
    ToolRegistryEntry(
        id=ToolId.DEAD_CODE,
        name="Dead Code Discovery",
        description="Find unused exports, unreachable code, unused files, and dead variables.",
        chat_command="deadcode",
        command_id="aidev.scanDeadCode",
    ),
    ToolRegistryEntry(
        id=ToolId.LINT,
        name="Lint & Best Practice",
        description="Run linters and model-driven analysis for code smells and best practices.",
        chat_command="lint",
        command_id="aidev.scanLint",
    ),
    ToolRegistryEntry(
        id=ToolId.COMMENTS,
        name="Comment Pruning",
        description="Identify stale, verbose, or low-value comments for cleanup.",
        chat_command="comments",
        command_id="aidev.pruneComments",
        requires_model=True,
    ),
    ToolRegistryEntry(
        id=ToolId.COMMIT,
        name="Auto-Commit",
        description="Stage changed files and generate a commit message for approval.",
        chat_command="commit",
        command_id="aidev.autoCommit",
        requires_model=True,
        mutating=True,
    ),
    ToolRegistryEntry(
        id=ToolId.TLDR,
        name="TLDR",
        description="Summarize recent changes for a file, directory, or project.",
        chat_command="tldr",
        command_id="aidev.tldr",
        requires_model=True,
    ),
    ToolRegistryEntry(
        id=ToolId.BRANCH_DIFF,
        name="Branch Diff",
        description="Compare the current branch against its upstream and list incoming and outgoing changes.",
        chat_command="branchdiff",
        command_id="aidev.branchDiff",
    ),
    ToolRegistryEntry(
        id=ToolId.DIFF_RESOLVE,
        name="Conflict Resolution",
        description="Propose and apply resolutions for merge conflicts in the working tree.",
        chat_command="resolve",
        command_id="aidev.diffResolve",
        requires_model=True,
        mutating=True,
    ),
    ToolRegistryEntry(
        id=ToolId.PR_REVIEW,
        name="PR Review",
        description="Review the branch diff as a pull request and report blocking issues.",
        chat_command="review",
        command_id="aidev.prReview",
        requires_model=True,
    ),
    ToolRegistryEntry(
        id=ToolId.DECOMPOSE,
        name="Decompose",
        description="Split a broad request into sub-tasks and run the matching tools.",
        chat_command="decompose",
        command_id="aidev.decompose",
        requires_model=True,
    ),
)

_BY_ID: Mapping[ToolId, ToolRegistryEntry] = {entry.id: entry for entry in TOOL_REGISTRY}


def get_tool_entry(tool_id: ToolId | str) -> ToolRegistryEntry | None:
    try:
        return _BY_ID.get(ToolId.parse(tool_id))
    except UnknownToolError:
        return None


def get_tool_by_command(command: str) -> ToolRegistryEntry | None:
    """Look up a tool by its chat command, with or without the leading slash."""

    name = (command or "").strip().lstrip("/").lower()
    for entry in TOOL_REGISTRY:
        if entry.chat_command == name:
            return entry
    return None


def get_tool_by_command_id(command_id: str) -> ToolRegistryEntry | None:
    for entry in TOOL_REGISTRY:
        if entry.command_id == command_id:
            return entry
    return None


def is_speculative_eligible(tool_id: ToolId | str) -> bool:
    """Only known, non-mutating tools may be pre-executed."""

    entry = get_tool_entry(tool_id)
    return entry is not None and not entry.mutating


def speculative_eligible_ids() -> tuple[ToolId, ...]:
    return tuple(entry.id for entry in TOOL_REGISTRY if not entry.mutating)
