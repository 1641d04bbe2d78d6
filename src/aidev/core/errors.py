"""Error taxonomy for the orchestration layer.

Every error carries a stable machine-readable ``code`` plus a human-readable
message, and serializes to a flat dictionary for logs and notifications.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


class ErrorCode:
    """Constants for error codes surfaced by the orchestration layer."""

    # Configuration errors
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UNKNOWN_TOOL = "UNKNOWN_TOOL"
    MISSING_DEPENDENCY = "MISSING_DEPENDENCY"
    HANDLER_NOT_FOUND = "HANDLER_NOT_FOUND"
    HANDLER_CONFLICT = "HANDLER_CONFLICT"

    # Policy rejections
    PERMISSION_DENIED = "PERMISSION_DENIED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Run control
    OPERATION_CANCELLED = "OPERATION_CANCELLED"
    TOOL_BUSY = "TOOL_BUSY"
    SPECULATIVE_INELIGIBLE = "SPECULATIVE_INELIGIBLE"

    # External collaborators
    MODEL_TIMEOUT = "MODEL_TIMEOUT"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    GIT_ERROR = "GIT_ERROR"

    # Pipeline misuse
    MIDDLEWARE_ERROR = "MIDDLEWARE_ERROR"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------


@dataclass(eq=False)
class AidevError(Exception):
    """Base exception for all structured errors.

    Attributes:
        code: Machine-readable error identifier.
        message: Human-readable description.
        context: The command name or tool id the error relates to.
        details: Additional structured information.
    """

    code: str
    message: str
    context: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    category: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.context is not None:
            result["context"] = self.context
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# -----------------------------------------------------------------------------
# Configuration Errors
# -----------------------------------------------------------------------------


@dataclass(eq=False)
class ConfigurationError(AidevError):
    code: str = field(default=ErrorCode.CONFIGURATION_ERROR)
    message: str = field(default="The workspace is not configured for this operation")

    category: ClassVar[str] = "configuration"


@dataclass(eq=False)
class UnknownToolError(ConfigurationError):
    code: str = field(default=ErrorCode.UNKNOWN_TOOL)
    message: str = field(default="")
    tool_id: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f'Unknown tool "{self.tool_id}"'
        if self.context is None:
            self.context = self.tool_id
        super().__post_init__()


@dataclass(eq=False)
class MissingDependencyError(ConfigurationError):
    """A tool needs a collaborator (usually a model provider) that is unavailable."""

    code: str = field(default=ErrorCode.MISSING_DEPENDENCY)
    message: str = field(default="")
    dependency: str = "model provider"

    def __post_init__(self) -> None:
        if not self.message:
            target = f" for {self.context}" if self.context else ""
            self.message = f"No {self.dependency} available{target}. Configure one in settings."
        super().__post_init__()


@dataclass(eq=False)
class CommandNotFoundError(ConfigurationError):
    code: str = field(default=ErrorCode.HANDLER_NOT_FOUND)
    message: str = field(default="")

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"No handler registered for command '{self.context}'"
        super().__post_init__()


@dataclass(eq=False)
class HandlerConflictError(ConfigurationError):
    code: str = field(default=ErrorCode.HANDLER_CONFLICT)
    message: str = field(default="")

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Handler '{self.context}' already registered"
        super().__post_init__()


# -----------------------------------------------------------------------------
# Policy Rejections
# -----------------------------------------------------------------------------


@dataclass(eq=False)
class PolicyRejection(AidevError):
    """Raised by middleware before the command handler runs."""

    category: ClassVar[str] = "policy"

    @property
    def command_name(self) -> str | None:
        return self.context


@dataclass(eq=False)
class PermissionDeniedError(PolicyRejection):
    code: str = field(default=ErrorCode.PERMISSION_DENIED)
    message: str = field(default="")

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"User lacks permission to execute '{self.context}'"
        super().__post_init__()


@dataclass(eq=False)
class RateLimitExceededError(PolicyRejection):
    code: str = field(default=ErrorCode.RATE_LIMIT_EXCEEDED)
    message: str = field(default="")
    limit: int = 0

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Rate limit exceeded for '{self.context}'"
        if self.limit:
            self.details.setdefault("limit_per_second", self.limit)
        super().__post_init__()


# -----------------------------------------------------------------------------
# Run Control
# -----------------------------------------------------------------------------


@dataclass(eq=False)
class ToolCancelledError(AidevError):
    """Cooperative cancellation signal; a normal outcome, never a failure."""

    code: str = field(default=ErrorCode.OPERATION_CANCELLED)
    message: str = field(default="Scan cancelled")

    category: ClassVar[str] = "cancellation"


@dataclass(eq=False)
class ToolBusyError(AidevError):
    code: str = field(default=ErrorCode.TOOL_BUSY)
    message: str = field(default="Tool is already running")


@dataclass(eq=False)
class SpeculativeIneligibleError(AidevError):
    code: str = field(default=ErrorCode.SPECULATIVE_INELIGIBLE)
    message: str = field(default="")

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Tool '{self.context}' mutates state and cannot be pre-executed"
        super().__post_init__()


# -----------------------------------------------------------------------------
# External Collaborators
# -----------------------------------------------------------------------------


@dataclass(eq=False)
class ModelTimeoutError(AidevError):
    code: str = field(default=ErrorCode.MODEL_TIMEOUT)
    message: str = field(default="")
    timeout: float = 0.0

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Model request timed out after {self.timeout:g}s"
        super().__post_init__()


@dataclass(eq=False)
class ModelUnavailableError(AidevError):
    code: str = field(default=ErrorCode.MODEL_UNAVAILABLE)
    message: str = field(default="Model provider is not available")


@dataclass(eq=False)
class GitError(AidevError):
    code: str = field(default=ErrorCode.GIT_ERROR)
    message: str = field(default="git command failed")
    exit_code: int | None = None
    stderr: str = ""

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.exit_code is not None:
            result["exit_code"] = self.exit_code
        if self.stderr:
            result["stderr"] = self.stderr
        return result


@dataclass(eq=False)
class MiddlewareError(AidevError):
    code: str = field(default=ErrorCode.MIDDLEWARE_ERROR)
    message: str = field(default="Middleware pipeline misuse")


__all__ = [
    "ErrorCode",
    "AidevError",
    "ConfigurationError",
    "UnknownToolError",
    "MissingDependencyError",
    "CommandNotFoundError",
    "HandlerConflictError",
    "PolicyRejection",
    "PermissionDeniedError",
    "RateLimitExceededError",
    "ToolCancelledError",
    "ToolBusyError",
    "SpeculativeIneligibleError",
    "ModelTimeoutError",
    "ModelUnavailableError",
    "GitError",
    "MiddlewareError",
]
