"""Model provider interface consumed by tools."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Sequence

if TYPE_CHECKING:
    from ..core.cancellation import CancellationToken

__all__ = ["ModelMessage", "ModelResponse", "ModelUsage", "ModelProvider", "MODEL_ROLES"]

MODEL_ROLES: tuple[str, ...] = ("chat", "tool", "review", "commit")


@dataclass(slots=True, frozen=True)
class ModelMessage:
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def system(cls, content: str) -> "ModelMessage":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "ModelMessage":
        return cls(role="user", content=content)


@dataclass(slots=True, frozen=True)
class ModelUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(slots=True, frozen=True)
class ModelResponse:
    content: str
    model: str
    stop_reason: str | None = None
    usage: ModelUsage | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


class ModelProvider(ABC):
    """A source of language-model completions.

    Providers own their transport retry policy; callers only bound the total
    wait through cancellation tokens.
    """

    provider_id: str = ""
    name: str = ""

    @abstractmethod
    async def is_available(self) -> bool:
        """Return ``True`` when the provider is configured and reachable."""

    @abstractmethod
    async def send_request(
        self,
        messages: Sequence[ModelMessage],
        *,
        role: str = "tool",
        cancellation: "CancellationToken | None" = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ModelResponse:
        """Send ``messages`` and return the completion."""

    async def aclose(self) -> None:
        """Release network resources; default is a no-op."""

        return None
