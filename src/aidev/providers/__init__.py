"""Model providers and provider selection."""

from .base import MODEL_ROLES, ModelMessage, ModelProvider, ModelResponse, ModelUsage
from .manager import ProviderManager
from .openai_provider import OpenAIProvider

__all__ = [
    "MODEL_ROLES",
    "ModelMessage",
    "ModelProvider",
    "ModelResponse",
    "ModelUsage",
    "OpenAIProvider",
    "ProviderManager",
]
