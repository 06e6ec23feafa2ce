"""External collaborators: model, tool, retrieval and transform services."""

from graphrun.services.anthropic_chat import AnthropicModelService
from graphrun.services.base import (
    ChatReply,
    ModelService,
    RetrievalService,
    ServiceError,
    StaticTokenProvider,
    TokenProvider,
    ToolCall,
    ToolInvoker,
    TransformService,
)
from graphrun.services.platform import PlatformClient

__all__ = [
    "AnthropicModelService",
    "ChatReply",
    "ModelService",
    "PlatformClient",
    "RetrievalService",
    "ServiceError",
    "StaticTokenProvider",
    "TokenProvider",
    "ToolCall",
    "ToolInvoker",
    "TransformService",
]
