"""Collaborator contracts consumed by the node executors."""

from dataclasses import dataclass, field
from typing import Any, Protocol


class ServiceError(Exception):
    """A collaborator call failed (HTTP status, error event or error payload)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ToolCall:
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None


@dataclass
class ChatReply:
    """One model-service turn: either a final answer or a tool-call request.

    ``checkpoint_id`` identifies the conversation to continue when
    ``tool_calls`` is non-empty.
    """

    message: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    parsed: Any = None
    checkpoint_id: str | None = None


class TokenProvider(Protocol):
    async def get_token(self) -> str: ...


class ModelService(Protocol):
    async def complete_chat(
        self, request: dict[str, Any], checkpoint_id: str | None = None
    ) -> ChatReply: ...


class ToolInvoker(Protocol):
    async def invoke_built_in(self, tool_id: str, args: dict[str, Any]) -> Any: ...


class RetrievalService(Protocol):
    async def query(
        self,
        storage_id: str,
        query: str,
        top_k: int,
        search_type: str,
        filters: dict[str, Any] | None = None,
    ) -> str: ...


class TransformService(Protocol):
    async def transform(
        self,
        user_request: str,
        sources: list[dict[str, Any]],
        target_node: dict[str, Any],
        target_schema: Any,
    ) -> Any: ...


class StaticTokenProvider:
    """Token provider returning a fixed access token."""

    def __init__(self, token: str) -> None:
        self.token = token

    async def get_token(self) -> str:
        return self.token
