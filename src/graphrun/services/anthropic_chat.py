"""AnthropicModelService — model service backed by the Anthropic Messages API."""

import json
import logging
import uuid
from typing import Any

import anthropic

from graphrun.services.base import ChatReply, ServiceError, ToolCall

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_MAX_TOKENS = 4096


class AnthropicModelService:
    """Serve ``complete_chat`` turns with ``AsyncAnthropic``.

    The node's ``tools`` become Anthropic tool definitions. When the model
    asks for tools, the conversation so far is parked under a fresh
    checkpoint id; the continuation call carrying the tool results resumes it.
    """

    def __init__(
        self,
        *,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self._client = client
        self._checkpoints: dict[str, list[dict[str, Any]]] = {}

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic()
        return self._client

    async def complete_chat(
        self, request: dict[str, Any], checkpoint_id: str | None = None
    ) -> ChatReply:
        node = request.get("chat_model_node") or {}
        incoming = request.get("messages") or []

        if checkpoint_id is None:
            messages = [{"role": m["role"], "content": m["content"]} for m in incoming]
        else:
            if checkpoint_id not in self._checkpoints:
                raise ServiceError(f"Unknown checkpoint: {checkpoint_id}")
            messages = self._checkpoints.pop(checkpoint_id)
            results = [
                {"type": "tool_result", "tool_use_id": m["tool_call_id"], "content": m["content"]}
                for m in incoming
            ]
            messages.append({"role": "user", "content": results})

        kwargs: dict[str, Any] = {
            "model": node.get("model") or self.model,
            "max_tokens": node.get("max_tokens") or self.max_tokens,
            "messages": messages,
        }
        if node.get("system_prompt"):
            kwargs["system"] = node["system_prompt"]
        tools = [_tool_definition(t) for t in node.get("tools") or []]
        if tools:
            kwargs["tools"] = tools

        try:
            response = await self._get_client().messages.create(**kwargs)
        except anthropic.APIError as e:
            raise ServiceError(f"Anthropic request failed: {e}") from e

        tool_uses = [block for block in response.content if block.type == "tool_use"]
        if tool_uses:
            messages.append({"role": "assistant", "content": response.content})
            checkpoint = uuid.uuid4().hex
            self._checkpoints[checkpoint] = messages
            calls = [
                ToolCall(name=b.name, args=dict(b.input or {}), call_id=b.id) for b in tool_uses
            ]
            return ChatReply(tool_calls=calls, checkpoint_id=checkpoint)

        text = "".join(block.text for block in response.content if block.type == "text")
        parsed = None
        if node.get("output_type") == "JSON":
            try:
                parsed = json.loads(text)
            except ValueError:
                logger.warning("Model returned non-JSON output for a JSON node")
        return ChatReply(message=text, parsed=parsed)


def _tool_definition(tool: dict[str, Any]) -> dict[str, Any]:
    schema = tool.get("input_schema") or tool.get("schema") or {"type": "object", "properties": {}}
    return {
        "name": tool["name"],
        "description": tool.get("description") or "",
        "input_schema": schema,
    }
