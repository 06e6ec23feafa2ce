"""LLMExecutor — model completion with tool-call continuation."""

import asyncio
import json
import logging
from typing import Any

from graphrun.core.context import LogPhase
from graphrun.core.graph import Node, NodeKind
from graphrun.core.node import NodeConfigError, NodeExecutor, RunScope, needs_fallback
from graphrun.nodes.io import now_ms
from graphrun.services.base import ChatReply, ServiceError, ToolCall

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "ko"


class LLMExecutor(NodeExecutor):
    """Send the node's input to the model service until it produces an answer.

    When a reply requests tool calls, each call is resolved by name against the
    node's ``tools`` list, run concurrently, and the results are sent back as a
    continuation of the reply's checkpoint.

    Output is the parsed object for ``output_type == "JSON"`` nodes when the
    service returned one, ``{"response": text}`` otherwise.
    """

    kind = NodeKind.LLM

    async def run(self, node: Node, scope: RunScope) -> Any:
        ctx = scope.ctx
        payload = node.payload
        if not payload:
            raise NodeConfigError("LLM node has no model configuration")

        inputs = scope.resolve_inputs(node)
        if needs_fallback(node, inputs):
            source = scope.predecessor_output(node)
            if source:
                inputs = {"userMessage": source} if isinstance(source, str) else source

        ctx.add_log(
            node.id, node.kind.value, LogPhase.INFO, "LLM inputs resolved", {"input": inputs}
        )

        user_message = inputs.get("userMessage") if isinstance(inputs, dict) else None
        request: dict[str, Any] = {
            "session_id": f"workflow-{node.id}-{now_ms()}",
            "chat_model_node": payload,
            "files": [],
            "locale": payload.get("locale") or DEFAULT_LOCALE,
            "user_location": None,
            "use_all_built_in_tools": False,
            "use_background_summarize": False,
            "never_use_history": True,
            "messages": [
                {
                    "role": "user",
                    "content": user_message or json.dumps(inputs, ensure_ascii=False),
                }
            ],
        }

        checkpoint_id: str | None = None
        while True:
            reply: ChatReply = await ctx.model_service.complete_chat(request, checkpoint_id)
            if not reply.tool_calls:
                break
            ctx.add_log(
                node.id,
                node.kind.value,
                LogPhase.INFO,
                "Model requested tool calls",
                {"tools": [call.name for call in reply.tool_calls]},
            )
            tool_messages = await asyncio.gather(
                *(self._call_tool(call, node, scope) for call in reply.tool_calls)
            )
            request = {**request, "messages": list(tool_messages)}
            checkpoint_id = reply.checkpoint_id

        if payload.get("output_type") == "JSON" and reply.parsed is not None:
            return reply.parsed
        return {"response": reply.message}

    async def _call_tool(self, call: ToolCall, node: Node, scope: RunScope) -> dict[str, Any]:
        ctx = scope.ctx
        tools = node.payload.get("tools") or []
        tool = next((t for t in tools if t.get("name") == call.name), None)
        if tool is None:
            raise NodeConfigError(f"Model requested unknown tool {call.name!r}")

        logger.debug("%s: calling tool %s", node.id, call.name)
        tool_type = tool.get("type")
        if tool_type == "custom":
            if ctx.execute_code is None:
                raise ServiceError("No code executor configured for custom tools")
            code = tool.get("functionCode") or tool.get("function_body") or ""
            result = await ctx.execute_code(call.name, call.args, code)
        elif tool_type == "built-in":
            result = await ctx.tool_invoker.invoke_built_in(tool.get("id") or call.name, call.args)
        else:
            raise NodeConfigError(f"Unsupported tool type {tool_type!r} for tool {call.name!r}")

        if not isinstance(result, str):
            result = json.dumps(result, ensure_ascii=False)
        return {"role": "tool", "name": call.name, "tool_call_id": call.call_id, "content": result}
