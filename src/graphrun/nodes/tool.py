"""ToolExecutor — invoke a custom, built-in or MCP tool."""

from typing import Any

from graphrun.core.context import LogPhase
from graphrun.core.graph import Node, NodeKind
from graphrun.core.node import NodeConfigError, NodeExecutor, RunScope, UnsupportedNodeError
from graphrun.services.base import ServiceError


class ToolExecutor(NodeExecutor):
    """Dispatch by the payload's tool ``type``.

    ``custom`` tools go to the context's sandboxed ``execute_code`` callback,
    ``built-in`` tools to the tool invoker by tool id; ``mcp`` tools are not
    supported and always fail.
    """

    kind = NodeKind.TOOL

    async def run(self, node: Node, scope: RunScope) -> Any:
        ctx = scope.ctx
        inputs = scope.resolve_inputs(node)
        ctx.add_log(
            node.id, node.kind.value, LogPhase.INFO, "Tool inputs resolved", {"input": inputs}
        )

        payload = node.payload
        if not payload:
            raise NodeConfigError("Tool node has no configuration")

        tool_type = payload.get("type")
        tool = payload.get("tool") or {}

        if tool_type == "custom":
            if ctx.execute_code is None:
                raise ServiceError("No code executor configured for custom tools")
            name = tool.get("name") or tool.get("id") or "unknown"
            return await ctx.execute_code(name, inputs, tool.get("function_body") or "")

        if tool_type == "built-in":
            if not tool.get("id"):
                raise NodeConfigError("Built-in tool node has no tool id")
            return await ctx.tool_invoker.invoke_built_in(tool["id"], inputs)

        if tool_type == "mcp":
            raise UnsupportedNodeError("MCP tools are not supported")

        raise NodeConfigError(f"Unknown tool type: {tool_type!r}")
