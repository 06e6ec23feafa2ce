"""TransformerExecutor — reshape upstream outputs for the next node."""

from typing import Any

from graphrun.core.context import LogPhase
from graphrun.core.graph import Node, NodeKind
from graphrun.core.node import NodeConfigError, NodeExecutor, RunScope


def input_schema_hint(node: Node) -> Any:
    """Schema hint describing what *node* expects as input."""
    if node.kind is NodeKind.TOOL:
        return (node.payload.get("tool") or {}).get("input_schema") or "string"
    if node.kind is NodeKind.END:
        return node.payload.get("output_schema") or "string"
    return "string"


def describe(node: Node, default: str) -> dict[str, Any]:
    return {
        "name": node.label or node.kind.value,
        "description": node.payload.get("description") or default,
    }


class TransformerExecutor(NodeExecutor):
    """Ask the auto-transform service to turn every source output into the
    input expected by the single downstream node."""

    kind = NodeKind.TRANSFORMER

    async def run(self, node: Node, scope: RunScope) -> Any:
        ctx = scope.ctx
        user_request = node.payload.get("userRequest")
        if not user_request:
            raise NodeConfigError("Transformer node has no userRequest")

        incoming = scope.graph.incoming(node.id)
        if not incoming:
            raise NodeConfigError("Transformer node has no incoming edges")

        sources: list[dict[str, Any]] = []
        for edge in incoming:
            source = scope.graph.get_node(edge.source)
            if source.id not in ctx.node_outputs:
                raise NodeConfigError(f"No output from source node {source.id!r}")
            sources.append(
                {
                    "sourceOutput": ctx.node_outputs[source.id],
                    "sourceNode": describe(source, "Source node"),
                }
            )

        outgoing = scope.graph.outgoing(node.id)
        if not outgoing:
            raise NodeConfigError("Transformer node has no downstream node")
        target = scope.graph.get_node(outgoing[0].target)

        ctx.add_log(
            node.id,
            node.kind.value,
            LogPhase.INFO,
            f"Transforming {len(sources)} source(s) for {target.id}",
            {"inputs": sources, "inputsCount": len(sources)},
        )
        return await ctx.transform_service.transform(
            user_request,
            sources,
            describe(target, "Target node"),
            input_schema_hint(target),
        )
