"""RAGExecutor — retrieve context text from a storage."""

import json
from typing import Any

from graphrun.core.context import LogPhase
from graphrun.core.graph import Node, NodeKind
from graphrun.core.node import NodeConfigError, NodeExecutor, RunScope, needs_fallback

DEFAULT_TOP_K = 5
DEFAULT_SEARCH_TYPE = "similarity"


class RAGExecutor(NodeExecutor):
    kind = NodeKind.RAG

    async def run(self, node: Node, scope: RunScope) -> str:
        ctx = scope.ctx
        payload = node.payload

        inputs = scope.resolve_inputs(node)
        if needs_fallback(node, inputs):
            source = scope.predecessor_output(node)
            if source:
                inputs = {"query": _as_query(source)}

        ctx.add_log(
            node.id, node.kind.value, LogPhase.INFO, "Retrieval inputs resolved", {"input": inputs}
        )

        storage_id = payload.get("storage_id")
        if not storage_id:
            raise NodeConfigError("RAG node has no storage selected")

        query = inputs.get("query")
        if not query or not isinstance(query, str):
            raise NodeConfigError("RAG node has no valid query string")

        top_k = payload.get("top_k") or DEFAULT_TOP_K
        search_type = payload.get("search_type") or DEFAULT_SEARCH_TYPE
        filters: dict[str, Any] = {}
        if payload.get("fileNames"):
            filters["fileNames"] = payload["fileNames"]
        if search_type == "mmr" and payload.get("mmr_lambda") is not None:
            filters["mmr_lambda"] = payload["mmr_lambda"]
        if payload.get("filter_metadata"):
            filters["filter_metadata"] = payload["filter_metadata"]

        ctx.add_log(
            node.id,
            node.kind.value,
            LogPhase.INFO,
            "Retrieval started",
            {"storage_id": storage_id, "query": query, "top_k": top_k},
        )
        result = await ctx.retrieval_service.query(
            storage_id, query, top_k, search_type, filters or None
        )
        ctx.add_log(
            node.id,
            node.kind.value,
            LogPhase.INFO,
            "Retrieval completed",
            {"result_length": len(result)},
        )
        return result


def _as_query(source: Any) -> str:
    if isinstance(source, str):
        return source
    if isinstance(source, dict):
        text = source.get("response") or source.get("userMessage")
        if text:
            return text
    return json.dumps(source, ensure_ascii=False)
