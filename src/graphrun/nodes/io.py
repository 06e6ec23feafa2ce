"""Entry and exit nodes: StartExecutor, EndExecutor, UploadExecutor."""

import json
import time
from typing import Any

from graphrun.core.context import LogPhase
from graphrun.core.graph import Node, NodeKind
from graphrun.core.node import NodeConfigError, NodeExecutor, RunScope, needs_fallback


def now_ms() -> int:
    return int(time.time() * 1000)


class StartExecutor(NodeExecutor):
    """Merge the run's initial inputs with a node-type marker and a timestamp."""

    kind = NodeKind.START

    async def run(self, node: Node, scope: RunScope) -> dict[str, Any]:
        scope.ctx.add_log(
            node.id,
            node.kind.value,
            LogPhase.INFO,
            "Initial inputs received",
            {"input": scope.initial_inputs},
        )
        return {"type": node.kind.value, "timestamp": now_ms(), **scope.initial_inputs}


class EndExecutor(NodeExecutor):
    """Shape the run's final result.

    ``TEXT`` (the default) yields ``{message, timestamp}``; ``JSON`` yields the
    resolved inputs unchanged. Without bindings the first predecessor's output
    is mapped to ``message`` (TEXT) or ``data`` (JSON).
    """

    kind = NodeKind.END

    async def run(self, node: Node, scope: RunScope) -> dict[str, Any]:
        output_type = node.payload.get("output_type") or "TEXT"
        inputs = scope.resolve_inputs(node)

        if needs_fallback(node, inputs):
            source = scope.predecessor_output(node)
            if source:
                if output_type == "JSON":
                    inputs = {"data": source}
                else:
                    inputs = {"message": _as_message(source)}

        scope.ctx.add_log(
            node.id, node.kind.value, LogPhase.INFO, "Final inputs resolved", {"input": inputs}
        )

        if output_type == "JSON":
            return inputs
        return {
            "message": inputs.get("message") or json.dumps(inputs, ensure_ascii=False),
            "timestamp": now_ms(),
        }


def _as_message(source: Any) -> str:
    if isinstance(source, str):
        return source
    if isinstance(source, dict):
        last = source.get("lastMessage")
        if isinstance(last, dict) and last.get("content"):
            return last["content"]
        if isinstance(source.get("response"), str):
            return source["response"]
    return json.dumps(source, ensure_ascii=False)


class UploadExecutor(NodeExecutor):
    """Expose a file uploaded ahead of the run (``{fileUrl, fileName, fileType}``)."""

    kind = NodeKind.UPLOAD

    async def run(self, node: Node, scope: RunScope) -> Any:
        uploaded = node.payload.get("uploadedFile")
        if not uploaded:
            raise NodeConfigError("No uploaded file on upload node")
        return uploaded
