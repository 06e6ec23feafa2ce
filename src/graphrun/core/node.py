"""NodeExecutor ABC, RunScope, and node-level errors."""

import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar

from graphrun.core.bindings import build_eval_context, resolve_bindings
from graphrun.core.context import LogPhase, RunContext
from graphrun.core.expressions import EvaluationError
from graphrun.core.graph import Graph, Node, NodeKind


class NodeConfigError(Exception):
    """A node is missing payload fields or graph neighbours its kind requires."""


class UnsupportedNodeError(Exception):
    """No executor is available for a node kind or tool type."""


class NodeExecutionError(Exception):
    """A node failed; the original exception is chained as ``__cause__``."""

    def __init__(self, node_id: str, kind: NodeKind, message: str) -> None:
        super().__init__(f"{kind.value} node {node_id!r} failed: {message}")
        self.node_id = node_id
        self.kind = kind
        self.reason = message


@dataclass
class RunScope:
    """What an executor sees of the run it belongs to.

    ``dispatch`` executes another node through the same executor table and
    stores its output; loop nodes use it to drive their body.
    """

    graph: Graph
    ctx: RunContext
    dispatch: Callable[[Node], Awaitable[Any]]
    initial_inputs: dict[str, Any] = field(default_factory=dict)

    def eval_context(self) -> dict[str, Any]:
        return build_eval_context(self.ctx.node_outputs, self.graph.nodes, self.ctx.global_state)

    def evaluate(self, expression: str, context: dict[str, Any] | None = None) -> Any:
        if context is None:
            context = self.eval_context()
        return self.ctx.evaluator.evaluate(expression, context)

    def resolve_inputs(self, node: Node) -> dict[str, Any]:
        def _skipped(target: str, expression: str, error: EvaluationError) -> None:
            self.ctx.add_log(
                node.id,
                node.kind.value,
                LogPhase.WARNING,
                f"Binding {target!r} skipped",
                {"expression": expression, "error": str(error)},
            )

        return resolve_bindings(
            node.bindings,
            self.ctx.node_outputs,
            self.graph.nodes,
            self.ctx.global_state,
            evaluator=self.ctx.evaluator,
            on_error=_skipped,
        )

    def predecessor_output(self, node: Node) -> Any:
        """Output of the source of *node*'s first incoming edge, or None."""
        incoming = self.graph.incoming(node.id)
        if not incoming:
            return None
        return self.ctx.node_outputs.get(incoming[0].source)


def needs_fallback(node: Node, inputs: dict[str, Any]) -> bool:
    return not node.bindings or not inputs


class NodeExecutor(ABC):
    """Strategy executing every node of one kind."""

    kind: ClassVar[NodeKind]

    @abstractmethod
    async def run(self, node: Node, scope: RunScope) -> Any: ...

    async def execute(self, node: Node, scope: RunScope) -> Any:
        """Run the node with start/complete/error log entries and timing."""
        ctx = scope.ctx
        kind = node.kind.value
        ctx.add_log(node.id, kind, LogPhase.START, f"{kind} node started")
        start = time.monotonic()
        try:
            output = await self.run(node, scope)
        except NodeExecutionError as e:
            # Failure of a node driven by this one (loop body); keep the inner error.
            payload = {"error": str(e), "failed_node": e.node_id}
            ctx.add_log(node.id, kind, LogPhase.ERROR, str(e), payload)
            raise
        except Exception as e:
            message = f"{kind} node failed: {e}"
            ctx.add_log(node.id, kind, LogPhase.ERROR, message, {"error": str(e)})
            raise NodeExecutionError(node.id, node.kind, str(e)) from e
        elapsed_ms = round((time.monotonic() - start) * 1000, 1)
        ctx.add_log(
            node.id,
            kind,
            LogPhase.COMPLETE,
            f"{kind} node completed",
            {"output": output, "duration_ms": elapsed_ms},
        )
        return output

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
