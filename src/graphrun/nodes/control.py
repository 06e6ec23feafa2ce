"""Control-flow nodes: ConditionExecutor, StateExecutor and LoopExecutor."""

import logging
from typing import Any

from graphrun.core.context import LogPhase
from graphrun.core.expressions import EvaluationError, evaluate_condition
from graphrun.core.graph import (
    BRANCHING_KINDS,
    Node,
    NodeKind,
    loop_end_handle,
    loop_start_handle,
)
from graphrun.core.node import NodeExecutor, RunScope

logger = logging.getLogger(__name__)

EXIT_HANDLE = "exit"
MAX_REACHED_HANDLE = "max-reached"
DEFAULT_MAX_ITERATIONS = 10


class LoopError(Exception):
    """The loop body could not be walked from the loop start to the loop end."""


class ConditionExecutor(NodeExecutor):
    """Select the output handle of the first condition that evaluates truthy.

    Empty or failing expressions are skipped. When nothing matches the
    default handle is selected, so the node itself never fails.
    """

    kind = NodeKind.CONDITION

    async def run(self, node: Node, scope: RunScope) -> dict[str, Any]:
        ctx = scope.ctx
        kind = node.kind.value
        context = scope.eval_context()

        for index, condition in enumerate(node.payload.get("conditions") or []):
            expression = (condition.get("expression") or "").strip()
            if not expression:
                logger.warning("%s: condition %d has an empty expression", node.id, index + 1)
                continue
            try:
                matched = evaluate_condition(ctx.evaluator, expression, context)
            except EvaluationError as e:
                ctx.add_log(
                    node.id,
                    kind,
                    LogPhase.WARNING,
                    f"Condition {index + 1} could not be evaluated",
                    {"expression": expression, "error": str(e)},
                )
                continue
            if matched:
                handle = condition.get("outputHandleId")
                ctx.add_log(
                    node.id,
                    kind,
                    LogPhase.INFO,
                    f"Condition {index + 1} matched",
                    {
                        "conditionIndex": index,
                        "conditionLabel": condition.get("label"),
                        "selectedHandleId": handle,
                    },
                )
                return {"selectedHandleId": handle}

        default = node.payload.get("defaultOutputHandleId") or f"{node.id}-output-default"
        ctx.add_log(
            node.id, kind, LogPhase.INFO, "No condition matched", {"selectedHandleId": default}
        )
        return {"selectedHandleId": default}


class StateExecutor(NodeExecutor):
    """Apply ``stateUpdates`` to the run's global state, in order.

    Each update sets ``key`` either to its literal ``value`` or to the result
    of its ``binding`` expression. Bindings see the state as it was when the
    node started. Returns a snapshot of the whole global state.
    """

    kind = NodeKind.STATE

    async def run(self, node: Node, scope: RunScope) -> dict[str, Any]:
        ctx = scope.ctx
        kind = node.kind.value
        context = scope.eval_context()

        for update in node.payload.get("stateUpdates") or []:
            key = update.get("key")
            if not key:
                logger.warning("%s: state update without a key, skipping", node.id)
                continue

            if update.get("binding"):
                try:
                    value = scope.evaluate(update["binding"], context)
                except EvaluationError as e:
                    ctx.add_log(
                        node.id,
                        kind,
                        LogPhase.WARNING,
                        f"State {key!r} skipped",
                        {"binding": update["binding"], "error": str(e)},
                    )
                    continue
            else:
                value = update.get("value")

            ctx.global_state[key] = value
            ctx.add_log(
                node.id, kind, LogPhase.INFO, f"State {key!r} updated", {"key": key, "value": value}
            )

        return ctx.state_snapshot()


class LoopExecutor(NodeExecutor):
    """Run the loop body up to ``maxIterations`` times.

    The body starts at the node wired to the loop-start handle and ends at
    the node wired back into the loop-end handle. After every pass the
    optional exit condition is evaluated; a failing exit condition counts as
    "keep looping". The output selects the ``exit`` or ``max-reached`` handle.
    """

    kind = NodeKind.LOOP

    async def run(self, node: Node, scope: RunScope) -> dict[str, Any]:
        ctx = scope.ctx
        kind = node.kind.value
        payload = node.payload
        max_iterations = payload.get("maxIterations")
        max_iterations = int(DEFAULT_MAX_ITERATIONS if max_iterations is None else max_iterations)
        exit_expression = (payload.get("exitCondition") or {}).get("expression")
        exit_handle = payload.get("exitHandleId") or EXIT_HANDLE
        max_handle = payload.get("maxReachedHandleId") or MAX_REACHED_HANDLE

        start_edge = scope.graph.edge_from_handle(node.id, loop_start_handle(node))
        if start_edge is None:
            ctx.add_log(node.id, kind, LogPhase.WARNING, "Loop start handle is not connected")
            return {"selectedHandleId": exit_handle, "iterations": 0}

        for iteration in range(1, max_iterations + 1):
            progress = {"iteration": iteration, "maxIterations": max_iterations}
            message = f"Iteration {iteration}/{max_iterations}"
            ctx.add_log(node.id, kind, LogPhase.INFO, message, progress)
            await walk_loop_body(node, start_edge.target, scope)
            ctx.add_log(node.id, kind, LogPhase.INFO, f"Iteration {iteration} done", progress)

            if not exit_expression:
                continue
            try:
                should_exit = evaluate_condition(
                    ctx.evaluator, exit_expression, scope.eval_context()
                )
            except EvaluationError as e:
                ctx.add_log(
                    node.id,
                    kind,
                    LogPhase.WARNING,
                    "Exit condition could not be evaluated",
                    {"expression": exit_expression, "error": str(e)},
                )
                continue
            if should_exit:
                ctx.add_log(
                    node.id,
                    kind,
                    LogPhase.INFO,
                    "Exit condition met",
                    {"reason": "exit_condition", "iterations": iteration},
                )
                return {"selectedHandleId": exit_handle, "iterations": iteration}

        ctx.add_log(
            node.id,
            kind,
            LogPhase.INFO,
            "Maximum iterations reached",
            {"reason": "max_iterations", "iterations": max_iterations},
        )
        return {"selectedHandleId": max_handle, "iterations": max_iterations}


async def walk_loop_body(loop: Node, first_node_id: str, scope: RunScope) -> None:
    """Execute one pass of *loop*'s body, starting at *first_node_id*.

    Each node runs through ``scope.dispatch``, overwriting its previous
    output. Branching nodes follow their selected handle, other nodes their
    first outgoing edge. A node seen twice in the same pass is an error.
    """
    graph = scope.graph
    end_handle = loop_end_handle(loop)
    seen: set[str] = set()
    current = first_node_id

    while True:
        if current in seen:
            raise LoopError(f"Node {current!r} repeated within one pass of loop {loop.id!r}")
        seen.add(current)

        node = graph.get_node(current)
        output = await scope.dispatch(node)

        if graph.has_edge(current, loop.id, target_handle=end_handle):
            return

        outgoing = graph.outgoing(current)
        if not outgoing:
            raise LoopError(
                f"Node {current!r} in loop {loop.id!r} does not lead back to the loop end"
            )

        if node.kind in BRANCHING_KINDS:
            handle = output.get("selectedHandleId") if isinstance(output, dict) else None
            edge = graph.branch_edge(node, handle)
            if edge is None:
                raise LoopError(
                    f"Node {current!r} in loop {loop.id!r} has no edge for handle {handle!r}"
                )
            current = edge.target
        else:
            current = outgoing[0].target
