"""Runner — walk a graph from its start node, joining and branching as it goes."""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from graphrun.core.context import LogPhase, RunContext
from graphrun.core.gate import JoinGate
from graphrun.core.graph import BRANCHING_KINDS, Graph, Node, NodeKind
from graphrun.core.node import NodeExecutor, RunScope, UnsupportedNodeError

logger = logging.getLogger(__name__)


class Runner:
    """Execute graphs with a node-kind dispatch table.

    The runner itself holds no per-run state, so one instance can serve many
    runs as long as each run gets its own ``RunContext``.
    """

    def __init__(self, executors: Mapping[NodeKind, NodeExecutor] | None = None) -> None:
        if executors is None:
            from graphrun.nodes import default_executors

            executors = default_executors()
        self.executors = dict(executors)

    async def run(
        self,
        graph: Graph,
        ctx: RunContext,
        initial_inputs: dict[str, Any] | None = None,
    ) -> Any:
        """Run *graph* and return the end node's output, or None if no end was reached.

        Raises ``GraphError`` when the graph has no single start node and
        ``NodeExecutionError`` when any node fails. ``ctx.node_outputs`` and
        ``ctx.log`` stay inspectable either way.
        """
        start = graph.start_node
        ctx.reset()
        graph_run = _GraphRun(self, graph, ctx, dict(initial_inputs or {}))
        return await graph_run.execute(start)

    async def execute_node(self, node: Node, scope: RunScope) -> Any:
        """Run one node through its executor and store its output."""
        executor = self.executors.get(node.kind)
        if executor is None:
            raise UnsupportedNodeError(
                f"No executor registered for {node.kind.value} node {node.id!r}"
            )
        output = await executor.execute(node, scope)
        scope.ctx.node_outputs[node.id] = output
        return output


class _GraphRun:
    """Traversal state of a single run.

    ``_active`` counts branches that can still make progress: neither parked
    at a join gate nor waiting on their successors. When it drops to zero
    while gates are still closed, those gates can never be satisfied and are
    abandoned so the run terminates.
    """

    def __init__(
        self,
        runner: Runner,
        graph: Graph,
        ctx: RunContext,
        initial_inputs: dict[str, Any],
    ) -> None:
        self.graph = graph
        self.ctx = ctx
        self.scope = RunScope(
            graph=graph,
            ctx=ctx,
            dispatch=self._dispatch,
            initial_inputs=initial_inputs,
        )
        self._runner = runner
        self._visited: set[str] = set()
        self._gates: dict[str, JoinGate] = {}
        self._active = 0
        self._result: Any = None

    async def execute(self, start: Node) -> Any:
        logger.info("Run started at %s (%d nodes)", start.id, len(self.graph))
        self._active = 1
        try:
            await self._visit(start.id, gated=False)
        except Exception:
            self._release_all()
            raise
        logger.info("Run finished, %d nodes executed", len(self._visited))
        return self._result

    async def _dispatch(self, node: Node) -> Any:
        return await self._runner.execute_node(node, self.scope)

    async def _visit(self, node_id: str, *, gated: bool = True) -> None:
        try:
            await self._step(node_id, gated=gated)
        finally:
            self._active -= 1
            self._check_stalled()

    async def _step(self, node_id: str, *, gated: bool) -> None:
        if node_id in self._visited:
            return

        required = self.graph.required_predecessors(node_id)
        if gated and required > 1:
            gate = self._gates.get(node_id)
            if gate is None:
                gate = self._gates[node_id] = JoinGate(node_id, required)
            if not gate.arrive():
                await self._park(gate)
                if gate.abandoned:
                    logger.debug("Branch into %s dropped with its abandoned join", node_id)
                return
            logger.debug("Join %s released by last of %d branches", node_id, required)

        if node_id in self._visited:
            return
        self._visited.add(node_id)

        node = self.graph.get_node(node_id)
        output = await self._dispatch(node)

        if node.kind is NodeKind.END:
            self._result = output
            return

        if node.kind in BRANCHING_KINDS:
            handle = output.get("selectedHandleId") if isinstance(output, dict) else None
            edge = self.graph.branch_edge(node, handle)
            if edge is None:
                logger.warning("%s: selected handle %r is not connected", node_id, handle)
                self.ctx.add_log(
                    node_id,
                    node.kind.value,
                    LogPhase.WARNING,
                    f"Selected handle {handle!r} is not connected; branch stops",
                    {"selectedHandleId": handle},
                )
                return
            await self._fan_out([edge.target])
            return

        targets = self.graph.successors(node_id)
        if not targets:
            logger.warning("%s: no outgoing edges, branch stops", node_id)
            return
        await self._fan_out(targets)

    async def _fan_out(self, targets: list[str]) -> None:
        """Visit *targets* concurrently; return once all of them have returned."""
        # The children become active, this branch stops being active while it waits.
        self._active += len(targets) - 1
        try:
            await asyncio.gather(*(self._visit(t) for t in targets))
        finally:
            self._active += 1

    async def _park(self, gate: JoinGate) -> None:
        self._active -= 1
        self._check_stalled()
        await gate.wait()
        self._active += 1

    def _check_stalled(self) -> None:
        if self._active > 0:
            return
        for gate in self._gates.values():
            if gate.released:
                continue
            node = self.graph.get_node(gate.node_id)
            logger.warning(
                "Join %s abandoned with %d/%d branches", gate.node_id, gate.arrived, gate.required
            )
            self.ctx.add_log(
                gate.node_id,
                node.kind.value,
                LogPhase.WARNING,
                f"Join abandoned: only {gate.arrived} of {gate.required} branches arrived",
                {"arrived": gate.arrived, "required": gate.required},
            )
            gate.abandon()

    def _release_all(self) -> None:
        for gate in self._gates.values():
            gate.abandon()
