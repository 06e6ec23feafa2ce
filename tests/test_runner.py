"""Tests for Runner."""

import asyncio
import json

import pytest

from fakes import FakeToolInvoker, edge, make_graph, node, starts
from graphrun.core.context import LogPhase, RunContext
from graphrun.core.graph import Graph, GraphError, NodeKind
from graphrun.core.node import NodeExecutionError, UnsupportedNodeError
from graphrun.core.runner import Runner
from graphrun.nodes import StartExecutor
from graphrun.services.base import ServiceError


def tool(node_id: str, label: str | None = None, bindings: dict[str, str] | None = None) -> dict:
    return node(node_id, "tool", label, bindings=bindings, type="built-in", tool={"id": node_id})


def state(node_id: str, **updates) -> dict:
    """State node whose updates are ``key=expression`` bindings."""
    updates_list = [{"key": k, "binding": v} for k, v in updates.items()]
    return node(node_id, "state", stateUpdates=updates_list)


def json_end(node_id: str = "e", **bindings) -> dict:
    return node(node_id, "end", bindings=bindings, output_type="JSON")


def warnings(ctx: RunContext) -> list[str]:
    return [e.message for e in ctx.log if e.phase is LogPhase.WARNING]


class TestRunnerLinear:
    @pytest.mark.asyncio
    async def test_chain_runs_each_node_once(self):
        invoker = FakeToolInvoker({"a": {"v": 1}, "b": {"v": 2}})
        g = make_graph(
            [
                node("s", "start", "Start"),
                tool("a", bindings={"topic": "Start.topic"}),
                tool("b"),
                node("e", "end"),
            ],
            [edge("s", "a"), edge("a", "b"), edge("b", "e")],
        )
        ctx = RunContext(tool_invoker=invoker)

        result = await Runner().run(g, ctx, {"topic": "cats"})

        assert result["message"] == '{"v": 2}'
        assert "timestamp" in result
        for node_id in ("s", "a", "b", "e"):
            assert starts(ctx, node_id) == 1
        assert invoker.calls[0] == ("a", {"topic": "cats"})
        assert ctx.node_outputs["a"] == {"v": 1}
        assert ctx.node_outputs["s"]["topic"] == "cats"

    @pytest.mark.asyncio
    async def test_end_not_reached_returns_none(self):
        invoker = FakeToolInvoker({"a": "done"})
        g = make_graph([node("s", "start"), tool("a")], [edge("s", "a")])
        ctx = RunContext(tool_invoker=invoker)
        assert await Runner().run(g, ctx) is None
        assert ctx.node_outputs["a"] == "done"

    @pytest.mark.asyncio
    async def test_context_reset_between_runs(self):
        g = make_graph([node("s", "start"), json_end(ok="true")], [edge("s", "e")])
        ctx = RunContext()
        ctx.node_outputs["stale"] = 1
        ctx.global_state["leftover"] = True
        assert await Runner().run(g, ctx) == {"ok": True}
        assert "stale" not in ctx.node_outputs
        assert ctx.global_state == {}

    @pytest.mark.asyncio
    async def test_document_round_trip_is_deterministic(self):
        document = {
            "nodes": [
                node("s", "start", "Start"),
                state("inc", total="Start.n * 2"),
                json_end(total="state.total", label='"done"'),
            ],
            "edges": [edge("s", "inc"), edge("inc", "e")],
            "viewport": {"x": 10, "y": 20, "zoom": 1.5},
        }
        reloaded = json.loads(json.dumps(document))
        ctx1, ctx2 = RunContext(), RunContext()
        first = await Runner().run(Graph.from_document(document), ctx1, {"n": 4})
        second = await Runner().run(Graph.from_document(reloaded), ctx2, {"n": 4})
        assert first == second == {"total": 8, "label": "done"}
        assert [(e.node_id, e.phase, e.message) for e in ctx1.log] == [
            (e.node_id, e.phase, e.message) for e in ctx2.log
        ]


class TestRunnerJoin:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("delay_a, delay_b", [(0.0, 0.05), (0.05, 0.0), (0.02, 0.02)])
    async def test_join_waits_for_every_branch(self, delay_a, delay_b):
        invoker = FakeToolInvoker(
            {"a": {"v": 1}, "b": {"v": 2}, "j": "joined"},
            delays={"a": delay_a, "b": delay_b},
        )
        g = make_graph(
            [
                node("s", "start"),
                tool("a", "A"),
                tool("b", "B"),
                tool("j", bindings={"left": "A.v", "right": "B.v"}),
                node("e", "end"),
            ],
            [edge("s", "a"), edge("s", "b"), edge("a", "j"), edge("b", "j"), edge("j", "e")],
        )
        ctx = RunContext(tool_invoker=invoker)

        result = await Runner().run(g, ctx)

        assert result["message"] == "joined"
        assert starts(ctx, "j") == 1
        assert starts(ctx, "e") == 1
        assert invoker.calls[-1] == ("j", {"left": 1, "right": 2})

    @pytest.mark.asyncio
    async def test_parallel_branches_start_together(self):
        delays = {"a": 0.05, "b": 0.05, "c": 0.05}
        invoker = FakeToolInvoker({"a": 1, "b": 2, "c": 3}, delays=delays)
        g = make_graph(
            [node("s", "start"), tool("a"), tool("b"), tool("c")],
            [edge("s", "a"), edge("s", "b"), edge("s", "c")],
        )
        await Runner().run(g, RunContext(tool_invoker=invoker))
        times = list(invoker.started.values())
        assert len(times) == 3
        assert max(times) - min(times) < 0.04

    @pytest.mark.asyncio
    async def test_join_behind_unselected_branch_is_abandoned(self):
        invoker = FakeToolInvoker({"a": 1, "b": 2, "j": 3})
        g = make_graph(
            [
                node("s", "start"),
                node("c", "condition", conditions=[{"expression": "true", "outputHandleId": "A"}]),
                tool("a"),
                tool("b"),
                tool("j"),
                node("e", "end"),
            ],
            [
                edge("s", "c"),
                edge("c", "a", source_handle="A"),
                edge("c", "b", source_handle="B"),
                edge("a", "j"),
                edge("b", "j"),
                edge("j", "e"),
            ],
        )
        ctx = RunContext(tool_invoker=invoker)

        result = await asyncio.wait_for(Runner().run(g, ctx), timeout=2)

        assert result is None
        assert starts(ctx, "a") == 1
        assert starts(ctx, "b") == 0
        assert starts(ctx, "j") == 0
        assert any("Join abandoned" in msg for msg in warnings(ctx))


class TestRunnerCondition:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("x, branch", [(10, "A"), (6, "A"), (5, "B"), (1, "B")])
    async def test_selected_branch_runs_exclusively(self, x, branch):
        g = make_graph(
            [
                node("s", "start", "Start"),
                state("st", x="Start.x"),
                node(
                    "c",
                    "condition",
                    conditions=[{"expression": "state.x > 5", "outputHandleId": "A"}],
                    defaultOutputHandleId="B",
                ),
                json_end("ea", branch='"A"'),
                json_end("eb", branch='"B"'),
            ],
            [
                edge("s", "st"),
                edge("st", "c"),
                edge("c", "ea", source_handle="A"),
                edge("c", "eb", source_handle="B"),
            ],
        )
        ctx = RunContext()

        result = await Runner().run(g, ctx, {"x": x})

        assert result == {"branch": branch}
        other = "eb" if branch == "A" else "ea"
        assert starts(ctx, other) == 0
        assert ctx.node_outputs["c"] == {"selectedHandleId": branch}

    @pytest.mark.asyncio
    async def test_unconnected_handle_stops_branch(self):
        g = make_graph(
            [
                node("s", "start"),
                node("c", "condition", conditions=[{"expression": "true", "outputHandleId": "A"}]),
                json_end("eb", branch='"B"'),
            ],
            [edge("s", "c"), edge("c", "eb", source_handle="B")],
        )
        ctx = RunContext()

        result = await Runner().run(g, ctx)

        assert result is None
        assert starts(ctx, "eb") == 0
        assert any("not connected" in msg for msg in warnings(ctx))


class TestRunnerLoop:
    def loop_graph(self, handle_prefix: str = "", **loop_payload) -> Graph:
        return make_graph(
            [
                node("s", "start"),
                node("init", "state", stateUpdates=[{"key": "count", "value": 0}]),
                node("l", "loop", **loop_payload),
                state("inc", count="state.count + 1"),
                json_end("e", count="state.count", how='"max"'),
                json_end("ex", count="state.count", how='"exit"'),
            ],
            [
                edge("s", "init"),
                edge("init", "l"),
                edge("l", "inc", source_handle="l-loop-start"),
                edge("inc", "l", target_handle="l-loop-end"),
                edge("l", "e", source_handle=f"{handle_prefix}max-reached"),
                edge("l", "ex", source_handle=f"{handle_prefix}exit"),
            ],
        )

    @pytest.mark.asyncio
    async def test_max_iterations_reached(self):
        ctx = RunContext()
        result = await Runner().run(self.loop_graph(maxIterations=3), ctx)
        assert result == {"count": 3, "how": "max"}
        assert starts(ctx, "inc") == 3
        assert starts(ctx, "l") == 1
        assert ctx.node_outputs["l"] == {"selectedHandleId": "max-reached", "iterations": 3}

    @pytest.mark.asyncio
    async def test_exit_condition(self):
        ctx = RunContext()
        graph = self.loop_graph(maxIterations=10, exitCondition={"expression": "state.count >= 2"})
        result = await Runner().run(graph, ctx)
        assert result == {"count": 2, "how": "exit"}
        assert starts(ctx, "inc") == 2
        assert starts(ctx, "e") == 0

    @pytest.mark.asyncio
    async def test_failing_exit_condition_keeps_looping(self):
        ctx = RunContext()
        graph = self.loop_graph(maxIterations=2, exitCondition={"expression": "state.nope > 1"})
        result = await Runner().run(graph, ctx)
        assert result == {"count": 2, "how": "max"}
        assert warnings(ctx).count("Exit condition could not be evaluated") == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "loop_payload, expected",
        [
            ({"maxIterations": 2}, {"count": 2, "how": "max"}),
            ({"exitCondition": {"expression": "state.count >= 1"}}, {"count": 1, "how": "exit"}),
        ],
    )
    async def test_node_prefixed_exit_handles(self, loop_payload, expected):
        ctx = RunContext()
        result = await Runner().run(self.loop_graph("l-", **loop_payload), ctx)
        assert result == expected
        assert ctx.node_outputs["l"]["selectedHandleId"] in ("exit", "max-reached")
        assert warnings(ctx) == []

    @pytest.mark.asyncio
    async def test_null_max_iterations_uses_default(self):
        ctx = RunContext()
        result = await Runner().run(self.loop_graph(maxIterations=None), ctx)
        assert result == {"count": 10, "how": "max"}
        assert ctx.node_outputs["l"] == {"selectedHandleId": "max-reached", "iterations": 10}

    @pytest.mark.asyncio
    async def test_nested_loops(self):
        g = make_graph(
            [
                node("s", "start"),
                node(
                    "init",
                    "state",
                    stateUpdates=[{"key": "inner", "value": 0}, {"key": "outer", "value": 0}],
                ),
                node("l1", "loop", maxIterations=2),
                node("l2", "loop", maxIterations=3),
                state("inc", inner="state.inner + 1"),
                state("tick", outer="state.outer + 1"),
                json_end("e", inner="state.inner", outer="state.outer"),
            ],
            [
                edge("s", "init"),
                edge("init", "l1"),
                edge("l1", "l2", source_handle="l1-loop-start"),
                edge("l2", "inc", source_handle="l2-loop-start"),
                edge("inc", "l2", target_handle="l2-loop-end"),
                edge("l2", "tick", source_handle="max-reached"),
                edge("tick", "l1", target_handle="l1-loop-end"),
                edge("l1", "e", source_handle="max-reached"),
            ],
        )
        ctx = RunContext()

        result = await Runner().run(g, ctx)

        assert result == {"inner": 6, "outer": 2}
        assert starts(ctx, "l2") == 2
        assert starts(ctx, "inc") == 6

    @pytest.mark.asyncio
    async def test_cycle_within_one_pass_fails(self):
        g = make_graph(
            [node("s", "start"), node("l", "loop", maxIterations=5), state("a"), state("b")],
            [
                edge("s", "l"),
                edge("l", "a", source_handle="l-loop-start"),
                edge("a", "b"),
                edge("b", "a"),
            ],
        )
        ctx = RunContext()
        with pytest.raises(NodeExecutionError, match="repeated") as excinfo:
            await Runner().run(g, ctx)
        assert excinfo.value.node_id == "l"
        assert starts(ctx, "a") == 1

    @pytest.mark.asyncio
    async def test_unconnected_loop_start(self):
        g = make_graph(
            [node("s", "start"), node("l", "loop"), json_end("ex", done="true")],
            [edge("s", "l"), edge("l", "ex", source_handle="exit")],
        )
        ctx = RunContext()
        assert await Runner().run(g, ctx) == {"done": True}
        assert ctx.node_outputs["l"] == {"selectedHandleId": "exit", "iterations": 0}


class TestRunnerErrors:
    @pytest.mark.asyncio
    async def test_no_start_node(self):
        g = make_graph([node("e", "end")], [])
        with pytest.raises(GraphError, match="no start"):
            await Runner().run(g, RunContext())

    @pytest.mark.asyncio
    async def test_mcp_tool_fails_and_log_stays_inspectable(self):
        g = make_graph(
            [node("s", "start"), node("t", "tool", type="mcp", tool={"id": "x"}), node("e", "end")],
            [edge("s", "t"), edge("t", "e")],
        )
        ctx = RunContext()

        with pytest.raises(NodeExecutionError, match="MCP") as excinfo:
            await Runner().run(g, ctx)

        assert excinfo.value.node_id == "t"
        assert excinfo.value.kind is NodeKind.TOOL
        assert isinstance(excinfo.value.__cause__, UnsupportedNodeError)
        assert "s" in ctx.node_outputs
        assert "t" not in ctx.node_outputs
        assert [e.phase for e in ctx.log if e.node_id == "t"][-1] is LogPhase.ERROR
        assert starts(ctx, "e") == 0

    @pytest.mark.asyncio
    async def test_service_failure_chained(self):
        g = make_graph([node("s", "start"), tool("broken")], [edge("s", "broken")])
        with pytest.raises(NodeExecutionError) as excinfo:
            await Runner().run(g, RunContext(tool_invoker=FakeToolInvoker()))
        cause = excinfo.value.__cause__
        assert isinstance(cause, ServiceError)
        assert cause.status_code == 500

    @pytest.mark.asyncio
    async def test_missing_executor(self):
        g = make_graph([node("s", "start"), node("e", "end")], [edge("s", "e")])
        runner = Runner(executors={NodeKind.START: StartExecutor()})
        with pytest.raises(UnsupportedNodeError, match="end node"):
            await runner.run(g, RunContext())
