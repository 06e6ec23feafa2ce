"""Async execution engine for typed workflow graphs."""

from graphrun.core.context import LogEntry, LogPhase, RunContext
from graphrun.core.expressions import EvaluationError, SimpleEvaluator
from graphrun.core.graph import Edge, Graph, GraphError, Node, NodeKind
from graphrun.core.node import (
    NodeConfigError,
    NodeExecutionError,
    NodeExecutor,
    UnsupportedNodeError,
)
from graphrun.core.runner import Runner

__all__ = [
    "Edge",
    "EvaluationError",
    "Graph",
    "GraphError",
    "LogEntry",
    "LogPhase",
    "Node",
    "NodeConfigError",
    "NodeExecutionError",
    "NodeExecutor",
    "NodeKind",
    "RunContext",
    "Runner",
    "SimpleEvaluator",
    "UnsupportedNodeError",
]
