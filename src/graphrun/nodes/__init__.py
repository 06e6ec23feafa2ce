"""Built-in node executors, one per node kind."""

from graphrun.core.graph import NodeKind
from graphrun.core.node import NodeExecutor
from graphrun.nodes.control import ConditionExecutor, LoopError, LoopExecutor, StateExecutor
from graphrun.nodes.io import EndExecutor, StartExecutor, UploadExecutor
from graphrun.nodes.llm import LLMExecutor
from graphrun.nodes.rag import RAGExecutor
from graphrun.nodes.tool import ToolExecutor
from graphrun.nodes.transformer import TransformerExecutor

EXECUTOR_TYPES: tuple[type[NodeExecutor], ...] = (
    StartExecutor,
    ToolExecutor,
    LLMExecutor,
    TransformerExecutor,
    EndExecutor,
    RAGExecutor,
    ConditionExecutor,
    StateExecutor,
    LoopExecutor,
    UploadExecutor,
)


def default_executors() -> dict[NodeKind, NodeExecutor]:
    """Dispatch table mapping every node kind to a fresh executor."""
    return {cls.kind: cls() for cls in EXECUTOR_TYPES}


__all__ = [
    "ConditionExecutor",
    "EndExecutor",
    "LLMExecutor",
    "LoopError",
    "LoopExecutor",
    "RAGExecutor",
    "StartExecutor",
    "StateExecutor",
    "ToolExecutor",
    "TransformerExecutor",
    "UploadExecutor",
    "default_executors",
]
