"""Graph — immutable node/edge description of one workflow run."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Self


class GraphError(ValueError):
    """Raised when a graph document or graph structure is invalid."""


class NodeKind(str, Enum):
    START = "start"
    TOOL = "tool"
    LLM = "llm"
    TRANSFORMER = "transformer"
    END = "end"
    RAG = "rag"
    CONDITION = "condition"
    STATE = "state"
    LOOP = "loop"
    UPLOAD = "upload"


# Kinds whose output carries a ``selectedHandleId`` instead of fanning out.
BRANCHING_KINDS = frozenset({NodeKind.CONDITION, NodeKind.LOOP})


@dataclass(frozen=True)
class Node:
    id: str
    kind: NodeKind
    label: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    bindings: dict[str, str] | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Node":
        """Build a node from the editor's ``{id, type, data: {...}}`` shape."""
        node_id = raw.get("id")
        if not node_id:
            raise GraphError(f"Node without id: {raw!r}")
        try:
            kind = NodeKind(raw.get("type"))
        except ValueError:
            kind_name = raw.get("type")
            raise GraphError(f"Unsupported node kind {kind_name!r} for node {node_id!r}") from None
        data = raw.get("data") or {}
        return cls(
            id=node_id,
            kind=kind,
            label=data.get("label") or "",
            payload=data.get("nodeData") or {},
            bindings=data.get("inputBindings"),
        )

    def __repr__(self) -> str:
        return f"Node({self.id!r}, {self.kind.value}, label={self.label!r})"


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None
    id: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Edge":
        if not raw.get("source") or not raw.get("target"):
            raise GraphError(f"Edge needs a source and a target: {raw!r}")
        return cls(
            source=raw["source"],
            target=raw["target"],
            source_handle=raw.get("sourceHandle"),
            target_handle=raw.get("targetHandle"),
            id=raw.get("id"),
        )


@dataclass(frozen=True)
class CustomTool:
    tool_name: str
    request_schema: dict[str, Any] | None
    response_schema: dict[str, Any] | None
    function_body: str | None


def loop_start_handle(node: Node) -> str:
    return node.payload.get("loopStartHandleId") or f"{node.id}-loop-start"


def loop_end_handle(node: Node) -> str:
    return node.payload.get("loopEndHandleId") or f"{node.id}-loop-end"


class Graph:
    """Node set plus edge set for a single run.

    Nodes are added with ``add_node`` and edges with ``add_edge``; both reject
    inconsistent input so every edge endpoint always resolves. Nodes that are
    unreachable from ``start`` are legal and simply never execute.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self._edges: list[Edge] = []
        self._outgoing: dict[str, list[Edge]] = {}
        self._incoming: dict[str, list[Edge]] = {}

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Self:
        """Build a graph from a ``{nodes, edges, viewport}`` document.

        ``viewport`` and any presentation-only keys are ignored.
        """
        graph = cls()
        for raw in document.get("nodes") or []:
            graph.add_node(Node.from_dict(raw))
        for raw in document.get("edges") or []:
            graph.add_edge(Edge.from_dict(raw))
        return graph

    def add_node(self, node: Node) -> Self:
        if node.id in self._nodes:
            raise GraphError(f"Duplicate node id: {node.id!r}")
        self._nodes[node.id] = node
        self._outgoing.setdefault(node.id, [])
        self._incoming.setdefault(node.id, [])
        return self

    def add_edge(self, edge: Edge) -> Self:
        if edge.source not in self._nodes:
            raise GraphError(f"Unknown source node: {edge.source!r}")
        if edge.target not in self._nodes:
            raise GraphError(f"Unknown target node: {edge.target!r}")
        self._edges.append(edge)
        self._outgoing[edge.source].append(edge)
        self._incoming[edge.target].append(edge)
        return self

    def get_node(self, node_id: str) -> Node:
        return self._nodes[node_id]

    @property
    def nodes(self) -> list[Node]:
        return list(self._nodes.values())

    @property
    def edges(self) -> list[Edge]:
        return list(self._edges)

    @property
    def node_ids(self) -> list[str]:
        return list(self._nodes)

    @property
    def start_node(self) -> Node:
        starts = [n for n in self._nodes.values() if n.kind is NodeKind.START]
        if not starts:
            raise GraphError("Graph has no start node")
        if len(starts) > 1:
            raise GraphError(f"Graph has {len(starts)} start nodes: {[n.id for n in starts]}")
        return starts[0]

    def incoming(self, node_id: str) -> list[Edge]:
        return list(self._incoming.get(node_id, []))

    def outgoing(self, node_id: str) -> list[Edge]:
        return list(self._outgoing.get(node_id, []))

    def successors(self, node_id: str) -> list[str]:
        """Distinct target ids of *node_id*'s outgoing edges, in edge order."""
        return list(dict.fromkeys(e.target for e in self._outgoing.get(node_id, [])))

    def predecessors(self, node_id: str) -> list[str]:
        """Distinct source ids of *node_id*'s incoming edges, in edge order."""
        return list(dict.fromkeys(e.source for e in self._incoming.get(node_id, [])))

    def branch_edge(self, node: Node, handle: str | None) -> Edge | None:
        """Edge taken when branching *node* selects *handle*.

        Loop outputs are also accepted under the node-prefixed handle
        (``<loop id>-exit``) used by editor-authored documents.
        """
        edge = self.edge_from_handle(node.id, handle)
        if edge is None and handle is not None and node.kind is NodeKind.LOOP:
            edge = self.edge_from_handle(node.id, f"{node.id}-{handle}")
        return edge

    def edge_from_handle(self, node_id: str, handle: str | None) -> Edge | None:
        """First outgoing edge of *node_id* leaving through source handle *handle*."""
        if handle is None:
            return None
        for edge in self._outgoing.get(node_id, []):
            if edge.source_handle == handle:
                return edge
        return None

    def has_edge(self, source: str, target: str, *, target_handle: str | None = None) -> bool:
        return any(
            e.target == target and (target_handle is None or e.target_handle == target_handle)
            for e in self._outgoing.get(source, [])
        )

    def is_loop_back_edge(self, edge: Edge) -> bool:
        """True when *edge* closes a loop body into its loop node's end handle."""
        target = self._nodes[edge.target]
        return target.kind is NodeKind.LOOP and edge.target_handle == loop_end_handle(target)

    def required_predecessors(self, node_id: str) -> int:
        """Number of distinct branches the scheduler waits for before running *node_id*.

        Loop body back-edges are driven by the loop itself, never by the
        scheduler, so they do not count.
        """
        incoming = self._incoming.get(node_id, [])
        sources = {e.source for e in incoming if not self.is_loop_back_edge(e)}
        return len(sources)

    def start_params(self) -> dict[str, Any]:
        """Input schema declared on the start node, ``{schema, type}``."""
        starts = [n for n in self._nodes.values() if n.kind is NodeKind.START]
        if not starts or not starts[0].payload:
            return {"schema": None, "type": "unknown"}
        payload = starts[0].payload
        return {"schema": payload.get("schema") or None, "type": payload.get("type") or "unknown"}

    def custom_tools(self) -> list[CustomTool]:
        """Every custom-code tool declared by a tool node."""
        tools: list[CustomTool] = []
        for node in self._nodes.values():
            if node.kind is not NodeKind.TOOL or node.payload.get("type") != "custom":
                continue
            tool = node.payload.get("tool")
            if not tool:
                continue
            tools.append(
                CustomTool(
                    tool_name=tool.get("name") or "Unknown",
                    request_schema=tool.get("schema") or None,
                    response_schema=tool.get("response_schema") or None,
                    function_body=tool.get("function_body") or None,
                )
            )
        return tools

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"Graph(nodes={len(self._nodes)}, edges={len(self._edges)})"
