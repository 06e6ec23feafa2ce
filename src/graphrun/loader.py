"""Load graph documents from JSON or YAML files."""

import json
from pathlib import Path
from typing import Any

import yaml

from graphrun.core.graph import Graph, GraphError


def parse_document(text: str, *, suffix: str = ".json") -> dict[str, Any]:
    """Parse a graph document.

    A stored workflow record carrying the document under ``workflow_data``
    is unwrapped.
    """
    try:
        data = json.loads(text) if suffix == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise GraphError(f"Could not parse graph document: {e}") from e

    if not isinstance(data, dict):
        raise GraphError("Graph document must be a mapping with 'nodes' and 'edges'")
    if "workflow_data" in data and "nodes" not in data:
        data = data["workflow_data"]
    if isinstance(data.get("data"), dict) and "workflow_data" in data["data"]:
        data = data["data"]["workflow_data"]
    return data


def load_document(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    return parse_document(p.read_text(encoding="utf-8"), suffix=p.suffix.lower())


def load_graph(path: str | Path) -> Graph:
    return Graph.from_document(load_document(path))
