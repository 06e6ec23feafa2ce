"""Binding resolution: turn a node's declared input bindings into a value."""

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from graphrun.core.expressions import EvaluationError, ExpressionEvaluator, SimpleEvaluator
from graphrun.core.graph import Node

logger = logging.getLogger(__name__)

BindingErrorHandler = Callable[[str, str, EvaluationError], None]


def set_path(target: dict[str, Any], path: str, value: Any) -> None:
    """Set *value* at a dotted *path* inside *target*.

    Intermediate containers are created as needed; a non-mapping value sitting
    on the path is replaced by a fresh mapping.
    """
    *parents, last = path.split(".")
    current = target
    for key in parents:
        child = current.get(key)
        if not isinstance(child, dict):
            child = {}
            current[key] = child
        current = child
    current[last] = value


def build_eval_context(
    node_outputs: Mapping[str, Any],
    nodes: Iterable[Node],
    global_state: Mapping[str, Any],
) -> dict[str, Any]:
    """Expose every produced output under its node label, plus ``state``.

    Nodes sharing a label shadow each other in graph order.
    """
    context: dict[str, Any] = {}
    for node in nodes:
        if node.id in node_outputs:
            context[node.label] = node_outputs[node.id]
    context["state"] = dict(global_state)
    return context


def resolve_bindings(
    bindings: Mapping[str, str] | None,
    node_outputs: Mapping[str, Any],
    nodes: Iterable[Node],
    global_state: Mapping[str, Any],
    evaluator: ExpressionEvaluator | None = None,
    on_error: BindingErrorHandler | None = None,
) -> dict[str, Any]:
    """Evaluate each ``target_path -> expression`` binding into a nested dict.

    A failing expression only drops its own field; it never fails the call.
    """
    resolved: dict[str, Any] = {}
    if not bindings:
        return resolved

    evaluator = evaluator or SimpleEvaluator()
    context = build_eval_context(node_outputs, nodes, global_state)

    for target_path, expression in bindings.items():
        try:
            value = evaluator.evaluate(expression, context)
        except EvaluationError as e:
            logger.warning("Binding %s <- %r skipped: %s", target_path, expression, e)
            if on_error is not None:
                on_error(target_path, expression, e)
            continue
        set_path(resolved, target_path, value)
        logger.debug("Binding %s <- %r resolved", target_path, expression)

    return resolved
