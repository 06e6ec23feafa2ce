"""Expression evaluation for bindings, conditions, state updates and loop exits."""

import re
from typing import Any, Protocol

from simpleeval import EvalWithCompoundTypes


class EvaluationError(Exception):
    """Raised when an expression cannot be evaluated against its context."""


class ExpressionEvaluator(Protocol):
    def evaluate(self, expression: str, context: dict[str, Any]) -> Any: ...


# String literals are matched first so operators inside them are left alone.
_OPERATOR_RE = re.compile(r"""("(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*')|&&|\|\||!(?!=)""")
_OPERATORS = {"&&": " and ", "||": " or ", "!": " not "}

_LITERALS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "True": True,
    "False": False,
    "None": None,
}

_FUNCTIONS = {
    "size": len,
    "len": len,
    "str": str,
    "string": str,
    "int": int,
    "float": float,
    "double": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "any": any,
    "all": all,
}


def _normalize(expression: str) -> str:
    """Rewrite C-style boolean operators into their Python spelling."""

    def _replace(match: re.Match[str]) -> str:
        if match.group(1):
            return match.group(1)
        return _OPERATORS[match.group(0)]

    return _OPERATOR_RE.sub(_replace, expression).strip()


class SimpleEvaluator:
    """Sandboxed evaluator backed by ``simpleeval``.

    Context keys are exposed as names; mapping values support both
    ``NodeLabel.field`` and ``NodeLabel["field"]`` access. ``&&``, ``||``
    and ``!`` are accepted alongside ``and``/``or``/``not``, and
    ``true``/``false``/``null`` alongside the Python literals.
    """

    def evaluate(self, expression: str, context: dict[str, Any]) -> Any:
        if not expression or not expression.strip():
            raise EvaluationError("Expression is empty")

        evaluator = EvalWithCompoundTypes(
            names={**_LITERALS, **context},
            functions=_FUNCTIONS,
        )
        try:
            return evaluator.eval(_normalize(expression))
        except Exception as e:
            raise EvaluationError(f"{expression!r}: {e}") from e


def evaluate_condition(
    evaluator: ExpressionEvaluator, expression: str, context: dict[str, Any]
) -> bool:
    return bool(evaluator.evaluate(expression, context))
