"""Operator evaluation for math, comparison, logic and string blocks.

Every operand arrives as text (block inputs are templates). Handlers coerce
as needed and return an `OperatorResult`; `evaluate()` wraps any failure in an
`OperatorError` prefixed with the operator name.

Coercion rules:
- numbers: the trimmed text must be a decimal/scientific literal. An empty
  operand counts as 0 for add/subtract/multiply/divide and for substring
  bounds, and is a coercion failure everywhere else.
- booleans: "true"/"1"/"yes" are true, "false"/"0"/"no"/"" are false, any
  other non-empty text is true.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import re
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

from .core.nodes import (
    OPERATOR_ARITY,
    LiteralExpr,
    OperatorExpr,
    OperatorKind,
    TemplateExpr,
    VariableExpr,
)
from .errors import MissingVariableError, OperatorError
from .templates import substitute, substitute_variables

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")

_TRUE_WORDS = frozenset({"true", "1", "yes"})
_FALSE_WORDS = frozenset({"false", "0", "no", ""})


@dataclass(frozen=True)
class OperatorResult:
    value: Union[float, bool, str]
    type: str  # "number" | "boolean" | "string"

    def as_text(self) -> str:
        if self.type == "boolean":
            return "true" if self.value else "false"
        if self.type == "number":
            return format_number(float(self.value))
        return str(self.value)


def format_number(value: float) -> str:
    """Render a number the way the editor displays it (no trailing `.0`)."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer():
        return str(int(value))
    return repr(value)


def to_number(text: str, *, empty_as_zero: bool = False) -> float:
    clean = str(text).strip()
    if clean == "":
        if empty_as_zero:
            return 0.0
        raise ValueError("Cannot convert an empty value to a number")
    if not _NUMBER_RE.match(clean):
        raise ValueError(f'Cannot convert "{clean}" to number')
    return float(clean)


def to_boolean(text: str) -> bool:
    clean = str(text).strip().lower()
    if clean in _TRUE_WORDS:
        return True
    if clean in _FALSE_WORDS:
        return False
    return True


def _number(value: float) -> OperatorResult:
    return OperatorResult(value, "number")


def _boolean(value: bool) -> OperatorResult:
    return OperatorResult(bool(value), "boolean")


# Math operations
def math_add(inputs: Sequence[str]) -> OperatorResult:
    """Add two numbers."""
    return _number(to_number(inputs[0], empty_as_zero=True) + to_number(inputs[1], empty_as_zero=True))


def math_subtract(inputs: Sequence[str]) -> OperatorResult:
    """Subtract b from a."""
    return _number(to_number(inputs[0], empty_as_zero=True) - to_number(inputs[1], empty_as_zero=True))


def math_multiply(inputs: Sequence[str]) -> OperatorResult:
    """Multiply two numbers."""
    return _number(to_number(inputs[0], empty_as_zero=True) * to_number(inputs[1], empty_as_zero=True))


def math_divide(inputs: Sequence[str]) -> OperatorResult:
    """Divide a by b."""
    a = to_number(inputs[0], empty_as_zero=True)
    b = to_number(inputs[1], empty_as_zero=True)
    if b == 0:
        raise ValueError("Division by zero is not allowed")
    return _number(a / b)


# Comparison operations
def compare_equals(inputs: Sequence[str]) -> OperatorResult:
    """Numeric equality when both sides are numbers, exact text equality otherwise."""
    try:
        return _boolean(to_number(inputs[0]) == to_number(inputs[1]))
    except ValueError:
        return _boolean(inputs[0] == inputs[1])


def compare_not_equals(inputs: Sequence[str]) -> OperatorResult:
    try:
        return _boolean(to_number(inputs[0]) != to_number(inputs[1]))
    except ValueError:
        return _boolean(inputs[0] != inputs[1])


def compare_greater_than(inputs: Sequence[str]) -> OperatorResult:
    return _boolean(to_number(inputs[0]) > to_number(inputs[1]))


def compare_less_than(inputs: Sequence[str]) -> OperatorResult:
    return _boolean(to_number(inputs[0]) < to_number(inputs[1]))


# Logical operations
def logical_and(inputs: Sequence[str]) -> OperatorResult:
    return _boolean(to_boolean(inputs[0]) and to_boolean(inputs[1]))


def logical_or(inputs: Sequence[str]) -> OperatorResult:
    return _boolean(to_boolean(inputs[0]) or to_boolean(inputs[1]))


def logical_not(inputs: Sequence[str]) -> OperatorResult:
    return _boolean(not to_boolean(inputs[0]))


# String operations
def string_concatenate(inputs: Sequence[str]) -> OperatorResult:
    return OperatorResult(str(inputs[0]) + str(inputs[1]), "string")


def string_substring(inputs: Sequence[str]) -> OperatorResult:
    """Characters [start, end) of text, both bounds clamped to [0, len]."""
    text = str(inputs[0])
    size = len(text)
    start = min(max(int(to_number(inputs[1], empty_as_zero=True)), 0), size)
    end = min(max(int(to_number(inputs[2], empty_as_zero=True)), 0), size)
    if start > end:
        raise ValueError("Start position cannot be greater than end position")
    return OperatorResult(text[start:end], "string")


def string_length(inputs: Sequence[str]) -> OperatorResult:
    return _number(float(len(str(inputs[0]))))


# Handler registry
OPERATOR_HANDLERS: Dict[OperatorKind, Callable[[Sequence[str]], OperatorResult]] = {
    # Math
    OperatorKind.ADD: math_add,
    OperatorKind.SUBTRACT: math_subtract,
    OperatorKind.MULTIPLY: math_multiply,
    OperatorKind.DIVIDE: math_divide,
    # Comparison
    OperatorKind.EQUALS: compare_equals,
    OperatorKind.NOT_EQUALS: compare_not_equals,
    OperatorKind.GREATER_THAN: compare_greater_than,
    OperatorKind.LESS_THAN: compare_less_than,
    # Logic
    OperatorKind.AND: logical_and,
    OperatorKind.OR: logical_or,
    OperatorKind.NOT: logical_not,
    # String
    OperatorKind.CONCATENATE: string_concatenate,
    OperatorKind.SUBSTRING: string_substring,
    OperatorKind.LENGTH: string_length,
}


def evaluate(
    kind: Union[OperatorKind, str],
    inputs: Sequence[str],
    variables: Optional[Mapping[str, str]] = None,
    *,
    resolve_templates: bool = True,
) -> OperatorResult:
    """Evaluate one operator over text operands.

    Variable placeholders in the operands are resolved against `variables`
    first unless `resolve_templates` is False.
    """
    try:
        op = OperatorKind(kind)
    except ValueError:
        raise OperatorError(f"Unknown operator type: {kind}") from None

    label = op.value.upper()
    expected = OPERATOR_ARITY[op]
    if len(inputs) != expected:
        plural = "input" if expected == 1 else "inputs"
        raise OperatorError(f"{label} operator error: requires exactly {expected} {plural} (got {len(inputs)})")

    operands: List[str] = [
        substitute_variables(str(i), variables) if resolve_templates else str(i) for i in inputs
    ]
    try:
        return OPERATOR_HANDLERS[op](operands)
    except (ValueError, OverflowError) as e:
        logger.debug(f"{op.value} operator failed on {operands!r}: {e}")
        raise OperatorError(f"{label} operator error: {e}") from e


def evaluate_expression(
    expr: Union[LiteralExpr, VariableExpr, TemplateExpr, OperatorExpr],
    current_data: str,
    variables: Mapping[str, str],
    line: Optional[str] = None,
) -> OperatorResult:
    """Interpret an expression tree captured from connected value blocks."""
    if isinstance(expr, LiteralExpr):
        return OperatorResult(expr.value, "string")
    if isinstance(expr, VariableExpr):
        value = variables.get(expr.name)
        if value is None:
            raise MissingVariableError(expr.name)
        return OperatorResult(value, "string")
    if isinstance(expr, TemplateExpr):
        return OperatorResult(substitute(expr.template, current_data, variables, line), "string")
    if isinstance(expr, OperatorExpr):
        operands = [evaluate_expression(o, current_data, variables, line).as_text() for o in expr.operands]
        return evaluate(expr.operator, operands, variables, resolve_templates=False)
    raise OperatorError(f"Unsupported expression: {expr!r}")

