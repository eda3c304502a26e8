"""Branch condition evaluation.

Two paths:
- legacy dropdown conditions (`text_contains`, `text_length`, `var_equals`,
  `ai_sentiment`): never raise. A malformed condition logs a warning and
  evaluates to False.
- boolean expressions built from operator blocks: evaluated through the
  operator evaluator and coerced to a boolean. Failures raise `ConditionError`.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Protocol

from .core.nodes import ConditionKind
from .errors import ConditionError, FlowExecutionError
from .operators import evaluate_expression, to_boolean
from .providers import VALID_SENTIMENTS
from .templates import is_valid_variable_name

logger = logging.getLogger(__name__)


class SentimentClassifierProtocol(Protocol):
    async def classify(self, text: str) -> str: ...


def _text_contains(value: str, data: str) -> bool:
    if not value or not data:
        return False
    return value.lower() in data.lower()


def _text_length(value: str, data: str) -> bool:
    try:
        threshold = float(str(value).strip())
    except ValueError:
        logger.warning(f"Invalid number for text_length condition: {value!r}")
        return False
    return len(data) > threshold


def _var_equals(value: str, variables: Mapping[str, str]) -> bool:
    # "name=expected" compares, bare "name" checks that the variable is set and non-empty.
    if "=" in value:
        name, expected = value.split("=", 1)
        return variables.get(name.strip()) == expected.strip()
    return bool(variables.get(value.strip()))


async def _ai_sentiment(
    expected: str,
    data: str,
    classifier: Optional[SentimentClassifierProtocol],
) -> bool:
    if classifier is None:
        logger.warning("ai_sentiment condition evaluated without a sentiment classifier")
        return False
    try:
        actual = await classifier.classify(data)
    except Exception as e:
        # Any classifier failure (provider, transport, injected client) is a failed evaluation.
        logger.warning(f"Sentiment classification failed: {e}")
        return False
    actual = (actual or "").strip().lower()
    if actual not in VALID_SENTIMENTS:
        logger.warning(f"Invalid sentiment response: {actual!r}")
        return False
    return actual == (expected or "").strip().lower()


async def evaluate_condition(
    kind: Optional[str],
    value: str,
    current_data: str,
    variables: Optional[Mapping[str, str]] = None,
    classifier: Optional[SentimentClassifierProtocol] = None,
) -> bool:
    """Evaluate a legacy If-block condition against the current data."""
    store = variables or {}
    value = value or ""
    data = current_data or ""
    if kind == ConditionKind.TEXT_CONTAINS.value:
        return _text_contains(value, data)
    if kind == ConditionKind.TEXT_LENGTH.value:
        return _text_length(value, data)
    if kind == ConditionKind.VAR_EQUALS.value:
        return _var_equals(value, store)
    if kind == ConditionKind.AI_SENTIMENT.value:
        return await _ai_sentiment(value, data, classifier)
    logger.warning(f"Unknown condition type: {kind}")
    return False


def evaluate_boolean_expression(
    expr,
    current_data: str,
    variables: Mapping[str, str],
    line: Optional[str] = None,
) -> bool:
    """Evaluate an operator expression tree as a branch condition."""
    try:
        result = evaluate_expression(expr, current_data, variables, line)
    except FlowExecutionError as e:
        raise ConditionError(f"Condition evaluation failed: {e}") from e
    if result.type == "boolean":
        return bool(result.value)
    if result.type == "number":
        return float(result.value) != 0
    return to_boolean(str(result.value))


def validate_condition(kind: Optional[str], value: str) -> Optional[str]:
    """Return a user-facing problem with a legacy condition, or None when it is valid."""
    value = value or ""
    if kind == ConditionKind.TEXT_CONTAINS.value:
        if not value.strip():
            return "Text contains condition requires a search term"
    elif kind == ConditionKind.TEXT_LENGTH.value:
        try:
            threshold = float(value.strip())
        except ValueError:
            threshold = -1.0
        if threshold < 0:
            return "Text length condition requires a positive number"
    elif kind == ConditionKind.VAR_EQUALS.value:
        if not value.strip():
            return "Variable equals condition requires a variable name or name=value"
        name = value.split("=", 1)[0].strip()
        if not is_valid_variable_name(name):
            return (
                "Variable name must start with letter or underscore, "
                "contain only letters, numbers, and underscores"
            )
    elif kind == ConditionKind.AI_SENTIMENT.value:
        if value.strip().lower() not in VALID_SENTIMENTS:
            return f"AI sentiment must be one of: {', '.join(VALID_SENTIMENTS)}"
    else:
        return f"Unknown condition type: {kind}"
    return None


def describe_condition(kind: Optional[str], value: str) -> str:
    """Short human-readable description of a legacy condition."""
    value = value or ""
    if kind == ConditionKind.TEXT_CONTAINS.value:
        return f'text contains "{value}"'
    if kind == ConditionKind.TEXT_LENGTH.value:
        return f"text length > {value}"
    if kind == ConditionKind.VAR_EQUALS.value:
        if "=" in value:
            name, expected = value.split("=", 1)
            return f'variable "{name.strip()}" equals "{expected.strip()}"'
        return f'variable "{value}" exists'
    if kind == ConditionKind.AI_SENTIMENT.value:
        return f"AI sentiment is {value}"
    return f"unknown condition: {kind}"
