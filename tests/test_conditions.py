from __future__ import annotations

import asyncio

import pytest

from blockflow.conditions import (
    describe_condition,
    evaluate_boolean_expression,
    evaluate_condition,
    validate_condition,
)
from blockflow.core.nodes import LiteralExpr, OperatorExpr, OperatorKind, TemplateExpr, VariableExpr
from blockflow.errors import ConditionError, ProviderConfigError


class _FixedClassifier:
    def __init__(self, answer: str):
        self.answer = answer
        self.seen = []

    async def classify(self, text: str) -> str:
        self.seen.append(text)
        return self.answer


class _BrokenClassifier:
    async def classify(self, text: str) -> str:
        raise ProviderConfigError("openai API key not configured")


class _CrashingClassifier:
    async def classify(self, text: str) -> str:
        raise RuntimeError("connection reset")


def _cond(kind, value, data, variables=None, classifier=None) -> bool:
    return asyncio.run(evaluate_condition(kind, value, data, variables, classifier))


def test_text_contains_is_case_insensitive() -> None:
    assert _cond("text_contains", "HELLO", "well hello there") is True
    assert _cond("text_contains", "bye", "well hello there") is False
    assert _cond("text_contains", "", "anything") is False


def test_text_length_is_strictly_greater() -> None:
    assert _cond("text_length", "5", "123456") is True
    assert _cond("text_length", "5", "12345") is False
    assert _cond("text_length", "not a number", "123456") is False


def test_var_equals_forms() -> None:
    variables = {"mode": "fast", "empty": ""}
    assert _cond("var_equals", "mode=fast", "", variables) is True
    assert _cond("var_equals", " mode = fast ", "", variables) is True
    assert _cond("var_equals", "mode=slow", "", variables) is False
    assert _cond("var_equals", "mode", "", variables) is True
    assert _cond("var_equals", "empty", "", variables) is False
    assert _cond("var_equals", "missing", "", variables) is False


def test_ai_sentiment_uses_classifier() -> None:
    classifier = _FixedClassifier("Positive")
    assert _cond("ai_sentiment", "positive", "I love it", classifier=classifier) is True
    assert classifier.seen == ["I love it"]
    assert _cond("ai_sentiment", "negative", "I love it", classifier=classifier) is False


def test_ai_sentiment_failures_evaluate_false() -> None:
    assert _cond("ai_sentiment", "positive", "text") is False
    assert _cond("ai_sentiment", "positive", "text", classifier=_BrokenClassifier()) is False
    assert _cond("ai_sentiment", "positive", "text", classifier=_FixedClassifier("great")) is False


def test_ai_sentiment_unexpected_classifier_error_evaluates_false() -> None:
    assert _cond("ai_sentiment", "positive", "text", classifier=_CrashingClassifier()) is False


def test_unknown_condition_kind_is_false() -> None:
    assert _cond("regex_match", ".*", "text") is False
    assert _cond(None, "", "text") is False


def test_boolean_expression_coercion() -> None:
    gt = OperatorExpr(
        operator=OperatorKind.GREATER_THAN,
        operands=[VariableExpr(name="score"), LiteralExpr(value="50")],
    )
    assert evaluate_boolean_expression(gt, "", {"score": "75"}) is True
    assert evaluate_boolean_expression(gt, "", {"score": "10"}) is False

    length = OperatorExpr(operator=OperatorKind.LENGTH, operands=[TemplateExpr(template="{{input}}")])
    assert evaluate_boolean_expression(length, "abc", {}) is True
    assert evaluate_boolean_expression(length, "", {}) is False

    assert evaluate_boolean_expression(LiteralExpr(value="no"), "", {}) is False
    assert evaluate_boolean_expression(TemplateExpr(template="{{line}}"), "", {}, line="yes") is True


def test_boolean_expression_failures_raise_condition_error() -> None:
    gt = OperatorExpr(
        operator=OperatorKind.GREATER_THAN,
        operands=[VariableExpr(name="score"), LiteralExpr(value="50")],
    )
    with pytest.raises(ConditionError) as exc:
        evaluate_boolean_expression(gt, "", {})
    assert "Condition evaluation failed" in str(exc.value)
    assert 'Variable "score" not found' in str(exc.value)

    with pytest.raises(ConditionError):
        evaluate_boolean_expression(gt, "", {"score": "high"})


def test_validate_condition_messages() -> None:
    assert validate_condition("text_contains", "x") is None
    assert validate_condition("text_contains", "  ") == "Text contains condition requires a search term"
    assert validate_condition("text_length", "-1") == "Text length condition requires a positive number"
    assert validate_condition("text_length", "10") is None
    assert validate_condition("var_equals", "9lives=yes") is not None
    assert validate_condition("var_equals", "lives=9") is None
    assert validate_condition("ai_sentiment", "happy") is not None
    assert validate_condition("ai_sentiment", "Neutral") is None
    assert validate_condition("bogus", "") == "Unknown condition type: bogus"


def test_describe_condition() -> None:
    assert describe_condition("text_length", "5") == "text length > 5"
    assert describe_condition("var_equals", "a=b") == 'variable "a" equals "b"'
