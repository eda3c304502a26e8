from __future__ import annotations

import pytest

from blockflow.core.nodes import LiteralExpr, OperatorExpr, OperatorKind, TemplateExpr, VariableExpr
from blockflow.errors import MissingVariableError, OperatorError
from blockflow.operators import evaluate, evaluate_expression, format_number, to_boolean


def test_divide_by_zero_raises_operator_error() -> None:
    with pytest.raises(OperatorError) as exc:
        evaluate("divide", ["10", "0"])
    assert "DIVIDE operator error" in str(exc.value)
    assert "Division by zero" in str(exc.value)


def test_divide_returns_number() -> None:
    result = evaluate("divide", ["10", "2"])
    assert result.value == 5
    assert result.type == "number"
    assert result.as_text() == "5"


def test_equals_compares_numerically_then_falls_back_to_text() -> None:
    assert evaluate("equals", ["5", "5.0"]).value is True
    assert evaluate("equals", ["abc", "abd"]).value is False
    assert evaluate("equals", ["abc", "abc"]).value is True
    assert evaluate("not_equals", ["5", "5.0"]).value is False
    assert evaluate("not_equals", ["a", "b"]).value is True


def test_arithmetic_treats_empty_operand_as_zero() -> None:
    assert evaluate("add", ["", "3"]).as_text() == "3"
    assert evaluate("multiply", [" 2 ", "2.5"]).as_text() == "5"
    assert evaluate("subtract", ["1", "0.5"]).as_text() == "0.5"


def test_non_numeric_operand_is_rejected() -> None:
    with pytest.raises(OperatorError):
        evaluate("add", ["two", "3"])
    with pytest.raises(OperatorError):
        evaluate("greater_than", ["", "3"])


def test_comparisons() -> None:
    assert evaluate("greater_than", ["10", "9"]).value is True
    assert evaluate("less_than", ["10", "9"]).value is False
    assert evaluate("greater_than", ["10", "9"]).as_text() == "true"


def test_boolean_coercion() -> None:
    assert to_boolean("yes") is True
    assert to_boolean("1") is True
    assert to_boolean("anything") is True
    assert to_boolean("no") is False
    assert to_boolean("FALSE") is False
    assert to_boolean("") is False

    assert evaluate("and", ["true", "hello"]).value is True
    assert evaluate("and", ["true", "0"]).value is False
    assert evaluate("or", ["", "no"]).value is False
    assert evaluate("not", ["false"]).value is True


def test_wrong_arity_raises() -> None:
    with pytest.raises(OperatorError) as exc:
        evaluate("add", ["1"])
    assert "requires exactly 2 inputs" in str(exc.value)
    with pytest.raises(OperatorError):
        evaluate("not", ["a", "b"])


def test_unknown_operator_raises() -> None:
    with pytest.raises(OperatorError):
        evaluate("modulo", ["1", "2"])


def test_substring_clamps_bounds() -> None:
    assert evaluate("substring", ["hello", "1", "3"]).value == "el"
    assert evaluate("substring", ["hello", "-5", "100"]).value == "hello"
    assert evaluate("substring", ["hello", "", "2"]).value == "he"
    with pytest.raises(OperatorError):
        evaluate("substring", ["hello", "4", "2"])


def test_concatenate_and_length() -> None:
    assert evaluate("concatenate", ["foo", "bar"]).value == "foobar"
    length = evaluate("length", ["hello"])
    assert length.type == "number"
    assert length.as_text() == "5"


def test_operands_resolve_variable_placeholders() -> None:
    result = evaluate("add", ['{{getVar("count")}}', "1"], {"count": "41"})
    assert result.as_text() == "42"


def test_format_number() -> None:
    assert format_number(3.0) == "3"
    assert format_number(0.25) == "0.25"
    assert format_number(float("inf")) == "Infinity"


def test_evaluate_expression_nested_tree() -> None:
    expr = OperatorExpr(
        operator=OperatorKind.GREATER_THAN,
        operands=[
            OperatorExpr(
                operator=OperatorKind.LENGTH,
                operands=[TemplateExpr(template="{{input}}")],
            ),
            VariableExpr(name="limit"),
        ],
    )
    assert evaluate_expression(expr, "four", {"limit": "3"}).value is True
    assert evaluate_expression(expr, "ab", {"limit": "3"}).value is False
    assert expr.render() == '(length("{{input}}") > getVar("limit"))'


def test_evaluate_expression_missing_variable() -> None:
    with pytest.raises(MissingVariableError):
        evaluate_expression(VariableExpr(name="nope"), "", {})


def test_evaluate_expression_literal() -> None:
    assert evaluate_expression(LiteralExpr(value="x"), "", {}).as_text() == "x"


def test_operator_expression_checks_arity() -> None:
    with pytest.raises(ValueError):
        OperatorExpr(operator=OperatorKind.ADD, operands=[LiteralExpr(value="1")])
