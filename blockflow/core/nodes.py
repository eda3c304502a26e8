"""Extracted flow representation.

The extractor turns the editor's raw block graph into a tree of `Node` values:
a closed tagged union (discriminated on `kind`) with one class per block kind.
Branch arms and loop bodies are nested `Node` lists.

Value blocks plugged into another block's inputs (operators feeding a
condition, a Get Variable feeding a Variable Input, ...) are not sequence
entries. They are captured as a small expression tree (`Expression`) on the
consuming node and interpreted at run time by the operator evaluator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import json
from typing import Annotated, ClassVar, Dict, Iterator, List, Literal, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class OperatorKind(str, Enum):
    ADD = "add"
    SUBTRACT = "subtract"
    MULTIPLY = "multiply"
    DIVIDE = "divide"
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    AND = "and"
    OR = "or"
    NOT = "not"
    CONCATENATE = "concatenate"
    SUBSTRING = "substring"
    LENGTH = "length"


OPERATOR_ARITY: Mapping[OperatorKind, int] = {
    **{k: 2 for k in OperatorKind},
    OperatorKind.NOT: 1,
    OperatorKind.LENGTH: 1,
    OperatorKind.SUBSTRING: 3,
}

OPERATOR_LABELS: Mapping[OperatorKind, str] = {
    OperatorKind.ADD: "Add (+)",
    OperatorKind.SUBTRACT: "Subtract (-)",
    OperatorKind.MULTIPLY: "Multiply (x)",
    OperatorKind.DIVIDE: "Divide (/)",
    OperatorKind.EQUALS: "Equals (=)",
    OperatorKind.NOT_EQUALS: "Not Equals (!=)",
    OperatorKind.GREATER_THAN: "Greater Than (>)",
    OperatorKind.LESS_THAN: "Less Than (<)",
    OperatorKind.AND: "AND",
    OperatorKind.OR: "OR",
    OperatorKind.NOT: "NOT",
    OperatorKind.CONCATENATE: "Join Text",
    OperatorKind.SUBSTRING: "Substring",
    OperatorKind.LENGTH: "Text Length",
}

_INFIX: Mapping[OperatorKind, str] = {
    OperatorKind.ADD: "+",
    OperatorKind.SUBTRACT: "-",
    OperatorKind.MULTIPLY: "*",
    OperatorKind.DIVIDE: "/",
    OperatorKind.EQUALS: "==",
    OperatorKind.NOT_EQUALS: "!=",
    OperatorKind.GREATER_THAN: ">",
    OperatorKind.LESS_THAN: "<",
    OperatorKind.AND: "&&",
    OperatorKind.OR: "||",
}


def _check_arity(kind: OperatorKind, count: int) -> None:
    expected = OPERATOR_ARITY[kind]
    if count != expected:
        plural = "input" if expected == 1 else "inputs"
        raise ValueError(f"{kind.value} operator requires exactly {expected} {plural} (got {count})")


# ---------------------------------------------------------------------------
# Expression AST
# ---------------------------------------------------------------------------


class _Expr(BaseModel):
    model_config = ConfigDict(frozen=True)


class LiteralExpr(_Expr):
    """A constant typed into a Value Input block."""

    kind: Literal["literal"] = "literal"
    value: str = ""

    def render(self) -> str:
        return json.dumps(self.value, ensure_ascii=False)


class VariableExpr(_Expr):
    """A Get Variable / Variable Reporter block used as a value."""

    kind: Literal["variable"] = "variable"
    name: str

    def render(self) -> str:
        return f'getVar("{self.name}")'


class TemplateExpr(_Expr):
    """An unconnected operand pin: its default text, template-substituted at run time."""

    kind: Literal["template"] = "template"
    template: str = ""

    def render(self) -> str:
        return json.dumps(self.template, ensure_ascii=False)


class OperatorExpr(_Expr):
    kind: Literal["operator"] = "operator"
    operator: OperatorKind
    operands: List["Expression"] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_arity(self) -> "OperatorExpr":
        _check_arity(self.operator, len(self.operands))
        return self

    def render(self) -> str:
        parts = [o.render() for o in self.operands]
        op = self.operator
        if op in _INFIX:
            return f"({parts[0]} {_INFIX[op]} {parts[1]})"
        if op is OperatorKind.NOT:
            return f"!{parts[0]}"
        return f"{op.value}({', '.join(parts)})"


Expression = Annotated[
    Union[LiteralExpr, VariableExpr, TemplateExpr, OperatorExpr],
    Field(discriminator="kind"),
]

OperatorExpr.model_rebuild()


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


class ConditionKind(str, Enum):
    """Legacy (dropdown) condition kinds of the If block."""

    TEXT_CONTAINS = "text_contains"
    TEXT_LENGTH = "text_length"
    VAR_EQUALS = "var_equals"
    AI_SENTIMENT = "ai_sentiment"


class _NodeBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    DISPLAY: ClassVar[str] = "Block"

    id: str

    @property
    def display_name(self) -> str:
        return self.DISPLAY


class StartNode(_NodeBase):
    DISPLAY: ClassVar[str] = "When Flow Runs"
    kind: Literal["start"] = "start"


class TextInputNode(_NodeBase):
    DISPLAY: ClassVar[str] = "Text Input"
    kind: Literal["text_input"] = "text_input"
    value: str = ""


class VariableInputNode(_NodeBase):
    DISPLAY: ClassVar[str] = "Variable Input"
    kind: Literal["variable_input"] = "variable_input"
    expression: Expression

    @property
    def code(self) -> str:
        return self.expression.render()


class ModelNode(_NodeBase):
    """The LLM block."""

    DISPLAY: ClassVar[str] = "LLM Processing"
    kind: Literal["model"] = "model"
    provider: str = ""
    prompt_template: str = ""
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, gt=0)
    top_p: float = Field(default=1.0, gt=0.0, le=1.0)


class OutputNode(_NodeBase):
    DISPLAY: ClassVar[str] = "Output Result"
    kind: Literal["output"] = "output"


class BranchNode(_NodeBase):
    """The If block.

    Either a legacy condition (`condition_kind` + `condition_value`) or a
    boolean expression (`condition_expression`) built from operator blocks.
    """

    DISPLAY: ClassVar[str] = "If/Then/Else"
    kind: Literal["branch"] = "branch"
    condition_kind: Optional[str] = None
    condition_value: str = ""
    condition_expression: Optional[Expression] = None
    then_branch: List["Node"] = Field(default_factory=list)
    else_branch: List["Node"] = Field(default_factory=list)
    # "if_then" blocks have no else slot; only affects display.
    display_kind: Literal["if", "if_then"] = "if"

    @property
    def display_name(self) -> str:
        return "If/Then" if self.display_kind == "if_then" else self.DISPLAY

    @property
    def uses_expression(self) -> bool:
        return self.condition_expression is not None

    @property
    def condition_code(self) -> Optional[str]:
        if self.condition_expression is None:
            return None
        return self.condition_expression.render()


class ForEachLineNode(_NodeBase):
    DISPLAY: ClassVar[str] = "For Each Line"
    kind: Literal["for_each_line"] = "for_each_line"
    body: List["Node"] = Field(default_factory=list)


class SetVariableNode(_NodeBase):
    """Set Variable (template value) and Set Value (connected value block)."""

    DISPLAY: ClassVar[str] = "Set Variable"
    kind: Literal["set_variable"] = "set_variable"
    name: str = ""
    value_template: str = ""
    value_expression: Optional[Expression] = None


class GetVariableNode(_NodeBase):
    DISPLAY: ClassVar[str] = "Get Variable"
    kind: Literal["get_variable"] = "get_variable"
    name: str = ""


class VariableReporterNode(_NodeBase):
    DISPLAY: ClassVar[str] = "Variable Reporter"
    kind: Literal["variable_reporter"] = "variable_reporter"
    name: str = ""


class OperatorNode(_NodeBase):
    kind: Literal["operator"] = "operator"
    operator_kind: OperatorKind
    # Operand templates, substituted right before evaluation.
    inputs: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_arity(self) -> "OperatorNode":
        _check_arity(self.operator_kind, len(self.inputs))
        return self

    @property
    def display_name(self) -> str:
        return OPERATOR_LABELS[self.operator_kind]


Node = Annotated[
    Union[
        StartNode,
        TextInputNode,
        VariableInputNode,
        ModelNode,
        OutputNode,
        BranchNode,
        ForEachLineNode,
        SetVariableNode,
        GetVariableNode,
        VariableReporterNode,
        OperatorNode,
    ],
    Field(discriminator="kind"),
]

BranchNode.model_rebuild()
ForEachLineNode.model_rebuild()


def child_sequences(node: _NodeBase) -> List[List[_NodeBase]]:
    """Nested node lists owned by `node` (branch arms, loop body)."""
    if isinstance(node, BranchNode):
        return [node.then_branch, node.else_branch]
    if isinstance(node, ForEachLineNode):
        return [node.body]
    return []


def iter_nodes(nodes: Sequence[_NodeBase]) -> Iterator[_NodeBase]:
    """Depth-first walk over `nodes` and every nested body, in execution order."""
    for node in nodes:
        yield node
        for seq in child_sequences(node):
            yield from iter_nodes(seq)


@dataclass
class ExtractedFlow:
    """Ordered top-level nodes plus an id-addressed index over the whole tree."""

    nodes: List[_NodeBase]
    flow_id: Optional[str] = None
    by_id: Dict[str, _NodeBase] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.by_id:
            self.by_id = {n.id: n for n in iter_nodes(self.nodes)}

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[_NodeBase]:
        return iter(self.nodes)

    def node_ids(self) -> List[str]:
        return [n.id for n in iter_nodes(self.nodes)]
