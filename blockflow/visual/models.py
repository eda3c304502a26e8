"""Pydantic models for the BlockFlow visual graph JSON format.

These models describe what the block editor produces: a bag of blocks plus
the edges between them. They are kept in the `blockflow` package so a graph
saved by the editor can be loaded and executed from any host (CLI, the web
backend, tests) without importing the web backend itself.
"""

from __future__ import annotations

from enum import Enum
import uuid
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from pydantic import BaseModel, Field


class NodeType(str, Enum):
    """Types of blocks in the visual editor."""

    # Trigger / terminal
    START = "start"
    OUTPUT = "output"
    # Data sources
    TEXT_INPUT = "text_input"
    VARIABLE_INPUT = "variable_input"
    VALUE_INPUT = "value_input"
    # Model call
    LLM = "llm"
    # Control
    IF = "if"
    IF_THEN = "if_then"
    FOR_EACH_LINE = "for_each_line"
    # Variables
    SET_VARIABLE = "set_variable"
    SET_VALUE = "set_value"
    GET_VARIABLE = "get_variable"
    VARIABLE_REPORTER = "variable_reporter"
    # Math
    ADD = "add"
    SUBTRACT = "subtract"
    MULTIPLY = "multiply"
    DIVIDE = "divide"
    # Comparison
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    # Logic
    AND = "and"
    OR = "or"
    NOT = "not"
    # String
    CONCATENATE = "concatenate"
    SUBSTRING = "substring"
    LENGTH = "length"


# Edge handle used for sequential chaining (the block's `.next` pointer).
EXEC_OUT = "exec-out"
EXEC_IN = "exec-in"
# Source handle of a value-producing block.
VALUE_OUT = "value"


OPERATOR_TYPES: FrozenSet[NodeType] = frozenset(
    {
        NodeType.ADD,
        NodeType.SUBTRACT,
        NodeType.MULTIPLY,
        NodeType.DIVIDE,
        NodeType.EQUALS,
        NodeType.NOT_EQUALS,
        NodeType.GREATER_THAN,
        NodeType.LESS_THAN,
        NodeType.AND,
        NodeType.OR,
        NodeType.NOT,
        NodeType.CONCATENATE,
        NodeType.SUBSTRING,
        NodeType.LENGTH,
    }
)

# Operand pins, in evaluation order.
OPERATOR_PINS: Mapping[NodeType, tuple[str, ...]] = {
    **{t: ("a", "b") for t in OPERATOR_TYPES},
    NodeType.NOT: ("value",),
    NodeType.LENGTH: ("text",),
    NodeType.SUBSTRING: ("text", "start", "end"),
}

# Blocks that can sit on the right-hand side of a value edge.
VALUE_TYPES: FrozenSet[NodeType] = OPERATOR_TYPES | {
    NodeType.VALUE_INPUT,
    NodeType.GET_VARIABLE,
    NodeType.VARIABLE_REPORTER,
}

# Statement slots (nested chains) per block type.
STATEMENT_SLOTS: Mapping[NodeType, tuple[str, ...]] = {
    NodeType.IF: ("true", "false"),
    NodeType.IF_THEN: ("true",),
    NodeType.FOR_EACH_LINE: ("loop",),
}

# Value pins (inputs fed by value blocks) per block type.
VALUE_PINS: Mapping[NodeType, tuple[str, ...]] = {
    NodeType.IF: ("condition",),
    NodeType.IF_THEN: ("condition",),
    NodeType.VARIABLE_INPUT: ("value",),
    NodeType.SET_VALUE: ("value",),
    **OPERATOR_PINS,
}


DISPLAY_NAMES: Mapping[str, str] = {
    "start": "When Flow Runs",
    "output": "Output Result",
    "text_input": "Text Input",
    "variable_input": "Variable Input",
    "value_input": "Value Input",
    "llm": "LLM Processing",
    "if": "If/Then/Else",
    "if_then": "If/Then",
    "for_each_line": "For Each Line",
    "set_variable": "Set Variable",
    "set_value": "Set Value",
    "get_variable": "Get Variable",
    "variable_reporter": "Variable Reporter",
    "add": "Add (+)",
    "subtract": "Subtract (-)",
    "multiply": "Multiply (x)",
    "divide": "Divide (/)",
    "equals": "Equals (=)",
    "not_equals": "Not Equals (!=)",
    "greater_than": "Greater Than (>)",
    "less_than": "Less Than (<)",
    "and": "AND",
    "or": "OR",
    "not": "NOT",
    "concatenate": "Join Text",
    "substring": "Substring",
    "length": "Text Length",
}


def display_name(block_type: Any) -> str:
    """User-facing label for a block type (enum or raw string)."""
    key = block_type.value if hasattr(block_type, "value") else str(block_type)
    return DISPLAY_NAMES.get(key, key)


class Position(BaseModel):
    """2D position on canvas."""

    x: float = 0.0
    y: float = 0.0


class VisualNode(BaseModel):
    """A block in the visual editor."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    # Kept as a plain string so unknown kinds reach the extractor (and fail there
    # with a structural error) instead of failing JSON parsing.
    type: str
    position: Position = Field(default_factory=Position)
    data: Dict[str, Any] = Field(default_factory=dict)
    label: Optional[str] = None


class VisualEdge(BaseModel):
    """An edge connecting two blocks."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    source: str
    sourceHandle: str = EXEC_OUT
    target: str
    targetHandle: str = EXEC_IN


class VisualFlow(BaseModel):
    """A complete visual flow definition."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    name: str = "Untitled flow"
    description: str = ""
    nodes: List[VisualNode] = Field(default_factory=list)
    edges: List[VisualEdge] = Field(default_factory=list)
    entryNode: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class FlowCreateRequest(BaseModel):
    """Request to create a new flow."""

    name: str
    description: str = ""
    nodes: List[VisualNode] = Field(default_factory=list)
    edges: List[VisualEdge] = Field(default_factory=list)
    entryNode: Optional[str] = None


class FlowUpdateRequest(BaseModel):
    """Request to update an existing flow."""

    name: Optional[str] = None
    description: Optional[str] = None
    nodes: Optional[List[VisualNode]] = None
    edges: Optional[List[VisualEdge]] = None
    entryNode: Optional[str] = None


class FlowRunRequest(BaseModel):
    """Request to execute a flow."""

    variables: Dict[str, str] = Field(default_factory=dict)
