"""Turn a raw `VisualFlow` block graph into an ordered, nested `Node` tree.

Edges play one of three roles (see `blockflow.visual.models`):
- next links (`sourceHandle == "exec-out"`) chain blocks in sequence
- statement children hang a nested chain off an If / For Each Line slot
- value children plug a value block into another block's input pin

Extraction is two passes. A reachability walk from the single Start block over
all three edge kinds finds disconnected blocks. Then an ordered walk follows
next links, recursing into statement slots, and folds value children into
expression trees on the consuming node. Any structural problem raises a
`StructuralError` subclass before anything runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from ..core.nodes import (
    BranchNode,
    ExtractedFlow,
    ForEachLineNode,
    GetVariableNode,
    LiteralExpr,
    ModelNode,
    OperatorExpr,
    OperatorKind,
    OperatorNode,
    OutputNode,
    SetVariableNode,
    StartNode,
    TemplateExpr,
    TextInputNode,
    VariableExpr,
    VariableInputNode,
    VariableReporterNode,
)
from ..errors import (
    CycleError,
    DisconnectedBlockError,
    EmptyFlowError,
    FlowTooLongError,
    InvalidBlockError,
    InvalidEdgeError,
    StartBlockError,
    UnknownBlockError,
)
from .models import (
    EXEC_OUT,
    OPERATOR_PINS,
    OPERATOR_TYPES,
    STATEMENT_SLOTS,
    VALUE_PINS,
    NodeType,
    VisualFlow,
    VisualNode,
    display_name,
)
from .validation import validate_flow

logger = logging.getLogger(__name__)

MAX_FLOW_BLOCKS = 100


@dataclass
class _EdgeIndex:
    """Classified edges of one flow, keyed by node id."""

    next: Dict[str, str] = field(default_factory=dict)
    # node id -> slot handle -> first node id of the nested chain
    statements: Dict[str, Dict[str, str]] = field(default_factory=dict)
    # node id -> pin handle -> value-producing node id
    values: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def neighbours(self, node_id: str) -> List[str]:
        out: List[str] = []
        nxt = self.next.get(node_id)
        if nxt is not None:
            out.append(nxt)
        out.extend(self.statements.get(node_id, {}).values())
        out.extend(self.values.get(node_id, {}).values())
        return out


def _node_type(node: VisualNode) -> NodeType:
    return NodeType(node.type)


def _label(node: VisualNode) -> str:
    return node.label or display_name(node.type)


def _as_float(raw: Any, default: float) -> float:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _as_int(raw: Any, default: int) -> int:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        return default


def _as_text(raw: Any) -> str:
    if raw is None:
        return ""
    return raw if isinstance(raw, str) else str(raw)


def _check_kinds(flow: VisualFlow) -> Dict[str, VisualNode]:
    nodes: Dict[str, VisualNode] = {}
    for node in flow.nodes:
        if node.id in nodes:
            raise InvalidBlockError(
                f'Duplicate block id "{node.id}".',
                hint=["Every block must have a unique id", "Delete and recreate the duplicated block"],
                node_ids=[node.id],
            )
        try:
            _node_type(node)
        except ValueError:
            raise UnknownBlockError(
                f"Unknown block type: {node.type}",
                hint=[
                    "This block type is not supported",
                    "Replace it with a supported block type",
                    "Check that you're using the correct blocks from the sidebar",
                ],
                node_ids=[node.id],
            ) from None
        nodes[node.id] = node
    return nodes


def _find_start(nodes: Dict[str, VisualNode]) -> VisualNode:
    starts = [n for n in nodes.values() if _node_type(n) == NodeType.START]
    if not starts:
        raise StartBlockError(
            'No "When Flow Runs" block found.',
            hint=[
                'Drag a "When Flow Runs" block from the sidebar',
                "This block must be the starting point of your flow",
                "Connect other blocks to it",
            ],
        )
    if len(starts) > 1:
        raise StartBlockError(
            'Multiple "When Flow Runs" blocks found.',
            hint=[
                'Remove extra "When Flow Runs" blocks',
                "Keep only one as the starting point",
                "Make sure all blocks are connected in a single flow",
            ],
            node_ids=[n.id for n in starts],
        )
    return starts[0]


def _index_edges(flow: VisualFlow, nodes: Dict[str, VisualNode]) -> _EdgeIndex:
    index = _EdgeIndex()
    for edge in flow.edges:
        missing = [nid for nid in (edge.source, edge.target) if nid not in nodes]
        if missing:
            raise InvalidEdgeError(
                f'Connection "{edge.id}" refers to unknown block(s): {", ".join(missing)}',
                hint=["Reconnect the blocks", "Remove the dangling connection"],
            )
        source_type = _node_type(nodes[edge.source])
        target_type = _node_type(nodes[edge.target])

        if edge.targetHandle in VALUE_PINS.get(target_type, ()):
            pins = index.values.setdefault(edge.target, {})
            if edge.targetHandle in pins:
                raise InvalidEdgeError(
                    f'{_label(nodes[edge.target])} block has more than one value plugged into "{edge.targetHandle}".',
                    hint=["Plug a single value block into each input"],
                    node_ids=[edge.target],
                )
            pins[edge.targetHandle] = edge.source
        elif edge.sourceHandle == EXEC_OUT:
            if edge.source in index.next:
                raise InvalidEdgeError(
                    f"{_label(nodes[edge.source])} block is connected to more than one next block.",
                    hint=["Keep a single block directly below it", "Move extra blocks into a branch or loop"],
                    node_ids=[edge.source],
                )
            index.next[edge.source] = edge.target
        elif edge.sourceHandle in STATEMENT_SLOTS.get(source_type, ()):
            slots = index.statements.setdefault(edge.source, {})
            if edge.sourceHandle in slots:
                raise InvalidEdgeError(
                    f'{_label(nodes[edge.source])} block has more than one block in its "{edge.sourceHandle}" slot.',
                    hint=["Chain the nested blocks one below the other"],
                    node_ids=[edge.source],
                )
            slots[edge.sourceHandle] = edge.target
        else:
            raise InvalidEdgeError(
                f"Invalid connection from {_label(nodes[edge.source])} "
                f'("{edge.sourceHandle}") to {_label(nodes[edge.target])} ("{edge.targetHandle}").',
                hint=["Reconnect the blocks using matching connectors"],
                node_ids=[edge.source, edge.target],
            )
    return index


def _check_connected(start_id: str, nodes: Dict[str, VisualNode], index: _EdgeIndex) -> Set[str]:
    reachable: Set[str] = set()
    stack = [start_id]
    while stack:
        cur = stack.pop()
        if cur in reachable:
            continue
        reachable.add(cur)
        for nxt in index.neighbours(cur):
            if nxt not in reachable:
                stack.append(nxt)

    disconnected = [n for n in nodes.values() if n.id not in reachable]
    if disconnected:
        names = ", ".join(f"{_label(n)} ({n.id})" for n in disconnected)
        raise DisconnectedBlockError(
            f"Found {len(disconnected)} disconnected block(s): {names}",
            hint=[
                "Connect all blocks to your main flow",
                "Remove unused blocks",
                "Make sure there's a single connected sequence from start to output",
            ],
            node_ids=[n.id for n in disconnected],
        )
    return reachable


def _check_all_used(
    reachable: Set[str], nodes: Dict[str, VisualNode], extracted: ExtractedFlow, used_values: Set[str]
) -> None:
    # Reachable through a link the ordered walk never follows (e.g. chained below a value block).
    stranded = [
        n for n in nodes.values() if n.id in reachable and n.id not in extracted.by_id and n.id not in used_values
    ]
    if stranded:
        names = ", ".join(f"{_label(n)} ({n.id})" for n in stranded)
        raise DisconnectedBlockError(
            f"Found {len(stranded)} disconnected block(s): {names}",
            hint=[
                "Blocks chained below a value block never run",
                "Connect them to your main flow instead",
                "Remove unused blocks",
            ],
            node_ids=[n.id for n in stranded],
        )


class _Builder:
    """Ordered walk producing `Node` values. One instance per extraction."""

    def __init__(self, nodes: Dict[str, VisualNode], index: _EdgeIndex):
        self.nodes = nodes
        self.index = index
        self._seen: Set[str] = set()
        self._count = 0
        # ids consumed as value children
        self.used_values: Set[str] = set()

    def chain(self, head_id: Optional[str]) -> List[Any]:
        out: List[Any] = []
        cur = head_id
        while cur is not None:
            if cur in self._seen:
                raise CycleError(
                    f"Circular reference detected at {_label(self.nodes[cur])} block ({cur}).",
                    hint=[
                        "Check that blocks are not connected in a loop",
                        "Make sure each block appears only once in the flow",
                        "Reconnect blocks in a linear sequence",
                    ],
                    node_ids=[cur],
                )
            self._seen.add(cur)
            self._count += 1
            if self._count > MAX_FLOW_BLOCKS:
                raise FlowTooLongError(
                    f"Flow is too long (>{MAX_FLOW_BLOCKS} blocks) or contains a circular reference.",
                    hint=[
                        "Simplify your flow",
                        "Check for loops in your block connections",
                        "Make sure blocks are connected linearly",
                    ],
                )
            out.append(self.statement(self.nodes[cur]))
            cur = self.index.next.get(cur)
        return out

    def _slot(self, node: VisualNode, slot: str) -> List[Any]:
        return self.chain(self.index.statements.get(node.id, {}).get(slot))

    def _pin(self, node: VisualNode, pin: str) -> Optional[str]:
        return self.index.values.get(node.id, {}).get(pin)

    def _invalid(self, node: VisualNode, message: str, *hint: str) -> InvalidBlockError:
        return InvalidBlockError(f"{_label(node)} block ({node.id}): {message}", hint=list(hint), node_ids=[node.id])

    def statement(self, node: VisualNode) -> Any:
        kind = _node_type(node)
        data = node.data or {}
        try:
            return self._build(node, kind, data)
        except PydanticValidationError as e:
            errors = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
            raise self._invalid(
                node,
                f"invalid configuration ({errors})",
                "Check that all fields in the block are properly filled",
            ) from None

    def _build(self, node: VisualNode, kind: NodeType, data: Dict[str, Any]) -> Any:
        if kind == NodeType.START:
            return StartNode(id=node.id)
        if kind == NodeType.OUTPUT:
            return OutputNode(id=node.id)
        if kind == NodeType.TEXT_INPUT:
            return TextInputNode(id=node.id, value=_as_text(data.get("text", data.get("value"))))
        if kind == NodeType.VARIABLE_INPUT:
            source = self._pin(node, "value")
            if source is None:
                raise self._invalid(
                    node,
                    "no connected value.",
                    "Connect a Get Variable block to the input",
                    "Connect another value block (like Value Input) to the input",
                )
            return VariableInputNode(id=node.id, expression=self.expression(source, set()))
        if kind == NodeType.LLM:
            return ModelNode(
                id=node.id,
                provider=_as_text(data.get("provider") or data.get("model")).strip(),
                prompt_template=_as_text(data.get("prompt")),
                temperature=_as_float(data.get("temperature"), 0.7),
                max_tokens=_as_int(data.get("maxTokens"), 1024),
                top_p=_as_float(data.get("topP"), 1.0),
            )
        if kind in (NodeType.IF, NodeType.IF_THEN):
            source = self._pin(node, "condition")
            expression = self.expression(source, set()) if source is not None else None
            condition_kind = None if expression is not None else (data.get("conditionType") or None)
            return BranchNode(
                id=node.id,
                condition_kind=condition_kind,
                condition_value=_as_text(data.get("value")) if expression is None else "",
                condition_expression=expression,
                then_branch=self._slot(node, "true"),
                else_branch=self._slot(node, "false") if kind == NodeType.IF else [],
                display_kind="if" if kind == NodeType.IF else "if_then",
            )
        if kind == NodeType.FOR_EACH_LINE:
            return ForEachLineNode(id=node.id, body=self._slot(node, "loop"))
        if kind == NodeType.SET_VARIABLE:
            return SetVariableNode(
                id=node.id,
                name=_as_text(data.get("name")).strip(),
                value_template=_as_text(data.get("value")),
            )
        if kind == NodeType.SET_VALUE:
            source = self._pin(node, "value")
            return SetVariableNode(
                id=node.id,
                name=_as_text(data.get("name")).strip(),
                value_template=_as_text(data.get("value")) if source is None else "",
                value_expression=self.expression(source, set()) if source is not None else None,
            )
        if kind == NodeType.GET_VARIABLE:
            return GetVariableNode(id=node.id, name=_as_text(data.get("name")).strip())
        if kind == NodeType.VARIABLE_REPORTER:
            return VariableReporterNode(id=node.id, name=_as_text(data.get("name")).strip())
        if kind in OPERATOR_TYPES:
            return OperatorNode(
                id=node.id,
                operator_kind=OperatorKind(kind.value),
                inputs=[self._operand_template(node, pin) for pin in OPERATOR_PINS[kind]],
            )
        if kind == NodeType.VALUE_INPUT:
            raise self._invalid(
                node,
                "a value block cannot be placed in the flow sequence.",
                "Plug it into another block's input instead",
            )
        raise UnknownBlockError(f"Unknown block type: {node.type}", node_ids=[node.id])

    def _pin_default(self, node: VisualNode, pin: str) -> str:
        data = node.data or {}
        defaults = data.get("pinDefaults")
        if isinstance(defaults, dict) and pin in defaults:
            return _as_text(defaults[pin])
        return _as_text(data.get(pin))

    def _operand_template(self, node: VisualNode, pin: str) -> str:
        source_id = self._pin(node, pin)
        if source_id is None:
            return self._pin_default(node, pin)
        self.used_values.add(source_id)
        source = self.nodes[source_id]
        kind = _node_type(source)
        if kind == NodeType.VALUE_INPUT:
            return _as_text((source.data or {}).get("value"))
        if kind in (NodeType.GET_VARIABLE, NodeType.VARIABLE_REPORTER):
            name = self._variable_name(source)
            return f'{{{{getVar("{name}")}}}}'
        raise self._invalid(
            node,
            f'{_label(source)} cannot feed the "{pin}" input of an operator placed in the flow sequence.',
            "Use a Value Input or Get Variable block for this input",
            "Or plug the operators into an If condition or Set Value block",
        )

    def _variable_name(self, node: VisualNode) -> str:
        name = _as_text((node.data or {}).get("name")).strip()
        if not name:
            raise self._invalid(node, "no variable selected.", "Pick a variable name in the block")
        return name

    def expression(self, node_id: str, visiting: Set[str]) -> Any:
        """Expression tree for the value block `node_id` and everything plugged into it."""
        if node_id in visiting:
            raise CycleError(
                f"Circular value connection at {_label(self.nodes[node_id])} block ({node_id}).",
                hint=["A value block cannot (indirectly) feed its own input"],
                node_ids=[node_id],
            )
        self.used_values.add(node_id)
        node = self.nodes[node_id]
        kind = _node_type(node)
        if kind == NodeType.VALUE_INPUT:
            return LiteralExpr(value=_as_text((node.data or {}).get("value")))
        if kind in (NodeType.GET_VARIABLE, NodeType.VARIABLE_REPORTER):
            return VariableExpr(name=self._variable_name(node))
        if kind in OPERATOR_TYPES:
            inner = visiting | {node_id}
            operands = []
            for pin in OPERATOR_PINS[kind]:
                source = self._pin(node, pin)
                if source is None:
                    operands.append(TemplateExpr(template=self._pin_default(node, pin)))
                else:
                    operands.append(self.expression(source, inner))
            return OperatorExpr(operator=OperatorKind(kind.value), operands=operands)
        raise self._invalid(
            node,
            "this block does not produce a value and cannot be plugged into an input.",
            "Use a Value Input, Get Variable or operator block here",
        )


def extract_flow(flow: VisualFlow, *, validate: bool = True) -> ExtractedFlow:
    """Extract the runnable node tree of `flow`.

    Raises a `StructuralError` subclass when the graph is not runnable. With
    `validate=True` (default) the start/end layout rules of `validate_flow()`
    are enforced as well.
    """
    if not flow.nodes:
        raise EmptyFlowError(
            "No blocks found in workspace.",
            hint=[
                "Add blocks from the sidebar",
                'Start with a "When Flow Runs" block',
                "Connect additional blocks to create your workflow",
            ],
        )

    nodes = _check_kinds(flow)
    start = _find_start(nodes)
    index = _index_edges(flow, nodes)
    reachable = _check_connected(start.id, nodes, index)

    builder = _Builder(nodes, index)
    extracted = ExtractedFlow(nodes=builder.chain(start.id), flow_id=flow.id)
    _check_all_used(reachable, nodes, extracted, builder.used_values)
    logger.debug(f"Extracted flow {flow.id}: {len(extracted.by_id)} block(s)")

    if validate:
        validate_flow(extracted)
    return extracted
