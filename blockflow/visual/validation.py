"""Layout rules for an extracted flow.

A runnable flow starts with the "When Flow Runs" block and ends with an
"Output Result" block, or with an If block whose THEN and ELSE branches both
(recursively) end with one. Start never appears anywhere else; Output only
appears at the end of a sequence and never inside a loop body.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from ..core.nodes import (
    BranchNode,
    ExtractedFlow,
    ForEachLineNode,
    ModelNode,
    OutputNode,
    StartNode,
    TextInputNode,
    iter_nodes,
)
from ..errors import EmptyFlowError, FlowLayoutError
from ..templates import uses_input

logger = logging.getLogger(__name__)


def has_output_at_end(nodes: Sequence) -> bool:
    """True when every path through `nodes` finishes on an Output block."""
    if not nodes:
        return False
    last = nodes[-1]
    if isinstance(last, OutputNode):
        return True
    if isinstance(last, BranchNode):
        return has_output_at_end(last.then_branch) and has_output_at_end(last.else_branch)
    return False


def _position_error(node, position: str) -> FlowLayoutError:
    return FlowLayoutError(
        f"Invalid block {position}: {node.display_name} ({node.id}).",
        hint=[
            '"When Flow Runs" can only be the first block of the flow',
            '"Output Result" can only be the last block of a sequence',
            "Move or remove the block",
        ],
        node_ids=[node.id],
    )


def _check_nested(nodes: Sequence, *, output_allowed_at_end: bool, where: str) -> None:
    for i, node in enumerate(nodes):
        if isinstance(node, StartNode):
            raise _position_error(node, f"inside {where}")
        if isinstance(node, OutputNode):
            if not output_allowed_at_end or i != len(nodes) - 1:
                raise _position_error(node, f"inside {where}")
        _check_children(node)


def _check_children(node) -> None:
    if isinstance(node, BranchNode):
        _check_nested(node.then_branch, output_allowed_at_end=True, where=f"the THEN branch of {node.display_name}")
        _check_nested(node.else_branch, output_allowed_at_end=True, where=f"the ELSE branch of {node.display_name}")
    elif isinstance(node, ForEachLineNode):
        _check_nested(node.body, output_allowed_at_end=False, where=f"the body of {node.display_name}")


def _input_warnings(flow: ExtractedFlow) -> List[str]:
    warnings: List[str] = []
    seen_text_input = False
    for node in iter_nodes(flow.nodes):
        if isinstance(node, TextInputNode):
            seen_text_input = True
        elif isinstance(node, ModelNode) and not seen_text_input and uses_input(node.prompt_template):
            warnings.append(
                f"{node.display_name} block ({node.id}) references {{{{input}}}} but no Text Input provides data. "
                'Add a Text Input block, remove {{input}} from the prompt, or use {{getVar("varName")}}.'
            )
    return warnings


def validate_flow(flow: ExtractedFlow) -> List[str]:
    """Check the start/end layout of `flow`.

    Raises `FlowLayoutError` on the first violation and returns a (possibly
    empty) list of advisory warnings, which are also logged.
    """
    nodes = flow.nodes
    if not nodes:
        raise EmptyFlowError(
            "No blocks found in workspace.",
            hint=['Add a "When Flow Runs" block to start your flow', "Connect additional blocks to create your workflow"],
        )

    first = nodes[0]
    if not isinstance(first, StartNode):
        raise FlowLayoutError(
            f'Flow must start with a "When Flow Runs" block. Current first block: {first.display_name}',
            hint=[
                'Drag a "When Flow Runs" block from the sidebar',
                "Connect it to the beginning of your flow",
                "Make sure no other blocks come before it",
            ],
            node_ids=[first.id],
        )

    last = nodes[-1]
    if isinstance(last, BranchNode) and len(nodes) > 1:
        for arm, label in ((last.then_branch, "THEN"), (last.else_branch, "ELSE")):
            if not has_output_at_end(arm):
                raise FlowLayoutError(
                    f'{last.display_name} block\'s {label} branch must end with an "Output Result" block.',
                    hint=[
                        f'Add an "Output Result" block to the end of the {label} branch',
                        "Make sure both THEN and ELSE branches end with output blocks",
                        'Or add an "Output Result" block after the If block',
                    ],
                    node_ids=[last.id],
                )
    elif not isinstance(last, OutputNode):
        raise FlowLayoutError(
            f'Flow must end with an "Output Result" block. Current last block: {last.display_name}',
            hint=[
                'Drag an "Output Result" block from the sidebar',
                "Connect it to the end of your flow",
                "Make sure no other blocks come after it",
            ],
            node_ids=[last.id],
        )

    for position, node in enumerate(nodes):
        if position > 0 and isinstance(node, StartNode):
            raise _position_error(node, f"at position {position + 1}")
        if position < len(nodes) - 1 and isinstance(node, OutputNode):
            raise _position_error(node, f"at position {position + 1}")
        _check_children(node)

    warnings = _input_warnings(flow)
    for w in warnings:
        logger.warning(w)
    return warnings
