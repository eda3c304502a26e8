"""BlockFlow - extraction and execution engine for visual AI-block flows.

Typical use:
    >>> from blockflow import VisualFlow, run_visual_flow
    >>> result = asyncio.run(run_visual_flow(VisualFlow.model_validate(data)))
"""

from .core.nodes import ExtractedFlow
from .core.results import ExecutionResult, FlowRunResult
from .errors import FlowError, FlowExecutionError, StructuralError
from .executor import FlowExecutor
from .runner import FlowRunner, run_visual_flow
from .visual.extractor import extract_flow
from .visual.models import VisualEdge, VisualFlow, VisualNode
from .visual.validation import validate_flow

__version__ = "0.1.0"

__all__ = [
    "ExecutionResult",
    "ExtractedFlow",
    "FlowError",
    "FlowExecutionError",
    "FlowExecutor",
    "FlowRunResult",
    "FlowRunner",
    "StructuralError",
    "VisualEdge",
    "VisualFlow",
    "VisualNode",
    "extract_flow",
    "run_visual_flow",
    "validate_flow",
]
