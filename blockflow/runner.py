"""FlowRunner - extracts, validates and executes visual flows."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .conditions import SentimentClassifierProtocol
from .core.nodes import ExtractedFlow
from .core.results import FlowRunResult
from .errors import StructuralError
from .executor import FlowExecutor
from .providers import ModelCaller
from .visual.extractor import extract_flow
from .visual.models import VisualFlow
from .visual.validation import validate_flow

logger = logging.getLogger(__name__)


class FlowRunner:
    """Runs one visual flow.

    FlowRunner provides a high-level interface for running flows. It handles:
    - Extracting the node tree from the editor graph
    - Checking the start/end layout rules
    - Executing the tree with a `FlowExecutor`

    Structural errors are raised by `extract()`; `run()` turns them into a
    failed `FlowRunResult` so hosts can return them as-is.

    Example:
        >>> runner = FlowRunner(visual_flow, model_caller=my_caller)
        >>> result = asyncio.run(runner.run())
        >>> result.output
    """

    def __init__(
        self,
        flow: VisualFlow,
        *,
        model_caller: Optional[ModelCaller] = None,
        classifier: Optional[SentimentClassifierProtocol] = None,
        executor: Optional[FlowExecutor] = None,
    ):
        """Initialize a FlowRunner.

        Args:
            flow: The editor graph to run
            model_caller: Optional Model Caller for LLM blocks
            classifier: Optional sentiment classifier for `ai_sentiment` conditions
            executor: Optional pre-built executor (overrides the two above)
        """
        self.flow = flow
        self.executor = executor or FlowExecutor(model_caller=model_caller, classifier=classifier)
        self._extracted: Optional[ExtractedFlow] = None
        self.warnings: List[str] = []

    def extract(self) -> ExtractedFlow:
        """Extract and validate the flow (cached).

        Raises:
            StructuralError: If the graph is not runnable
        """
        if self._extracted is None:
            extracted = extract_flow(self.flow, validate=False)
            self.warnings = validate_flow(extracted)
            self._extracted = extracted
        return self._extracted

    async def run(self, variables: Optional[Dict[str, str]] = None) -> FlowRunResult:
        """Execute the flow to completion."""
        try:
            extracted = self.extract()
        except StructuralError as e:
            logger.warning(f"Flow {self.flow.id} is not runnable: {e.message}")
            return FlowRunResult(success=False, error=str(e), flow_id=self.flow.id)

        result = await self.executor.run(extracted, variables=variables)
        logger.info(f"Flow {self.flow.id} finished: {len(result.results)} block result(s)")
        return result


async def run_visual_flow(
    flow: VisualFlow,
    *,
    model_caller: Optional[ModelCaller] = None,
    classifier: Optional[SentimentClassifierProtocol] = None,
    variables: Optional[Dict[str, str]] = None,
) -> FlowRunResult:
    """Extract, validate and execute `flow` in one call."""
    runner = FlowRunner(flow, model_caller=model_caller, classifier=classifier)
    return await runner.run(variables)
