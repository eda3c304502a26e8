"""Flow execution service (web backend).

This module is intentionally thin: the portable implementation lives in
`blockflow.runner` / `blockflow.executor` so visual flows can run from non-web
hosts. The two factories below are FastAPI dependencies, so tests can swap the
provider client with `app.dependency_overrides`.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from blockflow.conditions import SentimentClassifierProtocol
from blockflow.core.results import FlowRunResult
from blockflow.errors import StructuralError
from blockflow.providers import HttpModelCaller, ModelCaller, SentimentClassifier
from blockflow.runner import FlowRunner
from blockflow.visual.extractor import extract_flow
from blockflow.visual.models import VisualFlow
from blockflow.visual.validation import validate_flow


def get_model_caller() -> ModelCaller:
    """Model Caller used by flow runs and `/api/llm` (configured from env)."""
    return HttpModelCaller()


def get_sentiment_classifier() -> SentimentClassifierProtocol:
    return SentimentClassifier()


async def execute_flow(
    visual_flow: VisualFlow,
    variables: Optional[Dict[str, str]] = None,
    *,
    model_caller: Optional[ModelCaller] = None,
    classifier: Optional[SentimentClassifierProtocol] = None,
) -> FlowRunResult:
    """Execute a visual flow and return the normalized run result."""
    runner = FlowRunner(visual_flow, model_caller=model_caller, classifier=classifier)
    return await runner.run(variables)


def check_flow(visual_flow: VisualFlow) -> Dict[str, object]:
    """Validate a flow without executing it."""
    errors: List[str] = []
    warnings: List[str] = []
    try:
        warnings = validate_flow(extract_flow(visual_flow, validate=False))
    except StructuralError as e:
        errors.append(str(e))
    return {"valid": not errors, "errors": errors, "warnings": warnings}
