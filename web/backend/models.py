"""Web backend models.

The web backend re-exports the portable visual-flow models from
`blockflow.visual.models` so other hosts (the CLI, tests) can reuse the same
JSON schema without importing the backend package. Request/response bodies of
the model endpoints (`/api/llm`, `/api/sentiment`) are backend-only.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from blockflow.core.results import ExecutionResult, FlowRunResult  # noqa: F401
from blockflow.visual.models import (  # noqa: F401
    FlowCreateRequest,
    FlowRunRequest,
    FlowUpdateRequest,
    NodeType,
    Position,
    VisualEdge,
    VisualFlow,
    VisualNode,
)


class LLMRequest(BaseModel):
    """Body of `POST /api/llm`."""

    model: str = ""
    prompt: str = ""
    temperature: Optional[float] = None
    maxTokens: Optional[int] = None
    topP: Optional[float] = None


class LLMResponse(BaseModel):
    output: str
    latencyMs: int
    tokens: int
    cost: float


class SentimentRequest(BaseModel):
    text: str = ""


class SentimentResponse(BaseModel):
    sentiment: str
    text: str


__all__ = [
    "ExecutionResult",
    "FlowCreateRequest",
    "FlowRunRequest",
    "FlowRunResult",
    "FlowUpdateRequest",
    "LLMRequest",
    "LLMResponse",
    "NodeType",
    "Position",
    "SentimentRequest",
    "SentimentResponse",
    "VisualEdge",
    "VisualFlow",
    "VisualNode",
]
