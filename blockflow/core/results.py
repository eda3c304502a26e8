"""Per-node and per-run execution results."""

from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ExecutionResult(BaseModel):
    """What one node produced, as shown on the block in the editor."""

    model_config = ConfigDict(populate_by_name=True)

    output: str
    model: Optional[str] = None
    tokens: Optional[int] = None
    latency_ms: Optional[int] = Field(default=None, alias="latencyMs")

    @property
    def has_metrics(self) -> bool:
        return self.model is not None


class FlowRunResult(BaseModel):
    """Result of a flow execution."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    results: Dict[str, ExecutionResult] = Field(default_factory=dict)
    # Data seen by the last Output node that ran.
    output: Optional[str] = None
    variables: Dict[str, str] = Field(default_factory=dict)
    error: Optional[str] = None
    flow_id: Optional[str] = Field(default=None, alias="flowId")


def format_results(results: Dict[str, ExecutionResult]) -> str:
    """Plain-text rendering of a result map (one paragraph per node)."""
    out = []
    for node_id, result in results.items():
        lines = [f"Block {node_id}:", f"Output: {result.output}"]
        if result.model:
            lines.append(f"Model: {result.model}")
        if result.latency_ms is not None:
            lines.append(f"Latency: {result.latency_ms}ms")
        if result.tokens is not None:
            lines.append(f"Tokens: {result.tokens}")
        out.append("\n".join(lines))
    return "\n\n".join(out)
