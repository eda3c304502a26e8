"""Flow CRUD and execution routes."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException

from blockflow import config
from blockflow.conditions import SentimentClassifierProtocol
from blockflow.providers import ModelCaller

from ..models import (
    FlowCreateRequest,
    FlowRunRequest,
    FlowRunResult,
    FlowUpdateRequest,
    VisualFlow,
)
from ..services.executor import check_flow, execute_flow, get_model_caller, get_sentiment_classifier

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/flows", tags=["flows"])


# File-based persistence (one JSON file per flow in BLOCKFLOW_FLOWS_DIR).
def _flow_path(flow_id: str, *, create: bool = True) -> Path:
    return config.resolve_flows_dir(create=create) / f"{flow_id}.json"


def _load_flows_from_disk() -> Dict[str, VisualFlow]:
    """Load all flows from disk on startup."""
    flows: Dict[str, VisualFlow] = {}
    flows_dir = config.resolve_flows_dir(create=False)
    if not flows_dir.is_dir():
        return flows
    for path in sorted(flows_dir.glob("*.json")):
        try:
            flow = VisualFlow.model_validate(json.loads(path.read_text()))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load flow from {path}: {e}")
            continue
        flows[flow.id] = flow
        logger.info(f"Loaded flow '{flow.name}' ({flow.id}) from {path}")
    return flows


def _save_flow_to_disk(flow: VisualFlow) -> None:
    """Persist a single flow to disk."""
    path = _flow_path(flow.id)
    path.write_text(flow.model_dump_json(indent=2))
    logger.info(f"Saved flow '{flow.name}' ({flow.id}) to {path}")


def _delete_flow_from_disk(flow_id: str) -> None:
    """Remove a flow file from disk."""
    path = _flow_path(flow_id, create=False)
    if path.exists():
        path.unlink()
        logger.info(f"Deleted flow file {path}")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# Load existing flows from disk on module import
_flows: Dict[str, VisualFlow] = _load_flows_from_disk()


def _get_or_404(flow_id: str) -> VisualFlow:
    flow = _flows.get(flow_id)
    if flow is None:
        raise HTTPException(status_code=404, detail=f"Flow '{flow_id}' not found")
    return flow


@router.get("", response_model=List[VisualFlow])
async def list_flows():
    """List all saved flows."""
    return list(_flows.values())


@router.post("", response_model=VisualFlow)
async def create_flow(request: FlowCreateRequest):
    """Create a new flow with nodes and edges."""
    now = _now()
    flow = VisualFlow(
        id=str(uuid.uuid4())[:8],
        name=request.name,
        description=request.description,
        nodes=request.nodes,
        edges=request.edges,
        entryNode=request.entryNode,
        created_at=now,
        updated_at=now,
    )
    _flows[flow.id] = flow
    _save_flow_to_disk(flow)
    return flow


@router.get("/{flow_id}", response_model=VisualFlow)
async def get_flow(flow_id: str):
    """Get a specific flow by ID."""
    return _get_or_404(flow_id)


@router.put("/{flow_id}", response_model=VisualFlow)
async def update_flow(flow_id: str, request: FlowUpdateRequest):
    """Update an existing flow."""
    flow = _get_or_404(flow_id)

    if request.name is not None:
        flow.name = request.name
    if request.description is not None:
        flow.description = request.description
    if request.nodes is not None:
        flow.nodes = request.nodes
    if request.edges is not None:
        flow.edges = request.edges
    if request.entryNode is not None:
        flow.entryNode = request.entryNode

    flow.updated_at = _now()
    _flows[flow_id] = flow
    _save_flow_to_disk(flow)
    return flow


@router.delete("/{flow_id}")
async def delete_flow(flow_id: str):
    """Delete a flow."""
    _get_or_404(flow_id)
    del _flows[flow_id]
    _delete_flow_from_disk(flow_id)
    return {"status": "deleted", "id": flow_id}


@router.post("/{flow_id}/run", response_model=FlowRunResult)
async def run_flow(
    flow_id: str,
    request: Optional[FlowRunRequest] = None,
    model_caller: ModelCaller = Depends(get_model_caller),
    classifier: SentimentClassifierProtocol = Depends(get_sentiment_classifier),
):
    """Execute a flow and return per-block results.

    Structural problems come back as `success=False` with the formatted error;
    per-block runtime failures are reported inside `results`.
    """
    visual_flow = _get_or_404(flow_id)
    variables = request.variables if request is not None else {}
    return await execute_flow(visual_flow, variables, model_caller=model_caller, classifier=classifier)


@router.post("/{flow_id}/validate")
async def validate_flow(flow_id: str):
    """Validate a flow without executing it."""
    return check_flow(_get_or_404(flow_id))
