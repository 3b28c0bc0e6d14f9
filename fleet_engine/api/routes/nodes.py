# fleet_engine/api/routes/nodes.py
"""Read-only node and record routes."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from fleet_engine.api.dependencies import get_container
from fleet_engine.api.schemas.node import (
    ExecutionRecordResponse,
    NodeResponse,
    ResourceLimits,
)
from fleet_engine.core.errors import NodeNotFound
from fleet_engine.core.models import ExecutionRecord, Node, Role

router = APIRouter(prefix="/nodes", tags=["nodes"])


def node_to_response(node: Node) -> NodeResponse:
    return NodeResponse(
        identifier=node.identifier,
        hostname=node.hostname,
        role=node.role.value,
        hardware=node.hardware.name,
        mesh_address=node.mesh_address,
        management_host=node.management_host,
        lifecycle_state=node.lifecycle_state.value,
        run_status=node.run_status.value,
        blocked_phase=node.blocked_phase,
        blocked_kind=node.blocked_kind.value if node.blocked_kind else None,
        blocked_reason=node.blocked_reason,
        resources=ResourceLimits(
            cpu_limit=node.resources.cpu_limit,
            memory_limit_mb=node.resources.memory_limit_mb,
        ),
        updated_at=node.updated_at,
    )


def record_to_response(record: ExecutionRecord) -> ExecutionRecordResponse:
    return ExecutionRecordResponse(
        record_id=record.record_id,
        run_id=record.run_id,
        phase=record.phase,
        sequence=record.sequence,
        attempt=record.attempt,
        outcome=record.outcome.value,
        exit_code=record.exit_code,
        failure_kind=record.failure_kind.value if record.failure_kind else None,
        transport=record.transport,
        started_at=record.started_at,
        finished_at=record.finished_at,
        duration_seconds=record.duration_seconds,
        diagnostic=record.diagnostic(),
    )


@router.get("/", response_model=List[NodeResponse])
def list_nodes(
    role: Optional[Role] = None,
    container=Depends(get_container),
):
    """All nodes, optionally filtered by role."""
    return [node_to_response(node) for node in container.inventory.list_nodes(role)]


@router.get("/{node_id}", response_model=NodeResponse)
def get_node(node_id: str, container=Depends(get_container)):
    try:
        node = container.inventory.get(node_id)
    except NodeNotFound:
        raise HTTPException(status_code=404, detail="Node not found")
    return node_to_response(node)


@router.get("/{node_id}/records", response_model=List[ExecutionRecordResponse])
def list_records(
    node_id: str,
    phase: Optional[str] = None,
    limit: int = Query(default=50, gt=0, le=1000),
    container=Depends(get_container),
):
    """Execution records of a node, oldest first."""
    try:
        container.inventory.get(node_id)
    except NodeNotFound:
        raise HTTPException(status_code=404, detail="Node not found")

    records = container.record_repository.list_for_node(node_id, phase=phase, limit=limit)
    return [record_to_response(record) for record in records]
