from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel


class ResourceLimits(BaseModel):
    cpu_limit: Optional[float] = None
    memory_limit_mb: Optional[int] = None


class NodeResponse(BaseModel):
    identifier: str
    hostname: Optional[str]
    role: str
    hardware: str
    mesh_address: Optional[str]
    management_host: Optional[str]
    lifecycle_state: str
    run_status: str
    blocked_phase: Optional[str] = None
    blocked_kind: Optional[str] = None
    blocked_reason: Optional[str] = None
    resources: ResourceLimits
    updated_at: datetime


class ExecutionRecordResponse(BaseModel):
    record_id: UUID
    run_id: Optional[UUID]
    phase: str
    sequence: Optional[int]
    attempt: int
    outcome: str
    exit_code: Optional[int]
    failure_kind: Optional[str]
    transport: str
    started_at: datetime
    finished_at: datetime
    duration_seconds: float
    diagnostic: str


class HealthEndpointResponse(BaseModel):
    name: str
    port: int
    path: str


class WorkloadResponse(BaseModel):
    role: str
    name: str
    image: Optional[str]
    standby_only: bool
    cpu_limit: float
    memory_limit_mb: int
    inbound_ports: List[int]
    labels: Dict[str, str]
    health_endpoints: List[HealthEndpointResponse]
