# fleet_engine/api/routes/roles.py
from fastapi import APIRouter, Depends, HTTPException

from fleet_engine.api.dependencies import get_container
from fleet_engine.api.schemas.node import HealthEndpointResponse, WorkloadResponse
from fleet_engine.core.errors import NoWorkloadDefined
from fleet_engine.core.models import Role

router = APIRouter(prefix="/roles", tags=["roles"])


@router.get("/{role}/workload", response_model=WorkloadResponse)
def get_workload(role: Role, container=Depends(get_container)):
    registry = container.registry
    try:
        spec = registry.workload_for(role)
    except NoWorkloadDefined:
        raise HTTPException(status_code=404, detail=f"No workload defined for {role.value}")

    return WorkloadResponse(
        role=spec.role.value,
        name=spec.name,
        image=spec.image,
        standby_only=spec.standby_only,
        cpu_limit=spec.cpu_limit,
        memory_limit_mb=spec.memory_limit_mb,
        inbound_ports=spec.inbound_ports,
        labels=spec.labels,
        health_endpoints=[
            HealthEndpointResponse(name=e.name, port=e.port, path=e.path)
            for e in registry.health_endpoints_for(role)
        ],
    )
