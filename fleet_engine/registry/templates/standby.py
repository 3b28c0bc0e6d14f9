# fleet_engine/registry/templates/standby.py
"""GPU workstation kept on standby: explicitly no workload."""

from fleet_engine.core.models import Role, WorkloadSpec


STANDBY_WORKLOAD = WorkloadSpec(
    role=Role.STANDBY,
    name="standby",
    image=None,
    cpu_limit=0.0,
    memory_limit_mb=0,
    standby_only=True,
)
