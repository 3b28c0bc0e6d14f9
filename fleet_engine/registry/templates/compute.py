# fleet_engine/registry/templates/compute.py
"""On-demand compute workload (Jetson Nano)."""

from fleet_engine.core.models import Role, WorkloadSpec


COMPUTE_WORKLOAD = WorkloadSpec(
    role=Role.COMPUTE,
    name="compute-depin",
    image="compute-depin:latest",
    cpu_limit=0.50,
    memory_limit_mb=1024,
    memory_reservation_mb=256,
    environment={"TZ": "UTC", "NVIDIA_VISIBLE_DEVICES": "all"},
)
