# fleet_engine/registry/templates/bandwidth.py
"""Bandwidth-sharing workload (Raspberry Pi 4)."""

from fleet_engine.core.models import Role, WorkloadSpec


BANDWIDTH_WORKLOAD = WorkloadSpec(
    role=Role.BANDWIDTH,
    name="bandwidth-depin",
    # Replace with the chosen network's image before deploying
    image="bandwidth-depin:latest",
    cpu_limit=0.60,
    memory_limit_mb=1536,
    memory_reservation_mb=256,
    environment={"TZ": "UTC"},
)
