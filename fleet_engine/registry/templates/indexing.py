# fleet_engine/registry/templates/indexing.py
"""Indexing workload (Raspberry Pi 3B+)."""

from fleet_engine.core.models import Role, WorkloadSpec


INDEXING_WORKLOAD = WorkloadSpec(
    role=Role.INDEXING,
    name="indexing-depin",
    image="indexing-depin:latest",
    cpu_limit=0.50,
    memory_limit_mb=512,
    memory_reservation_mb=128,
    environment={"TZ": "UTC"},
)
