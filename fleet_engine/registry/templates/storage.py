# fleet_engine/registry/templates/storage.py
"""Storj storage node on the 500 GB USB drive (Raspberry Pi 3B+).

Runs outbound-only (empty ADDRESS), so no inbound port is declared.
Wallet, e-mail and allocation come from the node-side .env file.
"""

from fleet_engine.core.models import Role, WorkloadSpec


STORAGE_MOUNT = "/mnt/depin-storage"


STORAGE_WORKLOAD = WorkloadSpec(
    role=Role.STORAGE,
    name="storj-storage",
    image="storjlabs/storagenode:latest",
    cpu_limit=0.50,
    memory_limit_mb=512,
    memory_reservation_mb=128,
    environment={"ADDRESS": "", "LOG_LEVEL": "info"},
    volumes=[
        f"{STORAGE_MOUNT}/storj-data:/app/config",
        f"{STORAGE_MOUNT}/storj-identity/storagenode:/app/identity",
    ],
)
