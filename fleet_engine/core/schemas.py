"""Pydantic schemas for the inventory file."""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fleet_engine.core.models import HARDWARE_CLASSES, Role


# ============================================
# Inventory file
# ============================================

class ResourceEntry(BaseModel):
    """Per-node resource limit overrides."""

    cpu_limit: Optional[float] = Field(default=None, gt=0, le=1)
    memory_limit_mb: Optional[int] = Field(default=None, gt=0)

    model_config = ConfigDict(extra="forbid")


class NodeEntry(BaseModel):
    """One node in inventory.yaml."""

    hostname: Optional[str] = None
    role: Role
    hardware: str
    management_host: Optional[str] = None
    resources: ResourceEntry = Field(default_factory=ResourceEntry)

    model_config = ConfigDict(extra="forbid")

    @field_validator("hardware")
    @classmethod
    def known_hardware(cls, value: str) -> str:
        if value not in HARDWARE_CLASSES:
            known = ", ".join(sorted(HARDWARE_CLASSES))
            raise ValueError(f"unknown hardware class '{value}' (known: {known})")
        return value


class InventoryDefaults(BaseModel):
    management_domain: Optional[str] = None


class InventoryFile(BaseModel):
    """Top-level inventory document."""

    defaults: InventoryDefaults = Field(default_factory=InventoryDefaults)
    nodes: Dict[str, NodeEntry] = Field(default_factory=dict)
