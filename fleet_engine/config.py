# fleet_engine/config.py

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FleetSettings(BaseSettings):
    """Fleet orchestrator configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FLEET_",
        case_sensitive=False,
        extra="ignore"
    )

    # State store (SQLite file next to the operator by default)
    database_url: str = "sqlite:///fleet-state.db"
    echo_sql: bool = False

    # Inventory
    inventory_path: str = "inventory.yaml"
    local_node: Optional[str] = None

    # SSH transport
    ssh_user: str = "zpin"
    ssh_port: int = 22
    ssh_connect_timeout: int = Field(default=10, gt=0)
    ssh_options: List[str] = Field(default_factory=lambda: ["StrictHostKeyChecking=accept-new"])
    remote_sudo: bool = True

    # Timeouts (seconds)
    phase_timeout: int = Field(default=1800, gt=0)
    check_timeout: int = Field(default=15, gt=0)
    http_timeout: float = Field(default=5.0, gt=0)

    # Retry
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_base_delay: float = Field(default=10.0, ge=0)
    retry_factor: float = Field(default=3.0, ge=1)
    retry_max_delay: float = Field(default=300.0, ge=0)

    # Lease / records
    lease_seconds: int = Field(default=3600, gt=0)
    max_output_chars: int = Field(default=20000, gt=0)

    # Storage node
    storage_mount: str = "/mnt/depin-storage"
    storage_disk: str = "/dev/sda"
    storage_warn_percent: int = Field(default=85, ge=1, le=100)

    # Validator
    exposure_allowlist: List[int] = Field(default_factory=lambda: [22])

    # Fleet runner
    max_parallel_nodes: int = Field(default=4, gt=0)

    # Mesh VPN
    tailscale_auth_key: Optional[str] = None

    log_level: str = "INFO"


settings = FleetSettings()
