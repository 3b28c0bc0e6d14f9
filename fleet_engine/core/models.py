"""Core domain models."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4


class Role(Enum):
    """Fixed function a node plays in the fleet."""

    BANDWIDTH = "bandwidth"
    STORAGE = "storage"
    INDEXING = "indexing"
    MONITORING = "monitoring"
    COMPUTE = "compute"
    STANDBY = "standby"


class LifecycleState(Enum):
    """Node lifecycle, in provisioning order."""

    UNPROVISIONED = "unprovisioned"
    BASE_READY = "base-ready"
    SECURED = "secured"
    CONTAINERIZED = "containerized"
    NETWORKED = "networked"
    ROLE_DEPLOYED = "role-deployed"
    VALIDATED = "validated"

    @property
    def rank(self) -> int:
        return list(LifecycleState).index(self)


class RunStatus(Enum):
    """Phase engine state of a node."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    BLOCKED = "BLOCKED"
    COMPLETE = "COMPLETE"


class FailureKind(Enum):
    TRANSIENT = "transient"
    CONFIGURATION = "configuration"
    ENVIRONMENT = "environment"


class RecordOutcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class HardwareClass:
    """CPU and memory budget of a device model."""

    name: str
    cpu_cores: int
    memory_mb: int
    architecture: str = "arm64"


HARDWARE_CLASSES: Dict[str, HardwareClass] = {
    hw.name: hw
    for hw in (
        HardwareClass("rpi4", cpu_cores=4, memory_mb=4096, architecture="arm64"),
        HardwareClass("rpi3b+", cpu_cores=4, memory_mb=1024, architecture="armhf"),
        HardwareClass("jetson-nano", cpu_cores=4, memory_mb=2048, architecture="arm64"),
        HardwareClass("gpu-workstation", cpu_cores=16, memory_mb=65536, architecture="amd64"),
        HardwareClass("laptop", cpu_cores=8, memory_mb=16384, architecture="amd64"),
    )
}


@dataclass
class ResourceOverride:
    """Per-node resource limits replacing the role template values."""

    cpu_limit: Optional[float] = None
    memory_limit_mb: Optional[int] = None


@dataclass
class Node:
    """Fleet node with lifecycle and engine state."""

    # Identity
    identifier: str
    role: Role
    hardware: HardwareClass
    hostname: Optional[str] = None

    # Network
    mesh_address: Optional[str] = None
    management_host: Optional[str] = None

    # Lifecycle
    lifecycle_state: LifecycleState = LifecycleState.UNPROVISIONED

    # Engine state
    run_status: RunStatus = RunStatus.PENDING
    blocked_phase: Optional[str] = None
    blocked_kind: Optional[FailureKind] = None
    blocked_reason: Optional[str] = None

    # Lease management
    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None

    # Overrides from the inventory file
    resources: ResourceOverride = field(default_factory=ResourceOverride)

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Optimistic concurrency
    version: int = 0

    # -------------------------
    # ENGINE STATE
    # -------------------------

    def start_run(self) -> None:
        """Transition to RUNNING."""
        if self.run_status == RunStatus.BLOCKED:
            raise ValueError(f"Cannot start {self.identifier} while blocked")

        self.run_status = RunStatus.RUNNING
        self._touch()

    def block(self, phase: str, kind: FailureKind, reason: str) -> None:
        """Transition to BLOCKED with the failing phase and reason."""
        self.run_status = RunStatus.BLOCKED
        self.blocked_phase = phase
        self.blocked_kind = kind
        self.blocked_reason = reason
        self._touch()

    def clear_block(self) -> None:
        """Operator clears a BLOCKED node back to PENDING."""
        self.run_status = RunStatus.PENDING
        self.blocked_phase = None
        self.blocked_kind = None
        self.blocked_reason = None
        self._touch()

    def complete(self) -> None:
        if self.run_status != RunStatus.RUNNING:
            raise ValueError(f"Cannot complete from {self.run_status.value} state")

        self.run_status = RunStatus.COMPLETE
        self._touch()

    def settle(self) -> None:
        """Return a RUNNING node to PENDING (cancelled or single-phase run)."""
        if self.run_status == RunStatus.RUNNING:
            self.run_status = RunStatus.PENDING
            self._touch()

    def is_blocked(self) -> bool:
        return self.run_status == RunStatus.BLOCKED

    # -------------------------
    # LEASE
    # -------------------------

    def lease_is_held(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        if not self.lease_owner or not self.lease_expires_at:
            return False
        return _aware(self.lease_expires_at) > now

    def take_lease(self, owner: str, lease_seconds: int) -> None:
        self.lease_owner = owner
        self.lease_expires_at = datetime.now(timezone.utc) + timedelta(seconds=lease_seconds)
        self.version += 1

    def drop_lease(self) -> None:
        self.lease_owner = None
        self.lease_expires_at = None
        self.version += 1

    def _touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)
        self.version += 1


@dataclass
class ExecutionRecord:
    """One executor invocation against a node, appended to the audit log."""

    node_id: str
    phase: str
    outcome: RecordOutcome

    record_id: UUID = field(default_factory=uuid4)
    run_id: Optional[UUID] = None

    # Ordering: check records carry no sequence
    sequence: Optional[int] = None
    attempt: int = 1

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Diagnostics
    exit_code: Optional[int] = None
    failure_kind: Optional[FailureKind] = None
    transport: str = "local"
    stdout: str = ""
    stderr: str = ""
    message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == RecordOutcome.SUCCESS

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def diagnostic(self) -> str:
        """Last non-empty line of output, preferring stderr."""
        for text in (self.stderr, self.stdout, self.message or ""):
            lines = [line for line in text.strip().splitlines() if line.strip()]
            if lines:
                return lines[-1].strip()
        return ""


@dataclass(frozen=True)
class HealthEndpoint:
    """HTTP endpoint checked by the validator."""

    name: str
    port: int
    path: str = "/"


@dataclass
class WorkloadSpec:
    """Container workload assigned to a role."""

    role: Role
    name: str
    image: Optional[str] = None

    # Resource limits
    cpu_limit: float = 0.5
    memory_limit_mb: int = 512
    memory_reservation_mb: Optional[int] = None

    # Exposure policy (outbound-only by default)
    inbound_ports: List[int] = field(default_factory=list)
    inbound_override: bool = False

    health_endpoints: List[HealthEndpoint] = field(default_factory=list)
    environment: Dict[str, str] = field(default_factory=dict)
    volumes: List[str] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    extra_services: List[Dict[str, Any]] = field(default_factory=list)

    # Role declares zero workload
    standby_only: bool = False

    def with_limits(self, override: ResourceOverride) -> "WorkloadSpec":
        """Copy with per-node overrides applied."""
        return replace(
            self,
            cpu_limit=override.cpu_limit if override.cpu_limit is not None else self.cpu_limit,
            memory_limit_mb=(
                override.memory_limit_mb
                if override.memory_limit_mb is not None
                else self.memory_limit_mb
            ),
        )


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
