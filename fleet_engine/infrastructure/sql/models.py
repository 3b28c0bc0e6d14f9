# fleet_engine/infrastructure/sql/models.py
"""SQLAlchemy ORM models for the fleet state store."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, DateTime, Enum as SQLEnum, Index, Text, Float, Uuid
)

from fleet_engine.core.models import (
    FailureKind, LifecycleState, RecordOutcome, Role, RunStatus
)
from fleet_engine.infrastructure.sql.database import Base


class NodeORM(Base):
    """
    Nodes table - inventory and lifecycle state.

    Indexes:
    - Primary key on identifier
    - Index on role for role-wide provisioning
    """

    __tablename__ = "nodes"

    # Identity
    identifier = Column(String(64), primary_key=True)
    hostname = Column(String(255), nullable=True)
    role = Column(SQLEnum(Role, name="node_role"), nullable=False, index=True)
    hardware_class = Column(String(64), nullable=False)

    # Network
    mesh_address = Column(String(64), nullable=True)
    management_host = Column(String(255), nullable=True)

    # Lifecycle
    lifecycle_state = Column(
        SQLEnum(LifecycleState, name="lifecycle_state"),
        nullable=False,
        default=LifecycleState.UNPROVISIONED,
    )

    # Engine state
    run_status = Column(
        SQLEnum(RunStatus, name="run_status"),
        nullable=False,
        default=RunStatus.PENDING,
    )
    blocked_phase = Column(String(64), nullable=True)
    blocked_kind = Column(SQLEnum(FailureKind, name="failure_kind"), nullable=True)
    blocked_reason = Column(Text, nullable=True)

    # Lease management
    lease_owner = Column(String(255), nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)

    # Resource overrides
    cpu_limit = Column(Float, nullable=True)
    memory_limit_mb = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<NodeORM({self.identifier}, {self.role}, {self.lifecycle_state})>"


class ExecutionRecordORM(Base):
    """
    Execution records table - append-only audit log.

    Indexes:
    - Composite index on (node_id, phase) for latest-outcome lookups
    - Composite index on (node_id, run_id, sequence, attempt) for ordered replay
    """

    __tablename__ = "execution_records"

    # Surrogate ordering key (insertion order)
    id = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(Uuid, nullable=False, unique=True, default=uuid4)

    node_id = Column(String(64), nullable=False)
    phase = Column(String(64), nullable=False)
    run_id = Column(Uuid, nullable=True)
    sequence = Column(Integer, nullable=True)
    attempt = Column(Integer, nullable=False, default=1)

    outcome = Column(SQLEnum(RecordOutcome, name="record_outcome"), nullable=False)
    failure_kind = Column(SQLEnum(FailureKind, name="record_failure_kind"), nullable=True)
    exit_code = Column(Integer, nullable=True)
    transport = Column(String(16), nullable=False, default="local")

    started_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=False)

    # Diagnostics
    stdout = Column(Text, nullable=False, default="")
    stderr = Column(Text, nullable=False, default="")
    message = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_records_node_phase", "node_id", "phase"),
        Index("idx_records_node_run", "node_id", "run_id", "sequence", "attempt"),
    )

    def __repr__(self):
        return f"<ExecutionRecordORM({self.node_id}, {self.phase}, {self.outcome})>"
