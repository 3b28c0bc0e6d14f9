"""Test node and execution record repositories (SQLite and in-memory)."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from fleet_engine.core.errors import DuplicateNode, NodeNotFound
from fleet_engine.core.models import (
    ExecutionRecord,
    FailureKind,
    LifecycleState,
    RecordOutcome,
    ResourceOverride,
    Role,
)
from fleet_engine.infrastructure.memory.repository import (
    InMemoryExecutionRecordRepository,
    InMemoryNodeRepository,
)


@pytest.fixture(params=["sql", "memory"])
def nodes(request, node_repo):
    if request.param == "sql":
        return node_repo
    return InMemoryNodeRepository()


@pytest.fixture(params=["sql", "memory"])
def records(request, record_repo):
    if request.param == "sql":
        return record_repo
    return InMemoryExecutionRecordRepository()


def _record(phase, outcome=RecordOutcome.SUCCESS, node_id="pi3-1", **kwargs):
    return ExecutionRecord(node_id=node_id, phase=phase, outcome=outcome, **kwargs)


class TestNodeRepository:
    """Node persistence."""

    # -------------------------
    # CREATE / READ
    # -------------------------

    def test_create_and_get(self, nodes, make_node):
        """Test creating and reading a node."""
        node = make_node("pi3-1", resources=ResourceOverride(cpu_limit=0.5, memory_limit_mb=512))
        nodes.create(node)

        stored = nodes.get("pi3-1")

        assert stored is not None
        assert stored.role == Role.STORAGE
        assert stored.hardware.name == "rpi3b+"
        assert stored.hostname == "zpin-pi3-1"
        assert stored.resources.cpu_limit == 0.5
        assert stored.resources.memory_limit_mb == 512
        assert stored.created_at.tzinfo is not None

    def test_create_duplicate_fails(self, nodes, make_node):
        """Test creating a duplicate node fails."""
        nodes.create(make_node("pi3-1"))

        with pytest.raises(DuplicateNode):
            nodes.create(make_node("pi3-1"))

    def test_get_missing(self, nodes):
        """Test getting a node that doesn't exist."""
        assert nodes.get("ghost") is None

    def test_list_filters_by_role(self, nodes, make_node):
        """Test listing nodes sorted and filtered by role."""
        nodes.create(make_node("b", role=Role.INDEXING))
        nodes.create(make_node("a", role=Role.STORAGE))
        nodes.create(make_node("c", role=Role.STORAGE))

        assert [n.identifier for n in nodes.list()] == ["a", "b", "c"]
        assert [n.identifier for n in nodes.list(Role.STORAGE)] == ["a", "c"]

    # -------------------------
    # UPDATE
    # -------------------------

    def test_update_persists_engine_state(self, nodes, make_node):
        """Test update persists lifecycle and block fields."""
        nodes.create(make_node("pi3-1"))
        node = nodes.get("pi3-1")
        node.lifecycle_state = LifecycleState.NETWORKED
        node.mesh_address = "100.64.0.3"
        node.block("storage-prep", FailureKind.ENVIRONMENT, "no disk at /dev/sda")

        nodes.update(node)
        stored = nodes.get("pi3-1")

        assert stored.lifecycle_state == LifecycleState.NETWORKED
        assert stored.mesh_address == "100.64.0.3"
        assert stored.blocked_phase == "storage-prep"
        assert stored.blocked_kind == FailureKind.ENVIRONMENT
        assert stored.blocked_reason == "no disk at /dev/sda"

    def test_update_missing_fails(self, nodes, make_node):
        """Test updating a node that doesn't exist."""
        with pytest.raises(NodeNotFound):
            nodes.update(make_node("ghost"))

    # -------------------------
    # LEASE
    # -------------------------

    def test_claim_is_exclusive(self, nodes, make_node):
        """Test only one owner can claim a node."""
        nodes.create(make_node("pi3-1"))

        first = nodes.try_claim("pi3-1", "worker-1", 60)
        second = nodes.try_claim("pi3-1", "worker-2", 60)

        assert first is not None and first.lease_owner == "worker-1"
        assert second is None

    def test_claim_is_reentrant_for_owner(self, nodes, make_node):
        """Test the holder can claim again."""
        nodes.create(make_node("pi3-1"))
        nodes.try_claim("pi3-1", "worker-1", 60)

        assert nodes.try_claim("pi3-1", "worker-1", 60) is not None

    def test_expired_lease_can_be_taken(self, nodes, make_node):
        """Test an expired lease can be taken over."""
        nodes.create(make_node("pi3-1"))
        nodes.try_claim("pi3-1", "worker-1", -5)

        claimed = nodes.try_claim("pi3-1", "worker-2", 60)

        assert claimed is not None
        assert claimed.lease_owner == "worker-2"

    def test_renew_keeps_owner_past_expiry(self, nodes, make_node):
        """Test renewing an expired lease nobody took."""
        nodes.create(make_node("pi3-1"))
        nodes.try_claim("pi3-1", "worker-1", -5)

        renewed = nodes.renew("pi3-1", "worker-1", 60)

        assert renewed is not None
        assert renewed.lease_owner == "worker-1"
        assert nodes.try_claim("pi3-1", "worker-2", 60) is None

    def test_renew_refused_after_takeover(self, nodes, make_node):
        """Test renewing a lease that was taken over."""
        nodes.create(make_node("pi3-1"))
        nodes.try_claim("pi3-1", "worker-1", -5)
        nodes.try_claim("pi3-1", "worker-2", 60)

        assert nodes.renew("pi3-1", "worker-1", 60) is None
        assert nodes.get("pi3-1").lease_owner == "worker-2"

    def test_renew_missing_node(self, nodes):
        """Test renewing a lease on an unknown node."""
        with pytest.raises(NodeNotFound):
            nodes.renew("ghost", "worker-1", 60)

    def test_claim_missing_node(self, nodes):
        """Test claiming an unknown node."""
        with pytest.raises(NodeNotFound):
            nodes.try_claim("ghost", "worker-1", 60)

    def test_update_does_not_touch_lease(self, nodes, make_node):
        """Test update leaves lease columns alone."""
        nodes.create(make_node("pi3-1"))
        stale = nodes.get("pi3-1")
        nodes.try_claim("pi3-1", "worker-1", 60)

        nodes.update(stale)

        assert nodes.get("pi3-1").lease_owner == "worker-1"


class TestExecutionRecordRepository:
    """Append-only audit trail."""

    def test_append_and_list_in_order(self, records):
        """Test records come back in append order."""
        run_id = uuid4()
        for sequence, phase in enumerate(["base", "secure", "container"], start=1):
            records.append(_record(phase, run_id=run_id, sequence=sequence))

        listed = records.list_for_node("pi3-1")

        assert [r.phase for r in listed] == ["base", "secure", "container"]
        assert [r.sequence for r in listed] == [1, 2, 3]
        assert all(r.run_id == run_id for r in listed)

    def test_round_trip_fields(self, records):
        """Test every record field is stored."""
        started = datetime.now(timezone.utc) - timedelta(seconds=3)
        records.append(_record(
            "secure",
            outcome=RecordOutcome.FAILURE,
            sequence=2,
            attempt=3,
            started_at=started,
            exit_code=1,
            failure_kind=FailureKind.TRANSIENT,
            transport="ssh",
            stdout="partial",
            stderr="Could not get lock /var/lib/dpkg/lock-frontend",
        ))

        (record,) = records.list_for_node("pi3-1")

        assert record.outcome == RecordOutcome.FAILURE
        assert record.attempt == 3
        assert record.exit_code == 1
        assert record.failure_kind == FailureKind.TRANSIENT
        assert record.transport == "ssh"
        assert record.duration_seconds >= 3 - 1
        assert record.diagnostic() == "Could not get lock /var/lib/dpkg/lock-frontend"

    def test_filter_by_phase_and_limit(self, records):
        """Test filtering by phase and keeping the newest records."""
        for attempt in range(1, 5):
            records.append(_record("secure", RecordOutcome.FAILURE, sequence=2, attempt=attempt))
        records.append(_record("base", sequence=1))

        secure = records.list_for_node("pi3-1", phase="secure")
        newest = records.list_for_node("pi3-1", limit=2)

        assert len(secure) == 4
        assert [r.attempt for r in newest] == [4, 1]
        assert [r.phase for r in newest] == ["secure", "base"]

    def test_latest_by_phase_ignores_checks(self, records):
        """Test check records do not count as phase results."""
        records.append(_record("network", RecordOutcome.FAILURE, sequence=4))
        records.append(_record("network", RecordOutcome.SUCCESS, sequence=4, attempt=2))
        records.append(_record("check:exposure", RecordOutcome.FAILURE))

        latest = records.latest_by_phase("pi3-1")

        assert set(latest) == {"network"}
        assert latest["network"].succeeded

    def test_ever_succeeded(self, records):
        """Test success lookup per node and phase."""
        records.append(_record("storage-identity", RecordOutcome.SUCCESS, sequence=7))
        records.append(_record("storage-identity", RecordOutcome.FAILURE, sequence=7))

        assert records.ever_succeeded("pi3-1", "storage-identity")
        assert not records.ever_succeeded("pi3-1", "storage-prep")
        assert not records.ever_succeeded("pi3-2", "storage-identity")

    def test_records_are_per_node(self, records):
        """Test records are scoped to their node."""
        records.append(_record("base", node_id="pi3-1", sequence=1))
        records.append(_record("base", node_id="pi3-2", sequence=1))

        assert len(records.list_for_node("pi3-1")) == 1

    @pytest.mark.parametrize("limit", [0, -1])
    def test_non_positive_limit_returns_nothing(self, records, limit):
        """Test a zero or negative limit keeps no records."""
        records.append(_record("base", sequence=1))

        assert records.list_for_node("pi3-1", limit=limit) == []
