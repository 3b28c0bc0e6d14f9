# fleet_engine/infrastructure/memory/repository.py

from copy import deepcopy
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional

from fleet_engine.core.errors import DuplicateNode, NodeNotFound
from fleet_engine.core.models import ExecutionRecord, Node, Role
from fleet_engine.core.repository import ExecutionRecordRepository, NodeRepository


class InMemoryNodeRepository(NodeRepository):
    def __init__(self):
        self._store: dict[str, Node] = {}
        self._lock = Lock()

    def create(self, node: Node) -> None:
        with self._lock:
            if node.identifier in self._store:
                raise DuplicateNode(f"Node {node.identifier} already exists")
            self._store[node.identifier] = deepcopy(node)

    def get(self, node_id: str) -> Node | None:
        with self._lock:
            node = self._store.get(node_id)
            return deepcopy(node) if node else None

    def list(self, role: Optional[Role] = None) -> List[Node]:
        with self._lock:
            nodes = [
                deepcopy(n) for n in self._store.values()
                if role is None or n.role == role
            ]
        return sorted(nodes, key=lambda n: n.identifier)

    def update(self, node: Node) -> None:
        with self._lock:
            stored = self._store.get(node.identifier)
            if stored is None:
                raise NodeNotFound(f"Node {node.identifier} not found")
            updated = deepcopy(node)
            # Lease columns are owned by try_claim / release
            updated.lease_owner = stored.lease_owner
            updated.lease_expires_at = stored.lease_expires_at
            self._store[node.identifier] = updated

    def try_claim(self, node_id: str, owner: str, lease_seconds: int) -> Node | None:
        with self._lock:
            node = self._store.get(node_id)
            if not node:
                raise NodeNotFound(f"Node {node_id} not found")

            now = datetime.now(timezone.utc)
            if node.lease_is_held(now) and node.lease_owner != owner:
                return None

            node.take_lease(owner, lease_seconds)
            return deepcopy(node)

    def renew(self, node_id: str, owner: str, lease_seconds: int) -> Node | None:
        with self._lock:
            node = self._store.get(node_id)
            if not node:
                raise NodeNotFound(f"Node {node_id} not found")
            if node.lease_owner != owner:
                return None

            node.take_lease(owner, lease_seconds)
            return deepcopy(node)

    def release(self, node_id: str, owner: str) -> None:
        with self._lock:
            node = self._store.get(node_id)
            if node and node.lease_owner == owner:
                node.drop_lease()


class InMemoryExecutionRecordRepository(ExecutionRecordRepository):
    def __init__(self):
        self._records: list[ExecutionRecord] = []
        self._lock = Lock()

    def append(self, record: ExecutionRecord) -> None:
        with self._lock:
            self._records.append(deepcopy(record))

    def list_for_node(
        self,
        node_id: str,
        phase: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[ExecutionRecord]:
        with self._lock:
            records = [
                deepcopy(r) for r in self._records
                if r.node_id == node_id and (phase is None or r.phase == phase)
            ]
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return records

    def latest_by_phase(self, node_id: str) -> Dict[str, ExecutionRecord]:
        latest: Dict[str, ExecutionRecord] = {}
        for record in self.list_for_node(node_id):
            if record.sequence is not None:
                latest[record.phase] = record
        return latest

    def ever_succeeded(self, node_id: str, phase: str) -> bool:
        return any(r.succeeded for r in self.list_for_node(node_id, phase=phase))
