"""Repository interfaces for nodes and execution records."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from fleet_engine.core.models import ExecutionRecord, Node, Role


class NodeRepository(ABC):
    """Persistence for nodes and their lifecycle state."""

    @abstractmethod
    def create(self, node: Node) -> None:
        """
        Persist a new node.

        Raises:
            DuplicateNode if the identifier already exists
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, node_id: str) -> Optional[Node]:
        raise NotImplementedError

    @abstractmethod
    def list(self, role: Optional[Role] = None) -> List[Node]:
        """List nodes ordered by identifier, optionally filtered by role."""
        raise NotImplementedError

    @abstractmethod
    def update(self, node: Node) -> None:
        """
        Persist the node's mutable fields.

        Raises:
            NodeNotFound if the node does not exist
        """
        raise NotImplementedError

    @abstractmethod
    def try_claim(self, node_id: str, owner: str, lease_seconds: int) -> Optional[Node]:
        """
        Atomically take the node lease.

        Succeeds when no lease is held, the lease expired, or the lease
        already belongs to `owner`.

        Returns:
            The claimed node, or None if another owner holds the lease
        """
        raise NotImplementedError

    @abstractmethod
    def renew(self, node_id: str, owner: str, lease_seconds: int) -> Optional[Node]:
        """
        Extend a lease `owner` still holds.

        Unlike try_claim, an expired lease is only renewed if nobody else
        took it in the meantime.

        Returns:
            The node, or None if the lease now belongs to someone else
        """
        raise NotImplementedError

    @abstractmethod
    def release(self, node_id: str, owner: str) -> None:
        """Drop the lease if `owner` holds it."""
        raise NotImplementedError


class ExecutionRecordRepository(ABC):
    """Append-only audit log of executor invocations."""

    @abstractmethod
    def append(self, record: ExecutionRecord) -> None:
        """Store a completed record. Records are never updated."""
        raise NotImplementedError

    @abstractmethod
    def list_for_node(
        self,
        node_id: str,
        phase: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[ExecutionRecord]:
        """Records for a node, oldest first. `limit` keeps the newest N; zero or less keeps none."""
        raise NotImplementedError

    @abstractmethod
    def latest_by_phase(self, node_id: str) -> Dict[str, ExecutionRecord]:
        """Newest record per phase for a node (phase records only)."""
        raise NotImplementedError

    @abstractmethod
    def ever_succeeded(self, node_id: str, phase: str) -> bool:
        raise NotImplementedError
