"""Inventory service: canonical record of nodes, roles and network identities."""

import logging
import socket
from typing import Iterable, List, Optional

from fleet_engine.core.errors import (
    AddressUnknown,
    DuplicateNode,
    NodeBusy,
    NodeNotFound,
)
from fleet_engine.core.models import FailureKind, LifecycleState, Node, Role
from fleet_engine.core.repository import NodeRepository
from fleet_engine.core.state_machine import NodeStateMachine
from fleet_engine.core.validation import validate_new_node

logger = logging.getLogger(__name__)


class Inventory:
    """Owns all nodes. Lifecycle mutation goes through `set_state`."""

    def __init__(self, node_repo: NodeRepository):
        self._node_repo = node_repo

    # ============================================
    # REGISTRATION
    # ============================================

    def register(self, node: Node) -> Node:
        """Register a new node. Raises DuplicateNode if the identifier exists."""
        validate_new_node(node)

        if self._node_repo.get(node.identifier) is not None:
            raise DuplicateNode(f"Node {node.identifier} already registered")

        self._node_repo.create(node)
        logger.info(
            f"[inventory] registered {node.identifier} "
            f"({node.role.value}, {node.hardware.name})"
        )
        return node

    def sync(self, nodes: Iterable[Node]) -> List[Node]:
        """
        Register inventory-file nodes missing from the store.

        Existing nodes keep their persisted lifecycle state; only the
        static fields (hostname, management host, overrides) are refreshed.
        """
        registered = []
        for node in nodes:
            existing = self._node_repo.get(node.identifier)
            if existing is None:
                registered.append(self.register(node))
                continue

            if existing.role != node.role:
                logger.warning(
                    f"[inventory] {node.identifier} role changed in inventory file "
                    f"({existing.role.value} -> {node.role.value}); keeping stored role"
                )

            existing.hostname = node.hostname
            existing.management_host = node.management_host
            existing.resources = node.resources
            self._node_repo.update(existing)
        return registered

    # ============================================
    # LOOKUP
    # ============================================

    def get(self, node_id: str) -> Node:
        node = self._node_repo.get(node_id)
        if node is None:
            raise NodeNotFound(f"Node {node_id} not found")
        return node

    def list_nodes(self, role: Optional[Role] = None) -> List[Node]:
        return self._node_repo.list(role)

    def detect_local(self, hostname: Optional[str] = None) -> Node:
        """Find the calling node by hostname."""
        hostname = hostname or socket.gethostname()
        for node in self._node_repo.list():
            if node.hostname and node.hostname.lower() == hostname.lower():
                return node
        raise NodeNotFound(f"No inventory node has hostname '{hostname}'")

    # ============================================
    # NETWORK IDENTITY
    # ============================================

    def resolve_address(self, node_id: str) -> str:
        """Mesh VPN address; AddressUnknown until network enrollment completed."""
        node = self.get(node_id)
        if not node.mesh_address or node.lifecycle_state.rank < LifecycleState.NETWORKED.rank:
            raise AddressUnknown(f"{node_id} has not completed network enrollment")
        return node.mesh_address

    def enroll(self, node_id: str, address: str) -> Node:
        node = self.get(node_id)
        node.mesh_address = address
        self._node_repo.update(node)
        logger.info(f"[inventory] {node_id} enrolled at {address}")
        return node

    # ============================================
    # LIFECYCLE
    # ============================================

    def set_state(self, node_id: str, new_state: LifecycleState) -> Node:
        """Advance lifecycle state. Raises InvalidTransition; state unchanged on failure."""
        node = self.get(node_id)
        NodeStateMachine.transition(node, new_state)
        self._node_repo.update(node)
        logger.info(f"[inventory] {node_id} -> {new_state.value}")
        return node

    # ============================================
    # ENGINE STATE
    # ============================================

    def mark_running(self, node_id: str) -> Node:
        node = self.get(node_id)
        node.start_run()
        self._node_repo.update(node)
        return node

    def mark_complete(self, node_id: str) -> Node:
        node = self.get(node_id)
        node.complete()
        self._node_repo.update(node)
        return node

    def mark_pending(self, node_id: str) -> Node:
        node = self.get(node_id)
        node.settle()
        self._node_repo.update(node)
        return node

    def block(self, node_id: str, phase: str, kind: FailureKind, reason: str) -> Node:
        node = self.get(node_id)
        node.block(phase, kind, reason)
        self._node_repo.update(node)
        logger.warning(f"[inventory] {node_id} BLOCKED at {phase} ({kind.value}): {reason}")
        return node

    def clear_block(self, node_id: str) -> Node:
        node = self.get(node_id)
        if node.is_blocked():
            node.clear_block()
            self._node_repo.update(node)
            logger.info(f"[inventory] {node_id} unblocked")
        return node

    # ============================================
    # MUTUAL EXCLUSION
    # ============================================

    def claim(self, node_id: str, owner: str, lease_seconds: int) -> Node:
        """Take the per-node lease. Raises NodeBusy if another run holds it."""
        node = self._node_repo.try_claim(node_id, owner, lease_seconds)
        if node is None:
            raise NodeBusy(f"{node_id} is busy: another phase execution holds the lease")
        return node

    def renew(self, node_id: str, owner: str, lease_seconds: int) -> Node:
        """Extend a held lease. Raises NodeBusy if it was taken over."""
        node = self._node_repo.renew(node_id, owner, lease_seconds)
        if node is None:
            raise NodeBusy(f"{node_id} lease was taken over by another run")
        return node

    def release(self, node_id: str, owner: str) -> None:
        self._node_repo.release(node_id, owner)
