# fleet_engine/core/validation.py
import re

from fleet_engine.core.errors import NodeValidationError
from fleet_engine.core.models import LifecycleState, Node, RunStatus

_IDENTIFIER = re.compile(r"^[a-z0-9][a-z0-9+._-]{0,62}$")


def validate_new_node(node: Node) -> None:
    # -------------------------
    # Identity
    # -------------------------
    if not node.identifier:
        raise NodeValidationError("identifier is required")

    if not _IDENTIFIER.match(node.identifier):
        raise NodeValidationError(
            f"identifier '{node.identifier}' must be lowercase alphanumeric"
        )

    if node.role is None:
        raise NodeValidationError("role is required")

    if node.hardware is None:
        raise NodeValidationError("hardware class is required")

    # -------------------------
    # Lifecycle invariants
    # -------------------------
    if node.lifecycle_state != LifecycleState.UNPROVISIONED:
        raise NodeValidationError(
            "new node must start in unprovisioned state"
        )

    if node.run_status != RunStatus.PENDING:
        raise NodeValidationError("new node must start PENDING")

    # -------------------------
    # Lease invariants
    # -------------------------
    if node.lease_owner or node.lease_expires_at:
        raise NodeValidationError("lease must not be set at registration")

    # -------------------------
    # Resource overrides
    # -------------------------
    cpu = node.resources.cpu_limit
    if cpu is not None and not 0 < cpu <= 1:
        raise NodeValidationError(f"cpu_limit {cpu} must be within (0, 1]")

    memory = node.resources.memory_limit_mb
    if memory is not None:
        if memory <= 0:
            raise NodeValidationError("memory_limit_mb must be positive")
        if memory > node.hardware.memory_mb:
            raise NodeValidationError(
                f"memory_limit_mb {memory} exceeds {node.hardware.name} "
                f"budget of {node.hardware.memory_mb}"
            )
