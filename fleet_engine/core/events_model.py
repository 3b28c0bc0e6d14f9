"""Event models for the phase engine."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FleetEvent:
    """Base fleet event."""

    event_type: str
    node_id: str
    timestamp: datetime = field(default_factory=_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def run_started(node, run_id):
        return FleetEvent(
            event_type="node.run_started",
            node_id=node.identifier,
            metadata={
                "run_id": str(run_id),
                "role": node.role.value,
                "lifecycle_state": node.lifecycle_state.value,
            },
        )

    @staticmethod
    def state_changed(node, previous):
        """Lifecycle state advanced."""
        return FleetEvent(
            event_type="node.state_changed",
            node_id=node.identifier,
            metadata={
                "from": previous.value,
                "to": node.lifecycle_state.value,
            },
        )

    @staticmethod
    def node_blocked(node):
        return FleetEvent(
            event_type="node.blocked",
            node_id=node.identifier,
            metadata={
                "phase": node.blocked_phase,
                "kind": node.blocked_kind.value if node.blocked_kind else None,
                "reason": node.blocked_reason,
            },
        )

    @staticmethod
    def node_completed(node):
        return FleetEvent(
            event_type="node.completed",
            node_id=node.identifier,
            metadata={"lifecycle_state": node.lifecycle_state.value},
        )

    @staticmethod
    def phase_event(event_type: str, node_id: str, phase: str, **metadata):
        """Phase-level event (started, succeeded, failed, retrying, skipped)."""
        return FleetEvent(
            event_type=f"phase.{event_type}",
            node_id=node_id,
            metadata={"phase": phase, **metadata},
        )

    def describe(self, detail: Optional[str] = None) -> str:
        phase = self.metadata.get("phase")
        parts = [self.event_type, f"node={self.node_id}"]
        if phase:
            parts.append(f"phase={phase}")
        if detail:
            parts.append(detail)
        return " | ".join(parts)
