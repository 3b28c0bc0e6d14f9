# fleet_engine/core/state_machine.py

from datetime import datetime, timezone

from fleet_engine.core.errors import InvalidTransition
from fleet_engine.core.models import LifecycleState, Node


LIFECYCLE_ORDER = list(LifecycleState)

# Forward-only: every state may advance to any later state
ALLOWED_TRANSITIONS = {
    state: set(LIFECYCLE_ORDER[index + 1:])
    for index, state in enumerate(LIFECYCLE_ORDER)
}


class NodeStateMachine:
    @staticmethod
    def can_transition(current: LifecycleState, new_state: LifecycleState) -> bool:
        return new_state in ALLOWED_TRANSITIONS.get(current, set())

    @staticmethod
    def transition(
        node: Node,
        new_state: LifecycleState,
        *,
        now: datetime | None = None,
    ) -> Node:
        now = now or datetime.now(timezone.utc)

        current = node.lifecycle_state

        if not NodeStateMachine.can_transition(current, new_state):
            raise InvalidTransition(
                f"{node.identifier}: cannot transition from "
                f"{current.value} to {new_state.value}"
            )

        node.lifecycle_state = new_state
        node.updated_at = now
        node.version += 1
        return node
