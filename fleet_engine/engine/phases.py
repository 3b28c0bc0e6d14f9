# fleet_engine/engine/phases.py
"""Phase definitions and per-role provisioning plans."""

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple

from fleet_engine.core.models import LifecycleState, Node, Role
from fleet_engine.engine import scripts
from fleet_engine.engine.scripts import ScriptContext


@dataclass(frozen=True)
class Phase:
    """Immutable provisioning step."""

    name: str
    script: Callable[[ScriptContext], List[str]] = field(compare=False, repr=False)

    # Idempotency contract
    repeatable: bool = True

    preconditions: Tuple[str, ...] = ()
    advances_to: Optional[LifecycleState] = None
    timeout: Optional[int] = None

    # Position in the role plan (1-based)
    sequence: int = 0

    deploys_workload: bool = False
    enrolls_address: bool = False

    def render(self, ctx: ScriptContext) -> str:
        body = "\n".join(self.script(ctx))
        return f"#!/usr/bin/env bash\n# phase: {self.name}\n{scripts.PRELUDE}\n{body}\n"


# -------------------------
# PHASE LIBRARY
# -------------------------

BASE = Phase("base", scripts.base_script, advances_to=LifecycleState.BASE_READY)
SECURE = Phase("secure", scripts.secure_script, advances_to=LifecycleState.SECURED)
CONTAINER = Phase("container", scripts.container_script, advances_to=LifecycleState.CONTAINERIZED)
NETWORK = Phase(
    "network",
    scripts.network_script,
    advances_to=LifecycleState.NETWORKED,
    enrolls_address=True,
)
EXPORTER = Phase("exporter", scripts.exporter_script)
STORAGE_PREP = Phase("storage-prep", scripts.storage_prep_script)
STORAGE_IDENTITY = Phase(
    "storage-identity",
    scripts.storage_identity_script,
    repeatable=False,
    # Identity generation is CPU-bound for hours on a Pi
    timeout=6 * 3600,
)
STANDBY_PREP = Phase(
    "standby-prep",
    scripts.standby_script,
    advances_to=LifecycleState.ROLE_DEPLOYED,
)
VERIFY = Phase("verify", scripts.verify_script, advances_to=LifecycleState.VALIDATED)

COMMON_PHASES = [BASE, SECURE, CONTAINER, NETWORK]


def deploy_phase(role: Role) -> Phase:
    return Phase(
        f"{role.value}-deploy",
        scripts.deploy_script,
        advances_to=LifecycleState.ROLE_DEPLOYED,
        deploys_workload=True,
    )


ROLE_PHASES: Dict[Role, List[Phase]] = {
    Role.MONITORING: [EXPORTER, deploy_phase(Role.MONITORING)],
    Role.BANDWIDTH: [EXPORTER, deploy_phase(Role.BANDWIDTH)],
    Role.INDEXING: [EXPORTER, deploy_phase(Role.INDEXING)],
    Role.COMPUTE: [EXPORTER, deploy_phase(Role.COMPUTE)],
    Role.STORAGE: [EXPORTER, STORAGE_PREP, STORAGE_IDENTITY, deploy_phase(Role.STORAGE)],
    Role.STANDBY: [STANDBY_PREP],
}


def build_plan(phases: List[Phase]) -> List[Phase]:
    """Number phases and chain each to its predecessor."""
    plan = []
    previous: Optional[Phase] = None
    for index, phase in enumerate(phases, start=1):
        preconditions = list(phase.preconditions)
        if previous is not None and previous.name not in preconditions:
            preconditions.append(previous.name)
        if phase.deploys_workload and CONTAINER.name not in preconditions:
            preconditions.append(CONTAINER.name)
        phase = replace(phase, sequence=index, preconditions=tuple(preconditions))
        plan.append(phase)
        previous = phase
    return plan


class PhaseCatalogue:
    """Ordered phase plans per role."""

    def __init__(self, role_phases: Optional[Dict[Role, List[Phase]]] = None):
        role_phases = ROLE_PHASES if role_phases is None else role_phases
        self._plans: Dict[Role, List[Phase]] = {
            role: build_plan(COMMON_PHASES + phases + [VERIFY])
            for role, phases in role_phases.items()
        }

    def plan_for(self, role: Role) -> List[Phase]:
        if role not in self._plans:
            raise KeyError(f"No provisioning plan for role '{role.value}'")
        return list(self._plans[role])

    def phase(self, role: Role, name: str) -> Phase:
        for phase in self.plan_for(role):
            if phase.name == name:
                return phase
        raise KeyError(f"Role '{role.value}' has no phase '{name}'")

    def final_phase(self, role: Role) -> Phase:
        """The role-specific deploy step (`deploy <role>`)."""
        plan = self.plan_for(role)
        for phase in reversed(plan):
            if phase.deploys_workload or phase.advances_to == LifecycleState.ROLE_DEPLOYED:
                return phase
        return plan[-1]


def script_context(node: Node, settings, **extra) -> ScriptContext:
    return ScriptContext(
        node=node,
        ssh_user=settings.ssh_user,
        storage_mount=settings.storage_mount,
        storage_disk=settings.storage_disk,
        tailscale_auth_key=settings.tailscale_auth_key,
        **extra,
    )
