"""Deployment registry: role -> workload definition."""

import logging
from typing import Dict, Iterable, List, Optional

from fleet_engine.core.errors import InvalidExposure, InvalidWorkloadSpec, NoWorkloadDefined
from fleet_engine.core.models import HealthEndpoint, Node, Role, WorkloadSpec
from fleet_engine.registry.templates import BUILTIN_WORKLOADS

logger = logging.getLogger(__name__)

NODE_EXPORTER = HealthEndpoint("node-exporter", 9100, "/metrics")


class DeploymentRegistry:
    """Maps roles to workload specs and enforces the exposure policy."""

    def __init__(self, workloads: Optional[Iterable[WorkloadSpec]] = None):
        self._workloads: Dict[Role, WorkloadSpec] = {}
        for spec in BUILTIN_WORKLOADS if workloads is None else workloads:
            self.register(spec)

    def register(self, spec: WorkloadSpec) -> None:
        """Add or replace the definition for `spec.role`."""
        self._workloads[spec.role] = spec

    def roles(self) -> List[Role]:
        return [role for role in Role if role in self._workloads]

    def workload_for(self, role: Role) -> WorkloadSpec:
        """Raises NoWorkloadDefined when the role has no definition."""
        spec = self._workloads.get(role)
        if spec is None:
            raise NoWorkloadDefined(f"No workload defined for role '{role.value}'")
        return spec

    def workload_for_node(self, node: Node) -> WorkloadSpec:
        """Role workload with the node's resource overrides applied."""
        spec = self.workload_for(node.role)
        if spec.standby_only:
            return spec
        return spec.with_limits(node.resources)

    def health_endpoints_for(self, role: Role) -> List[HealthEndpoint]:
        spec = self._workloads.get(role)
        if spec is not None and spec.standby_only:
            return []
        endpoints = [NODE_EXPORTER]
        if spec is not None:
            endpoints.extend(spec.health_endpoints)
        return endpoints

    @staticmethod
    def validate_spec(spec: WorkloadSpec) -> None:
        """
        Reject specs that break the workload policy.

        Raises:
            InvalidExposure: inbound ports declared without an override flag
            InvalidWorkloadSpec: missing image or out-of-range limits
        """
        if spec.standby_only:
            if spec.image or spec.inbound_ports or spec.extra_services:
                raise InvalidWorkloadSpec(
                    f"{spec.name}: standby-only role must declare zero workload"
                )
            return

        if spec.inbound_ports and not spec.inbound_override:
            ports = ", ".join(str(p) for p in spec.inbound_ports)
            raise InvalidExposure(
                f"{spec.name}: inbound ports [{ports}] declared without override; "
                f"workloads are outbound-only by default"
            )

        for port in spec.inbound_ports:
            if not 0 < port < 65536:
                raise InvalidWorkloadSpec(f"{spec.name}: invalid port {port}")

        if not spec.image:
            raise InvalidWorkloadSpec(f"{spec.name}: image is required")

        if not 0 < spec.cpu_limit <= 1:
            raise InvalidWorkloadSpec(
                f"{spec.name}: cpu_limit {spec.cpu_limit} must be within (0, 1]"
            )

        if spec.memory_limit_mb <= 0:
            raise InvalidWorkloadSpec(f"{spec.name}: memory_limit_mb must be positive")

        if spec.memory_reservation_mb and spec.memory_reservation_mb > spec.memory_limit_mb:
            raise InvalidWorkloadSpec(
                f"{spec.name}: memory reservation exceeds the memory ceiling"
            )
