"""Mesh VPN collaborator: Tailscale status through the node's executor."""

import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional
from uuid import UUID

from fleet_engine.core.errors import ExecutorError
from fleet_engine.core.models import Node
from fleet_engine.executor.base import RemoteExecutor

logger = logging.getLogger(__name__)

SEPARATOR = "----8<----"

STATUS_COMMAND = (
    "tailscale status --json; "
    f"echo '{SEPARATOR}'; "
    "tailscale debug prefs 2>/dev/null || echo '{}'"
)


@dataclass
class MeshStatus:
    backend_state: str
    addresses: List[str] = field(default_factory=list)
    exit_node_option: bool = False
    advertises_exit_node: bool = False
    accepts_routes: bool = False

    @property
    def running(self) -> bool:
        return self.backend_state == "Running"

    @property
    def ipv4(self) -> Optional[str]:
        for address in self.addresses:
            if "." in address:
                return address
        return None


def parse_status(output: str) -> MeshStatus:
    status_text, _, prefs_text = output.partition(SEPARATOR)
    try:
        status = json.loads(status_text.strip() or "{}")
        prefs = json.loads(prefs_text.strip() or "{}")
    except json.JSONDecodeError as e:
        raise ExecutorError(f"unparseable tailscale status: {e}") from e

    me = status.get("Self") or {}
    advertised = prefs.get("AdvertiseRoutes") or []
    return MeshStatus(
        backend_state=status.get("BackendState", "unknown"),
        addresses=list(me.get("TailscaleIPs") or []),
        exit_node_option=bool(me.get("ExitNodeOption", False)),
        advertises_exit_node="0.0.0.0/0" in advertised or "::/0" in advertised,
        accepts_routes=bool(prefs.get("RouteAll", False)),
    )


class TailscaleClient:
    """Reports enrollment, assigned address and exit-node/route flags."""

    def __init__(self, executor: RemoteExecutor, timeout: float):
        self._executor = executor
        self._timeout = timeout

    def status(self, node: Node, *, phase: str = "check:mesh", run_id: Optional[UUID] = None) -> MeshStatus:
        result = self._executor.execute(
            node, STATUS_COMMAND, self._timeout, phase=phase, run_id=run_id
        )
        return parse_status(result.stdout)

    def assigned_address(self, node: Node, **kwargs) -> Optional[str]:
        status = self.status(node, **kwargs)
        if not status.running:
            logger.warning(f"[mesh] {node.identifier} backend state is {status.backend_state}")
            return None
        return status.ipv4
