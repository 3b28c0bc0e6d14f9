"""SSH executor reaching nodes over the mesh VPN (or LAN before enrollment)."""

import logging
from threading import Event
from typing import List, Optional

from fleet_engine.core.errors import Unreachable
from fleet_engine.core.models import Node
from fleet_engine.executor.base import CommandResult, RemoteExecutor

logger = logging.getLogger(__name__)

# ssh reserves 255 for its own errors
SSH_CONNECT_FAILURE = 255


class SshExecutor(RemoteExecutor):
    """Runs scripts via `ssh ... bash -s` in batch mode."""

    transport = "ssh"

    def target(self, node: Node) -> str:
        address = node.mesh_address or node.management_host or node.hostname
        if not address:
            raise Unreachable(f"{node.identifier}: no mesh address or management host known")
        return address

    def build_argv(self, node: Node) -> List[str]:
        config = self._config
        argv = [
            "ssh",
            "-oBatchMode=yes",
            f"-oConnectTimeout={config.connect_timeout}",
            "-p",
            str(config.ssh_port),
        ]
        argv.extend(f"-o{option}" for option in config.ssh_options)
        argv.append(f"{config.ssh_user}@{self.target(node)}")
        argv.append("sudo bash -s" if config.remote_sudo else "bash -s")
        return argv

    def _invoke(
        self,
        node: Node,
        command: str,
        timeout: float,
        cancel: Optional[Event],
    ) -> CommandResult:
        argv = self.build_argv(node)
        result = self._run_process(argv, command, timeout, cancel)

        if result.exit_code == SSH_CONNECT_FAILURE:
            logger.warning(
                f"[executor] ❌ ssh to {node.identifier} failed: {result.stderr.strip()}"
            )
            raise Unreachable(
                f"{node.identifier}: ssh could not connect to {self.target(node)}",
                result.stdout,
                result.stderr,
            )

        return result
