"""Chooses the transport for a node."""

import socket
from typing import Optional

from fleet_engine.core.models import Node
from fleet_engine.core.repository import ExecutionRecordRepository
from fleet_engine.executor.base import RemoteExecutor
from fleet_engine.executor.config import ExecutorConfig
from fleet_engine.executor.local import LocalExecutor
from fleet_engine.executor.ssh import SshExecutor


class ExecutorFactory:
    """Creates one executor session per node: local for the calling node, SSH otherwise."""

    def __init__(
        self,
        records: ExecutionRecordRepository,
        config: Optional[ExecutorConfig] = None,
        local_node_id: Optional[str] = None,
    ):
        self._records = records
        self._config = config or ExecutorConfig()
        self._local_node_id = local_node_id

    def is_local(self, node: Node) -> bool:
        if self._local_node_id is not None:
            return node.identifier == self._local_node_id
        return bool(node.hostname) and node.hostname == socket.gethostname()

    def for_node(self, node: Node) -> RemoteExecutor:
        if self.is_local(node):
            return LocalExecutor(self._records, self._config)
        return SshExecutor(self._records, self._config)

    def local(self) -> RemoteExecutor:
        """Executor for commands that must run on the orchestrator host."""
        return LocalExecutor(self._records, self._config)
