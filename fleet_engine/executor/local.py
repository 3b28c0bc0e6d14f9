"""Executor for the node the orchestrator runs on."""

from threading import Event
from typing import Optional

from fleet_engine.core.models import Node
from fleet_engine.executor.base import CommandResult, RemoteExecutor


class LocalExecutor(RemoteExecutor):
    """Runs scripts through a local bash."""

    transport = "local"

    def _invoke(
        self,
        node: Node,
        command: str,
        timeout: float,
        cancel: Optional[Event],
    ) -> CommandResult:
        return self._run_process(["bash", "-s"], command, timeout, cancel)
