# fleet_engine/health_checker/checker.py
"""
Health Checker - lightweight single-node subset of the validator.

Runs on the node itself: commands go through the local executor and
containers are inspected through the Docker Engine API. Can run once
(`fleet health`) or as a loop (`fleet health --watch`).
"""

import logging
import signal
import time
from typing import Callable, Optional

from fleet_engine.core.errors import AddressUnknown
from fleet_engine.core.models import Node
from fleet_engine.executor.factory import ExecutorFactory
from fleet_engine.inventory.service import Inventory
from fleet_engine.runtime.containers import ContainerRuntime, DockerSdkRuntime
from fleet_engine.validator.checks import HEALTH_CHECKS
from fleet_engine.validator.models import ValidationReport
from fleet_engine.validator.validator import Validator

logger = logging.getLogger(__name__)

LOOPBACK = "127.0.0.1"


class HealthChecker:
    """
    Checks the calling node.

    Before network enrollment the mesh address is unknown, so HTTP checks
    fall back to loopback.
    """

    def __init__(
        self,
        *,
        inventory: Inventory,
        validator: Validator,
        executors: ExecutorFactory,
        runtime: Optional[ContainerRuntime] = None,
        check_interval: int = 60,
    ):
        self._inventory = inventory
        self._validator = validator
        self._executors = executors
        self._runtime = runtime
        self.check_interval = check_interval
        self._stop_requested = False

    def check(self, node: Node) -> ValidationReport:
        """Single health pass against `node`, which must be the calling node."""
        try:
            address = self._inventory.resolve_address(node.identifier)
        except AddressUnknown:
            address = LOOPBACK

        runtime = self._runtime or DockerSdkRuntime()
        report = ValidationReport()
        report.results.extend(
            self._validator.check_node(
                node,
                HEALTH_CHECKS,
                address=address,
                executor=self._executors.local(),
                runtime=runtime,
            )
        )

        logger.info(
            f"[health] {node.identifier}: {report.passed} pass, "
            f"{report.warnings} warn, {report.failures} fail"
        )
        return report

    def start(self, node: Node, on_report: Callable[[ValidationReport], None]) -> None:
        """Repeat `check` every `check_interval` seconds until SIGINT/SIGTERM."""
        logger.info(f"[health] watching {node.identifier} every {self.check_interval}s")

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        while not self._stop_requested:
            try:
                on_report(self.check(node))
            except Exception as e:
                logger.error(f"[health] error in check cycle: {e}", exc_info=True)

            if not self._stop_requested:
                time.sleep(self.check_interval)

        logger.info("[health] stopped")

    def stop(self) -> None:
        self._stop_requested = True

    def _signal_handler(self, signum, frame):
        logger.info(f"[health] received signal {signum}, stopping...")
        self._stop_requested = True
