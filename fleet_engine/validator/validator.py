# fleet_engine/validator/validator.py
"""
Validator - read-only checks of the fleet against the deployment policy.

Never mutates the inventory or any node. Every check failure, including
an unexpected exception inside a check, becomes a `fail` result so one
broken check cannot abort the sweep.
"""

import logging
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import requests

from fleet_engine.core.errors import AddressUnknown
from fleet_engine.core.models import Node
from fleet_engine.executor.base import RemoteExecutor
from fleet_engine.executor.factory import ExecutorFactory
from fleet_engine.inventory.service import Inventory
from fleet_engine.registry.service import DeploymentRegistry
from fleet_engine.runtime.containers import ContainerRuntime, DockerCliRuntime
from fleet_engine.validator.checks import FLEET_CHECKS, CheckContext
from fleet_engine.validator.models import CheckResult, ValidationReport, Verdict

logger = logging.getLogger(__name__)

Check = Tuple[str, Callable[[CheckContext], List[CheckResult]]]
RuntimeFactory = Callable[[RemoteExecutor, Node], ContainerRuntime]

UNREACHABLE_SKIP = "skipped: node unreachable"


class Validator:
    def __init__(
        self,
        *,
        inventory: Inventory,
        registry: DeploymentRegistry,
        executors: ExecutorFactory,
        settings,
        http_get: Callable = requests.get,
        runtime_factory: Optional[RuntimeFactory] = None,
        checks: Sequence[Check] = FLEET_CHECKS,
    ):
        self._inventory = inventory
        self._registry = registry
        self._executors = executors
        self._settings = settings
        self._http_get = http_get
        self._runtime_factory = runtime_factory or self._cli_runtime
        self._checks = list(checks)

    def run(
        self,
        node_ids: Optional[Iterable[str]] = None,
        categories: Optional[Iterable[str]] = None,
    ) -> ValidationReport:
        """
        Run the battery against the given nodes (all nodes by default).

        Args:
            node_ids: Restrict to these nodes
            categories: Restrict to these check categories

        Returns:
            ValidationReport with one or more results per check and node
        """
        if node_ids is None:
            nodes = self._inventory.list_nodes()
        else:
            nodes = [self._inventory.get(node_id) for node_id in node_ids]

        checks = self._checks
        if categories is not None:
            wanted = set(categories)
            checks = [check for check in checks if check[0] in wanted]

        report = ValidationReport()
        for node in nodes:
            report.results.extend(self.check_node(node, checks))

        logger.info(
            f"[validator] {len(nodes)} node(s): {report.passed} pass, "
            f"{report.warnings} warn, {report.failures} fail"
        )
        return report

    def check_node(
        self,
        node: Node,
        checks: Sequence[Check],
        *,
        address: Optional[str] = None,
        executor: Optional[RemoteExecutor] = None,
        runtime: Optional[ContainerRuntime] = None,
    ) -> List[CheckResult]:
        """Run checks for one node, honouring the skip rules."""
        if address is None:
            try:
                address = self._inventory.resolve_address(node.identifier)
            except AddressUnknown as e:
                logger.warning(f"[validator] {node.identifier}: {e}")
                return [CheckResult(
                    "connectivity", Verdict.WARN,
                    "address unknown: node has not completed network enrollment",
                    node_id=node.identifier,
                )]

        executor = executor or self._executors.for_node(node)
        ctx = CheckContext(
            node=node,
            address=address,
            executor=executor,
            local_executor=self._executors.local(),
            runtime=runtime or self._runtime_factory(executor, node),
            registry=self._registry,
            settings=self._settings,
            http_get=self._http_get,
        )

        results: List[CheckResult] = []
        unreachable = False

        for category, check in checks:
            if unreachable:
                results.append(ctx.result(category, Verdict.FAIL, UNREACHABLE_SKIP))
                continue

            produced = self._run_check(ctx, category, check)
            results.extend(produced)

            if category == "connectivity" and any(r.verdict == Verdict.FAIL for r in produced):
                unreachable = True

        return results

    def _run_check(self, ctx: CheckContext, category: str, check) -> List[CheckResult]:
        try:
            return check(ctx)
        except Exception as e:
            logger.error(f"[validator] {ctx.node.identifier}: {category} check errored: {e}")
            return [ctx.result(category, Verdict.FAIL, f"check error: {e}")]

    def _cli_runtime(self, executor: RemoteExecutor, node: Node) -> ContainerRuntime:
        return DockerCliRuntime(executor, node, self._settings.check_timeout)
