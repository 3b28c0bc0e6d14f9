# fleet_engine/engine/engine.py
"""Phase engine: ordered, resumable provisioning of a single node."""

import logging
import socket
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Event
from typing import Dict, List, Optional
from uuid import UUID, uuid4

from fleet_engine.core.errors import (
    Cancelled,
    ExecutorError,
    NodeBlocked,
    NonRepeatablePhase,
    PhaseFailure,
    PreconditionNotMet,
    RegistryError,
    Timeout,
    Unreachable,
)
from fleet_engine.core.events import EventEmitter, NullEventEmitter
from fleet_engine.core.events_model import FleetEvent
from fleet_engine.core.failures import classify_failure
from fleet_engine.core.models import (
    ExecutionRecord,
    FailureKind,
    Node,
    RecordOutcome,
    Role,
    RunStatus,
)
from fleet_engine.core.repository import ExecutionRecordRepository
from fleet_engine.engine.phases import Phase, PhaseCatalogue, script_context
from fleet_engine.engine.retry import RetryPolicy
from fleet_engine.executor.base import RemoteExecutor
from fleet_engine.executor.factory import ExecutorFactory
from fleet_engine.inventory.service import Inventory
from fleet_engine.mesh.tailscale import TailscaleClient
from fleet_engine.registry.compose import render_compose
from fleet_engine.registry.service import DeploymentRegistry

logger = logging.getLogger(__name__)

# Slack on top of a renewed lease for record writes and state updates
LEASE_GRACE_SECONDS = 60


class PhaseStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class PhaseResult:
    phase: str
    status: PhaseStatus
    attempts: int = 0
    kind: Optional[FailureKind] = None
    reason: Optional[str] = None


@dataclass
class NodeRunResult:
    """Outcome of one engine run against a node."""

    node_id: str
    status: RunStatus
    results: List[PhaseResult] = field(default_factory=list)
    failure: Optional[PhaseFailure] = None
    cancelled: bool = False

    @property
    def executed(self) -> List[str]:
        return [
            r.phase for r in self.results
            if r.status in (PhaseStatus.SUCCEEDED, PhaseStatus.FAILED)
        ]

    @property
    def ok(self) -> bool:
        return self.failure is None and not self.cancelled


class PhaseEngine:
    """
    Applies a role's phase plan to one node.

    Phases run strictly in sequence; the first fatal failure blocks the
    node. Completion is derived from the node's ExecutionRecords, which is
    what makes a repeated run resume instead of starting over.
    """

    def __init__(
        self,
        *,
        inventory: Inventory,
        records: ExecutionRecordRepository,
        registry: DeploymentRegistry,
        executors: ExecutorFactory,
        settings,
        catalogue: Optional[PhaseCatalogue] = None,
        retry_policy: Optional[RetryPolicy] = None,
        event_emitter: Optional[EventEmitter] = None,
        worker_id: Optional[str] = None,
    ):
        self._inventory = inventory
        self._records = records
        self._registry = registry
        self._executors = executors
        self._settings = settings
        self._catalogue = catalogue or PhaseCatalogue()
        self._retry = retry_policy or RetryPolicy.from_settings(settings)
        self._emitter = event_emitter or NullEventEmitter()
        self._worker_id = worker_id or f"{socket.gethostname()}"

    @property
    def catalogue(self) -> PhaseCatalogue:
        return self._catalogue

    # ============================================
    # FULL RUN
    # ============================================

    def run(
        self,
        node_id: str,
        *,
        reapply: bool = False,
        cancel: Optional[Event] = None,
    ) -> NodeRunResult:
        """
        Run every outstanding phase for the node.

        A node blocked by exhausted transient retries resumes on a new run;
        configuration and environment blocks raise NodeBlocked until cleared.
        """
        plan = self._catalogue.plan_for(self._inventory.get(node_id).role)

        owner = self._lease_owner()
        self._inventory.claim(node_id, owner, self._settings.lease_seconds)
        try:
            node = self._prepare(node_id)
            run_id = uuid4()
            executor = self._executors.for_node(node)

            self._emit(FleetEvent.run_started(node, run_id))
            logger.info(
                f"[engine] {node_id}: run {run_id} ({node.role.value}, "
                f"{len(plan)} phases, state {node.lifecycle_state.value})"
            )

            result = NodeRunResult(node_id=node_id, status=RunStatus.RUNNING)
            plan_by_name = {phase.name: phase for phase in plan}

            for phase in plan:
                node = self._inventory.get(node_id)

                if self._satisfied(node_id, phase) and not (reapply and phase.repeatable):
                    self._after_success(node, phase, executor, run_id)
                    result.results.append(PhaseResult(phase.name, PhaseStatus.SKIPPED))
                    self._emit(FleetEvent.phase_event("skipped", node_id, phase.name))
                    continue

                phase_result = self._attempt(
                    node, phase, plan_by_name, executor, run_id, owner, cancel
                )
                result.results.append(phase_result)

                if phase_result.status == PhaseStatus.CANCELLED:
                    self._inventory.mark_pending(node_id)
                    result.status = RunStatus.PENDING
                    result.cancelled = True
                    logger.warning(f"[engine] {node_id}: cancelled during {phase.name}")
                    return result

                if phase_result.status == PhaseStatus.FAILED:
                    result.failure = self._block(node_id, phase, phase_result)
                    result.status = RunStatus.BLOCKED
                    return result

            node = self._inventory.mark_complete(node_id)
            self._emit(FleetEvent.node_completed(node))
            logger.info(f"[engine] ✅ {node_id} complete ({node.lifecycle_state.value})")
            result.status = RunStatus.COMPLETE
            return result
        finally:
            self._inventory.release(node_id, owner)

    # ============================================
    # SINGLE PHASE
    # ============================================

    def run_phase(
        self,
        node_id: str,
        phase_name: str,
        *,
        cancel: Optional[Event] = None,
    ) -> NodeRunResult:
        """
        Explicitly re-run one phase.

        A non-repeatable phase with a recorded success is refused with a
        configuration failure before anything is executed.
        """
        role = self._inventory.get(node_id).role
        phase = self._catalogue.phase(role, phase_name)
        plan = self._catalogue.plan_for(role)
        plan_by_name = {p.name: p for p in plan}

        owner = self._lease_owner()
        self._inventory.claim(node_id, owner, self._settings.lease_seconds)
        try:
            node = self._prepare(node_id)
            run_id = uuid4()

            self._emit(FleetEvent.run_started(node, run_id))
            result = NodeRunResult(node_id=node_id, status=RunStatus.RUNNING)

            if not phase.repeatable and self._records.ever_succeeded(node_id, phase.name):
                failure = NonRepeatablePhase(
                    node_id,
                    phase.name,
                    FailureKind.CONFIGURATION,
                    "non-repeatable phase already succeeded; re-running would "
                    "invalidate the existing result",
                )
                self._record_engine_failure(node, phase, run_id, failure)
                phase_result = PhaseResult(
                    phase.name, PhaseStatus.FAILED, 0, failure.kind, failure.diagnostic
                )
                result.results.append(phase_result)
                self._block(node_id, phase, phase_result)
                result.failure = failure
                result.status = RunStatus.BLOCKED
                return result

            executor = self._executors.for_node(node)
            phase_result = self._attempt(
                node, phase, plan_by_name, executor, run_id, owner, cancel
            )
            result.results.append(phase_result)

            if phase_result.status == PhaseStatus.FAILED:
                result.failure = self._block(node_id, phase, phase_result)
                result.status = RunStatus.BLOCKED
                return result

            if phase_result.status == PhaseStatus.CANCELLED:
                result.cancelled = True

            if not result.cancelled and all(self._satisfied(node_id, p) for p in plan):
                node = self._inventory.mark_complete(node_id)
                self._emit(FleetEvent.node_completed(node))
                result.status = RunStatus.COMPLETE
            else:
                self._inventory.mark_pending(node_id)
                result.status = RunStatus.PENDING
            return result
        finally:
            self._inventory.release(node_id, owner)

    def deploy(self, node_id: str, *, cancel: Optional[Event] = None) -> NodeRunResult:
        """Run only the role-specific final phase."""
        node = self._inventory.get(node_id)
        final = self._catalogue.final_phase(node.role)
        return self.run_phase(node_id, final.name, cancel=cancel)

    # ============================================
    # PHASE EXECUTION
    # ============================================

    def _attempt(
        self,
        node: Node,
        phase: Phase,
        plan_by_name: Dict[str, Phase],
        executor: RemoteExecutor,
        run_id: UUID,
        owner: str,
        cancel: Optional[Event],
    ) -> PhaseResult:
        """Check guards, execute with retry, then advance lifecycle."""
        try:
            self._check_preconditions(node, phase, plan_by_name)
            script = self._render(node, phase)
        except PhaseFailure as failure:
            self._record_engine_failure(node, phase, run_id, failure)
            return PhaseResult(phase.name, PhaseStatus.FAILED, 0, failure.kind, failure.diagnostic)

        result = self._execute_with_retry(node, phase, script, executor, run_id, owner, cancel)

        if result.status == PhaseStatus.SUCCEEDED:
            self._after_success(self._inventory.get(node.identifier), phase, executor, run_id)
        return result

    def _execute_with_retry(
        self,
        node: Node,
        phase: Phase,
        script: str,
        executor: RemoteExecutor,
        run_id: UUID,
        owner: str,
        cancel: Optional[Event],
    ) -> PhaseResult:
        timeout = phase.timeout or self._settings.phase_timeout
        attempt = 0

        while True:
            attempt += 1
            # Lease must outlive this attempt plus the backoff before the next
            self._inventory.renew(node.identifier, owner, self._lease_for(timeout))
            self._emit(FleetEvent.phase_event("started", node.identifier, phase.name, attempt=attempt))

            try:
                executor.execute(
                    node,
                    script,
                    timeout,
                    phase=phase.name,
                    sequence=phase.sequence,
                    attempt=attempt,
                    run_id=run_id,
                    cancel=cancel,
                )
                self._emit(FleetEvent.phase_event("succeeded", node.identifier, phase.name, attempt=attempt))
                logger.info(f"[engine] {node.identifier}: ✅ {phase.name}")
                return PhaseResult(phase.name, PhaseStatus.SUCCEEDED, attempt)

            except Cancelled:
                return PhaseResult(phase.name, PhaseStatus.CANCELLED, attempt)

            except ExecutorError as e:
                kind = classify_failure(e)
                diagnostic = _diagnostic(e)

                if kind == FailureKind.TRANSIENT and self._retry.should_retry(attempt):
                    delay = self._retry.delay_for(attempt)
                    logger.warning(
                        f"[engine] {node.identifier}: {phase.name} transient failure "
                        f"({diagnostic}); retry {attempt}/{self._retry.max_retries} in {delay:.0f}s"
                    )
                    self._emit(FleetEvent.phase_event(
                        "retrying", node.identifier, phase.name, attempt=attempt, delay=delay
                    ))
                    if not self._retry.wait(attempt, cancel):
                        return PhaseResult(phase.name, PhaseStatus.CANCELLED, attempt)
                    continue

                reason = _failure_reason(e, diagnostic)
                if kind == FailureKind.TRANSIENT:
                    reason = f"{reason} (retries exhausted after {attempt} attempts)"

                self._emit(FleetEvent.phase_event(
                    "failed", node.identifier, phase.name, attempt=attempt, kind=kind.value
                ))
                logger.error(f"[engine] {node.identifier}: ❌ {phase.name} ({kind.value}): {reason}")
                return PhaseResult(phase.name, PhaseStatus.FAILED, attempt, kind, reason)

            except Exception as e:
                # Transport failed outside the executor's own error types
                reason = f"transport error: {type(e).__name__}: {e}"
                self._emit(FleetEvent.phase_event(
                    "failed", node.identifier, phase.name, attempt=attempt,
                    kind=FailureKind.ENVIRONMENT.value,
                ))
                logger.exception(f"[engine] {node.identifier}: ❌ {phase.name}: {reason}")
                return PhaseResult(
                    phase.name, PhaseStatus.FAILED, attempt, FailureKind.ENVIRONMENT, reason
                )

    def _check_preconditions(self, node: Node, phase: Phase, plan_by_name: Dict[str, Phase]) -> None:
        for name in phase.preconditions:
            required = plan_by_name.get(name)
            if required is None or not self._satisfied(node.identifier, required):
                raise PreconditionNotMet(
                    node.identifier,
                    phase.name,
                    FailureKind.CONFIGURATION,
                    f"precondition '{name}' has not succeeded",
                )

    def _render(self, node: Node, phase: Phase) -> str:
        extra = {}

        if phase.deploys_workload or phase.name == "verify":
            try:
                spec = self._registry.workload_for_node(node)
                if phase.deploys_workload:
                    # Rejected before any deployment command runs
                    self._registry.validate_spec(spec)
            except RegistryError as e:
                raise PhaseFailure(node.identifier, phase.name, classify_failure(e), str(e)) from e

            extra["workload"] = spec
            if phase.deploys_workload:
                extra["compose"] = render_compose(spec)
            if phase.deploys_workload and node.role == Role.MONITORING:
                extra["scrape_targets"] = [
                    f"{peer.mesh_address}:9100"
                    for peer in self._inventory.list_nodes()
                    if peer.mesh_address and peer.role != Role.STANDBY
                ]

        return phase.render(script_context(node, self._settings, **extra))

    def _after_success(
        self,
        node: Node,
        phase: Phase,
        executor: RemoteExecutor,
        run_id: UUID,
    ) -> None:
        """Advance lifecycle and enroll the mesh address once a phase holds."""
        if phase.advances_to and phase.advances_to.rank > node.lifecycle_state.rank:
            previous = node.lifecycle_state
            node = self._inventory.set_state(node.identifier, phase.advances_to)
            self._emit(FleetEvent.state_changed(node, previous))

        if phase.enrolls_address and not node.mesh_address:
            mesh = TailscaleClient(executor, self._settings.check_timeout)
            try:
                address = mesh.assigned_address(node, phase=f"check:{phase.name}", run_id=run_id)
            except ExecutorError as e:
                logger.warning(f"[engine] {node.identifier}: mesh address lookup failed: {e}")
                return
            if address:
                self._inventory.enroll(node.identifier, address)

    # ============================================
    # HELPERS
    # ============================================

    def _prepare(self, node_id: str) -> Node:
        node = self._inventory.get(node_id)
        if node.is_blocked():
            if node.blocked_kind != FailureKind.TRANSIENT:
                raise NodeBlocked(
                    f"{node_id} is blocked at '{node.blocked_phase}' "
                    f"({node.blocked_kind.value if node.blocked_kind else 'unknown'}): "
                    f"{node.blocked_reason}. Clear it with `fleet unblock {node_id}`"
                )
            logger.info(f"[engine] {node_id}: resuming after transient block at {node.blocked_phase}")
            self._inventory.clear_block(node_id)
        return self._inventory.mark_running(node_id)

    def _satisfied(self, node_id: str, phase: Phase) -> bool:
        latest = self._records.latest_by_phase(node_id).get(phase.name)
        if latest is not None and latest.succeeded:
            return True
        if not phase.repeatable:
            return self._records.ever_succeeded(node_id, phase.name)
        return False

    def _block(self, node_id: str, phase: Phase, result: PhaseResult) -> PhaseFailure:
        node = self._inventory.block(node_id, phase.name, result.kind, result.reason or "")
        self._emit(FleetEvent.node_blocked(node))
        return PhaseFailure(node_id, phase.name, result.kind, result.reason or "")

    def _record_engine_failure(
        self,
        node: Node,
        phase: Phase,
        run_id: UUID,
        failure: PhaseFailure,
    ) -> None:
        now = datetime.now(timezone.utc)
        self._records.append(
            ExecutionRecord(
                node_id=node.identifier,
                phase=phase.name,
                outcome=RecordOutcome.FAILURE,
                run_id=run_id,
                sequence=phase.sequence,
                attempt=0,
                started_at=now,
                finished_at=now,
                failure_kind=failure.kind,
                transport="engine",
                message=failure.diagnostic,
            )
        )
        self._emit(FleetEvent.phase_event(
            "failed", node.identifier, phase.name, attempt=0, kind=failure.kind.value
        ))
        logger.error(f"[engine] {node.identifier}: ❌ {phase.name} refused: {failure.diagnostic}")

    def _lease_owner(self) -> str:
        return f"{self._worker_id}:{uuid4().hex[:8]}"

    def _lease_for(self, timeout: float) -> int:
        """Lease covering one attempt, its retry backoff and the address lookup."""
        bound = timeout + self._retry.max_delay + self._settings.check_timeout + LEASE_GRACE_SECONDS
        return max(self._settings.lease_seconds, int(bound))

    def _emit(self, event: FleetEvent) -> None:
        self._emitter.emit([event])


def _diagnostic(error: ExecutorError) -> str:
    for text in (error.stderr, error.stdout):
        lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
        if lines:
            return lines[-1]
    return str(error)


def _failure_reason(error: ExecutorError, diagnostic: str) -> str:
    if isinstance(error, Timeout):
        return f"timeout: {error}"
    if isinstance(error, Unreachable):
        return f"unreachable: {error}"
    return diagnostic
