"""Fleet runner: parallel across nodes, sequential within a node."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from threading import Event, Lock
from typing import Callable, Dict, Iterable, List, Optional

from fleet_engine.core.errors import FleetError
from fleet_engine.engine.engine import NodeRunResult, PhaseEngine

logger = logging.getLogger(__name__)


@dataclass
class FleetOutcome:
    node_id: str
    result: Optional[NodeRunResult] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None and self.result.ok


class FleetRunner:
    """Runs the phase engine for many nodes, one worker thread per node."""

    def __init__(self, engine: PhaseEngine, max_workers: int = 4):
        self._engine = engine
        self._max_workers = max_workers
        self._cancel_events: Dict[str, Event] = {}
        self._lock = Lock()

    def provision(self, node_ids: Iterable[str], *, reapply: bool = False) -> List[FleetOutcome]:
        return self._run_all(
            node_ids,
            lambda node_id, cancel: self._engine.run(node_id, reapply=reapply, cancel=cancel),
        )

    def deploy(self, node_ids: Iterable[str]) -> List[FleetOutcome]:
        return self._run_all(
            node_ids,
            lambda node_id, cancel: self._engine.deploy(node_id, cancel=cancel),
        )

    def cancel(self, node_id: str) -> bool:
        """Cancel the in-flight phase of one node; other nodes are unaffected."""
        with self._lock:
            event = self._cancel_events.get(node_id)
        if event is None:
            return False
        event.set()
        logger.info(f"[fleet] cancellation requested for {node_id}")
        return True

    def cancel_all(self) -> None:
        with self._lock:
            events = list(self._cancel_events.values())
        for event in events:
            event.set()

    def _run_all(
        self,
        node_ids: Iterable[str],
        action: Callable[[str, Event], NodeRunResult],
    ) -> List[FleetOutcome]:
        node_ids = list(dict.fromkeys(node_ids))
        if not node_ids:
            return []

        outcomes: Dict[str, FleetOutcome] = {}
        workers = max(1, min(self._max_workers, len(node_ids)))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fleet") as pool:
            futures = {
                pool.submit(self._run_one, node_id, action): node_id
                for node_id in node_ids
            }
            try:
                for future in as_completed(futures):
                    outcome = future.result()
                    outcomes[outcome.node_id] = outcome
            except KeyboardInterrupt:
                logger.warning("[fleet] interrupted, cancelling in-flight phases")
                self.cancel_all()
                raise

        return [outcomes[node_id] for node_id in node_ids]

    def _run_one(self, node_id: str, action: Callable[[str, Event], NodeRunResult]) -> FleetOutcome:
        cancel = Event()
        with self._lock:
            self._cancel_events[node_id] = cancel
        try:
            return FleetOutcome(node_id, result=action(node_id, cancel))
        except FleetError as e:
            logger.error(f"[fleet] {node_id}: {e}")
            return FleetOutcome(node_id, error=e)
        except Exception as e:
            logger.error(f"[fleet] {node_id}: unexpected error: {e}", exc_info=True)
            return FleetOutcome(node_id, error=e)
        finally:
            with self._lock:
                self._cancel_events.pop(node_id, None)
