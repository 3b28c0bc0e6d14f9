# fleet_engine/container.py

"""Dependency injection container - wires all services together."""

from dataclasses import dataclass
from typing import Iterable, Optional

from fleet_engine.config import FleetSettings, settings as default_settings
from fleet_engine.core.events import EventEmitter, LogEventEmitter, MultiEventEmitter
from fleet_engine.core.repository import ExecutionRecordRepository, NodeRepository
from fleet_engine.engine.engine import PhaseEngine
from fleet_engine.engine.fleet import FleetRunner
from fleet_engine.engine.retry import RetryPolicy
from fleet_engine.executor.config import ExecutorConfig
from fleet_engine.executor.factory import ExecutorFactory
from fleet_engine.health_checker.checker import HealthChecker
from fleet_engine.infrastructure.sql.database import (
    create_db_engine,
    get_session_factory,
    init_db,
)
from fleet_engine.infrastructure.sql.node_repository import SqlNodeRepository
from fleet_engine.infrastructure.sql.record_repository import SqlExecutionRecordRepository
from fleet_engine.inventory.service import Inventory
from fleet_engine.monitoring.targets import PrometheusTargets
from fleet_engine.registry.service import DeploymentRegistry
from fleet_engine.validator.validator import Validator


@dataclass
class FleetContainer:
    settings: FleetSettings
    node_repository: NodeRepository
    record_repository: ExecutionRecordRepository
    inventory: Inventory
    registry: DeploymentRegistry
    executors: ExecutorFactory
    engine: PhaseEngine
    fleet: FleetRunner
    validator: Validator
    health_checker: HealthChecker
    emitters: EventEmitter
    targets: PrometheusTargets


def build_container(
    settings: Optional[FleetSettings] = None,
    session_factory=None,
    extra_emitters: Iterable[EventEmitter] = (),
) -> FleetContainer:
    """
    Build the object graph from settings.

    Without a session factory, the SQLite store at `settings.database_url`
    is opened and its tables are created. Tests pass a factory bound to an
    in-memory engine instead.
    """
    settings = settings or default_settings

    if session_factory is None:
        db_engine = create_db_engine(settings.database_url, settings.echo_sql)
        init_db(db_engine)
        session_factory = get_session_factory(db_engine)

    # ============================================
    # REPOSITORIES
    # ============================================

    node_repository = SqlNodeRepository(session_factory)
    record_repository = SqlExecutionRecordRepository(session_factory)

    # ============================================
    # EVENTS
    # ============================================

    emitters = MultiEventEmitter([LogEventEmitter(), *extra_emitters])

    # ============================================
    # SERVICES
    # ============================================

    inventory = Inventory(node_repository)
    registry = DeploymentRegistry()
    executors = ExecutorFactory(
        record_repository,
        ExecutorConfig.from_settings(settings),
        local_node_id=settings.local_node,
    )

    engine = PhaseEngine(
        inventory=inventory,
        records=record_repository,
        registry=registry,
        executors=executors,
        settings=settings,
        retry_policy=RetryPolicy.from_settings(settings),
        event_emitter=emitters,
    )
    fleet = FleetRunner(engine, max_workers=settings.max_parallel_nodes)

    validator = Validator(
        inventory=inventory,
        registry=registry,
        executors=executors,
        settings=settings,
    )
    health_checker = HealthChecker(
        inventory=inventory,
        validator=validator,
        executors=executors,
    )

    return FleetContainer(
        settings=settings,
        node_repository=node_repository,
        record_repository=record_repository,
        inventory=inventory,
        registry=registry,
        executors=executors,
        engine=engine,
        fleet=fleet,
        validator=validator,
        health_checker=health_checker,
        emitters=emitters,
        targets=PrometheusTargets(inventory, settings),
    )
