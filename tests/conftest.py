# tests/conftest.py

"""Pytest configuration and fixtures."""

import json
import re
from threading import Lock

import pytest

from fleet_engine.config import FleetSettings
from fleet_engine.container import FleetContainer
from fleet_engine.core.events import RecordingEventEmitter
from fleet_engine.core.models import HARDWARE_CLASSES, Node, ResourceOverride, Role
from fleet_engine.engine.engine import PhaseEngine
from fleet_engine.engine.fleet import FleetRunner
from fleet_engine.engine.retry import RetryPolicy
from fleet_engine.executor.base import CommandResult, RemoteExecutor
from fleet_engine.executor.config import ExecutorConfig
from fleet_engine.executor.factory import ExecutorFactory
from fleet_engine.health_checker.checker import HealthChecker
from fleet_engine.infrastructure.memory.repository import (
    InMemoryExecutionRecordRepository,
    InMemoryNodeRepository,
)
from fleet_engine.infrastructure.sql.database import create_db_engine, get_session_factory, init_db
from fleet_engine.infrastructure.sql.node_repository import SqlNodeRepository
from fleet_engine.infrastructure.sql.record_repository import SqlExecutionRecordRepository
from fleet_engine.inventory.service import Inventory
from fleet_engine.mesh.tailscale import SEPARATOR
from fleet_engine.monitoring.targets import PrometheusTargets
from fleet_engine.registry.service import DeploymentRegistry
from fleet_engine.runtime.containers import ContainerRuntime
from fleet_engine.validator.validator import Validator

_PHASE_HEADER = re.compile(r"^# phase: (\S+)$", re.MULTILINE)

MESH_STATUS = json.dumps({
    "BackendState": "Running",
    "Self": {"TailscaleIPs": ["100.64.0.10", "fd7a:115c:a1e0::a"], "ExitNodeOption": False},
}) + f"\n{SEPARATOR}\n" + json.dumps({"RouteAll": False, "AdvertiseRoutes": []})


# ============================================
# Fakes
# ============================================

class ScriptedExecutor(RemoteExecutor):
    """
    Executor that answers from rules instead of running anything.

    Rules match a phase name (from the `# phase:` header of rendered
    scripts) or a command prefix. A rule holds a queue of responses; the
    last one repeats. A response is a CommandResult, an exception to raise,
    or a callable(node, command) returning either.
    """

    transport = "scripted"

    def __init__(self, records, config=None):
        super().__init__(records, config or ExecutorConfig())
        self.calls = []
        self._rules = []
        self._lock = Lock()
        self.on("tailscale status", CommandResult(MESH_STATUS, "", 0))

    def on(self, key, *responses):
        with self._lock:
            self._rules = [rule for rule in self._rules if rule[0] != key]
            self._rules.insert(0, (key, list(responses)))
        return self

    def phases_called(self, node_id=None):
        return [key for node, key in self.calls if node_id is None or node == node_id]

    def _invoke(self, node, command, timeout, cancel):
        match = _PHASE_HEADER.search(command)
        phase = match.group(1) if match else None

        with self._lock:
            self.calls.append((node.identifier, phase or command))
            response = CommandResult("", "", 0)
            for key, responses in self._rules:
                if key == phase or (phase is None and command.startswith(key)):
                    response = responses.pop(0) if len(responses) > 1 else responses[0]
                    break

        if callable(response) and not isinstance(response, CommandResult):
            response = response(node, command)
        if isinstance(response, BaseException):
            raise response
        return response


class ScriptedExecutorFactory(ExecutorFactory):
    """Hands out the same scripted executor for every node."""

    def __init__(self, executor):
        super().__init__(executor._records)
        self.executor = executor

    def for_node(self, node):
        return self.executor

    def local(self):
        return self.executor


class FakeRuntime(ContainerRuntime):
    def __init__(self, containers=None):
        self.containers = list(containers or [])

    def list_containers(self):
        return list(self.containers)


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


# ============================================
# Database
# ============================================

@pytest.fixture
def test_engine():
    """In-memory SQLite engine (StaticPool) with all tables."""
    engine = create_db_engine("sqlite://", echo=False)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def test_session_factory(test_engine):
    return get_session_factory(test_engine)


@pytest.fixture
def node_repo(test_session_factory):
    return SqlNodeRepository(session_factory=test_session_factory)


@pytest.fixture
def record_repo(test_session_factory):
    return SqlExecutionRecordRepository(session_factory=test_session_factory)


# ============================================
# Domain
# ============================================

@pytest.fixture
def settings():
    return FleetSettings(
        database_url="sqlite://",
        inventory_path="tests-no-inventory.yaml",
        local_node=None,
        max_retries=3,
        retry_base_delay=0,
        check_timeout=5,
        http_timeout=1,
    )


@pytest.fixture
def make_node():
    def _make(identifier="a", role=Role.STORAGE, hardware="rpi3b+", **kwargs):
        return Node(
            identifier=identifier,
            role=role,
            hardware=HARDWARE_CLASSES[hardware],
            hostname=kwargs.pop("hostname", f"zpin-{identifier}"),
            resources=kwargs.pop("resources", ResourceOverride()),
            **kwargs,
        )
    return _make


@pytest.fixture
def inventory(node_repo):
    return Inventory(node_repo)


@pytest.fixture
def registry():
    return DeploymentRegistry()


@pytest.fixture
def executor(record_repo):
    return ScriptedExecutor(record_repo)


@pytest.fixture
def executors(executor):
    return ScriptedExecutorFactory(executor)


@pytest.fixture
def emitter():
    return RecordingEventEmitter()


@pytest.fixture
def retry_policy():
    return RetryPolicy(max_retries=3, base_delay=0, sleep=lambda seconds: None)


@pytest.fixture
def engine(inventory, record_repo, registry, executors, settings, retry_policy, emitter):
    return PhaseEngine(
        inventory=inventory,
        records=record_repo,
        registry=registry,
        executors=executors,
        settings=settings,
        retry_policy=retry_policy,
        event_emitter=emitter,
        worker_id="test-worker",
    )


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def http_get():
    calls = []

    payloads = {}

    def _get(url, timeout):
        calls.append(url)
        return FakeResponse(200, payloads.get(url))

    _get.calls = calls
    _get.payloads = payloads
    return _get


@pytest.fixture
def validator(inventory, registry, executors, settings, runtime, http_get):
    return Validator(
        inventory=inventory,
        registry=registry,
        executors=executors,
        settings=settings,
        http_get=http_get,
        runtime_factory=lambda executor, node: runtime,
    )


@pytest.fixture
def container(settings, node_repo, record_repo, inventory, registry, executors,
              engine, validator, runtime, emitter, http_get):
    """Fully wired container with scripted transports."""
    return FleetContainer(
        settings=settings,
        node_repository=node_repo,
        record_repository=record_repo,
        inventory=inventory,
        registry=registry,
        executors=executors,
        engine=engine,
        fleet=FleetRunner(engine, max_workers=1),
        validator=validator,
        health_checker=HealthChecker(
            inventory=inventory,
            validator=validator,
            executors=executors,
            runtime=runtime,
        ),
        emitters=emitter,
        targets=PrometheusTargets(inventory, settings, http_get=http_get),
    )


# ============================================
# In-memory variant (thread-safe, for fleet runs)
# ============================================

@pytest.fixture
def memory_stack(registry, settings, retry_policy):
    node_repo = InMemoryNodeRepository()
    record_repo = InMemoryExecutionRecordRepository()
    inventory = Inventory(node_repo)
    executor = ScriptedExecutor(record_repo)
    engine = PhaseEngine(
        inventory=inventory,
        records=record_repo,
        registry=registry,
        executors=ScriptedExecutorFactory(executor),
        settings=settings,
        retry_policy=retry_policy,
        worker_id="test-worker",
    )
    return inventory, record_repo, executor, engine
