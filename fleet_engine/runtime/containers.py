"""Container runtime collaborator: list and inspect workload containers."""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import docker
from docker.errors import DockerException

from fleet_engine.core.errors import ExecutorError
from fleet_engine.core.models import Node
from fleet_engine.executor.base import RemoteExecutor
from fleet_engine.registry.compose import ROLE_LABEL, WORKLOAD_LABEL

logger = logging.getLogger(__name__)

LIST_CONTAINERS = 'ids=$(docker ps -q); if [ -z "$ids" ]; then echo "[]"; else docker inspect $ids; fi'

LOG_MARKER = "==> container:"


def tail_logs_command(lines: int) -> str:
    return (
        "for c in $(docker ps --format '{{.Names}}'); do "
        f"echo \"{LOG_MARKER} $c\"; docker logs --tail={int(lines)} \"$c\" 2>&1; "
        "done"
    )


def parse_logs(output: str) -> List[Tuple[str, str]]:
    """Split tail output into (container, log text) pairs."""
    sections: List[Tuple[str, List[str]]] = []
    for line in (output or "").splitlines():
        if line.startswith(LOG_MARKER):
            sections.append((line[len(LOG_MARKER):].strip(), []))
        elif sections:
            sections[-1][1].append(line)
    return [(name, "\n".join(body)) for name, body in sections]


@dataclass
class ContainerInfo:
    """Subset of `docker inspect` the validator needs."""

    name: str
    image: str = ""
    running: bool = True
    labels: Dict[str, str] = field(default_factory=dict)
    nano_cpus: int = 0
    cpu_quota: int = 0
    memory_bytes: int = 0

    @property
    def is_workload(self) -> bool:
        if self.labels.get(WORKLOAD_LABEL) == "true":
            return True
        return "depin" in self.name.lower()

    @property
    def role(self) -> Optional[str]:
        return self.labels.get(ROLE_LABEL)

    @property
    def has_cpu_limit(self) -> bool:
        return self.nano_cpus > 0 or self.cpu_quota > 0

    @property
    def has_memory_limit(self) -> bool:
        return self.memory_bytes > 0


def parse_inspect(items: Iterable[Dict[str, Any]]) -> List[ContainerInfo]:
    """Convert `docker inspect` objects (CLI or SDK attrs) to ContainerInfo."""
    containers = []
    for item in items:
        config = item.get("Config") or {}
        host = item.get("HostConfig") or {}
        state = item.get("State") or {}
        containers.append(
            ContainerInfo(
                name=(item.get("Name") or "").lstrip("/"),
                image=config.get("Image", ""),
                running=bool(state.get("Running", False)),
                labels=config.get("Labels") or {},
                nano_cpus=host.get("NanoCpus") or 0,
                cpu_quota=host.get("CpuQuota") or 0,
                memory_bytes=host.get("Memory") or 0,
            )
        )
    return containers


class ContainerRuntime(ABC):
    @abstractmethod
    def list_containers(self) -> List[ContainerInfo]:
        """Running containers on the node."""
        raise NotImplementedError

    def workload_containers(self) -> List[ContainerInfo]:
        return [c for c in self.list_containers() if c.running and c.is_workload]


class DockerCliRuntime(ContainerRuntime):
    """Inspects containers through the node's executor session."""

    def __init__(self, executor: RemoteExecutor, node: Node, timeout: float):
        self._executor = executor
        self._node = node
        self._timeout = timeout

    def list_containers(self) -> List[ContainerInfo]:
        result = self._executor.execute(
            self._node, LIST_CONTAINERS, self._timeout, phase="check:containers"
        )
        try:
            items = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise ExecutorError(f"unparseable docker inspect output: {e}") from e
        return parse_inspect(items)

    def tail_logs(self, lines: int) -> List[Tuple[str, str]]:
        """Last `lines` log lines of every running container."""
        result = self._executor.execute(
            self._node, tail_logs_command(lines), self._timeout, phase="check:logs"
        )
        return parse_logs(result.stdout)


class DockerSdkRuntime(ContainerRuntime):
    """Inspects containers on this host through the Docker Engine API."""

    def __init__(self, client=None, timeout: int = 10):
        self._client = client
        self._timeout = timeout

    def _get_client(self):
        if self._client is None:
            try:
                self._client = docker.from_env(timeout=self._timeout)
            except DockerException as e:
                raise ExecutorError(f"Docker engine unavailable: {e}") from e
        return self._client

    def list_containers(self) -> List[ContainerInfo]:
        try:
            containers = self._get_client().containers.list()
        except DockerException as e:
            raise ExecutorError(f"Docker engine unavailable: {e}") from e
        return parse_inspect(container.attrs for container in containers)
