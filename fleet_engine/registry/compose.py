"""Renders a WorkloadSpec as a docker-compose document."""

from typing import Any, Dict, List

import yaml

from fleet_engine.core.models import WorkloadSpec

DOCKER_NETWORK = "depin-net"
LOG_MAX_SIZE = "10m"
LOG_MAX_FILE = "3"

WORKLOAD_LABEL = "depin.workload"
ROLE_LABEL = "depin.role"


def _named_volumes(volumes: List[str]) -> List[str]:
    names = []
    for volume in volumes:
        source = volume.split(":", 1)[0]
        if source and not source.startswith(("/", ".", "$")):
            names.append(source)
    return names


def _service(
    spec: WorkloadSpec,
    name: str,
    image: str,
    cpu_limit: float,
    memory_limit_mb: int,
    ports: List[int],
    volumes: List[str],
    memory_reservation_mb=None,
) -> Dict[str, Any]:
    service: Dict[str, Any] = {
        "image": image,
        "container_name": name,
        "restart": "unless-stopped",
        "networks": [DOCKER_NETWORK],
        "labels": {
            WORKLOAD_LABEL: "true",
            ROLE_LABEL: spec.role.value,
            **spec.labels,
        },
        "deploy": {
            "resources": {
                "limits": {
                    "cpus": f"{cpu_limit:.2f}",
                    "memory": f"{memory_limit_mb}M",
                },
            },
        },
        "logging": {
            "driver": "json-file",
            "options": {"max-size": LOG_MAX_SIZE, "max-file": LOG_MAX_FILE},
        },
        "security_opt": ["no-new-privileges:true"],
    }

    if memory_reservation_mb:
        service["deploy"]["resources"]["reservations"] = {
            "memory": f"{memory_reservation_mb}M"
        }

    if ports:
        # Published on the mesh address only, never on a wildcard
        service["ports"] = [f"${{MESH_ADDRESS}}:{port}:{port}" for port in ports]

    if volumes:
        service["volumes"] = list(volumes)

    return service


def render_compose(spec: WorkloadSpec) -> str:
    """Compose YAML for a workload; empty document for standby-only roles."""
    if spec.standby_only:
        return yaml.safe_dump({"services": {}}, sort_keys=False)

    main_ports = [
        port for port in spec.inbound_ports
        if port not in {extra.get("port") for extra in spec.extra_services}
    ]
    main = _service(
        spec,
        name=spec.name,
        image=spec.image,
        cpu_limit=spec.cpu_limit,
        memory_limit_mb=spec.memory_limit_mb,
        ports=main_ports,
        volumes=spec.volumes,
        memory_reservation_mb=spec.memory_reservation_mb,
    )
    if spec.environment:
        main["environment"] = dict(spec.environment)
    main["env_file"] = [{"path": ".env", "required": False}]

    services = {spec.name: main}
    all_volumes = list(spec.volumes)

    for extra in spec.extra_services:
        services[extra["name"]] = _service(
            spec,
            name=extra["name"],
            image=extra["image"],
            cpu_limit=extra.get("cpu_limit", spec.cpu_limit),
            memory_limit_mb=extra.get("memory_limit_mb", spec.memory_limit_mb),
            ports=[extra["port"]] if extra.get("port") else [],
            volumes=extra.get("volumes", []),
        )
        all_volumes.extend(extra.get("volumes", []))

    document: Dict[str, Any] = {
        "services": services,
        "networks": {DOCKER_NETWORK: {"external": True}},
    }

    named = _named_volumes(all_volumes)
    if named:
        document["volumes"] = {name: {} for name in named}

    return yaml.safe_dump(document, sort_keys=False)
