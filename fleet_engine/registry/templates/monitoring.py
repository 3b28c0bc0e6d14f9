# fleet_engine/registry/templates/monitoring.py
"""Monitoring stack: Prometheus, Grafana and Alertmanager.

Ports are published on the mesh address only; the override flag
records that the inbound exposure was reviewed for this role.
"""

from fleet_engine.core.models import HealthEndpoint, Role, WorkloadSpec

PROMETHEUS_PORT = 9090
GRAFANA_PORT = 3000
ALERTMANAGER_PORT = 9093


MONITORING_WORKLOAD = WorkloadSpec(
    role=Role.MONITORING,
    name="prometheus",
    image="prom/prometheus:latest",
    cpu_limit=0.40,
    memory_limit_mb=384,
    inbound_ports=[PROMETHEUS_PORT, GRAFANA_PORT, ALERTMANAGER_PORT],
    inbound_override=True,
    health_endpoints=[
        HealthEndpoint("prometheus", PROMETHEUS_PORT, "/-/healthy"),
        HealthEndpoint("grafana", GRAFANA_PORT, "/api/health"),
        HealthEndpoint("alertmanager", ALERTMANAGER_PORT, "/-/healthy"),
    ],
    volumes=[
        "./prometheus:/etc/prometheus:ro",
        "prometheus-data:/prometheus",
    ],
    extra_services=[
        {
            "name": "grafana",
            "image": "grafana/grafana:latest",
            "port": GRAFANA_PORT,
            "cpu_limit": 0.30,
            "memory_limit_mb": 256,
            "volumes": ["grafana-data:/var/lib/grafana"],
        },
        {
            "name": "alertmanager",
            "image": "prom/alertmanager:latest",
            "port": ALERTMANAGER_PORT,
            "cpu_limit": 0.10,
            "memory_limit_mb": 64,
            "volumes": ["./alertmanager:/etc/alertmanager:ro"],
        },
    ],
)
