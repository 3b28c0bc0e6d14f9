# fleet_engine/validator/checks.py
"""Read-only validation checks. Each returns CheckResults for one node."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import requests

from fleet_engine.core.errors import ExecutorError, NonZeroExit
from fleet_engine.core.models import Node, Role
from fleet_engine.executor.base import CommandResult, RemoteExecutor
from fleet_engine.mesh.tailscale import TailscaleClient
from fleet_engine.registry.service import DeploymentRegistry
from fleet_engine.runtime.containers import ContainerRuntime
from fleet_engine.validator.models import CheckResult, Verdict

logger = logging.getLogger(__name__)

WILDCARD_HOSTS = {"0.0.0.0", "*", "[::]", "::"}
MESH_PROCESSES = ("tailscaled",)
MESH_INTERFACE = "tailscale0"

TEMP_WARN_CELSIUS = 75
MEMORY_WARN_PERCENT = 90
DISK_WARN_PERCENT = 85


@dataclass
class CheckContext:
    """Everything a check may read for one node."""

    node: Node
    address: Optional[str]
    executor: RemoteExecutor
    local_executor: RemoteExecutor
    runtime: ContainerRuntime
    registry: DeploymentRegistry
    settings: object
    http_get: Callable = requests.get

    def run(self, category: str, command: str) -> CommandResult:
        return self.executor.execute(
            self.node, command, self.settings.check_timeout, phase=f"check:{category}"
        )

    def result(self, category: str, verdict: Verdict, message: str) -> CheckResult:
        return CheckResult(category, verdict, message, node_id=self.node.identifier)


# ============================================
# CORE BATTERY
# ============================================

def check_connectivity(ctx: CheckContext) -> List[CheckResult]:
    """Ping the node's mesh address from the orchestrator host."""
    try:
        ctx.local_executor.execute(
            ctx.node,
            f"ping -c 1 -W 3 {ctx.address}",
            ctx.settings.check_timeout,
            phase="check:connectivity",
        )
    except ExecutorError as e:
        return [ctx.result("connectivity", Verdict.FAIL, f"{ctx.address} unreachable ({e})")]
    return [ctx.result("connectivity", Verdict.PASS, f"{ctx.address} reachable")]


def parse_listeners(output: str) -> List[Tuple[str, str, int, str]]:
    """Parse `ss -tlnpH` into (host, interface, port, process) tuples."""
    listeners = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 4 or fields[0] != "LISTEN":
            continue
        local = fields[3]
        host, _, port = local.rpartition(":")
        host, _, interface = host.partition("%")
        try:
            port_number = int(port)
        except ValueError:
            continue
        process = " ".join(fields[5:]) if len(fields) > 5 else ""
        listeners.append((host, interface, port_number, process))
    return listeners


def check_exposure(ctx: CheckContext) -> List[CheckResult]:
    """No listener on a wildcard address except the mesh daemon and allowlisted ports."""
    output = ctx.run("exposure", "ss -tlnpH").stdout
    allowlist = set(ctx.settings.exposure_allowlist)

    exposed = []
    for host, interface, port, process in parse_listeners(output):
        if host not in WILDCARD_HOSTS:
            continue
        if interface == MESH_INTERFACE:
            continue
        if any(name in process for name in MESH_PROCESSES):
            continue
        if port in allowlist:
            continue
        match = re.search(r'\(\("([^"]+)"', process)
        exposed.append(f"{host}:{port}" + (f" ({match.group(1)})" if match else ""))

    if exposed:
        return [ctx.result(
            "exposure", Verdict.FAIL,
            "wildcard listeners outside the mesh: " + ", ".join(sorted(set(exposed))),
        )]
    return [ctx.result("exposure", Verdict.PASS, "no wildcard listeners outside the mesh")]


def check_workload_cardinality(ctx: CheckContext) -> List[CheckResult]:
    """At most one active workload container; monitoring nodes are exempt."""
    if ctx.node.role == Role.MONITORING:
        return [ctx.result("workload-cardinality", Verdict.PASS, "monitoring node exempt")]

    workloads = ctx.runtime.workload_containers()
    names = ", ".join(c.name for c in workloads)
    if len(workloads) > 1:
        return [ctx.result(
            "workload-cardinality", Verdict.FAIL,
            f"{len(workloads)} active workload containers: {names}",
        )]
    if not workloads:
        return [ctx.result("workload-cardinality", Verdict.PASS, "no active workload container")]
    return [ctx.result("workload-cardinality", Verdict.PASS, f"1 active workload container: {names}")]


def check_service_health(ctx: CheckContext) -> List[CheckResult]:
    """HTTP checks against the role's declared health endpoints."""
    results = []
    for endpoint in ctx.registry.health_endpoints_for(ctx.node.role):
        url = f"http://{ctx.address}:{endpoint.port}{endpoint.path}"
        category = f"service-health:{endpoint.name}"
        try:
            response = ctx.http_get(url, timeout=ctx.settings.http_timeout)
        except requests.exceptions.RequestException as e:
            results.append(ctx.result(category, Verdict.FAIL, f"{url} error: {e}"))
            continue

        if 200 <= response.status_code < 400:
            results.append(ctx.result(category, Verdict.PASS, f"{url} ({response.status_code})"))
        else:
            results.append(ctx.result(category, Verdict.FAIL, f"{url} returned {response.status_code}"))
    return results


def check_resource_limits(ctx: CheckContext) -> List[CheckResult]:
    """Running workload containers declare CPU and memory ceilings (warning only)."""
    workloads = ctx.runtime.workload_containers()
    if not workloads:
        return [ctx.result("resource-limits", Verdict.PASS, "no running workload containers")]

    missing = []
    for container in workloads:
        gaps = []
        if not container.has_cpu_limit:
            gaps.append("cpu")
        if not container.has_memory_limit:
            gaps.append("memory")
        if gaps:
            missing.append(f"{container.name} (no {'/'.join(gaps)} limit)")

    if missing:
        return [ctx.result("resource-limits", Verdict.WARN, "; ".join(missing))]
    return [ctx.result(
        "resource-limits", Verdict.PASS,
        f"{len(workloads)} workload container(s) have cpu and memory limits",
    )]


# ============================================
# HOST POSTURE
# ============================================

def check_firewall(ctx: CheckContext) -> List[CheckResult]:
    try:
        output = ctx.run("firewall", "ufw status").stdout
    except NonZeroExit as e:
        return [ctx.result("firewall", Verdict.FAIL, f"ufw status failed (exit {e.code})")]
    if "Status: active" in output:
        return [ctx.result("firewall", Verdict.PASS, "UFW active")]
    return [ctx.result("firewall", Verdict.FAIL, "UFW not active")]


def check_ssh_auth(ctx: CheckContext) -> List[CheckResult]:
    output = ctx.run("ssh-auth", "sshd -T 2>/dev/null | grep -i '^passwordauthentication' || true").stdout
    if output.strip().lower().endswith(" no"):
        return [ctx.result("ssh-auth", Verdict.PASS, "password authentication disabled")]
    return [ctx.result("ssh-auth", Verdict.WARN, "password authentication may be enabled")]


def check_exit_node(ctx: CheckContext) -> List[CheckResult]:
    status = TailscaleClient(ctx.executor, ctx.settings.check_timeout).status(
        ctx.node, phase="check:exit-node"
    )
    if status.exit_node_option or status.advertises_exit_node:
        return [ctx.result("exit-node", Verdict.FAIL, "node is offered as a mesh exit node")]
    return [ctx.result("exit-node", Verdict.PASS, "not an exit node")]


def check_storage(ctx: CheckContext) -> List[CheckResult]:
    if ctx.node.role != Role.STORAGE:
        return []

    mount = ctx.settings.storage_mount
    try:
        output = ctx.run(
            "storage", f"mountpoint -q {mount} && df -P {mount} | awk 'NR==2 {{print $5}}'"
        ).stdout
    except NonZeroExit:
        return [ctx.result("storage", Verdict.FAIL, f"{mount} not mounted")]

    usage = int(output.strip().rstrip("%") or 0)
    if usage > ctx.settings.storage_warn_percent:
        return [ctx.result("storage", Verdict.WARN, f"{mount} {usage}% used")]
    return [ctx.result("storage", Verdict.PASS, f"{mount} mounted, {usage}% used")]


def check_gpu_idle(ctx: CheckContext) -> List[CheckResult]:
    if ctx.node.role != Role.STANDBY:
        return []

    try:
        output = ctx.run(
            "gpu-idle", "nvidia-smi --query-compute-apps=pid --format=csv,noheader"
        ).stdout
    except NonZeroExit:
        return [ctx.result("gpu-idle", Verdict.WARN, "nvidia-smi unavailable")]

    processes = [line for line in output.splitlines() if line.strip()]
    if processes:
        return [ctx.result("gpu-idle", Verdict.FAIL, f"{len(processes)} CUDA process(es) on standby GPU")]
    return [ctx.result("gpu-idle", Verdict.PASS, "GPU idle")]


HOST_VITALS_COMMAND = (
    "t=$(cat /sys/class/thermal/thermal_zone0/temp 2>/dev/null || echo 0); "
    "m=$(free | awk '/^Mem:/ {printf \"%d\", $3*100/$2}'); "
    "d=$(df -P / | awk 'NR==2 {print $5}' | tr -d '%'); "
    "echo \"{\\\"temp_milli\\\": $t, \\\"memory_percent\\\": $m, \\\"disk_percent\\\": $d}\""
)


def check_host_vitals(ctx: CheckContext) -> List[CheckResult]:
    """SoC temperature, memory and root disk usage."""
    vitals = json.loads(ctx.run("host-vitals", HOST_VITALS_COMMAND).stdout)
    temp = vitals.get("temp_milli", 0) / 1000
    memory = vitals.get("memory_percent", 0)
    disk = vitals.get("disk_percent", 0)

    warnings = []
    if temp > TEMP_WARN_CELSIUS:
        warnings.append(f"temperature {temp:.1f}C")
    if memory > MEMORY_WARN_PERCENT:
        warnings.append(f"memory {memory}%")
    if disk > DISK_WARN_PERCENT:
        warnings.append(f"disk {disk}%")

    summary = f"temp {temp:.1f}C, memory {memory}%, disk {disk}%"
    if warnings:
        return [ctx.result("host-vitals", Verdict.WARN, "high " + ", ".join(warnings))]
    return [ctx.result("host-vitals", Verdict.PASS, summary)]


# ============================================
# BATTERIES
# ============================================

FLEET_CHECKS: List[Tuple[str, Callable[[CheckContext], List[CheckResult]]]] = [
    ("connectivity", check_connectivity),
    ("exposure", check_exposure),
    ("workload-cardinality", check_workload_cardinality),
    ("service-health", check_service_health),
    ("resource-limits", check_resource_limits),
    ("firewall", check_firewall),
    ("ssh-auth", check_ssh_auth),
    ("exit-node", check_exit_node),
    ("storage", check_storage),
    ("gpu-idle", check_gpu_idle),
]

HEALTH_CHECKS: List[Tuple[str, Callable[[CheckContext], List[CheckResult]]]] = [
    ("host-vitals", check_host_vitals),
    ("exposure", check_exposure),
    ("workload-cardinality", check_workload_cardinality),
    ("service-health", check_service_health),
    ("resource-limits", check_resource_limits),
    ("storage", check_storage),
]
