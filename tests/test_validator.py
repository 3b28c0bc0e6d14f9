"""Test the validator checks and skip rules."""

import json

import pytest
import requests

from fleet_engine.core.errors import NonZeroExit
from fleet_engine.core.models import LifecycleState, Role
from fleet_engine.executor.base import CommandResult
from fleet_engine.mesh.tailscale import SEPARATOR
from fleet_engine.runtime.containers import ContainerInfo
from fleet_engine.validator.checks import HEALTH_CHECKS, parse_listeners
from fleet_engine.validator.models import CheckResult, ValidationReport, Verdict
from fleet_engine.validator.validator import UNREACHABLE_SKIP, Validator


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


LIMITED = dict(labels={"depin.workload": "true"}, nano_cpus=500_000_000, memory_bytes=512 * 1024 * 1024)

SS_OUTPUT = "\n".join([
    'LISTEN 0 128 0.0.0.0:22 0.0.0.0:* users:(("sshd",pid=612,fd=3))',
    'LISTEN 0 128 [::]:22 [::]:* users:(("sshd",pid=612,fd=4))',
    'LISTEN 0 4096 100.64.0.10:9100 0.0.0.0:* users:(("node_exporter",pid=900,fd=3))',
    'LISTEN 0 4096 *:41641 *:* users:(("tailscaled",pid=500,fd=12))',
    'LISTEN 0 4096 0.0.0.0%tailscale0:53 0.0.0.0:* users:(("tailscaled",pid=500,fd=20))',
    'LISTEN 0 4096 127.0.0.1:631 0.0.0.0:* users:(("cupsd",pid=700,fd=7))',
])


@pytest.fixture
def networked(inventory, make_node):
    """Register a node that has completed mesh enrollment."""
    def _networked(identifier="a", role=Role.STORAGE, hardware="rpi3b+", address="100.64.0.10"):
        inventory.register(make_node(identifier, role=role, hardware=hardware))
        inventory.enroll(identifier, address)
        inventory.set_state(identifier, LifecycleState.NETWORKED)
        return inventory.get(identifier)
    return _networked


@pytest.fixture
def healthy(executor, runtime):
    """Scripted host posture that passes every check."""
    executor.on("ss -tlnpH", CommandResult(SS_OUTPUT, "", 0))
    executor.on("ufw status", CommandResult("Status: active\n", "", 0))
    executor.on("sshd -T", CommandResult("passwordauthentication no\n", "", 0))
    executor.on("mountpoint", CommandResult("42%\n", "", 0))
    runtime.containers = [
        ContainerInfo("storj-storage", **LIMITED),
        ContainerInfo("node-exporter"),
    ]
    return executor


def _verdict(report, category, node_id="a"):
    (result,) = report.find(category, node_id)
    return result.verdict


class TestFullBattery:

    def test_healthy_storage_node(self, validator, networked, healthy, http_get):
        """Test a healthy storage node passes the full battery."""
        networked("a")

        report = validator.run()

        assert report.verdict == Verdict.PASS, [r.to_dict() for r in report.results if r.verdict != Verdict.PASS]
        assert report.exit_code == 0
        assert http_get.calls == ["http://100.64.0.10:9100/metrics"]
        categories = {r.category for r in report.results}
        assert "storage" in categories
        assert "gpu-idle" not in categories

    def test_validation_is_read_only(self, validator, networked, healthy, inventory):
        """Test validation changes no node state."""
        before = networked("a")

        validator.run()

        after = inventory.get("a")
        assert after.lifecycle_state == before.lifecycle_state
        assert after.run_status == before.run_status
        assert after.version == before.version

    def test_category_filter(self, validator, networked, healthy):
        """Test running selected check categories."""
        networked("a")

        report = validator.run(categories=["exposure", "firewall"])

        assert {r.category for r in report.results} == {"exposure", "firewall"}

    def test_checks_leave_unsequenced_records(self, validator, networked, healthy, record_repo):
        """Test check commands are recorded without a sequence."""
        networked("a")

        validator.run(categories=["exposure"])

        (record,) = record_repo.list_for_node("a", phase="check:exposure")
        assert record.sequence is None
        assert record_repo.latest_by_phase("a") == {}


class TestSkipRules:

    def test_unknown_address_warns_and_skips(self, validator, inventory, make_node, executor):
        """Test a node without an address warns and is skipped."""
        inventory.register(make_node("a"))

        report = validator.run()

        (result,) = report.results
        assert result.category == "connectivity"
        assert result.verdict == Verdict.WARN
        assert "address unknown" in result.message
        assert executor.calls == []

    def test_unreachable_node_fails_remaining_checks(self, validator, networked, executor):
        """Test an unreachable node fails the remaining checks."""
        networked("a")
        executor.on("ping", NonZeroExit(1, "", "100% packet loss"))

        report = validator.run()

        assert _verdict(report, "connectivity") == Verdict.FAIL
        skipped = [r for r in report.results if r.category != "connectivity"]
        assert skipped
        assert all(r.verdict == Verdict.FAIL and r.message == UNREACHABLE_SKIP for r in skipped)
        assert [key for _, key in executor.calls] == ["ping -c 1 -W 3 100.64.0.10"]

    def test_check_exception_becomes_fail(self, validator, networked, healthy, runtime):
        """Test a check that raises becomes a failure."""
        networked("a")

        def broken():
            raise RuntimeError("docker socket gone")

        runtime.list_containers = broken

        report = validator.run()

        result = report.find("workload-cardinality", "a")[0]
        assert result.verdict == Verdict.FAIL
        assert "docker socket gone" in result.message
        assert _verdict(report, "firewall") == Verdict.PASS

    def test_one_node_does_not_stop_the_sweep(self, validator, networked, inventory, make_node, healthy):
        """Test one bad node does not stop the sweep."""
        networked("a")
        inventory.register(make_node("b"))

        report = validator.run()

        assert report.for_node("a")
        assert report.for_node("b")[0].verdict == Verdict.WARN


class TestExposure:

    def test_parse_listeners(self):
        """Test parsing ss listener output."""
        listeners = parse_listeners(SS_OUTPUT + "\nState Recv-Q\n")

        assert listeners[0] == ("0.0.0.0", "", 22, 'users:(("sshd",pid=612,fd=3))')
        assert listeners[1][:3] == ("[::]", "", 22)
        assert listeners[4][:3] == ("0.0.0.0", "tailscale0", 53)
        assert len(listeners) == 6

    def test_wildcard_listener_fails(self, validator, networked, healthy):
        """Test a wildcard listener outside the allowlist fails."""
        networked("a")
        healthy.on("ss -tlnpH", CommandResult(
            SS_OUTPUT + '\nLISTEN 0 511 0.0.0.0:8080 0.0.0.0:* users:(("nginx",pid=1,fd=6))',
            "", 0,
        ))

        report = validator.run(categories=["exposure"])

        (result,) = report.results
        assert result.verdict == Verdict.FAIL
        assert "0.0.0.0:8080 (nginx)" in result.message

    def test_allowlist_from_settings(self, validator, networked, healthy, settings):
        """Test the exposure allowlist comes from settings."""
        networked("a")
        settings.exposure_allowlist = []

        report = validator.run(categories=["exposure"])

        assert _verdict(report, "exposure") == Verdict.FAIL


class TestWorkloadChecks:

    def test_two_workloads_fail(self, validator, networked, runtime):
        """Test two active workloads fail cardinality."""
        networked("a")
        runtime.containers = [
            ContainerInfo("storj-storage", **LIMITED),
            ContainerInfo("indexing-depin", **LIMITED),
        ]

        report = validator.run(categories=["workload-cardinality"])

        assert _verdict(report, "workload-cardinality") == Verdict.FAIL

    @pytest.mark.parametrize("role, hardware", [
        (Role.STORAGE, "rpi3b+"),
        (Role.BANDWIDTH, "rpi4"),
        (Role.STANDBY, "rpi3b+"),
    ])
    def test_no_workload_passes(self, validator, networked, runtime, role, hardware):
        """Zero running workload containers is within the at-most-one rule."""
        networked("a", role=role, hardware=hardware)
        runtime.containers = [ContainerInfo("node-exporter")]

        report = validator.run(categories=["workload-cardinality"])

        (result,) = report.find("workload-cardinality", "a")
        assert result.verdict == Verdict.PASS
        assert result.message == "no active workload container"

    def test_stopped_container_not_counted(self, validator, networked, runtime):
        """Test stopped containers are not counted."""
        networked("a")
        runtime.containers = [
            ContainerInfo("storj-storage", **LIMITED),
            ContainerInfo("old-depin", running=False),
        ]

        report = validator.run(categories=["workload-cardinality"])

        assert _verdict(report, "workload-cardinality") == Verdict.PASS

    def test_monitoring_is_exempt(self, validator, networked, runtime):
        """Test monitoring nodes are exempt from cardinality."""
        networked("mon", role=Role.MONITORING, hardware="rpi4")
        runtime.containers = [
            ContainerInfo(name, labels={"depin.workload": "true"})
            for name in ("prometheus", "grafana", "alertmanager")
        ]

        report = validator.run(categories=["workload-cardinality"])

        assert _verdict(report, "workload-cardinality", "mon") == Verdict.PASS

    def test_missing_limits_warn(self, validator, networked, runtime):
        """Test missing resource limits warn."""
        networked("a")
        runtime.containers = [ContainerInfo("storj-storage", labels={"depin.workload": "true"})]

        report = validator.run(categories=["resource-limits"])

        (result,) = report.results
        assert result.verdict == Verdict.WARN
        assert "no cpu/memory limit" in result.message
        assert report.exit_code == 0


class TestServiceHealth:

    def test_monitoring_endpoints(self, validator, networked, http_get):
        """Test monitoring health endpoints are checked."""
        networked("mon", role=Role.MONITORING, hardware="rpi4", address="100.64.0.20")

        report = validator.run(categories=["service-health"])

        assert len(report.results) == 4
        assert "http://100.64.0.20:3000/api/health" in http_get.calls

    def test_bad_status_and_connection_error(self, inventory, registry, executors, settings, runtime, networked):
        """Test bad HTTP status and connection errors fail."""
        networked("mon", role=Role.MONITORING, hardware="rpi4")

        def http_get(url, timeout):
            if ":3000" in url:
                raise requests.exceptions.ConnectionError("connection refused")
            if ":9093" in url:
                return FakeResponse(503)
            return FakeResponse(200)

        validator = Validator(
            inventory=inventory, registry=registry, executors=executors, settings=settings,
            http_get=http_get, runtime_factory=lambda executor, node: runtime,
        )

        report = validator.run(categories=["service-health"])

        assert _verdict(report, "service-health:grafana", "mon") == Verdict.FAIL
        assert _verdict(report, "service-health:alertmanager", "mon") == Verdict.FAIL
        assert _verdict(report, "service-health:prometheus", "mon") == Verdict.PASS

    def test_standby_has_no_endpoints(self, validator, networked, http_get):
        """Test standby nodes have no service checks."""
        networked("rtx", role=Role.STANDBY, hardware="gpu-workstation")

        report = validator.run(categories=["service-health"])

        assert report.results == []
        assert http_get.calls == []


class TestHostPosture:

    def test_firewall_inactive(self, validator, networked, executor):
        """Test an inactive firewall fails."""
        networked("a")
        executor.on("ufw status", CommandResult("Status: inactive\n", "", 0))

        assert _verdict(validator.run(categories=["firewall"]), "firewall") == Verdict.FAIL

    def test_password_auth_warns(self, validator, networked, executor):
        """Test ssh password authentication warns."""
        networked("a")
        executor.on("sshd -T", CommandResult("passwordauthentication yes\n", "", 0))

        assert _verdict(validator.run(categories=["ssh-auth"]), "ssh-auth") == Verdict.WARN

    def test_exit_node_fails(self, validator, networked, executor):
        """Test advertising an exit node fails."""
        networked("a")
        status = json.dumps({"BackendState": "Running", "Self": {"ExitNodeOption": True}})
        executor.on("tailscale status", CommandResult(f"{status}\n{SEPARATOR}\n{{}}", "", 0))

        assert _verdict(validator.run(categories=["exit-node"]), "exit-node") == Verdict.FAIL

    def test_storage_nearly_full(self, validator, networked, executor):
        """Test a nearly full storage mount warns."""
        networked("a")
        executor.on("mountpoint", CommandResult("91%\n", "", 0))

        assert _verdict(validator.run(categories=["storage"]), "storage") == Verdict.WARN

    def test_storage_not_mounted(self, validator, networked, executor):
        """Test a missing storage mount fails."""
        networked("a")
        executor.on("mountpoint", NonZeroExit(1))

        assert _verdict(validator.run(categories=["storage"]), "storage") == Verdict.FAIL

    def test_standby_gpu_busy(self, validator, networked, executor):
        """Test a busy GPU on standby fails."""
        networked("rtx", role=Role.STANDBY, hardware="gpu-workstation")
        executor.on("nvidia-smi", CommandResult("4242\n", "", 0))

        report = validator.run(categories=["gpu-idle"])

        assert _verdict(report, "gpu-idle", "rtx") == Verdict.FAIL

    def test_standby_without_driver_warns(self, validator, networked, executor):
        """Test standby without a GPU driver warns."""
        networked("rtx", role=Role.STANDBY, hardware="gpu-workstation")
        executor.on("nvidia-smi", NonZeroExit(127, "", "nvidia-smi: command not found"))

        report = validator.run(categories=["gpu-idle"])

        assert _verdict(report, "gpu-idle", "rtx") == Verdict.WARN


class TestHostVitals:

    def test_hot_pi_warns(self, inventory, registry, executors, settings, runtime, networked, executor, http_get):
        """Test a hot Pi warns."""
        networked("a")
        executor.on("t=$(", CommandResult(
            json.dumps({"temp_milli": 81000, "memory_percent": 40, "disk_percent": 20}), "", 0,
        ))
        validator = Validator(
            inventory=inventory, registry=registry, executors=executors, settings=settings,
            http_get=http_get, runtime_factory=lambda executor, node: runtime,
            checks=HEALTH_CHECKS,
        )

        report = validator.run(categories=["host-vitals"])

        (result,) = report.results
        assert result.verdict == Verdict.WARN
        assert "temperature 81.0C" in result.message


class TestReport:

    def test_verdict_and_exit_code(self):
        """Test report verdict and exit code."""
        report = ValidationReport(results=[
            CheckResult("exposure", Verdict.PASS, "ok", node_id="a"),
            CheckResult("ssh-auth", Verdict.WARN, "maybe", node_id="a"),
        ])
        assert report.verdict == Verdict.WARN
        assert report.exit_code == 0

        report.results.append(CheckResult("firewall", Verdict.FAIL, "off", node_id="b"))
        assert report.verdict == Verdict.FAIL
        assert report.exit_code == 1

    def test_to_dict(self):
        """Test the report's dictionary form."""
        report = ValidationReport(results=[CheckResult("exposure", Verdict.FAIL, "0.0.0.0:80", node_id="a")])

        data = report.to_dict()

        assert data["verdict"] == "fail"
        assert data["counts"] == {"pass": 0, "warn": 0, "fail": 1}
        assert data["results"][0] == {
            "category": "exposure", "node": "a", "verdict": "fail", "message": "0.0.0.0:80",
        }
