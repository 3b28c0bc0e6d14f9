"""Test the single-node health checker."""

import json
import signal

import pytest

from fleet_engine.core.models import LifecycleState, Role
from fleet_engine.executor.base import CommandResult
from fleet_engine.health_checker.checker import LOOPBACK, HealthChecker
from fleet_engine.runtime.containers import ContainerInfo
from fleet_engine.validator.models import Verdict

VITALS = json.dumps({"temp_milli": 48000, "memory_percent": 35, "disk_percent": 22})


@pytest.fixture
def checker(inventory, validator, executors, runtime, executor):
    executor.on("t=$(", CommandResult(VITALS, "", 0))
    return HealthChecker(
        inventory=inventory,
        validator=validator,
        executors=executors,
        runtime=runtime,
        check_interval=0,
    )


@pytest.fixture
def restore_signals():
    saved = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler)


class TestHealthChecker:

    def test_healthy_node(self, checker, inventory, make_node, runtime):
        """Test a healthy node passes with vitals first."""
        node = inventory.register(make_node("pi4", role=Role.BANDWIDTH, hardware="rpi4"))
        runtime.containers = [
            ContainerInfo("bandwidth-depin", labels={"depin.workload": "true"},
                          nano_cpus=600_000_000, memory_bytes=1536 * 1024 * 1024),
        ]

        report = checker.check(node)

        assert report.verdict == Verdict.PASS
        assert [r.category for r in report.results][0] == "host-vitals"
        assert "storage" not in {r.category for r in report.results}

    def test_loopback_before_enrollment(self, checker, inventory, make_node, http_get):
        """Test HTTP checks go to loopback before enrollment."""
        node = inventory.register(make_node("pi3-1"))

        checker.check(node)

        assert http_get.calls == [f"http://{LOOPBACK}:9100/metrics"]

    def test_mesh_address_after_enrollment(self, checker, inventory, make_node, http_get):
        """Test HTTP checks use the mesh address after enrollment."""
        inventory.register(make_node("pi3-1"))
        inventory.enroll("pi3-1", "100.64.0.3")
        node = inventory.set_state("pi3-1", LifecycleState.NETWORKED)

        checker.check(node)

        assert http_get.calls == ["http://100.64.0.3:9100/metrics"]

    def test_hot_node_warns(self, checker, inventory, make_node, executor):
        """Test high memory use is a warning."""
        node = inventory.register(make_node("pi3-1"))
        executor.on("t=$(", CommandResult(
            json.dumps({"temp_milli": 82000, "memory_percent": 95, "disk_percent": 20}), "", 0,
        ))

        report = checker.check(node)

        (vitals,) = report.find("host-vitals")
        assert vitals.verdict == Verdict.WARN
        assert "memory 95%" in vitals.message
        assert report.exit_code == 0

    def test_watch_loop_stops(self, checker, inventory, make_node, restore_signals):
        """Test the watch loop stops on request."""
        node = inventory.register(make_node("pi3-1"))
        reports = []

        def on_report(report):
            reports.append(report)
            if len(reports) == 2:
                checker.stop()

        checker.start(node, on_report)

        assert len(reports) == 2

    def test_watch_loop_survives_errors(self, checker, inventory, make_node, restore_signals):
        """Test the watch loop keeps going after a callback error."""
        node = inventory.register(make_node("pi3-1"))
        calls = []

        def on_report(report):
            calls.append(report)
            if len(calls) == 1:
                raise RuntimeError("terminal went away")
            checker.stop()

        checker.start(node, on_report)

        assert len(calls) == 2
