"""Test event emitters and container wiring."""

import pytest

from fleet_engine.config import FleetSettings
from fleet_engine.container import build_container
from fleet_engine.core.events import MultiEventEmitter, RecordingEventEmitter
from fleet_engine.core.events_model import FleetEvent
from fleet_engine.core.models import Role
from fleet_engine.executor.local import LocalExecutor
from fleet_engine.executor.ssh import SshExecutor


class TestEvents:

    def test_unknown_event_type_rejected(self):
        """Test emitting an event type outside the allowed set."""
        with pytest.raises(ValueError):
            RecordingEventEmitter().emit([FleetEvent("node.exploded", "pi4")])

    def test_event_needs_node(self):
        """Test that events require a node identifier."""
        with pytest.raises(ValueError):
            RecordingEventEmitter().emit([FleetEvent("node.completed", "")])

    def test_fan_out(self):
        """Test every emitter receives each event."""
        first, second = RecordingEventEmitter(), RecordingEventEmitter()
        event = FleetEvent.phase_event("retrying", "pi4", "secure", attempt=2)

        MultiEventEmitter([first, second]).emit(iter([event]))

        assert first.types() == ["phase.retrying"]
        assert second.events == [event]
        assert event.describe() == "phase.retrying | node=pi4 | phase=secure"


class TestBuildContainer:

    def test_sqlite_file_store(self, tmp_path):
        """Test the container opens a SQLite file store."""
        settings = FleetSettings(
            database_url=f"sqlite:///{tmp_path / 'fleet.db'}",
            local_node="pi4",
        )
        extra = RecordingEventEmitter()

        container = build_container(settings, extra_emitters=[extra])

        assert (tmp_path / "fleet.db").exists()
        assert container.inventory.list_nodes() == []
        assert container.registry.workload_for(Role.STORAGE).name == "storj-storage"

    def test_local_node_uses_local_transport(self, test_session_factory, make_node):
        """Test the configured local node gets the local executor."""
        settings = FleetSettings(database_url="sqlite://", local_node="pi4")

        container = build_container(settings, session_factory=test_session_factory)

        assert isinstance(container.executors.for_node(make_node("pi4")), LocalExecutor)
        assert isinstance(container.executors.for_node(make_node("pi3-1")), SshExecutor)

    def test_shared_store(self, test_session_factory, make_node):
        """Test containers on one store see the same nodes."""
        settings = FleetSettings(database_url="sqlite://")
        container = build_container(settings, session_factory=test_session_factory)

        container.inventory.register(make_node("pi3-1"))
        again = build_container(settings, session_factory=test_session_factory)

        assert again.inventory.get("pi3-1").role == Role.STORAGE
