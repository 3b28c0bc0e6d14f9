# fleet_engine/core/errors.py

# -----------------------------
# Base Errors
# -----------------------------

class FleetError(Exception):
    """Base class for all fleet orchestrator errors."""
    pass


# -----------------------------
# Inventory Errors
# -----------------------------

class InventoryError(FleetError):
    """Invalid inventory operation."""
    pass


class DuplicateNode(InventoryError):
    """Node identifier already registered."""
    pass


class NodeNotFound(InventoryError):
    pass


class AddressUnknown(InventoryError):
    """Node has not completed mesh network enrollment."""
    pass


class InvalidTransition(InventoryError):
    """Lifecycle transition not reachable from the current state."""
    pass


class NodeBusy(InventoryError):
    """Another phase execution holds the node lease."""
    pass


class NodeBlocked(InventoryError):
    """Node is blocked and needs an operator to clear it."""
    pass


class InventoryFileError(InventoryError):
    """Inventory file missing or malformed."""
    pass


class NodeValidationError(InventoryError):
    """Invalid input or malformed node."""
    pass


# -----------------------------
# Executor Errors
# -----------------------------

class ExecutorError(FleetError):
    """Base class for command execution failures."""

    def __init__(self, message: str, stdout: str = "", stderr: str = ""):
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


class Unreachable(ExecutorError):
    """Transport to the node could not be established."""
    pass


class Timeout(ExecutorError):
    """Command exceeded its time budget."""
    pass


class NonZeroExit(ExecutorError):
    """Command finished with a non-zero exit status."""

    def __init__(self, code: int, stdout: str = "", stderr: str = ""):
        super().__init__(f"command exited with status {code}", stdout, stderr)
        self.code = code


class Cancelled(ExecutorError):
    """Command was cancelled before it finished."""
    pass


# -----------------------------
# Registry Errors
# -----------------------------

class RegistryError(FleetError):
    pass


class NoWorkloadDefined(RegistryError):
    """No workload definition for the role."""
    pass


class InvalidExposure(RegistryError):
    """Inbound ports declared without an override flag."""
    pass


class InvalidWorkloadSpec(RegistryError):
    pass


# -----------------------------
# Phase Errors
# -----------------------------

class PhaseFailure(FleetError):
    """A phase failed with a classified reason."""

    def __init__(self, node_id: str, phase: str, kind, diagnostic: str = ""):
        self.node_id = node_id
        self.phase = phase
        self.kind = kind
        self.diagnostic = diagnostic
        super().__init__(
            f"{node_id}: phase '{phase}' failed ({kind.value}): {diagnostic}"
        )


class NonRepeatablePhase(PhaseFailure):
    """Non-repeatable phase already succeeded on this node."""
    pass


class PreconditionNotMet(PhaseFailure):
    pass


# -----------------------------
# Persistence Errors
# -----------------------------

class PersistenceError(FleetError):
    pass


# -----------------------------
# Monitoring Errors
# -----------------------------

class MonitoringUnavailable(FleetError):
    """The monitoring node's Prometheus API could not be queried."""
    pass
