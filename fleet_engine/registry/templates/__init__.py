"""Built-in role workload templates."""

from .bandwidth import BANDWIDTH_WORKLOAD
from .compute import COMPUTE_WORKLOAD
from .indexing import INDEXING_WORKLOAD
from .monitoring import MONITORING_WORKLOAD
from .standby import STANDBY_WORKLOAD
from .storage import STORAGE_WORKLOAD


BUILTIN_WORKLOADS = [
    BANDWIDTH_WORKLOAD,
    STORAGE_WORKLOAD,
    INDEXING_WORKLOAD,
    MONITORING_WORKLOAD,
    COMPUTE_WORKLOAD,
    STANDBY_WORKLOAD,
]


__all__ = [
    "BANDWIDTH_WORKLOAD",
    "STORAGE_WORKLOAD",
    "INDEXING_WORKLOAD",
    "MONITORING_WORKLOAD",
    "COMPUTE_WORKLOAD",
    "STANDBY_WORKLOAD",
    "BUILTIN_WORKLOADS",
]
