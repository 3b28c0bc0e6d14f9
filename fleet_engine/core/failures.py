"""Classification of phase failures into transient / configuration / environment."""

import re

from fleet_engine.core.errors import (
    InvalidExposure,
    InvalidWorkloadSpec,
    NoWorkloadDefined,
    NonZeroExit,
    Timeout,
    Unreachable,
)
from fleet_engine.core.models import FailureKind

# Exit status phase scripts use for missing or invalid input
CONFIGURATION_EXIT_CODE = 2
CONFIGURATION_PREFIX = "CONFIG:"

TRANSIENT_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"could not get lock",
        r"dpkg.*lock",
        r"unable to acquire the dpkg frontend lock",
        r"temporary failure in name resolution",
        r"could not resolve host",
        r"connection timed out",
        r"connection reset by peer",
        r"tls handshake timeout",
        r"i/o timeout",
    )
]


def is_transient_output(text: str) -> bool:
    return any(pattern.search(text or "") for pattern in TRANSIENT_PATTERNS)


def classify_failure(error: Exception) -> FailureKind:
    """Map an executor or registry error to a failure kind."""
    if isinstance(error, (Unreachable, Timeout)):
        return FailureKind.TRANSIENT

    if isinstance(error, (InvalidExposure, InvalidWorkloadSpec, NoWorkloadDefined)):
        return FailureKind.CONFIGURATION

    if isinstance(error, NonZeroExit):
        if error.code == CONFIGURATION_EXIT_CODE:
            return FailureKind.CONFIGURATION
        if any(
            line.startswith(CONFIGURATION_PREFIX)
            for line in (error.stderr or "").splitlines()
        ):
            return FailureKind.CONFIGURATION
        if is_transient_output(error.stderr) or is_transient_output(error.stdout):
            return FailureKind.TRANSIENT
        return FailureKind.ENVIRONMENT

    return FailureKind.ENVIRONMENT
