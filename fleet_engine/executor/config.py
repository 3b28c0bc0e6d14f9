# fleet_engine/executor/config.py
from dataclasses import dataclass, field
from typing import Tuple


@dataclass(frozen=True)
class ExecutorConfig:
    ssh_user: str = "zpin"
    ssh_port: int = 22
    connect_timeout: int = 10
    ssh_options: Tuple[str, ...] = field(default_factory=tuple)
    remote_sudo: bool = True

    max_output_chars: int = 20000
    poll_interval_seconds: float = 0.2

    @classmethod
    def from_settings(cls, settings) -> "ExecutorConfig":
        return cls(
            ssh_user=settings.ssh_user,
            ssh_port=settings.ssh_port,
            connect_timeout=settings.ssh_connect_timeout,
            ssh_options=tuple(settings.ssh_options),
            remote_sudo=settings.remote_sudo,
            max_output_chars=settings.max_output_chars,
        )
