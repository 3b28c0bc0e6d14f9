# fleet_engine/executor/base.py
"""Remote executor abstraction with per-invocation audit records."""

import logging
import os
import signal
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Event
from typing import List, Optional
from uuid import UUID

from fleet_engine.core.errors import Cancelled, ExecutorError, NonZeroExit, Timeout, Unreachable
from fleet_engine.core.failures import classify_failure
from fleet_engine.core.models import ExecutionRecord, Node, RecordOutcome
from fleet_engine.core.repository import ExecutionRecordRepository
from fleet_engine.executor.config import ExecutorConfig

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int


class RemoteExecutor(ABC):
    """
    Runs a shell script on a node.

    Every call to `execute` appends exactly one ExecutionRecord, written
    once after the command has finished, failed or been cancelled.
    """

    transport = "local"

    def __init__(
        self,
        records: ExecutionRecordRepository,
        config: Optional[ExecutorConfig] = None,
    ):
        self._records = records
        self._config = config or ExecutorConfig()

    def execute(
        self,
        node: Node,
        command: str,
        timeout: float,
        *,
        phase: str,
        sequence: Optional[int] = None,
        attempt: int = 1,
        run_id: Optional[UUID] = None,
        cancel: Optional[Event] = None,
    ) -> CommandResult:
        """
        Execute `command` on `node` within `timeout` seconds.

        Raises:
            Unreachable: transport could not be established
            Timeout: command exceeded `timeout`
            NonZeroExit: command exited non-zero
            Cancelled: `cancel` was set while the command ran
        """
        if timeout is None or timeout <= 0:
            raise ValueError("timeout is mandatory and must be positive")

        record = ExecutionRecord(
            node_id=node.identifier,
            phase=phase,
            outcome=RecordOutcome.FAILURE,
            run_id=run_id,
            sequence=sequence,
            attempt=attempt,
            transport=self.transport,
        )

        logger.debug(
            f"[executor] {node.identifier} {phase} via {self.transport} "
            f"(attempt {attempt}, timeout {timeout}s)"
        )

        try:
            result = self._invoke(node, command, timeout, cancel)
            record.exit_code = result.exit_code
            record.stdout = self._truncate(result.stdout)
            record.stderr = self._truncate(result.stderr)

            if result.exit_code != 0:
                raise NonZeroExit(result.exit_code, result.stdout, result.stderr)

            record.outcome = RecordOutcome.SUCCESS
            return result

        except Cancelled as e:
            record.outcome = RecordOutcome.CANCELLED
            record.message = str(e)
            record.stdout = self._truncate(e.stdout)
            record.stderr = self._truncate(e.stderr)
            raise

        except ExecutorError as e:
            record.failure_kind = classify_failure(e)
            record.message = str(e)
            if not record.stdout:
                record.stdout = self._truncate(e.stdout)
            if not record.stderr:
                record.stderr = self._truncate(e.stderr)
            raise

        except Exception as e:
            record.failure_kind = classify_failure(e)
            record.message = f"{type(e).__name__}: {e}"
            raise

        finally:
            record.finished_at = datetime.now(timezone.utc)
            self._records.append(record)

    @abstractmethod
    def _invoke(
        self,
        node: Node,
        command: str,
        timeout: float,
        cancel: Optional[Event],
    ) -> CommandResult:
        """Run the command; raise Unreachable / Timeout / Cancelled as needed."""
        raise NotImplementedError

    # -------------------------
    # PROCESS HELPERS
    # -------------------------

    def _run_process(
        self,
        argv: List[str],
        script: str,
        timeout: float,
        cancel: Optional[Event],
    ) -> CommandResult:
        """Run argv with `script` on stdin, honouring timeout and cancellation."""
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                start_new_session=True,
            )
        except OSError as e:
            raise Unreachable(f"could not start {argv[0]}: {e}") from e

        deadline = time.monotonic() + timeout
        pending_input: Optional[str] = script

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                stdout, stderr = self._kill(process)
                raise Timeout(f"command exceeded {timeout}s", stdout, stderr)

            try:
                stdout, stderr = process.communicate(
                    input=pending_input,
                    timeout=min(remaining, self._config.poll_interval_seconds),
                )
                return CommandResult(stdout or "", stderr or "", process.returncode)
            except subprocess.TimeoutExpired:
                # Input is only sent on the first call
                pending_input = None

            if cancel is not None and cancel.is_set():
                stdout, stderr = self._kill(process)
                raise Cancelled("command cancelled", stdout, stderr)

    @staticmethod
    def _kill(process: subprocess.Popen):
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        try:
            stdout, stderr = process.communicate(timeout=5)
        except subprocess.TimeoutExpired:
            # Grandchildren still hold the pipes; give up on partial output
            return "", ""
        return stdout or "", stderr or ""

    def _truncate(self, text: Optional[str]) -> str:
        text = text or ""
        limit = self._config.max_output_chars
        if len(text) <= limit:
            return text
        return text[-limit:]
