"""Command runner: execute an admitted entry's command and report the outcome.

The runner blocks its calling thread until the child exits, capturing
stdout and stderr combined into one buffer. It never raises for a
per-invocation failure; spawn failures and abnormal exits come back as a
``FAILED`` outcome and are logged with the entry name.

    ┌──────────────┐    argv, cwd     ┌───────────────┐
    │ CommandRunner│ ───────────────► │ subprocess.run│
    └──────┬───────┘                  └───────┬───────┘
           │   CommandOutcome                 │ returncode, output
           ◄──────────────────────────────────┘
             SUCCEEDED | FAILED (SpawnError / ExecutionError)

The runner knows nothing about admission: the dispatcher only calls it
for an admitted trigger and releases the guard afterwards.
"""

from __future__ import annotations

import signal
import subprocess
import time
from dataclasses import dataclass
from enum import Enum

from mqtt_exec.entry import Entry
from mqtt_exec.errors import ExecutionError, MqttExecError, SpawnError
from mqtt_exec.logging import get_logger

logger = get_logger(__name__)


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class CommandOutcome:
    """Result of one command invocation."""

    entry: str
    status: OutcomeStatus
    output: bytes = b""
    exit_code: int | None = None
    error: MqttExecError | None = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED

    @property
    def text(self) -> str:
        """Captured output decoded as UTF-8 (undecodable bytes replaced)."""
        return self.output.decode("utf-8", errors="replace")


def describe_exit(returncode: int) -> str:
    """Human-readable termination status, e.g. ``exit status 1``."""
    if returncode < 0:
        try:
            return f"signal: {signal.Signals(-returncode).name}"
        except ValueError:
            return f"signal: {-returncode}"
    return f"exit status {returncode}"


class CommandRunner:
    """Runs entry commands synchronously, one call per admitted trigger."""

    def run(self, entry: Entry) -> CommandOutcome:
        """Spawn the entry's command, wait for it and report the outcome."""
        log = logger.bind(entry=entry.name)
        log.info(
            "command_started",
            command=entry.command,
            args=list(entry.args),
            cwd=entry.working_directory,
        )

        start = time.monotonic()
        try:
            proc = subprocess.run(
                entry.argv,
                cwd=entry.working_directory,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                check=False,
            )
        except (OSError, ValueError) as e:
            # Executable missing, permission denied, bad cwd, NUL in argv
            error = SpawnError(f"cannot start {entry.command!r}: {e}", cause=e).with_context(
                entry=entry.name, command=entry.command
            )
            log.error("command_failed", error=str(error), **error.to_dict())
            return CommandOutcome(
                entry=entry.name,
                status=OutcomeStatus.FAILED,
                error=error,
                duration_seconds=time.monotonic() - start,
            )

        duration = time.monotonic() - start
        output = proc.stdout or b""
        text = output.decode("utf-8", errors="replace")

        if proc.returncode != 0:
            error = ExecutionError(
                describe_exit(proc.returncode), exit_code=proc.returncode
            ).with_context(entry=entry.name, command=entry.command)
            log.error(
                "command_failed",
                error=str(error),
                exit_code=proc.returncode,
                output=text,
                duration_seconds=round(duration, 3),
            )
            return CommandOutcome(
                entry=entry.name,
                status=OutcomeStatus.FAILED,
                output=output,
                exit_code=proc.returncode,
                error=error,
                duration_seconds=duration,
            )

        log.info("command_output", output=text)
        log.info("command_succeeded", duration_seconds=round(duration, 3))
        return CommandOutcome(
            entry=entry.name,
            status=OutcomeStatus.SUCCEEDED,
            output=output,
            exit_code=0,
            duration_seconds=duration,
        )
