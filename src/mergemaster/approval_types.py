from __future__ import annotations

from dataclasses import dataclass

DEFAULT_COMMAND_TIMEOUT_SECONDS = 900
TIMEOUT_EXIT_CODE = 124


@dataclass(frozen=True)
class NeedsApproval:
    """Returned by a command tool instead of running the command."""

    command: str
    cwd: str | None = None
    timeout_seconds: float | None = None
    is_server: bool = False


@dataclass(frozen=True)
class ApprovalRequest:
    command: str
    cwd: str | None = None
    timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS
    is_server: bool = False

    @classmethod
    def from_signal(cls, signal: NeedsApproval, default_timeout: float) -> ApprovalRequest:
        timeout = signal.timeout_seconds if signal.timeout_seconds and signal.timeout_seconds > 0 else default_timeout
        return cls(command=signal.command, cwd=signal.cwd, timeout_seconds=timeout, is_server=signal.is_server)


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int


@dataclass(frozen=True)
class Started:
    command: str
    cwd: str | None = None


@dataclass(frozen=True)
class ProcessExit:
    exit_code: int | None
    signal: int | None = None
    timed_out: bool = False


ApprovalOutcome = CommandResult | Started
