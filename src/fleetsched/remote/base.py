"""Remote executor contract.

The scheduler never talks to machines directly; it hands a command and a
server id to a ``RemoteExecutor`` and records whatever comes back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True, frozen=True)
class CommandResult:
    """Outcome of a command that ran to completion (any exit code)."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class RemoteError(Exception):
    """The command could not be run or its outcome is unknown."""

    def __init__(self, message: str, *, server_id: int | None = None) -> None:
        self.server_id = server_id
        super().__init__(message)


class RemoteUnreachableError(RemoteError):
    """The target machine could not be reached."""


class RemoteTimeoutError(RemoteError):
    """The command exceeded its deadline and was killed.

    Carries whatever output was captured before the kill.
    """

    def __init__(
        self,
        timeout: float,
        *,
        server_id: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.timeout = timeout
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(
            f"Command timed out after {timeout:g} seconds", server_id=server_id
        )


class RemoteExecutor(Protocol):
    """Runs a shell command on a server.

    Implementations must stop the command when ``timeout`` elapses (raising
    ``RemoteTimeoutError``) or when the calling coroutine is cancelled.
    """

    async def execute(
        self, server_id: int, command: str, *, timeout: float
    ) -> CommandResult: ...
