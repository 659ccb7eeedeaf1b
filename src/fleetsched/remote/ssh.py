"""OpenSSH client executor.

Runs commands with the system ``ssh`` binary in batch mode, so host keys and
credentials come from the operator's ssh configuration and agent.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from fleetsched.remote.base import CommandResult, RemoteUnreachableError
from fleetsched.remote.inventory import ServerInventory, ServerSpec
from fleetsched.remote.process import DEFAULT_CAPTURE_BYTES, run_process

logger = logging.getLogger(__name__)

# ssh reserves 255 for its own failures (connection, auth, host key)
SSH_FAILURE_EXIT_CODE = 255


class SSHRemoteExecutor:
    def __init__(
        self,
        inventory: ServerInventory,
        *,
        ssh_binary: str = "ssh",
        connect_timeout: int = 10,
        options: Sequence[str] = (),
        capture_bytes: int = DEFAULT_CAPTURE_BYTES,
    ) -> None:
        self._inventory = inventory
        self._ssh_binary = ssh_binary
        self._connect_timeout = connect_timeout
        self._options = list(options)
        self._capture_bytes = capture_bytes

    def build_argv(self, server: ServerSpec, command: str) -> list[str]:
        argv = [
            self._ssh_binary,
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={self._connect_timeout}",
            "-p",
            str(server.port),
        ]
        if server.identity_file:
            argv += ["-i", str(server.identity_file)]
        argv += self._options
        argv += [server.destination, "--", command]
        return argv

    async def execute(
        self, server_id: int, command: str, *, timeout: float
    ) -> CommandResult:
        server = await self._inventory.get(server_id)
        if server is None:
            raise RemoteUnreachableError(
                f"Server {server_id} is not in the inventory", server_id=server_id
            )

        logger.debug(
            "ssh_execute",
            extra={
                "remote.server_id": server_id,
                "remote.host": server.host,
                "remote.timeout": timeout,
            },
        )
        result = await run_process(
            self.build_argv(server, command),
            timeout=timeout,
            server_id=server_id,
            capture_bytes=self._capture_bytes,
        )
        if result.exit_code == SSH_FAILURE_EXIT_CODE:
            detail = result.stderr.strip() or "ssh exited with status 255"
            raise RemoteUnreachableError(
                f"Could not reach {server.destination}: {detail}",
                server_id=server_id,
            )
        return result
