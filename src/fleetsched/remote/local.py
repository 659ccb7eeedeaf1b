"""Executor that runs commands on this host through ``/bin/sh``."""

from __future__ import annotations

import logging

from fleetsched.remote.base import CommandResult, RemoteUnreachableError
from fleetsched.remote.inventory import ServerInventory
from fleetsched.remote.process import DEFAULT_CAPTURE_BYTES, run_process

logger = logging.getLogger(__name__)


class LocalShellExecutor:
    """Runs every server's commands locally.

    Useful for development and for a single machine scheduling its own
    maintenance. When an inventory is given, unknown server ids are rejected
    the same way the ssh executor rejects them.
    """

    def __init__(
        self,
        inventory: ServerInventory | None = None,
        *,
        shell: str = "/bin/sh",
        capture_bytes: int = DEFAULT_CAPTURE_BYTES,
    ) -> None:
        self._inventory = inventory
        self._shell = shell
        self._capture_bytes = capture_bytes

    async def execute(
        self, server_id: int, command: str, *, timeout: float
    ) -> CommandResult:
        if self._inventory is not None and not await self._inventory.exists(
            server_id
        ):
            raise RemoteUnreachableError(
                f"Server {server_id} is not in the inventory", server_id=server_id
            )
        return await run_process(
            [self._shell, "-c", command],
            timeout=timeout,
            server_id=server_id,
            capture_bytes=self._capture_bytes,
        )
