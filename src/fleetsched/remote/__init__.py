"""Remote command execution."""

from typing import TYPE_CHECKING

from fleetsched.remote.base import (
    CommandResult,
    RemoteError,
    RemoteExecutor,
    RemoteTimeoutError,
    RemoteUnreachableError,
)
from fleetsched.remote.inventory import ServerInventory, ServerSpec, StaticInventory
from fleetsched.remote.local import LocalShellExecutor
from fleetsched.remote.ssh import SSHRemoteExecutor

if TYPE_CHECKING:
    from fleetsched.config.models import FleetConfig

__all__ = [
    "CommandResult",
    "LocalShellExecutor",
    "RemoteError",
    "RemoteExecutor",
    "RemoteTimeoutError",
    "RemoteUnreachableError",
    "SSHRemoteExecutor",
    "ServerInventory",
    "ServerSpec",
    "StaticInventory",
    "create_remote_executor",
]


def create_remote_executor(
    config: "FleetConfig", inventory: ServerInventory
) -> RemoteExecutor:
    """Build the executor named by ``config.executor.backend``."""
    capture = config.scheduler.max_output_bytes
    if config.executor.backend == "local":
        return LocalShellExecutor(inventory, capture_bytes=capture)
    return SSHRemoteExecutor(
        inventory,
        ssh_binary=config.executor.ssh_binary,
        connect_timeout=config.executor.connect_timeout,
        options=config.executor.ssh_options,
        capture_bytes=capture,
    )
