"""Server inventory.

Servers are owned by an external system; the scheduler only needs to know
whether an id exists and how to reach it.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from fleetsched.config.models import ServerEntry


@dataclass(slots=True, frozen=True)
class ServerSpec:
    id: int
    name: str
    host: str
    port: int = 22
    user: str | None = None
    identity_file: Path | None = None

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.host}" if self.user else self.host


class ServerInventory(Protocol):
    async def exists(self, server_id: int) -> bool: ...

    async def get(self, server_id: int) -> ServerSpec | None: ...


class StaticInventory:
    """Inventory backed by a fixed list (the ``[[servers]]`` config section)."""

    def __init__(self, servers: Iterable[ServerSpec] = ()) -> None:
        self._servers = {server.id: server for server in servers}

    @classmethod
    def from_config(cls, entries: Iterable[ServerEntry]) -> StaticInventory:
        return cls(
            ServerSpec(
                id=entry.id,
                name=entry.name,
                host=entry.host,
                port=entry.port,
                user=entry.user,
                identity_file=entry.identity_file,
            )
            for entry in entries
        )

    async def exists(self, server_id: int) -> bool:
        return server_id in self._servers

    async def get(self, server_id: int) -> ServerSpec | None:
        return self._servers.get(server_id)

    def all(self) -> list[ServerSpec]:
        return sorted(self._servers.values(), key=lambda s: s.id)

    def __len__(self) -> int:
        return len(self._servers)
