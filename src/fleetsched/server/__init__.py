"""Daemon host: health app and uvicorn runner."""

from fleetsched.server.app import FleetServer, create_app
from fleetsched.server.runner import ServerRunner

__all__ = ["FleetServer", "ServerRunner", "create_app"]
