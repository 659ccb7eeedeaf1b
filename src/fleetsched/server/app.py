"""FastAPI application hosting the dispatcher."""

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from fleetsched.server.routes import health

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fleetsched.db import Database
    from fleetsched.scheduling import SchedulingService

logger = logging.getLogger(__name__)


class FleetServer:
    """Daemon application.

    The FastAPI lifespan owns the database connection and the dispatcher;
    the HTTP surface only reports health.
    """

    def __init__(
        self,
        database: "Database",
        service: "SchedulingService",
        *,
        create_tables: bool = False,
        run_dispatcher: bool = True,
    ):
        self._database = database
        self._service = service
        self._create_tables = create_tables
        self._run_dispatcher = run_dispatcher
        self._app = self._create_app()

    @property
    def app(self) -> FastAPI:
        return self._app

    @property
    def service(self) -> "SchedulingService":
        return self._service

    def _create_app(self) -> FastAPI:
        @asynccontextmanager
        async def lifespan(app: FastAPI) -> "AsyncIterator[None]":
            logger.info("server_starting")
            await self._database.connect()
            if self._create_tables:
                await self._database.create_all()
            if self._run_dispatcher:
                await self._service.start()

            yield

            logger.info("server_stopping")
            if self._run_dispatcher:
                await self._service.stop()
            await self._database.disconnect()

        app = FastAPI(
            title="fleetsched",
            description="Scheduled command orchestration for server fleets",
            version="0.1.0",
            lifespan=lifespan,
        )

        app.state.server = self
        app.state.database = self._database
        app.state.dispatcher = self._service.dispatcher

        app.include_router(health.router, tags=["health"])
        return app


def create_app(
    database: "Database",
    service: "SchedulingService",
    *,
    create_tables: bool = False,
    run_dispatcher: bool = True,
) -> FastAPI:
    """Create the FastAPI application."""
    server = FleetServer(
        database,
        service,
        create_tables=create_tables,
        run_dispatcher=run_dispatcher,
    )
    return server.app
