# pyright: reportAny=false
"""FastAPI application factory.

The application lifespan owns the InstanceSupervisor: it is entered on
startup (clearing stale pids and auto-starting instances) and exited on
shutdown (stopping every child process).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import anyio
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from proxyfleet.config import Config
from proxyfleet.exceptions import (
    AlreadyRunningError,
    InstanceNotFoundError,
    NotRunningError,
    ProxyFleetError,
)
from proxyfleet.registry import JsonInstanceRegistry
from proxyfleet.supervisor import EventBroadcaster, InstanceSupervisor
from proxyfleet.utils import create_logger

from ._api import router as api_router

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from structlog.typing import FilteringBoundLogger

    from proxyfleet.registry import InstanceRegistry
    from proxyfleet.supervisor import ConsoleEventSink

_ERROR_STATUS: tuple[tuple[type[ProxyFleetError], int], ...] = (
    (InstanceNotFoundError, 404),
    (AlreadyRunningError, 409),
    (NotRunningError, 409),
)


def status_for_error(exc: ProxyFleetError) -> int:
    """Return the HTTP status code for a proxyfleet exception."""
    for error_type, status in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


async def handle_proxyfleet_error(_request: Request, exc: Exception) -> JSONResponse:
    """Render a proxyfleet exception as ``{"error": message}``."""
    if not isinstance(exc, ProxyFleetError):
        raise exc
    return JSONResponse(status_code=status_for_error(exc), content={"error": str(exc)})


async def handle_http_error(_request: Request, exc: Exception) -> JSONResponse:
    """Render route-level HTTP errors in the same ``{"error": message}`` shape."""
    if not isinstance(exc, StarletteHTTPException):
        raise exc
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=exc.headers,
    )


def logger_from_config(config: Config) -> FilteringBoundLogger:
    """Create the service logger described by the ``logging`` section."""
    settings = config.logging
    rotate = settings.max_bytes > 0 and settings.backup_count > 0
    return create_logger(
        level=settings.level.value,
        log_format="json" if settings.format == "json" else "text",
        log_file=settings.file,
        max_bytes=settings.max_bytes if rotate else None,
        backup_count=settings.backup_count if rotate else None,
    )


def create_app(
    config: Config | None = None,
    *,
    registry: InstanceRegistry | None = None,
    logger: FilteringBoundLogger | None = None,
    console_sink: ConsoleEventSink | None = None,
) -> FastAPI:
    """Build the control API application.

    Args:
        config: Service configuration. Uses defaults if None.
        registry: Instance registry. A JsonInstanceRegistry at
            ``config.registry.path`` is loaded on startup if None.
        logger: Service logger. Built from ``config.logging`` if None.
        console_sink: Optional console echo of supervisor events.

    Returns:
        The FastAPI application.
    """
    settings = config or Config()
    log = logger or logger_from_config(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        store = registry
        if store is None:
            json_registry = JsonInstanceRegistry(settings.registry.path)
            json_registry.load()
            store = json_registry

        supervisor = InstanceSupervisor(store, config=settings.supervisor, logger=log)
        broadcaster = EventBroadcaster(
            supervisor.bus, supervisor.snapshot, logger=log.bind(component="broadcaster")
        )
        app.state.supervisor = supervisor
        app.state.broadcaster = broadcaster

        try:
            async with supervisor, anyio.create_task_group() as tg:
                if console_sink is not None:
                    tg.start_soon(console_sink.run, supervisor.bus)
                log.info("server_ready", instances=len(store.get_all()))
                yield
                log.info("server_stopping")
                tg.cancel_scope.cancel()
        finally:
            supervisor.bus.close()

    app = FastAPI(title="proxyfleet", docs_url=None, redoc_url="/api-docs", lifespan=lifespan)
    app.add_exception_handler(ProxyFleetError, handle_proxyfleet_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.include_router(router=api_router)
    return app
