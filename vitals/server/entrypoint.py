"""Application factory for the web server."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from vitals.lib.alerts import STORAGE_ERRORS, AlertManager
from vitals.lib.config import get_settings
from vitals.lib.db import close_db, create_schema, get_db
from vitals.lib.exceptions import NotFoundError
from vitals.lib.store import Store, create_store
from vitals.logging import configure, get_logger

from .api._utils import InvalidRequest
from .api.alerts import list_alerts, list_device_alerts, resolve_alert
from .api.devices import (
    create_device,
    delete_device,
    get_device,
    list_devices,
    update_device,
)
from .api.health import health_check
from .api.readings import get_historical_data, get_latest_data, get_sensor_data
from .api.settings import get_device_settings, update_setting

_logger = get_logger("server.entrypoint")


def _attach_store(app: Starlette, store: Store) -> None:
    app.state.store = store
    app.state.alert_manager = AlertManager(store, store)


@asynccontextmanager
async def lifespan(app: Starlette) -> AsyncIterator[None]:
    """Open the configured store on startup, release connections on shutdown."""
    if getattr(app.state, "store", None) is None:
        if not get_settings().mock_store:
            async with get_db() as db:
                await create_schema(db)
        _attach_store(app, create_store())
        _logger.info("Store ready: %s", type(app.state.store).__name__)

    try:
        yield
    finally:
        await close_db()


async def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=404)


async def _invalid_request(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, InvalidRequest)
    return JSONResponse({"errors": exc.errors}, status_code=400)


async def _storage_unavailable(request: Request, exc: Exception) -> JSONResponse:
    _logger.error(
        "Storage failure on %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse({"error": "Storage unavailable"}, status_code=503)


def create_app(store: Store | None = None) -> Starlette:
    """Create and configure the Starlette application.

    Without an explicit store the lifespan builds the one selected by
    configuration. The SQLite store uses get_db() pooled connections, which
    gives request handlers concurrency and isolation; the ingest service
    uses init_db() for a persistent connection instead.

    Returns:
        Configured Starlette application instance.
    """
    configure()

    routes = [
        Route("/health", health_check),
        Route("/api/devices", list_devices),
        Route("/api/devices", create_device, methods=["POST"]),
        Route("/api/devices/{id}", get_device),
        Route("/api/devices/{id}", update_device, methods=["PUT"]),
        Route("/api/devices/{id}", delete_device, methods=["DELETE"]),
        Route("/api/devices/{id}/sensor-settings", get_device_settings),
        Route("/api/devices/{id}/alerts", list_device_alerts),
        Route("/api/devices/{id}/latest-data", get_latest_data),
        Route("/api/devices/{id}/sensor-data", get_sensor_data),
        Route("/api/devices/{id}/historical-data", get_historical_data),
        Route("/api/sensor-settings/{id}", update_setting, methods=["PUT"]),
        Route("/api/alerts", list_alerts),
        Route("/api/alerts/{id}/resolve", resolve_alert, methods=["PUT"]),
    ]

    exception_handlers = {
        NotFoundError: _not_found,
        InvalidRequest: _invalid_request,
        **{error: _storage_unavailable for error in STORAGE_ERRORS},
    }

    app = Starlette(
        routes=routes,
        lifespan=lifespan,
        exception_handlers=exception_handlers,
    )
    if store is not None:
        _attach_store(app, store)
    return app
