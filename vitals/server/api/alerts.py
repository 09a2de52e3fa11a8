"""Alert listing and resolution API endpoints."""

from starlette.requests import Request
from starlette.responses import JSONResponse

from ._utils import (
    get_alert_manager,
    parse_resolved,
    path_int,
    resolve_device,
    to_json,
)


async def list_alerts(request: Request) -> JSONResponse:
    """Return alerts newest first, optionally filtered by ``?resolved=``."""
    alerts = await get_alert_manager(request).get_alerts(
        resolved=parse_resolved(request)
    )
    return JSONResponse(to_json(alerts))


async def list_device_alerts(request: Request) -> JSONResponse:
    """Return one device's alerts newest first."""
    device = await resolve_device(request)
    alerts = await get_alert_manager(request).get_alerts(
        resolved=parse_resolved(request), device_id=device.id
    )
    return JSONResponse(to_json(alerts))


async def resolve_alert(request: Request) -> JSONResponse:
    """Mark an alert resolved."""
    alert = await get_alert_manager(request).resolve_alert(path_int(request))
    return JSONResponse(alert.to_dict())
