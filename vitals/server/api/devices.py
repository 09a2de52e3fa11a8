"""Device registry API endpoints."""

from pydantic import BaseModel, ConfigDict, Field
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from vitals.lib.config import DeviceStatus
from vitals.lib.exceptions import DuplicateDeviceError
from vitals.lib.models import DeviceInsert
from vitals.logging import get_logger

from ._utils import get_store, parse_body, path_int, resolve_device, to_json

logger = get_logger("server.api.devices")


class DeviceCreate(BaseModel):
    """Request model for device registration."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    device_id: str = Field(alias="deviceId", min_length=1, pattern=r"^[^/\s]+$")
    name: str = Field(min_length=1)
    status: DeviceStatus = DeviceStatus.INACTIVE
    patient: str | None = None
    room: str | None = None
    topic: str | None = Field(None, min_length=1)


class DeviceUpdate(BaseModel):
    """Request model for a partial device update."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(None, min_length=1)
    status: DeviceStatus | None = None
    patient: str | None = None
    room: str | None = None
    topic: str | None = Field(None, min_length=1)


async def list_devices(request: Request) -> JSONResponse:
    """Return every registered device."""
    devices = await get_store(request).get_devices()
    return JSONResponse(to_json(devices))


async def get_device(request: Request) -> JSONResponse:
    """Return one device by internal id or external device id."""
    device = await resolve_device(request)
    return JSONResponse(device.to_dict())


async def create_device(request: Request) -> JSONResponse:
    """Register a device; its default sensor settings are created with it."""
    data = await parse_body(request, DeviceCreate)
    try:
        device = await get_store(request).create_device(
            DeviceInsert(**data.model_dump())
        )
    except DuplicateDeviceError as e:
        return JSONResponse({"error": str(e)}, status_code=409)
    logger.info("Device %s registered via API", device.device_id)
    return JSONResponse(device.to_dict(), status_code=201)


async def update_device(request: Request) -> JSONResponse:
    """Apply a partial update to a device."""
    id = path_int(request)
    data = await parse_body(request, DeviceUpdate)
    # Explicit nulls are only meaningful for the optional descriptive fields
    fields = {
        k: v
        for k, v in data.model_dump(exclude_unset=True).items()
        if v is not None or k in ("patient", "room")
    }
    device = await get_store(request).update_device(id, fields)
    return JSONResponse(device.to_dict())


async def delete_device(request: Request) -> Response:
    """Remove a device and its sensor settings; alerts are kept."""
    id = path_int(request)
    await get_store(request).delete_device(id)
    return Response(status_code=204)
