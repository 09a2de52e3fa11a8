"""Per-device sensor threshold API endpoints."""

from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator
from starlette.requests import Request
from starlette.responses import JSONResponse

from vitals.logging import get_logger

from ._utils import get_store, parse_body, path_int, resolve_device, to_json

logger = get_logger("server.api.settings")


class SettingUpdate(BaseModel):
    """Request model for a partial threshold update.

    Thresholds may be cleared with an explicit null, which disables that
    side of the band.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    min_threshold: float | None = Field(None, alias="minThreshold", allow_inf_nan=False)
    max_threshold: float | None = Field(None, alias="maxThreshold", allow_inf_nan=False)
    unit: str | None = None
    alarm_enabled: bool | None = Field(None, alias="alarmEnabled")

    @model_validator(mode="after")
    def no_null_flags(self) -> Self:
        for name in ("unit", "alarm_enabled"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


async def get_device_settings(request: Request) -> JSONResponse:
    """Return the sensor settings of a device, one per sensor type."""
    device = await resolve_device(request)
    settings = await get_store(request).get_settings(device.id)
    return JSONResponse(to_json(settings))


async def update_setting(request: Request) -> JSONResponse:
    """Update a sensor setting's band, unit or alarm flag."""
    id = path_int(request)
    data = await parse_body(request, SettingUpdate)
    setting = await get_store(request).update_setting(id, data.changes())
    logger.info(
        "Sensor setting %d (%s) updated: %s",
        setting.id,
        setting.sensor_type,
        sorted(data.model_fields_set),
    )
    return JSONResponse(setting.to_dict())
