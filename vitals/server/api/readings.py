"""Reading API endpoints: latest values and time-series history."""

from datetime import UTC, datetime

from starlette.requests import Request
from starlette.responses import JSONResponse

from vitals.lib.config import DEFAULT_THRESHOLDS, SensorType
from vitals.lib.evaluator import evaluate, worst_status
from vitals.lib.models import Device

from ._utils import (
    InvalidRequest,
    get_store,
    parse_sensor_type,
    parse_time,
    resolve_device,
)


async def get_latest_data(request: Request) -> JSONResponse:
    """Return the most recent value of each sensor with its status.

    Every sensor with a setting is listed; sensors that never reported
    carry a null value and an ``unknown`` status. The device status is the
    worst of the per-sensor statuses.
    """
    device = await resolve_device(request)
    store = get_store(request)
    latest = await store.get_latest_values(device.device_id)
    settings = await store.get_settings(device.id)

    sensors = []
    statuses = []
    for setting in settings:
        value, observed_at = latest.get(setting.sensor_type, (None, None))
        status = evaluate(value, setting.min_threshold, setting.max_threshold)
        statuses.append(status)
        sensors.append(
            {
                "sensorType": setting.sensor_type.value,
                "value": value,
                "unit": setting.unit,
                "status": status.value,
                "timestamp": observed_at.isoformat() if observed_at else None,
                "minThreshold": setting.min_threshold,
                "maxThreshold": setting.max_threshold,
                "alarmEnabled": setting.alarm_enabled,
            }
        )

    return JSONResponse(
        {
            "deviceId": device.device_id,
            "status": worst_status(statuses).value,
            "sensors": sensors,
        }
    )


async def _history(
    request: Request,
    device: Device,
    sensor_type: SensorType,
    start: datetime,
    end: datetime,
) -> JSONResponse:
    if start > end:
        raise InvalidRequest(["startTime: must not be after endTime"])
    store = get_store(request)
    setting = await store.get_setting(device.id, sensor_type)
    unit = setting.unit if setting else DEFAULT_THRESHOLDS[sensor_type].unit.value
    points = await store.get_readings(device.device_id, sensor_type, start, end)
    return JSONResponse([{**p.to_dict(), "unit": unit} for p in points])


async def get_sensor_data(request: Request) -> JSONResponse:
    """Return one sensor's readings over a recent window.

    ``duration`` (default ``-1h``) counts back from now.
    """
    device = await resolve_device(request)
    sensor_type = parse_sensor_type(request)
    now = datetime.now(UTC)
    start = parse_time("duration", request.query_params.get("duration", "-1h"), now)
    return await _history(request, device, sensor_type, start, now)


async def get_historical_data(request: Request) -> JSONResponse:
    """Return one sensor's readings between ``startTime`` and ``endTime``.

    Both accept ``now()``, a relative duration or an ISO timestamp; they
    default to ``-24h`` and ``now()``.
    """
    device = await resolve_device(request)
    sensor_type = parse_sensor_type(request)
    now = datetime.now(UTC)
    params = request.query_params
    start = parse_time("startTime", params.get("startTime", "-24h"), now)
    end = parse_time("endTime", params.get("endTime", "now()"), now)
    return await _history(request, device, sensor_type, start, end)
