"""Request helpers shared by the API handlers."""

import re
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
from starlette.requests import Request

from vitals.lib.alerts import AlertManager
from vitals.lib.config import SensorType
from vitals.lib.exceptions import DeviceNotFoundError
from vitals.lib.models import Device
from vitals.lib.store import Store


class InvalidRequest(Exception):
    """Raised by helpers when a request cannot be served as sent."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("; ".join(errors))


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_alert_manager(request: Request) -> AlertManager:
    return request.app.state.alert_manager


def format_errors(e: ValidationError) -> list[str]:
    """Flatten pydantic errors into ``field: message`` strings."""
    return [
        f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}"
        for err in e.errors()
    ]


M = TypeVar("M", bound=BaseModel)


async def parse_body(request: Request, model: type[M]) -> M:
    """Decode and validate a JSON request body.

    Raises:
        InvalidRequest: If the body is not JSON or fails validation.
    """
    try:
        raw_data = await request.json()
    except ValueError:
        raise InvalidRequest(["body: Invalid JSON"]) from None
    try:
        return model.model_validate(raw_data)
    except ValidationError as e:
        raise InvalidRequest(format_errors(e)) from None


def path_int(request: Request, name: str = "id") -> int:
    """Read a numeric path parameter.

    Raises:
        InvalidRequest: If the parameter is not an integer.
    """
    raw = request.path_params[name]
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise InvalidRequest([f"{name}: must be an integer"]) from None


def parse_resolved(request: Request) -> bool | None:
    """Interpret the optional ``resolved`` query flag.

    Only the literal strings "true" and "false" filter; anything else
    (including absence) means no filter.
    """
    raw = request.query_params.get("resolved")
    if raw == "true":
        return True
    if raw == "false":
        return False
    return None


async def resolve_device(request: Request, name: str = "id") -> Device:
    """Look a device up by internal numeric id or by external device id.

    Raises:
        DeviceNotFoundError: If neither lookup matches.
    """
    store = get_store(request)
    ref: str = request.path_params[name]
    is_numeric = ref.isascii() and ref.isdigit()
    device = await store.get_device(int(ref)) if is_numeric else None
    if device is None:
        device = await store.get_device_by_external_id(ref)
    if device is None:
        raise DeviceNotFoundError(ref)
    return device


def to_json(items: list[Any]) -> list[dict[str, Any]]:
    return [item.to_dict() for item in items]


_DURATION = re.compile(r"-?(\d+)([smhd])")
_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_duration(raw: str) -> timedelta | None:
    """Parse a relative duration such as ``-1h``, ``30m`` or ``-7d``."""
    match = _DURATION.fullmatch(raw)
    if match is None:
        return None
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


def parse_time(name: str, raw: str, now: datetime) -> datetime:
    """Resolve a time query parameter to an aware UTC datetime.

    Accepts ``now()``, a duration counted back from now, or an ISO 8601
    timestamp; naive timestamps are taken as UTC.

    Raises:
        InvalidRequest: If the value is none of these.
    """
    if raw == "now()":
        return now
    duration = parse_duration(raw)
    if duration is not None:
        return now - duration
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise InvalidRequest(
            [f"{name}: expected now(), a duration like -1h or an ISO timestamp"]
        ) from None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def parse_sensor_type(request: Request) -> SensorType:
    """Read the required ``sensorType`` query parameter.

    Raises:
        InvalidRequest: If it is missing or not a known sensor type.
    """
    raw = request.query_params.get("sensorType")
    if not raw:
        raise InvalidRequest(["sensorType: required"])
    try:
        return SensorType(raw)
    except ValueError:
        choices = ", ".join(SensorType)
        raise InvalidRequest([f"sensorType: must be one of {choices}"]) from None
