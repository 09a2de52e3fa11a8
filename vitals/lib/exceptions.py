"""Custom exceptions for the vitals monitor.

Provides a hierarchy of domain-specific exceptions so callers can tell
storage failures apart from lookups that found nothing.
"""


class VitalsError(Exception):
    """Base exception for all application errors."""


class DatabaseError(VitalsError):
    """Base exception for database-related errors."""


class DatabaseNotConnectedError(DatabaseError):
    """Raised when attempting database operations without a connection."""

    def __init__(self, message: str = "Database not connected") -> None:
        super().__init__(message)


class NotFoundError(VitalsError):
    """Base exception for lookups by id that matched nothing."""

    entity = "Record"

    def __init__(self, record_id: int | str) -> None:
        self.record_id = record_id
        super().__init__(f"{self.entity} {record_id} not found")


class DeviceNotFoundError(NotFoundError):
    entity = "Device"


class SettingNotFoundError(NotFoundError):
    entity = "Sensor setting"


class AlertNotFoundError(NotFoundError):
    entity = "Alert"


class DuplicateDeviceError(VitalsError):
    """Raised when registering a device whose external id already exists."""

    def __init__(self, device_id: str) -> None:
        self.device_id = device_id
        super().__init__(f"Device {device_id!r} already registered")


class ReadingValidationError(VitalsError):
    """Raised when a transport payload cannot be turned into a reading."""
