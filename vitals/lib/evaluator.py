"""Classification of sensor values against their configured band.

A value below the floor or above the ceiling is a breach. Breaching by more
than 20% of the threshold escalates the breach from warning to danger. The
same rule backs alert creation and the aggregate device status shown to
operators, so both always agree.
"""

import math
from collections.abc import Iterable
from dataclasses import dataclass

from vitals.lib.config import (
    DANGER_MAX_FACTOR,
    DANGER_MIN_FACTOR,
    SensorStatus,
    ThresholdType,
)


@dataclass(frozen=True, slots=True)
class Verdict:
    """Outcome of classifying a value, with the side that was breached."""

    status: SensorStatus
    threshold_type: ThresholdType | None = None
    threshold: float | None = None

    @property
    def is_breach(self) -> bool:
        return self.status in (SensorStatus.WARNING, SensorStatus.DANGER)


_UNKNOWN = Verdict(SensorStatus.UNKNOWN)
_NORMAL = Verdict(SensorStatus.NORMAL)


def _is_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return math.isfinite(value)


def classify(
    value: float | None,
    min_threshold: float | None,
    max_threshold: float | None,
) -> Verdict:
    """Classify a value and report which threshold it breached.

    The floor is checked first; the ceiling only when the floor holds.
    Absent thresholds are skipped. Danger boundaries are exclusive, so a
    value of exactly ``max * 1.2`` is still a warning.
    """
    if value is None or not _is_number(value):
        return _UNKNOWN

    if min_threshold is not None and value < min_threshold:
        status = (
            SensorStatus.DANGER
            if value < min_threshold * DANGER_MIN_FACTOR
            else SensorStatus.WARNING
        )
        return Verdict(status, ThresholdType.MIN, min_threshold)

    if max_threshold is not None and value > max_threshold:
        status = (
            SensorStatus.DANGER
            if value > max_threshold * DANGER_MAX_FACTOR
            else SensorStatus.WARNING
        )
        return Verdict(status, ThresholdType.MAX, max_threshold)

    return _NORMAL


def evaluate(
    value: float | None,
    min_threshold: float | None,
    max_threshold: float | None,
) -> SensorStatus:
    """Return the status of a value: normal, warning, danger or unknown."""
    return classify(value, min_threshold, max_threshold).status


def worst_status(statuses: Iterable[SensorStatus]) -> SensorStatus:
    """Return the most severe status (danger > warning > normal > unknown)."""
    return max(statuses, key=lambda s: s.severity, default=SensorStatus.UNKNOWN)
