"""Tests for sensor value classification."""

import math

import pytest

from vitals.lib.config import SensorStatus, ThresholdType
from vitals.lib.evaluator import classify, evaluate, worst_status


class TestEvaluate:
    """Tests for evaluate() against the temperature band [35, 38.5]."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (37.0, SensorStatus.NORMAL),
            (35.0, SensorStatus.NORMAL),
            (38.5, SensorStatus.NORMAL),
            (39.5, SensorStatus.WARNING),
            (34.0, SensorStatus.WARNING),
            (46.3, SensorStatus.DANGER),
            (27.9, SensorStatus.DANGER),
        ],
    )
    def test_temperature_band(self, value, expected):
        assert evaluate(value, 35.0, 38.5) is expected

    def test_pulse_high_warning(self):
        assert evaluate(130, 50, 120) is SensorStatus.WARNING

    def test_pulse_low_danger(self):
        assert evaluate(30, 50, 120) is SensorStatus.DANGER

    def test_danger_boundary_on_max_side_is_exclusive(self):
        # 120 * 1.2 == 144
        assert evaluate(144, 50, 120) is SensorStatus.WARNING
        assert evaluate(144.01, 50, 120) is SensorStatus.DANGER

    def test_danger_boundary_on_min_side_is_exclusive(self):
        # 50 * 0.8 == 40
        assert evaluate(40, 50, 120) is SensorStatus.WARNING
        assert evaluate(39.99, 50, 120) is SensorStatus.DANGER

    def test_margins_are_asymmetric(self):
        """20% below the floor is a smaller absolute gap than 20% above the ceiling."""
        assert evaluate(0.39, 0.5, 1.5) is SensorStatus.DANGER
        assert evaluate(1.79, 0.5, 1.5) is SensorStatus.WARNING

    def test_missing_value_is_unknown(self):
        assert evaluate(None, 35, 38.5) is SensorStatus.UNKNOWN

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_value_is_unknown(self, value):
        assert evaluate(value, 35, 38.5) is SensorStatus.UNKNOWN

    @pytest.mark.parametrize("value", ["37", True, [37]])
    def test_non_numeric_value_is_unknown(self, value):
        assert evaluate(value, 35, 38.5) is SensorStatus.UNKNOWN

    def test_absent_thresholds_are_skipped(self):
        assert evaluate(1000, None, None) is SensorStatus.NORMAL
        assert evaluate(1000, 35, None) is SensorStatus.NORMAL
        assert evaluate(-1000, None, 38.5) is SensorStatus.NORMAL
        assert evaluate(-1000, 35, None) is SensorStatus.DANGER

    def test_inverted_band_checks_min_first(self):
        """min > max is not rejected; the floor wins."""
        assert evaluate(45, 50, 40) is SensorStatus.WARNING
        assert classify(45, 50, 40).threshold_type is ThresholdType.MIN

    def test_zero_floor_escalates_any_negative_value(self):
        assert evaluate(-1, 0, 10) is SensorStatus.DANGER
        assert evaluate(0, 0, 10) is SensorStatus.NORMAL


class TestClassify:
    """Tests for the breached side reported by classify()."""

    def test_high_breach_reports_max_threshold(self):
        verdict = classify(39.5, 35.0, 38.5)

        assert verdict.status is SensorStatus.WARNING
        assert verdict.threshold_type is ThresholdType.MAX
        assert verdict.threshold == 38.5
        assert verdict.is_breach

    def test_low_breach_reports_min_threshold(self):
        verdict = classify(30, 50, 120)

        assert verdict.status is SensorStatus.DANGER
        assert verdict.threshold_type is ThresholdType.MIN
        assert verdict.threshold == 50

    def test_normal_has_no_threshold(self):
        verdict = classify(80, 50, 120)

        assert not verdict.is_breach
        assert verdict.threshold_type is None
        assert verdict.threshold is None

    def test_unknown_is_not_a_breach(self):
        assert not classify(None, 50, 120).is_breach


class TestWorstStatus:
    """Tests for aggregating statuses."""

    def test_empty_is_unknown(self):
        assert worst_status([]) is SensorStatus.UNKNOWN

    def test_danger_beats_everything(self):
        statuses = [
            SensorStatus.NORMAL,
            SensorStatus.DANGER,
            SensorStatus.WARNING,
            SensorStatus.UNKNOWN,
        ]
        assert worst_status(statuses) is SensorStatus.DANGER

    def test_warning_beats_normal(self):
        assert (
            worst_status([SensorStatus.NORMAL, SensorStatus.WARNING])
            is SensorStatus.WARNING
        )

    def test_normal_beats_unknown(self):
        assert (
            worst_status([SensorStatus.UNKNOWN, SensorStatus.NORMAL])
            is SensorStatus.NORMAL
        )

    def test_accepts_generators(self):
        values = [37.0, 39.5]
        result = worst_status(evaluate(v, 35, 38.5) for v in values)
        assert result is SensorStatus.WARNING
