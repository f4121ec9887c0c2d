"""
Unit tests for SpikeDetector.

Tests:
- Severity bands relative to the learner's baseline
- Direction and fast responses
- Sigma floors
- Response policy (repeat / breakdown / alternate) and cooldown
"""

import pytest

from config import SpikeConfig
from fluency.learning.metrics_tracker import BaselineSnapshot, MetricsTracker
from fluency.learning.spike_detector import (
    SpikeAction,
    SpikeDetector,
    SpikeDirection,
    SpikeSeverity,
)

BASELINE = BaselineSnapshot(mean=100.0, stddev=10.0, count=10)


@pytest.fixture
def detector():
    return SpikeDetector()


def moderate_spike(detector):
    return detector.classify(126.0, BASELINE)


class TestClassification:
    """Tests for the severity bands."""

    @pytest.mark.parametrize(
        "observed,expected",
        [
            (105.0, SpikeSeverity.NONE),
            (120.0, SpikeSeverity.NONE),
            (122.0, SpikeSeverity.MILD),
            (126.0, SpikeSeverity.MODERATE),
            (140.0, SpikeSeverity.MODERATE),
            (141.0, SpikeSeverity.SEVERE),
        ],
    )
    def test_bands(self, detector, observed, expected):
        assert detector.classify(observed, BASELINE).severity == expected

    def test_slower_spike_is_struggle(self, detector):
        result = detector.classify(126.0, BASELINE)
        assert result.direction == SpikeDirection.SLOWER
        assert result.is_struggle is True
        assert result.z_score == pytest.approx(2.6)

    def test_faster_spike_is_not_struggle(self, detector):
        result = detector.classify(70.0, BASELINE)
        assert result.severity == SpikeSeverity.MODERATE
        assert result.direction == SpikeDirection.FASTER
        assert result.is_struggle is False
        assert result.is_fast is True

    def test_fast_flag_below_half_sigma(self, detector):
        assert detector.classify(94.0, BASELINE).is_fast is True
        assert detector.classify(96.0, BASELINE).is_fast is False

    def test_insufficient_data(self, detector):
        small = BaselineSnapshot(mean=100.0, stddev=10.0, count=4)
        result = detector.classify(500.0, small)
        assert result.severity == SpikeSeverity.NONE
        assert result.reason == "insufficient_data"

    def test_threshold_offset_widens_band(self, detector):
        assert detector.classify(122.0, BASELINE, threshold_offset=0.5).severity == SpikeSeverity.NONE
        assert detector.classify(118.0, BASELINE, threshold_offset=-0.25).severity == SpikeSeverity.MILD

    def test_threshold_never_below_half_sigma(self, detector):
        result = detector.classify(100.0, BASELINE, threshold_offset=-10.0)
        assert result.threshold_sigma == pytest.approx(0.5)

    def test_sigma_is_personal_stddev(self, detector):
        tight = BaselineSnapshot(mean=200.0, stddev=2.0, count=10)
        assert detector.effective_sigma(tight) == pytest.approx(2.0)

    @pytest.mark.parametrize(
        "observed,expected",
        [
            (203.0, SpikeSeverity.NONE),
            (204.4, SpikeSeverity.MILD),
            (205.2, SpikeSeverity.MODERATE),
            (208.2, SpikeSeverity.SEVERE),
        ],
    )
    def test_consistent_learner_bands(self, detector, observed, expected):
        tight = BaselineSnapshot(mean=200.0, stddev=2.0, count=10)
        assert detector.classify(observed, tight).severity == expected

    def test_zero_variance_uses_absolute_floor(self, detector):
        flat = BaselineSnapshot(mean=200.0, stddev=0.0, count=10)
        assert detector.effective_sigma(flat) == pytest.approx(1.0)
        assert detector.classify(200.0, flat).severity == SpikeSeverity.NONE
        assert detector.classify(203.0, flat).severity == SpikeSeverity.MODERATE

    def test_relative_floor_is_opt_in(self):
        detector = SpikeDetector(SpikeConfig(min_stddev_ratio=0.05))
        flat = BaselineSnapshot(mean=200.0, stddev=0.0, count=10)
        assert detector.effective_sigma(flat) == pytest.approx(10.0)

    def test_absolute_floor(self, detector):
        tiny = BaselineSnapshot(mean=2.0, stddev=0.0, count=10)
        assert detector.effective_sigma(tiny) == pytest.approx(1.0)

    def test_steady_learner_then_long_hesitation_is_severe(self, detector):
        tracker = MetricsTracker()
        for _ in range(20):
            tracker.record_response("U001", 2000, 10)
        baseline = tracker.snapshot()
        result = detector.classify(tracker.normalize(4200, 10), baseline)
        assert result.severity == SpikeSeverity.SEVERE
        assert result.is_struggle is True


class TestSeverityOrdering:
    def test_ordering(self):
        assert SpikeSeverity.SEVERE > SpikeSeverity.MODERATE > SpikeSeverity.MILD > SpikeSeverity.NONE
        assert SpikeSeverity.MODERATE >= SpikeSeverity.MODERATE
        assert SpikeSeverity.MILD < SpikeSeverity.MODERATE


class TestResponsePolicy:
    """Tests for spike responses and cooldown."""

    def test_mild_spike_gets_no_action(self, detector):
        response = detector.respond(detector.classify(122.0, BASELINE), is_molecular=True)
        assert response.action == SpikeAction.NONE

    def test_faster_spike_gets_no_action(self, detector):
        response = detector.respond(detector.classify(60.0, BASELINE), is_molecular=True)
        assert response.action == SpikeAction.NONE

    def test_alternate_strategy(self, detector):
        actions = []
        for _ in range(3):
            actions.append(detector.respond(moderate_spike(detector), is_molecular=True).action)
            for _ in range(2):
                detector.respond(detector.classify(100.0, BASELINE), is_molecular=True)
        assert actions == [SpikeAction.REPEAT, SpikeAction.BREAKDOWN, SpikeAction.REPEAT]

    def test_breakdown_falls_back_to_repeat_for_atomic(self):
        detector = SpikeDetector(SpikeConfig(response_strategy="breakdown"))
        response = detector.respond(moderate_spike(detector), is_molecular=False)
        assert response.action == SpikeAction.REPEAT

    def test_cooldown_suppresses_next_two_responses(self, detector):
        first = detector.respond(moderate_spike(detector), is_molecular=False)
        second = detector.respond(moderate_spike(detector), is_molecular=False)
        third = detector.respond(moderate_spike(detector), is_molecular=False)
        fourth = detector.respond(moderate_spike(detector), is_molecular=False)
        assert first.action == SpikeAction.REPEAT
        assert second.in_cooldown and second.action == SpikeAction.NONE
        assert third.in_cooldown and third.action == SpikeAction.NONE
        assert fourth.action == SpikeAction.REPEAT

    def test_min_severity_severe(self):
        detector = SpikeDetector(SpikeConfig(response_min_severity="severe"))
        assert detector.respond(moderate_spike(detector), is_molecular=False).action == SpikeAction.NONE
        severe = detector.classify(150.0, BASELINE)
        assert detector.respond(severe, is_molecular=False).action == SpikeAction.REPEAT

    def test_state_round_trip(self, detector):
        detector.respond(moderate_spike(detector), is_molecular=True)
        state = detector.export_state()
        restored = SpikeDetector()
        restored.import_state(state)
        assert restored.respond(moderate_spike(restored), is_molecular=True).in_cooldown is True

    def test_fresh_state_exports_none(self, detector):
        assert detector.export_state() == {"items_since_response": None, "alternate_index": 0}
