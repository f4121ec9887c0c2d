"""
Spike Detector: differential discontinuity classification.

A response is compared with the learner's own rolling baseline rather than
an absolute target:

    differential = observed - mean
    none      if |differential| <= threshold * sigma
    mild      up to 2.5 sigma
    moderate  up to 4 sigma
    severe    beyond 4 sigma

Only the slower direction counts as struggle. A much faster response is
reported (direction FASTER) but treated as smooth by the mastery machine.

The detector also owns the response cooldown: after a spike response, the
next ``cooldown_items - 1`` spikes are recorded but not acted on.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from config import SpikeConfig
from fluency.learning.metrics_tracker import BaselineSnapshot


class SpikeSeverity(str, Enum):
    """How far a response sits from the baseline."""

    NONE = "none"
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __ge__(self, other):
        if not isinstance(other, SpikeSeverity):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other):
        if not isinstance(other, SpikeSeverity):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other):
        if not isinstance(other, SpikeSeverity):
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other):
        if not isinstance(other, SpikeSeverity):
            return NotImplemented
        return self.rank < other.rank


_SEVERITY_RANK = {
    SpikeSeverity.NONE: 0,
    SpikeSeverity.MILD: 1,
    SpikeSeverity.MODERATE: 2,
    SpikeSeverity.SEVERE: 3,
}


class SpikeDirection(str, Enum):
    NONE = "none"
    SLOWER = "slower"
    FASTER = "faster"


class SpikeAction(str, Enum):
    """Response chosen for a detected spike."""

    NONE = "none"
    REPEAT = "repeat"
    BREAKDOWN = "breakdown"


ALTERNATE_SEQUENCE = (SpikeAction.REPEAT, SpikeAction.BREAKDOWN)


@dataclass(frozen=True)
class SpikeResult:
    """Verdict for one response."""

    severity: SpikeSeverity
    direction: SpikeDirection
    observed: float
    mean: float
    sigma: float
    differential: float
    z_score: float
    threshold_sigma: float
    is_fast: bool = False
    reason: str = ""

    @property
    def is_spike(self) -> bool:
        return self.severity != SpikeSeverity.NONE

    @property
    def is_struggle(self) -> bool:
        """A discontinuity in the slower direction."""
        return self.is_spike and self.direction == SpikeDirection.SLOWER


@dataclass(frozen=True)
class SpikeResponse:
    action: SpikeAction
    reason: str
    in_cooldown: bool = False


class SpikeDetector:
    """
    Classifies responses against a baseline snapshot.

    Args:
        config: Spike thresholds and response policy (defaults if None)
        min_samples: Baseline samples required before anything is classified
    """

    def __init__(self, config: SpikeConfig | None = None, min_samples: int = 5):
        self.config = config or SpikeConfig()
        self.min_samples = min_samples
        self._items_since_response = math.inf
        self._alternate_index = 0

    # =========================================================================
    # Classification
    # =========================================================================

    def effective_sigma(self, baseline: BaselineSnapshot) -> float:
        """Baseline stddev with absolute and relative floors."""
        return max(
            baseline.stddev,
            self.config.min_stddev,
            abs(baseline.mean) * self.config.min_stddev_ratio,
        )

    def classify(
        self,
        observed: float,
        baseline: BaselineSnapshot,
        threshold_offset: float = 0.0,
    ) -> SpikeResult:
        """
        Classify one observation.

        Args:
            observed: Value in the baseline's basis (normalized or raw)
            baseline: Snapshot taken before the observation was recorded
            threshold_offset: Sigma offset from the learner's tempo profile

        Returns:
            SpikeResult (severity NONE while the baseline is too small)
        """
        threshold = max(0.5, self.config.threshold_sigma + threshold_offset)

        if baseline.count < self.min_samples:
            return SpikeResult(
                severity=SpikeSeverity.NONE,
                direction=SpikeDirection.NONE,
                observed=observed,
                mean=baseline.mean,
                sigma=baseline.stddev,
                differential=0.0,
                z_score=0.0,
                threshold_sigma=threshold,
                reason="insufficient_data",
            )

        sigma = self.effective_sigma(baseline)
        differential = observed - baseline.mean
        z = differential / sigma
        magnitude = abs(z)
        is_fast = z <= -self.config.fast_sigma

        if magnitude <= threshold:
            severity = SpikeSeverity.NONE
        elif magnitude <= self.config.moderate_sigma:
            severity = SpikeSeverity.MILD
        elif magnitude <= self.config.severe_sigma:
            severity = SpikeSeverity.MODERATE
        else:
            severity = SpikeSeverity.SEVERE

        if severity == SpikeSeverity.NONE:
            direction = SpikeDirection.NONE
        elif differential > 0:
            direction = SpikeDirection.SLOWER
        else:
            direction = SpikeDirection.FASTER

        return SpikeResult(
            severity=severity,
            direction=direction,
            observed=observed,
            mean=baseline.mean,
            sigma=sigma,
            differential=differential,
            z_score=z,
            threshold_sigma=threshold,
            is_fast=is_fast,
            reason=f"{magnitude:.2f} sigma {'above' if differential > 0 else 'below'} baseline",
        )

    # =========================================================================
    # Response policy
    # =========================================================================

    def respond(self, result: SpikeResult, is_molecular: bool) -> SpikeResponse:
        """
        Decide how to react to a classified response.

        Called once per item; advances the cooldown counter.
        """
        self._items_since_response += 1

        min_severity = SpikeSeverity(self.config.response_min_severity)
        if not result.is_struggle or result.severity < min_severity:
            return SpikeResponse(action=SpikeAction.NONE, reason="no actionable spike")

        if self._items_since_response < self.config.cooldown_items:
            return SpikeResponse(
                action=SpikeAction.NONE,
                reason=(
                    f"in cooldown ({int(self._items_since_response)}/"
                    f"{self.config.cooldown_items} items)"
                ),
                in_cooldown=True,
            )

        strategy = self.config.response_strategy
        if strategy == "repeat":
            action = SpikeAction.REPEAT
        elif strategy == "breakdown":
            action = SpikeAction.BREAKDOWN
        else:
            action = ALTERNATE_SEQUENCE[self._alternate_index]
            self._alternate_index = (self._alternate_index + 1) % len(ALTERNATE_SEQUENCE)

        if action == SpikeAction.BREAKDOWN and not is_molecular:
            action = SpikeAction.REPEAT

        self._items_since_response = 0
        return SpikeResponse(action=action, reason=f"{result.severity.value} spike: {result.reason}")

    @property
    def items_since_response(self) -> float:
        return self._items_since_response

    def export_state(self) -> dict:
        return {
            "items_since_response": (
                None if math.isinf(self._items_since_response) else int(self._items_since_response)
            ),
            "alternate_index": self._alternate_index,
        }

    def import_state(self, state: dict) -> None:
        since = state.get("items_since_response")
        self._items_since_response = math.inf if since is None else since
        self._alternate_index = int(state.get("alternate_index", 0)) % len(ALTERNATE_SEQUENCE)

    def reset(self) -> None:
        self._items_since_response = math.inf
        self._alternate_index = 0
