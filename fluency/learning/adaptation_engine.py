"""
Adaptation Engine: closes the loop from playback timing to pacing.

Composes MetricsTracker, SpikeDetector, MasteryStateMachine,
WeightedSelector and LearnerTempoProfile behind a single
``process_completion`` call made once per completed practice item.

Per item:
1. Decay any active pause extension.
2. Classify the response against the baseline as it stood before this
   response (so a spike cannot dilute its own reference).
3. Record the response in the rolling window (and tempo assessment).
4. Update mastery and selection weight.
5. Decide the spike response (continue / repeat / breakdown) and start a
   pause extension when a response is taken.

The engine never touches Triple Helix state. Any unexpected fault degrades
to "continue, no adjustment" so a bad sample cannot stop a session.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger

from config import Settings, get_settings
from fluency.core.models import LearningUnit
from fluency.learning.mastery_state_machine import (
    MasteryState,
    MasteryStateMachine,
    MasteryTransition,
    UnitMastery,
)
from fluency.learning.metrics_tracker import MetricsTracker, SessionMetrics
from fluency.learning.spike_detector import (
    SpikeAction,
    SpikeDetector,
    SpikeDirection,
    SpikeResult,
    SpikeSeverity,
)
from fluency.learning.tempo_profile import (
    CalibrationState,
    LearnerTempoProfile,
    summarize,
)
from fluency.learning.weighted_selector import WeightedSelector


class AdaptationAction(str, Enum):
    CONTINUE = "continue"
    REPEAT = "repeat"
    BREAKDOWN = "breakdown"


@dataclass(frozen=True)
class AdaptationResult:
    """What to do after a completed item."""

    unit_id: str
    action: AdaptationAction
    severity: SpikeSeverity = SpikeSeverity.NONE
    direction: SpikeDirection = SpikeDirection.NONE
    mastery_transition: Optional[MasteryTransition] = None
    reason: str = ""
    pause_multiplier: float = 1.0
    breakdown_components: tuple[str, ...] = ()
    in_cooldown: bool = False
    degraded: bool = False
    spike: Optional[SpikeResult] = None

    @property
    def is_struggle(self) -> bool:
        return self.direction == SpikeDirection.SLOWER and self.severity in (
            SpikeSeverity.MODERATE,
            SpikeSeverity.SEVERE,
        )


@dataclass
class PauseExtension:
    items_remaining: int = 0
    factor: float = 0.0

    @property
    def is_extended(self) -> bool:
        return self.items_remaining > 0


def component_id(unit_id: str, index: int) -> str:
    return f"{unit_id}_C{index}"


class AdaptationEngine:
    """
    Per-learner adaptation state.

    Args:
        settings: Resolved settings (defaults to ``get_settings()``)
        tempo_profile: Existing profile for a returning learner
        rng: Random source for weighted selection
        clock: Current-time provider shared with the selector
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        tempo_profile: Optional[LearnerTempoProfile] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or get_settings()
        self.clock = clock or datetime.now
        self.enabled = self.settings.features.adaptation_enabled

        self.metrics = MetricsTracker(self.settings.metrics)
        self.spike_detector = SpikeDetector(
            self.settings.spike,
            min_samples=self.settings.metrics.rolling_window_size // 2,
        )
        self.mastery = MasteryStateMachine(self.settings.mastery)
        self.selector = WeightedSelector(self.settings.selection, rng=rng, clock=self.clock)
        self.tempo = tempo_profile or LearnerTempoProfile(config=self.settings.tempo)

        self._extension = PauseExtension(factor=self.settings.spike.pause_extension_factor)
        self._session_values: list[float] = []

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    def start_session(self, session_id: Optional[str] = None) -> SessionMetrics:
        """Open a session; first-ever sessions start the tempo assessment."""
        self.spike_detector.reset()
        self.clear_pause_extension()
        self._session_values = []
        if self.tempo.state == CalibrationState.NOT_STARTED:
            self.tempo.start_calibration()
        return self.metrics.start_session(session_id)

    def end_session(self) -> Optional[SessionMetrics]:
        """Close the session and refine the tempo profile from it."""
        if self.tempo.state == CalibrationState.IN_PROGRESS:
            self.tempo.complete_calibration()
        elif self.tempo.is_calibrated and self._session_values:
            self.tempo.refine(summarize(self._session_values))
        self.selector.decay_discontinuity_counts()
        self._session_values = []
        return self.metrics.end_session()

    # =========================================================================
    # Per-item processing
    # =========================================================================

    def process_completion(
        self,
        unit_id: str,
        observed_latency_ms: float,
        phrase_length: int,
        unit: Optional[LearningUnit] = None,
    ) -> AdaptationResult:
        """
        Feed one completed item into the engine.

        Args:
            unit_id: Unit the item practised
            observed_latency_ms: Learner response latency
            phrase_length: Target phrase length in characters
            unit: The unit itself, needed to break down molecular units

        Returns:
            AdaptationResult (``degraded=True`` if processing failed)
        """
        try:
            return self._process(unit_id, observed_latency_ms, phrase_length, unit)
        except Exception:
            logger.exception(f"Adaptation failed for {unit_id}; continuing without adjustment")
            return AdaptationResult(
                unit_id=unit_id,
                action=AdaptationAction.CONTINUE,
                reason="adaptation degraded",
                pause_multiplier=self.pause_multiplier,
                degraded=True,
            )

    def _process(
        self,
        unit_id: str,
        observed_latency_ms: float,
        phrase_length: int,
        unit: Optional[LearningUnit],
    ) -> AdaptationResult:
        if observed_latency_ms < 0:
            raise ValueError(f"Negative latency for {unit_id}: {observed_latency_ms}")

        self._decrement_pause_extension()
        now = self.clock()

        normalized = self.metrics.normalize(observed_latency_ms, phrase_length)
        observed = observed_latency_ms if self.settings.metrics.latency_basis == "raw" else normalized
        baseline = self.metrics.snapshot()

        self.metrics.record_response(unit_id, observed_latency_ms, phrase_length, now=now)
        self.tempo.record(normalized)
        self._session_values.append(normalized)
        self.selector.update_after_practice(unit_id, now=now)

        if not self.enabled:
            return AdaptationResult(
                unit_id=unit_id,
                action=AdaptationAction.CONTINUE,
                reason="adaptation disabled",
                pause_multiplier=self.pause_multiplier,
            )

        spike = self.spike_detector.classify(observed, baseline, self.tempo.threshold_offset)

        if spike.is_struggle:
            transition = self.mastery.record_discontinuity(unit_id, spike.severity, now=now)
            self.selector.record_discontinuity(unit_id)
            self.metrics.record_spike()
            logger.debug(f"{spike.severity.value} spike on {unit_id}: {spike.reason}")
        else:
            transition = self.mastery.record_smooth(unit_id, was_fast=spike.is_fast, now=now)

        is_molecular = bool(unit and unit.is_molecular)
        response = self.spike_detector.respond(spike, is_molecular)

        action = AdaptationAction.CONTINUE
        components: tuple[str, ...] = ()
        if response.action == SpikeAction.REPEAT:
            action = AdaptationAction.REPEAT
        elif response.action == SpikeAction.BREAKDOWN:
            action = AdaptationAction.BREAKDOWN
            components = tuple(component_id(unit_id, i) for i in range(len(unit.components)))

        if action != AdaptationAction.CONTINUE:
            self.extend_pause()

        reason = response.reason
        if response.action == SpikeAction.NONE and not response.in_cooldown:
            reason = spike.reason

        return AdaptationResult(
            unit_id=unit_id,
            action=action,
            severity=spike.severity,
            direction=spike.direction,
            mastery_transition=transition,
            reason=reason,
            pause_multiplier=self.pause_multiplier,
            breakdown_components=components,
            in_cooldown=response.in_cooldown,
            spike=spike,
        )

    # =========================================================================
    # Pacing
    # =========================================================================

    @property
    def pause_multiplier(self) -> float:
        """Tempo multiplier, raised while a spike extension is active."""
        multiplier = self.tempo.pause_multiplier
        if self._extension.is_extended:
            multiplier *= 1 + self._extension.factor
        return multiplier

    def extend_pause(self, items: Optional[int] = None) -> None:
        self._extension.items_remaining = (
            self.settings.spike.pause_extension_items if items is None else items
        )

    def clear_pause_extension(self) -> None:
        self._extension.items_remaining = 0

    def _decrement_pause_extension(self) -> None:
        if self._extension.items_remaining > 0:
            self._extension.items_remaining -= 1

    @property
    def pause_extension(self) -> PauseExtension:
        return PauseExtension(self._extension.items_remaining, self._extension.factor)

    # =========================================================================
    # Selection & mastery passthroughs
    # =========================================================================

    def order_reviews(self, unit_ids: list[str], limit: Optional[int] = None) -> list[str]:
        """Weighted order over units the helix already considers due."""
        return self.selector.order(unit_ids, limit=limit)

    def mastery_state(self, unit_id: str) -> MasteryState:
        return self.mastery.get_state(unit_id).state

    def get_stats(self) -> dict[str, Any]:
        baseline = self.metrics.snapshot()
        return {
            "baseline_mean": baseline.mean,
            "baseline_stddev": baseline.stddev,
            "baseline_count": baseline.count,
            "pause_multiplier": self.pause_multiplier,
            "tempo": self.tempo.tempo.value if self.tempo.tempo else None,
            "consistency": self.tempo.consistency.value if self.tempo.consistency else None,
            "mastery": self.mastery.get_stats()["by_state"],
        }

    # =========================================================================
    # Persistence
    # =========================================================================

    def export_state(self) -> dict[str, Any]:
        return {
            "baseline": self.metrics.export_samples(),
            "mastery": [record.to_dict() for record in self.mastery.get_all_states()],
            "selection": self.selector.export_state(),
            "spike": self.spike_detector.export_state(),
            "tempo": self.tempo.to_dict(),
        }

    def import_state(self, state: dict[str, Any]) -> None:
        self.metrics.import_samples(state.get("baseline", []))
        self.mastery.load_states([UnitMastery.from_dict(d) for d in state.get("mastery", [])])
        self.selector.import_state(state.get("selection", {}))
        self.spike_detector.import_state(state.get("spike", {}))
        if state.get("tempo"):
            self.tempo = LearnerTempoProfile.from_dict(state["tempo"], config=self.settings.tempo)
