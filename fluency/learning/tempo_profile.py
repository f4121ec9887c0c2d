"""
Learner Tempo Profile: session-scale calibration.

The first ``assessment_items`` responses of a learner's first session form
an assessment window. From it we derive:

- a tempo band from mean normalized latency (ms per character), which
  scales the learner's pause time;
- a consistency band from the variance coefficient (stddev / mean), which
  offsets the spike detector's sigma threshold so erratic learners are not
  flagged constantly and very steady learners are watched more closely.

Until the assessment completes the profile is neutral (multiplier 1.0,
offset 0). After each later session the bands may move by at most one step.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from loguru import logger

from config import TempoConfig


class TempoBand(str, Enum):
    VERY_FAST = "very_fast"
    FAST = "fast"
    MODERATE = "moderate"
    SLOW = "slow"
    VERY_SLOW = "very_slow"


class ConsistencyBand(str, Enum):
    VERY_CONSISTENT = "very_consistent"
    CONSISTENT = "consistent"
    VARIABLE = "variable"
    HIGHLY_VARIABLE = "highly_variable"


class CalibrationState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


TEMPO_ORDER = list(TempoBand)
CONSISTENCY_ORDER = list(ConsistencyBand)


@dataclass
class TempoAssessment:
    """Summary of one assessment window or session."""

    item_count: int
    mean_normalized_latency: float
    variance_coefficient: float


def _band_index(value: float, bounds: list[float]) -> int:
    for i, bound in enumerate(bounds):
        if value < bound:
            return i
    return len(bounds)


def _step_toward(current: int, target: int) -> int:
    if target > current:
        return current + 1
    if target < current:
        return current - 1
    return current


def summarize(values: list[float]) -> TempoAssessment:
    if not values:
        return TempoAssessment(0, 0.0, 0.0)
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    cv = math.sqrt(variance) / mean if mean > 0 else 0.0
    return TempoAssessment(len(values), mean, cv)


@dataclass
class LearnerTempoProfile:
    """Calibrated tempo and consistency for one learner."""

    config: TempoConfig = field(default_factory=TempoConfig)
    state: CalibrationState = CalibrationState.NOT_STARTED
    tempo: Optional[TempoBand] = None
    consistency: Optional[ConsistencyBand] = None
    assessment: Optional[TempoAssessment] = None
    calibrated_at: Optional[datetime] = None
    sessions_refined: int = 0
    _samples: list[float] = field(default_factory=list, repr=False)

    # =========================================================================
    # Assessment window
    # =========================================================================

    def start_calibration(self) -> None:
        self.state = CalibrationState.IN_PROGRESS
        self._samples = []

    def record(self, normalized_latency: float) -> bool:
        """
        Feed one response into the assessment window.

        Returns:
            True when this sample completed the assessment
        """
        if self.state != CalibrationState.IN_PROGRESS:
            return False
        self._samples.append(normalized_latency)
        if len(self._samples) >= self.config.assessment_items:
            self.complete_calibration()
            return True
        return False

    def complete_calibration(self) -> bool:
        """Classify the assessment window; needs at least two samples."""
        if self.state != CalibrationState.IN_PROGRESS or len(self._samples) < 2:
            return False
        self.assessment = summarize(self._samples)
        self.tempo = TEMPO_ORDER[
            _band_index(self.assessment.mean_normalized_latency, self.config.tempo_bounds)
        ]
        self.consistency = CONSISTENCY_ORDER[
            _band_index(self.assessment.variance_coefficient, self.config.consistency_bounds)
        ]
        self.state = CalibrationState.COMPLETED
        self.calibrated_at = datetime.now()
        self._samples = []
        logger.info(
            f"Tempo calibrated: {self.tempo.value} / {self.consistency.value} "
            f"(mean {self.assessment.mean_normalized_latency:.1f} ms/char, "
            f"cv {self.assessment.variance_coefficient:.2f})"
        )
        return True

    def skip_calibration(self) -> None:
        self.state = CalibrationState.SKIPPED
        self._samples = []

    @property
    def is_calibrated(self) -> bool:
        return self.tempo is not None and self.consistency is not None

    @property
    def items_assessed(self) -> int:
        return len(self._samples)

    # =========================================================================
    # Outputs
    # =========================================================================

    @property
    def pause_multiplier(self) -> float:
        if self.tempo is None:
            return 1.0
        return self.config.tempo_multipliers[TEMPO_ORDER.index(self.tempo)]

    @property
    def threshold_offset(self) -> float:
        if self.consistency is None:
            return 0.0
        return self.config.threshold_offsets[CONSISTENCY_ORDER.index(self.consistency)]

    # =========================================================================
    # Refinement
    # =========================================================================

    def refine(self, session: TempoAssessment) -> bool:
        """
        Nudge the bands toward a finished session's statistics.

        Each band moves at most one step. Sessions shorter than half the
        assessment window are ignored.

        Returns:
            True if either band changed
        """
        if not self.is_calibrated or session.item_count < self.config.assessment_items // 2:
            return False

        tempo_index = TEMPO_ORDER.index(self.tempo)
        consistency_index = CONSISTENCY_ORDER.index(self.consistency)
        new_tempo = _step_toward(
            tempo_index, _band_index(session.mean_normalized_latency, self.config.tempo_bounds)
        )
        new_consistency = _step_toward(
            consistency_index,
            _band_index(session.variance_coefficient, self.config.consistency_bounds),
        )
        changed = new_tempo != tempo_index or new_consistency != consistency_index
        self.tempo = TEMPO_ORDER[new_tempo]
        self.consistency = CONSISTENCY_ORDER[new_consistency]
        self.sessions_refined += 1
        if changed:
            logger.info(f"Tempo profile refined to {self.tempo.value} / {self.consistency.value}")
        return changed

    # =========================================================================
    # Persistence
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "tempo": self.tempo.value if self.tempo else None,
            "consistency": self.consistency.value if self.consistency else None,
            "assessment": (
                {
                    "item_count": self.assessment.item_count,
                    "mean_normalized_latency": self.assessment.mean_normalized_latency,
                    "variance_coefficient": self.assessment.variance_coefficient,
                }
                if self.assessment
                else None
            ),
            "calibrated_at": self.calibrated_at.isoformat() if self.calibrated_at else None,
            "sessions_refined": self.sessions_refined,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], config: TempoConfig | None = None) -> "LearnerTempoProfile":
        assessment = data.get("assessment")
        calibrated_at = data.get("calibrated_at")
        state = CalibrationState(data.get("state", "not_started"))
        if state == CalibrationState.IN_PROGRESS:
            state = CalibrationState.NOT_STARTED
        return cls(
            config=config or TempoConfig(),
            state=state,
            tempo=TempoBand(data["tempo"]) if data.get("tempo") else None,
            consistency=ConsistencyBand(data["consistency"]) if data.get("consistency") else None,
            assessment=TempoAssessment(**assessment) if assessment else None,
            calibrated_at=datetime.fromisoformat(calibrated_at) if calibrated_at else None,
            sessions_refined=int(data.get("sessions_refined", 0)),
        )
