"""
Learning: adaptation to the learner's observed behavior.

- metrics_tracker: rolling personal response-time baseline
- spike_detector: differential discontinuity classification
- mastery_state_machine: four-state per-unit progression
- weighted_selector: staleness/struggle/recency weighted review order
- tempo_profile: session-scale tempo and consistency calibration
- adaptation_engine: composes the above behind process_completion
"""

from fluency.learning.adaptation_engine import (
    AdaptationAction,
    AdaptationEngine,
    AdaptationResult,
)
from fluency.learning.mastery_state_machine import (
    MasteryState,
    MasteryStateMachine,
    MasteryTransition,
)
from fluency.learning.metrics_tracker import BaselineSnapshot, MetricsTracker, SessionMetrics
from fluency.learning.spike_detector import (
    SpikeAction,
    SpikeDetector,
    SpikeDirection,
    SpikeResult,
    SpikeSeverity,
)
from fluency.learning.tempo_profile import (
    CalibrationState,
    ConsistencyBand,
    LearnerTempoProfile,
    TempoBand,
)
from fluency.learning.weighted_selector import WeightedSelector

__all__ = [
    # Engine
    "AdaptationEngine",
    "AdaptationAction",
    "AdaptationResult",
    # Baseline
    "MetricsTracker",
    "BaselineSnapshot",
    "SessionMetrics",
    # Spikes
    "SpikeDetector",
    "SpikeResult",
    "SpikeSeverity",
    "SpikeDirection",
    "SpikeAction",
    # Mastery
    "MasteryStateMachine",
    "MasteryState",
    "MasteryTransition",
    # Selection
    "WeightedSelector",
    # Tempo
    "LearnerTempoProfile",
    "TempoBand",
    "ConsistencyBand",
    "CalibrationState",
]
