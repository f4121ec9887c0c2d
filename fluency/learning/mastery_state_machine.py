"""
Mastery State Machine: four-state per-unit progression.

    acquisition -> consolidating -> confident -> mastered

Driven by SpikeDetector verdicts:
- smooth response: +1 consecutive smooth (and +1 consecutive fast when fast)
- ``advancement_threshold`` consecutive smooth: advance one state
- ``fast_track_threshold`` consecutive fast: advance two states
- mild discontinuity: counted, no state change
- moderate discontinuity: hold, counters reset
- severe discontinuity: regress one state, counters reset

The fast counter runs alongside the smooth counter. A normal advancement
resets only the smooth counter, so a fast streak that straddles an
advancement can still fast-track.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from loguru import logger

from config import MasteryConfig
from fluency.learning.spike_detector import SpikeSeverity


class MasteryState(str, Enum):
    ACQUISITION = "acquisition"
    CONSOLIDATING = "consolidating"
    CONFIDENT = "confident"
    MASTERED = "mastered"


STATE_ORDER = [
    MasteryState.ACQUISITION,
    MasteryState.CONSOLIDATING,
    MasteryState.CONFIDENT,
    MasteryState.MASTERED,
]


def _parse_time(value: Optional[str]) -> datetime:
    return datetime.fromisoformat(value) if value else datetime.now()


@dataclass
class UnitMastery:
    """Mastery record for one unit."""

    unit_id: str
    state: MasteryState = MasteryState.ACQUISITION
    consecutive_smooth: int = 0
    consecutive_fast: int = 0
    discontinuity_count: int = 0
    last_discontinuity_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "state": self.state.value,
            "consecutive_smooth": self.consecutive_smooth,
            "consecutive_fast": self.consecutive_fast,
            "discontinuity_count": self.discontinuity_count,
            "last_discontinuity_at": (
                self.last_discontinuity_at.isoformat() if self.last_discontinuity_at else None
            ),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UnitMastery":
        last = data.get("last_discontinuity_at")
        return cls(
            unit_id=data["unit_id"],
            state=MasteryState(data.get("state", "acquisition")),
            consecutive_smooth=int(data.get("consecutive_smooth", 0)),
            consecutive_fast=int(data.get("consecutive_fast", 0)),
            discontinuity_count=int(data.get("discontinuity_count", 0)),
            last_discontinuity_at=datetime.fromisoformat(last) if last else None,
            created_at=_parse_time(data.get("created_at")),
            updated_at=_parse_time(data.get("updated_at")),
        )


@dataclass(frozen=True)
class MasteryTransition:
    unit_id: str
    from_state: MasteryState
    to_state: MasteryState
    reason: str  # 'advancement', 'fast_track', 'hold', 'regression'
    timestamp: datetime


class MasteryStateMachine:
    """Tracks mastery per unit."""

    def __init__(self, config: MasteryConfig | None = None):
        self.config = config or MasteryConfig()
        self._states: dict[str, UnitMastery] = {}

    def get_state(self, unit_id: str) -> UnitMastery:
        """Get (creating if needed) the live record for a unit."""
        state = self._states.get(unit_id)
        if state is None:
            state = UnitMastery(unit_id=unit_id)
            self._states[unit_id] = state
        return state

    def record_smooth(
        self,
        unit_id: str,
        was_fast: bool,
        now: Optional[datetime] = None,
    ) -> Optional[MasteryTransition]:
        """
        Record a response with no struggle discontinuity.

        Returns:
            The transition applied, or None
        """
        state = self.get_state(unit_id)
        state.consecutive_smooth += 1
        state.consecutive_fast = state.consecutive_fast + 1 if was_fast else 0
        state.updated_at = now or datetime.now()
        return self._check_advancement(state)

    def record_discontinuity(
        self,
        unit_id: str,
        severity: SpikeSeverity,
        now: Optional[datetime] = None,
    ) -> Optional[MasteryTransition]:
        """
        Record a struggle discontinuity.

        Returns:
            'hold' for moderate, 'regression' for severe (when not already
            at acquisition), None otherwise
        """
        if severity == SpikeSeverity.NONE:
            return None

        state = self.get_state(unit_id)
        timestamp = now or datetime.now()
        previous = state.state
        state.discontinuity_count += 1
        state.last_discontinuity_at = timestamp
        state.updated_at = timestamp

        if severity == SpikeSeverity.MILD:
            return None

        state.consecutive_smooth = 0
        state.consecutive_fast = 0

        if severity == SpikeSeverity.MODERATE:
            return MasteryTransition(unit_id, previous, previous, "hold", timestamp)

        regressed = self._step(previous, -1)
        if regressed == previous:
            return None
        state.state = regressed
        logger.debug(f"Mastery regression {unit_id}: {previous.value} -> {regressed.value}")
        return MasteryTransition(unit_id, previous, regressed, "regression", timestamp)

    def _check_advancement(self, state: UnitMastery) -> Optional[MasteryTransition]:
        previous = state.state

        if state.consecutive_fast >= self.config.fast_track_threshold:
            target = self._step(previous, 2)
            if target != previous:
                state.state = target
                state.consecutive_smooth = 0
                state.consecutive_fast = 0
                logger.debug(f"Mastery fast-track {state.unit_id}: {previous.value} -> {target.value}")
                return MasteryTransition(state.unit_id, previous, target, "fast_track", state.updated_at)

        if state.consecutive_smooth >= self.config.advancement_threshold:
            target = self._step(previous, 1)
            if target != previous:
                state.state = target
                state.consecutive_smooth = 0
                return MasteryTransition(state.unit_id, previous, target, "advancement", state.updated_at)

        return None

    @staticmethod
    def _step(current: MasteryState, steps: int) -> MasteryState:
        index = STATE_ORDER.index(current) + steps
        return STATE_ORDER[max(0, min(index, len(STATE_ORDER) - 1))]

    # =========================================================================
    # Queries
    # =========================================================================

    def get_typical_skip(self, unit_id: str) -> int:
        return self.config.typical_skips[self.get_state(unit_id).state.value]

    def get_units_by_state(self, state: MasteryState) -> list[str]:
        return [unit_id for unit_id, record in self._states.items() if record.state == state]

    def get_stats(self) -> dict[str, Any]:
        records = list(self._states.values())
        by_state = {s.value: 0 for s in STATE_ORDER}
        for record in records:
            by_state[record.state.value] += 1
        total = len(records)
        return {
            "total": total,
            "by_state": by_state,
            "avg_consecutive_smooth": (
                sum(r.consecutive_smooth for r in records) / total if total else 0.0
            ),
            "avg_discontinuity_count": (
                sum(r.discontinuity_count for r in records) / total if total else 0.0
            ),
        }

    def get_all_states(self) -> list[UnitMastery]:
        return [replace(record) for record in self._states.values()]

    def load_states(self, states: list[UnitMastery]) -> None:
        self._states = {record.unit_id: replace(record) for record in states}

    def reset_unit(self, unit_id: str) -> None:
        self._states.pop(unit_id, None)

    def clear(self) -> None:
        self._states.clear()
