"""
Weighted Selector: probabilistic "what to review next".

    weight = base
           x (1 + days_since_practice * staleness_rate)
           x (1 + discontinuities * struggle_multiplier)
           x recency

    recency = 0.5 + 0.5 * min(1, minutes_since_practice / recency_window)

A unit never practiced gets a one-year staleness and no recency penalty.
The selector only orders units the Triple Helix already considers due;
it never overrides skip gating.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Iterable, Optional

from config import SelectionConfig


@dataclass
class SelectionData:
    """What the selector knows about one unit."""

    last_practice_at: Optional[datetime] = None
    discontinuity_count: int = 0


@dataclass(frozen=True)
class WeightCalculation:
    unit_id: str
    weight: float
    staleness_factor: float
    struggle_factor: float
    recency_factor: float
    days_since_practice: Optional[float]
    minutes_since_practice: Optional[float]


class WeightedSelector:
    """
    Weighted random selection over candidate unit ids.

    Args:
        config: Weight parameters (defaults if None)
        rng: Random source (seed it for reproducible sessions)
        clock: Returns the current time
    """

    def __init__(
        self,
        config: SelectionConfig | None = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or SelectionConfig()
        self.rng = rng or random.Random()
        self.clock = clock or datetime.now
        self._data: dict[str, SelectionData] = {}

    # =========================================================================
    # Weights
    # =========================================================================

    def calculate_weight(self, unit_id: str, now: Optional[datetime] = None) -> WeightCalculation:
        data = self.get_data(unit_id)
        now = now or self.clock()
        cfg = self.config

        if data.last_practice_at is None:
            days = minutes = None
            staleness = 1 + cfg.never_practiced_days * cfg.staleness_rate
            recency = 1.0
        else:
            seconds = max(0.0, (now - data.last_practice_at).total_seconds())
            days = seconds / 86400
            minutes = seconds / 60
            staleness = 1 + days * cfg.staleness_rate
            recency = 0.5 + 0.5 * min(1.0, minutes / cfg.recency_window_minutes)

        struggle = 1 + data.discontinuity_count * cfg.struggle_multiplier
        weight = cfg.base_weight * staleness * struggle * recency

        return WeightCalculation(
            unit_id=unit_id,
            weight=weight,
            staleness_factor=staleness,
            struggle_factor=struggle,
            recency_factor=recency,
            days_since_practice=days,
            minutes_since_practice=minutes,
        )

    def probabilities(self, candidates: Iterable[str]) -> dict[str, float]:
        calcs = [self.calculate_weight(unit_id) for unit_id in candidates]
        total = sum(c.weight for c in calcs)
        if total <= 0:
            return {c.unit_id: 1 / len(calcs) for c in calcs} if calcs else {}
        return {c.unit_id: c.weight / total for c in calcs}

    # =========================================================================
    # Selection
    # =========================================================================

    def select(self, candidates: list[str]) -> str:
        """
        Pick one candidate with probability proportional to its weight.

        Raises:
            ValueError: If candidates is empty
        """
        if not candidates:
            raise ValueError("Cannot select from an empty candidate list")
        if len(candidates) == 1:
            return candidates[0]

        weights = [self.calculate_weight(unit_id).weight for unit_id in candidates]
        total = sum(weights)
        if total <= 0:
            return self.rng.choice(candidates)

        draw = self.rng.random() * total
        cumulative = 0.0
        for unit_id, weight in zip(candidates, weights):
            cumulative += weight
            if draw < cumulative:
                return unit_id
        return candidates[-1]

    def order(self, candidates: list[str], limit: Optional[int] = None) -> list[str]:
        """Draw candidates without replacement into a weighted order."""
        remaining = list(dict.fromkeys(candidates))
        ordered: list[str] = []
        target = len(remaining) if limit is None else min(limit, len(remaining))
        while remaining and len(ordered) < target:
            chosen = self.select(remaining)
            ordered.append(chosen)
            remaining.remove(chosen)
        return ordered

    # =========================================================================
    # Updates
    # =========================================================================

    def update_after_practice(self, unit_id: str, now: Optional[datetime] = None) -> None:
        self._data.setdefault(unit_id, SelectionData()).last_practice_at = now or self.clock()

    def record_discontinuity(self, unit_id: str) -> None:
        self._data.setdefault(unit_id, SelectionData()).discontinuity_count += 1

    def decay_discontinuity_counts(self, now: Optional[datetime] = None) -> int:
        """
        Forgive struggle on units left alone long enough.

        Returns:
            Number of units whose count was reduced
        """
        now = now or self.clock()
        threshold_seconds = self.config.decay_after_days * 86400
        decayed = 0
        for data in self._data.values():
            if data.last_practice_at is None or data.discontinuity_count <= 0:
                continue
            if (now - data.last_practice_at).total_seconds() > threshold_seconds:
                data.discontinuity_count = max(0, data.discontinuity_count - self.config.decay_amount)
                decayed += 1
        return decayed

    # =========================================================================
    # State
    # =========================================================================

    def get_data(self, unit_id: str) -> SelectionData:
        data = self._data.get(unit_id)
        return replace(data) if data else SelectionData()

    def set_data(self, unit_id: str, data: SelectionData) -> None:
        self._data[unit_id] = replace(data)

    def export_state(self) -> dict[str, dict]:
        return {
            unit_id: {
                "last_practice_at": d.last_practice_at.isoformat() if d.last_practice_at else None,
                "discontinuity_count": d.discontinuity_count,
            }
            for unit_id, d in self._data.items()
        }

    def import_state(self, state: dict[str, dict]) -> None:
        self._data = {
            unit_id: SelectionData(
                last_practice_at=(
                    datetime.fromisoformat(d["last_practice_at"]) if d.get("last_practice_at") else None
                ),
                discontinuity_count=int(d.get("discontinuity_count", 0)),
            )
            for unit_id, d in state.items()
        }

    def clear(self) -> None:
        self._data.clear()
