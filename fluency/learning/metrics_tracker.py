"""
Metrics Tracker: the learner's personal response-time baseline.

Keeps a bounded rolling window of response samples. Each sample stores the
raw latency and a length-normalized latency (ms per character, with short
phrases floored so one-word answers do not dominate). Mean and standard
deviation are computed on demand for the configured basis.
"""

from __future__ import annotations

import math
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from loguru import logger

from config import MetricsConfig


@dataclass(frozen=True)
class ResponseSample:
    """One observed response."""

    unit_id: str
    latency_ms: float
    normalized_latency: float
    phrase_length: int
    recorded_at: datetime


@dataclass(frozen=True)
class BaselineSnapshot:
    """Rolling statistics at a point in time."""

    mean: float
    stddev: float
    count: int

    @property
    def is_empty(self) -> bool:
        return self.count == 0


@dataclass
class SessionMetrics:
    """Summary of one practice session."""

    session_id: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    items_practiced: int = 0
    spikes_detected: int = 0
    final_rolling_average: float = 0.0
    samples: list[ResponseSample] = field(default_factory=list)

    @property
    def spike_rate(self) -> float:
        if self.items_practiced == 0:
            return 0.0
        return self.spikes_detected / self.items_practiced


MetricsListener = Callable[[str, object], None]


class MetricsTracker:
    """
    Rolling window of response samples.

    Capacity never exceeds ``rolling_window_size``; the oldest sample is
    evicted first.
    """

    def __init__(self, config: MetricsConfig | None = None):
        self.config = config or MetricsConfig()
        self._window: deque[ResponseSample] = deque(maxlen=self.config.rolling_window_size)
        self._session: Optional[SessionMetrics] = None
        self._listeners: list[MetricsListener] = []

    # =========================================================================
    # Recording
    # =========================================================================

    def normalize(self, latency_ms: float, phrase_length: int) -> float:
        return latency_ms / max(phrase_length, self.config.min_phrase_length)

    def record_response(
        self,
        unit_id: str,
        latency_ms: float,
        phrase_length: int,
        now: Optional[datetime] = None,
    ) -> BaselineSnapshot:
        """
        Append a sample and return the updated snapshot.

        Args:
            unit_id: Unit the response belongs to
            latency_ms: Observed response latency
            phrase_length: Target phrase length in characters
            now: Timestamp override (defaults to now)

        Returns:
            Baseline snapshot including the new sample
        """
        sample = ResponseSample(
            unit_id=unit_id,
            latency_ms=float(latency_ms),
            normalized_latency=self.normalize(latency_ms, phrase_length),
            phrase_length=phrase_length,
            recorded_at=now or datetime.now(),
        )
        self._window.append(sample)

        if self._session is not None:
            self._session.items_practiced += 1
            self._session.samples.append(sample)

        snapshot = self.snapshot()
        self._emit("response_recorded", sample)
        return snapshot

    def record_spike(self) -> None:
        if self._session is not None:
            self._session.spikes_detected += 1
        self._emit("spike_recorded", None)

    # =========================================================================
    # Statistics
    # =========================================================================

    def values(self) -> list[float]:
        """Window values for the configured basis, oldest first."""
        if self.config.latency_basis == "raw":
            return [s.latency_ms for s in self._window]
        return [s.normalized_latency for s in self._window]

    def snapshot(self) -> BaselineSnapshot:
        """Current statistics without recording anything."""
        values = self.values()
        if not values:
            return BaselineSnapshot(mean=0.0, stddev=0.0, count=0)
        mean = sum(values) / len(values)
        variance = sum((v - mean) ** 2 for v in values) / len(values)
        return BaselineSnapshot(mean=mean, stddev=math.sqrt(variance), count=len(values))

    def has_enough_data(self) -> bool:
        """At least half the window is filled."""
        return len(self._window) >= self.config.rolling_window_size // 2

    @property
    def window_size(self) -> int:
        return len(self._window)

    def recent(self, count: int) -> list[ResponseSample]:
        return list(self._window)[-count:]

    # =========================================================================
    # Sessions
    # =========================================================================

    def start_session(self, session_id: Optional[str] = None) -> SessionMetrics:
        if self._session is not None and self._session.ended_at is None:
            logger.warning(f"Session {self._session.session_id} still open; ending it")
            self.end_session()
        self._session = SessionMetrics(
            session_id=session_id or uuid.uuid4().hex[:12],
            started_at=datetime.now(),
        )
        self._emit("session_started", self._session)
        return self._session

    def end_session(self) -> Optional[SessionMetrics]:
        if self._session is None:
            return None
        session = self._session
        session.ended_at = datetime.now()
        session.final_rolling_average = self.snapshot().mean
        self._session = None
        logger.info(
            f"Session {session.session_id} ended: {session.items_practiced} items, "
            f"{session.spikes_detected} spikes"
        )
        self._emit("session_ended", session)
        return session

    @property
    def current_session(self) -> Optional[SessionMetrics]:
        return self._session

    # =========================================================================
    # Listeners & state
    # =========================================================================

    def add_listener(self, listener: MetricsListener) -> Callable[[], None]:
        """Register a listener; returns an unsubscribe callable."""
        self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: MetricsListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: str, payload: object) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception as e:
                logger.error(f"Metrics listener failed on {event}: {e}")

    def export_samples(self) -> list[dict]:
        return [
            {
                "unit_id": s.unit_id,
                "latency_ms": s.latency_ms,
                "phrase_length": s.phrase_length,
                "recorded_at": s.recorded_at.isoformat(),
            }
            for s in self._window
        ]

    def import_samples(self, samples: list[dict]) -> None:
        self._window.clear()
        for data in samples:
            self._window.append(
                ResponseSample(
                    unit_id=data["unit_id"],
                    latency_ms=float(data["latency_ms"]),
                    normalized_latency=self.normalize(data["latency_ms"], data["phrase_length"]),
                    phrase_length=int(data["phrase_length"]),
                    recorded_at=datetime.fromisoformat(data["recorded_at"]),
                )
            )

    def reset(self) -> None:
        self._window.clear()
