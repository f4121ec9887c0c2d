"""
Configuration settings for fluency-core.

Uses Pydantic Settings for environment variable management with .env file support.
Nested sections can be overridden with a double underscore, e.g.
``FLUENCY_CYCLE__PAUSE_DURATION_MS=2500``.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

FIBONACCI = [1, 1, 2, 3, 5, 8, 13, 21, 34, 55, 89]


# ========================================
# Sections
# ========================================


class HelixConfig(BaseModel):
    """Triple Helix thread scheduling."""

    fibonacci_sequence: list[int] = Field(
        default_factory=lambda: list(FIBONACCI),
        description="Skip numbers indexed by Fibonacci position",
    )
    failure_regression: int = Field(
        default=2,
        ge=0,
        description="Positions lost on a failed practice",
    )
    retire_position: int = Field(
        default=6,
        ge=0,
        description="Fibonacci position at which a unit may retire",
    )
    retire_min_reps: int = Field(
        default=10,
        ge=0,
        description="Minimum repetitions before a unit may retire",
    )
    success_from_adaptation: bool = Field(
        default=True,
        description="Treat a round with a moderate/severe spike as a failed practice",
    )


class RoundConfig(BaseModel):
    """Round assembly (intro, debut, build, review, consolidation)."""

    skip_intros: bool = Field(default=False, description="Mark intro items unplayable")
    turbo_mode: bool = Field(default=False, description="Turbo playback (implies skipping intros)")
    max_build_phrases: int = Field(default=7, ge=0, description="Build phrases per round")
    review_offsets: list[int] = Field(
        default_factory=lambda: [1, 2, 3, 5, 8, 13, 21, 34, 55, 89],
        description="Fibonacci offsets back from the round number",
    )
    review_recent_phrase_count: int = Field(
        default=3,
        ge=1,
        description="Phrases contributed by the unit one step back",
    )
    max_review_items: int = Field(default=12, ge=0, description="Cap on offset review items")
    helix_review_count: int = Field(
        default=3,
        ge=0,
        description="Cross-thread due units reviewed per round",
    )
    consolidation_count: int = Field(default=2, ge=0, description="Consolidation phrases per round")


class CycleConfig(BaseModel):
    """Four-phase playback timing."""

    pause_duration_ms: int = Field(default=3000, gt=0, description="Base learner pause")
    adaptive_pause: bool = Field(default=True, description="Lengthen pause for longer phrases")
    pause_per_word_ms: int = Field(default=300, ge=0, description="Extra pause per word over the baseline")
    pause_word_baseline: int = Field(default=3, ge=0, description="Words covered by the base pause")
    min_pause_ms: int = Field(default=1000, ge=0, description="Lower pause clamp")
    max_pause_ms: int = Field(default=10000, gt=0, description="Upper pause clamp")
    pause_multiplier: float = Field(default=1.0, gt=0, description="Preset pause multiplier")
    stall_check_interval_ms: int = Field(default=1500, gt=0, description="Stall watchdog period")
    stall_timeout_ms: int = Field(default=3000, gt=0, description="No-progress time before forcing advance")
    audio_ceiling_ms: int = Field(default=15000, gt=0, description="Absolute ceiling per audio phase")

    @model_validator(mode="after")
    def check_pause_bounds(self) -> "CycleConfig":
        if not self.min_pause_ms <= self.pause_duration_ms <= self.max_pause_ms:
            raise ValueError("pause_duration_ms must lie within [min_pause_ms, max_pause_ms]")
        return self


class MetricsConfig(BaseModel):
    """Personal baseline window."""

    rolling_window_size: int = Field(default=10, ge=2, description="Samples kept in the baseline")
    latency_basis: Literal["normalized", "raw"] = Field(
        default="normalized",
        description="Statistic the baseline is computed on",
    )
    min_phrase_length: int = Field(default=5, ge=1, description="Floor for length normalization")


class SpikeConfig(BaseModel):
    """Differential discontinuity detection."""

    threshold_sigma: float = Field(default=2.0, gt=0, description="Sigma multiple for any spike")
    moderate_sigma: float = Field(default=2.5, gt=0, description="Sigma multiple where moderate spikes begin")
    severe_sigma: float = Field(default=4.0, gt=0, description="Sigma multiple above which spikes are severe")
    fast_sigma: float = Field(default=0.5, ge=0, description="Sigma below the mean counted as fast")
    min_stddev: float = Field(default=1.0, gt=0, description="Absolute floor for sigma")
    min_stddev_ratio: float = Field(default=0.0, ge=0, description="Optional floor for sigma relative to the mean")
    cooldown_items: int = Field(default=3, ge=0, description="Items between spike responses")
    response_strategy: Literal["repeat", "breakdown", "alternate"] = Field(
        default="alternate",
        description="How to respond to a spike",
    )
    response_min_severity: Literal["mild", "moderate", "severe"] = Field(
        default="moderate",
        description="Lowest severity that triggers a response",
    )
    pause_extension_factor: float = Field(default=0.3, ge=0, description="Extra pause fraction after a spike")
    pause_extension_items: int = Field(default=3, ge=0, description="Items the extension lasts")

    @model_validator(mode="after")
    def check_severity_order(self) -> "SpikeConfig":
        if not self.threshold_sigma <= self.moderate_sigma < self.severe_sigma:
            raise ValueError("Sigma bands must satisfy threshold <= moderate < severe")
        return self


class MasteryConfig(BaseModel):
    """Per-unit mastery progression."""

    advancement_threshold: int = Field(default=3, ge=1, description="Smooth responses to advance")
    fast_track_threshold: int = Field(default=5, ge=1, description="Fast responses to skip a state")
    typical_skips: dict[str, int] = Field(
        default_factory=lambda: {
            "acquisition": 1,
            "consolidating": 3,
            "confident": 8,
            "mastered": 21,
        },
        description="Typical skip numbers per mastery state",
    )


class SelectionConfig(BaseModel):
    """Weighted review selection."""

    base_weight: float = Field(default=1.0, gt=0)
    staleness_rate: float = Field(default=0.1, ge=0, description="Weight added per day since practice")
    struggle_multiplier: float = Field(default=0.5, ge=0, description="Weight added per discontinuity")
    recency_window_minutes: float = Field(default=30.0, gt=0, description="Recency penalty window")
    never_practiced_days: float = Field(default=365.0, ge=0, description="Staleness for unpractised units")
    decay_after_days: float = Field(default=7.0, gt=0, description="Idle days before struggle decays")
    decay_amount: int = Field(default=1, ge=0, description="Discontinuities forgiven per decay")


class TempoConfig(BaseModel):
    """Session-scale learner calibration."""

    assessment_items: int = Field(default=20, ge=2, description="Items in the assessment window")
    tempo_bounds: list[float] = Field(
        default_factory=lambda: [80.0, 130.0, 200.0, 280.0],
        description="ms/char upper bounds for very_fast, fast, moderate, slow",
    )
    tempo_multipliers: list[float] = Field(
        default_factory=lambda: [0.7, 0.85, 1.0, 1.2, 1.4],
        description="Pause multipliers per tempo band",
    )
    consistency_bounds: list[float] = Field(
        default_factory=lambda: [0.15, 0.25, 0.40],
        description="Variance coefficient upper bounds per consistency band",
    )
    threshold_offsets: list[float] = Field(
        default_factory=lambda: [-0.25, 0.0, 0.25, 0.5],
        description="Sigma threshold offsets per consistency band",
    )


class FeatureConfig(BaseModel):
    """Feature switches."""

    adaptation_enabled: bool = Field(default=True, description="Feed timing into the adaptation engine")
    weighted_reviews: bool = Field(default=True, description="Order cross-thread reviews by weight")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FLUENCY_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Practice
    # ========================================
    helix: HelixConfig = Field(default_factory=HelixConfig)
    round: RoundConfig = Field(default_factory=RoundConfig)
    cycle: CycleConfig = Field(default_factory=CycleConfig)

    # ========================================
    # Adaptation
    # ========================================
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    spike: SpikeConfig = Field(default_factory=SpikeConfig)
    mastery: MasteryConfig = Field(default_factory=MasteryConfig)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)
    tempo: TempoConfig = Field(default_factory=TempoConfig)
    features: FeatureConfig = Field(default_factory=FeatureConfig)

    # ========================================
    # Content & Audio
    # ========================================
    default_course_id: str = Field(
        default="demo",
        description="Course loaded when none is given",
    )
    audio_url_template: str = Field(
        default="/api/audio/{audio_id}",
        description="URL template used to resolve audio ids",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    def intros_playable(self) -> bool:
        """Whether intro items should be played."""
        return not (self.round.skip_intros or self.round.turbo_mode)

    def get_pause_config(self) -> dict[str, float]:
        """Get pause timing configuration."""
        return {
            "pause_duration_ms": self.cycle.pause_duration_ms,
            "min_pause_ms": self.cycle.min_pause_ms,
            "max_pause_ms": self.cycle.max_pause_ms,
            "pause_multiplier": self.cycle.pause_multiplier,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
