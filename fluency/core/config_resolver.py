"""
Three-tier configuration resolution.

System defaults (``config.Settings``) are overlaid with course overrides,
then learner overrides. Overrides are nested dicts keyed by settings
section, e.g. ``{"cycle": {"pause_duration_ms": 2500}}``; each tier is
merged section by section so a learner override of one field keeps the
course's other fields.
"""
from __future__ import annotations

import copy
from typing import Any, Optional

from loguru import logger
from pydantic import ValidationError

from config import Settings, get_settings
from fluency.core.errors import ConfigError

Overrides = dict[str, dict[str, Any]]


# =============================================================================
# Playback presets
# =============================================================================

PLAYBACK_PRESETS: dict[str, Overrides] = {
    "default": {
        "round": {"turbo_mode": False, "skip_intros": False},
        "cycle": {"pause_multiplier": 1.0},
    },
    "turbo": {
        "round": {"turbo_mode": True, "skip_intros": True},
        "cycle": {"pause_multiplier": 0.75},
    },
    "beginner": {
        "round": {"turbo_mode": False, "skip_intros": False},
        "cycle": {"pause_multiplier": 1.25},
    },
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class ConfigResolver:
    """
    Resolves the effective settings for one learner on one course.

    Args:
        defaults: System defaults (uses ``get_settings()`` if None)
        course_overrides: Course-level overrides
        learner_overrides: Learner-level overrides
    """

    def __init__(
        self,
        defaults: Optional[Settings] = None,
        course_overrides: Optional[Overrides] = None,
        learner_overrides: Optional[Overrides] = None,
    ):
        self._defaults = defaults or get_settings()
        self._course: Overrides = {}
        self._learner: Overrides = {}
        self._resolved: Optional[Settings] = None
        if course_overrides:
            self.set_course_overrides(course_overrides)
        if learner_overrides:
            self.import_overrides(learner_overrides)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self) -> Settings:
        """Return the merged settings, validating the combination."""
        if self._resolved is None:
            self._resolved = self._validate(self._course, self._learner)
        return self._resolved

    def _validate(self, course: Overrides, learner: Overrides) -> Settings:
        merged = _deep_merge(self._defaults.model_dump(), course)
        merged = _deep_merge(merged, learner)
        try:
            return Settings.model_validate(merged)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration override: {e}") from e

    def _check_sections(self, overrides: Overrides) -> None:
        known = set(Settings.model_fields)
        unknown = [name for name in overrides if name not in known]
        if unknown:
            raise ConfigError(f"Unknown configuration section(s): {', '.join(unknown)}")

    # ------------------------------------------------------------------
    # Course tier
    # ------------------------------------------------------------------

    def set_course_overrides(self, overrides: Overrides) -> None:
        self._check_sections(overrides)
        self._validate(overrides, self._learner)
        self._course = copy.deepcopy(overrides)
        self._resolved = None
        logger.debug(f"Course overrides set for sections: {sorted(overrides)}")

    # ------------------------------------------------------------------
    # Learner tier
    # ------------------------------------------------------------------

    def update_learner_param(self, section: str, key: str, value: Any) -> Settings:
        """
        Set a single learner-level parameter.

        Args:
            section: Settings section name (e.g. "cycle")
            key: Field within the section
            value: New value

        Returns:
            The re-resolved settings

        Raises:
            ConfigError: If the section is unknown or the value is invalid
        """
        candidate = _deep_merge(self._learner, {section: {key: value}})
        self._check_sections(candidate)
        self._validate(self._course, candidate)
        self._learner = candidate
        self._resolved = None
        logger.info(f"Learner override {section}.{key} = {value!r}")
        return self.resolve()

    def apply_preset(self, name: str) -> Settings:
        """Merge a named playback preset into the learner tier."""
        if name not in PLAYBACK_PRESETS:
            raise ConfigError(f"Unknown playback preset: {name}")
        candidate = _deep_merge(self._learner, PLAYBACK_PRESETS[name])
        self._validate(self._course, candidate)
        self._learner = candidate
        self._resolved = None
        return self.resolve()

    def export_overrides(self) -> Overrides:
        return copy.deepcopy(self._learner)

    def import_overrides(self, overrides: Overrides) -> None:
        self._check_sections(overrides)
        self._validate(self._course, overrides)
        self._learner = copy.deepcopy(overrides)
        self._resolved = None

    def reset_learner_overrides(self) -> None:
        self._learner = {}
        self._resolved = None
