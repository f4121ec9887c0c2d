"""
Core: shared models, errors, text normalization and configuration.
"""

from fluency.core.config_resolver import PLAYBACK_PRESETS, ConfigResolver
from fluency.core.errors import (
    AudioError,
    AudioPlaybackError,
    AudioResolutionError,
    ConfigError,
    ContentError,
    CycleBusyError,
    CycleError,
    CycleReentryError,
    DuplicateItemError,
    FluencyError,
    MissingAudioError,
    RoundBuildError,
    ZeroUncertaintyError,
)
from fluency.core.models import (
    AudioRef,
    AudioSet,
    Component,
    ItemRole,
    LearningUnit,
    Phrase,
    PhraseKind,
    PhrasePools,
    PracticeItem,
    RoundTemplate,
    SeedPair,
    TextPair,
    ThreadId,
    ThreadState,
    UnitKind,
    UnitProgress,
)
from fluency.core.text import fingerprint, normalize_text

__all__ = [
    # Config
    "ConfigResolver",
    "PLAYBACK_PRESETS",
    # Errors
    "FluencyError",
    "ConfigError",
    "ContentError",
    "RoundBuildError",
    "ZeroUncertaintyError",
    "DuplicateItemError",
    "MissingAudioError",
    "CycleError",
    "CycleBusyError",
    "CycleReentryError",
    "AudioError",
    "AudioResolutionError",
    "AudioPlaybackError",
    # Models
    "AudioRef",
    "AudioSet",
    "Component",
    "ItemRole",
    "LearningUnit",
    "Phrase",
    "PhraseKind",
    "PhrasePools",
    "PracticeItem",
    "RoundTemplate",
    "SeedPair",
    "TextPair",
    "ThreadId",
    "ThreadState",
    "UnitKind",
    "UnitProgress",
    # Text
    "fingerprint",
    "normalize_text",
]
