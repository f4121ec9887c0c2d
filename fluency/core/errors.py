"""
Exception hierarchy for fluency-core.

Audio failures are recovered inside the cycle (forced advance plus an
``error`` event); round-build violations are rejected at build time.
Cancellation is never an error.
"""
from __future__ import annotations


class FluencyError(Exception):
    """Base class for all fluency-core errors."""
    pass


class ConfigError(FluencyError):
    """Raised when a configuration override fails validation."""
    pass


class ContentError(FluencyError):
    """Raised when the content layer cannot supply units or phrases."""
    pass


# =============================================================================
# Round assembly
# =============================================================================


class RoundBuildError(FluencyError):
    """Raised when a round template breaks an assembly invariant."""
    pass


class ZeroUncertaintyError(RoundBuildError):
    """A known text maps to more than one target text within a round."""

    def __init__(self, known: str, targets: tuple[str, str]):
        self.known = known
        self.targets = targets
        super().__init__(
            f"'{known}' maps to both '{targets[0]}' and '{targets[1]}'"
        )


class DuplicateItemError(RoundBuildError):
    """Two items share a normalized (known, target) fingerprint."""

    def __init__(self, fingerprint: tuple[str, str], item_id: str):
        self.fingerprint = fingerprint
        self.item_id = item_id
        super().__init__(f"Duplicate item {item_id}: {fingerprint}")


class MissingAudioError(RoundBuildError):
    """An item lacks one of its known/voice1/voice2 references."""
    pass


# =============================================================================
# Playback
# =============================================================================


class CycleError(FluencyError):
    """Base class for cycle state machine errors."""
    pass


class CycleBusyError(CycleError):
    """Raised when an item is started while another is in flight."""
    pass


class CycleReentryError(CycleError):
    """Raised when a listener drives the orchestrator during dispatch."""
    pass


class AudioError(FluencyError):
    """Base class for audio failures."""
    pass


class AudioResolutionError(AudioError):
    """An audio id could not be turned into a playable source."""

    def __init__(self, audio_id: str, reason: str = ""):
        self.audio_id = audio_id
        super().__init__(f"Cannot resolve audio {audio_id}" + (f": {reason}" if reason else ""))


class AudioPlaybackError(AudioError):
    """The audio channel reported a playback failure."""
    pass
