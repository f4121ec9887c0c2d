"""
Delivery: playing practice to the learner.

Components:
- CycleOrchestrator: four-phase audio-driven cycle with watchdogs
- AudioChannel / AudioResolver: injected audio boundary
- ContentProvider: injected content boundary
- PracticeSession: the round loop over helix, builder, orchestrator and engine
"""

from .audio import AudioChannel, AudioResolver, AudioSource, UrlAudioResolver
from .content import ContentProvider, InMemoryContentProvider
from .cycle_orchestrator import (
    TEXT_VISIBILITY,
    CycleEvent,
    CycleOrchestrator,
    CyclePhase,
    CycleResult,
    CycleTiming,
    TextVisibility,
)
from .session import PracticeSession, RoundOutcome, SessionState

__all__ = [
    # Audio
    "AudioChannel",
    "AudioResolver",
    "AudioSource",
    "UrlAudioResolver",
    # Content
    "ContentProvider",
    "InMemoryContentProvider",
    # Cycle
    "CycleOrchestrator",
    "CyclePhase",
    "CycleEvent",
    "CycleResult",
    "CycleTiming",
    "TextVisibility",
    "TEXT_VISIBILITY",
    # Session
    "PracticeSession",
    "RoundOutcome",
    "SessionState",
]
