"""
Domain models for the practice core.

Content records (units, phrases, audio) are immutable and owned by the
content layer. UnitProgress is the only mutable per-learner record here;
it is created when a unit is dealt into a thread and never deleted.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from fluency.core.text import fingerprint


# =============================================================================
# Enums
# =============================================================================


class ThreadId(str, Enum):
    """The three interleaved practice queues."""

    A = "A"
    B = "B"
    C = "C"

    def next(self) -> "ThreadId":
        order = list(ThreadId)
        return order[(order.index(self) + 1) % len(order)]


class UnitKind(str, Enum):
    ATOMIC = "atomic"
    MOLECULAR = "molecular"


class ItemRole(str, Enum):
    """Where a practice item sits in a round."""

    COMPONENT = "component"
    INTRO = "intro"
    DEBUT = "debut"
    BUILD = "build"
    REVIEW = "review"
    CONSOLIDATION = "consolidation"


class PhraseKind(str, Enum):
    DEBUT = "debut"
    BUILD = "build"
    ETERNAL = "eternal"


# =============================================================================
# Content
# =============================================================================


@dataclass(frozen=True)
class AudioRef:
    """Reference to one audio asset."""

    id: str
    url: Optional[str] = None
    duration_ms: Optional[int] = None

    @property
    def is_missing(self) -> bool:
        return not self.id


@dataclass(frozen=True)
class AudioSet:
    """Known-language prompt plus two target-language voices."""

    known: Optional[AudioRef] = None
    voice1: Optional[AudioRef] = None
    voice2: Optional[AudioRef] = None

    def is_complete(self) -> bool:
        return all(
            ref is not None and not ref.is_missing
            for ref in (self.known, self.voice1, self.voice2)
        )


@dataclass(frozen=True)
class TextPair:
    known: str
    target: str

    @property
    def fingerprint(self) -> tuple[str, str]:
        return fingerprint(self.known, self.target)


@dataclass(frozen=True)
class Component:
    """A named part of a molecular unit."""

    name: str
    text: TextPair
    audio: Optional[AudioSet] = None


@dataclass(frozen=True)
class LearningUnit:
    """
    Smallest practicable known/target pairing (a "LEGO").

    ``index`` is the 1-based course position and doubles as the default
    round number when building its round.
    """

    id: str
    text: TextPair
    audio: AudioSet
    index: int
    kind: UnitKind = UnitKind.ATOMIC
    components: tuple[Component, ...] = ()
    seed_id: Optional[str] = None

    @property
    def is_molecular(self) -> bool:
        return self.kind == UnitKind.MOLECULAR and bool(self.components)

    @property
    def phrase_length(self) -> int:
        """Characters in the target text, used to normalize latency."""
        return len(self.text.target)


@dataclass(frozen=True)
class SeedPair:
    """The full sentence a group of units was cut from."""

    seed_id: str
    text: TextPair
    unit_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class Phrase:
    """Candidate practice phrase supplied by the content layer."""

    id: str
    text: TextPair
    audio: AudioSet
    kind: PhraseKind = PhraseKind.BUILD


@dataclass(frozen=True)
class PhrasePools:
    """Per-unit candidate pools for round assembly."""

    introduction_audio: Optional[AudioRef] = None
    debut: Optional[Phrase] = None
    build: tuple[Phrase, ...] = ()
    eternal: tuple[Phrase, ...] = ()


@dataclass(frozen=True)
class PracticeItem:
    """One concrete thing for the learner to say."""

    id: str
    unit_id: str
    text: TextPair
    audio: AudioSet
    role: ItemRole
    playable: bool = True
    review_of: Optional[int] = None
    fibonacci_offset: Optional[int] = None
    presentation_audio: Optional[AudioRef] = None
    components: tuple[Component, ...] = ()

    @property
    def fingerprint(self) -> tuple[str, str]:
        return self.text.fingerprint

    @property
    def phrase_length(self) -> int:
        return len(self.text.target)

    def with_playable(self, playable: bool) -> "PracticeItem":
        if playable == self.playable:
            return self
        return replace(self, playable=playable)


@dataclass(frozen=True)
class RoundTemplate:
    """Ordered items for one unit's turn."""

    unit_id: str
    round_number: int
    thread_id: Optional[ThreadId]
    items: tuple[PracticeItem, ...] = ()

    @property
    def playable_items(self) -> list[PracticeItem]:
        return [item for item in self.items if item.playable]

    def items_by_role(self, role: ItemRole) -> list[PracticeItem]:
        return [item for item in self.items if item.role == role]

    def __len__(self) -> int:
        return len(self.items)


# =============================================================================
# Progress
# =============================================================================


@dataclass
class UnitProgress:
    """Per-unit, per-learner Triple Helix state."""

    unit_id: str
    course_id: str
    thread_id: ThreadId
    fibonacci_position: int = 0
    skip_number: int = 0
    reps_completed: int = 0
    last_practiced_at: Optional[datetime] = None
    introduction_complete: bool = False
    is_retired: bool = False

    @property
    def is_due(self) -> bool:
        return self.introduction_complete and self.skip_number <= 0 and not self.is_retired

    def copy(self) -> "UnitProgress":
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "course_id": self.course_id,
            "thread_id": self.thread_id.value,
            "fibonacci_position": self.fibonacci_position,
            "skip_number": self.skip_number,
            "reps_completed": self.reps_completed,
            "last_practiced_at": (
                self.last_practiced_at.isoformat() if self.last_practiced_at else None
            ),
            "introduction_complete": self.introduction_complete,
            "is_retired": self.is_retired,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UnitProgress":
        last = data.get("last_practiced_at")
        return cls(
            unit_id=data["unit_id"],
            course_id=data["course_id"],
            thread_id=ThreadId(data["thread_id"]),
            fibonacci_position=int(data.get("fibonacci_position", 0)),
            skip_number=int(data.get("skip_number", 0)),
            reps_completed=int(data.get("reps_completed", 0)),
            last_practiced_at=datetime.fromisoformat(last) if last else None,
            introduction_complete=bool(data.get("introduction_complete", False)),
            is_retired=bool(data.get("is_retired", False)),
        )


@dataclass
class ThreadState:
    """One Triple Helix queue."""

    thread_id: ThreadId
    unit_ids: list[str] = field(default_factory=list)
    progress: dict[str, UnitProgress] = field(default_factory=dict)
    current_index: int = 0
