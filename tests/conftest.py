"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import asyncio
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import CycleConfig, Settings  # noqa: E402
from fluency.core.models import (  # noqa: E402
    AudioRef,
    AudioSet,
    Component,
    ItemRole,
    LearningUnit,
    Phrase,
    PhraseKind,
    PhrasePools,
    PracticeItem,
    TextPair,
    UnitKind,
)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (session loop, simulation)")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


# =============================================================================
# Content builders
# =============================================================================


def make_audio(prefix: str) -> AudioSet:
    return AudioSet(
        known=AudioRef(f"{prefix}-known"),
        voice1=AudioRef(f"{prefix}-v1"),
        voice2=AudioRef(f"{prefix}-v2"),
    )


def make_unit(index: int, molecular: bool = False, known: str = None, target: str = None) -> LearningUnit:
    unit_id = f"U{index:03d}"
    components = ()
    if molecular:
        components = tuple(
            Component(
                name=f"c{n}",
                text=TextPair(f"part {n} of {index}", f"teil {n} von {index}"),
                audio=make_audio(f"{unit_id}-c{n}"),
            )
            for n in range(2)
        )
    return LearningUnit(
        id=unit_id,
        text=TextPair(known or f"phrase {index}", target or f"satz {index}"),
        audio=make_audio(unit_id),
        index=index,
        kind=UnitKind.MOLECULAR if molecular else UnitKind.ATOMIC,
        components=components,
    )


def make_phrase(phrase_id: str, known: str, target: str, kind: PhraseKind = PhraseKind.BUILD) -> Phrase:
    return Phrase(id=phrase_id, text=TextPair(known, target), audio=make_audio(phrase_id), kind=kind)


def make_pools(unit: LearningUnit, build: int = 3, eternal: int = 2, intro: bool = True) -> PhrasePools:
    n = unit.index
    return PhrasePools(
        introduction_audio=AudioRef(f"{unit.id}-intro") if intro else None,
        build=tuple(
            make_phrase(f"{unit.id}-b{i}", f"build {n} {i}", f"bau {n} {i}") for i in range(build)
        ),
        eternal=tuple(
            make_phrase(f"{unit.id}-e{i}", f"eternal {n} {i}", f"ewig {n} {i}", PhraseKind.ETERNAL)
            for i in range(eternal)
        ),
    )


def make_item(item_id: str = "item-1", target: str = "ich sage etwas", unit_id: str = "U001") -> PracticeItem:
    return PracticeItem(
        id=item_id,
        unit_id=unit_id,
        text=TextPair("i say something", target),
        audio=make_audio(item_id),
        role=ItemRole.BUILD,
    )


# =============================================================================
# Fake audio
# =============================================================================


class FakeAudioChannel:
    """
    Scriptable AudioChannel.

    - default: every clip ends on the next loop iteration
    - ``manual=True``: clips end only when the test calls ``finish()``
    - ids in ``fail_ids`` report an error
    - ids in ``hang_ids`` never end and never advance (stall)
    """

    def __init__(self, manual=False, fail_ids=(), hang_ids=(), advancing_ids=()):
        self.manual = manual
        self.fail_ids = set(fail_ids)
        self.hang_ids = set(hang_ids)
        self.advancing_ids = set(advancing_ids)
        self.created = 0
        self.disposed = 0
        self.played = []
        self.stops = 0
        self._position = 0.0
        self._current = None
        self._callbacks = None

    def create(self):
        self.created += 1

    def dispose(self):
        self.disposed += 1

    def play(self, source, on_ended, on_error):
        self.played.append(source.audio_id)
        self._current = source.audio_id
        self._callbacks = (on_ended, on_error)
        loop = asyncio.get_running_loop()
        if source.audio_id in self.fail_ids:
            loop.call_soon(on_error, RuntimeError(f"cannot decode {source.audio_id}"))
        elif source.audio_id in self.hang_ids or source.audio_id in self.advancing_ids:
            pass
        elif not self.manual:
            loop.call_soon(on_ended)

    def finish(self):
        if self._callbacks:
            self._callbacks[0]()

    def stop(self):
        self.stops += 1

    def position_ms(self):
        if self._current in self.advancing_ids:
            self._position += 10.0
        return self._position


async def instant_resolver(ref):
    from fluency.delivery.audio import AudioSource

    return AudioSource(audio_id=ref.id, url=f"mem://{ref.id}")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings():
    """Default settings, independent of the environment."""
    return Settings.model_validate({})


@pytest.fixture
def fast_cycle_config():
    """Cycle timing compressed for tests."""
    return CycleConfig(
        pause_duration_ms=20,
        min_pause_ms=1,
        max_pause_ms=100,
        pause_per_word_ms=0,
        stall_check_interval_ms=5,
        stall_timeout_ms=20,
        audio_ceiling_ms=200,
    )


@pytest.fixture
def units():
    """Ten units; every third is molecular."""
    return [make_unit(i, molecular=(i % 3 == 0)) for i in range(1, 11)]


@pytest.fixture
def pools(units):
    return {unit.id: make_pools(unit) for unit in units}


@pytest.fixture
def fake_channel():
    return FakeAudioChannel()
