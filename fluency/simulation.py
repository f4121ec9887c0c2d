"""
Synthetic learner simulation.

Runs persona-driven sessions through the real ThreadManager, RoundBuilder,
AdaptationEngine and CycleOrchestrator. Audio completes instantly and the
learner pause is compressed, so hundreds of items run in well under a
second; the persona supplies the response latency.

Personas:
- Steady: consistent, moderate tempo; should climb mastery with few spikes.
- Drifter: slows down and grows erratic as the session goes on.
- Struggler: slow with frequent large hesitations; should trigger
  repeats, breakdowns and pause extensions.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Callable, Optional

from loguru import logger

from config import Settings, get_settings
from fluency.core.models import (
    AudioRef,
    AudioSet,
    Component,
    LearningUnit,
    Phrase,
    PhraseKind,
    PhrasePools,
    PracticeItem,
    SeedPair,
    TextPair,
    UnitKind,
)
from fluency.delivery.audio import AudioSource, UrlAudioResolver
from fluency.delivery.content import InMemoryContentProvider
from fluency.delivery.cycle_orchestrator import CycleOrchestrator, CycleTiming
from fluency.delivery.session import PracticeSession
from fluency.learning.adaptation_engine import AdaptationEngine
from fluency.learning.spike_detector import SpikeDirection, SpikeSeverity
from fluency.study.thread_manager import ThreadManager


# =============================================================================
# Simulated audio
# =============================================================================


class SimulatedAudioChannel:
    """Audio channel that finishes every clip on the next loop iteration."""

    def __init__(self, fail_ids: Optional[set[str]] = None):
        self.fail_ids = set(fail_ids or ())
        self.created = False
        self.played: list[str] = []
        self._position = 0.0

    def create(self) -> None:
        self.created = True

    def dispose(self) -> None:
        self.created = False

    def play(self, source: AudioSource, on_ended, on_error) -> None:
        self.played.append(source.audio_id)
        self._position += 1.0
        loop = asyncio.get_running_loop()
        if source.audio_id in self.fail_ids:
            loop.call_soon(on_error, RuntimeError(f"decode failed: {source.audio_id}"))
        else:
            loop.call_soon(on_ended)

    def stop(self) -> None:
        pass

    def position_ms(self) -> float:
        return self._position


# =============================================================================
# Synthetic content
# =============================================================================


def _audio(prefix: str) -> AudioSet:
    return AudioSet(
        known=AudioRef(f"{prefix}-known"),
        voice1=AudioRef(f"{prefix}-v1"),
        voice2=AudioRef(f"{prefix}-v2"),
    )


def build_demo_course(unit_count: int = 30, course_id: str = "demo") -> InMemoryContentProvider:
    """Synthetic course; every third unit is molecular with two components.

    Units are grouped four to a seed sentence.
    """
    units: list[LearningUnit] = []
    pools: dict[str, PhrasePools] = {}
    for index in range(1, unit_count + 1):
        unit_id = f"U{index:03d}"
        molecular = index % 3 == 0
        components: tuple[Component, ...] = ()
        if molecular:
            components = tuple(
                Component(
                    name=f"part {n}",
                    text=TextPair(f"part {n} of {index}", f"teil {n} von {index}"),
                    audio=_audio(f"{unit_id}-c{n}"),
                )
                for n in range(2)
            )
        units.append(
            LearningUnit(
                id=unit_id,
                text=TextPair(f"phrase {index}", f"satz nummer {index}"),
                audio=_audio(unit_id),
                index=index,
                kind=UnitKind.MOLECULAR if molecular else UnitKind.ATOMIC,
                components=components,
                seed_id=f"S{(index - 1) // 4 + 1:03d}",
            )
        )
        pools[unit_id] = PhrasePools(
            introduction_audio=AudioRef(f"{unit_id}-intro"),
            build=tuple(
                Phrase(
                    id=f"{unit_id}-b{n}",
                    text=TextPair(f"I say phrase {index} ({n})", f"ich sage satz {index} ({n})"),
                    audio=_audio(f"{unit_id}-b{n}"),
                    kind=PhraseKind.BUILD,
                )
                for n in range(4)
            ),
            eternal=tuple(
                Phrase(
                    id=f"{unit_id}-e{n}",
                    text=TextPair(
                        f"we always use phrase {index} ({n})",
                        f"wir nutzen immer satz {index} ({n})",
                    ),
                    audio=_audio(f"{unit_id}-e{n}"),
                    kind=PhraseKind.ETERNAL,
                )
                for n in range(2)
            ),
        )
    seeds: dict[str, SeedPair] = {}
    for unit in units:
        members = [u for u in units if u.seed_id == unit.seed_id]
        seeds.setdefault(
            unit.seed_id,
            SeedPair(
                seed_id=unit.seed_id,
                text=TextPair(
                    ", ".join(u.text.known for u in members),
                    ", ".join(u.text.target for u in members),
                ),
                unit_ids=tuple(u.id for u in members),
            ),
        )
    return InMemoryContentProvider({course_id: units}, pools, seeds)


# =============================================================================
# Personas
# =============================================================================


LatencyFn = Callable[[PracticeItem, int, random.Random], float]


@dataclass
class Persona:
    name: str
    description: str
    latency_fn: LatencyFn


def _steady(item: PracticeItem, n: int, rng: random.Random) -> float:
    return max(200.0, rng.gauss(160, 12) * len(item.text.target))


def _drifter(item: PracticeItem, n: int, rng: random.Random) -> float:
    drift = 1 + min(n, 200) / 150
    return max(200.0, rng.gauss(150 * drift, 40 * drift) * len(item.text.target))


def _struggler(item: PracticeItem, n: int, rng: random.Random) -> float:
    base = rng.gauss(240, 25) * len(item.text.target)
    if rng.random() < 0.15:
        base *= rng.uniform(2.5, 4.0)
    return max(200.0, base)


PERSONAS: dict[str, Persona] = {
    "steady": Persona("Steady", "consistent, moderate tempo", _steady),
    "drifter": Persona("Drifter", "slows down and grows erratic", _drifter),
    "struggler": Persona("Struggler", "slow with frequent hesitations", _struggler),
}


# =============================================================================
# Runner
# =============================================================================


@dataclass
class SimulationReport:
    persona: str
    rounds: int = 0
    items: int = 0
    spikes: dict[str, int] = field(default_factory=dict)
    repeats: int = 0
    breakdowns: int = 0
    degraded: int = 0
    audio_errors: int = 0
    mastery: dict[str, int] = field(default_factory=dict)
    retired: int = 0
    pause_multiplier: float = 1.0
    tempo: Optional[str] = None
    consistency: Optional[str] = None


def _fast_settings(settings: Settings) -> Settings:
    """Compress the learner pause; everything else stays as configured."""
    cycle = settings.cycle.model_copy(
        update={
            "pause_duration_ms": 1,
            "min_pause_ms": 0,
            "max_pause_ms": 1,
            "pause_per_word_ms": 0,
        }
    )
    return settings.model_copy(update={"cycle": cycle})


async def run_persona(
    persona_key: str,
    rounds: int = 20,
    unit_count: int = 30,
    seed: int = 7,
    settings: Optional[Settings] = None,
    fail_audio: Optional[set[str]] = None,
) -> SimulationReport:
    """
    Run one persona for up to ``rounds`` rounds.

    Raises:
        KeyError: Unknown persona
    """
    persona = PERSONAS[persona_key]
    base_settings = settings or get_settings()
    run_settings = _fast_settings(base_settings)
    rng = random.Random(seed)
    counter = {"n": 0}

    def response_timer(item: PracticeItem, timing: CycleTiming) -> float:
        counter["n"] += 1
        return persona.latency_fn(item, counter["n"], rng)

    content = build_demo_course(unit_count, course_id=run_settings.default_course_id)
    audio_errors = {"count": 0}
    channel = SimulatedAudioChannel(fail_ids=fail_audio)
    orchestrator = CycleOrchestrator(
        channel,
        UrlAudioResolver(run_settings.audio_url_template),
        config=run_settings.cycle,
        response_timer=response_timer,
    )
    orchestrator.on("error", lambda event: audio_errors.__setitem__("count", audio_errors["count"] + 1))
    engine = AdaptationEngine(run_settings, rng=random.Random(seed + 1))
    session = PracticeSession(
        content,
        orchestrator,
        engine=engine,
        threads=ThreadManager(run_settings.helix),
        settings=run_settings,
    )

    await session.load(run_settings.default_course_id, start=1, count=unit_count)
    outcomes = await session.run(max_rounds=rounds)
    await orchestrator.close()

    report = SimulationReport(persona=persona.name)
    report.rounds = len(outcomes)
    for outcome in outcomes:
        report.items += outcome.items_played
        report.repeats += outcome.repeats
        report.breakdowns += outcome.breakdowns
        for adaptation in outcome.adaptations:
            if adaptation.degraded:
                report.degraded += 1
            if adaptation.severity != SpikeSeverity.NONE and adaptation.direction == SpikeDirection.SLOWER:
                key = adaptation.severity.value
                report.spikes[key] = report.spikes.get(key, 0) + 1
    report.audio_errors = audio_errors["count"]
    report.mastery = engine.mastery.get_stats()["by_state"]
    report.retired = sum(1 for p in session.threads.get_all_progress() if p.is_retired)
    report.pause_multiplier = engine.pause_multiplier
    report.tempo = engine.tempo.tempo.value if engine.tempo.tempo else None
    report.consistency = engine.tempo.consistency.value if engine.tempo.consistency else None
    logger.debug(f"{persona.name}: {report.items} items over {report.rounds} rounds")
    return report


def run_simulation(
    personas: Optional[list[str]] = None,
    rounds: int = 20,
    unit_count: int = 30,
    seed: int = 7,
    settings: Optional[Settings] = None,
) -> list[SimulationReport]:
    """Run each persona in turn (synchronous wrapper)."""

    async def _all() -> list[SimulationReport]:
        return [
            await run_persona(key, rounds=rounds, unit_count=unit_count, seed=seed, settings=settings)
            for key in (personas or list(PERSONAS))
        ]

    return asyncio.run(_all())
