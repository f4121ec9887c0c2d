"""
Practice Session: the loop that ties the core together.

    ThreadManager picks the unit
      -> RoundBuilder expands it (with weighted cross-thread reviews)
      -> CycleOrchestrator plays each item
      -> AdaptationEngine consumes the timing
      -> ThreadManager records the outcome

States: idle -> loading -> ready -> playing <-> paused -> complete
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger

from config import Settings, get_settings
from fluency.core.errors import ContentError
from fluency.core.models import (
    AudioSet,
    ItemRole,
    LearningUnit,
    PhrasePools,
    PracticeItem,
    RoundTemplate,
    SeedPair,
    ThreadId,
)
from fluency.delivery.content import ContentProvider
from fluency.delivery.cycle_orchestrator import CycleOrchestrator, CycleResult
from fluency.learning.adaptation_engine import (
    AdaptationAction,
    AdaptationEngine,
    AdaptationResult,
)
from fluency.study.round_builder import PoolReviewSource, RoundBuilder, apply_config
from fluency.study.thread_manager import ThreadManager


class SessionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    COMPLETE = "complete"


@dataclass
class RoundOutcome:
    """What happened while playing one round."""

    template: RoundTemplate
    items_played: int = 0
    repeats: int = 0
    breakdowns: int = 0
    struggled_units: set[str] = field(default_factory=set)
    adaptations: list[AdaptationResult] = field(default_factory=list)
    success: bool = True
    stopped: bool = False


SessionListener = Callable[[str, dict[str, Any]], None]


class PracticeSession:
    """
    One learner practising one course.

    Args:
        content: Where units and phrase pools come from
        orchestrator: Plays items
        engine: Adaptation engine (created from settings if None)
        threads: Triple Helix state (created from settings if None)
        settings: Resolved settings (defaults to ``get_settings()``)
    """

    def __init__(
        self,
        content: ContentProvider,
        orchestrator: CycleOrchestrator,
        engine: Optional[AdaptationEngine] = None,
        threads: Optional[ThreadManager] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.content = content
        self.orchestrator = orchestrator
        self.engine = engine or AdaptationEngine(self.settings)
        self.threads = threads or ThreadManager(self.settings.helix)
        self.builder = RoundBuilder(self.settings.round)

        self.state = SessionState.IDLE
        self.course_id: Optional[str] = None
        self.round_number = 0
        self.current_round: Optional[RoundTemplate] = None

        self._units: list[LearningUnit] = []
        self._pools: dict[str, PhrasePools] = {}
        self._seeds: dict[str, SeedPair] = {}
        self._review_source: Optional[PoolReviewSource] = None
        self._listeners: dict[str, list[SessionListener]] = {}
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._stop_requested = False

    # =========================================================================
    # Events
    # =========================================================================

    def on(self, event: str, listener: SessionListener) -> Callable[[], None]:
        self._listeners.setdefault(event, []).append(listener)
        return lambda: self._listeners.get(event, []).remove(listener)

    def _emit(self, event: str, **payload: Any) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(event, payload)
            except Exception as e:
                logger.error(f"Session listener failed on {event}: {e}")

    # =========================================================================
    # Loading
    # =========================================================================

    async def load(
        self,
        course_id: Optional[str] = None,
        start: int = 1,
        count: int = 50,
        resume: Optional[dict[str, Any]] = None,
    ) -> int:
        """
        Load units and pools, then initialize or restore thread state.

        Args:
            course_id: Course to load (defaults to settings.default_course_id)
            start: First 1-based unit index
            count: Number of units
            resume: Output of a previous ``resume_point()``

        Returns:
            Number of units loaded

        Raises:
            ContentError: If the course yields no units
        """
        self.state = SessionState.LOADING
        self.course_id = course_id or (resume or {}).get("course_id") or self.settings.default_course_id

        try:
            units = await self.content.load_unit_range(self.course_id, start, count)
            if not units:
                raise ContentError(f"No units for course {self.course_id} from {start}")

            pools: dict[str, PhrasePools] = {}
            for unit in units:
                unit_pools = await self.content.get_phrase_pools(unit.id)
                if unit_pools.introduction_audio is None:
                    intro = await self.content.get_introduction_audio(unit.id)
                    if intro is not None:
                        unit_pools = PhrasePools(
                            introduction_audio=intro,
                            debut=unit_pools.debut,
                            build=unit_pools.build,
                            eternal=unit_pools.eternal,
                        )
                pools[unit.id] = unit_pools

            seeds: dict[str, SeedPair] = {}
            for seed_id in sorted({unit.seed_id for unit in units if unit.seed_id}):
                seed = await self.content.get_seed_pair(seed_id)
                if seed is not None:
                    seeds[seed_id] = seed
        except Exception:
            self.state = SessionState.IDLE
            raise

        self._units = sorted(units, key=lambda u: u.index)
        self._pools = pools
        self._seeds = seeds
        self._review_source = PoolReviewSource(self._units, pools)
        self.builder.reset_cursors()

        if resume:
            self.threads.restore(resume["threads"], self._units, self.course_id)
            self.engine.import_state(resume.get("adaptation", {}))
            self.round_number = int(resume.get("round_number", 0))
        else:
            self.threads.initialize(self._units, self.course_id)
            self.round_number = 0

        self.state = SessionState.READY
        logger.info(f"Loaded {len(self._units)} units for {self.course_id}")
        return len(self._units)

    # =========================================================================
    # Rounds
    # =========================================================================

    def next_round(self) -> Optional[RoundTemplate]:
        """
        Build the next round, or None when every unit has been introduced.

        Skips over threads whose new units are exhausted.
        """
        if self._review_source is None:
            raise RuntimeError("Session not loaded")

        unit = None
        for _ in ThreadId:
            unit = self.threads.get_next_new_unit()
            if unit is not None:
                break
            self.threads.advance_thread()
        if unit is None:
            return None

        active = self.threads.get_active_thread()
        helix_reviews = self._cross_thread_reviews(active)
        template = self.builder.build_round(
            unit,
            self._pools.get(unit.id, PhrasePools()),
            self._review_source,
            thread_id=active,
            helix_reviews=helix_reviews,
        )
        self.round_number += 1
        self.current_round = template
        return template

    def seed_for(self, unit_id: str) -> Optional[SeedPair]:
        """The seed sentence a loaded unit belongs to, if known."""
        unit = self.threads.unit(unit_id)
        if unit is None or unit.seed_id is None:
            return None
        return self._seeds.get(unit.seed_id)

    def _cross_thread_reviews(self, active: ThreadId) -> list[LearningUnit]:
        limit = self.settings.round.helix_review_count
        if limit <= 0:
            return []
        due: list[LearningUnit] = []
        for thread_id in ThreadId:
            if thread_id != active:
                due.extend(self.threads.get_spaced_rep_items(thread_id, limit))
        if not self.settings.features.weighted_reviews:
            return due[:limit]
        by_id = {unit.id: unit for unit in due}
        return [by_id[unit_id] for unit_id in self.engine.order_reviews(list(by_id), limit=limit)]

    async def play_round(self, template: RoundTemplate) -> RoundOutcome:
        """Play a round and record its outcome in the Triple Helix."""
        outcome = RoundOutcome(template=template)
        self.state = SessionState.PLAYING
        self._emit(
            "round_started",
            round_number=self.round_number,
            unit_id=template.unit_id,
            seed=self.seed_for(template.unit_id),
        )

        for item in template.items:
            if self._stop_requested:
                outcome.stopped = True
                break
            if not item.playable:
                continue

            if item.role == ItemRole.INTRO:
                if not await self._present(item):
                    outcome.stopped = True
                    break
                continue

            result = await self._play(item)
            if result is None:
                outcome.stopped = True
                break
            outcome.items_played += 1
            adaptation = self._adapt(item, result)
            outcome.adaptations.append(adaptation)
            if adaptation.is_struggle:
                outcome.struggled_units.add(item.unit_id)

            if item.role == ItemRole.REVIEW:
                self.threads.record_practice(item.unit_id, self._success(adaptation))

            if adaptation.action == AdaptationAction.REPEAT:
                outcome.repeats += 1
                if not await self._replay(item):
                    outcome.stopped = True
                    break
            elif adaptation.action == AdaptationAction.BREAKDOWN:
                outcome.breakdowns += 1
                if not await self._breakdown(item, adaptation):
                    outcome.stopped = True
                    break

        if outcome.stopped:
            return outcome

        outcome.success = (
            template.unit_id not in outcome.struggled_units
            if self.settings.helix.success_from_adaptation
            else True
        )
        self.threads.record_practice(template.unit_id, outcome.success)
        self.threads.mark_introduction_complete(template.unit_id)
        self.threads.advance_current_index()
        self.threads.advance_thread()
        self.threads.decrement_skip_numbers()
        self._emit(
            "round_completed",
            round_number=self.round_number,
            unit_id=template.unit_id,
            success=outcome.success,
            items_played=outcome.items_played,
        )
        return outcome

    def _success(self, adaptation: AdaptationResult) -> bool:
        if not self.settings.helix.success_from_adaptation:
            return True
        return not adaptation.is_struggle

    async def _play(self, item: PracticeItem) -> Optional[CycleResult]:
        """Play an item, waiting out pauses and replaying if one interrupted it."""
        while True:
            await self._resume_event.wait()
            if self._stop_requested:
                return None
            self._emit("item_started", item_id=item.id, role=item.role.value)
            result = await self.orchestrator.play_item(item, pause_multiplier=self.engine.pause_multiplier)
            if not result.stopped:
                self._emit("item_completed", item_id=item.id, latency_ms=result.response_latency_ms)
                return result
            if self._stop_requested:
                return None
            # Interrupted by pause(); replay once resumed.

    async def _present(self, item: PracticeItem) -> bool:
        while True:
            await self._resume_event.wait()
            if self._stop_requested:
                return False
            if await self.orchestrator.play_presentation(item):
                return True
            if self._stop_requested:
                return False

    async def _replay(self, item: PracticeItem) -> bool:
        result = await self._play(item)
        if result is None:
            return False
        self._adapt(item, result)
        return True

    async def _breakdown(self, item: PracticeItem, adaptation: AdaptationResult) -> bool:
        """Play each component, then the whole item again."""
        unit = self.threads.unit(item.unit_id)
        components = unit.components if unit else ()
        playable = [
            (component_id, component)
            for component_id, component in zip(adaptation.breakdown_components, components)
            if component.audio is not None and component.audio.is_complete()
        ]
        for component_id, component in playable:
            part = PracticeItem(
                id=component_id,
                unit_id=item.unit_id,
                text=component.text,
                audio=component.audio or AudioSet(),
                role=ItemRole.COMPONENT,
            )
            if await self._play(part) is None:
                return False
        return await self._replay(item)

    def _adapt(self, item: PracticeItem, result: CycleResult) -> AdaptationResult:
        if result.response_latency_ms is None:
            return AdaptationResult(
                unit_id=item.unit_id,
                action=AdaptationAction.CONTINUE,
                reason="no response timing",
                pause_multiplier=self.engine.pause_multiplier,
            )
        return self.engine.process_completion(
            item.unit_id,
            result.response_latency_ms,
            item.phrase_length,
            unit=self.threads.unit(item.unit_id),
        )

    # =========================================================================
    # Session control
    # =========================================================================

    async def run(self, max_rounds: Optional[int] = None) -> list[RoundOutcome]:
        """Play rounds until content runs out, ``max_rounds`` or ``stop()``."""
        if self.state not in (SessionState.READY, SessionState.PLAYING):
            raise RuntimeError(f"Cannot run session in state {self.state.value}")

        self._stop_requested = False
        self.engine.start_session()
        self._emit("session_started", course_id=self.course_id)
        outcomes: list[RoundOutcome] = []

        try:
            while max_rounds is None or len(outcomes) < max_rounds:
                if self._stop_requested:
                    break
                template = self.next_round()
                if template is None:
                    break
                outcome = await self.play_round(template)
                outcomes.append(outcome)
                if outcome.stopped:
                    break
        finally:
            metrics = self.engine.end_session()
            self.state = SessionState.COMPLETE
            self._emit(
                "session_complete",
                rounds=len(outcomes),
                items=metrics.items_practiced if metrics else 0,
            )
        return outcomes

    def pause(self) -> bool:
        if self.state != SessionState.PLAYING:
            return False
        self.state = SessionState.PAUSED
        self._resume_event.clear()
        self.orchestrator.stop()
        self._emit("session_paused", round_number=self.round_number)
        return True

    def resume(self) -> bool:
        if self.state != SessionState.PAUSED:
            return False
        self.state = SessionState.PLAYING
        self._resume_event.set()
        self._emit("session_resumed", round_number=self.round_number)
        return True

    def stop(self) -> None:
        self._stop_requested = True
        self.orchestrator.stop()
        self._resume_event.set()

    def set_config(self, settings: Settings) -> None:
        """Apply new settings; the current round is re-flagged, not rebuilt."""
        self.settings = settings
        self.builder.config = settings.round
        self.orchestrator.config = settings.cycle
        if self.current_round is not None:
            self.current_round = apply_config(self.current_round, settings.round)

    def resume_point(self) -> dict[str, Any]:
        """JSON-compatible snapshot for resuming later."""
        return {
            "course_id": self.course_id,
            "round_number": self.round_number,
            "threads": self.threads.serialize(),
            "adaptation": self.engine.export_state(),
        }
