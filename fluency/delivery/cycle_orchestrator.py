"""
Cycle Orchestrator: the four-phase practice cycle.

    IDLE -> PROMPT -> PAUSE -> VOICE_1 -> VOICE_2 -> IDLE

- PROMPT   plays the known-language audio
- PAUSE    silent timer while the learner answers
- VOICE_1  plays the first target voice
- VOICE_2  plays the second target voice; the target text is revealed

Transitions are driven by audio-completion callbacks and the pause timer,
never by polling. Each audio phase is guarded by a stall watchdog (position
not advancing) and an absolute ceiling; either forces the cycle onward so
one bad asset cannot hang a session. ``stop()`` tears everything down from
any phase.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger

from config import CycleConfig
from fluency.core.errors import (
    AudioPlaybackError,
    AudioResolutionError,
    CycleBusyError,
    CycleReentryError,
)
from fluency.core.models import AudioRef, PracticeItem
from fluency.core.text import word_count
from fluency.delivery.audio import AudioChannel, AudioResolver


class CyclePhase(str, Enum):
    IDLE = "idle"
    PROMPT = "prompt"
    PAUSE = "pause"
    VOICE_1 = "voice_1"
    VOICE_2 = "voice_2"


@dataclass(frozen=True)
class TextVisibility:
    known: bool
    target: bool


TEXT_VISIBILITY: dict[CyclePhase, TextVisibility] = {
    CyclePhase.IDLE: TextVisibility(known=False, target=False),
    CyclePhase.PROMPT: TextVisibility(known=True, target=False),
    CyclePhase.PAUSE: TextVisibility(known=True, target=False),
    CyclePhase.VOICE_1: TextVisibility(known=True, target=False),
    CyclePhase.VOICE_2: TextVisibility(known=True, target=True),
}

# Event names
PHASE_CHANGED = "phase_changed"
ITEM_STARTED = "item_started"
PAUSE_STARTED = "pause_started"
AUDIO_STARTED = "audio_started"
AUDIO_COMPLETED = "audio_completed"
ITEM_COMPLETED = "item_completed"
CYCLE_STOPPED = "cycle_stopped"
ERROR = "error"


@dataclass(frozen=True)
class CycleEvent:
    type: str
    phase: CyclePhase
    item_id: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)


CycleListener = Callable[[CycleEvent], None]


@dataclass
class CycleTiming:
    """Phase-entry timestamps in loop milliseconds."""

    prompt_start: Optional[float] = None
    prompt_end: Optional[float] = None
    pause_start: Optional[float] = None
    pause_end: Optional[float] = None
    voice1_start: Optional[float] = None
    voice2_start: Optional[float] = None
    voice2_end: Optional[float] = None

    @property
    def pause_elapsed_ms(self) -> Optional[float]:
        if self.pause_start is None or self.pause_end is None:
            return None
        return self.pause_end - self.pause_start


@dataclass(frozen=True)
class CycleResult:
    item: PracticeItem
    completed: bool
    stopped: bool
    pause_ms: int
    timing: CycleTiming
    response_latency_ms: Optional[float] = None
    errors: tuple[str, ...] = ()
    forced_advances: int = 0


ResponseTimer = Callable[[PracticeItem, CycleTiming], Optional[float]]

# Phase outcomes
_ENDED = "ended"
_STALLED = "stalled"
_CEILING = "ceiling"
_ERROR = "error"
_SKIPPED = "skipped"
_STOPPED = "stopped"
_ELAPSED = "elapsed"


class CycleOrchestrator:
    """
    Plays one PracticeItem at a time through the four phases.

    Args:
        channel: The audio output (created lazily, disposed by ``close()``)
        resolver: Async audio id resolver
        config: Timing configuration (defaults if None)
        response_timer: Returns the learner's response latency for a played
            item; defaults to the elapsed pause
    """

    def __init__(
        self,
        channel: AudioChannel,
        resolver: AudioResolver,
        config: CycleConfig | None = None,
        response_timer: Optional[ResponseTimer] = None,
    ):
        self.channel = channel
        self.resolver = resolver
        self.config = config or CycleConfig()
        self.response_timer = response_timer

        self._phase = CyclePhase.IDLE
        self._item: Optional[PracticeItem] = None
        self._listeners: dict[str, list[CycleListener]] = {}
        self._dispatching = False
        self._running = False
        self._generation = 0
        self._wait: Optional[asyncio.Future] = None
        self._resolving: Optional[asyncio.Future] = None
        self._handles: set[asyncio.TimerHandle] = set()
        self._channel_ready = False
        self._pause_ms = 0

    # =========================================================================
    # Events
    # =========================================================================

    def on(self, event: str, listener: CycleListener) -> Callable[[], None]:
        """Subscribe to an event; returns an unsubscribe callable."""
        self._listeners.setdefault(event, []).append(listener)
        return lambda: self.off(event, listener)

    def off(self, event: str, listener: CycleListener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def _emit(self, event_type: str, **data: Any) -> None:
        event = CycleEvent(
            type=event_type,
            phase=self._phase,
            item_id=self._item.id if self._item else None,
            data=data,
        )
        self._dispatching = True
        try:
            for listener in list(self._listeners.get(event_type, [])):
                try:
                    listener(event)
                except Exception as e:
                    logger.error(f"Cycle listener failed on {event_type}: {e}")
        finally:
            self._dispatching = False

    def _guard_reentry(self, operation: str) -> None:
        if self._dispatching:
            raise CycleReentryError(f"{operation} called from inside a cycle listener")

    # =========================================================================
    # State
    # =========================================================================

    @property
    def phase(self) -> CyclePhase:
        return self._phase

    @property
    def current_item(self) -> Optional[PracticeItem]:
        return self._item

    @property
    def is_busy(self) -> bool:
        return self._running

    @property
    def pending_timers(self) -> int:
        return len(self._handles)

    @property
    def current_pause_ms(self) -> int:
        return self._pause_ms

    def text_visibility(self) -> TextVisibility:
        return TEXT_VISIBILITY[self._phase]

    def _enter(self, phase: CyclePhase) -> None:
        self._phase = phase
        self._emit(PHASE_CHANGED, phase=phase.value)

    def compute_pause_ms(self, item: PracticeItem, multiplier: float = 1.0) -> int:
        """
        Learner pause for an item.

        Base pause plus ``pause_per_word_ms`` per word beyond the baseline
        (when adaptive), scaled by the preset and pace multipliers, clamped
        to [min_pause_ms, max_pause_ms].
        """
        cfg = self.config
        base = float(cfg.pause_duration_ms)
        if cfg.adaptive_pause:
            extra_words = max(0, word_count(item.text.target) - cfg.pause_word_baseline)
            base += extra_words * cfg.pause_per_word_ms
        scaled = base * cfg.pause_multiplier * multiplier
        return int(round(min(max(scaled, cfg.min_pause_ms), cfg.max_pause_ms)))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _ensure_channel(self) -> None:
        if not self._channel_ready:
            self.channel.create()
            self._channel_ready = True

    async def close(self) -> None:
        """Stop playback and dispose the audio channel."""
        self.stop()
        if self._channel_ready:
            self.channel.dispose()
            self._channel_ready = False

    # =========================================================================
    # Playback
    # =========================================================================

    async def play_item(
        self,
        item: PracticeItem,
        pause_multiplier: float = 1.0,
        pause_ms: Optional[int] = None,
    ) -> CycleResult:
        """
        Run one full cycle for an item.

        Args:
            item: Item to play
            pause_multiplier: Pace multiplier from the adaptation engine
            pause_ms: Explicit pause, bypassing the computed one

        Returns:
            CycleResult; ``stopped=True`` if ``stop()`` interrupted it

        Raises:
            CycleBusyError: Another item is in flight
            CycleReentryError: Called from inside a listener
        """
        self._guard_reentry("play_item")
        if self._running:
            raise CycleBusyError(f"Cannot start {item.id}: {self._item.id if self._item else '?'} in flight")

        self._ensure_channel()
        self._running = True
        self._generation += 1
        run = self._generation
        self._item = item
        pause = pause_ms if pause_ms is not None else self.compute_pause_ms(item, pause_multiplier)
        self._pause_ms = pause
        timing = CycleTiming()
        errors: list[str] = []
        forced = 0
        loop = asyncio.get_running_loop()

        def now_ms() -> float:
            return loop.time() * 1000

        try:
            self._emit(ITEM_STARTED, role=item.role.value, pause_ms=pause)

            # PROMPT
            timing.prompt_start = now_ms()
            outcome = await self._audio_phase(CyclePhase.PROMPT, item.audio.known, errors, run)
            if self._is_stopped(run):
                return self._stopped_result(item, pause, timing, errors, forced)
            forced += outcome != _ENDED
            timing.prompt_end = now_ms()

            # PAUSE
            timing.pause_start = now_ms()
            self._enter(CyclePhase.PAUSE)
            self._emit(PAUSE_STARTED, pause_ms=pause)
            await self._wait_pause(pause, run)
            if self._is_stopped(run):
                return self._stopped_result(item, pause, timing, errors, forced)
            timing.pause_end = now_ms()

            # VOICE_1
            timing.voice1_start = now_ms()
            outcome = await self._audio_phase(CyclePhase.VOICE_1, item.audio.voice1, errors, run)
            if self._is_stopped(run):
                return self._stopped_result(item, pause, timing, errors, forced)
            forced += outcome != _ENDED

            # VOICE_2
            timing.voice2_start = now_ms()
            outcome = await self._audio_phase(CyclePhase.VOICE_2, item.audio.voice2, errors, run)
            if self._is_stopped(run):
                return self._stopped_result(item, pause, timing, errors, forced)
            forced += outcome != _ENDED
            timing.voice2_end = now_ms()

            latency = self._response_latency(item, timing)
            self._phase = CyclePhase.IDLE
            result = CycleResult(
                item=item,
                completed=True,
                stopped=False,
                pause_ms=pause,
                timing=timing,
                response_latency_ms=latency,
                errors=tuple(errors),
                forced_advances=forced,
            )
            self._emit(PHASE_CHANGED, phase=CyclePhase.IDLE.value)
            self._emit(ITEM_COMPLETED, result=result)
            return result
        finally:
            if not self._is_stopped(run):
                self._reset()

    async def play_presentation(self, item: PracticeItem) -> bool:
        """
        Play an intro item's presentation audio (audio only, no pause).

        Returns:
            True if it played to the end (or was force-advanced), False if stopped
        """
        self._guard_reentry("play_presentation")
        if self._running:
            raise CycleBusyError(f"Cannot present {item.id} while busy")

        self._ensure_channel()
        self._running = True
        self._generation += 1
        run = self._generation
        self._item = item
        errors: list[str] = []
        try:
            self._emit(ITEM_STARTED, role=item.role.value, pause_ms=0)
            await self._audio_phase(CyclePhase.PROMPT, item.presentation_audio, errors, run)
            for component in item.components:
                if self._is_stopped(run) or component.audio is None:
                    break
                await self._audio_phase(CyclePhase.PROMPT, component.audio.voice1, errors, run)
            if self._is_stopped(run):
                return False
            self._phase = CyclePhase.IDLE
            self._emit(PHASE_CHANGED, phase=CyclePhase.IDLE.value)
            self._emit(ITEM_COMPLETED, result=None, errors=tuple(errors))
            return True
        finally:
            if not self._is_stopped(run):
                self._reset()

    def _stopped_result(self, item, pause, timing, errors, forced) -> CycleResult:
        return CycleResult(
            item=item,
            completed=False,
            stopped=True,
            pause_ms=pause,
            timing=timing,
            errors=tuple(errors),
            forced_advances=forced,
        )

    def _response_latency(self, item: PracticeItem, timing: CycleTiming) -> Optional[float]:
        if self.response_timer is not None:
            try:
                return self.response_timer(item, timing)
            except Exception as e:
                logger.error(f"Response timer failed for {item.id}: {e}")
                return None
        return timing.pause_elapsed_ms

    # =========================================================================
    # Phases
    # =========================================================================

    async def _audio_phase(
        self, phase: CyclePhase, ref: Optional[AudioRef], errors: list[str], run: int
    ) -> str:
        """Play one audio reference; always returns (never hangs)."""
        if self._is_stopped(run):
            return _STOPPED
        self._enter(phase)

        if ref is None or ref.is_missing:
            return self._report_error(phase, AudioResolutionError("", "no audio reference"), errors)

        ceiling_s = self.config.audio_ceiling_ms / 1000
        self._resolving = asyncio.ensure_future(
            asyncio.wait_for(self.resolver(ref), timeout=ceiling_s)
        )
        try:
            source = await self._resolving
        except asyncio.CancelledError:
            if self._is_stopped(run):
                return _STOPPED
            raise
        except asyncio.TimeoutError:
            return self._report_error(phase, AudioResolutionError(ref.id, "resolution timed out"), errors)
        except Exception as e:
            return self._report_error(phase, e, errors)
        finally:
            if not self._is_stopped(run):
                self._resolving = None

        if self._is_stopped(run):
            return _STOPPED

        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._wait = future

        def resolve(outcome: str) -> None:
            if not self._is_stopped(run) and not future.done():
                future.set_result(outcome)

        def on_error(exc: Exception) -> None:
            if not self._is_stopped(run) and not future.done():
                future.set_result((_ERROR, exc))

        try:
            self.channel.play(source, on_ended=lambda: resolve(_ENDED), on_error=on_error)
        except Exception as e:
            self._wait = None
            return self._report_error(phase, AudioPlaybackError(str(e)), errors)

        self._emit(AUDIO_STARTED, audio_id=ref.id)
        self._arm_watchdogs(resolve)
        outcome = await future
        if self._is_stopped(run):
            return _STOPPED
        self._cancel_timers()
        self._wait = None

        if isinstance(outcome, tuple):
            self.channel.stop()
            return self._report_error(phase, outcome[1], errors)
        if outcome in (_STALLED, _CEILING):
            logger.warning(f"Audio {ref.id} {outcome} in {phase.value}; forcing advance")
            self.channel.stop()
        elif outcome == _SKIPPED:
            self.channel.stop()
        if outcome != _STOPPED:
            self._emit(AUDIO_COMPLETED, audio_id=ref.id, outcome=outcome)
        return outcome

    def _report_error(self, phase: CyclePhase, error: Exception, errors: list[str]) -> str:
        message = f"{phase.value}: {error}"
        errors.append(message)
        logger.warning(f"Audio failure ({message}); forcing advance")
        self._emit(ERROR, error=error, message=message)
        return _ERROR

    async def _wait_pause(self, pause_ms: int, run: int) -> str:
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._wait = future

        def elapse() -> None:
            self._handles.discard(handle)
            if not future.done():
                future.set_result(_ELAPSED)

        handle = loop.call_later(pause_ms / 1000, elapse)
        self._handles.add(handle)
        outcome = await future
        if not self._is_stopped(run):
            self._cancel_timers()
            self._wait = None
        return outcome

    def _arm_watchdogs(self, resolve: Callable[[str], None]) -> None:
        loop = asyncio.get_running_loop()
        interval_s = self.config.stall_check_interval_ms / 1000
        stall_ms = self.config.stall_timeout_ms
        state = {"position": self.channel.position_ms(), "since": loop.time() * 1000}

        def ceiling() -> None:
            self._handles.discard(ceiling_handle)
            resolve(_CEILING)

        def stall_check() -> None:
            self._handles.discard(state["handle"])
            now = loop.time() * 1000
            try:
                position = self.channel.position_ms()
            except Exception as e:
                logger.warning(f"Stall check could not read position: {e}")
                position = state["position"]
            if position != state["position"]:
                state["position"] = position
                state["since"] = now
            elif now - state["since"] >= stall_ms:
                resolve(_STALLED)
                return
            state["handle"] = loop.call_later(interval_s, stall_check)
            self._handles.add(state["handle"])

        ceiling_handle = loop.call_later(self.config.audio_ceiling_ms / 1000, ceiling)
        self._handles.add(ceiling_handle)
        state["handle"] = loop.call_later(interval_s, stall_check)
        self._handles.add(state["handle"])

    def _cancel_timers(self) -> None:
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()

    def _is_stopped(self, run: int) -> bool:
        """True once stop() (or a newer item) has superseded ``run``."""
        return run != self._generation

    def _reset(self) -> None:
        self._cancel_timers()
        self._wait = None
        self._running = False
        self._phase = CyclePhase.IDLE
        self._item = None

    # =========================================================================
    # Control
    # =========================================================================

    def skip_phase(self) -> bool:
        """Force the current phase to complete. Returns False when idle."""
        self._guard_reentry("skip_phase")
        if self._wait is None or self._wait.done():
            return False
        self._cancel_timers()
        self._wait.set_result(_SKIPPED)
        return True

    def stop(self) -> bool:
        """
        Stop from any phase.

        Stops audio, clears the pause timer and watchdogs, and returns to
        IDLE. Idempotent: returns False (and emits nothing) when idle.
        """
        self._guard_reentry("stop")
        if not self._running:
            return False

        self._generation += 1
        if self._resolving is not None and not self._resolving.done():
            self._resolving.cancel()
        self._resolving = None
        if self._wait is not None and not self._wait.done():
            self._wait.set_result(_STOPPED)
        try:
            self.channel.stop()
        except Exception as e:
            logger.warning(f"Audio channel stop failed: {e}")
        self._cancel_timers()
        self._phase = CyclePhase.IDLE
        self._emit(CYCLE_STOPPED)
        self._reset()
        return True
