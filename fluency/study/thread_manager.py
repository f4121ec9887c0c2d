"""
Thread Manager: the Triple Helix scheduler.

Units are dealt round-robin into three threads (1->A, 2->B, 3->C, 4->A, ...).
Threads take turns introducing their next unit; after introduction a unit
re-surfaces on a Fibonacci schedule:

- success advances one Fibonacci position (capped at the last index)
- failure regresses ``failure_regression`` positions (floored at 0)
- skip_number = FIB[position]
- every completed round decrements every introduced unit's skip number
- a unit with skip_number <= 0 is due for spaced repetition
- a unit retires once it reaches ``retire_position`` with enough reps
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Optional, Sequence

from loguru import logger

from config import HelixConfig
from fluency.core.models import LearningUnit, ThreadId, ThreadState, UnitProgress


class ThreadManager:
    """
    Owns the three ThreadStates for one learner on one course.

    Args:
        config: Fibonacci and retirement parameters (defaults if None)
        clock: Current-time provider for ``last_practiced_at``
    """

    def __init__(
        self,
        config: HelixConfig | None = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or HelixConfig()
        self.clock = clock or datetime.now
        self.course_id: str = ""
        self.active_thread: ThreadId = ThreadId.A
        self._threads: dict[ThreadId, ThreadState] = {}
        self._units: dict[str, LearningUnit] = {}
        self._unit_thread: dict[str, ThreadId] = {}
        self._reset_threads()

    def _reset_threads(self) -> None:
        self._threads = {tid: ThreadState(thread_id=tid) for tid in ThreadId}
        self._unit_thread = {}
        self.active_thread = ThreadId.A

    @property
    def fibonacci(self) -> list[int]:
        return self.config.fibonacci_sequence

    # =========================================================================
    # Setup
    # =========================================================================

    def initialize(self, units: Sequence[LearningUnit], course_id: str) -> None:
        """
        Deal units into threads A, B, C in course order.

        Args:
            units: Units in course order
            course_id: Course the progress records belong to
        """
        self._reset_threads()
        self.course_id = course_id
        self._units = {unit.id: unit for unit in units}
        thread_order = list(ThreadId)

        for i, unit in enumerate(units):
            thread_id = thread_order[i % len(thread_order)]
            thread = self._threads[thread_id]
            thread.unit_ids.append(unit.id)
            thread.progress[unit.id] = UnitProgress(
                unit_id=unit.id,
                course_id=course_id,
                thread_id=thread_id,
            )
            self._unit_thread[unit.id] = thread_id

        logger.debug(
            f"Dealt {len(units)} units for {course_id}: "
            + ", ".join(f"{tid.value}={len(t.unit_ids)}" for tid, t in self._threads.items())
        )

    # =========================================================================
    # Thread rotation
    # =========================================================================

    def get_active_thread(self) -> ThreadId:
        return self.active_thread

    def advance_thread(self) -> ThreadId:
        """Rotate A -> B -> C -> A."""
        self.active_thread = self.active_thread.next()
        return self.active_thread

    def get_next_new_unit(self) -> Optional[LearningUnit]:
        """Next not-yet-introduced unit in the active thread, or None."""
        thread = self._threads[self.active_thread]
        for unit_id in thread.unit_ids[thread.current_index:]:
            if not thread.progress[unit_id].introduction_complete:
                return self._units.get(unit_id)
        return None

    def advance_current_index(self) -> None:
        thread = self._threads[self.active_thread]
        if thread.current_index < len(thread.unit_ids):
            thread.current_index += 1

    def has_new_units(self) -> bool:
        return any(
            not p.introduction_complete
            for thread in self._threads.values()
            for p in thread.progress.values()
        )

    # =========================================================================
    # Spaced repetition
    # =========================================================================

    def get_spaced_rep_items(self, thread_id: ThreadId, count: int) -> list[LearningUnit]:
        """
        Units due for review in one thread, in thread order.

        Due means introduced, skip_number <= 0 and not retired.
        """
        if count <= 0:
            return []
        thread = self._threads[thread_id]
        due: list[LearningUnit] = []
        for unit_id in thread.unit_ids:
            if thread.progress[unit_id].is_due:
                due.append(self._units[unit_id])
                if len(due) >= count:
                    break
        return due

    def record_practice(self, unit_id: str, success: bool) -> Optional[UnitProgress]:
        """
        Move a unit along the Fibonacci sequence.

        Returns:
            Copy of the updated progress, or None for an unknown unit
        """
        progress = self._find_progress(unit_id)
        if progress is None:
            logger.warning(f"record_practice for unknown unit {unit_id}")
            return None

        last_index = len(self.fibonacci) - 1
        if success:
            progress.fibonacci_position = min(progress.fibonacci_position + 1, last_index)
        else:
            progress.fibonacci_position = max(
                0, progress.fibonacci_position - self.config.failure_regression
            )
        progress.skip_number = self.fibonacci[progress.fibonacci_position]
        progress.reps_completed += 1
        progress.last_practiced_at = self.clock()

        if (
            not progress.is_retired
            and progress.fibonacci_position >= self.config.retire_position
            and progress.reps_completed >= self.config.retire_min_reps
        ):
            progress.is_retired = True
            logger.info(f"Unit {unit_id} retired after {progress.reps_completed} reps")

        return progress.copy()

    def mark_introduction_complete(self, unit_id: str) -> None:
        """Mark a unit introduced; its first review is due after one more round."""
        progress = self._find_progress(unit_id)
        if progress is None:
            logger.warning(f"mark_introduction_complete for unknown unit {unit_id}")
            return
        progress.introduction_complete = True
        progress.skip_number = 1

    def decrement_skip_numbers(self) -> None:
        """Count down every introduced unit by one round."""
        for thread in self._threads.values():
            for progress in thread.progress.values():
                if progress.introduction_complete and progress.skip_number > 0:
                    progress.skip_number -= 1

    # =========================================================================
    # Queries
    # =========================================================================

    def _find_progress(self, unit_id: str) -> Optional[UnitProgress]:
        thread_id = self._unit_thread.get(unit_id)
        if thread_id is None:
            return None
        return self._threads[thread_id].progress.get(unit_id)

    def get_progress(self, unit_id: str) -> Optional[UnitProgress]:
        progress = self._find_progress(unit_id)
        return progress.copy() if progress else None

    def get_all_progress(self) -> list[UnitProgress]:
        return [
            self._threads[tid].progress[unit_id].copy()
            for tid in ThreadId
            for unit_id in self._threads[tid].unit_ids
        ]

    def thread_of(self, unit_id: str) -> Optional[ThreadId]:
        return self._unit_thread.get(unit_id)

    def unit(self, unit_id: str) -> Optional[LearningUnit]:
        return self._units.get(unit_id)

    def get_stats(self) -> dict[str, dict[str, int]]:
        stats = {}
        for tid, thread in self._threads.items():
            progress = list(thread.progress.values())
            stats[tid.value] = {
                "units": len(progress),
                "introduced": sum(1 for p in progress if p.introduction_complete),
                "due": sum(1 for p in progress if p.is_due),
                "retired": sum(1 for p in progress if p.is_retired),
            }
        return stats

    # =========================================================================
    # Persistence
    # =========================================================================

    def serialize(self) -> dict[str, Any]:
        """JSON-compatible snapshot of all thread state."""
        return {
            "course_id": self.course_id,
            "active_thread": self.active_thread.value,
            "threads": {
                tid.value: {
                    "unit_ids": list(thread.unit_ids),
                    "current_index": thread.current_index,
                    "progress": [thread.progress[uid].to_dict() for uid in thread.unit_ids],
                }
                for tid, thread in self._threads.items()
            },
        }

    def restore(
        self,
        state: dict[str, Any],
        units: Sequence[LearningUnit],
        course_id: Optional[str] = None,
    ) -> None:
        """
        Rebuild thread state from ``serialize()`` output.

        Units missing from ``units`` are dropped with a warning.
        """
        self._reset_threads()
        self.course_id = course_id or state.get("course_id", "")
        self._units = {unit.id: unit for unit in units}
        self.active_thread = ThreadId(state.get("active_thread", "A"))

        for tid_value, data in state.get("threads", {}).items():
            tid = ThreadId(tid_value)
            thread = self._threads[tid]
            saved = {p["unit_id"]: UnitProgress.from_dict(p) for p in data.get("progress", [])}
            for unit_id in data.get("unit_ids", []):
                if unit_id not in self._units:
                    logger.warning(f"Dropping unknown unit {unit_id} from thread {tid.value}")
                    continue
                progress = saved.get(unit_id) or UnitProgress(
                    unit_id=unit_id, course_id=self.course_id, thread_id=tid
                )
                progress.thread_id = tid
                thread.unit_ids.append(unit_id)
                thread.progress[unit_id] = progress
                self._unit_thread[unit_id] = tid
            thread.current_index = min(int(data.get("current_index", 0)), len(thread.unit_ids))
