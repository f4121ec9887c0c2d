"""
Unit tests for ThreadManager (Triple Helix).

Tests:
- Round-robin dealing into threads A/B/C
- Fibonacci advancement, regression and retirement
- Skip number countdown and due items
- Serialize/restore round trip
"""

import json
import random
from datetime import datetime

import pytest

from config import FIBONACCI, HelixConfig
from conftest import make_unit
from fluency.core.models import ThreadId
from fluency.study.thread_manager import ThreadManager


@pytest.fixture
def manager(units):
    tm = ThreadManager(clock=lambda: datetime(2026, 1, 1, 12, 0))
    tm.initialize(units, "course-1")
    return tm


def introduce_all(tm: ThreadManager, units):
    for unit in units:
        tm.mark_introduction_complete(unit.id)


class TestDealing:
    """Tests for initial distribution."""

    def test_units_dealt_round_robin(self, manager, units):
        """Unit 1 -> A, 2 -> B, 3 -> C, 4 -> A."""
        assert manager.thread_of(units[0].id) == ThreadId.A
        assert manager.thread_of(units[1].id) == ThreadId.B
        assert manager.thread_of(units[2].id) == ThreadId.C
        assert manager.thread_of(units[3].id) == ThreadId.A

    def test_unit_four_of_ten_lands_in_thread_a(self, manager):
        assert manager.thread_of("U004") == ThreadId.A

    def test_initial_progress_defaults(self, manager):
        progress = manager.get_progress("U005")
        assert progress.fibonacci_position == 0
        assert progress.skip_number == 0
        assert progress.reps_completed == 0
        assert progress.introduction_complete is False
        assert progress.is_retired is False
        assert progress.course_id == "course-1"
        assert progress.thread_id == ThreadId.B

    def test_thread_sizes(self, manager):
        stats = manager.get_stats()
        assert stats["A"]["units"] == 4
        assert stats["B"]["units"] == 3
        assert stats["C"]["units"] == 3


class TestRotation:
    """Tests for active thread rotation and new units."""

    def test_starts_on_thread_a(self, manager):
        assert manager.get_active_thread() == ThreadId.A

    def test_advance_cycles_through_threads(self, manager):
        assert manager.advance_thread() == ThreadId.B
        assert manager.advance_thread() == ThreadId.C
        assert manager.advance_thread() == ThreadId.A

    def test_next_new_unit_is_first_unintroduced(self, manager):
        assert manager.get_next_new_unit().id == "U001"
        manager.mark_introduction_complete("U001")
        manager.advance_current_index()
        assert manager.get_next_new_unit().id == "U004"

    def test_exhausted_thread_returns_none(self, manager):
        for unit_id in ("U001", "U004", "U007", "U010"):
            manager.mark_introduction_complete(unit_id)
            manager.advance_current_index()
        assert manager.get_next_new_unit() is None
        assert manager.has_new_units() is True


class TestRecordPractice:
    """Tests for Fibonacci position updates."""

    def test_success_advances_one_position(self, manager):
        progress = manager.record_practice("U001", True)
        assert progress.fibonacci_position == 1
        assert progress.skip_number == FIBONACCI[1]
        assert progress.reps_completed == 1
        assert progress.last_practiced_at == datetime(2026, 1, 1, 12, 0)

    def test_failure_regresses_two_positions(self, manager):
        for _ in range(5):
            manager.record_practice("U001", True)
        progress = manager.record_practice("U001", False)
        assert progress.fibonacci_position == 3
        assert progress.skip_number == FIBONACCI[3]

    def test_failure_floors_at_zero(self, manager):
        manager.record_practice("U001", True)
        progress = manager.record_practice("U001", False)
        assert progress.fibonacci_position == 0
        assert progress.skip_number == FIBONACCI[0]

    def test_position_capped_at_last_index(self):
        tm = ThreadManager(HelixConfig(retire_min_reps=10_000))
        tm.initialize([make_unit(1)], "c")
        for _ in range(30):
            progress = tm.record_practice("U001", True)
        assert progress.fibonacci_position == len(FIBONACCI) - 1
        assert progress.skip_number == FIBONACCI[-1]

    def test_retires_at_position_six_with_ten_reps(self, manager):
        for _ in range(9):
            progress = manager.record_practice("U001", True)
        assert progress.fibonacci_position == 9
        assert progress.is_retired is False
        progress = manager.record_practice("U001", True)
        assert progress.reps_completed == 10
        assert progress.is_retired is True

    def test_no_retirement_below_position_six(self, manager):
        for _ in range(20):
            manager.record_practice("U001", True)
            manager.record_practice("U001", False)
            manager.record_practice("U001", False)
        assert manager.get_progress("U001").is_retired is False

    def test_unknown_unit_returns_none(self, manager):
        assert manager.record_practice("nope", True) is None

    def test_returned_progress_is_a_copy(self, manager):
        progress = manager.record_practice("U001", True)
        progress.skip_number = 999
        assert manager.get_progress("U001").skip_number == FIBONACCI[1]

    def test_random_sequences_keep_skip_consistent(self, manager):
        """skip_number always equals FIB[position] right after recording."""
        rng = random.Random(42)
        for _ in range(200):
            progress = manager.record_practice("U002", rng.random() < 0.6)
            assert 0 <= progress.fibonacci_position <= len(FIBONACCI) - 1
            assert progress.skip_number >= 0
            assert progress.skip_number == FIBONACCI[progress.fibonacci_position]


class TestSkipNumbers:
    """Tests for countdown and due items."""

    def test_introduction_sets_skip_one(self, manager):
        manager.mark_introduction_complete("U001")
        assert manager.get_progress("U001").skip_number == 1

    def test_decrement_floors_at_zero(self, manager):
        manager.mark_introduction_complete("U001")
        for _ in range(5):
            manager.decrement_skip_numbers()
        assert manager.get_progress("U001").skip_number == 0

    def test_n_decrements_equal_subtracting_n(self, manager):
        manager.mark_introduction_complete("U001")
        for _ in range(4):
            manager.record_practice("U001", True)
        start = manager.get_progress("U001").skip_number
        for n in range(1, 8):
            manager.decrement_skip_numbers()
            assert manager.get_progress("U001").skip_number == max(0, start - n)

    def test_unintroduced_units_do_not_count_down(self, manager):
        manager.record_practice("U002", True)
        manager.decrement_skip_numbers()
        assert manager.get_progress("U002").skip_number == FIBONACCI[1]

    def test_spaced_rep_items_are_due_in_thread_order(self, manager, units):
        introduce_all(manager, units)
        manager.decrement_skip_numbers()
        due = manager.get_spaced_rep_items(ThreadId.A, 3)
        assert [u.id for u in due] == ["U001", "U004", "U007"]

    def test_retired_units_are_never_due(self, manager, units):
        introduce_all(manager, units)
        for _ in range(10):
            manager.record_practice("U001", True)
        for _ in range(100):
            manager.decrement_skip_numbers()
        due_ids = [u.id for u in manager.get_spaced_rep_items(ThreadId.A, 10)]
        assert "U001" not in due_ids
        assert "U004" in due_ids

    def test_zero_count_returns_empty(self, manager):
        assert manager.get_spaced_rep_items(ThreadId.A, 0) == []


class TestPersistence:
    """Tests for serialize/restore."""

    def test_round_trip_preserves_due_items(self, manager, units):
        rng = random.Random(3)
        introduce_all(manager, units)
        for _ in range(40):
            unit = rng.choice(units)
            manager.record_practice(unit.id, rng.random() < 0.7)
            if rng.random() < 0.5:
                manager.decrement_skip_numbers()
        manager.advance_thread()

        state = json.loads(json.dumps(manager.serialize()))
        restored = ThreadManager()
        restored.restore(state, units, "course-1")

        assert restored.get_active_thread() == manager.get_active_thread()
        for tid in ThreadId:
            expected = [u.id for u in manager.get_spaced_rep_items(tid, 10)]
            assert [u.id for u in restored.get_spaced_rep_items(tid, 10)] == expected
        assert [p.to_dict() for p in restored.get_all_progress()] == [
            p.to_dict() for p in manager.get_all_progress()
        ]

    def test_restore_drops_unknown_units(self, manager, units):
        state = manager.serialize()
        restored = ThreadManager()
        restored.restore(state, units[:5], "course-1")
        assert restored.get_progress("U009") is None
        assert restored.get_progress("U004") is not None
