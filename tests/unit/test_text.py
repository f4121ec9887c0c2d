"""
Unit tests for text normalization and the core models.
"""

from datetime import datetime

import pytest

from conftest import make_audio, make_item, make_unit
from fluency.core.models import AudioRef, AudioSet, ItemRole, ThreadId, UnitProgress
from fluency.core.text import fingerprint, normalize_text, word_count


class TestNormalizeText:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Hello, World!", "hello world"),
            ("  ich   möchte  ", "ich möchte"),
            ("STRASSE", "strasse"),
            ("Straße", "strasse"),
            ("¿Qué tal?", "qué tal"),
            ("", ""),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_text(raw) == expected

    def test_fingerprint_pairs(self):
        assert fingerprint("I want", "Ich will.") == ("i want", "ich will")

    def test_word_count(self):
        assert word_count("ich sage etwas") == 3
        assert word_count("  ") == 0
        assert word_count("ja, klar!") == 2


class TestModels:
    def test_thread_rotation(self):
        assert ThreadId.A.next() == ThreadId.B
        assert ThreadId.C.next() == ThreadId.A

    def test_audio_completeness(self):
        assert make_audio("x").is_complete() is True
        blank_voice = AudioSet(known=AudioRef("k"), voice1=AudioRef(""), voice2=AudioRef("v2"))
        assert blank_voice.is_complete() is False

    def test_unit_properties(self):
        unit = make_unit(3, molecular=True)
        assert unit.is_molecular is True
        assert unit.phrase_length == len("satz 3")
        assert make_unit(1).is_molecular is False

    def test_item_with_playable(self):
        item = make_item()
        assert item.with_playable(True) is item
        hidden = item.with_playable(False)
        assert hidden.playable is False
        assert hidden.role == ItemRole.BUILD

    def test_progress_round_trip(self):
        progress = UnitProgress(
            unit_id="U001",
            course_id="c",
            thread_id=ThreadId.B,
            fibonacci_position=3,
            skip_number=2,
            reps_completed=4,
            last_practiced_at=datetime(2026, 1, 5, 7, 30),
            introduction_complete=True,
        )
        assert UnitProgress.from_dict(progress.to_dict()) == progress

    def test_progress_due(self):
        progress = UnitProgress("U001", "c", ThreadId.A, introduction_complete=True)
        assert progress.is_due is True
        progress.is_retired = True
        assert progress.is_due is False
