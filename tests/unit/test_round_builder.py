"""
Unit tests for RoundBuilder.

Tests:
- Phase order and intro handling
- Fibonacci review offsets
- Duplicate and zero-uncertainty rejection
- Consolidation reuse of build phrases
- apply_config / validate_round
"""

import pytest

from config import RoundConfig
from conftest import make_audio, make_item, make_phrase, make_pools, make_unit
from fluency.core.errors import DuplicateItemError, MissingAudioError, ZeroUncertaintyError
from fluency.core.models import (
    AudioRef,
    AudioSet,
    ItemRole,
    Phrase,
    PhrasePools,
    PhraseKind,
    PracticeItem,
    RoundTemplate,
    TextPair,
    ThreadId,
)
from fluency.study.round_builder import PoolReviewSource, RoundBuilder, apply_config, validate_round

PHASE_ORDER = [
    ItemRole.INTRO,
    ItemRole.DEBUT,
    ItemRole.BUILD,
    ItemRole.REVIEW,
    ItemRole.CONSOLIDATION,
]


@pytest.fixture
def builder():
    return RoundBuilder()


@pytest.fixture
def source(units, pools):
    return PoolReviewSource(units, pools)


def roles(template: RoundTemplate) -> list[ItemRole]:
    return [item.role for item in template.items]


class TestPhaseOrder:
    """Tests for the fixed INTRO -> DEBUT -> BUILD -> REVIEW -> CONSOLIDATION order."""

    def test_roles_appear_in_phase_order(self, builder, units, pools, source):
        template = builder.build_round(units[9], pools["U010"], source, thread_id=ThreadId.A)
        ranks = [PHASE_ORDER.index(role) for role in roles(template)]
        assert ranks == sorted(ranks)
        assert template.unit_id == "U010"
        assert template.round_number == 10
        assert template.thread_id == ThreadId.A

    def test_intro_is_first_and_carries_presentation_audio(self, builder, units, pools, source):
        template = builder.build_round(units[0], pools["U001"], source)
        intro = template.items[0]
        assert intro.role == ItemRole.INTRO
        assert intro.presentation_audio == AudioRef("U001-intro")
        assert intro.playable is True

    def test_no_intro_without_introduction_audio(self, builder, units, source):
        template = builder.build_round(units[0], make_pools(units[0], intro=False), source)
        assert ItemRole.INTRO not in roles(template)

    def test_molecular_intro_carries_components(self, builder, units, pools, source):
        template = builder.build_round(units[2], pools["U003"], source)
        intro = template.items_by_role(ItemRole.INTRO)[0]
        assert len(intro.components) == 2

    def test_debut_falls_back_to_unit(self, builder, units, pools, source):
        template = builder.build_round(units[0], pools["U001"], source)
        debut = template.items_by_role(ItemRole.DEBUT)
        assert len(debut) == 1
        assert debut[0].text == units[0].text

    def test_debut_phrase_used_when_supplied(self, builder, units, source):
        unit = units[0]
        debut = make_phrase("d1", "i say phrase 1", "ich sage satz 1", PhraseKind.DEBUT)
        pools = PhrasePools(debut=debut, build=make_pools(unit).build)
        template = builder.build_round(unit, pools, source)
        assert template.items_by_role(ItemRole.DEBUT)[0].text == debut.text

    def test_build_capped(self, units, source):
        builder = RoundBuilder(RoundConfig(max_build_phrases=2))
        pools = make_pools(units[0], build=6)
        template = builder.build_round(units[0], pools, source)
        assert len(template.items_by_role(ItemRole.BUILD)) == 2

    def test_item_ids_unique(self, builder, units, pools, source):
        template = builder.build_round(units[9], pools["U010"], source)
        ids = [item.id for item in template.items]
        assert len(ids) == len(set(ids))


class TestReviews:
    """Tests for Fibonacci offset reviews."""

    def test_round_ten_reviews_fibonacci_indices(self, builder, units, pools, source):
        template = builder.build_round(units[9], pools["U010"], source)
        reviewed = []
        for item in template.items_by_role(ItemRole.REVIEW):
            if item.review_of not in reviewed:
                reviewed.append(item.review_of)
        assert reviewed == [9, 8, 7, 5, 2]

    def test_offset_one_contributes_recent_phrases(self, builder, units, pools, source):
        template = builder.build_round(units[9], pools["U010"], source)
        recent = [i for i in template.items_by_role(ItemRole.REVIEW) if i.review_of == 9]
        assert len(recent) == 3
        assert all(item.unit_id == "U009" for item in recent)
        assert all(item.fibonacci_offset == 1 for item in recent)

    def test_first_unit_has_no_reviews(self, builder, units, pools, source):
        template = builder.build_round(units[0], pools["U001"], source)
        assert template.items_by_role(ItemRole.REVIEW) == []

    def test_review_count_capped(self, units, pools, source):
        builder = RoundBuilder(RoundConfig(max_review_items=2))
        template = builder.build_round(units[9], pools["U010"], source)
        assert len(template.items_by_role(ItemRole.REVIEW)) == 2

    def test_bare_unit_fallback_when_no_phrases(self, builder, units, pools):
        sparse = dict(pools)
        sparse["U009"] = PhrasePools()
        source = PoolReviewSource(units, sparse)
        template = builder.build_round(units[9], pools["U010"], source)
        recent = [i for i in template.items_by_role(ItemRole.REVIEW) if i.review_of == 9]
        assert len(recent) == 1
        assert recent[0].text == units[8].text

    def test_successive_reviews_rotate_phrases(self, builder, units, pools, source):
        first = builder.build_round(units[3], pools["U004"], source)
        second = builder.build_round(units[3], pools["U004"], source)
        pick = lambda t: [i.text for i in t.items_by_role(ItemRole.REVIEW) if i.review_of == 1]
        assert pick(first) != pick(second)

    def test_reset_cursors_restarts_rotation(self, builder, units, pools, source):
        pick = lambda t: [i.text for i in t.items_by_role(ItemRole.REVIEW) if i.review_of == 1]
        first = builder.build_round(units[3], pools["U004"], source)
        builder.reset_cursors()
        again = builder.build_round(units[3], pools["U004"], source)
        assert pick(first) == pick(again)

    def test_helix_reviews_appended(self, builder, units, pools, source):
        template = builder.build_round(
            units[9], pools["U010"], source, helix_reviews=[units[2], units[3], units[9], units[4]]
        )
        helix = [i for i in template.items_by_role(ItemRole.REVIEW) if i.fibonacci_offset is None]
        # U010 is the round's own unit; U005 was already reviewed at offset 5
        assert [i.unit_id for i in helix] == ["U003", "U004"]

    def test_helix_review_count_respected(self, units, pools, source):
        builder = RoundBuilder(RoundConfig(helix_review_count=1, review_offsets=[]))
        template = builder.build_round(
            units[9], pools["U010"], source, helix_reviews=[units[1], units[3], units[5]]
        )
        assert [i.unit_id for i in template.items_by_role(ItemRole.REVIEW)] == ["U002"]


class TestRegistry:
    """Tests for the duplicate and zero-uncertainty checks."""

    def test_built_rounds_validate(self, builder, units, pools, source):
        for unit in units:
            validate_round(builder.build_round(unit, pools[unit.id], source))

    def test_normalized_duplicate_dropped(self, builder, source):
        unit = make_unit(1, known="Hello, world!", target="Hallo Welt")
        pools = PhrasePools(build=(make_phrase("b0", "hello world", "hallo, welt."),))
        template = builder.build_round(unit, pools, source)
        assert template.items_by_role(ItemRole.BUILD) == []

    def test_zero_uncertainty_violation_dropped(self, builder, source):
        unit = make_unit(1)
        pools = PhrasePools(
            build=(
                make_phrase("b0", "good morning", "guten morgen"),
                make_phrase("b1", "Good morning", "moin"),
            )
        )
        template = builder.build_round(unit, pools, source)
        targets = [i.text.target for i in template.items_by_role(ItemRole.BUILD)]
        assert targets == ["guten morgen"]

    def test_incomplete_audio_excluded(self, builder, source):
        unit = make_unit(1)
        broken = Phrase(
            id="b0",
            text=TextPair("no audio", "kein ton"),
            audio=AudioSet(known=AudioRef("k"), voice1=AudioRef("v1"), voice2=None),
        )
        template = builder.build_round(unit, PhrasePools(build=(broken,)), source)
        assert template.items_by_role(ItemRole.BUILD) == []

    def test_consolidation_reuses_build_phrases(self, builder, units, source):
        pools = make_pools(units[0], build=3, eternal=0)
        template = builder.build_round(units[0], pools, source)
        build = {i.fingerprint for i in template.items_by_role(ItemRole.BUILD)}
        consolidation = template.items_by_role(ItemRole.CONSOLIDATION)
        assert len(consolidation) == 2
        assert all(item.fingerprint in build for item in consolidation)

    def test_consolidation_never_repeats_unit(self, builder, source):
        unit = make_unit(1)
        pools = PhrasePools(build=(make_phrase("b0", "phrase 1", "satz 1"),))
        template = builder.build_round(unit, pools, source)
        assert template.items_by_role(ItemRole.CONSOLIDATION) == []


class TestTemplateOperations:
    """Tests for apply_config and validate_round."""

    def test_turbo_marks_intro_unplayable(self, builder, units, pools, source):
        template = builder.build_round(units[0], pools["U001"], source)
        updated = apply_config(template, RoundConfig(turbo_mode=True))
        assert updated.items[0].playable is False
        assert [i.id for i in updated.items] == [i.id for i in template.items]
        assert all(i.playable for i in updated.items[1:])

    def test_skip_intros_configured_at_build(self, units, pools, source):
        builder = RoundBuilder(RoundConfig(skip_intros=True))
        template = builder.build_round(units[0], pools["U001"], source)
        assert template.items[0].playable is False
        assert template.items[0] not in template.playable_items

    def test_apply_config_restores_intro(self, units, pools, source):
        builder = RoundBuilder(RoundConfig(skip_intros=True))
        template = builder.build_round(units[0], pools["U001"], source)
        assert apply_config(template, RoundConfig()).items[0].playable is True

    def test_validate_rejects_duplicates(self):
        template = RoundTemplate(
            unit_id="U001",
            round_number=1,
            thread_id=None,
            items=(make_item("a"), make_item("b")),
        )
        with pytest.raises(DuplicateItemError):
            validate_round(template)

    def test_validate_rejects_ambiguous_known(self):
        template = RoundTemplate(
            unit_id="U001",
            round_number=1,
            thread_id=None,
            items=(make_item("a", target="eins"), make_item("b", target="zwei")),
        )
        with pytest.raises(ZeroUncertaintyError) as exc_info:
            validate_round(template)
        assert exc_info.value.known == "i say something"

    def test_validate_rejects_missing_audio(self):
        item = PracticeItem(
            id="silent",
            unit_id="U001",
            text=TextPair("quiet", "leise"),
            audio=AudioSet(known=make_audio("x").known),
            role=ItemRole.BUILD,
        )
        template = RoundTemplate(unit_id="U001", round_number=1, thread_id=None, items=(item,))
        with pytest.raises(MissingAudioError):
            validate_round(template)
