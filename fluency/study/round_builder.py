"""
Round Builder: expands one learning unit into an ordered practice round.

Phase order is fixed:

    INTRO -> DEBUT -> BUILD -> REVIEW -> CONSOLIDATION

Every practice item is checked against a round-local registry before it is
accepted:
- audio must be complete (known, voice1, voice2)
- a normalized known text may map to only one normalized target text
- a normalized (known, target) fingerprint may appear only once, except that
  a consolidation item may reuse a build phrase

Rejected candidates are dropped and logged, never retried. The intro item is
an audio-only presentation of the unit and is not part of the registry.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional, Protocol, Sequence

from loguru import logger

from config import RoundConfig
from fluency.core.errors import DuplicateItemError, MissingAudioError, ZeroUncertaintyError
from fluency.core.models import (
    ItemRole,
    LearningUnit,
    Phrase,
    PhrasePools,
    PracticeItem,
    RoundTemplate,
    ThreadId,
)


class ReviewSource(Protocol):
    """Where review material for earlier units comes from."""

    def unit_at(self, index: int) -> Optional[LearningUnit]:
        ...

    def review_phrases(self, unit_id: str) -> Sequence[Phrase]:
        ...


class PoolReviewSource:
    """In-memory review source over loaded units and their phrase pools."""

    def __init__(self, units: Sequence[LearningUnit], pools: dict[str, PhrasePools]):
        self._by_index = {unit.index: unit for unit in units}
        self._pools = pools

    def unit_at(self, index: int) -> Optional[LearningUnit]:
        return self._by_index.get(index)

    def review_phrases(self, unit_id: str) -> Sequence[Phrase]:
        pools = self._pools.get(unit_id)
        if pools is None:
            return ()
        return tuple(pools.eternal) + tuple(pools.build)


# =============================================================================
# Round-local registry
# =============================================================================


@dataclass
class _RoundRegistry:
    """Fingerprints and known->target map for one round under construction."""

    unit_fingerprint: tuple[str, str]
    roles: dict[tuple[str, str], ItemRole] = field(default_factory=dict)
    known_to_target: dict[str, str] = field(default_factory=dict)
    reused: set[tuple[str, str]] = field(default_factory=set)
    rejected: int = 0

    def admit(self, item: PracticeItem) -> bool:
        if not item.audio.is_complete():
            logger.warning(f"Excluding {item.id}: incomplete audio")
            self.rejected += 1
            return False

        known, target = item.fingerprint
        mapped = self.known_to_target.get(known)
        if mapped is not None and mapped != target:
            logger.warning(
                f"Zero-uncertainty violation dropped: '{known}' already maps to "
                f"'{mapped}', not '{target}' ({item.id})"
            )
            self.rejected += 1
            return False

        existing = self.roles.get(item.fingerprint)
        if existing is not None:
            reusable = (
                item.role == ItemRole.CONSOLIDATION
                and existing == ItemRole.BUILD
                and item.fingerprint != self.unit_fingerprint
                and item.fingerprint not in self.reused
            )
            if not reusable:
                logger.debug(f"Duplicate dropped: {item.id} repeats a {existing.value} item")
                self.rejected += 1
                return False
            self.reused.add(item.fingerprint)
        else:
            self.roles[item.fingerprint] = item.role

        self.known_to_target[known] = target
        return True


# =============================================================================
# Builder
# =============================================================================


class RoundBuilder:
    """
    Builds RoundTemplates.

    Keeps a per-unit phrase cursor so successive reviews of the same unit
    rotate through its phrase pool.

    Args:
        config: Round assembly parameters (defaults if None)
    """

    def __init__(self, config: RoundConfig | None = None):
        self.config = config or RoundConfig()
        self._cursors: dict[str, int] = {}

    def build_round(
        self,
        unit: LearningUnit,
        pools: PhrasePools,
        review_source: ReviewSource,
        round_number: Optional[int] = None,
        thread_id: Optional[ThreadId] = None,
        helix_reviews: Sequence[LearningUnit] = (),
    ) -> RoundTemplate:
        """
        Assemble the round for one unit.

        Args:
            unit: The unit being introduced
            pools: Its phrase pools
            review_source: Lookup for earlier units and their phrases
            round_number: Base for Fibonacci review offsets (defaults to unit.index)
            thread_id: Thread the unit belongs to
            helix_reviews: Due units from other threads, already in priority order

        Returns:
            RoundTemplate with items in phase order
        """
        cfg = self.config
        number = unit.index if round_number is None else round_number
        registry = _RoundRegistry(unit_fingerprint=unit.text.fingerprint)
        items: list[PracticeItem] = []
        seq = 0

        def make(role: ItemRole, owner: LearningUnit, text, audio, **extra) -> PracticeItem:
            nonlocal seq
            seq += 1
            return PracticeItem(
                id=f"{unit.id}/{role.value}/{seq}",
                unit_id=owner.id,
                text=text,
                audio=audio,
                role=role,
                **extra,
            )

        def add(item: PracticeItem) -> bool:
            if registry.admit(item):
                items.append(item)
                return True
            return False

        # INTRO
        if pools.introduction_audio is not None and not pools.introduction_audio.is_missing:
            items.append(
                make(
                    ItemRole.INTRO,
                    unit,
                    unit.text,
                    unit.audio,
                    playable=not (cfg.skip_intros or cfg.turbo_mode),
                    presentation_audio=pools.introduction_audio,
                    components=unit.components if unit.is_molecular else (),
                )
            )

        # DEBUT
        debut_added = False
        if pools.debut is not None:
            debut_added = add(make(ItemRole.DEBUT, unit, pools.debut.text, pools.debut.audio))
        if not debut_added:
            add(make(ItemRole.DEBUT, unit, unit.text, unit.audio))

        # BUILD
        built = 0
        for phrase in pools.build:
            if built >= cfg.max_build_phrases:
                break
            if add(make(ItemRole.BUILD, unit, phrase.text, phrase.audio)):
                built += 1

        # REVIEW (Fibonacci offsets)
        reviewed_indices: set[int] = {unit.index}
        review_added = 0
        for offset in cfg.review_offsets:
            if review_added >= cfg.max_review_items:
                break
            index = number - offset
            if index < 1:
                break
            if index in reviewed_indices:
                continue
            reviewed_indices.add(index)
            reviewed = review_source.unit_at(index)
            if reviewed is None:
                continue
            wanted = cfg.review_recent_phrase_count if offset == 1 else 1
            wanted = min(wanted, cfg.max_review_items - review_added)
            review_added += self._add_reviews(
                reviewed, wanted, review_source, make, add, review_of=index, offset=offset
            )

        # REVIEW (cross-thread due units)
        helix_added = 0
        for reviewed in helix_reviews:
            if helix_added >= cfg.helix_review_count:
                break
            if reviewed.id == unit.id or reviewed.index in reviewed_indices:
                continue
            reviewed_indices.add(reviewed.index)
            helix_added += self._add_reviews(
                reviewed, 1, review_source, make, add, review_of=reviewed.index, offset=None
            )

        # CONSOLIDATION
        consolidated = 0
        candidates = list(pools.eternal) + list(pools.build)
        for phrase in self._rotate(unit.id, candidates):
            if consolidated >= cfg.consolidation_count:
                break
            if add(make(ItemRole.CONSOLIDATION, unit, phrase.text, phrase.audio)):
                consolidated += 1

        if registry.rejected:
            logger.info(f"Round for {unit.id}: {registry.rejected} candidate(s) rejected")

        return RoundTemplate(
            unit_id=unit.id,
            round_number=number,
            thread_id=thread_id,
            items=tuple(items),
        )

    def _add_reviews(
        self,
        reviewed: LearningUnit,
        wanted: int,
        review_source: ReviewSource,
        make,
        add,
        review_of: int,
        offset: Optional[int],
    ) -> int:
        """Add up to ``wanted`` review items for one unit; falls back to the bare unit."""
        added = 0
        phrases = list(review_source.review_phrases(reviewed.id))
        start = self._cursors.get(reviewed.id, 0)
        for step in range(len(phrases)):
            if added >= wanted:
                break
            position = (start + step) % len(phrases)
            phrase = phrases[position]
            item = make(
                ItemRole.REVIEW,
                reviewed,
                phrase.text,
                phrase.audio,
                review_of=review_of,
                fibonacci_offset=offset,
            )
            if add(item):
                added += 1
                self._cursors[reviewed.id] = position + 1

        if added == 0:
            bare = make(
                ItemRole.REVIEW,
                reviewed,
                reviewed.text,
                reviewed.audio,
                review_of=review_of,
                fibonacci_offset=offset,
            )
            if add(bare):
                added = 1
        return added

    def _rotate(self, unit_id: str, phrases: list[Phrase]) -> list[Phrase]:
        key = f"{unit_id}:consolidation"
        if not phrases:
            return []
        start = self._cursors.get(key, 0) % len(phrases)
        self._cursors[key] = start + 1
        return phrases[start:] + phrases[:start]

    def reset_cursors(self) -> None:
        self._cursors.clear()


# =============================================================================
# Template operations
# =============================================================================


def apply_config(template: RoundTemplate, config: RoundConfig) -> RoundTemplate:
    """Re-flag playability for new settings without rebuilding or reordering."""
    intros_playable = not (config.skip_intros or config.turbo_mode)
    items = tuple(
        item.with_playable(intros_playable if item.role == ItemRole.INTRO else True)
        for item in template.items
    )
    return replace(template, items=items)


def validate_round(template: RoundTemplate) -> None:
    """
    Check a template's invariants.

    Raises:
        MissingAudioError: An item lacks known, voice1 or voice2 audio
        ZeroUncertaintyError: A known text maps to two targets
        DuplicateItemError: A fingerprint repeats outside build->consolidation reuse
    """
    known_to_target: dict[str, str] = {}
    roles: dict[tuple[str, str], ItemRole] = {}
    reused: set[tuple[str, str]] = set()

    for item in template.items:
        if item.role == ItemRole.INTRO:
            continue
        if not item.audio.is_complete():
            raise MissingAudioError(f"{item.id} is missing audio")
        known, target = item.fingerprint
        mapped = known_to_target.setdefault(known, target)
        if mapped != target:
            raise ZeroUncertaintyError(known, (mapped, target))

        existing = roles.get(item.fingerprint)
        if existing is None:
            roles[item.fingerprint] = item.role
            continue
        if (
            item.role == ItemRole.CONSOLIDATION
            and existing == ItemRole.BUILD
            and item.fingerprint not in reused
        ):
            reused.add(item.fingerprint)
            continue
        raise DuplicateItemError(item.fingerprint, item.id)
