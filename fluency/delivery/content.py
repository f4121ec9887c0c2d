"""
Content boundary.

The core never authors or stores content; it asks a ContentProvider for
units and their phrase pools. ``InMemoryContentProvider`` serves tests and
the developer simulation.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Optional, Protocol, Sequence

from fluency.core.errors import ContentError
from fluency.core.models import AudioRef, LearningUnit, PhrasePools, SeedPair


class ContentProvider(Protocol):
    async def load_unit_range(self, course_id: str, start: int, count: int) -> list[LearningUnit]:
        """Units with 1-based course index in [start, start + count)."""
        ...

    async def get_phrase_pools(self, unit_id: str) -> PhrasePools:
        ...

    async def get_introduction_audio(self, unit_id: str) -> Optional[AudioRef]:
        ...

    async def get_seed_pair(self, seed_id: str) -> Optional[SeedPair]:
        """The full sentence a unit was cut from, if the course has one."""
        ...


class InMemoryContentProvider:
    """
    Content provider backed by dicts.

    Args:
        units: Units per course id, in course order
        pools: Phrase pools per unit id
        seeds: Seed sentences per seed id
    """

    def __init__(
        self,
        units: dict[str, Sequence[LearningUnit]],
        pools: Optional[dict[str, PhrasePools]] = None,
        seeds: Optional[dict[str, SeedPair]] = None,
    ):
        self._units = {course_id: list(course_units) for course_id, course_units in units.items()}
        self._pools = dict(pools or {})
        self._seeds = dict(seeds or {})

    async def load_unit_range(self, course_id: str, start: int, count: int) -> list[LearningUnit]:
        if course_id not in self._units:
            raise ContentError(f"Unknown course: {course_id}")
        if start < 1 or count < 0:
            raise ContentError(f"Invalid unit range start={start} count={count}")
        return [u for u in self._units[course_id] if start <= u.index < start + count]

    async def get_phrase_pools(self, unit_id: str) -> PhrasePools:
        return self._pools.get(unit_id, PhrasePools())

    async def get_introduction_audio(self, unit_id: str) -> Optional[AudioRef]:
        return self._pools.get(unit_id, PhrasePools()).introduction_audio

    async def get_seed_pair(self, seed_id: str) -> Optional[SeedPair]:
        return self._seeds.get(seed_id)

    def set_pools(self, unit_id: str, pools: PhrasePools) -> None:
        self._pools[unit_id] = pools

    def set_introduction_audio(self, unit_id: str, audio: Optional[AudioRef]) -> None:
        self._pools[unit_id] = replace(self._pools.get(unit_id, PhrasePools()), introduction_audio=audio)
