"""
Study: what to practice and in which order.

- thread_manager: Triple Helix thread dealing and Fibonacci re-surfacing
- round_builder: one unit's round (intro, debut, build, review, consolidation)
"""

from fluency.study.round_builder import (
    PoolReviewSource,
    ReviewSource,
    RoundBuilder,
    apply_config,
    validate_round,
)
from fluency.study.thread_manager import ThreadManager

__all__ = [
    "ThreadManager",
    "RoundBuilder",
    "ReviewSource",
    "PoolReviewSource",
    "apply_config",
    "validate_round",
]
