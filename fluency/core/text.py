"""Text normalization for phrase fingerprints."""
from __future__ import annotations

import re
import unicodedata

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Casefold, strip punctuation and collapse whitespace."""
    folded = unicodedata.normalize("NFC", text).casefold()
    kept = "".join(
        ch if not unicodedata.category(ch).startswith("P") else " "
        for ch in folded
    )
    return _WHITESPACE.sub(" ", kept).strip()


def fingerprint(known: str, target: str) -> tuple[str, str]:
    """Normalized (known, target) pair used for duplicate detection."""
    return normalize_text(known), normalize_text(target)


def word_count(text: str) -> int:
    normalized = normalize_text(text)
    return len(normalized.split(" ")) if normalized else 0
