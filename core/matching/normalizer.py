from __future__ import annotations

import re
from typing import Set

STOP_WORDS = frozenset(
    {
        "will", "the", "a", "an", "in", "on", "at", "to", "for", "of", "by",
        "be", "is", "are", "was", "were", "before", "after", "this", "that",
        "has", "have", "had", "do", "does", "did", "can", "could", "would",
        "should", "may", "might", "must", "during", "than",
    }
)

MIN_KEYWORD_LENGTH = 3

PUNCT_RE = re.compile(r"[^\w\s]|_", flags=re.UNICODE)
SPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """
    Normalize titles for matching:
    - lowercase
    - punctuation to space
    - collapse whitespace
    """
    cleaned = (text or "").lower().replace("’", "'")
    cleaned = PUNCT_RE.sub(" ", cleaned)
    return SPACE_RE.sub(" ", cleaned).strip()


def extract_keywords(text: str) -> Set[str]:
    tokens = normalize_text(text).split(" ")
    return {tok for tok in tokens if len(tok) >= MIN_KEYWORD_LENGTH and tok not in STOP_WORDS}


__all__ = ["STOP_WORDS", "normalize_text", "extract_keywords"]
