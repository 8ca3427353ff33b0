from __future__ import annotations

import re
from typing import Dict, Iterable, List, Pattern, Sequence, Set, Tuple

from . import EntityCanonicalSet
from .normalizer import normalize_text

# First phrase of each group is the canonical entity key.
DEFAULT_GROUPS: Tuple[Tuple[str, ...], ...] = (
    # sports
    ("super bowl", "pro football championship", "nfl championship", "big game"),
    ("world series", "mlb championship", "baseball championship"),
    ("nba finals", "nba championship", "basketball championship"),
    ("stanley cup", "nhl championship", "hockey championship"),
    ("march madness", "ncaa tournament", "college basketball tournament"),
    # us politics
    ("president", "potus", "white house", "oval office"),
    ("trump", "donald trump", "trump administration"),
    ("biden", "joe biden", "biden administration"),
    ("fed", "federal reserve", "fomc", "fed chair", "jerome powell", "powell"),
    ("congress", "house of representatives", "senate", "capitol hill"),
    ("midterms", "midterm elections", "congressional elections"),
    # economics
    ("rate cut", "interest rate cut", "fed cut", "rate reduction"),
    ("rate hike", "interest rate hike", "fed hike", "rate increase"),
    ("inflation", "cpi", "consumer price index", "price inflation"),
    ("gdp", "gross domestic product", "economic growth"),
    ("recession", "economic downturn", "negative gdp"),
    ("unemployment", "jobless", "jobs report", "labor market"),
    # crypto
    ("bitcoin", "bitcoin price", "btc"),
    ("ethereum", "ethereum price", "eth"),
    ("crypto", "cryptocurrency", "digital assets"),
    ("etf", "exchange traded fund", "spot etf"),
    # tech
    ("ai", "artificial intelligence", "machine learning", "gpt", "llm"),
    ("agi", "artificial general intelligence"),
    ("openai", "open ai", "chatgpt", "chat gpt"),
    ("elon", "elon musk", "musk"),
    # geopolitics
    ("ukraine", "russia ukraine", "ukraine war", "ukraine conflict"),
    ("china", "prc", "beijing"),
    ("taiwan", "roc", "taiwan strait"),
    ("middle east", "israel", "gaza", "hamas"),
    # time expressions
    ("by end of year", "by december", "by dec 31", "by dec", "end of year", "eoy"),
    ("q1", "first quarter", "jan-mar"),
    ("q2", "second quarter", "apr-jun"),
    ("q3", "third quarter", "jul-sep"),
    ("q4", "fourth quarter", "oct-dec"),
)


def _phrase_pattern(phrase: str) -> Pattern[str]:
    return re.compile(r"(?<!\w)" + re.escape(phrase) + r"(?!\w)")


class SynonymTable:
    """Groups of interchangeable phrases; groups sharing a phrase merge for lookup."""

    def __init__(self, groups: Iterable[Sequence[str]] = DEFAULT_GROUPS):
        self._groups: List[Tuple[str, ...]] = []
        self._lookup: Dict[str, Set[str]] = {}
        self._patterns: List[Tuple[str, List[Pattern[str]]]] = []
        for group in groups:
            phrases = tuple(normalize_text(phrase) for phrase in group if normalize_text(phrase))
            if not phrases:
                continue
            self._groups.append(phrases)
            self._patterns.append((phrases[0], [_phrase_pattern(phrase) for phrase in phrases]))
            self._merge(phrases)

    def _merge(self, phrases: Tuple[str, ...]) -> None:
        merged: Set[str] = set(phrases)
        for phrase in phrases:
            existing = self._lookup.get(phrase)
            if existing:
                merged |= existing
        for phrase in merged:
            self._lookup[phrase] = merged

    @property
    def groups(self) -> List[Tuple[str, ...]]:
        return list(self._groups)

    def lookup(self, phrase: str) -> List[str]:
        key = normalize_text(phrase)
        group = self._lookup.get(key)
        if not group:
            return [key]
        return sorted(group)

    def are_synonyms(self, a: str, b: str) -> bool:
        key_a, key_b = normalize_text(a), normalize_text(b)
        if key_a == key_b:
            return True
        return key_b in self._lookup.get(key_a, ())

    def extract_entities(self, text: str) -> EntityCanonicalSet:
        normalized = normalize_text(text)
        if not normalized:
            return frozenset()
        found: Set[str] = set()
        for canonical, patterns in self._patterns:
            if any(pattern.search(normalized) for pattern in patterns):
                found.add(canonical)
        return frozenset(found)

    def entity_overlap(self, a: str, b: str) -> float:
        return entity_overlap(self.extract_entities(a), self.extract_entities(b))


def entity_overlap(left: EntityCanonicalSet, right: EntityCanonicalSet) -> float:
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


__all__ = ["DEFAULT_GROUPS", "SynonymTable", "entity_overlap"]
