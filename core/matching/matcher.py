from __future__ import annotations

from difflib import SequenceMatcher
from typing import Dict, Iterable, List, Set, Tuple, Union

from core.models import NormalizedMarket
from utils.config_loader import MatchingConfig

from . import EntityCanonicalSet
from .normalizer import extract_keywords, normalize_text
from .synonyms import SynonymTable, entity_overlap

Titled = Union[str, NormalizedMarket]


def _title(item: Titled) -> str:
    return item.title if isinstance(item, NormalizedMarket) else str(item or "")


def _jaccard(left: Set[str], right: Set[str]) -> float:
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


class SimilarityMatcher:
    """Scores how likely two titles describe the same binary event."""

    FEATURE_CACHE_SIZE = 4096

    def __init__(self, table: SynonymTable | None = None, config: MatchingConfig | None = None):
        self.table = table or SynonymTable()
        self.config = config or MatchingConfig()
        self._features: Dict[str, Tuple[str, Set[str], EntityCanonicalSet]] = {}

    def _prepare(self, item: Titled) -> Tuple[str, Set[str], EntityCanonicalSet]:
        title = _title(item)
        cached = self._features.get(title)
        if cached is None:
            if len(self._features) >= self.FEATURE_CACHE_SIZE:
                self._features.clear()
            cached = (normalize_text(title), extract_keywords(title), self.table.extract_entities(title))
            self._features[title] = cached
        return cached

    def lexical_score(self, a: Titled, b: Titled) -> float:
        norm_a, keys_a, _ = self._prepare(a)
        norm_b, keys_b, _ = self._prepare(b)
        first, second = sorted((norm_a, norm_b))
        sequence = SequenceMatcher(None, first, second).ratio()
        if not keys_a or not keys_b:
            return sequence
        score = self.config.sequence_weight * sequence + self.config.token_weight * _jaccard(keys_a, keys_b)
        return min(1.0, max(0.0, score))

    def score(self, a: Titled, b: Titled) -> float:
        norm_a, _, entities_a = self._prepare(a)
        norm_b, _, entities_b = self._prepare(b)
        if norm_a == norm_b:
            return 1.0
        lexical = self.lexical_score(a, b)
        if not entities_a or not entities_b:
            return lexical
        overlap = entity_overlap(entities_a, entities_b)
        if overlap > 0:
            boosted = lexical + self.config.entity_boost * overlap * (1.0 - lexical)
            return min(1.0, max(0.0, boosted))
        return min(1.0, max(0.0, lexical * self.config.disjoint_entity_penalty))

    def is_match(self, a: Titled, b: Titled, threshold: float | None = None) -> bool:
        limit = self.config.match_threshold if threshold is None else threshold
        return self.score(a, b) >= limit

    def related(
        self,
        topic: str,
        markets: Iterable[NormalizedMarket],
        threshold: float | None = None,
    ) -> List[Tuple[NormalizedMarket, float]]:
        """Markets loosely related to a free-text topic, best first. An empty topic keeps everything."""
        limit = self.config.related_threshold if threshold is None else threshold
        results: List[Tuple[NormalizedMarket, float]] = []
        for market in markets:
            if not normalize_text(topic):
                results.append((market, 1.0))
                continue
            value = max(self.score(topic, market), self._topic_containment(topic, market))
            if value >= limit:
                results.append((market, value))
        results.sort(key=lambda item: (-item[1], item[0].venue, item[0].market_id))
        return results

    def _topic_containment(self, topic: str, market: NormalizedMarket) -> float:
        _, topic_keys, topic_entities = self._prepare(topic)
        _, market_keys, market_entities = self._prepare(market)
        if topic_entities and topic_entities <= market_entities:
            return 1.0
        if topic_keys and topic_keys <= market_keys:
            return 1.0
        return 0.0


__all__ = ["SimilarityMatcher", "Titled"]
