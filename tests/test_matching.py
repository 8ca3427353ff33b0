import pytest

from core.matching.matcher import SimilarityMatcher
from core.matching.normalizer import extract_keywords, normalize_text
from core.matching.synonyms import SynonymTable, entity_overlap
from utils.config_loader import MatchingConfig

BTC_X = "Will Bitcoin hit $100k by Dec 2024?"
BTC_Y = "BTC 100K EOY?"
TRUMP = "Will Trump win the 2024 election?"

PAIRS = [
    (BTC_X, BTC_Y),
    (BTC_X, TRUMP),
    ("Will the Fed cut rates in March?", "Federal Reserve rate cut March?"),
    ("Super Bowl winner 2025", "Who wins the NFL championship?"),
    ("Ethereum above $5k?", "Will ETH reach 5000 dollars"),
    ("", "Something entirely different"),
]


def test_normalize_text_strips_punctuation():
    assert normalize_text(BTC_X) == "will bitcoin hit 100k by dec 2024"
    assert normalize_text("  Fed’s   rate-cut!! ") == "fed s rate cut"


def test_extract_keywords_drops_stop_words_and_short_tokens():
    assert extract_keywords(BTC_X) == {"bitcoin", "hit", "100k", "dec", "2024"}
    assert extract_keywords("Will it be?") == set()


def test_synonym_lookup_and_membership():
    table = SynonymTable()
    assert "bitcoin" in table.lookup("BTC")
    assert table.lookup("unknown thing") == ["unknown thing"]
    assert table.are_synonyms("Fed", "Jerome Powell")
    assert table.are_synonyms("EOY", "by end of year")
    assert not table.are_synonyms("fed", "bitcoin")


def test_groups_sharing_a_phrase_merge_for_lookup():
    table = SynonymTable([("alpha", "shared"), ("beta", "shared")])
    assert set(table.lookup("alpha")) == {"alpha", "beta", "shared"}
    assert table.are_synonyms("shared", "beta")


def test_extract_entities_records_every_group():
    table = SynonymTable()
    assert table.extract_entities(BTC_X) == frozenset({"bitcoin", "by end of year"})
    assert table.extract_entities(BTC_Y) == frozenset({"bitcoin", "by end of year"})
    assert table.extract_entities("Will the Fed cut rates?") == frozenset({"fed", "rate cut"})


def test_extract_entities_respects_word_boundaries():
    table = SynonymTable()
    assert table.extract_entities("Bahrain officials said so") == frozenset()
    assert table.extract_entities("Ethiopia growth") == frozenset()
    assert table.extract_entities("Will ETH flip?") == frozenset({"ethereum"})


def test_entity_overlap():
    assert entity_overlap(frozenset({"a", "b"}), frozenset({"b", "c"})) == pytest.approx(1 / 3)
    assert entity_overlap(frozenset(), frozenset({"a"})) == 0.0
    assert SynonymTable().entity_overlap(BTC_X, BTC_Y) == 1.0


@pytest.mark.parametrize("a,b", PAIRS)
def test_score_is_symmetric(a, b):
    matcher = SimilarityMatcher()
    assert matcher.score(a, b) == matcher.score(b, a)
    assert 0.0 <= matcher.score(a, b) <= 1.0


@pytest.mark.parametrize("title", [BTC_X, BTC_Y, TRUMP, "x"])
def test_score_is_reflexive(title):
    assert SimilarityMatcher().score(title, title) == 1.0


def test_btc_titles_match_despite_wording():
    matcher = SimilarityMatcher()
    assert matcher.lexical_score(BTC_X, BTC_Y) < 0.35
    assert matcher.score(BTC_X, BTC_Y) >= 0.5
    assert matcher.is_match(BTC_X, BTC_Y)


def test_unrelated_titles_do_not_match():
    matcher = SimilarityMatcher()
    assert not matcher.is_match(BTC_X, TRUMP)


def test_disjoint_entities_penalize_score():
    lenient = SimilarityMatcher(config=MatchingConfig(disjoint_entity_penalty=1.0))
    strict = SimilarityMatcher(config=MatchingConfig(disjoint_entity_penalty=0.5))
    assert strict.score(BTC_X, TRUMP) == pytest.approx(lenient.score(BTC_X, TRUMP) * 0.5)


def test_lexical_score_without_keywords_is_sequence_ratio():
    matcher = SimilarityMatcher()
    assert matcher.lexical_score("Will it be?", "Will it be?") == 1.0
    assert 0.0 < matcher.lexical_score("Will it be?", "Will bitcoin rally") < 1.0


def test_is_match_threshold_override():
    matcher = SimilarityMatcher()
    assert not matcher.is_match(BTC_X, BTC_Y, threshold=0.99)


def test_related_uses_loose_threshold(make_market):
    matcher = SimilarityMatcher()
    btc = make_market("kalshi", "k1", BTC_Y, 0.6)
    trump = make_market("polymarket", "p1", TRUMP, 0.5)
    related = matcher.related("bitcoin", [trump, btc])
    assert [market.market_id for market, _ in related] == ["k1"]
    assert len(matcher.related("", [trump, btc])) == 2
