import re

import aiohttp
import pytest
from aioresponses import aioresponses

from core.errors import SourceUnavailable
from core.models import MarketStatus
from venues import VenueAdapter
from venues.base_client import clamp_price, to_float
from venues.manifold import DEFAULT_MANIFOLD_URL, ManifoldVenue
from venues.polymarket import DEFAULT_GAMMA_URL, PolymarketVenue, parse_outcome_prices
from venues.rate_limiter import RateLimiter

GAMMA_MARKETS = re.compile(r"https://gamma-api\.polymarket\.com/markets.*")
MANIFOLD_SEARCH = re.compile(r"https://api\.manifold\.markets/v0/search-markets.*")


def _fast_limiter():
    return RateLimiter(requests_per_minute=6000, burst=10)


@pytest.mark.asyncio
async def test_polymarket_parses_gamma_rows():
    async with aiohttp.ClientSession() as session:
        venue = PolymarketVenue(DEFAULT_GAMMA_URL, session, rate_limit=_fast_limiter())
        with aioresponses() as mocked:
            mocked.get(
                GAMMA_MARKETS,
                payload=[
                    {
                        "id": "m-1",
                        "question": "Will Bitcoin hit $100k by Dec 2024?",
                        "outcomePrices": '["0.62", "0.38"]',
                        "volume": "50000",
                        "liquidity": 12000,
                        "endDate": "2024-12-31T00:00:00Z",
                        "slug": "btc-100k",
                    },
                    {"id": "m-2", "question": "", "outcomePrices": '["0.5", "0.5"]'},
                    {"id": "m-3", "question": "Closed one", "yes_price": 0.3, "closed": True},
                ],
            )
            markets = await venue.fetch_markets("bitcoin")

    assert isinstance(venue, VenueAdapter)
    assert [m.market_id for m in markets] == ["m-1", "m-3"]
    btc = markets[0]
    assert btc.venue == "polymarket"
    assert btc.yes_price == pytest.approx(0.62)
    assert btc.no_price == pytest.approx(0.38)
    assert btc.volume == 50_000
    assert btc.close_time.year == 2024
    assert btc.url == "https://polymarket.com/event/btc-100k"
    assert markets[1].no_price == pytest.approx(0.7)
    assert markets[1].status == MarketStatus.CLOSED


def test_polymarket_query_params():
    venue = PolymarketVenue(DEFAULT_GAMMA_URL, session=None, page_size=10)
    assert venue._markets_params("fed") == {"closed": "false", "limit": 10, "search": "fed"}
    assert venue._markets_params("")["order"] == "volume"


@pytest.mark.asyncio
async def test_polymarket_error_status_raises():
    async with aiohttp.ClientSession() as session:
        venue = PolymarketVenue(DEFAULT_GAMMA_URL, session, rate_limit=_fast_limiter(), max_retries=0)
        with aioresponses() as mocked:
            mocked.get(GAMMA_MARKETS, status=503, body="maintenance")
            with pytest.raises(SourceUnavailable) as excinfo:
                await venue.fetch_markets("")
    assert excinfo.value.context["status"] == 503


@pytest.mark.asyncio
async def test_retryable_status_is_retried():
    async with aiohttp.ClientSession() as session:
        venue = PolymarketVenue(DEFAULT_GAMMA_URL, session, rate_limit=_fast_limiter(), max_retries=2)
        with aioresponses() as mocked:
            mocked.get(GAMMA_MARKETS, status=429)
            mocked.get(GAMMA_MARKETS, payload={"markets": [{"id": "m-1", "question": "Q", "outcomePrices": ["0.4", "0.6"]}]})
            markets = await venue.fetch_markets("q")
    assert [m.market_id for m in markets] == ["m-1"]


@pytest.mark.asyncio
async def test_connection_error_becomes_source_unavailable():
    async with aiohttp.ClientSession() as session:
        venue = ManifoldVenue(DEFAULT_MANIFOLD_URL, session, rate_limit=_fast_limiter())
        with aioresponses() as mocked:
            mocked.get(MANIFOLD_SEARCH, exception=aiohttp.ClientConnectionError("refused"))
            with pytest.raises(SourceUnavailable):
                await venue.fetch_markets("bitcoin")


@pytest.mark.asyncio
async def test_manifold_keeps_binary_markets_only():
    async with aiohttp.ClientSession() as session:
        venue = ManifoldVenue(DEFAULT_MANIFOLD_URL, session, rate_limit=_fast_limiter())
        with aioresponses() as mocked:
            mocked.get(
                MANIFOLD_SEARCH,
                payload=[
                    {
                        "id": "mf-1",
                        "question": "BTC 100K EOY?",
                        "outcomeType": "BINARY",
                        "probability": 0.7,
                        "volume": 1200,
                        "totalLiquidity": 300,
                        "closeTime": 1735689600000,
                        "creatorUsername": "alice",
                        "slug": "btc-100k-eoy",
                    },
                    {"id": "mf-2", "question": "Who wins?", "outcomeType": "MULTIPLE_CHOICE"},
                    {"id": "mf-3", "question": "Resolved", "probability": 1.0, "isResolved": True, "resolution": "YES"},
                ],
            )
            markets = await venue.fetch_markets("bitcoin")

    assert [m.market_id for m in markets] == ["mf-1", "mf-3"]
    assert markets[0].yes_price == pytest.approx(0.7)
    assert markets[0].no_price == pytest.approx(0.3)
    assert markets[0].url == "https://manifold.markets/alice/btc-100k-eoy"
    assert markets[1].resolved_outcome is True


def test_parse_helpers():
    assert parse_outcome_prices('["0.1","0.9"]') == [0.1, 0.9]
    assert parse_outcome_prices("not json") == []
    assert parse_outcome_prices(None) == []
    assert to_float("x", 2.0) == 2.0
    assert clamp_price(1.7) == 1.0
    assert clamp_price(-1) == 0.0


def test_rate_limiter_refills_over_time():
    now = [0.0]
    limiter = RateLimiter(requests_per_minute=60, burst=2, clock=lambda: now[0])
    assert limiter.available == 2.0
    limiter._tokens = 0.0
    now[0] = 1.5
    assert limiter.available == pytest.approx(1.5)
    now[0] = 10.0
    assert limiter.available == 2.0


@pytest.mark.asyncio
async def test_rate_limiter_consumes_tokens():
    limiter = RateLimiter(requests_per_minute=60, burst=2, clock=lambda: 0.0)
    async with limiter:
        pass
    await limiter.acquire()
    assert limiter.available == 0.0
