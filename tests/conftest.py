from datetime import datetime, timedelta, timezone

import pytest

from core.models import NormalizedMarket


class FixedClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def make_market():
    def _build(
        venue: str,
        market_id: str,
        title: str,
        yes: float,
        no: float | None = None,
        volume: float = 50_000.0,
        liquidity: float = 10_000.0,
    ) -> NormalizedMarket:
        return NormalizedMarket(
            venue=venue,
            market_id=market_id,
            title=title,
            yes_price=yes,
            no_price=round(1.0 - yes, 6) if no is None else no,
            volume=volume,
            liquidity=liquidity,
        )

    return _build


@pytest.fixture
def clock():
    return FixedClock()
