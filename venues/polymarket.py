from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.models import MarketStatus, NormalizedMarket, Venue
from venues.base_client import BaseVenueClient, clamp_price, to_float

DEFAULT_GAMMA_URL = "https://gamma-api.polymarket.com"


def parse_outcome_prices(raw: Any) -> List[float]:
    """``outcomePrices`` arrives either as a JSON-encoded string or a list."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return []
    if isinstance(raw, (list, tuple)):
        return [to_float(item) for item in raw]
    return []


def _parse_end_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


class PolymarketVenue(BaseVenueClient):
    name = Venue.POLYMARKET.value

    def _markets_path(self, query: str) -> str:
        return "markets"

    def _markets_params(self, query: str) -> Dict[str, Any]:
        params: Dict[str, Any] = {"closed": "false", "limit": self.page_size}
        if query:
            params["search"] = query
        else:
            params["order"] = "volume"
            params["ascending"] = "false"
        return params

    def _parse_market(self, row: Dict[str, Any]) -> Optional[NormalizedMarket]:
        market_id = str(row.get("id") or row.get("conditionId") or row.get("condition_id") or "")
        title = row.get("question") or row.get("title") or ""
        if not market_id or not title:
            return None
        prices = parse_outcome_prices(row.get("outcomePrices"))
        if len(prices) >= 2:
            yes_price, no_price = prices[0], prices[1]
        else:
            yes_price = to_float(row.get("yes_price"))
            no_price = to_float(row.get("no_price"), 1.0 - yes_price)
        status = MarketStatus.CLOSED if row.get("closed") else MarketStatus.OPEN
        return NormalizedMarket(
            venue=self.name,
            market_id=market_id,
            title=str(title),
            yes_price=clamp_price(yes_price),
            no_price=clamp_price(no_price),
            volume=max(0.0, to_float(row.get("volume") or row.get("volumeNum"))),
            liquidity=max(0.0, to_float(row.get("liquidity") or row.get("liquidityNum"))),
            close_time=_parse_end_date(row.get("endDate") or row.get("end_date")),
            status=status,
            url=f"https://polymarket.com/event/{row.get('slug') or market_id}",
        )


__all__ = ["PolymarketVenue", "DEFAULT_GAMMA_URL", "parse_outcome_prices"]
