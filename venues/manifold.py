from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.models import MarketStatus, NormalizedMarket, Venue
from venues.base_client import BaseVenueClient, clamp_price, to_float

DEFAULT_MANIFOLD_URL = "https://api.manifold.markets/v0"


class ManifoldVenue(BaseVenueClient):
    """Play-money venue; only binary markets carry a single probability."""

    name = Venue.MANIFOLD.value

    def _markets_path(self, query: str) -> str:
        return "search-markets"

    def _markets_params(self, query: str) -> Dict[str, Any]:
        return {
            "term": query or "",
            "limit": self.page_size,
            "sort": "score",
            "filter": "open",
        }

    def _parse_market(self, row: Dict[str, Any]) -> Optional[NormalizedMarket]:
        if row.get("outcomeType", "BINARY") != "BINARY" or row.get("probability") is None:
            return None
        probability = clamp_price(row.get("probability"))
        close_ms = row.get("closeTime")
        close_time = (
            datetime.fromtimestamp(to_float(close_ms) / 1000.0, tz=timezone.utc) if close_ms else None
        )
        resolved = bool(row.get("isResolved"))
        resolution = row.get("resolution")
        return NormalizedMarket(
            venue=self.name,
            market_id=str(row["id"]),
            title=str(row.get("question") or ""),
            yes_price=probability,
            no_price=1.0 - probability,
            volume=max(0.0, to_float(row.get("volume"))),
            liquidity=max(0.0, to_float(row.get("totalLiquidity"))),
            close_time=close_time,
            status=MarketStatus.RESOLVED if resolved else MarketStatus.OPEN,
            resolved_outcome={"YES": True, "NO": False}.get(resolution) if resolved else None,
            url=row.get("url") or f"https://manifold.markets/{row.get('creatorUsername', '')}/{row.get('slug', '')}",
        )


__all__ = ["ManifoldVenue", "DEFAULT_MANIFOLD_URL"]
