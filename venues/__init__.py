from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from core.models import NormalizedMarket


@runtime_checkable
class VenueAdapter(Protocol):
    """Translates one venue's wire format into NormalizedMarket quotes. Raising means absent."""

    name: str

    async def fetch_markets(self, query: str) -> List[NormalizedMarket]: ...


__all__ = ["VenueAdapter"]
