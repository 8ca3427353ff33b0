from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class Venue(str, Enum):
    POLYMARKET = "polymarket"
    KALSHI = "kalshi"
    MANIFOLD = "manifold"
    LIMITLESS = "limitless"
    METACULUS = "metaculus"


class MarketStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    RESOLVED = "resolved"


class Sentiment(str, Enum):
    BULLISH = "bullish"
    NEUTRAL = "neutral"
    BEARISH = "bearish"


class WhaleDirection(str, Enum):
    ACCUMULATING = "accumulating"
    NEUTRAL = "neutral"
    DISTRIBUTING = "distributing"


class DecisionAction(str, Enum):
    EXECUTE = "EXECUTE"
    WATCH = "WATCH"
    SKIP = "SKIP"


class PredictionDirection(str, Enum):
    YES = "YES"
    NO = "NO"


class ConfidenceLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


@dataclass(slots=True, frozen=True)
class NormalizedMarket:
    """One venue quote for one binary event, as produced by a venue adapter."""

    venue: str
    market_id: str
    title: str
    yes_price: float
    no_price: float
    volume: float = 0.0
    liquidity: float = 0.0
    close_time: Optional[datetime] = None
    status: MarketStatus = MarketStatus.OPEN
    resolved_outcome: Optional[bool] = None
    url: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.venue or not self.market_id:
            raise ValueError("market venue/id required")
        for name in ("yes_price", "no_price"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.volume < 0 or self.liquidity < 0:
            raise ValueError("volume/liquidity cannot be negative")

    @property
    def key(self) -> str:
        return f"{self.venue}:{self.market_id}"


@dataclass(slots=True, frozen=True)
class WhaleSignal:
    direction: WhaleDirection
    trade_size_usd: float
    wallet_accuracy: Optional[float] = None


@dataclass(slots=True, frozen=True)
class SocialSignal:
    engagement: float
    consistency: float


@dataclass(slots=True)
class WhaleActivity:
    """A large-holder trade reported by the external whale scanner."""

    wallet: str
    topic: str
    direction: WhaleDirection
    trade_size_usd: float
    venue: str | None = None
    wallet_accuracy: float | None = None
    observed_at: datetime | None = None
    extra: Dict[str, str] = field(default_factory=dict)

    def to_signal(self) -> WhaleSignal:
        return WhaleSignal(
            direction=self.direction,
            trade_size_usd=self.trade_size_usd,
            wallet_accuracy=self.wallet_accuracy,
        )


@dataclass(slots=True)
class ExternalSignals:
    """Sentiment, whale and social inputs gathered for one topic."""

    sentiment: Sentiment | None = None
    whale: WhaleSignal | None = None
    social: SocialSignal | None = None
    warnings: List[str] = field(default_factory=list)


__all__ = [
    "Venue",
    "MarketStatus",
    "Sentiment",
    "WhaleDirection",
    "DecisionAction",
    "PredictionDirection",
    "ConfidenceLevel",
    "NormalizedMarket",
    "WhaleSignal",
    "SocialSignal",
    "WhaleActivity",
    "ExternalSignals",
]
