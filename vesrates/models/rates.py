"""Rate models shared by the extractors, the cache and the change detector."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(UTC)


class RateSource(str, Enum):
    """Where a rate sample came from."""

    OFFICIAL = "official"
    MARKETPLACE = "marketplace"


class RateType(str, Enum):
    OFFICIAL = "official"
    P2P = "p2p"


class CacheSource(str, Enum):
    """Tier that answered a cache read."""

    MEMORY = "memory"
    PERSISTENT = "persistent"
    ORIGIN = "origin"
    MEMORY_STALE = "memory-stale"
    PERSISTENT_STALE = "persistent-stale"

    @property
    def is_stale(self) -> bool:
        return self in (CacheSource.MEMORY_STALE, CacheSource.PERSISTENT_STALE)


@dataclass(frozen=True)
class RateSample:
    """One observed rate for a (source, currency) pair."""

    source: RateSource
    currency: str
    rate_type: RateType
    value: float
    aux_value: float | None = None
    raw_evidence: str | None = None
    observed_at: datetime = field(default_factory=utcnow)


@dataclass
class MarketplaceQuote:
    """
    Summary of sampled P2P listings.

    `prices` keeps listing order; statistics are computed from a sorted copy.
    """

    fiat: str
    asset: str
    trade_type: str
    prices: list[float] = field(default_factory=list)
    average_price: float | None = None
    median_price: float | None = None
    observed_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fiat": self.fiat,
            "asset": self.asset,
            "tradeType": self.trade_type,
            "prices": list(self.prices),
            "averagePrice": self.average_price,
            "medianPrice": self.median_price,
            "timestamp": self.observed_at.isoformat(),
        }


@dataclass(frozen=True)
class PriceStats:
    average: float | None
    median: float | None


@dataclass(frozen=True)
class OfficialRates:
    """USD and EUR official rates; a 0 EUR means the value is unavailable."""

    usd: float
    eur: float
    via: str  # "memory", "primary" or "fallback"
    evidence: str | None = None

    def as_dict(self) -> dict[str, float]:
        return {"USD": self.usd, "EUR": self.eur}


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """In-process cache entry, replaced wholesale on every refresh."""

    value: T
    cached_at: datetime
    expires_at: datetime

    @classmethod
    def create(cls, value: T, cached_at: datetime, ttl_seconds: float) -> "CacheEntry[T]":
        return cls(
            value=value,
            cached_at=cached_at,
            expires_at=cached_at + timedelta(seconds=ttl_seconds),
        )

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class CacheReadResult:
    """Answer of a tiered cache read."""

    data: Any
    source: CacheSource
    cached_at: datetime
    warning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result = {
            "data": self.data,
            "source": self.source.value,
            "cachedAt": self.cached_at.isoformat(),
        }
        if self.warning:
            result["warning"] = self.warning
        return result
