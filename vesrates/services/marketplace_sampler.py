"""Binance P2P marketplace sampler."""

import math
import statistics
from dataclasses import dataclass
from enum import Enum

import httpx

from vesrates.models.rates import MarketplaceQuote, PriceStats, utcnow
from vesrates.services.errors import ValidationError
from vesrates.utils.config import config
from vesrates.utils.logger import StructuredLogger

MAX_ROWS = 20
SUCCESS_CODE = "000000"
TRADE_TYPES = ("BUY", "SELL")


class SampleStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    TRANSPORT_FAILURE = "transport_failure"


@dataclass(frozen=True)
class SampleOutcome:
    """Result of one marketplace sampling attempt."""

    status: SampleStatus
    quote: MarketplaceQuote | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is SampleStatus.OK


def compute_price_stats(prices: list[float]) -> PriceStats:
    """
    Mean and median of the sampled prices.

    The median is taken from a sorted copy; `prices` itself is left in
    listing order. Both values are None for an empty list.
    """
    if not prices:
        return PriceStats(average=None, median=None)

    ordered = sorted(prices)
    return PriceStats(average=statistics.fmean(ordered), median=statistics.median(ordered))


def _validate_request(trade_type: str, rows: int) -> None:
    if not 1 <= rows <= MAX_ROWS:
        raise ValidationError(f"Rows must be between 1 and {MAX_ROWS}, got {rows}")
    if trade_type not in TRADE_TYPES:
        raise ValidationError(f"Trade type must be BUY or SELL, got {trade_type!r}")


class MarketplaceSampler:
    """Samples P2P listings for a fiat/asset pair and summarises their prices."""

    def __init__(self, base_url: str | None = None):
        self.base_url = base_url or config.sources.marketplace_url
        self.logger = StructuredLogger("MarketplaceSampler")

    async def sample(
        self,
        fiat: str = "VES",
        asset: str = "USDT",
        trade_type: str = "BUY",
        rows: int = MAX_ROWS,
    ) -> SampleOutcome:
        """
        Query one page of listings and reduce it to a MarketplaceQuote.

        Args:
            fiat: Fiat currency code (e.g. "VES")
            asset: Crypto asset code (e.g. "USDT")
            trade_type: "BUY" or "SELL"
            rows: Listings to sample, at most MAX_ROWS

        Returns:
            SampleOutcome; `quote` is set only when status is OK
        """
        context = {"fiat": fiat, "asset": asset, "trade_type": trade_type, "rows": rows}

        try:
            _validate_request(trade_type, rows)
        except ValidationError as e:
            self.logger.warning("Rejected marketplace request", context=context, exception=e)
            return SampleOutcome(SampleStatus.INVALID_INPUT, detail=str(e))

        body = {
            "fiat": fiat,
            "page": 1,
            "rows": rows,
            "tradeType": trade_type,
            "asset": asset,
        }

        self.logger.info(f"Fetching {asset}/{fiat} listings", context=context)
        try:
            async with httpx.AsyncClient(timeout=config.sources.request_timeout) as client:
                response = await client.post(
                    self.base_url,
                    json=body,
                    headers={"Content-Type": "application/json", "Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            self.logger.error("Marketplace request failed", context=context, exception=e)
            return SampleOutcome(SampleStatus.TRANSPORT_FAILURE, detail=str(e))

        if response.status_code != 200:
            self.logger.error(
                "Marketplace request failed",
                context={**context, "status_code": response.status_code},
            )
            return SampleOutcome(
                SampleStatus.TRANSPORT_FAILURE, detail=f"HTTP error! status: {response.status_code}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            self.logger.error("Marketplace returned invalid JSON", context=context, exception=e)
            return SampleOutcome(SampleStatus.TRANSPORT_FAILURE, detail="invalid JSON")

        if not isinstance(payload, dict):
            payload = {}
        listings = payload.get("data")
        if payload.get("code") != SUCCESS_CODE or not isinstance(listings, list) or not listings:
            self.logger.warning(
                "Marketplace returned no listings",
                context={**context, "code": payload.get("code"), "message": payload.get("message")},
            )
            return SampleOutcome(SampleStatus.NOT_FOUND, detail=f"code {payload.get('code')}")

        prices = self._collect_prices(listings[:rows])
        if not prices:
            return SampleOutcome(SampleStatus.NOT_FOUND, detail="no parsable listing prices")

        stats = compute_price_stats(prices)
        quote = MarketplaceQuote(
            fiat=fiat,
            asset=asset,
            trade_type=trade_type,
            prices=prices,
            average_price=stats.average,
            median_price=stats.median,
            observed_at=utcnow(),
        )
        self.logger.info(
            f"Got {len(prices)} prices",
            context={**context, "average": stats.average, "median": stats.median},
        )
        return SampleOutcome(SampleStatus.OK, quote=quote)

    async def get_pair(
        self,
        fiat: str = "VES",
        asset: str = "USDT",
        trade_type: str = "BUY",
        rows: int = MAX_ROWS,
    ) -> MarketplaceQuote | None:
        """Quote for the pair, or None for any failure (see `sample` for why)."""
        outcome = await self.sample(fiat, asset, trade_type, rows)
        return outcome.quote

    async def get_usdt_ves(self) -> MarketplaceQuote | None:
        return await self.get_pair("VES", "USDT", "BUY", MAX_ROWS)

    def _collect_prices(self, listings: list[dict]) -> list[float]:
        """One price per listing, in listing order; unparsable prices are skipped."""
        prices = []
        for item in listings:
            try:
                price = float(item["adv"]["price"])
            except (KeyError, TypeError, ValueError):
                self.logger.warning("Skipping listing without a valid price", context={"listing": item})
                continue
            if math.isfinite(price) and price > 0:
                prices.append(price)
        return prices


marketplace_sampler = MarketplaceSampler()
