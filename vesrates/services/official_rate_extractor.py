"""Official (BCV) rate extractor with a JSON API fallback."""

import json
import math
import re
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

import httpx

from vesrates.models.rates import CacheEntry, OfficialRates, utcnow
from vesrates.services.errors import ExtractionError
from vesrates.utils.config import config
from vesrates.utils.logger import StructuredLogger

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/142.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "es-ES,es;q=0.9",
}


def parse_local_decimal(literal: str | None) -> float:
    """
    Parse a BCV-formatted number ("1.234,56": period thousands, comma decimal).

    Returns 0.0 for empty, non-numeric, non-finite or non-positive input,
    which callers treat as "no valid rate".
    """
    if not literal:
        return 0.0

    cleaned = re.sub(r"\s", "", literal).replace(".", "").replace(",", ".")
    try:
        value = float(cleaned)
    except ValueError:
        return 0.0

    if not math.isfinite(value) or value <= 0:
        return 0.0
    return value


class RateExtractionStrategy(Protocol):
    """Turns the official page into raw currency -> numeric literal matches."""

    def extract(self, html: str) -> dict[str, str]:
        ...


class RegexRateExtraction:
    """
    Locates each currency block by id, then its label, then the first
    <strong> numeric literal after it.
    """

    PATTERNS = {
        "USD": re.compile(
            r'<div[^>]*id="dolar"[^>]*>[\s\S]*?<span>\s*USD\s*</span>[\s\S]*?<strong>\s*([\d.,]+)',
            re.IGNORECASE,
        ),
        "EUR": re.compile(
            r'<div[^>]*id="euro"[^>]*>[\s\S]*?<span>\s*EUR\s*</span>[\s\S]*?<strong>\s*([\d.,]+)',
            re.IGNORECASE,
        ),
    }

    def extract(self, html: str) -> dict[str, str]:
        matches = {}
        for currency, pattern in self.PATTERNS.items():
            match = pattern.search(html)
            if match:
                matches[currency] = match.group(1)
        return matches


class OfficialRateExtractor:
    """Scrapes the official rate page, falling back to a USD-only JSON API."""

    def __init__(
        self,
        strategy: RateExtractionStrategy | None = None,
        ttl_seconds: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the extractor.

        Args:
            strategy: HTML extraction strategy (regex based by default)
            ttl_seconds: Lifetime of the in-process cached pair
            clock: Source of the current UTC time
        """
        self.base_url = config.sources.official_rate_url
        self.fallback_url = config.sources.official_fallback_url
        self.strategy = strategy or RegexRateExtraction()
        self.ttl_seconds = ttl_seconds or config.cache.official_cache_ttl
        self.clock = clock
        self._cache: CacheEntry[OfficialRates] | None = None
        self.logger = StructuredLogger("OfficialRateExtractor")

    async def scrape(self, force_refresh: bool = False) -> OfficialRates:
        """
        Return the current official USD/EUR pair.

        Args:
            force_refresh: Skip the in-process cache

        Returns:
            OfficialRates; `via` tells whether it came from memory, the
            official page or the fallback API (EUR is 0 in the latter)

        Raises:
            ExtractionError: If both the page and the fallback fail
        """
        now = self.clock()
        if not force_refresh and self._cache is not None and self._cache.is_fresh(now):
            self.logger.debug("Returning cached official rates")
            cached = self._cache.value
            return OfficialRates(usd=cached.usd, eur=cached.eur, via="memory", evidence=cached.evidence)

        try:
            rates = await self._scrape_primary()
        except ExtractionError as primary_error:
            self.logger.warning(
                "Official page extraction failed, trying fallback",
                context={"source": self.base_url},
                exception=primary_error,
            )
            try:
                rates = await self._fetch_fallback()
            except ExtractionError as fallback_error:
                self.logger.error(
                    "Fallback also failed",
                    context={"source": self.fallback_url},
                    exception=fallback_error,
                )
                raise primary_error
            # A fallback value is a last resort, never cached
            self.logger.info(
                "Using fallback official rate",
                context={"source": self.fallback_url, "USD": rates.usd},
            )
            return rates

        self._cache = CacheEntry.create(rates, now, self.ttl_seconds)
        self.logger.info(
            "Scraped official rates",
            context={"source": self.base_url, "USD": rates.usd, "EUR": rates.eur},
        )
        return rates

    async def _scrape_primary(self) -> OfficialRates:
        try:
            async with httpx.AsyncClient(
                timeout=config.sources.request_timeout,
                verify=config.sources.verify_ssl,
                follow_redirects=True,
            ) as client:
                response = await client.get(self.base_url, headers=BROWSER_HEADERS)
        except httpx.HTTPError as e:
            raise ExtractionError(f"Official page request failed: {e}") from e

        if response.status_code != 200:
            raise ExtractionError(f"Official page request failed: {response.status_code}")

        matches = self.strategy.extract(response.text)
        usd = parse_local_decimal(matches.get("USD"))
        eur = parse_local_decimal(matches.get("EUR"))
        if not usd or not eur:
            raise ExtractionError(f"Failed to parse rates - USD: {usd}, EUR: {eur}")

        return OfficialRates(usd=usd, eur=eur, via="primary", evidence=json.dumps(matches))

    async def _fetch_fallback(self) -> OfficialRates:
        try:
            async with httpx.AsyncClient(timeout=config.sources.request_timeout) as client:
                response = await client.get(self.fallback_url)
        except httpx.HTTPError as e:
            raise ExtractionError(f"Fallback request failed: {e}") from e

        if response.status_code != 200:
            raise ExtractionError(f"Fallback request failed: {response.status_code}")

        try:
            data = response.json()
            usd = float(data.get("promedio") or data.get("venta") or data.get("compra") or 0)
        except (ValueError, TypeError, AttributeError) as e:
            raise ExtractionError(f"Fallback returned an unreadable payload: {e}") from e

        if not math.isfinite(usd) or usd <= 0:
            raise ExtractionError("Fallback returned no USD rate")

        return OfficialRates(usd=usd, eur=0.0, via="fallback", evidence=json.dumps(data, default=str))

    def get_cached_rates(self) -> OfficialRates | None:
        return self._cache.value if self._cache else None

    def get_cache_timestamp(self) -> datetime | None:
        return self._cache.cached_at if self._cache else None

    def clear_cache(self) -> None:
        self._cache = None


# Process-wide extractor; its in-memory pair lives as long as the process
official_rate_extractor = OfficialRateExtractor()
