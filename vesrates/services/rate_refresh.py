"""Refresh pipelines run by the scheduler: fetch, detect changes, persist, notify."""

import json
from dataclasses import dataclass, field
from typing import Any

from vesrates.database.rate_store import RateStore
from vesrates.models.notification import RateChangePayload
from vesrates.models.rates import RateSample, RateSource, RateType, utcnow
from vesrates.services.change_detector import ChangeDetector
from vesrates.services.errors import ExtractionError
from vesrates.services.marketplace_sampler import MarketplaceSampler
from vesrates.services.notification_trigger import NotificationTrigger
from vesrates.services.official_rate_extractor import OfficialRateExtractor
from vesrates.services.tiered_rate_cache import TieredRateCache
from vesrates.utils.logger import StructuredLogger

logger = StructuredLogger("RateRefresh")

P2P_CURRENCY = "USDT"


@dataclass
class RefreshReport:
    """What one refresh cycle observed and persisted."""

    source: RateSource
    observed: dict[str, float] = field(default_factory=dict)
    changed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    notified: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "observed": dict(self.observed),
            "changed": list(self.changed),
            "skipped": list(self.skipped),
            "notified": self.notified,
        }


def compute_deltas(
    store: RateStore, new_values: dict[str, float], previous: dict[str, float | None]
) -> dict[str, float]:
    """
    Named numeric deltas for a notification.

    `<CUR>_change` and `<CUR>_change_pct` for every changed currency with a
    previous value, plus `p2p_official_gap_pct` when both the marketplace
    and the official USD rate are known.
    """
    deltas: dict[str, float] = {}
    for currency, value in new_values.items():
        before = previous.get(currency)
        if before is None:
            continue
        deltas[f"{currency}_change"] = value - before
        if before:
            deltas[f"{currency}_change_pct"] = (value - before) / before * 100

    official_usd = store.get_last_value(RateSource.OFFICIAL, "USD")
    p2p_usdt = store.get_last_value(RateSource.MARKETPLACE, P2P_CURRENCY)
    if official_usd and p2p_usdt is not None:
        deltas["p2p_official_gap_pct"] = (p2p_usdt - official_usd) / official_usd * 100
    return deltas


async def _persist_changes(
    store: RateStore,
    notifier: NotificationTrigger,
    report: RefreshReport,
    samples: list[RateSample],
) -> RefreshReport:
    detector = ChangeDetector(store, report.source)
    new_values: dict[str, float] = {}
    previous: dict[str, float | None] = {}

    for sample in samples:
        decision = detector.evaluate(sample.currency, sample.value)
        if not decision.changed:
            continue
        store.save_rate_sample(sample)
        report.changed.append(sample.currency)
        new_values[sample.currency] = sample.value
        previous[sample.currency] = decision.previous

    if not report.changed:
        logger.info("No rate changes", context=report.to_dict())
        return report

    payload = RateChangePayload(
        source=report.source,
        changed=list(report.changed),
        rates=store.get_current_rates(report.source),
    )
    await notifier.notify(payload, compute_deltas(store, new_values, previous))
    report.notified = True
    logger.info("Persisted rate changes", context=report.to_dict())
    return report


async def refresh_official_rates(
    store: RateStore, extractor: OfficialRateExtractor, notifier: NotificationTrigger
) -> RefreshReport:
    """
    Scrape the official rates and persist/notify the currencies that moved.

    A 0 rate (EUR from the fallback API) means unavailable and is skipped.
    """
    rates = await extractor.scrape(force_refresh=True)
    report = RefreshReport(source=RateSource.OFFICIAL)
    observed_at = utcnow()

    samples = []
    for currency, value in rates.as_dict().items():
        if value <= 0:
            report.skipped.append(currency)
            continue
        report.observed[currency] = value
        samples.append(
            RateSample(
                source=RateSource.OFFICIAL,
                currency=currency,
                rate_type=RateType.OFFICIAL,
                value=value,
                raw_evidence=rates.evidence,
                observed_at=observed_at,
            )
        )

    return await _persist_changes(store, notifier, report, samples)


async def refresh_marketplace_rates(
    store: RateStore, sampler: MarketplaceSampler, notifier: NotificationTrigger
) -> RefreshReport:
    """
    Sample USDT/VES listings, append the quote and track the median price.

    Raises:
        ExtractionError: If the marketplace could not be sampled
    """
    outcome = await sampler.sample("VES", P2P_CURRENCY, "BUY")
    if not outcome.ok:
        raise ExtractionError(f"Marketplace sample failed ({outcome.status.value}): {outcome.detail}")

    quote = outcome.quote
    store.save_p2p_quote(quote)

    report = RefreshReport(source=RateSource.MARKETPLACE)
    report.observed[P2P_CURRENCY] = quote.median_price
    sample = RateSample(
        source=RateSource.MARKETPLACE,
        currency=P2P_CURRENCY,
        rate_type=RateType.P2P,
        value=quote.median_price,
        aux_value=quote.average_price,
        raw_evidence=json.dumps(quote.prices),
        observed_at=quote.observed_at,
    )
    return await _persist_changes(store, notifier, report, [sample])


async def refresh_rates_cache(store: RateStore, cache: TieredRateCache) -> bool:
    """Write-only cache refresh; never raises."""
    return await cache.refresh(store)
