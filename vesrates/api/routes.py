"""API routes for rates, marketplace quotes, manual refresh triggers and metrics."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from vesrates.api.dependencies import (
    get_metrics_calculator,
    get_official_extractor,
    get_rate_store,
    get_rates_cache,
    get_scheduler_service,
)
from vesrates.api.error_handlers import create_not_found_error
from vesrates.database.rate_store import RateStore
from vesrates.models.rates import MarketplaceQuote
from vesrates.services.official_rate_extractor import OfficialRateExtractor
from vesrates.services.scheduler_service import (
    CACHE_TASK,
    MARKETPLACE_TASK,
    OFFICIAL_TASK,
    SchedulerService,
    TaskOutcome,
)
from vesrates.services.tiered_rate_cache import TieredRateCache
from vesrates.utils.metrics import MetricsCalculator

router = APIRouter()


class P2PQuoteResponse(BaseModel):
    """A stored marketplace quote."""
    fiat: str
    asset: str
    tradeType: str
    averagePrice: Optional[float]
    medianPrice: Optional[float]
    prices: list[float]
    timestamp: datetime


def _quote_response(quote: MarketplaceQuote) -> P2PQuoteResponse:
    return P2PQuoteResponse(
        fiat=quote.fiat,
        asset=quote.asset,
        tradeType=quote.trade_type,
        averagePrice=quote.average_price,
        medianPrice=quote.median_price,
        prices=quote.prices,
        timestamp=quote.observed_at,
    )


def _outcomes_response(message: str, outcomes: list[TaskOutcome]) -> dict:
    return {"message": message, "outcomes": [outcome.to_dict() for outcome in outcomes]}


@router.get("/rates")
async def get_rates(
    store: RateStore = Depends(get_rate_store),
    cache: TieredRateCache = Depends(get_rates_cache),
):
    """
    Current exchange rates from the tiered cache.

    The `source` field names the tier that answered; stale answers carry a
    `warning`.
    """
    result = await cache.read(store)
    return result.to_dict()


@router.get("/binance/usdt-ves")
async def get_latest_usdt_ves(store: RateStore = Depends(get_rate_store)):
    """Latest stored USDT/VES marketplace quote."""
    quote = store.get_latest_p2p_quote("VES", "USDT")
    if quote is None:
        return create_not_found_error("No Binance P2P data available").to_json_response()

    return {"data": _quote_response(quote), "source": "binance-p2p"}


@router.get("/binance/history")
async def get_usdt_ves_history(
    limit: int = Query(24, ge=1, le=500),
    store: RateStore = Depends(get_rate_store),
):
    """Most recent USDT/VES marketplace quotes, newest first."""
    history = store.get_p2p_history("VES", "USDT", limit=limit)
    return {
        "data": [_quote_response(quote) for quote in history],
        "source": "binance-p2p",
        "count": len(history),
    }


@router.post("/cron/trigger")
async def trigger_cache_refresh(scheduler: SchedulerService = Depends(get_scheduler_service)):
    """Manually refresh the rates cache."""
    outcomes = await scheduler.run_tasks([CACHE_TASK])
    return _outcomes_response("Cache update triggered", outcomes)


@router.post("/cron/official")
async def trigger_official_refresh(scheduler: SchedulerService = Depends(get_scheduler_service)):
    """Manually refresh the official rates."""
    outcomes = await scheduler.run_tasks([OFFICIAL_TASK])
    return _outcomes_response("Official rate refresh triggered", outcomes)


@router.post("/cron/p2p")
async def trigger_marketplace_refresh(scheduler: SchedulerService = Depends(get_scheduler_service)):
    """Manually sample the marketplace."""
    outcomes = await scheduler.run_tasks([MARKETPLACE_TASK])
    return _outcomes_response("Marketplace refresh triggered", outcomes)


@router.post("/cron/tick")
async def trigger_tick(scheduler: SchedulerService = Depends(get_scheduler_service)):
    """Run one scheduler tick at the current time."""
    outcomes = await scheduler.tick()
    return _outcomes_response("Scheduler tick executed", outcomes)


@router.get("/debug/scrape-official")
async def debug_scrape_official(
    extractor: OfficialRateExtractor = Depends(get_official_extractor),
):
    """Force a scrape of the official rates, bypassing the in-process cache."""
    rates = await extractor.scrape(force_refresh=True)
    return {"success": True, "rates": rates.as_dict(), "via": rates.via}


@router.get("/metrics")
async def get_metrics(calculator: MetricsCalculator = Depends(get_metrics_calculator)):
    """Task, cache and notification metrics since process start."""
    return calculator.calculate().to_dict()
