"""Process-wide service instances and their FastAPI dependency providers."""

from fastapi import Depends
from sqlalchemy.orm import Session

from vesrates.database.db import get_db
from vesrates.database.rate_store import RateStore
from vesrates.services.marketplace_sampler import marketplace_sampler
from vesrates.services.notification_trigger import EventLogNotificationTrigger
from vesrates.services.official_rate_extractor import OfficialRateExtractor, official_rate_extractor
from vesrates.services.scheduler_service import SchedulerService
from vesrates.services.tiered_rate_cache import TieredRateCache
from vesrates.utils.event_store import EventStore
from vesrates.utils.metrics import MetricsCalculator

# Created empty at process start, never torn down
event_store = EventStore()
metrics_calculator = MetricsCalculator(event_store)
rates_cache = TieredRateCache(event_store=event_store)
notification_trigger = EventLogNotificationTrigger(event_store)
scheduler_service = SchedulerService(
    extractor=official_rate_extractor,
    sampler=marketplace_sampler,
    cache=rates_cache,
    notifier=notification_trigger,
    event_store=event_store,
)


def get_rate_store(db: Session = Depends(get_db)) -> RateStore:
    return RateStore(db)


def get_rates_cache() -> TieredRateCache:
    return rates_cache


def get_official_extractor() -> OfficialRateExtractor:
    return official_rate_extractor


def get_scheduler_service() -> SchedulerService:
    return scheduler_service


def get_metrics_calculator() -> MetricsCalculator:
    return metrics_calculator
