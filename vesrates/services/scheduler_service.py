"""Scheduler service: picks the refresh tasks due on each tick and supervises them."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import sessionmaker

from vesrates.database.db import SessionLocal, session_scope
from vesrates.database.rate_store import RateStore
from vesrates.services.marketplace_sampler import MarketplaceSampler
from vesrates.services.notification_trigger import NotificationTrigger
from vesrates.services.official_rate_extractor import OfficialRateExtractor
from vesrates.services.rate_refresh import (
    refresh_marketplace_rates,
    refresh_official_rates,
    refresh_rates_cache,
)
from vesrates.services.tiered_rate_cache import TieredRateCache
from vesrates.utils.config import config
from vesrates.utils.event_store import TASK_COMPLETE, EventStore
from vesrates.utils.logger import StructuredLogger
from vesrates.utils.trace_context import trace_scope

structured_logger = StructuredLogger("SchedulerService")

OFFICIAL_TASK = "official"
MARKETPLACE_TASK = "marketplace"
CACHE_TASK = "cache"

TaskFactory = Callable[[], Awaitable[Any]]


def local_hour(utc_hour: int, utc_offset_hours: int) -> int:
    return (utc_hour + utc_offset_hours) % 24


def select_tasks(
    utc_hour: int,
    utc_minute: int,
    utc_offset_hours: int | None = None,
    official_hours: list[int] | None = None,
) -> list[str]:
    """
    Refresh tasks due at the given UTC time.

    Every predicate is evaluated independently, so zero, one or several
    tasks may be selected for the same tick.
    """
    if utc_offset_hours is None:
        utc_offset_hours = config.scheduler.utc_offset_hours
    if official_hours is None:
        official_hours = config.scheduler.official_refresh_hours

    hour = local_hour(utc_hour, utc_offset_hours)
    tasks = []
    if hour in official_hours:
        tasks.append(OFFICIAL_TASK)
    if hour % 4 == 0:
        tasks.append(MARKETPLACE_TASK)
    if utc_minute in (0, 30):
        tasks.append(CACHE_TASK)
    return tasks


@dataclass
class TaskOutcome:
    """How one supervised task ended."""

    task: str
    status: str  # "success" or "failed"
    duration_ms: float
    trace_id: str
    result: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result = self.result.to_dict() if hasattr(self.result, "to_dict") else self.result
        return {
            "task": self.task,
            "status": self.status,
            "duration_ms": self.duration_ms,
            "trace_id": self.trace_id,
            "result": result,
            "error": self.error,
        }


async def _run_isolated(name: str, factory: TaskFactory, event_store: EventStore | None) -> TaskOutcome:
    with trace_scope() as trace_id:
        start_time = time.time()
        structured_logger.info(f"Starting {name} task", context={"task": name})
        try:
            result = await factory()
        except Exception as e:
            outcome = TaskOutcome(
                task=name,
                status="failed",
                duration_ms=(time.time() - start_time) * 1000,
                trace_id=trace_id,
                error=f"{type(e).__name__}: {e}",
            )
            structured_logger.error(
                f"{name} task failed",
                context={"task": name, "duration_ms": outcome.duration_ms},
                exception=e,
            )
        else:
            outcome = TaskOutcome(
                task=name,
                status="success",
                duration_ms=(time.time() - start_time) * 1000,
                trace_id=trace_id,
                result=result,
            )
            structured_logger.info(
                f"{name} task completed",
                context={"task": name, "duration_ms": outcome.duration_ms},
            )

        if event_store is not None:
            event_store.add_event(
                event_type=TASK_COMPLETE,
                component="SchedulerService",
                message=f"{name} task {outcome.status}",
                context={"task": name, "status": outcome.status, "error": outcome.error},
                trace_id=trace_id,
                duration_ms=outcome.duration_ms,
            )
        return outcome


async def run_supervised(
    tasks: dict[str, TaskFactory], event_store: EventStore | None = None
) -> list[TaskOutcome]:
    """
    Run tasks concurrently with independent failure domains.

    Each task is awaited to completion; an exception in one is captured in
    its TaskOutcome and never cancels or fails the others.
    """
    if not tasks:
        return []
    return list(
        await asyncio.gather(
            *(_run_isolated(name, factory, event_store) for name, factory in tasks.items())
        )
    )


class SchedulerService:
    """Runs the periodic tick that refreshes official, marketplace and cached rates."""

    def __init__(
        self,
        extractor: OfficialRateExtractor,
        sampler: MarketplaceSampler,
        cache: TieredRateCache,
        notifier: NotificationTrigger,
        event_store: EventStore | None = None,
        session_factory: sessionmaker = SessionLocal,
    ):
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.extractor = extractor
        self.sampler = sampler
        self.cache = cache
        self.notifier = notifier
        self.event_store = event_store
        self.session_factory = session_factory
        self.is_running = False

    def task_factories(self) -> dict[str, TaskFactory]:
        """Coroutine factories for every refresh task, each with its own session."""
        return {
            OFFICIAL_TASK: self.run_official,
            MARKETPLACE_TASK: self.run_marketplace,
            CACHE_TASK: self.run_cache_refresh,
        }

    async def run_official(self):
        with session_scope(self.session_factory) as session:
            return await refresh_official_rates(RateStore(session), self.extractor, self.notifier)

    async def run_marketplace(self):
        with session_scope(self.session_factory) as session:
            return await refresh_marketplace_rates(RateStore(session), self.sampler, self.notifier)

    async def run_cache_refresh(self):
        with session_scope(self.session_factory) as session:
            return await refresh_rates_cache(RateStore(session), self.cache)

    async def run_tasks(self, names: list[str]) -> list[TaskOutcome]:
        """Run the named tasks under supervision (used by ticks and manual triggers)."""
        factories = self.task_factories()
        unknown = [name for name in names if name not in factories]
        if unknown:
            raise ValueError(f"Unknown task(s): {', '.join(unknown)}")
        return await run_supervised({name: factories[name] for name in names}, self.event_store)

    async def tick(self, now: datetime | None = None) -> list[TaskOutcome]:
        """
        Evaluate the schedule once and run whatever is due.

        Args:
            now: Current time (defaults to the wall clock); converted to UTC
        """
        now = (now or datetime.now(UTC)).astimezone(UTC)
        selected = select_tasks(now.hour, now.minute)
        structured_logger.info(
            "Scheduler tick",
            context={"utc_time": now.isoformat(), "selected": selected},
        )
        return await self.run_tasks(selected)

    def start(self) -> None:
        """Register the tick job and start the scheduler (needs a running event loop)."""
        tick_minutes = config.scheduler.tick_minutes
        self.scheduler.add_job(
            self.tick,
            CronTrigger(minute=f"*/{tick_minutes}", timezone="UTC"),
            id="rates_tick",
            name="Rates Refresh Tick",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        if not self.is_running:
            self.scheduler.start()
            self.is_running = True
            structured_logger.info("Scheduler started", context={"tick_minutes": tick_minutes})

    def stop(self) -> None:
        """Stop the scheduler."""
        if self.is_running:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            structured_logger.info("Scheduler stopped")
