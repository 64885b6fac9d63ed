"""Tests for task selection, supervision and the scheduler service."""

import asyncio
from datetime import UTC, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from hypothesis import given
from hypothesis import strategies as st

from vesrates.database.rate_store import RateStore
from vesrates.models.rates import OfficialRates, RateSource
from vesrates.services.errors import ExtractionError
from vesrates.services.scheduler_service import (
    CACHE_TASK,
    MARKETPLACE_TASK,
    OFFICIAL_TASK,
    SchedulerService,
    TaskOutcome,
    local_hour,
    run_supervised,
    select_tasks,
)
from vesrates.utils.event_store import TASK_COMPLETE, EventStore
from vesrates.utils.trace_context import get_current_trace

OFFICIAL_HOURS = [9, 13, 17]


class TestSelectTasks:
    """Tests for the per-tick task selection."""

    def test_official_hour_in_local_time(self):
        # 13:00 UTC is 09:00 in Caracas
        assert OFFICIAL_TASK in select_tasks(13, 0, -4, OFFICIAL_HOURS)

    def test_non_official_hour(self):
        assert OFFICIAL_TASK not in select_tasks(14, 0, -4, OFFICIAL_HOURS)

    def test_marketplace_every_four_local_hours(self):
        # 12:00 UTC is 08:00 local
        assert MARKETPLACE_TASK in select_tasks(12, 15, -4, OFFICIAL_HOURS)
        assert MARKETPLACE_TASK not in select_tasks(13, 15, -4, OFFICIAL_HOURS)

    def test_cache_on_the_hour_and_half_hour(self):
        assert CACHE_TASK in select_tasks(14, 0, -4, OFFICIAL_HOURS)
        assert CACHE_TASK in select_tasks(14, 30, -4, OFFICIAL_HOURS)
        assert CACHE_TASK not in select_tasks(14, 15, -4, OFFICIAL_HOURS)

    def test_several_tasks_on_one_tick(self):
        # 04:00 UTC is local midnight: marketplace and cache, no official
        assert select_tasks(4, 0, -4, OFFICIAL_HOURS) == [MARKETPLACE_TASK, CACHE_TASK]

    def test_nothing_due(self):
        assert select_tasks(14, 45, -4, OFFICIAL_HOURS) == []

    def test_local_hour_wraps_around_midnight(self):
        assert local_hour(2, -4) == 22
        assert local_hour(23, 3) == 2

    @given(
        utc_hour=st.integers(min_value=0, max_value=23),
        utc_minute=st.integers(min_value=0, max_value=59),
        offset=st.integers(min_value=-12, max_value=14),
    )
    def test_predicates_are_independent(self, utc_hour, utc_minute, offset):
        """
        Each task is selected exactly when its own predicate holds,
        regardless of which other tasks are due.
        """
        selected = select_tasks(utc_hour, utc_minute, offset, OFFICIAL_HOURS)
        hour = (utc_hour + offset) % 24

        assert (OFFICIAL_TASK in selected) == (hour in OFFICIAL_HOURS)
        assert (MARKETPLACE_TASK in selected) == (hour % 4 == 0)
        assert (CACHE_TASK in selected) == (utc_minute in (0, 30))
        assert len(selected) == len(set(selected))


class TestRunSupervised:
    """Tests for concurrent, isolated task execution."""

    @pytest.mark.asyncio
    async def test_failure_does_not_affect_siblings(self):
        event_store = EventStore()

        async def ok():
            await asyncio.sleep(0.01)
            return "done"

        async def boom():
            raise ExtractionError("Failed to parse rates")

        outcomes = await run_supervised({"a": ok, "b": boom, "c": ok}, event_store)

        by_task = {outcome.task: outcome for outcome in outcomes}
        assert by_task["a"].status == "success"
        assert by_task["a"].result == "done"
        assert by_task["c"].status == "success"
        assert by_task["b"].status == "failed"
        assert "ExtractionError" in by_task["b"].error
        assert len(event_store.recent(event_type=TASK_COMPLETE)) == 3

    @pytest.mark.asyncio
    async def test_each_task_gets_its_own_trace(self):
        seen = {}

        def recorder(name):
            async def run():
                seen[name] = get_current_trace()
                await asyncio.sleep(0)
                assert get_current_trace() == seen[name]
            return run

        outcomes = await run_supervised({"a": recorder("a"), "b": recorder("b")})

        assert seen["a"] != seen["b"]
        assert {outcome.trace_id for outcome in outcomes} == {seen["a"], seen["b"]}
        assert all(outcome.status == "success" for outcome in outcomes)

    @pytest.mark.asyncio
    async def test_no_tasks(self):
        assert await run_supervised({}) == []


@pytest.fixture
def service(session_factory):
    extractor = MagicMock()
    extractor.scrape = AsyncMock(return_value=OfficialRates(usd=36.5, eur=39.8, via="primary"))
    sampler = MagicMock()
    sampler.sample = AsyncMock()
    cache = MagicMock()
    cache.refresh = AsyncMock(return_value=True)
    notifier = MagicMock()
    notifier.notify = AsyncMock()
    return SchedulerService(
        extractor=extractor,
        sampler=sampler,
        cache=cache,
        notifier=notifier,
        event_store=EventStore(),
        session_factory=session_factory,
    )


class TestSchedulerService:
    """Tests for the scheduler service."""

    @pytest.mark.asyncio
    async def test_tick_runs_due_tasks(self, service, session_factory):
        # 09:00 Caracas: official refresh plus the half-hourly cache refresh
        outcomes = await service.tick(datetime(2025, 1, 15, 13, 0, tzinfo=UTC))

        assert sorted(outcome.task for outcome in outcomes) == [CACHE_TASK, OFFICIAL_TASK]
        assert all(outcome.status == "success" for outcome in outcomes)
        service.sampler.sample.assert_not_awaited()

        session = session_factory()
        try:
            assert RateStore(session).get_current_rates(RateSource.OFFICIAL) == {
                "USD": 36.5,
                "EUR": 39.8,
            }
        finally:
            session.close()

    @pytest.mark.asyncio
    async def test_tick_converts_to_utc(self, service):
        caracas = timezone(timedelta(hours=-4))
        outcomes = await service.tick(datetime(2025, 1, 15, 9, 0, tzinfo=caracas))
        assert OFFICIAL_TASK in {outcome.task for outcome in outcomes}

    @pytest.mark.asyncio
    async def test_failing_task_is_isolated(self, service):
        service.extractor.scrape.side_effect = ExtractionError("Official page request failed: 503")

        outcomes = await service.run_tasks([OFFICIAL_TASK, CACHE_TASK])

        by_task = {outcome.task: outcome for outcome in outcomes}
        assert by_task[OFFICIAL_TASK].status == "failed"
        assert by_task[CACHE_TASK].status == "success"
        assert by_task[CACHE_TASK].result is True
        service.cache.refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_task_is_rejected(self, service):
        with pytest.raises(ValueError, match="weekly"):
            await service.run_tasks(["weekly"])

    @pytest.mark.asyncio
    async def test_quiet_tick_runs_nothing(self, service):
        assert await service.tick(datetime(2025, 1, 15, 14, 45, tzinfo=UTC)) == []

    @pytest.mark.asyncio
    async def test_start_and_stop(self, service):
        service.start()
        try:
            assert service.is_running
            job = service.scheduler.get_job("rates_tick")
            assert job is not None
            assert job.max_instances == 1
        finally:
            service.stop()

        assert not service.is_running

    def test_stop_when_not_running(self, service):
        service.stop()
        assert not service.is_running

    def test_outcome_serialization(self):
        outcome = TaskOutcome(task=CACHE_TASK, status="success", duration_ms=1.5, trace_id="t", result=True)
        assert outcome.to_dict() == {
            "task": CACHE_TASK,
            "status": "success",
            "duration_ms": 1.5,
            "trace_id": "t",
            "result": True,
            "error": None,
        }
