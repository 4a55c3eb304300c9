"""Tests for the ProgressiveScheduler: stage order, staleness and errors."""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Callable

import pytest

from compass_analytics.core.engine import CachedAnalysisEngine
from compass_analytics.core.scheduler import ProgressiveScheduler
from compass_analytics.domain.configuration import ConfigurationHandle
from compass_analytics.domain.enums import TaskKind
from compass_analytics.kernels.registry import KERNELS
from compass_analytics.models.progress import ProgressUpdate, StageState

from tests.test_observation import _batch, _emotion, _sensory


@pytest.fixture
def engine():
    engine = CachedAnalysisEngine(ConfigurationHandle(), owner="scheduler-test")
    yield engine
    engine.destroy()


def _sample(category: str = "happy"):
    return _batch(
        *(_emotion(category, 1 + i % 5, day=i) for i in range(6)),
        *(_sensory(day=i) for i in range(3)),
    )


async def _collect(scheduler: ProgressiveScheduler, batch_id: str) -> list[ProgressUpdate]:
    return [update async for update in scheduler.subscribe(batch_id)]


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.001)


class TestStages:
    @pytest.mark.asyncio
    async def test_stages_run_in_cost_order(self, engine: CachedAnalysisEngine) -> None:
        scheduler = ProgressiveScheduler(engine)
        generation = await scheduler.start("b1", _sample())
        updates = await asyncio.wait_for(_collect(scheduler, "b1"), timeout=5)

        assert generation == 1
        assert [u.state for u in updates] == [
            StageState.PENDING,
            StageState.STAGE1_DONE,
            StageState.STAGE2_DONE,
            StageState.STAGE3_DONE,
        ]
        assert [u.chart for u in updates[1:]] == [
            "emotion_distribution", "sensory_responses", "emotion_trends",
        ]
        assert [u.stage for u in updates] == [0, 1, 2, 3]
        assert all(u.partial_result is not None for u in updates[1:])

    @pytest.mark.asyncio
    async def test_snapshot_after_completion(self, engine: CachedAnalysisEngine) -> None:
        scheduler = ProgressiveScheduler(engine)
        await scheduler.start("b1", _sample())
        await asyncio.wait_for(_collect(scheduler, "b1"), timeout=5)

        snapshot = scheduler.snapshot("b1")
        assert snapshot is not None
        assert snapshot.state is StageState.STAGE3_DONE
        assert snapshot.completed_stages == 3
        assert set(snapshot.charts) == {"emotion_distribution", "sensory_responses", "emotion_trends"}
        assert scheduler.snapshot("unknown") is None

    @pytest.mark.asyncio
    async def test_late_subscriber_gets_replay(self, engine: CachedAnalysisEngine) -> None:
        scheduler = ProgressiveScheduler(engine)
        await scheduler.start("b1", _sample())
        await _wait_for(lambda: scheduler.snapshot("b1").state is StageState.STAGE3_DONE)
        updates = await asyncio.wait_for(_collect(scheduler, "b1"), timeout=5)
        assert len(updates) == 4

    @pytest.mark.asyncio
    async def test_stages_share_the_engine_cache(self, engine: CachedAnalysisEngine) -> None:
        scheduler = ProgressiveScheduler(engine)
        batch = _sample()
        await scheduler.start("b1", batch)
        await asyncio.wait_for(_collect(scheduler, "b1"), timeout=5)
        await scheduler.start("b2", batch)
        await asyncio.wait_for(_collect(scheduler, "b2"), timeout=5)
        stats = engine.get_cache_stats()
        assert (stats.misses, stats.hits) == (3, 3)

    def test_negative_delay_rejected(self, engine: CachedAnalysisEngine) -> None:
        with pytest.raises(ValueError):
            ProgressiveScheduler(engine, stage_delay=-1)
        with pytest.raises(ValueError):
            ProgressiveScheduler(engine, max_retained=-1)


class TestRetention:
    @pytest.mark.asyncio
    async def test_oldest_finished_batch_is_evicted(self, engine: CachedAnalysisEngine) -> None:
        scheduler = ProgressiveScheduler(engine, max_retained=2)
        for batch_id in ("b1", "b2", "b3"):
            await scheduler.start(batch_id, _sample())
            await asyncio.wait_for(_collect(scheduler, batch_id), timeout=5)

        await scheduler.start("b4", _sample())
        assert scheduler.snapshot("b1") is None
        assert scheduler.snapshot("b2") is not None
        assert scheduler.snapshot("b3") is not None
        await asyncio.wait_for(_collect(scheduler, "b4"), timeout=5)

    @pytest.mark.asyncio
    async def test_restart_counts_as_most_recent(self, engine: CachedAnalysisEngine) -> None:
        scheduler = ProgressiveScheduler(engine, max_retained=1)
        for batch_id in ("b1", "b2"):
            await scheduler.start(batch_id, _sample())
            await asyncio.wait_for(_collect(scheduler, batch_id), timeout=5)

        await scheduler.start("b1", _sample("sad"))
        await asyncio.wait_for(_collect(scheduler, "b1"), timeout=5)
        await scheduler.start("b3", _sample())
        assert scheduler.snapshot("b2") is None
        assert scheduler.snapshot("b1").generation == 2
        await scheduler.shutdown()


class TestStaleness:
    @pytest.mark.asyncio
    async def test_superseded_batch_never_publishes_after_newer_batch(
        self, engine: CachedAnalysisEngine
    ) -> None:
        scheduler = ProgressiveScheduler(engine, stage_delay=0.02)
        consumer = asyncio.create_task(_collect(scheduler, "b1"))
        await asyncio.sleep(0)

        await scheduler.start("b1", _sample("happy"))
        await _wait_for(lambda: scheduler.snapshot("b1").state is StageState.STAGE1_DONE)
        generation = await scheduler.start("b1", _sample("sad"))
        assert generation == 2

        updates = await asyncio.wait_for(consumer, timeout=5)

        first_new = next(i for i, u in enumerate(updates) if u.generation == 2)
        assert all(u.generation == 2 for u in updates[first_new:])
        assert updates[-1].state is StageState.STAGE3_DONE

        snapshot = scheduler.snapshot("b1")
        assert snapshot.generation == 2
        names = [row["name"] for row in snapshot.charts["emotion_distribution"].rows]
        assert names == ["sad"]

    @pytest.mark.asyncio
    async def test_restart_resets_progress(self, engine: CachedAnalysisEngine) -> None:
        scheduler = ProgressiveScheduler(engine, stage_delay=0.05)
        await scheduler.start("b1", _sample())
        await scheduler.start("b1", _sample("sad"))
        snapshot = scheduler.snapshot("b1")
        assert snapshot.generation == 2
        assert snapshot.state is StageState.PENDING
        assert snapshot.charts == {}
        await scheduler.shutdown()


class TestErrorsAndCancellation:
    @pytest.mark.asyncio
    async def test_failing_stage_enters_error_state(
        self, engine: CachedAnalysisEngine, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken(*args, **kwargs):
            raise RuntimeError("bad grouping")

        spec = KERNELS[TaskKind.SENSORY_RESPONSES]
        monkeypatch.setitem(KERNELS, TaskKind.SENSORY_RESPONSES, dataclasses.replace(spec, func=broken))

        scheduler = ProgressiveScheduler(engine)
        await scheduler.start("b1", _sample())
        updates = await asyncio.wait_for(_collect(scheduler, "b1"), timeout=5)

        assert [u.state for u in updates] == [StageState.PENDING, StageState.STAGE1_DONE, StageState.ERROR]
        snapshot = scheduler.snapshot("b1")
        assert snapshot.state is StageState.ERROR
        assert "stage 2" in snapshot.error_message
        assert set(snapshot.charts) == {"emotion_distribution"}

    @pytest.mark.asyncio
    async def test_cancel(self, engine: CachedAnalysisEngine) -> None:
        scheduler = ProgressiveScheduler(engine, stage_delay=10)
        await scheduler.start("b1", _sample())
        assert await scheduler.cancel("b1") is True
        snapshot = scheduler.snapshot("b1")
        assert snapshot.state is StageState.ERROR
        assert snapshot.error_message == "cancelled"
        assert await scheduler.cancel("b1") is False
        assert await scheduler.cancel("missing") is False

    @pytest.mark.asyncio
    async def test_shutdown_cancels_runs(self, engine: CachedAnalysisEngine) -> None:
        scheduler = ProgressiveScheduler(engine, stage_delay=10)
        await scheduler.start("b1", _sample())
        await scheduler.start("b2", _sample())
        await scheduler.shutdown()
        assert scheduler.snapshot("b1") is None
        assert scheduler.snapshot("b2") is None
