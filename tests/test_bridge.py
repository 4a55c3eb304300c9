"""Tests for the task protocol and both ComputationBridge strategies."""

from __future__ import annotations

import dataclasses
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from datetime import timedelta

import pytest
from pydantic import ValidationError

from compass_analytics.cache.fingerprint import fingerprint_observations
from compass_analytics.core.bridge import BackgroundBridge, InlineBridge, create_bridge
from compass_analytics.core.tasks import decode_response, execute_request, run_serialized_task
from compass_analytics.domain.configuration import AnalysisConfiguration
from compass_analytics.domain.enums import ResultStatus, TaskKind
from compass_analytics.domain.observation import ObservationBatch
from compass_analytics.domain.results import PatternReport
from compass_analytics.foundation.errors import ComputationError
from compass_analytics.kernels.registry import KERNELS
from compass_analytics.models.task import TaskRequest, TaskResponse

from tests.test_observation import BASE, _batch, _emotion, _environment, _sensory


def _sample_batch() -> ObservationBatch:
    observations = []
    for i in range(8):
        observations.append(_emotion("anxious" if i % 2 else "happy", 1 + i % 5, day=i, triggers=("noise",)))
        observations.append(_sensory(day=i))
        observations.append(_environment(day=i, noise_level=1 + i))
    return _batch(*observations)


def _request(kind: TaskKind = TaskKind.EMOTION_PATTERNS, batch: ObservationBatch | None = None, **params) -> TaskRequest:
    batch = batch if batch is not None else _sample_batch()
    return TaskRequest(
        task_kind=kind,
        input_fingerprint=fingerprint_observations(batch.observations),
        observations=batch,
        configuration=AnalysisConfiguration(),
        params=params,
    )


def _break_kernel(monkeypatch: pytest.MonkeyPatch, kind: TaskKind) -> None:
    def broken(*args, **kwargs):
        raise RuntimeError("kernel exploded")

    monkeypatch.setitem(KERNELS, kind, dataclasses.replace(KERNELS[kind], func=broken))


class _FailingExecutor(Executor):
    def __init__(self, exc: BaseException) -> None:
        self.exc = exc
        self.submitted = 0

    def submit(self, fn, /, *args, **kwargs):
        self.submitted += 1
        raise self.exc


class _HangingExecutor(Executor):
    """Accepts work and never completes it."""

    def submit(self, fn, /, *args, **kwargs):
        return Future()


# ── Task protocol ────────────────────────────────────────────────────────────


class TestTaskProtocol:
    def test_response_requires_exactly_one_outcome(self) -> None:
        with pytest.raises(ValidationError):
            TaskResponse(task_kind=TaskKind.ANOMALIES)
        with pytest.raises(ValidationError):
            TaskResponse(
                task_kind=TaskKind.ANOMALIES,
                result=PatternReport(observation_kind="emotion"),
                error_message="both",
            )

    def test_serialized_round_trip(self) -> None:
        request = _request()
        response = decode_response(run_serialized_task(request.model_dump_json()))
        assert response.ok
        assert response.task_kind is TaskKind.EMOTION_PATTERNS
        assert isinstance(response.result, PatternReport)

    def test_as_of_param_survives_json(self) -> None:
        request = _request(TaskKind.ANOMALIES, as_of=BASE + timedelta(days=500))
        response = decode_response(run_serialized_task(request.model_dump_json()))
        assert response.ok
        assert response.result.status is ResultStatus.INSUFFICIENT_DATA

    def test_kernel_failure_becomes_error_response(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _break_kernel(monkeypatch, TaskKind.EMOTION_PATTERNS)
        response = execute_request(_request())
        assert not response.ok
        assert "kernel exploded" in response.error_message

    def test_wrong_result_type_becomes_error_response(self, monkeypatch: pytest.MonkeyPatch) -> None:
        spec = KERNELS[TaskKind.ANOMALIES]
        monkeypatch.setitem(
            KERNELS, TaskKind.ANOMALIES,
            dataclasses.replace(spec, func=KERNELS[TaskKind.EMOTION_PATTERNS].func),
        )
        response = execute_request(_request(TaskKind.ANOMALIES))
        assert not response.ok
        assert "expected AnomalyReport" in response.error_message


# ── Inline ───────────────────────────────────────────────────────────────────


class TestInlineBridge:
    @pytest.mark.asyncio
    async def test_runs_kernel(self) -> None:
        result = await InlineBridge().run(_request())
        assert isinstance(result, PatternReport)

    @pytest.mark.asyncio
    async def test_failure_raises_computation_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _break_kernel(monkeypatch, TaskKind.EMOTION_PATTERNS)
        with pytest.raises(ComputationError) as info:
            await InlineBridge().run(_request())
        assert info.value.task_kind == "emotion_patterns"


# ── Background ───────────────────────────────────────────────────────────────


class TestBackgroundBridge:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", list(TaskKind))
    async def test_paths_are_value_identical(self, kind: TaskKind) -> None:
        request = _request(kind)
        with ThreadPoolExecutor(max_workers=1) as pool:
            background = BackgroundBridge(executor=pool, timeout=10)
            from_worker = await background.run(request)
            assert background.dispatched == 1
            assert background.fallbacks == 0
        inline = await InlineBridge().run(request)
        assert from_worker == inline

    @pytest.mark.asyncio
    async def test_dispatch_failure_falls_back(self) -> None:
        executor = _FailingExecutor(RuntimeError("queue full"))
        bridge = BackgroundBridge(executor=executor)
        result = await bridge.run(_request())
        assert isinstance(result, PatternReport)
        assert bridge.fallbacks == 1
        assert bridge.healthy

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self) -> None:
        bridge = BackgroundBridge(executor=_HangingExecutor(), timeout=0.05)
        request = _request()
        result = await bridge.run(request)
        assert result == await InlineBridge().run(request)
        assert bridge.fallbacks == 1

    @pytest.mark.asyncio
    async def test_broken_pool_marks_unhealthy(self) -> None:
        executor = _FailingExecutor(BrokenProcessPool("worker died"))
        bridge = BackgroundBridge(executor=executor)
        await bridge.run(_request())
        assert not bridge.healthy

        await bridge.run(_request())
        assert executor.submitted == 1
        assert bridge.dispatched == 1
        assert bridge.fallbacks == 2

    @pytest.mark.asyncio
    async def test_task_error_retries_inline_then_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _break_kernel(monkeypatch, TaskKind.EMOTION_PATTERNS)
        with ThreadPoolExecutor(max_workers=1) as pool:
            bridge = BackgroundBridge(executor=pool, timeout=10)
            with pytest.raises(ComputationError):
                await bridge.run(_request())
        assert bridge.fallbacks == 1

    @pytest.mark.asyncio
    async def test_closed_bridge_runs_inline(self) -> None:
        with ThreadPoolExecutor(max_workers=1) as pool:
            bridge = BackgroundBridge(executor=pool)
            bridge.close()
            bridge.close()
            result = await bridge.run(_request())
        assert isinstance(result, PatternReport)
        assert bridge.dispatched == 0
        assert not bridge.healthy

    @pytest.mark.asyncio
    async def test_timeout_with_stuck_injected_pool_stops_dispatching(self) -> None:
        gate = threading.Event()
        pool = ThreadPoolExecutor(max_workers=1)
        pool.submit(gate.wait)
        try:
            bridge = BackgroundBridge(executor=pool, timeout=0.05)
            for _ in range(3):
                assert isinstance(await bridge.run(_request()), PatternReport)
            assert not bridge.healthy
            assert bridge.dispatched == 1
            assert bridge.fallbacks == 3
        finally:
            gate.set()
            pool.shutdown(wait=True)

    @pytest.mark.asyncio
    async def test_timeout_replaces_owned_pool(self, monkeypatch: pytest.MonkeyPatch) -> None:
        gate = threading.Event()
        pools: list[ThreadPoolExecutor] = []

        def make_pool(max_workers: int) -> ThreadPoolExecutor:
            pool = ThreadPoolExecutor(max_workers=max_workers)
            if not pools:
                pool.submit(gate.wait)
            pools.append(pool)
            return pool

        monkeypatch.setattr("compass_analytics.core.bridge.ProcessPoolExecutor", make_pool)
        bridge = BackgroundBridge(timeout=0.2)
        try:
            await bridge.run(_request())
            assert bridge.fallbacks == 1
            assert bridge.healthy
            result = await bridge.run(_request())
        finally:
            gate.set()
            bridge.close()
        assert isinstance(result, PatternReport)
        assert len(pools) == 2
        assert bridge.dispatched == 2
        assert bridge.fallbacks == 1

    def test_invalid_timeout(self) -> None:
        with pytest.raises(ValueError):
            BackgroundBridge(timeout=0)

    def test_create_bridge_picks_strategy(self) -> None:
        assert isinstance(create_bridge(False), InlineBridge)
        background = create_bridge(True, timeout=5, max_workers=1)
        assert isinstance(background, BackgroundBridge)
        background.close()


# ── Process pool ─────────────────────────────────────────────────────────────


class TestProcessPoolBridge:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", list(TaskKind))
    async def test_default_pool_matches_inline(self, kind: TaskKind) -> None:
        request = _request(kind)
        bridge = create_bridge(True, timeout=60)
        try:
            from_worker = await bridge.run(request)
        finally:
            bridge.close()
        assert bridge.dispatched == 1
        assert bridge.fallbacks == 0
        assert from_worker == await InlineBridge().run(request)
