"""ComputationBridge — where a kernel runs, never how.

Two strategies share one contract, ``await bridge.run(request)``:

    InlineBridge      runs the task in the caller's context.
    BackgroundBridge  dispatches the task to a concurrent.futures executor
                      (a single-worker process pool unless one is injected)
                      under a bounded timeout.

Both paths hand the same JSON request text to the same
``run_serialized_task`` function and decode the same JSON response text, so
results are value-identical whichever path produced them.

BackgroundBridge failure handling:
    - executor unavailable / unhealthy → run inline
    - dispatch raises, times out, or the task reports an error
      → log, retry once inline
    - a timed-out worker is abandoned: an owned pool is replaced, an
      injected executor marks the bridge unhealthy
    - inline retry also fails → ComputationError
    - a broken process pool marks the bridge unhealthy for good; later
      calls go straight to the inline path
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor, ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from typing import Optional, Protocol

from compass_analytics.core.tasks import decode_response, run_serialized_task
from compass_analytics.domain.results import AnalysisResult
from compass_analytics.foundation.errors import ComputationError
from compass_analytics.models.task import TaskRequest, TaskResponse

logger = logging.getLogger(__name__)


class ComputationBridge(Protocol):
    """Protocol for the execution-location strategy."""

    async def run(self, request: TaskRequest) -> AnalysisResult:
        """Execute *request* and return its result or raise ComputationError."""
        ...

    def close(self) -> None:
        ...


def _unwrap(response: TaskResponse) -> AnalysisResult:
    if response.error_message is not None:
        raise ComputationError(response.task_kind.value, response.error_message)
    return response.result  # type: ignore[return-value]


class InlineBridge:
    """Runs every task synchronously in the caller's context."""

    async def run(self, request: TaskRequest) -> AnalysisResult:
        return _unwrap(decode_response(run_serialized_task(request.model_dump_json())))

    def close(self) -> None:
        pass


class BackgroundBridge:
    """Offloads tasks to an executor with a synchronous safety net.

    Args:
        executor: Executor to dispatch to.  When omitted a
            ``ProcessPoolExecutor(max_workers=1)`` is created lazily on first
            use and owned (shut down) by the bridge.
        timeout: Seconds to wait for a dispatched task before treating the
            dispatch as failed.
        max_workers: Worker count for the lazily created pool.
    """

    def __init__(
        self,
        executor: Optional[Executor] = None,
        timeout: float = 30.0,
        max_workers: int = 1,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._executor = executor
        self._owns_executor = executor is None
        self._timeout = timeout
        self._max_workers = max_workers
        self._healthy = True
        self._closed = False
        self.dispatched = 0
        self.fallbacks = 0

    @property
    def healthy(self) -> bool:
        return self._healthy and not self._closed

    async def run(self, request: TaskRequest) -> AnalysisResult:
        payload = request.model_dump_json()
        executor = self._ensure_executor()
        if executor is None:
            return self._run_inline(request, payload, reason="background unavailable")

        loop = asyncio.get_running_loop()
        self.dispatched += 1
        try:
            response_json = await asyncio.wait_for(
                loop.run_in_executor(executor, run_serialized_task, payload),
                timeout=self._timeout,
            )
            response = decode_response(response_json)
        except asyncio.TimeoutError:
            logger.warning(
                "Background dispatch of %s timed out after %.1fs; retrying inline",
                request.task_kind.value, self._timeout,
            )
            self._release_stuck_executor()
            return self._run_inline(request, payload, reason="timeout")
        except BrokenProcessPool:
            logger.error("Background worker pool is broken; switching to inline execution")
            self._healthy = False
            return self._run_inline(request, payload, reason="broken pool")
        except Exception as exc:
            logger.warning(
                "Background dispatch of %s failed (%s); retrying inline",
                request.task_kind.value, exc,
            )
            return self._run_inline(request, payload, reason="dispatch error")

        if response.error_message is not None:
            logger.warning(
                "Background task %s reported an error (%s); retrying inline",
                request.task_kind.value, response.error_message,
            )
            return self._run_inline(request, payload, reason="task error")
        return response.result  # type: ignore[return-value]

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        self._executor = None

    # ── Internal ─────────────────────────────────────────────────────────

    def _ensure_executor(self) -> Optional[Executor]:
        if not self.healthy:
            return None
        if self._executor is None:
            try:
                self._executor = ProcessPoolExecutor(max_workers=self._max_workers)
            except (OSError, NotImplementedError) as exc:
                logger.warning("Could not start background worker pool (%s); using inline execution", exc)
                self._healthy = False
                return None
        return self._executor

    def _release_stuck_executor(self) -> None:
        """Drop an executor whose worker is still busy with a timed-out task.

        An owned pool is shut down and recreated lazily on the next call.  An
        injected executor cannot be replaced, so the bridge turns unhealthy.
        """
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
            logger.warning("Discarded background worker pool after a timeout; a fresh one starts on demand")
        else:
            self._healthy = False
            logger.error("Injected executor is stuck after a timeout; switching to inline execution")

    def _run_inline(self, request: TaskRequest, payload: str, *, reason: str) -> AnalysisResult:
        self.fallbacks += 1
        logger.info("Running %s inline (%s)", request.task_kind.value, reason)
        try:
            response = decode_response(run_serialized_task(payload))
        except Exception as exc:
            raise ComputationError(request.task_kind.value, f"inline retry failed: {exc}") from exc
        return _unwrap(response)


def create_bridge(background_enabled: bool, timeout: float = 30.0, max_workers: int = 1) -> ComputationBridge:
    """Pick the strategy once, at construction time."""
    if background_enabled:
        return BackgroundBridge(timeout=timeout, max_workers=max_workers)
    return InlineBridge()
