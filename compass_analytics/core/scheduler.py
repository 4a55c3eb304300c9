"""ProgressiveScheduler — staged chart computation with staleness protection.

Per batch id the scheduler walks

    pending → stage1_done → stage2_done → stage3_done
       └──────────┴─────────────┴──→ error (absorbing)

Each stage yields to the event loop first (``asyncio.sleep(stage_delay)``),
then computes its chart through the CachedAnalysisEngine, publishes the
partial result and flips exactly one state.

Staleness: ``start`` bumps a per-batch generation and cancels the in-flight
run before scheduling the new one.  Every publish re-checks the generation
after its last suspension point, so a superseded run can never overwrite a
newer result even if cancellation arrives late.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional

from compass_analytics.core.engine import CachedAnalysisEngine
from compass_analytics.domain.enums import TaskKind
from compass_analytics.domain.observation import ObservationBatch
from compass_analytics.domain.results import ChartSeries
from compass_analytics.models.progress import ProgressSnapshot, ProgressUpdate, StageState

logger = logging.getLogger(__name__)

STAGES: tuple[tuple[StageState, TaskKind], ...] = (
    (StageState.STAGE1_DONE, TaskKind.EMOTION_DISTRIBUTION),
    (StageState.STAGE2_DONE, TaskKind.SENSORY_RESPONSES),
    (StageState.STAGE3_DONE, TaskKind.EMOTION_TRENDS),
)


class _BatchRun:
    """Mutable bookkeeping for the current generation of one batch id."""

    __slots__ = ("batch_id", "generation", "state", "charts", "error_message", "history", "task")

    def __init__(self, batch_id: str, generation: int) -> None:
        self.batch_id = batch_id
        self.generation = generation
        self.state = StageState.PENDING
        self.charts: dict[str, ChartSeries] = {}
        self.error_message: Optional[str] = None
        self.history: list[ProgressUpdate] = []
        self.task: Optional[asyncio.Task] = None


class ProgressiveScheduler:
    """Runs the three chart stages per batch id and streams their progress.

    Args:
        engine: Engine the stages compute through (so stages share its cache).
        stage_delay: Seconds to yield before each stage; 0 still yields once.
        max_retained: Finished batches kept for snapshots and replay.  The
            oldest finished batch without subscribers is evicted first.
    """

    def __init__(
        self,
        engine: CachedAnalysisEngine,
        stage_delay: float = 0.0,
        max_retained: int = 256,
    ) -> None:
        if stage_delay < 0:
            raise ValueError("stage_delay must be >= 0")
        if max_retained < 0:
            raise ValueError("max_retained must be >= 0")
        self._engine = engine
        self._stage_delay = stage_delay
        self._max_retained = max_retained
        self._runs: dict[str, _BatchRun] = {}
        self._subscribers: dict[str, set[asyncio.Queue]] = {}

    # ── Public API ───────────────────────────────────────────────────────

    async def start(self, batch_id: str, batch: ObservationBatch) -> int:
        """Supersede any run for *batch_id* and schedule a fresh one.

        Returns the new generation number.
        """
        previous = self._runs.get(batch_id)
        generation = 1
        if previous is not None:
            generation = previous.generation + 1
            await self._cancel_task(previous)
            self._runs.pop(batch_id, None)

        run = _BatchRun(batch_id, generation)
        self._runs[batch_id] = run
        self._evict_finished()
        self._publish(run, ProgressUpdate(
            batch_id=batch_id, generation=generation, state=StageState.PENDING, stage=0,
        ))
        run.task = asyncio.create_task(
            self._run(batch_id, generation, batch), name=f"progressive:{batch_id}:{generation}",
        )
        logger.info("Started progressive batch %s (generation %d)", batch_id, generation)
        return generation

    async def subscribe(self, batch_id: str) -> AsyncIterator[ProgressUpdate]:
        """Yield updates for *batch_id* until its current run is terminal.

        Updates already published for the current generation are replayed
        first, so a late subscriber still sees every completed stage.
        """
        queue: asyncio.Queue = asyncio.Queue()
        run = self._runs.get(batch_id)
        if run is not None:
            for update in run.history:
                queue.put_nowait(update)
        self._subscribers.setdefault(batch_id, set()).add(queue)
        try:
            while True:
                update: ProgressUpdate = await queue.get()
                yield update
                if update.state.is_terminal:
                    return
        finally:
            subscribers = self._subscribers.get(batch_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[batch_id]

    def snapshot(self, batch_id: str) -> Optional[ProgressSnapshot]:
        run = self._runs.get(batch_id)
        if run is None:
            return None
        return ProgressSnapshot(
            batch_id=batch_id,
            generation=run.generation,
            state=run.state,
            charts=dict(run.charts),
            error_message=run.error_message,
        )

    async def cancel(self, batch_id: str) -> bool:
        """Stop the run for *batch_id*; subscribers receive an error update."""
        run = self._runs.get(batch_id)
        if run is None or run.state.is_terminal:
            return False
        await self._cancel_task(run)
        self._fail(run, "cancelled")
        return True

    async def shutdown(self) -> None:
        for run in list(self._runs.values()):
            await self._cancel_task(run)
        self._runs.clear()
        logger.info("Progressive scheduler shut down")

    # ── Internal ─────────────────────────────────────────────────────────

    def _current(self, batch_id: str, generation: int) -> Optional[_BatchRun]:
        run = self._runs.get(batch_id)
        if run is None or run.generation != generation:
            return None
        return run

    async def _run(self, batch_id: str, generation: int, batch: ObservationBatch) -> None:
        for index, (state, kind) in enumerate(STAGES, start=1):
            await asyncio.sleep(self._stage_delay)
            if self._current(batch_id, generation) is None:
                return
            try:
                series = await self._engine.build_chart(kind, batch)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                run = self._current(batch_id, generation)
                if run is not None:
                    logger.exception("Stage %d of batch %s failed", index, batch_id)
                    self._fail(run, f"stage {index} ({kind.value}) failed: {exc}")
                return

            run = self._current(batch_id, generation)
            if run is None:
                logger.debug("Dropping stale stage %d of batch %s (generation %d)", index, batch_id, generation)
                return
            run.state = state
            run.charts[kind.value] = series
            self._publish(run, ProgressUpdate(
                batch_id=batch_id,
                generation=generation,
                state=state,
                stage=index,
                chart=kind.value,
                partial_result=series,
            ))

    def _evict_finished(self) -> None:
        finished = [
            batch_id for batch_id, run in self._runs.items()
            if run.state.is_terminal and batch_id not in self._subscribers
        ]
        for batch_id in finished[: max(0, len(finished) - self._max_retained)]:
            del self._runs[batch_id]
            logger.debug("Evicted finished progressive batch %s", batch_id)

    def _fail(self, run: _BatchRun, message: str) -> None:
        run.state = StageState.ERROR
        run.error_message = message
        self._publish(run, ProgressUpdate(
            batch_id=run.batch_id,
            generation=run.generation,
            state=StageState.ERROR,
            stage=len(run.charts),
            error_message=message,
        ))

    def _publish(self, run: _BatchRun, update: ProgressUpdate) -> None:
        run.history.append(update)
        for queue in self._subscribers.get(run.batch_id, ()):
            queue.put_nowait(update)

    @staticmethod
    async def _cancel_task(run: _BatchRun) -> None:
        task = run.task
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait([task])
