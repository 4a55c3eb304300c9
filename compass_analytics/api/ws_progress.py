"""WebSocket endpoint streaming progressive chart stages.

Path: /ws/progress/{batch_id}

Sends one JSON message per ProgressUpdate (replaying stages already done for
the current generation), then closes once the batch reaches ``stage3_done``
or ``error``.

An unknown batch id is accepted and immediately closed with code 4404.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from compass_analytics.core.scheduler import ProgressiveScheduler

logger = logging.getLogger(__name__)

# Application close code mirroring HTTP 404.
UNKNOWN_BATCH_CLOSE_CODE = 4404


def create_progress_router(scheduler: ProgressiveScheduler) -> APIRouter:
    """Factory that wires the progress stream to a ProgressiveScheduler."""

    router = APIRouter()

    @router.websocket("/ws/progress/{batch_id}")
    async def stream_progress(websocket: WebSocket, batch_id: str) -> None:
        await websocket.accept()
        if scheduler.snapshot(batch_id) is None:
            logger.info("Progress subscriber asked for unknown batch %s", batch_id)
            await websocket.close(code=UNKNOWN_BATCH_CLOSE_CODE, reason=f"Batch {batch_id} not found")
            return
        logger.info("Progress subscriber connected for batch %s", batch_id)

        stream = scheduler.subscribe(batch_id)
        try:
            async for update in stream:
                await websocket.send_json(update.model_dump(mode="json"))
            await websocket.close()
        except WebSocketDisconnect:
            logger.info("Progress subscriber for batch %s disconnected", batch_id)
        finally:
            await stream.aclose()

    return router
