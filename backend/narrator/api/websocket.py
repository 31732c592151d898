"""
WebSocket handler for real-time progress updates.

Streams the same ProgressSnapshots the polling endpoint returns.
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from narrator.errors import JobNotFoundError
from narrator.models.schemas import ProgressSnapshot
from narrator.services.job_manager import get_job_manager

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

HEARTBEAT_SECONDS = 30.0


def _to_message(snapshot: ProgressSnapshot) -> dict:
    return snapshot.model_dump(mode="json", by_alias=True)


@router.websocket("/ws/{job_id}")
async def job_progress_websocket(websocket: WebSocket, job_id: str) -> None:
    """
    Push progress snapshots for one job.

    The first message is the snapshot at connect time; after that every
    snapshot the tracker publishes is forwarded as camelCase JSON. The
    server closes the socket after sending a terminal snapshot, and
    closes with code 4004 before accepting if the job is unknown.
    Idle connections receive {"type": "heartbeat"} every 30 seconds.
    """
    manager = get_job_manager()

    try:
        snapshot = manager.get_status(job_id)
    except JobNotFoundError:
        await websocket.close(code=4004, reason=f"Job not found: {job_id}")
        return

    # Subscribe before the first await so no snapshot is missed
    queue = manager.tracker.subscribe(job_id)

    try:
        await websocket.accept()
        logger.info(f"WebSocket connected for job {job_id}")

        await websocket.send_json(_to_message(snapshot))
        if snapshot.status.is_terminal:
            await websocket.close()
            return

        while True:
            try:
                snapshot = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
            except asyncio.TimeoutError:
                # Keep idle connections alive
                await websocket.send_json({"type": "heartbeat"})
                continue

            await websocket.send_json(_to_message(snapshot))
            if snapshot.status.is_terminal:
                await websocket.close()
                break

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for job {job_id}")
    finally:
        manager.tracker.unsubscribe(job_id, queue)
        logger.info(f"WebSocket closed for job {job_id}")
