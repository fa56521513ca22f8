from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from typing import List
import logging

import core.globals

logger = logging.getLogger(__name__)
router = APIRouter()

def queue_snapshot() -> dict:
    """Full queue and engine state, so a late subscriber can catch up before live events."""
    manager = core.globals.job_manager
    loader = core.globals.engine_loader
    return {
        "event": "snapshot",
        "engine_state": loader.state.value,
        "jobs": [job.to_dict() for job in manager.list_jobs()],
        "summary": manager.summary(),
    }

class ProgressHub:
    """Fans job manager events out to every subscribed client."""

    def __init__(self):
        self.subscribers: List[WebSocket] = []

    async def subscribe(self, websocket: WebSocket):
        await websocket.accept()
        await websocket.send_json(queue_snapshot())
        self.subscribers.append(websocket)

    def unsubscribe(self, websocket: WebSocket):
        if websocket in self.subscribers:
            self.subscribers.remove(websocket)

    async def broadcast(self, message: dict):
        for subscriber in list(self.subscribers):
            try:
                await subscriber.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping progress subscriber after send error: {e}")
                self.unsubscribe(subscriber)

ws_manager = ProgressHub()

@router.websocket("/ws/progress")
async def websocket_progress(websocket: WebSocket):
    await ws_manager.subscribe(websocket)
    try:
        while True:
            # Clients never send anything; receiving only detects disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        ws_manager.unsubscribe(websocket)
    except Exception as e:
        logger.error(f"Progress socket error: {e}")
        ws_manager.unsubscribe(websocket)
