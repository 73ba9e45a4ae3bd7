"""
WebSocket Routes for Real-time Run Streaming.

Streams a run's history entries as they are appended.
"""

from typing import Dict, Set
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import asyncio
import logging

from callflow.api.schemas import HistoryEntryResponse, RunResponse
from callflow.service import workflow_engine


logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])

POLL_INTERVAL_SECONDS = 0.1


class ConnectionManager:
    """Tracks WebSocket subscribers per run."""

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, run_id: str):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        self.active_connections.setdefault(run_id, set()).add(websocket)
        logger.info(f"WebSocket connected for run: {run_id}")

    def disconnect(self, websocket: WebSocket, run_id: str):
        """Remove a WebSocket connection."""
        if run_id in self.active_connections:
            self.active_connections[run_id].discard(websocket)
            if not self.active_connections[run_id]:
                del self.active_connections[run_id]
        logger.info(f"WebSocket disconnected for run: {run_id}")

    def __len__(self) -> int:
        return sum(len(connections) for connections in self.active_connections.values())


# Global connection manager
manager = ConnectionManager()


@router.websocket("/ws/runs/{run_id}")
async def websocket_subscribe(websocket: WebSocket, run_id: str):
    """
    Subscribe to a run's history.

    Entries already recorded are sent first, then new entries as they are
    appended. A final `completed` message carries the run's terminal state.

    Message format (server -> client):
    ```json
    {"type": "entry", "seq": 3, "step_name": "AnalyzeConnection", "event_kind": "step_succeeded", ...}
    {"type": "completed", "run": {"run_id": "...", "status": "succeeded", ...}}
    ```
    """
    stored = await workflow_engine.runs.get(run_id)
    if not stored:
        await websocket.close(code=4004, reason=f"Run '{run_id}' not found")
        return

    await manager.connect(websocket, run_id)
    sent = 0

    try:
        while True:
            entries = await workflow_engine.history(run_id)
            for entry in entries[sent:]:
                await websocket.send_json({
                    "type": "entry",
                    **HistoryEntryResponse.from_entry(entry).model_dump(mode="json"),
                })
            sent = len(entries)

            summary = await workflow_engine.status(run_id)
            if summary.status.is_terminal and not workflow_engine.is_active(run_id):
                # Pick up entries recorded between the two reads
                entries = await workflow_engine.history(run_id)
                for entry in entries[sent:]:
                    await websocket.send_json({
                        "type": "entry",
                        **HistoryEntryResponse.from_entry(entry).model_dump(mode="json"),
                    })
                await websocket.send_json({
                    "type": "completed",
                    "run": RunResponse.from_summary(summary).model_dump(mode="json"),
                })
                break

            await asyncio.sleep(POLL_INTERVAL_SECONDS)

    except WebSocketDisconnect:
        logger.info(f"Subscriber disconnected from run {run_id}")
    finally:
        manager.disconnect(websocket, run_id)
