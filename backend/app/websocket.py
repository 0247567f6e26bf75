# backend/app/websocket.py
from fastapi import Request, WebSocket
from fastapi.encoders import jsonable_encoder
from typing import Any, Dict, List
import logging
import asyncio

logger = logging.getLogger(__name__)

# Event types pushed to browser clients
GAUGE_CREATED = "gauge_created"
GAUGE_UPDATED = "gauge_updated"
GAUGE_DELETED = "gauge_deleted"
GAUGES_IMPORTED = "gauges_imported"
ALERT_CREATED = "alert_created"
ALERT_ACKNOWLEDGED = "alert_acknowledged"
THRESHOLDS_UPDATED = "thresholds_updated"
BATCH_UPDATE = "batch_update"


class ConnectionManager:
    """
    Fan-out broadcaster. One instance lives on ``app.state.ws_manager``.

    gauge_updated events are coalesced per gauge and flushed as a single
    batch_update every ``flush_interval`` seconds; everything else is sent
    immediately.
    """

    def __init__(self, flush_interval: float = 0.5):
        self.active_connections: List[WebSocket] = []
        self.flush_interval = flush_interval
        self.message_buffer: Dict[str, dict] = {}
        self.buffer_task = None

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"✅ WebSocket connected. Total: {len(self.active_connections)}")

        if self.buffer_task is None or self.buffer_task.done():
            self.buffer_task = asyncio.create_task(self._flush_buffer_periodically())

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
            logger.info(f"❌ WebSocket disconnected. Total: {len(self.active_connections)}")

        if not self.active_connections:
            self.message_buffer.clear()
            if self.buffer_task is not None and not self.buffer_task.done():
                self.buffer_task.cancel()

    async def broadcast(self, event_type: str, data: Any):
        if not self.active_connections:
            return
        message = {"type": event_type, "data": jsonable_encoder(data)}

        if event_type == GAUGE_UPDATED:
            gauge_id = data.get("gauge_id") if isinstance(data, dict) else None
            self.message_buffer[f"gauge_{gauge_id}"] = message
            return

        await self._send_to_all(message)

    async def flush(self):
        if not self.message_buffer:
            return
        messages_to_send = list(self.message_buffer.values())
        self.message_buffer.clear()
        await self._send_to_all({"type": BATCH_UPDATE, "data": messages_to_send})

    async def _flush_buffer_periodically(self):
        while self.active_connections:
            try:
                await asyncio.sleep(self.flush_interval)
                await self.flush()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"❌ Error in buffer flush: {e}")

    async def _send_to_all(self, message: dict):
        disconnected = []
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.error(f"❌ WS send error: {e}")
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn)

    async def close(self):
        if self.buffer_task is not None and not self.buffer_task.done():
            self.buffer_task.cancel()
            try:
                await self.buffer_task
            except asyncio.CancelledError:
                pass
        self.message_buffer.clear()

    def status(self) -> dict:
        return {"connections": len(self.active_connections), "buffered": len(self.message_buffer)}


def get_ws_manager(request: Request) -> ConnectionManager:
    return request.app.state.ws_manager
