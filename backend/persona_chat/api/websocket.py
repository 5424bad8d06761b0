from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

router = APIRouter()


class WebSocketManager:
    """Manage active WebSocket connections per delivery channel."""

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, channel_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.setdefault(channel_id, set()).add(websocket)

    async def disconnect(self, channel_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            connections = self._connections.get(channel_id)
            if not connections:
                return
            connections.discard(websocket)
            if not connections:
                self._connections.pop(channel_id, None)

    async def broadcast(self, channel_id: str, payload: dict) -> None:
        async with self._lock:
            connections = list(self._connections.get(channel_id, set()))
        if not connections:
            return
        stale: list[WebSocket] = []
        for websocket in connections:
            try:
                await websocket.send_json(payload)
            except Exception:  # noqa: BLE001
                stale.append(websocket)
        for websocket in stale:
            await self.disconnect(channel_id, websocket)

    def subscriber_count(self, channel_id: str) -> int:
        return len(self._connections.get(channel_id, ()))


def get_ws_manager(websocket: WebSocket) -> WebSocketManager:
    """Dependency to access the WebSocket manager from app state."""

    return websocket.app.state.ws_manager


@router.websocket("/ws/{channel_id}")
async def ws_channel(
    websocket: WebSocket,
    channel_id: str,
    manager: WebSocketManager = Depends(get_ws_manager),
) -> None:
    """WebSocket endpoint for paced reply delivery."""

    await manager.connect(channel_id, websocket)
    await websocket.send_json({"event": "subscribed", "channel_id": channel_id})
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await manager.disconnect(channel_id, websocket)
