"""
ws_local.py - Local WebSocket Bridge for the status panel

Pushes the enforcement status snapshot to local clients (the status panel
page, technician tools). The snapshot is read from the local store, where
the enforcement loop publishes it after every cycle.
"""

import asyncio
import websockets
import json
import logging
from typing import Set

from ..services.local_store import get_local_store

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("LocalBridge")

BROADCAST_INTERVAL = 1.0

# Connected clients
clients: Set = set()


def build_status_message(store=None) -> str:
    store = store or get_local_store()
    snapshot = store.get_status_snapshot() or {}
    return json.dumps({
        "type": "status",
        "data": {
            "kiosk": snapshot,
            "pending_sync_count": store.get_pending_count(),
            "message": "Connected to Local Bridge"
        }
    })


async def broadcast_status(store=None):
    """Broadcast current status to all connected clients."""
    if not clients:
        return

    status_msg = build_status_message(store)
    await asyncio.gather(
        *[client.send(status_msg) for client in list(clients)],
        return_exceptions=True
    )


async def handle_message(websocket, message: str, store=None):
    """Answers one client message."""
    store = store or get_local_store()
    try:
        data = json.loads(message)
    except json.JSONDecodeError:
        logger.error("Invalid JSON received")
        await websocket.send(json.dumps({
            "type": "error",
            "error": "Invalid JSON format"
        }))
        return

    msg_type = data.get("type")
    logger.debug(f"Received: {msg_type}")

    if msg_type == "get_status":
        await websocket.send(build_status_message(store))

    elif msg_type == "get_recent_logs":
        limit = data.get("limit", 20)
        if not isinstance(limit, int) or limit < 1:
            limit = 20
        await websocket.send(json.dumps({
            "type": "recent_logs",
            "logs": store.get_recent_logs(min(limit, 200))
        }))

    elif msg_type == "ping":
        await websocket.send(json.dumps({
            "type": "pong",
            "timestamp": data.get("timestamp")
        }))

    else:
        logger.warning(f"Unknown message type: {msg_type}")
        await websocket.send(json.dumps({
            "type": "error",
            "error": f"Unknown message type: {msg_type}"
        }))


async def handler(websocket):
    """Handles WebSocket connections from local clients."""
    logger.info(f"Client connected: {websocket.remote_address}")
    clients.add(websocket)

    try:
        await websocket.send(build_status_message())

        async for message in websocket:
            await handle_message(websocket, message)

    except websockets.exceptions.ConnectionClosed:
        logger.info("Client disconnected")
    finally:
        clients.discard(websocket)


async def _broadcast_forever(interval: float):
    last_sent = None
    while True:
        await asyncio.sleep(interval)
        if not clients:
            continue
        try:
            message = build_status_message()
        except Exception as e:
            logger.error(f"Could not read status snapshot: {e}")
            continue
        if message != last_sent:
            await broadcast_status()
            last_sent = message


async def start_local_bridge(port: int = 8002, interval: float = BROADCAST_INTERVAL):
    """
    Start the Local WebSocket Bridge server.

    Args:
        port: Port to listen on (default: 8002)
        interval: Seconds between status snapshot checks
    """
    async with websockets.serve(handler, "0.0.0.0", port):
        logger.info(f"Local WebSocket Bridge started on ws://0.0.0.0:{port}")
        await _broadcast_forever(interval)


if __name__ == "__main__":
    import sys
    port = int(sys.argv[1]) if len(sys.argv) > 1 else 8002
    try:
        asyncio.run(start_local_bridge(port))
    except KeyboardInterrupt:
        pass
