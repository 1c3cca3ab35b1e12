"""GridCast — Viewer WebSocket Endpoint.

Inbound:  ``{"type": "subscribe", "layoutId": "<id>"}``
Outbound: ``{"type": "<updateKind>", "data": <full record>}``, plus one
``layoutData`` snapshot of the current layout after each subscribe.
"""

import asyncio
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from gridcast.realtime.hub import BroadcastHub, ViewerSession
from gridcast.core.logging import get_logger

logger = get_logger("api.ws")

router = APIRouter(tags=["Realtime"])


async def _send_snapshot(
    websocket: WebSocket, hub: BroadcastHub, session: ViewerSession, layout_id: str
) -> None:
    store = getattr(websocket.app.state, "layout_store", None)
    if store is None:
        return
    try:
        layout = await asyncio.to_thread(store.get_layout, layout_id)
    except Exception as e:
        logger.warning(
            f"Could not load layout snapshot: {e}",
            extra={"session_id": session.session_id, "layout_id": layout_id},
        )
        return
    if layout is not None and session.subscribed_layout_id == layout_id:
        hub.deliver(session, {"type": "layoutData", "data": layout.to_record()})


@router.websocket("/ws")
async def viewer_socket(websocket: WebSocket):
    """One viewer connection: register, subscribe on request, stream updates."""
    hub: BroadcastHub = websocket.app.state.hub
    await websocket.accept()
    session = hub.connect(websocket.send_json)
    writer = asyncio.create_task(hub.pump(session))

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                logger.warning(
                    "Ignoring non-JSON message", extra={"session_id": session.session_id}
                )
                continue

            if not isinstance(message, dict):
                message = {}
            layout_id = message.get("layoutId")
            if message.get("type") == "subscribe" and isinstance(layout_id, str) and layout_id:
                if hub.subscribe(session, layout_id):
                    await _send_snapshot(websocket, hub, session, layout_id)
            else:
                logger.warning(
                    f"Ignoring unsupported message: {raw[:200]}",
                    extra={"session_id": session.session_id},
                )
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(session)
        writer.cancel()
        await asyncio.gather(writer, return_exceptions=True)
