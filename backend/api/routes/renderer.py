"""
Websocket endpoint for an external renderer (the GUI's content process).

Requests published on the bus are forwarded as `{channel, payload}` frames;
frames sent back on a response channel are delivered to the waiting job.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from services.renderer_bus import RESULT_SUFFIX, RendererBus

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/renderer")
async def renderer_socket(websocket: WebSocket):
    await websocket.accept()
    bus: RendererBus = websocket.app.state.bus

    async def forward(channel: str, payload: Dict[str, Any]) -> None:
        await websocket.send_json({"channel": channel, "payload": payload})

    bus.attach(forward)
    logger.info("renderer connected (%s sinks)", bus.sink_count)
    try:
        while True:
            frame = await websocket.receive_json()
            channel = frame.get("channel") if isinstance(frame, dict) else None
            if not channel or not channel.endswith(RESULT_SUFFIX):
                logger.warning("ignoring renderer frame on %r", channel)
                continue
            bus.deliver(channel, frame.get("payload") or {})
    except WebSocketDisconnect:
        logger.info("renderer disconnected")
    finally:
        bus.detach(forward)
