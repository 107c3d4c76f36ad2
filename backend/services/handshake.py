"""
Correlation-id request/response with the external renderer.

`request` publishes a payload tagged with an id, then waits on a one-shot
subscription to the matching result channel. A timer runs alongside; the
first of (matching response, timer) settles the wait exactly once and both
registrations are removed on every path.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

from domain.errors import HandshakeTimeoutError
from domain.models import TextLayer
from services.renderer_bus import GEN_MAIN_IMG_SHADOW, GEN_TEXT_IMG, RendererBus, result_channel

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 20.0


async def request(
    bus: RendererBus,
    channel: str,
    payload: Dict[str, Any],
    request_id: str,
    timeout: float = DEFAULT_TIMEOUT_SEC,
    *,
    timeout_message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Publish `payload` on `channel` and wait for the response carrying `request_id`.

    Args:
        bus: Channel object shared with the renderer
        channel: Request channel; the response is expected on result_channel(channel)
        payload: Request body; `id` is set to request_id
        request_id: Correlation id (the job id)
        timeout: Seconds to wait before giving up
        timeout_message: Message for the timeout error

    Returns:
        The response payload.

    Raises:
        HandshakeTimeoutError: if no matching response arrived in time
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()
    response_channel = result_channel(channel)

    def _settle(response: Dict[str, Any]) -> None:
        if not future.done():
            future.set_result(response)

    def _on_response(response: Dict[str, Any]) -> None:
        if not isinstance(response, dict) or response.get("id") != request_id:
            return
        # Responses may be delivered from another thread
        loop.call_soon_threadsafe(_settle, response)

    def _expire() -> None:
        if future.done():
            return
        message = timeout_message or f"{channel} timed out"
        logger.error("[%s] %s after %.1fs", request_id, message, timeout)
        future.set_exception(HandshakeTimeoutError(
            message,
            details={"id": request_id, "channel": channel, "timeout": timeout},
        ))

    bus.subscribe(response_channel, _on_response)
    timer = loop.call_later(timeout, _expire)
    try:
        bus.publish(channel, {**payload, "id": request_id})
        return await future
    finally:
        timer.cancel()
        bus.unsubscribe(response_channel, _on_response)


def decode_data_url(data: str) -> bytes:
    """Decode `data:image/...;base64,<payload>` (or bare base64) into bytes."""
    if not isinstance(data, str) or not data:
        raise ValueError("image payload is empty")
    encoded = data.split(",", 1)[1] if data.startswith("data:") else data
    try:
        return base64.b64decode(encoded, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"image payload is not valid base64: {exc}") from exc


def encode_data_url(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


async def fetch_text_images(
    bus: RendererBus,
    request_id: str,
    payload: Dict[str, Any],
    timeout: float = DEFAULT_TIMEOUT_SEC,
) -> List[TextLayer]:
    """Ask the renderer for the text bitmaps, in the caller's authored order."""
    response = await request(
        bus, GEN_TEXT_IMG, payload, request_id, timeout,
        timeout_message="text generation timed out",
    )
    layers: List[TextLayer] = []
    for item in response.get("textImgList") or []:
        layers.append(TextLayer(
            data=decode_data_url(item.get("data", "")),
            w=int(item.get("w") or 0),
            h=float(item.get("h") or 0),
        ))
    return layers


async def fetch_shadow_mask(
    bus: RendererBus,
    request_id: str,
    payload: Dict[str, Any],
    timeout: float = DEFAULT_TIMEOUT_SEC,
) -> bytes:
    """Ask the renderer for the shadow/cutout mask; returns encoded PNG bytes."""
    response = await request(
        bus, GEN_MAIN_IMG_SHADOW, payload, request_id, timeout,
        timeout_message="shadow generation timed out",
    )
    return decode_data_url(response.get("data", ""))
