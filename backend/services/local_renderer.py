"""
In-process renderer for text bitmaps and the shadow/cutout mask.

Answers the same request channels a GUI content process would, so jobs
can run headless. Attach it to a RendererBus; rendering happens in a worker
thread and the result is delivered on the matching response channel.
"""
from __future__ import annotations

import asyncio
import logging
import re
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFilter, ImageFont, ImageOps

from services.exif_reader import camera_summary
from services.handshake import encode_data_url
from services.renderer_bus import GEN_MAIN_IMG_SHADOW, GEN_TEXT_IMG, RendererBus, result_channel

logger = logging.getLogger(__name__)

FONT_NAME = "DejaVuSans.ttf"
# Font sizes as a share of the background height
TITLE_FONT_RATIO = 0.024
LINE_FONT_RATIO = 0.017
MIN_FONT_SIZE = 10
LINE_HEIGHT_FACTOR = 1.6
LOGO_HEIGHT_RATIO = 0.035
TEXT_COLOR = (51, 51, 51, 255)

DEFAULT_SHADOW_PCT = 6
DEFAULT_RADIUS_PCT = 2.1
OVERLAY_ALPHA = 51

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def _load_font(size: int) -> ImageFont.ImageFont:
    try:
        return ImageFont.truetype(FONT_NAME, size)
    except Exception:
        return ImageFont.load_default(size=size)


def _measure_text(font: ImageFont.ImageFont, text: str) -> Tuple[int, int, int, int]:
    return font.getbbox(text)


def format_exif_value(key: str, value: Any) -> str:
    """Human-readable rendering of the handful of tags that need units."""
    if value is None or value == "":
        return ""
    if isinstance(value, list):
        value = value[0] if value else ""
    try:
        if key == "FNumber":
            return f"f/{float(value):g}"
        if key == "ExposureTime":
            seconds = float(value)
            if 0 < seconds < 1:
                return f"1/{round(1 / seconds)}s"
            return f"{seconds:g}s"
        if key == "FocalLength":
            return f"{float(value):g}mm"
        if key in ("ISOSpeedRatings", "PhotographicSensitivity"):
            return f"ISO{int(float(value))}"
    except (TypeError, ValueError):
        pass
    return str(value).strip()


def exposure_summary(exif: Dict[str, Any]) -> str:
    parts = [
        format_exif_value(key, exif.get(key))
        for key in ("FocalLength", "FNumber", "ExposureTime", "ISOSpeedRatings")
    ]
    return "  ".join(p for p in parts if p)


def resolve_template(template: Any, exif: Dict[str, Any]) -> str:
    """Fill `{TagName}` placeholders from the EXIF bag; unknown tags become empty."""
    if isinstance(template, dict):
        template = template.get("text") or template.get("value") or ""
    text = _PLACEHOLDER.sub(lambda m: format_exif_value(m.group(1), exif.get(m.group(1))), str(template))
    return " ".join(text.split())


def text_lines(payload: Dict[str, Any]) -> List[str]:
    """The non-empty lines to render, top to bottom."""
    exif = payload.get("exif") or {}
    temps = payload.get("temps") or []
    fields = payload.get("fields") or []
    if temps:
        lines = [resolve_template(t, exif) for t in temps]
    elif fields:
        lines = ["  ".join(
            v for v in (format_exif_value(f, exif.get(f)) for f in fields) if v
        )]
    else:
        lines = [camera_summary(exif) or "", exposure_summary(exif)]
    return [line for line in lines if line]


def _encode_png(img: Image.Image) -> bytes:
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _render_line(text: str, font_size: int) -> Image.Image:
    font = _load_font(font_size)
    left, top, right, bottom = _measure_text(font, text)
    width = max(1, right - left + 2)
    height = max(1, int(round(font_size * LINE_HEIGHT_FACTOR)))
    img = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    y = (height - (bottom - top)) / 2 - top
    draw.text((1 - left, y), text, font=font, fill=TEXT_COLOR)
    return img


def _render_logo(path: str, height: int) -> Optional[Image.Image]:
    if not path or not Path(path).exists():
        return None
    try:
        with Image.open(path) as src:
            logo = ImageOps.exif_transpose(src)
            logo.load()
    except Exception as exc:
        logger.warning("logo %s could not be read: %s", path, exc)
        return None
    logo = logo.convert("RGBA")
    width = max(1, int(round(logo.width * height / max(1, logo.height))))
    return logo.resize((width, height), resample=Image.Resampling.LANCZOS)


def render_text_images(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Render the text stack for a text request.

    Returns:
        `{id, textImgList: [{data, w, h}]}` in top-to-bottom order.
    """
    bg_height = float(payload.get("bgHeight") or 0)
    items: List[Dict[str, Any]] = []

    logo = _render_logo(payload.get("logoPath") or "", max(MIN_FONT_SIZE, int(bg_height * LOGO_HEIGHT_RATIO)))
    if logo is not None:
        items.append({"data": encode_data_url(_encode_png(logo)), "w": logo.width, "h": logo.height})

    for idx, line in enumerate(text_lines(payload)):
        ratio = TITLE_FONT_RATIO if idx == 0 else LINE_FONT_RATIO
        img = _render_line(line, max(MIN_FONT_SIZE, int(bg_height * ratio)))
        items.append({"data": encode_data_url(_encode_png(img)), "w": img.width, "h": img.height})

    return {"id": payload.get("id"), "textImgList": items}


def average_brightness(path: Optional[str]) -> Optional[float]:
    """Mean of the per-pixel RGB average (0-255), or None if unreadable."""
    if not path or not Path(path).exists():
        return None
    try:
        with Image.open(path) as src:
            img = src.convert("RGB")
            img.thumbnail((256, 256))
            arr = np.asarray(img, dtype=np.float32)
    except Exception as exc:
        logger.warning("brightness probe failed for %s: %s", path, exc)
        return None
    return float(arr.mean())


def overlay_color(brightness: float) -> Tuple[int, int, int, int]:
    """Darker backgrounds get a lighter veil so the shadow stays visible."""
    if brightness < 15:
        return (180, 180, 180, OVERLAY_ALPHA)
    if brightness < 20:
        return (158, 158, 158, OVERLAY_ALPHA)
    if brightness < 40:
        return (128, 128, 128, OVERLAY_ALPHA)
    return (0, 0, 0, OVERLAY_ALPHA)


def _rounded_rect_mask(size: Tuple[int, int], box: Tuple[float, float, float, float], radius: float) -> Image.Image:
    mask = Image.new("L", size, 0)
    draw = ImageDraw.Draw(mask)
    x0, y0, x1, y1 = box
    radius = max(0.0, min(radius, (x1 - x0) / 2, (y1 - y0) / 2))
    draw.rounded_rectangle((x0, y0, x1 - 1, y1 - 1), radius=int(radius), fill=255)
    return mask


def render_shadow_mask(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Render the mask for a shadow request.

    The mask is a bg-sized RGBA image: a translucent veil over the blurred
    background, a soft black shadow around the main photo and a transparent
    hole where the photo sits.
    """
    material = payload.get("material") or {}
    options = payload.get("options") or {}
    bg = material.get("bg") or {}
    size = (max(1, int(bg.get("w") or 1)), max(1, int(bg.get("h") or 1)))
    mains = material.get("main") or []
    main = mains[0] if mains else {}

    mask = Image.new("RGBA", size, (0, 0, 0, 0))
    if not options.get("solid_bg"):
        brightness = average_brightness(bg.get("path"))
        if brightness is not None:
            mask = Image.new("RGBA", size, overlay_color(brightness))

    main_w, main_h = float(main.get("w") or 0), float(main.get("h") or 0)
    if main_w <= 0 or main_h <= 0:
        return {"id": payload.get("id"), "data": encode_data_url(_encode_png(mask))}

    blur = main_h * ((options.get("shadow") or DEFAULT_SHADOW_PCT) / 100) if options.get("shadow_show") else 0
    x0 = float(main.get("left") or blur)
    y0 = float(main.get("top") or blur)
    box = (x0, y0, x0 + main_w, y0 + main_h)
    radius_pct = options.get("radius")
    radius_pct = DEFAULT_RADIUS_PCT if radius_pct is None else float(radius_pct)
    corner = main_h * (radius_pct / 100) if options.get("radius_show") else 0
    hole = _rounded_rect_mask(size, box, corner)

    if blur:
        # A canvas shadowBlur of b is roughly a Gaussian with sigma b/2
        shadow_alpha = hole.filter(ImageFilter.GaussianBlur(radius=blur / 2))
        shadow = Image.new("RGBA", size, (0, 0, 0, 255))
        shadow.putalpha(shadow_alpha)
        mask = Image.alpha_composite(mask, shadow)

    arr = np.array(mask)
    arr[np.asarray(hole) > 0] = 0
    mask = Image.fromarray(arr)

    return {"id": payload.get("id"), "data": encode_data_url(_encode_png(mask))}


class LocalRenderer:
    """Bus sink answering text and shadow requests with Pillow."""

    def __init__(self, bus: RendererBus) -> None:
        self.bus = bus

    def attach(self) -> "LocalRenderer":
        self.bus.attach(self.handle)
        return self

    def detach(self) -> None:
        self.bus.detach(self.handle)

    async def handle(self, channel: str, payload: Dict[str, Any]) -> None:
        if channel == GEN_TEXT_IMG:
            render = render_text_images
        elif channel == GEN_MAIN_IMG_SHADOW:
            render = render_shadow_mask
        else:
            return
        try:
            response = await asyncio.to_thread(render, payload)
        except Exception:
            # No response: the waiting job fails with a timeout
            logger.exception("[%s] local render failed on %s", payload.get("id"), channel)
            return
        self.bus.deliver(result_channel(channel), response)
