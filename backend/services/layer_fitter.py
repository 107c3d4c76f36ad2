"""
Layer fitting ("ensure fit to background").

Guarantees a layer never exceeds the background bounds before it is
composited. Fitting is an ordered list of strategies; each one either
returns a FitOutcome or None to hand over to the next:

1. forced      - preview: always resize inside the bounds, never enlarging
2. conditional - export: probe the real size, pass through when it fits,
                 otherwise resize and warn
3. probe_failed - the size probe failed and no resize was tried yet:
                 resize anyway
4. passthrough - give the original bytes back with size 0 ("unknown")
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from PIL import Image, ImageOps

from domain.models import FitOutcome
from services.geometry import fit_inside

logger = logging.getLogger(__name__)

LayerInput = Union[bytes, str, Path]


@dataclass
class FitRequest:
    data: bytes
    max_w: int
    max_h: int
    force: bool = False
    label: str = "layer"
    job_id: str = ""
    # Set once the conditional probe has failed
    probe_failed: bool = False
    # Set once resize_inside has raised on this data
    resize_failed: bool = False


FitStrategy = Callable[[FitRequest], Optional[FitOutcome]]


def load_layer_bytes(source: LayerInput) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    return Path(source).read_bytes()


def probe_size(data: bytes) -> Optional[Tuple[int, int]]:
    """Orientation-corrected (width, height) of encoded image data, or None."""
    try:
        with Image.open(BytesIO(data)) as img:
            w, h = img.size
            orientation = img.getexif().get(0x0112, 1)
        if orientation in (5, 6, 7, 8):
            w, h = h, w
        return w, h
    except Exception:
        return None


def encode_like_source(img: Image.Image, source_format: Optional[str], quality: int = 95) -> bytes:
    """Encode as PNG when the source was PNG or carries alpha, JPEG otherwise."""
    buf = BytesIO()
    if source_format == "PNG" or img.mode in ("RGBA", "LA", "P"):
        img.save(buf, format="PNG")
    else:
        if img.mode != "RGB":
            img = img.convert("RGB")
        img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def resize_inside(data: bytes, max_w: int, max_h: int) -> FitOutcome:
    """
    Orientation-correct and shrink `data` to fit inside max_w x max_h.

    Raises whatever the codec raises for undecodable data.
    """
    with Image.open(BytesIO(data)) as src:
        source_format = src.format
        img = ImageOps.exif_transpose(src)
        img.load()
    new_w, new_h = fit_inside(img.width, img.height, max_w, max_h)
    resized = (new_w, new_h) != img.size
    if resized:
        img = img.resize((new_w, new_h), resample=Image.Resampling.LANCZOS)
    return FitOutcome(
        data=encode_like_source(img, source_format),
        width=img.width,
        height=img.height,
        resized=resized,
    )


def _forced(req: FitRequest) -> Optional[FitOutcome]:
    if not req.force:
        return None
    try:
        outcome = resize_inside(req.data, req.max_w, req.max_h)
    except Exception as exc:
        logger.warning("[%s] %s forced fit failed: %s", req.job_id, req.label, exc)
        req.resize_failed = True
        return None
    outcome.strategy = "forced"
    return outcome


def _conditional(req: FitRequest) -> Optional[FitOutcome]:
    if req.force or req.probe_failed:
        return None
    size = probe_size(req.data)
    if size is None:
        logger.warning("[%s] %s size probe failed, falling back to forced fit", req.job_id, req.label)
        req.probe_failed = True
        return None
    w, h = size
    if w <= req.max_w and h <= req.max_h:
        return FitOutcome(data=req.data, width=w, height=h, resized=False, strategy="conditional")

    logger.warning(
        "[%s] %s exceeds background, resizing: %sx%s -> <=%sx%s",
        req.job_id, req.label, w, h, req.max_w, req.max_h,
    )
    try:
        outcome = resize_inside(req.data, req.max_w, req.max_h)
    except Exception as exc:
        logger.warning("[%s] %s resize failed: %s", req.job_id, req.label, exc)
        req.resize_failed = True
        return None
    outcome.strategy = "conditional"
    return outcome


def _probe_failed(req: FitRequest) -> Optional[FitOutcome]:
    if not req.probe_failed or req.resize_failed:
        return None
    try:
        outcome = resize_inside(req.data, req.max_w, req.max_h)
    except Exception as exc:
        logger.warning("[%s] %s resize after failed probe failed: %s", req.job_id, req.label, exc)
        req.resize_failed = True
        return None
    outcome.strategy = "probe_failed"
    return outcome


def _passthrough(req: FitRequest) -> Optional[FitOutcome]:
    logger.warning("[%s] %s could not be measured or resized, passing through", req.job_id, req.label)
    return FitOutcome(data=req.data, width=0, height=0, resized=False, strategy="passthrough")


STRATEGIES: List[FitStrategy] = [_forced, _conditional, _probe_failed, _passthrough]


def fit_to_bounds(
    source: LayerInput,
    max_w: int,
    max_h: int,
    *,
    force: bool = False,
    label: str = "layer",
    job_id: str = "",
) -> FitOutcome:
    """
    Make sure a layer fits inside max_w x max_h.

    Args:
        source: Encoded image bytes or a path to an image file
        max_w: Maximum width in pixels
        max_h: Maximum height in pixels
        force: Resize unconditionally instead of trusting the probed size
        label: Layer name for log messages
        job_id: Owning job id for log messages

    Returns:
        FitOutcome; width/height of 0 means the size is unknown and the
        original bytes were passed through.

    Raises:
        OSError: if `source` is a path that cannot be read
    """
    req = FitRequest(
        data=load_layer_bytes(source),
        max_w=max(1, int(max_w)),
        max_h=max(1, int(max_h)),
        force=force,
        label=label,
        job_id=job_id,
    )
    for strategy in STRATEGIES:
        outcome = strategy(req)
        if outcome is not None:
            return outcome
    # _passthrough always answers
    raise AssertionError("no fitting strategy produced an outcome")
