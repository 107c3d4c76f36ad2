"""
Background canvas rendering: blurred duplicate of the source photo, or a
solid fill.
"""
import logging
from pathlib import Path
from typing import Union

from PIL import Image, ImageColor, ImageFilter, ImageOps

logger = logging.getLogger(__name__)

# The source is normalized to a fixed working square so the blur radius
# looks the same regardless of the photo's resolution.
BLUR_WORK_SIZE = 3025
BLUR_RADIUS = 200
FAST_BLUR_RADIUS = 30
FAST_BLUR_QUALITY = 60


def _open_oriented(path: Union[str, Path]) -> Image.Image:
    with Image.open(path) as src:
        img = ImageOps.exif_transpose(src)
        img.load()
    return img.convert("RGB")


def render_solid_background(width: int, height: int, out_path: Union[str, Path], color: str = "#fff") -> Path:
    try:
        fill = ImageColor.getrgb(color or "#fff")
    except ValueError:
        logger.warning("invalid solid background color %r, using white", color)
        fill = (255, 255, 255)
    img = Image.new("RGB", (width, height), fill[:3])
    out = Path(out_path)
    img.save(out, format="JPEG", quality=95)
    return out


def render_blur_background(source_path: Union[str, Path], width: int, height: int, out_path: Union[str, Path]) -> Path:
    """Full-fidelity blurred background stretched to width x height."""
    img = _open_oriented(source_path)
    work = img.resize((BLUR_WORK_SIZE, BLUR_WORK_SIZE), resample=Image.Resampling.BILINEAR)
    # Two box passes approximate the heavy luma/chroma box blur
    work = work.filter(ImageFilter.BoxBlur(BLUR_RADIUS)).filter(ImageFilter.BoxBlur(BLUR_RADIUS))
    bg = work.resize((width, height), resample=Image.Resampling.LANCZOS)
    out = Path(out_path)
    bg.save(out, format="JPEG", quality=95)
    return out


def render_blur_background_fast(source_path: Union[str, Path], width: int, height: int, out_path: Union[str, Path]) -> Path:
    """Preview background: resize straight to the target size, then blur."""
    img = _open_oriented(source_path)
    bg = img.resize((width, height), resample=Image.Resampling.BILINEAR)
    bg = bg.filter(ImageFilter.GaussianBlur(radius=FAST_BLUR_RADIUS))
    out = Path(out_path)
    bg.save(out, format="JPEG", quality=FAST_BLUR_QUALITY)
    return out
