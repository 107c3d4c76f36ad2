"""
Size negotiation.

Derives the working pixel dimensions of a source photo (orientation
corrected), the aspect-adjusted "reset" size requested by the layout
options, and the background canvas size built from them.
"""
import logging
import math
from pathlib import Path
from typing import Optional, Tuple, Union

from PIL import Image

from domain.models import LayerBox, SizeInfo, WatermarkOptions
from services.geometry import round_half_up

logger = logging.getLogger(__name__)

# EXIF orientations that rotate the image by 90 or 270 degrees
_TRANSPOSED_ORIENTATIONS = (5, 6, 7, 8)
_EXIF_ORIENTATION_TAG = 0x0112


def read_oriented_size(path: Union[str, Path]) -> Tuple[int, int]:
    """
    Return (width, height) as displayed, i.e. after applying EXIF orientation.

    Only the header is read; pixel data is not decoded.
    """
    with Image.open(path) as img:
        w, h = img.size
        try:
            orientation = img.getexif().get(_EXIF_ORIENTATION_TAG, 1)
        except Exception:
            orientation = 1
    if orientation in _TRANSPOSED_ORIENTATIONS:
        return h, w
    return w, h


def negotiate_size(width: int, height: int, options: WatermarkOptions) -> SizeInfo:
    """
    Build SizeInfo for an orientation-corrected photo.

    Only one axis is adjusted for the background rate: the longer source
    dimension is preserved. Landscape output swaps the reset size when it is
    taller than wide.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"image size must be positive, got {width}x{height}")

    reset_w, reset_h = width, height
    rate_w, rate_h = options.bg_rate.w, options.bg_rate.h
    if options.bg_rate_show and rate_w > 0 and rate_h > 0:
        rate = rate_w / rate_h
        if width >= height:
            reset_h = round_half_up(width / rate)
        else:
            reset_w = round_half_up(height * rate)

    if options.landscape and reset_w < reset_h:
        reset_w, reset_h = reset_h, reset_w

    return SizeInfo(w=width, h=height, reset_w=max(1, reset_w), reset_h=max(1, reset_h))


def scale_for_preview(size_info: SizeInfo, target_max: int) -> Tuple[SizeInfo, float]:
    """
    Scale every SizeInfo field so the longest one is at most target_max.

    Returns the (possibly new) SizeInfo and the scale applied, which is never
    above 1.
    """
    base_max = max(size_info.w, size_info.h, size_info.reset_w, size_info.reset_h)
    scale = min(1.0, target_max / base_max) if base_max else 1.0
    if scale >= 1:
        return size_info, 1.0

    def _s(v: int) -> int:
        return max(1, round_half_up(v * scale))

    scaled = SizeInfo(
        w=_s(size_info.w),
        h=_s(size_info.h),
        reset_w=_s(size_info.reset_w),
        reset_h=_s(size_info.reset_h),
    )
    logger.debug(
        "preview scale %.4f: %sx%s -> %sx%s",
        scale, size_info.w, size_info.h, scaled.w, scaled.h,
    )
    return scaled, scale


def calc_bg_size(size_info: SizeInfo, options: WatermarkOptions, height: Optional[float] = None) -> LayerBox:
    """
    Compute the background canvas size.

    Args:
        size_info: Working dimensions of the main photo
        options: Layout options (uses main_img_w_rate)
        height: Required content height; when omitted the taller of the photo
            and the reset height is used

    Returns:
        LayerBox with the background width and height
    """
    bg_h: float = size_info.reset_h
    wh_rate = size_info.reset_w / size_info.reset_h

    if height:
        bg_h = height
    else:
        bg_h = max(size_info.h, bg_h)
    bg_w = math.ceil(bg_h * wh_rate)

    # Background too narrow for the photo: grow both sides proportionally
    main_w_rate = (options.main_img_w_rate or 90) / 100
    if size_info.w / bg_w > main_w_rate:
        bg_w = math.ceil(size_info.w / main_w_rate)
        bg_h = math.ceil(bg_w / wh_rate)

    return LayerBox(w=int(bg_w), h=int(math.ceil(bg_h)))
