"""
Crop-and-split for grid posts.

Crops a photo to a target aspect ratio (centered, or a caller-supplied
rectangle that already has the right ratio) and cuts it into equal vertical
slices; the last slice absorbs the width remainder.
"""
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from PIL import Image, ImageOps

from domain.errors import ValidationError
from domain.models import CropMode, CropModeDef, CropRect
from services.geometry import approx_eq, clamp_int, round_half_up
from services.size_negotiator import read_oriented_size

logger = logging.getLogger(__name__)

DEFAULT_QUALITY = 92
ALLOWED_PARTS = (2, 3)
RATIO_TOLERANCE = 1e-3

# two 3:4 portrait slices stitch back into a 3:2 crop
MODE_DEFS: Dict[CropMode, CropModeDef] = {
    CropMode.TWO_3X4: CropModeDef(crop_w=3, crop_h=2, parts=2),
    CropMode.THREE_3X5: CropModeDef(crop_w=9, crop_h=5, parts=3),
    CropMode.CUSTOM: CropModeDef(crop_w=9, crop_h=5, parts=3),
}


def _finite(value: Any) -> Optional[float]:
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    return n if math.isfinite(n) else None


def resolve_mode_def(
    mode: Union[CropMode, str],
    crop_w: Any = None,
    crop_h: Any = None,
    parts: Any = None,
) -> CropModeDef:
    """
    Look up a built-in mode, or validate the caller's values for `custom`.

    Raises:
        ValidationError: unknown mode, or custom values out of range
    """
    try:
        mode = CropMode(mode)
    except ValueError:
        raise ValidationError(f"cropSplit: unknown mode {mode!r}", details={"mode": mode})

    if mode is not CropMode.CUSTOM:
        return MODE_DEFS[mode]

    w, h, n = _finite(crop_w), _finite(crop_h), _finite(parts)
    if w is None or w <= 0:
        raise ValidationError("cropSplit: cropW is invalid", details={"cropW": crop_w})
    if h is None or h <= 0:
        raise ValidationError("cropSplit: cropH is invalid", details={"cropH": crop_h})
    if n not in ALLOWED_PARTS:
        raise ValidationError("cropSplit: parts must be 2 or 3", details={"parts": parts})
    return CropModeDef(crop_w=w, crop_h=h, parts=int(n))


def center_crop_rect(width: int, height: int, target_ratio: float) -> CropRect:
    """Largest centered rectangle of `target_ratio`, shrinking the overshooting axis."""
    if width <= 0 or height <= 0:
        return CropRect(left=0, top=0, width=0, height=0)

    cw, ch = width, height
    if width / height > target_ratio:
        cw = round_half_up(height * target_ratio)
    else:
        ch = round_half_up(width / target_ratio)

    cw = clamp_int(cw, 1, width)
    ch = clamp_int(ch, 1, height)
    return CropRect(
        left=clamp_int(math.floor((width - cw) / 2), 0, width - cw),
        top=clamp_int(math.floor((height - ch) / 2), 0, height - ch),
        width=cw,
        height=ch,
    )


def clamp_extract_rect(width: int, height: int, rect: Dict[str, Any]) -> CropRect:
    """Round the caller's rectangle and pull it inside the image."""
    w = clamp_int(round_half_up(float(rect.get("width") or 0)), 1, width)
    h = clamp_int(round_half_up(float(rect.get("height") or 0)), 1, height)
    return CropRect(
        left=clamp_int(round_half_up(float(rect.get("left") or 0)), 0, width - w),
        top=clamp_int(round_half_up(float(rect.get("top") or 0)), 0, height - h),
        width=w,
        height=h,
    )


def choose_crop_rect(
    width: int,
    height: int,
    target_ratio: float,
    crop_rect: Optional[Dict[str, Any]] = None,
) -> CropRect:
    """The caller's rectangle when its ratio matches, else the centered one."""
    crop = center_crop_rect(width, height, target_ratio)
    if crop_rect:
        candidate = clamp_extract_rect(width, height, crop_rect)
        if approx_eq(candidate.width / candidate.height, target_ratio, RATIO_TOLERANCE):
            return candidate
        logger.info(
            "crop rect %sx%s does not match ratio %.4f, using centered crop",
            candidate.width, candidate.height, target_ratio,
        )
    return crop


def split_widths(total_width: int, parts: int) -> List[int]:
    """Equal slice widths; the last one takes the remainder so they sum to total_width."""
    part_w = total_width // parts
    return [part_w] * (parts - 1) + [total_width - part_w * (parts - 1)]


def crop_split(
    path: Union[str, Path, None],
    output_dir: Union[str, Path, None],
    mode: Union[CropMode, str, None],
    crop_w: Any = None,
    crop_h: Any = None,
    parts: Any = None,
    crop_rect: Optional[Dict[str, Any]] = None,
    quality: Any = None,
) -> List[str]:
    """
    Crop `path` to the mode's ratio and write its slices to output_dir.

    Args:
        path: Source photo
        output_dir: Destination directory, created when missing
        mode: "two_3x4", "three_3x5" or "custom"
        crop_w, crop_h, parts: Ratio and slice count for custom mode
        crop_rect: Optional {left, top, width, height} in oriented pixels
        quality: JPEG quality (default 92)

    Returns:
        Written paths, left to right, named `<name>_part_<i>_of_<parts>.jpg`.

    Raises:
        ValidationError: missing inputs, bad custom values, unreadable image
    """
    if not path:
        raise ValidationError("cropSplit: path is required")
    if not output_dir:
        raise ValidationError("cropSplit: outputDir is required")
    if not mode:
        raise ValidationError("cropSplit: mode is required")

    src = Path(path)
    if not src.exists():
        raise ValidationError("cropSplit: file not exists", details={"path": str(src)})
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    mode_def = resolve_mode_def(mode, crop_w, crop_h, parts)
    target_ratio = mode_def.crop_w / mode_def.crop_h
    q = _finite(quality)
    q = DEFAULT_QUALITY if q is None else int(q)

    try:
        width, height = read_oriented_size(src)
    except Exception as exc:
        raise ValidationError("cropSplit: unable to read image size", details={"path": str(src)}) from exc
    if not width or not height:
        raise ValidationError("cropSplit: unable to read image size", details={"path": str(src)})

    crop = choose_crop_rect(width, height, target_ratio, crop_rect)

    with Image.open(src) as raw:
        img = ImageOps.exif_transpose(raw)
        img.load()
    if img.mode != "RGB":
        img = img.convert("RGB")
    cropped = img.crop((crop.left, crop.top, crop.left + crop.width, crop.top + crop.height))

    out_paths: List[str] = []
    left = 0
    for i, w in enumerate(split_widths(crop.width, mode_def.parts), start=1):
        piece = cropped.crop((left, 0, left + w, crop.height))
        out_path = out_dir / f"{src.stem}_part_{i}_of_{mode_def.parts}.jpg"
        piece.save(out_path, format="JPEG", quality=q)
        out_paths.append(str(out_path))
        left += w

    logger.info("split %s into %s slices (%sx%s crop)", src.name, mode_def.parts, crop.width, crop.height)
    return out_paths
