"""
EXIF metadata bag.

The text renderer receives camera metadata as an opaque key/value bag; this
module only makes it JSON-safe. Nothing here interprets the values.
"""
import numbers
from pathlib import Path
from typing import Any, Dict, Optional, Union

from PIL import Image
from PIL.ExifTags import GPSTAGS, IFD, TAGS


# Binary blobs the text renderer has no use for
SKIPPED_TAGS = {"MakerNote", "PrintImageMatching", "ComponentsConfiguration", "ExifVersion", "FlashPixVersion"}
USER_COMMENT_PREFIXES = (b"ASCII\x00\x00\x00", b"UNICODE\x00", b"\x00" * 8)
MAX_BLOB_BYTES = 256


def _add_tags(bag: Dict[str, Any], tags: Dict[int, Any], names: Dict[int, str]) -> None:
    for tag_id, value in tags.items():
        name = names.get(tag_id, str(tag_id))
        if name in SKIPPED_TAGS:
            continue
        safe = to_bag_value(value)
        if safe is not None:
            bag[name] = safe


def read_exif_bag(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read EXIF tags from an image file.

    Returns:
        Dict of tag name -> JSON-safe value, plus `ImageWidth`/`ImageHeight`.
        Empty dict when the file cannot be read. Never raises.
    """
    try:
        with Image.open(path) as img:
            bag: Dict[str, Any] = {"ImageWidth": img.width, "ImageHeight": img.height}
            exif = img.getexif()
            _add_tags(bag, exif, TAGS)
            # Camera settings (exposure, lens, ISO...) live in the Exif sub-IFD
            _add_tags(bag, exif.get_ifd(IFD.Exif), TAGS)
            gps: Dict[str, Any] = {}
            _add_tags(gps, exif.get_ifd(IFD.GPSInfo), GPSTAGS)
            if gps:
                bag["GPSInfo"] = gps
            return bag
    except Exception:
        return {}


def _decode_text(raw: bytes) -> Optional[str]:
    for prefix in USER_COMMENT_PREFIXES:
        if raw.startswith(prefix):
            raw = raw[len(prefix):]
            break
    text = raw.decode("utf-8", errors="replace").strip("\x00 ")
    if len(raw) > MAX_BLOB_BYTES and "\ufffd" in text:
        return None
    return text


def to_bag_value(value: Any) -> Any:
    """
    JSON-safe form of one EXIF value.

    Rationals become floats (None for a zero denominator), byte strings are
    decoded as text and undecodable blobs are dropped (None).
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, bytes):
        return _decode_text(value)
    if isinstance(value, numbers.Rational):
        if value.denominator == 0:
            return None
        return round(float(value.numerator) / float(value.denominator), 6)
    if isinstance(value, (tuple, list)):
        return [to_bag_value(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_bag_value(v) for k, v in value.items()}
    return str(value)


def camera_summary(bag: Dict[str, Any]) -> Optional[str]:
    """'Make Model' without duplicating the make when the model repeats it."""
    make = str(bag.get("Make") or "").strip()
    model = str(bag.get("Model") or "").strip()
    if make and model:
        if make.lower() in model.lower():
            return model
        return f"{make} {model}"
    return model or make or None


def register_heif_opener() -> bool:
    """
    Register HEIF/HEIC opener with Pillow if pillow-heif is available.

    Safe to call multiple times or if pillow-heif is not installed.
    """
    try:
        from pillow_heif import register_heif_opener as _register
        _register()
        return True
    except ImportError:
        return False
