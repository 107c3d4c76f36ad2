import sys
from pathlib import Path

# Ensure the backend package root is on sys.path for direct pytest runs
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from io import BytesIO

import pytest
from PIL import Image

MAKE_TAG = 0x010F
MODEL_TAG = 0x0110
ORIENTATION_TAG = 0x0112


def image_bytes(size, color=(120, 140, 160), fmt="PNG", mode="RGB", orientation=None) -> bytes:
    img = Image.new(mode, size, color)
    buf = BytesIO()
    kwargs = {}
    if orientation is not None:
        exif = Image.Exif()
        exif[ORIENTATION_TAG] = orientation
        kwargs["exif"] = exif
    img.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


@pytest.fixture
def make_photo(tmp_path):
    """Write a synthetic JPEG (optionally with camera tags) and return its path."""
    def _make(name="photo.jpg", size=(600, 400), color=(90, 120, 150), make=None, model=None, orientation=None, dpi=None):
        img = Image.new("RGB", size, color)
        exif = Image.Exif()
        if make:
            exif[MAKE_TAG] = make
        if model:
            exif[MODEL_TAG] = model
        if orientation is not None:
            exif[ORIENTATION_TAG] = orientation
        path = tmp_path / name
        kwargs = {"exif": exif, "quality": 90}
        if dpi:
            kwargs["dpi"] = dpi
        img.save(path, format="JPEG", **kwargs)
        return path
    return _make
