"""
Core domain models for the watermark frame compositor.
These are framework-agnostic and can be used across all services.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class JobState(str, Enum):
    """Lifecycle of a single composition job."""
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RENDERING = "rendering"
    DONE = "done"
    FAILED = "failed"


class CropMode(str, Enum):
    """Named crop-and-split modes."""
    TWO_3X4 = "two_3x4"
    THREE_3X5 = "three_3x5"
    CUSTOM = "custom"


@dataclass
class BgRate:
    """Target background aspect ratio as a width:height pair."""
    w: float = 0
    h: float = 0


@dataclass
class WatermarkOptions:
    """
    Layout options for one job.

    Mirrors the option bag shared with the external renderer, so `from_dict`
    and `to_dict` use the renderer's snake_case keys.
    """
    bg_rate_show: bool = False
    bg_rate: BgRate = field(default_factory=BgRate)
    landscape: bool = False
    main_img_w_rate: float = 90
    mini_top_bottom_margin: float = 0
    shadow_show: bool = False
    shadow: float = 0
    solid_bg: bool = False
    solid_color: str = "#fff"
    quality: int = 100
    radius_show: bool = False
    radius: float = 2.1
    # Anything the renderer needs that layout code does not interpret
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WatermarkOptions":
        data = dict(data or {})
        rate = data.pop("bg_rate", None) or {}
        known = {
            "bg_rate_show", "landscape", "main_img_w_rate", "mini_top_bottom_margin",
            "shadow_show", "shadow", "solid_bg", "solid_color", "quality",
            "radius_show", "radius",
        }
        kwargs = {k: data.pop(k) for k in list(data) if k in known and data[k] is not None}
        return cls(
            bg_rate=BgRate(w=_num(rate.get("w")), h=_num(rate.get("h"))),
            extra=data,
            **kwargs,
        )

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.extra)
        out.update({
            "bg_rate_show": self.bg_rate_show,
            "bg_rate": {"w": self.bg_rate.w, "h": self.bg_rate.h},
            "landscape": self.landscape,
            "main_img_w_rate": self.main_img_w_rate,
            "mini_top_bottom_margin": self.mini_top_bottom_margin,
            "shadow_show": self.shadow_show,
            "shadow": self.shadow,
            "solid_bg": self.solid_bg,
            "solid_color": self.solid_color,
            "quality": self.quality,
            "radius_show": self.radius_show,
            "radius": self.radius,
        })
        return out


def _num(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


@dataclass
class SizeInfo:
    """Intrinsic vs aspect-adjusted ("reset") working dimensions of a photo."""
    w: int
    h: int
    reset_w: int
    reset_h: int


@dataclass
class LayerBox:
    """The background canvas size."""
    w: int
    h: int
    path: Optional[str] = None


@dataclass
class MainLayer:
    """The main photo layer and its placement on the background."""
    w: int
    h: int
    top: float = 0
    left: float = 0
    path: Optional[str] = None
    data: Optional[bytes] = None


@dataclass
class TextLayer:
    """A rendered text bitmap. `h` includes `bottom_pad` once layout ran."""
    data: bytes
    w: int
    h: float
    bottom_pad: float = 0.0


@dataclass
class Material:
    """
    The layer set being composed.

    `text` is in authored order; the last item renders closest to the bottom edge.
    """
    bg: Optional[LayerBox] = None
    main: List[MainLayer] = field(default_factory=list)
    text: List[TextLayer] = field(default_factory=list)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe view sent to the external renderer with the shadow request."""
        return {
            "bg": {"w": self.bg.w, "h": self.bg.h, "path": self.bg.path} if self.bg else None,
            "main": [
                {"w": m.w, "h": m.h, "top": m.top, "left": m.left, "path": m.path}
                for m in self.main
            ],
            "text": [{"w": t.w, "h": t.h} for t in self.text],
        }


@dataclass
class ContentLayout:
    """Result of the content height calculation."""
    content_top: int
    content_h: int
    text_bottom_offset: float = 0.0


@dataclass
class OutputFileSet:
    """Deterministic cache paths owned by one job."""
    base: str
    bg: str
    main: str
    mask: str
    composite: str

    def items(self):
        return [
            ("bg", self.bg),
            ("main", self.main),
            ("mask", self.mask),
            ("composite", self.composite),
        ]


@dataclass
class FitOutcome:
    """
    Result of fitting one layer into background bounds.

    `width`/`height` of 0 means the size is unknown (pass-through after every
    probe and resize attempt failed).
    """
    data: bytes
    width: int
    height: int
    resized: bool = False
    strategy: str = ""


@dataclass
class CompositeLayer:
    """One entry of the ordered composite list."""
    data: bytes
    top: int = 0
    left: int = 0
    label: str = ""
    # Full-canvas layers (the shadow mask) are stretched to the canvas size
    full_canvas: bool = False


@dataclass
class CropModeDef:
    """A target aspect ratio (crop_w:crop_h) and slice count."""
    crop_w: float
    crop_h: float
    parts: int


@dataclass
class CropRect:
    """Crop rectangle in image pixel coordinates."""
    left: int
    top: int
    width: int
    height: int


@dataclass
class TextTemplates:
    """
    What the text renderer should draw.

    `temps` are line templates with `{TagName}` placeholders resolved against
    the EXIF bag; `fields` name EXIF tags to join into one line when no
    template is given.
    """
    temps: List[Any] = field(default_factory=list)
    fields: List[str] = field(default_factory=list)
    logo_path: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TextTemplates":
        data = data or {}
        return cls(
            temps=list(data.get("temps") or []),
            fields=[str(f) for f in (data.get("fields") or [])],
            logo_path=str(data.get("logoPath") or data.get("logo_path") or ""),
        )
