"""
Compositor.

Turns a laid-out Material into the final raster. Layers are stacked in a
fixed order on a canvas of the background color:

    background raster -> main photo -> shadow/cutout mask -> texts (bottom-up)

Two fidelity tiers share `build_composite_list`:
- `render_full` composites at the exact background size and writes the
  export file.
- `render_preview` rescales every layer by one global factor onto a
  smaller canvas; it tries a batched composite first and falls back to
  compositing one layer at a time.
"""
from __future__ import annotations

import logging
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from PIL import Image, ImageColor, ImageOps

from domain.errors import CompositeError
from domain.models import CompositeLayer, Material, OutputFileSet, TextLayer
from services.geometry import centered_left, clamp_top, round_half_up
from services.layer_fitter import fit_to_bounds, probe_size, resize_inside

logger = logging.getLogger(__name__)

# Horizontal breathing room kept free around text bitmaps
TEXT_SIDE_MARGIN = 40
MIN_TEXT_WIDTH = 10


def canvas_color(solid_bg: bool, solid_color: str) -> Tuple[int, int, int]:
    if not solid_bg:
        return (255, 255, 255)
    try:
        return ImageColor.getrgb(solid_color or "#fff")[:3]
    except ValueError:
        return (255, 255, 255)


def _read_optional(path: Optional[str]) -> Optional[bytes]:
    if not path:
        return None
    p = Path(path)
    if not p.exists():
        return None
    return p.read_bytes()


def _stretch_to(data: bytes, width: int, height: int) -> bytes:
    """Resize (ignoring aspect ratio) to exactly width x height, PNG encoded."""
    with Image.open(BytesIO(data)) as src:
        img = ImageOps.exif_transpose(src)
        img.load()
    if img.size != (width, height):
        img = img.resize((width, height), resample=Image.Resampling.LANCZOS)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _shrink_text_width(text: TextLayer, max_w: int) -> bytes:
    if text.w <= max_w:
        return text.data
    try:
        return resize_inside(text.data, max_w, 1 << 20).data
    except Exception as exc:
        logger.warning("text pre-shrink failed: %s", exc)
        return text.data


def build_composite_list(
    material: Material,
    files: OutputFileSet,
    *,
    force_fit: bool = False,
    job_id: str = "",
) -> List[CompositeLayer]:
    """
    Build the ordered, fitted layer list for the current Material.

    Args:
        material: Laid-out material (background size, main placement, texts)
        files: The job's cache files (background raster and mask are read from here)
        force_fit: Resize every layer unconditionally (preview)
        job_id: For log messages

    Returns:
        Layers in render order, each fitted inside the background.
    """
    bg_w, bg_h = material.bg.w, material.bg.h
    layers: List[CompositeLayer] = []

    bg_data = _read_optional(files.bg)
    if bg_data is not None:
        layers.append(CompositeLayer(data=bg_data, label="background", full_canvas=True))

    for idx, main in enumerate(material.main):
        source: Any = main.data if main.data is not None else main.path
        fitted = fit_to_bounds(source, bg_w, bg_h, force=force_fit, label=f"main[{idx}]", job_id=job_id)
        w = fitted.width or main.w
        h = fitted.height or main.h
        layers.append(CompositeLayer(
            data=fitted.data,
            left=centered_left(bg_w, w),
            top=clamp_top(main.top, bg_h, h),
            label=f"main[{idx}]",
        ))

    mask_data = _read_optional(files.mask)
    if mask_data is None:
        logger.warning("[%s] shadow mask missing at %s, skipping", job_id, files.mask)
    else:
        size = probe_size(mask_data)
        if force_fit or size != (bg_w, bg_h):
            try:
                mask_data = _stretch_to(mask_data, bg_w, bg_h)
            except Exception as exc:
                logger.warning("[%s] mask resize failed, using as-is: %s", job_id, exc)
        layers.append(CompositeLayer(data=mask_data, label="mask", full_canvas=True))

    if material.text:
        max_text_w = max(MIN_TEXT_WIDTH, bg_w - TEXT_SIDE_MARGIN)
        current_top: Optional[int] = None
        text_layers: List[CompositeLayer] = []
        for idx in range(len(material.text) - 1, -1, -1):
            text = material.text[idx]
            data = _shrink_text_width(text, max_text_w)
            fitted = fit_to_bounds(data, bg_w, bg_h, force=force_fit, label=f"text[{idx}]", job_id=job_id)
            w = fitted.width or min(text.w, bg_w)
            h = fitted.height or min(int(text.h), bg_h)
            # The slot is the bitmap plus any bottom padding the layout gave it
            slot_h = h + text.bottom_pad
            base = bg_h if current_top is None else current_top
            top = clamp_top(base - slot_h, bg_h, h)
            text_layers.append(CompositeLayer(
                data=fitted.data,
                left=centered_left(bg_w, w),
                top=top,
                label=f"text[{idx}]",
            ))
            current_top = top
        layers.extend(text_layers)

    return layers


def _decode_rgba(data: bytes) -> Image.Image:
    with Image.open(BytesIO(data)) as src:
        img = ImageOps.exif_transpose(src)
        img.load()
    return img.convert("RGBA")


def _place(canvas: Image.Image, layer: CompositeLayer, img: Image.Image, *, strict: bool) -> None:
    if layer.full_canvas:
        if img.size != canvas.size:
            img = img.resize(canvas.size, resample=Image.Resampling.LANCZOS)
        canvas.alpha_composite(img)
        return
    if strict and (layer.left + img.width > canvas.width or layer.top + img.height > canvas.height):
        raise ValueError(
            f"{layer.label} {img.width}x{img.height}@{layer.left},{layer.top} "
            f"does not fit canvas {canvas.width}x{canvas.height}"
        )
    canvas.alpha_composite(img, dest=(max(0, layer.left), max(0, layer.top)))


def composite_batched(layers: List[CompositeLayer], size: Tuple[int, int], color: Tuple[int, int, int]) -> Image.Image:
    """
    Decode every layer, then composite them in one pass.

    Strict: a layer reaching past the canvas edge is an error.
    """
    decoded = [_decode_rgba(layer.data) for layer in layers]
    canvas = Image.new("RGBA", size, color + (255,))
    for layer, img in zip(layers, decoded):
        _place(canvas, layer, img, strict=True)
    return canvas.convert("RGB")


def composite_sequential(layers: List[CompositeLayer], size: Tuple[int, int], color: Tuple[int, int, int]) -> Image.Image:
    """
    Composite one layer at a time onto an intermediate PNG raster; overflow
    is clipped rather than rejected.
    """
    buf = BytesIO()
    Image.new("RGBA", size, color + (255,)).save(buf, format="PNG")
    raster = buf.getvalue()
    for layer in layers:
        canvas = _decode_rgba(raster)
        _place(canvas, layer, _decode_rgba(layer.data), strict=False)
        out = BytesIO()
        canvas.save(out, format="PNG")
        raster = out.getvalue()
    return _decode_rgba(raster).convert("RGB")


def layer_diagnostics(layers: List[CompositeLayer]) -> List[Dict[str, Any]]:
    details = []
    for idx, layer in enumerate(layers):
        size = probe_size(layer.data)
        details.append({
            "idx": idx,
            "label": layer.label,
            "w": size[0] if size else None,
            "h": size[1] if size else None,
            "top": layer.top,
            "left": layer.left,
            "full_canvas": layer.full_canvas,
        })
    return details


def scale_layers(layers: List[CompositeLayer], scale: float, out_size: Tuple[int, int]) -> List[CompositeLayer]:
    """Rescale layers and offsets by one global factor (scale <= 1)."""
    out_w, out_h = out_size
    scaled: List[CompositeLayer] = []
    for layer in layers:
        try:
            with Image.open(BytesIO(layer.data)) as src:
                is_png = src.format == "PNG"
                img = ImageOps.exif_transpose(src)
                img.load()
        except Exception as exc:
            # Left unscaled; the composite step reports it
            logger.warning("%s could not be decoded for scaling: %s", layer.label, exc)
            scaled.append(layer)
            continue
        if layer.full_canvas:
            target = (out_w, out_h)
        else:
            target = (max(1, round_half_up(img.width * scale)), max(1, round_half_up(img.height * scale)))
        if img.size != target:
            img = img.resize(target, resample=Image.Resampling.LANCZOS)
        buf = BytesIO()
        if is_png or img.mode in ("RGBA", "LA", "P"):
            img.save(buf, format="PNG")
        else:
            img.convert("RGB").save(buf, format="JPEG", quality=90)
        scaled.append(CompositeLayer(
            data=buf.getvalue(),
            top=0 if layer.full_canvas else max(0, round_half_up(layer.top * scale)),
            left=0 if layer.full_canvas else max(0, round_half_up(layer.left * scale)),
            label=layer.label,
            full_canvas=layer.full_canvas,
        ))
    return scaled


def render_full(
    layers: List[CompositeLayer],
    bg_size: Tuple[int, int],
    out_path: Union[str, Path],
    *,
    color: Tuple[int, int, int] = (255, 255, 255),
    quality: int = 100,
    dpi: Optional[Tuple[float, float]] = None,
    job_id: str = "",
) -> Path:
    """Composite at full resolution and write a JPEG to out_path."""
    try:
        final = composite_batched(layers, bg_size, color)
    except Exception as exc:
        details = layer_diagnostics(layers)
        logger.error("[%s] composite failed, bg=%sx%s layers=%s", job_id, bg_size[0], bg_size[1], details)
        raise CompositeError(f"composite failed: {exc}", details={"layers": details}) from exc

    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    save_kwargs: Dict[str, Any] = {"format": "JPEG", "quality": max(1, min(100, int(quality or 100)))}
    if dpi:
        save_kwargs["dpi"] = dpi
    final.save(out, **save_kwargs)
    logger.info("[%s] composite written to %s", job_id, out)
    return out


def render_preview(
    layers: List[CompositeLayer],
    bg_size: Tuple[int, int],
    *,
    max_size: int,
    quality: int,
    color: Tuple[int, int, int] = (255, 255, 255),
    job_id: str = "",
) -> bytes:
    """
    Composite a reduced-size preview and return JPEG bytes.

    Batched first; on failure, layer by layer on the same reduced canvas; if
    both fail, per-layer diagnostics are logged and CompositeError is raised
    from the batched error.
    """
    bg_w, bg_h = bg_size
    scale = min(1.0, max_size / max(bg_w, bg_h))
    out_size = (max(1, round_half_up(bg_w * scale)), max(1, round_half_up(bg_h * scale)))
    scaled = scale_layers(layers, scale, out_size)

    try:
        final = composite_batched(scaled, out_size, color)
    except Exception as batched_exc:
        try:
            final = composite_sequential(scaled, out_size, color)
            logger.warning(
                "[%s] preview composite used sequential fallback (scale=%.3f, bg=%sx%s -> %sx%s)",
                job_id, scale, bg_w, bg_h, out_size[0], out_size[1],
            )
        except Exception:
            details = layer_diagnostics(layers)
            logger.error("[%s] preview composite failed, bg=%sx%s", job_id, bg_w, bg_h)
            logger.error("[%s] preview composite details: %s", job_id, details)
            raise CompositeError(
                f"preview composite failed: {batched_exc}",
                details={"layers": details},
            ) from batched_exc

    buf = BytesIO()
    final.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()
