"""
Watermark job: one photo through the whole frame pipeline.

    init -> bg size (pass 1) -> text fetch -> main image -> content height
         -> bg size (pass 2) + background render -> shadow fetch -> composite

`gen_watermark` writes the full-resolution export; `gen_preview` runs the
same stages on a scaled-down SizeInfo and returns JPEG bytes. The job owns
its cache files (namespaced by its id) and removes them when it is done.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import random
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

from PIL import Image, ImageOps

from domain.errors import JobStateError, NotInitializedError
from domain.models import (
    JobState,
    MainLayer,
    Material,
    SizeInfo,
    TextTemplates,
    WatermarkOptions,
)
from services.background import render_blur_background, render_blur_background_fast, render_solid_background
from services.compositor import build_composite_list, canvas_color, render_full, render_preview
from services.content_height import apply_content_layout
from services.exif_reader import read_exif_bag
from services.geometry import clamp, round_half_up
from services.handshake import DEFAULT_TIMEOUT_SEC, fetch_shadow_mask, fetch_text_images
from services.renderer_bus import RendererBus
from services.size_negotiator import calc_bg_size, negotiate_size, read_oriented_size, scale_for_preview
from storage.file_storage import FileStorage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], Any]

PREVIEW_DEFAULT_MAX_SIZE = 1100
PREVIEW_MIN_MAX_SIZE = 200
PREVIEW_DEFAULT_QUALITY = 80
PREVIEW_MIN_QUALITY = 30
PREVIEW_MAX_QUALITY = 100
MAIN_CACHE_QUALITY = 100
MAIN_CACHE_PREVIEW_QUALITY = 90


def make_job_id(path: Union[str, Path]) -> str:
    path_hash = hashlib.md5(str(path).encode("utf-8")).hexdigest()
    seed = f"{path_hash}{random.random()}{int(time.time() * 1000)}"
    return hashlib.md5(seed.encode("utf-8")).hexdigest()


def clamp_preview_options(max_size: Optional[float], quality: Optional[float]) -> Tuple[int, int]:
    """Preview long edge (at least 200, default 1100) and JPEG quality (30..100, default 80)."""
    size = max(PREVIEW_MIN_MAX_SIZE, int(max_size or PREVIEW_DEFAULT_MAX_SIZE))
    q = int(clamp(int(quality or PREVIEW_DEFAULT_QUALITY), PREVIEW_MIN_QUALITY, PREVIEW_MAX_QUALITY))
    return size, q


class WatermarkJob:
    """
    A single composition job.

    Configuration and the renderer channel are passed in; the job never
    reads global settings.
    """

    def __init__(
        self,
        path: Union[str, Path],
        name: str,
        options: WatermarkOptions,
        bus: RendererBus,
        storage: FileStorage,
        *,
        output_dir: Optional[Union[str, Path]] = None,
        templates: Optional[TextTemplates] = None,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        on_progress: Optional[ProgressCallback] = None,
        preview: bool = False,
    ):
        self.path = Path(path)
        self.name = name or self.path.name
        self.options = options
        self.bus = bus
        self.storage = storage
        self.templates = templates or TextTemplates()
        self.timeout = timeout
        self.on_progress = on_progress

        self.id = make_job_id(self.path)
        # Preview composites never land in the output directory
        self.files = storage.job_files(
            self.id,
            self.name,
            output_dir=storage.cache_root if preview else output_dir,
        )

        self.state = JobState.UNINITIALIZED
        self.progress = 0
        self.size_info: Optional[SizeInfo] = None
        self.exif: Dict[str, Any] = {}
        self.dpi: Optional[Tuple[float, float]] = None
        self.material = Material()
        self.content_h = 0
        self.preview_scale = 1.0

    def __repr__(self) -> str:
        return f"WatermarkJob(id={self.id!r}, path={str(self.path)!r}, state={self.state.value})"

    def _require_initialized(self, operation: str) -> None:
        if self.state is JobState.UNINITIALIZED or self.size_info is None:
            raise NotInitializedError(self.id, operation)

    def _begin(self, operation: str) -> None:
        # A job renders once; preview shrinks size_info in place
        if self.state not in (JobState.UNINITIALIZED, JobState.INITIALIZED):
            raise JobStateError(self.id, operation, self.state.value)

    def _set_progress(self, value: int) -> None:
        self.progress = value
        if self.on_progress is None:
            return
        try:
            self.on_progress(self.id, value)
        except Exception:
            logger.exception("[%s] progress callback failed", self.id)

    # -- stages ----------------------------------------------------------

    def _read_source(self) -> Tuple[int, int, Optional[Tuple[float, float]], Dict[str, Any]]:
        width, height = read_oriented_size(self.path)
        with Image.open(self.path) as img:
            dpi = img.info.get("dpi")
        return width, height, dpi, read_exif_bag(self.path)

    async def init(self) -> None:
        """Read the source's oriented size, dpi and EXIF bag. Idempotent."""
        if self.state is not JobState.UNINITIALIZED:
            return
        if not self.path.exists():
            raise FileNotFoundError(f"source image not found: {self.path}")
        width, height, dpi, exif = await asyncio.to_thread(self._read_source)
        self.size_info = negotiate_size(width, height, self.options)
        self.dpi = tuple(float(v) for v in dpi) if dpi else None
        self.exif = exif
        self.state = JobState.INITIALIZED
        logger.info(
            "[%s] initialized %s: %sx%s -> reset %sx%s",
            self.id, self.path.name, width, height, self.size_info.reset_w, self.size_info.reset_h,
        )

    def calc_bg_size(self, height: Optional[float] = None) -> None:
        self._require_initialized("calc_bg_size")
        bg = calc_bg_size(self.size_info, self.options, height)
        bg.path = self.files.bg
        self.material.bg = bg

    async def gen_text(self) -> None:
        self._require_initialized("gen_text")
        payload = {
            "exif": self.exif,
            "bgHeight": self.material.bg.h,
            "options": self.options.to_dict(),
            "fields": self.templates.fields,
            "temps": self.templates.temps,
            "logoPath": self.templates.logo_path,
        }
        self.material.text = await fetch_text_images(self.bus, self.id, payload, self.timeout)
        logger.debug("[%s] received %s text layers", self.id, len(self.material.text))

    def _write_main(self) -> None:
        with Image.open(self.path) as src:
            img = ImageOps.exif_transpose(src)
            img.load()
        if img.mode != "RGB":
            img = img.convert("RGB")
        save_kwargs: Dict[str, Any] = {"format": "JPEG", "quality": MAIN_CACHE_QUALITY}
        if self.preview_scale < 1:
            img = img.resize((self.size_info.w, self.size_info.h), resample=Image.Resampling.LANCZOS)
            save_kwargs["quality"] = MAIN_CACHE_PREVIEW_QUALITY
        if self.dpi:
            save_kwargs["dpi"] = self.dpi
        img.save(self.files.main, **save_kwargs)

    async def gen_main(self) -> None:
        self._require_initialized("gen_main")
        await asyncio.to_thread(self._write_main)
        self.material.main = [MainLayer(w=self.size_info.w, h=self.size_info.h, path=self.files.main)]

    def calc_content_height(self) -> int:
        self._require_initialized("calc_content_height")
        if not self.material.main or self.material.bg is None:
            raise NotInitializedError(self.id, "calc_content_height")
        layout = apply_content_layout(self.material, self.options)
        self.content_h = layout.content_h
        return self.content_h

    async def gen_background(self, fast: bool = False) -> None:
        """Second sizing pass with the content height, render the background, center the photo."""
        self._require_initialized("gen_background")
        self.calc_bg_size(self.content_h)
        bg = self.material.bg
        if self.options.solid_bg:
            await asyncio.to_thread(render_solid_background, bg.w, bg.h, self.files.bg, self.options.solid_color)
        elif fast:
            await asyncio.to_thread(render_blur_background_fast, self.path, bg.w, bg.h, self.files.bg)
        else:
            await asyncio.to_thread(render_blur_background, self.path, bg.w, bg.h, self.files.bg)

        main = self.material.main[0]
        main.left = round_half_up((bg.w - main.w) / 2)
        main.top += round_half_up((bg.h - self.content_h) / 2)

    async def gen_shadow(self) -> None:
        self._require_initialized("gen_shadow")
        payload = {"material": self.material.snapshot(), "options": self.options.to_dict()}
        data = await fetch_shadow_mask(self.bus, self.id, payload, self.timeout)
        await asyncio.to_thread(Path(self.files.mask).write_bytes, data)

    def _colors(self) -> Tuple[int, int, int]:
        return canvas_color(self.options.solid_bg, self.options.solid_color)

    async def composite(self) -> Path:
        self._require_initialized("composite")
        layers = await asyncio.to_thread(
            build_composite_list, self.material, self.files, force_fit=False, job_id=self.id,
        )
        return await asyncio.to_thread(
            render_full,
            layers,
            (self.material.bg.w, self.material.bg.h),
            self.files.composite,
            color=self._colors(),
            quality=self.options.quality,
            dpi=self.dpi,
            job_id=self.id,
        )

    def delete_cache_files(self, keep_composite: bool = True) -> int:
        return self.storage.delete_cache_files(self.files, keep_composite=keep_composite)

    # -- pipelines -------------------------------------------------------

    async def gen_watermark(self) -> Path:
        """
        Full-resolution export.

        Returns:
            Path of the written composite.

        Raises:
            FileNotFoundError: source missing
            HandshakeTimeoutError: renderer did not answer in time
            CompositeError: final composite failed
        """
        self._begin("gen_watermark")
        try:
            self._set_progress(1)
            logger.info("[%s] initializing", self.id)
            await self.init()
            self.state = JobState.RENDERING
            self.material = Material()

            self._set_progress(10)
            logger.info("[%s] first background size pass", self.id)
            self.calc_bg_size()
            self._set_progress(20)

            logger.info("[%s] generating text images", self.id)
            await self.gen_text()
            self._set_progress(30)

            logger.info("[%s] generating main image", self.id)
            await self.gen_main()
            self._set_progress(50)

            logger.info("[%s] calculating content height", self.id)
            self.calc_content_height()
            self._set_progress(60)

            logger.info("[%s] generating background", self.id)
            await self.gen_background()
            self._set_progress(70)

            logger.info("[%s] generating shadow mask", self.id)
            await self.gen_shadow()
            self._set_progress(90)

            logger.info("[%s] compositing", self.id)
            out = await self.composite()
            self._set_progress(100)
        except Exception:
            self.state = JobState.FAILED
            raise
        finally:
            self.storage.release_output(self.files)

        self.state = JobState.DONE
        self.delete_cache_files()
        return out

    async def gen_preview(self, max_size: Optional[float] = None, quality: Optional[float] = None) -> bytes:
        """
        Reduced-size render for interactive preview.

        Every dimension is scaled down before any intermediate file is
        written. Cache files are removed whatever the outcome.

        Returns:
            JPEG bytes.
        """
        self._begin("gen_preview")
        max_size, quality = clamp_preview_options(max_size, quality)
        try:
            await self.init()
            self.state = JobState.RENDERING
            self.material = Material()
            self.size_info, self.preview_scale = scale_for_preview(self.size_info, max_size)
            self.calc_bg_size()
            await self.gen_text()
            await self.gen_main()
            self.calc_content_height()
            await self.gen_background(fast=True)
            await self.gen_shadow()
            layers = await asyncio.to_thread(
                build_composite_list, self.material, self.files, force_fit=True, job_id=self.id,
            )
            data = await asyncio.to_thread(
                render_preview,
                layers,
                (self.material.bg.w, self.material.bg.h),
                max_size=max_size,
                quality=quality,
                color=self._colors(),
                job_id=self.id,
            )
        except Exception:
            self.state = JobState.FAILED
            raise
        finally:
            self.delete_cache_files(keep_composite=False)
            self.storage.release_output(self.files)

        self.state = JobState.DONE
        return data
