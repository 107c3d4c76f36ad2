"""
Watermark API routes.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Request
from pydantic import BaseModel, Field

from api.errors import to_http_exception
from domain.models import TextTemplates, WatermarkOptions
from services.exif_reader import read_exif_bag
from services.handshake import encode_data_url
from services.renderer_bus import PROGRESS, RendererBus
from services.watermark_job import WatermarkJob
from settings import settings

logger = logging.getLogger(__name__)

router = APIRouter()


class TaskItem(BaseModel):
    path: str
    name: Optional[str] = None


class TaskRequest(BaseModel):
    items: List[TaskItem]
    options: Dict[str, Any] = Field(default_factory=dict)
    temps: List[Any] = Field(default_factory=list)
    fields: List[str] = Field(default_factory=list)
    logoPath: str = ""
    outputDir: Optional[str] = None


class TaskResponse(BaseModel):
    id: str
    path: str
    name: str


class PreviewRequest(BaseModel):
    path: str
    maxSize: Optional[float] = None
    quality: Optional[float] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    temps: List[Any] = Field(default_factory=list)
    fields: List[str] = Field(default_factory=list)
    logoPath: str = ""


class PreviewResponse(BaseModel):
    data: str


def _templates(body: Any) -> TextTemplates:
    return TextTemplates(temps=list(body.temps), fields=list(body.fields), logo_path=body.logoPath)


def _progress_publisher(bus: RendererBus):
    def publish(job_id: str, progress: int) -> None:
        bus.publish(PROGRESS, {"id": job_id, "progress": progress})
    return publish


async def _run_job(job: WatermarkJob) -> None:
    try:
        await job.gen_watermark()
    except Exception:
        logger.exception("[%s] watermark job failed for %s", job.id, job.path)


@router.post("/tasks", response_model=List[TaskResponse])
async def create_tasks(body: TaskRequest, request: Request, background_tasks: BackgroundTasks):
    """Queue one watermark job per item; progress is published on the renderer channel."""
    bus: RendererBus = request.app.state.bus
    storage = request.app.state.storage
    options = WatermarkOptions.from_dict(body.options)

    jobs: List[WatermarkJob] = []
    for item in body.items:
        job = WatermarkJob(
            item.path,
            item.name or "",
            options,
            bus,
            storage,
            output_dir=body.outputDir,
            templates=_templates(body),
            timeout=settings.HANDSHAKE_TIMEOUT_SEC,
            on_progress=_progress_publisher(bus),
        )
        jobs.append(job)
        background_tasks.add_task(_run_job, job)

    return [TaskResponse(id=job.id, path=str(job.path), name=job.name) for job in jobs]


@router.post("/preview", response_model=PreviewResponse)
async def preview(body: PreviewRequest, request: Request):
    """Render a reduced-size preview and return it as a JPEG data URL."""
    job = WatermarkJob(
        body.path,
        "",
        WatermarkOptions.from_dict(body.options),
        request.app.state.bus,
        request.app.state.storage,
        templates=_templates(body),
        timeout=settings.HANDSHAKE_TIMEOUT_SEC,
        preview=True,
    )
    try:
        data = await job.gen_preview(
            body.maxSize or settings.PREVIEW_MAX_SIZE,
            body.quality or settings.PREVIEW_QUALITY,
        )
    except Exception as exc:
        raise to_http_exception(exc) from exc
    return PreviewResponse(data=encode_data_url(data, "image/jpeg"))


@router.get("/exif")
async def get_exif(path: str):
    """EXIF bag of a photo, or null when it has none or cannot be read."""
    bag = read_exif_bag(path)
    return bag or None
