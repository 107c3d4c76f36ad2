"""
Crop-and-split API routes.
"""
from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from api.errors import to_http_exception
from services.crop_split import crop_split
from settings import settings

router = APIRouter()


class CropRectBody(BaseModel):
    left: float
    top: float
    width: float
    height: float


class CropSplitRequest(BaseModel):
    path: Optional[str] = None
    outputDir: Optional[str] = None
    mode: Optional[str] = None
    cropW: Optional[float] = None
    cropH: Optional[float] = None
    parts: Optional[float] = None
    cropRect: Optional[CropRectBody] = None
    quality: Optional[float] = None


class CropSplitResponse(BaseModel):
    paths: List[str]


@router.post("/split", response_model=CropSplitResponse)
def split(body: CropSplitRequest):
    """Crop a photo to the mode's ratio and write its slices."""
    try:
        paths = crop_split(
            body.path,
            body.outputDir,
            body.mode,
            crop_w=body.cropW,
            crop_h=body.cropH,
            parts=body.parts,
            crop_rect=body.cropRect.model_dump() if body.cropRect else None,
            quality=body.quality if body.quality is not None else settings.CROP_QUALITY,
        )
    except Exception as exc:
        raise to_http_exception(exc) from exc
    return CropSplitResponse(paths=paths)
