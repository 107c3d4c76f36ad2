"""
FastAPI application entry point.

Run with: uvicorn api.main:app --reload
"""
import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables from backend/.env (optional) before other imports that read env
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(env_path)

from api.routes import crop, renderer, watermark
from services.exif_reader import register_heif_opener
from services.local_renderer import LocalRenderer
from services.renderer_bus import RendererBus
from settings import settings
from storage.file_storage import FileStorage

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Register HEIF/HEIC opener at startup (for iPhone photos)
heif_available = register_heif_opener()


# Create app
app = FastAPI(
    title="Watermark Frame API",
    description="API for framing photos with a watermark border and splitting grid crops",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One renderer channel per application, shared by every job
app.state.bus = RendererBus()
app.state.storage = FileStorage(settings.CACHE_DIR, settings.OUTPUT_DIR)
app.state.local_renderer = None
if settings.LOCAL_RENDERER_ENABLED:
    app.state.local_renderer = LocalRenderer(app.state.bus).attach()

# Include routers
app.include_router(watermark.router, prefix="/watermark", tags=["watermark"])
app.include_router(crop.router, prefix="/crop", tags=["crop"])
app.include_router(renderer.router, tags=["renderer"])


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Watermark Frame API"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "renderers": app.state.bus.sink_count,
        "heif": heif_available,
    }
