import os

# Basic settings helper to read environment configuration.


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_float(val: str | None, default: float) -> float:
    if val is None or val.strip() == "":
        return default
    try:
        return float(val)
    except ValueError:
        return default


def _as_int(val: str | None, default: int) -> int:
    return int(_as_float(val, default))


class Settings:
    def __init__(self) -> None:
        self.CACHE_DIR: str = os.getenv("WATERMARK_CACHE_DIR", "data/cache")
        self.OUTPUT_DIR: str = os.getenv("WATERMARK_OUTPUT_DIR", "data/output")
        self.HANDSHAKE_TIMEOUT_SEC: float = _as_float(os.getenv("WATERMARK_HANDSHAKE_TIMEOUT_SEC"), 20.0)
        self.PREVIEW_MAX_SIZE: int = _as_int(os.getenv("WATERMARK_PREVIEW_MAX_SIZE"), 1100)
        self.PREVIEW_QUALITY: int = _as_int(os.getenv("WATERMARK_PREVIEW_QUALITY"), 80)
        self.CROP_QUALITY: int = _as_int(os.getenv("WATERMARK_CROP_QUALITY"), 92)
        self.LOCAL_RENDERER_ENABLED: bool = _as_bool(os.getenv("WATERMARK_LOCAL_RENDERER"), True)
        self.LOG_LEVEL: str = os.getenv("WATERMARK_LOG_LEVEL", "INFO").upper()


settings = Settings()
