"""
Map pipeline exceptions to HTTP errors.
"""
import logging

from fastapi import HTTPException

from domain.errors import (
    CompositeError,
    HandshakeTimeoutError,
    JobStateError,
    NotInitializedError,
    ValidationError,
    WatermarkError,
)

logger = logging.getLogger(__name__)


def to_http_exception(exc: Exception) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=exc.to_dict())
    if isinstance(exc, FileNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, HandshakeTimeoutError):
        return HTTPException(status_code=504, detail=exc.to_dict())
    if isinstance(exc, (NotInitializedError, JobStateError)):
        return HTTPException(status_code=409, detail=exc.to_dict())
    if isinstance(exc, CompositeError):
        return HTTPException(status_code=500, detail=exc.to_dict())
    if isinstance(exc, WatermarkError):
        return HTTPException(status_code=500, detail=exc.to_dict())
    logger.exception("unhandled error", exc_info=exc)
    return HTTPException(status_code=500, detail="Internal error")
