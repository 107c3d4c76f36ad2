"""
Exception classes for the watermark pipeline.
"""
from typing import Any, Dict, Optional


class WatermarkError(Exception):
    """Base exception class for watermark pipeline errors"""
    def __init__(self, message: str, code: str = "UNKNOWN_ERROR", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to standard error format"""
        return {
            "code": self.code,
            "message": str(self),
            "details": self.details,
        }


class ValidationError(WatermarkError, ValueError):
    """Raised for malformed request parameters or missing inputs"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class NotInitializedError(WatermarkError):
    """Raised when a job operation runs before the job was initialized"""
    def __init__(self, job_id: str, operation: str):
        super().__init__(
            f"job {job_id} is not initialized (called {operation})",
            code="NOT_INITIALIZED",
            details={"job_id": job_id, "operation": operation},
        )


class HandshakeTimeoutError(WatermarkError, TimeoutError):
    """Raised when the external renderer does not answer in time"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="HANDSHAKE_TIMEOUT", details=details)


class CompositeError(WatermarkError):
    """Raised when the final composite fails on every path"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="COMPOSITE_ERROR", details=details)


class JobStateError(WatermarkError):
    """Raised when a pipeline is started on a job that already ran"""
    def __init__(self, job_id: str, operation: str, state: str):
        super().__init__(
            f"job {job_id} cannot run {operation} in state {state}",
            code="INVALID_JOB_STATE",
            details={"job_id": job_id, "operation": operation, "state": state},
        )
