from typing import Dict, Optional


class AIScanError(Exception):
    """Base exception for the analysis service."""

    status_code: int = 500

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class ValidationError(AIScanError):
    """Raised when an uploaded payload is missing or not acceptable."""
    status_code = 400


class MediaExtractionError(AIScanError):
    """Raised when the ffmpeg subprocess fails, times out or cannot start."""
    status_code = 502

    def __init__(self, message: str, stderr: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.stderr = stderr


class NoFramesError(AIScanError):
    """Raised when there is no usable frame to send to the model."""
    status_code = 502


class AnalysisError(AIScanError):
    """Base class for failures of the upstream model call."""
    status_code = 502


class AnalysisTimeoutError(AnalysisError):
    pass


class AnalysisAPIError(AnalysisError):
    pass


class AnalysisQuotaError(AnalysisAPIError):
    """Billing or quota exhausted; retrying will not help."""
    pass


class AnalysisRateLimitError(AnalysisAPIError):
    pass


class ParseError(AIScanError):
    """Model output could not be turned into a known result shape."""
    status_code = 502


class CleanupError(AIScanError):
    """Best-effort removal of a temporary path failed. Never propagated."""
    pass
