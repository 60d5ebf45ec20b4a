class ThumbwrightError(Exception):
    """Base exception for all Thumbwright errors."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, **kwargs):
        self.message = message
        self.details = kwargs
        super().__init__(message)


class BadRequestError(ThumbwrightError):
    """Malformed request body, invalid JSON, missing required fields."""

    status_code = 400
    error_code = "bad_request"


class InvalidGeometryError(ThumbwrightError):
    """Geometry string cannot be parsed."""

    status_code = 400
    error_code = "invalid_geometry"


class InvalidOptionsError(ThumbwrightError):
    """Convert or source-file option string cannot be split into words."""

    status_code = 400
    error_code = "invalid_options"


class FileTooLargeError(ThumbwrightError):
    """File exceeds maximum allowed size."""

    status_code = 413
    error_code = "file_too_large"


class UnreadableSourceError(ThumbwrightError):
    """The engine could not identify the source as an image."""

    status_code = 422
    error_code = "unreadable_source"


class ProcessingError(ThumbwrightError):
    """The engine started but failed mid-pipeline."""

    status_code = 422
    error_code = "processing_failed"


class ToolTimeoutError(ProcessingError):
    """Imaging tool exceeded timeout."""

    status_code = 500
    error_code = "tool_timeout"


class EngineUnavailableError(ThumbwrightError):
    """Required imaging binary or library is not installed."""

    status_code = 503
    error_code = "engine_unavailable"


class GeometryNotDetectedError(ThumbwrightError):
    """Current geometry was needed before detect_geometry() ran."""

    status_code = 500
    error_code = "geometry_not_detected"
