from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, Field, field_validator


class ThumbnailOptions(BaseModel):
    """Options for one thumbnail (all optional with defaults)."""

    geometry: Optional[str] = Field(
        default="",
        description='Target geometry such as "100x100#", "50%" or "10000@>". '
        "Blank means no resize.",
    )
    format: Optional[str] = Field(default=None, description="Output file extension.")
    convert_options: Optional[Union[str, list[str]]] = None
    source_file_options: Optional[Union[str, list[str], dict[str, Any]]] = None
    whiny: bool = True
    animated: bool = True
    auto_orient: bool = True
    frame_index: int = Field(default=0, ge=0)
    backend: Optional[str] = Field(default=None, description='"image_magick" or "vips".')
    string_geometry_parser: Optional[Callable[[str], Any]] = Field(default=None, exclude=True)
    file_geometry_parser: Optional[Callable[..., Any]] = Field(default=None, exclude=True)

    model_config = {"extra": "forbid"}

    @field_validator("format")
    @classmethod
    def _strip_dot(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().lstrip(".")
        return value or None


class ErrorResponse(BaseModel):
    """Standard error response."""

    success: bool = False
    error: str
    message: str


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str = "ok"
    engines: dict
    default_backend: str
    version: str
