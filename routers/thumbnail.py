import json
import tempfile
from pathlib import Path

from fastapi import APIRouter, File, Form, Request, UploadFile
from fastapi.responses import Response
from pydantic import ValidationError

from config import settings
from directives.mapper import DirectiveStatus
from exceptions import BadRequestError, FileTooLargeError
from pipeline.thumbnail import Thumbnail
from schemas import ErrorResponse, ThumbnailOptions
from utils.format_detect import EXTENSION_MIME_TYPES, MIME_TYPES, detect_format

router = APIRouter()

ERROR_RESPONSES = {
    status: {"model": ErrorResponse} for status in (400, 413, 422, 500, 503)
}


@router.post("/thumbnail", responses=ERROR_RESPONSES)
async def create_thumbnail(
    request: Request,
    file: UploadFile = File(...),
    options: str | None = Form(None),
):
    """Generate a thumbnail from an uploaded image.

    Multipart: file field + optional options JSON string (ThumbnailOptions).
    Returns raw bytes with X-Thumbnail-* headers.
    """
    data = await file.read()

    if len(data) > settings.max_file_size_bytes:
        raise FileTooLargeError(
            f"File size {len(data)} bytes exceeds limit of {settings.max_file_size_mb} MB",
            file_size=len(data),
            limit=settings.max_file_size_bytes,
        )

    # Raises UnreadableSourceError if the bytes are not a known image format
    fmt = detect_format(data)
    thumbnail_options = _parse_form_options(options)

    suffix = Path(file.filename or "").suffix or f".{fmt.value}"
    stem = Path(file.filename or "upload").stem or "upload"
    with tempfile.TemporaryDirectory(dir=settings.temp_dir or None) as workdir:
        source = Path(workdir) / f"{stem}{suffix}"
        source.write_bytes(data)

        thumbnail = Thumbnail(source, thumbnail_options)
        result = Path(await thumbnail.make())
        try:
            content = result.read_bytes()
        finally:
            if result != source:
                result.unlink(missing_ok=True)

    warnings = [o for o in thumbnail.warnings if o.status != DirectiveStatus.APPLIED]
    media_type = EXTENSION_MIME_TYPES.get(result.suffix.lower())
    if media_type is None:
        media_type = MIME_TYPES.get(fmt, "application/octet-stream")

    return Response(
        content=content,
        media_type=media_type,
        headers={
            "Content-Length": str(len(content)),
            "X-Thumbnail-Backend": thumbnail.backend.value,
            "X-Thumbnail-Warnings": str(len(warnings)),
            "X-Request-ID": getattr(request.state, "request_id", ""),
        },
    )


def _parse_form_options(options_str: str | None) -> ThumbnailOptions:
    """Parse the 'options' form field JSON string."""
    if not options_str:
        return ThumbnailOptions()

    try:
        data = json.loads(options_str)
    except json.JSONDecodeError as e:
        raise BadRequestError(f"Invalid JSON in 'options' field: {e}")
    if not isinstance(data, dict):
        raise BadRequestError("'options' field must be a JSON object")

    # Callables cannot come over the wire
    data.pop("string_geometry_parser", None)
    data.pop("file_geometry_parser", None)
    try:
        return ThumbnailOptions(**data)
    except ValidationError as e:
        raise BadRequestError(f"Invalid thumbnail options: {e.errors()[0]['msg']}")
