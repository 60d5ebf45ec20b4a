from fastapi import APIRouter

from config import settings
from engines.imagemagick import ImageMagickEngine
from schemas import HealthResponse

router = APIRouter()

IMAGEMAGICK_BINARIES = ("magick", "convert", "identify")


def check_engines() -> dict[str, bool]:
    """Check availability of the ImageMagick binaries and imaging libraries."""
    imagemagick = ImageMagickEngine(settings)
    results = {}
    for binary in IMAGEMAGICK_BINARIES:
        results[binary] = imagemagick._which(binary) is not None
    # libvips is a shared library; pyvips raises OSError when it is missing
    try:
        import pyvips  # noqa: F401

        results["pyvips"] = True
    except (ImportError, OSError):
        results["pyvips"] = False
    try:
        from PIL import Image  # noqa: F401

        results["pillow"] = True
    except ImportError:
        results["pillow"] = False
    return results


@router.get("/health", response_model=HealthResponse)
async def health():
    engines = check_engines()
    imagemagick = engines["magick"] or (engines["convert"] and engines["identify"])
    all_available = imagemagick and engines["pyvips"] and engines["pillow"]
    return HealthResponse(
        status="ok" if all_available else "degraded",
        engines=engines,
        default_backend=settings.default_backend,
        version="0.1.0",
    )
