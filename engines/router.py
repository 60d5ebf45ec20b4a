from config import Settings, settings
from engines.base import BaseEngine, EngineKind
from engines.imagemagick import ImageMagickEngine
from engines.vips import VipsEngine
from utils.logging import get_logger

logger = get_logger("engines.router")

ENGINES: dict[EngineKind, type[BaseEngine]] = {
    EngineKind.IMAGE_MAGICK: ImageMagickEngine,
    EngineKind.VIPS: VipsEngine,
}


def resolve_backend(candidate: str | EngineKind | None) -> EngineKind:
    """Turn a configured backend name into an EngineKind.

    Blank values resolve to ImageMagick; unknown names also do, with a
    logged warning.
    """
    if isinstance(candidate, EngineKind):
        return candidate
    if candidate is None or not str(candidate).strip():
        return EngineKind.IMAGE_MAGICK

    try:
        return EngineKind(str(candidate).strip().lower())
    except ValueError:
        logger.warning(f"Warning: Invalid backend: {candidate}, falling back to image_magick")
        return EngineKind.IMAGE_MAGICK


def get_engine(kind: EngineKind, config: Settings = settings) -> BaseEngine:
    """Fresh engine instance for one request."""
    return ENGINES[kind](config)
