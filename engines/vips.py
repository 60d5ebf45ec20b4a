import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from engines.base import BaseEngine, EngineKind
from exceptions import (
    EngineUnavailableError,
    InvalidOptionsError,
    ProcessingError,
    ThumbwrightError,
    UnreadableSourceError,
)
from geometry.detector import CurrentGeometry
from utils.logging import get_logger

logger = get_logger("engines.vips")

# libvips' largest coordinate; stands in for an unconstrained axis
MAX_COORD = 10_000_000

_pyvips: Any | None = None


def _get_pyvips_module() -> Any:
    global _pyvips
    if _pyvips is None:
        try:
            import pyvips  # type: ignore
        except (ImportError, OSError) as e:
            raise EngineUnavailableError(
                "Could not load pyvips. Please install libvips and pyvips.",
                reason=str(e),
            )
        _pyvips = pyvips
    return _pyvips


# ImageMagick colorspace names -> libvips interpretations
_INTERPRETATIONS = {
    "gray": "b-w",
    "grey": "b-w",
    "grayscale": "b-w",
    "srgb": "srgb",
    "rgb": "srgb",
    "cmyk": "cmyk",
    "lab": "lab",
    "xyz": "xyz",
}

_BACKGROUNDS = {
    "white": [255, 255, 255],
    "black": [0, 0, 0],
}

# Source-file options with a libvips loader equivalent
_LOADER_OPTIONS = {
    "density": "dpi",
    "dpi": "dpi",
    "page": "page",
    "n": "n",
    "scale": "scale",
    "access": "access",
}

# Saver options each encoder accepts; other formats get everything
_SAVER_OPTIONS = {
    "jpg": {"Q", "strip", "interlace"},
    "jpeg": {"Q", "strip", "interlace"},
    "png": {"Q", "strip", "interlace"},
    "webp": {"Q", "strip"},
    "gif": {"strip"},
    "tif": {"Q", "strip"},
    "tiff": {"Q", "strip"},
    "heic": {"Q", "strip"},
    "avif": {"Q", "strip"},
}


@dataclass
class VipsHandle:
    """Lazily opened libvips image plus the options for its saver.

    The file is opened on the first pixel operation so that frame
    selection can still change the loader options.
    """

    path: Path
    loader_options: dict[str, Any] = field(default_factory=dict)
    image: Any = None
    saver_options: dict[str, Any] = field(default_factory=dict)
    format: str | None = None


class VipsEngine(BaseEngine):
    """libvips through pyvips. No raw option pass-through."""

    kind = EngineKind.VIPS
    display_name = "libvips"

    # --- Inspection ---

    async def probe(self, path: Path) -> CurrentGeometry:
        pyvips = _get_pyvips_module()
        try:
            return await asyncio.to_thread(self._read_header, pyvips, path)
        except pyvips.Error:
            raise UnreadableSourceError("Could not identify image size", engine=self.kind.value)

    def _read_header(self, pyvips: Any, path: Path) -> CurrentGeometry:
        image = pyvips.Image.new_from_file(str(path), access="sequential")
        orientation = 1
        if self.config.use_exif_orientation and image.get_typeof("orientation") != 0:
            orientation = int(image.get("orientation"))
        if not 1 <= orientation <= 8:
            orientation = 1
        return CurrentGeometry(image.width, image.height, orientation)

    async def count_frames(self, path: Path) -> int:
        pyvips = _get_pyvips_module()

        def _count() -> int:
            image = pyvips.Image.new_from_file(str(path), access="sequential")
            if image.get_typeof("n-pages") != 0:
                return int(image.get("n-pages"))
            return 1

        try:
            return await asyncio.to_thread(_count)
        except pyvips.Error as e:
            raise ProcessingError(f"Could not count frames: {e}", engine=self.kind.value)

    # --- Loading ---

    def load(self, path: Path, loader_options: dict[str, Any]) -> VipsHandle:
        _get_pyvips_module()
        options: dict[str, Any] = {}
        for key, value in loader_options.items():
            name = _LOADER_OPTIONS.get(key)
            if name is None:
                logger.warning(f"Warning: -{key} is not supported with vips backend, skipping")
                continue
            try:
                options[name] = _loader_value(name, value)
            except ValueError:
                raise InvalidOptionsError(
                    f"Invalid value for source file option -{key}: {value!r}",
                    option=key,
                )
        return VipsHandle(path=path, loader_options=options)

    def _image(self, handle: VipsHandle) -> Any:
        if handle.image is None:
            pyvips = _get_pyvips_module()
            handle.image = pyvips.Image.new_from_file(str(handle.path), **handle.loader_options)
        return handle.image

    def select_frame(self, handle: VipsHandle, index: int) -> None:
        handle.loader_options.update(page=index, n=1)
        handle.image = None

    def select_all_frames(self, handle: VipsHandle) -> None:
        handle.loader_options.pop("page", None)
        handle.loader_options["n"] = -1
        handle.image = None

    def auto_orient(self, handle: VipsHandle) -> None:
        handle.image = self._image(handle).autorot()

    # --- Resizing ---

    def resize_to_fit(self, handle: VipsHandle, width: int | None, height: int | None) -> None:
        self._thumbnail(handle, width, height, size="both")

    def resize_to_fill(self, handle: VipsHandle, width: int, height: int, crop: str = "centre") -> None:
        image = self._image(handle)
        page_height = _page_height(image)
        if page_height == image.height:
            handle.image = image.thumbnail_image(width, height=height, crop=_vips_crop(crop))
            return

        scale = max(width / image.width, height / page_height)
        self.scale(handle, scale, scale)
        image = handle.image
        page_height = _page_height(image)
        left = max(0, (image.width - width) // 2)
        top = max(0, (page_height - height) // 2)
        pyvips = _get_pyvips_module()
        frames = [
            image.crop(left, page * page_height + top, min(width, image.width), min(height, page_height))
            for page in range(image.height // page_height)
        ]
        joined = pyvips.Image.arrayjoin(frames, across=1)
        handle.image = _with_page_height(joined, min(height, page_height))

    def resize_to_limit(self, handle: VipsHandle, width: int | None, height: int | None) -> None:
        self._thumbnail(handle, width, height, size="down")

    def resize_exact(self, handle: VipsHandle, width: int, height: int) -> None:
        image = self._image(handle)
        self.scale(handle, width / image.width, height / _page_height(image))

    def scale(self, handle: VipsHandle, x_scale: float, y_scale: float) -> None:
        image = self._image(handle)
        page_height = _page_height(image)
        resized = image.resize(x_scale, vscale=y_scale)
        if page_height != image.height:
            resized = _with_page_height(resized, max(1, round(page_height * y_scale)))
        handle.image = resized

    def _thumbnail(self, handle: VipsHandle, width: int | None, height: int | None, size: str) -> None:
        image = self._image(handle)
        page_height = _page_height(image)
        if page_height == image.height:
            handle.image = image.thumbnail_image(
                width or MAX_COORD, height=height or MAX_COORD, size=size
            )
            return

        # thumbnail_image treats a multi-page strip as one tall image
        factors = []
        if width:
            factors.append(width / image.width)
        if height:
            factors.append(height / page_height)
        scale = min(factors) if factors else 1.0
        if size == "down":
            scale = min(scale, 1.0)
        if scale != 1.0:
            self.scale(handle, scale, scale)

    # --- Directive primitives ---

    def strip(self, handle: VipsHandle) -> None:
        handle.saver_options["strip"] = True

    def set_quality(self, handle: VipsHandle, quality: int) -> None:
        handle.saver_options["Q"] = quality

    def rotate(self, handle: VipsHandle, degrees: float) -> None:
        image = self._image(handle)
        if degrees % 90 == 0:
            quarter = int(degrees) % 360
            if quarter:
                handle.image = image.rot(f"d{quarter}")
            return
        handle.image = image.similarity(angle=degrees)

    def flip(self, handle: VipsHandle) -> None:
        handle.image = self._image(handle).flipver()

    def flop(self, handle: VipsHandle) -> None:
        handle.image = self._image(handle).fliphor()

    def gaussian_blur(self, handle: VipsHandle, sigma: float) -> None:
        handle.image = self._image(handle).gaussblur(sigma)

    def sharpen(self, handle: VipsHandle) -> None:
        handle.image = self._image(handle).sharpen()

    def set_colorspace(self, handle: VipsHandle, name: str) -> None:
        interpretation = _INTERPRETATIONS.get(name.lower(), "srgb")
        handle.image = self._image(handle).colourspace(interpretation)

    def flatten(self, handle: VipsHandle, background: str = "white") -> None:
        image = self._image(handle)
        if image.hasalpha():
            handle.image = image.flatten(background=_BACKGROUNDS.get(background, [255, 255, 255]))

    def negate(self, handle: VipsHandle) -> None:
        image = self._image(handle)
        if image.hasalpha():
            colour = image.extract_band(0, n=image.bands - 1).invert()
            handle.image = colour.bandjoin(image.extract_band(image.bands - 1))
        else:
            handle.image = image.invert()

    def interlace(self, handle: VipsHandle, enabled: bool = True) -> None:
        handle.saver_options["interlace"] = enabled

    # --- Output ---

    def convert_format(self, handle: VipsHandle, extension: str) -> None:
        handle.format = extension.lstrip(".").lower()

    async def save(self, handle: VipsHandle, destination: Path) -> None:
        image = self._image(handle)
        extension = handle.format or destination.suffix.lstrip(".").lower()
        accepted = _SAVER_OPTIONS.get(extension)
        options = {
            key: value
            for key, value in handle.saver_options.items()
            if accepted is None or key in accepted
        }
        dropped = set(handle.saver_options) - set(options)
        if dropped:
            logger.debug(f"Saver options {sorted(dropped)} not supported for .{extension}")

        data = await asyncio.to_thread(image.write_to_buffer, f".{extension}", **options)
        await asyncio.to_thread(destination.write_bytes, data)

    def translate_error(self, exc: Exception) -> ThumbwrightError | None:
        if _pyvips is not None and isinstance(exc, _pyvips.Error):
            return ProcessingError(str(exc).strip(), engine=self.kind.value)
        return None


def _page_height(image: Any) -> int:
    """Height of one frame of a multi-page image (the full height otherwise)."""
    if image.get_typeof("page-height") != 0:
        page_height = int(image.get("page-height"))
        if 0 < page_height < image.height and image.height % page_height == 0:
            return page_height
    return image.height


def _with_page_height(image: Any, page_height: int) -> Any:
    pyvips = _get_pyvips_module()
    image = image.copy()
    image.set_type(pyvips.GValue.gint_type, "page-height", page_height)
    return image


def _vips_crop(crop: str) -> str:
    return "centre" if crop.lower() in ("center", "centre") else crop.lower()


def _loader_value(name: str, value: Any) -> Any:
    if name == "dpi" and isinstance(value, str):
        # "300x300" -> 300.0
        return float(value.split("x")[0])
    if name in ("page", "n") and isinstance(value, str):
        return int(value)
    return value
