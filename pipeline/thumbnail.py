import inspect
import os
from pathlib import Path
from typing import Any

from config import Settings, settings
from directives.mapper import DirectiveOutcome
from directives.tokenizer import parse_loader_options, tokenize
from engines.base import EngineKind
from engines.router import get_engine, resolve_backend
from exceptions import (
    EngineUnavailableError,
    GeometryNotDetectedError,
    ProcessingError,
    ThumbwrightError,
)
from geometry.detector import CurrentGeometry, detect_geometry
from geometry.parser import GeometrySpec, parse_geometry
from geometry.resolver import resolve_resize
from pipeline.compiler import (
    ApplyDirective,
    AutoOrient,
    ConvertFormat,
    Load,
    OptimizeFrames,
    Pipeline,
    Resize,
    Save,
    SelectAllFrames,
    SelectFrame,
)
from schemas import ThumbnailOptions
from utils.format_detect import sniff_animation
from utils.logging import get_logger
from utils.tempfiles import allocate_destination, discard_on_error

logger = get_logger("pipeline.thumbnail")

# Containers that may hold several frames or pages
MULTI_FRAME_FORMATS = (".mkv", ".avi", ".mp4", ".mov", ".mpg", ".mpeg", ".gif", ".pdf")
# Output formats that can keep an animation
ANIMATED_FORMATS = ("gif",)


class Thumbnail:
    """Turns one source image into a thumbnail.

    Construction parses the target geometry and resolves the backend;
    ``detect_geometry`` probes the source; ``make`` builds and runs the
    pipeline. Every instance serves exactly one request.

    Options (see ``ThumbnailOptions``):
        geometry: target geometry string, blank for no resize.
        format: output extension, defaults to the source's.
        convert_options: processing flags applied after resizing.
        source_file_options: flags that influence how the source is read.
        whiny: raise on processing failures (default) instead of
            returning the untouched source.
        animated: keep all frames of an animated source (default).
        auto_orient: honour the EXIF orientation (default).
        frame_index: frame or page to render for multi-frame sources.
        backend: "image_magick" or "vips"; falls back to the attachment
            options, then ``settings.default_backend``.
        string_geometry_parser: callable replacing ``parse_geometry``.
        file_geometry_parser: callable ``(path, EngineKind)`` replacing
            the engine probe.
    """

    def __init__(
        self,
        source: Any,
        options: ThumbnailOptions | dict | None = None,
        attachment_options: dict | None = None,
        config: Settings = settings,
    ):
        if not isinstance(options, ThumbnailOptions):
            options = ThumbnailOptions(**(options or {}))

        self.source = source
        self.options = options
        self.attachment_options = attachment_options or {}
        self.config = config

        geometry_parser = options.string_geometry_parser or parse_geometry
        self.target_geometry: GeometrySpec = geometry_parser(options.geometry or "")
        self.whiny = options.whiny
        self.format = options.format
        self.animated = options.animated
        self.auto_orient = options.auto_orient
        self.convert_options = options.convert_options
        self.source_file_options = options.source_file_options

        self.backend = resolve_backend(
            options.backend or self.attachment_options.get("backend") or config.default_backend
        )
        self.engine = get_engine(self.backend, config)

        self.source_path = _source_path(source)
        name = self.source_path.name if self.source_path else ""
        self.current_format = Path(name).suffix
        self.basename = Path(name).stem
        self.frame_index = options.frame_index if self.is_multi_frame_format else 0

        self.current_geometry: CurrentGeometry | None = None
        self.warnings: list[DirectiveOutcome] = []
        self._animated_source: bool | None = None

    # --- Introspection ---

    @property
    def crop(self) -> bool:
        return self.target_geometry.crop

    @property
    def has_convert_options(self) -> bool:
        return bool(self.convert_options)

    @property
    def is_multi_frame_format(self) -> bool:
        return self.current_format.lower() in MULTI_FRAME_FORMATS

    @property
    def is_animated(self) -> bool:
        """Whether the output keeps every frame of the source."""
        output_can_animate = not self.format or self.format.lower() in ANIMATED_FORMATS
        return bool(self.animated and output_can_animate and self._animated_source)

    # --- Preparation ---

    async def detect_geometry(self) -> CurrentGeometry:
        """Probe the source; orientation-corrected when auto_orient is on.

        Raises:
            UnreadableSourceError: Regardless of ``whiny``.
            EngineUnavailableError: Regardless of ``whiny``.
        """
        parser = self.options.file_geometry_parser
        if parser is not None:
            geometry = parser(self.source_path, self.backend)
            if inspect.isawaitable(geometry):
                geometry = await geometry
        else:
            geometry = await detect_geometry(self.source_path, self.engine)

        if self.auto_orient and hasattr(geometry, "auto_orient"):
            geometry = geometry.auto_orient()
        self.current_geometry = geometry
        return geometry

    async def detect_animated_source(self) -> bool:
        if self._animated_source is None:
            try:
                self._animated_source = await self.engine.count_frames(self.source_path) > 1
            except EngineUnavailableError:
                raise
            except (ThumbwrightError, OSError) as e:
                logger.debug(f"Frame count failed, sniffing header instead: {e}")
                self._animated_source = sniff_animation(self.source_path)
        return self._animated_source

    def _require_geometry(self) -> CurrentGeometry:
        if self.current_geometry is None:
            raise GeometryNotDetectedError(
                "Current geometry is unknown; await detect_geometry() first",
                source=self.basename,
            )
        return self.current_geometry

    # --- Pipeline ---

    def build_pipeline(self, destination: Path) -> Pipeline:
        """Operations in fixed order: load, frames, orient, resize,
        animation, directives, format, save."""
        operations: list = [
            Load(self.source_path, parse_loader_options(self.source_file_options))
        ]

        animated = self.is_animated
        if self.is_multi_frame_format and not animated:
            operations.append(SelectFrame(self.frame_index))
        elif animated:
            operations.append(SelectAllFrames())

        if self.auto_orient:
            operations.append(AutoOrient())

        if not self.target_geometry.is_identity:
            resize = resolve_resize(self._require_geometry(), self.target_geometry, self.backend)
            if not resize.is_identity:
                operations.append(Resize(resize))

        if animated:
            operations.append(OptimizeFrames())

        for directive in tokenize(self.convert_options):
            operations.append(ApplyDirective(directive))

        if self.format:
            operations.append(ConvertFormat(self.format))

        operations.append(Save(destination))
        return Pipeline(operations)

    async def make(self) -> Any:
        """Produce the thumbnail.

        Returns the path of a new file, or the untouched source when
        processing fails and ``whiny`` is off. The new file is removed on
        every failure path.
        """
        if self.current_geometry is None:
            await self.detect_geometry()
        await self.detect_animated_source()

        extension = f".{self.format}" if self.format else self.current_format
        destination = allocate_destination(self.basename, extension, self.config.temp_dir or None)
        try:
            with discard_on_error(destination):
                pipeline = self.build_pipeline(destination)
                self.warnings = await pipeline.run(self.engine)
        except ProcessingError as e:
            return self._handle_error(e)
        return destination

    def transformation_command(self) -> list[str]:
        """Convert arguments for the legacy single-command flow.

        Deprecated: does not reflect what ``make`` runs.
        """
        if self.backend == EngineKind.VIPS:
            logger.warning("Warning: transformation_command called but using vips backend")

        scale, crop = self._require_geometry().transformation_to(self.target_geometry, self.crop)
        animated = self.is_animated
        trans = []
        if animated:
            trans.append("-coalesce")
        if self.auto_orient:
            trans.append("-auto-orient")
        if scale:
            trans.extend(["-resize", f'"{scale}"'])
        if crop:
            trans.extend(["-crop", f'"{crop}"', "+repage"])
        if animated:
            trans.extend(["-layers", '"optimize"'])
        return trans

    def _handle_error(self, error: ProcessingError) -> Any:
        if self.whiny:
            message = (
                f"There was an error processing the thumbnail for {self.basename} "
                f"using {self.engine.display_name}:\n{error.message}"
            )
            details = {**error.details, "backend": self.backend.value}
            raise type(error)(message, **details) from error

        logger.error(
            f"Processing failed: {error.message}",
            extra={"context": {"backend": self.backend.value, "source": self.basename}},
        )
        return self.source


async def make_thumbnail(
    source: Any,
    options: ThumbnailOptions | dict | None = None,
    attachment_options: dict | None = None,
    config: Settings = settings,
) -> Any:
    """Build, probe and run a Thumbnail for ``source`` in one call."""
    thumbnail = Thumbnail(source, options, attachment_options, config)
    return await thumbnail.make()


def _source_path(source: Any) -> Path | None:
    """Filesystem path of a path, path-like, or file-like source."""
    if source is None:
        return None
    path = getattr(source, "path", None)
    if path is None and isinstance(source, (str, os.PathLike)):
        path = source
    if path is None:
        path = getattr(source, "name", None)
    if path is None or not str(path).strip():
        return None
    return Path(os.path.abspath(os.fspath(path)))
