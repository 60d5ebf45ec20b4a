import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from directives.allowlist import is_allowed
from engines.base import BaseEngine, EngineKind
from exceptions import (
    EngineUnavailableError,
    ProcessingError,
    ToolTimeoutError,
    UnreadableSourceError,
)
from geometry.detector import CurrentGeometry, parse_file_geometry
from utils.logging import get_logger
from utils.subprocess_runner import run_tool

logger = get_logger("engines.imagemagick")

_GRAVITIES = {
    "centre": "Center",
    "center": "Center",
    "north": "North",
    "south": "South",
    "east": "East",
    "west": "West",
}


@dataclass
class MagickCommand:
    """A convert command under construction.

    Reading options go before the input file, processing options after
    it. ``frame`` is an ImageMagick frame selector such as ``"[0]"``.
    """

    source: Path
    loader_args: list[str] = field(default_factory=list)
    frame: str = ""
    args: list[str] = field(default_factory=list)
    format: str | None = None

    def argv(self, destination: Path) -> list[str]:
        output = f"{self.format}:{destination}" if self.format else str(destination)
        return [*self.loader_args, f"{self.source}{self.frame}", *self.args, output]


class ImageMagickEngine(BaseEngine):
    """Drives the ImageMagick command line tools.

    Every primitive appends convert arguments; ``save`` runs one
    ``convert`` (or ImageMagick 7 ``magick``) process for the whole
    pipeline.
    """

    kind = EngineKind.IMAGE_MAGICK
    display_name = "ImageMagick"
    supports_passthrough = True

    # --- Command resolution ---

    def _which(self, binary: str) -> str | None:
        search_path = None
        if self.config.imagemagick_path:
            search_path = os.pathsep.join(
                [self.config.imagemagick_path, os.environ.get("PATH", "")]
            )
        return shutil.which(binary, path=search_path)

    def command(self, tool: str) -> list[str]:
        """Argv prefix for ``convert`` or ``identify``."""
        magick = self._which("magick")
        if magick:
            return [magick] if tool == "convert" else [magick, tool]
        return [self._which(tool) or tool]

    async def _run(self, tool: str, args: list[str]) -> bytes:
        cmd = self.command(tool) + args
        try:
            stdout, stderr, rc = await run_tool(cmd, timeout=self.config.tool_timeout_seconds)
        except FileNotFoundError:
            raise EngineUnavailableError(
                f"Could not run the `{tool}` command. Please install ImageMagick.",
                tool=tool,
            )
        return stdout

    # --- Inspection ---

    async def probe(self, path: Path) -> CurrentGeometry:
        orientation = "%[exif:orientation]" if self.config.use_exif_orientation else "1"
        try:
            stdout = await self._run("identify", ["-format", f"%wx%h,{orientation}", f"{path}[0]"])
        except ToolTimeoutError:
            raise
        except ProcessingError:
            stdout = b""

        geometry = parse_file_geometry(stdout.decode(errors="replace").strip())
        if geometry is None:
            raise UnreadableSourceError("Could not identify image size", engine=self.kind.value)
        return geometry

    async def count_frames(self, path: Path) -> int:
        stdout = await self._run("identify", ["-format", "%n\n", str(path)])
        lines = stdout.decode(errors="replace").split()
        return int(lines[0]) if lines and lines[0].isdigit() else 1

    # --- Loading ---

    def load(self, path: Path, loader_options: dict[str, Any]) -> MagickCommand:
        return MagickCommand(source=path, loader_args=self._loader_args(loader_options))

    def _loader_args(self, loader_options: dict[str, Any]) -> list[str]:
        args: list[str] = []
        for key, value in loader_options.items():
            flag = key.replace("_", "-")
            if not is_allowed(key):
                logger.warning(f"Warning: Option {flag} is not allowed.")
                continue
            if value is True:
                args.append(f"-{flag}")
            elif value not in (None, False):
                args.extend([f"-{flag}", str(value)])
        return args

    def select_frame(self, handle: MagickCommand, index: int) -> None:
        handle.frame = f"[{index}]"

    def select_all_frames(self, handle: MagickCommand) -> None:
        handle.frame = ""
        handle.args.append("-coalesce")

    def auto_orient(self, handle: MagickCommand) -> None:
        handle.args.append("-auto-orient")

    # --- Resizing ---

    def resize_to_fit(self, handle: MagickCommand, width: int | None, height: int | None) -> None:
        handle.args.extend(["-resize", f"{width or ''}x{height or ''}"])

    def resize_to_fill(
        self, handle: MagickCommand, width: int, height: int, crop: str = "centre"
    ) -> None:
        gravity = _GRAVITIES.get(crop.lower(), "Center")
        handle.args.extend(
            [
                "-resize", f"{width}x{height}^",
                "-gravity", gravity,
                "-extent", f"{width}x{height}",
                "+gravity",
            ]
        )

    def resize_to_limit(self, handle: MagickCommand, width: int | None, height: int | None) -> None:
        handle.args.extend(["-resize", f"{width or ''}x{height or ''}>"])

    def resize_exact(self, handle: MagickCommand, width: int, height: int) -> None:
        handle.args.extend(["-resize", f"{width}x{height}!"])

    def scale(self, handle: MagickCommand, x_scale: float, y_scale: float) -> None:
        handle.args.extend(["-resize", f"{x_scale * 100:g}%x{y_scale * 100:g}%"])

    def optimize_frames(self, handle: MagickCommand) -> bool:
        handle.args.extend(["-layers", "optimize"])
        return True

    # --- Directive primitives ---

    def strip(self, handle: MagickCommand) -> None:
        handle.args.append("-strip")

    def set_quality(self, handle: MagickCommand, quality: int) -> None:
        handle.args.extend(["-quality", str(quality)])

    def rotate(self, handle: MagickCommand, degrees: float) -> None:
        handle.args.extend(["-rotate", f"{degrees:g}"])

    def flip(self, handle: MagickCommand) -> None:
        handle.args.append("-flip")

    def flop(self, handle: MagickCommand) -> None:
        handle.args.append("-flop")

    def gaussian_blur(self, handle: MagickCommand, sigma: float) -> None:
        handle.args.extend(["-gaussian-blur", f"0x{sigma:g}"])

    def sharpen(self, handle: MagickCommand) -> None:
        handle.args.extend(["-sharpen", "0x1"])

    def set_colorspace(self, handle: MagickCommand, name: str) -> None:
        handle.args.extend(["-colorspace", name])

    def flatten(self, handle: MagickCommand, background: str = "white") -> None:
        handle.args.extend(["-background", background, "-flatten"])

    def negate(self, handle: MagickCommand) -> None:
        handle.args.append("-negate")

    def interlace(self, handle: MagickCommand, enabled: bool = True) -> None:
        handle.args.extend(["-interlace", "Plane" if enabled else "None"])

    def passthrough(
        self, handle: MagickCommand, flag: str, arguments: tuple[str, ...] = ()
    ) -> None:
        handle.args.extend([flag, *arguments])

    # --- Output ---

    def convert_format(self, handle: MagickCommand, extension: str) -> None:
        handle.format = extension.lstrip(".").lower()

    async def save(self, handle: MagickCommand, destination: Path) -> None:
        logger.debug(
            "Running convert",
            extra={"context": {"source": str(handle.source), "args": handle.args}},
        )
        await self._run("convert", handle.argv(destination))
