import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING

from exceptions import UnreadableSourceError
from geometry.parser import GeometrySpec

if TYPE_CHECKING:
    from engines.base import BaseEngine

_FILE_GEOMETRY_RE = re.compile(r"^\s*(\d+)[xX](\d+)(?:,(\d*))?")

# EXIF orientations that rotate the image by 90 or 270 degrees
_TRANSPOSED_ORIENTATIONS = {5, 6, 7, 8}


@dataclass(frozen=True)
class CurrentGeometry:
    """Dimensions and EXIF orientation of a source image."""

    width: int
    height: int
    orientation: int = 1

    @property
    def area(self) -> int:
        return self.width * self.height

    def auto_orient(self) -> "CurrentGeometry":
        """Return the logical geometry once the EXIF rotation is applied."""
        if self.orientation in _TRANSPOSED_ORIENTATIONS:
            return CurrentGeometry(self.height, self.width, 1)
        return replace(self, orientation=1)

    def transformation_to(
        self, target: GeometrySpec, crop: bool = False
    ) -> tuple[str, str | None]:
        """Legacy ``(resize, crop)`` geometry strings for a convert command.

        When cropping, scale along the axis that covers the target box and
        crop the overflow evenly from both sides.
        """
        if not crop:
            return str(target), None

        target_width = target.width or target.height
        target_height = target.height or target.width
        ratio_width = target_width / self.width
        ratio_height = target_height / self.height

        if ratio_height <= ratio_width:
            scale = ratio_width
            offset = int((self.height * scale - target_height) / 2)
            return f"{target_width}x", f"{target_width}x{target_height}+0+{offset}"

        scale = ratio_height
        offset = int((self.width * scale - target_width) / 2)
        return f"x{target_height}", f"{target_width}x{target_height}+{offset}+0"

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


def parse_file_geometry(text: str) -> CurrentGeometry | None:
    """Parse engine output of the form ``"WxH,orientation"``.

    Returns None when the text carries no usable dimensions.
    """
    match = _FILE_GEOMETRY_RE.match(text or "")
    if match is None:
        return None
    width, height = int(match.group(1)), int(match.group(2))
    if width == 0 or height == 0:
        return None
    orientation = int(match.group(3)) if match.group(3) else 1
    if not 1 <= orientation <= 8:
        orientation = 1
    return CurrentGeometry(width, height, orientation)


async def detect_geometry(source: str | Path, engine: "BaseEngine") -> CurrentGeometry:
    """Probe the source through the active engine.

    Raises:
        UnreadableSourceError: Blank path, or the engine cannot identify it.
        EngineUnavailableError: The engine runtime is missing.
    """
    if source is None or not str(source).strip():
        raise UnreadableSourceError("Cannot find the geometry of a file with a blank name")
    return await engine.probe(Path(source))
