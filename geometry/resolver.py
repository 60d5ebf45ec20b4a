import math
from dataclasses import dataclass
from enum import Enum

from engines.kinds import EngineKind
from geometry.detector import CurrentGeometry
from geometry.parser import GeometryModifier, GeometrySpec


class ResizeKind(str, Enum):
    IDENTITY = "identity"
    FIT = "fit"  # preserve aspect, may enlarge
    FILL = "fill"  # cover the box, crop the overflow
    LIMIT = "limit"  # fit, shrink only
    EXACT = "exact"  # ignore aspect ratio
    SCALE = "scale"  # independent x/y factors


@dataclass(frozen=True)
class ResizeOperation:
    """Concrete resize decided for one request.

    ``width``/``height`` of None leave that axis unconstrained.
    """

    kind: ResizeKind
    width: int | None = None
    height: int | None = None
    x_scale: float | None = None
    y_scale: float | None = None
    crop: str | None = None

    @property
    def is_identity(self) -> bool:
        return self.kind == ResizeKind.IDENTITY


NO_RESIZE = ResizeOperation(ResizeKind.IDENTITY)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, ties away from zero."""
    if value < 0:
        return -int(math.floor(-value + 0.5))
    return int(math.floor(value + 0.5))


def resolve_resize(
    current: CurrentGeometry,
    target: GeometrySpec,
    engine: EngineKind,
) -> ResizeOperation:
    """Decide which primitive resize turns ``current`` into ``target``."""
    if target.is_identity:
        return NO_RESIZE

    width, height = target.width, target.height
    modifier = target.modifier

    if modifier == GeometryModifier.CROP:
        return ResizeOperation(
            ResizeKind.FILL,
            width or height,
            height or width,
            crop="centre",
        )

    if modifier == GeometryModifier.SHRINK_ONLY:
        if _fits_within(current, width, height):
            return NO_RESIZE
        return ResizeOperation(ResizeKind.LIMIT, width, height)

    if modifier == GeometryModifier.ENLARGE_ONLY:
        if _exceeds(current, width, height):
            return ResizeOperation(ResizeKind.FIT, width, height)
        return NO_RESIZE

    if modifier == GeometryModifier.FORCE:
        if not (width and height):
            return NO_RESIZE
        if engine == EngineKind.VIPS:
            return ResizeOperation(
                ResizeKind.SCALE,
                width,
                height,
                x_scale=width / current.width,
                y_scale=height / current.height,
            )
        return ResizeOperation(ResizeKind.EXACT, width, height)

    if modifier == GeometryModifier.FILL:
        if not (width and height):
            return ResizeOperation(ResizeKind.FIT, width, height)
        scale = max(width / current.width, height / current.height)
        return ResizeOperation(
            ResizeKind.FIT,
            round_half_up(current.width * scale),
            round_half_up(current.height * scale),
        )

    if modifier == GeometryModifier.PERCENT:
        return _fit_scaled(current, target.scalar / 100.0)

    if modifier in (GeometryModifier.AREA, GeometryModifier.AREA_SHRINK_ONLY):
        target_area = target.scalar
        if current.area == target_area:
            return NO_RESIZE
        if modifier == GeometryModifier.AREA_SHRINK_ONLY and current.area <= target_area:
            return NO_RESIZE
        return _fit_scaled(current, math.sqrt(target_area / current.area))

    return ResizeOperation(ResizeKind.FIT, width, height)


def _fits_within(current: CurrentGeometry, width: int | None, height: int | None) -> bool:
    return (width is None or current.width <= width) and (
        height is None or current.height <= height
    )


def _exceeds(current: CurrentGeometry, width: int | None, height: int | None) -> bool:
    # Absent dimensions are not a constraint
    return (width is None or current.width < width) and (
        height is None or current.height < height
    )


def _fit_scaled(current: CurrentGeometry, scale: float) -> ResizeOperation:
    new_width = max(1, round_half_up(current.width * scale))
    new_height = max(1, round_half_up(current.height * scale))
    if (new_width, new_height) == (current.width, current.height):
        return NO_RESIZE
    return ResizeOperation(ResizeKind.FIT, new_width, new_height)
