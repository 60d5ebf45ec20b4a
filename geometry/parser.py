import re
from dataclasses import dataclass
from enum import Enum

from exceptions import InvalidGeometryError


class GeometryModifier(str, Enum):
    NONE = ""
    CROP = "#"
    SHRINK_ONLY = ">"
    ENLARGE_ONLY = "<"
    FORCE = "!"
    FILL = "^"
    PERCENT = "%"
    AREA = "@"
    AREA_SHRINK_ONLY = "@>"


# ">@" is an accepted spelling of "@>"
_MODIFIER_TOKENS = {
    "": GeometryModifier.NONE,
    "#": GeometryModifier.CROP,
    ">": GeometryModifier.SHRINK_ONLY,
    "<": GeometryModifier.ENLARGE_ONLY,
    "!": GeometryModifier.FORCE,
    "^": GeometryModifier.FILL,
    "%": GeometryModifier.PERCENT,
    "@": GeometryModifier.AREA,
    "@>": GeometryModifier.AREA_SHRINK_ONLY,
    ">@": GeometryModifier.AREA_SHRINK_ONLY,
}

_GEOMETRY_RE = re.compile(r"^(?P<width>\d*)(?:[xX](?P<height>\d*))?(?P<modifier>[#><!^%@]{0,2})$")


@dataclass(frozen=True)
class GeometrySpec:
    """Target shape parsed from a geometry string such as ``"100x100#"``.

    Absent (or zero) dimensions are ``None``. An identity spec has no
    dimensions and no modifier: no resize is performed for it.
    """

    width: int | None = None
    height: int | None = None
    modifier: GeometryModifier = GeometryModifier.NONE

    @property
    def is_identity(self) -> bool:
        return self.width is None and self.height is None

    @property
    def crop(self) -> bool:
        return self.modifier == GeometryModifier.CROP

    @property
    def scalar(self) -> int | None:
        """Sole numeric parameter of ``%`` and ``@`` geometries.

        The number preceding the modifier wins; a second number is ignored.
        """
        return self.width if self.width is not None else self.height

    def __str__(self) -> str:
        text = ""
        if self.width:
            text += str(self.width)
        if self.height:
            text += f"x{self.height}"
        return text + self.modifier.value


IDENTITY = GeometrySpec()


def parse_geometry(text: str | None) -> GeometrySpec:
    """Parse a geometry string into a GeometrySpec.

    Accepts ``WxH``, ``Wx``, ``xH`` and ``W``, each optionally followed by
    one of ``# > < ! ^ % @ @> >@``. Blank input yields the identity spec.

    Raises:
        InvalidGeometryError: On non-numeric dimensions, unknown modifiers,
            or a geometry that carries no number at all.
    """
    if text is None:
        return IDENTITY
    stripped = str(text).strip()
    if not stripped:
        return IDENTITY

    match = _GEOMETRY_RE.match(stripped)
    if match is None or match.group("modifier") not in _MODIFIER_TOKENS:
        raise InvalidGeometryError(
            f"Invalid geometry string: {stripped!r}",
            geometry=stripped,
        )

    width = int(match.group("width")) if match.group("width") else 0
    height = int(match.group("height")) if match.group("height") else 0
    if width == 0 and height == 0:
        raise InvalidGeometryError(
            f"Geometry string has no dimensions: {stripped!r}",
            geometry=stripped,
        )

    return GeometrySpec(
        width=width or None,
        height=height or None,
        modifier=_MODIFIER_TOKENS[match.group("modifier")],
    )
