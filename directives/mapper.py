from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from directives.allowlist import argument_count, is_allowed
from directives.tokenizer import Directive, DirectiveSign
from utils.logging import get_logger

if TYPE_CHECKING:
    from engines.base import BaseEngine

logger = get_logger("directives.mapper")


class DirectiveStatus(str, Enum):
    APPLIED = "applied"
    DISALLOWED = "disallowed"  # not on the ImageMagick allow-list
    UNSUPPORTED = "unsupported"  # engine has no equivalent
    SKIPPED = "skipped"  # missing or unusable value


@dataclass(frozen=True)
class DirectiveOutcome:
    directive: Directive
    status: DirectiveStatus
    message: str | None = None


def extract_blur_sigma(value: str | None) -> float | None:
    """Sigma from an ImageMagick blur value: ``"0x2"`` or a bare ``"2"``."""
    if not value:
        return None
    if "x" in value:
        value = value.split("x")[-1]
    return _parse_float(value)


def _parse_float(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_int(value: str | None) -> int | None:
    number = _parse_float(value)
    return None if number is None else int(number)


# --- Cross-engine directives ---
# Each handler returns False when the directive cannot be applied for want
# of a usable value.


def _strip(engine: "BaseEngine", handle: Any, value: str | None) -> bool:
    engine.strip(handle)
    return True


def _quality(engine: "BaseEngine", handle: Any, value: str | None) -> bool:
    quality = _parse_int(value)
    if quality is None:
        return False
    engine.set_quality(handle, quality)
    return True


def _rotate(engine: "BaseEngine", handle: Any, value: str | None) -> bool:
    degrees = _parse_float(value)
    if degrees is None:
        return False
    engine.rotate(handle, degrees)
    return True


def _flip(engine: "BaseEngine", handle: Any, value: str | None) -> bool:
    engine.flip(handle)
    return True


def _flop(engine: "BaseEngine", handle: Any, value: str | None) -> bool:
    engine.flop(handle)
    return True


def _blur(engine: "BaseEngine", handle: Any, value: str | None) -> bool:
    sigma = extract_blur_sigma(value)
    if not sigma:
        return False
    engine.gaussian_blur(handle, sigma)
    return True


def _sharpen(engine: "BaseEngine", handle: Any, value: str | None) -> bool:
    engine.sharpen(handle)
    return True


def _colorspace(engine: "BaseEngine", handle: Any, value: str | None) -> bool:
    if not value:
        return False
    engine.set_colorspace(handle, value)
    return True


def _flatten(engine: "BaseEngine", handle: Any, value: str | None) -> bool:
    engine.flatten(handle)
    return True


def _negate(engine: "BaseEngine", handle: Any, value: str | None) -> bool:
    engine.negate(handle)
    return True


def _auto_orient(engine: "BaseEngine", handle: Any, value: str | None) -> bool:
    engine.auto_orient(handle)
    return True


def _interlace(engine: "BaseEngine", handle: Any, value: str | None) -> bool:
    engine.interlace(handle, value is None or value.lower() != "none")
    return True


CROSS_ENGINE_DIRECTIVES: dict[str, Callable[["BaseEngine", Any, str | None], bool]] = {
    "strip": _strip,
    "quality": _quality,
    "rotate": _rotate,
    "flip": _flip,
    "flop": _flop,
    "blur": _blur,
    "gaussian_blur": _blur,
    "sharpen": _sharpen,
    "colorspace": _colorspace,
    "flatten": _flatten,
    "negate": _negate,
    "invert": _negate,
    "auto_orient": _auto_orient,
    "interlace": _interlace,
}


def apply_directive(engine: "BaseEngine", handle: Any, directive: Directive) -> DirectiveOutcome:
    """Map one directive onto the active engine.

    Never raises for a disallowed or unsupported directive: the directive
    is dropped with a logged warning and the pipeline continues.
    """
    if engine.supports_passthrough:
        return _apply_imagemagick(engine, handle, directive)
    return _apply_cross_engine(engine, handle, directive)


def _drop(directive: Directive, status: DirectiveStatus, message: str) -> DirectiveOutcome:
    logger.warning(message, extra={"context": {"directive": directive.flag, "status": status.value}})
    return DirectiveOutcome(directive, status, message)


def _apply_imagemagick(engine: "BaseEngine", handle: Any, directive: Directive) -> DirectiveOutcome:
    if not is_allowed(directive.key):
        return _drop(directive, DirectiveStatus.DISALLOWED, f"Warning: Option {directive.name} is not allowed.")

    arguments = directive.arguments
    limit = argument_count(directive.key)
    message = None
    if len(arguments) > limit:
        # Stray words would be read as extra input or output files
        for dropped in arguments[limit:]:
            message = f"Warning: Option {dropped} is not allowed."
            logger.warning(message, extra={"context": {"directive": directive.flag, "dropped": dropped}})
        arguments = arguments[:limit]

    engine.passthrough(handle, directive.flag, arguments)
    return DirectiveOutcome(directive, DirectiveStatus.APPLIED, message)


def _apply_cross_engine(engine: "BaseEngine", handle: Any, directive: Directive) -> DirectiveOutcome:
    if directive.sign == DirectiveSign.PLUS:
        return _drop(
            directive,
            DirectiveStatus.UNSUPPORTED,
            f"Warning: +{directive.name} is not supported with vips backend, skipping",
        )

    handler = CROSS_ENGINE_DIRECTIVES.get(directive.key)
    if handler is None:
        return _drop(
            directive,
            DirectiveStatus.UNSUPPORTED,
            f"Warning: -{directive.key} is not supported with vips backend, skipping",
        )

    if not handler(engine, handle, directive.value):
        logger.debug(f"Skipping -{directive.key}: missing or invalid value {directive.value!r}")
        return DirectiveOutcome(directive, DirectiveStatus.SKIPPED)

    return DirectiveOutcome(directive, DirectiveStatus.APPLIED)
