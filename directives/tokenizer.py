import re
import shlex
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable

from exceptions import InvalidOptionsError
from utils.logging import get_logger

logger = get_logger("directives.tokenizer")

# "-90" or "+5" is a value, never a new flag
_SIGNED_NUMBER_RE = re.compile(r"^[-+]\d")


class DirectiveSign(str, Enum):
    MINUS = "-"
    PLUS = "+"


def canonical_name(name: str) -> str:
    """Lookup key for an option name: no sign, lowercase, underscores.

    ``"-Auto-Orient"``, ``"auto_orient"`` and ``"+auto-orient"`` all map
    to ``"auto_orient"``. Every allow-list check and directive-name match
    goes through here.
    """
    return name.lstrip("-+").lower().replace("-", "_")


@dataclass(frozen=True)
class Directive:
    """One processing instruction from a convert-option string.

    ``name`` is lowercase with hyphens (``"auto-orient"``), ``value`` the
    first argument, ``extra`` any further bare words that followed it
    (``-set key value``).
    """

    name: str
    value: str | None = None
    sign: DirectiveSign = DirectiveSign.MINUS
    extra: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return canonical_name(self.name)

    @property
    def flag(self) -> str:
        return f"{self.sign.value}{self.name}"

    @property
    def arguments(self) -> tuple[str, ...]:
        if self.value is None:
            return self.extra
        return (self.value, *self.extra)


def split_words(options: str | Iterable[str] | None) -> list[str]:
    """Split an option string with POSIX shell rules; lists pass through."""
    if options is None:
        return []
    if isinstance(options, str):
        try:
            return shlex.split(options)
        except ValueError as e:
            raise InvalidOptionsError(
                f"Could not split options {options!r}: {e}",
                options=options,
            )
    return [str(token) for token in options]


def is_flag(token: str) -> bool:
    return token[:1] in ("-", "+") and not _SIGNED_NUMBER_RE.match(token)


def tokenize(options: str | Iterable[str] | None) -> list[Directive]:
    """Split a convert-option string into ordered directives.

    A token starting with ``-`` or ``+`` opens a directive. The next token
    is its value unless it is itself a flag; signed numerals such as
    ``-90`` always count as values.

    Raises:
        InvalidOptionsError: If the string has unbalanced quoting.
    """
    directives: list[Directive] = []

    for token in split_words(options):
        if is_flag(token):
            directives.append(
                Directive(
                    name=token.lstrip("-+").lower().replace("_", "-"),
                    sign=DirectiveSign(token[0]),
                )
            )
            continue

        if not directives:
            logger.warning(f"Warning: Option {token} is not allowed.")
            continue

        last = directives[-1]
        if last.value is None and not last.extra:
            directives[-1] = replace(last, value=token)
        else:
            directives[-1] = replace(last, extra=(*last.extra, token))

    return directives


def parse_loader_options(
    options: str | Iterable[str] | dict | None,
) -> dict[str, str | bool]:
    """Parse source-file options into loader keyword arguments.

    ``"-density 300 -strip"`` becomes ``{"density": "300", "strip": True}``.
    """
    if options is None:
        return {}
    if isinstance(options, dict):
        return options

    result: dict[str, str | bool] = {}
    for directive in tokenize(options):
        result[directive.key] = directive.value if directive.value is not None else True
    return result
