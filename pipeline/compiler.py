from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Union

from directives.mapper import DirectiveOutcome, apply_directive
from directives.tokenizer import Directive
from engines.base import BaseEngine
from exceptions import ThumbwrightError
from geometry.resolver import ResizeOperation
from utils.logging import get_logger

logger = get_logger("pipeline.compiler")


@dataclass(frozen=True)
class Load:
    source: Path
    loader_options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SelectFrame:
    index: int


@dataclass(frozen=True)
class SelectAllFrames:
    pass


@dataclass(frozen=True)
class AutoOrient:
    pass


@dataclass(frozen=True)
class Resize:
    operation: ResizeOperation


@dataclass(frozen=True)
class OptimizeFrames:
    pass


@dataclass(frozen=True)
class ApplyDirective:
    directive: Directive


@dataclass(frozen=True)
class ConvertFormat:
    extension: str


@dataclass(frozen=True)
class Save:
    destination: Path


Operation = Union[
    Load,
    SelectFrame,
    SelectAllFrames,
    AutoOrient,
    Resize,
    OptimizeFrames,
    ApplyDirective,
    ConvertFormat,
    Save,
]


class Pipeline:
    """Ordered operations for one thumbnail. Runs exactly once."""

    def __init__(self, operations: list[Operation]):
        if not operations or not isinstance(operations[0], Load):
            raise ValueError("A pipeline must start with a Load operation")
        self.operations = list(operations)
        self._consumed = False

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    async def run(self, engine: BaseEngine) -> list[DirectiveOutcome]:
        """Execute every operation against ``engine``.

        Returns the outcome of each directive, in order.

        Raises:
            ThumbwrightError: Engine failures, translated by the engine.
        """
        if self._consumed:
            raise RuntimeError("Pipeline has already been run")
        self._consumed = True

        handle = None
        outcomes: list[DirectiveOutcome] = []
        for operation in self.operations:
            try:
                handle = await self._execute(engine, handle, operation, outcomes)
            except ThumbwrightError:
                raise
            except Exception as exc:
                translated = engine.translate_error(exc)
                if translated is None:
                    raise
                raise translated from exc
        return outcomes

    async def _execute(
        self,
        engine: BaseEngine,
        handle: Any,
        operation: Operation,
        outcomes: list[DirectiveOutcome],
    ) -> Any:
        if isinstance(operation, Load):
            return engine.load(operation.source, operation.loader_options)
        if isinstance(operation, SelectFrame):
            engine.select_frame(handle, operation.index)
        elif isinstance(operation, SelectAllFrames):
            engine.select_all_frames(handle)
        elif isinstance(operation, AutoOrient):
            engine.auto_orient(handle)
        elif isinstance(operation, Resize):
            engine.apply_resize(handle, operation.operation)
        elif isinstance(operation, OptimizeFrames):
            if not engine.optimize_frames(handle):
                logger.debug(f"{engine.display_name} has no multi-frame optimization, skipping")
        elif isinstance(operation, ApplyDirective):
            outcomes.append(apply_directive(engine, handle, operation.directive))
        elif isinstance(operation, ConvertFormat):
            engine.convert_format(handle, operation.extension)
        elif isinstance(operation, Save):
            await engine.save(handle, operation.destination)
        else:
            raise ValueError(f"Unknown pipeline operation: {operation!r}")
        return handle
