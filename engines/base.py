from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from config import Settings, settings
from engines.kinds import EngineKind
from exceptions import ThumbwrightError
from geometry.detector import CurrentGeometry
from geometry.resolver import ResizeKind, ResizeOperation


class BaseEngine(ABC):
    """Capabilities an imaging engine offers to the thumbnail pipeline.

    ``load`` returns an engine-specific handle; every other primitive
    updates that handle in place. Nothing touches the destination until
    ``save``.
    """

    kind: EngineKind
    display_name: str
    # Engines that set this also implement passthrough(handle, flag, arguments)
    supports_passthrough: bool = False

    def __init__(self, config: Settings = settings):
        self.config = config

    # --- Inspection ---

    @abstractmethod
    async def probe(self, path: Path) -> CurrentGeometry:
        """Read dimensions and EXIF orientation.

        Raises:
            UnreadableSourceError: The file is not an identifiable image.
            EngineUnavailableError: The engine runtime is missing.
        """

    @abstractmethod
    async def count_frames(self, path: Path) -> int:
        """Number of frames/pages in the source."""

    # --- Loading ---

    @abstractmethod
    def load(self, path: Path, loader_options: dict[str, Any]) -> Any: ...

    @abstractmethod
    def select_frame(self, handle: Any, index: int) -> None: ...

    @abstractmethod
    def select_all_frames(self, handle: Any) -> None: ...

    @abstractmethod
    def auto_orient(self, handle: Any) -> None: ...

    # --- Resizing ---

    @abstractmethod
    def resize_to_fit(self, handle: Any, width: int | None, height: int | None) -> None: ...

    @abstractmethod
    def resize_to_fill(self, handle: Any, width: int, height: int, crop: str = "centre") -> None: ...

    @abstractmethod
    def resize_to_limit(self, handle: Any, width: int | None, height: int | None) -> None: ...

    @abstractmethod
    def resize_exact(self, handle: Any, width: int, height: int) -> None: ...

    @abstractmethod
    def scale(self, handle: Any, x_scale: float, y_scale: float) -> None: ...

    def apply_resize(self, handle: Any, operation: ResizeOperation) -> None:
        """Run the primitive matching a resolved resize operation."""
        kind = operation.kind
        if kind == ResizeKind.IDENTITY:
            return
        if kind == ResizeKind.FIT:
            self.resize_to_fit(handle, operation.width, operation.height)
        elif kind == ResizeKind.FILL:
            self.resize_to_fill(handle, operation.width, operation.height, operation.crop or "centre")
        elif kind == ResizeKind.LIMIT:
            self.resize_to_limit(handle, operation.width, operation.height)
        elif kind == ResizeKind.EXACT:
            self.resize_exact(handle, operation.width, operation.height)
        elif kind == ResizeKind.SCALE:
            self.scale(handle, operation.x_scale, operation.y_scale)
        else:
            raise ValueError(f"Unknown resize kind: {kind}")

    def optimize_frames(self, handle: Any) -> bool:
        """Engine-specific multi-frame optimization.

        Returns False when the engine has none; callers carry on.
        """
        return False

    # --- Directive primitives ---

    @abstractmethod
    def strip(self, handle: Any) -> None: ...

    @abstractmethod
    def set_quality(self, handle: Any, quality: int) -> None: ...

    @abstractmethod
    def rotate(self, handle: Any, degrees: float) -> None: ...

    @abstractmethod
    def flip(self, handle: Any) -> None: ...

    @abstractmethod
    def flop(self, handle: Any) -> None: ...

    @abstractmethod
    def gaussian_blur(self, handle: Any, sigma: float) -> None: ...

    @abstractmethod
    def sharpen(self, handle: Any) -> None: ...

    @abstractmethod
    def set_colorspace(self, handle: Any, name: str) -> None: ...

    @abstractmethod
    def flatten(self, handle: Any, background: str = "white") -> None: ...

    @abstractmethod
    def negate(self, handle: Any) -> None: ...

    @abstractmethod
    def interlace(self, handle: Any, enabled: bool = True) -> None: ...

    # --- Output ---

    @abstractmethod
    def convert_format(self, handle: Any, extension: str) -> None: ...

    @abstractmethod
    async def save(self, handle: Any, destination: Path) -> None: ...

    def translate_error(self, exc: Exception) -> ThumbwrightError | None:
        """Map an engine-native exception onto the error taxonomy.

        Returns None for exceptions the engine does not own.
        """
        return None
