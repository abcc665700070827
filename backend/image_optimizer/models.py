"""
Image Optimizer Models

Value types describing a cached image derivative:
- Resize: an aspect-preserving WebP raster
- Blur: a tiny raster wrapped in an SVG blur filter (placeholder)
- TransformRequest: source path + operation, the cache key itself

All types are frozen dataclasses so they can be used as dict keys.
"""

from dataclasses import dataclass
from typing import Optional, Union

U32_MAX = 2**32 - 1
U8_MAX = 255

# Defaults emitted for every image rendered through the image component
DEFAULT_QUALITY = 75
DEFAULT_BLUR_WIDTH = 25
DEFAULT_BLUR_HEIGHT = 25
DEFAULT_BLUR_SVG_WIDTH = 100
DEFAULT_BLUR_SVG_HEIGHT = 100
DEFAULT_BLUR_SIGMA = 15


def _check_range(name: str, value: int, upper: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if value < 0 or value > upper:
        raise ValueError(f"{name} must be between 0 and {upper}, got {value}")


@dataclass(frozen=True)
class Resize:
    """Resize to fit a bounding box, encoded as WebP."""
    width: int
    height: int
    quality: int = DEFAULT_QUALITY   # WebP quality (0-100)

    def __post_init__(self):
        _check_range("width", self.width, U32_MAX)
        _check_range("height", self.height, U32_MAX)
        _check_range("quality", self.quality, 100)


@dataclass(frozen=True)
class Blur:
    """
    Blurred placeholder.

    width/height size the tiny intermediate raster, svg_width/svg_height
    the viewport of the SVG wrapper it is stretched across.
    """
    width: int = DEFAULT_BLUR_WIDTH
    height: int = DEFAULT_BLUR_HEIGHT
    svg_width: int = DEFAULT_BLUR_SVG_WIDTH
    svg_height: int = DEFAULT_BLUR_SVG_HEIGHT
    sigma: int = DEFAULT_BLUR_SIGMA   # stdDeviation of the SVG gaussian blur

    def __post_init__(self):
        _check_range("width", self.width, U32_MAX)
        _check_range("height", self.height, U32_MAX)
        _check_range("svg_width", self.svg_width, U32_MAX)
        _check_range("svg_height", self.svg_height, U32_MAX)
        _check_range("sigma", self.sigma, U8_MAX)


Operation = Union[Resize, Blur]


@dataclass(frozen=True)
class TransformRequest:
    """A source image (relative to the site root) and what to do with it."""
    source: str
    operation: Operation

    def __post_init__(self):
        if not isinstance(self.source, str):
            raise ValueError(f"source must be a string, got {self.source!r}")
        if "\x00" in self.source:
            raise ValueError("source contains a NUL byte")
        segments = [s for s in self.source.replace("\\", "/").split("/") if s and s != "."]
        if not segments:
            raise ValueError("source must be a non-empty path")
        if ".." in segments:
            raise ValueError(f"source escapes the root: {self.source!r}")
        if not isinstance(self.operation, (Resize, Blur)):
            raise ValueError(f"Unknown operation: {self.operation!r}")

    @property
    def is_blur(self) -> bool:
        return isinstance(self.operation, Blur)

    @property
    def kind(self) -> str:
        return "Blur" if self.is_blur else "Resize"

    @classmethod
    def resize(cls, source: str, width: int, height: int, quality: int = DEFAULT_QUALITY) -> "TransformRequest":
        return cls(source=source, operation=Resize(width=width, height=height, quality=quality))

    @classmethod
    def placeholder(cls, source: str, blur: Optional[Blur] = None) -> "TransformRequest":
        """Blur placeholder for `source`, using the default placeholder settings."""
        return cls(source=source, operation=blur or Blur())
