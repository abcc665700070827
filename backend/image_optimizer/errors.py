"""
Image Optimizer Errors

- DecodeError: a cache key could not be decoded (maps to 404)
- TransformError: the source image could not be decoded/resized/encoded
- CreateImageError: generating an artifact failed (maps to 500)
"""

from enum import Enum
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import TransformRequest


class ImageOptimizerError(Exception):
    """Base class for all image optimizer errors."""


# ============================================
# Key decoding
# ============================================

class DecodeError(ImageOptimizerError, ValueError):
    """A wire key or cache path could not be turned into a TransformRequest."""


class MalformedKeyError(DecodeError):
    """Missing, duplicated or invalid field in a wire key."""


class PathTooLongError(DecodeError):
    """An encoded path segment exceeds the filesystem filename limit."""


# ============================================
# Transforms
# ============================================

class TransformError(ImageOptimizerError):
    """Base class for transform engine failures."""


class ImageDecodeError(TransformError):
    """The source bytes are not a readable raster image."""


class ImageEncodeError(TransformError):
    """The WebP encoder failed."""


class InvalidDimensionsError(TransformError):
    """Requested output dimensions cannot be produced (e.g. zero width)."""


# ============================================
# Artifact creation
# ============================================

class CreateErrorKind(str, Enum):
    """Why an artifact could not be created"""
    TRANSFORM = "transform"
    IO = "io"
    JOIN = "join"


class CreateImageError(ImageOptimizerError):
    """
    Creating a derivative failed.

    The original exception is chained as __cause__.
    """

    def __init__(
        self,
        kind: CreateErrorKind,
        message: str,
        request: Optional["TransformRequest"] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.request = request

    def __str__(self) -> str:
        base = super().__str__()
        if self.request is not None:
            return f"{self.kind.value} error for {self.request.source}: {base}"
        return f"{self.kind.value} error: {base}"
