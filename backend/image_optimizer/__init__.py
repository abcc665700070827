"""
Image Optimizer Module

Creates and serves optimized images on demand, keyed by a compact
query-string encoding of the transform.

Features:
- WebP resizing and SVG blur placeholders
- Write-once filesystem cache with bounded transform parallelism
- In-memory placeholder cache for inlining during server render
- Startup precache of every image an application renders
"""

from .app import create_app
from .cache_key import decode_path, decode_wire, encode_path, encode_wire, to_url
from .config import ImageOptimizerConfig
from .errors import (
    CreateErrorKind,
    CreateImageError,
    DecodeError,
    ImageDecodeError,
    ImageEncodeError,
    InvalidDimensionsError,
    MalformedKeyError,
    PathTooLongError,
    TransformError,
)
from .models import Blur, Resize, TransformRequest
from .precache import ImageCollector, PrecacheResult, RenderHost, cache_app_images, discover, precache
from .routes_fastapi import create_router
from .store import DerivativeStore

__all__ = [
    "create_app",
    "create_router",
    "DerivativeStore",
    "ImageOptimizerConfig",
    "TransformRequest",
    "Resize",
    "Blur",
    "encode_wire",
    "decode_wire",
    "encode_path",
    "decode_path",
    "to_url",
    "ImageCollector",
    "RenderHost",
    "PrecacheResult",
    "discover",
    "precache",
    "cache_app_images",
    "DecodeError",
    "MalformedKeyError",
    "PathTooLongError",
    "TransformError",
    "ImageDecodeError",
    "ImageEncodeError",
    "InvalidDimensionsError",
    "CreateImageError",
    "CreateErrorKind",
]
