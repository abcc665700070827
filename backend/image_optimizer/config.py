"""
Image Optimizer Configuration

Environment variables:
- IMAGE_OPTIMIZER_ROOT          site root holding sources and cache/image (./public)
- IMAGE_OPTIMIZER_PARALLELISM   max concurrent transforms (2)
- IMAGE_OPTIMIZER_ROUTE         route serving cached images (/cache/image)
- IMAGE_OPTIMIZER_PRECACHE      precache app images at startup (true)
"""

import os
from dataclasses import dataclass

from .cache_key import DEFAULT_ROUTE
from .store import DEFAULT_PARALLELISM

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class ImageOptimizerConfig:
    """Configuration for the image optimizer service."""
    root: str = "./public"
    parallelism: int = DEFAULT_PARALLELISM
    route: str = DEFAULT_ROUTE
    precache: bool = True

    @classmethod
    def from_env(cls) -> "ImageOptimizerConfig":
        return cls(
            root=os.getenv("IMAGE_OPTIMIZER_ROOT", "./public"),
            parallelism=int(os.getenv("IMAGE_OPTIMIZER_PARALLELISM", str(DEFAULT_PARALLELISM))),
            route=os.getenv("IMAGE_OPTIMIZER_ROUTE", DEFAULT_ROUTE),
            precache=os.getenv("IMAGE_OPTIMIZER_PRECACHE", "true").strip().lower() in _TRUE_VALUES,
        )
