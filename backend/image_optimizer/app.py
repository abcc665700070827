"""
Image Optimizer Application

FastAPI application factory. On startup it loads existing placeholders
from disk and, when a render host is given, precaches every image the
host application renders before serving requests.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .config import ImageOptimizerConfig
from .precache import RenderHost, cache_app_images
from .routes_fastapi import create_router
from .store import DerivativeStore

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[ImageOptimizerConfig] = None,
    host: Optional[RenderHost] = None,
) -> FastAPI:
    """
    Create the image optimizer app.

    Args:
        config: Configuration (defaults to environment)
        host: Application whose routes are rendered to find images

    The store is available as app.state.image_store.
    """
    config = config or ImageOptimizerConfig.from_env()
    store = DerivativeStore(config.root, parallelism=config.parallelism)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.load_memory_cache()
        if host is not None and config.precache:
            # A failure here aborts startup
            await cache_app_images(store, host, config.parallelism)
        yield

    app = FastAPI(title="Image Optimizer", lifespan=lifespan)
    app.state.image_store = store
    app.include_router(create_router(store, prefix=config.route))

    logger.info(f"[ImageOptimizer] Serving cached images at {config.route}")
    return app
