"""
Image Cache API Routes

Provides endpoints for:
- Serving optimized images, creating them on first request
- Store statistics
- Health check
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from pydantic import BaseModel

from .cache_key import DEFAULT_ROUTE, decode_wire, media_type
from .errors import CreateImageError, DecodeError
from .store import DerivativeStore

logger = logging.getLogger(__name__)

CACHE_CONTROL = "public, stale-while-revalidate, max-age=86400"


# ============================================
# Response Models
# ============================================

class StoreStatsResponse(BaseModel):
    """Response model for stats endpoint"""
    root: str
    parallelism: int
    in_flight: int
    memory_entries: int
    created: int
    existing: int
    joined: int
    failed: int


# ============================================
# Router
# ============================================

def create_router(store: DerivativeStore, prefix: str = DEFAULT_ROUTE) -> APIRouter:
    """
    Build the image cache router around `store`.

    Example:
        app.include_router(create_router(store))
        GET /cache/image?src=cat.png&op=r&w=100&h=100&q=75
    """
    router = APIRouter(prefix=prefix, tags=["Image Cache"])

    @router.api_route("", methods=["GET", "HEAD"])
    @router.api_route("/", methods=["GET", "HEAD"])
    async def get_cached_image(request: Request):
        """
        Serve the optimized image encoded in the query string.

        - 404 if the query is not a valid image key
        - 500 if the image could not be created
        """
        try:
            image = decode_wire(str(request.url))
        except DecodeError as e:
            logger.debug(f"[ImageCache] Invalid image key {request.url.query[:80]}: {e}")
            return PlainTextResponse("Invalid Image.", status_code=404)

        try:
            relative_path, created = await store.ensure(image)
        except CreateImageError as e:
            logger.error(f"[ImageCache] Failed to create image {image}: {e}")
            return PlainTextResponse("Error creating image.", status_code=500)

        if created:
            logger.info(f"[ImageCache] Created image: {relative_path}")

        # Mostly helpful for dev servers: placeholders created on demand
        # become available for inlining on the next render
        await store.warm_memory_cache(image)

        return FileResponse(
            store.root / relative_path,
            media_type=media_type(image),
            headers={
                "X-Cache": "MISS" if created else "HIT",
                "Cache-Control": CACHE_CONTROL,
            },
        )

    @router.get("/stats", response_model=StoreStatsResponse)
    async def get_store_stats():
        """Get store statistics."""
        return StoreStatsResponse(**store.get_stats())

    @router.get("/health")
    async def health_check():
        """Health check endpoint."""
        return JSONResponse(content={
            "status": "healthy",
            "service": "image-cache",
            "stats": store.get_stats(),
        })

    return router
