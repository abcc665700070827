"""
Image Precache

Finds every image an application renders and creates all derivatives
before the server starts taking traffic.

Flow:
1. host.enumerate_routes()           -> ["/", "/gallery", ...]
2. host.render_once(path, collector) -> collector filled with requests
3. deduplicate across routes
4. store.ensure() each request with bounded parallelism
5. load blur placeholders into the store's memory cache

Failure policy: fail fast. After the first failure no new generation is
started, generations already running are allowed to finish, every failure
is logged, and the first one is re-raised.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Iterator, List, Optional, Protocol

from .errors import CreateImageError
from .models import DEFAULT_QUALITY, TransformRequest
from .store import DerivativeStore

logger = logging.getLogger(__name__)


# ============================================
# Render collection
# ============================================

class ImageCollector:
    """
    Collects the requests emitted while rendering one route.

    A fresh collector is handed to every render pass; the image
    component pushes into it.
    """

    def __init__(self):
        self._requests: List[TransformRequest] = []

    def add(self, request: TransformRequest) -> None:
        self._requests.append(request)

    def add_image(
        self,
        src: str,
        width: int,
        height: int,
        quality: int = DEFAULT_QUALITY,
    ) -> None:
        """Register a rendered image: its resized version and its placeholder."""
        self.add(TransformRequest.resize(src, width, height, quality))
        self.add(TransformRequest.placeholder(src))

    def __iter__(self) -> Iterator[TransformRequest]:
        return iter(self._requests)

    def __len__(self) -> int:
        return len(self._requests)


RenderFn = Callable[[str, ImageCollector], None]


class RenderHost(Protocol):
    """What the precache job needs from the hosting application."""

    def enumerate_routes(self) -> Iterable[str]:
        ...

    def render_once(self, path: str, collector: ImageCollector) -> None:
        ...


# ============================================
# Discovery
# ============================================

def discover(render_fn: RenderFn, routes: Iterable[str]) -> List[TransformRequest]:
    """
    Render every route once and collect the images it uses.

    Returns:
        Deduplicated requests, in first-seen order
    """
    seen = {}
    for route in routes:
        collector = ImageCollector()
        render_fn(route, collector)
        logger.debug(f"[Precache] Route {route}: {len(collector)} image requests")
        for request in collector:
            seen.setdefault(request, None)
    return list(seen)


# ============================================
# Precache
# ============================================

@dataclass
class PrecacheResult:
    """Summary of a precache run"""
    total: int = 0
    created: int = 0
    existing: int = 0
    placeholders_loaded: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)


async def precache(
    store: DerivativeStore,
    requests: Iterable[TransformRequest],
    parallelism: int,
) -> PrecacheResult:
    """
    Create the derivatives for all `requests`.

    Args:
        store: Store to create the artifacts in
        requests: Requests to materialize
        parallelism: Maximum number of ensure() calls in flight

    Returns:
        PrecacheResult

    Raises:
        CreateImageError: the first failure, after running work has drained
    """
    if parallelism < 1:
        raise ValueError(f"parallelism must be at least 1, got {parallelism}")

    requests = list(requests)
    result = PrecacheResult(total=len(requests))
    semaphore = asyncio.Semaphore(parallelism)
    failures: List[CreateImageError] = []

    logger.info(f"[Precache] Creating {len(requests)} cached images (parallelism={parallelism})")

    async def run_one(request: TransformRequest) -> None:
        async with semaphore:
            if failures:
                return
            try:
                _, created = await store.ensure(request)
            except CreateImageError as e:
                logger.error(f"[Precache] Failed to create image {request}: {e}")
                failures.append(e)
                return

            if created:
                result.created += 1
            else:
                result.existing += 1
            if request.is_blur and await store.warm_memory_cache(request):
                result.placeholders_loaded += 1

    await asyncio.gather(*(run_one(request) for request in requests))
    result.completed_at = datetime.now()

    if failures:
        raise failures[0]

    logger.info(
        f"[Precache] Complete: {result.created} created, {result.existing} existing, "
        f"{result.placeholders_loaded} placeholders loaded, duration={result.duration_ms}ms"
    )
    return result


async def cache_app_images(
    store: DerivativeStore,
    host: RenderHost,
    parallelism: int,
) -> PrecacheResult:
    """
    Discover every image the application renders and precache it.

    Meant to run once at startup, before serving.
    """
    routes = list(host.enumerate_routes())
    requests = discover(host.render_once, routes)
    logger.info(f"[Precache] Found {len(requests)} images across {len(routes)} routes")
    return await precache(store, requests, parallelism)
