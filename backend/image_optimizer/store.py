"""
Derivative Store

Creates and caches optimized images on disk, with:
- Write-once filesystem cache (existence check before any work)
- In-memory cache of blur placeholder SVGs for inlining during render
- Bounded parallelism for transforms (semaphore)
- One generation per key at a time (in-flight map)

Cache structure:
root/
├── cat.png                                   (source)
└── cache/image/
    ├── c3JjPWNhdC5wbmcmb3A9ciZ3PTEwMC.../cat.png.webp
    └── c3JjPWNhdC5wbmcmb3A9YiZ3PTI1Ji.../cat.png.svg
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Tuple

from .cache_key import CACHE_DIR, decode_path, encode_path
from .errors import (
    CreateErrorKind,
    CreateImageError,
    DecodeError,
    PathTooLongError,
    TransformError,
)
from .models import TransformRequest
from .transformer import create_artifact

logger = logging.getLogger(__name__)

DEFAULT_PARALLELISM = 2


class DerivativeStore:
    """
    Owns the on-disk derivative cache under `root` and the placeholder
    memory cache. Construct one per application and pass it around.

    Usage:
        store = DerivativeStore("./public", parallelism=4)
        path, created = await store.ensure(request)
    """

    def __init__(self, root: str = "./public", parallelism: int = DEFAULT_PARALLELISM):
        """
        Initialize the store

        Args:
            root: Site root; sources are resolved against it and the
                  cache lives in root/cache/image
            parallelism: Maximum number of transforms running at once
        """
        if parallelism < 1:
            raise ValueError(f"parallelism must be at least 1, got {parallelism}")

        self.root = Path(root)
        self.cache_dir = self.root / CACHE_DIR
        self.parallelism = parallelism

        # Semaphore is created lazily inside the running event loop
        self._semaphore: Optional[asyncio.Semaphore] = None

        # Generations currently running, keyed by request
        self._in_flight: Dict[TransformRequest, asyncio.Task] = {}

        # Blur placeholder SVG text; reads are lock-free, inserts take the lock
        self._memory: Dict[TransformRequest, str] = {}
        self._memory_lock = Lock()

        self._stats = {
            "created": 0,
            "existing": 0,
            "joined": 0,
            "failed": 0,
        }

        logger.info(f"[ImageStore] Root: {self.root}, parallelism={parallelism}")

    def _ensure_semaphore_initialized(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.parallelism)
        return self._semaphore

    # ============================================
    # Paths
    # ============================================

    def artifact_path(self, request: TransformRequest) -> Path:
        """Absolute path of the artifact for `request`."""
        return self.root / encode_path(request)

    def source_path(self, request: TransformRequest) -> Path:
        """
        Absolute path of the source image.

        Raises:
            CreateImageError: if the source resolves outside of root
        """
        path = self.root / request.source.lstrip("/")
        root = self.root.resolve()
        resolved = path.resolve()
        if resolved != root and root not in resolved.parents:
            raise CreateImageError(
                CreateErrorKind.IO,
                f"Source resolves outside of {root}",
                request,
            )
        return path

    # ============================================
    # Filesystem tier
    # ============================================

    async def ensure(self, request: TransformRequest) -> Tuple[str, bool]:
        """
        Make sure the artifact for `request` exists on disk.

        Returns:
            Tuple of (path relative to root, created). `created` is True
            only for the caller that started the generation.

        Raises:
            CreateImageError: if the artifact could not be created
        """
        try:
            relative_path = encode_path(request)
        except PathTooLongError as e:
            raise CreateImageError(CreateErrorKind.IO, str(e), request) from e

        save_path = self.root / relative_path
        if save_path.exists():
            self._stats["existing"] += 1
            logger.debug(f"[ImageStore] Cache hit: {relative_path}")
            return relative_path, False

        task = self._in_flight.get(request)
        created = task is None
        if created:
            task = asyncio.create_task(self._generate(request, save_path))
            self._in_flight[request] = task
            task.add_done_callback(
                lambda finished: self._on_generated(request, finished)
            )
        else:
            self._stats["joined"] += 1
            logger.debug(f"[ImageStore] Joining in-flight generation: {relative_path}")

        # Shielded: an abandoned request still finishes the artifact
        await asyncio.shield(task)
        return relative_path, created

    async def _generate(self, request: TransformRequest, save_path: Path) -> None:
        """Run one transform under the semaphore, off the event loop."""
        semaphore = self._ensure_semaphore_initialized()
        async with semaphore:
            logger.debug(f"[ImageStore] Creating {request.kind} image for {request.source}")
            try:
                await asyncio.to_thread(self._create_artifact, request, save_path)
            except CreateImageError:
                self._stats["failed"] += 1
                raise
            except Exception as e:
                self._stats["failed"] += 1
                raise CreateImageError(
                    CreateErrorKind.JOIN,
                    f"Transform task failed: {e!r}",
                    request,
                ) from e

        self._stats["created"] += 1
        logger.info(f"[ImageStore] Created {request.kind} image: {save_path}")

    def _on_generated(self, request: TransformRequest, task: asyncio.Task) -> None:
        if self._in_flight.get(request) is task:
            del self._in_flight[request]
        # Mark the exception retrieved even if every waiter went away
        if not task.cancelled():
            task.exception()

    def _create_artifact(self, request: TransformRequest, save_path: Path) -> None:
        """Read source, transform, write. Runs in a worker thread."""
        source_path = self.source_path(request)
        try:
            source = source_path.read_bytes()
        except OSError as e:
            raise CreateImageError(
                CreateErrorKind.IO,
                f"Failed to read source {source_path}: {e}",
                request,
            ) from e

        try:
            data = create_artifact(request.operation, source)
        except TransformError as e:
            raise CreateImageError(CreateErrorKind.TRANSFORM, str(e), request) from e

        try:
            self._write_atomic(save_path, data)
        except OSError as e:
            raise CreateImageError(
                CreateErrorKind.IO,
                f"Failed to write {save_path}: {e}",
                request,
            ) from e

    @staticmethod
    def _write_atomic(path: Path, data: bytes) -> None:
        """Write to a temp file next to `path`, then rename into place."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    # ============================================
    # Memory tier (blur placeholders only)
    # ============================================

    def lookup_memory(self, request: TransformRequest) -> Optional[str]:
        """Placeholder SVG for `request` if it is in memory."""
        return self._memory.get(request)

    async def warm_memory_cache(self, request: TransformRequest) -> bool:
        """
        Load the placeholder SVG for a blur request into memory.

        Returns:
            True if a new entry was added. Resize requests are never cached.
        """
        if not request.is_blur or request in self._memory:
            return False

        try:
            path = self.artifact_path(request)
        except DecodeError as e:
            logger.warning(f"[ImageStore] No placeholder path for {request.source}: {e}")
            return False

        try:
            svg = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as e:
            logger.warning(f"[ImageStore] Failed to read placeholder {path}: {e}")
            return False

        return self._insert_memory(request, svg)

    async def load_memory_cache(self) -> int:
        """
        Scan the disk cache and load every blur placeholder into memory.

        Returns:
            Number of entries added.
        """
        entries = await asyncio.to_thread(self._scan_placeholders)
        loaded = sum(1 for request, svg in entries if self._insert_memory(request, svg))
        logger.info(f"[ImageStore] Loaded {loaded} placeholders from {self.cache_dir}")
        return loaded

    def _scan_placeholders(self) -> List[Tuple[TransformRequest, str]]:
        if not self.cache_dir.is_dir():
            return []

        entries = []
        for path in sorted(self.cache_dir.rglob("*.svg")):
            request = decode_path(path.relative_to(self.cache_dir).as_posix())
            if request is None or not request.is_blur:
                continue
            try:
                if self.artifact_path(request) != path:
                    continue
            except DecodeError:
                continue
            try:
                entries.append((request, path.read_text(encoding="utf-8")))
            except OSError as e:
                logger.warning(f"[ImageStore] Failed to read placeholder {path}: {e}")
        return entries

    def _insert_memory(self, request: TransformRequest, svg: str) -> bool:
        with self._memory_lock:
            if request in self._memory:
                return False
            self._memory[request] = svg
            return True

    # ============================================
    # Stats
    # ============================================

    def get_stats(self) -> dict:
        """Get store statistics."""
        return {
            "root": str(self.root),
            "parallelism": self.parallelism,
            "in_flight": len(self._in_flight),
            "memory_entries": len(self._memory),
            **self._stats,
        }
