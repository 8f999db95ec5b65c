"""High-level entry point wiring the worker pool, scheduler and result cache."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from types import TracebackType
from typing import Any, Mapping

from .cache import CacheStats, ResultCache
from .config import EngineConfig
from .io_topology import load_feature_collection
from .models import DotsResult, QueryParams
from .scheduler import ChunkScheduler, GridProgressCallback, LookupEventCallback
from .workers import WorkerPool, create_pool

LOGGER = logging.getLogger("dotsmap.engine")


class DotMapEngine:
    """Classify screen-space dot grids against a loaded country collection.

    ``compute_dots`` consults the cache first and only dispatches a batch on a miss.
    A failed batch raises and leaves the cache untouched.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        pool: WorkerPool | None = None,
        cache: ResultCache | None = None,
    ) -> None:
        self.config = config or EngineConfig.default()
        self.pool = pool if pool is not None else create_pool(self.config)
        self.scheduler = ChunkScheduler(self.pool)
        if cache is not None:
            self.cache: ResultCache | None = cache
        elif self.config.cache.enabled:
            self.cache = ResultCache(self.config.cache)
        else:
            self.cache = None
        self.country_names: tuple[str, ...] = ()
        self._closed = False
        LOGGER.info("Engine ready with %d %s worker(s)", self.pool.size, self.pool.mode)

    def __enter__(self) -> DotMapEngine:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def loaded(self) -> bool:
        return bool(self.country_names)

    def load(self, collection: Mapping[str, Any]) -> tuple[str, ...]:
        self.country_names = self.scheduler.initialize(collection)
        return self.country_names

    def load_file(self, path: str | Path) -> tuple[str, ...]:
        collection = load_feature_collection(path, self.config.preprocess.name_field)
        return self.load(collection)

    def compute_dots(self, query: QueryParams, on_progress: GridProgressCallback | None = None) -> DotsResult:
        if not self.loaded:
            raise RuntimeError("No features loaded; call load() first")
        fingerprint = query.fingerprint
        if self.cache is not None:
            cached = self.cache.get(fingerprint)
            if cached is not None:
                return cached

        started = time.perf_counter()
        result = self.scheduler.classify_grid(query, on_progress)
        LOGGER.info(
            "Classified %d dots for %s in %.2fs",
            len(result.dots),
            fingerprint.key,
            time.perf_counter() - started,
        )
        if self.cache is not None:
            self.cache.set(fingerprint, result)
        return result

    def build_lookup_map(self, query: QueryParams, on_progress: LookupEventCallback | None = None) -> bool:
        if not self.loaded:
            raise RuntimeError("No features loaded; call load() first")
        resolution = query.resolution or self.config.lookup.resolution
        return self.scheduler.build_lookup_map(query, resolution, on_progress)

    def cache_stats(self) -> CacheStats:
        if self.cache is None:
            return CacheStats(memory_items=0, storage_items=0, total_bytes=0)
        return self.cache.stats()

    def clear_cache(self) -> None:
        if self.cache is not None:
            self.cache.clear()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.pool.close()
        LOGGER.debug("Engine closed")
