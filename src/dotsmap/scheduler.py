"""Chunked dispatch of the sample grid across a worker pool."""

from __future__ import annotations

import itertools
import logging
import math
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Mapping, Sequence

from .messages import (
    BuildLookupMapTask,
    ChunkResult,
    ChunkSpec,
    FeaturesReady,
    InitTask,
    LookupComplete,
    LookupProgress,
    ProcessChunkTask,
    Result,
    WorkerError,
)
from .models import ClassificationResult, DebugInfo, DotKey, DotsResult, QueryParams
from .util import round_half_up
from .workers import WorkerPool

LOGGER = logging.getLogger("dotsmap.scheduler")

GridProgressCallback = Callable[[float], None]
LookupEventCallback = Callable[[LookupProgress | LookupComplete], None]


class SchedulerBusyError(RuntimeError):
    """Raised when a batch is started while another one is still in flight."""


class WorkerTaskError(RuntimeError):
    """A worker reported a failure; the whole batch is abandoned."""

    def __init__(self, message: str, *, batch_id: int, worker_id: int) -> None:
        super().__init__(message)
        self.batch_id = batch_id
        self.worker_id = worker_id


class ChunkProcessingError(WorkerTaskError):
    def __init__(self, message: str, *, batch_id: int, worker_id: int, chunk_id: int | None) -> None:
        super().__init__(message, batch_id=batch_id, worker_id=worker_id)
        self.chunk_id = chunk_id


# ---------------------------------------------------------------------------
# Pure planning and reconciliation
# ---------------------------------------------------------------------------


def plan_chunks(width: int, spacing: int, worker_count: int) -> list[ChunkSpec]:
    """Split ``[0, width)`` into spacing-aligned column ranges, one per worker at most.

    Every sample column ``x = k * spacing < width`` falls in exactly one chunk.
    """
    if width < 1 or spacing < 1 or worker_count < 1:
        raise ValueError("width, spacing and worker_count must be >= 1")
    chunk_width = math.ceil(width / worker_count)
    chunks: list[ChunkSpec] = []
    last_end = 0
    for i in range(worker_count):
        start = i * chunk_width
        end = min(start + chunk_width, width)
        start = (start // spacing) * spacing
        if start < last_end:
            start = last_end
        end = min(math.ceil(end / spacing) * spacing, width)
        if start < width and end > start:
            chunks.append(ChunkSpec(chunk_id=len(chunks), start_x=start, end_x=end))
            last_end = end
    return chunks


def dedup_boundaries(
    chunk_dots: Sequence[Sequence[ClassificationResult]],
    spacing: int,
) -> tuple[list[list[ClassificationResult]], int]:
    """Drop the first column of a chunk when it sits within ``spacing`` of the previous one."""
    result = [list(dots) for dots in chunk_dots]
    removed = 0
    for i in range(len(result) - 1):
        current, following = result[i], result[i + 1]
        if not current or not following:
            continue
        current_max = max(dot.x for dot in current)
        next_min = min(dot.x for dot in following)
        if abs(current_max - next_min) < spacing:
            boundary = round_half_up(next_min)
            kept = [dot for dot in following if round_half_up(dot.x) != boundary]
            removed += len(following) - len(kept)
            result[i + 1] = kept
    return result, removed


def dedup_by_coordinate(dots: Sequence[ClassificationResult]) -> tuple[list[ClassificationResult], int]:
    """Keep the first dot per rounded ``(x, y)`` position."""
    unique: dict[DotKey, ClassificationResult] = {}
    for dot in dots:
        unique.setdefault(DotKey(round_half_up(dot.x), round_half_up(dot.y)), dot)
    return list(unique.values()), len(dots) - len(unique)


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class ChunkScheduler:
    """Dispatches batches to a :class:`WorkerPool` and joins their results.

    A batch either completes with every chunk or fails on the first worker error.
    Results tagged with another batch id (left over from an abandoned batch) are
    dropped.
    """

    def __init__(self, pool: WorkerPool) -> None:
        self.pool = pool
        self._batch_ids = itertools.count(1)
        self._busy = threading.Lock()
        self._lookup_key: tuple[str, int, int, int] | None = None

    @contextmanager
    def _exclusive(self) -> Iterator[int]:
        if not self._busy.acquire(blocking=False):
            raise SchedulerBusyError("A batch is already in progress")
        try:
            yield next(self._batch_ids)
        finally:
            self._busy.release()

    def _next_result(self, batch_id: int) -> Result:
        while True:
            result = self.pool.get_result()
            if result.batch_id == batch_id:
                return result
            LOGGER.debug("Ignoring %s from stale batch %d", type(result).__name__, result.batch_id)

    def initialize(self, collection: Mapping[str, Any]) -> tuple[str, ...]:
        """Send the feature collection to every worker; returns the country names."""
        with self._exclusive() as batch_id:
            for worker_id in range(self.pool.size):
                self.pool.submit(worker_id, InitTask(batch_id, collection))
            names: tuple[str, ...] = ()
            pending = set(range(self.pool.size))
            while pending:
                result = self._next_result(batch_id)
                if isinstance(result, WorkerError):
                    raise WorkerTaskError(
                        f"Worker {result.worker_id} failed to load features: {result.message}",
                        batch_id=batch_id,
                        worker_id=result.worker_id,
                    )
                if isinstance(result, FeaturesReady):
                    pending.discard(result.worker_id)
                    names = result.country_names
            self._lookup_key = None
            LOGGER.info("Loaded %d countries into %d workers", len(names), self.pool.size)
            return names

    def classify_grid(self, query: QueryParams, on_progress: GridProgressCallback | None = None) -> DotsResult:
        with self._exclusive() as batch_id:
            chunks = plan_chunks(query.width, query.spacing, self.pool.size)
            LOGGER.info(
                "Batch %d: %d chunks for %s %dx%d spacing %d",
                batch_id,
                len(chunks),
                query.projection_name,
                query.width,
                query.height,
                query.spacing,
            )
            for chunk in chunks:
                worker_id = chunk.chunk_id % self.pool.size
                self.pool.submit(worker_id, ProcessChunkTask(batch_id, query, chunk))

            finished: dict[int, ChunkResult] = {}
            while len(finished) < len(chunks):
                result = self._next_result(batch_id)
                if isinstance(result, WorkerError):
                    raise ChunkProcessingError(
                        f"Chunk {result.chunk_id} failed on worker {result.worker_id}: {result.message}",
                        batch_id=batch_id,
                        worker_id=result.worker_id,
                        chunk_id=result.chunk_id,
                    )
                if isinstance(result, ChunkResult):
                    finished[result.chunk.chunk_id] = result
                    if on_progress is not None:
                        on_progress(round(len(finished) / len(chunks) * 100.0))

            debug = DebugInfo()
            ordered = []
            for chunk in chunks:
                chunk_result = finished[chunk.chunk_id]
                debug.merge(chunk_result.debug_info)
                ordered.append(chunk_result.dots)

            per_chunk, boundary_removed = dedup_boundaries(ordered, query.spacing)
            dots, coordinate_removed = dedup_by_coordinate(list(itertools.chain.from_iterable(per_chunk)))
            debug.parallel_workers = len(chunks)
            debug.duplicates_removed = boundary_removed + coordinate_removed
            if debug.duplicates_removed:
                LOGGER.info("Removed %d duplicate dots at chunk boundaries", debug.duplicates_removed)
            LOGGER.info("Batch %d produced %d dots", batch_id, len(dots))
            return DotsResult(dots=tuple(dots), debug_info=debug)

    def build_lookup_map(
        self,
        query: QueryParams,
        resolution: int,
        on_progress: LookupEventCallback | None = None,
    ) -> bool:
        """Build the lookup map on worker 0, then on the rest; False when already built."""
        key = (query.projection_name, query.width, query.height, resolution)
        with self._exclusive() as batch_id:
            if key == self._lookup_key:
                LOGGER.debug("Lookup map already built for %s", key)
                return False
            self.pool.submit(0, BuildLookupMapTask(batch_id, query, resolution))
            while True:
                result = self._next_result(batch_id)
                if isinstance(result, WorkerError):
                    raise self._lookup_error(result, batch_id)
                if isinstance(result, (LookupProgress, LookupComplete)):
                    if on_progress is not None:
                        on_progress(result)
                    if isinstance(result, LookupComplete):
                        break

            others = range(1, self.pool.size)
            for worker_id in others:
                self.pool.submit(worker_id, BuildLookupMapTask(batch_id, query, resolution, report_progress=False))
            pending = set(others)
            while pending:
                result = self._next_result(batch_id)
                if isinstance(result, WorkerError):
                    raise self._lookup_error(result, batch_id)
                if isinstance(result, LookupComplete):
                    pending.discard(result.worker_id)
            self._lookup_key = key
            LOGGER.info("All %d workers have lookup maps built", self.pool.size)
            return True

    @staticmethod
    def _lookup_error(result: WorkerError, batch_id: int) -> WorkerTaskError:
        return WorkerTaskError(
            f"Lookup map build failed on worker {result.worker_id}: {result.message}",
            batch_id=batch_id,
            worker_id=result.worker_id,
        )
