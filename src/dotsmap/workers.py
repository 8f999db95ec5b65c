"""Worker state and the pools that host it (in-process or one process per worker).

Each worker owns its own :class:`WorldIndex`, projection contexts and lookup map.
Nothing mutable is shared between workers; they only exchange task and result
records.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import os
import queue
from collections import deque
from typing import Any, Callable, Protocol

from .classifier import PointClassifier
from .config import EngineConfig
from .lookup import LookupMap, build_lookup_map
from .messages import (
    BuildLookupMapTask,
    ChunkResult,
    FeaturesReady,
    InitTask,
    LookupComplete,
    LookupProgress,
    ProcessChunkTask,
    Result,
    Task,
    WorkerError,
)
from .models import DebugInfo, QueryParams
from .projection import ProjectionContext
from .sampling import classify_chunk
from .spatial_index import WorldIndex

LOGGER = logging.getLogger("dotsmap.workers")

MAX_POOL_SIZE = 8
_RESULT_POLL_S = 0.5
_JOIN_TIMEOUT_S = 5.0

Emit = Callable[[Result], None]


class WorkerCrashedError(RuntimeError):
    """A worker process exited while results were still expected."""


class WorkerState:
    """Per-worker classification state driven by typed tasks."""

    def __init__(self, worker_id: int, config: EngineConfig) -> None:
        self.worker_id = worker_id
        self.config = config
        self.world: WorldIndex | None = None
        self.lookup: LookupMap | None = None
        self._contexts: dict[tuple[str, int, int], ProjectionContext] = {}

    def handle(self, task: Task, emit: Emit) -> None:
        """Run one task, reporting through ``emit``; failures become :class:`WorkerError`."""
        try:
            if isinstance(task, InitTask):
                self._init(task, emit)
            elif isinstance(task, ProcessChunkTask):
                self._process_chunk(task, emit)
            elif isinstance(task, BuildLookupMapTask):
                self._build_lookup(task, emit)
            else:
                raise TypeError(f"Unsupported task type: {type(task).__name__}")
        except Exception as exc:
            LOGGER.error("Worker %d failed on %s: %s", self.worker_id, type(task).__name__, exc)
            chunk_id = task.chunk.chunk_id if isinstance(task, ProcessChunkTask) else None
            emit(
                WorkerError(
                    batch_id=getattr(task, "batch_id", -1),
                    worker_id=self.worker_id,
                    message=f"{type(exc).__name__}: {exc}",
                    chunk_id=chunk_id,
                )
            )

    def context_for(self, query: QueryParams) -> ProjectionContext:
        key = (query.projection_name, query.width, query.height)
        context = self._contexts.get(key)
        if context is None:
            context = ProjectionContext(query.projection_name, query.width, query.height)
            self._contexts[key] = context
        return context

    def _require_world(self) -> WorldIndex:
        if self.world is None:
            raise RuntimeError("Worker has no features loaded; send InitTask first")
        return self.world

    def _init(self, task: InitTask, emit: Emit) -> None:
        self.world = WorldIndex.build(task.collection, self.config.preprocess, self.config.grid)
        self.lookup = None
        emit(FeaturesReady(task.batch_id, self.worker_id, self.world.country_names))

    def _process_chunk(self, task: ProcessChunkTask, emit: Emit) -> None:
        world = self._require_world()
        query = task.query
        debug = DebugInfo()
        classifier = PointClassifier(world, self.config.classifier, debug)
        lookup = self.lookup if self.lookup is not None and self.lookup.matches(query) else None
        dots = classify_chunk(
            classifier,
            self.context_for(query),
            start_x=task.chunk.start_x,
            end_x=task.chunk.end_x,
            spacing=query.spacing,
            include_ocean_dots=query.include_ocean_dots,
            lookup=lookup,
        )
        emit(ChunkResult(task.batch_id, self.worker_id, task.chunk, tuple(dots), debug))

    def _build_lookup(self, task: BuildLookupMapTask, emit: Emit) -> None:
        world = self._require_world()
        query = task.query
        existing = self.lookup
        if (
            existing is not None
            and existing.resolution == task.resolution
            and existing.matches(query)
        ):
            LOGGER.debug("Worker %d reusing lookup map for %s", self.worker_id, query.projection_name)
            emit(LookupComplete(task.batch_id, self.worker_id))
            return

        def report(progress: float) -> None:
            if task.report_progress:
                emit(LookupProgress(task.batch_id, self.worker_id, progress))

        self.lookup = build_lookup_map(
            PointClassifier(world, self.config.classifier),
            self.context_for(query),
            task.resolution,
            on_progress=report,
            progress_every_rows=self.config.lookup.progress_every_rows,
        )
        emit(LookupComplete(task.batch_id, self.worker_id))


class WorkerPool(Protocol):
    mode: str

    @property
    def size(self) -> int: ...

    def submit(self, worker_id: int, task: Task) -> None: ...

    def get_result(self) -> Result: ...

    def close(self) -> None: ...


class InlineWorkerPool:
    """Runs worker states synchronously in the calling process."""

    mode = "inline"

    def __init__(self, config: EngineConfig, size: int = 1) -> None:
        if size < 1:
            raise ValueError("Pool size must be >= 1")
        self._workers = [WorkerState(i, config) for i in range(size)]
        self._results: deque[Result] = deque()

    @property
    def size(self) -> int:
        return len(self._workers)

    def submit(self, worker_id: int, task: Task) -> None:
        self._workers[worker_id].handle(task, self._results.append)

    def get_result(self) -> Result:
        if not self._results:
            raise RuntimeError("No pending results in inline pool")
        return self._results.popleft()

    def close(self) -> None:
        self._results.clear()


def _worker_main(worker_id: int, config: EngineConfig, tasks: Any, results: Any) -> None:
    state = WorkerState(worker_id, config)
    LOGGER.debug("Worker %d started (pid %d)", worker_id, os.getpid())
    while True:
        task = tasks.get()
        if task is None:
            break
        state.handle(task, results.put)


class ProcessWorkerPool:
    """One long-lived process per worker, each with its own inbound task queue."""

    mode = "process"

    def __init__(self, config: EngineConfig, size: int, start_method: str | None = None) -> None:
        if size < 1:
            raise ValueError("Pool size must be >= 1")
        ctx = mp.get_context(start_method)
        self._results = ctx.Queue()
        self._tasks = [ctx.Queue() for _ in range(size)]
        self._processes = [
            ctx.Process(
                target=_worker_main,
                args=(i, config, self._tasks[i], self._results),
                name=f"dotsmap-worker-{i}",
                daemon=True,
            )
            for i in range(size)
        ]
        for proc in self._processes:
            proc.start()
        self._closed = False
        LOGGER.info("Started %d worker processes (%s)", size, ctx.get_start_method())

    @property
    def size(self) -> int:
        return len(self._processes)

    def submit(self, worker_id: int, task: Task) -> None:
        if self._closed:
            raise RuntimeError("Worker pool is closed")
        self._tasks[worker_id].put(task)

    def get_result(self) -> Result:
        while True:
            try:
                return self._results.get(timeout=_RESULT_POLL_S)
            except queue.Empty:
                dead = [proc for proc in self._processes if not proc.is_alive()]
                if dead:
                    proc = dead[0]
                    raise WorkerCrashedError(f"Worker process {proc.name} exited with code {proc.exitcode}")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for task_queue in self._tasks:
            task_queue.put(None)
        for proc in self._processes:
            proc.join(timeout=_JOIN_TIMEOUT_S)
            if proc.is_alive():
                LOGGER.warning("Terminating unresponsive worker %s", proc.name)
                proc.terminate()
                proc.join()
        for task_queue in self._tasks:
            task_queue.close()
        self._results.close()


def pool_size(max_workers: int) -> int:
    """Pool size capped at :data:`MAX_POOL_SIZE` and the host CPU count."""
    return max(1, min(max_workers, MAX_POOL_SIZE, os.cpu_count() or 1))


def create_pool(config: EngineConfig) -> WorkerPool:
    size = pool_size(config.workers.max_workers)
    if config.workers.mode == "inline" or size <= 1:
        return InlineWorkerPool(config, size=size)
    return ProcessWorkerPool(config, size, config.workers.start_method)
