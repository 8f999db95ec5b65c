"""Typed task and result records exchanged between the scheduler and workers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from .models import ClassificationResult, DebugInfo, QueryParams


@dataclass(frozen=True, slots=True)
class ChunkSpec:
    """Spacing-aligned column range ``[start_x, end_x)`` of the sample grid."""

    chunk_id: int
    start_x: int
    end_x: int


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InitTask:
    batch_id: int
    collection: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class ProcessChunkTask:
    batch_id: int
    query: QueryParams
    chunk: ChunkSpec


@dataclass(frozen=True, slots=True)
class BuildLookupMapTask:
    batch_id: int
    query: QueryParams
    resolution: int
    report_progress: bool = True


Task = Union[InitTask, ProcessChunkTask, BuildLookupMapTask]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FeaturesReady:
    batch_id: int
    worker_id: int
    country_names: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ChunkResult:
    batch_id: int
    worker_id: int
    chunk: ChunkSpec
    dots: tuple[ClassificationResult, ...]
    debug_info: DebugInfo = field(default_factory=DebugInfo)


@dataclass(frozen=True, slots=True)
class LookupProgress:
    batch_id: int
    worker_id: int
    progress: float


@dataclass(frozen=True, slots=True)
class LookupComplete:
    batch_id: int
    worker_id: int


@dataclass(frozen=True, slots=True)
class WorkerError:
    batch_id: int
    worker_id: int
    message: str
    chunk_id: int | None = None


Result = Union[FeaturesReady, ChunkResult, LookupProgress, LookupComplete, WorkerError]
