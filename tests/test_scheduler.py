"""Tests for dotsmap.scheduler and the inline worker pool.

Covers:
- Chunk planning: completeness, disjointness and alignment
- Boundary and coordinate deduplication
- Batch execution on inline pools of different sizes
- Failure propagation, stale results and the busy guard
- Lookup-map broadcast and reuse
"""

from __future__ import annotations

import pytest

from dotsmap.config import EngineConfig
from dotsmap.messages import ChunkSpec, LookupComplete, LookupProgress
from dotsmap.models import ClassificationResult, QueryParams
from dotsmap.sampling import sample_columns
from dotsmap.scheduler import (
    ChunkProcessingError,
    ChunkScheduler,
    SchedulerBusyError,
    WorkerTaskError,
    dedup_boundaries,
    dedup_by_coordinate,
    plan_chunks,
)
from dotsmap.workers import InlineWorkerPool

QUERY = QueryParams(width=360, height=180, projection_name="equirectangular", spacing=5, include_ocean_dots=True)


def _dot(x: float, y: float, name: str | None = "A") -> ClassificationResult:
    return ClassificationResult(x=x, y=y, country_name=name, coordinates=(0.0, 0.0))


def _scheduler(config: EngineConfig, size: int, collection: dict | None = None) -> ChunkScheduler:
    scheduler = ChunkScheduler(InlineWorkerPool(config, size=size))
    if collection is not None:
        scheduler.initialize(collection)
    return scheduler


# ---------------------------------------------------------------------------
# Chunk planning
# ---------------------------------------------------------------------------


class TestPlanChunks:
    @pytest.mark.parametrize(
        ("width", "spacing", "workers"),
        [
            (360, 5, 1),
            (360, 5, 3),
            (960, 5, 8),
            (10, 3, 4),
            (7, 5, 3),
            (1, 1, 8),
            (101, 7, 6),
            (500, 13, 5),
        ],
    )
    def test_every_sample_column_in_exactly_one_chunk(self, width: int, spacing: int, workers: int) -> None:
        chunks = plan_chunks(width, spacing, workers)
        assert 1 <= len(chunks) <= workers
        covered: list[int] = []
        for chunk in chunks:
            assert chunk.start_x % spacing == 0
            assert 0 <= chunk.start_x < chunk.end_x <= width
            covered.extend(sample_columns(chunk.start_x, chunk.end_x, spacing))
        assert covered == list(range(0, width, spacing))

    def test_chunk_ids_are_sequential(self) -> None:
        chunks = plan_chunks(960, 5, 8)
        assert [c.chunk_id for c in chunks] == list(range(len(chunks)))

    def test_even_split(self) -> None:
        assert plan_chunks(360, 5, 3) == [
            ChunkSpec(0, 0, 120),
            ChunkSpec(1, 120, 240),
            ChunkSpec(2, 240, 360),
        ]

    @pytest.mark.parametrize(("width", "spacing", "workers"), [(0, 5, 1), (10, 0, 1), (10, 5, 0)])
    def test_invalid_arguments_raise(self, width: int, spacing: int, workers: int) -> None:
        with pytest.raises(ValueError):
            plan_chunks(width, spacing, workers)


# ---------------------------------------------------------------------------
# Deduplication
# ---------------------------------------------------------------------------


class TestDedup:
    def test_overlapping_boundary_column_is_dropped(self) -> None:
        chunks = [
            [_dot(0, 0), _dot(5, 0), _dot(5, 5)],
            [_dot(7, 0), _dot(7, 5), _dot(12, 0)],
        ]
        result, removed = dedup_boundaries(chunks, spacing=5)
        assert removed == 2
        assert [(d.x, d.y) for d in result[1]] == [(12, 0)]
        assert result[0] == chunks[0]

    def test_aligned_chunks_are_untouched(self) -> None:
        chunks = [[_dot(0, 0), _dot(5, 0)], [_dot(10, 0), _dot(15, 0)]]
        result, removed = dedup_boundaries(chunks, spacing=5)
        assert removed == 0
        assert result == chunks

    def test_empty_chunks_are_skipped(self) -> None:
        chunks = [[_dot(0, 0)], [], [_dot(1, 0)]]
        result, removed = dedup_boundaries(chunks, spacing=5)
        assert removed == 0
        assert result == chunks

    def test_boundary_dedup_is_idempotent(self) -> None:
        chunks = [[_dot(0, 0), _dot(5, 0)], [_dot(6, 0), _dot(11, 0)]]
        once, _ = dedup_boundaries(chunks, spacing=5)
        twice, removed = dedup_boundaries(once, spacing=5)
        assert twice == once
        assert removed == 0

    def test_coordinate_dedup_keeps_first(self) -> None:
        dots = [_dot(1.4, 2.0, "A"), _dot(1.0, 2.2, "B"), _dot(1.5, 2.0, "C"), _dot(0.5, 2.0, "D")]
        unique, removed = dedup_by_coordinate(dots)
        assert [d.country_name for d in unique] == ["A", "C"]
        assert removed == 2


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


class TestClassifyGrid:
    def test_pool_size_does_not_change_the_result(self, inline_config: EngineConfig, two_squares: dict) -> None:
        single = _scheduler(inline_config, 1, two_squares).classify_grid(QUERY)
        triple = _scheduler(inline_config, 3, two_squares).classify_grid(QUERY)
        assert [d.to_dict() for d in single.dots] == [d.to_dict() for d in triple.dots]
        assert single.debug_info.total_checks == triple.debug_info.total_checks
        assert single.debug_info.parallel_workers == 1
        assert triple.debug_info.parallel_workers == 3
        assert triple.debug_info.duplicates_removed == 0

    def test_ocean_dots_are_optional(self, inline_config: EngineConfig, two_squares: dict) -> None:
        scheduler = _scheduler(inline_config, 2, two_squares)
        land_query = QueryParams(360, 180, "equirectangular", 5)
        land = scheduler.classify_grid(land_query)
        everything = scheduler.classify_grid(QUERY)
        assert all(d.country_name is not None for d in land.dots)
        assert len(everything.dots) > len(land.dots)
        assert {d.country_name for d in land.dots} == {"A", "B"}

    def test_dots_are_unique(self, inline_config: EngineConfig, two_squares: dict) -> None:
        result = _scheduler(inline_config, 4, two_squares).classify_grid(QUERY)
        keys = [(d.x, d.y) for d in result.dots]
        assert len(keys) == len(set(keys))

    def test_progress_reports_each_chunk(self, inline_config: EngineConfig, two_squares: dict) -> None:
        events: list[float] = []
        _scheduler(inline_config, 4, two_squares).classify_grid(QUERY, events.append)
        assert events == [25, 50, 75, 100]

    def test_initialize_returns_names(self, inline_config: EngineConfig, two_squares: dict) -> None:
        scheduler = _scheduler(inline_config, 2)
        assert scheduler.initialize(two_squares) == ("A", "B")

    def test_initialize_failure_raises(self, inline_config: EngineConfig) -> None:
        scheduler = _scheduler(inline_config, 2)
        with pytest.raises(WorkerTaskError):
            scheduler.initialize({"type": "FeatureCollection", "features": "broken"})

    def test_uninitialized_pool_fails_then_recovers(self, inline_config: EngineConfig, two_squares: dict) -> None:
        scheduler = _scheduler(inline_config, 3)
        with pytest.raises(ChunkProcessingError) as excinfo:
            scheduler.classify_grid(QUERY)
        assert excinfo.value.chunk_id is not None
        assert "no features loaded" in str(excinfo.value)

        scheduler.initialize(two_squares)
        result = scheduler.classify_grid(QUERY)
        assert result.dots

    def test_reentrant_batch_is_rejected(self, inline_config: EngineConfig, two_squares: dict) -> None:
        scheduler = _scheduler(inline_config, 2, two_squares)
        errors: list[Exception] = []

        def nested(_progress: float) -> None:
            try:
                scheduler.classify_grid(QUERY)
            except SchedulerBusyError as exc:
                errors.append(exc)

        scheduler.classify_grid(QUERY, nested)
        assert len(errors) == 2
        scheduler.classify_grid(QUERY)


# ---------------------------------------------------------------------------
# Lookup maps
# ---------------------------------------------------------------------------


class TestLookupBroadcast:
    def test_progress_comes_from_first_worker_only(self, inline_config: EngineConfig, two_squares: dict) -> None:
        scheduler = _scheduler(inline_config, 3, two_squares)
        events: list[LookupProgress | LookupComplete] = []
        assert scheduler.build_lookup_map(QUERY, 2, events.append) is True
        progress = [e for e in events if isinstance(e, LookupProgress)]
        assert len(progress) == 9
        assert {e.worker_id for e in progress} == {0}
        assert isinstance(events[-1], LookupComplete)
        assert events[-1].worker_id == 0
        assert all(worker.lookup is not None for worker in scheduler.pool._workers)

    def test_second_build_is_skipped(self, inline_config: EngineConfig, two_squares: dict) -> None:
        scheduler = _scheduler(inline_config, 2, two_squares)
        assert scheduler.build_lookup_map(QUERY, 2) is True
        assert scheduler.build_lookup_map(QUERY, 2) is False
        assert scheduler.build_lookup_map(QUERY, 4) is True

    def test_reload_invalidates_lookup(self, inline_config: EngineConfig, two_squares: dict) -> None:
        scheduler = _scheduler(inline_config, 2, two_squares)
        scheduler.build_lookup_map(QUERY, 2)
        scheduler.initialize(two_squares)
        assert scheduler.build_lookup_map(QUERY, 2) is True

    def test_lookup_results_match_direct_classification(
        self, inline_config: EngineConfig, two_squares: dict
    ) -> None:
        query = QueryParams(360, 180, "equirectangular", 5, include_ocean_dots=True, resolution=1)
        direct = _scheduler(inline_config, 2, two_squares).classify_grid(query)
        scheduler = _scheduler(inline_config, 2, two_squares)
        scheduler.build_lookup_map(query, 1)
        via_lookup = scheduler.classify_grid(query)
        assert [d.to_dict() for d in via_lookup.dots] == [d.to_dict() for d in direct.dots]
        assert via_lookup.debug_info.total_checks == 0

    def test_lookup_without_features_raises(self, inline_config: EngineConfig) -> None:
        scheduler = _scheduler(inline_config, 2)
        with pytest.raises(WorkerTaskError):
            scheduler.build_lookup_map(QUERY, 2)
