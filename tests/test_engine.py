"""End-to-end tests for dotsmap.engine.

Covers:
- Loading collections from memory and from disk
- Dot classification through the inline pool
- Result caching and failure handling
- Lookup-map builds through the engine
- A small multi-process pool run
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from dotsmap.config import EngineConfig
from dotsmap.engine import DotMapEngine
from dotsmap.models import QueryParams
from dotsmap.scheduler import ChunkProcessingError
from dotsmap.workers import InlineWorkerPool, ProcessWorkerPool

OCEAN_QUERY = QueryParams(360, 180, "equirectangular", 5, include_ocean_dots=True)
LAND_QUERY = QueryParams(360, 180, "equirectangular", 5)


def _by_position(result) -> dict[tuple[float, float], str | None]:
    return {(dot.x, dot.y): dot.country_name for dot in result.dots}


@pytest.fixture
def cached_config() -> EngineConfig:
    return EngineConfig.from_mapping({"workers": {"mode": "inline", "max_workers": 1}})


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestComputeDots:
    def test_two_squares_equirectangular(self, inline_config: EngineConfig, two_squares: dict) -> None:
        with DotMapEngine(inline_config) as engine:
            assert engine.load(two_squares) == ("A", "B")
            result = engine.compute_dots(OCEAN_QUERY)
        dots = _by_position(result)
        assert dots[(185, 85)] == "A"
        assert dots[(205, 85)] == "B"
        assert dots[(195, 85)] is None
        assert result.debug_info.parallel_workers == 1

    def test_coordinates_match_screen_position(self, inline_config: EngineConfig, two_squares: dict) -> None:
        with DotMapEngine(inline_config) as engine:
            engine.load(two_squares)
            result = engine.compute_dots(LAND_QUERY)
        for dot in result.dots:
            assert dot.coordinates is not None
            assert dot.coordinates[0] == pytest.approx(dot.x - 180.0, abs=1e-6)
            assert dot.coordinates[1] == pytest.approx(90.0 - dot.y, abs=1e-6)

    def test_alaska_through_the_grid(self, inline_config: EngineConfig, usa_world: dict) -> None:
        with DotMapEngine(inline_config) as engine:
            engine.load(usa_world)
            dots = _by_position(engine.compute_dots(LAND_QUERY))
        assert dots[(5, 25)] == "USA"
        assert dots[(80, 50)] == "USA"
        assert dots[(80, 70)] == "Mexico"

    def test_compute_before_load_raises(self, inline_config: EngineConfig) -> None:
        with DotMapEngine(inline_config) as engine:
            assert not engine.loaded
            with pytest.raises(RuntimeError):
                engine.compute_dots(LAND_QUERY)

    def test_load_file(self, inline_config: EngineConfig, two_squares: dict, tmp_path: Path) -> None:
        path = tmp_path / "world.geojson"
        path.write_text(json.dumps(two_squares), encoding="utf-8")
        with DotMapEngine(inline_config) as engine:
            assert engine.load_file(path) == ("A", "B")
            assert engine.loaded

    def test_explicit_inline_pool(self, inline_config: EngineConfig, two_squares: dict) -> None:
        with DotMapEngine(inline_config, pool=InlineWorkerPool(inline_config, size=3)) as engine:
            engine.load(two_squares)
            result = engine.compute_dots(OCEAN_QUERY)
        assert result.debug_info.parallel_workers == 3
        assert _by_position(result)[(185, 85)] == "A"


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class TestEngineCache:
    def test_second_call_is_a_cache_hit(self, cached_config: EngineConfig, two_squares: dict) -> None:
        with DotMapEngine(cached_config) as engine:
            engine.load(two_squares)
            first = engine.compute_dots(LAND_QUERY)
            second = engine.compute_dots(LAND_QUERY)
            assert second is first
            assert engine.cache_stats().memory_items == 1

    def test_different_queries_are_cached_separately(self, cached_config: EngineConfig, two_squares: dict) -> None:
        with DotMapEngine(cached_config) as engine:
            engine.load(two_squares)
            land = engine.compute_dots(LAND_QUERY)
            ocean = engine.compute_dots(OCEAN_QUERY)
            assert land is not ocean
            assert engine.cache_stats().memory_items == 2
            engine.clear_cache()
            assert engine.cache_stats().memory_items == 0

    def test_disabled_cache(self, inline_config: EngineConfig, two_squares: dict) -> None:
        with DotMapEngine(inline_config) as engine:
            engine.load(two_squares)
            first = engine.compute_dots(LAND_QUERY)
            assert engine.compute_dots(LAND_QUERY) is not first
            assert engine.cache is None
            assert engine.cache_stats().memory_items == 0

    def test_failed_batch_is_not_cached(
        self,
        cached_config: EngineConfig,
        two_squares: dict,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def _boom(*args, **kwargs):
            raise RuntimeError("projection exploded")

        with DotMapEngine(cached_config) as engine:
            engine.load(two_squares)
            monkeypatch.setattr("dotsmap.workers.classify_chunk", _boom)
            with pytest.raises(ChunkProcessingError, match="projection exploded"):
                engine.compute_dots(LAND_QUERY)
            assert engine.cache_stats().memory_items == 0

            monkeypatch.undo()
            assert engine.compute_dots(LAND_QUERY).dots


# ---------------------------------------------------------------------------
# Lookup maps
# ---------------------------------------------------------------------------


class TestEngineLookup:
    def test_build_uses_configured_resolution(self, inline_config: EngineConfig, two_squares: dict) -> None:
        events: list = []
        with DotMapEngine(inline_config) as engine:
            engine.load(two_squares)
            assert engine.build_lookup_map(LAND_QUERY, events.append) is True
            assert engine.build_lookup_map(LAND_QUERY) is False
            lookup = engine.pool._workers[0].lookup
        assert lookup is not None
        assert lookup.resolution == inline_config.lookup.resolution
        assert events

    def test_build_before_load_raises(self, inline_config: EngineConfig) -> None:
        with DotMapEngine(inline_config) as engine:
            with pytest.raises(RuntimeError):
                engine.build_lookup_map(LAND_QUERY)


# ---------------------------------------------------------------------------
# Process pool
# ---------------------------------------------------------------------------


class TestProcessPool:
    def test_process_pool_matches_inline(self, inline_config: EngineConfig, two_squares: dict) -> None:
        with DotMapEngine(inline_config) as engine:
            engine.load(two_squares)
            inline = engine.compute_dots(OCEAN_QUERY)

        with DotMapEngine(inline_config, pool=ProcessWorkerPool(inline_config, size=2)) as engine:
            assert engine.load(two_squares) == ("A", "B")
            parallel = engine.compute_dots(OCEAN_QUERY)

        assert [d.to_dict() for d in parallel.dots] == [d.to_dict() for d in inline.dots]
        assert parallel.debug_info.parallel_workers == 2

    def test_close_is_idempotent(self, inline_config: EngineConfig) -> None:
        engine = DotMapEngine(inline_config, pool=ProcessWorkerPool(inline_config, size=1))
        engine.close()
        engine.close()
