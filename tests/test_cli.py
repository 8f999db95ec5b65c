"""Tests for dotsmap.cli.

Covers:
- classify and build-lookup commands
- cache-stats and cache-clear commands
- Exit codes for bad configs, inputs and arguments
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from dotsmap import cli
from dotsmap.cache import CACHE_PREFIX

INLINE_CONFIG = """
workers: {mode: inline, max_workers: 1}
cache: {enabled: false}
"""


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(INLINE_CONFIG, encoding="utf-8")
    return path


@pytest.fixture
def features_path(tmp_path: Path, two_squares: dict) -> Path:
    path = tmp_path / "world.geojson"
    path.write_text(json.dumps(two_squares), encoding="utf-8")
    return path


def _query_args(features: Path) -> list[str]:
    return ["--features", str(features), "--width", "360", "--height", "180"]


# ---------------------------------------------------------------------------
# Classification commands
# ---------------------------------------------------------------------------


class TestClassify:
    def test_writes_dots(self, tmp_path: Path, config_path: Path, features_path: Path) -> None:
        output = tmp_path / "out" / "dots.json"
        code = cli.main(
            [
                "classify",
                "--config",
                str(config_path),
                *_query_args(features_path),
                "--spacing",
                "5",
                "--output",
                str(output),
            ]
        )
        assert code == 0
        payload = json.loads(output.read_text(encoding="utf-8"))
        assert {dot["countryName"] for dot in payload["dots"]} == {"A", "B"}
        assert payload["debugInfo"]["parallelWorkers"] == 1

    def test_include_ocean_and_lookup(self, tmp_path: Path, config_path: Path, features_path: Path) -> None:
        output = tmp_path / "dots.json"
        code = cli.main(
            [
                "classify",
                "--config",
                str(config_path),
                *_query_args(features_path),
                "--projection",
                "geoEquirectangular",
                "--spacing",
                "10",
                "--include-ocean",
                "--use-lookup",
                "--resolution",
                "1",
                "--output",
                str(output),
            ]
        )
        assert code == 0
        payload = json.loads(output.read_text(encoding="utf-8"))
        assert None in {dot["countryName"] for dot in payload["dots"]}
        assert payload["debugInfo"]["totalChecks"] == 0

    def test_build_lookup(self, config_path: Path, features_path: Path) -> None:
        code = cli.main(["build-lookup", "--config", str(config_path), *_query_args(features_path), "--resolution", "4"])
        assert code == 0


# ---------------------------------------------------------------------------
# Cache commands
# ---------------------------------------------------------------------------


class TestCacheCommands:
    def test_stats_and_clear(self, tmp_path: Path, features_path: Path) -> None:
        config = tmp_path / "cached.yaml"
        config.write_text(
            "workers: {mode: inline, max_workers: 1}\ncache: {directory: store}\n",
            encoding="utf-8",
        )
        assert cli.main(["classify", "--config", str(config), *_query_args(features_path), "--spacing", "20"]) == 0
        stored = list((tmp_path / "store").glob(f"{CACHE_PREFIX}equirectangular*.json"))
        assert len(stored) == 1

        assert cli.main(["cache-stats", "--config", str(config)]) == 0
        assert cli.main(["cache-clear", "--config", str(config)]) == 0
        assert list((tmp_path / "store").glob(f"{CACHE_PREFIX}equirectangular*.json")) == []

    def test_stats_without_config(self) -> None:
        assert cli.main(["cache-stats"]) == 0


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    def test_bad_config_returns_one(self, tmp_path: Path, features_path: Path) -> None:
        config = tmp_path / "bad.yaml"
        config.write_text("workers: {mode: threads}\n", encoding="utf-8")
        assert cli.main(["classify", "--config", str(config), *_query_args(features_path)]) == 1

    def test_missing_features_returns_one(self, tmp_path: Path, config_path: Path) -> None:
        assert cli.main(["classify", "--config", str(config_path), *_query_args(tmp_path / "none.geojson")]) == 1

    def test_unknown_projection_returns_one(self, config_path: Path, features_path: Path) -> None:
        args = ["classify", "--config", str(config_path), *_query_args(features_path), "--projection", "robinson"]
        assert cli.main(args) == 1

    def test_missing_required_argument_exits(self) -> None:
        with pytest.raises(SystemExit) as excinfo:
            cli.main(["classify"])
        assert excinfo.value.code == 2

    def test_error_is_logged(
        self, tmp_path: Path, features_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        config = tmp_path / "bad.yaml"
        config.write_text("grid: {cell_size_deg: 0}\n", encoding="utf-8")
        with caplog.at_level("ERROR", logger="dotsmap.cli"):
            cli.main(["classify", "--config", str(config), *_query_args(features_path)])
        assert "[ERROR] classify failed" in caplog.text
