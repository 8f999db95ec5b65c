"""Typed configuration loader for the engine YAML file."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, cast

import yaml

from .regions import DEFAULT_REGION_OVERRIDES, RegionOverride, load_region_overrides

_DAY_S = 24 * 60 * 60


def _mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"Expected mapping for '{field_name}'")
    return cast(Mapping[str, Any], value)


def _str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Expected integer for '{field_name}'")
    return value


def _float(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise ValueError(f"Expected float for '{field_name}'")


def _bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"Expected bool for '{field_name}'")
    return value


def _optional_path(value: Any, field_name: str, root_dir: Path) -> Path | None:
    if value is None:
        return None
    p = Path(_str(value, field_name))
    return p if p.is_absolute() else root_dir / p


@dataclass(frozen=True, slots=True)
class GridConfig:
    cell_size_deg: float = 10.0

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> GridConfig:
        cell_size = _float(raw.get("cell_size_deg", 10.0), "grid.cell_size_deg")
        if cell_size <= 0 or cell_size > 90:
            raise ValueError("grid.cell_size_deg must be in (0, 90]")
        return cls(cell_size_deg=cell_size)


@dataclass(frozen=True, slots=True)
class PreprocessConfig:
    high_latitude_wrap_deg: float = 60.0
    sample_count: int = 50
    polar_sample_count: int = 100
    margin: float = 1.02
    antimeridian_margin: float = 1.2
    polar_radius_deg: float = 60.0
    polar_lat_center_deg: float = 60.0
    name_field: str = "name"
    region_overrides: tuple[RegionOverride, ...] = DEFAULT_REGION_OVERRIDES

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> PreprocessConfig:
        sample_count = _int(raw.get("sample_count", 50), "preprocess.sample_count")
        polar_sample_count = _int(raw.get("polar_sample_count", 100), "preprocess.polar_sample_count")
        if sample_count < 1 or polar_sample_count < 1:
            raise ValueError("preprocess sample counts must be >= 1")
        margin = _float(raw.get("margin", 1.02), "preprocess.margin")
        antimeridian_margin = _float(raw.get("antimeridian_margin", 1.2), "preprocess.antimeridian_margin")
        if margin < 1.0 or antimeridian_margin < 1.0:
            raise ValueError("preprocess margins must be >= 1.0")
        overrides_path = _optional_path(
            raw.get("region_overrides"), "preprocess.region_overrides", root_dir
        )
        if overrides_path is not None and not overrides_path.exists():
            raise FileNotFoundError(f"Region overrides file not found: {overrides_path}")
        return cls(
            high_latitude_wrap_deg=_float(
                raw.get("high_latitude_wrap_deg", 60.0), "preprocess.high_latitude_wrap_deg"
            ),
            sample_count=sample_count,
            polar_sample_count=polar_sample_count,
            margin=margin,
            antimeridian_margin=antimeridian_margin,
            polar_radius_deg=_float(raw.get("polar_radius_deg", 60.0), "preprocess.polar_radius_deg"),
            polar_lat_center_deg=_float(
                raw.get("polar_lat_center_deg", 60.0), "preprocess.polar_lat_center_deg"
            ),
            name_field=_str(raw.get("name_field", "name"), "preprocess.name_field"),
            region_overrides=load_region_overrides(overrides_path),
        )


@dataclass(frozen=True, slots=True)
class ClassifierConfig:
    antimeridian_band_deg: float = 30.0
    high_latitude_deg: float = 60.0
    alaska_min_lat: float = 50.0
    alaska_max_lon: float = -150.0
    alaska_wrap_lon: float = -170.0

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ClassifierConfig:
        band = _float(raw.get("antimeridian_band_deg", 30.0), "classifier.antimeridian_band_deg")
        if band < 0 or band >= 180:
            raise ValueError("classifier.antimeridian_band_deg must be in [0, 180)")
        return cls(
            antimeridian_band_deg=band,
            high_latitude_deg=_float(raw.get("high_latitude_deg", 60.0), "classifier.high_latitude_deg"),
            alaska_min_lat=_float(raw.get("alaska_min_lat", 50.0), "classifier.alaska_min_lat"),
            alaska_max_lon=_float(raw.get("alaska_max_lon", -150.0), "classifier.alaska_max_lon"),
            alaska_wrap_lon=_float(raw.get("alaska_wrap_lon", -170.0), "classifier.alaska_wrap_lon"),
        )


@dataclass(frozen=True, slots=True)
class WorkersConfig:
    mode: str = "process"
    max_workers: int = 8
    start_method: str | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> WorkersConfig:
        mode = _str(raw.get("mode", "process"), "workers.mode").casefold()
        allowed = {"process", "inline"}
        if mode not in allowed:
            raise ValueError("workers.mode must be one of: " + ", ".join(sorted(allowed)))
        max_workers = _int(raw.get("max_workers", 8), "workers.max_workers")
        if max_workers < 1:
            raise ValueError("workers.max_workers must be >= 1")
        start_raw = raw.get("start_method")
        start_method = None if start_raw is None else _str(start_raw, "workers.start_method")
        if start_method is not None and start_method not in {"fork", "spawn", "forkserver"}:
            raise ValueError("workers.start_method must be one of: fork, forkserver, spawn")
        return cls(mode=mode, max_workers=max_workers, start_method=start_method)


@dataclass(frozen=True, slots=True)
class LookupConfig:
    resolution: int = 2
    progress_every_rows: int = 10

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> LookupConfig:
        resolution = _int(raw.get("resolution", 2), "lookup.resolution")
        every = _int(raw.get("progress_every_rows", 10), "lookup.progress_every_rows")
        if resolution < 1:
            raise ValueError("lookup.resolution must be >= 1")
        if every < 1:
            raise ValueError("lookup.progress_every_rows must be >= 1")
        return cls(resolution=resolution, progress_every_rows=every)


@dataclass(frozen=True, slots=True)
class CacheConfig:
    enabled: bool = True
    directory: Path | None = None
    memory_items: int = 10
    max_entry_bytes: int = 4 * 1024 * 1024
    storage_quota_bytes: int | None = None
    ttl_s: float = 7 * _DAY_S
    aggressive_ttl_s: float = 1 * _DAY_S

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> CacheConfig:
        memory_items = _int(raw.get("memory_items", 10), "cache.memory_items")
        if memory_items < 1:
            raise ValueError("cache.memory_items must be >= 1")
        max_entry_bytes = _int(raw.get("max_entry_bytes", 4 * 1024 * 1024), "cache.max_entry_bytes")
        quota_raw = raw.get("storage_quota_bytes")
        quota = None if quota_raw is None else _int(quota_raw, "cache.storage_quota_bytes")
        ttl_days = _float(raw.get("ttl_days", 7), "cache.ttl_days")
        aggressive_days = _float(raw.get("aggressive_ttl_days", 1), "cache.aggressive_ttl_days")
        if ttl_days <= 0 or aggressive_days <= 0:
            raise ValueError("cache TTLs must be > 0")
        if aggressive_days > ttl_days:
            raise ValueError("cache.aggressive_ttl_days cannot be greater than cache.ttl_days")
        return cls(
            enabled=_bool(raw.get("enabled", True), "cache.enabled"),
            directory=_optional_path(raw.get("directory"), "cache.directory", root_dir),
            memory_items=memory_items,
            max_entry_bytes=max_entry_bytes,
            storage_quota_bytes=quota,
            ttl_s=ttl_days * _DAY_S,
            aggressive_ttl_s=aggressive_days * _DAY_S,
        )


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    log_file: Path | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> LoggingConfig:
        return cls(log_file=_optional_path(raw.get("log_file"), "logging.log_file", root_dir))


@dataclass(frozen=True, slots=True)
class EngineConfig:
    source_path: Path | None
    grid: GridConfig
    preprocess: PreprocessConfig
    classifier: ClassifierConfig
    workers: WorkersConfig
    lookup: LookupConfig
    cache: CacheConfig
    logging: LoggingConfig

    @classmethod
    def default(cls) -> EngineConfig:
        return cls(
            source_path=None,
            grid=GridConfig(),
            preprocess=PreprocessConfig(),
            classifier=ClassifierConfig(),
            workers=WorkersConfig(),
            lookup=LookupConfig(),
            cache=CacheConfig(),
            logging=LoggingConfig(),
        )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], source_path: Path | None = None) -> EngineConfig:
        root_dir = source_path.parent.resolve() if source_path is not None else Path.cwd()
        return cls(
            source_path=source_path.resolve() if source_path is not None else None,
            grid=GridConfig.from_mapping(_mapping(raw.get("grid"), "grid")),
            preprocess=PreprocessConfig.from_mapping(
                _mapping(raw.get("preprocess"), "preprocess"), root_dir
            ),
            classifier=ClassifierConfig.from_mapping(_mapping(raw.get("classifier"), "classifier")),
            workers=WorkersConfig.from_mapping(_mapping(raw.get("workers"), "workers")),
            lookup=LookupConfig.from_mapping(_mapping(raw.get("lookup"), "lookup")),
            cache=CacheConfig.from_mapping(_mapping(raw.get("cache"), "cache"), root_dir),
            logging=LoggingConfig.from_mapping(_mapping(raw.get("logging"), "logging"), root_dir),
        )


def load_config(path: str | Path) -> EngineConfig:
    """Load and validate the YAML config file into typed settings."""
    cfg_path = Path(path).resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ValueError("Top-level config must be a YAML mapping")
    return EngineConfig.from_mapping(cast(Mapping[str, Any], raw), cfg_path)
