"""Two-tier memo of classified dot grids keyed by query fingerprint.

The memory tier is an insertion-ordered dict capped at ``memory_items``; hits do not
reorder it. The optional file tier keeps one JSON payload per key next to a metadata
file of ``{created, lastAccess, size}`` records, evicted by age. The cache is
best-effort: storage failures are logged and never raised to callers.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from .config import CacheConfig
from .models import DotsResult, Fingerprint
from .util import read_json, write_json

LOGGER = logging.getLogger("dotsmap.cache")

CACHE_PREFIX = "dotsmap_cache_"
METADATA_NAME = f"{CACHE_PREFIX}metadata.json"
TMP_SUFFIX = ".tmp"


class CacheQuotaExceededError(OSError):
    """A write would push the file tier past ``storage_quota_bytes``."""


@dataclass(slots=True)
class CacheEntryMeta:
    created: float
    last_access: float
    size: int

    def to_dict(self) -> dict[str, Any]:
        return {"created": self.created, "lastAccess": self.last_access, "size": self.size}

    @classmethod
    def from_mapping(cls, raw: Any) -> CacheEntryMeta:
        if not isinstance(raw, dict):
            raise ValueError("Expected mapping for cache metadata entry")
        return cls(
            created=float(raw["created"]),
            last_access=float(raw["lastAccess"]),
            size=int(raw.get("size", 0)),
        )


@dataclass(frozen=True, slots=True)
class CacheStats:
    memory_items: int
    storage_items: int
    total_bytes: int

    @property
    def total_mb(self) -> float:
        return round(self.total_bytes / 1024 / 1024, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "memoryItems": self.memory_items,
            "storageItems": self.storage_items,
            "totalBytes": self.total_bytes,
            "totalMB": f"{self.total_mb:.2f}",
        }


class ResultCache:
    def __init__(self, config: CacheConfig | None = None, clock: Callable[[], float] = time.time) -> None:
        self.config = config or CacheConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._memory: OrderedDict[str, DotsResult] = OrderedDict()
        self._directory: Path | None = self.config.directory
        self._metadata: dict[str, CacheEntryMeta] = {}
        if self._directory is not None:
            self._directory.mkdir(parents=True, exist_ok=True)
            self._metadata = self._load_metadata()
            self.clean_old_entries()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, fingerprint: Fingerprint) -> DotsResult | None:
        key = fingerprint.key
        with self._lock:
            cached = self._memory.get(key)
            if cached is not None:
                LOGGER.info("Memory cache hit: %s", key)
                return cached
            if self._directory is not None:
                loaded = self._read_payload(key)
                if loaded is not None:
                    LOGGER.info("Storage cache hit: %s", key)
                    self._remember(key, loaded)
                    meta = self._metadata.get(key)
                    if meta is not None:
                        meta.last_access = self._clock()
                        self._save_metadata()
                    return loaded
            LOGGER.info("Cache miss: %s", key)
            return None

    def set(self, fingerprint: Fingerprint, result: DotsResult) -> None:
        key = fingerprint.key
        with self._lock:
            self._remember(key, result)
            if self._directory is None:
                return
            try:
                self._write_payload(key, result)
            except (OSError, TypeError, ValueError) as exc:
                LOGGER.warning("Failed to persist cache entry %s: %s", key, exc)
                self.clean_old_entries(aggressive=True)

    def clear(self) -> None:
        with self._lock:
            self._memory.clear()
            if self._directory is None:
                return
            for key in list(self._metadata):
                self._remove_payload(key)
            for pattern in (f"{CACHE_PREFIX}*.json", f"{CACHE_PREFIX}*{TMP_SUFFIX}"):
                for path in self._directory.glob(pattern):
                    if path.name != METADATA_NAME:
                        self._unlink(path)
            self._metadata = {}
            self._save_metadata()
            LOGGER.info("Cache cleared")

    def clean_old_entries(self, aggressive: bool = False) -> int:
        """Evict stored entries by age; aggressive mode frees at least half when none are stale."""
        with self._lock:
            if self._directory is None:
                return 0
            max_age = self.config.aggressive_ttl_s if aggressive else self.config.ttl_s
            now = self._clock()
            doomed = [key for key, meta in self._metadata.items() if now - meta.last_access > max_age]
            if aggressive and not doomed:
                by_age = sorted(self._metadata.items(), key=lambda item: item[1].last_access)
                doomed = [key for key, _ in by_age[: len(by_age) // 2]]
            for key in doomed:
                self._remove_payload(key)
                del self._metadata[key]
            if doomed:
                LOGGER.info("Cleaned %d old cache entries", len(doomed))
                self._save_metadata()
            return len(doomed)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                memory_items=len(self._memory),
                storage_items=len(self._metadata),
                total_bytes=sum(meta.size for meta in self._metadata.values()),
            )

    # ------------------------------------------------------------------
    # Memory tier
    # ------------------------------------------------------------------

    def _remember(self, key: str, result: DotsResult) -> None:
        self._memory[key] = result
        while len(self._memory) > self.config.memory_items:
            evicted, _ = self._memory.popitem(last=False)
            LOGGER.debug("Evicted %s from memory cache", evicted)

    # ------------------------------------------------------------------
    # File tier
    # ------------------------------------------------------------------

    def _payload_path(self, key: str) -> Path:
        assert self._directory is not None
        return self._directory / f"{CACHE_PREFIX}{key}.json"

    def _metadata_path(self) -> Path:
        assert self._directory is not None
        return self._directory / METADATA_NAME

    def _load_metadata(self) -> dict[str, CacheEntryMeta]:
        path = self._metadata_path()
        if not path.exists():
            return {}
        try:
            raw = read_json(path)
            if not isinstance(raw, dict):
                raise ValueError("Expected JSON object")
            return {str(key): CacheEntryMeta.from_mapping(value) for key, value in raw.items()}
        except (OSError, ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("Failed to load cache metadata: %s", exc)
            return {}

    def _save_metadata(self) -> None:
        try:
            write_json(self._metadata_path(), {key: meta.to_dict() for key, meta in self._metadata.items()})
        except OSError as exc:
            LOGGER.warning("Failed to save cache metadata: %s", exc)

    def _read_payload(self, key: str) -> DotsResult | None:
        path = self._payload_path(key)
        if not path.exists():
            return None
        try:
            return DotsResult.from_mapping(read_json(path))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("Failed to read cache entry %s: %s", key, exc)
            return None

    def _write_payload(self, key: str, result: DotsResult) -> None:
        text = json.dumps(result.to_dict(), separators=(",", ":"), allow_nan=False)
        size = len(text.encode("utf-8"))
        if size > self.config.max_entry_bytes:
            LOGGER.warning("Cache entry too large for storage: %s (%d bytes)", key, size)
            return

        quota = self.config.storage_quota_bytes
        if quota is not None:
            existing = self._metadata.get(key)
            used = sum(meta.size for meta in self._metadata.values()) - (existing.size if existing else 0)
            if used + size > quota:
                raise CacheQuotaExceededError(f"storage quota of {quota} bytes exceeded")

        path = self._payload_path(key)
        tmp_path = path.with_suffix(TMP_SUFFIX)
        try:
            with tmp_path.open("w", encoding="utf-8") as fh:
                fh.write(text)
            os.replace(tmp_path, path)
        except OSError:
            self._unlink(tmp_path)
            raise

        now = self._clock()
        meta = self._metadata.get(key)
        if meta is None:
            self._metadata[key] = CacheEntryMeta(created=now, last_access=now, size=size)
        else:
            meta.last_access = now
            meta.size = size
        self._save_metadata()
        LOGGER.info("Saved to cache: %s", key)

    def _remove_payload(self, key: str) -> None:
        self._unlink(self._payload_path(key))

    @staticmethod
    def _unlink(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            LOGGER.warning("Failed to remove cache file %s: %s", path, exc)
