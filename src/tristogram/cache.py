"""On-disk store of built histograms, keyed by image file identity."""
from __future__ import annotations

import hashlib
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import numpy as np

from .histogram import HistogramBuilderConfig
from .types import Histogram

CACHE_FORMAT_VERSION = 1


@dataclass(frozen=True)
class CacheDescriptor:
    """Identity of an image file plus the builder settings applied to it."""

    image_path: Path
    size: int
    mtime_ns: int
    track_sources: bool

    @classmethod
    def for_file(cls, image_path: Path, builder: HistogramBuilderConfig) -> Optional["CacheDescriptor"]:
        try:
            stats = Path(image_path).stat()
        except OSError:
            return None
        return cls(
            image_path=Path(image_path).resolve(),
            size=int(stats.st_size),
            mtime_ns=int(stats.st_mtime_ns),
            track_sources=bool(builder.track_sources),
        )

    def digest(self) -> str:
        key = {
            "format": CACHE_FORMAT_VERSION,
            "image": str(self.image_path),
            "bytes": self.size,
            "mtime_ns": self.mtime_ns,
            "track_sources": self.track_sources,
        }
        return hashlib.sha256(json.dumps(key, sort_keys=True).encode("utf-8")).hexdigest()


def _histogram_arrays(histogram: Histogram) -> Dict[str, np.ndarray]:
    arrays = {
        "format": np.array(CACHE_FORMAT_VERSION, dtype=np.int64),
        "shape": np.array([histogram.width, histogram.height], dtype=np.int64),
        "colors": histogram.colors,
        "counts": histogram.counts,
    }
    if histogram.pixel_bins is not None:
        arrays["pixel_bins"] = histogram.pixel_bins
    return arrays


def _histogram_from_arrays(arrays) -> Histogram:
    if int(arrays["format"][()]) != CACHE_FORMAT_VERSION:
        raise ValueError("cache entry written by an incompatible format")
    width, height = (int(value) for value in arrays["shape"])
    colors = np.ascontiguousarray(arrays["colors"], dtype=np.uint8).reshape(-1, 3)
    counts = np.ascontiguousarray(arrays["counts"], dtype=np.int64)
    pixel_bins = None
    if "pixel_bins" in arrays.files:
        pixel_bins = np.ascontiguousarray(arrays["pixel_bins"], dtype=np.int64)
    if colors.shape[0] != counts.shape[0] or int(counts.sum()) != width * height:
        raise ValueError("cache entry is inconsistent with its recorded shape")
    for array in (colors, counts, pixel_bins):
        if array is not None:
            array.setflags(write=False)
    return Histogram(
        width=width,
        height=height,
        colors=colors,
        counts=counts,
        max_count=int(counts.max()) if counts.size else 0,
        pixel_bins=pixel_bins,
    )


class HistogramCache:
    """Keeps one ``.npz`` per (image file, builder settings) under ``base_dir``.

    An entry goes stale as soon as the image's size or mtime changes, since
    both feed the key. Unreadable entries are deleted and reported as misses.
    """

    def __init__(self, base_dir: Path, logger: Optional[logging.Logger] = None) -> None:
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._logger = logger or logging.getLogger(__name__)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def entry_path(self, image_path: Path, builder: HistogramBuilderConfig) -> Optional[Path]:
        descriptor = CacheDescriptor.for_file(image_path, builder)
        if descriptor is None:
            return None
        return self._base_dir / f"{descriptor.digest()}.npz"

    def load(self, image_path: Path, builder: HistogramBuilderConfig) -> Optional[Histogram]:
        entry = self.entry_path(image_path, builder)
        if entry is None or not entry.is_file():
            return None
        try:
            with np.load(entry, allow_pickle=False) as arrays:
                return _histogram_from_arrays(arrays)
        except Exception as error:
            self._logger.warning("Dropping unreadable cache entry %s: %s", entry.name, error)
            entry.unlink(missing_ok=True)
            return None

    def store(self, image_path: Path, builder: HistogramBuilderConfig, histogram: Histogram) -> Optional[Path]:
        entry = self.entry_path(image_path, builder)
        if entry is None:
            return None
        partial = entry.with_name(f"{entry.stem}.partial.npz")
        try:
            np.savez(partial, **_histogram_arrays(histogram))
            os.replace(partial, entry)
        except OSError as error:
            self._logger.warning("Could not cache histogram for %s: %s", image_path, error)
            partial.unlink(missing_ok=True)
            return None
        self._logger.debug("Cached histogram for %s as %s", image_path, entry.name)
        return entry

    def clear(self) -> int:
        removed = 0
        for entry in self._base_dir.glob("*.npz"):
            entry.unlink(missing_ok=True)
            removed += 1
        return removed
