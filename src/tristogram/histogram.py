"""Sparse color histogram construction."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .raster import RasterBuffer
from .types import Histogram


@dataclass
class HistogramBuilderConfig:
    track_sources: bool = True


def pack_colors(rgb: np.ndarray) -> np.ndarray:
    """Pack an ``(n, 3)`` array of 8-bit channels into ``R<<16 | G<<8 | B`` keys."""
    rgb = np.asarray(rgb, dtype=np.uint32)
    return (rgb[:, 0] << 16) | (rgb[:, 1] << 8) | rgb[:, 2]


def unpack_colors(keys: np.ndarray) -> np.ndarray:
    keys = np.asarray(keys, dtype=np.uint32)
    return np.stack([(keys >> 16) & 0xFF, (keys >> 8) & 0xFF, keys & 0xFF], axis=1).astype(np.uint8)


class HistogramBuilder:
    """Bins every pixel of a raster by its RGB color in a single pass.

    The packed color key is the lookup into an arena of parallel arrays
    (``colors``, ``counts``), so only observed colors take memory. Alpha is
    ignored. With ``track_sources`` the per-pixel bin index is retained and
    each bin's ``(x, y)`` sources are materialized from it on request, in
    row-major order.
    """

    def __init__(self, config: HistogramBuilderConfig | None = None, logger: Optional[logging.Logger] = None) -> None:
        self._config = config or HistogramBuilderConfig()
        self._logger = logger or logging.getLogger(__name__)

    def build(self, raster: RasterBuffer) -> Histogram:
        pixels = raster.data.reshape(-1, 4)
        if pixels.shape[0] == 0:
            empty_bins = np.zeros(0, dtype=np.int64) if self._config.track_sources else None
            return self._freeze(raster, np.zeros((0, 3), dtype=np.uint8), np.zeros(0, dtype=np.int64), empty_bins)

        keys = pack_colors(pixels[:, :3])
        unique_keys, inverse, counts = np.unique(keys, return_inverse=True, return_counts=True)
        colors = unpack_colors(unique_keys)
        pixel_bins = inverse.reshape(-1).astype(np.int64) if self._config.track_sources else None

        histogram = self._freeze(raster, colors, counts.astype(np.int64), pixel_bins)
        self._logger.debug(
            "Built histogram for %dx%d raster: %d colors, max count %d",
            raster.width,
            raster.height,
            len(histogram),
            histogram.max_count,
        )
        return histogram

    # ------------------------------------------------------------------
    def _freeze(
        self,
        raster: RasterBuffer,
        colors: np.ndarray,
        counts: np.ndarray,
        pixel_bins: Optional[np.ndarray],
    ) -> Histogram:
        for array in (colors, counts, pixel_bins):
            if array is not None:
                array.setflags(write=False)
        max_count = int(counts.max()) if counts.size else 0
        return Histogram(
            width=raster.width,
            height=raster.height,
            colors=colors,
            counts=counts,
            max_count=max_count,
            pixel_bins=pixel_bins,
        )


def build_histogram(raster: RasterBuffer, track_sources: bool = True) -> Histogram:
    return HistogramBuilder(HistogramBuilderConfig(track_sources=track_sources)).build(raster)
