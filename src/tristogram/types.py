"""Typed primitives for the Tristogram color analysis engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import List, Optional, Sequence, Tuple

import numpy as np

TOTAL_CELLS = 256 ** 3

UNASSIGNED = -1
NOISE = -2
EXCLUDED = -3

Coordinate = Tuple[int, int]


class VisualizationMode(str, Enum):
    """How frequency is mapped onto the rendered points."""

    OPACITY = "opacity"
    SIZE = "size"


@dataclass(frozen=True)
class ColorBin:
    """One distinct RGB color observed in a raster."""

    color: Tuple[int, int, int]
    count: int
    sources: Optional[List[Coordinate]] = None


@dataclass(frozen=True, eq=False)
class Histogram:
    """Sparse color histogram over the 256³ RGB cube.

    ``colors`` and ``counts`` are parallel arrays ordered by the packed
    ``R<<16 | G<<8 | B`` key. ``pixel_bins`` maps every pixel (row-major) to
    its bin and is the side table that provenance is derived from; it is
    ``None`` when the histogram was built without source tracking.
    """

    width: int
    height: int
    colors: np.ndarray
    counts: np.ndarray
    max_count: int
    pixel_bins: Optional[np.ndarray] = field(default=None, repr=False, compare=False)

    total_cells = TOTAL_CELLS

    def __len__(self) -> int:
        return int(self.counts.shape[0])

    @property
    def nonzero_count(self) -> int:
        return len(self)

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def has_sources(self) -> bool:
        return self.pixel_bins is not None

    @cached_property
    def positions(self) -> np.ndarray:
        """Flat ``float32`` array with three coordinates (R, G, B) per bin."""
        return self.colors.astype(np.float32).reshape(-1)

    @cached_property
    def _source_index(self) -> Tuple[np.ndarray, np.ndarray]:
        if self.pixel_bins is None:
            raise LookupError("Histogram was built without pixel source tracking")
        order = np.argsort(self.pixel_bins, kind="stable")
        offsets = np.zeros(len(self) + 1, dtype=np.int64)
        np.cumsum(self.counts, out=offsets[1:])
        order.setflags(write=False)
        offsets.setflags(write=False)
        return order, offsets

    def source_coordinates(self, index: int) -> np.ndarray:
        """Return an ``(count, 2)`` array of ``(x, y)`` pixels for a bin."""
        if index < 0 or index >= len(self):
            raise IndexError(f"Bin index {index} out of range for {len(self)} bins")
        order, offsets = self._source_index
        pixels = order[offsets[index] : offsets[index + 1]]
        return np.stack([pixels % self.width, pixels // self.width], axis=1)

    def sources(self, index: int) -> List[Coordinate]:
        return [(int(x), int(y)) for x, y in self.source_coordinates(index)]

    @cached_property
    def pixel_sources(self) -> List[np.ndarray]:
        return [self.source_coordinates(index) for index in range(len(self))]

    def bin(self, index: int) -> ColorBin:
        r, g, b = (int(value) for value in self.colors[index])
        sources = self.sources(index) if self.has_sources else None
        return ColorBin(color=(r, g, b), count=int(self.counts[index]), sources=sources)

    @property
    def bins(self) -> List[ColorBin]:
        return [self.bin(index) for index in range(len(self))]

    def stats(self) -> dict:
        return {
            "nonzero_count": self.nonzero_count,
            "max_count": int(self.max_count),
            "total_pixels": self.pixel_count,
            "total_cells": TOTAL_CELLS,
            "width": self.width,
            "height": self.height,
        }


@dataclass
class VisualAttributes:
    """Per-bin render attributes aligned with the histogram bin order."""

    mode: VisualizationMode
    opacity: np.ndarray
    sizes: np.ndarray
    colors: np.ndarray

    def __len__(self) -> int:
        return int(self.opacity.shape[0])


@dataclass
class FilteredView:
    """Subset of histogram bins whose counts fall inside a frequency range."""

    indices: np.ndarray
    min_threshold: float
    max_threshold: float
    count_lo: int
    count_hi: int
    positions: Optional[np.ndarray] = None
    colors: Optional[np.ndarray] = None
    sizes: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return int(self.indices.shape[0])

    def original_index(self, filtered_index: int) -> int:
        return int(self.indices[filtered_index])

    def to_original(self, filtered_indices: Sequence[int]) -> np.ndarray:
        return self.indices[np.asarray(filtered_indices, dtype=np.int64)]


@dataclass
class Cluster:
    """A group of density-reachable colors."""

    id: int
    members: List[int]
    centroid: Tuple[float, float, float]
    total_frequency: int

    @property
    def size(self) -> int:
        return len(self.members)


@dataclass
class ClusterAssignment:
    """Result bundle produced by the density clusterer."""

    labels: np.ndarray
    clusters: List[Cluster]
    noise: List[int]
    epsilon: float
    min_points: int
    aborted: bool = False
    processed: int = 0
    silhouette: Optional[float] = None

    @property
    def cluster_count(self) -> int:
        return len(self.clusters)

    @property
    def noise_count(self) -> int:
        return len(self.noise)
