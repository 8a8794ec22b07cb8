"""High-level orchestration for one loaded image."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np

from .attributes import AttributeEncoder, AttributeEncoderConfig, parse_mode
from .cache import HistogramCache
from .clusterer import CancellationToken, ClustererConfig, DBSCANClusterer
from .filtering import RangeFilter, normalize_thresholds
from .histogram import HistogramBuilder, HistogramBuilderConfig
from .raster import RasterBuffer, load_raster
from .types import EXCLUDED, ClusterAssignment, FilteredView, Histogram, VisualAttributes, VisualizationMode


class ClusteringLimitError(RuntimeError):
    """Raised when a clustering request exceeds the configured point ceiling."""


@dataclass
class TristogramConfig:
    builder: HistogramBuilderConfig = field(default_factory=HistogramBuilderConfig)
    encoder: AttributeEncoderConfig = field(default_factory=AttributeEncoderConfig)
    cluster: ClustererConfig = field(default_factory=ClustererConfig)
    mode: VisualizationMode = VisualizationMode.OPACITY
    min_threshold: float = 0.0
    max_threshold: float = 1.0
    max_cluster_points: int = 50_000
    warn_cluster_points: int = 10_000
    cache_dir: Optional[Path] = None
    ignore_cache: bool = False


class Tristogram:
    """Holds the immutable histogram of the current image and derives views from it.

    Loading a new image replaces the histogram and drops the previous
    clustering. Attributes and filtered views are recomputed from the current
    histogram on every call; the configuration passed in (or stored on the
    instance) is the only state threaded through the stages.
    """

    def __init__(self, config: TristogramConfig | None = None, logger: logging.Logger | None = None) -> None:
        self._config = config or TristogramConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._builder = HistogramBuilder(self._config.builder, self._logger)
        self._encoder = AttributeEncoder(self._config.encoder)
        self._filter = RangeFilter()
        self._cache: HistogramCache | None = None
        if self._config.cache_dir:
            self._cache = HistogramCache(self._config.cache_dir, self._logger)
        self._histogram: Optional[Histogram] = None
        self._assignment: Optional[ClusterAssignment] = None
        self._source: Optional[str] = None

    # ------------------------------------------------------------------
    @property
    def config(self) -> TristogramConfig:
        return self._config

    @property
    def histogram(self) -> Histogram:
        if self._histogram is None:
            raise RuntimeError("No image loaded")
        return self._histogram

    @property
    def assignment(self) -> Optional[ClusterAssignment]:
        return self._assignment

    @property
    def loaded(self) -> bool:
        return self._histogram is not None

    # ------------------------------------------------------------------
    def load_raster(self, raster: RasterBuffer, source: Optional[str] = None) -> Histogram:
        started = time.perf_counter()
        histogram = self._builder.build(raster)
        self._replace(histogram, source)
        self._logger.info(
            "Loaded %s in %.3fs: %d colors across %d pixels",
            source or "raster",
            time.perf_counter() - started,
            histogram.nonzero_count,
            histogram.pixel_count,
        )
        return histogram

    def load_file(self, path: Union[str, Path]) -> Histogram:
        image_path = Path(path)
        if self._cache and not self._config.ignore_cache:
            cached = self._cache.load(image_path, self._config.builder)
            if cached is not None:
                self._logger.debug("Histogram cache hit for %s", image_path)
                self._replace(cached, str(image_path))
                return cached

        histogram = self.load_raster(load_raster(image_path), source=str(image_path))
        if self._cache and not self._config.ignore_cache:
            self._cache.store(image_path, self._config.builder, histogram)
        return histogram

    def _replace(self, histogram: Histogram, source: Optional[str]) -> None:
        self._histogram = histogram
        self._assignment = None
        self._source = source

    # ------------------------------------------------------------------
    def attributes(self, mode: Union[str, VisualizationMode, None] = None) -> VisualAttributes:
        return self._encoder.encode(self.histogram, mode if mode is not None else self._config.mode)

    def filtered(
        self,
        min_threshold: Optional[float] = None,
        max_threshold: Optional[float] = None,
        mode: Union[str, VisualizationMode, None] = None,
    ) -> FilteredView:
        lo = self._config.min_threshold if min_threshold is None else min_threshold
        hi = self._config.max_threshold if max_threshold is None else max_threshold
        return self._filter.filter(self.histogram, lo, hi, attributes=self.attributes(mode))

    def cluster(
        self,
        epsilon: Optional[float] = None,
        min_points: Optional[int] = None,
        min_threshold: Optional[float] = None,
        max_threshold: Optional[float] = None,
        use_filter: bool = False,
        neighbor_search: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ClusterAssignment:
        histogram = self.histogram
        cluster_cfg = self._config.cluster
        if epsilon is not None:
            cluster_cfg = replace(cluster_cfg, epsilon=epsilon)
        if min_points is not None:
            cluster_cfg = replace(cluster_cfg, min_points=min_points)
        if neighbor_search:
            cluster_cfg = replace(cluster_cfg, neighbor_search=neighbor_search)
        clusterer = DBSCANClusterer(cluster_cfg, self._logger)

        view: Optional[FilteredView] = None
        if use_filter or min_threshold is not None or max_threshold is not None:
            lo = self._config.min_threshold if min_threshold is None else min_threshold
            hi = self._config.max_threshold if max_threshold is None else max_threshold
            view = self._filter.filter(histogram, lo, hi)

        n_points = len(view) if view is not None else len(histogram)
        self._check_limits(n_points)

        assignment = clusterer.cluster_histogram(histogram, view=view, cancel=cancel)
        self._assignment = assignment
        return assignment

    def _check_limits(self, n_points: int) -> None:
        ceiling = self._config.max_cluster_points
        if ceiling > 0 and n_points > ceiling:
            raise ClusteringLimitError(
                f"Refusing to cluster {n_points} colors (limit {ceiling}); narrow the frequency range first"
            )
        if self._config.warn_cluster_points > 0 and n_points > self._config.warn_cluster_points:
            self._logger.warning("Clustering %d colors; expect quadratic runtime", n_points)

    # ------------------------------------------------------------------
    def summary(self) -> Dict[str, object]:
        histogram = self.histogram
        lo, hi = normalize_thresholds(self._config.min_threshold, self._config.max_threshold)
        summary: Dict[str, object] = {
            "source": self._source,
            **histogram.stats(),
            "mode": parse_mode(self._config.mode).value,
            "min_threshold": lo,
            "max_threshold": hi,
        }
        assignment = self._assignment
        if assignment is not None:
            summary["clustering"] = {
                "epsilon": assignment.epsilon,
                "min_points": assignment.min_points,
                "clusters": assignment.cluster_count,
                "noise": assignment.noise_count,
                "excluded": int(np.count_nonzero(assignment.labels == EXCLUDED)),
                "aborted": assignment.aborted,
                "silhouette": assignment.silhouette,
                "detail": [
                    {
                        "id": cluster.id,
                        "size": cluster.size,
                        "total_frequency": cluster.total_frequency,
                        "centroid": [round(value, 3) for value in cluster.centroid],
                    }
                    for cluster in assignment.clusters
                ],
            }
        return summary
