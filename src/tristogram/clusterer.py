"""Density-based clustering of histogram colors (DBSCAN over RGB space)."""
from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
from sklearn.metrics import silhouette_score
from sklearn.neighbors import KDTree

from .types import (
    EXCLUDED,
    NOISE,
    UNASSIGNED,
    Cluster,
    ClusterAssignment,
    FilteredView,
    Histogram,
)


class ClusteringParameterError(ValueError):
    """Raised when epsilon or min_points are outside their valid range."""


class CancellationToken:
    """Thread-safe flag a caller sets to stop a running clustering pass."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class ClustererConfig:
    epsilon: float = 10.0
    min_points: int = 4
    neighbor_search: str = "auto"  # auto | brute | kdtree
    kdtree_min_points: int = 2048
    leaf_size: int = 40
    compute_silhouette: bool = True
    silhouette_sample_size: int = 1000
    random_state: int = 42


def validate_parameters(epsilon: float, min_points: int) -> None:
    try:
        epsilon_value = float(epsilon)
    except (TypeError, ValueError):
        raise ClusteringParameterError(f"epsilon must be a number, got {epsilon!r}") from None
    if not math.isfinite(epsilon_value) or epsilon_value <= 0:
        raise ClusteringParameterError(f"epsilon must be a finite value > 0, got {epsilon!r}")
    if isinstance(min_points, bool) or not isinstance(min_points, (int, np.integer)):
        raise ClusteringParameterError(f"min_points must be an integer, got {min_points!r}")
    if min_points < 1:
        raise ClusteringParameterError(f"min_points must be >= 1, got {min_points}")


def cluster_silhouette(
    points: np.ndarray,
    labels: np.ndarray,
    sample_size: int = 1000,
    random_state: int | None = 42,
) -> float | None:
    """Mean silhouette of the clustered points; noise and excluded labels are ignored.

    Returns ``None`` unless there are at least two clusters and more clustered
    points than clusters.
    """
    member = labels >= 0
    member_labels = labels[member]
    n_clusters = np.unique(member_labels).size
    n_members = member_labels.size
    if n_clusters < 2 or n_members <= n_clusters:
        return None
    sample = None if n_members <= sample_size else max(n_clusters + 1, int(sample_size))
    try:
        score = silhouette_score(points[member], member_labels, sample_size=sample, random_state=random_state)
    except ValueError:
        # a random sample can collapse onto a single cluster
        return None
    return float(score)


class _BruteNeighbors:
    """Linear scan comparing Euclidean distances against ``epsilon``.

    Distances are compared unsquared so boundary hits agree with
    ``KDTree.query_radius``.
    """

    def __init__(self, points: np.ndarray, epsilon: float) -> None:
        self._points = points
        self._epsilon = epsilon

    def query(self, index: int) -> np.ndarray:
        diff = self._points - self._points[index]
        distance = np.sqrt(np.einsum("ij,ij->i", diff, diff))
        hits = np.flatnonzero(distance <= self._epsilon)
        return hits[hits != index]


class _TreeNeighbors:
    """Radius queries against a scikit-learn KD-tree."""

    def __init__(self, points: np.ndarray, epsilon: float, leaf_size: int) -> None:
        self._points = points
        self._epsilon = epsilon
        self._tree = KDTree(points, leaf_size=max(1, leaf_size))

    def query(self, index: int) -> np.ndarray:
        hits = self._tree.query_radius(self._points[index : index + 1], r=self._epsilon)[0]
        hits = np.sort(hits.astype(np.int64))
        return hits[hits != index]


class Clusterer:
    """Abstract clusterer."""

    def cluster(
        self,
        positions: np.ndarray,
        weights: Optional[np.ndarray] = None,
        index_map: Optional[Sequence[int]] = None,
        total: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ClusterAssignment:
        raise NotImplementedError


class DBSCANClusterer(Clusterer):
    """DBSCAN with frequency-weighted centroids and original-index reporting.

    A point's neighborhood holds every *other* point within ``epsilon``
    (inclusive); the point is a core point when that neighborhood has at
    least ``min_points`` members. Density uses geometric point counts only;
    weights only feed the centroids.

    ``index_map`` translates the local point order into original histogram
    indices. Labels, members and noise are reported in that space, with
    ``EXCLUDED`` for original indices that were not part of the input.
    """

    def __init__(self, config: ClustererConfig | None = None, logger: Optional[logging.Logger] = None) -> None:
        self._config = config or ClustererConfig()
        self._logger = logger or logging.getLogger(__name__)
        validate_parameters(self._config.epsilon, self._config.min_points)

    @property
    def config(self) -> ClustererConfig:
        return self._config

    def cluster_histogram(
        self,
        histogram: Histogram,
        view: Optional[FilteredView] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ClusterAssignment:
        if view is None:
            return self.cluster(histogram.colors, histogram.counts, cancel=cancel)
        return self.cluster(
            histogram.colors[view.indices],
            histogram.counts[view.indices],
            index_map=view.indices,
            total=len(histogram),
            cancel=cancel,
        )

    def cluster(
        self,
        positions: np.ndarray,
        weights: Optional[np.ndarray] = None,
        index_map: Optional[Sequence[int]] = None,
        total: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ClusterAssignment:
        epsilon = self._config.epsilon
        min_points = self._config.min_points
        validate_parameters(epsilon, min_points)
        epsilon = float(epsilon)
        min_points = int(min_points)

        points = np.asarray(positions, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(-1, 3)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ValueError(f"Expected (n, 3) positions, got shape {points.shape}")
        n_points = points.shape[0]

        if weights is None:
            point_weights = np.ones(n_points, dtype=np.float64)
        else:
            point_weights = np.asarray(weights, dtype=np.float64).reshape(-1)
            if point_weights.shape[0] != n_points:
                raise ValueError("weights must have one entry per point")

        originals = self._index_map(index_map, n_points)
        total_points = self._total(total, originals, n_points)

        started = time.perf_counter()
        labels, aborted = self._run(points, epsilon, min_points, cancel)

        full_labels = np.full(total_points, EXCLUDED, dtype=np.int64)
        full_labels[originals] = labels
        processed = int(np.count_nonzero(labels != UNASSIGNED))

        if aborted:
            self._logger.info(
                "Clustering aborted after %d/%d points (eps=%.3f, min_points=%d)",
                processed,
                n_points,
                epsilon,
                min_points,
            )
            return ClusterAssignment(
                labels=full_labels,
                clusters=[],
                noise=[],
                epsilon=epsilon,
                min_points=min_points,
                aborted=True,
                processed=processed,
            )

        clusters = self._build_clusters(points, point_weights, labels, originals)
        noise = [int(value) for value in originals[labels == NOISE]]
        silhouette = None
        if self._config.compute_silhouette:
            silhouette = cluster_silhouette(
                points, labels, self._config.silhouette_sample_size, self._config.random_state
            )

        self._logger.info(
            "Clustered %d points in %.3fs: %d clusters, %d noise (eps=%.3f, min_points=%d)",
            n_points,
            time.perf_counter() - started,
            len(clusters),
            len(noise),
            epsilon,
            min_points,
        )
        return ClusterAssignment(
            labels=full_labels,
            clusters=clusters,
            noise=noise,
            epsilon=epsilon,
            min_points=min_points,
            aborted=False,
            processed=processed,
            silhouette=silhouette,
        )

    # ------------------------------------------------------------------
    def _run(
        self,
        points: np.ndarray,
        epsilon: float,
        min_points: int,
        cancel: Optional[CancellationToken],
    ) -> tuple[np.ndarray, bool]:
        n_points = points.shape[0]
        labels = np.full(n_points, UNASSIGNED, dtype=np.int64)
        if n_points == 0:
            return labels, False

        search = self._neighbor_search(points, epsilon)
        next_id = 0

        for index in range(n_points):
            if cancel is not None and cancel.cancelled:
                return labels, True
            if labels[index] != UNASSIGNED:
                continue

            neighbors = search.query(index)
            if neighbors.shape[0] < min_points:
                labels[index] = NOISE
                continue

            labels[index] = next_id
            queue = deque(neighbors.tolist())
            while queue:
                current = queue.popleft()
                label = labels[current]
                if label == NOISE:
                    labels[current] = next_id
                elif label == UNASSIGNED:
                    if cancel is not None and cancel.cancelled:
                        return labels, True
                    labels[current] = next_id
                    current_neighbors = search.query(current)
                    if current_neighbors.shape[0] >= min_points:
                        queue.extend(current_neighbors.tolist())
            next_id += 1

        return labels, False

    def _neighbor_search(self, points: np.ndarray, epsilon: float):
        mode = self._config.neighbor_search.lower()
        if mode == "auto":
            mode = "kdtree" if points.shape[0] >= self._config.kdtree_min_points else "brute"
        self._logger.debug("Neighbor search for %d points using %s", points.shape[0], mode)
        if mode == "brute":
            return _BruteNeighbors(points, epsilon)
        if mode == "kdtree":
            return _TreeNeighbors(points, epsilon, self._config.leaf_size)
        raise ValueError(f"Unsupported neighbor search '{self._config.neighbor_search}'")

    def _build_clusters(
        self,
        points: np.ndarray,
        weights: np.ndarray,
        labels: np.ndarray,
        originals: np.ndarray,
    ) -> List[Cluster]:
        clusters: List[Cluster] = []
        cluster_ids = np.unique(labels[labels >= 0])
        for cluster_id in cluster_ids:
            members = np.flatnonzero(labels == cluster_id)
            member_weights = weights[members]
            weight_total = float(member_weights.sum())
            if weight_total > 0:
                centroid = (points[members] * member_weights[:, None]).sum(axis=0) / weight_total
            else:
                centroid = points[members].mean(axis=0)
            clusters.append(
                Cluster(
                    id=int(cluster_id),
                    members=[int(value) for value in originals[members]],
                    centroid=tuple(float(value) for value in centroid),
                    total_frequency=int(round(weight_total)),
                )
            )
        return clusters

    @staticmethod
    def _index_map(index_map: Optional[Sequence[int]], n_points: int) -> np.ndarray:
        if index_map is None:
            return np.arange(n_points, dtype=np.int64)
        originals = np.asarray(index_map, dtype=np.int64).reshape(-1)
        if originals.shape[0] != n_points:
            raise ValueError("index_map must have one entry per point")
        if originals.size and originals.min() < 0:
            raise ValueError("index_map entries must be non-negative")
        if np.unique(originals).size != originals.size:
            raise ValueError("index_map entries must be unique")
        return originals

    @staticmethod
    def _total(total: Optional[int], originals: np.ndarray, n_points: int) -> int:
        required = int(originals.max()) + 1 if originals.size else 0
        if total is None:
            return max(required, n_points)
        if total < required:
            raise ValueError(f"total={total} is smaller than the largest mapped index {required - 1}")
        return int(total)


def dbscan(
    positions: np.ndarray,
    epsilon: float,
    min_points: int,
    weights: Optional[np.ndarray] = None,
    cancel: Optional[CancellationToken] = None,
) -> ClusterAssignment:
    validate_parameters(epsilon, min_points)
    config = ClustererConfig(epsilon=epsilon, min_points=min_points)
    return DBSCANClusterer(config).cluster(positions, weights, cancel=cancel)
