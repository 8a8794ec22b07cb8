from __future__ import annotations

import math

import numpy as np
import pytest
from sklearn.cluster import DBSCAN
from sklearn.metrics import silhouette_score

from src.tristogram.clusterer import (
    CancellationToken,
    ClustererConfig,
    ClusteringParameterError,
    DBSCANClusterer,
    cluster_silhouette,
    dbscan,
)
from src.tristogram.filtering import filter_histogram
from src.tristogram.histogram import build_histogram
from src.tristogram.raster import raster_from_array
from src.tristogram.types import EXCLUDED, NOISE, UNASSIGNED


def _two_blobs(seed: int = 0) -> tuple[np.ndarray, np.ndarray]:
    rng = np.random.default_rng(seed)
    dark = rng.integers(10, 20, size=(15, 3))
    bright = rng.integers(200, 210, size=(15, 3))
    points = np.unique(np.vstack([dark, bright]), axis=0).astype(np.float64)
    weights = rng.integers(1, 50, size=points.shape[0])
    return points, weights


def test_large_epsilon_groups_everything(four_color_raster) -> None:
    histogram = build_histogram(four_color_raster)
    assignment = DBSCANClusterer(ClustererConfig(epsilon=500, min_points=1)).cluster_histogram(histogram)

    assert assignment.cluster_count == 1
    assert assignment.noise == []
    assert sorted(assignment.clusters[0].members) == [0, 1, 2, 3]
    assert assignment.clusters[0].total_frequency == 4
    assert assignment.labels.tolist() == [0, 0, 0, 0]


def test_small_epsilon_marks_everything_noise(four_color_raster) -> None:
    histogram = build_histogram(four_color_raster)
    assignment = DBSCANClusterer(ClustererConfig(epsilon=1, min_points=2)).cluster_histogram(histogram)

    assert assignment.cluster_count == 0
    assert sorted(assignment.noise) == [0, 1, 2, 3]
    assert assignment.labels.tolist() == [NOISE] * 4
    assert assignment.silhouette is None


def test_distance_is_inclusive_and_excludes_self() -> None:
    points = np.array([[0, 0, 0], [3, 4, 0]], dtype=np.float64)
    # exactly epsilon apart: each point has one other neighbor
    together = dbscan(points, epsilon=5.0, min_points=1)
    assert together.cluster_count == 1

    # a point never counts itself towards min_points
    apart = dbscan(points, epsilon=5.0, min_points=2)
    assert apart.cluster_count == 0
    assert apart.noise == [0, 1]


def test_isolated_point_is_noise() -> None:
    points, _ = _two_blobs()
    outlier = np.array([[120.0, 120.0, 120.0]])
    assignment = dbscan(np.vstack([points, outlier]), epsilon=25.0, min_points=3)

    assert assignment.cluster_count == 2
    assert assignment.noise == [points.shape[0]]


def test_border_point_joins_cluster() -> None:
    points = np.array([[0, 0, 0], [1, 0, 0], [2, 0, 0], [3.5, 0, 0]], dtype=np.float64)
    assignment = dbscan(points, epsilon=1.5, min_points=2)
    # point 3 has a single neighbor but is reachable from core point 2
    assert assignment.cluster_count == 1
    assert sorted(assignment.clusters[0].members) == [0, 1, 2, 3]


def test_noise_never_grows_with_epsilon() -> None:
    points, _ = _two_blobs(seed=5)
    noise_counts = [dbscan(points, epsilon=eps, min_points=3).noise_count for eps in (2.0, 5.0, 10.0, 30.0, 500.0)]
    assert noise_counts == sorted(noise_counts, reverse=True)
    assert noise_counts[-1] == 0


def test_weighted_centroid_lies_within_member_bounds() -> None:
    points, weights = _two_blobs(seed=2)
    assignment = dbscan(points, epsilon=25.0, min_points=2, weights=weights)

    assert assignment.cluster_count == 2
    for cluster in assignment.clusters:
        members = points[cluster.members]
        centroid = np.asarray(cluster.centroid)
        assert np.all(centroid >= members.min(axis=0) - 1e-9)
        assert np.all(centroid <= members.max(axis=0) + 1e-9)
        expected = np.average(members, axis=0, weights=weights[cluster.members])
        assert np.allclose(centroid, expected)
        assert cluster.total_frequency == int(weights[cluster.members].sum())


def test_zero_weights_fall_back_to_mean() -> None:
    points = np.array([[0, 0, 0], [2, 0, 0]], dtype=np.float64)
    assignment = dbscan(points, epsilon=3.0, min_points=1, weights=np.zeros(2))
    assert assignment.clusters[0].centroid == (1.0, 0.0, 0.0)
    assert assignment.clusters[0].total_frequency == 0


def test_filtered_view_reports_original_indices() -> None:
    counts = [1, 6, 6, 6, 1]
    row = []
    for value, count in enumerate(counts):
        row.extend([(value * 2, 0, 0)] * count)
    histogram = build_histogram(raster_from_array(np.asarray([row], dtype=np.uint8)))
    view = filter_histogram(histogram, 0.5, 1.0)
    assert view.indices.tolist() == [1, 2, 3]

    assignment = DBSCANClusterer(ClustererConfig(epsilon=2.5, min_points=1)).cluster_histogram(histogram, view=view)
    assert assignment.labels.tolist() == [EXCLUDED, 0, 0, 0, EXCLUDED]
    assert assignment.clusters[0].members == [1, 2, 3]
    assert assignment.clusters[0].total_frequency == 18


def test_empty_input_produces_empty_assignment() -> None:
    assignment = dbscan(np.zeros((0, 3)), epsilon=1.0, min_points=1)
    assert assignment.cluster_count == 0
    assert assignment.noise == []
    assert assignment.labels.shape == (0,)


def test_flat_positions_are_accepted() -> None:
    flat = np.array([0, 0, 0, 1, 1, 1], dtype=np.float32)
    assignment = dbscan(flat, epsilon=2.0, min_points=1)
    assert assignment.cluster_count == 1


@pytest.mark.parametrize(
    "epsilon, min_points",
    [(0, 2), (-1.0, 2), (float("nan"), 2), (float("inf"), 2), (1.0, 0), (1.0, 2.5), (1.0, True)],
)
def test_invalid_parameters_are_rejected(epsilon, min_points) -> None:
    with pytest.raises(ClusteringParameterError):
        dbscan(np.zeros((2, 3)), epsilon=epsilon, min_points=min_points)


def test_index_map_validation() -> None:
    clusterer = DBSCANClusterer(ClustererConfig(epsilon=1.0, min_points=1))
    points = np.zeros((2, 3))
    with pytest.raises(ValueError):
        clusterer.cluster(points, index_map=[0, 0])
    with pytest.raises(ValueError):
        clusterer.cluster(points, index_map=[0, 5], total=3)
    with pytest.raises(ValueError):
        clusterer.cluster(points, weights=np.ones(3))


def test_cancelled_token_aborts_without_clusters() -> None:
    points, _ = _two_blobs()
    token = CancellationToken()
    token.cancel()
    assignment = dbscan(points, epsilon=25.0, min_points=2, cancel=token)

    assert assignment.aborted is True
    assert assignment.clusters == []
    assert assignment.noise == []
    assert assignment.processed == 0


def test_kdtree_matches_brute_force() -> None:
    rng = np.random.default_rng(9)
    points = rng.integers(0, 256, size=(400, 3)).astype(np.float64)
    common = {"epsilon": 30.0, "min_points": 3, "compute_silhouette": False}
    brute = DBSCANClusterer(ClustererConfig(neighbor_search="brute", **common)).cluster(points)
    tree = DBSCANClusterer(ClustererConfig(neighbor_search="kdtree", **common)).cluster(points)

    assert np.array_equal(brute.labels, tree.labels)
    assert brute.noise == tree.noise
    assert [c.members for c in brute.clusters] == [c.members for c in tree.clusters]


def test_unknown_neighbor_search() -> None:
    clusterer = DBSCANClusterer(ClustererConfig(epsilon=1.0, min_points=1, neighbor_search="ball"))
    with pytest.raises(ValueError):
        clusterer.cluster(np.zeros((2, 3)))


def test_silhouette_reported_for_separated_clusters() -> None:
    points, _ = _two_blobs(seed=4)
    assignment = dbscan(points, epsilon=25.0, min_points=2)
    assert assignment.cluster_count == 2
    assert assignment.silhouette is not None
    assert assignment.silhouette > 0.8


@pytest.mark.parametrize("neighbor_search", ["brute", "kdtree"])
def test_point_exactly_on_epsilon_is_a_neighbor(neighbor_search) -> None:
    points = np.array([[0, 0, 0], [1, 1, 1]], dtype=np.float64)
    config = ClustererConfig(epsilon=math.sqrt(3), min_points=1, neighbor_search=neighbor_search)
    assignment = DBSCANClusterer(config).cluster(points)
    assert assignment.labels.tolist() == [0, 0]
    assert assignment.noise == []


def test_cancellation_mid_run_keeps_partial_labels(monkeypatch) -> None:
    points, _ = _two_blobs()
    clusterer = DBSCANClusterer(ClustererConfig(epsilon=25.0, min_points=2, compute_silhouette=False))
    token = CancellationToken()
    build_search = clusterer._neighbor_search
    queries = []

    class CancelAfterThree:
        def __init__(self, inner) -> None:
            self._inner = inner

        def query(self, index):
            queries.append(index)
            if len(queries) == 3:
                token.cancel()
            return self._inner.query(index)

    monkeypatch.setattr(clusterer, "_neighbor_search", lambda pts, eps: CancelAfterThree(build_search(pts, eps)))
    assignment = clusterer.cluster(points, cancel=token)

    assert assignment.aborted is True
    assert assignment.processed == 3
    assert 0 < assignment.processed < points.shape[0]
    assert int(np.count_nonzero(assignment.labels == UNASSIGNED)) == points.shape[0] - 3
    assert sorted(int(value) for value in assignment.labels[assignment.labels != UNASSIGNED]) == [0, 0, 0]
    assert assignment.clusters == []
    assert assignment.noise == []


def test_partition_matches_scikit_learn_dbscan() -> None:
    rng = np.random.default_rng(21)
    points = rng.integers(0, 32, size=(300, 3)).astype(np.float64)
    epsilon, min_points = 6.0, 3

    ours = dbscan(points, epsilon=epsilon, min_points=min_points)
    # scikit-learn counts the point itself towards min_samples
    reference = DBSCAN(eps=epsilon, min_samples=min_points + 1).fit(points)
    reference_labels = reference.labels_
    core = np.zeros(points.shape[0], dtype=bool)
    core[reference.core_sample_indices_] = True

    assert set(ours.noise) == {int(value) for value in np.flatnonzero(reference_labels == -1)}
    assert ours.cluster_count == len(set(reference_labels[reference_labels >= 0].tolist()))

    pairs = {(int(a), int(b)) for a, b in zip(ours.labels[core], reference_labels[core])}
    assert len(pairs) == len({a for a, _ in pairs}) == len({b for _, b in pairs})


def test_silhouette_ignores_noise_and_needs_two_clusters() -> None:
    points = np.array([[0, 0, 0], [1, 0, 0], [50, 0, 0], [51, 0, 0], [200, 0, 0]], dtype=np.float64)
    labels = np.array([0, 0, 1, 1, NOISE])

    expected = silhouette_score(points[:4], labels[:4])
    assert cluster_silhouette(points, labels) == pytest.approx(expected)
    assert cluster_silhouette(points, np.array([0, 0, 0, 0, NOISE])) is None
    assert cluster_silhouette(points, np.array([0, 1, NOISE, NOISE, NOISE])) is None


def test_silhouette_can_be_disabled() -> None:
    points, _ = _two_blobs(seed=4)
    config = ClustererConfig(epsilon=25.0, min_points=2, compute_silhouette=False)
    assert DBSCANClusterer(config).cluster(points).silhouette is None
