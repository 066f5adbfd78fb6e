import numpy as np
import pytest

from hubness_core.errors import (InvalidParameterError, OutOfRangeError,
                                 UninitializedModelError)
from hubness_core.neighbors import NeighborGraph, insertion_knn


EXPECTED_NEIGHBORS = np.array([
    [1, 2, 3],
    [0, 2, 3],
    [1, 3, 0],
    [2, 1, 0],
    [5, 3, 2],
    [4, 3, 2],
])


def test_neighbor_lists_are_sorted_and_exclude_self(six_point_graph):
    np.testing.assert_array_equal(six_point_graph.indices, EXPECTED_NEIGHBORS)
    assert np.all(np.diff(six_point_graph.distances, axis=1) >= 0)
    for i, row in enumerate(six_point_graph.indices):
        assert i not in row


def test_ties_keep_index_order(six_point_graph):
    # Point 1 is at distance 1 from both 0 and 2.
    assert list(six_point_graph.indices[1, :2]) == [0, 2]


def test_occurrence_statistics(six_point_graph):
    stats = six_point_graph.recompute_stats_for_k(3)
    np.testing.assert_array_equal(stats.occurrence, [3, 3, 5, 5, 1, 1])
    np.testing.assert_array_equal(stats.good + stats.bad, stats.occurrence)
    # Point 2 (class 0) is a neighbor of 0, 1 (class 0) and 3, 4, 5 (class 1).
    assert stats.good[2] == 2
    assert stats.bad[2] == 3


def test_stats_for_smaller_k_truncate_lists(six_point_graph):
    stats = six_point_graph.recompute_stats_for_k(1)
    expected = np.bincount(EXPECTED_NEIGHBORS[:, 0], minlength=6)
    np.testing.assert_array_equal(stats.occurrence, expected)
    assert stats.occurrence.sum() == 6


def test_reverse_neighbors(six_point_graph):
    np.testing.assert_array_equal(six_point_graph.reverse_neighbors_of(2, 3), [0, 1, 3, 4, 5])
    np.testing.assert_array_equal(six_point_graph.reverse_neighbors_of(4, 3), [5])
    for point in range(6):
        for j in six_point_graph.reverse_neighbors_of(point, 2):
            assert point in six_point_graph.indices[j, :2]


def test_invalid_k(six_points):
    X, y = six_points
    graph = NeighborGraph(X, y)
    with pytest.raises(InvalidParameterError):
        graph.compute_neighbors(0)
    with pytest.raises(OutOfRangeError):
        graph.compute_neighbors(6)


def test_stats_before_compute_raise(six_points):
    X, y = six_points
    with pytest.raises(UninitializedModelError):
        NeighborGraph(X, y).recompute_stats_for_k(1)


def test_stats_beyond_computed_k_raise(six_point_graph):
    with pytest.raises(OutOfRangeError):
        six_point_graph.recompute_stats_for_k(4)


def test_extend_neighbors_matches_full_sort(six_points):
    X, y = six_points
    graph = NeighborGraph(X, y)
    graph.compute_neighbors(2)
    indices, distances = graph.extend_neighbors(4, 5)
    np.testing.assert_array_equal(indices, [5, 3, 2, 1, 0])
    np.testing.assert_allclose(distances, [1.0, 6.5, 8.0, 9.0, 10.0])


def test_insertion_knn_keeps_scan_order_on_ties():
    distances = np.array([2.0, 1.0, 1.0, 0.5, 1.0])
    indices, kept = insertion_knn(distances, 3)
    np.testing.assert_array_equal(indices, [3, 1, 2])
    np.testing.assert_allclose(kept, [0.5, 1.0, 1.0])


def test_insertion_knn_excludes():
    indices, _ = insertion_knn(np.array([0.0, 1.0, 2.0]), 2, exclude={0})
    np.testing.assert_array_equal(indices, [1, 2])


def test_tabu_removes_point_and_splices_replacement(six_point_graph):
    affected = six_point_graph.tabu(3)
    assert affected == [0, 1, 2, 4, 5]
    assert not (six_point_graph.indices == 3).any()
    # Point 4 loses 3 and takes its next nearest point, 1.
    np.testing.assert_array_equal(six_point_graph.indices[4], [5, 2, 1])
    assert np.all(np.diff(six_point_graph.distances, axis=1) >= 0)


def test_tabu_with_replacement_candidate(six_point_graph):
    six_point_graph.tabu(3, replacement_candidate=5)
    # For point 0, 5 is eligible and goes to its sorted position.
    np.testing.assert_array_equal(six_point_graph.indices[0], [1, 2, 5])


def test_hubness_summary(six_point_graph):
    summary = six_point_graph.hubness_summary(3, anti_hub_cutoff=1)
    assert summary["max_occurrence"] == 5
    assert summary["anti_hubs"] == 2
    assert summary["orphans"] == 0
    assert np.isfinite(summary["skewness"])


def test_mismatched_labels():
    with pytest.raises(InvalidParameterError):
        NeighborGraph(np.zeros((3, 2)), np.array([0, 1]))
