import numpy as np
import pandas as pd
import pytest

from hubness_core.antihub import AntiHubScheme
from hubness_core.config import M_GRID, THETA_GRID
from hubness_core.errors import InvalidParameterError, OutOfRangeError
from hubness_core.neighbors import NeighborGraph
from hubness_core.search import (LeaveOneOutPatch, SearchDefaults, build_snapshots,
                                 candidate_grid, find_best_configuration)
from hubness_core.voting import (DWHFNNRule, FNNRule, HFNNRule, HIKNNNonDWRule,
                                 HIKNNRule, KNNRule, NHBNNRule)


def _counts_equal(a, b):
    return (np.array_equal(a.occurrence, b.occurrence)
            and np.array_equal(a.class_counts, b.class_counts)
            and np.array_equal(a.class_to_class_counts, b.class_to_class_counts)
            and np.array_equal(a.class_hubness_sum, b.class_hubness_sum))


@pytest.fixture
def snapshots(six_points):
    X, y = six_points
    graph = NeighborGraph(X, y)
    return build_snapshots(graph, 2, 1, 3, 0.001)


def test_snapshot_per_k_has_buffer_column(snapshots):
    assert sorted(snapshots) == [1, 2, 3]
    assert snapshots[2].neighbors.shape == (6, 3)
    assert snapshots[2].buffer_available
    assert snapshots[3].counts.occurrence.sum() == 18


def test_patch_then_inverse_restores_counts(snapshots):
    for snapshot in snapshots.values():
        original = snapshot.counts
        for point in range(6):
            patch = LeaveOneOutPatch.for_point(snapshot, point)
            patched = patch.apply(original)
            assert _counts_equal(patch.inverse().apply(patched), original)


def test_patch_never_mutates_snapshot(snapshots):
    snapshot = snapshots[2]
    before = snapshot.counts.occurrence.copy()
    LeaveOneOutPatch.for_point(snapshot, 2).apply(snapshot.counts)
    np.testing.assert_array_equal(snapshot.counts.occurrence, before)


def _recount_without(snapshot, point):
    """Counts of the graph where `point` is gone and its reverse neighbors
    take their next neighbor. Every point keeps its self-count."""
    k = snapshot.k
    labels = snapshot.labels
    n_points = len(labels)
    occurrence = np.zeros(n_points, dtype=int)
    class_counts = np.zeros((2, n_points), dtype=int)
    class_to_class = np.zeros((2, 2), dtype=int)
    hubness_sum = np.zeros(2, dtype=int)
    for i in range(n_points):
        class_counts[labels[i], i] += 1
        if i == point:
            continue
        row = list(snapshot.neighbors[i, :k])
        if point in row:
            row.remove(point)
            row.append(snapshot.neighbors[i, k])
        for n in row:
            occurrence[n] += 1
            class_counts[labels[i], n] += 1
            class_to_class[labels[n], labels[i]] += 1
            hubness_sum[labels[n]] += 1
    return occurrence, class_counts, class_to_class, hubness_sum


@pytest.mark.parametrize("k", [1, 2])
@pytest.mark.parametrize("point", range(6))
def test_patch_matches_recount_without_point(snapshots, k, point):
    snapshot = snapshots[k]
    patched = LeaveOneOutPatch.for_point(snapshot, point).apply(snapshot.counts)
    occurrence, class_counts, class_to_class, hubness_sum = _recount_without(snapshot, point)

    np.testing.assert_array_equal(patched.occurrence, occurrence)
    assert patched.occurrence[point] == 0
    np.testing.assert_array_equal(patched.class_counts, class_counts)
    np.testing.assert_array_equal(patched.class_to_class_counts, class_to_class)
    np.testing.assert_array_equal(patched.class_hubness_sum, hubness_sum)


def test_patch_removes_reverse_neighbor_entries(snapshots):
    snapshot = snapshots[2]
    patched = LeaveOneOutPatch.for_point(snapshot, 2).apply(snapshot.counts)
    np.testing.assert_array_equal(patched.class_to_class_counts, [[2, 2], [2, 4]])
    assert patched.class_hubness_sum.sum() == 10


def test_patch_without_buffer_only_removes(six_points):
    X, y = six_points
    snapshot = build_snapshots(NeighborGraph(X, y), 2, 5, 5, 0.001)[5]
    assert not snapshot.buffer_available
    patched = LeaveOneOutPatch.for_point(snapshot, 0).apply(snapshot.counts)
    assert patched.occurrence[0] == 0
    np.testing.assert_array_equal(patched.occurrence[1:], [4] * 5)
    assert patched.class_hubness_sum.sum() == 20


def test_candidate_grid_order():
    grid = candidate_grid(DWHFNNRule(), SearchDefaults(distance_weight_exponent=2.0))
    assert len(grid) == len(THETA_GRID) * len(AntiHubScheme)
    assert grid[0] == (0, AntiHubScheme.GLOBAL, 2.0)
    assert grid[1] == (0, AntiHubScheme.LOCAL, 2.0)
    assert grid[4] == (1, AntiHubScheme.GLOBAL, 2.0)

    hiknn_grid = candidate_grid(HIKNNRule(), SearchDefaults())
    assert [m for _, _, m in hiknn_grid] == list(M_GRID)
    assert 1.0 not in M_GRID


@pytest.mark.parametrize("rule", [KNNRule(), HFNNRule(), FNNRule(),
                                  HIKNNRule(), HIKNNNonDWRule(), NHBNNRule()])
def test_search_on_separable_data_is_perfect(separable_data, rule):
    X, y = separable_data
    result = find_best_configuration(NeighborGraph(X, y), rule, 1, 5, random_state=0)
    assert result.accuracy == 1.0
    # k = 1 already separates the clusters and wins the enumeration order.
    assert result.choice.k == 1


def test_search_result_frame(separable_data):
    X, y = separable_data
    result = find_best_configuration(NeighborGraph(X, y), HFNNRule(), 1, 3, random_state=0)
    frame = result.to_frame()
    assert isinstance(frame, pd.DataFrame)
    assert len(frame) == 3 * len(THETA_GRID) * len(AntiHubScheme)
    assert list(frame["k"].unique()) == [1, 2, 3]
    assert frame["accuracy"].max() == result.accuracy


def test_search_is_reproducible(noisy_data):
    X, y = noisy_data
    y_dense = np.unique(y, return_inverse=True)[1]
    first = find_best_configuration(NeighborGraph(X, y_dense), HIKNNRule(), 1, 6, random_state=5)
    second = find_best_configuration(NeighborGraph(X, y_dense), HIKNNRule(), 1, 6, random_state=5)
    assert first.choice == second.choice
    pd.testing.assert_frame_equal(first.to_frame(), second.to_frame())


@pytest.mark.slow
def test_parallel_search_matches_sequential(noisy_data):
    X, y = noisy_data
    y_dense = np.unique(y, return_inverse=True)[1]
    sequential = find_best_configuration(NeighborGraph(X, y_dense), DWHFNNRule(), 1, 4,
                                         random_state=9, n_jobs=1)
    parallel = find_best_configuration(NeighborGraph(X, y_dense), DWHFNNRule(), 1, 4,
                                       random_state=9, n_jobs=2)
    assert sequential.choice == parallel.choice
    pd.testing.assert_frame_equal(sequential.to_frame(), parallel.to_frame())


def test_search_bounds(six_points):
    X, y = six_points
    graph = NeighborGraph(X, y)
    with pytest.raises(InvalidParameterError):
        find_best_configuration(graph, KNNRule(), 0, 3)
    with pytest.raises(InvalidParameterError):
        find_best_configuration(graph, KNNRule(), 4, 3)
    with pytest.raises(OutOfRangeError):
        find_best_configuration(graph, KNNRule(), 1, 6)


def test_search_up_to_n_minus_one_has_no_buffer(six_points):
    X, y = six_points
    result = find_best_configuration(NeighborGraph(X, y), HIKNNRule(), 1, 5, random_state=1)
    assert 1 <= result.choice.k <= 5
