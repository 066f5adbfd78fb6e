import numpy as np
import pytest

from hubness_core.antihub import AntiHubScheme
from hubness_core.errors import (InvalidParameterError, OutOfRangeError,
                                 UninitializedModelError)
from hubness_core.neighbors import NeighborGraph
from hubness_core.trainer import OccurrenceCounts, train_occurrence_model
from hubness_core.weighting import hw_knn_weights

LAMBDA = 0.001


def test_class_counts_include_self(six_point_graph):
    model = train_occurrence_model(six_point_graph, 3, LAMBDA)
    counts = model.counts
    # Point 2: class 0 from 0, 1 plus itself; class 1 from 3, 4, 5.
    np.testing.assert_array_equal(counts.class_counts[:, 2], [3, 3])
    # Point 4: only 5 uses it, plus itself.
    np.testing.assert_array_equal(counts.class_counts[:, 4], [0, 2])
    np.testing.assert_array_equal(counts.class_counts.sum(axis=0), counts.occurrence + 1)


def test_relation_smoothing(six_point_graph):
    model = train_occurrence_model(six_point_graph, 3, LAMBDA)
    expected = (np.array([0, 2]) + LAMBDA) / (1 + 1 + 2 * LAMBDA)
    np.testing.assert_allclose(model.relation[:, 4], expected)
    np.testing.assert_allclose(model.relation.sum(axis=0), 1.0)


def test_class_to_class_priors(six_point_graph):
    model = train_occurrence_model(six_point_graph, 3, LAMBDA)
    c2c = model.counts.class_to_class_counts
    # Neighbors of class-1 points: 2, 1, 0 (point 3), 5, 3, 2 and 4, 3, 2.
    np.testing.assert_array_equal(c2c[:, 1], [5, 4])
    np.testing.assert_array_equal(model.counts.class_hubness_sum, c2c.sum(axis=1))
    expected = (c2c + LAMBDA) / (model.counts.class_hubness_sum[:, None] + 2 * LAMBDA)
    np.testing.assert_allclose(model.class_to_class_priors, expected)


def test_retraining_is_bit_identical(six_points):
    X, y = six_points
    first = train_occurrence_model(NeighborGraph(X, y), 3, LAMBDA, anti_hub_cutoff=2)
    second = train_occurrence_model(NeighborGraph(X, y), 3, LAMBDA, anti_hub_cutoff=2)
    assert np.array_equal(first.relation, second.relation)
    assert np.array_equal(first.class_to_class_priors, second.class_to_class_priors)
    for scheme in first.local_tables:
        assert np.array_equal(first.local_tables[scheme], second.local_tables[scheme])


def test_local_tables_only_for_anti_hubs(six_point_graph):
    model = train_occurrence_model(six_point_graph, 3, LAMBDA, anti_hub_cutoff=1)
    local = model.local_tables[AntiHubScheme.LOCAL]
    # Occurrences are [3, 3, 5, 5, 1, 1]: only 4 and 5 are anti-hubs.
    assert not local[:4].any()
    np.testing.assert_allclose(local[4:].sum(axis=1), 1.0)


def test_local_neighborhood_is_capped_by_data_size(six_point_graph):
    model = train_occurrence_model(six_point_graph, 3, LAMBDA, anti_hub_cutoff=1)
    # Only 5 other points exist, so point 4 looks at all of them:
    # classes 0, 0, 0, 1, 1 plus its own label 1.
    expected = (np.array([3, 3]) + LAMBDA) / (5 + 1 + 2 * LAMBDA)
    np.testing.assert_allclose(model.local_tables[AntiHubScheme.LOCAL][4], expected)
    fuzzy = model.local_tables[AntiHubScheme.LOCALF][4]
    np.testing.assert_allclose(fuzzy, [0.49 * expected[0], 0.51 + 0.49 * expected[1]])


def test_label_table_ignores_the_graph(six_points):
    X, y = six_points
    at_k1 = train_occurrence_model(NeighborGraph(X, y), 1, LAMBDA, anti_hub_cutoff=10)
    at_k4 = train_occurrence_model(NeighborGraph(X, y), 4, LAMBDA, anti_hub_cutoff=10)
    label_k1 = at_k1.local_tables[AntiHubScheme.LABEL]
    label_k4 = at_k4.local_tables[AntiHubScheme.LABEL]
    assert np.array_equal(label_k1, label_k4)
    assert label_k1[0, 0] == pytest.approx(1.001 / 1.002)
    assert label_k1[3, 0] == pytest.approx(0.001 / 1.002)


def test_good_and_bad_from_counts(six_point_graph):
    model = train_occurrence_model(six_point_graph, 3, LAMBDA)
    stats = six_point_graph.recompute_stats_for_k(3)
    np.testing.assert_array_equal(model.good, stats.good)
    np.testing.assert_array_equal(model.bad, stats.bad)
    # hw-kNN standardizes the bad occurrences itself.
    np.testing.assert_allclose(model.hw_weights, hw_knn_weights(stats.bad))


def test_counts_from_neighbors_shape():
    neighbors = np.array([[1], [0], [0]])
    counts = OccurrenceCounts.from_neighbors(neighbors, np.array([0, 1, 1]), 3)
    assert counts.class_counts.shape == (3, 3)
    np.testing.assert_array_equal(counts.occurrence, [2, 1, 0])


def test_training_failures(six_point_graph):
    with pytest.raises(InvalidParameterError):
        train_occurrence_model(six_point_graph, 0)
    with pytest.raises(OutOfRangeError):
        train_occurrence_model(six_point_graph, 6)
    empty = NeighborGraph(np.empty((0, 1)), np.empty(0, dtype=int),
                          distance_matrix=np.empty((0, 0)))
    with pytest.raises(UninitializedModelError):
        train_occurrence_model(empty, 1)


def test_class_conditional_occurrence(six_point_graph):
    model = train_occurrence_model(six_point_graph, 3, LAMBDA)
    # Smoothing 1/(2C) = 0.25 over a denominator of k*|c| + N/4 = 9 + 1.5.
    np.testing.assert_allclose(model.conditional_occurrence[:, 4], [0.25 / 10.5, 2.25 / 10.5])
    np.testing.assert_allclose(model.conditional_occurrence[:, 0], [3.25 / 10.5, 1.25 / 10.5])
