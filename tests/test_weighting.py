import numpy as np
import pytest

from hubness_core.config import M_GRID
from hubness_core.errors import InvalidParameterError
from hubness_core.weighting import (ZERO_DISTANCE_WEIGHT, distance_weights,
                                    hw_knn_weights, label_information_factor,
                                    normalize_weights, nw_knn_class_weights,
                                    occurrence_self_information,
                                    raw_distance_weights)


@pytest.mark.parametrize("m", M_GRID)
def test_closer_neighbors_weigh_more(m):
    rng = np.random.default_rng(3)
    distances = np.sort(rng.uniform(0.01, 5.0, size=20))
    weights = raw_distance_weights(distances, m)
    assert np.all(np.diff(weights) <= 0)


def test_inverse_square_for_m_2():
    np.testing.assert_allclose(raw_distance_weights(np.array([0.5, 2.0]), 2.0), [4.0, 0.25])


def test_zero_distance_weight_is_exact():
    weights = raw_distance_weights(np.array([0.0, 1.0, 2.0]), 2.0)
    assert weights[0] == ZERO_DISTANCE_WEIGHT == 10000.0


def test_normalized_weights_sum_to_one():
    weights = distance_weights(np.array([0.1, 0.5, 3.0]), 1.4)
    assert weights.sum() == pytest.approx(1.0)


def test_infinite_weights_share_the_mass():
    weights = normalize_weights(np.array([np.inf, 1.0, np.inf]))
    np.testing.assert_allclose(weights, [0.5, 0.0, 0.5])


def test_overflowing_distances_do_not_produce_nan():
    weights = distance_weights(np.array([1e-300, 1.0]), 1.2)
    assert not np.isnan(weights).any()
    assert weights[0] == 1.0


def test_m_must_exceed_one():
    with pytest.raises(InvalidParameterError):
        raw_distance_weights(np.array([1.0]), 1.0)


def test_self_information():
    info = occurrence_self_information(np.array([0, 1, 7]), 8)
    np.testing.assert_allclose(info, [3.0, 2.0, 0.0])


def test_label_information_factor_range():
    occurrence = np.array([0, 1, 3, 7])
    alpha = label_information_factor(occurrence, 8)
    # The biggest hub gets 0, an orphan gets almost 1.
    assert alpha[3] == pytest.approx(0.0)
    assert 0.99 < alpha[0] < 1.0
    assert np.all(np.diff(alpha) < 0)


def test_hw_knn_weights():
    bad = np.array([0.0, 2.0, 4.0])
    weights = hw_knn_weights(bad)
    np.testing.assert_allclose(weights, np.exp(-(bad - 2.0) / bad.std()))
    np.testing.assert_array_equal(hw_knn_weights(np.array([1.0, 1.0])), [1.0, 1.0])


def test_nw_knn_class_weights_favor_minority():
    weights = nw_knn_class_weights(np.array([0.8, 0.2, 0.0]))
    assert weights[1] == pytest.approx(1.0)
    assert weights[0] == pytest.approx(4.0 ** -0.25)
    assert weights[2] == 1.0


def test_nw_knn_class_weight_exponent():
    priors = np.array([0.8, 0.2])
    np.testing.assert_allclose(nw_knn_class_weights(priors, 0.0), [1.0, 1.0])
    np.testing.assert_allclose(nw_knn_class_weights(priors, 0.5), [0.5, 1.0])
    with pytest.raises(InvalidParameterError):
        nw_knn_class_weights(priors, -1.0)
