"""
Pytest configuration and shared fixtures for the hubness toolkit tests.

The small fixtures are laid out on a line so their kNN graphs can be
worked out by hand:

    six points:  0.0  1.0  2.0 | 3.5  10.0  11.0
    labels:      0    0    0   | 1    1     1

With k=3 the neighbor lists are
    0: [1, 2, 3]   1: [0, 2, 3]   2: [1, 3, 0]
    3: [2, 1, 0]   4: [5, 3, 2]   5: [4, 3, 2]
so the occurrence frequencies are [3, 3, 5, 5, 1, 1].
"""

import numpy as np
import pytest

from hubness_core.neighbors import NeighborGraph


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")


@pytest.fixture
def six_points():
    X = np.array([[0.0], [1.0], [2.0], [3.5], [10.0], [11.0]])
    y = np.array([0, 0, 0, 1, 1, 1])
    return X, y


@pytest.fixture
def six_point_graph(six_points):
    X, y = six_points
    graph = NeighborGraph(X, y)
    graph.compute_neighbors(3)
    return graph


@pytest.fixture
def separable_data():
    """Two tight, far apart clusters of five points each."""
    rng = np.random.default_rng(7)
    class_0 = rng.uniform(0.0, 0.5, size=(5, 2))
    class_1 = rng.uniform(10.0, 10.5, size=(5, 2))
    X = np.vstack([class_0, class_1])
    y = np.array([0] * 5 + [1] * 5)
    return X, y


@pytest.fixture
def noisy_data():
    """Three overlapping Gaussian classes in 4 dimensions."""
    rng = np.random.default_rng(11)
    centers = np.array([[0, 0, 0, 0], [1.5, 1.5, 0, 0], [0, 1.5, 1.5, 1.5]])
    X = np.vstack([rng.normal(center, 1.0, size=(20, 4)) for center in centers])
    y = np.repeat(["setosa", "versicolor", "virginica"], 20)
    return X, y
