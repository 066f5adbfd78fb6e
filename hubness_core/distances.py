"""
This file provides the distance metrics used to build kNN graphs:
1. Euclidean
2. Manhattan (L1)
3. Cosine

Every metric accepts an optional `weights` vector for feature weighting.
Any other callable f(x1, x2) -> float, or a scipy metric name, can be used
in their place: the classifiers treat the metric as an opaque capability.
"""

from functools import partial
from typing import Callable, Optional, Union

import numpy as np
from scipy.spatial.distance import cdist

# --- Type Aliases ---
DistanceFunc = Callable[[np.ndarray, np.ndarray], float]
Metric = Union[str, DistanceFunc]


def euclidean_distance(x1: np.ndarray, x2: np.ndarray,
                       weights: Optional[np.ndarray] = None) -> float:
    """
    Weighted Euclidean distance (L2 norm).
    d(q,x) = sqrt( sum( w_f * (q_f - x_f)^2 ) )
    """
    squared_diff = (x1 - x2) ** 2
    if weights is not None:
        squared_diff = weights * squared_diff
    return float(squared_diff.sum() ** 0.5)


def manhattan_distance(x1: np.ndarray, x2: np.ndarray,
                       weights: Optional[np.ndarray] = None) -> float:
    """Weighted L1 distance: sum( w_f * |q_f - x_f| )."""
    absolute_diff = np.abs(x1 - x2)
    if weights is not None:
        absolute_diff = weights * absolute_diff
    return float(absolute_diff.sum())


def cosine_distance(x1: np.ndarray, x2: np.ndarray,
                    weights: Optional[np.ndarray] = None) -> float:
    """
    Weighted cosine distance (1 - cosine similarity).

    Weights are applied before the dot product and the norms. A zero vector
    is at the maximum distance (1.0) from everything.
    """
    if weights is not None:
        x1 = weights * x1
        x2 = weights * x2

    norm_x1 = (x1 ** 2).sum() ** 0.5
    norm_x2 = (x2 ** 2).sum() ** 0.5
    if norm_x1 == 0 or norm_x2 == 0:
        return 1.0

    cosine_similarity = (x1 * x2).sum() / (norm_x1 * norm_x2)
    # Clamp to [-1, 1] against floating point drift.
    cosine_similarity = max(-1.0, min(1.0, float(cosine_similarity)))
    return 1.0 - cosine_similarity


def weighted(distance_func: Callable[..., float], weights: np.ndarray) -> DistanceFunc:
    """Binds a feature-weight vector to one of the metrics above."""
    return partial(distance_func, weights=np.asarray(weights, dtype=float))


def pairwise_distance_matrix(X: np.ndarray, metric: Metric = "euclidean",
                             Y: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Full distance matrix between the rows of X (and Y, when given).

    String metrics go through scipy's cdist fast path; callables are
    evaluated pair by pair. Euclidean and city-block distances between
    identical rows come out at exactly 0; other metrics and callables give
    whatever they compute, e.g. cosine can leave a rounding residue.
    """
    X = np.asarray(X, dtype=float)
    Y = X if Y is None else np.asarray(Y, dtype=float)
    if X.ndim == 1:
        X = X.reshape(1, -1)
    if Y.ndim == 1:
        Y = Y.reshape(1, -1)
    return cdist(X, Y, metric=metric)


def distances_to(query: np.ndarray, X: np.ndarray,
                 metric: Metric = "euclidean") -> np.ndarray:
    """Distances from one query vector to every row of X."""
    return pairwise_distance_matrix(np.asarray(query, dtype=float).reshape(1, -1),
                                    metric, X)[0]
