"""
This file implements the neighbor weighting functions shared by the
classifier variants:
1. Fuzzy distance weights  w = d^(-2/(m-1))
2. Occurrence self-information  I(p) = log2(N / (occ(p) + 1))
3. Label-information factor (alpha) of HIKNN
4. hw-kNN bad-hubness weights
5. NW-kNN class-imbalance weights
"""

import numpy as np

from hubness_core.errors import InvalidParameterError

# Weight given to a neighbor at distance exactly 0.
ZERO_DISTANCE_WEIGHT = 10000.0
# Keeps the alpha denominator away from 0 when every point occurs equally often.
ALPHA_DENOMINATOR_OFFSET = 1e-4
# Default exponent e of the NW-kNN class weights (prior / min_prior) ** -e.
DEFAULT_CLASS_WEIGHT_EXPONENT = 0.25


def raw_distance_weights(distances: np.ndarray, m: float) -> np.ndarray:
    """
    Unnormalized fuzzy distance weights d^(-2/(m-1)).

    Coincident neighbors (d == 0) get ZERO_DISTANCE_WEIGHT instead of an
    infinite weight. Very small distances may still overflow to inf.
    """
    if m <= 1:
        raise InvalidParameterError(
            f"Distance weight exponent must be > 1, got {m}",
            "distance_weight_exponent", m)
    distances = np.asarray(distances, dtype=float)
    exponent = -2.0 / (m - 1.0)
    weights = np.full(distances.shape, ZERO_DISTANCE_WEIGHT)
    nonzero = distances != 0
    with np.errstate(over="ignore", divide="ignore"):
        weights[nonzero] = np.power(distances[nonzero], exponent)
    return weights


def normalize_weights(weights: np.ndarray) -> np.ndarray:
    """
    Scales weights to sum to 1.

    When some weights overflowed to infinity the whole mass is shared
    equally among those entries.
    """
    infinite = np.isinf(weights)
    if infinite.any():
        return infinite / infinite.sum()
    total = weights.sum()
    if total <= 0:
        return uniform_weights(len(weights))
    return weights / total


def distance_weights(distances: np.ndarray, m: float) -> np.ndarray:
    """Normalized fuzzy distance weights of a neighbor list."""
    return normalize_weights(raw_distance_weights(distances, m))


def uniform_weights(k: int) -> np.ndarray:
    return np.full(k, 1.0 / k) if k > 0 else np.empty(0)


def occurrence_self_information(occurrence: np.ndarray, n_points: int) -> np.ndarray:
    """log2(N / (occ + 1)): rare neighbors carry more information."""
    return np.log2(n_points / (np.asarray(occurrence, dtype=float) + 1.0))


def label_information_factor(occurrence: np.ndarray, n_points: int) -> np.ndarray:
    """
    HIKNN alpha: how far a point's self-information sits between the
    least informative point (the biggest hub) and an orphan.

    alpha(p) = (I(p) - I_min) / (I_max - I_min + 1e-4)
    with I_min = log2(N / (max occ + 1)) and I_max = log2(N).
    """
    occurrence = np.asarray(occurrence, dtype=float)
    information = occurrence_self_information(occurrence, n_points)
    max_occurrence = occurrence.max() if len(occurrence) else 0.0
    information_min = np.log2(n_points / (max_occurrence + 1.0))
    information_max = np.log2(n_points)
    return (information - information_min) / (
        information_max - information_min + ALPHA_DENOMINATOR_OFFSET)


def hw_knn_weights(bad_occurrence: np.ndarray) -> np.ndarray:
    """
    hw-kNN weights exp(-h_b(p)), where h_b is the standardized bad
    occurrence. All weights are 1 when bad occurrences do not vary.
    """
    bad_occurrence = np.asarray(bad_occurrence, dtype=float)
    std_bad = bad_occurrence.std()
    if std_bad == 0:
        return np.ones_like(bad_occurrence)
    return np.exp(-(bad_occurrence - bad_occurrence.mean()) / std_bad)


def nw_knn_class_weights(class_priors: np.ndarray,
                         exponent: float = DEFAULT_CLASS_WEIGHT_EXPONENT) -> np.ndarray:
    """
    NW-kNN class weights (prior_c / min_prior)^(-exponent).

    Minority classes get larger weights. Classes absent from the training
    data never vote, so their weight is left at 1.
    """
    if exponent < 0:
        raise InvalidParameterError(
            f"class weight exponent must be non-negative, got {exponent}",
            "exponent", exponent)
    class_priors = np.asarray(class_priors, dtype=float)
    weights = np.ones_like(class_priors)
    present = class_priors > 0
    if present.any():
        min_prior = class_priors[present].min()
        weights[present] = np.power(class_priors[present] / min_prior, -exponent)
    return weights
