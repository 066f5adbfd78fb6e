"""
This file implements the four anti-hub vote estimation schemes.

A neighbor whose occurrence frequency is at or below the anti-hub cutoff
has been seen too rarely for its class-occurrence profile to be trusted.
Its vote is then taken from one of these fallbacks:

- GLOBAL: the class-to-class prior of the neighbor's label.
- LOCAL:  a smoothed class histogram over the neighbor's own neighborhood.
- LOCALF: LOCAL pulled towards the neighbor's label (fuzzy-NN style).
- LABEL:  a crisp distribution built from the neighbor's label alone.

Each scheme is an AntiHubEstimator; a trained vote estimator holds exactly
one of them.
"""

from enum import Enum
from typing import Dict, Sequence, Union

import numpy as np

from hubness_core.errors import InvalidParameterError

# Fixed share of the fuzzy vote that goes to a point's own label.
FUZZY_OWN_LABEL_SHARE = 0.51
FUZZY_NEIGHBOR_SHARE = 0.49


class AntiHubScheme(Enum):
    GLOBAL = 0
    LOCAL = 1
    LOCALF = 2
    LABEL = 3

    @classmethod
    def from_name(cls, value: Union[str, int, "AntiHubScheme"]) -> "AntiHubScheme":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                pass
        else:
            try:
                return cls(value)
            except ValueError:
                pass
        raise InvalidParameterError(
            f"Unknown anti-hub estimation scheme: {value!r}",
            "estimation_scheme", value)


# -----------------------------------------------------------------
#  Fallback distribution tables
# -----------------------------------------------------------------

def local_class_distribution(own_label: int,
                             neighbor_labels: Sequence[int],
                             num_classes: int,
                             laplace_estimator: float) -> np.ndarray:
    """
    Laplace-smoothed class histogram over a local neighborhood.

    The point's own label is counted once alongside its neighbors, so the
    normalizer is len(neighbors) + 1 (+ the smoothing mass).
    """
    counts = np.bincount(np.asarray(neighbor_labels, dtype=int),
                         minlength=num_classes).astype(float)
    counts[own_label] += 1.0
    total = len(neighbor_labels) + 1 + num_classes * laplace_estimator
    return (counts + laplace_estimator) / total


def fuzzy_local_distribution(own_label: int, local: np.ndarray) -> np.ndarray:
    """Rescales a LOCAL distribution into the label-biased LOCALF form."""
    fuzzy = FUZZY_NEIGHBOR_SHARE * local
    fuzzy[own_label] += FUZZY_OWN_LABEL_SHARE
    return fuzzy


def crisp_label_distribution(own_label: int, num_classes: int,
                             laplace_estimator: float) -> np.ndarray:
    """Two-valued distribution that depends only on the label and lambda."""
    denominator = 1.0 + num_classes * laplace_estimator
    crisp = np.full(num_classes, laplace_estimator / denominator)
    crisp[own_label] = (1.0 + laplace_estimator) / denominator
    return crisp


def build_local_tables(labels: np.ndarray,
                       neighborhoods: Dict[int, np.ndarray],
                       num_classes: int,
                       laplace_estimator: float) -> Dict[AntiHubScheme, np.ndarray]:
    """
    Builds the LOCAL, LOCALF and LABEL tables for the given points.

    Args:
        labels: Dense labels of the whole training set.
        neighborhoods: point index -> indices of its local neighborhood.
        num_classes: Number of classes.
        laplace_estimator: Smoothing constant.

    Returns:
        Dict mapping each local scheme to an (N, C) array. Rows of points
        not present in `neighborhoods` are left at zero.
    """
    n_points = len(labels)
    tables = {
        AntiHubScheme.LOCAL: np.zeros((n_points, num_classes)),
        AntiHubScheme.LOCALF: np.zeros((n_points, num_classes)),
        AntiHubScheme.LABEL: np.zeros((n_points, num_classes)),
    }
    for point, neighbors in neighborhoods.items():
        own = int(labels[point])
        local = local_class_distribution(own, labels[neighbors], num_classes,
                                         laplace_estimator)
        tables[AntiHubScheme.LOCAL][point] = local
        tables[AntiHubScheme.LOCALF][point] = fuzzy_local_distribution(own, local)
        tables[AntiHubScheme.LABEL][point] = crisp_label_distribution(
            own, num_classes, laplace_estimator)
    return tables


# -----------------------------------------------------------------
#  Estimators
# -----------------------------------------------------------------

class AntiHubEstimator:
    """Produces the fallback class distribution voted by an anti-hub point."""

    scheme: AntiHubScheme

    def estimate(self, point: int) -> np.ndarray:
        raise NotImplementedError


class GlobalEstimator(AntiHubEstimator):
    """Votes the class-to-class prior column of the anti-hub's label."""

    scheme = AntiHubScheme.GLOBAL

    def __init__(self, class_to_class_priors: np.ndarray, labels: np.ndarray):
        self.class_to_class_priors = class_to_class_priors
        self.labels = labels

    def estimate(self, point: int) -> np.ndarray:
        return self.class_to_class_priors[:, self.labels[point]]


class TableEstimator(AntiHubEstimator):
    """Votes a precomputed per-point row (LOCAL, LOCALF or LABEL)."""

    def __init__(self, scheme: AntiHubScheme, table: np.ndarray):
        self.scheme = scheme
        self.table = table

    def estimate(self, point: int) -> np.ndarray:
        return self.table[point]


def make_estimator(scheme: AntiHubScheme,
                   class_to_class_priors: np.ndarray,
                   labels: np.ndarray,
                   local_tables: Dict[AntiHubScheme, np.ndarray]) -> AntiHubEstimator:
    """Selects the estimator for a scheme from the trained tables."""
    scheme = AntiHubScheme.from_name(scheme)
    if scheme is AntiHubScheme.GLOBAL:
        return GlobalEstimator(class_to_class_priors, labels)
    return TableEstimator(scheme, local_tables[scheme])
