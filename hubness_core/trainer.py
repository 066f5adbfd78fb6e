"""
This file implements the training step shared by all hubness-aware
classifiers: turning the kNN graph truncated to k into an OccurrenceModel.

Raw integer counts (OccurrenceCounts) are kept apart from the smoothed
probability tables derived from them, so the leave-one-out search can
patch the counts and re-derive the tables without touching the original.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

import numpy as np

from hubness_core.antihub import AntiHubScheme, build_local_tables
from hubness_core.errors import (InvalidParameterError, OutOfRangeError,
                                 UninitializedModelError)
from hubness_core.logger import get_logger
from hubness_core.neighbors import NeighborGraph
from hubness_core.weighting import (hw_knn_weights, label_information_factor,
                                    occurrence_self_information)

logger = get_logger(__name__)

# Anti-hub fallbacks look at no fewer than this many neighbors.
MIN_LOCAL_NEIGHBORHOOD = 10

# --- Type Aliases ---
LocalTables = Dict[AntiHubScheme, np.ndarray]


@dataclass(frozen=True)
class OccurrenceCounts:
    """
    Raw neighbor-occurrence counts at one k.

    class_counts[c][p] counts the points of class c having p as a neighbor,
    plus 1 for p itself in its own class. class_to_class_counts[a][b] counts
    neighbors of class a found in kNN sets of class-b points, and
    class_hubness_sum[a] is its row total.
    """
    occurrence: np.ndarray
    class_counts: np.ndarray
    class_to_class_counts: np.ndarray
    class_hubness_sum: np.ndarray

    @classmethod
    def from_neighbors(cls, neighbors: np.ndarray, labels: np.ndarray,
                       num_classes: int) -> "OccurrenceCounts":
        n_points, k = neighbors.shape
        rows = np.repeat(np.arange(n_points), k)
        flat = neighbors.ravel()
        row_labels = labels[rows]
        neighbor_labels = labels[flat]

        occurrence = np.bincount(flat, minlength=n_points)
        class_counts = np.zeros((num_classes, n_points), dtype=np.int64)
        class_counts[labels, np.arange(n_points)] += 1
        np.add.at(class_counts, (row_labels, flat), 1)
        class_to_class_counts = np.zeros((num_classes, num_classes), dtype=np.int64)
        np.add.at(class_to_class_counts, (neighbor_labels, row_labels), 1)
        class_hubness_sum = np.bincount(neighbor_labels, minlength=num_classes)
        return cls(occurrence, class_counts, class_to_class_counts, class_hubness_sum)

    def good_occurrence(self, labels: np.ndarray) -> np.ndarray:
        # Own-class count minus the self reference.
        return self.class_counts[labels, np.arange(len(labels))] - 1

    def bad_occurrence(self, labels: np.ndarray) -> np.ndarray:
        return self.occurrence - self.good_occurrence(labels)


def _safe_divide(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    """Elementwise division where a zero denominator yields 0."""
    denominator = np.asarray(denominator, dtype=float)
    safe = np.where(denominator == 0, 1.0, denominator)
    return np.where(denominator == 0, 0.0, numerator / safe)


def smoothed_relation(counts: OccurrenceCounts, laplace_estimator: float) -> np.ndarray:
    """(count + lam) / (occ + 1 + C*lam), shape (C, N)."""
    num_classes = counts.class_counts.shape[0]
    denominator = counts.occurrence + 1.0 + num_classes * laplace_estimator
    return (counts.class_counts + laplace_estimator) / denominator


def unsmoothed_relation(counts: OccurrenceCounts) -> np.ndarray:
    """count / (occ + 1), the HIKNN class-occurrence profile."""
    return counts.class_counts / (counts.occurrence + 1.0)


def smoothed_class_to_class_priors(counts: OccurrenceCounts,
                                   laplace_estimator: float) -> np.ndarray:
    """(count + lam) / (class_hubness_sum[a] + C*lam), indexed [neighbor][query]."""
    num_classes = counts.class_to_class_counts.shape[0]
    denominator = counts.class_hubness_sum[:, None] + num_classes * laplace_estimator
    return _safe_divide(counts.class_to_class_counts + laplace_estimator, denominator)


def class_conditional_occurrence(counts: OccurrenceCounts, labels: np.ndarray,
                                 k: int) -> np.ndarray:
    """
    Naive Bayes likelihood that point i shows up in the k-NN set of a class-c
    point: (count + 1/(2C)) / (k * |c| + N/(2C)), shape (C, N).
    """
    num_classes, n_points = counts.class_counts.shape
    smoothing = 1.0 / (2 * num_classes)
    class_sizes = np.bincount(labels, minlength=num_classes)
    denominator = k * class_sizes[:, None] + n_points * smoothing
    return (counts.class_counts + smoothing) / denominator


def local_neighborhood_size(k: int, n_points: int) -> int:
    return min(max(k, MIN_LOCAL_NEIGHBORHOOD), n_points - 1)


def build_local_fallbacks(graph: NeighborGraph, num_classes: int, k: int,
                          laplace_estimator: float,
                          points: Iterable[int]) -> LocalTables:
    """
    LOCAL / LOCALF / LABEL tables for the given points, each computed over
    the point's max(k, 10) nearest neighbors.
    """
    size = local_neighborhood_size(k, graph.n_points)
    neighborhoods = {int(p): graph.extend_neighbors(int(p), size)[0] for p in points}
    return build_local_tables(graph.labels, neighborhoods, num_classes, laplace_estimator)


@dataclass
class OccurrenceModel:
    """
    Trained tables of a hubness-aware model at one k.

    Everything except `counts`, the labels and the local tables is derived
    in __post_init__, so a patched copy of the counts gives a consistent
    model through with_counts().
    """
    k: int
    laplace_estimator: float
    anti_hub_cutoff: int
    labels: np.ndarray
    num_classes: int
    counts: OccurrenceCounts
    class_priors: np.ndarray
    local_tables: LocalTables

    relation: np.ndarray = field(init=False, repr=False)
    raw_relation: np.ndarray = field(init=False, repr=False)
    class_to_class_priors: np.ndarray = field(init=False, repr=False)
    conditional_occurrence: np.ndarray = field(init=False, repr=False)
    good: np.ndarray = field(init=False, repr=False)
    bad: np.ndarray = field(init=False, repr=False)
    self_information: np.ndarray = field(init=False, repr=False)
    label_information: np.ndarray = field(init=False, repr=False)
    hw_weights: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        n_points = len(self.labels)
        self.relation = smoothed_relation(self.counts, self.laplace_estimator)
        self.raw_relation = unsmoothed_relation(self.counts)
        self.class_to_class_priors = smoothed_class_to_class_priors(
            self.counts, self.laplace_estimator)
        self.conditional_occurrence = class_conditional_occurrence(
            self.counts, self.labels, self.k)
        self.good = self.counts.good_occurrence(self.labels)
        self.bad = self.counts.bad_occurrence(self.labels)
        self.self_information = occurrence_self_information(self.counts.occurrence, n_points)
        self.label_information = label_information_factor(self.counts.occurrence, n_points)
        self.hw_weights = hw_knn_weights(self.bad)

    @property
    def n_points(self) -> int:
        return len(self.labels)

    @property
    def occurrence(self) -> np.ndarray:
        return self.counts.occurrence

    def is_anti_hub(self, points: np.ndarray, anti_hub_cutoff: Optional[int] = None) -> np.ndarray:
        cutoff = self.anti_hub_cutoff if anti_hub_cutoff is None else anti_hub_cutoff
        return self.counts.occurrence[points] <= cutoff

    def with_counts(self, counts: OccurrenceCounts) -> "OccurrenceModel":
        """Same model re-derived from different (e.g. leave-one-out) counts."""
        return OccurrenceModel(self.k, self.laplace_estimator, self.anti_hub_cutoff,
                               self.labels, self.num_classes, counts,
                               self.class_priors, self.local_tables)


def class_prior_distribution(labels: np.ndarray, num_classes: int) -> np.ndarray:
    return np.bincount(labels, minlength=num_classes) / float(len(labels))


def train_occurrence_model(graph: NeighborGraph, k: int,
                           laplace_estimator: float = 0.001,
                           anti_hub_cutoff: int = 0,
                           num_classes: Optional[int] = None,
                           local_for_all: bool = False) -> OccurrenceModel:
    """
    Builds the occurrence model of the training set at neighborhood size k.

    Args:
        graph: kNN graph of the training set; extended to k if needed.
        k: Neighborhood size.
        laplace_estimator: Smoothing constant lambda.
        anti_hub_cutoff: Points with occurrence <= cutoff get local fallbacks.
        num_classes: Number of classes (defaults to max label + 1).
        local_for_all: Build the local tables for every point, not only
            for anti-hubs (fuzzy NN votes with them for every neighbor).

    Returns:
        OccurrenceModel
    """
    labels = graph.labels
    if len(labels) == 0:
        raise UninitializedModelError("Cannot train on an empty training set")
    if num_classes is None:
        num_classes = int(labels.max()) + 1
    if num_classes <= 0:
        raise UninitializedModelError("Cannot train with zero classes")
    if k <= 0:
        raise InvalidParameterError(f"k must be positive, got {k}", "k", k)
    if k > graph.n_points - 1:
        raise OutOfRangeError(
            f"k={k} exceeds the {graph.n_points - 1} neighbors available per point",
            k, graph.n_points - 1)

    neighbors, _ = graph.ensure_neighbors(k)
    counts = OccurrenceCounts.from_neighbors(neighbors[:, :k], labels, num_classes)

    if local_for_all:
        # Every point needs the wider neighborhood, so widen the whole graph once.
        graph.ensure_neighbors(local_neighborhood_size(k, graph.n_points))
        local_points = np.arange(graph.n_points)
    else:
        local_points = np.flatnonzero(counts.occurrence <= anti_hub_cutoff)
    local_tables = build_local_fallbacks(graph, num_classes, k, laplace_estimator,
                                         local_points)

    logger.info("[Trainer] k=%d, %d points, %d classes, %d anti-hubs (cutoff %d)",
                k, graph.n_points, num_classes,
                int((counts.occurrence <= anti_hub_cutoff).sum()), anti_hub_cutoff)
    return OccurrenceModel(k, laplace_estimator, anti_hub_cutoff, labels, num_classes,
                           counts, class_prior_distribution(labels, num_classes),
                           local_tables)
