"""
This file contains the kNN graph used by every hubness-aware classifier.

NeighborGraph computes, for each training point, its nearest neighbors
(self excluded, nearest first, ties broken by index order) up to some
k_max, and derives the neighbor-occurrence statistics for any k <= k_max
by truncation: occurrence frequency ("hubness"), good / bad occurrences
and the reverse-neighbor lists.

It also provides the online insertion-sort kNN search used for queries
and for extending a single point's neighborhood beyond k_max.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np
from scipy import stats

from hubness_core.distances import Metric, distances_to, pairwise_distance_matrix
from hubness_core.errors import (InvalidParameterError, OutOfRangeError,
                                 UninitializedModelError)
from hubness_core.logger import get_logger

logger = get_logger(__name__)

# --- Type Aliases ---
NeighborLists = Tuple[np.ndarray, np.ndarray]  # (indices, distances)


@dataclass(frozen=True)
class OccurrenceStats:
    """Neighbor-occurrence statistics of a graph truncated to k neighbors."""
    k: int
    occurrence: np.ndarray
    good: np.ndarray
    bad: np.ndarray
    reverse_neighbors: Tuple[np.ndarray, ...]


def insertion_knn(distances: np.ndarray, k: int,
                  exclude: Iterable[int] = (),
                  seed_indices: Sequence[int] = (),
                  seed_distances: Sequence[float] = ()) -> NeighborLists:
    """
    Online k-nearest-neighbor search with insertion-sort maintenance.

    Scans `distances` once, keeping a sorted buffer of the best k entries.
    A candidate is inserted after every entry at the same distance, so ties
    keep the scan order.

    Args:
        distances: Distance from the query to every candidate point.
        k: Number of neighbors wanted.
        exclude: Candidate indices never to return (e.g. the query itself).
        seed_indices: Already-known neighbors, nearest first. They keep
            their place and are not scanned again.
        seed_distances: Distances of the seed neighbors.

    Returns:
        (indices, distances) of at most k neighbors, nearest first.
    """
    kept_indices: List[int] = list(seed_indices)[:k]
    kept_distances: List[float] = [float(d) for d in list(seed_distances)[:k]]
    skip: Set[int] = set(exclude) | set(kept_indices)

    for j, dist in enumerate(distances):
        if j in skip:
            continue
        dist = float(dist)
        if len(kept_indices) == k and not dist < kept_distances[-1]:
            continue
        # Walk back from the end past every strictly larger distance.
        position = len(kept_indices)
        while position > 0 and kept_distances[position - 1] > dist:
            position -= 1
        kept_indices.insert(position, j)
        kept_distances.insert(position, dist)
        if len(kept_indices) > k:
            kept_indices.pop()
            kept_distances.pop()

    return np.asarray(kept_indices, dtype=int), np.asarray(kept_distances, dtype=float)


class NeighborGraph:
    """
    kNN graph over a labeled training set.

    The graph is built once for the largest k needed; statistics for any
    smaller k are derived from the stored lists without searching again.
    """

    def __init__(self, X: np.ndarray, labels: np.ndarray,
                 metric: Metric = "euclidean",
                 distance_matrix: Optional[np.ndarray] = None):
        """
        Args:
            X: Training feature matrix (N, d).
            labels: Dense integer labels in [0, C).
            metric: Metric name or callable; ignored if distance_matrix is given.
            distance_matrix: Optional precomputed (N, N) distance matrix.
        """
        self.X = np.asarray(X, dtype=float)
        self.labels = np.asarray(labels, dtype=int)
        self.metric = metric
        if len(self.X) != len(self.labels):
            raise InvalidParameterError(
                f"X has {len(self.X)} rows but {len(self.labels)} labels were given",
                "labels", len(self.labels))

        if distance_matrix is None:
            self.distance_matrix = pairwise_distance_matrix(self.X, metric)
        else:
            self.distance_matrix = np.asarray(distance_matrix, dtype=float)
            if self.distance_matrix.shape != (len(self.X), len(self.X)):
                raise InvalidParameterError(
                    f"distance_matrix must be {len(self.X)}x{len(self.X)}, "
                    f"got {self.distance_matrix.shape}",
                    "distance_matrix", self.distance_matrix.shape)

        self._indices: Optional[np.ndarray] = None
        self._distances: Optional[np.ndarray] = None
        self._stats_cache: Dict[int, OccurrenceStats] = {}
        self._tabu: Set[int] = set()

    @property
    def n_points(self) -> int:
        return len(self.labels)

    @property
    def k_max(self) -> int:
        """Largest neighborhood size currently available (0 before computing)."""
        return 0 if self._indices is None else self._indices.shape[1]

    @property
    def indices(self) -> np.ndarray:
        self._require_computed()
        return self._indices

    @property
    def distances(self) -> np.ndarray:
        self._require_computed()
        return self._distances

    # -----------------------------------------------------------------
    #  Graph construction
    # -----------------------------------------------------------------

    def compute_neighbors(self, k: int) -> NeighborLists:
        """
        Computes the k nearest neighbors of every point.

        Returns:
            (indices, distances), both (N, k), nearest first, self excluded.
        """
        self._check_k(k)
        n = self.n_points
        indices = np.empty((n, k), dtype=int)
        distances = np.empty((n, k), dtype=float)
        for i in range(n):
            row = self.distance_matrix[i]
            order = np.argsort(row, kind="stable")
            order = order[(order != i) & ~np.isin(order, list(self._tabu))][:k]
            if len(order) < k:
                raise OutOfRangeError(
                    f"Point {i} has only {len(order)} eligible neighbors, {k} requested",
                    k, len(order))
            indices[i] = order
            distances[i] = row[order]

        self._indices = indices
        self._distances = distances
        self._stats_cache.clear()
        logger.debug("[Graph] Computed %d-NN sets for %d points", k, n)
        return indices, distances

    def ensure_neighbors(self, k: int) -> NeighborLists:
        """Computes the graph unless lists of at least k neighbors exist."""
        if self.k_max < k:
            return self.compute_neighbors(k)
        return self._indices[:, :k], self._distances[:, :k]

    def extend_neighbors(self, point: int, size: int) -> NeighborLists:
        """
        Returns `size` nearest neighbors of one point.

        When the stored lists are shorter than `size`, only this point's list
        is extended, by an insertion-sort scan over its distance row that
        skips the neighbors already known.
        """
        self._check_point(point)
        size = min(size, self.n_points - 1 - len(self._tabu - {point}))
        known_indices = self._indices[point] if self._indices is not None else np.empty(0, int)
        known_distances = self._distances[point] if self._distances is not None else np.empty(0)
        if len(known_indices) >= size:
            return known_indices[:size], known_distances[:size]
        return insertion_knn(self.distance_matrix[point], size,
                             exclude={point} | self._tabu,
                             seed_indices=known_indices,
                             seed_distances=known_distances)

    def distances_to(self, query: np.ndarray) -> np.ndarray:
        """Distances from an out-of-sample query to every training point."""
        return distances_to(query, self.X, self.metric)

    # -----------------------------------------------------------------
    #  Occurrence statistics
    # -----------------------------------------------------------------

    def recompute_stats_for_k(self, k: int) -> OccurrenceStats:
        """
        Derives the occurrence statistics for k <= k_max by truncating the
        stored neighbor lists to their first k entries.
        """
        self._require_computed()
        if k <= 0:
            raise InvalidParameterError(f"k must be positive, got {k}", "k", k)
        if k > self.k_max:
            raise OutOfRangeError(
                f"Statistics for k={k} requested but neighbors are only known up to {self.k_max}",
                k, self.k_max)
        if k in self._stats_cache:
            return self._stats_cache[k]

        n = self.n_points
        neighbors = self._indices[:, :k]
        flat = neighbors.ravel()
        occurrence = np.bincount(flat, minlength=n)
        same_label = (self.labels[neighbors] == self.labels[:, None]).ravel()
        good = np.bincount(flat[same_label], minlength=n)
        bad = occurrence - good

        # Rows come out ascending inside each column since the sort is stable.
        rows = np.repeat(np.arange(n), k)
        order = np.argsort(flat, kind="stable")
        splits = np.cumsum(occurrence)[:-1]
        reverse_neighbors = tuple(np.split(rows[order], splits))

        occurrence_stats = OccurrenceStats(k, occurrence, good, bad, reverse_neighbors)
        self._stats_cache[k] = occurrence_stats
        return occurrence_stats

    def reverse_neighbors_of(self, point: int, k: int) -> np.ndarray:
        """Points that have `point` among their first k neighbors."""
        self._check_point(point)
        return self.recompute_stats_for_k(k).reverse_neighbors[point]

    def hubness_summary(self, k: int, anti_hub_cutoff: int = 0) -> Dict[str, float]:
        """
        Basic hubness statistics of the k-occurrence distribution.

        Hubs are points occurring more than 2k times, orphans never occur,
        anti-hubs occur at most `anti_hub_cutoff` times.
        """
        occurrence_stats = self.recompute_stats_for_k(k)
        occurrence = occurrence_stats.occurrence
        skewness = float(stats.skew(occurrence)) if occurrence.std() > 0 else 0.0
        return {
            "k": k,
            "skewness": skewness,
            "max_occurrence": int(occurrence.max()),
            "hubs": int((occurrence > 2 * k).sum()),
            "orphans": int((occurrence == 0).sum()),
            "anti_hubs": int((occurrence <= anti_hub_cutoff).sum()),
            "bad_occurrence_ratio": float(occurrence_stats.bad.sum() / max(occurrence.sum(), 1)),
        }

    # -----------------------------------------------------------------
    #  Tabu
    # -----------------------------------------------------------------

    def tabu(self, point: int, replacement_candidate: Optional[int] = None) -> List[int]:
        """
        Removes `point` from every stored neighbor list and from future
        neighbor searches.

        Each list that loses `point` gets one replacement spliced in at its
        sorted position: `replacement_candidate` when it is eligible for that
        list, otherwise the nearest eligible point found by a scan.

        Must not be called while a hyperparameter search reads this graph.

        Returns:
            Indices of the points whose neighbor lists changed.
        """
        self._check_point(point)
        self._require_computed()
        self._tabu.add(point)
        affected: List[int] = []
        k = self.k_max
        for j in np.flatnonzero((self._indices == point).any(axis=1)):
            j = int(j)
            keep = self._indices[j] != point
            kept_indices = self._indices[j][keep]
            kept_distances = self._distances[j][keep]
            row = self.distance_matrix[j]

            eligible = (replacement_candidate is not None
                        and replacement_candidate != j
                        and replacement_candidate not in self._tabu
                        and replacement_candidate not in kept_indices)
            if eligible:
                candidate_distance = row[replacement_candidate]
                position = int(np.searchsorted(kept_distances, candidate_distance, side="right"))
                new_indices = np.insert(kept_indices, position, replacement_candidate)
                new_distances = np.insert(kept_distances, position, candidate_distance)
            else:
                new_indices, new_distances = insertion_knn(
                    row, k, exclude={j} | self._tabu,
                    seed_indices=kept_indices, seed_distances=kept_distances)
            if len(new_indices) < k:
                raise OutOfRangeError(
                    f"No replacement neighbor left for point {j} after tabu of {point}",
                    point, self.n_points)
            self._indices[j] = new_indices
            self._distances[j] = new_distances
            affected.append(j)

        self._stats_cache.clear()
        logger.debug("[Graph] Tabu point %d, %d lists patched", point, len(affected))
        return affected

    # -----------------------------------------------------------------
    #  Validation helpers
    # -----------------------------------------------------------------

    def _require_computed(self) -> None:
        if self._indices is None:
            raise UninitializedModelError("Neighbor sets have not been computed yet")

    def _check_k(self, k: int) -> None:
        if k <= 0:
            raise InvalidParameterError(f"k must be positive, got {k}", "k", k)
        available = self.n_points - 1 - len(self._tabu)
        if k > available:
            raise OutOfRangeError(
                f"k={k} exceeds the {available} neighbors available per point",
                k, available)

    def _check_point(self, point: int) -> None:
        if not 0 <= point < self.n_points:
            raise OutOfRangeError(
                f"Point index {point} outside the training set of {self.n_points}",
                point, self.n_points)
