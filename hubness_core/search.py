"""
This file implements the automatic hyperparameter search of the
hubness-aware classifiers: leave-one-out accuracy over k (and, depending
on the variant, the anti-hub cutoff, the estimation scheme and the
distance weighting exponent).

The kNN graph is computed once, up to k_max + 1. For every k an immutable
KSnapshot holds the raw occurrence counts at that k. Removing one point's
influence is expressed as a LeaveOneOutPatch: a small list of count deltas
covering the point's own neighbors and its reverse neighbors, whose k-NN
lists move on to their buffer (k+1-th) neighbor. Applying a patch returns
patched copies; the snapshot itself is never written to.

Each k is an independent task, so with n_jobs > 1 the tasks run on a
process pool. Every task draws its tie-breaking coin flips from its own
generator, spawned from the search seed, so the outcome does not depend
on scheduling.
"""

import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from hubness_core.antihub import AntiHubScheme, make_estimator
from hubness_core.config import M_GRID, THETA_GRID
from hubness_core.errors import (InvalidParameterError, OutOfRangeError,
                                 UninitializedModelError)
from hubness_core.logger import get_logger
from hubness_core.neighbors import NeighborGraph
from hubness_core.trainer import (LocalTables, OccurrenceCounts, OccurrenceModel,
                                  build_local_fallbacks, class_prior_distribution,
                                  local_neighborhood_size)
from hubness_core.voting import VoteRule, coin_flip_argmax, normalize_votes
from hubness_core.weighting import distance_weights, uniform_weights

logger = get_logger(__name__)

# --- Type Aliases ---
RandomState = Union[None, int, np.random.SeedSequence, np.random.Generator]


@dataclass(frozen=True)
class HyperparameterChoice:
    k: int
    anti_hub_cutoff: int
    estimation_scheme: AntiHubScheme
    distance_weight_exponent: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "k": self.k,
            "anti_hub_cutoff": self.anti_hub_cutoff,
            "estimation_scheme": self.estimation_scheme.name,
            "distance_weight_exponent": self.distance_weight_exponent,
        }


@dataclass
class SearchResult:
    """Selected configuration plus the leave-one-out score of every candidate."""
    choice: HyperparameterChoice
    accuracy: float
    scores: List[Dict[str, Any]] = field(default_factory=list)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.scores,
                            columns=["k", "anti_hub_cutoff", "estimation_scheme",
                                     "distance_weight_exponent", "accuracy"])


# -----------------------------------------------------------------
#  Snapshots and the leave-one-out overlay
# -----------------------------------------------------------------

@dataclass(frozen=True)
class KSnapshot:
    """
    Read-only tables of the training set at one k.

    `neighbors` keeps one extra column (the buffer neighbor) when the graph
    has it; `buffer_available` tells whether it does.
    """
    k: int
    labels: np.ndarray
    num_classes: int
    neighbors: np.ndarray
    distances: np.ndarray
    counts: OccurrenceCounts
    reverse_neighbors: Tuple[np.ndarray, ...]
    class_priors: np.ndarray
    local_tables: LocalTables

    @property
    def buffer_available(self) -> bool:
        return self.neighbors.shape[1] > self.k

    def base_model(self, laplace_estimator: float, anti_hub_cutoff: int = 0) -> OccurrenceModel:
        return OccurrenceModel(self.k, laplace_estimator, anti_hub_cutoff, self.labels,
                               self.num_classes, self.counts, self.class_priors,
                               self.local_tables)


@dataclass(frozen=True)
class LeaveOneOutPatch:
    """
    Count deltas that remove one point's influence from a KSnapshot.

    Each delta table is an (M, c) integer array whose last column is the
    delta and whose other columns index the target table.
    """
    point: int
    occurrence: np.ndarray
    class_counts: np.ndarray
    class_to_class_counts: np.ndarray
    class_hubness_sum: np.ndarray

    @classmethod
    def for_point(cls, snapshot: KSnapshot, point: int) -> "LeaveOneOutPatch":
        k = snapshot.k
        labels = snapshot.labels
        own_label = labels[point]
        occurrence: List[Tuple[int, int]] = []
        class_counts: List[Tuple[int, int, int]] = []
        class_to_class: List[Tuple[int, int, int]] = []
        hubness_sum: List[Tuple[int, int]] = []

        # The point no longer contributes its own k-NN set.
        for neighbor in snapshot.neighbors[point, :k]:
            neighbor_label = labels[neighbor]
            occurrence.append((neighbor, -1))
            class_counts.append((own_label, neighbor, -1))
            class_to_class.append((neighbor_label, own_label, -1))
            hubness_sum.append((neighbor_label, -1))

        # Its reverse neighbors lose it and, when the graph keeps a buffer
        # column, take their (k+1)-th neighbor instead.
        for reverse in snapshot.reverse_neighbors[point]:
            reverse_label = labels[reverse]
            occurrence.append((point, -1))
            class_counts.append((reverse_label, point, -1))
            class_to_class.append((own_label, reverse_label, -1))
            hubness_sum.append((own_label, -1))
            if snapshot.buffer_available:
                replacement = snapshot.neighbors[reverse, k]
                replacement_label = labels[replacement]
                occurrence.append((replacement, 1))
                class_counts.append((reverse_label, replacement, 1))
                class_to_class.append((replacement_label, reverse_label, 1))
                hubness_sum.append((replacement_label, 1))

        return cls(point,
                   np.array(occurrence, dtype=np.int64).reshape(-1, 2),
                   np.array(class_counts, dtype=np.int64).reshape(-1, 3),
                   np.array(class_to_class, dtype=np.int64).reshape(-1, 3),
                   np.array(hubness_sum, dtype=np.int64).reshape(-1, 2))

    def apply(self, counts: OccurrenceCounts) -> OccurrenceCounts:
        """Patched copies of the counts; `counts` is left untouched."""
        occurrence = counts.occurrence.copy()
        class_counts = counts.class_counts.copy()
        class_to_class = counts.class_to_class_counts.copy()
        hubness_sum = counts.class_hubness_sum.copy()
        np.add.at(occurrence, self.occurrence[:, 0], self.occurrence[:, 1])
        np.add.at(class_counts, (self.class_counts[:, 0], self.class_counts[:, 1]),
                  self.class_counts[:, 2])
        np.add.at(class_to_class,
                  (self.class_to_class_counts[:, 0], self.class_to_class_counts[:, 1]),
                  self.class_to_class_counts[:, 2])
        np.add.at(hubness_sum, self.class_hubness_sum[:, 0], self.class_hubness_sum[:, 1])
        return OccurrenceCounts(occurrence, class_counts, class_to_class, hubness_sum)

    def inverse(self) -> "LeaveOneOutPatch":
        """The patch that exactly undoes this one."""
        def negated(deltas: np.ndarray) -> np.ndarray:
            flipped = deltas.copy()
            flipped[:, -1] = -flipped[:, -1]
            return flipped

        return LeaveOneOutPatch(self.point, negated(self.occurrence),
                                negated(self.class_counts),
                                negated(self.class_to_class_counts),
                                negated(self.class_hubness_sum))


def build_snapshots(graph: NeighborGraph, num_classes: int, k_min: int, k_max: int,
                    laplace_estimator: float,
                    local_for_all: bool = True) -> Dict[int, KSnapshot]:
    """
    One KSnapshot per k in [k_min, k_max]. Local fallback tables are
    computed for every point, once per distinct neighborhood size.
    """
    n_points = graph.n_points
    graph.ensure_neighbors(min(k_max + 1, n_points - 1))
    labels = graph.labels
    class_priors = class_prior_distribution(labels, num_classes)
    all_points = np.arange(n_points)
    local_tables_by_size: Dict[int, LocalTables] = {}
    snapshots: Dict[int, KSnapshot] = {}

    for k in range(k_min, k_max + 1):
        width = min(k + 1, graph.k_max)
        neighbors = graph.indices[:, :width]
        distances = graph.distances[:, :width]
        occurrence_stats = graph.recompute_stats_for_k(k)
        counts = OccurrenceCounts.from_neighbors(neighbors[:, :k], labels, num_classes)

        size = local_neighborhood_size(k, n_points)
        if size not in local_tables_by_size:
            points = all_points if local_for_all else np.empty(0, dtype=int)
            local_tables_by_size[size] = build_local_fallbacks(
                graph, num_classes, k, laplace_estimator, points)

        snapshots[k] = KSnapshot(k, labels, num_classes, neighbors, distances, counts,
                                 occurrence_stats.reverse_neighbors, class_priors,
                                 local_tables_by_size[size])
    return snapshots


# -----------------------------------------------------------------
#  Grid evaluation
# -----------------------------------------------------------------

@dataclass(frozen=True)
class SearchDefaults:
    """Values used for the hyperparameters a variant does not search."""
    laplace_estimator: float = 0.001
    anti_hub_cutoff: int = 0
    # None means the default scheme of the vote rule.
    estimation_scheme: Optional[AntiHubScheme] = None
    distance_weight_exponent: float = 2.0


def candidate_grid(rule: VoteRule, defaults: SearchDefaults) -> List[Tuple[int, AntiHubScheme, float]]:
    """(theta, scheme, m) candidates of one k, in enumeration order."""
    thetas = THETA_GRID if rule.searches_anti_hub_cutoff else (defaults.anti_hub_cutoff,)
    if rule.searches_scheme:
        schemes = tuple(AntiHubScheme)
    elif defaults.estimation_scheme is None:
        schemes = (rule.default_scheme,)
    else:
        schemes = (defaults.estimation_scheme,)
    exponents = M_GRID if rule.searches_distance_exponent else (defaults.distance_weight_exponent,)
    return [(theta, scheme, m) for theta in thetas for scheme in schemes for m in exponents]


def evaluate_k(snapshot: KSnapshot, rule: VoteRule, defaults: SearchDefaults,
               rng: np.random.Generator) -> List[Dict[str, Any]]:
    """
    Leave-one-out accuracy of every candidate at the snapshot's k.

    Points are processed one after another; for each point the vote
    contributions are computed once per (theta, scheme) and the weights
    once per m.
    """
    k = snapshot.k
    n_points = len(snapshot.labels)
    grid = candidate_grid(rule, defaults)
    correct = np.zeros(len(grid), dtype=np.int64)
    base_model = snapshot.base_model(defaults.laplace_estimator)

    contribution_keys = list(dict.fromkeys((theta, scheme) for theta, scheme, _ in grid))
    exponents = list(dict.fromkeys(m for _, _, m in grid))

    for point in range(n_points):
        if rule.uses_occurrence:
            patch = LeaveOneOutPatch.for_point(snapshot, point)
            model = base_model.with_counts(patch.apply(snapshot.counts))
        else:
            model = base_model
        neighbors = snapshot.neighbors[point, :k]
        distances = snapshot.distances[point, :k]

        contributions = {}
        for theta, scheme in contribution_keys:
            estimator = make_estimator(scheme, model.class_to_class_priors,
                                       model.labels, model.local_tables)
            contributions[(theta, scheme)] = rule.contributions(
                model, neighbors, estimator, theta)
        if rule.distance_weighted:
            weights = {m: distance_weights(distances, m) for m in exponents}
        else:
            weights = {m: uniform_weights(k) for m in exponents}

        true_label = snapshot.labels[point]
        for index, (theta, scheme, m) in enumerate(grid):
            votes = normalize_votes(
                rule.combine(weights[m], contributions[(theta, scheme)], model.class_priors),
                model.class_priors)
            if coin_flip_argmax(votes, rng) == true_label:
                correct[index] += 1

    return [{"k": k, "anti_hub_cutoff": theta, "estimation_scheme": scheme.name,
             "distance_weight_exponent": m, "accuracy": correct[index] / n_points}
            for index, (theta, scheme, m) in enumerate(grid)]


def _spawn_generators(random_state: RandomState, n: int) -> List[np.random.Generator]:
    if isinstance(random_state, np.random.Generator):
        return random_state.spawn(n)
    if isinstance(random_state, np.random.SeedSequence):
        seed_sequence = random_state
    else:
        seed_sequence = np.random.SeedSequence(random_state)
    return [np.random.default_rng(child) for child in seed_sequence.spawn(n)]


def _resolve_workers(n_jobs: int) -> int:
    if n_jobs < 0:
        return max(1, (os.cpu_count() or 1) + 1 + n_jobs)
    return n_jobs


def find_best_configuration(graph: NeighborGraph, rule: VoteRule,
                            k_min: int = 1, k_max: int = 20,
                            num_classes: Optional[int] = None,
                            defaults: Optional[SearchDefaults] = None,
                            random_state: RandomState = None,
                            n_jobs: int = 1) -> SearchResult:
    """
    Leave-one-out search of the best hyperparameters of a variant.

    Args:
        graph: kNN graph of the training set (read-only during the search).
        rule: Vote rule of the classifier variant.
        k_min, k_max: Inclusive range of neighborhood sizes.
        num_classes: Number of classes (defaults to max label + 1).
        defaults: Values of the hyperparameters the variant does not search.
        random_state: Seed, SeedSequence or Generator for tie-breaking.
        n_jobs: Worker processes; 1 runs in-process, -1 uses every CPU.

    Returns:
        SearchResult with the first candidate of maximal accuracy in
        (k, theta, scheme, m) enumeration order.
    """
    defaults = defaults or SearchDefaults()
    n_points = graph.n_points
    if n_points == 0:
        raise UninitializedModelError("Cannot search hyperparameters on an empty training set")
    if k_min <= 0 or k_min > k_max:
        raise InvalidParameterError(
            f"k range must satisfy 0 < k_min <= k_max, got ({k_min}, {k_max})",
            "k_range", (k_min, k_max))
    if k_max > n_points - 1:
        raise OutOfRangeError(
            f"k_max={k_max} exceeds the {n_points - 1} neighbors available per point",
            k_max, n_points - 1)
    if n_jobs == 0:
        raise InvalidParameterError("n_jobs must not be 0", "n_jobs", n_jobs)
    if num_classes is None:
        num_classes = int(graph.labels.max()) + 1

    snapshots = build_snapshots(graph, num_classes, k_min, k_max,
                                defaults.laplace_estimator,
                                local_for_all=rule.needs_local_tables_for_all
                                or rule.searches_scheme)
    k_values = list(range(k_min, k_max + 1))
    generators = _spawn_generators(random_state, len(k_values))
    workers = _resolve_workers(n_jobs)
    logger.info("[Search] %s: k in [%d, %d], %d candidates per k, %d worker(s)",
                rule.name, k_min, k_max, len(candidate_grid(rule, defaults)), workers)

    results_by_k: Dict[int, List[Dict[str, Any]]] = {}
    if workers == 1:
        for k, rng in zip(k_values, generators):
            results_by_k[k] = evaluate_k(snapshots[k], rule, defaults, rng)
    else:
        with ProcessPoolExecutor(max_workers=workers) as executor:
            future_to_k = {
                executor.submit(evaluate_k, snapshots[k], rule, defaults, rng): k
                for k, rng in zip(k_values, generators)
            }
            for future in as_completed(future_to_k):
                # Worker failures propagate to the caller.
                results_by_k[future_to_k[future]] = future.result()

    scores = [row for k in k_values for row in results_by_k[k]]
    best = max(range(len(scores)), key=lambda i: (scores[i]["accuracy"], -i))
    best_row = scores[best]
    choice = HyperparameterChoice(
        k=int(best_row["k"]),
        anti_hub_cutoff=int(best_row["anti_hub_cutoff"]),
        estimation_scheme=AntiHubScheme[best_row["estimation_scheme"]],
        distance_weight_exponent=float(best_row["distance_weight_exponent"]))
    logger.info("[Search] %s: best %s with leave-one-out accuracy %.4f",
                rule.name, choice.to_dict(), best_row["accuracy"])
    return SearchResult(choice, float(best_row["accuracy"]), scores)
