"""
This file implements the voting side of the hubness-aware classifiers.

A VoteRule says what a single neighbor contributes to the class
accumulator (a one-hot label, a class-occurrence profile, an anti-hub
fallback, ...); the VoteEstimator weighs those contributions by distance
(or uniformly), lets the rule combine them (a weighted sum for all but the
naive Bayes rule, which multiplies likelihoods) and turns the result into
class probabilities.

Two arg-max policies are provided:
1. first_max_argmax: deterministic, the first class with the top vote.
2. coin_flip_argmax: uniform random choice among tied classes, used by
   the leave-one-out search so ties do not favor low class indices.
"""

import warnings
from typing import Dict, Optional, Type

import numpy as np

from hubness_core.antihub import AntiHubEstimator, AntiHubScheme, make_estimator
from hubness_core.config import DEFAULT_OCCURRENCE_TRUST
from hubness_core.errors import (InvalidParameterError, NumericDegeneracyWarning,
                                 OutOfRangeError)
from hubness_core.trainer import OccurrenceModel
from hubness_core.weighting import (DEFAULT_CLASS_WEIGHT_EXPONENT, distance_weights,
                                    nw_knn_class_weights, uniform_weights)


def first_max_argmax(votes: np.ndarray) -> int:
    return int(np.argmax(votes))


def coin_flip_argmax(votes: np.ndarray, rng: np.random.Generator) -> int:
    tied = np.flatnonzero(votes == votes.max())
    if len(tied) == 1:
        return int(tied[0])
    return int(rng.choice(tied))


def normalize_votes(votes: np.ndarray, class_priors: np.ndarray) -> np.ndarray:
    """
    Turns a vote accumulator into probabilities. A non-positive total
    falls back to the class priors with a NumericDegeneracyWarning.
    """
    total = votes.sum()
    if not total > 0:
        warnings.warn("Vote mass collapsed to zero, returning class priors",
                      NumericDegeneracyWarning, stacklevel=3)
        return np.array(class_priors, dtype=float)
    return votes / total


# -----------------------------------------------------------------
#  Vote rules
# -----------------------------------------------------------------

class VoteRule:
    """
    Per-neighbor contribution of one classifier variant.

    The class attributes tell the search which hyperparameters the
    variant exposes and which statistics it reads.
    """
    name = "kNN"
    distance_weighted = False
    # Votes read occurrence statistics, so leave-one-out must patch them.
    uses_occurrence = False
    # Every point needs a LOCALF row, not only the anti-hubs.
    needs_local_tables_for_all = False
    searches_anti_hub_cutoff = False
    searches_scheme = False
    searches_distance_exponent = False
    # Anti-hub fallback used when none is configured.
    default_scheme = AntiHubScheme.GLOBAL

    def contributions(self, model: OccurrenceModel, neighbors: np.ndarray,
                      estimator: AntiHubEstimator,
                      anti_hub_cutoff: int) -> np.ndarray:
        """(k, C) array: row i is what neighbor i votes before weighting."""
        votes = np.zeros((len(neighbors), model.num_classes))
        votes[np.arange(len(neighbors)), model.labels[neighbors]] = 1.0
        return votes

    def combine(self, weights: np.ndarray, contributions: np.ndarray,
                class_priors: np.ndarray) -> np.ndarray:
        """Folds the weighted contributions into one unnormalized class vote."""
        return weights @ contributions


class KNNRule(VoteRule):
    pass


class DWKNNRule(VoteRule):
    name = "dw-kNN"
    distance_weighted = True
    searches_distance_exponent = True


class NWKNNRule(VoteRule):
    """One-hot votes scaled by the NW-kNN class-imbalance weight."""
    name = "NW-kNN"
    distance_weighted = True

    def __init__(self, class_weight_exponent: float = DEFAULT_CLASS_WEIGHT_EXPONENT):
        self.class_weight_exponent = class_weight_exponent

    def contributions(self, model, neighbors, estimator, anti_hub_cutoff):
        votes = super().contributions(model, neighbors, estimator, anti_hub_cutoff)
        class_weights = nw_knn_class_weights(model.class_priors, self.class_weight_exponent)
        return votes * class_weights[model.labels[neighbors]][:, None]


class HwKNNRule(VoteRule):
    """One-hot votes scaled by exp(-standardized bad occurrence)."""
    name = "hw-kNN"
    uses_occurrence = True

    def contributions(self, model, neighbors, estimator, anti_hub_cutoff):
        votes = super().contributions(model, neighbors, estimator, anti_hub_cutoff)
        return votes * model.hw_weights[neighbors][:, None]


class FNNRule(VoteRule):
    name = "FNN"
    distance_weighted = True
    needs_local_tables_for_all = True

    def contributions(self, model, neighbors, estimator, anti_hub_cutoff):
        return model.local_tables[AntiHubScheme.LOCALF][neighbors]


class HFNNRule(VoteRule):
    """
    Class-occurrence profile of each neighbor; anti-hubs (occurrence at or
    below the cutoff) vote their fallback distribution instead.
    """
    name = "h-FNN"
    uses_occurrence = True
    searches_anti_hub_cutoff = True
    searches_scheme = True

    def contributions(self, model, neighbors, estimator, anti_hub_cutoff):
        votes = model.relation[:, neighbors].T.copy()
        for row in np.flatnonzero(model.is_anti_hub(neighbors, anti_hub_cutoff)):
            votes[row] = estimator.estimate(int(neighbors[row]))
        return votes


class DWHFNNRule(HFNNRule):
    name = "dwh-FNN"
    distance_weighted = True
    default_scheme = AntiHubScheme.LABEL


class HIKNNRule(VoteRule):
    """
    Informativeness-aware votes: each neighbor p votes
    (alpha(p) * own label + (1 - alpha(p)) * occurrence profile) * I(p).
    """
    name = "HIKNN"
    distance_weighted = True
    uses_occurrence = True
    searches_distance_exponent = True

    def contributions(self, model, neighbors, estimator, anti_hub_cutoff):
        alpha = model.label_information[neighbors]
        votes = (1.0 - alpha)[:, None] * model.raw_relation[:, neighbors].T
        votes[np.arange(len(neighbors)), model.labels[neighbors]] += alpha
        return votes * model.self_information[neighbors][:, None]


class HIKNNNonDWRule(HIKNNRule):
    name = "HIKNN-nonDW"
    distance_weighted = False
    searches_distance_exponent = False


class NHBNNRule(VoteRule):
    """
    Naive hubness-Bayesian rule. Each neighbor contributes its likelihood of
    occurring in the k-NN set of a point of each class, and the posterior is
    the class prior times the product of those likelihoods. An anti-hub
    mixes its normalized likelihoods with the fallback distribution.
    """
    name = "NHBNN"
    uses_occurrence = True
    searches_anti_hub_cutoff = True
    searches_scheme = True

    def __init__(self, occurrence_trust: float = DEFAULT_OCCURRENCE_TRUST):
        if not 0.0 <= occurrence_trust <= 1.0:
            raise InvalidParameterError(
                f"occurrence_trust must lie in [0, 1], got {occurrence_trust}",
                "occurrence_trust", occurrence_trust)
        self.occurrence_trust = occurrence_trust

    def contributions(self, model, neighbors, estimator, anti_hub_cutoff):
        likelihoods = model.conditional_occurrence[:, neighbors].T.copy()
        for row in np.flatnonzero(model.is_anti_hub(neighbors, anti_hub_cutoff)):
            fallback = estimator.estimate(int(neighbors[row]))
            if fallback.sum() > 0:
                fallback = fallback / fallback.sum()
            likelihoods[row] = (self.occurrence_trust * likelihoods[row] / likelihoods[row].sum()
                                + (1.0 - self.occurrence_trust) * fallback)
        return likelihoods

    def combine(self, weights, contributions, class_priors):
        # Summed in log space; a product of k likelihoods underflows quickly.
        with np.errstate(divide="ignore"):
            log_votes = np.log(class_priors) + np.log(contributions).sum(axis=0)
        top = log_votes.max()
        if not np.isfinite(top):
            return np.zeros_like(log_votes)
        return np.exp(log_votes - top)


VOTE_RULES: Dict[str, Type[VoteRule]] = {
    rule.name: rule for rule in (KNNRule, DWKNNRule, NWKNNRule, HwKNNRule, FNNRule,
                                 HFNNRule, DWHFNNRule, HIKNNRule, HIKNNNonDWRule,
                                 NHBNNRule)
}


# -----------------------------------------------------------------
#  Estimator
# -----------------------------------------------------------------

class VoteEstimator:
    """
    Class-probability estimator over a trained OccurrenceModel.

    Pure function of the trained tables: the same neighbor list always gets
    the same probabilities.
    """

    def __init__(self, model: OccurrenceModel, rule: VoteRule,
                 estimation_scheme: Optional[AntiHubScheme] = None,
                 anti_hub_cutoff: Optional[int] = None,
                 distance_weight_exponent: float = 2.0):
        self.model = model
        self.rule = rule
        self.estimation_scheme = (rule.default_scheme if estimation_scheme is None
                                  else AntiHubScheme.from_name(estimation_scheme))
        self.anti_hub_cutoff = (model.anti_hub_cutoff if anti_hub_cutoff is None
                                else anti_hub_cutoff)
        self.distance_weight_exponent = distance_weight_exponent
        self.estimator = make_estimator(self.estimation_scheme,
                                        model.class_to_class_priors,
                                        model.labels, model.local_tables)

    def neighbor_weights(self, neighbor_distances: np.ndarray) -> np.ndarray:
        if self.rule.distance_weighted:
            return distance_weights(neighbor_distances, self.distance_weight_exponent)
        return uniform_weights(len(neighbor_distances))

    def vote(self, neighbor_indices: np.ndarray, neighbor_distances: np.ndarray) -> np.ndarray:
        """Weighted, unnormalized class accumulator."""
        neighbor_indices = np.asarray(neighbor_indices, dtype=int)
        neighbor_distances = np.asarray(neighbor_distances, dtype=float)
        self._check_neighbors(neighbor_indices, neighbor_distances)
        contributions = self.rule.contributions(self.model, neighbor_indices,
                                                self.estimator, self.anti_hub_cutoff)
        weights = self.neighbor_weights(neighbor_distances)
        return self.rule.combine(weights, contributions, self.model.class_priors)

    def classify_probabilistically(self, neighbor_indices: np.ndarray,
                                   neighbor_distances: np.ndarray) -> np.ndarray:
        votes = self.vote(neighbor_indices, neighbor_distances)
        return normalize_votes(votes, self.model.class_priors)

    def classify(self, neighbor_indices: np.ndarray, neighbor_distances: np.ndarray,
                 rng: Optional[np.random.Generator] = None) -> int:
        """
        Arg-max class. Ties go to the first class unless a generator is
        given, in which case they are broken uniformly at random.
        """
        probabilities = self.classify_probabilistically(neighbor_indices, neighbor_distances)
        if rng is None:
            return first_max_argmax(probabilities)
        return coin_flip_argmax(probabilities, rng)

    def _check_neighbors(self, neighbor_indices: np.ndarray,
                         neighbor_distances: np.ndarray) -> None:
        if len(neighbor_indices) != len(neighbor_distances):
            raise InvalidParameterError(
                f"{len(neighbor_indices)} neighbor indices but "
                f"{len(neighbor_distances)} distances",
                "neighbor_distances", len(neighbor_distances))
        if len(neighbor_indices) == 0:
            raise InvalidParameterError("Empty neighbor list", "neighbor_indices", 0)
        n_points = self.model.n_points
        if neighbor_indices.min() < 0 or neighbor_indices.max() >= n_points:
            bad = neighbor_indices[(neighbor_indices < 0) | (neighbor_indices >= n_points)]
            raise OutOfRangeError(
                f"Neighbor index {int(bad[0])} outside the training set of {n_points}",
                int(bad[0]), n_points)
