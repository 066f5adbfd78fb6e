"""
This file implements the hubness-aware kNN classifiers.

HubnessKNNClassifier is the single engine: it builds the kNN graph of the
training set, optionally searches the best hyperparameters by
leave-one-out, trains the occurrence model and answers queries. Each
variant only picks its VoteRule:

    KNN         plain majority vote
    DWKNN       distance-weighted kNN
    NWKNN       neighbor-weighted kNN (class-imbalance weights)
    HwKNN       hubness-weighted kNN (bad-occurrence weights)
    FNN         fuzzy nearest neighbor
    HFNN        hubness-based fuzzy NN
    DWHFNN      distance-weighted h-FNN
    HIKNN       hubness-information kNN
    HIKNNNonDW  HIKNN without distance weighting
    NHBNN       naive hubness-Bayesian NN
"""

from typing import Any, Optional, Sequence, Type, Union

import numpy as np
from sklearn.preprocessing import LabelEncoder

from hubness_core.antihub import AntiHubScheme
from hubness_core.config import HubnessConfig
from hubness_core.errors import (InvalidParameterError, OutOfRangeError,
                                 UninitializedModelError)
from hubness_core.logger import get_logger
from hubness_core.neighbors import NeighborGraph, insertion_knn
from hubness_core.search import (HyperparameterChoice, SearchDefaults, SearchResult,
                                 find_best_configuration)
from hubness_core.trainer import OccurrenceModel, train_occurrence_model
from hubness_core.voting import (DWHFNNRule, DWKNNRule, FNNRule, HFNNRule,
                                 HIKNNNonDWRule, HIKNNRule, HwKNNRule, KNNRule,
                                 NHBNNRule, NWKNNRule, VoteEstimator, VoteRule,
                                 first_max_argmax)

logger = get_logger(__name__)


class HubnessKNNClassifier:
    """
    kNN classifier engine parametrized by a vote rule.

    Usage:
        clf = HIKNN(HubnessConfig(k=0))   # k <= 0 searches k in k_range
        clf.fit(X_train, y_train)
        y_pred = clf.predict(X_test)
    """

    rule_class: Type[VoteRule] = KNNRule

    def __init__(self, config: Optional[HubnessConfig] = None, **overrides: Any):
        config = config or HubnessConfig()
        self.config = config.replace(**overrides) if overrides else config
        self.rule = self._build_rule()

        self.label_encoder_: Optional[LabelEncoder] = None
        self.graph_: Optional[NeighborGraph] = None
        self.model_: Optional[OccurrenceModel] = None
        self.estimator_: Optional[VoteEstimator] = None
        self.choice_: Optional[HyperparameterChoice] = None
        self.search_result_: Optional[SearchResult] = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.config})"

    @property
    def name(self) -> str:
        return self.rule.name

    @property
    def classes_(self) -> np.ndarray:
        self._require_fitted()
        return self.label_encoder_.classes_

    @property
    def k(self) -> int:
        self._require_fitted()
        return self.choice_.k

    # -----------------------------------------------------------------
    #  Training
    # -----------------------------------------------------------------

    def fit(self, X: np.ndarray, y: Sequence[Any],
            distance_matrix: Optional[np.ndarray] = None) -> "HubnessKNNClassifier":
        """
        Trains the classifier.

        Args:
            X: Training features (N, d).
            y: Training labels of any hashable type.
            distance_matrix: Optional precomputed (N, N) distances.

        Returns:
            self
        """
        X = np.asarray(X, dtype=float)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        y = np.asarray(y)
        if len(X) == 0:
            raise UninitializedModelError("Cannot fit on an empty training set")
        if len(X) != len(y):
            raise InvalidParameterError(
                f"X has {len(X)} rows but y has {len(y)} labels", "y", len(y))

        self.label_encoder_ = LabelEncoder()
        y_dense = self.label_encoder_.fit_transform(y)
        num_classes = len(self.label_encoder_.classes_)
        self.graph_ = NeighborGraph(X, y_dense, self.config.metric, distance_matrix)
        self.choice_ = self._choose_hyperparameters(num_classes)

        self.model_ = train_occurrence_model(
            self.graph_, self.choice_.k, self.config.laplace_estimator,
            self.choice_.anti_hub_cutoff, num_classes,
            local_for_all=self.rule.needs_local_tables_for_all)
        self.estimator_ = VoteEstimator(self.model_, self.rule,
                                        self.choice_.estimation_scheme,
                                        self.choice_.anti_hub_cutoff,
                                        self.choice_.distance_weight_exponent)
        logger.info("[%s] Trained on %d points with %s", self.name, len(X),
                    self.choice_.to_dict())
        return self

    def _choose_hyperparameters(self, num_classes: int) -> HyperparameterChoice:
        config = self.config
        if not config.auto_search:
            return HyperparameterChoice(config.k, config.anti_hub_cutoff,
                                        self._estimation_scheme(),
                                        config.distance_weight_exponent)

        k_min, k_max = config.k_range
        available = self.graph_.n_points - 1
        if k_max > available:
            logger.warning("[%s] k_range %s capped to %d neighbors available",
                           self.name, config.k_range, available)
            k_max = available
        if k_min > k_max:
            raise OutOfRangeError(
                f"k_min={k_min} exceeds the {available} neighbors available per point",
                k_min, available)

        defaults = SearchDefaults(config.laplace_estimator, config.anti_hub_cutoff,
                                  self._estimation_scheme(),
                                  config.distance_weight_exponent)
        self.search_result_ = find_best_configuration(
            self.graph_, self.rule, k_min, k_max, num_classes, defaults,
            random_state=config.seed, n_jobs=config.n_jobs)
        return self.search_result_.choice

    def _build_rule(self) -> VoteRule:
        return self.rule_class()

    def _estimation_scheme(self) -> AntiHubScheme:
        if self.config.estimation_scheme is None:
            return self.rule.default_scheme
        return self.config.estimation_scheme

    def copy_configuration(self) -> "HubnessKNNClassifier":
        """Untrained classifier of the same variant and configuration."""
        return type(self)(self.config)

    # -----------------------------------------------------------------
    #  Queries
    # -----------------------------------------------------------------

    def find_k_nearest(self, query: np.ndarray):
        """(indices, distances) of the query's k nearest training points."""
        self._require_fitted()
        return insertion_knn(self.graph_.distances_to(query), self.choice_.k)

    def classify_probabilistically(self, query: np.ndarray) -> np.ndarray:
        indices, distances = self.find_k_nearest(query)
        return self.estimator_.classify_probabilistically(indices, distances)

    def classify(self, query: np.ndarray) -> Any:
        """Label of the most probable class (first one on ties)."""
        probabilities = self.classify_probabilistically(query)
        return self.label_encoder_.classes_[first_max_argmax(probabilities)]

    def classify_with_neighbors(self, neighbor_indices: Sequence[int],
                                neighbor_distances: Sequence[float],
                                probabilistic: bool = False) -> Union[Any, np.ndarray]:
        """
        Classifies from a neighbor list the caller already holds, e.g. the
        training neighbors of a point found by an external kNN search.
        """
        self._require_fitted()
        probabilities = self.estimator_.classify_probabilistically(
            np.asarray(neighbor_indices, dtype=int),
            np.asarray(neighbor_distances, dtype=float))
        if probabilistic:
            return probabilities
        return self.label_encoder_.classes_[first_max_argmax(probabilities)]

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """(n_queries, C) class probabilities, columns ordered as classes_."""
        self._require_fitted()
        X = self._as_queries(X)
        return np.vstack([self.classify_probabilistically(query) for query in X])

    def predict(self, X: np.ndarray) -> np.ndarray:
        probabilities = self.predict_proba(X)
        return self.label_encoder_.classes_[probabilities.argmax(axis=1)]

    def score(self, X: np.ndarray, y: Sequence[Any]) -> float:
        """Classification accuracy on (X, y)."""
        return float(np.mean(self.predict(X) == np.asarray(y)))

    # -----------------------------------------------------------------
    #  Helpers
    # -----------------------------------------------------------------

    def _as_queries(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=float)
        n_features = self.graph_.X.shape[1]
        if X.ndim == 1:
            X = X.reshape(1, -1) if len(X) == n_features else X.reshape(-1, 1)
        if X.shape[1] != n_features:
            raise InvalidParameterError(
                f"Queries have {X.shape[1]} features, training data has {n_features}",
                "X", X.shape[1])
        return X

    def _require_fitted(self) -> None:
        if self.estimator_ is None:
            raise UninitializedModelError(
                f"{type(self).__name__} must be fitted before classifying")


class KNN(HubnessKNNClassifier):
    rule_class = KNNRule


class DWKNN(HubnessKNNClassifier):
    rule_class = DWKNNRule


class NWKNN(HubnessKNNClassifier):
    rule_class = NWKNNRule

    def _build_rule(self) -> VoteRule:
        return NWKNNRule(self.config.class_weight_exponent)


class HwKNN(HubnessKNNClassifier):
    rule_class = HwKNNRule


class FNN(HubnessKNNClassifier):
    rule_class = FNNRule


class HFNN(HubnessKNNClassifier):
    rule_class = HFNNRule


class DWHFNN(HubnessKNNClassifier):
    rule_class = DWHFNNRule


class HIKNN(HubnessKNNClassifier):
    rule_class = HIKNNRule


class HIKNNNonDW(HubnessKNNClassifier):
    rule_class = HIKNNNonDWRule


class NHBNN(HubnessKNNClassifier):
    rule_class = NHBNNRule

    def _build_rule(self) -> VoteRule:
        return NHBNNRule(self.config.occurrence_trust)


CLASSIFIERS = {
    cls.rule_class.name: cls
    for cls in (KNN, DWKNN, NWKNN, HwKNN, FNN, HFNN, DWHFNN, HIKNN, HIKNNNonDW,
                NHBNN)
}
