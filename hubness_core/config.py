"""
This file holds the configuration surface of the hubness-aware
classifiers and the parameter grids explored by the automatic search.

A HubnessConfig is set once per model and never changes afterwards;
use replace() to derive a modified copy.
"""

import json
from dataclasses import asdict, dataclass, field, replace as dc_replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np

from hubness_core.antihub import AntiHubScheme
from hubness_core.distances import Metric
from hubness_core.errors import InvalidParameterError
from hubness_core.weighting import DEFAULT_CLASS_WEIGHT_EXPONENT

# --- Defaults ---
DEFAULT_K = 5
DEFAULT_LAPLACE_ESTIMATOR = 0.001
DEFAULT_DISTANCE_WEIGHT_EXPONENT = 2.0
DEFAULT_ANTI_HUB_CUTOFF = 0
DEFAULT_K_RANGE = (1, 20)
# Share of an anti-hub's own occurrence profile in the NHBNN fallback.
DEFAULT_OCCURRENCE_TRUST = 0.4

# --- Search grids ---
# Anti-hub cutoffs tried by the search: 0..9.
THETA_GRID: Tuple[int, ...] = tuple(range(10))
# Distance weighting exponents: 1.2..3.0 by 0.2. m = 1 divides by zero in
# the weighting exponent, so the grid starts one step above it.
M_GRID: Tuple[float, ...] = tuple(
    round(float(m), 1) for m in np.arange(1.2, 3.0 + 1e-9, 0.2)
)


@dataclass(frozen=True)
class HubnessConfig:
    """
    Immutable configuration of a hubness-aware kNN model.

    Args:
        k: Neighborhood size. k <= 0 means "search for the best k in k_range".
        laplace_estimator: Additive smoothing constant (lambda).
        distance_weight_exponent: Fuzzy exponent m of the distance weights
            w = d^(-2/(m-1)); must be > 1.
        anti_hub_cutoff: Points occurring at most this often are anti-hubs.
        estimation_scheme: Fallback vote source for anti-hub neighbors.
            None uses the default of the classifier variant.
        k_range: (k_min, k_max) searched when k <= 0.
        metric: scipy metric name or a callable f(x1, x2) -> float.
        seed: Seed of the generator used for tie-breaking during search.
        n_jobs: Worker processes for the search grid (1 = sequential).
        class_weight_exponent: Exponent e of the NW-kNN class weights
            (prior / min_prior) ** -e.
        occurrence_trust: Weight in [0, 1] that NHBNN keeps on an anti-hub's own
            occurrence likelihoods before mixing in the fallback scheme.
    """
    k: int = DEFAULT_K
    laplace_estimator: float = DEFAULT_LAPLACE_ESTIMATOR
    distance_weight_exponent: float = DEFAULT_DISTANCE_WEIGHT_EXPONENT
    anti_hub_cutoff: int = DEFAULT_ANTI_HUB_CUTOFF
    estimation_scheme: Optional[AntiHubScheme] = None
    k_range: Tuple[int, int] = field(default=DEFAULT_K_RANGE)
    metric: Metric = "euclidean"
    seed: Optional[int] = None
    n_jobs: int = 1
    class_weight_exponent: float = DEFAULT_CLASS_WEIGHT_EXPONENT
    occurrence_trust: float = DEFAULT_OCCURRENCE_TRUST

    def __post_init__(self):
        # Accept scheme names and list-shaped ranges (e.g. from JSON).
        if (self.estimation_scheme is not None
                and not isinstance(self.estimation_scheme, AntiHubScheme)):
            object.__setattr__(self, "estimation_scheme",
                               AntiHubScheme.from_name(self.estimation_scheme))
        object.__setattr__(self, "k_range", tuple(self.k_range))
        self.validate()

    @property
    def auto_search(self) -> bool:
        """True when the neighborhood size must be found by search."""
        return self.k <= 0

    def validate(self) -> None:
        if self.laplace_estimator < 0:
            raise InvalidParameterError(
                f"laplace_estimator must be non-negative, got {self.laplace_estimator}",
                "laplace_estimator", self.laplace_estimator)
        if self.distance_weight_exponent <= 1:
            raise InvalidParameterError(
                f"distance_weight_exponent must be > 1, got {self.distance_weight_exponent}",
                "distance_weight_exponent", self.distance_weight_exponent)
        if self.anti_hub_cutoff < 0:
            raise InvalidParameterError(
                f"anti_hub_cutoff must be non-negative, got {self.anti_hub_cutoff}",
                "anti_hub_cutoff", self.anti_hub_cutoff)
        if len(self.k_range) != 2:
            raise InvalidParameterError(
                f"k_range must be a (k_min, k_max) pair, got {self.k_range}",
                "k_range", self.k_range)
        k_min, k_max = self.k_range
        if k_min <= 0 or k_min > k_max:
            raise InvalidParameterError(
                f"k_range must satisfy 0 < k_min <= k_max, got {self.k_range}",
                "k_range", self.k_range)
        if self.n_jobs == 0:
            raise InvalidParameterError("n_jobs must not be 0", "n_jobs", self.n_jobs)
        if self.class_weight_exponent < 0:
            raise InvalidParameterError(
                f"class_weight_exponent must be non-negative, got {self.class_weight_exponent}",
                "class_weight_exponent", self.class_weight_exponent)
        if not 0.0 <= self.occurrence_trust <= 1.0:
            raise InvalidParameterError(
                f"occurrence_trust must lie in [0, 1], got {self.occurrence_trust}",
                "occurrence_trust", self.occurrence_trust)

    def replace(self, **changes: Any) -> "HubnessConfig":
        """Returns a validated copy with the given fields changed."""
        return dc_replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.estimation_scheme is not None:
            data["estimation_scheme"] = self.estimation_scheme.name
        data["k_range"] = list(self.k_range)
        if callable(self.metric):
            data["metric"] = getattr(self.metric, "__name__", repr(self.metric))
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HubnessConfig":
        known = {name for name in cls.__dataclass_fields__}
        unknown = set(data) - known
        if unknown:
            raise InvalidParameterError(
                f"Unknown configuration keys: {sorted(unknown)}",
                "config", sorted(unknown))
        return cls(**data)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "HubnessConfig":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))
