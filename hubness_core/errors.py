"""
This file defines the error taxonomy shared by every hubness-aware
classifier in the toolkit.

Structural problems (no training data, invalid neighborhood sizes,
out-of-range indices) are raised to the caller. Numeric degeneracies
(zero distances, collapsed probability mass) are recovered where they
happen; the only trace they leave is a NumericDegeneracyWarning.
"""

from typing import Any, Optional


class HubnessError(Exception):
    """Base class for all errors raised by the hubness toolkit."""


class UninitializedModelError(HubnessError):
    """
    Raised when classification is requested before training, or when
    training is requested with no data or zero classes.
    """


class InvalidParameterError(HubnessError, ValueError):
    """
    Raised for parameters that can never be valid, e.g. a non-positive k on
    a path that does not perform automatic search, or m <= 1 for the
    distance weighting exponent.
    """

    def __init__(self, message: str, parameter_name: Optional[str] = None,
                 provided_value: Any = None):
        super().__init__(message)
        self.parameter_name = parameter_name
        self.provided_value = provided_value


class OutOfRangeError(HubnessError, IndexError):
    """
    Raised when k_max exceeds the number of available neighbors, or when a
    point / neighbor index lies outside the training set.
    """

    def __init__(self, message: str, value: Any = None,
                 upper_bound: Optional[int] = None):
        super().__init__(message)
        self.value = value
        self.upper_bound = upper_bound


class NumericDegeneracyWarning(RuntimeWarning):
    """
    Issued when a vote collapses to zero total mass and the class-prior
    distribution is returned in its place.
    """
