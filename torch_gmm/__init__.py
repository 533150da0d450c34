"""Gaussian mixture models fitted with EM in PyTorch."""

from ._types import CovarianceType, FitStatus, GMMParams, InitMethod
from ._model_selection import aic, bic, n_parameters
from .exceptions import (
    GMMError,
    IllConditionedCovarianceError,
    InvalidArgumentError,
    NotFittedError,
)
from .mixture import GaussianMixture, GMMResult, fit_gmm

__all__ = [
    "CovarianceType",
    "FitStatus",
    "GMMParams",
    "InitMethod",
    "GaussianMixture",
    "GMMResult",
    "fit_gmm",
    "n_parameters",
    "bic",
    "aic",
    "GMMError",
    "IllConditionedCovarianceError",
    "InvalidArgumentError",
    "NotFittedError",
]

__version__ = "0.1.0"
