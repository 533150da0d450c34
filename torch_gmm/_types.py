"""Tags that select the covariance structure and init mode, and the
immutable parameter bundle passed between E- and M-steps.

The shape of `GMMParams.covariances` follows the tag: FULL keeps one
matrix per component, TIED a single shared matrix, DIAG a row of variances
per component and SPHERICAL one variance per component.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Union

import torch

from .exceptions import InvalidArgumentError


class CovarianceType(str, enum.Enum):
    FULL = "full"
    TIED = "tied"
    DIAG = "diag"
    SPHERICAL = "spherical"

    @classmethod
    def parse(cls, value: Union[str, "CovarianceType"]) -> "CovarianceType":
        """Accept an enum member or its name in any letter case."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.lower())
            except ValueError:
                pass
        raise InvalidArgumentError(
            f"Unknown covariance_type={value!r}; expected one of "
            f"{[c.value for c in cls]}"
        )


class InitMethod(str, enum.Enum):
    KMEANS = "kmeans"
    RANDOM = "random"

    @classmethod
    def parse(cls, value: Union[str, "InitMethod"]) -> "InitMethod":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.lower())
            except ValueError:
                pass
        raise InvalidArgumentError(
            f"Unknown init_params={value!r}; expected one of {[m.value for m in cls]}"
        )


class FitStatus(str, enum.Enum):
    RUNNING = "running"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class GMMParams:
    """Mixture parameters produced by one M-step. Never updated in place."""

    weights: torch.Tensor
    means: torch.Tensor
    covariances: torch.Tensor
    precisions_cholesky: torch.Tensor
    covariance_type: CovarianceType

    @property
    def n_components(self) -> int:
        return self.means.shape[0]

    @property
    def n_features(self) -> int:
        return self.means.shape[1]
