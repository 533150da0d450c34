"""Free-parameter counts and information criteria."""

from __future__ import annotations

import math

from ._types import CovarianceType
from .exceptions import InvalidArgumentError


def n_parameters(n_features: int, n_components: int, covariance_type) -> int:
    """Number of free parameters of a mixture (weights, means, covariances)."""
    try:
        covariance_type = CovarianceType.parse(covariance_type)
    except InvalidArgumentError:
        raise InvalidArgumentError(
            f"Cannot count parameters for covariance_type={covariance_type!r}"
        ) from None

    D, K = int(n_features), int(n_components)
    if covariance_type == CovarianceType.FULL:
        cov_params = K * D * (D + 1) // 2
    elif covariance_type == CovarianceType.TIED:
        cov_params = D * (D + 1) // 2
    elif covariance_type == CovarianceType.DIAG:
        cov_params = K * D
    else:
        cov_params = K
    # means: K*D, weights: K-1
    return int(cov_params + D * K + (K - 1))


def bic(mean_log_likelihood: float, n_samples: int, n_params: int) -> float:
    """Bayesian information criterion; lower is better."""
    return -2.0 * float(mean_log_likelihood) * n_samples + n_params * math.log(n_samples)


def aic(mean_log_likelihood: float, n_samples: int, n_params: int) -> float:
    """Akaike information criterion; lower is better."""
    return -2.0 * float(mean_log_likelihood) * n_samples + 2.0 * n_params
