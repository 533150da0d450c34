"""Gaussian parameter estimation from (soft) responsibilities.

One routine serves both the initialisation and every M-step, so the two
always agree on what "the parameters implied by R" means.
"""

from __future__ import annotations

from typing import Tuple

import torch

from ._types import CovarianceType
from ._utils import NK_EPS, _add_reg_diag


def _estimate_gaussian_covariances_full(
    X: torch.Tensor,
    resp: torch.Tensor,
    nk: torch.Tensor,
    means: torch.Tensor,
    reg_covar: float,
) -> torch.Tensor:
    """Full covariance per component, shape (K, D, D).

    Sigma_k = diff^T (diff * r_k) / nk[k] + reg I, written as a Gram matrix of
    sqrt(r_k)-weighted differences so every Sigma_k is exactly symmetric.
    """
    diff = X.unsqueeze(0) - means.unsqueeze(1)             # (K,N,D)
    weighted = diff * resp.T.sqrt().unsqueeze(2)           # (K,N,D)
    cov = torch.bmm(weighted.transpose(1, 2), weighted)    # (K,D,D)
    cov = cov / nk.view(-1, 1, 1)
    return _add_reg_diag(cov, reg_covar)


def _estimate_gaussian_covariances_tied(
    X: torch.Tensor,
    resp: torch.Tensor,
    nk: torch.Tensor,
    means: torch.Tensor,
    reg_covar: float,
) -> torch.Tensor:
    """One shared covariance, shape (D, D)."""
    avg_X2 = X.T @ X
    scaled_means = means * nk.sqrt().unsqueeze(1)          # (K,D)
    avg_means2 = scaled_means.T @ scaled_means             # == (means^T * nk) @ means
    cov = (avg_X2 - avg_means2) / nk.sum()
    return _add_reg_diag(cov, reg_covar)


def _estimate_gaussian_covariances_diag(
    X: torch.Tensor,
    resp: torch.Tensor,
    nk: torch.Tensor,
    means: torch.Tensor,
    reg_covar: float,
) -> torch.Tensor:
    """Per-component, per-feature variances, shape (K, D)."""
    avg_X2 = (resp.T @ (X * X)) / nk.unsqueeze(1)
    avg_means2 = means ** 2
    avg_X_means = means * (resp.T @ X) / nk.unsqueeze(1)
    return avg_X2 - 2 * avg_X_means + avg_means2 + reg_covar


def _estimate_gaussian_covariances_spherical(
    X: torch.Tensor,
    resp: torch.Tensor,
    nk: torch.Tensor,
    means: torch.Tensor,
    reg_covar: float,
) -> torch.Tensor:
    """One variance per component, shape (K,)."""
    return _estimate_gaussian_covariances_diag(X, resp, nk, means, reg_covar).mean(dim=1)


_COVARIANCE_ESTIMATORS = {
    CovarianceType.FULL: _estimate_gaussian_covariances_full,
    CovarianceType.TIED: _estimate_gaussian_covariances_tied,
    CovarianceType.DIAG: _estimate_gaussian_covariances_diag,
    CovarianceType.SPHERICAL: _estimate_gaussian_covariances_spherical,
}


def estimate_gaussian_parameters(
    X: torch.Tensor,
    resp: torch.Tensor,
    reg_covar: float,
    covariance_type,
) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """Estimate (nk, means, covariances) from responsibilities.

    Args:
        X: data, shape (N, D).
        resp: responsibilities, shape (N, K). Rows need not sum to one.
        reg_covar: non-negative regularisation added to the variances.
        covariance_type: a `CovarianceType` or its string name.

    Returns:
        nk: effective counts (K,), not normalised; divide by N for weights.
        means: (K, D).
        covariances: shape depends on the covariance type.
    """
    covariance_type = CovarianceType.parse(covariance_type)
    N, D = X.shape
    assert resp.shape[0] == N

    nk = resp.sum(dim=0) + NK_EPS                          # (K,)
    means = (resp.T @ X) / nk.unsqueeze(1)                 # (K,D)
    covariances = _COVARIANCE_ESTIMATORS[covariance_type](X, resp, nk, means, reg_covar)
    return nk, means, covariances
