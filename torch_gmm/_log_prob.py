"""Log Gaussian probability via precisions_cholesky (sklearn-style E-step)."""

from __future__ import annotations

import math

import torch

from ._types import CovarianceType


def _compute_log_det_cholesky(
    precisions_chol: torch.Tensor,
    covariance_type: CovarianceType,
    n_features: int,
) -> torch.Tensor:
    """0.5 * logdet(precision) for each component: (K,), or a scalar for tied."""
    if covariance_type == CovarianceType.FULL:
        return torch.sum(torch.log(torch.diagonal(precisions_chol, dim1=1, dim2=2)), dim=1)
    if covariance_type == CovarianceType.TIED:
        return torch.sum(torch.log(torch.diagonal(precisions_chol)))
    if covariance_type == CovarianceType.DIAG:
        return torch.sum(torch.log(precisions_chol), dim=1)
    return n_features * torch.log(precisions_chol)


def _mahalanobis_full(X, means, precisions_chol):
    # y[n,k,:] = X[n] @ P[k] - means[k] @ P[k]
    y = torch.einsum("nd,kde->nke", X, precisions_chol)
    y = y - torch.einsum("kd,kde->ke", means, precisions_chol).unsqueeze(0)
    return torch.sum(y * y, dim=2)                          # (N,K)


def _mahalanobis_tied(X, means, precisions_chol):
    y = (X @ precisions_chol).unsqueeze(1) - (means @ precisions_chol).unsqueeze(0)  # (N,K,D)
    return torch.sum(y * y, dim=2)


def _mahalanobis_diag(X, means, precisions_chol):
    precisions = precisions_chol ** 2                       # (K,D)
    return (
        torch.sum(means ** 2 * precisions, dim=1).unsqueeze(0)
        - 2.0 * (X @ (means * precisions).T)
        + (X ** 2) @ precisions.T
    )


def _mahalanobis_spherical(X, means, precisions_chol):
    precisions = precisions_chol ** 2                       # (K,)
    return (
        torch.sum(means ** 2, dim=1).unsqueeze(0) * precisions
        - 2.0 * (X @ means.T) * precisions
        + torch.sum(X ** 2, dim=1, keepdim=True) * precisions.unsqueeze(0)
    )


_MAHALANOBIS = {
    CovarianceType.FULL: _mahalanobis_full,
    CovarianceType.TIED: _mahalanobis_tied,
    CovarianceType.DIAG: _mahalanobis_diag,
    CovarianceType.SPHERICAL: _mahalanobis_spherical,
}


def estimate_log_gaussian_prob(
    X: torch.Tensor,
    means: torch.Tensor,
    precisions_chol: torch.Tensor,
    covariance_type,
) -> torch.Tensor:
    """log N(X | means_k, cov_k) for every sample and component, shape (N, K)."""
    covariance_type = CovarianceType.parse(covariance_type)
    N, D = X.shape
    K, D2 = means.shape
    assert D == D2

    log_det = _compute_log_det_cholesky(precisions_chol, covariance_type, D)
    mahal = _MAHALANOBIS[covariance_type](X, means, precisions_chol)

    # log_det is (K,) or a 0-d tensor (tied); both broadcast over (N,K).
    return -0.5 * (D * math.log(2 * math.pi) + mahal) + log_det
