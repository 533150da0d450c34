"""Precision-Cholesky helpers (sklearn-style).

For tied/full:
  cov = L L^T (L lower).  precision_chol = inv(L)^T (upper).
  precision = inv(cov) = inv(L)^T inv(L) = precision_chol @ precision_chol^T,
  so (x - mu)^T precision (x - mu) = ||(x - mu) @ precision_chol||^2.
"""

from __future__ import annotations

import torch

from ._types import CovarianceType
from .exceptions import IllConditionedCovarianceError

SYMMETRY_RTOL = 1e-10


def _check_spd(cov: torch.Tensor) -> None:
    """Raise unless every matrix in `cov` ((D,D) or (K,D,D)) is symmetric PSD."""
    cov_t = cov.transpose(-1, -2)
    # NaN/Inf entries fail this comparison as well.
    symmetric = torch.abs(cov - cov_t) <= SYMMETRY_RTOL * torch.abs(cov_t)
    if not bool(symmetric.all()):
        raise IllConditionedCovarianceError("covariance matrix is not symmetric")

    eigvals = torch.linalg.eigvalsh(cov)
    if bool((eigvals < 0).any()):
        raise IllConditionedCovarianceError(
            f"covariance matrix has a negative eigenvalue ({float(eigvals.min()):.3e})"
        )


def _inverse_cholesky_transposed(cov: torch.Tensor) -> torch.Tensor:
    L, info = torch.linalg.cholesky_ex(cov)
    if bool((info != 0).any()):
        raise IllConditionedCovarianceError("Cholesky factorisation failed")
    eye = torch.eye(cov.shape[-1], device=cov.device, dtype=cov.dtype).expand_as(cov)
    L_inv = torch.linalg.solve_triangular(L, eye, upper=False)
    return L_inv.transpose(-1, -2)


@torch.no_grad()
def compute_precision_cholesky(cov: torch.Tensor, covariance_type) -> torch.Tensor:
    """Compute precisions_cholesky from covariances.

    Shapes returned:
    - full:      (K, D, D) upper-triangular per component
    - tied:      (D, D) upper-triangular
    - diag:      (K, D) where entry is 1/sqrt(var)
    - spherical: (K,)   where entry is 1/sqrt(var)

    Raises:
        IllConditionedCovarianceError: a covariance is not symmetric
            positive-definite (full/tied) or not strictly positive (diag/spherical).
    """
    covariance_type = CovarianceType.parse(covariance_type)

    if covariance_type in (CovarianceType.FULL, CovarianceType.TIED):
        _check_spd(cov)
        return _inverse_cholesky_transposed(cov)

    # NaN fails "> 0" too.
    if not bool((cov > 0).all()):
        raise IllConditionedCovarianceError("non-positive variance")
    return 1.0 / torch.sqrt(cov)


@torch.no_grad()
def compute_precisions(prec_chol: torch.Tensor, covariance_type) -> torch.Tensor:
    """Compute precisions (inverse covariances) from precisions_cholesky."""
    covariance_type = CovarianceType.parse(covariance_type)

    if covariance_type in (CovarianceType.DIAG, CovarianceType.SPHERICAL):
        return prec_chol * prec_chol

    # precision = P P^T, batched for full
    return prec_chol @ prec_chol.transpose(-1, -2)
