"""EM steps and the iteration loop."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

import torch

from ._covariance import estimate_gaussian_parameters
from ._log_prob import estimate_log_gaussian_prob
from ._precision import compute_precision_cholesky
from ._types import CovarianceType, FitStatus, GMMParams
from ._utils import _safe_log

logger = logging.getLogger(__name__)


@torch.no_grad()
def make_params(
    weights: torch.Tensor,
    means: torch.Tensor,
    covariances: torch.Tensor,
    covariance_type: CovarianceType,
) -> GMMParams:
    prec_chol = compute_precision_cholesky(covariances, covariance_type)
    return GMMParams(
        weights=weights,
        means=means,
        covariances=covariances,
        precisions_cholesky=prec_chol,
        covariance_type=covariance_type,
    )


@torch.no_grad()
def estimate_weighted_log_prob(X: torch.Tensor, params: GMMParams) -> torch.Tensor:
    log_prob = estimate_log_gaussian_prob(
        X, params.means, params.precisions_cholesky, params.covariance_type
    )  # (N,K)
    return log_prob + _safe_log(params.weights).unsqueeze(0)


@torch.no_grad()
def expectation_step(X: torch.Tensor, params: GMMParams) -> Tuple[torch.Tensor, torch.Tensor]:
    """E-step.

    Returns:
        lower_bound: mean over samples of log sum_k w_k N(x | k), a 0-d tensor.
        log_resp: log responsibilities (N, K).
    """
    weighted_log_prob = estimate_weighted_log_prob(X, params)
    log_prob_norm = torch.logsumexp(weighted_log_prob, dim=1)      # (N,)
    log_resp = weighted_log_prob - log_prob_norm.unsqueeze(1)      # (N,K)
    return log_prob_norm.mean(), log_resp


@torch.no_grad()
def maximization_step(
    X: torch.Tensor,
    log_resp: torch.Tensor,
    covariance_type: CovarianceType,
    reg_covar: float = 1e-6,
) -> GMMParams:
    """M-step producing a fresh parameter bundle from log responsibilities."""
    N = X.shape[0]
    nk, means, covariances = estimate_gaussian_parameters(
        X, log_resp.exp(), reg_covar, covariance_type
    )
    return make_params(nk / N, means, covariances, covariance_type)


@dataclass
class FitState:
    n_iter: int = 0
    prev_lower_bound: float = float("-inf")
    lower_bound: float = float("-inf")
    status: FitStatus = FitStatus.RUNNING
    history: List[float] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.status == FitStatus.CONVERGED


@torch.no_grad()
def run_em(
    X: torch.Tensor,
    params: GMMParams,
    max_iter: int,
    tol: float,
    reg_covar: float,
    verbose: bool = False,
) -> Tuple[GMMParams, FitState]:
    """Alternate E- and M-steps until the lower bound settles or max_iter is spent."""
    log = logger.info if verbose else logger.debug
    state = FitState()

    for it in range(1, max_iter + 1):
        lower, log_resp = expectation_step(X, params)
        params = maximization_step(X, log_resp, params.covariance_type, reg_covar=reg_covar)

        state.n_iter = it
        state.prev_lower_bound = state.lower_bound
        state.lower_bound = float(lower.item())
        state.history.append(state.lower_bound)

        change = state.lower_bound - state.prev_lower_bound
        log("Iteration %d: lower bound %.6f (change %.3e)", it, state.lower_bound, change)
        if abs(change) < tol:
            state.status = FitStatus.CONVERGED
            break
    else:
        state.status = FitStatus.EXHAUSTED

    log("EM %s after %d iterations, lower bound %.6f", state.status.value, state.n_iter, state.lower_bound)
    return params, state
