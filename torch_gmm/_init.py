"""Initial responsibilities and parameters."""

from __future__ import annotations

import logging

import numpy as np
import torch
from sklearn.cluster import KMeans
from sklearn.utils import check_random_state

from ._em import maximization_step
from ._types import CovarianceType, GMMParams, InitMethod
from ._utils import _safe_log

logger = logging.getLogger(__name__)


@torch.no_grad()
def initialize_log_resp(
    X: torch.Tensor,
    n_components: int,
    init_params="kmeans",
    random_state=None,
    kmeans_n_init: int = 10,
    kmeans_max_iter: int = 10,
    kmeans_tol: float = 1e-4,
) -> torch.Tensor:
    """Build the starting responsibility matrix, returned as log_resp (N,K)."""
    init_params = InitMethod.parse(init_params)
    random_state = check_random_state(random_state)
    N, _ = X.shape
    K = n_components

    if init_params == InitMethod.KMEANS:
        X_np = X.cpu().numpy()
        label = KMeans(
            n_clusters=K,
            n_init=kmeans_n_init,
            max_iter=kmeans_max_iter,
            tol=kmeans_tol,
            random_state=random_state,
        ).fit(X_np).labels_
        resp = np.zeros((N, K), dtype=np.float64)
        resp[np.arange(N), label] = 1
    else:
        resp = random_state.uniform(size=(N, K))
        resp /= resp.sum(axis=1)[:, np.newaxis]

    resp_torch = torch.from_numpy(resp).to(device=X.device, dtype=X.dtype)
    return _safe_log(resp_torch)


@torch.no_grad()
def initialize_from_log_resp(
    X: torch.Tensor,
    log_resp: torch.Tensor,
    covariance_type: CovarianceType,
    reg_covar: float,
) -> GMMParams:
    """Run one M-step on the initial responsibilities."""
    return maximization_step(X, log_resp, covariance_type, reg_covar=reg_covar)


@torch.no_grad()
def initialize_params(
    X: torch.Tensor,
    n_components: int,
    covariance_type,
    init_params="kmeans",
    reg_covar: float = 1e-6,
    random_state=None,
    **kmeans_kwargs,
) -> GMMParams:
    covariance_type = CovarianceType.parse(covariance_type)
    log_resp = initialize_log_resp(
        X, n_components, init_params, random_state=random_state, **kmeans_kwargs
    )
    params = initialize_from_log_resp(X, log_resp, covariance_type, reg_covar)
    logger.debug(
        "Initialised %d %s components with %s, weights=%s",
        n_components,
        covariance_type.value,
        InitMethod.parse(init_params).value,
        params.weights.cpu().numpy(),
    )
    return params
