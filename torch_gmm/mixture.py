"""Public entry points: the `GaussianMixture` estimator and `fit_gmm`.

`fit_gmm(X, ...)` is the one-call form: it fits, then hands back
responsibilities, hard labels, the free-parameter count and BIC in a
`GMMResult`. `GaussianMixture` keeps the fitted parameters around for
scoring, prediction and sampling.

A covariance that stops being symmetric positive-definite (or a variance that
reaches zero) ends the fit with IllConditionedCovarianceError; nothing is
retried, clamped or left to turn into NaNs. With `verbose=True` every EM
iteration is reported through the `torch_gmm` logger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import torch
from sklearn.utils import check_random_state

from . import _model_selection
from ._em import FitState, estimate_weighted_log_prob, expectation_step, run_em
from ._init import initialize_params
from ._precision import compute_precisions
from ._types import CovarianceType, FitStatus, GMMParams, InitMethod
from ._utils import as_data_tensor, verbose_logging
from .exceptions import InvalidArgumentError, NotFittedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GMMResult:
    """Outcome of `fit_gmm`."""

    probabilities: torch.Tensor   # (N,K)
    labels: torch.Tensor          # (N,)
    n_parameters: int
    bic: float
    log_likelihood: float         # mean per-sample log-likelihood
    n_iter: int
    status: FitStatus
    params: GMMParams

    @property
    def converged(self) -> bool:
        return self.status == FitStatus.CONVERGED


class GaussianMixture:
    """Sklearn-shaped GaussianMixture in PyTorch."""

    def __init__(
        self,
        n_components: int = 3,
        covariance_type="full",
        tol: float = 1e-6,
        reg_covar: float = 1e-6,
        max_iter: int = 100,
        n_init: int = 1,
        init_params="kmeans",
        random_state=None,
        verbose: bool = False,
        device=None,
        dtype: Optional[torch.dtype] = torch.float64,
        kmeans_n_init: int = 10,
        kmeans_max_iter: int = 10,
        kmeans_tol: float = 1e-4,
    ) -> None:
        self.covariance_type = CovarianceType.parse(covariance_type)
        self.init_params = InitMethod.parse(init_params)
        if n_components <= 0:
            raise InvalidArgumentError("n_components must be positive")
        if reg_covar < 0:
            raise InvalidArgumentError("reg_covar must be non-negative")
        if tol < 0:
            raise InvalidArgumentError("tol must be non-negative")
        if max_iter <= 0:
            raise InvalidArgumentError("max_iter must be positive")
        if n_init <= 0:
            raise InvalidArgumentError("n_init must be positive")

        self.n_components = n_components
        self.tol = tol
        self.reg_covar = reg_covar
        self.max_iter = max_iter
        self.n_init = n_init
        self.random_state = random_state
        self.verbose = verbose
        self.device = device
        self.dtype = dtype
        self.kmeans_n_init = kmeans_n_init
        self.kmeans_max_iter = kmeans_max_iter
        self.kmeans_tol = kmeans_tol

        # sklearn-like fitted attributes
        self.weights_: Optional[torch.Tensor] = None
        self.means_: Optional[torch.Tensor] = None
        self.covariances_: Optional[torch.Tensor] = None
        self.precisions_cholesky_: Optional[torch.Tensor] = None
        self.precisions_: Optional[torch.Tensor] = None

        self.converged_: bool = False
        self.status_: Optional[FitStatus] = None
        self.n_iter_: int = 0
        self.lower_bound_: float = float("-inf")
        self.lower_bounds_: List[float] = []

        self._params: Optional[GMMParams] = None

    def _to_device_dtype(self, X) -> torch.Tensor:
        return as_data_tensor(X, device=self.device, dtype=self.dtype)

    def _check_is_fitted(self) -> GMMParams:
        if self._params is None:
            raise NotFittedError("Model is not fitted yet.")
        return self._params

    def n_parameters(self, n_features: int) -> int:
        """Parameter count like sklearn for AIC/BIC."""
        return _model_selection.n_parameters(n_features, self.n_components, self.covariance_type)

    # -----------------------
    # Fitting
    # -----------------------

    def _fit(self, X: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        with verbose_logging(self.verbose):
            return self._fit_em(X)

    @torch.no_grad()
    def _fit_em(self, X: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        N, D = X.shape
        if N < self.n_components:
            raise InvalidArgumentError(
                f"Expected n_samples >= n_components but got n_components={self.n_components}, n_samples={N}"
            )
        random_state = check_random_state(self.random_state)

        best: Optional[Tuple[GMMParams, FitState]] = None
        for init in range(self.n_init):
            params = initialize_params(
                X,
                self.n_components,
                self.covariance_type,
                self.init_params,
                reg_covar=self.reg_covar,
                random_state=random_state,
                kmeans_n_init=self.kmeans_n_init,
                kmeans_max_iter=self.kmeans_max_iter,
                kmeans_tol=self.kmeans_tol,
            )
            params, state = run_em(
                X, params, self.max_iter, self.tol, self.reg_covar, verbose=self.verbose
            )
            if self.verbose:
                logger.info("Initialization %d: %s, lower bound %.6f", init + 1, state.status.value, state.lower_bound)
            if best is None or state.lower_bound > best[1].lower_bound:
                best = (params, state)

        assert best is not None
        params, state = best
        if not state.converged:
            logger.warning(
                "Best of %d initializations did not converge after %d iterations; "
                "try a larger max_iter or tol.",
                self.n_init,
                self.max_iter,
            )

        self._params = params
        self.weights_ = params.weights
        self.means_ = params.means
        self.covariances_ = params.covariances
        self.precisions_cholesky_ = params.precisions_cholesky
        self.precisions_ = compute_precisions(params.precisions_cholesky, params.covariance_type)

        self.lower_bound_ = state.lower_bound
        self.lower_bounds_ = state.history
        self.n_iter_ = state.n_iter
        self.status_ = state.status
        self.converged_ = state.converged

        # Final E-step so labels are consistent with the returned parameters.
        return expectation_step(X, params)

    def fit(self, X) -> "GaussianMixture":
        self._fit(self._to_device_dtype(X))
        return self

    def fit_predict(self, X) -> torch.Tensor:
        _, log_resp = self._fit(self._to_device_dtype(X))
        return torch.argmax(log_resp, dim=1)

    # -----------------------
    # Public API
    # -----------------------

    @torch.no_grad()
    def score_samples(self, X) -> torch.Tensor:
        """Per-sample log-likelihood (N,)."""
        params = self._check_is_fitted()
        X = self._to_device_dtype(X)
        return torch.logsumexp(estimate_weighted_log_prob(X, params), dim=1)

    @torch.no_grad()
    def score(self, X) -> float:
        """Mean log-likelihood."""
        return float(self.score_samples(X).mean().item())

    @torch.no_grad()
    def predict_proba(self, X) -> torch.Tensor:
        """Posterior responsibilities (N,K)."""
        params = self._check_is_fitted()
        X = self._to_device_dtype(X)
        _, log_resp = expectation_step(X, params)
        return log_resp.exp()

    @torch.no_grad()
    def predict(self, X) -> torch.Tensor:
        return torch.argmax(self.predict_proba(X), dim=1)

    def bic(self, X) -> float:
        """Bayesian information criterion."""
        X = self._to_device_dtype(X)
        N, D = X.shape
        return _model_selection.bic(self.score(X), N, self.n_parameters(D))

    def aic(self, X) -> float:
        """Akaike information criterion."""
        X = self._to_device_dtype(X)
        N, D = X.shape
        return _model_selection.aic(self.score(X), N, self.n_parameters(D))

    @torch.no_grad()
    def sample(self, n_samples: int, seed: Optional[int] = None) -> Tuple[torch.Tensor, torch.Tensor]:
        """Sample from the mixture.

        Returns:
          X: (n_samples, D)
          labels: (n_samples,)
        """
        p = self._check_is_fitted()
        if n_samples <= 0:
            raise InvalidArgumentError("n_samples must be positive")

        device, dtype = p.means.device, p.means.dtype
        generator = torch.Generator(device=device)
        if seed is not None:
            generator.manual_seed(seed)
        else:
            generator.seed()

        labels = torch.multinomial(p.weights, n_samples, replacement=True, generator=generator)
        noise = torch.randn((n_samples, p.n_features), device=device, dtype=dtype, generator=generator)
        selected_means = p.means[labels]  # (n_samples, D)

        ct = p.covariance_type
        if ct == CovarianceType.DIAG:
            X_out = selected_means + noise * torch.sqrt(p.covariances[labels])
        elif ct == CovarianceType.SPHERICAL:
            X_out = selected_means + noise * torch.sqrt(p.covariances[labels]).unsqueeze(1)
        elif ct == CovarianceType.TIED:
            L = torch.linalg.cholesky(p.covariances)
            X_out = selected_means + noise @ L.T
        else:
            L = torch.linalg.cholesky(p.covariances)[labels]  # (n_samples,D,D)
            X_out = selected_means + torch.einsum("nde,ne->nd", L, noise)

        return X_out, labels


def fit_gmm(
    X,
    n_components: int = 3,
    covariance_type="full",
    init_params="kmeans",
    max_iter: int = 100,
    reg_covar: float = 1e-6,
    tol: float = 1e-6,
    verbose: bool = False,
    random_state=None,
    n_init: int = 1,
    device=None,
    dtype: Optional[torch.dtype] = torch.float64,
) -> GMMResult:
    """Fit a GMM with EM and return responsibilities, labels and BIC.

    Invalid `covariance_type` / `init_params` raise InvalidArgumentError before
    X is looked at.
    """
    gmm = GaussianMixture(
        n_components=n_components,
        covariance_type=covariance_type,
        tol=tol,
        reg_covar=reg_covar,
        max_iter=max_iter,
        n_init=n_init,
        init_params=init_params,
        random_state=random_state,
        verbose=verbose,
        device=device,
        dtype=dtype,
    )
    X = gmm._to_device_dtype(X)
    N, D = X.shape

    log_likelihood, log_resp = gmm._fit(X)
    log_likelihood = float(log_likelihood.item())
    n_params = gmm.n_parameters(D)

    return GMMResult(
        probabilities=log_resp.exp(),
        labels=torch.argmax(log_resp, dim=1),
        n_parameters=n_params,
        bic=_model_selection.bic(log_likelihood, N, n_params),
        log_likelihood=log_likelihood,
        n_iter=gmm.n_iter_,
        status=gmm.status_,
        params=gmm._params,
    )
