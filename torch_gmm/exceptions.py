"""Errors raised while configuring or fitting a Gaussian mixture."""


class GMMError(Exception):
    """Base class for every error raised by torch_gmm."""


class InvalidArgumentError(GMMError, ValueError):
    """An argument value is not supported (checked before any computation)."""


class IllConditionedCovarianceError(GMMError, ValueError):
    """A covariance is not symmetric positive-definite and cannot be factorised."""

    def __init__(self, detail: str = "") -> None:
        msg = (
            "Fitting the mixture model failed because some components have "
            "ill-defined empirical covariance (for instance caused by singleton "
            "or collapsed samples). Try to decrease the number of components, "
            "or increase reg_covar."
        )
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class NotFittedError(GMMError, RuntimeError):
    """The estimator was used before `fit` was called."""
