"""Small tensor helpers shared by the EM kernels."""

from __future__ import annotations

import contextlib
import logging
from typing import Iterator, Optional

import numpy as np
import torch

from .exceptions import InvalidArgumentError

# nk smoothing, like sklearn: 10 * machine epsilon of float64 (2.22e-15).
NK_EPS = float(10.0 * np.finfo(np.float64).eps)


def _safe_log(x: torch.Tensor) -> torch.Tensor:
    tiny = torch.finfo(x.dtype).tiny
    return torch.log(x.clamp_min(tiny))


def _add_reg_diag(cov: torch.Tensor, reg_covar: float) -> torch.Tensor:
    """Add reg_covar to diagonal (works for (D,D) or (K,D,D))."""
    if reg_covar == 0.0:
        return cov
    D = cov.shape[-1]
    eye = torch.eye(D, device=cov.device, dtype=cov.dtype)
    if cov.dim() == 2:
        return cov + reg_covar * eye
    if cov.dim() == 3:
        return cov + reg_covar * eye.unsqueeze(0)
    raise InvalidArgumentError("cov must be (D,D) or (K,D,D)")


def as_data_tensor(
    X,
    device=None,
    dtype: Optional[torch.dtype] = torch.float64,
) -> torch.Tensor:
    """Convert array-like X to a 2-D tensor on the requested device/dtype."""
    if isinstance(X, torch.Tensor):
        X = X.detach()
    else:
        X = torch.as_tensor(np.asarray(X))
    if dtype is not None:
        X = X.to(dtype)
    elif not torch.is_floating_point(X):
        X = X.to(torch.get_default_dtype())
    if device is not None:
        X = X.to(device)
    if X.dim() != 2:
        raise InvalidArgumentError(f"X must be 2-D (n_samples, n_features), got shape {tuple(X.shape)}")
    if X.shape[0] == 0 or X.shape[1] == 0:
        raise InvalidArgumentError(f"X must be non-empty, got shape {tuple(X.shape)}")
    return X


@contextlib.contextmanager
def verbose_logging(verbose: bool, name: str = "torch_gmm") -> Iterator[None]:
    """Make INFO records of the `name` logger visible for the duration of a fit.

    Adds a stderr handler only when no handler is configured anywhere up the
    logger chain, and lowers the level only when INFO would be filtered out.
    Both changes are undone on exit.
    """
    if not verbose:
        yield
        return

    pkg_logger = logging.getLogger(name)
    handler = None
    old_level = pkg_logger.level
    if not pkg_logger.hasHandlers():
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        pkg_logger.addHandler(handler)
    if not pkg_logger.isEnabledFor(logging.INFO):
        pkg_logger.setLevel(logging.INFO)
    try:
        yield
    finally:
        pkg_logger.setLevel(old_level)
        if handler is not None:
            pkg_logger.removeHandler(handler)
