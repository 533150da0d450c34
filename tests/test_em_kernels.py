import numpy as np
import torch
import pytest

from torch_gmm._covariance import estimate_gaussian_parameters
from torch_gmm._em import expectation_step, make_params, maximization_step
from torch_gmm._log_prob import estimate_log_gaussian_prob
from torch_gmm._precision import compute_precision_cholesky, compute_precisions
from torch_gmm._types import CovarianceType
from torch_gmm.exceptions import IllConditionedCovarianceError

COVARIANCE_TYPES = ["full", "tied", "diag", "spherical"]


class RandomData:
    """Generate random GMM data for testing with compact covariance storage."""
    def __init__(self, rng, n_samples=200, n_components=2, n_features=2, covariance_type="full"):
        self.n_samples = int(n_samples)
        self.n_components = int(n_components)
        self.n_features = int(n_features)
        self.covariance_type = covariance_type

        # weights on simplex, bounded away from zero
        w = 0.5 + rng.rand(self.n_components)
        self.weights = w / w.sum()

        # means spread out
        self.means = rng.rand(self.n_components, self.n_features) * 50.0

        self.cov = self._make_covariance(rng)  # compact form
        self.X = self._generate_samples(rng)

    def _make_covariance(self, rng):
        K, D = self.n_components, self.n_features

        # variance range ~ [0.25, 2.25)
        def rand_var(shape):
            return (0.5 + rng.rand(*shape)) ** 2

        def rand_spd():
            A = rng.randn(D, D)
            C = A @ A.T
            C /= np.trace(C) / D
            return C + 0.1 * np.eye(D)

        if self.covariance_type == "diag":
            return rand_var((K, D))
        if self.covariance_type == "spherical":
            return rand_var((K,))
        if self.covariance_type == "tied":
            return rand_spd()
        return np.stack([rand_spd() for _ in range(K)], axis=0)

    def _generate_samples(self, rng):
        K, D = self.n_components, self.n_features
        labels = rng.choice(K, size=self.n_samples, p=self.weights)
        z = rng.randn(self.n_samples, D)

        if self.covariance_type == "diag":
            return self.means[labels] + z * np.sqrt(self.cov[labels])
        if self.covariance_type == "spherical":
            return self.means[labels] + z * np.sqrt(self.cov[labels])[:, None]
        if self.covariance_type == "tied":
            return self.means[labels] + z @ np.linalg.cholesky(self.cov).T
        L = np.linalg.cholesky(self.cov)  # (K,D,D)
        return self.means[labels] + np.einsum("nde,ne->nd", L[labels], z)

    def tensors(self):
        return (
            torch.from_numpy(self.X),
            torch.from_numpy(self.means),
            torch.from_numpy(self.cov),
            torch.from_numpy(self.weights),
        )

    def params(self):
        _, means, cov, weights = self.tensors()
        return make_params(weights, means, cov, CovarianceType(self.covariance_type))


@pytest.mark.parametrize("covariance_type", COVARIANCE_TYPES)
def test_monotonic_likelihood_all_cov_types(covariance_type):
    """EM does not decrease the mean log-likelihood between iterations."""
    rng = np.random.RandomState(7)
    data = RandomData(rng, n_samples=200, n_components=2, n_features=2, covariance_type=covariance_type)
    X = torch.from_numpy(data.X)

    # Start away from the truth so there is something to climb.
    p = data.params()
    p = make_params(p.weights.flip(0), p.means + 3.0, p.covariances, p.covariance_type)

    lower_bounds = []
    for _ in range(15):
        lower, log_resp = expectation_step(X, p)
        lower_bounds.append(lower.item())
        p = maximization_step(X, log_resp, p.covariance_type, reg_covar=0.0)

    for i in range(1, len(lower_bounds)):
        assert lower_bounds[i] >= lower_bounds[i - 1] - 1e-9, \
            f"[{covariance_type}] decreased at iter {i}: {lower_bounds[i-1]} -> {lower_bounds[i]}"


@pytest.mark.parametrize("covariance_type", COVARIANCE_TYPES)
def test_responsibilities_sum_to_one(covariance_type):
    rng = np.random.RandomState(11)
    data = RandomData(rng, n_samples=50, n_components=3, n_features=2, covariance_type=covariance_type)
    X = torch.from_numpy(data.X)

    _, log_resp = expectation_step(X, data.params())
    resp = log_resp.exp()
    assert torch.allclose(resp.sum(dim=1), torch.ones(50, dtype=resp.dtype), atol=1e-10)
    assert (resp >= 0).all() and (resp <= 1).all()


@pytest.mark.parametrize("covariance_type", COVARIANCE_TYPES)
def test_weights_sum_to_one_after_m_step(covariance_type):
    rng = np.random.RandomState(3)
    data = RandomData(rng, n_samples=120, n_components=3, n_features=3, covariance_type=covariance_type)
    X = torch.from_numpy(data.X)

    p = data.params()
    for _ in range(3):
        _, log_resp = expectation_step(X, p)
        p = maximization_step(X, log_resp, p.covariance_type)
        assert abs(p.weights.sum().item() - 1.0) < 1e-12


@pytest.mark.parametrize("covariance_type", COVARIANCE_TYPES)
def test_precision_computation(covariance_type):
    """Precision (inverse covariance) is recovered from precisions_cholesky."""
    if covariance_type == "diag":
        cov = torch.tensor([[2.0, 4.0],
                            [1.0, 3.0],
                            [0.5, 2.5]], dtype=torch.float64)
        expected_prec = 1.0 / cov
    elif covariance_type == "spherical":
        cov = torch.tensor([2.0, 4.0, 0.5], dtype=torch.float64)
        expected_prec = torch.tensor([0.5, 0.25, 2.0], dtype=torch.float64)
    elif covariance_type == "tied":
        cov = torch.tensor([[2.0, 0.5],
                            [0.5, 3.0]], dtype=torch.float64)
        # Manual inverse: 1/(2*3 - 0.5*0.5) * [[3, -0.5], [-0.5, 2]]
        det = 2.0 * 3.0 - 0.5 * 0.5
        expected_prec = torch.tensor([[3.0 / det, -0.5 / det],
                                      [-0.5 / det, 2.0 / det]], dtype=torch.float64)
    else:
        cov = torch.tensor([[[2.0, 0.5],
                             [0.5, 3.0]],
                            [[4.0, 0.0],
                             [0.0, 1.0]],
                            [[1.5, -0.3],
                             [-0.3, 2.0]]], dtype=torch.float64)
        expected_prec = torch.linalg.inv(cov)

    prec_chol = compute_precision_cholesky(cov, covariance_type)
    computed_prec = compute_precisions(prec_chol, covariance_type)

    assert torch.allclose(computed_prec, expected_prec, atol=1e-10), \
        f"[{covariance_type}] Precision mismatch:\nComputed:\n{computed_prec}\nExpected:\n{expected_prec}"


def test_precision_cholesky_is_transposed_inverse_factor():
    cov = torch.tensor([[2.0, 0.3, 0.1],
                        [0.3, 1.0, 0.2],
                        [0.1, 0.2, 0.5]], dtype=torch.float64)

    P = compute_precision_cholesky(cov, "tied")

    assert torch.allclose(P, torch.triu(P)), "precision cholesky should be upper triangular"
    L = torch.linalg.cholesky(cov)
    assert torch.allclose(P, torch.linalg.inv(L).T, atol=1e-12)
    # Sigma @ (P P^T) == I
    assert torch.allclose(cov @ P @ P.T, torch.eye(3, dtype=torch.float64), atol=1e-10)


@pytest.mark.parametrize("covariance_type", ["full", "tied"])
def test_non_symmetric_covariance_is_rejected(covariance_type):
    cov = torch.tensor([[2.0, 0.5],
                        [0.4, 3.0]], dtype=torch.float64)
    if covariance_type == "full":
        cov = torch.stack([torch.eye(2, dtype=torch.float64), cov])
    with pytest.raises(IllConditionedCovarianceError, match="reg_covar"):
        compute_precision_cholesky(cov, covariance_type)


@pytest.mark.parametrize("covariance_type", ["full", "tied"])
def test_indefinite_covariance_is_rejected(covariance_type):
    cov = torch.tensor([[1.0, 2.0],
                        [2.0, 1.0]], dtype=torch.float64)  # eigenvalues 3, -1
    if covariance_type == "full":
        cov = cov.unsqueeze(0)
    with pytest.raises(IllConditionedCovarianceError):
        compute_precision_cholesky(cov, covariance_type)


def test_singular_covariance_is_rejected():
    cov = torch.zeros(2, 2, dtype=torch.float64)
    with pytest.raises(IllConditionedCovarianceError):
        compute_precision_cholesky(cov, "tied")


def test_nan_covariance_is_rejected():
    cov = torch.tensor([[[1.0, float("nan")],
                         [float("nan"), 1.0]]], dtype=torch.float64)
    with pytest.raises(IllConditionedCovarianceError):
        compute_precision_cholesky(cov, "full")


@pytest.mark.parametrize("cov, covariance_type", [
    (torch.tensor([[1.0, 0.0], [2.0, 3.0]], dtype=torch.float64), "diag"),
    (torch.tensor([1.0, -1e-3], dtype=torch.float64), "spherical"),
])
def test_non_positive_variance_is_rejected(cov, covariance_type):
    with pytest.raises(IllConditionedCovarianceError):
        compute_precision_cholesky(cov, covariance_type)


@pytest.mark.parametrize("covariance_type", COVARIANCE_TYPES)
def test_log_prob_single_gaussian_matches_closed_form(covariance_type):
    """At the mean of a component the density is -0.5 * (D log 2pi + logdet Sigma)."""
    D = 3
    means = torch.tensor([[1.0, -2.0, 0.5]], dtype=torch.float64)
    if covariance_type == "diag":
        cov = torch.tensor([[0.5, 2.0, 1.5]], dtype=torch.float64)
        logdet = torch.log(cov).sum()
    elif covariance_type == "spherical":
        cov = torch.tensor([2.0], dtype=torch.float64)
        logdet = D * torch.log(cov[0])
    else:
        full = torch.tensor([[2.0, 0.3, 0.1],
                             [0.3, 1.0, 0.2],
                             [0.1, 0.2, 0.5]], dtype=torch.float64)
        logdet = torch.logdet(full)
        cov = full if covariance_type == "tied" else full.unsqueeze(0)

    prec_chol = compute_precision_cholesky(cov, covariance_type)
    log_prob = estimate_log_gaussian_prob(means, means, prec_chol, covariance_type)

    expected = -0.5 * (D * np.log(2 * np.pi) + logdet)
    assert log_prob.shape == (1, 1)
    assert torch.allclose(log_prob[0, 0], expected, atol=1e-12)


def test_full_covariances_pass_symmetry_check():
    rng = np.random.RandomState(0)
    X = torch.from_numpy(rng.randn(300, 6) * 1e3)
    resp = torch.from_numpy(rng.dirichlet(np.ones(4), size=300))

    _, _, cov = estimate_gaussian_parameters(X, resp, 0.0, "full")

    assert cov.shape == (4, 6, 6)
    cov_t = cov.transpose(1, 2)
    assert (torch.abs(cov - cov_t) <= 1e-10 * torch.abs(cov_t)).all()


def test_spherical_is_feature_mean_of_diag():
    rng = np.random.RandomState(1)
    X = torch.from_numpy(rng.randn(80, 4))
    resp = torch.from_numpy(rng.dirichlet(np.ones(3), size=80))

    nk_d, means_d, diag = estimate_gaussian_parameters(X, resp, 1e-6, "diag")
    nk_s, means_s, spherical = estimate_gaussian_parameters(X, resp, 1e-6, "spherical")

    assert torch.allclose(nk_d, nk_s) and torch.allclose(means_d, means_s)
    assert torch.allclose(spherical, diag.mean(dim=1))


def test_empty_component_stays_finite():
    X = torch.randn(20, 2, dtype=torch.float64)
    resp = torch.zeros(20, 2, dtype=torch.float64)
    resp[:, 0] = 1.0

    nk, means, cov = estimate_gaussian_parameters(X, resp, 1e-6, "diag")

    assert nk[1] > 0
    assert torch.isfinite(means).all()
    assert torch.isfinite(cov).all()


def test_single_component():
    """K=1 (single Gaussian, no mixture)."""
    rng = np.random.RandomState(5)
    data = RandomData(rng, n_samples=100, n_components=1, n_features=3, covariance_type="diag")
    X = torch.from_numpy(data.X)

    _, log_resp = expectation_step(X, data.params())
    resp = log_resp.exp()
    assert resp.shape == (100, 1)
    assert torch.allclose(resp, torch.ones_like(resp))


def test_high_dimensional():
    """D >> K (many features, few components)."""
    rng = np.random.RandomState(9)
    data = RandomData(rng, n_samples=100, n_components=2, n_features=20, covariance_type="diag")
    X = torch.from_numpy(data.X)

    p = data.params()
    for _ in range(5):
        _, log_resp = expectation_step(X, p)
        p = maximization_step(X, log_resp, p.covariance_type)

        assert torch.isfinite(p.means).all()
        assert torch.isfinite(p.covariances).all()
        assert (p.covariances > 0).all()


def test_nearly_empty_cluster():
    """One cluster gets very few samples assigned."""
    gen = torch.Generator().manual_seed(42)
    X1 = torch.randn(95, 2, generator=gen, dtype=torch.float64)
    X2 = torch.randn(5, 2, generator=gen, dtype=torch.float64) + 20.0  # Far away, few samples
    X = torch.cat([X1, X2], dim=0)

    means = torch.tensor([[0.0, 0.0], [20.0, 20.0]], dtype=torch.float64)
    cov = torch.ones(2, 2, dtype=torch.float64)
    weights = torch.tensor([0.5, 0.5], dtype=torch.float64)
    p = make_params(weights, means, cov, CovarianceType.DIAG)

    for _ in range(3):
        _, log_resp = expectation_step(X, p)
        p = maximization_step(X, log_resp, p.covariance_type)

        assert (p.covariances[1] > 1e-6).all(), "Small cluster variance collapsed"
        assert p.weights[1] > 0, "Small cluster weight became zero"


def test_identical_samples():
    """All samples at the same point (zero variance case)."""
    X = torch.full((50, 2), 5.0, dtype=torch.float64)
    means = torch.tensor([[4.0, 4.0], [6.0, 6.0]], dtype=torch.float64)
    cov = torch.ones(2, 2, dtype=torch.float64)
    weights = torch.tensor([0.5, 0.5], dtype=torch.float64)
    p = make_params(weights, means, cov, CovarianceType.DIAG)

    _, log_resp = expectation_step(X, p)
    p_new = maximization_step(X, log_resp, p.covariance_type, reg_covar=1e-3)

    assert torch.allclose(p_new.means[0], torch.tensor([5.0, 5.0], dtype=torch.float64), atol=1e-8)
    # Variance sits at the regularization floor
    assert torch.allclose(p_new.covariances, torch.full((2, 2), 1e-3, dtype=torch.float64), atol=1e-10)


@pytest.mark.parametrize("covariance_type", COVARIANCE_TYPES)
def test_extreme_separations(covariance_type):
    """Clusters very far apart do not overflow the E-step."""
    gen = torch.Generator().manual_seed(0)
    X1 = torch.randn(100, 2, generator=gen, dtype=torch.float64) * 0.1
    X2 = torch.randn(100, 2, generator=gen, dtype=torch.float64) * 0.1 + 1000.0
    X = torch.cat([X1, X2], dim=0)

    rng = np.random.RandomState(4)
    data = RandomData(rng, n_samples=10, n_components=2, n_features=2, covariance_type=covariance_type)

    _, log_resp = expectation_step(X, data.params())
    resp = log_resp.exp()
    assert torch.isfinite(resp).all(), "Responsibilities contain NaN/Inf"
    assert torch.allclose(resp.sum(dim=1), torch.ones(200, dtype=resp.dtype), atol=1e-10)
