"""Tests of linear parameter recovery, GMM objectives, and weighting matrices."""

import numpy as np
import pytest

from blpcore import (
    ContractionOptions, EstimationOptions, ProblemOptions, WeightingMatrix, compute_gmm_objective,
    compute_linear_parameters, compute_logit_delta, compute_updated_weighting_matrix, exceptions, options
)
from blpcore.primitives import ProductData
from .conftest import SimulatedData


def test_ols(small_logit_products: ProductData) -> None:
    """Test that with instruments equal to the linear characteristics, linear parameters are estimated with ordinary
    least squares and the exactly identified objective is zero.
    """
    products = small_logit_products
    delta = compute_logit_delta(products.shares, products.partition)
    beta, xi = compute_linear_parameters(delta, products.X1)
    expected = np.linalg.lstsq(products.X1, delta, rcond=None)[0]
    np.testing.assert_allclose(beta, expected, rtol=0, atol=1e-12)
    np.testing.assert_allclose(xi, delta - products.X1 @ expected, rtol=0, atol=1e-12)
    objective = compute_gmm_objective(xi, products.ZD)
    assert 0 <= objective < 1e-20


def test_2sls(simulated_data: SimulatedData) -> None:
    """Test that linear parameters match a textbook two-stage least squares computation and that the objective is
    the quadratic form in the moments under any positive definite weighting matrix.
    """
    products = simulated_data.products
    state = np.random.RandomState(0)
    delta = products.X1 @ simulated_data.beta + state.normal(scale=0.1, size=(products.N, 1))
    beta, xi = compute_linear_parameters(delta, products.X1, products.ZD)

    # compare with the closed-form estimator that uses explicit inverses
    Z = products.ZD
    X = products.X1
    W = np.linalg.inv(Z.T @ Z)
    expected = np.linalg.inv(X.T @ Z @ W @ Z.T @ X) @ (X.T @ Z @ W @ Z.T @ delta)
    np.testing.assert_allclose(beta, expected, rtol=0, atol=1e-10)
    np.testing.assert_allclose(xi, delta - X @ expected, rtol=0, atol=1e-10)

    # compare objectives under default and provided weighting matrices
    g = Z.T @ xi
    np.testing.assert_allclose(compute_gmm_objective(xi, Z), (g.T @ W @ g).item(), rtol=1e-10, atol=0)
    provided = np.diag([1.0, 2.0, 3.0, 4.0])
    expected_objective = (g.T @ provided @ g).item()
    np.testing.assert_allclose(compute_gmm_objective(xi, Z, provided), expected_objective, rtol=1e-12, atol=0)
    weighting = WeightingMatrix('provided', provided)
    assert compute_gmm_objective(xi, Z, weighting) == compute_gmm_objective(xi, Z, provided)
    assert compute_gmm_objective(xi, Z) >= 0


def test_singular_moments() -> None:
    """Test that collinear instruments cannot be used to recover linear parameters."""
    X1 = np.column_stack([np.ones(4), np.arange(4)])
    ZD = np.column_stack([X1, 2 * X1[:, 1]])
    with pytest.raises(exceptions.SingularMomentError) as info:
        compute_linear_parameters(np.arange(4), X1, ZD)
    assert "ZD'ZD" in str(info.value)
    assert "Condition number" in str(info.value)


@pytest.mark.parametrize('W_type', [pytest.param('robust', id="robust"), pytest.param('unadjusted', id="unadjusted")])
@pytest.mark.parametrize('center_moments', [pytest.param(True, id="centered"), pytest.param(False, id="uncentered")])
def test_updated_weighting_matrix(simulated_data: SimulatedData, W_type: str, center_moments: bool) -> None:
    """Test that updated weighting matrices are symmetric, positive definite, and the inverse of the covariance of
    moments.
    """
    products = simulated_data.products
    xi = np.random.RandomState(1).normal(size=(products.N, 1))
    W = compute_updated_weighting_matrix(xi, products.ZD, W_type, center_moments)
    np.testing.assert_allclose(W, W.T, rtol=0, atol=0)
    assert (np.linalg.eigvalsh(W) > 0).all()

    # compare with an explicit computation of the covariance of moments
    Z = products.ZD
    if W_type == 'unadjusted':
        S = xi.var() * Z.T @ Z
    else:
        g = xi * Z
        if center_moments:
            g = g - g.mean(axis=0)
        S = g.T @ g
    np.testing.assert_allclose(W @ S, np.eye(Z.shape[1]), rtol=0, atol=1e-8)


def test_weighting_validation() -> None:
    """Test that provided weighting matrices are validated when they are configured and when they are used."""
    with pytest.raises(exceptions.WeightingNotPositiveDefiniteError):
        WeightingMatrix('provided', [[1, 2], [2, 1]])
    with pytest.raises(exceptions.WeightingNotPositiveDefiniteError):
        WeightingMatrix('provided', [[1, 0], [1, 1]])
    with pytest.raises(exceptions.WeightingNotPositiveDefiniteError):
        WeightingMatrix('provided', [[1, np.nan], [np.nan, 1]])
    with pytest.raises(exceptions.ShapeMismatchError):
        WeightingMatrix('provided', np.ones((2, 3)))
    with pytest.raises(exceptions.MissingComponentError):
        WeightingMatrix('provided')
    with pytest.raises(ValueError):
        WeightingMatrix('inverse_ztz', np.eye(2))
    with pytest.raises(ValueError):
        WeightingMatrix('identity')
    with pytest.raises(exceptions.ShapeMismatchError):
        compute_gmm_objective(np.ones(3), np.eye(3), np.eye(2))


def test_weighting_values() -> None:
    """Test that weighting configurations are immutable values."""
    weighting = WeightingMatrix('provided', np.eye(2))
    assert weighting == WeightingMatrix('provided', np.eye(2))
    assert weighting != WeightingMatrix('provided', 2 * np.eye(2))
    assert weighting != WeightingMatrix()
    assert not weighting.matrix.flags.writeable
    assert str(weighting) and str(WeightingMatrix())


def test_symmetry_tolerance() -> None:
    """Test that tiny asymmetries are tolerated according to the configured tolerances."""
    matrix = np.array([[2.0, 1.0], [1.0 + 1e-12, 2.0]])
    assert WeightingMatrix('provided', matrix).matrix.shape == (2, 2)
    old_atol, old_rtol = options.psd_atol, options.psd_rtol
    options.psd_atol = options.psd_rtol = 0
    try:
        with pytest.raises(exceptions.WeightingNotPositiveDefiniteError):
            WeightingMatrix('provided', matrix)
    finally:
        options.psd_atol, options.psd_rtol = old_atol, old_rtol


def test_estimation_options() -> None:
    """Test that estimation configurations are validated and can be copied with changes."""
    estimation_options = EstimationOptions()
    assert ProblemOptions is EstimationOptions
    assert estimation_options.contraction == ContractionOptions()
    assert estimation_options.weighting == WeightingMatrix()
    assert (estimation_options.method, estimation_options.error_behavior) == ('1s', 'report')
    replaced = estimation_options.replace(method='2s', contraction=ContractionOptions(damping=0.5))
    assert (replaced.method, replaced.contraction.damping) == ('2s', 0.5)
    assert estimation_options.method == '1s'
    assert str(replaced)
    with pytest.raises(TypeError):
        estimation_options.replace(processes=2)
    with pytest.raises(ValueError):
        EstimationOptions(method='3s')
    with pytest.raises(ValueError):
        EstimationOptions(error_behavior='ignore')
    with pytest.raises(ValueError):
        EstimationOptions(W_type='clustered')
    with pytest.raises(TypeError):
        EstimationOptions(contraction={'tolerance': 1e-14})
