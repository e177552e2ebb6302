"""Tests of share prediction and the BLP contraction."""

import numpy as np
import pytest

from blpcore import (
    ContractionOptions, MarketPartition, ProductData, SimulationDraws, compute_logit_delta, exceptions, parallel,
    predict_shares, solve_delta
)
from blpcore.markets.market import Market
from .conftest import SimulatedData


def test_logit_parity() -> None:
    """Test that the closed-form logit inversion matches known values."""
    shares = np.array([0.3, 0.2, 0.4])
    partition = MarketPartition(np.array([0, 0, 1], np.object_), shares)
    expected = [[-0.5108256237659907], [-0.916290731874155], [-0.4054651081081644]]
    np.testing.assert_allclose(compute_logit_delta(shares, partition), expected, rtol=0, atol=1e-14)


def test_logit_shares(small_logit_products: ProductData) -> None:
    """Test that without random coefficients, the contraction gives the closed-form solution with no iterations, and
    that predicted shares at this solution equal observed shares.
    """
    products = small_logit_products
    delta, summaries, errors = solve_delta(products.shares, None, products.X2, None, products.partition)
    np.testing.assert_allclose(delta, compute_logit_delta(products.shares, products.partition), rtol=0, atol=1e-14)
    assert not errors
    assert list(summaries) == ['a', 'b']
    assert all(s.converged and s.iterations == 0 for s in summaries.values())
    shares = predict_shares(delta, None, products.X2, None, products.partition)
    np.testing.assert_allclose(shares, products.shares, rtol=0, atol=1e-14)


def test_zero_sigma(small_rc_products: ProductData, small_draws: SimulationDraws) -> None:
    """Test that with random coefficients fixed at zero, the contraction converges to the closed-form solution."""
    products = small_rc_products
    delta, summaries, errors = solve_delta(products.shares, 0, products.X2, small_draws, products.partition)
    np.testing.assert_allclose(delta, compute_logit_delta(products.shares, products.partition), rtol=0, atol=1e-12)
    assert not errors
    assert all(s.converged for s in summaries.values())


def test_outside_shares(simulated_data: SimulatedData) -> None:
    """Test that predicted shares match a direct computation of logit probabilities and that, together with the
    outside share, they sum to one in each market.
    """
    products, draws, beta, sigma = simulated_data
    delta = products.X1 @ beta
    shares = predict_shares(delta, sigma, products.X2, draws, products.partition)
    for _, rows in products.partition:
        exp_utilities = np.exp(delta[rows] + products.X2[rows] @ sigma @ draws.nodes.T)
        denominator = 1 + exp_utilities.sum(axis=0, keepdims=True)
        np.testing.assert_allclose(shares[rows], (exp_utilities / denominator) @ draws.weights, rtol=0, atol=1e-14)
        outside_share = (1 / denominator) @ draws.weights
        np.testing.assert_allclose(shares[rows].sum() + outside_share, 1, rtol=0, atol=1e-14)


def test_overflow_safety() -> None:
    """Test that very large utilities do not overflow predicted shares."""
    market = Market('t', None, np.array([[1.0], [2.0]]), np.array([[300.0]]), np.array([[1.0], [-1.0]]), None)
    shares, errors = market.safely_compute_shares(np.array([[500.0], [400.0]]))
    assert not errors
    assert np.isfinite(shares).all()
    np.testing.assert_allclose(shares.sum(), 1, rtol=0, atol=1e-14)


def test_recovery(simulated_data: SimulatedData) -> None:
    """Test that the contraction inverts simulated shares into the mean utilities that generated them."""
    products, draws, beta, sigma = simulated_data
    delta, summaries, errors = solve_delta(products.shares, sigma, products.X2, draws, products.partition)
    assert not errors
    assert len(summaries) == products.T
    np.testing.assert_allclose(delta, products.X1 @ beta, rtol=0, atol=1e-10)


@pytest.mark.parametrize('method', [pytest.param('simple', id="simple"), pytest.param('squarem', id="SQUAREM")])
def test_idempotence(simulated_data: SimulatedData, method: str) -> None:
    """Test that solving again from a converged solution gives back the same solution after a single step."""
    products, draws, _, sigma = simulated_data
    options = ContractionOptions(method=method)
    delta, _, _ = solve_delta(products.shares, 0.5 * sigma, products.X2, draws, products.partition, options)
    resolved, summaries, errors = solve_delta(
        products.shares, 0.5 * sigma, products.X2, draws, products.partition, options, delta
    )
    assert not errors
    assert all(s.converged and s.evaluations == 1 for s in summaries.values())
    np.testing.assert_allclose(resolved, delta, rtol=0, atol=1e-12)


def test_damping(simulated_data: SimulatedData) -> None:
    """Test that damping slows convergence but leads to the same solution."""
    products, draws, _, sigma = simulated_data
    delta1, summaries1, _ = solve_delta(products.shares, sigma, products.X2, draws, products.partition)
    delta2, summaries2, _ = solve_delta(
        products.shares, sigma, products.X2, draws, products.partition, ContractionOptions(damping=0.5)
    )
    np.testing.assert_allclose(delta1, delta2, rtol=0, atol=1e-10)
    assert sum(s.iterations for s in summaries2.values()) > sum(s.iterations for s in summaries1.values())


def test_nonconvergence(small_rc_products: ProductData, small_draws: SimulationDraws) -> None:
    """Test that reaching the maximum number of iterations is flagged and reported without raising."""
    products = small_rc_products
    options = ContractionOptions(tolerance=1e-15, max_iterations=1)
    _, summaries, errors = solve_delta(products.shares, 1, products.X2, small_draws, products.partition, options)
    assert not any(s.converged for s in summaries.values())
    assert len(errors) == 2
    for t, error in zip(['a', 'b'], errors):
        assert isinstance(error, exceptions.DeltaConvergenceError)
        assert error.market_id == t
        assert error.iterations == 1
        assert error.gap > 0
        assert f"Market: {t}." in str(error)


def test_share_floor(small_rc_products: ProductData, small_draws: SimulationDraws) -> None:
    """Test that every application of the share floor is counted."""
    products = small_rc_products
    options = ContractionOptions(minimum_share=0.5, max_iterations=10)
    _, summaries, errors = solve_delta(products.shares, 0.1, products.X2, small_draws, products.partition, options)
    for t, summary in summaries.items():
        J = products.partition.sizes[list(summaries).index(t)]
        assert summary.clipped_shares == J * summary.evaluations > 0
    assert errors


def test_numerical_errors() -> None:
    """Test that floating point problems are collected into a typed error."""
    partition = MarketPartition(np.array(['t', 't'], np.object_), np.full(2, 0.1))
    draws = SimulationDraws([[1.0]])
    with pytest.raises(exceptions.SharesNumericalError):
        predict_shares(np.full(2, 1e308), [[1e308]], np.ones((2, 1)), draws, partition)


def test_share_underflow() -> None:
    """Test that extreme utilities that push a predicted share to exactly zero are reported instead of returned."""
    partition = MarketPartition(np.array(['t', 't'], np.object_), np.full(2, 0.1))
    draws = SimulationDraws([[1.0]])
    with pytest.raises(exceptions.SharesNumericalError, match="outside of"):
        predict_shares([-800, 0], [[0]], np.ones((2, 1)), draws, partition)
    shares = predict_shares([-30, 0], [[0]], np.ones((2, 1)), draws, partition)
    assert ((shares > 0) & (shares < 1)).all()


def test_parallel(simulated_data: SimulatedData) -> None:
    """Test that distributing markets among processes gives the same results in the same order."""
    products, draws, _, sigma = simulated_data
    serial = solve_delta(products.shares, 0.5 * sigma, products.X2, draws, products.partition)
    with parallel(2):
        distributed = solve_delta(products.shares, 0.5 * sigma, products.X2, draws, products.partition)
    np.testing.assert_allclose(distributed[0], serial[0], rtol=0, atol=1e-14)
    assert list(distributed[1]) == list(serial[1])
    assert [s.iterations for s in distributed[1].values()] == [s.iterations for s in serial[1].values()]


@pytest.mark.parametrize(['sigma', 'X2', 'draws', 'exception'], [
    pytest.param([[1, 0], [0, 1]], np.ones((3, 1)), 'draws', exceptions.InvalidParameterShapeError, id="sigma shape"),
    pytest.param([[1]], np.ones((2, 1)), 'draws', exceptions.ShapeMismatchError, id="X2 rows"),
    pytest.param([[1]], np.ones((3, 1)), None, exceptions.MissingComponentError, id="missing draws"),
    pytest.param(np.eye(2), np.ones((3, 2)), 'draws', exceptions.ShapeMismatchError, id="draw dimensions")
])
def test_invalid_inputs(
        small_rc_products: ProductData, small_draws: SimulationDraws, sigma: list, X2: np.ndarray, draws: str,
        exception: type) -> None:
    """Test that inconsistent inputs are rejected before any work is done."""
    products = small_rc_products
    with pytest.raises(exception):
        solve_delta(products.shares, sigma, X2, small_draws if draws else None, products.partition)
    with pytest.raises(exceptions.ShapeMismatchError):
        predict_shares(np.zeros(2), 0, products.X2, small_draws, products.partition)
