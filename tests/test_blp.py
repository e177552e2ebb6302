"""Primary tests of BLP problems."""

from typing import List

import numpy as np
import pytest

from blpcore import (
    ContractionOptions, EstimationOptions, Optimization, Problem, ProblemResults, ProductData, SimulationDraws,
    WeightingMatrix, compute_logit_delta, exceptions, options, parallel
)
from .conftest import SimulatedData


def test_logit_scenario(small_logit_products: ProductData) -> None:
    """Test that with no random coefficients, estimation recovers the closed-form logit solution, ordinary least
    squares estimates of linear parameters, and a finite nonnegative objective.
    """
    problem = Problem(small_logit_products)
    results = problem.estimate()
    assert isinstance(results, ProblemResults)
    delta = compute_logit_delta(small_logit_products.shares, small_logit_products.partition)
    np.testing.assert_allclose(results.delta, delta, rtol=0, atol=1e-14)
    expected_beta = np.linalg.lstsq(small_logit_products.X1, delta, rcond=None)[0]
    np.testing.assert_allclose(results.beta, expected_beta, rtol=0, atol=1e-12)
    assert np.isfinite(results.gmm_value) and results.gmm_value >= 0
    assert results.objective == results.gmm_value
    np.testing.assert_allclose(results.predicted_shares, small_logit_products.shares, rtol=0, atol=1e-14)
    assert results.sigma.shape == (0, 0)
    assert results.fp_converged.all()
    assert not results.errors
    assert results.step == 1 and results.last_results is None
    assert results.objective_evaluations == 1
    assert str(results)


def test_zero_sigma_equals_logit(small_logit_products: ProductData, small_rc_products: ProductData) -> None:
    """Test that random coefficients fixed at zero give the same estimates as the logit model."""
    draws = SimulationDraws.standard_normal(num_draws=100, num_dims=1, seed=0)
    logit_results = Problem(small_logit_products).estimate()
    rc_results = Problem(small_rc_products, draws).estimate(sigma=0)
    np.testing.assert_allclose(rc_results.delta, logit_results.delta, rtol=0, atol=1e-12)
    np.testing.assert_allclose(rc_results.beta, logit_results.beta, rtol=0, atol=1e-12)
    np.testing.assert_allclose(rc_results.gmm_value, logit_results.gmm_value, rtol=0, atol=1e-12)


def test_true_parameters(simulated_data: SimulatedData) -> None:
    """Test that at the true parameters, the contraction recovers the true mean utilities, linear parameters are
    exactly recovered, and the objective is approximately zero.
    """
    products, draws, beta, sigma = simulated_data
    results = Problem(products, draws).estimate(sigma)
    np.testing.assert_allclose(results.delta, products.X1 @ beta, rtol=0, atol=1e-10)
    np.testing.assert_allclose(results.beta, beta, rtol=0, atol=1e-10)
    np.testing.assert_allclose(results.xi, 0, rtol=0, atol=1e-10)
    np.testing.assert_allclose(results.predicted_shares, products.shares, rtol=0, atol=1e-10)
    assert 0 <= results.gmm_value < 1e-12
    assert results.contraction.converged
    assert list(results.contraction_summaries) == list(products.partition.unique_market_ids)
    assert results.fp_iterations.shape == results.clipped_shares.shape == (products.T,)


def test_immutability(simulated_data: SimulatedData) -> None:
    """Test that estimation does not change the problem, that repeated calls give identical results, and that results
    own their arrays.
    """
    products, draws, _, sigma = simulated_data
    problem = Problem(products, draws)
    shares = products.shares.copy()
    results1 = problem.estimate(0.5 * sigma)
    results2 = problem.estimate(0.5 * sigma)
    np.testing.assert_array_equal(problem.products.shares, shares)
    np.testing.assert_array_equal(results1.delta, results2.delta)
    np.testing.assert_array_equal(results1.beta, results2.beta)
    assert results1.gmm_value == results2.gmm_value
    results1.delta[:] = 0
    assert not np.array_equal(results1.delta, results2.delta)
    assert problem.draws is draws
    assert str(problem)


def test_two_step(simulated_data: SimulatedData) -> None:
    """Test that two-step GMM updates the weighting matrix and reuses the first-step contraction."""
    products, draws, _, sigma = simulated_data
    problem = Problem(products, draws)
    results = problem.estimate(0.5 * sigma, EstimationOptions(method='2s'))
    first = results.last_results
    assert (results.step, first.step) == (2, 1)
    np.testing.assert_array_equal(results.delta, first.delta)
    np.testing.assert_array_equal(results.W, first.updated_W)
    np.testing.assert_allclose(results.W, results.W.T, rtol=0, atol=0)
    assert (np.linalg.eigvalsh(results.W) > 0).all()
    assert not np.allclose(results.W, first.W)
    assert results.cumulative_objective_evaluations == 2
    np.testing.assert_array_equal(results.cumulative_fp_iterations, first.fp_iterations)
    np.testing.assert_array_equal(results.fp_iterations, 0)
    for t in results.unique_market_ids:
        assert results.contraction_summaries[t] is not first.contraction_summaries[t]
        assert results.contraction_summaries[t].iterations == first.contraction_summaries[t].iterations
    first.contraction_summaries[results.unique_market_ids[0]].clipped_shares = -1
    assert results.contraction_summaries[results.unique_market_ids[0]].clipped_shares == 0

    # the second step is the same as a single step under the updated weighting matrix
    weighting = WeightingMatrix('provided', first.updated_W)
    single = problem.estimate(0.5 * sigma, EstimationOptions(weighting=weighting))
    np.testing.assert_allclose(single.beta, results.beta, rtol=0, atol=1e-10)
    np.testing.assert_allclose(single.gmm_value, results.gmm_value, rtol=1e-8, atol=0)


def test_nonconvergence_report(small_rc_products: ProductData, small_draws: SimulationDraws) -> None:
    """Test that by default, contraction failures are reported alongside results."""
    messages: List[str] = []
    old_output = options.verbose_output
    options.verbose_output = messages.append
    try:
        contraction = ContractionOptions(tolerance=1e-15, max_iterations=1)
        results = Problem(small_rc_products, small_draws).estimate(1, EstimationOptions(contraction=contraction))
    finally:
        options.verbose_output = old_output
    assert not results.contraction.converged
    assert not results.fp_converged.any()
    convergence_errors = [e for e in results.errors if isinstance(e, exceptions.DeltaConvergenceError)]
    assert [e.market_id for e in convergence_errors] == ['a', 'b']
    assert any("fixed point computation" in m for m in messages)


def test_nonconvergence_raise(small_rc_products: ProductData, small_draws: SimulationDraws) -> None:
    """Test that contraction failures can instead be raised together."""
    contraction = ContractionOptions(tolerance=1e-15, max_iterations=1)
    estimation_options = EstimationOptions(contraction=contraction, error_behavior='raise')
    with pytest.raises(exceptions.MultipleErrors) as info:
        Problem(small_rc_products, small_draws).estimate(1, estimation_options)
    assert len(info.value.errors) == 2
    assert all(isinstance(e, exceptions.DeltaConvergenceError) for e in info.value.errors)


def test_single_error_raise(small_rc_products: ProductData, small_draws: SimulationDraws) -> None:
    """Test that a single distinct error is raised as itself."""
    products = ProductData(['a', 'a', 'a'], [0.30, 0.24, 0.20], small_rc_products.X1[:, :1], small_rc_products.X2)
    contraction = ContractionOptions(tolerance=1e-15, max_iterations=1)
    estimation_options = EstimationOptions(contraction=contraction, error_behavior='raise')
    with pytest.raises(exceptions.DeltaConvergenceError):
        Problem(products, small_draws).estimate(1, estimation_options)


@pytest.mark.parametrize('method', [pytest.param('1s', id="one-step"), pytest.param('2s', id="two-step")])
def test_parallel(simulated_data: SimulatedData, method: str) -> None:
    """Test that parallel estimation gives the same results as serial estimation."""
    products, draws, _, sigma = simulated_data
    problem = Problem(products, draws)
    estimation_options = EstimationOptions(method=method)
    serial = problem.estimate(0.5 * sigma, estimation_options)
    with parallel(2):
        distributed = problem.estimate(0.5 * sigma, estimation_options)
    np.testing.assert_allclose(distributed.delta, serial.delta, rtol=0, atol=1e-14)
    np.testing.assert_allclose(distributed.beta, serial.beta, rtol=0, atol=1e-14)
    np.testing.assert_allclose(distributed.gmm_value, serial.gmm_value, rtol=1e-14, atol=0)
    np.testing.assert_array_equal(distributed.fp_iterations, serial.fp_iterations)


def test_solve_recovery(simulated_data: SimulatedData) -> None:
    """Test that minimizing the objective from an initial guess recovers the true nonlinear parameters."""
    products, draws, beta, sigma = simulated_data
    results = Problem(products, draws).solve(0.5 * sigma, sigma_bounds=([[0]], [[5]]))
    np.testing.assert_allclose(results.sigma, sigma, rtol=0, atol=1e-2)
    np.testing.assert_allclose(results.beta, beta, rtol=0, atol=1e-2)
    assert results.objective_evaluations > 1
    assert results.optimization_iterations > 0
    assert results.gmm_value < Problem(products, draws).estimate(0.5 * sigma).gmm_value


def test_solve_fixed_parameters(simulated_data: SimulatedData) -> None:
    """Test that the return method and parameters fixed by equal bounds are not optimized."""
    products, draws, _, sigma = simulated_data
    problem = Problem(products, draws)
    estimated = problem.estimate(0.5 * sigma)
    returned = problem.solve(0.5 * sigma, options=EstimationOptions(optimization=Optimization('return')))
    fixed = problem.solve(0.5 * sigma, sigma_bounds=([[0.5]], [[0.5]]))
    for results in [returned, fixed]:
        np.testing.assert_array_equal(results.sigma, estimated.sigma)
        np.testing.assert_allclose(results.gmm_value, estimated.gmm_value, rtol=1e-8, atol=0)
    assert fixed.objective_evaluations == 1


@pytest.mark.parametrize(['sigma', 'sigma_bounds'], [
    pytest.param([[1, 0], [0, 1]], None, id="sigma shape"),
    pytest.param([[1]], ([[2]], [[3]]), id="sigma outside bounds"),
    pytest.param([[1]], ([[0]],), id="incomplete bounds"),
    pytest.param([[np.inf]], None, id="infinite sigma")
])
def test_invalid_parameters(
        small_rc_products: ProductData, small_draws: SimulationDraws, sigma: list, sigma_bounds: tuple) -> None:
    """Test that invalid nonlinear parameters are rejected."""
    with pytest.raises((ValueError, TypeError)):
        Problem(small_rc_products, small_draws).solve(sigma, sigma_bounds)


def test_invalid_problems(small_rc_products: ProductData, small_draws: SimulationDraws) -> None:
    """Test that problems require draws that conform to nonlinear characteristics."""
    with pytest.raises(exceptions.MissingComponentError):
        Problem(small_rc_products)
    with pytest.raises(exceptions.ShapeMismatchError):
        Problem(small_rc_products, SimulationDraws.standard_normal(10, 2, seed=0))
    with pytest.raises(TypeError):
        Problem({'shares': [0.5]})
    with pytest.raises(exceptions.InvalidParameterShapeError):
        Problem(small_rc_products, small_draws).estimate(np.eye(2))
    with pytest.raises(TypeError):
        Problem(small_rc_products, small_draws).estimate(1, {'method': '2s'})


def test_output(small_logit_products: ProductData) -> None:
    """Test that status updates can be redirected and turned off."""
    messages: List[str] = []
    old_output, old_verbose = options.verbose_output, options.verbose
    try:
        options.verbose_output = messages.append
        Problem(small_logit_products).estimate()
        assert any("Dimensions" in m for m in messages)
        assert any("Beta Estimates" in m for m in messages)
        messages.clear()
        options.verbose = False
        Problem(small_logit_products).estimate()
        assert not messages
    finally:
        options.verbose_output, options.verbose = old_output, old_verbose
