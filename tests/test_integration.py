"""Tests of Monte Carlo integration draws."""

import numpy as np
import pytest

from blpcore import SimulationDraws, exceptions


@pytest.mark.parametrize('dimensions', [pytest.param(1, id="1D"), pytest.param(2, id="2D")])
def test_hermite_integral(dimensions: int) -> None:
    """Test that the Monte Carlo approximation of the product of squared standard normal variables is reasonably close
    to its exact value of one.
    """
    draws = SimulationDraws.standard_normal(num_draws=50000, num_dims=dimensions, seed=0)
    simulated = draws.weights.T @ (draws.nodes**2).prod(axis=1)
    np.testing.assert_allclose(simulated, 1, rtol=0, atol=0.05)


def test_reproducibility() -> None:
    """Test that the same seed gives bit-identical draws and that different seeds give different ones."""
    draws1 = SimulationDraws.standard_normal(num_draws=100, num_dims=3, seed=42)
    draws2 = SimulationDraws.standard_normal(num_draws=100, num_dims=3, seed=42)
    draws3 = SimulationDraws.standard_normal(num_draws=100, num_dims=3, seed=43)
    np.testing.assert_array_equal(draws1.nodes, draws2.nodes)
    np.testing.assert_array_equal(draws1.weights, draws2.weights)
    assert not np.array_equal(draws1.nodes, draws3.nodes)
    assert (draws1.I, draws1.dimensions) == (100, 3)
    np.testing.assert_allclose(draws1.weights, 1 / 100, rtol=0, atol=1e-15)
    assert str(draws1)


@pytest.mark.parametrize(['num_draws', 'num_dims'], [
    pytest.param(0, 1, id="no draws"),
    pytest.param(10, 0, id="no dimensions"),
    pytest.param(-1, 1, id="negative draws"),
    pytest.param(1.5, 1, id="fractional draws"),
    pytest.param(True, 1, id="boolean draws")
])
def test_invalid_draw_counts(num_draws: int, num_dims: int) -> None:
    """Test that counts must be positive integers."""
    with pytest.raises(exceptions.InvalidDrawCountError):
        SimulationDraws.standard_normal(num_draws, num_dims, seed=0)


@pytest.mark.parametrize('weights', [
    pytest.param([0.5, 0.6], id="sum above one"),
    pytest.param([0.5, 0.4], id="sum below one"),
    pytest.param([1.5, -0.5], id="negative weight"),
    pytest.param([1.0, 0.0], id="zero weight"),
    pytest.param([np.nan, 0.5], id="null weight")
])
def test_invalid_weights(weights: list) -> None:
    """Test that weights must be positive and sum to one."""
    with pytest.raises(exceptions.InvalidWeightsError):
        SimulationDraws([[0.0], [1.0]], weights)


def test_weights_tolerance() -> None:
    """Test that weights that sum to one within the tolerance are accepted."""
    draws = SimulationDraws([[0.0], [1.0]], [0.5, 0.5 + 1e-12])
    assert draws.I == 2


def test_shape_mismatch() -> None:
    """Test that nodes and weights must have the same number of rows."""
    with pytest.raises(exceptions.ShapeMismatchError):
        SimulationDraws([[0.0], [1.0]], [0.25, 0.25, 0.5])


def test_immutability() -> None:
    """Test that nodes and weights cannot be modified."""
    draws = SimulationDraws.standard_normal(num_draws=10, num_dims=1, seed=0)
    with pytest.raises(ValueError):
        draws.nodes[0, 0] = 0
    with pytest.raises(ValueError):
        draws.weights[0, 0] = 0
