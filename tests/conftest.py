"""Fixtures used by tests."""

from typing import Iterator, NamedTuple

import numpy as np
import pytest

from blpcore import MarketPartition, ProductData, SimulationDraws, build_id_data, options, predict_shares
from blpcore.utilities.basics import Array


class SimulatedData(NamedTuple):
    """Product data simulated from a random coefficients logit model with no unobserved product characteristics."""

    products: ProductData
    draws: SimulationDraws
    beta: Array
    sigma: Array


@pytest.fixture(scope='session', autouse=True)
def configure() -> Iterator[None]:
    """Configure NumPy so that it raises all warnings as exceptions and restore any changed global options once tests
    are done.
    """
    old_error = np.seterr(all='raise')
    old_options = {k: getattr(options, k) for k in ['digits', 'verbose', 'verbose_output', 'flush_output']}
    yield
    for key, value in old_options.items():
        setattr(options, key, value)
    np.seterr(**old_error)


@pytest.fixture(scope='session')
def small_logit_products() -> ProductData:
    """Two markets with an intercept and one covariate but no random coefficients."""
    return ProductData(
        market_ids=['a', 'a', 'b'],
        shares=[0.30, 0.24, 0.42],
        X1=[[1, 0.5], [1, 1.0], [1, 2.0]]
    )


@pytest.fixture(scope='session')
def small_rc_products() -> ProductData:
    """The same two markets with a random coefficient on the covariate."""
    return ProductData(
        market_ids=['a', 'a', 'b'],
        shares=[0.30, 0.24, 0.42],
        X1=[[1, 0.5], [1, 1.0], [1, 2.0]],
        X2=[[0.5], [1.0], [2.0]],
        X1_labels=['1', 'x'],
        X2_labels=['x']
    )


@pytest.fixture(scope='session')
def small_draws() -> SimulationDraws:
    """A small number of one-dimensional draws."""
    return SimulationDraws.standard_normal(num_draws=50, num_dims=1, seed=0)


@pytest.fixture(scope='session')
def simulated_data() -> SimulatedData:
    """Simulate shares in 20 markets with five products each. Mean utilities are exactly linear in characteristics, so
    at the true parameters structural residuals are zero up to the contraction tolerance. Excluded instruments are the
    square of the characteristic and the sum of rival characteristics.
    """
    T, J = 20, 5
    state = np.random.RandomState(0)
    market_ids = build_id_data(T, J).market_ids.flatten()
    x = state.uniform(0, 2, T * J)
    X1 = np.column_stack([np.ones_like(x), x])
    X2 = x[:, None]
    beta = np.array([[-2.0], [0.5]])
    sigma = np.array([[1.0]])
    draws = SimulationDraws.standard_normal(num_draws=200, num_dims=1, seed=1)

    # compute shares from mean utilities
    partition = MarketPartition(market_ids, np.zeros(T * J))
    shares = predict_shares(X1 @ beta, sigma, X2, draws, partition)

    # construct instruments
    rival_x = partition.expand(np.add.reduceat(x, partition.starts)).flatten() - x
    ZD = np.column_stack([np.ones_like(x), x, x**2, rival_x])
    products = ProductData(market_ids, shares, X1, X2, ZD, X1_labels=['1', 'x'], X2_labels=['x'])
    return SimulatedData(products, draws, beta, sigma)
