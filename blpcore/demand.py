r"""Share prediction and the BLP contraction, computed market by market.

Markets are independent, so every function here dispatches one unit of work per market. Inside a :func:`parallel`
context, markets are distributed among a pool of processes, and results are always reassembled in the original row
order.

"""

from typing import Any, Dict, Hashable, List, Optional, Tuple

import numpy as np

from . import exceptions, options
from .configurations.integration import SimulationDraws
from .configurations.iteration import ContractionOptions, ContractionSummary
from .markets.market import Market
from .parameters import coerce_sigma
from .primitives import MarketPartition
from .utilities.basics import Array, Error, generate_items


def predict_shares(
        delta: Any, sigma: Any, X2: Any, draws: Optional[SimulationDraws], partition: MarketPartition) -> Array:
    r"""Predict market shares by simulating random coefficients logit choice probabilities.

    In each market, the :math:`J_t \times I` matrix of consumer-specific utility deviations is
    :math:`\mu = X_2 \Sigma \nu'`, and choice probabilities are

    .. math:: P_{ij} = \frac{\exp(\delta_j + \mu_{ij} - r_i)}{\exp(-r_i) + \sum_k \exp(\delta_k + \mu_{ik} - r_i)}

    where :math:`r_i = \max\{0, \max_j \delta_j + \mu_{ij}\}` guards against overflow. Shares are the weighted sums
    :math:`s_j = \sum_i w_i P_{ij}`.

    Parameters
    ----------
    delta : `array-like`
        Mean utilities, :math:`\delta`, with one row for each product.
    sigma : `array-like`
        The :math:`K_2 \times K_2` matrix of nonlinear parameters, :math:`\Sigma`.
    X2 : `array-like`
        Nonlinear product characteristics, :math:`X_2`.
    draws : `SimulationDraws`
        Integration nodes and weights. These are only optional when :math:`X_2` has no columns.
    partition : `MarketPartition`
        The partition of rows into markets, which is usually :attr:`ProductData.partition`.

    Returns
    -------
    `ndarray`
        Predicted shares with one row for each product, in the original row order.

    Raises
    ------
    `MultipleErrors`
        If numerical problems were encountered in any market. This includes utilities so extreme that a predicted share
        underflows to zero or rounds to one.

    """
    shares, errors = _predict_shares(delta, sigma, X2, draws, partition)
    if errors:
        raise exceptions.MultipleErrors(errors)
    return shares


def solve_delta(
        shares: Any, sigma: Any, X2: Any, draws: Optional[SimulationDraws], partition: MarketPartition,
        options: Optional[ContractionOptions] = None, initial_delta: Optional[Any] = None) -> (
        Tuple[Array, Dict[Hashable, ContractionSummary], List[Error]]):
    r"""Invert observed shares into mean utilities with the BLP contraction.

    In each market, iteration starts from ``initial_delta`` or, by default, the logit solution
    :math:`\delta^0 = \log s - \log s_0`, and applies the damped update configured by ``options``. Predicted shares are
    floored at ``options.minimum_share`` before taking their logarithm, and every application of the floor is counted in
    the market's :class:`ContractionSummary`. When :math:`X_2` has no columns, the logit solution is exact and no
    iterations are needed.

    Non-convergence is not raised. Instead, the affected market's summary is flagged and a
    :class:`~exceptions.DeltaConvergenceError` is included in the returned list of errors, so that callers can decide
    whether it is fatal.

    Parameters
    ----------
    shares : `array-like`
        Observed market shares, :math:`s`.
    sigma : `array-like`
        The :math:`K_2 \times K_2` matrix of nonlinear parameters, :math:`\Sigma`.
    X2 : `array-like`
        Nonlinear product characteristics, :math:`X_2`.
    draws : `SimulationDraws`
        Integration nodes and weights. These are only optional when :math:`X_2` has no columns.
    partition : `MarketPartition`
        The partition of rows into markets.
    options : `ContractionOptions, optional`
        Configuration for the contraction. By default, ``ContractionOptions()`` is used.
    initial_delta : `array-like, optional`
        Starting values for :math:`\delta`.

    Returns
    -------
    `tuple`
        The solved :math:`\delta` in the original row order, a `dict` mapping market IDs to
        :class:`ContractionSummary` instances in the order in which markets appear, and a `list` of errors.

    """
    if options is None:
        options = ContractionOptions()
    elif not isinstance(options, ContractionOptions):
        raise TypeError("options must be None or a ContractionOptions instance.")
    sigma, X2 = validate_demand_inputs(sigma, X2, draws, partition)
    shares = coerce_column("shares", shares, partition)
    if initial_delta is not None:
        initial_delta = coerce_column("initial_delta", initial_delta, partition)
        if not np.isfinite(initial_delta).all():
            raise ValueError("initial_delta must be finite.")

    def market_factory(s: Hashable) -> Tuple[Market, Optional[Array], ContractionOptions]:
        """Build a market along with arguments used to compute delta."""
        rows = slices[s]
        market = Market(s, shares[rows], X2[rows], sigma, *unpack_draws(draws))
        return market, None if initial_delta is None else initial_delta[rows], options

    # solve the contraction market by market
    slices = dict(partition.slices)
    delta = np.zeros_like(shares)
    summary_mapping: Dict[Hashable, ContractionSummary] = {}
    errors: List[Error] = []
    generator = generate_items(partition.unique_market_ids, market_factory, Market.safely_compute_delta)
    for t, (delta_t, summary_t, errors_t) in generator:
        delta[slices[t]] = delta_t
        summary_mapping[t] = summary_t
        errors.extend(errors_t)

    # order summaries in the same way as markets
    summaries = {t: summary_mapping[t] for t in partition.unique_market_ids}
    return delta, summaries, errors


def compute_logit_delta(shares: Any, partition: MarketPartition) -> Array:
    r"""Compute the closed-form logit inversion, :math:`\delta_{jt} = \log s_{jt} - \log s_{0t}`.

    Parameters
    ----------
    shares : `array-like`
        Observed market shares, :math:`s`.
    partition : `MarketPartition`
        The partition of rows into markets, which determines outside shares.

    Returns
    -------
    `ndarray`
        Mean utilities, :math:`\delta`.

    """
    shares = coerce_column("shares", shares, partition)
    inside_shares = np.add.reduceat(shares.flatten(), partition.starts)
    return np.log(shares) - np.log(partition.expand(1 - inside_shares))


def _predict_shares(
        delta: Any, sigma: Any, X2: Any, draws: Optional[SimulationDraws], partition: MarketPartition) -> (
        Tuple[Array, List[Error]]):
    """Predict shares, returning any numerical errors instead of raising them."""
    sigma, X2 = validate_demand_inputs(sigma, X2, draws, partition)
    delta = coerce_column("delta", delta, partition)

    def market_factory(s: Hashable) -> Tuple[Market, Array]:
        """Build a market along with arguments used to compute shares."""
        rows = slices[s]
        return Market(s, None, X2[rows], sigma, *unpack_draws(draws)), delta[rows]

    # compute shares market by market
    slices = dict(partition.slices)
    shares = np.zeros_like(delta)
    errors: List[Error] = []
    for t, (shares_t, errors_t) in generate_items(partition.unique_market_ids, market_factory,
                                                  Market.safely_compute_shares):
        shares[slices[t]] = shares_t
        errors.extend(errors_t)
    return shares, errors


def validate_demand_inputs(
        sigma: Any, X2: Any, draws: Optional[SimulationDraws], partition: MarketPartition) -> Tuple[Array, Array]:
    """Validate the nonlinear inputs shared by share prediction and the contraction."""
    if not isinstance(partition, MarketPartition):
        raise TypeError("partition must be a MarketPartition instance.")
    X2 = np.array(X2, options.dtype)
    if X2.ndim == 1 and X2.size == partition.stops[-1]:
        X2 = X2[:, None]
    if X2.ndim != 2 or X2.shape[0] != partition.stops[-1]:
        raise exceptions.ShapeMismatchError(
            f"X2 has shape {X2.shape} but the market partition covers {partition.stops[-1]} rows."
        )
    K2 = X2.shape[1]
    sigma = coerce_sigma(sigma, K2)
    if draws is None:
        if K2 > 0:
            raise exceptions.MissingComponentError("Simulation draws are required when X2 has columns.")
    elif not isinstance(draws, SimulationDraws):
        raise TypeError("draws must be None or a SimulationDraws instance.")
    elif K2 > 0 and draws.dimensions != K2:
        raise exceptions.ShapeMismatchError(
            f"The simulation draws have {draws.dimensions} dimensions but X2 has {K2} columns."
        )
    return sigma, X2


def coerce_column(name: str, vector: Any, partition: MarketPartition) -> Array:
    """Coerce a vector into a column with one row for each product covered by a market partition."""
    column = np.array(vector, options.dtype)
    if column.ndim == 1:
        column = column[:, None]
    if column.shape != (partition.stops[-1], 1):
        raise exceptions.ShapeMismatchError(
            f"{name} has shape {column.shape} but should be a vector with {partition.stops[-1]} elements."
        )
    return column


def unpack_draws(draws: Optional[SimulationDraws]) -> Tuple[Optional[Array], Optional[Array]]:
    """Unpack integration nodes and weights, if there are any."""
    if draws is None:
        return None, None
    return draws.nodes, draws.weights
