"""Monte Carlo integration over consumer taste heterogeneity."""

import numbers
from typing import Any, Optional, Tuple

import numpy as np

from .. import exceptions, options
from ..utilities.basics import Array, StringRepresentation, format_number, format_table


class SimulationDraws(StringRepresentation):
    r"""Integration nodes and weights used to simulate market shares.

    Nodes, :math:`\nu_i`, are draws from the distribution of consumer taste heterogeneity, and weights, :math:`w_i`,
    are used to aggregate choice probabilities across them. The same draws are used in every market. Construction
    validates every field and all arrays are made read-only, so a single instance can be reused across any number of
    estimation calls.

    Parameters
    ----------
    nodes : `array-like`
        Integration nodes, :math:`\nu`, with one row for each draw and one column for each random coefficient.
    weights : `array-like, optional`
        Positive integration weights, :math:`w`, which must sum to one within ``options.weights_tol``. By default,
        weights are ``1 / I`` where :math:`I` is the number of draws.

    Attributes
    ----------
    nodes : `ndarray`
        Integration nodes, :math:`\nu`.
    weights : `ndarray`
        Integration weights, :math:`w`, as a column vector.
    I : `int`
        Number of draws, :math:`I`.
    dimensions : `int`
        Number of random coefficients covered by each draw.

    Examples
    --------
    .. code-block:: python

        draws = blpcore.SimulationDraws.standard_normal(num_draws=500, num_dims=2, seed=0)

    """

    nodes: Array
    weights: Array
    I: int
    dimensions: int

    def __init__(self, nodes: Any, weights: Optional[Any] = None) -> None:
        """Validate and store nodes and weights."""
        nodes = np.array(nodes, options.dtype)
        if nodes.ndim == 1:
            nodes = nodes[:, None]
        if nodes.ndim != 2:
            raise exceptions.ShapeMismatchError(f"nodes must be a matrix, not a {nodes.ndim}-dimensional array.")
        if nodes.shape[0] == 0 or nodes.shape[1] == 0:
            raise exceptions.InvalidDrawCountError(
                f"nodes has {nodes.shape[0]} rows and {nodes.shape[1]} columns."
            )
        if not np.isfinite(nodes).all():
            raise ValueError("nodes must be finite.")

        # validate weights
        if weights is None:
            weights = np.full((nodes.shape[0], 1), 1 / nodes.shape[0], options.dtype)
        weights = np.c_[np.array(weights, options.dtype)]
        if weights.shape != (nodes.shape[0], 1):
            raise exceptions.ShapeMismatchError(
                f"weights must be a vector with {nodes.shape[0]} elements, not an array with shape {weights.shape}."
            )
        bad_weights = ~np.isfinite(weights)
        bad_weights[~bad_weights] = weights[~bad_weights] <= 0
        if bad_weights.any():
            raise exceptions.InvalidWeightsError(f"Offending draws: {list(np.flatnonzero(bad_weights))}.")
        slack = abs(weights.sum() - 1)
        if not slack <= options.weights_tol:
            raise exceptions.InvalidWeightsError(f"Weights sum to one plus or minus {format_number(slack).strip()}.")

        # store the draws
        nodes.flags.writeable = False
        weights.flags.writeable = False
        self.nodes = nodes
        self.weights = weights
        self.I, self.dimensions = nodes.shape

    def __str__(self) -> str:
        """Format the draws as a string."""
        header = ["Draws", "Dimensions", "Weight Sum"]
        return format_table(header, [self.I, self.dimensions, format_number(self.weights.sum())], title="Draws")

    @classmethod
    def standard_normal(cls, num_draws: int, num_dims: int, seed: Optional[int] = None) -> 'SimulationDraws':
        """Draw nodes from a standard multivariate normal distribution with uniform weights.

        The same seed always gives identical nodes because a fresh :class:`numpy.random.RandomState` is seeded for every
        call.

        Parameters
        ----------
        num_draws : `int`
            Number of draws, :math:`I`.
        num_dims : `int`
            Number of random coefficients, which should equal the number of columns in :math:`X_2`.
        seed : `int, optional`
            Passed to :class:`numpy.random.RandomState` to seed the random number generator. By default, a seed is not
            passed, so draws are not reproducible.

        Returns
        -------
        `SimulationDraws`
            The validated draws.

        """
        for name, count in [('num_draws', num_draws), ('num_dims', num_dims)]:
            if not isinstance(count, numbers.Integral) or isinstance(count, bool) or count < 1:
                raise exceptions.InvalidDrawCountError(f"{name} is {count!r}.")
        nodes, weights = monte_carlo(int(num_dims), int(num_draws), np.random.RandomState(seed))
        return cls(nodes, weights)


def monte_carlo(dimensions: int, size: int, state: np.random.RandomState) -> Tuple[Array, Array]:
    """Draw from a pseudo-random standard multivariate normal distribution."""
    nodes = state.normal(size=(size, dimensions))
    weights = np.repeat(1 / size, size)
    return nodes, weights
