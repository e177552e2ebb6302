"""Fixed-point iteration routines for the BLP contraction."""

import functools
import numbers
from typing import Any, Callable, Dict, Hashable, Iterable, Optional, Tuple

import numpy as np

from ..utilities.basics import Array, Options, SolverStats, StringRepresentation, format_options


# define contraction function types
ContractionFunction = Callable[[Array], Array]
Iterator = Callable[..., Tuple[Array, 'ContractionSummary']]


class ContractionSummary(SolverStats):
    r"""Diagnostics from solving the contraction in a single market, or aggregated across markets.

    Attributes
    ----------
    market_id : `object`
        The market that was solved, which is ``None`` for aggregated summaries.
    converged : `bool`
        Whether the gap fell below the tolerance before the maximum number of iterations was reached.
    iterations : `int`
        Number of major iterations.
    evaluations : `int`
        Number of contraction evaluations, which is larger than ``iterations`` under acceleration.
    final_gap : `float`
        Norm of the last change in :math:`\delta`.
    clipped_shares : `int`
        Number of times a predicted share was raised to the minimum share floor before taking its logarithm.

    """

    market_id: Optional[Hashable]
    final_gap: float
    clipped_shares: int

    def __init__(
            self, converged: bool = True, iterations: int = 0, evaluations: int = 0, final_gap: float = 0.0,
            market_id: Optional[Hashable] = None, clipped_shares: int = 0) -> None:
        """Structure the diagnostics."""
        super().__init__(converged, iterations, evaluations)
        self.final_gap = final_gap
        self.market_id = market_id
        self.clipped_shares = clipped_shares

    def __repr__(self) -> str:
        """Summarize the diagnostics."""
        market = "" if self.market_id is None else f"market={self.market_id!r}, "
        return (
            f"ContractionSummary({market}converged={self.converged}, iterations={self.iterations}, "
            f"evaluations={self.evaluations}, final_gap={self.final_gap!r}, clipped_shares={self.clipped_shares})"
        )

    @classmethod
    def combine(cls, summaries: Iterable['ContractionSummary']) -> 'ContractionSummary':
        """Aggregate summaries across markets. The aggregate converged only if every market converged, its iterations
        and gap are the worst across markets, and its evaluations and clipped shares are totals.
        """
        summaries = list(summaries)
        if not summaries:
            return cls()
        return cls(
            converged=all(s.converged for s in summaries),
            iterations=max(s.iterations for s in summaries),
            evaluations=sum(s.evaluations for s in summaries),
            final_gap=max(s.final_gap for s in summaries),
            clipped_shares=sum(s.clipped_shares for s in summaries)
        )


class ContractionOptions(StringRepresentation):
    r"""Configuration for the BLP contraction that inverts observed shares into mean utilities.

    In each market, iteration starts from the logit solution, :math:`\delta^0 = \log s - \log s_0`, and updates

    .. math:: \delta^{n + 1} = \delta^n + \lambda\left[\log s - \log \max\{s(\delta^n, \Sigma), \underline{s}\}\right]

    where :math:`\lambda` is ``damping`` and :math:`\underline{s}` is ``minimum_share``. Iteration stops successfully
    once the norm of :math:`\delta^{n + 1} - \delta^n` is less than ``tolerance``. Reaching ``max_iterations`` first is
    reported as a failure to converge.

    Parameters
    ----------
    tolerance : `float, optional`
        Positive tolerance for the norm of the change in :math:`\delta`. By default, this is ``1e-12``.
    max_iterations : `int, optional`
        Positive maximum number of contraction evaluations. By default, this is ``1000``.
    damping : `float, optional`
        Step size, :math:`\lambda`, in :math:`(0, 1]`. The default, ``1.0``, is undamped iteration.
    minimum_share : `float, optional`
        Positive floor, :math:`\underline{s}`, applied to predicted shares before taking their logarithm, which guards
        against :math:`\log 0`. Each time the floor is applied it is counted in the market's
        :class:`ContractionSummary`. By default, this is ``1e-16``.
    method : `str, optional`
        How to iterate. One of the following:

            - ``'simple'`` - Non-accelerated iteration, which is the default.

            - ``'squarem'`` - SQUAREM acceleration of the damped update. This implementation uses a first-order
              squared non-monotone extrapolation scheme with unit step bounds that are expanded by a factor of four.

    norm : `callable, optional`
        Norm used to compute the gap, by default the infinity norm, which is the maximum absolute change.

    Examples
    --------
    .. code-block:: python

        options = blpcore.ContractionOptions(tolerance=1e-14, damping=0.5)

    """

    tolerance: float
    max_iterations: int
    damping: float
    minimum_share: float
    method: str
    norm: Callable[[Array], float]
    _iterator: Iterator
    _description: str

    def __init__(
            self, tolerance: float = 1e-12, max_iterations: int = 1000, damping: float = 1.0,
            minimum_share: float = 1e-16, method: str = 'simple',
            norm: Optional[Callable[[Array], float]] = None) -> None:
        """Validate the configuration."""
        methods: Dict[str, Tuple[Iterator, str]] = {
            'simple': (functools.partial(simple_iterator), "no acceleration"),
            'squarem': (functools.partial(squarem_iterator), "the SQUAREM acceleration method"),
        }

        # validate the configuration
        if not isinstance(tolerance, numbers.Real) or not tolerance > 0:
            raise ValueError("The contraction option tolerance must be a positive float.")
        if not isinstance(max_iterations, numbers.Integral) or isinstance(max_iterations, bool) or max_iterations < 1:
            raise ValueError("The contraction option max_iterations must be a positive int.")
        if not isinstance(damping, numbers.Real) or not 0 < damping <= 1:
            raise ValueError("The contraction option damping must be a float in (0, 1].")
        if not isinstance(minimum_share, numbers.Real) or not 0 < minimum_share < 1:
            raise ValueError("The contraction option minimum_share must be a float in (0, 1).")
        if method not in methods:
            raise ValueError(f"The contraction option method must be one of {list(methods.keys())}.")
        if norm is None:
            norm = infinity_norm
        if not callable(norm):
            raise ValueError("The contraction option norm must be callable.")

        # initialize class attributes
        self.tolerance = float(tolerance)
        self.max_iterations = int(max_iterations)
        self.damping = float(damping)
        self.minimum_share = float(minimum_share)
        self.method = method
        self.norm = norm
        self._iterator, self._description = methods[method]

    def __str__(self) -> str:
        """Format the configuration as a string."""
        description = f"{self._description} with options {format_options(self.options)}"
        return f"Configured to solve the contraction using {description}."

    def __eq__(self, other: Any) -> bool:
        """Compare configurations by their options."""
        return isinstance(other, ContractionOptions) and self.options == other.options

    def __hash__(self) -> int:
        """Hash the configuration by its options."""
        return hash(tuple(sorted(self.options.items())))

    @property
    def options(self) -> Options:
        """The configured options as a mapping."""
        return {
            'method': self.method,
            'tolerance': self.tolerance,
            'max_iterations': self.max_iterations,
            'damping': self.damping,
            'minimum_share': self.minimum_share,
            'norm': self.norm
        }

    def _iterate(self, initial: Array, contraction: ContractionFunction) -> Tuple[Array, ContractionSummary]:
        """Solve a fixed point problem, starting from initial values."""
        return self._iterator(initial, contraction, self.max_iterations, self.tolerance, self.norm)


def infinity_norm(x: Array) -> float:
    """Compute the infinity norm of a vector."""
    return float(np.abs(x).max()) if x.size > 0 else 0.0


def all_finite(*arrays: Optional[Array]) -> bool:
    """Validate that multiple arrays are either None or all finite."""
    return all(a is None or np.isfinite(a).all() for a in arrays)


def simple_iterator(
        initial: Array, contraction: ContractionFunction, max_iterations: int, tolerance: float,
        norm: Callable[[Array], float]) -> Tuple[Array, ContractionSummary]:
    """Apply simple fixed point iteration with no acceleration. If the contraction gives non-finite values, iteration
    stops at the last finite values without converging.
    """
    x = initial
    gap = np.inf
    converged = False
    evaluations = 0
    while evaluations < max_iterations:
        x0, x = x, contraction(x)
        evaluations += 1
        if not all_finite(x):
            x = x0
            break

        # check for convergence
        gap = norm(x - x0)
        if gap < tolerance:
            converged = True
            break

    return x, ContractionSummary(converged, evaluations, evaluations, gap)


def squarem_iterator(
        initial: Array, contraction: ContractionFunction, max_iterations: int, tolerance: float,
        norm: Callable[[Array], float]) -> Tuple[Array, ContractionSummary]:
    """Apply the SQUAREM acceleration method for fixed point iteration. Each major iteration takes two contraction
    steps, an extrapolation, and a stabilizing contraction step. The gap is always the change from a contraction step.
    """
    x = initial
    gap = np.inf
    converged = False
    iterations = evaluations = 0
    step_min = step_max = 1.0
    step_factor = 4.0

    def step(values: Array) -> Tuple[Array, bool]:
        """Take a single contraction step, counting it and checking for convergence."""
        nonlocal evaluations, gap, converged
        evaluations += 1
        updated = contraction(values)
        if not all_finite(updated):
            return values, True
        gap = norm(updated - values)
        converged = gap < tolerance
        return updated, converged or evaluations >= max_iterations

    while evaluations < max_iterations:
        iterations += 1

        # first and second steps
        x0 = x
        x, done = step(x0)
        if done:
            break
        x1 = x
        x, done = step(x1)
        if done:
            break

        # compute the step length
        r = x1 - x0
        v = (x - x1) - r
        with np.errstate(divide='ignore', invalid='ignore'):
            alpha = -np.sqrt((r.T @ r) / (v.T @ v)).item()
        if not np.isfinite(alpha):
            alpha = -step_max

        # bound the step length and update its bounds
        alpha = -max(step_min, min(step_max, -alpha))
        if -alpha == step_max:
            step_max *= step_factor

        # acceleration step, which is abandoned if it leads to non-finite values
        extrapolated = x0 - 2 * alpha * r + alpha**2 * v
        if not all_finite(extrapolated):
            extrapolated = x
        x, done = step(extrapolated)
        if done:
            break

    return x, ContractionSummary(converged, iterations, evaluations, gap)

