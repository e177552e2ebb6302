"""Nonlinear parameters underlying the BLP model."""

from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from . import exceptions, options
from .utilities.basics import Array, Bounds, format_number, format_table


class SigmaParameter(object):
    """Information about a single element of sigma."""

    location: Tuple[int, int]
    value: Optional[float]

    def __init__(self, location: Tuple[int, int], bounds: Bounds) -> None:
        """Store the information and determine whether the parameter is fixed or unfixed."""
        self.location = location
        self.value = bounds[0][location] if bounds[0][location] == bounds[1][location] else None


def coerce_sigma(sigma: Optional[Any], K2: int, name: str = "sigma") -> Array:
    """Coerce a sigma-like matrix into a K2 x K2 array of the configured data type. By default, it is all zeros."""
    if sigma is None:
        return np.zeros((K2, K2), options.dtype)
    try:
        matrix = np.array(sigma, options.dtype)
    except (TypeError, ValueError) as exception:
        raise TypeError(f"{name} must be a numeric array-like object.") from exception
    if matrix.ndim == 0 and K2 == 1:
        matrix = matrix.reshape(1, 1)
    if matrix.size == 0 and K2 == 0:
        matrix = matrix.reshape(0, 0)
    if matrix.shape != (K2, K2):
        raise exceptions.InvalidParameterShapeError(
            f"{name} has shape {matrix.shape} but X2 has {K2} columns, so it should have shape {(K2, K2)}."
        )
    return matrix


class Parameters(object):
    r"""Information about fixed and unfixed elements of :math:`\Sigma`.

    Elements that are zero are fixed at zero, as are elements with equal lower and upper bounds. All other elements are
    unfixed and are collected into the vector :math:`\theta` that is searched over by the outer loop.
    """

    sigma: Array
    sigma_bounds: Bounds
    sigma_labels: List[str]
    fixed: List[SigmaParameter]
    unfixed: List[SigmaParameter]
    P: int

    def __init__(
            self, sigma: Optional[Any], K2: int, sigma_bounds: Optional[Tuple[Any, Any]] = None,
            sigma_labels: Optional[Sequence[str]] = None) -> None:
        """Coerce sigma and its bounds into usable formats before storing information about fixed and unfixed
        elements.
        """
        self.sigma = coerce_sigma(sigma, K2)
        if not np.isfinite(self.sigma).all():
            raise ValueError("sigma must be finite.")
        self.sigma_labels = list(sigma_labels) if sigma_labels is not None else [f'x2_{k}' for k in range(K2)]

        # validate bounds, which by default are unbounded for nonzero elements
        if sigma_bounds is None:
            lb = np.where(self.sigma != 0, -np.inf, 0).astype(options.dtype)
            ub = np.where(self.sigma != 0, +np.inf, 0).astype(options.dtype)
        else:
            if not isinstance(sigma_bounds, tuple) or len(sigma_bounds) != 2:
                raise TypeError("sigma_bounds must be a tuple of the form (lb, ub).")
            lb = coerce_sigma(sigma_bounds[0], K2, "the lower bound of sigma")
            ub = coerce_sigma(sigma_bounds[1], K2, "the upper bound of sigma")
            lb[np.isnan(lb)] = -np.inf
            ub[np.isnan(ub)] = +np.inf
            lb[self.sigma == 0] = ub[self.sigma == 0] = 0
            if ((self.sigma < lb) | (self.sigma > ub)).any():
                raise ValueError("sigma must be within its bounds.")
        lb.flags.writeable = ub.flags.writeable = False
        self.sigma_bounds = (lb, ub)

        # store information about individual elements
        self.fixed = []
        self.unfixed = []
        for location in np.ndindex(*self.sigma.shape):
            parameter = SigmaParameter(location, self.sigma_bounds)
            if parameter.value is None:
                self.unfixed.append(parameter)
            else:
                self.fixed.append(parameter)
        self.P = len(self.unfixed)

    def format(self, title: str, sigma_like: Optional[Array] = None) -> str:
        """Format a matrix of the same size as sigma as a string. By default, format initial values."""
        if sigma_like is None:
            sigma_like = self.sigma
        header = ["Sigma:"] + self.sigma_labels
        data = [[l] + [format_number(x) for x in r] for l, r in zip(self.sigma_labels, sigma_like)]
        return format_table(header, *data, title=f"Sigma {title}", line_indices={0})

    def compress(self) -> Array:
        """Compress the initial values of unfixed parameters into theta."""
        return np.array([self.sigma[p.location] for p in self.unfixed], options.dtype)

    def compress_bounds(self) -> List[Tuple[float, float]]:
        """Compress bounds into a list of (lb, ub) tuples for theta."""
        lb, ub = self.sigma_bounds
        return [(lb[p.location], ub[p.location]) for p in self.unfixed]

    def expand(self, theta: Array) -> Array:
        """Recover sigma from theta, filling fixed elements with their fixed values."""
        sigma = np.zeros_like(self.sigma)
        for parameter in self.fixed:
            sigma[parameter.location] = parameter.value
        for parameter, value in zip(self.unfixed, theta):
            sigma[parameter.location] = value
        return sigma
