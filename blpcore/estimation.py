r"""Recovery of linear parameters and evaluation of the GMM objective.

Given mean utilities, :math:`\delta`, linear parameters are concentrated out with two-stage least squares (more
generally, linear GMM under a weighting matrix :math:`W`),

.. math:: \hat{\beta} = (X_1'Z_D W Z_D'X_1)^{-1} X_1'Z_D W Z_D'\delta,

which gives the structural residuals, :math:`\xi = \delta - X_1\hat{\beta}`. The GMM objective is
:math:`q = \bar{g}'W\bar{g}` where :math:`\bar{g} = Z_D'\xi`. Every matrix that is inverted is factorized with a
Cholesky decomposition and checked against ``options.singular_tol``, so singular systems raise
:class:`~exceptions.SingularMomentError` instead of silently returning non-finite values.

"""

from typing import Any, Optional, Tuple, Union

import numpy as np

from . import exceptions, options
from .configurations.weighting import WeightingMatrix
from .utilities.basics import Array
from .utilities.statistics import (
    IV, compute_gmm_moment_covariances, compute_gmm_moments_sum, compute_gmm_weights
)


def compute_linear_parameters(
        delta: Any, X1: Any, ZD: Optional[Any] = None, W: Optional[Any] = None) -> Tuple[Array, Array]:
    r"""Recover linear parameters, :math:`\beta`, and structural residuals, :math:`\xi`, from mean utilities.

    Parameters
    ----------
    delta : `array-like`
        Mean utilities, :math:`\delta`.
    X1 : `array-like`
        Linear product characteristics, :math:`X_1`.
    ZD : `array-like, optional`
        Demand-side instruments, :math:`Z_D`. By default, :math:`X_1` is used, which gives ordinary least squares.
    W : `array-like, optional`
        Weighting matrix. By default, :math:`W = (Z_D'Z_D)^{-1}`, which gives two-stage least squares.

    Returns
    -------
    `tuple`
        The :math:`K_1 \times 1` vector :math:`\hat{\beta}` and the :math:`N \times 1` vector :math:`\xi`.

    Raises
    ------
    `SingularMomentError`
        If :math:`Z_D'Z_D` or :math:`X_1'Z_D W Z_D'X_1` cannot be factorized or is nearly singular.

    """
    delta = coerce_matrix("delta", delta)
    X1 = coerce_matrix("X1", X1, delta.shape[0])
    ZD = X1 if ZD is None else coerce_matrix("ZD", ZD, delta.shape[0])
    if delta.shape[1] != 1:
        raise exceptions.ShapeMismatchError(f"delta must be a vector, not an array with shape {delta.shape}.")
    if ZD.shape[1] < X1.shape[1]:
        raise exceptions.ShapeMismatchError(
            f"ZD has {ZD.shape[1]} columns, which is fewer than the {X1.shape[1]} columns in X1."
        )
    W = build_weighting_matrix(ZD, W)
    return IV(X1, ZD, W).estimate(delta)


def compute_gmm_objective(xi: Any, ZD: Any, weighting: Optional[Union[WeightingMatrix, Any]] = None) -> float:
    r"""Evaluate the GMM objective, :math:`q = \bar{g}'W\bar{g}` where :math:`\bar{g} = Z_D'\xi`.

    Parameters
    ----------
    xi : `array-like`
        Structural residuals, :math:`\xi`.
    ZD : `array-like`
        Demand-side instruments, :math:`Z_D`.
    weighting : `WeightingMatrix or array-like, optional`
        The weighting matrix configuration, or a matrix that will be validated as if it were passed to
        ``WeightingMatrix('provided', matrix)``. By default, :math:`W = (Z_D'Z_D)^{-1}`.

    Returns
    -------
    `float`
        The objective value, which is nonnegative for any positive definite :math:`W`.

    Raises
    ------
    `WeightingNotPositiveDefiniteError`
        If a provided matrix is not symmetric and positive definite.
    `ShapeMismatchError`
        If a provided matrix does not conform to the instruments.

    """
    xi = coerce_matrix("xi", xi)
    ZD = coerce_matrix("ZD", ZD, xi.shape[0])
    if xi.shape[1] != 1:
        raise exceptions.ShapeMismatchError(f"xi must be a vector, not an array with shape {xi.shape}.")
    W = build_weighting_matrix(ZD, weighting)
    g = compute_gmm_moments_sum(xi, ZD)
    return float((g.T @ W @ g).item())


def compute_updated_weighting_matrix(
        xi: Any, ZD: Any, W_type: str = 'robust', center_moments: bool = True) -> Array:
    r"""Compute an efficient weighting matrix, :math:`W = S^{-1}`, from structural residuals.

    The covariance of moments is :math:`S = \sum_j g_j g_j'` where :math:`g_j = \xi_j Z_{Dj}`, optionally after
    centering each moment, or :math:`S = \hat{\sigma}_\xi^2 Z_D'Z_D` under homoskedasticity.

    Parameters
    ----------
    xi : `array-like`
        Structural residuals, :math:`\xi`, usually from a first GMM step.
    ZD : `array-like`
        Demand-side instruments, :math:`Z_D`.
    W_type : `str, optional`
        Either ``'robust'``, which is the default, or ``'unadjusted'``.
    center_moments : `bool, optional`
        Whether to center moments before computing robust covariances. By default, moments are centered.

    Returns
    -------
    `ndarray`
        The symmetric positive definite :math:`M_D \times M_D` weighting matrix.

    Raises
    ------
    `SingularMomentError`
        If :math:`S` cannot be factorized or is nearly singular.

    """
    if W_type not in {'robust', 'unadjusted'}:
        raise ValueError("W_type must be 'robust' or 'unadjusted'.")
    xi = coerce_matrix("xi", xi)
    ZD = coerce_matrix("ZD", ZD, xi.shape[0])
    S = compute_gmm_moment_covariances(xi, ZD, W_type, center_moments)
    return compute_gmm_weights(S)


def build_weighting_matrix(ZD: Array, weighting: Optional[Union[WeightingMatrix, Any]]) -> Array:
    """Build a weighting matrix from its configuration, an array, or nothing at all."""
    if weighting is None:
        weighting = WeightingMatrix()
    elif not isinstance(weighting, WeightingMatrix):
        weighting = WeightingMatrix('provided', weighting)
    return weighting._build(ZD)


def coerce_matrix(name: str, matrix: Any, rows: Optional[int] = None) -> Array:
    """Coerce array-like data into a finite two-dimensional matrix and optionally validate its number of rows."""
    matrix = np.array(matrix, options.dtype)
    if matrix.ndim == 1:
        matrix = matrix[:, None]
    if matrix.ndim != 2:
        raise exceptions.ShapeMismatchError(f"{name} must be a matrix, not a {matrix.ndim}-dimensional array.")
    if rows is not None and matrix.shape[0] != rows:
        raise exceptions.ShapeMismatchError(f"{name} has {matrix.shape[0]} rows but there should be {rows}.")
    if not np.isfinite(matrix).all():
        raise ValueError(f"{name} must be finite.")
    return matrix
