"""Standard statistical routines."""

from typing import Tuple

import numpy as np

from .algebra import Factor, precisely_factorize, precisely_identify_singularity, precisely_invert, precisely_solve
from .basics import Array
from .. import exceptions


class IV(object):
    r"""Simple model for generalized instrumental variables estimation.

    The left-hand side of the normal equations, :math:`X'ZWZ'X`, is factorized once with a Cholesky decomposition so
    that the same model can be re-estimated for many different dependent variables, as happens when :math:`\delta`
    changes with nonlinear parameters.
    """

    X: Array
    Z: Array
    W: Array
    XZ: Array
    factor: Factor

    def __init__(self, X: Array, Z: Array, W: Array) -> None:
        """Pre-compute and factorize the left-hand side of the normal equations."""
        self.X = X
        self.Z = Z
        self.W = W
        self.XZ = X.T @ Z
        product = self.XZ @ W @ self.XZ.T
        singular, successful, _ = precisely_identify_singularity(product)
        factor, factorized = precisely_factorize(product)
        if singular or not successful or not factorized:
            raise exceptions.SingularMomentError(product, "X1'ZD W ZD'X1")
        self.factor = factor

    def estimate(self, y: Array) -> Tuple[Array, Array]:
        """Estimate parameters and compute residuals."""
        parameters, successful = precisely_solve(self.factor, self.XZ @ self.W @ (self.Z.T @ y))
        if not successful:
            raise exceptions.SingularMomentError(self.XZ @ self.W @ self.XZ.T, "X1'ZD W ZD'X1")
        residuals = y - self.X @ parameters
        return parameters, residuals


def compute_2sls_weights(Z: Array) -> Array:
    """Compute the inverse of Z'Z, which is the weighting matrix that makes GMM equivalent to 2SLS."""
    ZZ = Z.T @ Z
    singular, successful, _ = precisely_identify_singularity(ZZ)
    W, inverted = precisely_invert(ZZ)
    if singular or not successful or not inverted:
        raise exceptions.SingularMomentError(ZZ, "ZD'ZD")
    return W


def compute_gmm_weights(S: Array) -> Array:
    """Compute a GMM weighting matrix by inverting the covariance matrix of moments."""
    singular, successful, _ = precisely_identify_singularity(S)
    W, inverted = precisely_invert(S)
    if singular or not successful or not inverted:
        raise exceptions.SingularMomentError(S, "S")
    return np.c_[W + W.T] / 2


def compute_gmm_moment_covariances(u: Array, Z: Array, covariance_type: str, center_moments: bool) -> Array:
    """Compute covariances between moments, scaled to match the moment vector Z'u, which is a sum over observations
    instead of a mean.
    """
    if covariance_type == 'unadjusted':
        S = u.var() * (Z.T @ Z)
    else:
        g = compute_gmm_moments(u, Z)
        if center_moments:
            g -= g.mean(axis=0)
        S = g.T @ g

    # enforce shape and symmetry
    return np.c_[S + S.T] / 2


def compute_gmm_moments(u: Array, Z: Array) -> Array:
    """Compute the contribution of each observation to GMM moments."""
    return u * Z


def compute_gmm_moments_sum(u: Array, Z: Array) -> Array:
    """Compute GMM moments, summed across observations."""
    return np.c_[Z.T @ u]
