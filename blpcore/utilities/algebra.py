"""Algebraic routines."""

from typing import Optional, Tuple
import warnings

import numpy as np
import scipy.linalg

from .basics import Array
from .. import options


# a lower or upper Cholesky factor along with a flag for which one it is, as returned by scipy.linalg.cho_factor
Factor = Tuple[Array, bool]


def compute_condition_number(x: Array) -> float:
    """Compute the condition number of a square matrix."""
    if x.size == 0:
        return 0
    if not np.isfinite(x).all():
        return np.nan
    try:
        return np.linalg.cond(x.astype(np.float64))
    except scipy.linalg.LinAlgError:
        return np.nan


def precisely_identify_singularity(x: Array) -> Tuple[bool, bool, float]:
    """Compute the condition number of a matrix to identify whether it is nearly singular."""
    singular = False
    successful = True
    condition = np.nan
    if options.singular_tol < np.inf:
        condition = compute_condition_number(x)
        successful = not np.isnan(condition)
        singular = successful and condition > options.singular_tol

    return singular, successful, condition


def precisely_identify_collinearity(x: Array) -> Tuple[Array, bool]:
    """Compute the QR decomposition of a matrix and identify which diagonal elements of the upper diagonal matrix are
    within absolute and relative tolerances.
    """
    collinear = np.zeros(x.shape[1], np.bool_)
    successful = True
    if x.size > 0 and min(options.collinear_atol, options.collinear_rtol) > 0:
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings('error')
                r = scipy.linalg.qr(x, mode='r')[0]
                diagonal = np.abs(r.diagonal())
                collinear[:diagonal.size] = diagonal < options.collinear_atol + options.collinear_rtol * x.std(axis=0)
        except (ValueError, scipy.linalg.LinAlgError, scipy.linalg.LinAlgWarning):
            successful = False

    return collinear, successful


def precisely_identify_symmetry(x: Array) -> bool:
    """Identify whether a square matrix is symmetric with the same absolute and relative tolerances used for PSD
    checks.
    """
    return bool(np.allclose(x, x.T, atol=options.psd_atol, rtol=options.psd_rtol))


def precisely_factorize(x: Array) -> Tuple[Optional[Factor], bool]:
    """Attempt to compute the Cholesky factorization of a symmetric positive definite matrix. The factorization fails
    for matrices that are not positive definite or have non-finite elements.
    """
    if x.size == 0:
        return (x, True), True
    try:
        with warnings.catch_warnings():
            warnings.filterwarnings('error')
            factor = scipy.linalg.cho_factor(x, check_finite=True)
    except (ValueError, scipy.linalg.LinAlgError, scipy.linalg.LinAlgWarning):
        return None, False
    return factor, True


def precisely_solve(factor: Factor, b: Array) -> Tuple[Array, bool]:
    """Attempt to solve a system of equations given a Cholesky factorization of its left-hand side."""
    try:
        with warnings.catch_warnings():
            warnings.filterwarnings('error')
            solved = scipy.linalg.cho_solve(factor, b) if b.size > 0 else b
            successful = bool(np.isfinite(solved).all())
    except (ValueError, scipy.linalg.LinAlgError, scipy.linalg.LinAlgWarning):
        solved = np.full_like(b, np.nan, options.dtype)
        successful = False

    return solved, successful


def precisely_invert(x: Array) -> Tuple[Array, bool]:
    """Attempt to invert a symmetric positive definite matrix with its Cholesky factorization. The inverse is
    symmetrized to remove floating point asymmetries.
    """
    factor, successful = precisely_factorize(x)
    if not successful:
        return np.full_like(x, np.nan, options.dtype), False
    inverted, successful = precisely_solve(factor, np.eye(x.shape[0], dtype=options.dtype))
    return (inverted + inverted.T) / 2, successful
