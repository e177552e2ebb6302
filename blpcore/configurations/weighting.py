"""Configuration of GMM weighting matrices."""

from typing import Any, Optional

import numpy as np

from .. import exceptions, options
from ..utilities.algebra import precisely_factorize, precisely_identify_symmetry
from ..utilities.basics import Array, StringRepresentation
from ..utilities.statistics import compute_2sls_weights


class WeightingMatrix(StringRepresentation):
    r"""Configuration for the GMM weighting matrix, :math:`W`.

    Parameters
    ----------
    specification : `str, optional`
        How to construct :math:`W`. One of the following:

            - ``'inverse_ztz'`` - Use :math:`W = (Z_D'Z_D)^{-1}`, which makes the first GMM step equivalent to 2SLS.
              This is the default.

            - ``'provided'`` - Use a caller-supplied ``matrix``, which must be symmetric and positive definite.

    matrix : `array-like, optional`
        The :math:`M_D \times M_D` weighting matrix used when ``specification`` is ``'provided'``. It is validated
        immediately: it must be square, finite, symmetric within ``options.psd_atol`` and ``options.psd_rtol``, and
        admit a Cholesky factorization. Its dimensions are checked against instruments when it is used.

    Examples
    --------
    .. code-block:: python

        weighting = blpcore.WeightingMatrix('provided', np.eye(3))

    """

    specification: str
    matrix: Optional[Array]

    def __init__(self, specification: str = 'inverse_ztz', matrix: Optional[Any] = None) -> None:
        """Validate the specification and any provided matrix."""
        specifications = {'inverse_ztz', 'provided'}
        if specification not in specifications:
            raise ValueError(f"specification must be one of {sorted(specifications)}.")
        if specification == 'inverse_ztz' and matrix is not None:
            raise ValueError("matrix must be None when specification is 'inverse_ztz'.")
        if specification == 'provided':
            if matrix is None:
                raise exceptions.MissingComponentError("A matrix must be specified when specification is 'provided'.")
            matrix = validate_weighting_matrix(matrix)
            matrix.flags.writeable = False
        self.specification = specification
        self.matrix = matrix

    def __str__(self) -> str:
        """Format the configuration as a string."""
        if self.specification == 'provided':
            return f"Configured to use a provided {self.matrix.shape[0]} x {self.matrix.shape[1]} weighting matrix."
        return "Configured to use the inverse of ZD'ZD as the weighting matrix."

    def __eq__(self, other: Any) -> bool:
        """Compare specifications and any provided matrices."""
        if not isinstance(other, WeightingMatrix) or self.specification != other.specification:
            return False
        return self.matrix is None or np.array_equal(self.matrix, other.matrix)

    def __hash__(self) -> int:
        """Hash the specification and any provided matrix."""
        return hash((self.specification, None if self.matrix is None else self.matrix.tobytes()))

    def _build(self, ZD: Array) -> Array:
        """Build a weighting matrix that conforms to the instruments."""
        if self.specification == 'inverse_ztz':
            return compute_2sls_weights(ZD)
        if self.matrix.shape != (ZD.shape[1], ZD.shape[1]):
            raise exceptions.ShapeMismatchError(
                f"The weighting matrix is {self.matrix.shape[0]} x {self.matrix.shape[1]} but there are "
                f"{ZD.shape[1]} instruments."
            )
        return self.matrix.copy()


def validate_weighting_matrix(matrix: Any) -> Array:
    """Coerce a caller-supplied weighting matrix and verify that it is symmetric and positive definite."""
    W = np.c_[np.array(matrix, options.dtype)]
    if W.ndim != 2 or W.shape[0] != W.shape[1] or W.shape[0] == 0:
        raise exceptions.ShapeMismatchError(f"The weighting matrix must be square, not an array with shape {W.shape}.")
    if not np.isfinite(W).all():
        raise exceptions.WeightingNotPositiveDefiniteError("The matrix has non-finite elements.")
    if not precisely_identify_symmetry(W):
        raise exceptions.WeightingNotPositiveDefiniteError("The matrix is not symmetric.")
    _, successful = precisely_factorize(W)
    if not successful:
        raise exceptions.WeightingNotPositiveDefiniteError("The Cholesky factorization of the matrix failed.")
    return W
