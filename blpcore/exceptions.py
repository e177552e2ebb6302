"""BLP-specific exceptions.

Validation errors are raised eagerly when data, draws, parameters, or weighting matrices are constructed, and they also
subclass :class:`ValueError`. Numerical problems encountered during estimation, such as a fixed point that fails to
converge, are instead collected and either raised together as :class:`MultipleErrors` or reported alongside results,
depending on the ``error_behavior`` of :class:`EstimationOptions`.

"""

import collections
from typing import Any, Hashable, List, Sequence

from .utilities.basics import Array, DetailedError, Error, InversionError, NumericalError, format_number


class MultipleErrors(Error):
    """Multiple errors that occurred around the same time."""

    _errors: List[Error]

    def __new__(cls, errors: Sequence[Error]) -> Any:
        """Defer to the class of a singular distinct error."""
        distinct = list(collections.OrderedDict.fromkeys(errors))
        if len(distinct) == 1:
            return distinct[0]
        return super().__new__(cls)

    def __init__(self, errors: Sequence[Error]) -> None:
        """Store distinct errors."""
        super().__init__(errors)
        self._errors = list(collections.OrderedDict.fromkeys(errors))

    def __str__(self) -> str:
        """Combine all the error messages."""
        return "\n".join(str(e) for e in self._errors)

    @property
    def errors(self) -> List[Error]:
        """Distinct errors in the order in which they were encountered."""
        return list(self._errors)


class ShapeMismatchError(DetailedError, ValueError):
    """A matrix or vector does not have the number of rows or columns implied by the rest of the data."""


class NonpositiveShareError(DetailedError, ValueError):
    """Market shares must be finite and strictly between zero and one."""


class NonpositiveOutsideShareError(NonpositiveShareError):
    """Inside shares in a market must sum to less than one so that the outside option has a positive share."""


class NonContiguousMarketError(DetailedError, ValueError):
    """Rows that belong to the same market must be stored as a single contiguous block."""


class InvalidDrawCountError(DetailedError, ValueError):
    """The number of simulation draws and the number of random coefficient dimensions must both be positive integers."""


class InvalidWeightsError(DetailedError, ValueError):
    """Integration weights must be finite, positive, and sum to one within options.weights_tol."""


class InvalidParameterShapeError(DetailedError, ValueError):
    r"""The nonlinear parameter matrix :math:`\Sigma` must be square with as many rows as :math:`X_2` has columns."""


class WeightingNotPositiveDefiniteError(DetailedError, ValueError):
    r"""The weighting matrix :math:`W` must be symmetric and positive definite.

    This problem can sometimes be mitigated by symmetrizing a custom matrix, for example with ``(W + W.T) / 2``, or by
    removing instruments that are collinear with others.

    """


class MissingComponentError(DetailedError, ValueError):
    """A component required by the rest of the configuration was not specified."""


class SingularMomentError(InversionError):
    r"""Failed to factorize a moment cross-product matrix such as :math:`Z_D'Z_D` or :math:`X_1'Z_D W Z_D'X_1`.

    This problem is usually due to instruments or linear characteristics that are collinear with others or that have no
    variation. It can sometimes be mitigated by removing redundant columns or rescaling data.

    """

    _name: str

    def __init__(self, matrix: Array, name: str) -> None:
        """Store the name of the matrix that could not be factorized."""
        super().__init__(matrix)
        self._name = name

    def __str__(self) -> str:
        """Supplement the error with the name of the matrix."""
        return f"{super().__str__()} Matrix: {self._name}."


class DeltaConvergenceError(Error):
    r"""The fixed point computation of :math:`\delta` failed to converge.

    This problem can sometimes be mitigated by increasing the maximum number of fixed point iterations, increasing the
    fixed point tolerance, decreasing damping, choosing more reasonable values of :math:`\Sigma`, or rescaling data.

    """

    market_id: Hashable
    iterations: int
    gap: float

    def __init__(self, market_id: Hashable, iterations: int, gap: float) -> None:
        """Store diagnostics about the failed contraction."""
        super().__init__(market_id, iterations, gap)
        self.market_id = market_id
        self.iterations = iterations
        self.gap = gap

    def __str__(self) -> str:
        """Supplement the error with the diagnostics."""
        return (
            f"{super().__str__()} Market: {self.market_id}. Iterations: {self.iterations}. "
            f"Final gap: {format_number(self.gap).strip()}."
        )


class DeltaNumericalError(NumericalError):
    r"""Encountered a numerical error when computing :math:`\delta`.

    This problem is often due to overflow from large values of :math:`\Sigma` or :math:`X_2`, and can sometimes be
    mitigated by choosing smaller parameter values, setting more conservative bounds, rescaling data, or using damping.

    """


class SharesNumericalError(NumericalError):
    """Encountered a numerical error when computing predicted market shares."""


class SigmaConvergenceError(Error):
    r"""The optimization routine over :math:`\Sigma` failed to converge.

    This problem can sometimes be mitigated by choosing more reasonable initial parameter values, setting more
    conservative bounds, or configuring other optimization settings.

    """
