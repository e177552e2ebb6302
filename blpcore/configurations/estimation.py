"""Configuration of a single estimation call."""

from typing import Any, Optional

from .iteration import ContractionOptions
from .optimization import Optimization
from .weighting import WeightingMatrix
from ..utilities.basics import Options, StringRepresentation, format_table


class EstimationOptions(StringRepresentation):
    r"""Configuration for evaluating and minimizing the GMM objective.

    Instances are immutable values: they are validated once and then passed to :meth:`Problem.estimate` or
    :meth:`Problem.solve`. Use :meth:`EstimationOptions.replace` to create a modified copy.

    Parameters
    ----------
    contraction : `ContractionOptions, optional`
        Configuration for the contraction that computes :math:`\delta` in each market. By default,
        ``ContractionOptions()`` is used.
    weighting : `WeightingMatrix, optional`
        Configuration for the weighting matrix used in the first GMM step. By default, ``WeightingMatrix()`` is used,
        which is :math:`W = (Z_D'Z_D)^{-1}`.
    optimization : `Optimization, optional`
        Configuration for the outer loop over :math:`\Sigma` in :meth:`Problem.solve`. By default,
        ``Optimization('l-bfgs-b')`` is used. This is ignored by :meth:`Problem.estimate`, which evaluates the
        objective at a given :math:`\Sigma`.
    method : `str, optional`
        The estimation routine. One of the following:

            - ``'1s'`` - One-step GMM, which is the default.

            - ``'2s'`` - Two-step GMM. After the first step, :math:`W` is updated to the inverse of the estimated
              covariance of moments at the first-step residuals and the objective is evaluated or minimized again.

    W_type : `str, optional`
        How to estimate the covariance of moments when updating :math:`W`. One of ``'robust'`` (the default), which is
        robust to heteroscedasticity, or ``'unadjusted'``, which assumes homoskedasticity.
    center_moments : `bool, optional`
        Whether to center each moment when estimating the robust covariance of moments. By default, moments are
        centered.
    error_behavior : `str, optional`
        How to handle problems during estimation, such as a contraction that fails to converge. One of the following:

            - ``'report'`` - Output the problems and attach them to :attr:`ProblemResults.errors`, which is the default.
              Results are still returned, and non-convergence is flagged in each :class:`ContractionSummary`.

            - ``'raise'`` - Raise the problems as an exception.

        Invalid inputs and singular moment matrices always raise an exception.

    Examples
    --------
    .. code-block:: python

        options = blpcore.EstimationOptions(method='2s', contraction=blpcore.ContractionOptions(tolerance=1e-14))

    """

    contraction: ContractionOptions
    weighting: WeightingMatrix
    optimization: Optimization
    method: str
    W_type: str
    center_moments: bool
    error_behavior: str

    def __init__(
            self, contraction: Optional[ContractionOptions] = None, weighting: Optional[WeightingMatrix] = None,
            optimization: Optional[Optimization] = None, method: str = '1s', W_type: str = 'robust',
            center_moments: bool = True, error_behavior: str = 'report') -> None:
        """Validate the configuration."""
        if contraction is None:
            contraction = ContractionOptions()
        if weighting is None:
            weighting = WeightingMatrix()
        if optimization is None:
            optimization = Optimization('l-bfgs-b')
        if not isinstance(contraction, ContractionOptions):
            raise TypeError("contraction must be None or a ContractionOptions instance.")
        if not isinstance(weighting, WeightingMatrix):
            raise TypeError("weighting must be None or a WeightingMatrix instance.")
        if not isinstance(optimization, Optimization):
            raise TypeError("optimization must be None or an Optimization instance.")
        if method not in {'1s', '2s'}:
            raise ValueError("method must be '1s' or '2s'.")
        if W_type not in {'robust', 'unadjusted'}:
            raise ValueError("W_type must be 'robust' or 'unadjusted'.")
        if not isinstance(center_moments, bool):
            raise TypeError("center_moments must be a bool.")
        if error_behavior not in {'report', 'raise'}:
            raise ValueError("error_behavior must be 'report' or 'raise'.")

        # store the configuration
        self.contraction = contraction
        self.weighting = weighting
        self.optimization = optimization
        self.method = method
        self.W_type = W_type
        self.center_moments = center_moments
        self.error_behavior = error_behavior

    def __str__(self) -> str:
        """Format the configuration as a string."""
        header = ["Method", "W Type", "Centered Moments", "Error Behavior", "Weighting"]
        values = [
            self.method.upper(), self.W_type, self.center_moments, self.error_behavior, self.weighting.specification
        ]
        return format_table(header, values, title="Estimation Options")

    def replace(self, **changes: Any) -> 'EstimationOptions':
        """Create a copy of the configuration with some options replaced."""
        arguments: Options = {
            'contraction': self.contraction,
            'weighting': self.weighting,
            'optimization': self.optimization,
            'method': self.method,
            'W_type': self.W_type,
            'center_moments': self.center_moments,
            'error_behavior': self.error_behavior
        }
        unknown = set(changes) - set(arguments)
        if unknown:
            raise TypeError(f"Unknown estimation options: {sorted(unknown)}.")
        arguments.update(changes)
        return EstimationOptions(**arguments)


ProblemOptions = EstimationOptions
