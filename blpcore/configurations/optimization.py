"""Optimization routines for the outer loop over nonlinear parameters."""

import functools
from typing import Any, Callable, Iterable, Optional, Tuple, Union

import numpy as np
import scipy.optimize

from .. import options
from ..utilities.basics import Array, Options, SolverStats, StringRepresentation, format_options


# define the objective function type
ObjectiveFunction = Callable[[Array, int, int], float]


class Optimization(StringRepresentation):
    r"""Configuration for minimizing the GMM objective over the unfixed elements of :math:`\Sigma`.

    Every objective evaluation solves the contraction in each market, recovers :math:`\beta` with 2SLS, and evaluates
    the GMM objective. No analytic gradient is available, so gradient-based routines approximate it with finite
    differences.

    Parameters
    ----------
    method : `str or callable`
        The optimization routine that will be used. The following routines support parameter bounds:

            - ``'l-bfgs-b'`` - Uses the :func:`scipy.optimize.minimize` L-BFGS-B routine.

            - ``'nelder-mead'`` - Uses the :func:`scipy.optimize.minimize` Nelder-Mead routine.

            - ``'powell'`` - Uses the :func:`scipy.optimize.minimize` modified Powell routine.

            - ``'tnc'`` - Uses the :func:`scipy.optimize.minimize` truncated Newton routine.

            - ``'slsqp'`` - Uses the :func:`scipy.optimize.minimize` Sequential Least SQuares Programming routine.

            - ``'trust-constr'`` - Uses the :func:`scipy.optimize.minimize` trust-region routine.

        The following routines do not support bounds:

            - ``'bfgs'`` - Uses the :func:`scipy.optimize.minimize` BFGS routine.

            - ``'cg'`` - Uses the :func:`scipy.optimize.minimize` conjugate gradient routine.

        The following trivial routine can be used to evaluate an objective at specific parameter values:

            - ``'return'`` - Assume that the initial parameter values are the optimal ones.

        Also accepted is a custom callable method with the following form::

            method(initial, bounds, objective_function, iteration_callback, **options) -> (final, converged)

        where ``initial`` is an array of initial parameter values, ``bounds`` is a list of ``(min, max)`` pairs for
        each element in ``initial`` or ``None``, ``objective_function`` maps parameter values to a float,
        ``iteration_callback`` should be called after each major iteration, and ``converged`` is a flag for whether the
        routine converged.

    method_options : `dict, optional`
        Options for the optimization routine. For any non-custom ``method`` other than ``'return'``, these options will
        be passed to ``options`` in :func:`scipy.optimize.minimize`.
    universal_display : `bool, optional`
        Whether to format optimization progress such that the display looks the same for all routines. By default, the
        universal display is used and SciPy's own displays are turned off.

    Examples
    --------
    .. code-block:: python

        optimization = blpcore.Optimization('nelder-mead', {'xatol': 1e-6, 'fatol': 1e-10})

    """

    _optimizer: functools.partial
    _description: str
    _method_options: Options
    _supports_bounds: bool
    _universal_display: bool

    def __init__(
            self, method: Union[str, Callable], method_options: Optional[Options] = None,
            universal_display: bool = True) -> None:
        """Validate the method and set default options."""
        unbounded_methods = {
            'bfgs': (functools.partial(scipy_optimizer), "the BFGS algorithm implemented in SciPy"),
            'cg': (functools.partial(scipy_optimizer), "the conjugate gradient algorithm implemented in SciPy")
        }
        bounded_methods = {
            'l-bfgs-b': (functools.partial(scipy_optimizer), "the L-BFGS-B algorithm implemented in SciPy"),
            'nelder-mead': (functools.partial(scipy_optimizer), "the Nelder-Mead algorithm implemented in SciPy"),
            'powell': (functools.partial(scipy_optimizer), "the modified Powell algorithm implemented in SciPy"),
            'tnc': (functools.partial(scipy_optimizer), "the truncated Newton algorithm implemented in SciPy"),
            'slsqp': (functools.partial(scipy_optimizer), "Sequential Least SQuares Programming implemented in SciPy"),
            'trust-constr': (functools.partial(scipy_optimizer), "trust-region routine implemented in SciPy"),
            'return': (functools.partial(return_optimizer), "a trivial routine that returns the initial parameters")
        }
        methods = {**unbounded_methods, **bounded_methods}

        # validate the configuration
        if method not in methods and not callable(method):
            raise ValueError(f"method must be one of {list(methods)} or a callable object.")
        if method_options is not None and not isinstance(method_options, dict):
            raise ValueError("method_options must be None or a dict.")

        # initialize class attributes
        self._universal_display = universal_display
        self._supports_bounds = callable(method) or method in bounded_methods

        # options are by default empty
        if method_options is None:
            method_options = {}

        # options are simply passed along to custom methods
        if callable(method):
            self._optimizer = functools.partial(method)
            self._description = "a custom method"
            self._method_options = method_options
            return

        # identify the non-custom optimizer and set default options
        self._method_options: Options = {}
        self._optimizer, self._description = methods[method]
        if method != 'return':
            self._optimizer = functools.partial(self._optimizer, method=method)
            if not universal_display and options.verbose:
                self._method_options['disp'] = True

        # update the default options
        self._method_options.update(method_options)
        if method == 'return' and self._method_options:
            raise ValueError("The return method does not support any options.")

    def __str__(self) -> str:
        """Format the configuration as a string."""
        return f"Configured to optimize using {self._description} and options {format_options(self._method_options)}."

    def _optimize(
            self, initial: Array, bounds: Optional[Iterable[Tuple[float, float]]],
            objective_function: ObjectiveFunction) -> Tuple[Array, SolverStats]:
        """Optimize parameters to minimize a scalar objective."""

        # initialize counters
        iterations = evaluations = 0

        def iteration_callback() -> None:
            """Count the number of major iterations."""
            nonlocal iterations
            iterations += 1

        def objective_wrapper(raw_values: Any) -> float:
            """Normalize arrays so they work with all types of routines. Also count the total number of objective
            evaluations.
            """
            nonlocal evaluations
            evaluations += 1
            values = np.asarray(raw_values).reshape(initial.shape).astype(initial.dtype, copy=False)
            return float(objective_function(values, iterations, evaluations))

        # normalize values
        raw_initial = initial.astype(np.float64, copy=False).flatten()
        raw_bounds = None if bounds is None or not self._supports_bounds else [(float(l), float(u)) for l, u in bounds]

        # solve the problem and convert the raw final values to the same data type and shape as the initial values
        raw_final, converged = self._optimizer(
            raw_initial, raw_bounds, objective_wrapper, iteration_callback, **self._method_options
        )
        final = np.asarray(raw_final).astype(initial.dtype, copy=False).reshape(initial.shape)
        return final, SolverStats(converged, iterations, evaluations)


def return_optimizer(initial_values: Array, *_: Any, **__: Any) -> Tuple[Array, bool]:
    """Assume the initial values are the optimal ones."""
    success = True
    return initial_values, success


def scipy_optimizer(
        initial_values: Array, bounds: Optional[Iterable[Tuple[float, float]]],
        objective_function: Callable[[Array], float], iteration_callback: Callable[[], None], method: str,
        **scipy_options: Any) -> Tuple[Array, bool]:
    """Optimize with a SciPy method, caching objective values so that repeated requests at the same parameters do not
    solve the contraction again.
    """
    cache: Optional[Tuple[Array, float]] = None

    def objective_wrapper(values: Array) -> float:
        """Return a possibly cached objective value."""
        nonlocal cache
        if cache is None or not np.array_equal(values, cache[0]):
            cache = (values.copy(), objective_function(values))
        return cache[1]

    # trust-constr requires a Hessian approximation when there is no analytic gradient
    hess = scipy.optimize.BFGS() if method == 'trust-constr' else None

    # call the SciPy function
    callback = lambda *_: iteration_callback()
    results = scipy.optimize.minimize(
        objective_wrapper, initial_values, method=method, hess=hess, bounds=bounds, callback=callback,
        options=scipy_options
    )
    return results.x, results.success
