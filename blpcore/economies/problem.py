"""Economy-level BLP problem functionality."""

import time
from typing import Any, Dict, Hashable, List, Optional, Tuple

import numpy as np

from .economy import Economy
from .. import exceptions, options
from ..configurations.estimation import EstimationOptions
from ..configurations.integration import SimulationDraws
from ..configurations.iteration import ContractionOptions, ContractionSummary
from ..configurations.optimization import Optimization
from ..demand import _predict_shares, solve_delta
from ..estimation import compute_updated_weighting_matrix
from ..parameters import Parameters
from ..primitives import ProductData
from ..results.problem_results import ProblemResults
from ..utilities.basics import Array, Error, SolverStats, format_number, format_seconds, format_table, output
from ..utilities.statistics import IV, compute_gmm_moments_sum


class Problem(Economy):
    r"""A BLP problem.

    This class is initialized with validated product data and, when there are nonlinear characteristics, simulation
    draws. Neither is ever changed, so a single problem can be estimated any number of times with different parameters
    and configurations, possibly at the same time.

    Parameters
    ----------
    product_data : `ProductData`
        Validated product data, which includes market IDs, shares, :math:`X_1`, :math:`X_2`, and :math:`Z_D`.
    draws : `SimulationDraws, optional`
        Integration nodes and weights used to simulate shares. These are required when :math:`X_2` has columns, in
        which case the number of dimensions must equal the number of columns in :math:`X_2`.

    Attributes
    ----------
    products : `ProductData`
        The validated product data.
    draws : `SimulationDraws`
        The simulation draws, which are ``None`` when there are no nonlinear characteristics.
    unique_market_ids : `ndarray`
        Unique market IDs in the order in which they appear.
    N : `int`
        Number of products across all markets, :math:`N`.
    T : `int`
        Number of markets, :math:`T`.
    K1 : `int`
        Number of linear product characteristics, :math:`K_1`.
    K2 : `int`
        Number of nonlinear product characteristics, :math:`K_2`.
    MD : `int`
        Number of demand-side instruments, :math:`M_D`.
    I : `int`
        Number of simulation draws, :math:`I`.

    Examples
    --------
    .. code-block:: python

        problem = blpcore.Problem(products, blpcore.SimulationDraws.standard_normal(500, products.K2, seed=0))
        results = problem.estimate(sigma=np.eye(products.K2))

    """

    def __init__(self, product_data: ProductData, draws: Optional[SimulationDraws] = None) -> None:
        """Validate and store the data."""
        output("Initializing the problem ...")
        start_time = time.time()
        super().__init__(product_data, draws)
        output(f"Initialized the problem after {format_seconds(time.time() - start_time)}.")
        output("")
        output(self)

    def estimate(self, sigma: Optional[Any] = None, options: Optional[EstimationOptions] = None) -> ProblemResults:
        r"""Evaluate the GMM objective at fixed nonlinear parameters.

        The contraction is solved market by market to recover :math:`\delta` at the given :math:`\Sigma`, linear
        parameters are concentrated out with two-stage least squares under the configured weighting matrix, and the GMM
        objective is evaluated. With two-step GMM, the weighting matrix is then updated according to the first-step
        residuals and the same :math:`\delta` is used to recompute :math:`\hat{\beta}`, :math:`\xi`, and the objective.

        Calls never change the problem, and identical calls give identical results.

        Parameters
        ----------
        sigma : `array-like, optional`
            The :math:`K_2 \times K_2` matrix of nonlinear parameters, :math:`\Sigma`. By default, all elements are
            zero, which gives the simple logit model.
        options : `EstimationOptions, optional`
            Configuration for the contraction, the weighting matrix, the number of GMM steps, and how problems are
            handled. By default, ``EstimationOptions()`` is used.

        Returns
        -------
        `ProblemResults`
            Results of the last GMM step. Results from the first step of two-step GMM are available as
            :attr:`ProblemResults.last_results`.

        """
        options = self._validate_options(options)
        parameters = Parameters(sigma, self.K2, sigma_labels=self.products.X2_labels)
        output("Estimating the problem ...")
        return self._run(parameters, options, optimize=False)

    def solve(
            self, sigma: Optional[Any] = None, sigma_bounds: Optional[Tuple[Any, Any]] = None,
            options: Optional[EstimationOptions] = None) -> ProblemResults:
        r"""Minimize the GMM objective over the unfixed elements of :math:`\Sigma`.

        In each GMM step, nonzero elements of :math:`\Sigma` that are not fixed by equal bounds are optimized with
        ``options.optimization``. Each objective evaluation solves the contraction, starting from the :math:`\delta`
        of the last evaluation at which the contraction converged in every market, and concentrates out
        :math:`\beta`. With two-step GMM, the weighting matrix is updated between steps and the second step starts
        from the first step's estimates. Nothing is carried over between calls.

        Parameters
        ----------
        sigma : `array-like, optional`
            Initial values of the :math:`K_2 \times K_2` matrix of nonlinear parameters, :math:`\Sigma`. Elements that
            are zero are fixed at zero. By default, all elements are zero and there is nothing to optimize.
        sigma_bounds : `tuple, optional`
            Configuration for :math:`\Sigma` bounds of the form ``(lb, ub)``, in which both ``lb`` and ``ub`` are of the
            same size as ``sigma``. Null values are replaced by infinite bounds, and elements with equal bounds are
            fixed. By default, unfixed elements are unbounded.
        options : `EstimationOptions, optional`
            Configuration for the contraction, the weighting matrix, the optimization routine, the number of GMM steps,
            and how problems are handled. By default, ``EstimationOptions()`` is used.

        Returns
        -------
        `ProblemResults`
            Results of the last GMM step.

        """
        options = self._validate_options(options)
        parameters = Parameters(sigma, self.K2, sigma_bounds, self.products.X2_labels)
        output("Solving the problem ...")
        return self._run(parameters, options, optimize=True)

    @staticmethod
    def _validate_options(estimation_options: Optional[EstimationOptions]) -> EstimationOptions:
        """Validate the estimation configuration, which is by default the standard one."""
        if estimation_options is None:
            return EstimationOptions()
        if not isinstance(estimation_options, EstimationOptions):
            raise TypeError("options must be None or an EstimationOptions instance.")
        return estimation_options

    def _run(self, parameters: Parameters, estimation_options: EstimationOptions, optimize: bool) -> ProblemResults:
        """Iterate over GMM steps, optionally optimizing over theta in each one, and return results from the last
        step.
        """
        output("")
        output(estimation_options)
        if self.K2 > 0:
            output("")
            output(parameters.format("Initial Values"))
        output("")

        # the first weighting matrix comes from its configuration
        W = estimation_options.weighting._build(self.products.ZD)
        optimization = estimation_options.optimization
        optimize = optimize and parameters.P > 0
        theta = parameters.compress()
        theta_bounds = parameters.compress_bounds()

        # iterate over each GMM step
        step = 1
        step_start_time = time.time()
        last_results: Optional[ProblemResults] = None
        last_progress: Optional[Progress] = None
        delta: Optional[Array] = None
        while True:
            iv = IV(self.products.X1, self.products.ZD, W)
            iteration_stats: List[Dict[Hashable, ContractionSummary]] = []
            errors: List[Error] = []

            # optimize theta if there are parameters to optimize
            optimization_stats = SolverStats()
            optimization_start_time = optimization_end_time = time.time()
            if optimize:
                smallest_objective = np.inf

                def wrapper(new_theta: Array, iterations: int, evaluations: int) -> float:
                    """Compute and output progress associated with a single objective evaluation."""
                    nonlocal delta, smallest_objective
                    progress_start_time = time.time()
                    progress = self._compute_progress(
                        parameters, new_theta, iv, W, estimation_options.contraction, delta
                    )
                    iteration_stats.append(progress.summaries)
                    if progress.contraction.converged:
                        delta = progress.delta
                    formatted_progress = progress.format(
                        optimization, step, iterations, evaluations, time.time() - progress_start_time,
                        smallest_objective
                    )
                    if formatted_progress:
                        output(formatted_progress)
                    smallest_objective = min(smallest_objective, progress.objective)
                    return progress.objective

                output("Starting optimization ...")
                output("")
                theta, optimization_stats = optimization._optimize(theta, theta_bounds, wrapper)
                optimization_end_time = time.time()
                status = "completed" if optimization_stats.converged else "failed"
                if not optimization_stats.converged:
                    errors.append(exceptions.SigmaConvergenceError())
                output("")
                optimization_time = optimization_end_time - optimization_start_time
                output(f"Optimization {status} after {format_seconds(optimization_time)}.")

            # compute progress at the final theta, reusing the last contraction when theta has not changed
            last_step = estimation_options.method == '1s' or step == 2
            reused = None if optimize else last_progress
            final_progress = self._compute_progress(
                parameters, theta, iv, W, estimation_options.contraction, delta, reused
            )
            if reused is None:
                iteration_stats.append(final_progress.summaries)
            optimization_stats.evaluations += 1
            errors = final_progress.errors + errors

            # update the weighting matrix, which must succeed if it will be used by another step
            output("Updating the weighting matrix ..." if not last_step else "Computing results ...")
            updated_W, W_errors = self._compute_updated_W(final_progress.xi, estimation_options, last_step)
            errors.extend(W_errors)

            # predict shares at the final estimates
            predicted_shares, shares_errors = _predict_shares(
                final_progress.delta, final_progress.sigma, self.products.X2, self.draws, self.products.partition
            )
            errors.extend(shares_errors)

            # structure the results
            results = ProblemResults(
                final_progress, last_results, step, step_start_time, optimization_start_time, optimization_end_time,
                optimization_stats, iteration_stats, predicted_shares, updated_W, errors, estimation_options
            )
            self._handle_errors(errors, estimation_options.error_behavior)
            output(f"Computed results after {format_seconds(results.total_time - results.optimization_time)}.")

            # store the last results and return results from the final step
            output("")
            if last_step:
                output(results)
                return results
            output(results._format_summary())
            output("")
            last_results = results
            last_progress = final_progress
            if final_progress.contraction.converged:
                delta = final_progress.delta
            W = updated_W
            step += 1
            step_start_time = time.time()

    def _compute_progress(
            self, parameters: Parameters, theta: Array, iv: IV, W: Array, contraction: ContractionOptions,
            initial_delta: Optional[Array] = None, reused: Optional['Progress'] = None) -> 'Progress':
        """Compute delta, concentrate out beta, and evaluate the GMM objective at theta. If progress at the same theta
        is reused, its contraction is not solved again.
        """
        sigma = parameters.expand(theta)
        if reused is not None:
            delta, summaries, errors = reused.delta, reused.summaries, list(reused.errors)
        else:
            delta, summaries, errors = solve_delta(
                self.products.shares, sigma, self.products.X2, self.draws, self.products.partition, contraction,
                initial_delta
            )

        # concentrate out linear parameters and compute the objective
        beta, xi = iv.estimate(delta)
        moments = compute_gmm_moments_sum(xi, self.products.ZD)
        objective = float((moments.T @ W @ moments).item())
        return Progress(self, parameters, W, theta, sigma, delta, beta, xi, moments, objective, summaries, errors)

    def _compute_updated_W(
            self, xi: Array, estimation_options: EstimationOptions, last_step: bool) -> Tuple[Array, List[Error]]:
        """Update the weighting matrix. A failure is only reported when the updated matrix will not be used."""
        try:
            updated_W = compute_updated_weighting_matrix(
                xi, self.products.ZD, estimation_options.W_type, estimation_options.center_moments
            )
        except exceptions.SingularMomentError as exception:
            if not last_step:
                raise
            return np.full((self.MD, self.MD), np.nan, options.dtype), [exception]
        return updated_W, []


class Progress(object):
    """Structured information about estimation progress at a single value of theta."""

    problem: Problem
    parameters: Parameters
    W: Array
    theta: Array
    sigma: Array
    delta: Array
    beta: Array
    xi: Array
    moments: Array
    objective: float
    summaries: Dict[Hashable, ContractionSummary]
    errors: List[Error]
    contraction: ContractionSummary

    def __init__(
            self, problem: Problem, parameters: Parameters, W: Array, theta: Array, sigma: Array, delta: Array,
            beta: Array, xi: Array, moments: Array, objective: float, summaries: Dict[Hashable, ContractionSummary],
            errors: List[Error]) -> None:
        """Store progress information and aggregate contraction summaries."""
        self.problem = problem
        self.parameters = parameters
        self.W = W
        self.theta = theta
        self.sigma = sigma
        self.delta = delta
        self.beta = beta
        self.xi = xi
        self.moments = moments
        self.objective = objective
        self.summaries = summaries
        self.errors = errors
        self.contraction = ContractionSummary.combine(summaries.values())

    def format(
            self, optimization: Optimization, step: int, iterations: int, evaluations: int, progress_time: float,
            smallest_objective: float) -> str:
        """Format a universal display of optimization progress as a string. The first evaluation will include the
        progress table header. If there are any errors, information about them will be formatted as well, regardless of
        whether or not a universal display is to be used.
        """
        lines: List[str] = []

        # include information about any errors
        if self.errors:
            preamble = (
                "At least one error was encountered. As long as the optimization routine does not get stuck at values "
                "of sigma that give rise to errors, this is not necessarily a problem. If the errors persist or seem "
                "to be impacting the optimization results, consider following any of the suggestions below:"
            )
            lines.extend(["", preamble, str(exceptions.MultipleErrors(self.errors)), ""])

        # only output errors if the solver's display is being used
        if not optimization._universal_display:
            return "\n".join(lines)

        # construct the leftmost part of the table that always shows up
        header = [
            ("GMM", "Step"), ("Computation", "Time"), ("Optimization", "Iterations"), ("Objective", "Evaluations"),
            ("Fixed Point", "Iterations"), ("Contraction", "Evaluations")
        ]
        values = [
            str(step),
            format_seconds(progress_time),
            str(iterations),
            str(evaluations),
            str(sum(s.iterations for s in self.summaries.values())),
            str(self.contraction.evaluations)
        ]

        # add a count of any clipped shares
        if self.contraction.clipped_shares > 0:
            header.append(("Clipped", "Shares"))
            values.append(str(self.contraction.clipped_shares))

        # add information about the objective
        header.extend([("Objective", "Value"), ("Objective", "Improvement")])
        values.append(format_number(self.objective))
        improvement = smallest_objective - self.objective
        if np.isfinite(improvement) and improvement > 0:
            values.append(format_number(improvement))
        else:
            values.append(" " * len(format_number(improvement)))

        # add information about theta
        header.append(("", "Sigma"))
        values.append(", ".join(format_number(x) for x in self.theta))

        # add a space and an extra header every 50 evaluations
        include_header = (evaluations - 1) % 50 == 0
        if include_header and evaluations > 1:
            lines.append("")

        # format the table
        lines.append(format_table(header, values, include_border=False, include_header=include_header))
        return "\n".join(lines)
