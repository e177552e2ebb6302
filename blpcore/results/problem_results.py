"""Structured results of a single GMM step of a BLP problem."""

import copy
import time
from typing import Dict, Hashable, List, Optional, Sequence, TYPE_CHECKING

import numpy as np

from ..configurations.estimation import EstimationOptions
from ..configurations.iteration import ContractionSummary
from ..parameters import Parameters
from ..utilities.basics import (
    Array, Error, SolverStats, StringRepresentation, format_number, format_seconds, format_table
)


# only import objects that create import cycles when checking types
if TYPE_CHECKING:
    from ..economies.problem import Problem, Progress  # noqa


class ProblemResults(StringRepresentation):
    r"""Results of evaluating or minimizing the GMM objective in a GMM step.

    Results own fresh copies of every array, so they are never changed by later calls to :meth:`Problem.estimate` or
    :meth:`Problem.solve`.

    Attributes
    ----------
    problem : `Problem`
        :class:`Problem` that created these results.
    last_results : `ProblemResults`
        :class:`ProblemResults` from the last GMM step, which is ``None`` for the first step.
    step : `int`
        GMM step that created these results.
    options : `EstimationOptions`
        Configuration used to create these results.
    total_time : `float`
        Number of seconds it took to create these results, including any optimization.
    optimization_time : `float`
        Number of seconds it took the optimization routine to finish.
    converged : `bool`
        Whether the optimization routine converged. This is always ``True`` when :math:`\Sigma` was not optimized.
    optimization_stats : `SolverStats`
        Convergence flag and counts from the optimization routine.
    optimization_iterations : `int`
        Number of major iterations completed by the optimization routine.
    objective_evaluations : `int`
        Number of GMM objective evaluations, including the final one at the reported :math:`\Sigma`.
    contraction_summaries : `dict`
        Mapping from market IDs to :class:`ContractionSummary` instances from the contraction at the reported
        :math:`\Sigma`, in the order in which markets appear.
    contraction : `ContractionSummary`
        The contraction summaries aggregated across markets.
    fp_converged : `ndarray`
        Flags for convergence of the contraction in each market at the reported :math:`\Sigma`.
    fp_iterations : `ndarray`
        Number of contraction iterations in each market, summed across every objective evaluation in this step.
    contraction_evaluations : `ndarray`
        Number of contraction evaluations in each market, summed across every objective evaluation in this step.
    clipped_shares : `ndarray`
        Number of times predicted shares were raised to the share floor in each market at the reported :math:`\Sigma`.
    cumulative_total_time : `float`
        Sum of :attr:`ProblemResults.total_time` for this step and all prior steps.
    cumulative_objective_evaluations : `int`
        Sum of :attr:`ProblemResults.objective_evaluations` for this step and all prior steps.
    cumulative_fp_iterations : `ndarray`
        Sum of :attr:`ProblemResults.fp_iterations` for this step and all prior steps.
    cumulative_contraction_evaluations : `ndarray`
        Sum of :attr:`ProblemResults.contraction_evaluations` for this step and all prior steps.
    theta : `ndarray`
        Values of the unfixed elements of :math:`\Sigma`.
    sigma : `ndarray`
        Nonlinear parameters, :math:`\Sigma`.
    beta : `ndarray`
        Linear parameters, :math:`\hat{\beta}`.
    delta : `ndarray`
        Mean utilities, :math:`\delta`.
    xi : `ndarray`
        Structural residuals, :math:`\xi`.
    predicted_shares : `ndarray`
        Shares predicted at :math:`\delta` and :math:`\Sigma`, which match observed shares when the contraction
        converged.
    gmm_value : `float`
        The GMM objective value, :math:`q`.
    moments : `ndarray`
        Moment conditions, :math:`\bar{g} = Z_D'\xi`.
    W : `ndarray`
        Weighting matrix, :math:`W`, used to compute these results.
    updated_W : `ndarray`
        Weighting matrix updated according to :math:`\xi`, which is used in the next GMM step.
    errors : `list`
        Problems that were encountered during this step, such as contractions that failed to converge.
    sigma_labels : `list of str`
        Variable labels for rows and columns of :math:`\Sigma`.
    beta_labels : `list of str`
        Variable labels for :math:`\beta`.
    unique_market_ids : `ndarray`
        Market IDs in the order in which markets appear.

    """

    problem: 'Problem'
    last_results: Optional['ProblemResults']
    step: int
    options: EstimationOptions
    total_time: float
    optimization_time: float
    converged: bool
    optimization_stats: SolverStats
    optimization_iterations: int
    objective_evaluations: int
    contraction_summaries: Dict[Hashable, ContractionSummary]
    contraction: ContractionSummary
    fp_converged: Array
    fp_iterations: Array
    contraction_evaluations: Array
    clipped_shares: Array
    cumulative_total_time: float
    cumulative_objective_evaluations: int
    cumulative_fp_iterations: Array
    cumulative_contraction_evaluations: Array
    theta: Array
    sigma: Array
    beta: Array
    delta: Array
    xi: Array
    predicted_shares: Array
    gmm_value: float
    moments: Array
    W: Array
    updated_W: Array
    errors: List[Error]
    sigma_labels: List[str]
    beta_labels: List[str]
    unique_market_ids: Array
    _parameters: Parameters

    def __init__(
            self, progress: 'Progress', last_results: Optional['ProblemResults'], step: int, step_start_time: float,
            optimization_start_time: float, optimization_end_time: float, optimization_stats: SolverStats,
            iteration_stats: Sequence[Dict[Hashable, ContractionSummary]], predicted_shares: Array, updated_W: Array,
            errors: List[Error], options: EstimationOptions) -> None:
        """Compute cumulative progress statistics and copy arrays from the progress at the final parameters."""
        self.problem = progress.problem
        self.last_results = last_results
        self.step = step
        self.options = options
        self._parameters = progress.parameters

        # copy estimates so that nothing is shared with the problem or with other results
        self.theta = progress.theta.copy()
        self.sigma = progress.sigma.copy()
        self.beta = progress.beta.copy()
        self.delta = progress.delta.copy()
        self.xi = progress.xi.copy()
        self.moments = progress.moments.copy()
        self.gmm_value = float(progress.objective)
        self.W = progress.W.copy()
        self.updated_W = updated_W.copy()
        self.predicted_shares = predicted_shares.copy()
        self.errors = list(errors)

        # store labels
        self.sigma_labels = list(self._parameters.sigma_labels)
        self.beta_labels = list(self.problem.products.X1_labels)
        self.unique_market_ids = self.problem.unique_market_ids.copy()

        # summarize the contraction at the final parameters
        self.contraction_summaries = {t: copy.copy(s) for t, s in progress.summaries.items()}
        self.contraction = ContractionSummary.combine(self.contraction_summaries.values())
        summaries = [self.contraction_summaries[t] for t in self.unique_market_ids]
        self.fp_converged = np.array([s.converged for s in summaries], np.bool_)
        self.clipped_shares = np.array([s.clipped_shares for s in summaries], np.int64)

        # initialize counts, times, and convergence
        self.total_time = self.cumulative_total_time = time.time() - step_start_time
        self.optimization_time = optimization_end_time - optimization_start_time
        self.optimization_stats = optimization_stats
        self.converged = optimization_stats.converged
        self.optimization_iterations = optimization_stats.iterations
        self.objective_evaluations = self.cumulative_objective_evaluations = optimization_stats.evaluations
        self.fp_iterations = self.cumulative_fp_iterations = np.array(
            [sum(m[t].iterations for m in iteration_stats if t in m) for t in self.unique_market_ids], np.int64
        )
        self.contraction_evaluations = self.cumulative_contraction_evaluations = np.array(
            [sum(m[t].evaluations for m in iteration_stats if t in m) for t in self.unique_market_ids], np.int64
        )

        # add to cumulative values
        if last_results is not None:
            self.cumulative_total_time += last_results.cumulative_total_time
            self.cumulative_objective_evaluations += last_results.cumulative_objective_evaluations
            self.cumulative_fp_iterations = self.cumulative_fp_iterations + last_results.cumulative_fp_iterations
            self.cumulative_contraction_evaluations = (
                self.cumulative_contraction_evaluations + last_results.cumulative_contraction_evaluations
            )

    def __str__(self) -> str:
        """Format problem results as a string."""
        sections = [self._format_summary(), self._format_cumulative_statistics()]
        if self.problem.K2 > 0:
            sections.append(self._parameters.format("Estimates", self.sigma))
        beta_values = [format_number(x) for x in self.beta.flat]
        sections.append(format_table(self.beta_labels, beta_values, title="Beta Estimates"))
        return "\n\n".join(sections)

    @property
    def objective(self) -> float:
        """The GMM objective value, which is the same as :attr:`ProblemResults.gmm_value`."""
        return self.gmm_value

    def _format_summary(self) -> str:
        """Format a summary table of problem results."""
        header = [("GMM", "Step"), ("Objective", "Value"), ("Contraction", "Converged")]
        values = [self.step, format_number(self.gmm_value), "Yes" if self.contraction.converged else "No"]
        if self.clipped_shares.sum() > 0:
            header.append(("Clipped", "Shares"))
            values.append(self.clipped_shares.sum())
        if self.errors:
            header.append(("Reported", "Errors"))
            values.append(len(self.errors))
        return format_table(header, values, title="Problem Results Summary")

    def _format_cumulative_statistics(self) -> str:
        """Format a table of cumulative statistics."""
        header = [("Computation", "Time")]
        values = [format_seconds(self.cumulative_total_time)]

        # add optimization convergence and iterations
        if self._parameters.P > 0:
            header.extend([("Optimizer", "Converged"), ("Optimization", "Iterations")])
            values.extend(["Yes" if self.converged else "No", str(self.optimization_iterations)])

        # add evaluations and iterations
        header.append(("Objective", "Evaluations"))
        values.append(str(self.cumulative_objective_evaluations))
        if np.any(self.cumulative_contraction_evaluations > 0):
            header.extend([("Fixed Point", "Iterations"), ("Contraction", "Evaluations")])
            values.extend([
                str(self.cumulative_fp_iterations.sum()),
                str(self.cumulative_contraction_evaluations.sum())
            ])
        return format_table(header, values, title="Cumulative Statistics")
