"""Public-facing objects."""

from . import exceptions, options
from .configurations.estimation import EstimationOptions, ProblemOptions
from .configurations.formulation import Formulation
from .configurations.integration import SimulationDraws
from .configurations.iteration import ContractionOptions, ContractionSummary
from .configurations.optimization import Optimization
from .configurations.weighting import WeightingMatrix
from .construction import build_id_data, build_product_data
from .demand import compute_logit_delta, predict_shares, solve_delta
from .economies.problem import Problem
from .estimation import compute_gmm_objective, compute_linear_parameters, compute_updated_weighting_matrix
from .primitives import MarketPartition, ProductData
from .results.problem_results import ProblemResults
from .utilities.basics import parallel
from .version import __version__

__all__ = [
    'exceptions', 'options', 'EstimationOptions', 'ProblemOptions', 'Formulation', 'SimulationDraws',
    'ContractionOptions', 'ContractionSummary', 'Optimization', 'WeightingMatrix', 'build_id_data',
    'build_product_data', 'compute_logit_delta', 'predict_shares', 'solve_delta', 'Problem', 'compute_gmm_objective',
    'compute_linear_parameters', 'compute_updated_weighting_matrix', 'MarketPartition', 'ProductData',
    'ProblemResults', 'parallel', '__version__'
]
