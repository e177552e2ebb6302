"""Configuration classes."""

from .estimation import EstimationOptions, ProblemOptions
from .formulation import Formulation
from .integration import SimulationDraws
from .iteration import ContractionOptions, ContractionSummary
from .optimization import Optimization
from .weighting import WeightingMatrix
