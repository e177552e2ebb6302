"""General functionality."""

from .statistics import IV, compute_2sls_weights, compute_gmm_weights
from .basics import parallel, generate_items, extract_matrix, output, format_seconds, format_number
from .algebra import precisely_factorize, precisely_solve, precisely_invert
