"""Formulation of data matrices with R-style formulas."""

import re
from typing import Any, Dict, List, Mapping, Sequence, Set, Tuple, Type

import numpy as np
import patsy
import patsy.builtins
import patsy.build
import patsy.desc
import patsy.design_info
import patsy.eval
import patsy.origin

from .. import options
from ..utilities.basics import Array, StringRepresentation


# functions that can be used in formulas, which are not names of variables
FUNCTIONS = {'I': patsy.builtins.I, 'C': patsy.builtins.C, 'log': np.log, 'exp': np.exp}


class Formulation(StringRepresentation):
    r"""Configuration for designing matrices from a mapping of variable names to data.

    Formulas are parsed by the `patsy <https://patsy.readthedocs.io/en/stable/>`_ package, which supports the standard
    R-style operators ``+``, ``-``, ``*``, and ``:``. The following functions are also supported:

        - ``C`` - Mark a variable as categorical. See :func:`patsy.builtins.C`.
        - ``I`` - Encapsulate mathematical operations. See :func:`patsy.builtins.I`.
        - ``log`` - Natural logarithm function.
        - ``exp`` - Natural exponential function.

    Variables named ``prices`` are treated as endogenous. All other variables are treated as exogenous, which matters
    when exogenous characteristics are added to the instruments by :func:`build_product_data`.

    Parameters
    ----------
    formula : `str`
        R-style formula used to design a matrix. By default, an intercept is included, which can be removed with ``0``
        or ``-1``.

    Examples
    --------
    .. code-block:: python

        X1_formulation = blpcore.Formulation('1 + prices + x')
        X2_formulation = blpcore.Formulation('0 + x + I(x ** 2)')

    """

    _formula: str
    _terms: List[patsy.desc.Term]
    _names: Set[str]

    def __init__(self, formula: str) -> None:
        """Parse the formula into patsy terms and validate it as much as possible without any data."""
        if not isinstance(formula, str):
            raise TypeError("formula must be a str.")
        self._formula = formula
        self._terms = parse_terms(formula)
        if not self._terms:
            raise patsy.PatsyError("formula has no terms.", patsy.origin.Origin(formula, 0, len(formula)))
        self._names = {n for t in self._terms for n in parse_term_names(t)}

    def __reduce__(self) -> Tuple[Type['Formulation'], Tuple]:
        """Handle pickling."""
        return (self.__class__, (self._formula,))

    def __str__(self) -> str:
        """Format the terms as a string."""
        return ' + '.join('1' if t == patsy.desc.INTERCEPT else t.name() for t in self._terms)

    @property
    def names(self) -> Set[str]:
        """Names of the variables that underlie the formula."""
        return set(self._names)

    def _build_matrix(self, data: Mapping) -> Tuple[Array, List[str], List[Set[str]]]:
        """Convert a mapping from variable names to arrays into the designed matrix, labels for its columns, and the
        names of variables that underlie each column.
        """

        # normalize the data
        data_mapping: Dict[str, Array] = {}
        for name in self._names:
            try:
                data_mapping[name] = np.asarray(data[name]).flatten()
            except Exception as exception:
                origin = patsy.origin.Origin(self._formula, 0, len(self._formula))
                message = f"Failed to load data for '{name}' because of the above exception."
                raise patsy.PatsyError(message, origin) from exception

        # always have at least one column to represent the size of the data
        if not data_mapping:
            data_mapping = {'': np.zeros(extract_size(data))}

        # design the matrix and identify the variables that underlie each column
        design = design_matrix(self._terms, data_mapping)
        matrix = build_matrix(design, data_mapping)
        labels: List[str] = []
        column_names: List[Set[str]] = []
        for term in self._terms:
            term_slice = design.term_slices[term]
            for index in range(term_slice.start, term_slice.stop):
                labels.append('1' if term == patsy.desc.INTERCEPT else design.column_names[index])
                column_names.append(parse_term_names(term))
        return matrix.astype(options.dtype), labels, column_names


def parse_terms(formula: str) -> List[patsy.desc.Term]:
    """Parse patsy terms from a string. Validate that the string contains only right-hand side terms."""
    description = patsy.desc.ModelDesc.from_formula(formula)
    if description.lhs_termlist:
        end = formula.index('~') + 1 if '~' in formula else len(formula)
        raise patsy.PatsyError("Formulas should not have left-hand sides.", patsy.origin.Origin(formula, 0, end))
    return description.rhs_termlist


def parse_term_names(term: patsy.desc.Term) -> Set[str]:
    """Extract the names of variables from the code of each factor in a term."""
    names: Set[str] = set()
    for factor in term.factors:
        for name in re.findall(r'[A-Za-z_][A-Za-z0-9_]*', factor.code):
            if name not in FUNCTIONS and name not in {'Treatment', 'Sum', 'Poly', 'Helmert', 'Diff', 'levels'}:
                names.add(name)
    return names


def extract_size(data: Mapping) -> int:
    """Attempt to extract the number of rows from data."""
    size = None
    if hasattr(data, 'shape'):
        size = data.shape[0]
    if hasattr(data, 'values'):
        values = data.values
        if callable(values):
            values = values()
        for value in values:
            if size is None:
                size = np.asarray(value).shape[0]
            break
    if not isinstance(size, int):
        raise TypeError("Failed to get the number of rows in the data.")
    return size


class EvaluationEnvironment(patsy.eval.EvalEnvironment):
    """Execution environment that evaluates factors with the supported functions and a data mapping as namespaces."""

    flags: int
    _namespaces: List[Mapping]

    def subset(self, _: Any) -> patsy.eval.EvalEnvironment:
        """Override the default patsy behavior, which copies a subset of names into a single namespace, to create a new
        patsy evaluation environment that keeps every namespace.
        """
        return patsy.eval.EvalEnvironment(self._namespaces, self.flags)


def design_matrix(terms: Sequence[patsy.desc.Term], data: Mapping) -> patsy.design_info.DesignInfo:
    """Design a patsy matrix."""
    environment = EvaluationEnvironment([FUNCTIONS, data])
    return patsy.build.design_matrix_builders([terms], lambda: iter([data]), environment)[0]


def build_matrix(design: patsy.design_info.DesignInfo, data: Mapping) -> Array:
    """Build a matrix according to its design and data mapping variable names to arrays."""

    # identify the number of rows in the data
    size = next(iter(data.values())).shape[0]

    # if the design lacks factors, it must consist of only an intercept term
    if not design.factor_infos:
        return np.ones((size, 1))

    # build the matrix and raise an exception if there are any null values
    matrix = patsy.build.build_design_matrices([design], data, NA_action='raise')[0].base

    # if the design did not use any data, the matrix may be a single row that needs to be stacked to the proper height
    return matrix if matrix.shape[0] == size else np.repeat(matrix[[0]], size, axis=0)
