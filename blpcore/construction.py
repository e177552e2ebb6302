"""Data construction."""

from typing import List, Mapping, Optional, Sequence, Union

import numpy as np

from . import options
from .configurations.formulation import Formulation
from .primitives import ProductData
from .utilities.basics import Array, RecArray, extract_matrix, structure_matrices


def build_id_data(T: int, J: int) -> RecArray:
    r"""Build a balanced panel of market IDs.

    Parameters
    ----------
    T : `int`
        Number of markets.
    J : `int`
        Number of products in each market.

    Returns
    -------
    `recarray`
        IDs that associate products with markets. Each of the ``T * J`` rows corresponds to a product. Fields:

            - **market_ids** : (`object`) - Market IDs that take on values from ``0`` to ``T - 1``.

    Examples
    --------
    .. code-block:: python

        id_data = blpcore.build_id_data(T=50, J=20)

    """
    if not isinstance(T, int) or not isinstance(J, int) or T < 1 or J < 1:
        raise ValueError("Both T and J must be positive ints.")
    return structure_matrices({
        'market_ids': (np.repeat(np.arange(T), J).astype(np.int64), np.object_)
    })


def build_product_data(
        data: Mapping, X1_formulation: Formulation, X2_formulation: Optional[Formulation] = None,
        instruments: Optional[Union[str, Sequence[str]]] = None, add_exogenous: bool = True) -> ProductData:
    r"""Build validated product data from a mapping of variable names to arrays.

    Parameters
    ----------
    data : `structured array-like`
        Each row corresponds to a product. Fields with multiple columns can be either matrices or can be broken up into
        multiple one-dimensional fields with column index suffixes that start at zero. The following fields are
        required:

            - **market_ids** : (`object`) - IDs that associate products with markets. Rows for the same market must be
              contiguous.

            - **shares** : (`numeric`) - Market shares, :math:`s`.

        Along with ``market_ids`` and ``shares``, the names of any additional fields can be used as variables in
        formulations.

    X1_formulation : `Formulation`
        Formulation of linear product characteristics, :math:`X_1`.
    X2_formulation : `Formulation, optional`
        Formulation of nonlinear product characteristics, :math:`X_2`. By default, there are none.
    instruments : `str or sequence of str, optional`
        Names of fields in ``data`` that contain excluded demand-side instruments.
    add_exogenous : `bool, optional`
        Whether to add the characteristics in :math:`X_1` that do not involve ``prices`` to the excluded instruments to
        form :math:`Z_D`. By default, they are added. If there are no excluded instruments and ``add_exogenous`` is
        ``False``, :math:`Z_D = X_1`.

    Returns
    -------
    `ProductData`
        The validated product data, with column labels taken from the formulations.

    Examples
    --------
    .. code-block:: python

        products = blpcore.build_product_data(
            data, blpcore.Formulation('1 + prices + x'), blpcore.Formulation('0 + x'), instruments='demand_instruments'
        )

    """
    if not isinstance(X1_formulation, Formulation):
        raise TypeError("X1_formulation must be a Formulation instance.")
    if X2_formulation is not None and not isinstance(X2_formulation, Formulation):
        raise TypeError("X2_formulation must be None or a Formulation instance.")

    # extract required fields
    market_ids = extract_matrix(data, 'market_ids')
    shares = extract_matrix(data, 'shares')
    if market_ids is None:
        raise KeyError("data must have fields for market_ids.")
    if shares is None:
        raise KeyError("data must have fields for shares.")

    # build the characteristic matrices
    X1, X1_labels, X1_names = X1_formulation._build_matrix(data)
    X2 = X2_labels = None
    if X2_formulation is not None:
        X2, X2_labels, _ = X2_formulation._build_matrix(data)

    # build the instruments
    ZD = None
    ZD_list: List[Array] = []
    if instruments is not None:
        ZD_list.extend(extract_instruments(data, instruments))
    if add_exogenous and (ZD_list or any('prices' in n for n in X1_names)):
        ZD_list.append(X1[:, [k for k, n in enumerate(X1_names) if 'prices' not in n]])
    if ZD_list:
        ZD = np.column_stack(ZD_list)
    return ProductData(market_ids.flatten(), shares, X1, X2, ZD, X1_labels, X2_labels)


def extract_instruments(data: Mapping, instruments: Union[str, Sequence[str]]) -> List[Array]:
    """Extract one or more matrices of excluded instruments."""
    names = [instruments] if isinstance(instruments, str) else list(instruments)
    matrices: List[Array] = []
    for name in names:
        matrix = extract_matrix(data, name)
        if matrix is None:
            raise KeyError(f"data does not have a non-empty field for the instrument '{name}'.")
        matrices.append(np.asarray(matrix, options.dtype))
    return matrices

