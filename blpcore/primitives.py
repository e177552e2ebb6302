"""Validated product data and the partition of products into markets."""

from typing import Any, Hashable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from . import exceptions, options
from .utilities.algebra import precisely_identify_collinearity
from .utilities.basics import Array, StringRepresentation, format_table, warn


class MarketPartition(StringRepresentation):
    r"""Contiguous blocks of rows that belong to each market.

    The partition is computed once from market IDs and covers every row exactly once, in the original row order.

    Attributes
    ----------
    unique_market_ids : `ndarray`
        Distinct market IDs in the order in which they first appear.
    starts : `ndarray`
        First row of each market.
    stops : `ndarray`
        One past the last row of each market.
    outside_shares : `ndarray`
        Share of the outside option in each market, :math:`s_{0t} = 1 - \sum_j s_{jt}`.

    """

    unique_market_ids: Array
    starts: Array
    stops: Array
    outside_shares: Array

    def __init__(self, market_ids: Array, shares: Array) -> None:
        """Identify where each market starts and stops, verify that no market appears in more than one block, and
        compute outside shares.
        """
        flat = market_ids.flatten()
        changes = np.ones(flat.size, np.bool_)
        changes[1:] = flat[1:] != flat[:-1]
        self.starts = np.flatnonzero(changes)
        self.stops = np.r_[self.starts[1:], flat.size]
        self.unique_market_ids = flat[self.starts]

        # a market that starts more than once is not contiguous
        seen = set()
        for t in self.unique_market_ids:
            if t in seen:
                rows = np.flatnonzero(flat == t)
                raise exceptions.NonContiguousMarketError(f"Market {t!r} appears in non-adjacent rows {list(rows)}.")
            seen.add(t)

        # compute outside shares
        inside_shares = np.add.reduceat(shares.flatten(), self.starts)
        self.outside_shares = np.c_[1 - inside_shares]
        for array in [self.unique_market_ids, self.starts, self.stops, self.outside_shares]:
            array.flags.writeable = False

    def __len__(self) -> int:
        """Count the number of markets."""
        return self.unique_market_ids.size

    def __iter__(self) -> Iterator[Tuple[Hashable, slice]]:
        """Iterate over market IDs and the slices of rows that they cover."""
        return iter(self.slices)

    def __str__(self) -> str:
        """Format the number of products in each market as a string."""
        header = ["Market", "Rows", "Outside Share"]
        data = [[t, f"{a}:{b}", f"{s:.6f}"] for t, a, b, s in zip(
            self.unique_market_ids, self.starts, self.stops, self.outside_shares.flat
        )]
        return format_table(header, *data, title="Market Partition")

    @property
    def slices(self) -> List[Tuple[Hashable, slice]]:
        """Market IDs paired with the slices of rows that they cover."""
        return [(t, slice(a, b)) for t, a, b in zip(self.unique_market_ids, self.starts, self.stops)]

    @property
    def sizes(self) -> Array:
        """Number of products in each market."""
        return self.stops - self.starts

    def get_slice(self, market_id: Hashable) -> slice:
        """Get the slice of rows covered by a single market."""
        index = np.flatnonzero(self.unique_market_ids == market_id)
        if index.size == 0:
            raise KeyError(f"{market_id!r} is not a market ID.")
        return slice(self.starts[index[0]], self.stops[index[0]])

    def expand(self, statistics: Array) -> Array:
        """Expand a statistic computed for each market to the rows of that market."""
        return np.repeat(np.c_[statistics], self.sizes, axis=0)


class ProductData(StringRepresentation):
    r"""Validated product data.

    Each row is a product in a market. Construction validates every field, so an instance is always fully valid, and
    all arrays are made read-only, so it cannot be changed afterwards.

    Parameters
    ----------
    market_ids : `array-like`
        IDs that associate products with markets. Rows for the same market must be contiguous.
    shares : `array-like`
        Market shares, :math:`s`, which must be strictly between zero and one. Within each market, shares must sum to
        less than one.
    X1 : `array-like`
        Linear product characteristics, :math:`X_1`, with at least one column.
    X2 : `array-like, optional`
        Nonlinear product characteristics, :math:`X_2`, which have random coefficients. By default, there are no
        nonlinear characteristics and the model is a simple logit model.
    ZD : `array-like, optional`
        Full set of demand-side instruments, :math:`Z_D`. By default, :math:`X_1` is used, in which case :math:`\beta`
        is estimated with ordinary least squares.
    X1_labels : `sequence of str, optional`
        Labels for the columns of :math:`X_1`, which are used when displaying results.
    X2_labels : `sequence of str, optional`
        Labels for the columns of :math:`X_2`.

    Attributes
    ----------
    market_ids : `ndarray`
        IDs that associate products with markets.
    shares : `ndarray`
        Market shares, :math:`s`.
    X1 : `ndarray`
        Linear product characteristics, :math:`X_1`.
    X2 : `ndarray`
        Nonlinear product characteristics, :math:`X_2`.
    ZD : `ndarray`
        Demand-side instruments, :math:`Z_D`.
    X1_labels : `list of str`
        Labels for the columns of :math:`X_1`.
    X2_labels : `list of str`
        Labels for the columns of :math:`X_2`.
    partition : `MarketPartition`
        Contiguous blocks of rows that belong to each market.
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

    Examples
    --------
    .. code-block:: python

        products = blpcore.ProductData(
            market_ids=['a', 'a', 'b'],
            shares=[0.30, 0.24, 0.42],
            X1=[[1, 0.5], [1, 1.0], [1, 2.0]]
        )

    """

    market_ids: Array
    shares: Array
    X1: Array
    X2: Array
    ZD: Array
    X1_labels: List[str]
    X2_labels: List[str]
    partition: MarketPartition
    N: int
    T: int
    K1: int
    K2: int
    MD: int

    def __init__(
            self, market_ids: Any, shares: Any, X1: Any, X2: Optional[Any] = None, ZD: Optional[Any] = None,
            X1_labels: Optional[Sequence[str]] = None, X2_labels: Optional[Sequence[str]] = None) -> None:
        """Validate and structure the data."""

        # validate market IDs and shares
        market_ids = np.array(market_ids, np.object_)
        if market_ids.ndim == 2 and market_ids.shape[1] == 1:
            market_ids = market_ids.flatten()
        if market_ids.ndim != 1:
            raise exceptions.ShapeMismatchError("market_ids must be a one-dimensional vector.")
        shares = self._coerce_matrix('shares', shares)
        if shares.shape[1] != 1:
            raise exceptions.ShapeMismatchError(f"shares must have one column, not {shares.shape[1]}.")
        if shares.shape[0] == 0:
            raise exceptions.ShapeMismatchError("There must be at least one product.")
        if market_ids.size != shares.shape[0]:
            raise exceptions.ShapeMismatchError(
                f"market_ids has {market_ids.size} rows but shares has {shares.shape[0]}."
            )

        # validate characteristics and instruments
        X1 = self._coerce_matrix('X1', X1, shares.shape[0])
        if X2 is None:
            X2 = np.zeros((shares.shape[0], 0), options.dtype)
        X2 = self._coerce_matrix('X2', X2, shares.shape[0])
        ZD = self._coerce_matrix('ZD', X1 if ZD is None else ZD, shares.shape[0])
        if X1.shape[1] == 0:
            raise exceptions.ShapeMismatchError("X1 must have at least one column.")
        if ZD.shape[1] < X1.shape[1]:
            raise exceptions.ShapeMismatchError(
                f"ZD has {ZD.shape[1]} columns, but there must be at least as many instruments as the {X1.shape[1]} "
                f"columns in X1."
            )

        # validate shares
        bad_shares = ~np.isfinite(shares)
        finite_shares = shares[~bad_shares]
        bad_shares[~bad_shares] = (finite_shares <= 0) | (finite_shares >= 1)
        if bad_shares.any():
            rows = list(np.flatnonzero(bad_shares))
            raise exceptions.NonpositiveShareError(f"Offending rows: {rows}.")

        # validate contiguity and outside shares
        partition = MarketPartition(market_ids, shares)
        bad_markets = partition.outside_shares.flatten() <= 0
        if bad_markets.any():
            raise exceptions.NonpositiveOutsideShareError(
                f"Offending markets: {list(partition.unique_market_ids[bad_markets])}."
            )

        # validate labels
        X1_labels = self._coerce_labels('X1', X1_labels, X1.shape[1])
        X2_labels = self._coerce_labels('X2', X2_labels, X2.shape[1])

        # store the data
        for array in [market_ids, shares, X1, X2, ZD]:
            array.flags.writeable = False
        self.market_ids = market_ids
        self.shares = shares
        self.X1 = X1
        self.X2 = X2
        self.ZD = ZD
        self.X1_labels = X1_labels
        self.X2_labels = X2_labels
        self.partition = partition

        # store dimensions
        self.N = shares.shape[0]
        self.T = len(partition)
        self.K1 = X1.shape[1]
        self.K2 = X2.shape[1]
        self.MD = ZD.shape[1]

        # collinear columns are legal but are likely mistakes
        for name, matrix in [('X1', X1), ('X2', X2), ('ZD', ZD)]:
            collinear, successful = precisely_identify_collinearity(matrix)
            if not successful:
                warn(f"Failed to compute the QR decomposition of {name} while checking for collinearity issues.")
            elif collinear.any():
                warn(
                    f"Detected collinearity issues with columns {list(np.flatnonzero(collinear))} of {name}. To "
                    f"disable collinearity checks, set options.collinear_atol = options.collinear_rtol = 0."
                )

    def __str__(self) -> str:
        """Format dimensions as a string."""
        header = ["N", "T", "K1", "K2", "MD"]
        return format_table(header, [self.N, self.T, self.K1, self.K2, self.MD], title="Product Data")

    @staticmethod
    def _coerce_matrix(name: str, matrix: Any, rows: Optional[int] = None) -> Array:
        """Coerce array-like data into a two-dimensional matrix and validate its number of rows."""
        try:
            matrix = np.array(matrix, options.dtype)
        except (TypeError, ValueError) as exception:
            raise TypeError(f"{name} must be a numeric array-like object.") from exception
        if matrix.ndim == 1:
            matrix = matrix[:, None]
        if matrix.ndim != 2:
            raise exceptions.ShapeMismatchError(f"{name} must be a matrix, not a {matrix.ndim}-dimensional array.")
        if rows is not None and matrix.shape[0] != rows:
            raise exceptions.ShapeMismatchError(f"{name} has {matrix.shape[0]} rows but shares has {rows}.")
        return matrix

    @staticmethod
    def _coerce_labels(name: str, labels: Optional[Sequence[str]], columns: int) -> List[str]:
        """Validate column labels or construct default ones."""
        if labels is None:
            return [f'{name.lower()}_{k}' for k in range(columns)]
        labels = [str(k) for k in labels]
        if len(labels) != columns:
            raise exceptions.ShapeMismatchError(f"There are {len(labels)} labels for the {columns} columns of {name}.")
        return labels
