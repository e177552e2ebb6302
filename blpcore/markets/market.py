"""Market-level BLP computation."""

from typing import Hashable, List, Optional, Tuple

import numpy as np

from .. import exceptions
from ..configurations.iteration import ContractionOptions, ContractionSummary
from ..utilities.basics import Array, Error, NumericalErrorHandler


class Market(object):
    r"""A single market's slice of product data, along with the nonlinear parameters and simulation draws needed to
    predict its shares.

    Instances are lightweight: they are created only to dispatch per-market work, possibly to another process, and hold
    no state that is shared with other markets.
    """

    t: Hashable
    shares: Optional[Array]
    X2: Array
    sigma: Array
    nodes: Optional[Array]
    weights: Optional[Array]
    J: int
    K2: int

    def __init__(
            self, t: Hashable, shares: Optional[Array], X2: Array, sigma: Array, nodes: Optional[Array],
            weights: Optional[Array]) -> None:
        """Store the market's data. Observed shares are only needed to solve for delta."""
        self.t = t
        self.shares = shares
        self.X2 = X2
        self.sigma = sigma
        self.nodes = nodes
        self.weights = weights
        self.J, self.K2 = X2.shape

    def compute_mu(self) -> Array:
        """Compute the J x I matrix of consumer-specific deviations from mean utility."""
        if self.K2 == 0:
            return np.zeros((self.J, 1 if self.nodes is None else self.nodes.shape[0]), self.X2.dtype)
        return self.X2 @ self.sigma @ self.nodes.T

    def compute_probabilities(self, delta: Array, mu: Optional[Array] = None) -> Array:
        """Compute choice probabilities for each product and draw. The logit expression is scaled by the exponential of
        negative the largest nonnegative utility for each draw, which guards against overflow.
        """
        if mu is None:
            mu = self.compute_mu()
        utilities = delta + mu
        utility_reduction = np.clip(utilities.max(axis=0, keepdims=True), 0, None)
        exp_utilities = np.exp(utilities - utility_reduction)
        scale = np.exp(-utility_reduction)
        return exp_utilities / (scale + exp_utilities.sum(axis=0, keepdims=True))

    def compute_shares(self, delta: Array, mu: Optional[Array] = None) -> Array:
        """Aggregate choice probabilities over draws into market shares."""
        probabilities = self.compute_probabilities(delta, mu)
        if self.weights is None:
            return probabilities.mean(axis=1, keepdims=True)
        return probabilities @ self.weights

    def compute_logit_delta(self) -> Array:
        """Invert observed shares with the closed-form logit solution."""
        return np.log(self.shares) - np.log(1 - self.shares.sum())

    def compute_delta(
            self, initial_delta: Optional[Array], contraction: ContractionOptions) -> (
            Tuple[Array, ContractionSummary, List[Error]]):
        """Compute the mean utility for this market that equates predicted shares to observed shares by solving the
        damped BLP fixed point problem.
        """
        errors: List[Error] = []

        # if there is no heterogeneity, use the closed-form solution
        if self.K2 == 0:
            return self.compute_logit_delta(), ContractionSummary(market_id=self.t), errors

        # the contraction only depends on delta through predicted shares
        mu = self.compute_mu()
        log_shares = np.log(self.shares)
        clipped_shares = 0
        nonfinite = False

        def contraction_function(delta: Array) -> Array:
            """Apply the damped contraction, flooring predicted shares before taking their logarithm."""
            nonlocal clipped_shares, nonfinite
            predicted = self.compute_shares(delta, mu)
            clipped = predicted < contraction.minimum_share
            clipped_shares += int(clipped.sum())
            predicted[clipped] = contraction.minimum_share
            updated = delta + contraction.damping * (log_shares - np.log(predicted))
            nonfinite = nonfinite or not np.isfinite(updated).all()
            return updated

        # solve the fixed point problem
        if initial_delta is None:
            initial_delta = self.compute_logit_delta()
        delta, summary = contraction._iterate(initial_delta, contraction_function)
        summary.market_id = self.t
        summary.clipped_shares = clipped_shares

        # identify any problems
        if nonfinite:
            summary.converged = False
            error = exceptions.DeltaNumericalError()
            error._messages.add("non-finite mean utilities")
            errors.append(error)
        if not summary.converged:
            errors.append(exceptions.DeltaConvergenceError(self.t, summary.iterations, summary.final_gap))
        return delta, summary, errors

    @NumericalErrorHandler(exceptions.DeltaNumericalError)
    def safely_compute_delta(
            self, initial_delta: Optional[Array], contraction: ContractionOptions) -> (
            Tuple[Array, ContractionSummary, List[Error]]):
        """Compute delta, handling any numerical errors."""
        return self.compute_delta(initial_delta, contraction)

    @NumericalErrorHandler(exceptions.SharesNumericalError)
    def safely_compute_shares(self, delta: Array) -> Tuple[Array, List[Error]]:
        """Compute predicted shares, handling any numerical errors. Extreme utilities can push shares to exactly zero or
        one, which is reported as a numerical error as well.
        """
        errors: List[Error] = []
        shares = self.compute_shares(delta)
        if np.isfinite(shares).all() and ((shares <= 0) | (shares >= 1)).any():
            error = exceptions.SharesNumericalError()
            error._messages.add("predicted shares outside of (0, 1)")
            errors.append(error)
        return shares, errors
