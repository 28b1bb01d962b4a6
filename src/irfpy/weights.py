# -*- coding: utf-8 -*-
"""
irfpy.weights
=============

Feature weights drive variable subsampling in the weighted forests.  This
module validates weight vectors, turns them into sampling structures and
implements the iterative update that feeds one round's importances into the
next round's weights.

Forced features are never encoded as infinite weights.  They are kept apart
from the sampling distribution and unioned into every candidate pool.
"""
from __future__ import annotations

from typing import Iterable, Optional

import numpy as np

from .exceptions import DimensionMismatch, InvalidWeightVector


# -----------------------------------------------------------------------------
# Seeding
# -----------------------------------------------------------------------------
def spawn_seeds(random_state, n: int) -> list:
    """Return ``n`` independent child seeds derived from ``random_state``.

    Child ``i`` only depends on ``random_state`` and ``i``, so asking for more
    children keeps the first ones unchanged.
    """
    if isinstance(random_state, np.random.SeedSequence):
        random_state = np.random.SeedSequence(random_state.entropy, spawn_key=random_state.spawn_key)
    else:
        random_state = np.random.SeedSequence(random_state)
    return random_state.spawn(int(n))


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------
def check_feature_weights(weights, n_features: int,
                          forced: Optional[Iterable[int]] = None) -> tuple[np.ndarray, frozenset]:
    """
    Validate a feature weight vector and a forced-feature set.

    Parameters
    ----------
    weights : array-like of shape (n_features,) or None
        Non-negative sampling weights.  ``None`` means uniform.
    n_features : int
        Number of columns in the design matrix.
    forced : iterable of int, optional
        0-based indices of features added to every split's candidate pool.

    Returns
    -------
    weights : ndarray of shape (n_features,)
        The weights as floats (not normalised).
    forced : frozenset of int

    Raises
    ------
    DimensionMismatch
        If the vector length differs from ``n_features`` or a forced index is
        out of range.
    InvalidWeightVector
        If an entry is negative or non-finite, or the non-forced weights sum
        to zero while no feature is forced.
    """
    forced_set = frozenset(int(j) for j in (forced or ()))
    bad = [j for j in forced_set if j < 0 or j >= n_features]
    if bad:
        raise DimensionMismatch(f"forced feature indices out of range: {sorted(bad)}")

    if weights is None:
        w = np.ones(n_features, dtype=float)
    else:
        w = np.asarray(weights, dtype=float).ravel()
        if w.shape[0] != n_features:
            raise DimensionMismatch(
                f"weight vector has length {w.shape[0]} but X has {n_features} features")
        if not np.all(np.isfinite(w)):
            raise InvalidWeightVector("feature weights must be finite")
        if np.any(w < 0):
            raise InvalidWeightVector("feature weights must be non-negative")

    free = w.copy()
    if forced_set:
        free[list(forced_set)] = 0.0
    if free.sum() <= 0 and not forced_set:
        raise InvalidWeightVector("feature weights sum to zero and no feature is forced")
    return w, forced_set


# -----------------------------------------------------------------------------
# Sampling
# -----------------------------------------------------------------------------
class DiscreteSampler:
    """Categorical distribution over ``0..k-1`` sampled by CDF inversion.

    The cumulative table is built once and reused for every draw.  Entries
    with zero weight are never returned.
    """

    def __init__(self, weights):
        w = np.asarray(weights, dtype=float).ravel()
        if w.size == 0:
            raise InvalidWeightVector("cannot sample from an empty weight vector")
        if not np.all(np.isfinite(w)) or np.any(w < 0):
            raise InvalidWeightVector("sampling weights must be finite and non-negative")
        total = w.sum()
        if total <= 0:
            raise InvalidWeightVector("sampling weights sum to zero")
        self.weights = w
        self.probabilities = w / total
        self.support = np.flatnonzero(w > 0)
        cdf = np.cumsum(self.probabilities)
        # rounding must not leave mass past the last positive entry
        cdf[self.support[-1]:] = 1.0
        self.cdf = cdf

    def __len__(self) -> int:
        return self.weights.shape[0]

    def sample(self, rng: np.random.Generator, size: int = 1) -> np.ndarray:
        """Draw ``size`` indices independently, with replacement."""
        u = rng.random(int(size))
        return np.searchsorted(self.cdf, u, side="right")

    def sample_without_replacement(self, rng: np.random.Generator, k: int) -> np.ndarray:
        """Draw ``k`` distinct indices by successive weighted draws.

        When ``k`` reaches the number of positive-weight entries all of them
        are returned.
        """
        k = int(k)
        if k >= self.support.size:
            return self.support.copy()
        remaining = self.support.copy()
        rem_w = self.weights[remaining].copy()
        out = np.empty(k, dtype=np.intp)
        for i in range(k):
            cdf = np.cumsum(rem_w)
            pos = int(np.searchsorted(cdf, rng.random() * cdf[-1], side="right"))
            pos = min(pos, remaining.size - 1)
            out[i] = remaining[pos]
            remaining = np.delete(remaining, pos)
            rem_w = np.delete(rem_w, pos)
        return out


class CandidateSampler:
    """Chooses the candidate features examined at one split.

    ``mtry`` features are drawn without replacement from the non-forced
    weights, then every forced feature is added.

    Parameters
    ----------
    weights : ndarray of shape (n_features,)
        Validated feature weights (see :func:`check_feature_weights`).
    forced : iterable of int
        Features present in every candidate pool.
    mtry : int
        Number of weighted draws per split.
    """

    def __init__(self, weights, forced=(), mtry: int = 1):
        w = np.asarray(weights, dtype=float)
        self.n_features = w.shape[0]
        self.forced = np.array(sorted(int(j) for j in forced), dtype=np.intp)
        self.mtry = int(mtry)
        free = w.copy()
        free[self.forced] = 0.0
        self.sampler = DiscreteSampler(free) if free.sum() > 0 else None

    def draw(self, rng: np.random.Generator) -> np.ndarray:
        """Return the sorted candidate feature indices for one split."""
        if self.sampler is None or self.mtry <= 0:
            return self.forced.copy()
        drawn = self.sampler.sample_without_replacement(rng, self.mtry)
        return np.union1d(drawn, self.forced).astype(np.intp)


# -----------------------------------------------------------------------------
# Iterative update
# -----------------------------------------------------------------------------
def update_weights(importance) -> np.ndarray:
    """
    Turn a feature importance vector into the next round's sampling weights.

    Negative and non-finite entries are treated as zero.  The result sums to
    one; an all-zero input (a forest that never split) gives uniform weights.

    Parameters
    ----------
    importance : array-like of shape (n_features,)

    Returns
    -------
    ndarray of shape (n_features,)
    """
    imp = np.asarray(importance, dtype=float).ravel().copy()
    if imp.size == 0:
        raise DimensionMismatch("importance vector is empty")
    imp[~np.isfinite(imp)] = 0.0
    np.clip(imp, 0.0, None, out=imp)
    total = imp.sum()
    if total <= 0:
        return np.full(imp.size, 1.0 / imp.size)
    return imp / total
