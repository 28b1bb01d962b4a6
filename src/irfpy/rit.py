# -*- coding: utf-8 -*-
"""
irfpy.rit
=========

Random Intersection Trees (RIT): a randomized search for feature
combinations that co-occur in many weighted feature sets.

Each random tree starts from one feature set drawn with probability
proportional to its weight.  Every node below depth ``depth`` spawns
``branch`` children, each the intersection of its parent with a fresh
weighted draw.  Empty intersections are pruned.  Every non-empty intersection
reached at level two or deeper is counted once for the tree in which it
appears; with ``depth=1`` the drawn root sets themselves are counted.

Combinations are kept as frozensets of 0-based feature indices internally.
:class:`Interaction` is the user-facing, 1-based form.
"""
from __future__ import annotations

import warnings
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np
from joblib import Parallel, delayed, effective_n_jobs

from .exceptions import DimensionMismatch, EmptyFeatureSetCollection, InvalidWeightVector
from .weights import DiscreteSampler, spawn_seeds


# -----------------------------------------------------------------------------
# Index conversion / ranking
# -----------------------------------------------------------------------------
def to_one_based(combination: Iterable[int]) -> tuple[int, ...]:
    """0-based feature indices to a sorted tuple of 1-based indices."""
    return tuple(sorted(int(j) + 1 for j in combination))


def from_one_based(features: Iterable[int]) -> frozenset:
    """1-based feature indices back to a 0-based frozenset."""
    out = frozenset(int(j) - 1 for j in features)
    if any(j < 0 for j in out):
        raise ValueError("1-based feature indices must be >= 1")
    return out


def interaction_name(features: Sequence[int], feature_names=None) -> str:
    """``"X1_X2"`` style label for 1-based ``features``; uses ``feature_names`` when given."""
    if feature_names is not None:
        return "_".join(str(feature_names[j - 1]) for j in features)
    return "_".join(f"X{j}" for j in features)


@dataclass(frozen=True)
class Interaction:
    """A feature combination and its score.

    Attributes
    ----------
    features : tuple of int
        Sorted 1-based feature indices.
    score : float
        Prevalence across random trees, or stability across bootstrap
        replicates; always in [0, 1].
    name : str
        Readable label such as ``"X1_X2"``.
    """
    features: tuple
    score: float
    name: str = ""

    @property
    def order(self) -> int:
        return len(self.features)

    def as_set(self) -> frozenset:
        """0-based frozenset, the form used inside the package."""
        return from_one_based(self.features)


def rank_interactions(scores: dict, top: Optional[int] = None,
                      feature_names=None) -> list[Interaction]:
    """
    Rank ``{0-based frozenset: score}`` into a list of :class:`Interaction`.

    Ordering is by score (descending), then combination size (ascending),
    then the 1-based indices in lexicographic order.  ``top`` truncates the
    list.
    """
    items = [(to_one_based(combo), float(score)) for combo, score in scores.items()]
    items.sort(key=lambda it: (-it[1], len(it[0]), it[0]))
    if top is not None:
        items = items[:int(top)]
    return [Interaction(features=feats, score=score, name=interaction_name(feats, feature_names))
            for feats, score in items]


# -----------------------------------------------------------------------------
# Search
# -----------------------------------------------------------------------------
def _as_feature_sets(feature_sets) -> list[frozenset]:
    if isinstance(feature_sets, np.ndarray):
        if feature_sets.ndim != 2:
            raise ValueError("an indicator matrix must be 2D")
        return [frozenset(int(j) for j in np.flatnonzero(row)) for row in feature_sets]
    return [frozenset(int(j) for j in s) for s in feature_sets]


def _grow_intersection_tree(sets: list, sampler: DiscreteSampler, depth: int, branch: int,
                            rng: np.random.Generator) -> set:
    root = sets[int(sampler.sample(rng, 1)[0])]
    if depth <= 1:
        return {root} if root else set()
    found = set()
    frontier = [root] if root else []
    for _ in range(depth - 1):
        children = []
        for node in frontier:
            for k in sampler.sample(rng, branch):
                child = node & sets[int(k)]
                if child:
                    found.add(child)
                    children.append(child)
        if not children:
            break
        frontier = children
    return found


def _grow_chunk(sets, sampler, depth, branch, seeds) -> Counter:
    counts: Counter = Counter()
    for seed in seeds:
        counts.update(_grow_intersection_tree(sets, sampler, depth, branch,
                                              np.random.default_rng(seed)))
    return counts


class RandomIntersectionTrees:
    """
    Weighted random intersection tree search.

    The root of each tree is a single weighted draw, not an intersection of
    ``branch`` draws; intersections start at the second level.

    Parameters
    ----------
    depth : int, default=5
        Number of levels per tree, the root included.
    branch : int, default=2
        Children per node.
    n_trees : int, default=500
        Number of independent random trees.
    min_order : int, default=1
        Smallest combination size kept in the result.
    random_state : int or None, default=None
        Tree ``t`` draws from child stream ``t`` of this seed, so with a fixed
        seed a larger ``n_trees`` only adds trees.
    n_jobs : int or None, default=None
        joblib workers; the trees are split into one chunk per worker.
    """

    def __init__(self, depth: int = 5, branch: int = 2, n_trees: int = 500, *,
                 min_order: int = 1, random_state: Optional[int] = None,
                 n_jobs: Optional[int] = None):
        if int(depth) < 1 or int(branch) < 1 or int(n_trees) < 1:
            raise ValueError("depth, branch and n_trees must all be >= 1")
        self.depth = int(depth)
        self.branch = int(branch)
        self.n_trees = int(n_trees)
        self.min_order = int(min_order)
        self.random_state = random_state
        self.n_jobs = n_jobs

    def search(self, feature_sets, weights=None) -> Counter:
        """
        Run the search.

        Parameters
        ----------
        feature_sets : sequence of iterables of int, or ndarray of bool
            One feature set per leaf (0-based indices), or a leaf-by-feature
            indicator matrix.
        weights : array-like of shape (n_sets,), optional
            Non-negative sampling weights; uniform when omitted.

        Returns
        -------
        collections.Counter
            ``{frozenset: number of trees in which it was observed}``.
        """
        sets = _as_feature_sets(feature_sets)
        if not sets:
            warnings.warn("no feature sets to search", EmptyFeatureSetCollection, stacklevel=2)
            return Counter()
        if weights is None:
            w = np.ones(len(sets), dtype=float)
        else:
            w = np.asarray(weights, dtype=float).ravel()
            if w.shape[0] != len(sets):
                raise DimensionMismatch(f"{w.shape[0]} weights for {len(sets)} feature sets")
            if not np.all(np.isfinite(w)) or np.any(w < 0):
                raise InvalidWeightVector("RIT weights must be finite and non-negative")
        if w.sum() <= 0:
            warnings.warn("every feature set has zero weight", EmptyFeatureSetCollection, stacklevel=2)
            return Counter()

        sampler = DiscreteSampler(w)
        seeds = spawn_seeds(self.random_state, self.n_trees)
        if self.n_jobs in (None, 1):
            counts = _grow_chunk(sets, sampler, self.depth, self.branch, seeds)
        else:
            n_chunks = min(len(seeds), effective_n_jobs(self.n_jobs))
            chunks = [c for c in np.array_split(np.arange(len(seeds)), n_chunks) if c.size]
            parts = Parallel(n_jobs=self.n_jobs)(
                delayed(_grow_chunk)(sets, sampler, self.depth, self.branch,
                                     [seeds[i] for i in chunk]) for chunk in chunks
            )
            counts = sum(parts, Counter())

        if self.min_order > 1:
            counts = Counter({k: v for k, v in counts.items() if len(k) >= self.min_order})
        return counts


def rit(feature_sets, weights=None, *, depth: int = 5, branch: int = 2, n_trees: int = 500,
        min_order: int = 2, feature_names=None, random_state: Optional[int] = None,
        n_jobs: Optional[int] = None) -> list[Interaction]:
    """
    Ranked interactions found by :class:`RandomIntersectionTrees`.

    Scores are prevalences, the fraction of the ``n_trees`` random trees in
    which a combination was observed.  Single features are dropped unless
    ``min_order=1``.

    Returns
    -------
    list of Interaction
        Sorted by prevalence, then size, then 1-based indices.
    """
    searcher = RandomIntersectionTrees(depth, branch, n_trees, min_order=min_order,
                                       random_state=random_state, n_jobs=n_jobs)
    counts = searcher.search(feature_sets, weights)
    return rank_interactions({k: v / searcher.n_trees for k, v in counts.items()},
                             feature_names=feature_names)
