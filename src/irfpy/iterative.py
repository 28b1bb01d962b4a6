# -*- coding: utf-8 -*-
"""
irfpy.iterative
===============

Iterative Random Forests.

:func:`irf` grows ``n_iter`` weighted forests on the full training data,
each round sampling split variables in proportion to the previous round's
Gini importance.  It then estimates interaction stability with a
:class:`StabilitySelector`.  For every bootstrap replicate of the training rows
the selector repeats the weighting rounds, reads the decision paths of each
round's forest on the original training data and runs a random intersection
tree search on them.  A combination's stability score is the fraction of
replicates in which the search found it.

Replicates are independent and run through joblib.  A replicate that raises
is logged, returned as a :class:`~irfpy.exceptions.ReplicateFailure` and left
out of the denominator of the stability scores.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.base import BaseEstimator, clone, is_classifier
from sklearn.metrics import accuracy_score, r2_score, roc_auc_score
from sklearn.utils.multiclass import type_of_target

from .exceptions import DimensionMismatch, ReplicateFailure
from .forest import (WeightedRandomForestClassifier, WeightedRandomForestRegressor,
                     check_matrix, check_xy)
from .paths import WEIGHT_STRATEGIES, read_forest
from .rit import Interaction, RandomIntersectionTrees, rank_interactions
from .weights import check_feature_weights, spawn_seeds, update_weights

logger = logging.getLogger(__name__)

_SEED_BOUND = 2 ** 31 - 1


# -----------------------------------------------------------------------------
# Configuration / results
# -----------------------------------------------------------------------------
@dataclass
class RITParams:
    """
    Settings of the intersection tree search run on each replicate.

    Parameters
    ----------
    depth : int, default=5
        Levels per random intersection tree.
    n_trees : int, default=500
        Random intersection trees per search.
    branch : int, default=2
        Children per node.
    min_order : int, default=2
        Smallest combination size counted as an interaction.
    class_id : object, optional
        Only leaves predicting this class are searched.  ``None`` means the
        largest class label for classification and every leaf for
        regression.
    min_nodesize : int, default=1
        Leaves with fewer rows are ignored.
    weight : {"size", "purity", "uniform"}, default="size"
        Leaf sampling weight: rows in the leaf, or the leaf's purity decrease.
    """
    depth: int = 5
    n_trees: int = 500
    branch: int = 2
    min_order: int = 2
    class_id: object = None
    min_nodesize: int = 1
    weight: str = "size"

    def __post_init__(self):
        if self.weight not in WEIGHT_STRATEGIES:
            raise ValueError(f"weight must be one of {WEIGHT_STRATEGIES}, got {self.weight!r}")


@dataclass
class StabilityResult:
    """
    Ranked, stability-scored interactions for each reported iteration.

    Attributes
    ----------
    interactions : dict[int, list[Interaction]]
        1-based iteration → interactions ranked by stability.
    n_bootstrap : int
        Replicates requested.
    n_success : int
        Replicates that completed; the denominator of every score.
    failures : list of ReplicateFailure
    """
    interactions: dict
    n_bootstrap: int
    n_success: int
    failures: list = field(default_factory=list)

    def __getitem__(self, iteration: int) -> list:
        return self.interactions[iteration]

    def to_frame(self) -> pd.DataFrame:
        """Long table with columns ``iteration``, ``interaction``, ``order``, ``stability``."""
        rows = [
            {"iteration": k, "interaction": it.name, "order": it.order, "stability": it.score}
            for k, ranked in self.interactions.items() for it in ranked
        ]
        return pd.DataFrame(rows, columns=["iteration", "interaction", "order", "stability"])


@dataclass
class IRFResult:
    """Output of :func:`irf`.

    ``models``, ``weights`` and ``importances`` hold one entry per iteration;
    ``weights[k]`` is the sampling vector used to grow ``models[k]``.
    ``interaction`` maps the 1-based iteration to its ranked interactions.
    """
    models: list
    weights: list
    importances: list
    interaction: dict
    selected_iter: int
    test_scores: Optional[list] = None
    stability: Optional[StabilityResult] = None

    @property
    def failures(self) -> list:
        return [] if self.stability is None else self.stability.failures


@dataclass
class _ReplicateOutcome:
    replicate: int
    found: dict


REPLICATE_MODES = ("iterate", "fixed")


def _check_selector_args(n_iter: int, iterations, replicate_mode: str) -> frozenset:
    """Validate the replicate settings; returns the 1-based iterations to report."""
    if replicate_mode not in REPLICATE_MODES:
        raise ValueError(f"replicate_mode must be one of {REPLICATE_MODES}, got {replicate_mode!r}")
    out = frozenset(range(1, n_iter + 1) if iterations is None else (int(k) for k in iterations))
    if not out or min(out) < 1 or max(out) > n_iter:
        raise ValueError(f"iterations must lie in 1..{n_iter}")
    return out


# -----------------------------------------------------------------------------
# Replicates
# -----------------------------------------------------------------------------
def _discover(model, X, y, rit_params: RITParams, class_id, seed) -> frozenset:
    """Interactions found by RIT on one fitted forest's decision paths."""
    paths = read_forest(model, X, y, wt_pred_accuracy=rit_params.weight == "purity",
                        return_node_feature=False)
    paths = paths.select(class_id=class_id, min_nodesize=rit_params.min_nodesize)
    searcher = RandomIntersectionTrees(rit_params.depth, rit_params.branch, rit_params.n_trees,
                                       min_order=rit_params.min_order, random_state=seed)
    return frozenset(searcher.search(paths.feature_sets, paths.weights(rit_params.weight)))


def _run_replicate(replicate: int, seed, forest, X, y, n_iter: int, iterations: frozenset,
                   rit_params: RITParams, class_id, replicate_mode: str,
                   fixed_weights, initial_weights, forced):
    try:
        rng = np.random.default_rng(seed)
        n = X.shape[0]
        rows = rng.integers(0, n, size=n)
        Xb, yb = X[rows], y[rows]
        if is_classifier(forest) and np.unique(yb).size < 2:
            raise ValueError("bootstrap resample contains a single class")

        found = {}
        weights = initial_weights
        for k in range(1, n_iter + 1):
            if replicate_mode == "fixed":
                if k not in iterations:
                    continue
                weights = fixed_weights[k - 1]
            model = clone(forest).set_params(random_state=int(rng.integers(_SEED_BOUND)),
                                             n_jobs=1, verbose=0)
            model.fit(Xb, yb, feature_weight=weights, forced_features=forced)
            if replicate_mode == "iterate":
                weights = update_weights(model.feature_importances_)
            if k in iterations:
                found[k] = _discover(model, X, y, rit_params, class_id,
                                     int(rng.integers(_SEED_BOUND)))
        return _ReplicateOutcome(replicate, found)
    except Exception as exc:
        logger.warning("bootstrap replicate %d failed: %s", replicate, exc)
        logger.debug("replicate %d traceback", replicate, exc_info=True)
        return ReplicateFailure(replicate, exc)


def aggregate_replicates(outcomes, iterations: Iterable[int], n_bootstrap: int,
                         interactions_return: Optional[int] = None,
                         feature_names=None) -> StabilityResult:
    """
    Reduce per-replicate discoveries into stability scores.

    ``outcomes`` mixes successful replicate outcomes (with a ``found``
    mapping ``iteration → set of 0-based frozensets``) and
    :class:`ReplicateFailure` records.  The reduction is a ``Counter`` sum,
    so the order of ``outcomes`` does not matter.
    """
    iterations = sorted(set(int(k) for k in iterations))
    tallies = {k: Counter() for k in iterations}
    failures = []
    n_success = 0
    for outcome in outcomes:
        if isinstance(outcome, ReplicateFailure):
            failures.append(outcome)
            continue
        n_success += 1
        for k, found in outcome.found.items():
            tallies[k].update(found)

    failures.sort(key=lambda f: f.replicate)
    interactions = {}
    for k in iterations:
        if n_success == 0:
            interactions[k] = []
            continue
        scores = {combo: count / n_success for combo, count in tallies[k].items()}
        interactions[k] = rank_interactions(scores, top=interactions_return,
                                            feature_names=feature_names)
    return StabilityResult(interactions=interactions, n_bootstrap=int(n_bootstrap),
                           n_success=n_success, failures=failures)


class StabilitySelector:
    """
    Bootstrap stability of RIT interactions.

    Parameters
    ----------
    forest : estimator, optional
        Template weighted forest, cloned for every fit.  Defaults to a
        500-tree classifier or regressor depending on ``y``.
    n_iter : int, default=5
        Weighting rounds per replicate.
    n_bootstrap : int, default=30
        Number of bootstrap replicates.
    interactions_return : int or None, default=None
        Keep the top interactions of each iteration; ``None`` keeps all.
    rit_params : RITParams, optional
    iterations : iterable of int, optional
        1-based iterations whose forests are searched; all by default.
    replicate_mode : {"iterate", "fixed"}, default="iterate"
        ``"iterate"`` reruns the weighting rounds from ``initial_weights``
        (uniform by default) inside every replicate.  ``"fixed"`` fits one
        forest per reported iteration with ``fixed_weights[k - 1]``.
    fixed_weights : sequence of ndarray, optional
        Per-iteration weights, required by ``replicate_mode="fixed"``.
    initial_weights : array-like, optional
        First-round weights for ``replicate_mode="iterate"``.
    forced_features : iterable of int, optional
        0-based features in every split's candidate pool.
    feature_names : list of str, optional
        Used to label interactions.
    n_jobs : int or None, default=None
        joblib workers across replicates.
    random_state : int or None, default=None
    verbose : int, default=0
    """

    def __init__(self, forest=None, *, n_iter: int = 5, n_bootstrap: int = 30,
                 interactions_return: Optional[int] = None, rit_params: Optional[RITParams] = None,
                 iterations: Optional[Iterable[int]] = None, replicate_mode: str = "iterate",
                 fixed_weights: Optional[Sequence] = None, initial_weights=None,
                 forced_features: Optional[Iterable[int]] = None, feature_names=None,
                 n_jobs: Optional[int] = None, random_state: Optional[int] = None,
                 verbose: int = 0):
        self.forest = forest
        self.n_iter = int(n_iter)
        self.n_bootstrap = int(n_bootstrap)
        self.interactions_return = interactions_return
        self.rit_params = rit_params if rit_params is not None else RITParams()
        self.iterations = iterations
        self.replicate_mode = replicate_mode
        self.fixed_weights = fixed_weights
        self.initial_weights = initial_weights
        self.forced_features = forced_features
        self.feature_names = feature_names
        self.n_jobs = n_jobs
        self.random_state = random_state
        self.verbose = int(verbose)

    def run(self, X, y) -> StabilityResult:
        """
        Run every replicate and aggregate the discovered interactions.

        Inputs are validated before any replicate starts.

        Returns
        -------
        StabilityResult
        """
        X, y = check_xy(X, y)
        p = X.shape[1]
        if self.n_iter < 1 or self.n_bootstrap < 1:
            raise ValueError("n_iter and n_bootstrap must be >= 1")
        iterations = _check_selector_args(self.n_iter, self.iterations, self.replicate_mode)

        forest = self.forest if self.forest is not None else default_forest(y)
        _, forced = check_feature_weights(None, p, self.forced_features)
        initial = None
        if self.initial_weights is not None:
            initial, _ = check_feature_weights(self.initial_weights, p, forced)
        fixed = None
        if self.replicate_mode == "fixed":
            if self.fixed_weights is None or len(self.fixed_weights) < self.n_iter:
                raise ValueError("replicate_mode='fixed' needs one weight vector per iteration")
            fixed = [check_feature_weights(w, p, forced)[0] for w in self.fixed_weights]
        if self.feature_names is not None and len(self.feature_names) != p:
            raise DimensionMismatch("feature_names length must match X.shape[1]")

        class_id = self.rit_params.class_id
        if class_id is None and is_classifier(forest):
            class_id = np.unique(y)[-1]

        seeds = spawn_seeds(self.random_state, self.n_bootstrap)
        if self.verbose:
            logger.info("running %d bootstrap replicates (%s mode, iterations %s)",
                        self.n_bootstrap, self.replicate_mode, sorted(iterations))
        outcomes = Parallel(n_jobs=self.n_jobs)(
            delayed(_run_replicate)(b + 1, seed, forest, X, y, self.n_iter, iterations,
                                    self.rit_params, class_id, self.replicate_mode,
                                    fixed, initial, forced)
            for b, seed in enumerate(seeds)
        )
        result = aggregate_replicates(outcomes, iterations, self.n_bootstrap,
                                      self.interactions_return, self.feature_names)
        if result.failures:
            logger.warning("%d of %d bootstrap replicates failed",
                           len(result.failures), self.n_bootstrap)
        elif self.verbose:
            logger.info("all %d bootstrap replicates completed", self.n_bootstrap)
        return result


# -----------------------------------------------------------------------------
# Entry points
# -----------------------------------------------------------------------------
def default_forest(y, n_estimators: int = 500):
    """Weighted classifier for discrete labels, regressor otherwise."""
    kind = type_of_target(np.asarray(y))
    if kind in ("binary", "multiclass"):
        return WeightedRandomForestClassifier(n_estimators)
    return WeightedRandomForestRegressor(n_estimators)


def _test_score(model, X_test, y_test) -> float:
    """ROC AUC for binary problems, accuracy for multiclass, R² for regression."""
    if not is_classifier(model):
        return float(r2_score(y_test, model.predict(X_test)))
    if len(model.classes_) == 2 and np.unique(y_test).size == 2:
        proba = model.predict_proba(X_test)[:, 1]
        return float(roc_auc_score(y_test == model.classes_[1], proba))
    return float(accuracy_score(y_test, model.predict(X_test)))


def irf(x, y, xtest=None, ytest=None, *, n_iter: int = 5, n_core: Optional[int] = 1,
        n_bootstrap: int = 30, interactions_return: Optional[int] = None,
        mtry_select_prob=None, forced_features: Optional[Iterable[int]] = None,
        rit_params: Optional[RITParams] = None, forest=None,
        iterations: Optional[Iterable[int]] = None, replicate_mode: str = "iterate",
        feature_names=None, random_state: Optional[int] = None, verbose: int = 0) -> IRFResult:
    """
    Fit iterative Random Forests and score interaction stability.

    Parameters
    ----------
    x : array-like of shape (n_samples, n_features)
        Numeric training data.
    y : array-like of shape (n_samples,)
        Class labels or numeric response.
    xtest, ytest : array-like, optional
        Held-out data used to score each iteration's forest (ROC AUC,
        accuracy or R²) and pick ``selected_iter``.
    n_iter : int, default=5
        Weighting rounds.
    n_core : int or None, default=1
        joblib workers; used for tree growth on the full data and across
        bootstrap replicates.
    n_bootstrap : int, default=30
        Bootstrap replicates; ``0`` skips the interaction search.
    interactions_return : int or None, default=None
        Keep the top interactions per iteration.
    mtry_select_prob : array-like of shape (n_features,), optional
        First-round sampling weights; uniform by default.
    forced_features : iterable of int, optional
        0-based features added to every split's candidate pool.
    rit_params : RITParams, optional
    forest : estimator, optional
        Template forest; see :func:`default_forest`.
    iterations : iterable of int, optional
        1-based iterations to report interactions for; all by default.
    replicate_mode : {"iterate", "fixed"}, default="iterate"
        See :class:`StabilitySelector`.
    feature_names : list of str, optional
    random_state : int or None, default=None
    verbose : int, default=0

    Returns
    -------
    IRFResult

    Raises
    ------
    DimensionMismatch, InvalidWeightVector
        For malformed inputs, before any forest is grown.
    """
    x, y = check_xy(x, y)
    n_features = x.shape[1]
    if n_iter < 1:
        raise ValueError("n_iter must be >= 1")
    if n_bootstrap < 0:
        raise ValueError("n_bootstrap must be >= 0")
    if n_bootstrap > 0:
        _check_selector_args(n_iter, iterations, replicate_mode)
    weights, forced = check_feature_weights(mtry_select_prob, n_features, forced_features)
    if (xtest is None) != (ytest is None):
        raise ValueError("xtest and ytest must be given together")
    if xtest is not None:
        xtest = check_matrix(xtest, "xtest")
        ytest = np.asarray(ytest).ravel()
        if xtest.shape[1] != n_features:
            raise DimensionMismatch(f"xtest has {xtest.shape[1]} features but x has {n_features}")
        if xtest.shape[0] != ytest.shape[0]:
            raise DimensionMismatch(f"xtest has {xtest.shape[0]} rows but ytest has {ytest.shape[0]}")
    if feature_names is not None and len(feature_names) != n_features:
        raise DimensionMismatch("feature_names length must match x.shape[1]")
    rit_params = rit_params if rit_params is not None else RITParams()
    forest = forest if forest is not None else default_forest(y)

    full_seed, selector_seed = spawn_seeds(random_state, 2)
    rng = np.random.default_rng(full_seed)

    models, weight_hist, importances = [], [], []
    test_scores = [] if xtest is not None else None
    for k in range(1, n_iter + 1):
        model = clone(forest).set_params(random_state=int(rng.integers(_SEED_BOUND)), n_jobs=n_core)
        model.fit(x, y, feature_weight=weights, forced_features=forced, X_test=xtest)
        models.append(model)
        weight_hist.append(weights)
        importances.append(model.feature_importances_)
        if test_scores is not None:
            test_scores.append(_test_score(model, xtest, ytest))
        if verbose:
            logger.info("iteration %d/%d done%s", k, n_iter,
                        "" if test_scores is None else f" (test score {test_scores[-1]:.4f})")
        weights = update_weights(model.feature_importances_)

    selected_iter = int(np.argmax(test_scores)) + 1 if test_scores else n_iter

    stability = None
    interaction: dict = {}
    if n_bootstrap > 0:
        selector = StabilitySelector(
            forest, n_iter=n_iter, n_bootstrap=n_bootstrap,
            interactions_return=interactions_return, rit_params=rit_params,
            iterations=iterations, replicate_mode=replicate_mode, fixed_weights=weight_hist,
            initial_weights=mtry_select_prob, forced_features=forced,
            feature_names=feature_names, n_jobs=n_core, random_state=selector_seed,
            verbose=verbose,
        )
        stability = selector.run(x, y)
        interaction = stability.interactions

    return IRFResult(models=models, weights=weight_hist, importances=importances,
                     interaction=interaction, selected_iter=selected_iter,
                     test_scores=test_scores, stability=stability)


class IterativeRandomForest(BaseEstimator):
    """
    scikit-learn style wrapper around :func:`irf`.

    Predictions come from the forest of the selected iteration (the best
    held-out score when test data is passed to ``fit``, else the last).

    Attributes
    ----------
    models_ : list of fitted forests
    weights_ : list of ndarray
    interactions_ : dict[int, list[Interaction]]
    feature_importances_ : ndarray
        Importances of the selected iteration's forest.
    selected_iter_ : int
    test_scores_ : list of float or None
    failures_ : list of ReplicateFailure
    """

    def __init__(self, forest=None, *, n_iter: int = 5, n_bootstrap: int = 30,
                 interactions_return: Optional[int] = None, rit_params: Optional[RITParams] = None,
                 mtry_select_prob=None, forced_features=None, iterations=None,
                 replicate_mode: str = "iterate", feature_names=None,
                 n_jobs: Optional[int] = 1, random_state: Optional[int] = None, verbose: int = 0):
        self.forest = forest
        self.n_iter = n_iter
        self.n_bootstrap = n_bootstrap
        self.interactions_return = interactions_return
        self.rit_params = rit_params
        self.mtry_select_prob = mtry_select_prob
        self.forced_features = forced_features
        self.iterations = iterations
        self.replicate_mode = replicate_mode
        self.feature_names = feature_names
        self.n_jobs = n_jobs
        self.random_state = random_state
        self.verbose = verbose

    def fit(self, X, y, X_test=None, y_test=None):
        result = irf(X, y, X_test, y_test, n_iter=self.n_iter, n_core=self.n_jobs,
                     n_bootstrap=self.n_bootstrap, interactions_return=self.interactions_return,
                     mtry_select_prob=self.mtry_select_prob, forced_features=self.forced_features,
                     rit_params=self.rit_params, forest=self.forest, iterations=self.iterations,
                     replicate_mode=self.replicate_mode, feature_names=self.feature_names,
                     random_state=self.random_state, verbose=self.verbose)
        self.result_ = result
        self.models_ = result.models
        self.weights_ = result.weights
        self.interactions_ = result.interaction
        self.selected_iter_ = result.selected_iter
        self.test_scores_ = result.test_scores
        self.failures_ = result.failures
        self.feature_importances_ = result.importances[result.selected_iter - 1]
        return self

    def _selected_model(self):
        if getattr(self, "models_", None) is None:
            raise ValueError("Estimator not fitted. Call fit(...) first.")
        return self.models_[self.selected_iter_ - 1]

    def predict(self, X):
        return self._selected_model().predict(X)

    def predict_proba(self, X):
        return self._selected_model().predict_proba(X)

    def score(self, X, y):
        return self._selected_model().score(X, y)
