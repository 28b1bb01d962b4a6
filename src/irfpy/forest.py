# -*- coding: utf-8 -*-
"""
irfpy.forest
============

Bagged ensembles of :class:`~irfpy.tree.Tree` objects whose split variables
are drawn from a weighted, non-uniform distribution.

``WeightedRandomForestClassifier`` and ``WeightedRandomForestRegressor``
follow scikit-learn estimator conventions.  Besides ``X`` and ``y``,
``fit`` accepts the feature weight vector used for candidate sampling and a
set of forced features that join every split's candidate pool.  Each tree
gets its own random stream, so trees can be grown in parallel with joblib and
the fitted forest does not depend on ``n_jobs``.
"""
from __future__ import annotations

import logging
import math
from typing import Iterable, Optional

import numpy as np
from joblib import Parallel, delayed
from sklearn.base import BaseEstimator, ClassifierMixin, RegressorMixin

from .exceptions import DimensionMismatch
from .tree import Tree, WeightedTreeBuilder
from .weights import CandidateSampler, check_feature_weights, spawn_seeds

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def check_matrix(X, name: str = "X") -> np.ndarray:
    X = np.asarray(X, dtype=float)
    if X.ndim != 2:
        raise ValueError(f"{name} must be a 2D array, got shape {X.shape}")
    if not np.all(np.isfinite(X)):
        raise ValueError(f"{name} contains NaN or infinite values")
    return X


def check_xy(X, y) -> tuple[np.ndarray, np.ndarray]:
    """Validate a design matrix and its target before any fitting starts."""
    X = check_matrix(X)
    y = np.asarray(y).ravel()
    if X.shape[0] != y.shape[0]:
        raise DimensionMismatch(f"X has {X.shape[0]} rows but y has {y.shape[0]} values")
    if X.shape[0] == 0:
        raise ValueError("cannot fit on an empty dataset")
    return X, y


def _grow_tree(builder: WeightedTreeBuilder, X, y, bootstrap: bool, seed) -> Tree:
    rng = np.random.default_rng(seed)
    n = X.shape[0]
    if bootstrap:
        rows = rng.integers(0, n, size=n)
    else:
        rows = np.arange(n)
    return builder.build(X, y, rows, rng)


# -----------------------------------------------------------------------------
# Base forest
# -----------------------------------------------------------------------------
class BaseWeightedForest(BaseEstimator):
    """Shared fitting logic of the weighted forests.

    Parameters
    ----------
    n_estimators : int, default=500
        Number of trees.
    mtry : int, float, {"sqrt", "third", "all"} or None
        Number of weighted candidate draws per split.  A float is a fraction
        of the feature count and ``"all"`` uses every feature.  ``None``
        selects the estimator default: ``"sqrt"`` for the classifier and
        ``"third"`` for the regressor.
    bootstrap : bool, default=True
        Grow each tree on a bootstrap resample of the rows.
    min_samples_split : int, default=2
        Minimum number of rows required to split a node.
    min_samples_leaf : int
        Minimum number of rows in each child of a split.
    max_depth : int or None, default=None
        Maximum tree depth.
    n_jobs : int or None, default=None
        Number of joblib workers used to grow trees.
    random_state : int or None, default=None
        Seed for bootstrap resampling and candidate sampling.
    verbose : int, default=0
        Verbosity level.
    """

    _classifier = False

    def __init__(self, n_estimators: int = 500, *, mtry=None, bootstrap: bool = True,
                 min_samples_split: int = 2, min_samples_leaf: int = 1,
                 max_depth: Optional[int] = None, n_jobs: Optional[int] = None,
                 random_state: Optional[int] = None, verbose: int = 0):
        self.n_estimators = n_estimators
        self.mtry = mtry
        self.bootstrap = bootstrap
        self.min_samples_split = min_samples_split
        self.min_samples_leaf = min_samples_leaf
        self.max_depth = max_depth
        self.n_jobs = n_jobs
        self.random_state = random_state
        self.verbose = verbose

    def fit(self, X, y, feature_weight=None, forced_features: Optional[Iterable[int]] = None,
            X_test=None):
        """
        Grow the forest.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Numeric training data.
        y : array-like of shape (n_samples,)
            Class labels or numeric target.
        feature_weight : array-like of shape (n_features,), optional
            Non-negative weights for candidate sampling; uniform when omitted.
        forced_features : iterable of int, optional
            0-based features added to every split's candidate pool.
        X_test : array-like of shape (n_test, n_features), optional
            Held-out rows; their predictions are stored in
            ``test_predictions_``.

        Returns
        -------
        self

        Raises
        ------
        DimensionMismatch
            If ``X`` and ``y`` disagree in length, or the weights or
            ``X_test`` do not match the feature count.
        InvalidWeightVector
            If the weights are negative or carry no mass while no feature is
            forced.
        """
        X, y = check_xy(X, y)
        n_samples, n_features = X.shape
        w, forced = check_feature_weights(feature_weight, n_features, forced_features)
        if X_test is not None:
            X_test = check_matrix(X_test, "X_test")
            if X_test.shape[1] != n_features:
                raise DimensionMismatch(
                    f"X_test has {X_test.shape[1]} features but X has {n_features}")

        self.n_features_in_ = n_features
        self.feature_weights_ = w
        self.forced_features_ = forced
        self.mtry_ = self._resolve_mtry(n_features)
        y_fit = self._encode_target(y)

        sampler = CandidateSampler(w, forced, self.mtry_)
        builder = WeightedTreeBuilder(sampler, n_classes=self._n_classes(),
                                      min_samples_split=self.min_samples_split,
                                      min_samples_leaf=self.min_samples_leaf,
                                      max_depth=self.max_depth)
        seeds = spawn_seeds(self.random_state, self.n_estimators)
        if self.verbose:
            logger.info("growing %d trees (mtry=%d, forced=%s)",
                        len(seeds), self.mtry_, sorted(forced))
        self.estimators_ = Parallel(n_jobs=self.n_jobs)(
            delayed(_grow_tree)(builder, X, y_fit, self.bootstrap, seed) for seed in seeds
        )

        totals = np.zeros(n_features, dtype=float)
        for tree in self.estimators_:
            totals += tree.feature_importances()
        grand = totals.sum()
        self.feature_importances_ = totals / grand if grand > 0 else totals

        self.test_predictions_ = self.predict(X_test) if X_test is not None else None
        return self

    def apply(self, X) -> np.ndarray:
        """Leaf index reached by each row in each tree, shape (n_samples, n_estimators)."""
        X = self._check_predict_input(X)
        return np.column_stack([tree.apply(X) for tree in self.estimators_])

    # ------------------------------------------------------------------
    def _resolve_mtry(self, n_features: int) -> int:
        mtry = self.mtry
        if mtry is None:
            mtry = self._default_mtry
        if mtry == "sqrt":
            k = int(math.floor(math.sqrt(n_features)))
        elif mtry == "third":
            k = n_features // 3
        elif isinstance(mtry, float):
            if not 0.0 < mtry <= 1.0:
                raise ValueError("float mtry must be in (0, 1]")
            k = int(mtry * n_features)
        elif mtry == "all":
            k = n_features
        else:
            k = int(mtry)
        return int(min(max(k, 1), n_features))

    def _check_predict_input(self, X) -> np.ndarray:
        if getattr(self, "estimators_", None) is None:
            raise ValueError("Estimator not fitted. Call fit(...) first.")
        X = check_matrix(X)
        if X.shape[1] != self.n_features_in_:
            raise DimensionMismatch(
                f"X has {X.shape[1]} features but the forest was fit on {self.n_features_in_}")
        return X

    def _n_classes(self):
        return None

    def _encode_target(self, y):
        return y.astype(float)


# -----------------------------------------------------------------------------
# Classifier
# -----------------------------------------------------------------------------
class WeightedRandomForestClassifier(ClassifierMixin, BaseWeightedForest):
    """
    Random forest classifier with weighted split-variable sampling.

    Splits maximise the decrease in Gini impurity.  Trees are grown until
    their leaves are pure unless ``min_samples_leaf``/``max_depth`` stop them
    earlier.  Predicted probabilities average the class frequencies of the
    leaves reached in every tree.

    Attributes
    ----------
    estimators_ : list of Tree
    classes_ : ndarray of shape (n_classes,)
    feature_importances_ : ndarray of shape (n_features,)
        Gini importance normalised to sum to one (all zeros if no tree split).
    feature_weights_ : ndarray of shape (n_features,)
        Weights used for candidate sampling.
    forced_features_ : frozenset of int
    mtry_ : int
        Resolved number of weighted draws per split.
    test_predictions_ : ndarray or None
        Predictions for ``X_test`` when it was passed to ``fit``.
    """

    _classifier = True
    _default_mtry = "sqrt"

    def __init__(self, n_estimators: int = 500, *, mtry=None, bootstrap: bool = True,
                 min_samples_split: int = 2, min_samples_leaf: int = 1,
                 max_depth: Optional[int] = None, n_jobs: Optional[int] = None,
                 random_state: Optional[int] = None, verbose: int = 0):
        super().__init__(n_estimators, mtry=mtry, bootstrap=bootstrap,
                         min_samples_split=min_samples_split,
                         min_samples_leaf=min_samples_leaf, max_depth=max_depth,
                         n_jobs=n_jobs, random_state=random_state, verbose=verbose)

    def _encode_target(self, y):
        self.classes_, y_enc = np.unique(y, return_inverse=True)
        return y_enc.astype(np.intp)

    def _n_classes(self):
        return len(self.classes_)

    def predict_proba(self, X) -> np.ndarray:
        """
        Predict class probabilities for ``X``.

        Returns
        -------
        ndarray of shape (n_samples, n_classes)
            Rows sum to one.
        """
        X = self._check_predict_input(X)
        acc = np.zeros((X.shape[0], len(self.classes_)), dtype=float)
        for tree in self.estimators_:
            leaves = tree.apply(X)
            counts = np.stack([tree.nodes[i].value for i in range(len(tree))])
            freq = counts / counts.sum(axis=1, keepdims=True)
            acc += freq[leaves]
        return acc / len(self.estimators_)

    def predict(self, X) -> np.ndarray:
        proba = self.predict_proba(X)
        return self.classes_[np.argmax(proba, axis=1)]


# -----------------------------------------------------------------------------
# Regressor
# -----------------------------------------------------------------------------
class WeightedRandomForestRegressor(RegressorMixin, BaseWeightedForest):
    """
    Random forest regressor with weighted split-variable sampling.

    Splits maximise the decrease in within-node variance.  Predictions average
    the leaf means of every tree.  Defaults follow the usual regression forest
    conventions (``mtry = p // 3``, ``min_samples_leaf=5``).
    """

    _default_mtry = "third"

    def __init__(self, n_estimators: int = 500, *, mtry=None, bootstrap: bool = True,
                 min_samples_split: int = 2, min_samples_leaf: int = 5,
                 max_depth: Optional[int] = None, n_jobs: Optional[int] = None,
                 random_state: Optional[int] = None, verbose: int = 0):
        super().__init__(n_estimators, mtry=mtry, bootstrap=bootstrap,
                         min_samples_split=min_samples_split,
                         min_samples_leaf=min_samples_leaf, max_depth=max_depth,
                         n_jobs=n_jobs, random_state=random_state, verbose=verbose)

    def predict(self, X) -> np.ndarray:
        X = self._check_predict_input(X)
        out = np.zeros(X.shape[0], dtype=float)
        for tree in self.estimators_:
            means = np.array([nd.value for nd in tree.nodes], dtype=float)
            out += means[tree.apply(X)]
        return out / len(self.estimators_)
