# -*- coding: utf-8 -*-
"""
irfpy.paths
===========

Decision-path extraction for fitted weighted forests.

:func:`read_forest` replays a dataset through every tree and, for each leaf
reached by at least one row, records the set of features split on between the
root and that leaf, the number of rows that landed there and the leaf's
prediction.  The result, a :class:`ForestPaths`, is what the random
intersection tree search consumes.

Feature indices are 0-based in ``feature_sets`` and ``node_feature`` (they
index the columns of X).  ``tree_id`` and ``leaf_id`` in ``tree_info`` are
1-based.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .exceptions import DimensionMismatch
from .forest import check_matrix

WEIGHT_STRATEGIES = ("size", "purity", "uniform")


def _impurity(y: np.ndarray, classification: bool) -> float:
    if y.size == 0:
        return 0.0
    if classification:
        _, counts = np.unique(y, return_counts=True)
        p = counts / counts.sum()
        return float(1.0 - np.sum(p * p))
    return float(np.var(y.astype(float)))


def _majority(y: np.ndarray):
    vals, counts = np.unique(y, return_counts=True)
    return vals[int(np.argmax(counts))]


@dataclass(frozen=True)
class DecisionPathRecord:
    """One leaf of one tree, as seen by the rows replayed through it."""
    tree_id: int
    leaf_id: int
    features: frozenset
    prediction: Any
    size_node: int
    purity_decrease: Optional[float] = None


@dataclass
class ForestPaths:
    """
    Leaf-level decision paths of a fitted forest.

    Attributes
    ----------
    tree_info : pandas.DataFrame
        One row per leaf with columns ``tree_id``, ``leaf_id``,
        ``prediction``, ``size_node`` and, when requested,
        ``purity_decrease``.
    feature_sets : list of frozenset
        Split features (0-based) on each leaf's path, aligned with
        ``tree_info``.
    n_features : int
        Number of features of the data the forest was fit on.
    node_feature : ndarray of bool, shape (n_leaves, n_features), or None
        Feature-presence indicator of each leaf's path.
    """
    tree_info: pd.DataFrame
    feature_sets: list
    n_features: int
    node_feature: Optional[np.ndarray] = field(default=None, repr=False)

    def __len__(self) -> int:
        return len(self.feature_sets)

    def records(self) -> Iterator[DecisionPathRecord]:
        has_purity = "purity_decrease" in self.tree_info.columns
        for i, row in enumerate(self.tree_info.itertuples(index=False)):
            yield DecisionPathRecord(
                tree_id=int(row.tree_id), leaf_id=int(row.leaf_id),
                features=self.feature_sets[i], prediction=row.prediction,
                size_node=int(row.size_node),
                purity_decrease=float(row.purity_decrease) if has_purity else None,
            )

    def select(self, class_id=None, min_nodesize: int = 1) -> "ForestPaths":
        """Keep leaves predicting ``class_id`` (if given) with at least ``min_nodesize`` rows."""
        keep = self.tree_info["size_node"].to_numpy() >= int(min_nodesize)
        if class_id is not None:
            keep &= self.tree_info["prediction"].to_numpy() == class_id
        idx = np.flatnonzero(keep)
        return ForestPaths(
            tree_info=self.tree_info.iloc[idx].reset_index(drop=True),
            feature_sets=[self.feature_sets[i] for i in idx],
            n_features=self.n_features,
            node_feature=None if self.node_feature is None else self.node_feature[idx],
        )

    def weights(self, strategy: str = "size") -> np.ndarray:
        """
        Leaf sampling weights for the intersection tree search.

        Parameters
        ----------
        strategy : {"size", "purity", "uniform"}, default="size"
            ``"size"`` uses the number of rows in the leaf, ``"purity"`` the
            purity decrease (negative values count as zero) and ``"uniform"``
            weights every leaf equally.
        """
        if strategy == "size":
            return self.tree_info["size_node"].to_numpy(dtype=float)
        if strategy == "purity":
            if "purity_decrease" not in self.tree_info.columns:
                raise ValueError("purity weights need read_forest(..., wt_pred_accuracy=True)")
            return np.clip(self.tree_info["purity_decrease"].to_numpy(dtype=float), 0.0, None)
        if strategy == "uniform":
            return np.ones(len(self), dtype=float)
        raise ValueError(f"unknown weight strategy {strategy!r}; expected one of {WEIGHT_STRATEGIES}")


def _read_tree(tree, tree_id: int, X, y, classes, wt_pred_accuracy: bool,
               total_impurity: float) -> list[dict]:
    leaves = tree.apply(X)
    ids, inverse, sizes = np.unique(leaves, return_inverse=True, return_counts=True)
    paths = tree.decision_paths()
    n = X.shape[0]
    classification = classes is not None
    out = []
    for k, leaf in enumerate(ids):
        rec = {"tree_id": tree_id, "leaf_id": int(leaf) + 1, "features": paths[int(leaf)],
               "size_node": int(sizes[k])}
        if y is not None:
            y_leaf = y[inverse == k]
            rec["prediction"] = _majority(y_leaf) if classification else float(y_leaf.mean())
            if wt_pred_accuracy:
                rec["purity_decrease"] = (sizes[k] / n) * (total_impurity - _impurity(y_leaf, classification))
        else:
            pred = tree.leaf_prediction(int(leaf))
            rec["prediction"] = classes[pred] if classification else pred
        out.append(rec)
    return out


def read_forest(forest, X, y=None, *, wt_pred_accuracy: bool = False,
                return_node_feature: bool = True, n_jobs: Optional[int] = None) -> ForestPaths:
    """
    Extract the decision path of every leaf of every tree.

    Every row of ``X`` is routed down each tree; leaves that receive no rows
    are left out.  ``X`` need not be the data the forest was trained on.

    Parameters
    ----------
    forest : WeightedRandomForestClassifier or WeightedRandomForestRegressor
        A fitted forest.
    X : array-like of shape (n_samples, n_features)
        Rows to replay.
    y : array-like of shape (n_samples,), optional
        Responses for ``X``.  When given, leaf predictions are the majority
        class (ties go to the smallest label) or the mean of the rows in the
        leaf; otherwise the prediction stored in the tree is used.
    wt_pred_accuracy : bool, default=False
        Add a ``purity_decrease`` column, the impurity of ``y`` minus the
        impurity of the leaf's rows, scaled by the share of rows in the leaf.
        Requires ``y``.
    return_node_feature : bool, default=True
        Also build the dense leaf-by-feature indicator matrix.
    n_jobs : int or None, default=None
        joblib workers used across trees.

    Returns
    -------
    ForestPaths
    """
    if getattr(forest, "estimators_", None) is None:
        raise ValueError("Estimator not fitted. Call fit(...) first.")
    X = check_matrix(X)
    if X.shape[1] != forest.n_features_in_:
        raise DimensionMismatch(
            f"X has {X.shape[1]} features but the forest was fit on {forest.n_features_in_}")
    classes = getattr(forest, "classes_", None)
    if y is not None:
        y = np.asarray(y).ravel()
        if y.shape[0] != X.shape[0]:
            raise DimensionMismatch(f"X has {X.shape[0]} rows but y has {y.shape[0]} values")
    if wt_pred_accuracy and y is None:
        raise ValueError("wt_pred_accuracy=True requires y")
    total_impurity = _impurity(y, classes is not None) if y is not None else 0.0

    per_tree = Parallel(n_jobs=n_jobs)(
        delayed(_read_tree)(tree, t + 1, X, y, classes, wt_pred_accuracy, total_impurity)
        for t, tree in enumerate(forest.estimators_)
    )
    rows = [rec for recs in per_tree for rec in recs]
    feature_sets = [rec.pop("features") for rec in rows]

    columns = ["tree_id", "leaf_id", "prediction", "size_node"]
    if wt_pred_accuracy:
        columns.append("purity_decrease")
    tree_info = pd.DataFrame(rows, columns=columns)

    node_feature = None
    if return_node_feature:
        p = forest.n_features_in_
        node_feature = np.zeros((len(feature_sets), p), dtype=bool)
        for i, feats in enumerate(feature_sets):
            if feats:
                node_feature[i, sorted(feats)] = True
    return ForestPaths(tree_info=tree_info, feature_sets=feature_sets,
                       n_features=forest.n_features_in_, node_feature=node_feature)
