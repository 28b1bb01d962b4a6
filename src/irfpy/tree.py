# -*- coding: utf-8 -*-
"""
irfpy.tree
==========

Decision trees grown with weighted split-variable sampling.

A fitted tree is an arena: a flat tuple of :class:`TreeNode` objects where
children are referenced by position, with the root at index 0.  Trees are
built once by :class:`WeightedTreeBuilder` and never modified afterwards;
prediction, leaf assignment and decision-path extraction only read them.

At every split the builder asks a
:class:`~irfpy.weights.CandidateSampler` for the candidate features, then
picks the (feature, threshold) pair with the largest weighted impurity
decrease.  Gini impurity is used for classification and variance for
regression.  Nodes that cannot be split (pure, too small, constant features
or no positive decrease) simply become leaves.
"""

# -----------------------------------------------------------------------------

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .weights import CandidateSampler

_EPS = 1e-12


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def gini(counts: np.ndarray) -> float:
    tot = counts.sum()
    if tot <= 0:
        return 0.0
    p = counts / tot
    return float(1.0 - np.sum(p * p))


def variance(y: np.ndarray) -> float:
    if y.size == 0:
        return 0.0
    return float(np.var(y))


def node_impurity(y: np.ndarray, n_classes: Optional[int]) -> float:
    """Gini impurity of encoded labels, or variance of a numeric target."""
    if n_classes is None:
        return variance(np.asarray(y, dtype=float))
    return gini(np.bincount(y, minlength=n_classes).astype(float))


# -----------------------------------------------------------------------------
# Node / Tree
# -----------------------------------------------------------------------------
@dataclass
class TreeNode:
    """A single node of a :class:`Tree`.

    Internal nodes carry ``feature``/``threshold`` and the positions of their
    children (rows with ``x[feature] <= threshold`` go left).  Leaves have
    ``feature == -1`` and ``left == right == -1``.

    ``value`` is the vector of class counts for classification trees and the
    mean target for regression trees.  ``samples`` holds the training rows
    (indices into the original X, repeated when the bootstrap drew a row more
    than once) that reached a leaf.
    """
    value: object
    n_samples: int
    impurity: float
    depth: int
    feature: int = -1
    threshold: float = np.nan
    left: int = -1
    right: int = -1
    impurity_decrease: float = 0.0
    samples: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def is_leaf(self) -> bool:
        return self.left < 0


class Tree:
    """Immutable arena of :class:`TreeNode` objects.

    Parameters
    ----------
    nodes : sequence of TreeNode
        Nodes in construction order, root first.
    n_features : int
        Width of the training matrix.
    n_classes : int or None
        Number of classes, or ``None`` for regression trees.
    """

    def __init__(self, nodes, n_features: int, n_classes: Optional[int] = None):
        self.nodes = tuple(nodes)
        self.n_features = int(n_features)
        self.n_classes = n_classes
        self.feature_ = np.array([nd.feature for nd in self.nodes], dtype=np.intp)
        self.threshold_ = np.array([nd.threshold for nd in self.nodes], dtype=float)
        self.left_ = np.array([nd.left for nd in self.nodes], dtype=np.intp)
        self.right_ = np.array([nd.right for nd in self.nodes], dtype=np.intp)

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def leaves(self) -> np.ndarray:
        return np.flatnonzero(self.left_ < 0)

    @property
    def n_leaves(self) -> int:
        return int(self.leaves.size)

    @property
    def max_depth(self) -> int:
        return max(nd.depth for nd in self.nodes)

    def apply(self, X) -> np.ndarray:
        """Return the index of the leaf reached by each row of ``X``."""
        X = np.asarray(X, dtype=float)
        out = np.zeros(X.shape[0], dtype=np.intp)
        active = np.flatnonzero(self.left_[out] >= 0)
        while active.size:
            nid = out[active]
            go_left = X[active, self.feature_[nid]] <= self.threshold_[nid]
            out[active] = np.where(go_left, self.left_[nid], self.right_[nid])
            active = active[self.left_[out[active]] >= 0]
        return out

    def leaf_prediction(self, node_id: int):
        """Class index (classification) or mean value (regression) stored at a node."""
        value = self.nodes[node_id].value
        if self.n_classes is None:
            return float(value)
        return int(np.argmax(value))

    def decision_paths(self) -> dict:
        """Map every leaf index to the set of features split on along its path."""
        paths: dict = {}
        stack = [(0, frozenset())]
        while stack:
            nid, used = stack.pop()
            node = self.nodes[nid]
            if node.is_leaf:
                paths[nid] = used
                continue
            used = used | {node.feature}
            stack.append((node.right, used))
            stack.append((node.left, used))
        return paths

    def feature_importances(self) -> np.ndarray:
        """Unnormalised impurity decrease credited to each feature."""
        internal = self.left_ >= 0
        dec = np.array([nd.impurity_decrease for nd in self.nodes], dtype=float)
        return np.bincount(self.feature_[internal], weights=dec[internal],
                           minlength=self.n_features).astype(float)

    def export_rules(self, feature_names=None, class_names=None) -> list[str]:
        """
        Export every root-to-leaf path of the tree as a readable rule.

        Parameters
        ----------
        feature_names : list[str], optional
            Names for the input features; ``X[j]`` (0-based) is used otherwise.
        class_names : list, optional
            Labels for the class indices of a classification tree.

        Returns
        -------
        list[str]
            Rules of the form ``<antecedent> => <prediction> (N=<rows>)``.
        """
        rules: list[str] = []
        self._collect_rules(0, [], rules, feature_names, class_names)
        return rules

    def _collect_rules(self, nid, parts, rules, fn, cn):
        node = self.nodes[nid]
        if node.is_leaf:
            body = " AND ".join(parts) if parts else "<root>"
            pred = self.leaf_prediction(nid)
            if self.n_classes is None:
                pred = f"value={pred:.6g}"
            elif cn is not None:
                pred = cn[pred]
            rules.append(f"{body} => {pred} (N={node.n_samples})")
            return
        name = (fn[node.feature] if (fn is not None and 0 <= node.feature < len(fn))
                else f"X[{node.feature}]")
        self._collect_rules(node.left, parts + [f"{name} <= {node.threshold:.6g}"], rules, fn, cn)
        self._collect_rules(node.right, parts + [f"{name} > {node.threshold:.6g}"], rules, fn, cn)


# -----------------------------------------------------------------------------
# Builder
# -----------------------------------------------------------------------------
class WeightedTreeBuilder:
    """
    Grows a single :class:`Tree` with weighted candidate-feature sampling.

    Parameters
    ----------
    candidate_sampler : CandidateSampler
        Produces the candidate features of each split.
    n_classes : int or None
        Number of classes for Gini splitting; ``None`` selects variance
        reduction for a numeric target.
    min_samples_split : int, default=2
        Nodes with fewer rows become leaves.
    min_samples_leaf : int, default=1
        Minimum number of rows on each side of a split.
    max_depth : int or None, default=None
        Depth limit; ``None`` grows until the other stopping rules apply.
    """

    def __init__(self, candidate_sampler: CandidateSampler, *, n_classes: Optional[int] = None,
                 min_samples_split: int = 2, min_samples_leaf: int = 1,
                 max_depth: Optional[int] = None):
        self.candidate_sampler = candidate_sampler
        self.n_classes = n_classes
        self.min_samples_split = max(int(min_samples_split), 2)
        self.min_samples_leaf = max(int(min_samples_leaf), 1)
        self.max_depth = max_depth

    def build(self, X: np.ndarray, y: np.ndarray, sample_indices: np.ndarray,
              rng: np.random.Generator) -> Tree:
        """
        Grow a tree on the rows ``sample_indices`` of ``X``/``y``.

        The tree is built depth-first with an explicit stack, so very deep
        trees do not hit the interpreter's recursion limit.

        Parameters
        ----------
        X : ndarray of shape (n_samples, n_features)
            Numeric design matrix.
        y : ndarray of shape (n_samples,)
            Encoded class indices (classification) or floats (regression).
        sample_indices : ndarray of int
            Rows used for this tree; may contain repeats (bootstrap).
        rng : numpy.random.Generator
            Stream used for candidate sampling.

        Returns
        -------
        Tree
        """
        nodes: list[TreeNode] = []
        # (rows, depth, parent position, is_left)
        stack = [(np.asarray(sample_indices, dtype=np.intp), 0, -1, True)]
        while stack:
            rows, depth, parent, is_left = stack.pop()
            node = self._make_node(y[rows], depth)
            nid = len(nodes)
            nodes.append(node)
            if parent >= 0:
                if is_left:
                    nodes[parent].left = nid
                else:
                    nodes[parent].right = nid

            split = None
            if not self._is_terminal(node, rows, y):
                split = self._best_split(X, y, rows, rng)
            if split is None:
                node.samples = rows
                continue

            feat, thr, decrease = split
            node.feature = feat
            node.threshold = thr
            node.impurity_decrease = decrease
            go_left = X[rows, feat] <= thr
            # right pushed first so the left subtree is laid out next
            stack.append((rows[~go_left], depth + 1, nid, False))
            stack.append((rows[go_left], depth + 1, nid, True))
        return Tree(nodes, X.shape[1], self.n_classes)

    def _make_node(self, y_node: np.ndarray, depth: int) -> TreeNode:
        if self.n_classes is None:
            yf = y_node.astype(float)
            return TreeNode(value=float(yf.mean()), n_samples=int(yf.size),
                            impurity=variance(yf), depth=depth)
        counts = np.bincount(y_node, minlength=self.n_classes).astype(float)
        return TreeNode(value=counts, n_samples=int(y_node.size),
                        impurity=gini(counts), depth=depth)

    def _is_terminal(self, node: TreeNode, rows: np.ndarray, y: np.ndarray) -> bool:
        if node.n_samples < self.min_samples_split:
            return True
        if node.n_samples < 2 * self.min_samples_leaf:
            return True
        if self.max_depth is not None and node.depth >= int(self.max_depth):
            return True
        return node.impurity <= _EPS

    def _best_split(self, X, y, rows, rng):
        """Best (feature, threshold, decrease) among the sampled candidates, or None."""
        candidates = self.candidate_sampler.draw(rng)
        yn = y[rows]
        m = rows.size
        if self.n_classes is None:
            yn = yn.astype(float)
            parent_sum = yn.sum()
            parent_term = float(np.sum(yn * yn) - parent_sum * parent_sum / m)
        else:
            onehot = np.zeros((m, self.n_classes), dtype=float)
            onehot[np.arange(m), yn] = 1.0
            total = onehot.sum(axis=0)
            parent_term = float(m - np.sum(total * total) / m)

        min_leaf = self.min_samples_leaf
        best_gain, best_feat, best_thr = _EPS, None, None
        # candidates are sorted, so ties keep the lowest feature index
        for j in candidates:
            col = X[rows, j]
            order = np.argsort(col, kind="mergesort")
            v = col[order]
            bd = np.nonzero(v[:-1] < v[1:])[0]
            if bd.size == 0:
                continue
            n_left = (bd + 1).astype(float)
            n_right = m - n_left
            ok = (n_left >= min_leaf) & (n_right >= min_leaf)
            if not ok.any():
                continue

            if self.n_classes is None:
                ys = yn[order]
                cs = np.cumsum(ys)[bd]
                cs2 = np.cumsum(ys * ys)[bd]
                sse_left = cs2 - cs * cs / n_left
                rs = parent_sum - cs
                rs2 = (np.sum(yn * yn) - cs2)
                sse_right = rs2 - rs * rs / n_right
                gains = parent_term - sse_left - sse_right
            else:
                left = np.cumsum(onehot[order], axis=0)[bd]
                right = total - left
                gains = (parent_term
                         - (n_left - np.sum(left * left, axis=1) / n_left)
                         - (n_right - np.sum(right * right, axis=1) / n_right))

            gains = np.where(ok, gains, -np.inf)
            # argmax returns the first maximum, i.e. the lowest threshold
            i = int(np.argmax(gains))
            if gains[i] > best_gain + _EPS:
                thr = 0.5 * (v[bd[i]] + v[bd[i] + 1])
                if thr >= v[bd[i] + 1]:
                    thr = v[bd[i]]
                best_gain, best_feat, best_thr = float(gains[i]), int(j), float(thr)

        if best_feat is None:
            return None
        return best_feat, best_thr, best_gain
