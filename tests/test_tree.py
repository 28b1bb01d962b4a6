import numpy as np
import pytest
from irfpy.tree import Tree, WeightedTreeBuilder
from irfpy.weights import CandidateSampler


def _builder(n_features, n_classes=2, mtry=None, weights=None, forced=(), **kw):
    w = np.ones(n_features) if weights is None else np.asarray(weights, dtype=float)
    sampler = CandidateSampler(w, forced, mtry if mtry is not None else n_features)
    return WeightedTreeBuilder(sampler, n_classes=n_classes, **kw)


def _grow(builder, X, y, seed=0):
    return builder.build(X, y, np.arange(len(y)), np.random.default_rng(seed))


def test_identical_columns_split_on_lowest_feature_index():
    X = np.array([[1, 1], [2, 2], [3, 3], [4, 4]], dtype=float)
    y = np.array([0, 0, 1, 1])
    tree = _grow(_builder(2), X, y)
    root = tree.nodes[0]
    assert root.feature == 0
    assert root.threshold == pytest.approx(2.5)


def test_equal_gain_thresholds_pick_lowest():
    # thresholds 1.5 and 3.5 give the same Gini decrease
    X = np.array([[1], [2], [3], [4]], dtype=float)
    y = np.array([0, 1, 0, 1])
    tree = _grow(_builder(1, max_depth=1), X, y)
    assert tree.nodes[0].threshold == pytest.approx(1.5)


def test_pure_node_is_a_leaf():
    X = np.random.default_rng(0).normal(size=(10, 3))
    y = np.zeros(10, dtype=int)
    tree = _grow(_builder(3), X, y)
    assert tree.node_count == 1
    assert tree.nodes[0].is_leaf
    assert np.allclose(tree.feature_importances(), 0.0)


def test_constant_features_become_leaf():
    X = np.ones((6, 2))
    y = np.array([0, 1, 0, 1, 0, 1])
    tree = _grow(_builder(2), X, y)
    assert tree.n_leaves == 1


def test_apply_and_leaf_samples_partition_rows():
    rng = np.random.default_rng(1)
    X = rng.normal(size=(60, 4))
    y = (X[:, 0] + X[:, 1] > 0).astype(int)
    tree = _grow(_builder(4, mtry=2), X, y)
    leaves = tree.apply(X)
    assert set(leaves.tolist()) <= set(tree.leaves.tolist())
    # every training row is stored in exactly the leaf it is routed to
    for leaf in tree.leaves:
        stored = np.sort(tree.nodes[leaf].samples)
        assert np.array_equal(stored, np.flatnonzero(leaves == leaf))


def test_decision_paths_are_subsets_bounded_by_depth():
    rng = np.random.default_rng(2)
    X = rng.normal(size=(80, 5))
    y = ((X[:, 0] > 0) & (X[:, 3] > 0)).astype(int)
    tree = _grow(_builder(5, mtry=3), X, y)
    paths = tree.decision_paths()
    assert set(paths) == set(tree.leaves.tolist())
    for leaf, feats in paths.items():
        assert feats <= set(range(5))
        assert len(feats) <= tree.nodes[leaf].depth <= tree.max_depth


def test_splits_only_use_weighted_or_forced_features():
    rng = np.random.default_rng(3)
    X = rng.normal(size=(100, 6))
    y = (X[:, 2] > 0).astype(int)
    weights = [0, 0, 0, 0, 0, 1]
    tree = _grow(_builder(6, mtry=2, weights=weights, forced={0}), X, y)
    used = {nd.feature for nd in tree.nodes if not nd.is_leaf}
    assert used <= {0, 5}


def test_regression_tree_finds_step():
    X = np.arange(20, dtype=float).reshape(-1, 1)
    y = np.where(X[:, 0] < 10, 1.0, 5.0)
    tree = _grow(_builder(1, n_classes=None), X, y)
    assert tree.nodes[0].threshold == pytest.approx(9.5)
    assert tree.n_leaves == 2
    assert tree.leaf_prediction(tree.apply([[0.0]])[0]) == pytest.approx(1.0)
    assert tree.leaf_prediction(tree.apply([[19.0]])[0]) == pytest.approx(5.0)


def test_min_samples_leaf_respected():
    rng = np.random.default_rng(4)
    X = rng.normal(size=(50, 3))
    y = rng.integers(0, 2, size=50)
    tree = _grow(_builder(3, min_samples_leaf=7), X, y)
    assert all(tree.nodes[i].n_samples >= 7 for i in tree.leaves)


def test_export_rules():
    X = np.array([[1, 1], [2, 2], [3, 3], [4, 4]], dtype=float)
    y = np.array([0, 0, 1, 1])
    tree = _grow(_builder(2), X, y)
    rules = tree.export_rules(feature_names=["a", "b"], class_names=["no", "yes"])
    assert rules == ["a <= 2.5 => no (N=2)", "a > 2.5 => yes (N=2)"]


def test_tree_is_an_arena():
    X = np.array([[1], [2], [3], [4]], dtype=float)
    y = np.array([0, 0, 1, 1])
    tree = _grow(_builder(1), X, y)
    assert isinstance(tree, Tree)
    assert isinstance(tree.nodes, tuple)
    assert tree.nodes[0].left == 1 and tree.nodes[0].right == 2
