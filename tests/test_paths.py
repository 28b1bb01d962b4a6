import numpy as np
import pytest
from irfpy import (DimensionMismatch, WeightedRandomForestClassifier,
                   WeightedRandomForestRegressor, read_forest)


def _fitted(n=150, p=5, seed=0):
    rng = np.random.default_rng(seed)
    X = rng.uniform(-1, 1, size=(n, p))
    y = ((X[:, 0] > 0) & (X[:, 2] > 0)).astype(int)
    clf = WeightedRandomForestClassifier(n_estimators=6, min_samples_leaf=2,
                                         random_state=seed).fit(X, y)
    return clf, X, y


def test_tree_info_columns_and_ids():
    clf, X, y = _fitted()
    paths = read_forest(clf, X, y)
    info = paths.tree_info
    assert list(info.columns) == ["tree_id", "leaf_id", "prediction", "size_node"]
    # tree ids are 1-based
    assert sorted(info["tree_id"].unique().tolist()) == list(range(1, 7))
    assert info["leaf_id"].min() >= 1
    assert len(paths) == len(info) == len(paths.feature_sets)


def test_node_sizes_sum_to_rows_per_tree():
    clf, X, y = _fitted()
    paths = read_forest(clf, X, y)
    sums = paths.tree_info.groupby("tree_id")["size_node"].sum()
    assert (sums == X.shape[0]).all()


def test_feature_sets_are_subsets_bounded_by_depth():
    clf, X, y = _fitted()
    paths = read_forest(clf, X, y)
    for rec, feats in zip(paths.records(), paths.feature_sets):
        tree = clf.estimators_[rec.tree_id - 1]
        assert feats <= set(range(X.shape[1]))
        assert len(feats) <= tree.max_depth
        assert rec.features == feats


def test_node_feature_matches_feature_sets():
    clf, X, y = _fitted()
    paths = read_forest(clf, X, y)
    nf = paths.node_feature
    assert nf.shape == (len(paths), X.shape[1])
    for row, feats in zip(nf, paths.feature_sets):
        assert set(np.flatnonzero(row).tolist()) == set(feats)
    assert read_forest(clf, X, y, return_node_feature=False).node_feature is None


def test_held_out_rows_only_report_reached_leaves():
    clf, X, y = _fitted()
    paths = read_forest(clf, X[:10], y[:10])
    sums = paths.tree_info.groupby("tree_id")["size_node"].sum()
    assert (sums == 10).all()
    assert (paths.tree_info["size_node"] > 0).all()


def test_predictions_without_y_use_stored_leaves():
    clf, X, y = _fitted()
    paths = read_forest(clf, X)
    assert set(paths.tree_info["prediction"].unique().tolist()) <= {0, 1}


def test_purity_decrease():
    clf, X, y = _fitted()
    paths = read_forest(clf, X, y, wt_pred_accuracy=True)
    info = paths.tree_info
    assert "purity_decrease" in info.columns
    p1 = y.mean()
    total = 1.0 - p1 ** 2 - (1 - p1) ** 2
    # a pure leaf removes all of the dataset impurity, scaled by its share of rows
    for rec in paths.records():
        assert rec.purity_decrease <= total * rec.size_node / len(y) + 1e-12
    w = paths.weights("purity")
    assert np.all(w >= 0)


def test_select_by_class_and_size():
    clf, X, y = _fitted()
    paths = read_forest(clf, X, y)
    sel = paths.select(class_id=1, min_nodesize=3)
    assert (sel.tree_info["prediction"] == 1).all()
    assert (sel.tree_info["size_node"] >= 3).all()
    assert len(sel.feature_sets) == len(sel.tree_info) == sel.node_feature.shape[0]
    assert np.array_equal(sel.weights("size"), sel.tree_info["size_node"].to_numpy(dtype=float))


def test_unknown_weight_strategy():
    clf, X, y = _fitted()
    paths = read_forest(clf, X, y)
    with pytest.raises(ValueError):
        paths.weights("gini")
    with pytest.raises(ValueError):
        paths.weights("purity")


def test_regression_paths():
    rng = np.random.default_rng(1)
    X = rng.uniform(-1, 1, size=(100, 3))
    y = X[:, 1] * 2.0
    regr = WeightedRandomForestRegressor(n_estimators=4, random_state=1).fit(X, y)
    paths = read_forest(regr, X, y, wt_pred_accuracy=True)
    assert paths.tree_info["prediction"].dtype.kind == "f"
    assert "purity_decrease" in paths.tree_info.columns


def test_read_forest_errors():
    clf, X, y = _fitted()
    with pytest.raises(DimensionMismatch):
        read_forest(clf, X, y[:-1])
    with pytest.raises(DimensionMismatch):
        read_forest(clf, X[:, :2])
    with pytest.raises(ValueError):
        read_forest(clf, X, wt_pred_accuracy=True)
    with pytest.raises(ValueError):
        read_forest(WeightedRandomForestClassifier(), X)
