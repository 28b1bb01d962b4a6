from collections import Counter

import numpy as np
import pytest
from irfpy import (DimensionMismatch, EmptyFeatureSetCollection, Interaction, InvalidWeightVector,
                   RandomIntersectionTrees, from_one_based, rit, to_one_based)
from irfpy.rit import rank_interactions


def _leaf_sets(n=60, seed=0):
    """Feature sets where {0, 1} recurs and the other features are noise."""
    rng = np.random.default_rng(seed)
    sets = []
    for i in range(n):
        noise = set(rng.choice(np.arange(2, 12), size=2, replace=False).tolist())
        sets.append({0, 1} | noise if i % 3 else noise)
    return sets


def test_depth_one_records_the_sampled_sets():
    sets = [{0, 1}, {2}]
    counts = RandomIntersectionTrees(depth=1, branch=3, n_trees=4000,
                                     random_state=0).search(sets, [3.0, 1.0])
    assert set(counts) == {frozenset({0, 1}), frozenset({2})}
    # every tree contributes exactly its root
    assert sum(counts.values()) == 4000
    assert counts[frozenset({0, 1})] / 4000 == pytest.approx(0.75, abs=0.03)


def test_branch_one_only_yields_sampled_sets():
    sets = [{0, 1}, {2, 3}]
    counts = RandomIntersectionTrees(depth=4, branch=1, n_trees=300,
                                     random_state=1).search(sets)
    assert set(counts) <= {frozenset({0, 1}), frozenset({2, 3})}


def test_identical_sets_found_in_every_tree():
    sets = [{1, 2, 3}] * 5
    counts = RandomIntersectionTrees(depth=3, branch=2, n_trees=50, random_state=2).search(sets)
    assert counts == Counter({frozenset({1, 2, 3}): 50})


def test_more_trees_never_decrease_counts():
    sets = _leaf_sets()
    small = RandomIntersectionTrees(depth=4, branch=2, n_trees=100, random_state=3).search(sets)
    large = RandomIntersectionTrees(depth=4, branch=2, n_trees=300, random_state=3).search(sets)
    for combo, count in small.items():
        assert large[combo] >= count


def test_parallel_search_matches_serial():
    sets = _leaf_sets()
    serial = RandomIntersectionTrees(n_trees=120, random_state=4, n_jobs=1).search(sets)
    parallel = RandomIntersectionTrees(n_trees=120, random_state=4, n_jobs=2).search(sets)
    assert serial == parallel


def test_recurring_pair_is_top_interaction():
    ranked = rit(_leaf_sets(), depth=4, branch=2, n_trees=300, random_state=5)
    assert ranked[0].features == (1, 2)
    assert ranked[0].name == "X1_X2"
    assert all(0.0 <= it.score <= 1.0 for it in ranked)
    assert all(it.order >= 2 for it in ranked)


def test_min_order_filters_singletons():
    sets = [{0, 1}, {0, 2}, {0, 1, 2}]
    counts = RandomIntersectionTrees(depth=3, n_trees=200, min_order=2,
                                     random_state=6).search(sets)
    assert all(len(k) >= 2 for k in counts)


def test_indicator_matrix_input():
    sets = _leaf_sets(n=30)
    matrix = np.zeros((len(sets), 12), dtype=bool)
    for i, s in enumerate(sets):
        matrix[i, sorted(s)] = True
    a = RandomIntersectionTrees(n_trees=80, random_state=7).search(sets)
    b = RandomIntersectionTrees(n_trees=80, random_state=7).search(matrix)
    assert a == b


def test_empty_collection_returns_nothing():
    with pytest.warns(EmptyFeatureSetCollection):
        assert RandomIntersectionTrees().search([]) == Counter()
    with pytest.warns(EmptyFeatureSetCollection):
        assert rit([]) == []
    # all weights zero behaves like an empty collection
    with pytest.warns(EmptyFeatureSetCollection):
        assert RandomIntersectionTrees().search([{0, 1}], [0.0]) == Counter()


def test_weight_errors():
    with pytest.raises(InvalidWeightVector):
        RandomIntersectionTrees().search([{0}, {1}], [1.0, -1.0])
    with pytest.raises(DimensionMismatch):
        RandomIntersectionTrees().search([{0}, {1}], [1.0])
    with pytest.raises(ValueError):
        RandomIntersectionTrees(depth=0)


def test_one_based_conversion():
    assert to_one_based(frozenset({4, 0, 6})) == (1, 5, 7)
    assert from_one_based((1, 5, 7)) == frozenset({0, 4, 6})
    assert from_one_based(to_one_based({3, 9})) == frozenset({3, 9})
    with pytest.raises(ValueError):
        from_one_based((0, 2))
    it = Interaction(features=(2, 3), score=0.5)
    assert it.as_set() == frozenset({1, 2})


def test_rank_tie_breaks_by_order_then_indices():
    scores = {
        frozenset({4, 6}): 0.8,
        frozenset({0, 1, 2}): 0.8,
        frozenset({0, 1}): 0.8,
        frozenset({3}): 0.9,
        frozenset({0, 5}): 0.2,
    }
    ranked = rank_interactions(scores, feature_names=list("abcdefg"))
    assert [it.features for it in ranked] == [(4,), (1, 2), (5, 7), (1, 2, 3), (1, 6)]
    assert ranked[1].name == "a_b"
    assert len(rank_interactions(scores, top=2)) == 2
