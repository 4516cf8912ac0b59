import numpy as np
import pytest

from dataset import Dataset
from errors import InvalidArgument
from random_source import RandomSource
from tree_builder import (
    Internal,
    Leaf,
    TreeBuilder,
    TreeBuilderParams,
    build_tree,
)


def _collect_tree_signature(tree, node_id=0):
    node = tree.node(node_id)
    if isinstance(node, Leaf):
        return [("L", int(tree.depth[node_id]), node.n_samples, node.probability)]

    signature = [("S", int(tree.depth[node_id]), node.feature, node.threshold)]
    signature.extend(_collect_tree_signature(tree, node.left))
    signature.extend(_collect_tree_signature(tree, node.right))
    return signature


def _all_rows(dataset):
    return np.arange(dataset.n_samples)


def test_single_threshold_split():
    dataset = Dataset.from_arrays([[0.0], [1.0], [2.0], [3.0]], [0, 0, 1, 1])
    tree = build_tree(dataset, _all_rows(dataset), 1, None, 1, RandomSource(0))

    assert tree.node(0) == Internal(feature=0, threshold=1.5, left=1, right=2, n_samples=4)
    assert tree.node(1) == Leaf(probability=0.0, n_samples=2)
    assert tree.node(2) == Leaf(probability=1.0, n_samples=2)


def test_pure_node_is_leaf():
    dataset = Dataset.from_arrays(np.random.default_rng(0).normal(size=(20, 3)), np.ones(20))
    tree = build_tree(dataset, _all_rows(dataset), 3, None, 1, RandomSource(0))

    assert tree.node_count == 1
    assert tree.node(0) == Leaf(probability=1.0, n_samples=20)


def test_threshold_tie_prefers_lowest_threshold():
    # Thresholds 0.5 and 2.5 give the same gain.
    dataset = Dataset.from_arrays([[0.0], [1.0], [2.0], [3.0]], [0, 1, 1, 0])
    tree = build_tree(dataset, _all_rows(dataset), 1, 1, 1, RandomSource(0))

    assert tree.node(0).threshold == 0.5


def test_feature_tie_prefers_lowest_index():
    column = np.array([0.0, 1.0, 2.0, 3.0])
    dataset = Dataset.from_arrays(np.column_stack([column, column]), [0, 0, 1, 1])
    tree = build_tree(dataset, _all_rows(dataset), 2, None, 1, RandomSource(0))

    assert tree.node(0).feature == 0


def test_constant_feature_is_skipped():
    X = np.column_stack([np.full(6, 4.0), np.arange(6, dtype=np.float64)])
    dataset = Dataset.from_arrays(X, [0, 0, 0, 1, 1, 1])
    builder = TreeBuilder(dataset.X, dataset.y, TreeBuilderParams(mtry=2), RandomSource(0))
    tree = builder.build(_all_rows(dataset))

    assert tree.node(0).feature == 1
    assert tree.node(0).threshold == 2.5
    assert builder.metrics.degenerate_features_skipped >= 1


def test_all_degenerate_candidates_make_a_leaf():
    dataset = Dataset.from_arrays(np.ones((4, 2)), [0, 1, 0, 1])
    tree = build_tree(dataset, _all_rows(dataset), 2, None, 1, RandomSource(0))

    assert tree.node(0) == Leaf(probability=0.5, n_samples=4)


def test_no_improving_split_makes_a_leaf():
    # XOR: no single axis-aligned split reduces impurity.
    X = [[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [1.0, 1.0]]
    dataset = Dataset.from_arrays(X, [0, 1, 1, 0])
    tree = build_tree(dataset, _all_rows(dataset), 2, None, 1, RandomSource(0))

    assert tree.node_count == 1


def test_max_depth_and_min_samples_leaf_stop_growth():
    X = np.random.default_rng(4).uniform(size=(200, 3))
    y = (X[:, 0] + X[:, 1] > 1.0).astype(np.int8)
    dataset = Dataset.from_arrays(X, y)

    stump = build_tree(dataset, _all_rows(dataset), 3, 1, 1, RandomSource(0))
    assert stump.node_count == 3
    assert stump.max_depth == 1

    bushy = build_tree(dataset, _all_rows(dataset), 3, None, 50, RandomSource(0))
    internal = bushy.feature >= 0
    assert np.all(bushy.n_node_samples[internal] > 50)


def test_leaf_probability_counts_bootstrap_duplicates():
    dataset = Dataset.from_arrays(np.ones((2, 1)), [1, 0])
    tree = build_tree(dataset, np.array([0, 0, 1]), 1, None, 1, RandomSource(0))

    assert tree.node(0) == Leaf(probability=2.0 / 3.0, n_samples=3)


def test_bagging_mode_never_draws_feature_subsets(threshold_dataset, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("subset drawn with mtry == p")

    monkeypatch.setattr(RandomSource, "subset", fail)
    params = TreeBuilderParams(mtry=threshold_dataset.n_features)
    builder = TreeBuilder(threshold_dataset.X, threshold_dataset.y, params, RandomSource(0))
    builder.build(_all_rows(threshold_dataset))

    assert builder.metrics.subset_draws == 0
    assert builder.metrics.nodes_split > 0


def test_forest_mode_draws_one_subset_per_split_attempt(threshold_dataset):
    params = TreeBuilderParams(mtry=2)
    builder = TreeBuilder(threshold_dataset.X, threshold_dataset.y, params, RandomSource(0))
    builder.build(_all_rows(threshold_dataset))

    assert builder.metrics.subset_draws >= builder.metrics.nodes_split > 0


def test_same_random_source_builds_identical_trees(threshold_dataset):
    rows = _all_rows(threshold_dataset)
    a = build_tree(threshold_dataset, rows, 2, None, 1, RandomSource(17))
    b = build_tree(threshold_dataset, rows, 2, None, 1, RandomSource(17))

    assert _collect_tree_signature(a) == _collect_tree_signature(b)


def test_vectorized_prediction_matches_row_traversal(threshold_dataset):
    tree = build_tree(threshold_dataset, _all_rows(threshold_dataset), 2, None, 1, RandomSource(3))
    X = np.random.default_rng(8).uniform(size=(50, threshold_dataset.n_features))

    expected = np.array([tree.predict_row(row) for row in X])
    assert np.array_equal(tree.predict_proba(X), expected)
    assert np.all(tree.feature[tree.apply(X)] == -1)


def test_arena_is_a_strict_binary_tree(threshold_dataset):
    tree = build_tree(threshold_dataset, _all_rows(threshold_dataset), 2, None, 1, RandomSource(5))
    internal = np.flatnonzero(tree.feature >= 0)
    children = np.concatenate([tree.left[internal], tree.right[internal]])

    assert np.unique(children).size == children.size
    assert set(children.tolist()) == set(range(1, tree.node_count))
    assert np.all(tree.left[internal] > internal)
    assert np.all(tree.right[internal] > internal)
    assert tree.n_leaves == tree.node_count - internal.size
    assert np.all(tree.depth[tree.left[internal]] == tree.depth[internal] + 1)


def test_tree_arrays_are_immutable(threshold_dataset):
    tree = build_tree(threshold_dataset, _all_rows(threshold_dataset), 4, 2, 1, RandomSource(0))
    with pytest.raises(ValueError):
        tree.value[0] = 0.25


def test_feature_split_counts(threshold_dataset):
    tree = build_tree(threshold_dataset, _all_rows(threshold_dataset), 4, None, 1, RandomSource(0))
    counts = tree.feature_split_counts()

    assert counts.shape == (threshold_dataset.n_features,)
    assert counts.sum() == np.sum(tree.feature >= 0)
    assert counts[0] >= 1


@pytest.mark.parametrize(
    "kwargs",
    [
        {"mtry": 0},
        {"mtry": 2, "max_depth": 0},
        {"mtry": 2, "min_samples_leaf": 0},
        {"mtry": 2, "max_depth": 2.5},
        {"mtry": 2, "max_depth": False},
        {"mtry": 2, "min_samples_leaf": "2"},
        {"mtry": 2, "min_samples_leaf": 1.5},
    ],
)
def test_invalid_params_rejected(kwargs):
    with pytest.raises(InvalidArgument):
        TreeBuilderParams(**kwargs)


def test_mtry_above_feature_count_rejected(threshold_dataset):
    with pytest.raises(InvalidArgument):
        TreeBuilder(
            threshold_dataset.X,
            threshold_dataset.y,
            TreeBuilderParams(mtry=threshold_dataset.n_features + 1),
            RandomSource(0),
        )


def test_prediction_width_mismatch_rejected(threshold_dataset):
    tree = build_tree(threshold_dataset, _all_rows(threshold_dataset), 1, 2, 1, RandomSource(0))
    with pytest.raises(InvalidArgument):
        tree.predict_proba(np.zeros((3, threshold_dataset.n_features + 1)))
