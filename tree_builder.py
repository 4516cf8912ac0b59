from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from dataset import Dataset, as_feature_matrix
from errors import InvalidArgument, check_positive_int
from random_source import RandomSource

LEAF = -1


@dataclass(frozen=True)
class SplitCandidate:
    feature: int
    threshold: float
    gain: float


@dataclass(frozen=True)
class Leaf:
    probability: float
    n_samples: int


@dataclass(frozen=True)
class Internal:
    feature: int
    threshold: float
    left: int
    right: int
    n_samples: int


@dataclass
class _BuildNode:
    node_id: int
    rows: np.ndarray
    depth: int
    parent_value: float


@dataclass
class TreeBuildMetrics:
    nodes_visited: int = 0
    nodes_split: int = 0
    subset_draws: int = 0
    degenerate_features_skipped: int = 0


@dataclass
class TreeBuilderParams:
    mtry: int
    max_depth: int | None = None  # None means unbounded
    min_samples_leaf: int = 1

    def __post_init__(self) -> None:
        check_positive_int(self.mtry, "mtry")
        check_positive_int(self.max_depth, "max_depth", allow_none=True)
        check_positive_int(self.min_samples_leaf, "min_samples_leaf")


def gini(n_positive, n_total):
    p1 = n_positive / n_total
    return 2.0 * p1 * (1.0 - p1)


class DecisionTree:
    """Binary classification tree stored as an arena of parallel arrays.

    Node 0 is the root. For a leaf, ``feature[i] == -1`` and ``value[i]`` is
    the class-1 fraction. For an internal node, rows with
    ``x[feature] <= threshold`` go to ``left[i]``, the rest to ``right[i]``.
    """

    def __init__(
        self,
        feature: np.ndarray,
        threshold: np.ndarray,
        left: np.ndarray,
        right: np.ndarray,
        value: np.ndarray,
        n_node_samples: np.ndarray,
        depth: np.ndarray,
        n_features: int,
    ) -> None:
        self.feature = np.asarray(feature, dtype=np.int64)
        self.threshold = np.asarray(threshold, dtype=np.float64)
        self.left = np.asarray(left, dtype=np.int64)
        self.right = np.asarray(right, dtype=np.int64)
        self.value = np.asarray(value, dtype=np.float64)
        self.n_node_samples = np.asarray(n_node_samples, dtype=np.int64)
        self.depth = np.asarray(depth, dtype=np.int64)
        self.n_features = int(n_features)
        for arr in (
            self.feature,
            self.threshold,
            self.left,
            self.right,
            self.value,
            self.n_node_samples,
            self.depth,
        ):
            arr.setflags(write=False)

    @property
    def node_count(self) -> int:
        return int(self.feature.size)

    @property
    def n_leaves(self) -> int:
        return int(np.sum(self.feature == LEAF))

    @property
    def max_depth(self) -> int:
        return int(self.depth.max())

    def is_leaf(self, node_id: int) -> bool:
        return bool(self.feature[node_id] == LEAF)

    def node(self, node_id: int) -> Leaf | Internal:
        if not (0 <= node_id < self.node_count):
            raise InvalidArgument(f"node id {node_id} out of range")
        if self.is_leaf(node_id):
            return Leaf(
                probability=float(self.value[node_id]),
                n_samples=int(self.n_node_samples[node_id]),
            )
        return Internal(
            feature=int(self.feature[node_id]),
            threshold=float(self.threshold[node_id]),
            left=int(self.left[node_id]),
            right=int(self.right[node_id]),
            n_samples=int(self.n_node_samples[node_id]),
        )

    def predict_row(self, row: np.ndarray) -> float:
        node_id = 0
        while self.feature[node_id] != LEAF:
            if row[self.feature[node_id]] <= self.threshold[node_id]:
                node_id = self.left[node_id]
            else:
                node_id = self.right[node_id]
        return float(self.value[node_id])

    def apply(self, X: np.ndarray) -> np.ndarray:
        """Return the leaf id reached by each row of X."""
        X = as_feature_matrix(X, self.n_features)
        node_ids = np.zeros(X.shape[0], dtype=np.int64)
        active = np.flatnonzero(self.feature[node_ids] != LEAF)

        while active.size:
            current = node_ids[active]
            go_left = X[active, self.feature[current]] <= self.threshold[current]
            node_ids[active] = np.where(go_left, self.left[current], self.right[current])
            active = active[self.feature[node_ids[active]] != LEAF]

        return node_ids

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        return self.value[self.apply(X)]

    def feature_split_counts(self) -> np.ndarray:
        used = self.feature[self.feature != LEAF]
        return np.bincount(used, minlength=self.n_features)


class TreeBuilder:
    """CART-style induction with Gini impurity and a random feature subset per node.

    ``mtry == p`` considers every feature at every node and never asks the
    random source for a subset; that is plain bagging. Any smaller ``mtry`` is
    a random forest. Both run through the same code path.
    """

    def __init__(
        self,
        X: np.ndarray,
        y: np.ndarray,
        params: TreeBuilderParams,
        random_source: RandomSource,
    ) -> None:
        self.X = X
        self.y = y
        self.params = params
        self.random_source = random_source

        self.n_samples, self.n_features = self.X.shape
        if params.mtry > self.n_features:
            raise InvalidArgument(
                f"mtry={params.mtry} exceeds the number of features ({self.n_features})"
            )
        self.metrics = TreeBuildMetrics()
        self._all_features = np.arange(self.n_features, dtype=np.int64)

    def _candidate_features_for_node(self) -> np.ndarray:
        if self.params.mtry == self.n_features:
            return self._all_features

        self.metrics.subset_draws += 1
        return self.random_source.subset(self.params.mtry, self.n_features)

    def _is_splittable(self, node: _BuildNode, n_positive: int) -> bool:
        n_rows = node.rows.size
        if n_positive == 0 or n_positive == n_rows:
            return False
        if n_rows <= self.params.min_samples_leaf:
            return False
        if self.params.max_depth is not None and node.depth >= self.params.max_depth:
            return False
        return True

    def _best_split_for_feature(
        self,
        rows: np.ndarray,
        feature: int,
        n_positive: int,
        parent_impurity: float,
    ) -> SplitCandidate | None:
        column = self.X[rows, feature]
        order = np.argsort(column, kind="stable")
        values = column[order]
        labels = self.y[rows][order]

        distinct = values[1:] > values[:-1]
        if not np.any(distinct):
            self.metrics.degenerate_features_skipped += 1
            return None

        n = values.size
        n_left = np.arange(1, n, dtype=np.float64)[distinct]
        pos_left = np.cumsum(labels, dtype=np.float64)[:-1][distinct]
        n_right = n - n_left
        pos_right = n_positive - pos_left

        child_impurity = (
            n_left * gini(pos_left, n_left) + n_right * gini(pos_right, n_right)
        ) / n
        gains = parent_impurity - child_impurity

        # First maximum, so the lowest threshold wins exact ties.
        best = int(np.argmax(gains))
        lower = values[:-1][distinct][best]
        upper = values[1:][distinct][best]
        threshold = 0.5 * (lower + upper)
        if not threshold < upper:
            threshold = lower

        return SplitCandidate(feature=int(feature), threshold=float(threshold), gain=float(gains[best]))

    def _find_best_split(
        self,
        rows: np.ndarray,
        candidate_features: np.ndarray,
        n_positive: int,
    ) -> SplitCandidate | None:
        parent_impurity = gini(n_positive, rows.size)
        best: SplitCandidate | None = None

        # Features are scanned in ascending order; strict '>' keeps the
        # lowest feature index on exact ties.
        for feature in candidate_features:
            candidate = self._best_split_for_feature(rows, int(feature), n_positive, parent_impurity)
            if candidate is None:
                continue
            if best is None or candidate.gain > best.gain:
                best = candidate

        return best

    def build(self, sample_indices: np.ndarray) -> DecisionTree:
        rows = np.asarray(sample_indices, dtype=np.int64)
        if rows.ndim != 1 or rows.size == 0:
            raise InvalidArgument("sample_indices must be a non-empty 1D index array")
        if rows.min() < 0 or rows.max() >= self.n_samples:
            raise InvalidArgument("sample_indices out of range")

        feature: list[int] = [LEAF]
        threshold: list[float] = [0.0]
        left: list[int] = [LEAF]
        right: list[int] = [LEAF]
        value: list[float] = [0.0]
        n_node_samples: list[int] = [0]
        depth: list[int] = [0]

        stack = [_BuildNode(node_id=0, rows=rows, depth=0, parent_value=0.0)]

        while stack:
            node = stack.pop()
            self.metrics.nodes_visited += 1
            node_id = node.node_id
            n_rows = int(node.rows.size)
            n_node_samples[node_id] = n_rows
            depth[node_id] = node.depth

            if n_rows == 0:
                value[node_id] = node.parent_value
                continue

            n_positive = int(np.sum(self.y[node.rows]))
            value[node_id] = n_positive / n_rows

            if not self._is_splittable(node, n_positive):
                continue

            candidate_features = self._candidate_features_for_node()
            split = self._find_best_split(node.rows, candidate_features, n_positive)
            if split is None or split.gain <= 0.0:
                continue

            go_left = self.X[node.rows, split.feature] <= split.threshold
            left_id = len(feature)
            right_id = left_id + 1
            for _ in range(2):
                feature.append(LEAF)
                threshold.append(0.0)
                left.append(LEAF)
                right.append(LEAF)
                value.append(0.0)
                n_node_samples.append(0)
                depth.append(node.depth + 1)

            feature[node_id] = split.feature
            threshold[node_id] = split.threshold
            left[node_id] = left_id
            right[node_id] = right_id
            self.metrics.nodes_split += 1

            stack.append(
                _BuildNode(
                    node_id=right_id,
                    rows=node.rows[~go_left],
                    depth=node.depth + 1,
                    parent_value=value[node_id],
                )
            )
            stack.append(
                _BuildNode(
                    node_id=left_id,
                    rows=node.rows[go_left],
                    depth=node.depth + 1,
                    parent_value=value[node_id],
                )
            )

        return DecisionTree(
            feature=feature,
            threshold=threshold,
            left=left,
            right=right,
            value=value,
            n_node_samples=n_node_samples,
            depth=depth,
            n_features=self.n_features,
        )


def build_tree(
    dataset: Dataset,
    sample_indices: np.ndarray,
    mtry: int,
    max_depth: int | None,
    min_samples_leaf: int,
    random_source: RandomSource,
) -> DecisionTree:
    params = TreeBuilderParams(mtry=mtry, max_depth=max_depth, min_samples_leaf=min_samples_leaf)
    return TreeBuilder(dataset.X, dataset.y, params, random_source).build(sample_indices)
