from __future__ import annotations

import enum
import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np

from bootstrap import BootstrapSample, sample_bootstrap
from dataset import Dataset, as_feature_matrix
from errors import (
    DegenerateInput,
    InvalidArgument,
    TrainingCancelled,
    check_positive_int,
    is_integer,
)
from random_source import RandomSource, check_seed
from tree_builder import DecisionTree, TreeBuilder, TreeBuilderParams

logger = logging.getLogger(__name__)


class PredictionKind(enum.Enum):
    PROBABILITY = "probability"
    LABEL = "label"
    VOTES = "votes"


@dataclass
class ForestParams:
    num_trees: int
    mtry: int | str  # int, "sqrt" or "all" (bagging)
    max_depth: int | None = None
    min_samples_leaf: int = 1
    seed: int = 0
    n_jobs: int = 1

    def __post_init__(self) -> None:
        check_positive_int(self.num_trees, "num_trees")
        if isinstance(self.mtry, str):
            if self.mtry not in {"sqrt", "all"}:
                raise InvalidArgument("mtry must be a positive integer, 'sqrt' or 'all'")
        elif not is_integer(self.mtry) or self.mtry < 1:
            raise InvalidArgument("mtry must be a positive integer, 'sqrt' or 'all'")
        check_positive_int(self.max_depth, "max_depth", allow_none=True)
        check_positive_int(self.min_samples_leaf, "min_samples_leaf")
        check_positive_int(self.n_jobs, "n_jobs")
        self.seed = check_seed(self.seed)

    def resolve_mtry(self, n_features: int) -> int:
        if isinstance(self.mtry, str):
            if self.mtry == "all":
                return n_features
            return max(1, int(round(math.sqrt(n_features))))
        if self.mtry > n_features:
            raise InvalidArgument(f"mtry={self.mtry} exceeds the number of features ({n_features})")
        return int(self.mtry)


@dataclass(frozen=True, eq=False)
class EnsembleMember:
    tree_index: int
    tree: DecisionTree
    bootstrap: BootstrapSample
    rng_state: dict  # stream continuation after the tree was built


@dataclass(frozen=True, eq=False)
class OOBResult:
    error: float | None
    probabilities: np.ndarray  # NaN where no tree had the row out-of-bag
    tree_counts: np.ndarray
    n_evaluated: int
    n_excluded: int


def _train_member(
    dataset: Dataset,
    tree_params: TreeBuilderParams,
    seed: int,
    tree_index: int,
) -> EnsembleMember:
    random_source = RandomSource.for_tree(seed, tree_index)
    bootstrap = sample_bootstrap(dataset, random_source)
    builder = TreeBuilder(dataset.X, dataset.y, tree_params, random_source)
    tree = builder.build(bootstrap.indices)
    logger.debug(
        "tree %d: %d nodes, depth %d, %d oob rows",
        tree_index,
        tree.node_count,
        tree.max_depth,
        bootstrap.oob_indices.size,
    )
    return EnsembleMember(
        tree_index=tree_index,
        tree=tree,
        bootstrap=bootstrap,
        rng_state=random_source.snapshot(),
    )


class TreeEnsemble:
    """Bagged decision trees, each paired with its out-of-bag rows."""

    def __init__(
        self,
        members: list[EnsembleMember],
        params: ForestParams,
        mtry: int,
        n_samples: int,
        n_features: int,
    ) -> None:
        self.members = tuple(members)
        self.params = params
        self.mtry = mtry
        self.n_samples = n_samples
        self.n_features = n_features

    @property
    def num_trees(self) -> int:
        return len(self.members)

    @property
    def trees(self) -> list[DecisionTree]:
        return [member.tree for member in self.members]

    @classmethod
    def train(
        cls,
        dataset: Dataset,
        params: ForestParams,
        cancel_event: threading.Event | None = None,
    ) -> "TreeEnsemble":
        if dataset.n_samples < 2:
            raise DegenerateInput("training needs at least 2 observations")
        mtry = params.resolve_mtry(dataset.n_features)
        tree_params = TreeBuilderParams(
            mtry=mtry,
            max_depth=params.max_depth,
            min_samples_leaf=params.min_samples_leaf,
        )
        if dataset.is_single_class:
            logger.warning(
                "training data holds a single class; AUC and importance will be undefined"
            )

        members: list[EnsembleMember] = []
        if params.n_jobs == 1:
            for tree_index in range(params.num_trees):
                if cancel_event is not None and cancel_event.is_set():
                    raise TrainingCancelled(len(members))
                members.append(_train_member(dataset, tree_params, params.seed, tree_index))
        else:
            members = cls._train_parallel(dataset, tree_params, params, cancel_event)

        logger.info(
            "trained %d trees (mtry=%d of %d features) on %d rows",
            len(members),
            mtry,
            dataset.n_features,
            dataset.n_samples,
        )
        return cls(
            members=members,
            params=params,
            mtry=mtry,
            n_samples=dataset.n_samples,
            n_features=dataset.n_features,
        )

    @staticmethod
    def _train_parallel(
        dataset: Dataset,
        tree_params: TreeBuilderParams,
        params: ForestParams,
        cancel_event: threading.Event | None,
    ) -> list[EnsembleMember]:
        def task(tree_index: int) -> EnsembleMember | None:
            if cancel_event is not None and cancel_event.is_set():
                return None
            return _train_member(dataset, tree_params, params.seed, tree_index)

        with ThreadPoolExecutor(max_workers=params.n_jobs) as pool:
            # map() yields in submission order, so tree i always lands at slot i.
            results = list(pool.map(task, range(params.num_trees)))

        if any(member is None for member in results):
            raise TrainingCancelled(sum(member is not None for member in results))
        return results

    def _tree_probabilities(self, X: np.ndarray) -> np.ndarray:
        return np.vstack([member.tree.predict_proba(X) for member in self.members])

    def predict_probability(self, X):
        """Mean leaf probability over all trees, an estimate of P(class=1)."""
        single = np.ndim(X) == 1
        X = as_feature_matrix(X, self.n_features)
        proba = self._tree_probabilities(X).mean(axis=0)
        return float(proba[0]) if single else proba

    def predict_votes(self, X):
        """Fraction of trees whose own prediction is class 1."""
        single = np.ndim(X) == 1
        X = as_feature_matrix(X, self.n_features)
        votes = (self._tree_probabilities(X) >= 0.5).mean(axis=0)
        return float(votes[0]) if single else votes

    def predict_label(self, X, threshold: float = 0.5):
        if not (0.0 <= threshold <= 1.0):
            raise InvalidArgument("threshold must be in [0, 1]")
        proba = self.predict_probability(X)
        if np.ndim(proba) == 0:
            return int(proba >= threshold)
        return (proba >= threshold).astype(np.int8)

    def predict(self, X, kind: PredictionKind = PredictionKind.PROBABILITY, threshold: float = 0.5):
        if kind is PredictionKind.PROBABILITY:
            return self.predict_probability(X)
        if kind is PredictionKind.LABEL:
            return self.predict_label(X, threshold=threshold)
        if kind is PredictionKind.VOTES:
            return self.predict_votes(X)
        raise InvalidArgument(f"unsupported prediction kind: {kind!r}")

    def _check_training_dataset(self, dataset: Dataset) -> None:
        if dataset.n_samples != self.n_samples or dataset.n_features != self.n_features:
            raise InvalidArgument(
                "out-of-bag estimates need the training dataset "
                f"({self.n_samples}x{self.n_features}), got "
                f"{dataset.n_samples}x{dataset.n_features}"
            )

    def oob_fraction_per_observation(self) -> np.ndarray:
        counts = np.zeros(self.n_samples, dtype=np.float64)
        for member in self.members:
            counts[member.bootstrap.oob_indices] += 1.0
        return counts / self.num_trees

    def out_of_bag_probability(self, dataset: Dataset) -> tuple[np.ndarray, np.ndarray]:
        self._check_training_dataset(dataset)
        sums = np.zeros(self.n_samples, dtype=np.float64)
        counts = np.zeros(self.n_samples, dtype=np.int64)

        for member in self.members:
            oob = member.bootstrap.oob_indices
            if oob.size == 0:
                continue
            sums[oob] += member.tree.predict_proba(dataset.X[oob])
            counts[oob] += 1

        proba = np.full(self.n_samples, np.nan, dtype=np.float64)
        covered = counts > 0
        proba[covered] = sums[covered] / counts[covered]
        return proba, counts

    def out_of_bag_error(self, dataset: Dataset, threshold: float = 0.5) -> OOBResult:
        """Misclassification rate using, per row, only trees that never saw it."""
        if not (0.0 <= threshold <= 1.0):
            raise InvalidArgument("threshold must be in [0, 1]")
        proba, counts = self.out_of_bag_probability(dataset)
        covered = counts > 0
        n_evaluated = int(np.sum(covered))
        n_excluded = self.n_samples - n_evaluated
        if n_excluded:
            logger.info("%d observation(s) were in-bag for every tree and are excluded", n_excluded)

        error = None
        if n_evaluated:
            labels = (proba[covered] >= threshold).astype(np.int8)
            error = float(np.mean(labels != dataset.y[covered]))

        return OOBResult(
            error=error,
            probabilities=proba,
            tree_counts=counts,
            n_evaluated=n_evaluated,
            n_excluded=n_excluded,
        )


def train_ensemble(
    dataset: Dataset,
    num_trees: int,
    mtry: int | str,
    max_depth: int | None = None,
    min_samples_leaf: int = 1,
    seed: int = 0,
    n_jobs: int = 1,
    cancel_event: threading.Event | None = None,
) -> TreeEnsemble:
    params = ForestParams(
        num_trees=num_trees,
        mtry=mtry,
        max_depth=max_depth,
        min_samples_leaf=min_samples_leaf,
        seed=seed,
        n_jobs=n_jobs,
    )
    return TreeEnsemble.train(dataset, params, cancel_event=cancel_event)
