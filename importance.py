"""Out-of-bag permutation importance.

For every tree, the misclassification error on its out-of-bag rows is
measured before and after shuffling one feature column among those rows
only. A feature's importance is the mean of that increase over trees.

Known artifact: an uninformative feature with many distinct values offers
the builder more candidate thresholds, so it is picked for splits more often
than an uninformative low-cardinality feature. Its importance therefore tends
to sit further from zero. This is a property of the method and is left
uncorrected; ``Dataset.feature_cardinality`` and
``DecisionTree.feature_split_counts`` expose the inputs needed to study it.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np
import pandas as pd

from dataset import Dataset
from ensemble import EnsembleMember, TreeEnsemble
from errors import InvalidArgument, check_positive_int
from random_source import RandomSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureImportance:
    feature: int
    mean: float
    std: float
    n_trees: int


@dataclass(frozen=True)
class ImportanceScore:
    scores: tuple[FeatureImportance, ...]
    n_trees_used: int
    n_trees_skipped: int
    undefined_reason: str | None = None

    @property
    def is_defined(self) -> bool:
        return self.undefined_reason is None

    @property
    def features(self) -> np.ndarray:
        return np.array([s.feature for s in self.scores], dtype=np.int64)

    @property
    def means(self) -> np.ndarray:
        return np.array([s.mean for s in self.scores], dtype=np.float64)

    @property
    def stds(self) -> np.ndarray:
        return np.array([s.std for s in self.scores], dtype=np.float64)

    def as_dict(self) -> dict[int, tuple[float, float]]:
        return {s.feature: (s.mean, s.std) for s in self.scores}

    def ranking(self) -> list[int]:
        """Feature indices from most to least important."""
        ordered = sorted(self.scores, key=lambda s: (-s.mean, s.feature))
        return [s.feature for s in ordered]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "feature": self.features,
                "mean": self.means,
                "std": self.stds,
                "n_trees": [s.n_trees for s in self.scores],
            }
        )


def _misclassification(proba: np.ndarray, y: np.ndarray, threshold: float) -> float:
    return float(np.mean((proba >= threshold).astype(np.int8) != y))


def _tree_contributions(
    member: EnsembleMember,
    dataset: Dataset,
    features: list[int],
    threshold: float,
) -> np.ndarray | None:
    oob = member.bootstrap.oob_indices
    if oob.size == 0:
        return None

    random_source = RandomSource.restore(member.rng_state)
    X_oob = dataset.X[oob]
    y_oob = dataset.y[oob]
    error_before = _misclassification(member.tree.predict_proba(X_oob), y_oob, threshold)

    wanted = set(features)
    contributions = {}
    shuffled = X_oob.copy()
    # One permutation per feature in index order, whether or not the feature
    # was requested, so a feature's score does not depend on the others asked for.
    for feature in range(dataset.n_features):
        perm = random_source.permutation(oob.size)
        if feature not in wanted:
            continue
        shuffled[:, feature] = X_oob[perm, feature]
        error_after = _misclassification(member.tree.predict_proba(shuffled), y_oob, threshold)
        shuffled[:, feature] = X_oob[:, feature]
        contributions[feature] = error_after - error_before

    return np.array([contributions[f] for f in features], dtype=np.float64)


def permutation_importance(
    ensemble: TreeEnsemble,
    dataset: Dataset,
    features=None,
    threshold: float = 0.5,
    n_jobs: int = 1,
) -> ImportanceScore:
    """Mean and standard deviation across trees of the OOB error increase per feature."""
    if dataset.n_samples != ensemble.n_samples or dataset.n_features != ensemble.n_features:
        raise InvalidArgument("permutation importance needs the training dataset")
    if not (0.0 <= threshold <= 1.0):
        raise InvalidArgument("threshold must be in [0, 1]")
    check_positive_int(n_jobs, "n_jobs")

    if features is None:
        features = list(range(dataset.n_features))
    else:
        features = sorted({int(f) for f in features})
        if any(f < 0 or f >= dataset.n_features for f in features):
            raise InvalidArgument("feature index out of range")

    if dataset.is_single_class:
        return ImportanceScore(
            scores=(),
            n_trees_used=0,
            n_trees_skipped=ensemble.num_trees,
            undefined_reason="labels hold a single class",
        )

    def task(member: EnsembleMember) -> np.ndarray | None:
        return _tree_contributions(member, dataset, features, threshold)

    if n_jobs == 1:
        per_tree = [task(member) for member in ensemble.members]
    else:
        with ThreadPoolExecutor(max_workers=n_jobs) as pool:
            per_tree = list(pool.map(task, ensemble.members))

    used = [row for row in per_tree if row is not None]
    n_skipped = len(per_tree) - len(used)
    if n_skipped:
        logger.info("%d tree(s) had no out-of-bag rows and were skipped", n_skipped)
    if not used:
        return ImportanceScore(
            scores=(),
            n_trees_used=0,
            n_trees_skipped=n_skipped,
            undefined_reason="no tree has out-of-bag rows",
        )

    table = np.vstack(used)
    means = table.mean(axis=0)
    stds = table.std(axis=0, ddof=1) if len(used) > 1 else np.zeros(len(features))

    scores = tuple(
        FeatureImportance(feature=f, mean=float(m), std=float(s), n_trees=len(used))
        for f, m, s in zip(features, means, stds)
    )
    return ImportanceScore(scores=scores, n_trees_used=len(used), n_trees_skipped=n_skipped)
